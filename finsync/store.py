from __future__ import annotations

import logging

from sqlalchemy import Table, insert, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Connection, Engine

from finsync.schema import DEFAULT_CATEGORIES, DEFAULT_CATEGORY_KEYWORDS, categories, category_keywords, metadata

logger = logging.getLogger(__name__)


def insert_for(conn: Connection, table: Table):
    """INSERT statement that supports ``on_conflict_*`` for the connection's dialect."""
    dialect = conn.dialect.name
    if dialect == "postgresql":
        return pg_insert(table)
    if dialect == "sqlite":
        return sqlite_insert(table)
    raise RuntimeError(f"Unsupported database dialect for upserts: {dialect}")


def init_db(engine: Engine) -> None:
    metadata.create_all(engine)
    with engine.begin() as conn:
        seed_default_categories(conn)


def seed_default_categories(conn: Connection) -> int:
    existing = conn.execute(select(categories.c.id).limit(1)).first()
    if existing:
        return 0

    conn.execute(
        insert(categories),
        [{"name": name, "type": category_type} for name, category_type in DEFAULT_CATEGORIES],
    )
    ids_by_name = {
        row["name"]: row["id"]
        for row in conn.execute(select(categories.c.id, categories.c.name)).mappings()
    }
    keyword_rows = [
        {"category_id": ids_by_name[name], "keyword": keyword.lower()}
        for name, keywords in DEFAULT_CATEGORY_KEYWORDS.items()
        if name in ids_by_name
        for keyword in keywords
    ]
    if keyword_rows:
        conn.execute(insert(category_keywords), keyword_rows)
    logger.info("Seeded %d categories and %d keyword rules", len(ids_by_name), len(keyword_rows))
    return len(keyword_rows)
