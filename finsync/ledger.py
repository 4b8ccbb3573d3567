from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
import logging
from typing import Iterable

from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.engine import Connection, Engine

from finsync.classification_engine import KeywordRule, load_keyword_rules
from finsync.schema import (
    balances,
    external_accounts,
    financial_asset_prices,
    financial_assets,
    holdings,
    portfolio_snapshots,
    sync_logs,
    transactions,
)
from finsync.store import insert_for
from finsync.timeutil import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccountRecord:
    id: int
    source: str
    external_account_id: str
    last_sync_at: datetime | None


@dataclass(frozen=True)
class TransactionRecord:
    external_ref: str
    user_id: str
    account_id: int | None
    type: str
    amount: Decimal
    currency: str
    amount_in_base_currency: Decimal
    date: datetime
    description: str
    category_id: int | None = None


@dataclass(frozen=True)
class SnapshotValues:
    date: date
    total_value: Decimal
    total_invested: Decimal
    returns: Decimal
    returns_percent: Decimal


@dataclass(frozen=True)
class HoldingRecord:
    instrument_name: str
    instrument_type: str
    isin: str | None
    shares: Decimal
    value: Decimal
    weight: Decimal


@dataclass(frozen=True)
class FinancialAssetRecord:
    id: int
    symbol: str
    name: str
    type: str
    currency: str


@dataclass(frozen=True)
class SyncLogEntry:
    user_id: str
    mode: str
    status: str
    transactions_added: int = 0
    balances_updated: int = 0
    snapshots_added: int = 0
    prices_updated: int = 0
    error_message: str | None = None


class LedgerWriter:
    """Idempotent writes keyed on each entity's natural key.

    Transactions are write-once; balances, snapshots and account metadata are
    last-write-wins; holdings are replaced as a set per snapshot.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def upsert_account(
        self,
        *,
        user_id: str,
        source: str,
        external_account_id: str,
        account_type: str,
        status: str | None = None,
        risk_level: int | None = None,
        net_contributions: Decimal | None = None,
    ) -> AccountRecord:
        values = {
            "user_id": user_id,
            "source": source,
            "external_account_id": external_account_id,
            "account_type": account_type,
            "status": status,
            "risk_level": risk_level,
            "net_contributions": net_contributions,
        }
        changes = {"account_type": account_type, "status": status, "updated_at": utcnow()}
        if risk_level is not None:
            changes["risk_level"] = risk_level
        # A missing contributions figure keeps the last known one.
        if net_contributions is not None:
            changes["net_contributions"] = net_contributions

        with self.engine.begin() as conn:
            stmt = insert_for(conn, external_accounts).values(**values)
            conn.execute(
                stmt.on_conflict_do_update(
                    index_elements=["user_id", "source", "external_account_id"],
                    set_=changes,
                )
            )
            row = conn.execute(
                select(
                    external_accounts.c.id,
                    external_accounts.c.source,
                    external_accounts.c.external_account_id,
                    external_accounts.c.last_sync_at,
                ).where(
                    external_accounts.c.user_id == user_id,
                    external_accounts.c.source == source,
                    external_accounts.c.external_account_id == external_account_id,
                )
            ).mappings().one()
        return AccountRecord(**row)

    def mark_account_synced(self, account_id: int, synced_at: datetime) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                update(external_accounts)
                .where(external_accounts.c.id == account_id)
                .values(last_sync_at=synced_at, updated_at=utcnow())
            )

    def upsert_balance(
        self,
        *,
        account_id: int,
        source: str,
        external_balance_id: str,
        currency: str,
        amount: Decimal,
    ) -> None:
        with self.engine.begin() as conn:
            stmt = insert_for(conn, balances).values(
                account_id=account_id,
                source=source,
                external_balance_id=external_balance_id,
                currency=currency,
                amount=amount,
            )
            conn.execute(
                stmt.on_conflict_do_update(
                    index_elements=["source", "external_balance_id"],
                    set_={"amount": amount, "currency": currency, "account_id": account_id, "updated_at": utcnow()},
                )
            )

    def transaction_exists(self, external_ref: str) -> bool:
        with self.engine.begin() as conn:
            found = conn.execute(
                select(transactions.c.id).where(transactions.c.external_ref == external_ref)
            ).first()
        return found is not None

    def add_transaction(self, record: TransactionRecord) -> bool:
        """Insert the transaction unless its ``external_ref`` is already stored; True when created."""
        with self.engine.begin() as conn:
            stmt = insert_for(conn, transactions).values(
                external_ref=record.external_ref,
                user_id=record.user_id,
                account_id=record.account_id,
                type=record.type,
                amount=record.amount,
                currency=record.currency,
                amount_in_base_currency=record.amount_in_base_currency,
                date=record.date,
                description=record.description,
                category_id=record.category_id,
            )
            result = conn.execute(stmt.on_conflict_do_nothing(index_elements=["external_ref"]))
        return result.rowcount == 1

    def upsert_snapshot(
        self,
        account_id: int,
        values: SnapshotValues,
        positions: Iterable[HoldingRecord] | None = None,
    ) -> int:
        """Upsert the (account_id, date) snapshot; ``positions`` replace its holdings in the same transaction."""
        fields = {
            "total_value": values.total_value,
            "total_invested": values.total_invested,
            "returns": values.returns,
            "returns_percent": values.returns_percent,
        }
        with self.engine.begin() as conn:
            stmt = insert_for(conn, portfolio_snapshots).values(account_id=account_id, date=values.date, **fields)
            conn.execute(stmt.on_conflict_do_update(index_elements=["account_id", "date"], set_=fields))
            snapshot_id = conn.execute(
                select(portfolio_snapshots.c.id).where(
                    portfolio_snapshots.c.account_id == account_id,
                    portfolio_snapshots.c.date == values.date,
                )
            ).scalar_one()
            if positions is not None:
                _replace_holdings(conn, snapshot_id, positions)
        return snapshot_id

    def replace_holdings(self, snapshot_id: int, records: Iterable[HoldingRecord]) -> int:
        with self.engine.begin() as conn:
            return _replace_holdings(conn, snapshot_id, records)

    def load_keyword_rules(self) -> list[KeywordRule]:
        with self.engine.begin() as conn:
            return load_keyword_rules(conn)

    def list_financial_assets(self, user_id: str) -> list[FinancialAssetRecord]:
        with self.engine.begin() as conn:
            rows = conn.execute(
                select(
                    financial_assets.c.id,
                    financial_assets.c.symbol,
                    financial_assets.c.name,
                    financial_assets.c.type,
                    financial_assets.c.currency,
                )
                .where(financial_assets.c.user_id == user_id)
                .order_by(financial_assets.c.type.asc(), financial_assets.c.symbol.asc())
            ).mappings().all()
        return [FinancialAssetRecord(**row) for row in rows]

    def record_asset_price(self, asset_id: int, price: Decimal, priced_at: datetime) -> None:
        day = priced_at.date()
        with self.engine.begin() as conn:
            conn.execute(
                update(financial_assets)
                .where(financial_assets.c.id == asset_id)
                .values(last_price=price, last_price_at=priced_at)
            )
            stmt = insert_for(conn, financial_asset_prices).values(asset_id=asset_id, date=day, price=price)
            conn.execute(stmt.on_conflict_do_update(index_elements=["asset_id", "date"], set_={"price": price}))

    def append_sync_log(self, entry: SyncLogEntry) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                insert(sync_logs).values(
                    user_id=entry.user_id,
                    mode=entry.mode,
                    status=entry.status,
                    transactions_added=entry.transactions_added,
                    balances_updated=entry.balances_updated,
                    snapshots_added=entry.snapshots_added,
                    prices_updated=entry.prices_updated,
                    error_message=entry.error_message,
                    created_at=utcnow(),
                )
            )

    def last_sync_info(self, user_id: str) -> tuple[datetime | None, str | None]:
        with self.engine.begin() as conn:
            row = conn.execute(
                select(sync_logs.c.created_at, sync_logs.c.status)
                .where(sync_logs.c.user_id == user_id)
                .order_by(sync_logs.c.id.desc())
                .limit(1)
            ).mappings().first()
        if not row:
            return None, None
        return row["created_at"], row["status"]

    def count_transactions(self, user_id: str) -> int:
        with self.engine.begin() as conn:
            return conn.execute(
                select(func.count()).select_from(transactions).where(transactions.c.user_id == user_id)
            ).scalar_one()


def _replace_holdings(conn: Connection, snapshot_id: int, records: Iterable[HoldingRecord]) -> int:
    rows = [
        {
            "snapshot_id": snapshot_id,
            "instrument_name": record.instrument_name,
            "instrument_type": record.instrument_type,
            "isin": record.isin,
            "shares": record.shares,
            "value": record.value,
            "weight": record.weight,
        }
        for record in records
    ]
    conn.execute(delete(holdings).where(holdings.c.snapshot_id == snapshot_id))
    if rows:
        conn.execute(insert(holdings), rows)
    return len(rows)
