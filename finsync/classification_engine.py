"""
Transaction Auto-Categorization Engine

Assigns a category to a synced transaction by matching its description
against keyword rules stored in the ``category_keywords`` table.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.engine import Connection

from finsync.schema import category_keywords


@dataclass(frozen=True)
class KeywordRule:
    keyword: str
    category_id: int


def load_keyword_rules(conn: Connection) -> list[KeywordRule]:
    """
    Load every keyword rule.

    No ORDER BY is applied: rules form an unordered set, and the row order the
    database returns is the order in which they are tried.

    Args:
        conn: Database connection

    Returns:
        List of KeywordRule
    """
    rows = conn.execute(
        select(category_keywords.c.keyword, category_keywords.c.category_id)
    ).mappings().all()
    return [KeywordRule(keyword=row["keyword"], category_id=row["category_id"]) for row in rows]


class KeywordCategorizer:
    """
    First-match keyword categorizer.

    A description matches a rule when the rule's keyword occurs anywhere in it,
    ignoring case. When several rules match, the first one scanned wins; rules
    carry no priority.
    """

    def __init__(self, rules: Iterable[KeywordRule]) -> None:
        self.rules = [
            KeywordRule(keyword=rule.keyword.strip().lower(), category_id=rule.category_id)
            for rule in rules
            if rule.keyword and rule.keyword.strip()
        ]

    def categorize(self, description: str) -> Optional[int]:
        """
        Return the category id of the first rule matching the description.

        Args:
            description: Normalized transaction description

        Returns:
            Category id, or None if no rule matches
        """
        if not description:
            return None
        search_text = description.lower()
        for rule in self.rules:
            if rule.keyword in search_text:
                return rule.category_id
        return None
