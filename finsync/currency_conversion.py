from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
import logging
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.engine import Engine

from finsync.errors import NotFoundError
from finsync.schema import fx_rates
from finsync.store import insert_for
from finsync.timeutil import calendar_day

logger = logging.getLogger(__name__)


class ExchangeRateSource(Protocol):
    def get_exchange_rate(self, source: str, target: str) -> Decimal: ...


class CurrencyRateCache:
    """FX rates memoized by (from, to, calendar day).

    A rate cached for a day is never refreshed; historical rates are treated as
    fixed. Misses go to ``source`` and are written to the ``fx_rates`` table.
    """

    def __init__(self, engine: Engine, source: ExchangeRateSource | None) -> None:
        self.engine = engine
        self.source = source
        self._memory: dict[tuple[str, str, date], Decimal] = {}

    def rate(self, from_currency: str, to_currency: str, when: date | datetime) -> Decimal:
        normalized_from = normalize_currency(from_currency)
        normalized_to = normalize_currency(to_currency)
        if normalized_from == normalized_to:
            return Decimal("1")

        day = calendar_day(when)
        key = (normalized_from, normalized_to, day)
        cached = self._memory.get(key)
        if cached is not None:
            return cached

        with self.engine.begin() as conn:
            stored = conn.execute(
                select(fx_rates.c.rate).where(
                    fx_rates.c.from_currency == normalized_from,
                    fx_rates.c.to_currency == normalized_to,
                    fx_rates.c.date == day,
                )
            ).scalar_one_or_none()
        if stored is not None:
            self._memory[key] = Decimal(stored)
            return self._memory[key]

        if self.source is None:
            raise NotFoundError(f"No rate source configured for {normalized_from}/{normalized_to}")
        fetched = self.source.get_exchange_rate(normalized_from, normalized_to)
        with self.engine.begin() as conn:
            stmt = insert_for(conn, fx_rates).values(
                from_currency=normalized_from,
                to_currency=normalized_to,
                date=day,
                rate=fetched,
            )
            conn.execute(stmt.on_conflict_do_nothing(index_elements=["from_currency", "to_currency", "date"]))
        logger.debug("Cached %s/%s rate %s for %s", normalized_from, normalized_to, fetched, day)
        self._memory[key] = fetched
        return fetched

    def convert(
        self,
        amount: Decimal | int | float | str,
        from_currency: str,
        to_currency: str,
        when: date | datetime,
    ) -> Decimal:
        return _coerce_amount(amount) * self.rate(from_currency, to_currency, when)


def normalize_currency(value: str) -> str:
    normalized = value.strip().upper()
    if len(normalized) != 3 or not normalized.isalpha():
        raise ValueError("Currency must be a 3-letter ISO 4217 code.")
    return normalized


def _coerce_amount(amount: Decimal | int | float | str) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))
