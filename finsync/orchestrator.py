from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Callable, TypeVar

from finsync.classification_engine import KeywordCategorizer
from finsync.currency_conversion import CurrencyRateCache
from finsync.investment_client import InvestmentClient
from finsync.investment_sync import sync_investments
from finsync.ledger import LedgerWriter, SyncLogEntry
from finsync.market_data_client import MarketDataClient
from finsync.market_data_sync import sync_asset_prices
from finsync.outcome import InvestmentStats, MarketDataStats, PaymentsStats, SourceOutcome
from finsync.payments_client import PaymentsClient
from finsync.payments_sync import sync_payments
from finsync.sync_window import SyncMode
from finsync.timeutil import utcnow

logger = logging.getLogger(__name__)

StatsT = TypeVar("StatsT")


@dataclass
class SyncResult:
    success: bool
    mode: SyncMode
    payments: SourceOutcome[PaymentsStats] | None
    investments: SourceOutcome[InvestmentStats] | None
    market_data: SourceOutcome[MarketDataStats] | None
    error: str | None
    summary: str

    @property
    def transactions_added(self) -> int:
        return self.payments.stats.transactions_added if self.payments else 0

    @property
    def balances_updated(self) -> int:
        return self.payments.stats.balances_updated if self.payments else 0

    @property
    def profiles_synced(self) -> int:
        return self.payments.stats.profiles_synced if self.payments else 0

    @property
    def accounts_synced(self) -> int:
        return self.investments.stats.accounts_synced if self.investments else 0

    @property
    def snapshots_added(self) -> int:
        return self.investments.stats.snapshots_added if self.investments else 0

    @property
    def prices_updated(self) -> int:
        return self.market_data.stats.updated if self.market_data else 0

    @property
    def status(self) -> str:
        if not self.success:
            return "FAILED"
        if self.error:
            return "PARTIAL"
        return "SUCCESS"


class SyncOrchestrator:
    """Runs one sync across the configured sources for one user.

    Sources run one after another: payments, investments, market data. Each
    step returns a SourceOutcome; a failing source never stops the next one.
    Market data does not count towards overall success.
    """

    def __init__(
        self,
        ledger: LedgerWriter,
        rates: CurrencyRateCache,
        *,
        payments: PaymentsClient | None = None,
        investments: InvestmentClient | None = None,
        market_data: MarketDataClient | None = None,
        base_currency: str = "EUR",
        now: Callable[[], datetime] = utcnow,
    ) -> None:
        self.ledger = ledger
        self.rates = rates
        self.payments = payments
        self.investments = investments
        self.market_data = market_data
        self.base_currency = base_currency
        self._now = now

    def run_sync(self, user_id: str, mode: SyncMode | str = SyncMode.LIGHT) -> SyncResult:
        mode = SyncMode(mode)
        logger.info("Starting %s sync for user %s", mode.value, user_id)

        payments_outcome = None
        if self.payments is not None:
            payments_outcome = self._run_step("payments", PaymentsStats, lambda: self._sync_payments(user_id, mode))

        investment_outcome = None
        if self.investments is not None:
            investment_outcome = self._run_step(
                "investment",
                InvestmentStats,
                lambda: sync_investments(
                    self.investments, self.ledger, user_id=user_id, mode=mode, now=self._now()
                ),
            )

        market_outcome = None
        if self.market_data is not None:
            market_outcome = self.sync_prices(user_id)

        result = aggregate(mode, payments_outcome, investment_outcome, market_outcome)
        self.ledger.append_sync_log(
            SyncLogEntry(
                user_id=user_id,
                mode=mode.value,
                status=result.status,
                transactions_added=result.transactions_added,
                balances_updated=result.balances_updated,
                snapshots_added=result.snapshots_added,
                prices_updated=result.prices_updated,
                error_message=result.error,
            )
        )
        logger.info("Finished sync for user %s: %s", user_id, result.summary)
        return result

    def _sync_payments(self, user_id: str, mode: SyncMode) -> SourceOutcome[PaymentsStats]:
        categorizer = KeywordCategorizer(self.ledger.load_keyword_rules())
        return sync_payments(
            self.payments,
            self.ledger,
            user_id=user_id,
            mode=mode,
            rates=self.rates,
            categorizer=categorizer,
            base_currency=self.base_currency,
            now=self._now(),
        )

    def sync_prices(self, user_id: str) -> SourceOutcome[MarketDataStats]:
        if self.market_data is None:
            raise RuntimeError("Market data source is not configured.")
        return self._run_step(
            "market_data",
            MarketDataStats,
            lambda: sync_asset_prices(self.market_data, self.ledger, user_id=user_id, now=self._now()),
        )

    def _run_step(
        self,
        source: str,
        empty_stats: Callable[[], StatsT],
        step: Callable[[], SourceOutcome[StatsT]],
    ) -> SourceOutcome[StatsT]:
        try:
            return step()
        except Exception as exc:
            # Steps convert provider errors themselves; anything reaching here is a defect.
            logger.exception("Unexpected failure in %s sync step", source)
            return SourceOutcome.failure(source, empty_stats(), exc)


def aggregate(
    mode: SyncMode,
    payments: SourceOutcome[PaymentsStats] | None,
    investments: SourceOutcome[InvestmentStats] | None,
    market_data: SourceOutcome[MarketDataStats] | None,
) -> SyncResult:
    errors = []
    # A rate-limited core source keeps ok=True but still reports its error.
    if payments is not None and payments.error:
        errors.append(f"Payments: {payments.error}")
    if investments is not None and investments.error:
        errors.append(f"Investments: {investments.error}")
    if market_data is not None and not market_data.ok:
        errors.append("Prices: sync failed")

    payments_ok = payments.ok if payments is not None else True
    investments_ok = investments.ok if investments is not None else True
    result = SyncResult(
        success=payments_ok and investments_ok,
        mode=mode,
        payments=payments,
        investments=investments,
        market_data=market_data,
        error="; ".join(errors) if errors else None,
        summary="",
    )
    result.summary = format_sync_summary(result)
    return result


def format_sync_summary(result: SyncResult) -> str:
    parts = []
    if result.payments is not None:
        stats = result.payments.stats
        part = f"Payments: {stats.transactions_added} transactions, {stats.balances_updated} balances"
        if not result.payments.ok:
            part += " (failed)"
        elif result.payments.rate_limited:
            part += f" (rate limited, {stats.profiles_skipped} skipped)"
        parts.append(part)

    if result.investments is not None:
        stats = result.investments.stats
        part = f"Investments: {stats.accounts_synced} accounts, {stats.snapshots_added} snapshots"
        if not result.investments.ok:
            part += " (failed)"
        elif result.investments.rate_limited:
            part += f" (rate limited, {stats.accounts_skipped} skipped)"
        parts.append(part)

    if result.market_data is not None:
        stats = result.market_data.stats
        if stats.updated > 0:
            parts.append(f"Prices: {stats.updated}/{stats.total} updated")
        elif stats.total > 0 and stats.errors:
            parts.append("Prices: sync failed")

    if not parts:
        return "No data synced"
    return " | ".join(parts)
