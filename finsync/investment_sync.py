from __future__ import annotations

from datetime import datetime
from decimal import Decimal
import logging

from finsync.errors import RateLimitError, SyncError
from finsync.investment_client import SOURCE, InvestmentClient, PortfolioPosition, returns_for
from finsync.ledger import HoldingRecord, LedgerWriter, SnapshotValues
from finsync.outcome import InvestmentStats, SourceOutcome
from finsync.sync_window import SyncMode, compute_window

logger = logging.getLogger(__name__)


def sync_investments(
    client: InvestmentClient,
    ledger: LedgerWriter,
    *,
    user_id: str,
    mode: SyncMode,
    now: datetime,
) -> SourceOutcome[InvestmentStats]:
    """Sync every investment account in turn.

    A rate-limit response stops the batch; the accounts not finished are
    counted as skipped and the outcome stays ok.
    """
    stats = InvestmentStats()
    account_numbers: list[str] = []
    try:
        account_numbers = [
            str(summary["account_number"])
            for summary in client.get_current_user_accounts()
            if summary.get("account_number")
        ]
        for account_number in account_numbers:
            _sync_account(client, ledger, account_number, stats, user_id=user_id, mode=mode, now=now)
            stats.accounts_synced += 1
    except RateLimitError as exc:
        stats.accounts_skipped = len(account_numbers) - stats.accounts_synced
        logger.warning(
            "Investment rate limit reached; %d accounts skipped: %s", stats.accounts_skipped, exc.message
        )
        return SourceOutcome.stopped(SOURCE, stats, exc)
    except SyncError as exc:
        logger.warning("Investment sync failed: %s", exc.message)
        return SourceOutcome.failure(SOURCE, stats, exc)
    return SourceOutcome.success(SOURCE, stats)


def _sync_account(
    client: InvestmentClient,
    ledger: LedgerWriter,
    account_number: str,
    stats: InvestmentStats,
    *,
    user_id: str,
    mode: SyncMode,
    now: datetime,
) -> None:
    details = client.get_account(account_number)
    portfolio = client.get_portfolio(details.account_number)
    net_contributions = client.get_net_contributions(details.account_number)

    account = ledger.upsert_account(
        user_id=user_id,
        source=SOURCE,
        external_account_id=details.account_number,
        account_type=details.type,
        status=details.status,
        risk_level=details.risk_level,
        net_contributions=net_contributions if net_contributions > 0 else None,
    )

    today = now.date()
    snapshot_date = min(portfolio.date, today)
    returns, returns_percent = returns_for(portfolio.total_value, portfolio.total_invested)
    ledger.upsert_snapshot(
        account.id,
        SnapshotValues(
            date=snapshot_date,
            total_value=portfolio.total_value,
            total_invested=portfolio.total_invested,
            returns=returns,
            returns_percent=returns_percent,
        ),
        positions=holding_records(portfolio),
    )
    stats.snapshots_added += 1

    window = compute_window(mode, account.last_sync_at, now)
    points = client.get_performance_history(details.account_number, window.start, window.end)
    for point in points:
        if point.date == snapshot_date:
            continue
        ledger.upsert_snapshot(
            account.id,
            SnapshotValues(
                date=point.date,
                total_value=point.total_value,
                total_invested=point.total_invested,
                returns=point.returns,
                returns_percent=point.returns_percent,
            ),
        )
        stats.snapshots_added += 1

    ledger.mark_account_synced(account.id, now)
    logger.info("Synced investment account %s with %d history points", details.account_number, len(points))


def holding_records(portfolio: PortfolioPosition) -> list[HoldingRecord]:
    """Non-empty positions with their weight in percent of the summed position value."""
    positions = [holding for holding in portfolio.holdings if holding.value > 0 and holding.shares > 0]
    total = sum((holding.value for holding in positions), Decimal("0"))
    return [
        HoldingRecord(
            instrument_name=holding.instrument_name,
            instrument_type=holding.instrument_type,
            isin=holding.isin,
            shares=holding.shares,
            value=holding.value,
            weight=holding.value / total * 100 if total > 0 else Decimal("0"),
        )
        for holding in positions
    ]
