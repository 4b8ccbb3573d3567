from __future__ import annotations

from datetime import datetime
from decimal import Decimal
import logging

from finsync.errors import ErrorKind, RateLimitError, SyncError
from finsync.ledger import FinancialAssetRecord, LedgerWriter
from finsync.market_data_client import SOURCE, MarketDataClient
from finsync.outcome import MarketDataStats, SourceOutcome

logger = logging.getLogger(__name__)

RATE_LIMIT_NOTE = "Rate limit reached - remaining assets skipped"


def sync_asset_prices(
    client: MarketDataClient,
    ledger: LedgerWriter,
    *,
    user_id: str,
    now: datetime,
) -> SourceOutcome[MarketDataStats]:
    """Refresh the last price of every tracked asset, one request at a time.

    A per-asset failure is recorded and the batch continues; a rate-limit
    response ends the batch and the remaining assets count as skipped.
    """
    assets = ledger.list_financial_assets(user_id)
    stats = MarketDataStats(total=len(assets))
    last_kind: ErrorKind | None = None

    for index, asset in enumerate(assets):
        try:
            price = _quote_price(client, asset)
        except RateLimitError as exc:
            stats.failed += 1
            stats.skipped = len(assets) - index - 1
            stats.errors.append(f"{asset.symbol}: {exc.message}")
            stats.errors.append(RATE_LIMIT_NOTE)
            last_kind = exc.kind
            logger.warning("Market data rate limit hit at %s; skipping %d assets", asset.symbol, stats.skipped)
            break
        except SyncError as exc:
            stats.failed += 1
            stats.errors.append(f"{asset.symbol}: {exc.message}")
            last_kind = exc.kind
            logger.warning("Could not price %s: %s", asset.symbol, exc.message)
            continue
        ledger.record_asset_price(asset.id, price, now)
        stats.updated += 1

    if stats.errors and stats.updated == 0:
        return SourceOutcome(
            source=SOURCE, stats=stats, ok=False, error_kind=last_kind, error="; ".join(stats.errors)
        )
    return SourceOutcome.success(SOURCE, stats)


def _quote_price(client: MarketDataClient, asset: FinancialAssetRecord) -> Decimal:
    if asset.type.upper() == "CRYPTO":
        return client.get_crypto_quote(asset.symbol, asset.currency).price
    return client.get_stock_quote(asset.symbol, asset.currency).price
