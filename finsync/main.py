import logging
from datetime import datetime
from decimal import Decimal

from fastapi import Depends, FastAPI, HTTPException, Header, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from sqlalchemy import create_engine

from finsync.config import Settings, build_orchestrator
from finsync.errors import RateLimitError, SyncError
from finsync.market_data_client import search_crypto_symbols
from finsync.orchestrator import SyncOrchestrator, SyncResult
from finsync.outcome import MarketDataStats, SourceOutcome
from finsync.store import init_db
from finsync.sync_window import SyncMode

settings = Settings.from_env()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("finsync")

app = FastAPI()

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_origin],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

connect_args = {}
if settings.database_url.startswith("sqlite"):
    connect_args = {"check_same_thread": False}

engine = create_engine(settings.database_url, connect_args=connect_args)
orchestrator = build_orchestrator(settings, engine)


@app.on_event("startup")
def startup() -> None:
    init_db(engine)


class SourceOutcomeResponse(BaseModel):
    success: bool
    error_kind: str | None = None
    error: str | None = None


class PaymentsSyncResponse(SourceOutcomeResponse):
    profiles_synced: int
    profiles_skipped: int = 0
    transactions_added: int
    balances_updated: int


class InvestmentSyncResponse(SourceOutcomeResponse):
    accounts_synced: int
    accounts_skipped: int = 0
    snapshots_added: int


class PriceSyncResponse(SourceOutcomeResponse):
    updated: int
    total: int
    skipped: int
    errors: list[str] | None = None


class SyncResponse(BaseModel):
    success: bool
    mode: str
    payments: PaymentsSyncResponse | None = None
    investments: InvestmentSyncResponse | None = None
    prices: PriceSyncResponse | None = None
    error: str | None = None
    summary: str


class SyncStatusResponse(BaseModel):
    last_sync_at: datetime | None = None
    last_sync_status: str | None = None
    payments_configured: bool
    investments_configured: bool
    market_data_configured: bool


class SymbolSearchResult(BaseModel):
    symbol: str
    name: str
    type: str
    region: str
    currency: str
    match_score: Decimal


class SymbolSearchResponse(BaseModel):
    results: list[SymbolSearchResult]


def get_orchestrator() -> SyncOrchestrator:
    return orchestrator


def get_user_id(x_user_id: str | None = Header(None, alias="x-user-id")) -> str:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing user identity.")
    return x_user_id.strip()


def _outcome_fields(outcome: SourceOutcome) -> dict:
    return {
        "success": outcome.ok,
        "error_kind": outcome.error_kind.value if outcome.error_kind else None,
        "error": outcome.error,
    }


def _price_response(outcome: SourceOutcome[MarketDataStats]) -> PriceSyncResponse:
    stats = outcome.stats
    return PriceSyncResponse(
        **_outcome_fields(outcome),
        updated=stats.updated,
        total=stats.total,
        skipped=stats.skipped,
        errors=stats.errors or None,
    )


def to_sync_response(result: SyncResult) -> SyncResponse:
    payments = None
    if result.payments is not None:
        stats = result.payments.stats
        payments = PaymentsSyncResponse(
            **_outcome_fields(result.payments),
            profiles_synced=stats.profiles_synced,
            profiles_skipped=stats.profiles_skipped,
            transactions_added=stats.transactions_added,
            balances_updated=stats.balances_updated,
        )
    investments = None
    if result.investments is not None:
        stats = result.investments.stats
        investments = InvestmentSyncResponse(
            **_outcome_fields(result.investments),
            accounts_synced=stats.accounts_synced,
            accounts_skipped=stats.accounts_skipped,
            snapshots_added=stats.snapshots_added,
        )
    prices = _price_response(result.market_data) if result.market_data is not None else None
    return SyncResponse(
        success=result.success,
        mode=result.mode.value,
        payments=payments,
        investments=investments,
        prices=prices,
        error=result.error,
        summary=result.summary,
    )


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.post("/sync", response_model=SyncResponse)
def trigger_sync(
    mode: SyncMode = Query(SyncMode.LIGHT),
    user_id: str = Depends(get_user_id),
    sync: SyncOrchestrator = Depends(get_orchestrator),
) -> SyncResponse:
    result = sync.run_sync(user_id, mode)
    return to_sync_response(result)


@app.get("/sync/status", response_model=SyncStatusResponse)
def sync_status(
    user_id: str = Depends(get_user_id),
    sync: SyncOrchestrator = Depends(get_orchestrator),
) -> SyncStatusResponse:
    last_sync_at, last_status = sync.ledger.last_sync_info(user_id)
    return SyncStatusResponse(
        last_sync_at=last_sync_at,
        last_sync_status=last_status,
        payments_configured=sync.payments is not None,
        investments_configured=sync.investments is not None,
        market_data_configured=sync.market_data is not None,
    )


@app.post("/financial-assets/sync", response_model=PriceSyncResponse)
def sync_financial_assets(
    user_id: str = Depends(get_user_id),
    sync: SyncOrchestrator = Depends(get_orchestrator),
) -> PriceSyncResponse:
    if sync.market_data is None:
        raise HTTPException(status_code=503, detail="Market data API not configured.")
    return _price_response(sync.sync_prices(user_id))


@app.get("/financial-assets/search", response_model=SymbolSearchResponse)
def search_financial_assets(
    q: str = Query(..., min_length=1),
    type: str | None = Query(None),
    user_id: str = Depends(get_user_id),
    sync: SyncOrchestrator = Depends(get_orchestrator),
) -> SymbolSearchResponse:
    asset_type = (type or "all").lower()
    if asset_type == "crypto":
        matches = search_crypto_symbols(q)
        return SymbolSearchResponse(results=[SymbolSearchResult(**vars(match)) for match in matches])

    if sync.market_data is None:
        raise HTTPException(status_code=503, detail="Market data API not configured.")
    try:
        matches = sync.market_data.search_symbols(q)
    except RateLimitError as exc:
        raise HTTPException(status_code=429, detail="API rate limit reached. Please try again later.") from exc
    except SyncError as exc:
        logger.warning("Symbol search failed: %s", exc.message)
        raise HTTPException(status_code=502, detail="Failed to search symbols.") from exc

    results = []
    for match in matches:
        if asset_type == "stock" and match.type != "Equity":
            continue
        if asset_type == "etf" and match.type != "ETF":
            continue
        results.append(
            SymbolSearchResult(
                symbol=match.symbol,
                name=match.name,
                type="ETF" if match.type == "ETF" else "STOCK",
                region=match.region,
                currency=match.currency,
                match_score=match.match_score,
            )
        )
    return SymbolSearchResponse(results=results)
