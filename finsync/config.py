from __future__ import annotations

from dataclasses import dataclass
import logging
import os

from sqlalchemy.engine import Engine

from finsync.currency_conversion import CurrencyRateCache, normalize_currency
from finsync.investment_client import InvestmentClient
from finsync.ledger import LedgerWriter
from finsync.market_data_client import MarketDataClient
from finsync.orchestrator import SyncOrchestrator
from finsync.payments_client import PaymentsClient
from finsync.rate_limiter import MinIntervalRateLimiter

logger = logging.getLogger(__name__)


def _env(name: str, default: str | None = None) -> str | None:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _env_float(name: str, default: float) -> float:
    raw = _env(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r", name, raw)
        return default


def get_base_currency() -> str:
    raw = _env("BASE_CURRENCY", "EUR")
    try:
        return normalize_currency(raw)
    except ValueError:
        return "EUR"


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///./finsync.db"
    frontend_origin: str = "http://localhost:3000"
    base_currency: str = "EUR"
    log_level: str = "INFO"
    http_timeout: float = 15.0
    payments_token: str | None = None
    payments_environment: str = "production"
    investment_token: str | None = None
    investment_username: str | None = None
    investment_password: str | None = None
    investment_document: str | None = None
    market_data_api_key: str | None = None
    market_data_min_interval: float = 1.1

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=_env("DATABASE_URL", cls.database_url),
            frontend_origin=_env("FRONTEND_ORIGIN", cls.frontend_origin),
            base_currency=get_base_currency(),
            log_level=_env("LOG_LEVEL", cls.log_level).upper(),
            http_timeout=_env_float("HTTP_TIMEOUT_SECONDS", cls.http_timeout),
            payments_token=_env("PAYMENTS_API_TOKEN"),
            payments_environment=_env("PAYMENTS_ENVIRONMENT", cls.payments_environment),
            investment_token=_env("INVESTMENT_API_TOKEN"),
            investment_username=_env("INVESTMENT_USERNAME"),
            investment_password=_env("INVESTMENT_PASSWORD"),
            investment_document=_env("INVESTMENT_DOCUMENT"),
            market_data_api_key=_env("MARKET_DATA_API_KEY"),
            market_data_min_interval=_env_float("MARKET_DATA_MIN_INTERVAL", cls.market_data_min_interval),
        )

    @property
    def payments_configured(self) -> bool:
        return bool(self.payments_token)

    @property
    def investment_configured(self) -> bool:
        has_credentials = bool(self.investment_username and self.investment_password and self.investment_document)
        return bool(self.investment_token) or has_credentials

    @property
    def market_data_configured(self) -> bool:
        return bool(self.market_data_api_key)


def build_orchestrator(settings: Settings, engine: Engine) -> SyncOrchestrator:
    """Construct each configured client once and hand them to a new orchestrator."""
    payments = None
    if settings.payments_configured:
        payments = PaymentsClient(
            settings.payments_token,
            environment=settings.payments_environment,
            timeout=settings.http_timeout,
        )

    rates = CurrencyRateCache(engine, payments)

    investments = None
    if settings.investment_configured:
        investments = InvestmentClient(
            token=settings.investment_token,
            username=settings.investment_username,
            password=settings.investment_password,
            document=settings.investment_document,
            timeout=settings.http_timeout,
        )

    market_data = None
    if settings.market_data_configured:
        market_data = MarketDataClient(
            settings.market_data_api_key,
            limiter=MinIntervalRateLimiter(settings.market_data_min_interval),
            fx=rates if payments is not None else None,
            timeout=settings.http_timeout,
        )

    return SyncOrchestrator(
        LedgerWriter(engine),
        rates,
        payments=payments,
        investments=investments,
        market_data=market_data,
        base_currency=settings.base_currency,
    )
