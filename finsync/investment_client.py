from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
import logging
from typing import Any, Callable
from urllib.request import urlopen

from finsync.errors import AuthError, ValidationError
from finsync.http_client import JsonHttpClient, Opener
from finsync.timeutil import parse_day, utcnow

logger = logging.getLogger(__name__)

SOURCE = "investment"
BASE_URL = "https://api.indexacapital.com"
TOKEN_HEADER = "X-AUTH-TOKEN"
# Tokens live about 16 hours upstream; treat them as expired an hour early.
TOKEN_LIFETIME = timedelta(hours=15)
DEFAULT_RISK_LEVEL = 5
ZERO = Decimal("0")


@dataclass(frozen=True)
class InvestmentAccount:
    account_number: str
    type: str
    status: str
    risk_level: int
    currency: str | None = None


@dataclass(frozen=True)
class HoldingPosition:
    instrument_name: str
    instrument_type: str
    isin: str | None
    shares: Decimal
    value: Decimal
    price: Decimal | None = None


@dataclass(frozen=True)
class PortfolioPosition:
    account_number: str
    date: date
    total_value: Decimal
    cash_amount: Decimal
    instruments_value: Decimal
    instruments_cost: Decimal
    inflows: Decimal = ZERO
    outflows: Decimal = ZERO
    holdings: list[HoldingPosition] = field(default_factory=list)

    @property
    def total_invested(self) -> Decimal:
        return self.instruments_cost + self.cash_amount


@dataclass(frozen=True)
class PerformancePoint:
    date: date
    total_value: Decimal
    total_invested: Decimal
    returns: Decimal
    returns_percent: Decimal


def returns_for(total_value: Decimal, total_invested: Decimal) -> tuple[Decimal, Decimal]:
    returns = total_value - total_invested
    if total_invested > 0:
        return returns, returns / total_invested * 100
    return returns, ZERO


class InvestmentClient:
    """Investment platform client with JWT refresh.

    Either a static token or username/password/document credentials are
    required. With credentials the client authenticates lazily and again
    whenever the locally tracked expiry passes or the server rejects the token.
    """

    def __init__(
        self,
        *,
        token: str | None = None,
        username: str | None = None,
        password: str | None = None,
        document: str | None = None,
        timeout: float = 15.0,
        opener: Opener = urlopen,
        now: Callable[[], datetime] = utcnow,
    ) -> None:
        self.username = username or ""
        self.password = password or ""
        self.document = document or ""
        if not token and not self.has_credentials:
            raise ValueError("Investment API requires either a token or username/password/document credentials.")
        self.token = token or ""
        self.token_expires_at: datetime | None = None
        self._now = now
        self.http = JsonHttpClient(base_url=BASE_URL, source=SOURCE, timeout=timeout, opener=opener)

    @property
    def has_credentials(self) -> bool:
        return bool(self.username and self.password and self.document)

    def authenticate(self, username: str | None = None, password: str | None = None,
                     document: str | None = None) -> str:
        if username is not None:
            self.username, self.password, self.document = username, password or "", document or ""
        if not self.has_credentials:
            raise AuthError("Cannot re-authenticate without credentials", source=SOURCE)

        payload = self.http.post(
            "/auth/authenticate",
            body={"username": self.username, "document": self.document, "password": self.password},
        ) or {}
        token = payload.get("token")
        if not token:
            raise AuthError("Investment auth response missing token", source=SOURCE)
        self.token = token
        self.token_expires_at = self._now() + TOKEN_LIFETIME
        logger.info("Authenticated against investment API; token valid until %s", self.token_expires_at)
        return token

    def is_token_expired(self) -> bool:
        if self.token_expires_at is None:
            return False
        return self._now() >= self.token_expires_at

    def _ensure_token(self) -> None:
        if not self.token or self.is_token_expired():
            self.authenticate()

    def _invalidate_token(self) -> None:
        self.token_expires_at = self._now()

    def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        self._ensure_token()
        try:
            return self.http.get(path, params=params, headers={TOKEN_HEADER: self.token})
        except AuthError:
            logger.info("Investment API rejected token for %s; re-authenticating once", path)
            self._invalidate_token()
            self._ensure_token()
        return self.http.get(path, params=params, headers={TOKEN_HEADER: self.token})

    def get_current_user_accounts(self) -> list[dict[str, Any]]:
        user = self._get("/users/me") or {}
        return list(user.get("accounts") or [])

    def get_account(self, account_number: str) -> InvestmentAccount:
        raw = self._get(f"/accounts/{account_number}") or {}
        profile = raw.get("profile") or {}
        risk = profile.get("selected_risk")
        if risk is None:
            risk = (profile.get("risk") or {}).get("total", DEFAULT_RISK_LEVEL)
        return InvestmentAccount(
            account_number=raw.get("account_number") or account_number,
            type=raw.get("type") or "unknown",
            status=raw.get("status") or "unknown",
            risk_level=int(risk),
            currency=raw.get("currency"),
        )

    def get_portfolio(self, account_number: str) -> PortfolioPosition:
        raw = self._get(f"/accounts/{account_number}/portfolio") or {}
        portfolio = raw.get("portfolio")
        if not isinstance(portfolio, dict) or not portfolio.get("date"):
            raise ValidationError(f"Portfolio for {account_number} missing summary", source=SOURCE)

        holdings = []
        for instrument_account in raw.get("instrument_accounts") or []:
            for position in instrument_account.get("positions") or []:
                instrument = position.get("instrument") or {}
                holdings.append(
                    HoldingPosition(
                        instrument_name=instrument.get("name") or "Unknown instrument",
                        instrument_type=instrument.get("asset_class") or "unknown",
                        isin=instrument.get("isin_code") or None,
                        shares=_decimal(position.get("titles")),
                        value=_decimal(position.get("amount")),
                        price=_decimal(position.get("price")) if position.get("price") is not None else None,
                    )
                )

        return PortfolioPosition(
            account_number=portfolio.get("account_number") or account_number,
            date=parse_day(portfolio["date"]),
            total_value=_decimal(portfolio.get("total_amount")),
            cash_amount=_decimal(portfolio.get("cash_amount")),
            instruments_value=_decimal(portfolio.get("instruments_amount")),
            instruments_cost=_decimal(portfolio.get("instruments_cost")),
            inflows=_decimal(portfolio.get("inflows")),
            outflows=_decimal(portfolio.get("outflows")),
            holdings=holdings,
        )

    def _get_performance_raw(self, account_number: str, start: date | datetime | None = None,
                             end: date | datetime | None = None) -> dict[str, Any]:
        params = {
            "from": _day_param(start),
            "to": _day_param(end),
        }
        return self._get(f"/accounts/{account_number}/performance", params=params) or {}

    def get_performance_history(self, account_number: str, start: date | datetime | None = None,
                                end: date | datetime | None = None) -> list[PerformancePoint]:
        raw = self._get_performance_raw(account_number, start, end)
        today = self._now().date()
        points = []
        for snapshot in raw.get("portfolios") or []:
            if not isinstance(snapshot, dict):
                continue
            date_str = snapshot.get("date") or snapshot.get("created_at")
            if not date_str:
                continue
            try:
                point_date = parse_day(date_str)
            except ValueError:
                logger.warning("Skipping performance point with unparseable date %r", date_str)
                continue
            try:
                total_value = _decimal(snapshot.get("total_amount"))
                total_invested = _decimal(snapshot.get("instruments_cost")) + _decimal(snapshot.get("cash_amount"))
            except ValidationError as exc:
                logger.warning("Skipping performance point for %s: %s", date_str, exc.message)
                continue
            # Future-dated entries are projections, not history.
            if point_date > today or total_value <= 0:
                continue

            returns, returns_percent = returns_for(total_value, total_invested)
            points.append(
                PerformancePoint(
                    date=point_date,
                    total_value=total_value,
                    total_invested=total_invested,
                    returns=returns,
                    returns_percent=returns_percent,
                )
            )

        points.sort(key=lambda point: point.date)
        return points

    def get_net_contributions(self, account_number: str) -> Decimal:
        raw = self._get_performance_raw(account_number)
        net_amounts = raw.get("net_amounts")
        if isinstance(net_amounts, dict) and net_amounts:
            latest_key = sorted(net_amounts)[-1]
            return _decimal(net_amounts[latest_key])
        return ZERO


def _decimal(value: Any) -> Decimal:
    if value is None or value == "":
        return ZERO
    try:
        return Decimal(str(value))
    except ArithmeticError as exc:
        raise ValidationError(f"Invalid numeric value: {value!r}", source=SOURCE) from exc


def _day_param(value: date | datetime | None) -> str | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        value = value.date()
    return value.isoformat()
