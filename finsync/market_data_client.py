from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
import logging
from typing import Any, Protocol
from urllib.request import urlopen

from finsync.errors import ApiError, NotFoundError, RateLimitError, ValidationError
from finsync.http_client import JsonHttpClient, Opener
from finsync.rate_limiter import MinIntervalRateLimiter
from finsync.timeutil import utcnow

logger = logging.getLogger(__name__)

SOURCE = "market_data"
BASE_URL = "https://www.alphavantage.co/query"
QUOTE_CURRENCY = "USD"
SEARCH_LIMIT = 10

COMMON_CRYPTO_SYMBOLS: tuple[tuple[str, str], ...] = (
    ("BTC", "Bitcoin"),
    ("ETH", "Ethereum"),
    ("SOL", "Solana"),
    ("XRP", "XRP"),
    ("DOGE", "Dogecoin"),
    ("ADA", "Cardano"),
    ("AVAX", "Avalanche"),
    ("DOT", "Polkadot"),
    ("MATIC", "Polygon"),
    ("LINK", "Chainlink"),
    ("UNI", "Uniswap"),
    ("LTC", "Litecoin"),
    ("ATOM", "Cosmos"),
    ("XLM", "Stellar"),
    ("ALGO", "Algorand"),
)


class RateSource(Protocol):
    def rate(self, from_currency: str, to_currency: str, when: date) -> Decimal: ...


@dataclass(frozen=True)
class StockQuote:
    symbol: str
    price: Decimal
    change: Decimal
    change_percent: Decimal
    latest_trading_day: str
    previous_close: Decimal
    currency: str


@dataclass(frozen=True)
class CryptoQuote:
    symbol: str
    price: Decimal
    currency: str
    last_refreshed: str | None = None


@dataclass(frozen=True)
class SymbolMatch:
    symbol: str
    name: str
    type: str
    region: str
    currency: str
    match_score: Decimal


@dataclass(frozen=True)
class PricePoint:
    date: date
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume: Decimal


class MarketDataClient:
    """Market-data API client.

    The provider answers HTTP 200 for logical failures, so every payload is
    checked for the ``Error Message``, ``Note`` and ``Information`` fields.
    All requests pass through ``self.limiter``.
    """

    def __init__(
        self,
        api_key: str,
        *,
        limiter: MinIntervalRateLimiter | None = None,
        fx: RateSource | None = None,
        timeout: float = 15.0,
        opener: Opener = urlopen,
    ) -> None:
        if not api_key:
            raise ValueError("Market data API key is required.")
        self.api_key = api_key
        self.limiter = limiter or MinIntervalRateLimiter()
        self.fx = fx
        self.http = JsonHttpClient(base_url=BASE_URL, source=SOURCE, timeout=timeout, opener=opener)

    def _request(self, params: dict[str, str], *, lookup: bool = False) -> dict[str, Any]:
        self.limiter.wait()
        payload = self.http.get("", params={**params, "apikey": self.api_key})
        if not isinstance(payload, dict):
            raise ValidationError("Market data API returned an unexpected payload", source=SOURCE)

        if payload.get("Error Message"):
            # For symbol lookups the provider reports an unknown symbol this way.
            if lookup:
                raise NotFoundError(payload["Error Message"], source=SOURCE, status=200)
            raise ApiError(payload["Error Message"], source=SOURCE, status=200)
        if payload.get("Note"):
            raise RateLimitError(f"Rate limit exceeded: {payload['Note']}", source=SOURCE, status=200)
        if payload.get("Information"):
            information = payload["Information"]
            if "rate limit" in information.lower() or "requests per" in information.lower():
                raise RateLimitError(f"Rate limit exceeded: {information}", source=SOURCE, status=200)
            raise ApiError(information, source=SOURCE, status=200)
        return payload

    def get_stock_quote(self, symbol: str, target_currency: str | None = None) -> StockQuote:
        raw = self._request({"function": "GLOBAL_QUOTE", "symbol": symbol.upper()}, lookup=True)
        quote = raw.get("Global Quote") or {}
        if not quote.get("05. price"):
            raise NotFoundError(f"No quote found for symbol: {symbol}", source=SOURCE)

        price = _decimal(quote["05. price"])
        change = _decimal(quote.get("09. change"))
        previous_close = _decimal(quote.get("08. previous close"))
        currency = QUOTE_CURRENCY
        if target_currency and target_currency.upper() != QUOTE_CURRENCY:
            currency = target_currency.upper()
            rate = self._conversion_rate(QUOTE_CURRENCY, currency)
            price *= rate
            change *= rate
            previous_close *= rate

        return StockQuote(
            symbol=quote.get("01. symbol") or symbol.upper(),
            price=price,
            change=change,
            change_percent=_decimal((quote.get("10. change percent") or "0").replace("%", "")),
            latest_trading_day=quote.get("07. latest trading day") or "",
            previous_close=previous_close,
            currency=currency,
        )

    def _conversion_rate(self, from_currency: str, to_currency: str) -> Decimal:
        if self.fx is not None:
            return self.fx.rate(from_currency, to_currency, utcnow().date())
        return self.get_forex_rate(from_currency, to_currency)

    def _exchange_rate_raw(self, from_currency: str, to_currency: str) -> dict[str, Any]:
        raw = self._request(
            {
                "function": "CURRENCY_EXCHANGE_RATE",
                "from_currency": from_currency.upper(),
                "to_currency": to_currency.upper(),
            },
            lookup=True,
        )
        return raw.get("Realtime Currency Exchange Rate") or {}

    def get_forex_rate(self, from_currency: str, to_currency: str) -> Decimal:
        if from_currency.upper() == to_currency.upper():
            return Decimal("1")
        rate = self._exchange_rate_raw(from_currency, to_currency)
        if not rate.get("5. Exchange Rate"):
            raise NotFoundError(f"No forex rate found for {from_currency}/{to_currency}", source=SOURCE)
        return _decimal(rate["5. Exchange Rate"])

    def get_crypto_quote(self, symbol: str, to_currency: str = "USD") -> CryptoQuote:
        rate = self._exchange_rate_raw(symbol, to_currency)
        if not rate.get("5. Exchange Rate"):
            raise NotFoundError(f"No rate found for crypto: {symbol}", source=SOURCE)
        return CryptoQuote(
            symbol=rate.get("1. From_Currency Code") or symbol.upper(),
            price=_decimal(rate["5. Exchange Rate"]),
            currency=to_currency.upper(),
            last_refreshed=rate.get("6. Last Refreshed"),
        )

    def search_symbols(self, keywords: str, limit: int = SEARCH_LIMIT) -> list[SymbolMatch]:
        raw = self._request({"function": "SYMBOL_SEARCH", "keywords": keywords})
        matches = []
        for match in (raw.get("bestMatches") or [])[:limit]:
            matches.append(
                SymbolMatch(
                    symbol=match.get("1. symbol", ""),
                    name=match.get("2. name", ""),
                    type=match.get("3. type", ""),
                    region=match.get("4. region", ""),
                    currency=match.get("8. currency", ""),
                    match_score=_decimal(match.get("9. matchScore")),
                )
            )
        return matches

    def get_price_history(
        self,
        symbol: str,
        asset_type: str = "STOCK",
        *,
        market: str = "USD",
        output_size: str = "compact",
    ) -> list[PricePoint]:
        if asset_type.upper() == "CRYPTO":
            raw = self._request(
                {"function": "DIGITAL_CURRENCY_DAILY", "symbol": symbol.upper(), "market": market.upper()},
                lookup=True,
            )
            series = raw.get("Time Series (Digital Currency Daily)")
        else:
            raw = self._request(
                {"function": "TIME_SERIES_DAILY", "symbol": symbol.upper(), "outputsize": output_size},
                lookup=True,
            )
            series = raw.get("Time Series (Daily)")

        if not series:
            raise NotFoundError(f"No price history found for symbol: {symbol}", source=SOURCE)

        points = [
            PricePoint(
                date=date.fromisoformat(day),
                open=_decimal(values.get("1. open")),
                high=_decimal(values.get("2. high")),
                low=_decimal(values.get("3. low")),
                close=_decimal(values.get("4. close")),
                volume=_decimal(values.get("5. volume")),
            )
            for day, values in series.items()
        ]
        points.sort(key=lambda point: point.date)
        return points


def search_crypto_symbols(query: str) -> list[SymbolMatch]:
    """Offline crypto lookup; the provider's search endpoint only covers listed securities."""
    lowered = query.lower()
    return [
        SymbolMatch(
            symbol=symbol,
            name=name,
            type="CRYPTO",
            region="Global",
            currency="USD",
            match_score=Decimal("1") if symbol.lower() == lowered else Decimal("0.8"),
        )
        for symbol, name in COMMON_CRYPTO_SYMBOLS
        if lowered in symbol.lower() or lowered in name.lower()
    ]


def _decimal(value: Any) -> Decimal:
    if value is None or value == "":
        return Decimal("0")
    try:
        return Decimal(str(value))
    except ArithmeticError as exc:
        raise ValidationError(f"Invalid numeric value: {value!r}", source=SOURCE) from exc
