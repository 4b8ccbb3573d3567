from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
import logging
from typing import Any
from urllib.request import urlopen

from finsync.errors import NotFoundError, ValidationError
from finsync.http_client import JsonHttpClient, Opener

logger = logging.getLogger(__name__)

SOURCE = "payments"
PRODUCTION_URL = "https://api.wise.com"
SANDBOX_URL = "https://api.sandbox.transferwise.tech"
DEFAULT_PAGE_SIZE = 100
BALANCE_TYPES = "STANDARD,SAVINGS"


@dataclass(frozen=True)
class PaymentsProfile:
    id: str
    type: str
    name: str | None = None


@dataclass(frozen=True)
class PaymentsBalance:
    id: str
    currency: str
    amount: Decimal
    balance_type: str | None = None


class PaymentsClient:
    def __init__(
        self,
        token: str,
        *,
        environment: str = "production",
        timeout: float = 15.0,
        opener: Opener = urlopen,
    ) -> None:
        if not token:
            raise ValueError("Payments API token is required.")
        base_url = SANDBOX_URL if environment == "sandbox" else PRODUCTION_URL
        self.http = JsonHttpClient(
            base_url=base_url,
            source=SOURCE,
            timeout=timeout,
            default_headers={"Authorization": f"Bearer {token}"},
            opener=opener,
        )

    def list_accounts(self) -> list[PaymentsProfile]:
        payload = self.http.get("/v1/profiles") or []
        profiles = []
        for raw in payload:
            details = raw.get("details") or {}
            name = details.get("name") or " ".join(
                part for part in (details.get("firstName"), details.get("lastName")) if part
            )
            profiles.append(PaymentsProfile(id=str(raw["id"]), type=raw.get("type", "PERSONAL"), name=name or None))
        return profiles

    def get_balances(self, account_id: str) -> list[PaymentsBalance]:
        payload = self.http.get(
            f"/v4/profiles/{account_id}/balances", params={"types": BALANCE_TYPES}
        ) or []
        balances = []
        for raw in payload:
            amount = raw.get("amount") or {}
            try:
                value = Decimal(str(amount["value"]))
            except (KeyError, ArithmeticError, ValueError) as exc:
                raise ValidationError(f"Balance {raw.get('id')} has no amount", source=SOURCE) from exc
            balances.append(
                PaymentsBalance(
                    id=str(raw["id"]),
                    currency=raw.get("currency") or amount.get("currency"),
                    amount=value,
                    balance_type=raw.get("balanceType"),
                )
            )
        return balances

    def get_activities(
        self,
        account_id: str,
        since: datetime,
        until: datetime,
        *,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> list[dict[str, Any]]:
        """Return every activity in ``[since, until]``, following ``nextCursor`` until exhausted."""
        activities: list[dict[str, Any]] = []
        cursor: str | None = None
        pages = 0
        while True:
            params = {
                "since": _isoformat(since),
                "until": _isoformat(until),
                "size": page_size,
                "nextCursor": cursor,
            }
            payload = self.http.get(f"/v1/profiles/{account_id}/activities", params=params) or {}
            activities.extend(payload.get("activities") or [])
            pages += 1
            cursor = payload.get("cursor") or payload.get("nextCursor")
            if not cursor:
                break
        logger.debug("Fetched %d activities in %d pages for profile %s", len(activities), pages, account_id)
        return activities

    def get_exchange_rate(self, source: str, target: str) -> Decimal:
        rates = self.http.get("/v1/rates", params={"source": source, "target": target}) or []
        if not rates:
            raise NotFoundError(f"No exchange rate found for {source}/{target}", source=SOURCE)
        return Decimal(str(rates[0]["rate"]))


def _isoformat(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
