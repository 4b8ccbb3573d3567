from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
import logging
import re
from typing import Any

from finsync.errors import ValidationError
from finsync.timeutil import parse_timestamp

logger = logging.getLogger(__name__)

SOURCE = "payments"
UNKNOWN_DESCRIPTION = "Unknown transaction"
COMPLETED_STATUS = "COMPLETED"

TAG_PATTERN = re.compile(r"<[^>]*>")
AMOUNT_PATTERN = re.compile(r"^([+-]?)\s*([\d,]+(?:\.\d*)?)\s*([A-Z]{3})$")
POSITIVE_MARKER = "<positive>"


class TransactionType(str, Enum):
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"
    TRANSFER = "TRANSFER"
    INVESTMENT = "INVESTMENT"


# Card authorization holds that never settle.
SKIPPED_TYPES = {"CARD_CHECK"}

FIXED_TYPES: dict[str, TransactionType] = {
    "INTERBALANCE": TransactionType.TRANSFER,
    "CONVERSION": TransactionType.TRANSFER,
    "AUTO_CONVERSION": TransactionType.TRANSFER,
    "BALANCE_DEPOSIT": TransactionType.INCOME,
    "BALANCE_CASHBACK": TransactionType.INCOME,
    "INCOMING_PAYMENT": TransactionType.INCOME,
    "MONEY_ADDED": TransactionType.INCOME,
    "BALANCE_ASSET_FEE": TransactionType.EXPENSE,
}

# Codes that cover both directions; a positive card payment is a refund.
DIRECTIONAL_TYPES = {"TRANSFER", "CARD_PAYMENT", "DIRECT_DEBIT_TRANSACTION"}


@dataclass(frozen=True)
class ParsedAmount:
    value: Decimal
    currency: str
    is_positive: bool


@dataclass(frozen=True)
class NormalizedActivity:
    external_ref: str
    type: TransactionType
    amount: Decimal
    currency: str
    date: datetime
    description: str


def parse_activity_amount(text: Any) -> ParsedAmount | None:
    """Parse amounts like ``"-25.50 EUR"`` or ``"<positive>+ 3,070.68 EUR</positive>"``."""
    if not isinstance(text, str) or not text:
        return None
    has_positive_tag = POSITIVE_MARKER in text
    cleaned = strip_markup(text)
    match = AMOUNT_PATTERN.match(cleaned)
    if not match:
        return None
    sign, digits, currency = match.groups()
    try:
        value = Decimal(digits.replace(",", ""))
    except InvalidOperation:
        return None
    return ParsedAmount(value=value, currency=currency, is_positive=has_positive_tag or sign == "+")


def classify(activity_type: str, is_positive: bool) -> TransactionType | None:
    """Canonical type for a provider activity code; ``None`` means the activity is skipped."""
    code = (activity_type or "").strip().upper()
    if code in SKIPPED_TYPES:
        return None
    if code in FIXED_TYPES:
        return FIXED_TYPES[code]
    direction = TransactionType.INCOME if is_positive else TransactionType.EXPENSE
    if code in DIRECTIONAL_TYPES:
        return direction
    logger.warning("Unknown activity type %r, using amount direction", activity_type)
    return direction


def describe(activity: dict[str, Any]) -> str:
    merchant = activity.get("merchant")
    if isinstance(merchant, dict):
        merchant = merchant.get("name")
    candidates = (
        activity.get("title"),
        activity.get("description"),
        activity.get("reference"),
        merchant,
    )
    for candidate in candidates:
        cleaned = strip_markup(candidate) if isinstance(candidate, str) else ""
        if cleaned:
            return cleaned
    return UNKNOWN_DESCRIPTION


def external_ref_for(activity_id: Any) -> str:
    return f"{SOURCE}:activity-{activity_id}"


def normalize_activity(activity: dict[str, Any]) -> NormalizedActivity | None:
    """
    Turn one raw payments activity into a canonical record.

    Returns None for activities that do not produce a transaction (not yet
    completed, or a skipped type). Raises ValidationError when the record is
    completed but cannot be parsed.
    """
    activity_id = activity.get("id")
    if activity_id in (None, ""):
        raise ValidationError("Activity without id", source=SOURCE)
    if activity.get("status") != COMPLETED_STATUS:
        return None

    parsed = parse_activity_amount(activity.get("primaryAmount"))
    if parsed is None:
        raise ValidationError(
            f"Could not parse activity amount: {activity.get('primaryAmount')!r}", source=SOURCE
        )

    activity_type = activity.get("type") or ""
    if not isinstance(activity_type, str):
        raise ValidationError(f"Activity {activity_id} has invalid type {activity_type!r}", source=SOURCE)
    transaction_type = classify(activity_type, parsed.is_positive)
    if transaction_type is None:
        return None

    created_on = activity.get("createdOn")
    try:
        occurred_at = parse_timestamp(created_on)
    except (TypeError, ValueError, AttributeError) as exc:
        raise ValidationError(f"Activity {activity_id} has invalid date {created_on!r}", source=SOURCE) from exc

    return NormalizedActivity(
        external_ref=external_ref_for(activity_id),
        type=transaction_type,
        amount=abs(parsed.value),
        currency=parsed.currency,
        date=occurred_at,
        description=describe(activity),
    )


def strip_markup(value: str | None) -> str:
    return TAG_PATTERN.sub("", value).strip() if value else ""
