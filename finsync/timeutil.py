from __future__ import annotations

from datetime import date, datetime, timezone


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every stored datetime uses."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_timestamp(value: str) -> datetime:
    cleaned = value.strip()
    if cleaned.endswith("Z"):
        cleaned = cleaned[:-1] + "+00:00"
    return to_naive_utc(datetime.fromisoformat(cleaned))


def parse_day(value: str) -> date:
    """Calendar day of an ISO date or timestamp string."""
    cleaned = value.strip()
    if len(cleaned) == 10:
        return date.fromisoformat(cleaned)
    return parse_timestamp(cleaned).date()


def calendar_day(value: date | datetime) -> date:
    if isinstance(value, datetime):
        return to_naive_utc(value).date()
    return value
