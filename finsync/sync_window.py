from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum


class SyncMode(str, Enum):
    LIGHT = "light"
    FULL = "full"


FULL_HISTORY_YEARS = 10
LIGHT_LOOKBACK = timedelta(days=30)


@dataclass(frozen=True)
class SyncWindow:
    start: datetime
    end: datetime


def compute_window(mode: SyncMode | str, last_sync_at: datetime | None, now: datetime) -> SyncWindow:
    mode = SyncMode(mode)
    if mode is SyncMode.FULL:
        return SyncWindow(start=years_before(now, FULL_HISTORY_YEARS), end=now)
    if last_sync_at is not None:
        return SyncWindow(start=last_sync_at, end=now)
    return SyncWindow(start=now - LIGHT_LOOKBACK, end=now)


def years_before(value: datetime, years: int) -> datetime:
    try:
        return value.replace(year=value.year - years)
    except ValueError:
        # Feb 29 in a non-leap target year.
        return value.replace(year=value.year - years, day=28)
