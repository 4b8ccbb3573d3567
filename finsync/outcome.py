from __future__ import annotations

from dataclasses import dataclass, field
from typing import Generic, TypeVar

from finsync.errors import ErrorKind, SyncError

StatsT = TypeVar("StatsT")


@dataclass
class PaymentsStats:
    profiles_synced: int = 0
    profiles_skipped: int = 0
    transactions_added: int = 0
    balances_updated: int = 0
    activities_skipped: int = 0


@dataclass
class InvestmentStats:
    accounts_synced: int = 0
    accounts_skipped: int = 0
    snapshots_added: int = 0


@dataclass
class MarketDataStats:
    updated: int = 0
    total: int = 0
    failed: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass
class SourceOutcome(Generic[StatsT]):
    """Result of one source's sync step: the counts reached plus, on failure, why it stopped."""

    source: str
    stats: StatsT
    ok: bool = True
    error_kind: ErrorKind | None = None
    error: str | None = None

    @classmethod
    def success(cls, source: str, stats: StatsT) -> "SourceOutcome[StatsT]":
        return cls(source=source, stats=stats)

    @classmethod
    def stopped(cls, source: str, stats: StatsT, exc: SyncError) -> "SourceOutcome[StatsT]":
        """Batch cut short by provider throttling: what was stored counts, the run is not failed."""
        return cls(source=source, stats=stats, ok=True, error_kind=exc.kind, error=exc.message)

    @property
    def rate_limited(self) -> bool:
        return self.error_kind is ErrorKind.RATE_LIMIT

    @classmethod
    def failure(cls, source: str, stats: StatsT, exc: BaseException) -> "SourceOutcome[StatsT]":
        if isinstance(exc, SyncError):
            kind = exc.kind
            message = exc.message
        else:
            kind = ErrorKind.INTERNAL
            message = str(exc) or exc.__class__.__name__
        return cls(source=source, stats=stats, ok=False, error_kind=kind, error=message)
