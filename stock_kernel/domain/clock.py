"""
Clock -- Injectable time source.

Responsibility:
    Every timestamp the kernel stamps (part ``created_at``/``updated_at``,
    ledger ``created_at``, record times, unit ``added_on``/``sold_on``)
    comes from a Clock handed to the service at construction.

Architecture position:
    Kernel > Domain.  SystemClock is the only place that reads wall time.

Invariants enforced:
    (none directly -- keeps ledger ordering tests deterministic)

Failure modes:
    (none)
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    """Source of timezone-aware UTC datetimes."""

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Test clock that only moves when told to.

    ``now()`` is stable across calls until ``advance()``.
    """

    def __init__(self, start: datetime | None = None):
        start = start or datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        if start.tzinfo is None:
            raise ValueError("DeterministicClock needs a timezone-aware start")
        self._current = start.astimezone(timezone.utc)

    def now(self) -> datetime:
        return self._current

    def advance(self, seconds: float = 1) -> datetime:
        """Move forward by ``seconds`` and return the new time."""
        self._current += timedelta(seconds=seconds)
        return self._current
