"""Injectable time source.

Deadline, overdue and retention arithmetic never call datetime.now()
directly; they ask a Clock. Production wires SystemClock, tests wire
ManualClock and move time explicitly.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Wall-clock UTC time."""

    def now(self) -> datetime:
        return datetime.now(UTC)


class ManualClock:
    """Deterministic clock for tests and replays.

    Usage:
        clock = ManualClock(datetime(2026, 1, 1, tzinfo=UTC))
        clock.advance(days=10)
    """

    def __init__(self, start: datetime) -> None:
        if start.tzinfo is None:
            raise ValueError("ManualClock requires a timezone-aware start time")
        self._now = start

    def now(self) -> datetime:
        return self._now

    def set(self, value: datetime) -> None:
        if value.tzinfo is None:
            raise ValueError("ManualClock requires timezone-aware datetimes")
        self._now = value

    def advance(self, delta: timedelta | None = None, **kwargs: float) -> datetime:
        """Move forward by ``delta`` or by timedelta keyword arguments."""
        self._now = self._now + (delta if delta is not None else timedelta(**kwargs))
        return self._now
