"""
InvenFlow Clock

Injectable time source. Workflow and threshold code never call
datetime.now() directly so tests can pin "now" instead of sleeping.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Protocol


class Clock(Protocol):
    """Anything that can report the current UTC time."""

    def now_utc(self) -> datetime: ...


class SystemClock:
    """Wall-clock time."""

    def now_utc(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock:
    """
    Test clock pinned to a timestamp.

        clock = FixedClock(datetime(2025, 1, 1, tzinfo=timezone.utc))
        clock.advance(minutes=150)
    """

    def __init__(self, fixed_dt: datetime) -> None:
        if fixed_dt.tzinfo is None:
            raise ValueError("FixedClock requires a timezone-aware datetime")
        self._fixed_dt = fixed_dt

    def now_utc(self) -> datetime:
        return self._fixed_dt

    def advance(self, **delta: float) -> None:
        self._fixed_dt = self._fixed_dt + timedelta(**delta)


_default_clock: Clock = SystemClock()


def set_default_clock(clock: Clock) -> None:
    """Override the process-wide clock (tests only)."""
    global _default_clock
    _default_clock = clock


def get_default_clock() -> Clock:
    return _default_clock
