"""Time source for workflow parsing and result stamping.

Components that need the current time take a ``clock`` argument instead of
reading the system clock, so tests can pin timestamps.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current UTC time (the default clock)."""
    return datetime.now(timezone.utc)


class FixedClock:
    """Clock that always returns the same instant, optionally advancing."""

    def __init__(self, instant: datetime, step_seconds: float = 0.0):
        self._instant = instant
        self._step = step_seconds
        self.calls = 0

    def __call__(self) -> datetime:
        value = self._instant + timedelta(seconds=self._step * self.calls)
        self.calls += 1
        return value
