"""
Clocks
======

Injectable sources of "now" so schedulers, the engine and tests share one
notion of the current instant.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    """Source of the current instant (always timezone-aware)."""

    @abstractmethod
    def now(self) -> datetime:
        """Return the current instant."""


class SystemClock(Clock):
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock(Clock):
    """
    Clock pinned to a given instant.

    Used by tests and by replays that must evaluate as of a past moment.
    """

    def __init__(self, instant: datetime):
        if instant.tzinfo is None:
            raise ValueError("FixedClock requires a timezone-aware datetime")
        self._instant = instant

    def now(self) -> datetime:
        return self._instant

    def set(self, instant: datetime) -> None:
        if instant.tzinfo is None:
            raise ValueError("FixedClock requires a timezone-aware datetime")
        self._instant = instant

    def advance(self, delta: timedelta) -> None:
        self._instant = self._instant + delta
