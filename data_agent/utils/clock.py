"""
Clock abstraction for TTL bookkeeping.

Caches and session stores take a Clock instead of calling time.time()
directly so expiry can be exercised deterministically in tests.
"""

import time
from abc import ABC, abstractmethod


class Clock(ABC):
    """Source of the current wall-clock time in seconds."""

    @abstractmethod
    def now(self) -> float:
        """Return the current time as a UNIX timestamp (seconds)."""
        pass  # pragma: no cover - abstract method


class SystemClock(Clock):
    """Clock backed by time.time()."""

    def now(self) -> float:
        return time.time()


class ManualClock(Clock):
    """Clock that only moves when told to."""

    def __init__(self, start: float = 0.0):
        self._now = start

    def now(self) -> float:
        return self._now

    def advance(self, seconds: float) -> None:
        self._now += seconds

    def set(self, value: float) -> None:
        self._now = value
