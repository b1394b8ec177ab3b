"""Time sources. All deadlines in the engine are integer seconds."""

from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod


class Clock(ABC):
    """Source of the current time in whole seconds."""

    @abstractmethod
    def now(self) -> int:
        ...


class SystemClock(Clock):
    """Wall-clock time."""

    def now(self) -> int:
        return int(time.time())


class ManualClock(Clock):
    """
    Clock that only moves when told to.

    Used by tests and simulations to step through lockup periods and
    voting stages deterministically.
    """

    def __init__(self, start: int = 1_700_000_000):
        self._now = start
        self._lock = threading.Lock()

    def now(self) -> int:
        with self._lock:
            return self._now

    def advance(self, seconds: int) -> int:
        if seconds < 0:
            raise ValueError("Cannot move a clock backwards")
        with self._lock:
            self._now += seconds
            return self._now

    def set(self, timestamp: int) -> None:
        with self._lock:
            if timestamp < self._now:
                raise ValueError("Cannot move a clock backwards")
            self._now = timestamp


__all__ = ["Clock", "SystemClock", "ManualClock"]
