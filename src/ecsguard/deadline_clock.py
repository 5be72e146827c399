"""Clocks consulted by ``check_deadline``.

The analysis driver copies the caller's context into every worker thread, so
one clock instance is charged concurrently by all tasks of a run.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Protocol

from ecsguard.invariants import never


class DeadlineClock(Protocol):
    def consume(self, ticks: int = 1) -> None:
        ...

    def get_mark(self) -> int:
        ...


class DeadlineClockExhausted(RuntimeError):
    """A logical clock ran out of ticks."""


@dataclass(frozen=True)
class MonotonicClock:
    """Wall clock; ticks are free."""

    def consume(self, ticks: int = 1) -> None:
        return

    def get_mark(self) -> int:
        return time.monotonic_ns()


@dataclass
class GasMeter:
    """Tick budget shared by every worker of one analysis run.

    ``consume`` is serialised, so the budget is exact however many threads
    charge it. Once exhausted, every later charge fails too.
    """

    limit: int
    current: int = 0
    _lock: threading.Lock = field(
        default_factory=threading.Lock, init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        self.limit = int(self.limit)
        self.current = int(self.current)
        if self.limit <= 0:
            never("invalid gas meter limit", limit=self.limit)
        if self.current < 0:
            never("invalid gas meter current", current=self.current)

    @property
    def remaining(self) -> int:
        with self._lock:
            return max(self.limit - self.current, 0)

    def consume(self, ticks: int = 1) -> None:
        ticks_value = int(ticks)
        if ticks_value <= 0:
            never("invalid gas meter ticks", ticks=ticks)
        with self._lock:
            self.current += ticks_value
            spent = self.current
        if spent >= self.limit:
            raise DeadlineClockExhausted(f"Gas exhausted: {spent}/{self.limit}")

    def get_mark(self) -> int:
        with self._lock:
            return self.current
