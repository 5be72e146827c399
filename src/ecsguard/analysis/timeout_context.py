from __future__ import annotations

import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import TypeVar

from ecsguard.deadline_clock import (
    DeadlineClock,
    DeadlineClockExhausted,
    MonotonicClock,
)
from ecsguard.invariants import never

_LoopItem = TypeVar("_LoopItem")
_SYSTEM_CLOCK = MonotonicClock()
_NO_DEADLINE_NS = -1


class TimeoutExceeded(TimeoutError):
    """Raised from ``check_deadline`` when the host abandons an analysis."""

    def __init__(self, reason: str) -> None:
        super().__init__(f"Analysis cancelled: {reason}")
        self.reason = reason


@dataclass(frozen=True)
class Deadline:
    deadline_ns: int

    @classmethod
    def from_timeout_ticks(cls, ticks: int, tick_ns: int) -> "Deadline":
        ticks_value = int(ticks)
        tick_ns_value = int(tick_ns)
        if ticks_value < 0:
            never("invalid timeout ticks", ticks=ticks)
        if tick_ns_value <= 0:
            never("invalid timeout tick_ns", tick_ns=tick_ns)
        return cls(deadline_ns=_SYSTEM_CLOCK.get_mark() + ticks_value * tick_ns_value)

    @classmethod
    def from_timeout_ms(cls, milliseconds: int) -> "Deadline":
        return cls.from_timeout_ticks(milliseconds, 1_000_000)

    @classmethod
    def unbounded(cls) -> "Deadline":
        return cls(deadline_ns=_NO_DEADLINE_NS)

    def expired(self) -> bool:
        if self.deadline_ns == _NO_DEADLINE_NS:
            return False
        return _SYSTEM_CLOCK.get_mark() >= self.deadline_ns


@dataclass(frozen=True)
class CancellationToken:
    """Host-owned cancellation signal, safe to set from any thread."""

    _event: threading.Event = field(default_factory=threading.Event, compare=False)

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


_deadline_var: ContextVar[Deadline | None] = ContextVar("ecsguard_deadline", default=None)
_deadline_clock_var: ContextVar[DeadlineClock | None] = ContextVar(
    "ecsguard_deadline_clock", default=None
)
_cancellation_var: ContextVar[CancellationToken | None] = ContextVar(
    "ecsguard_cancellation", default=None
)


def get_deadline() -> Deadline:
    deadline = _deadline_var.get()
    if deadline is None:
        never("deadline carrier missing")
    return deadline


def get_deadline_clock() -> DeadlineClock:
    clock = _deadline_clock_var.get()
    if clock is None:
        return _SYSTEM_CLOCK
    return clock


@contextmanager
def deadline_scope(deadline: Deadline):
    if deadline is None:
        never("deadline carrier missing")
    token = _deadline_var.set(deadline)
    try:
        yield
    finally:
        _deadline_var.reset(token)


@contextmanager
def deadline_clock_scope(clock: DeadlineClock):
    token = _deadline_clock_var.set(clock)
    try:
        yield
    finally:
        _deadline_clock_var.reset(token)


@contextmanager
def cancellation_scope(cancellation: CancellationToken):
    token = _cancellation_var.set(cancellation)
    try:
        yield
    finally:
        _cancellation_var.reset(token)


@contextmanager
def default_deadline_scope():
    """Open an unbounded deadline scope unless the caller already opened one."""
    if _deadline_var.get() is not None:
        yield
        return
    with deadline_scope(Deadline.unbounded()):
        yield


def check_deadline() -> None:
    if get_deadline().expired():
        raise TimeoutExceeded("deadline expired")
    cancellation = _cancellation_var.get()
    if cancellation is not None and cancellation.cancelled:
        raise TimeoutExceeded("cancellation requested")
    try:
        get_deadline_clock().consume(1)
    except DeadlineClockExhausted as exc:
        raise TimeoutExceeded(str(exc)) from exc


def deadline_loop_iter(values: Iterable[_LoopItem]) -> Iterator[_LoopItem]:
    for value in values:
        check_deadline()
        yield value
