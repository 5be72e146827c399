"""Exception types raised by ecsguard."""

from __future__ import annotations


class NeverRaise(RuntimeError):
    """Sentinel exception for engine states that must be unreachable.

    Raised by :func:`ecsguard.invariants.never` when an internal invariant is
    violated. Inside the analysis driver it is recorded like any other
    per-unit failure.
    """

    def __init__(self, message: str, *, env: dict[str, object] | None = None):
        super().__init__(message)
        self.reason = message
        self.env = dict(env or {})

    def __str__(self) -> str:
        if not self.env:
            return self.reason
        details = ", ".join(f"{key}={value!r}" for key, value in sorted(self.env.items()))
        return f"{self.reason} ({details})"


class NeverThrown(NeverRaise):
    """Alias for NeverRaise used by the explicit never() marker."""


class ConfigError(ValueError):
    """Raised when an ecsguard configuration table has the wrong shape."""
