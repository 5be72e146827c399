"""Invariant markers for ecsguard internals."""

from __future__ import annotations

from typing import NoReturn

from ecsguard.exceptions import NeverThrown


def never(reason: str = "", **env: object) -> NoReturn:
    """Mark a code path as intentionally unreachable.

    The keyword payload is attached to the raised exception for diagnostics.
    """
    raise NeverThrown(reason or "never() marker reached", env=env)

