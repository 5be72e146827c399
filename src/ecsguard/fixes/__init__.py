"""Quick-fix synthesis for ecsguard diagnostics."""

from .engine import ADD_FALSE_KEY, ADD_TRUE_KEY, ADD_WRITE_BACK_KEY, FixEngine
from .model import FixAction, FixResult, TextEdit

__all__ = [
    "ADD_FALSE_KEY",
    "ADD_TRUE_KEY",
    "ADD_WRITE_BACK_KEY",
    "FixAction",
    "FixEngine",
    "FixResult",
    "TextEdit",
]
