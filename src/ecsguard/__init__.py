"""ecsguard package root."""

from ecsguard.exceptions import NeverRaise, NeverThrown
from ecsguard.invariants import never

__all__ = ["__version__", "NeverRaise", "NeverThrown", "never"]

__version__ = "0.1.0"
