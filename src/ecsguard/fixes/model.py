from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Tuple

from ecsguard.analysis.rules import Diagnostic

Position = Tuple[int, int]


@dataclass(frozen=True)
class TextEdit:
    path: str
    start: Position
    end: Position
    replacement: str


@dataclass(frozen=True)
class FixAction:
    title: str
    equivalence_key: str
    diagnostic: Diagnostic
    # Literal appended by the access-mode fix; unused by the write-back fix.
    literal: str | None = None


@dataclass
class FixResult:
    source: str
    changed: bool = False
    edits: List[TextEdit] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
