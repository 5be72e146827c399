from __future__ import annotations

from typing import List, Optional, Tuple

from pydantic import BaseModel

from ecsguard.analysis.engine import AnalysisFailure, AnalysisResult
from ecsguard.analysis.rules import Diagnostic
from ecsguard.fixes.model import TextEdit


class DiagnosticDTO(BaseModel):
    rule_id: str
    message: str
    args: List[str]
    path: str
    start: Tuple[int, int]
    end: Tuple[int, int]
    unit: Optional[str] = None

    @classmethod
    def from_diagnostic(cls, diagnostic: Diagnostic) -> "DiagnosticDTO":
        start_line, start_col, end_line, end_col = diagnostic.span
        return cls(
            rule_id=diagnostic.rule_id,
            message=diagnostic.message,
            args=list(diagnostic.args),
            path=str(diagnostic.path),
            start=(start_line, start_col),
            end=(end_line, end_col),
            unit=diagnostic.unit,
        )


class FailureDTO(BaseModel):
    path: str
    scope: str
    error: str

    @classmethod
    def from_failure(cls, failure: AnalysisFailure) -> "FailureDTO":
        return cls(path=str(failure.path), scope=failure.scope, error=failure.error)


class CheckResponse(BaseModel):
    diagnostics: List[DiagnosticDTO]
    failures: List[FailureDTO] = []
    stats: dict[str, int] = {}

    @classmethod
    def from_result(cls, result: AnalysisResult) -> "CheckResponse":
        return cls(
            diagnostics=[DiagnosticDTO.from_diagnostic(diag) for diag in result.diagnostics],
            failures=[FailureDTO.from_failure(failure) for failure in result.failures],
            stats={
                "modules": result.modules_analyzed,
                "units": result.units_analyzed,
                "diagnostics": len(result.diagnostics),
                "failures": len(result.failures),
            },
        )


class TextEditDTO(BaseModel):
    path: str
    start: Tuple[int, int]
    end: Tuple[int, int]
    replacement: str

    @classmethod
    def from_edit(cls, edit: TextEdit) -> "TextEditDTO":
        return cls(path=edit.path, start=edit.start, end=edit.end, replacement=edit.replacement)


class FixRequest(BaseModel):
    path: str
    source: Optional[str] = None
    rule: Optional[str] = None
    choice: Optional[str] = None


class FixResponse(BaseModel):
    edits: List[TextEditDTO] = []
    applied: int = 0
    warnings: List[str] = []
    errors: List[str] = []
