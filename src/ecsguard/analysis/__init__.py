"""Static analysis subpackage for ecsguard."""

from .conventions import Conventions, conventions_from_table
from .engine import (
    AnalysisConfig,
    AnalysisFailure,
    AnalysisResult,
    analyze_paths,
    analyze_source,
    analyze_sources,
)
from .rules import RULES, Diagnostic, RuleId, select_rules

__all__ = [
    "AnalysisConfig",
    "AnalysisFailure",
    "AnalysisResult",
    "Conventions",
    "Diagnostic",
    "RULES",
    "RuleId",
    "analyze_paths",
    "analyze_source",
    "analyze_sources",
    "conventions_from_table",
    "select_rules",
]
