from __future__ import annotations

from ecsguard.analysis.model import DeclarationUnit, PassingMode
from ecsguard.analysis.rules import Diagnostic, RuleId


def check_borrow_modifiers(unit: DeclarationUnit) -> list[Diagnostic]:
    """Every entry parameter of a processing unit must be ``In[...]`` or ``Ref[...]``."""
    entry = unit.entry_method
    if not unit.is_processing_unit or entry is None:
        return []
    return [
        Diagnostic(
            rule_id=RuleId.BORROW_MODIFIER,
            args=(param.name,),
            path=unit.path,
            span=param.span,
            unit=unit.qualname,
        )
        for param in entry.parameters
        if param.passing_mode is PassingMode.NONE
    ]
