from __future__ import annotations

from pathlib import Path

import pytest

from ecsguard.analysis.rules import RULES, Diagnostic, RuleId, rule_for, select_rules
from ecsguard.exceptions import NeverThrown
from ecsguard.schema import CheckResponse, DiagnosticDTO


def test_rule_table_is_stable() -> None:
    assert [(rule.id, rule.name, rule.arity, rule.fixable) for rule in RULES.values()] == [
        ("ECS001", "copy-mutation-not-saved", 1, True),
        ("ECS002", "explicit-access-mode", 0, True),
        ("ECS003", "borrow-modifier", 1, False),
        ("ECS004", "destroy-obligation", 1, False),
        ("ECS005", "release-obligation", 1, False),
    ]


def test_select_rules_accepts_ids_and_names() -> None:
    assert select_rules(None, None) == frozenset(RULES)
    assert select_rules(["ecs001", "release-obligation", "bogus"], None) == frozenset(
        {RuleId.COPY_MUTATION, RuleId.RELEASE_OBLIGATION}
    )
    assert select_rules(None, ["ECS003", "destroy-obligation"]) == frozenset(
        {RuleId.COPY_MUTATION, RuleId.EXPLICIT_ACCESS_MODE, RuleId.RELEASE_OBLIGATION}
    )


def test_diagnostic_arity_is_enforced() -> None:
    with pytest.raises(NeverThrown):
        Diagnostic(rule_id=RuleId.EXPLICIT_ACCESS_MODE, args=("x",), path=Path("a.py"), span=(0, 0, 0, 1))
    with pytest.raises(NeverThrown):
        rule_for("ECS999")


def test_lint_line_is_one_based() -> None:
    diagnostic = Diagnostic(
        rule_id=RuleId.BORROW_MODIFIER,
        args=("index",),
        path=Path("pkg/jobs.py"),
        span=(9, 22, 9, 27),
    )
    assert diagnostic.lint_line() == (
        "pkg/jobs.py:10:23: ECS003 "
        "Parameter 'index' in entry method must have a borrow-or-mutate modifier"
    )


def test_diagnostic_dto_carries_message_and_positions() -> None:
    diagnostic = Diagnostic(
        rule_id=RuleId.DESTROY_OBLIGATION,
        args=("Corpse",),
        path=Path("jobs.py"),
        span=(1, 2, 3, 4),
        unit="jobs.Bury",
    )
    dto = DiagnosticDTO.from_diagnostic(diagnostic)
    assert dto.model_dump() == {
        "rule_id": "ECS004",
        "message": "Owning entity was not destroyed for resource 'Corpse'",
        "args": ["Corpse"],
        "path": "jobs.py",
        "start": (1, 2),
        "end": (3, 4),
        "unit": "jobs.Bury",
    }
    assert CheckResponse(diagnostics=[dto]).stats == {}
