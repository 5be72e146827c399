from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

from ecsguard.analysis.model import Span
from ecsguard.invariants import never


class RuleId(StrEnum):
    COPY_MUTATION = "ECS001"
    EXPLICIT_ACCESS_MODE = "ECS002"
    BORROW_MODIFIER = "ECS003"
    DESTROY_OBLIGATION = "ECS004"
    RELEASE_OBLIGATION = "ECS005"


@dataclass(frozen=True)
class Rule:
    id: RuleId
    name: str
    title: str
    message: str
    arity: int
    fixable: bool = False


RULES: dict[str, Rule] = {
    rule.id: rule
    for rule in (
        Rule(
            RuleId.COPY_MUTATION,
            "copy-mutation-not-saved",
            "Modification of read-only copy",
            "Variable '{0}' is a copy from a read-only source and will not be saved",
            1,
            fixable=True,
        ),
        Rule(
            RuleId.EXPLICIT_ACCESS_MODE,
            "explicit-access-mode",
            "Lookup accessor without access mode",
            "lookup accessor must explicitly specify the access-mode argument",
            0,
            fixable=True,
        ),
        Rule(
            RuleId.BORROW_MODIFIER,
            "borrow-modifier",
            "Entry parameter without borrow modifier",
            "Parameter '{0}' in entry method must have a borrow-or-mutate modifier",
            1,
        ),
        Rule(
            RuleId.DESTROY_OBLIGATION,
            "destroy-obligation",
            "Owning entity not destroyed",
            "Owning entity was not destroyed for resource '{0}'",
            1,
        ),
        Rule(
            RuleId.RELEASE_OBLIGATION,
            "release-obligation",
            "Resource not released",
            "Resource '{0}' was not released",
            1,
        ),
    )
}


def rule_for(rule_id: str) -> Rule:
    rule = RULES.get(rule_id)
    if rule is None:
        never("unknown rule id", rule_id=rule_id)
    return rule


def select_rules(select: list[str] | None, ignore: list[str] | None) -> frozenset[str]:
    """Resolve ``select``/``ignore`` lists (ids or names) to rule ids."""
    by_name = {rule.name: rule.id for rule in RULES.values()}

    def _normalize(values: list[str] | None) -> set[str]:
        out: set[str] = set()
        for value in values or []:
            key = value.strip()
            if key.upper() in RULES:
                out.add(key.upper())
            elif key in by_name:
                out.add(by_name[key])
        return out

    enabled = _normalize(select) if select else set(RULES)
    return frozenset(enabled - _normalize(ignore))


@dataclass(frozen=True)
class Diagnostic:
    rule_id: str
    args: tuple[str, ...]
    path: Path
    span: Span
    unit: str | None = None

    def __post_init__(self) -> None:
        rule = rule_for(self.rule_id)
        if len(self.args) != rule.arity:
            never("diagnostic argument count mismatch", rule_id=self.rule_id, args=self.args)

    @property
    def rule(self) -> Rule:
        return rule_for(self.rule_id)

    @property
    def message(self) -> str:
        return self.rule.message.format(*self.args)

    def sort_key(self) -> tuple[str, int, int, str, tuple[str, ...]]:
        return (str(self.path), self.span[0], self.span[1], self.rule_id, self.args)

    def lint_line(self) -> str:
        line, col = self.span[0] + 1, self.span[1] + 1
        return f"{self.path}:{line}:{col}: {self.rule_id} {self.message}"
