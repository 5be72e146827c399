"""Release and destroy obligations of processing units.

Both rules collect obligated resources from the entry method's parameters
and the unit's filter decorators, then look for a discharging command-buffer
call in the methods reachable from the entry. The release rule additionally
drops every method that re-acquires the same resource.
"""

from __future__ import annotations

import ast
from collections.abc import Callable
from dataclasses import dataclass

from ecsguard.analysis.callgraph import CallGraph, excluded_methods, reachable_methods
from ecsguard.analysis.capabilities import CapabilityResolver
from ecsguard.analysis.conventions import Conventions
from ecsguard.analysis.model import (
    RECORD_TAGS,
    CallSite,
    CapabilityTag,
    DeclarationUnit,
    Obligation,
    Parameter,
)
from ecsguard.analysis.rules import Diagnostic, RuleId
from ecsguard.analysis.timeout_context import deadline_loop_iter

DischargeMatcher = Callable[[CallSite, Obligation], bool]


@dataclass(frozen=True)
class ObligationPolicy:
    rule_id: RuleId
    required_tag: CapabilityTag
    use_exclusion: bool


RELEASE_POLICY = ObligationPolicy(
    rule_id=RuleId.RELEASE_OBLIGATION,
    required_tag=CapabilityTag.MUST_RELEASE,
    use_exclusion=True,
)
DESTROY_POLICY = ObligationPolicy(
    rule_id=RuleId.DESTROY_OBLIGATION,
    required_tag=CapabilityTag.MUST_DESTROY_OWNER,
    use_exclusion=False,
)


def collect_obligations(
    unit: DeclarationUnit,
    resolver: CapabilityResolver,
    required_tag: CapabilityTag,
) -> list[Obligation]:
    entry = unit.entry_method
    if entry is None:
        return []
    seen: set[str] = set()
    obligations: list[Obligation] = []
    for param in deadline_loop_iter(entry.parameters):
        if not resolver.has_tags(param.declared_type, any_of=RECORD_TAGS, required=required_tag):
            continue
        resource = resolver.unwrap(param.declared_type)
        if resource is None or resource.qualname in seen:
            continue
        seen.add(resource.qualname)
        obligations.append(Obligation(resource.qualname, param.span, param.name))
    for tag in deadline_loop_iter(unit.filters):
        if not resolver.has_tags(tag.resource, any_of=RECORD_TAGS, required=required_tag):
            continue
        resource = resolver.unwrap(tag.resource)
        if resource is None or resource.qualname in seen:
            continue
        seen.add(resource.qualname)
        obligations.append(Obligation(resource.qualname, tag.span, resource.name))
    return obligations


def owning_entity_parameter(
    unit: DeclarationUnit,
    resolver: CapabilityResolver,
    conventions: Conventions,
) -> Parameter | None:
    entry = unit.entry_method
    if entry is None:
        return None
    for param in entry.parameters:
        resolved = resolver.unwrap(param.declared_type)
        if resolved is not None and resolved.qualname == conventions.owning_entity_type:
            return param
    return None


def release_matcher(conventions: Conventions) -> DischargeMatcher:
    def _matches(site: CallSite, obligation: Obligation) -> bool:
        return (
            site.unconditional
            and site.callee == conventions.release_operation
            and conventions.is_command_buffer(site.receiver)
            and site.type_argument == obligation.resource
        )

    return _matches


def destroy_matcher(conventions: Conventions, entity_name: str) -> DischargeMatcher:
    def _matches(site: CallSite, obligation: Obligation) -> bool:
        if not (
            site.unconditional
            and site.callee == conventions.destroy_operation
            and conventions.is_command_buffer(site.receiver)
            and len(site.args) >= 2
        ):
            return False
        owner = site.args[1]
        return isinstance(owner, ast.Name) and owner.id == entity_name

    return _matches


def check_obligations(
    graph: CallGraph,
    resolver: CapabilityResolver,
    conventions: Conventions,
    policy: ObligationPolicy,
    matcher: DischargeMatcher,
) -> list[Diagnostic]:
    unit = graph.unit
    entry = unit.entry_method
    if entry is None or not entry.has_body:
        return []
    obligations = collect_obligations(unit, resolver, policy.required_tag)
    if not obligations:
        return []
    reachable = reachable_methods(graph)
    diagnostics: list[Diagnostic] = []
    for obligation in deadline_loop_iter(obligations):
        candidates = reachable
        if policy.use_exclusion:
            candidates = reachable - excluded_methods(graph, obligation.resource, conventions)
        discharged = any(
            matcher(site, obligation)
            for name in sorted(candidates)
            for site in graph.calls.get(name, ())
        )
        if not discharged:
            diagnostics.append(
                Diagnostic(
                    rule_id=policy.rule_id,
                    args=(obligation.display_name,),
                    path=unit.path,
                    span=obligation.span,
                    unit=unit.qualname,
                )
            )
    return diagnostics


def check_release(
    graph: CallGraph, resolver: CapabilityResolver, conventions: Conventions
) -> list[Diagnostic]:
    return check_obligations(
        graph, resolver, conventions, RELEASE_POLICY, release_matcher(conventions)
    )


def check_destroy(
    graph: CallGraph, resolver: CapabilityResolver, conventions: Conventions
) -> list[Diagnostic]:
    owner = owning_entity_parameter(graph.unit, resolver, conventions)
    if owner is None:
        return []
    return check_obligations(
        graph, resolver, conventions, DESTROY_POLICY, destroy_matcher(conventions, owner.name)
    )
