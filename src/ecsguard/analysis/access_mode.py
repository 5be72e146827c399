from __future__ import annotations

import ast

from ecsguard.analysis.conventions import Conventions
from ecsguard.analysis.rules import Diagnostic, RuleId
from ecsguard.analysis.symbols import ModuleInfo, SymbolIndex
from ecsguard.analysis.timeout_context import deadline_loop_iter
from ecsguard.analysis.visitors import attribute_name_span, dotted_name, node_span


def lookup_attribute(call: ast.Call) -> ast.Attribute | None:
    func = call.func
    if isinstance(func, ast.Subscript):
        func = func.value
    if isinstance(func, ast.Attribute):
        return func
    return None


def _is_lookup_service(
    index: SymbolIndex, module: str, receiver: ast.expr, conventions: Conventions
) -> bool:
    qual = index.resolve_expr(module, receiver)
    if qual is not None:
        return qual == conventions.lookup_service
    text = dotted_name(receiver)
    return text is not None and text.rsplit(".", 1)[-1] == conventions.lookup_service.rsplit(".", 1)[-1]


def check_access_mode(
    info: ModuleInfo, index: SymbolIndex, conventions: Conventions
) -> list[Diagnostic]:
    diagnostics: list[Diagnostic] = []
    for node in deadline_loop_iter(ast.walk(info.tree)):
        if not isinstance(node, ast.Call):
            continue
        attribute = lookup_attribute(node)
        if attribute is None or attribute.attr not in conventions.lookup_operations:
            continue
        if node.args or node.keywords:
            continue
        if not _is_lookup_service(index, info.name, attribute.value, conventions):
            continue
        start_line, start_col = attribute_name_span(attribute, info.lines)
        _, _, end_line, end_col = node_span(node, info.lines)
        diagnostics.append(
            Diagnostic(
                rule_id=RuleId.EXPLICIT_ACCESS_MODE,
                args=(),
                path=info.path,
                span=(start_line, start_col, end_line, end_col),
            )
        )
    return diagnostics
