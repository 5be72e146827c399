"""Mutations of read-only snapshot values that are never written back.

A snapshot is the value bound from ``self.<field>.try_get_component(...)``
where ``<field>`` is annotated read-only on the enclosing class. Every
attribute assignment on that value must be followed, by source position, by
a ``set_component(...)`` call whose last positional argument is the value.
"""

from __future__ import annotations

import ast

from ecsguard.analysis.conventions import Conventions
from ecsguard.analysis.rules import Diagnostic, RuleId
from ecsguard.analysis.symbols import ModuleInfo, SymbolIndex, class_qualname
from ecsguard.analysis.timeout_context import deadline_loop_iter
from ecsguard.analysis.units import read_only_fields
from ecsguard.analysis.visitors import enclosing, expression_text, node_span

_FUNCTION_NODES = (ast.FunctionDef, ast.AsyncFunctionDef)


def snapshot_field(call: ast.Call, conventions: Conventions) -> str | None:
    """Field name for ``self.<field>.<try-get>(...)`` calls."""
    match call.func:
        case ast.Attribute(
            value=ast.Attribute(value=ast.Name(id="self"), attr=field_name),
            attr=operation,
        ) if operation == conventions.try_get_operation:
            return field_name
        case _:
            return None


def bound_name(call: ast.Call, parents: dict[ast.AST, ast.AST]) -> str | None:
    parent = parents.get(call)
    match parent:
        case ast.Assign(targets=[ast.Tuple(elts=[*_, ast.Name(id=name)]) | ast.List(elts=[*_, ast.Name(id=name)])]):
            return name
        case ast.Assign(targets=[ast.Name(id=name)]):
            return name
        case ast.AnnAssign(target=ast.Name(id=name)):
            return name
        case ast.NamedExpr(target=ast.Name(id=name)):
            return name
        case _:
            return None


def _assigned_attribute_roots(stmt: ast.stmt) -> list[ast.expr]:
    match stmt:
        case ast.Assign(targets=targets):
            roots: list[ast.expr] = []
            for target in targets:
                if isinstance(target, (ast.Tuple, ast.List)):
                    roots.extend(target.elts)
                else:
                    roots.append(target)
            return roots
        case ast.AugAssign(target=target) | ast.AnnAssign(target=target):
            return [target]
        case _:
            return []


def mutates(stmt: ast.stmt, name: str) -> bool:
    return any(
        isinstance(target, ast.Attribute)
        and isinstance(target.value, ast.Name)
        and target.value.id == name
        for target in _assigned_attribute_roots(stmt)
    )


def _end_position(node: ast.AST) -> tuple[int, int]:
    return (getattr(node, "end_lineno", None) or node.lineno, getattr(node, "end_col_offset", None) or 0)


def is_written_back(
    function: ast.AST, assignment: ast.stmt, name: str, conventions: Conventions
) -> bool:
    after = _end_position(assignment)
    for node in ast.walk(function):
        if not isinstance(node, ast.Call):
            continue
        if (node.lineno, node.col_offset) < after:
            continue
        func = node.func.value if isinstance(node.func, ast.Subscript) else node.func
        if not isinstance(func, ast.Attribute) or func.attr != conventions.write_back_operation:
            continue
        if node.args and expression_text(node.args[-1]) == name:
            return True
    return False


def check_copy_mutations(
    info: ModuleInfo, index: SymbolIndex, conventions: Conventions
) -> list[Diagnostic]:
    diagnostics: list[Diagnostic] = []
    reported: set[tuple[tuple[int, int, int, int], str]] = set()
    field_cache: dict[str, frozenset[str]] = {}
    for node in deadline_loop_iter(ast.walk(info.tree)):
        if not isinstance(node, ast.Call):
            continue
        field_name = snapshot_field(node, conventions)
        if field_name is None:
            continue
        function = enclosing(node, info.parents, _FUNCTION_NODES)
        owner = enclosing(node, info.parents, (ast.ClassDef,))
        if function is None or owner is None:
            continue
        qualname = class_qualname(owner, info.parents, info.name)
        if qualname not in field_cache:
            cls = index.classes.get(qualname)
            field_cache[qualname] = (
                frozenset() if cls is None else read_only_fields(cls, index, conventions)
            )
        if field_name not in field_cache[qualname]:
            continue
        name = bound_name(node, info.parents)
        if name is None:
            continue
        bound_at = (node.lineno, node.col_offset)
        for stmt in ast.walk(function):
            if not isinstance(stmt, ast.stmt) or not mutates(stmt, name):
                continue
            if (stmt.lineno, stmt.col_offset) < bound_at:
                continue
            if is_written_back(function, stmt, name, conventions):
                continue
            span = node_span(stmt, info.lines)
            if (span, name) in reported:
                continue
            reported.add((span, name))
            diagnostics.append(
                Diagnostic(
                    rule_id=RuleId.COPY_MUTATION,
                    args=(name,),
                    path=info.path,
                    span=span,
                    unit=qualname,
                )
            )
    return diagnostics
