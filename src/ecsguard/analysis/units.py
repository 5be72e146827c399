"""Extraction of declaration units (classes) from an indexed module."""

from __future__ import annotations

import ast

from ecsguard.analysis.capabilities import CapabilityResolver
from ecsguard.analysis.conventions import Conventions
from ecsguard.analysis.model import (
    DeclarationUnit,
    FilterTag,
    Method,
    Parameter,
    PassingMode,
)
from ecsguard.analysis.symbols import ClassInfo, ModuleInfo, SymbolIndex, parse_annotation_text
from ecsguard.analysis.timeout_context import check_deadline, deadline_loop_iter
from ecsguard.analysis.visitors import dotted_name, identifier_span, node_span

_FunctionNode = ast.FunctionDef | ast.AsyncFunctionDef


def _matches(index: SymbolIndex, module: str, expr: ast.AST, target: str) -> bool:
    qual = index.resolve_expr(module, expr)
    if qual is not None:
        return qual == target
    text = dotted_name(expr.func if isinstance(expr, ast.Call) else expr)
    return text is not None and text.rsplit(".", 1)[-1] == target.rsplit(".", 1)[-1]


def _decorator_names(node: _FunctionNode) -> set[str]:
    names: set[str] = set()
    for decorator in node.decorator_list:
        target = decorator.func if isinstance(decorator, ast.Call) else decorator
        text = dotted_name(target)
        if text is not None:
            names.add(text.rsplit(".", 1)[-1])
    return names


def has_body(node: _FunctionNode) -> bool:
    """False for ``@abstractmethod`` methods and bodies made only of ``...``.

    ``pass`` and a bare docstring are real, empty bodies.
    """
    if "abstractmethod" in _decorator_names(node):
        return False
    statements = list(node.body)
    if (
        len(statements) > 1
        and isinstance(statements[0], ast.Expr)
        and isinstance(statements[0].value, ast.Constant)
        and isinstance(statements[0].value.value, str)
    ):
        statements = statements[1:]
    return not all(
        isinstance(stmt, ast.Expr)
        and isinstance(stmt.value, ast.Constant)
        and stmt.value.value is Ellipsis
        for stmt in statements
    )


def passing_mode(
    index: SymbolIndex, module: str, annotation: ast.expr | None, conventions: Conventions
) -> PassingMode:
    if annotation is None:
        return PassingMode.NONE
    if isinstance(annotation, ast.Constant) and isinstance(annotation.value, str):
        annotation = parse_annotation_text(annotation.value)
    if not isinstance(annotation, ast.Subscript):
        return PassingMode.NONE
    if _matches(index, module, annotation.value, conventions.borrow_read):
        return PassingMode.BORROW_READ
    if _matches(index, module, annotation.value, conventions.borrow_write):
        return PassingMode.BORROW_WRITE
    return PassingMode.NONE


def _parameters(
    node: _FunctionNode, info: ModuleInfo, index: SymbolIndex, conventions: Conventions
) -> tuple[Parameter, ...]:
    args = node.args
    positional = [*args.posonlyargs, *args.args]
    if positional and "staticmethod" not in _decorator_names(node):
        # Drop the implicit receiver (self / cls).
        positional = positional[1:]
    params: list[Parameter] = []
    for arg in [*positional, *args.kwonlyargs]:
        params.append(
            Parameter(
                name=arg.arg,
                annotation=arg.annotation,
                declared_type=index.resolve_type(info.name, arg.annotation),
                passing_mode=passing_mode(index, info.name, arg.annotation, conventions),
                span=identifier_span(arg, info.lines),
            )
        )
    return tuple(params)


def _filters(
    cls: ClassInfo, info: ModuleInfo, index: SymbolIndex, conventions: Conventions
) -> tuple[FilterTag, ...]:
    tags: list[FilterTag] = []
    for decorator in cls.node.decorator_list:
        if not isinstance(decorator, ast.Call):
            continue
        name = dotted_name(decorator.func)
        if name is None:
            continue
        if any(
            _matches(index, info.name, decorator.func, negative)
            for negative in conventions.negative_filters
        ):
            continue
        for arg in decorator.args:
            if isinstance(arg, ast.Starred):
                continue
            tags.append(
                FilterTag(
                    decorator=name,
                    resource=index.resolve_type(info.name, arg),
                    span=node_span(arg, info.lines),
                )
            )
    return tuple(tags)


def is_read_only_annotation(
    index: SymbolIndex, module: str, annotation: ast.expr | None, conventions: Conventions
) -> bool:
    if isinstance(annotation, ast.Constant) and isinstance(annotation.value, str):
        annotation = parse_annotation_text(annotation.value)
    if not isinstance(annotation, ast.Subscript):
        return False
    marker = conventions.read_only_marker
    if _matches(index, module, annotation.value, marker):
        return True
    if not _matches(index, module, annotation.value, "typing.Annotated"):
        return False
    metadata = annotation.slice.elts[1:] if isinstance(annotation.slice, ast.Tuple) else []
    return any(_matches(index, module, item, marker) for item in metadata)


def read_only_fields(
    cls: ClassInfo, index: SymbolIndex, conventions: Conventions
) -> frozenset[str]:
    """Read-only annotated fields of ``cls`` and its indexed bases."""
    names: set[str] = set()
    shadowed: set[str] = set()
    pending = [cls]
    seen: set[str] = set()
    while pending:
        check_deadline()
        current = pending.pop(0)
        if current.qualname in seen:
            continue
        seen.add(current.qualname)
        for name, annotation in current.fields.items():
            if name in shadowed:
                continue
            shadowed.add(name)
            if is_read_only_annotation(index, current.module, annotation, conventions):
                names.add(name)
        for base in current.bases:
            qual = index.resolve_expr(current.module, base)
            if qual is not None and qual in index.classes:
                pending.append(index.classes[qual])
    return frozenset(names)


def extract_unit(
    cls: ClassInfo,
    index: SymbolIndex,
    resolver: CapabilityResolver,
    conventions: Conventions,
) -> DeclarationUnit:
    info = index.modules[cls.module]
    methods: list[Method] = []
    for stmt in cls.node.body:
        if not isinstance(stmt, (ast.FunctionDef, ast.AsyncFunctionDef)):
            continue
        methods.append(
            Method(
                name=stmt.name,
                parameters=_parameters(stmt, info, index, conventions),
                node=stmt,
                has_body=has_body(stmt),
                is_entry=stmt.name == conventions.entry_method,
            )
        )
    return DeclarationUnit(
        name=cls.node.name,
        qualname=cls.qualname,
        module=cls.module,
        path=info.path,
        methods=tuple(methods),
        filters=_filters(cls, info, index, conventions),
        read_only_fields=read_only_fields(cls, index, conventions),
        is_processing_unit=resolver.derives_from(cls.qualname, conventions.unit_marker),
        node=cls.node,
        entry_name=conventions.entry_method,
    )


def extract_units(
    index: SymbolIndex,
    resolver: CapabilityResolver,
    conventions: Conventions,
    *,
    module: str | None = None,
) -> list[DeclarationUnit]:
    classes = [
        cls
        for cls in index.classes.values()
        if module is None or cls.module == module
    ]
    classes.sort(key=lambda cls: (cls.module, cls.node.lineno, cls.node.col_offset))
    units: list[DeclarationUnit] = []
    for cls in deadline_loop_iter(classes):
        units.append(extract_unit(cls, index, resolver, conventions))
    return units
