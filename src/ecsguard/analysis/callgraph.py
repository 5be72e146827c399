"""Intraprocedural call graph over the methods of one declaration unit.

Reachability is a syntactic approximation: a call counts as an edge only
when no branch, loop, match, comprehension, handler, short-circuit operator
or nested function sits between it and the method definition. Early
returns are not modelled.
"""

from __future__ import annotations

import ast
import logging
from collections.abc import Iterator
from dataclasses import dataclass

from ecsguard.analysis.conventions import Conventions
from ecsguard.analysis.model import CallSite, DeclarationUnit, Method
from ecsguard.analysis.symbols import ModuleInfo, SymbolIndex
from ecsguard.analysis.timeout_context import check_deadline, deadline_loop_iter
from ecsguard.analysis.visitors import dotted_name, expression_text, node_span
from ecsguard.invariants import never

logger = logging.getLogger(__name__)

CONDITIONAL_NODES: tuple[type[ast.AST], ...] = (
    ast.If,
    ast.IfExp,
    ast.While,
    ast.For,
    ast.AsyncFor,
    ast.Match,
    ast.ListComp,
    ast.SetComp,
    ast.DictComp,
    ast.GeneratorExp,
    ast.ExceptHandler,
    ast.BoolOp,
    ast.Lambda,
    ast.FunctionDef,
    ast.AsyncFunctionDef,
)


@dataclass(frozen=True)
class CallShape:
    """Receiver text, operation name and subscripted type argument of a call."""

    receiver: str | None
    callee: str
    type_node: ast.expr | None


def call_shape(call: ast.Call) -> CallShape | None:
    func = call.func
    type_node: ast.expr | None = None
    if isinstance(func, ast.Subscript):
        type_node = func.slice
        if isinstance(type_node, ast.Tuple) and type_node.elts:
            type_node = type_node.elts[0]
        func = func.value
    match func:
        case ast.Attribute(value=value, attr=attr):
            receiver = dotted_name(value) or expression_text(value)
            return CallShape(receiver=receiver, callee=attr, type_node=type_node)
        case ast.Name(id=name):
            return CallShape(receiver=None, callee=name, type_node=type_node)
        case _:
            return None


def iter_calls(node: ast.AST) -> Iterator[ast.Call]:
    """Calls below ``node``, not descending into nested class bodies."""
    stack = list(ast.iter_child_nodes(node))
    while stack:
        check_deadline()
        current = stack.pop()
        if isinstance(current, ast.ClassDef):
            continue
        if isinstance(current, ast.Call):
            yield current
        stack.extend(ast.iter_child_nodes(current))


def is_unconditional(
    call: ast.AST,
    root: ast.AST,
    parents: dict[ast.AST, ast.AST],
) -> bool:
    current = parents.get(call)
    while current is not None and current is not root:
        if isinstance(current, CONDITIONAL_NODES):
            return False
        current = parents.get(current)
    if current is None:
        never("call is not nested in its method", root=getattr(root, "name", None))
    return True


def _type_argument(index: SymbolIndex, module: str, node: ast.expr | None) -> str | None:
    if node is None:
        return None
    resolved = index.resolve_type(module, node)
    if resolved is not None:
        return resolved.qualname
    return dotted_name(node)


def method_calls(method: Method, info: ModuleInfo, index: SymbolIndex) -> tuple[CallSite, ...]:
    if not method.has_body:
        return ()
    sites: list[CallSite] = []
    for stmt in method.node.body:
        for call in _calls_in_statement(stmt):
            shape = call_shape(call)
            if shape is None:
                continue
            sites.append(
                CallSite(
                    caller=method.name,
                    callee=shape.callee,
                    receiver=shape.receiver,
                    type_argument=_type_argument(index, info.name, shape.type_node),
                    args=tuple(call.args),
                    keyword_count=len(call.keywords),
                    unconditional=is_unconditional(call, method.node, info.parents),
                    node=call,
                    span=node_span(call, info.lines),
                )
            )
    sites.sort(key=lambda site: site.span)
    return tuple(sites)


def _calls_in_statement(stmt: ast.stmt) -> Iterator[ast.Call]:
    if isinstance(stmt, ast.ClassDef):
        return
    yield from iter_calls(stmt)


@dataclass(frozen=True)
class CallGraph:
    unit: DeclarationUnit
    methods: dict[str, Method]
    calls: dict[str, tuple[CallSite, ...]]

    def unconditional_calls(self, method: str) -> tuple[CallSite, ...]:
        return tuple(site for site in self.calls.get(method, ()) if site.unconditional)

    def is_self_receiver(self, receiver: str | None) -> bool:
        return receiver in {"self", "cls", self.unit.name}


def build_call_graph(unit: DeclarationUnit, index: SymbolIndex) -> CallGraph:
    info = index.modules[unit.module]
    methods: dict[str, Method] = {}
    for method in unit.methods:
        if method.name in methods:
            logger.debug("%s: duplicate method %s ignored", unit.qualname, method.name)
            continue
        methods[method.name] = method
    calls = {name: method_calls(method, info, index) for name, method in methods.items()}
    return CallGraph(unit=unit, methods=methods, calls=calls)


def reachable_methods(graph: CallGraph) -> frozenset[str]:
    """Methods reachable from the entry over unconditional self-calls."""
    entry = graph.unit.entry_name
    if entry not in graph.methods:
        return frozenset()
    reached = {entry}
    worklist = [entry]
    while worklist:
        check_deadline()
        current = worklist.pop()
        for site in graph.unconditional_calls(current):
            if not graph.is_self_receiver(site.receiver):
                continue
            if site.callee in graph.methods and site.callee not in reached:
                reached.add(site.callee)
                worklist.append(site.callee)
    return frozenset(reached)


def excluded_methods(graph: CallGraph, resource: str, conventions: Conventions) -> frozenset[str]:
    """Methods anywhere in the unit that re-acquire ``resource``."""
    excluded: set[str] = set()
    for name, sites in deadline_loop_iter(graph.calls.items()):
        for site in sites:
            if (
                site.callee == conventions.reacquire_operation
                and conventions.is_command_buffer(site.receiver)
                and site.type_argument == resource
            ):
                excluded.add(name)
                break
    return frozenset(excluded)
