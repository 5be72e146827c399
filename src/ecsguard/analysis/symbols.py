"""Project-wide symbol resolution over parsed modules.

The index maps each module's local names to qualified names (from imports
and class definitions) and records every class with its base expressions and
annotated fields. It is built once, before any unit is analysed, and is only
read afterwards, so worker threads can share it.
"""

from __future__ import annotations

import ast
import logging
from dataclasses import dataclass, field
from pathlib import Path

from ecsguard.analysis.model import ResolvedType
from ecsguard.analysis.timeout_context import deadline_loop_iter
from ecsguard.analysis.visitors import ImportVisitor, ParentAnnotator, split_lines

logger = logging.getLogger(__name__)

_MAX_REEXPORT_HOPS = 8


@dataclass
class ModuleInfo:
    name: str
    path: Path
    source: str
    tree: ast.Module
    lines: list[str]
    parents: dict[ast.AST, ast.AST]


@dataclass
class ClassInfo:
    qualname: str
    module: str
    node: ast.ClassDef
    bases: tuple[ast.expr, ...]
    fields: dict[str, ast.expr]


@dataclass
class SymbolIndex:
    imports: dict[tuple[str, str], str] = field(default_factory=dict)
    # Map: (module_name, local_name) -> fully qualified name
    classes: dict[str, ClassInfo] = field(default_factory=dict)
    modules: dict[str, ModuleInfo] = field(default_factory=dict)

    def add_module(self, name: str, path: Path, source: str, tree: ast.Module) -> ModuleInfo:
        parents = ParentAnnotator()
        parents.visit(tree)
        info = ModuleInfo(
            name=name,
            path=path,
            source=source,
            tree=tree,
            lines=split_lines(source),
            parents=parents.parents,
        )
        self.modules[name] = info
        ImportVisitor(name, self, is_package=path.name == "__init__.py").visit(tree)
        for node in deadline_loop_iter(ast.walk(tree)):
            if isinstance(node, ast.ClassDef):
                qual = class_qualname(node, parents.parents, name)
                self.classes[qual] = ClassInfo(
                    qualname=qual,
                    module=name,
                    node=node,
                    bases=tuple(node.bases),
                    fields=_annotated_fields(node),
                )
        return info

    def _chase_reexport(self, qualname: str) -> str:
        for _ in range(_MAX_REEXPORT_HOPS):
            if qualname in self.classes or "." not in qualname:
                return qualname
            module, local = qualname.rsplit(".", 1)
            target = self.imports.get((module, local))
            if target is None or target == qualname:
                return qualname
            qualname = target
        return qualname

    def resolve_name(self, module: str, local: str) -> str | None:
        imported = self.imports.get((module, local))
        if imported is not None:
            return self._chase_reexport(imported)
        candidate = f"{module}.{local}" if module else local
        if candidate in self.classes:
            return candidate
        return None

    def resolve_expr(self, module: str, expr: ast.AST | None) -> str | None:
        """Resolve a name, dotted name or generic base to a qualified name."""
        match expr:
            case ast.Name(id=local):
                return self.resolve_name(module, local)
            case ast.Attribute(value=value, attr=attr):
                head = self.resolve_expr(module, value)
                if head is None:
                    return None
                return self._chase_reexport(f"{head}.{attr}")
            case ast.Subscript(value=value):
                return self.resolve_expr(module, value)
            case ast.Constant(value=str() as text):
                parsed = parse_annotation_text(text)
                if parsed is None:
                    return None
                return self.resolve_expr(module, parsed)
            case _:
                return None

    def resolve_type(self, module: str, expr: ast.AST | None) -> ResolvedType | None:
        match expr:
            case ast.Constant(value=str() as text):
                parsed = parse_annotation_text(text)
                if parsed is None:
                    return None
                return self.resolve_type(module, parsed)
            case ast.Subscript(value=value, slice=slice_expr):
                qual = self.resolve_expr(module, value)
                if qual is None:
                    return None
                elements = slice_expr.elts if isinstance(slice_expr, ast.Tuple) else [slice_expr]
                return ResolvedType(
                    qualname=qual,
                    type_args=tuple(self.resolve_type(module, elt) for elt in elements),
                )
            case _:
                qual = self.resolve_expr(module, expr)
                if qual is None:
                    return None
                return ResolvedType(qualname=qual)


def parse_annotation_text(text: str) -> ast.expr | None:
    try:
        return ast.parse(text.strip(), mode="eval").body
    except SyntaxError:
        return None


def class_qualname(node: ast.ClassDef, parents: dict[ast.AST, ast.AST], module: str) -> str:
    parts = [node.name]
    current = parents.get(node)
    while current is not None:
        if isinstance(current, (ast.ClassDef, ast.FunctionDef, ast.AsyncFunctionDef)):
            parts.append(current.name)
        current = parents.get(current)
    if module:
        parts.append(module)
    return ".".join(reversed(parts))


def _annotated_fields(node: ast.ClassDef) -> dict[str, ast.expr]:
    annotated: dict[str, ast.expr] = {}
    for stmt in node.body:
        if isinstance(stmt, ast.AnnAssign) and isinstance(stmt.target, ast.Name):
            annotated[stmt.target.id] = stmt.annotation
    return annotated


def module_name(path: Path, project_root: Path | None = None) -> str:
    rel = path.with_suffix("")
    if project_root is not None:
        try:
            rel = rel.resolve().relative_to(project_root.resolve())
        except ValueError:
            rel = Path(path.stem)
    else:
        rel = Path(path.stem)
    parts = list(rel.parts)
    if parts and parts[0] == "src":
        parts = parts[1:]
    if parts and parts[-1] == "__init__":
        parts = parts[:-1]
    return ".".join(parts)


def build_index(
    sources: list[tuple[Path, str]],
    project_root: Path | None = None,
) -> tuple[SymbolIndex, list[tuple[Path, str]]]:
    """Parse ``(path, text)`` pairs; returns the index and unparsable files."""
    index = SymbolIndex()
    failures: list[tuple[Path, str]] = []
    for path, source in deadline_loop_iter(sources):
        try:
            tree = ast.parse(source, filename=str(path))
        except (SyntaxError, ValueError) as exc:
            logger.warning("skipping %s: %s", path, exc)
            failures.append((path, f"parse error: {exc}"))
            continue
        name = module_name(path, project_root)
        index.add_module(name, path, source, tree)
    return index, failures
