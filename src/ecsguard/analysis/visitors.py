from __future__ import annotations

import ast
import re
from typing import TYPE_CHECKING

from ecsguard.analysis.model import Span

if TYPE_CHECKING:
    from ecsguard.analysis.symbols import SymbolIndex

_LINE_BREAK_RE = re.compile(r"\r\n|\r|\n")


class ParentAnnotator(ast.NodeVisitor):
    def __init__(self) -> None:
        self.parents: dict[ast.AST, ast.AST] = {}

    def generic_visit(self, node: ast.AST) -> None:
        for child in ast.iter_child_nodes(node):
            self.parents[child] = node
            self.visit(child)


class ImportVisitor(ast.NodeVisitor):
    def __init__(self, module_name: str, index: SymbolIndex, *, is_package: bool = False) -> None:
        self.module = module_name
        self.index = index
        # Relative imports in a package __init__ start from the package itself.
        self.package_parts = module_name.split(".") if is_package else module_name.split(".")[:-1]

    def visit_Import(self, node: ast.Import) -> None:
        for alias in node.names:
            if alias.asname:
                self.index.imports[(self.module, alias.asname)] = alias.name
            else:
                head = alias.name.split(".")[0]
                self.index.imports[(self.module, head)] = head

    def visit_ImportFrom(self, node: ast.ImportFrom) -> None:
        if not node.module and node.level == 0:
            return
        if node.level > 0:
            parts = [part for part in self.package_parts if part]
            if node.level - 1 > len(parts):
                return
            base = parts[: len(parts) - (node.level - 1)]
            if node.module:
                base.append(node.module)
            source = ".".join(base)
        else:
            source = node.module or ""
        for alias in node.names:
            if alias.name == "*":
                continue
            local = alias.asname or alias.name
            fqn = f"{source}.{alias.name}" if source else alias.name
            self.index.imports[(self.module, local)] = fqn


def split_lines(source: str) -> list[str]:
    return _LINE_BREAK_RE.split(source)


def _char_col(lines: list[str], line: int, byte_col: int) -> int:
    if line < 0 or line >= len(lines):
        return byte_col
    text = lines[line]
    if text.isascii():
        return byte_col
    return len(text.encode("utf-8")[:byte_col].decode("utf-8", errors="ignore"))


def node_span(node: ast.AST, lines: list[str]) -> Span:
    start_line = max(getattr(node, "lineno", 1) - 1, 0)
    end_line = max(getattr(node, "end_lineno", None) or start_line + 1, 1) - 1
    start_col = _char_col(lines, start_line, max(getattr(node, "col_offset", 0), 0))
    raw_end = getattr(node, "end_col_offset", None)
    end_col = start_col + 1 if raw_end is None else _char_col(lines, end_line, raw_end)
    if end_line == start_line and end_col <= start_col:
        end_col = start_col + 1
    return (start_line, start_col, end_line, end_col)


def identifier_span(node: ast.arg, lines: list[str]) -> Span:
    start_line = node.lineno - 1
    start_col = _char_col(lines, start_line, node.col_offset)
    return (start_line, start_col, start_line, start_col + len(node.arg))


def attribute_name_span(node: ast.Attribute, lines: list[str]) -> tuple[int, int]:
    """Start position of the ``attr`` token of an attribute expression."""
    end_line = (node.end_lineno or node.lineno) - 1
    end_col = _char_col(lines, end_line, node.end_col_offset or 0)
    return (end_line, end_col - len(node.attr))


def dotted_name(node: ast.AST) -> str | None:
    if isinstance(node, ast.Name):
        return node.id
    if isinstance(node, ast.Attribute):
        parts: list[str] = []
        current: ast.AST = node
        while isinstance(current, ast.Attribute):
            parts.append(current.attr)
            current = current.value
        if isinstance(current, ast.Name):
            parts.append(current.id)
            return ".".join(reversed(parts))
        return None
    return None


def expression_text(node: ast.AST) -> str:
    try:
        return ast.unparse(node)
    except (AttributeError, TypeError, ValueError, RecursionError):
        return "<expr>"


def enclosing(node: ast.AST, parents: dict[ast.AST, ast.AST], kinds: tuple[type, ...]):
    current = parents.get(node)
    while current is not None:
        if isinstance(current, kinds):
            return current
        current = parents.get(current)
    return None
