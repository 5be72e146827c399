from __future__ import annotations

import ast
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Tuple

# (start_line, start_col, end_line, end_col); lines 0-based, columns in characters.
Span = Tuple[int, int, int, int]


class CapabilityTag(StrEnum):
    DATA_RECORD = "data-record"
    BUFFER_ELEMENT = "buffer-element"
    MUST_RELEASE = "must-release"
    MUST_DESTROY_OWNER = "must-destroy-owner"


RECORD_TAGS = frozenset({CapabilityTag.DATA_RECORD, CapabilityTag.BUFFER_ELEMENT})


class PassingMode(StrEnum):
    NONE = "none"
    BORROW_READ = "in"
    BORROW_WRITE = "ref"


@dataclass(frozen=True)
class ResolvedType:
    qualname: str
    type_args: tuple["ResolvedType | None", ...] = ()

    @property
    def name(self) -> str:
        return self.qualname.rsplit(".", 1)[-1]

    @property
    def module(self) -> str:
        if "." not in self.qualname:
            return ""
        return self.qualname.rsplit(".", 1)[0]


@dataclass(frozen=True)
class Parameter:
    name: str
    annotation: ast.expr | None = field(compare=False)
    declared_type: ResolvedType | None
    passing_mode: PassingMode
    span: Span


@dataclass(frozen=True)
class Method:
    name: str
    parameters: tuple[Parameter, ...]
    node: ast.FunctionDef | ast.AsyncFunctionDef = field(compare=False)
    has_body: bool
    is_entry: bool

    def parameter(self, name: str) -> Parameter | None:
        for param in self.parameters:
            if param.name == name:
                return param
        return None


@dataclass(frozen=True)
class CallSite:
    caller: str
    callee: str
    receiver: str | None
    type_argument: str | None
    args: tuple[ast.expr, ...] = field(compare=False)
    keyword_count: int
    unconditional: bool
    node: ast.Call = field(compare=False)
    span: Span


@dataclass(frozen=True)
class FilterTag:
    decorator: str
    resource: ResolvedType | None
    span: Span


@dataclass(frozen=True)
class DeclarationUnit:
    name: str
    qualname: str
    module: str
    path: Path
    methods: tuple[Method, ...]
    filters: tuple[FilterTag, ...]
    read_only_fields: frozenset[str]
    is_processing_unit: bool
    node: ast.ClassDef = field(compare=False)
    entry_name: str = "execute"

    def method(self, name: str) -> Method | None:
        for method in self.methods:
            if method.name == name:
                return method
        return None

    @property
    def entry_method(self) -> Method | None:
        return self.method(self.entry_name)


@dataclass(frozen=True)
class Obligation:
    resource: str
    span: Span
    display_name: str
