"""Quick fixes for access-mode and copy-mutation diagnostics.

Fixes are pure libcst rewrites of one document for one diagnostic. They do
not re-run analysis; when the anchor can no longer be found the document is
returned unchanged.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence

import libcst as cst
from libcst.metadata import MetadataWrapper, PositionProvider

from ecsguard.analysis.conventions import Conventions
from ecsguard.analysis.model import Span
from ecsguard.analysis.rules import Diagnostic, RuleId
from ecsguard.analysis.timeout_context import (
    check_deadline,
    deadline_loop_iter,
    default_deadline_scope,
)
from ecsguard.fixes.model import FixAction, FixResult, TextEdit

logger = logging.getLogger(__name__)

ADD_TRUE_KEY = "ecsguard.add-true"
ADD_FALSE_KEY = "ecsguard.add-false"
ADD_WRITE_BACK_KEY = "ecsguard.add-write-back"


def _lookup_name(func: cst.BaseExpression) -> str | None:
    if isinstance(func, cst.Subscript):
        func = func.value
    if isinstance(func, cst.Attribute):
        return func.attr.value
    return None


class _AppendModeArgument(cst.CSTTransformer):
    METADATA_DEPENDENCIES = (PositionProvider,)

    def __init__(self, *, end: tuple[int, int], operations: Sequence[str], literal: str) -> None:
        self.end = end
        self.operations = operations
        self.literal = literal
        self.changed = False

    def leave_Call(self, original_node: cst.Call, updated_node: cst.Call) -> cst.BaseExpression:
        if self.changed or updated_node.args:
            return updated_node
        if _lookup_name(updated_node.func) not in self.operations:
            return updated_node
        position = self.get_metadata(PositionProvider, original_node)
        if (position.end.line, position.end.column) != self.end:
            return updated_node
        self.changed = True
        return updated_node.with_changes(args=[cst.Arg(value=cst.Name(self.literal))])


class _InsertWriteBack(cst.CSTTransformer):
    METADATA_DEPENDENCIES = (PositionProvider,)

    def __init__(self, *, start: tuple[int, int], statement: cst.BaseSmallStatement) -> None:
        self.start = start
        self.statement = statement
        self.changed = False

    def _holds_anchor(self, body: Sequence[cst.BaseSmallStatement]) -> int | None:
        for idx, small in enumerate(body):
            position = self.get_metadata(PositionProvider, small)
            if (position.start.line, position.start.column) == self.start:
                return idx
        return None

    def leave_SimpleStatementLine(
        self,
        original_node: cst.SimpleStatementLine,
        updated_node: cst.SimpleStatementLine,
    ) -> cst.BaseStatement | cst.FlattenSentinel[cst.BaseStatement]:
        if self.changed or self._holds_anchor(original_node.body) is None:
            return updated_node
        self.changed = True
        return cst.FlattenSentinel(
            [updated_node, cst.SimpleStatementLine(body=[self.statement])]
        )

    def leave_SimpleStatementSuite(
        self,
        original_node: cst.SimpleStatementSuite,
        updated_node: cst.SimpleStatementSuite,
    ) -> cst.BaseSuite:
        if self.changed:
            return updated_node
        idx = self._holds_anchor(original_node.body)
        if idx is None:
            return updated_node
        self.changed = True
        body = list(updated_node.body)
        body.insert(idx + 1, self.statement)
        return updated_node.with_changes(body=body)


def whole_document_edit(path: str, old: str, new: str) -> TextEdit:
    lines = old.splitlines(keepends=True)
    return TextEdit(path=path, start=(0, 0), end=(len(lines), 0), replacement=new)


class FixEngine:
    def __init__(self, conventions: Conventions | None = None) -> None:
        self.conventions = conventions or Conventions()

    def actions_for(self, diagnostic: Diagnostic) -> list[FixAction]:
        if diagnostic.rule_id == RuleId.EXPLICIT_ACCESS_MODE:
            return [
                FixAction(
                    title="Add 'True' for read-only access",
                    equivalence_key=ADD_TRUE_KEY,
                    diagnostic=diagnostic,
                    literal="True",
                ),
                FixAction(
                    title="Add 'False' for read-write access",
                    equivalence_key=ADD_FALSE_KEY,
                    diagnostic=diagnostic,
                    literal="False",
                ),
            ]
        if diagnostic.rule_id == RuleId.COPY_MUTATION:
            conventions = self.conventions
            call = (
                f"{conventions.write_back_receiver}.{conventions.write_back_operation}"
                f"({conventions.write_back_index_name}, {conventions.write_back_entity_name}, "
                f"{diagnostic.args[0]})"
            )
            return [
                FixAction(
                    title=f"Add '{call}'",
                    equivalence_key=ADD_WRITE_BACK_KEY,
                    diagnostic=diagnostic,
                )
            ]
        return []

    def apply(self, source: str, action: FixAction) -> FixResult:
        with default_deadline_scope():
            check_deadline()
            try:
                module = cst.parse_module(source)
            except cst.ParserSyntaxError as exc:
                logger.warning("cannot parse document for fix: %s", exc)
                return FixResult(source=source, warnings=[f"LibCST parse failed: {exc}"])
            transformer = self._transformer(action)
            updated = MetadataWrapper(module).visit(transformer)
            if not transformer.changed:
                logger.debug("anchor for %s not found", action.equivalence_key)
                return FixResult(source=source, warnings=["fix anchor not found"])
            new_source = updated.code
            return FixResult(
                source=new_source,
                changed=new_source != source,
                edits=[whole_document_edit(str(action.diagnostic.path), source, new_source)],
            )

    def _transformer(self, action: FixAction) -> _AppendModeArgument | _InsertWriteBack:
        span: Span = action.diagnostic.span
        if action.literal is not None:
            return _AppendModeArgument(
                end=(span[2] + 1, span[3]),
                operations=self.conventions.lookup_operations,
                literal=action.literal,
            )
        conventions = self.conventions
        call = cst.parse_expression(
            f"{conventions.write_back_receiver}.{conventions.write_back_operation}"
            f"({conventions.write_back_index_name}, {conventions.write_back_entity_name}, "
            f"{action.diagnostic.args[0]})"
        )
        return _InsertWriteBack(start=(span[0] + 1, span[1]), statement=cst.Expr(value=call))

    def apply_all(
        self,
        source: str,
        diagnostics: Iterable[Diagnostic],
        *,
        choice: str | None = None,
    ) -> FixResult:
        """Apply the first (or ``choice``-keyed) fix of each diagnostic, bottom-up."""
        current = source
        warnings: list[str] = []
        path = ""
        ordered = sorted(diagnostics, key=lambda diag: diag.span, reverse=True)
        with default_deadline_scope():
            for diagnostic in deadline_loop_iter(ordered):
                path = str(diagnostic.path)
                actions = self.actions_for(diagnostic)
                if choice is not None:
                    actions = [
                        action for action in actions if action.equivalence_key == choice
                    ] or actions
                if not actions:
                    continue
                result = self.apply(current, actions[0])
                warnings.extend(result.warnings)
                current = result.source
        if current == source:
            return FixResult(source=source, warnings=warnings)
        return FixResult(
            source=current,
            changed=True,
            edits=[whole_document_edit(path, source, current)],
            warnings=warnings,
        )
