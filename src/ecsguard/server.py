from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Sequence
from urllib.parse import unquote, urlparse

from pygls.lsp.server import LanguageServer
from pygls.workspace import PositionCodec
from pydantic import ValidationError
from lsprotocol.types import (
    TEXT_DOCUMENT_CODE_ACTION,
    TEXT_DOCUMENT_DID_CHANGE,
    TEXT_DOCUMENT_DID_OPEN,
    TEXT_DOCUMENT_DID_SAVE,
    CodeAction,
    CodeActionKind,
    CodeActionParams,
    Diagnostic as LspDiagnostic,
    DiagnosticSeverity,
    Position,
    PositionEncodingKind,
    PublishDiagnosticsParams,
    Range,
    TextEdit as LspTextEdit,
    WorkspaceEdit,
)

from ecsguard import __version__
from ecsguard.analysis.engine import AnalysisConfig, analyze_sources, iter_paths
from ecsguard.analysis.rules import RULES, Diagnostic
from ecsguard.analysis.timeout_context import (
    Deadline,
    deadline_loop_iter,
    deadline_scope,
    default_deadline_scope,
)
from ecsguard.config import analysis_defaults, build_analysis_config, conventions_defaults
from ecsguard.exceptions import ConfigError
from ecsguard.fixes import FixEngine
from ecsguard.schema import FixRequest, FixResponse, TextEditDTO

logger = logging.getLogger(__name__)

server = LanguageServer("ecsguard", __version__)
FIX_COMMAND = "ecsguard.applyFixes"
SOURCE = "ecsguard"


def _uri_to_path(uri: str) -> Path:
    parsed = urlparse(uri)
    if parsed.scheme == "file":
        return Path(unquote(parsed.path))
    return Path(uri)


@contextmanager
def _deadline_scope_from_payload(payload: dict):
    timeout_ms = payload.get("timeout_ms")
    if isinstance(timeout_ms, int) and not isinstance(timeout_ms, bool) and timeout_ms > 0:
        deadline = Deadline.from_timeout_ms(timeout_ms)
    else:
        deadline = Deadline.unbounded()
    with deadline_scope(deadline):
        yield


def _workspace_root(ls: LanguageServer) -> Path | None:
    if ls.workspace.root_path:
        return Path(ls.workspace.root_path)
    return None


def _analysis_config(root: Path | None) -> AnalysisConfig:
    try:
        return build_analysis_config(
            analysis_defaults(root=root),
            conventions_defaults(root=root),
            project_root=root,
        )
    except ConfigError as exc:
        logger.warning("ignoring invalid configuration: %s", exc)
        return AnalysisConfig(project_root=root)


def diagnostics_for_document(
    path: Path,
    source: str,
    root: Path | None,
    config: AnalysisConfig | None = None,
) -> list[Diagnostic]:
    """Analyse ``source`` as ``path`` alongside the rest of the workspace."""
    config = config or _analysis_config(root)
    sources: dict[Path, str] = {}
    if root is not None:
        with default_deadline_scope():
            for candidate in deadline_loop_iter(iter_paths([root], config)):
                try:
                    sources[candidate.resolve()] = candidate.read_text(encoding="utf-8")
                except (OSError, UnicodeDecodeError) as exc:
                    logger.debug("skipping %s: %s", candidate, exc)
    sources[path.resolve()] = source
    result = analyze_sources(sorted(sources.items()), config)
    target = path.resolve()
    return [diag for diag in result.diagnostics if Path(diag.path) == target]


_UTF16 = PositionCodec(encoding=PositionEncodingKind.Utf16)


def _source_lines(source: str) -> list[str]:
    return source.splitlines(keepends=True)


def to_lsp_diagnostic(
    diagnostic: Diagnostic,
    lines: Sequence[str] = (),
    codec: PositionCodec = _UTF16,
) -> LspDiagnostic:
    """Convert a diagnostic; columns are re-encoded for the client when ``lines`` is given."""
    start_line, start_col, end_line, end_col = diagnostic.span
    span_range = Range(
        start=Position(line=start_line, character=start_col),
        end=Position(line=end_line, character=end_col),
    )
    if lines:
        span_range = codec.range_to_client_units(list(lines), span_range)
    return LspDiagnostic(
        range=span_range,
        message=diagnostic.message,
        severity=DiagnosticSeverity.Warning,
        code=diagnostic.rule_id,
        source=SOURCE,
        data={"args": list(diagnostic.args), "unit": diagnostic.unit},
    )


def from_lsp_diagnostic(
    path: Path,
    diagnostic: LspDiagnostic,
    lines: Sequence[str] = (),
    codec: PositionCodec = _UTF16,
) -> Diagnostic | None:
    if diagnostic.source != SOURCE or diagnostic.code not in RULES:
        return None
    data = diagnostic.data if isinstance(diagnostic.data, dict) else {}
    args = data.get("args", [])
    if not isinstance(args, list) or len(args) != RULES[str(diagnostic.code)].arity:
        return None
    span_range = diagnostic.range
    if lines:
        span_range = codec.range_from_client_units(list(lines), span_range)
    start, end = span_range.start, span_range.end
    return Diagnostic(
        rule_id=str(diagnostic.code),
        args=tuple(str(arg) for arg in args),
        path=path,
        span=(start.line, start.character, end.line, end.character),
        unit=data.get("unit"),
    )


def _publish(ls: LanguageServer, uri: str) -> None:
    doc = ls.workspace.get_text_document(uri)
    path = _uri_to_path(uri)
    diagnostics = diagnostics_for_document(path, doc.source, _workspace_root(ls))
    lines = _source_lines(doc.source)
    codec = ls.workspace.position_codec
    ls.text_document_publish_diagnostics(
        PublishDiagnosticsParams(
            uri=uri,
            diagnostics=[to_lsp_diagnostic(diag, lines, codec) for diag in diagnostics],
        )
    )


@server.command(FIX_COMMAND)
def execute_fixes(ls: LanguageServer, payload: dict | None = None) -> dict:
    payload = payload if isinstance(payload, dict) else {}
    with _deadline_scope_from_payload(payload):
        try:
            request = FixRequest.model_validate(payload)
        except ValidationError as exc:
            return FixResponse(errors=[str(exc)]).model_dump()
        path = Path(request.path)
        source = request.source
        if source is None:
            try:
                source = path.read_text(encoding="utf-8")
            except OSError as exc:
                return FixResponse(errors=[f"Failed to read {path}: {exc}"]).model_dump()
        root = _workspace_root(ls)
        config = _analysis_config(root)
        diagnostics = [
            diag
            for diag in diagnostics_for_document(path, source, root, config)
            if diag.rule.fixable and (request.rule is None or diag.rule_id == request.rule)
        ]
        result = FixEngine(config.conventions).apply_all(
            source, diagnostics, choice=request.choice
        )
        return FixResponse(
            edits=[TextEditDTO.from_edit(edit) for edit in result.edits],
            applied=len(diagnostics) if result.changed else 0,
            warnings=result.warnings,
        ).model_dump()


@server.feature(TEXT_DOCUMENT_CODE_ACTION)
def code_action(ls: LanguageServer, params: CodeActionParams) -> list[CodeAction]:
    uri = params.text_document.uri
    path = _uri_to_path(uri)
    doc = ls.workspace.get_text_document(uri)
    lines = _source_lines(doc.source)
    engine = FixEngine(_analysis_config(_workspace_root(ls)).conventions)
    actions: list[CodeAction] = []
    for lsp_diagnostic in params.context.diagnostics:
        diagnostic = from_lsp_diagnostic(path, lsp_diagnostic, lines, ls.workspace.position_codec)
        if diagnostic is None:
            continue
        for action in engine.actions_for(diagnostic):
            result = engine.apply(doc.source, action)
            if not result.changed:
                continue
            edits = [
                LspTextEdit(
                    range=Range(
                        start=Position(line=edit.start[0], character=edit.start[1]),
                        end=Position(line=edit.end[0], character=edit.end[1]),
                    ),
                    new_text=edit.replacement,
                )
                for edit in result.edits
            ]
            actions.append(
                CodeAction(
                    title=action.title,
                    kind=CodeActionKind.QuickFix,
                    diagnostics=[lsp_diagnostic],
                    edit=WorkspaceEdit(changes={uri: edits}),
                    data={"equivalence_key": action.equivalence_key},
                )
            )
    return actions


@server.feature(TEXT_DOCUMENT_DID_OPEN)
def did_open(ls: LanguageServer, params) -> None:
    _publish(ls, params.text_document.uri)


@server.feature(TEXT_DOCUMENT_DID_CHANGE)
def did_change(ls: LanguageServer, params) -> None:
    _publish(ls, params.text_document.uri)


@server.feature(TEXT_DOCUMENT_DID_SAVE)
def did_save(ls: LanguageServer, params) -> None:
    _publish(ls, params.text_document.uri)


def start(start_fn: Callable[[], None] | None = None) -> None:
    """Start the language server on stdio."""
    (start_fn or server.start_io)()


if __name__ == "__main__":  # pragma: no cover
    start()  # pragma: no cover
