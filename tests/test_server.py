from __future__ import annotations

import textwrap
from pathlib import Path
from types import SimpleNamespace

from lsprotocol.types import (
    CodeActionContext,
    CodeActionParams,
    Diagnostic as LspDiagnostic,
    Position,
    PositionEncodingKind,
    Range,
    TextDocumentIdentifier,
)

from pygls.workspace import PositionCodec

from ecsguard import server
from ecsguard.analysis.rules import Diagnostic, RuleId

from tests.ecs_helpers import job_source

LOOKUP = textwrap.dedent(
    """
    from ecs import Health, SystemAPI


    class HealthSystem:
        def on_create(self):
            self.lookup = SystemAPI.get_component_lookup[Health]()
    """
)

LEAKY = """
class ApplyPoison(JobEntity):
    def execute(self, index: In[int], entity: In[Entity], poisoned: In[Poisoned]):
        pass
"""


class _DummyDocument:
    def __init__(self, source: str) -> None:
        self.source = source


class _DummyWorkspace:
    def __init__(self, root_path: str | None, documents: dict[str, str] | None = None) -> None:
        self.root_path = root_path
        self.documents = documents or {}
        self.position_codec = PositionCodec(encoding=PositionEncodingKind.Utf16)

    def get_text_document(self, uri: str) -> _DummyDocument:
        return _DummyDocument(self.documents[uri])


class _DummyServer:
    def __init__(self, root_path: str | None, documents: dict[str, str] | None = None) -> None:
        self.workspace = _DummyWorkspace(root_path, documents)
        self.published: list = []

    def text_document_publish_diagnostics(self, params) -> None:
        self.published.append(params)


def test_uri_to_path() -> None:
    assert server._uri_to_path("file:///tmp/my%20jobs.py") == Path("/tmp/my jobs.py")
    assert server._uri_to_path("jobs.py") == Path("jobs.py")


def test_lsp_diagnostic_round_trip() -> None:
    diagnostic = Diagnostic(
        rule_id=RuleId.RELEASE_OBLIGATION,
        args=("poisoned",),
        path=Path("jobs.py"),
        span=(3, 4, 3, 12),
        unit="jobs.ApplyPoison",
    )
    lsp = server.to_lsp_diagnostic(diagnostic)
    assert lsp.code == "ECS005"
    assert lsp.source == "ecsguard"
    assert lsp.message == "Resource 'poisoned' was not released"
    assert lsp.range.start == Position(line=3, character=4)
    assert server.from_lsp_diagnostic(Path("jobs.py"), lsp) == diagnostic


def test_foreign_lsp_diagnostics_are_ignored() -> None:
    foreign = LspDiagnostic(
        range=Range(start=Position(line=0, character=0), end=Position(line=0, character=1)),
        message="unused import",
        code="F401",
        source="flake8",
    )
    assert server.from_lsp_diagnostic(Path("jobs.py"), foreign) is None
    malformed = LspDiagnostic(
        range=foreign.range,
        message="missing args",
        code="ECS005",
        source="ecsguard",
        data={"args": []},
    )
    assert server.from_lsp_diagnostic(Path("jobs.py"), malformed) is None


def test_diagnostics_for_document_uses_workspace_and_unsaved_text(tmp_path: Path) -> None:
    components = tmp_path / "components.py"
    components.write_text(job_source(""), encoding="utf-8")
    jobs = tmp_path / "jobs.py"
    jobs.write_text("", encoding="utf-8")
    unsaved = textwrap.dedent(
        """
        from ecs import Entity, In, JobEntity

        from components import Poisoned


        class ApplyPoison(JobEntity):
            def execute(self, index: In[int], entity: In[Entity], poisoned: In[Poisoned]):
                pass
        """
    )
    diagnostics = server.diagnostics_for_document(jobs, unsaved, tmp_path)
    assert [(diag.rule_id, diag.args) for diag in diagnostics] == [
        (RuleId.RELEASE_OBLIGATION, ("poisoned",))
    ]
    assert server.diagnostics_for_document(components, job_source(""), tmp_path) == []


def test_did_open_publishes_diagnostics(tmp_path: Path) -> None:
    path = tmp_path / "jobs.py"
    uri = path.as_uri()
    ls = _DummyServer(str(tmp_path), {uri: job_source(LEAKY)})
    server.did_open(ls, SimpleNamespace(text_document=SimpleNamespace(uri=uri)))
    [published] = ls.published
    assert published.uri == uri
    assert [diag.code for diag in published.diagnostics] == ["ECS005"]


def test_code_action_offers_both_access_modes(tmp_path: Path) -> None:
    path = tmp_path / "systems.py"
    uri = path.as_uri()
    ls = _DummyServer(str(tmp_path), {uri: LOOKUP})
    [diagnostic] = server.diagnostics_for_document(path, LOOKUP, tmp_path)
    params = CodeActionParams(
        text_document=TextDocumentIdentifier(uri=uri),
        range=Range(start=Position(line=0, character=0), end=Position(line=0, character=0)),
        context=CodeActionContext(diagnostics=[server.to_lsp_diagnostic(diagnostic)]),
    )
    actions = server.code_action(ls, params)
    assert [action.title for action in actions] == [
        "Add 'True' for read-only access",
        "Add 'False' for read-write access",
    ]
    [edit] = actions[1].edit.changes[uri]
    assert "get_component_lookup[Health](False)" in edit.new_text


def test_execute_fixes_returns_edits(tmp_path: Path) -> None:
    path = tmp_path / "systems.py"
    path.write_text(LOOKUP, encoding="utf-8")
    ls = _DummyServer(str(tmp_path))
    result = server.execute_fixes(
        ls, {"path": str(path), "choice": "ecsguard.add-false", "timeout_ms": 60_000}
    )
    assert result["errors"] == []
    assert result["applied"] == 1
    [edit] = result["edits"]
    assert "get_component_lookup[Health](False)" in edit["replacement"]
    assert path.read_text(encoding="utf-8") == LOOKUP


def test_execute_fixes_reports_bad_requests(tmp_path: Path) -> None:
    ls = _DummyServer(None)
    assert server.execute_fixes(ls, {"source": "x = 1\n"})["errors"]
    missing = server.execute_fixes(ls, {"path": str(tmp_path / "missing.py")})
    assert missing["errors"][0].startswith("Failed to read")


def test_start_uses_injected_runner() -> None:
    calls: list[str] = []
    server.start(lambda: calls.append("started"))
    assert calls == ["started"]


def test_lsp_columns_count_utf16_units() -> None:
    lines = ['        x = "\U0001F40D"; poisoned.release()\n']
    start = lines[0].index("poisoned")
    diagnostic = Diagnostic(
        rule_id=RuleId.RELEASE_OBLIGATION,
        args=("poisoned",),
        path=Path("jobs.py"),
        span=(0, start, 0, start + 8),
        unit="jobs.ApplyPoison",
    )
    lsp = server.to_lsp_diagnostic(diagnostic, lines)
    assert lsp.range.start == Position(line=0, character=start + 1)
    assert lsp.range.end == Position(line=0, character=start + 9)
    assert server.from_lsp_diagnostic(Path("jobs.py"), lsp, lines) == diagnostic


def test_published_ranges_and_code_actions_survive_astral_text(tmp_path: Path) -> None:
    source = textwrap.dedent(
        """
        from ecs import Health, SystemAPI


        class HealthSystem:
            def on_create(self):
                label = "\U0001F40D"; self.lookup = SystemAPI.get_component_lookup[Health]()
        """
    )
    path = tmp_path / "systems.py"
    uri = path.as_uri()
    ls = _DummyServer(str(tmp_path), {uri: source})
    server.did_open(ls, SimpleNamespace(text_document=SimpleNamespace(uri=uri)))
    [published] = ls.published
    [lsp_diagnostic] = published.diagnostics
    [diagnostic] = server.diagnostics_for_document(path, source, tmp_path)
    assert lsp_diagnostic.range.start.character == diagnostic.span[1] + 1

    params = CodeActionParams(
        text_document=TextDocumentIdentifier(uri=uri),
        range=lsp_diagnostic.range,
        context=CodeActionContext(diagnostics=[lsp_diagnostic]),
    )
    actions = server.code_action(ls, params)
    assert len(actions) == 2
    [edit] = actions[0].edit.changes[uri]
    assert '"\U0001F40D"; self.lookup = SystemAPI.get_component_lookup[Health](True)' in edit.new_text
