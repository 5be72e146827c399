from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from ecsguard.analysis.engine import (
    AnalysisConfig,
    analyze_index,
    analyze_paths,
    analyze_source,
    analyze_sources,
    analyze_unit,
    iter_paths,
)
from ecsguard.analysis.rules import RuleId
from ecsguard.analysis.symbols import build_index
from ecsguard.analysis.timeout_context import TimeoutExceeded, deadline_clock_scope
from ecsguard.deadline_clock import GasMeter

from tests.ecs_helpers import COMPONENTS, ECS_IMPORTS, job_source

TWO_UNITS = """
class First(JobEntity):
    def execute(self, index: In[int], entity: In[Entity], poisoned: In[Poisoned]):
        pass


class Second(JobEntity):
    def execute(self, index: In[int], entity: In[Entity], hit: In[Hit]):
        pass
"""


def _release_ids(result) -> list[tuple[str, tuple[str, ...]]]:
    return [(diag.rule_id, diag.args) for diag in result.diagnostics]


def test_end_to_end_release_obligation() -> None:
    missing = """
    class ApplyPoison(JobEntity):
        def execute(self, index: In[int], entity: In[Entity], poisoned: In[Poisoned]):
            pass
    """
    result = analyze_source(job_source(missing), "jobs.py")
    assert _release_ids(result) == [(RuleId.RELEASE_OBLIGATION, ("poisoned",))]

    released = """
    class ApplyPoison(JobEntity):
        def execute(self, index: In[int], entity: In[Entity], poisoned: In[Poisoned]):
            self.ecb.remove_component[Poisoned](index, entity)
    """
    assert analyze_source(job_source(released), "jobs.py").ok

    branched = """
    class ApplyPoison(JobEntity):
        def execute(self, index: In[int], entity: In[Entity], poisoned: In[Poisoned]):
            if poisoned.ticks:
                self.cure(index, entity)

        def cure(self, index, entity):
            self.ecb.remove_component[Poisoned](index, entity)
    """
    result = analyze_source(job_source(branched), "jobs.py")
    assert _release_ids(result) == [(RuleId.RELEASE_OBLIGATION, ("poisoned",))]


def test_components_resolve_across_modules(tmp_path: Path) -> None:
    components = ECS_IMPORTS + COMPONENTS
    jobs = textwrap.dedent(
        """
        from ecs import Entity, In, JobEntity

        from game.components import Poisoned


        class ApplyPoison(JobEntity):
            def execute(self, index: In[int], entity: In[Entity], poisoned: In[Poisoned]):
                pass
        """
    )
    result = analyze_sources(
        [
            (tmp_path / "game" / "components.py", components),
            (tmp_path / "game" / "jobs.py", jobs),
        ],
        AnalysisConfig(project_root=tmp_path),
    )
    assert result.modules_analyzed == 2
    assert result.units_analyzed == 1
    assert [diag.path for diag in result.diagnostics] == [tmp_path / "game" / "jobs.py"]


def test_unparsable_module_does_not_block_others() -> None:
    result = analyze_sources(
        [
            (Path("broken.py"), "def broken(:\n"),
            (Path("jobs.py"), job_source(TWO_UNITS)),
        ]
    )
    assert [failure.path for failure in result.failures] == [Path("broken.py")]
    assert result.failures[0].error.startswith("parse error:")
    assert len(result.diagnostics) == 2
    assert not result.ok


def test_failing_unit_is_isolated_from_siblings() -> None:
    index, failures = build_index([(Path("jobs.py"), job_source(TWO_UNITS))])
    assert failures == []

    def _flaky(unit, index, resolver, config):
        if unit.name == "First":
            raise RuntimeError("boom")
        return analyze_unit(unit, index, resolver, config)

    result = analyze_index(index, AnalysisConfig(max_workers=2), unit_analyzer=_flaky)
    assert [(failure.scope, failure.error) for failure in result.failures] == [
        ("jobs.First", "RuntimeError: boom")
    ]
    assert _release_ids(result) == [(RuleId.RELEASE_OBLIGATION, ("hit",))]


def test_enabled_rules_limit_diagnostics() -> None:
    body = """
    class ApplyPoison(JobEntity):
        def execute(self, index, entity: In[Entity], poisoned: In[Poisoned]):
            pass
    """
    source = job_source(body)
    everything = analyze_source(source, "jobs.py")
    assert {diag.rule_id for diag in everything.diagnostics} == {
        RuleId.BORROW_MODIFIER,
        RuleId.RELEASE_OBLIGATION,
    }
    only_borrow = analyze_source(
        source,
        "jobs.py",
        AnalysisConfig(enabled_rules=frozenset({RuleId.BORROW_MODIFIER})),
    )
    assert [diag.rule_id for diag in only_borrow.diagnostics] == [RuleId.BORROW_MODIFIER]


def test_diagnostics_are_sorted_by_position() -> None:
    result = analyze_source(job_source(TWO_UNITS), "jobs.py")
    spans = [diag.span for diag in result.diagnostics]
    assert spans == sorted(spans)


def test_iter_paths_skips_excluded_directories(tmp_path: Path) -> None:
    (tmp_path / "pkg").mkdir()
    (tmp_path / "pkg" / "jobs.py").write_text("x = 1\n", encoding="utf-8")
    (tmp_path / "pkg" / "notes.txt").write_text("ignored\n", encoding="utf-8")
    (tmp_path / ".venv").mkdir()
    (tmp_path / ".venv" / "site.py").write_text("x = 2\n", encoding="utf-8")
    config = AnalysisConfig(exclude_dirs=frozenset({".venv"}))
    assert iter_paths([tmp_path], config) == [tmp_path / "pkg" / "jobs.py"]
    assert iter_paths([tmp_path / ".venv" / "site.py"], config) == []


def test_analyze_paths_records_unreadable_files(tmp_path: Path) -> None:
    jobs = tmp_path / "jobs.py"
    jobs.write_text(job_source(TWO_UNITS), encoding="utf-8")
    binary = tmp_path / "binary.py"
    binary.write_bytes(b"\xff\xfe\x00garbage")
    result = analyze_paths([tmp_path], AnalysisConfig(project_root=tmp_path))
    assert [failure.path for failure in result.failures] == [binary]
    assert result.failures[0].error.startswith("read error:")
    assert len(result.diagnostics) == 2


def test_gas_budget_is_exact_under_worker_threads() -> None:
    sources = [
        (Path(f"jobs_{number}.py"), job_source(TWO_UNITS)) for number in range(6)
    ]
    spent: list[int] = []
    for workers in (1, 8):
        meter = GasMeter(limit=10_000_000)
        with deadline_clock_scope(meter):
            result = analyze_sources(sources, AnalysisConfig(max_workers=workers))
        assert len(result.diagnostics) == 12
        spent.append(meter.get_mark())
    assert spent[0] == spent[1]

    with deadline_clock_scope(GasMeter(limit=spent[0] // 2)):
        with pytest.raises(TimeoutExceeded):
            analyze_sources(sources, AnalysisConfig(max_workers=8))
