"""Analysis driver.

Builds the shared symbol index and capability resolver once, then runs the
per-unit rules (release, destroy, borrow modifiers) and the per-module rules
(explicit access mode, copy mutation) on a thread pool. Each task reads only
the shared index, so a failure in one unit is recorded and its siblings
still run.
"""

from __future__ import annotations

import concurrent.futures
import contextvars
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path

from ecsguard.analysis.access_mode import check_access_mode
from ecsguard.analysis.borrow_modifiers import check_borrow_modifiers
from ecsguard.analysis.callgraph import build_call_graph
from ecsguard.analysis.capabilities import CapabilityResolver
from ecsguard.analysis.conventions import Conventions
from ecsguard.analysis.copy_mutation import check_copy_mutations
from ecsguard.analysis.model import DeclarationUnit
from ecsguard.analysis.obligations import check_destroy, check_release
from ecsguard.analysis.rules import RULES, Diagnostic, RuleId
from ecsguard.analysis.symbols import ModuleInfo, SymbolIndex, build_index
from ecsguard.analysis.timeout_context import (
    TimeoutExceeded,
    deadline_loop_iter,
    default_deadline_scope,
)
from ecsguard.analysis.units import extract_units

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AnalysisConfig:
    conventions: Conventions = field(default_factory=Conventions)
    enabled_rules: frozenset[str] = frozenset(RULES)
    exclude_dirs: frozenset[str] = frozenset()
    max_workers: int | None = None
    project_root: Path | None = None

    def is_ignored_path(self, path: Path) -> bool:
        return bool(self.exclude_dirs & set(path.parts))

    def enabled(self, rule_id: RuleId) -> bool:
        return rule_id in self.enabled_rules


@dataclass(frozen=True)
class AnalysisFailure:
    path: Path
    scope: str
    error: str


@dataclass
class AnalysisResult:
    diagnostics: list[Diagnostic] = field(default_factory=list)
    failures: list[AnalysisFailure] = field(default_factory=list)
    units_analyzed: int = 0
    modules_analyzed: int = 0

    @property
    def ok(self) -> bool:
        return not self.diagnostics and not self.failures


def analyze_unit(
    unit: DeclarationUnit,
    index: SymbolIndex,
    resolver: CapabilityResolver,
    config: AnalysisConfig,
) -> list[Diagnostic]:
    if not unit.is_processing_unit:
        return []
    conventions = config.conventions
    diagnostics: list[Diagnostic] = []
    if config.enabled(RuleId.BORROW_MODIFIER):
        diagnostics.extend(check_borrow_modifiers(unit))
    if config.enabled(RuleId.RELEASE_OBLIGATION) or config.enabled(RuleId.DESTROY_OBLIGATION):
        graph = build_call_graph(unit, index)
        if config.enabled(RuleId.RELEASE_OBLIGATION):
            diagnostics.extend(check_release(graph, resolver, conventions))
        if config.enabled(RuleId.DESTROY_OBLIGATION):
            diagnostics.extend(check_destroy(graph, resolver, conventions))
    return diagnostics


def analyze_module(info: ModuleInfo, index: SymbolIndex, config: AnalysisConfig) -> list[Diagnostic]:
    diagnostics: list[Diagnostic] = []
    if config.enabled(RuleId.EXPLICIT_ACCESS_MODE):
        diagnostics.extend(check_access_mode(info, index, config.conventions))
    if config.enabled(RuleId.COPY_MUTATION):
        diagnostics.extend(check_copy_mutations(info, index, config.conventions))
    return diagnostics


def _submit(
    executor: concurrent.futures.Executor,
    fn: Callable[..., list[Diagnostic]],
    *args: object,
) -> concurrent.futures.Future[list[Diagnostic]]:
    # Each task gets its own copy so deadline and cancellation scopes follow it.
    context = contextvars.copy_context()
    return executor.submit(context.run, fn, *args)


def analyze_index(
    index: SymbolIndex,
    config: AnalysisConfig,
    *,
    failures: Iterable[AnalysisFailure] = (),
    unit_analyzer: Callable[..., list[Diagnostic]] = analyze_unit,
    module_analyzer: Callable[..., list[Diagnostic]] = analyze_module,
) -> AnalysisResult:
    result = AnalysisResult(failures=list(failures))
    resolver = CapabilityResolver(index, config.conventions)
    units = extract_units(index, resolver, config.conventions)
    modules = [index.modules[name] for name in sorted(index.modules)]
    tasks: dict[concurrent.futures.Future[list[Diagnostic]], tuple[Path, str]] = {}
    executor = concurrent.futures.ThreadPoolExecutor(
        max_workers=config.max_workers,
        thread_name_prefix="ecsguard",
    )
    try:
        for unit in units:
            future = _submit(executor, unit_analyzer, unit, index, resolver, config)
            tasks[future] = (unit.path, unit.qualname)
        for info in modules:
            future = _submit(executor, module_analyzer, info, index, config)
            tasks[future] = (info.path, info.name)
        for future in deadline_loop_iter(concurrent.futures.as_completed(tasks)):
            path, scope = tasks[future]
            try:
                result.diagnostics.extend(future.result())
            except TimeoutExceeded:
                raise
            except Exception as exc:
                logger.exception("analysis of %s failed", scope)
                result.failures.append(
                    AnalysisFailure(path=path, scope=scope, error=f"{type(exc).__name__}: {exc}")
                )
    except TimeoutExceeded:
        executor.shutdown(wait=False, cancel_futures=True)
        raise
    executor.shutdown(wait=True)
    result.units_analyzed = sum(1 for unit in units if unit.is_processing_unit)
    result.modules_analyzed = len(modules)
    result.diagnostics.sort(key=Diagnostic.sort_key)
    result.failures.sort(key=lambda failure: (str(failure.path), failure.scope))
    logger.info(
        "analysed %d module(s), %d unit(s): %d diagnostic(s), %d failure(s)",
        result.modules_analyzed,
        result.units_analyzed,
        len(result.diagnostics),
        len(result.failures),
    )
    return result


def analyze_sources(
    sources: list[tuple[Path, str]],
    config: AnalysisConfig | None = None,
) -> AnalysisResult:
    config = config or AnalysisConfig()
    with default_deadline_scope():
        index, parse_failures = build_index(sources, config.project_root)
        failures = [
            AnalysisFailure(path=path, scope=str(path), error=error)
            for path, error in parse_failures
        ]
        return analyze_index(index, config, failures=failures)


def analyze_source(
    source: str,
    path: Path | str = "module.py",
    config: AnalysisConfig | None = None,
) -> AnalysisResult:
    return analyze_sources([(Path(path), source)], config)


def iter_paths(paths: Iterable[Path | str], config: AnalysisConfig) -> list[Path]:
    out: list[Path] = []
    for entry in paths:
        path = Path(entry)
        if path.is_dir():
            for candidate in sorted(path.rglob("*.py")):
                if config.is_ignored_path(candidate):
                    continue
                out.append(candidate)
        else:
            if config.is_ignored_path(path):
                continue
            out.append(path)
    return out


def analyze_paths(
    paths: Iterable[Path | str],
    config: AnalysisConfig | None = None,
) -> AnalysisResult:
    config = config or AnalysisConfig()
    with default_deadline_scope():
        sources: list[tuple[Path, str]] = []
        failures: list[AnalysisFailure] = []
        for path in deadline_loop_iter(iter_paths(paths, config)):
            try:
                sources.append((path, path.read_text(encoding="utf-8")))
            except (OSError, UnicodeDecodeError) as exc:
                logger.warning("cannot read %s: %s", path, exc)
                failures.append(AnalysisFailure(path=path, scope=str(path), error=f"read error: {exc}"))
        result = analyze_sources(sources, config)
        result.failures = sorted(
            [*failures, *result.failures],
            key=lambda failure: (str(failure.path), failure.scope),
        )
        return result
