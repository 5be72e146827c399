from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import List, Optional
import logging

import typer

from ecsguard.analysis.engine import AnalysisConfig, AnalysisResult, analyze_paths
from ecsguard.analysis.rules import RULES
from ecsguard.analysis.timeout_context import (
    Deadline,
    TimeoutExceeded,
    deadline_scope,
)
from ecsguard.config import (
    TomlTable,
    analysis_defaults,
    build_analysis_config,
    conventions_defaults,
    merge_payload,
)
from ecsguard.exceptions import ConfigError
from ecsguard.fixes import FixEngine
from ecsguard.schema import CheckResponse

app = typer.Typer(add_completion=False)

_LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"
_EXIT_FINDINGS = 1
_EXIT_USAGE = 2


def _configure_logging(verbose: int) -> None:
    if verbose <= 0:
        return
    logger = logging.getLogger("ecsguard")
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(_LOG_FORMAT))
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if verbose > 1 else logging.INFO)


@contextmanager
def _cli_deadline_scope(timeout_ms: Optional[int]):
    if timeout_ms is not None and timeout_ms <= 0:
        raise typer.BadParameter("--timeout-ms must be positive")
    deadline = Deadline.unbounded() if timeout_ms is None else Deadline.from_timeout_ms(timeout_ms)
    with deadline_scope(deadline):
        yield


def _split_csv_entries(entries: List[str] | None) -> list[str] | None:
    if not entries:
        return None
    out: list[str] = []
    for entry in entries:
        out.extend(part.strip() for part in entry.split(",") if part.strip())
    return out


def _load_analysis_config(
    *,
    root: Path,
    config: Optional[Path],
    payload: TomlTable,
) -> AnalysisConfig:
    try:
        defaults = analysis_defaults(root=root, config_path=config)
        conventions = conventions_defaults(root=root, config_path=config)
        return build_analysis_config(
            merge_payload(payload, defaults),
            conventions,
            project_root=root,
        )
    except ConfigError as exc:
        typer.echo(f"ecsguard: configuration error: {exc}", err=True)
        raise typer.Exit(code=_EXIT_USAGE)


def _emit_text(result: AnalysisResult) -> None:
    for diagnostic in result.diagnostics:
        typer.echo(diagnostic.lint_line())
    for failure in result.failures:
        typer.echo(f"{failure.path}: error: {failure.scope}: {failure.error}", err=True)
    typer.echo(
        f"{len(result.diagnostics)} diagnostic(s) in {result.modules_analyzed} module(s)",
        err=True,
    )


@app.command()
def check(
    paths: List[Path] = typer.Argument(None),
    root: Path = typer.Option(Path("."), "--root"),
    config: Optional[Path] = typer.Option(None, "--config"),
    select: Optional[List[str]] = typer.Option(
        None, "--select", help="Rule ids or names to enable (comma-separated, repeatable)."
    ),
    ignore: Optional[List[str]] = typer.Option(
        None, "--ignore", help="Rule ids or names to disable (comma-separated, repeatable)."
    ),
    exclude: Optional[List[str]] = typer.Option(
        None, "--exclude", help="Directory names to skip (comma-separated, repeatable)."
    ),
    output_format: str = typer.Option("text", "--format", help="text or json."),
    workers: Optional[int] = typer.Option(None, "--workers", min=1),
    timeout_ms: Optional[int] = typer.Option(None, "--timeout-ms"),
    verbose: int = typer.Option(0, "-v", "--verbose", count=True),
) -> None:
    """Run the lifecycle rules over PATHS and report diagnostics."""
    _configure_logging(verbose)
    if output_format not in {"text", "json"}:
        raise typer.BadParameter("--format must be 'text' or 'json'")
    payload: TomlTable = {
        "select": _split_csv_entries(select),
        "ignore": _split_csv_entries(ignore),
        "exclude": _split_csv_entries(exclude),
        "max_workers": workers,
    }
    analysis_config = _load_analysis_config(root=root, config=config, payload=payload)
    targets = list(paths) if paths else [root]
    try:
        with _cli_deadline_scope(timeout_ms):
            result = analyze_paths(targets, analysis_config)
    except TimeoutExceeded as exc:
        typer.echo(f"ecsguard: {exc}", err=True)
        raise typer.Exit(code=_EXIT_USAGE)
    if output_format == "json":
        typer.echo(CheckResponse.from_result(result).model_dump_json(indent=2))
    else:
        _emit_text(result)
    if result.diagnostics or result.failures:
        raise typer.Exit(code=_EXIT_FINDINGS)


@app.command()
def fix(
    path: Path = typer.Argument(..., exists=True, dir_okay=False),
    root: Path = typer.Option(Path("."), "--root"),
    config: Optional[Path] = typer.Option(None, "--config"),
    rule: Optional[str] = typer.Option(None, "--rule", help="Only fix this rule id."),
    choice: Optional[str] = typer.Option(
        None, "--choice", help="Equivalence key of the fix to prefer, e.g. ecsguard.add-false."
    ),
    write: bool = typer.Option(False, "--write", help="Rewrite the file in place."),
    timeout_ms: Optional[int] = typer.Option(None, "--timeout-ms"),
    verbose: int = typer.Option(0, "-v", "--verbose", count=True),
) -> None:
    """Apply the available quick fixes to PATH."""
    _configure_logging(verbose)
    analysis_config = _load_analysis_config(root=root, config=config, payload={})
    source = path.read_text(encoding="utf-8")
    try:
        with _cli_deadline_scope(timeout_ms):
            result = analyze_paths([path], analysis_config)
            diagnostics = [
                diag
                for diag in result.diagnostics
                if diag.rule.fixable and (rule is None or diag.rule_id == rule.upper())
            ]
            fixed = FixEngine(analysis_config.conventions).apply_all(
                source, diagnostics, choice=choice
            )
    except TimeoutExceeded as exc:
        typer.echo(f"ecsguard: {exc}", err=True)
        raise typer.Exit(code=_EXIT_USAGE)
    for warning in fixed.warnings:
        typer.echo(f"ecsguard: {warning}", err=True)
    if write:
        if fixed.changed:
            path.write_text(fixed.source, encoding="utf-8")
        typer.echo(f"applied {len(diagnostics) if fixed.changed else 0} fix(es) to {path}", err=True)
        return
    typer.echo(fixed.source, nl=False)


@app.command("rules")
def list_rules() -> None:
    """List the rule table."""
    for rule in RULES.values():
        marker = " (fixable)" if rule.fixable else ""
        typer.echo(f"{rule.id}  {rule.name:<26} {rule.message}{marker}")


@app.command()
def lsp() -> None:
    """Start the language server on stdio."""
    from ecsguard.server import start

    start()


def main() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    main()  # pragma: no cover
