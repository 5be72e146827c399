from __future__ import annotations

import logging
from datetime import date, datetime, time
from pathlib import Path
from typing import TypeAlias
import tomllib

from ecsguard.analysis.conventions import conventions_from_table
from ecsguard.analysis.engine import AnalysisConfig
from ecsguard.analysis.rules import select_rules
from ecsguard.exceptions import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "ecsguard.toml"
PYPROJECT_NAME = "pyproject.toml"

TomlScalar: TypeAlias = str | int | float | bool | None | date | datetime | time
TomlValue: TypeAlias = TomlScalar | list["TomlValue"] | dict[str, "TomlValue"]
TomlTable: TypeAlias = dict[str, TomlValue]


def _load_toml(path: Path) -> TomlTable:
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}
    except OSError as exc:
        logger.warning("cannot read %s: %s", path, exc)
        return {}
    try:
        data = tomllib.loads(raw)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"invalid TOML in {path}: {exc}") from exc
    return data if isinstance(data, dict) else {}


def load_config(root: Path | None = None, config_path: Path | None = None) -> TomlTable:
    """Load ``ecsguard.toml`` or, failing that, ``[tool.ecsguard]`` of pyproject."""
    if config_path is not None:
        data = _load_toml(config_path)
        if config_path.name == PYPROJECT_NAME:
            return _tool_section(data)
        return data
    base = root if root is not None else Path.cwd()
    dedicated = base / DEFAULT_CONFIG_NAME
    if dedicated.exists():
        return _load_toml(dedicated)
    return _tool_section(_load_toml(base / PYPROJECT_NAME))


def _tool_section(data: TomlTable) -> TomlTable:
    tool = data.get("tool", {})
    if not isinstance(tool, dict):
        return {}
    section = tool.get("ecsguard", {})
    return section if isinstance(section, dict) else {}


def conventions_defaults(
    root: Path | None = None, config_path: Path | None = None
) -> TomlTable:
    data = load_config(root=root, config_path=config_path)
    section = data.get("conventions", {})
    return section if isinstance(section, dict) else {}


def analysis_defaults(
    root: Path | None = None, config_path: Path | None = None
) -> TomlTable:
    data = load_config(root=root, config_path=config_path)
    section = data.get("analysis", {})
    return section if isinstance(section, dict) else {}


def _normalize_name_list(value: TomlValue) -> list[str]:
    items: list[str] = []
    if value is None:
        return items
    if isinstance(value, str):
        items = [part.strip() for part in value.split(",") if part.strip()]
    elif isinstance(value, (list, tuple, set)):
        for item in value:
            if isinstance(item, str):
                items.extend([part.strip() for part in item.split(",") if part.strip()])
    return [item for item in items if item]


def _as_positive_int(value: TomlValue, *, key: str) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"analysis '{key}' must be an integer")
    if value <= 0:
        raise ConfigError(f"analysis '{key}' must be positive")
    return value


def merge_payload(payload: TomlTable, defaults: TomlTable) -> TomlTable:
    merged = dict(defaults)
    for key, value in payload.items():
        if value is None:
            continue
        merged[key] = value
    return merged


def build_analysis_config(
    analysis: TomlTable | None = None,
    conventions: TomlTable | None = None,
    *,
    project_root: Path | None = None,
) -> AnalysisConfig:
    section = analysis or {}
    select = _normalize_name_list(section.get("select"))
    ignore = _normalize_name_list(section.get("ignore"))
    return AnalysisConfig(
        conventions=conventions_from_table(conventions),
        enabled_rules=select_rules(select or None, ignore),
        exclude_dirs=frozenset(_normalize_name_list(section.get("exclude"))),
        max_workers=_as_positive_int(section.get("max_workers"), key="max_workers"),
        project_root=project_root,
    )
