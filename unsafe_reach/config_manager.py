"""Configuration loading from TOML files."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import toml

from . import config
from .config import AnalysisConfig
from .errors import ConfigError

logger = logging.getLogger(__name__)

SECTION = "analysis"


def load_full_config(path: Optional[Path] = None) -> Dict[str, Any]:
    """Load the entire TOML document.

    An explicit *path* must exist and parse; the default location is optional
    and a broken default file only produces a warning.
    """
    explicit = path is not None
    target = path if explicit else config.CONFIG_FILE

    if not target.exists():
        if explicit:
            raise ConfigError(f"Config file not found: {target}")
        return {}

    try:
        with open(target, "r", encoding="utf-8") as f:
            return toml.load(f)
    except (OSError, toml.TomlDecodeError) as exc:
        if explicit:
            raise ConfigError(f"Could not read config file {target}: {exc}") from exc
        logger.warning("Ignoring unreadable config file %s: %s", target, exc)
        return {}


def load_analysis_settings(path: Optional[Path] = None) -> Dict[str, Any]:
    """Return the ``[analysis]`` table, or an empty dict."""
    section = load_full_config(path).get(SECTION, {})
    if not isinstance(section, dict):
        raise ConfigError(f"[{SECTION}] must be a table")
    return section


def resolve_config(path: Optional[Path] = None, **overrides: Any) -> AnalysisConfig:
    """Combine defaults, the TOML file and explicit *overrides* (highest wins)."""
    settings = load_analysis_settings(path)
    try:
        return AnalysisConfig.from_mapping(settings).with_overrides(**overrides)
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc


def save_analysis_settings(settings: Dict[str, Any], path: Optional[Path] = None) -> Path:
    """Write *settings* into the ``[analysis]`` table, preserving other sections."""
    target = path or config.CONFIG_FILE
    document = load_full_config(path) if target.exists() else {}
    document[SECTION] = {**document.get(SECTION, {}), **settings}
    target.parent.mkdir(parents=True, exist_ok=True)
    with open(target, "w", encoding="utf-8") as f:
        toml.dump(document, f)
    return target
