"""Analysis defaults and the configuration value threaded through a run."""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Callable, Dict, Mapping

logger = logging.getLogger(__name__)

BASE_DIR = Path(os.environ.get("UNSAFE_REACH_HOME", str(Path.home() / ".unsafe-reach"))).expanduser()
CONFIG_FILE = BASE_DIR / "config.toml"

SUPPORTED_EXTENSIONS = {".rs"}

# Named fallbacks; each can be overridden through the environment.
FALLBACK_MAX_DEPTH = 20
FALLBACK_FILE_SIZE_LIMIT = 10 * 1024 * 1024
FALLBACK_TIMEOUT = 30.0
FALLBACK_MAX_PATHS = 10_000
FALLBACK_WORKERS = min(32, (os.cpu_count() or 1) + 4)


def _coerce(key: str, current: Any, value: Any) -> Any:
    if isinstance(current, bool):
        if isinstance(value, str):
            return value.strip().lower() in {"1", "true", "yes", "on"}
        return bool(value)
    try:
        return type(current)(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"invalid value for {key}: {value!r}") from exc


def env_default(name: str, fallback: Any, valid: Callable[[Any], bool] = lambda value: True) -> Any:
    """Read a default from the environment, keeping *fallback* when it is unusable."""
    raw = os.environ.get(name)
    if raw is None:
        return fallback
    try:
        value = _coerce(name, fallback, raw)
    except ValueError:
        value = None
    if value is None or not valid(value):
        logger.warning("Ignoring %s=%r; using %r", name, raw, fallback)
        return fallback
    return value


DEFAULT_MAX_DEPTH = env_default("UNSAFE_REACH_MAX_DEPTH", FALLBACK_MAX_DEPTH, lambda v: v >= 0)
DEFAULT_FILE_SIZE_LIMIT = env_default("UNSAFE_REACH_FILE_SIZE_LIMIT", FALLBACK_FILE_SIZE_LIMIT, lambda v: v > 0)
DEFAULT_TIMEOUT = env_default("UNSAFE_REACH_TIMEOUT", FALLBACK_TIMEOUT, lambda v: v > 0)
DEFAULT_MAX_PATHS = env_default("UNSAFE_REACH_MAX_PATHS", FALLBACK_MAX_PATHS, lambda v: v >= 1)
DEFAULT_WORKERS = env_default("UNSAFE_REACH_WORKERS", FALLBACK_WORKERS, lambda v: v >= 1)


@dataclass(frozen=True)
class AnalysisConfig:
    """Settings for one analysis run.

    ``max_depth`` counts hops (edges) from the entry function to the unsafe
    function. ``file_size_limit`` is in bytes and ``timeout`` in seconds per
    file.
    """

    max_depth: int = DEFAULT_MAX_DEPTH
    file_size_limit: int = DEFAULT_FILE_SIZE_LIMIT
    timeout: float = DEFAULT_TIMEOUT
    workers: int = DEFAULT_WORKERS
    max_paths: int = DEFAULT_MAX_PATHS
    include_crate_visible: bool = False
    skip_unsafe_entries: bool = False
    stop_at_unsafe: bool = False
    minimal_paths: bool = False

    def __post_init__(self) -> None:
        if self.max_depth < 0:
            raise ValueError("max_depth must be >= 0")
        if self.file_size_limit <= 0:
            raise ValueError("file_size_limit must be positive")
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")
        if self.workers < 1:
            raise ValueError("workers must be >= 1")
        if self.max_paths < 1:
            raise ValueError("max_paths must be >= 1")

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "AnalysisConfig":
        """Build a config from a mapping, ignoring unknown keys."""
        return cls().with_overrides(**values)

    def with_overrides(self, **overrides: Any) -> "AnalysisConfig":
        """Return a copy with every non-``None`` known override applied."""
        known = {f.name: f.type for f in fields(self)}
        changes: Dict[str, Any] = {}
        for key, value in overrides.items():
            key = key.replace("-", "_")
            if key not in known or value is None:
                continue
            changes[key] = _coerce(key, getattr(self, key), value)
        return replace(self, **changes) if changes else self

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)

