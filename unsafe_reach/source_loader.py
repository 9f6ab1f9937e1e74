"""Discovery of Rust source files and their crate module paths."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Set, Tuple

from .config import SUPPORTED_EXTENSIONS
from .errors import Diagnostic, DiagnosticKind, InputPathError

logger = logging.getLogger(__name__)

SKIP_DIRS: Set[str] = {
    "target", ".git", ".hg", ".svn", "node_modules", ".cargo",
    ".idea", ".vscode", "vendor", "__pycache__", ".venv", "venv",
}

CRATE_ROOTS = {"lib", "main"}


@dataclass(frozen=True)
class SourceFile:
    """Identity of one input file; the contents are read by the file task."""

    path: Path
    rel_path: str
    module_path: str
    size: int

    def read(self) -> bytes:
        return self.path.read_bytes()


@dataclass
class LoadPlan:
    root: Path
    sources: List[SourceFile] = field(default_factory=list)
    skipped: List[Diagnostic] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.sources) + len(self.skipped)


def module_path_for(rel_path: str) -> str:
    """Map a file location to the crate path of the module it defines.

    Segments below the last ``src`` directory are used; ``lib.rs``,
    ``main.rs`` and ``mod.rs`` name their directory's module.
    """
    parts = list(Path(rel_path).with_suffix("").parts)
    if "src" in parts[:-1]:
        last_src = len(parts) - 1 - parts[::-1].index("src", 1)
        parts = parts[last_src + 1:]
    if parts and parts[-1] == "mod":
        parts = parts[:-1]
    elif len(parts) == 1 and parts[0] in CRATE_ROOTS:
        parts = []
    cleaned = [p.replace("-", "_") for p in parts]
    return "::".join(["crate"] + cleaned)


class SourceLoader:
    """Enumerates candidate files below an input path.

    Files above *size_limit* bytes are reported as ``FileTooLarge`` and never
    reach the parser.
    """

    def __init__(self, size_limit: int) -> None:
        self.size_limit = size_limit

    def discover(self, input_path: Path) -> LoadPlan:
        input_path = Path(input_path)
        if not input_path.exists():
            raise InputPathError(f"Path does not exist: {input_path}")
        if not os.access(input_path, os.R_OK):
            raise InputPathError(f"Path is not readable: {input_path}")

        if input_path.is_file():
            if input_path.suffix not in SUPPORTED_EXTENSIONS:
                raise InputPathError(f"Not a Rust source file: {input_path}")
            root = input_path.parent
            candidates = [input_path]
        elif input_path.is_dir():
            root = input_path
            candidates = self._walk(input_path)
        else:
            raise InputPathError(f"Unsupported input path: {input_path}")

        plan = LoadPlan(root=root)
        for path in candidates:
            rel = path.relative_to(root).as_posix()
            try:
                size = path.stat().st_size
            except OSError as exc:
                logger.warning("Cannot stat %s: %s", path, exc)
                plan.skipped.append(Diagnostic(DiagnosticKind.ANALYSIS_FAULT, rel, str(exc)))
                continue
            if size > self.size_limit:
                logger.warning("Skipping %s: %d bytes exceeds limit", rel, size)
                plan.skipped.append(
                    Diagnostic(
                        DiagnosticKind.FILE_TOO_LARGE,
                        rel,
                        f"{size} bytes exceeds the {self.size_limit} byte limit",
                    )
                )
                continue
            plan.sources.append(SourceFile(path, rel, module_path_for(rel), size))

        logger.info("Found %d Rust files under %s", plan.total, input_path)
        return plan

    @staticmethod
    def _walk(root: Path) -> List[Path]:
        found: List[Tuple[str, Path]] = []
        for ext in sorted(SUPPORTED_EXTENSIONS):
            for path in root.rglob(f"*{ext}"):
                rel_parts = path.relative_to(root).parts
                if any(part in SKIP_DIRS for part in rel_parts[:-1]):
                    continue
                if path.is_file():
                    found.append((path.relative_to(root).as_posix(), path))
        return [p for _, p in sorted(found)]
