"""Failure taxonomy for the analyzer.

Per-file problems are raised inside a file task and turned into
:class:`Diagnostic` values by the orchestrator; they never stop a run.
Only :class:`InputPathError` and :class:`OutputNotWritableError` are fatal.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class DiagnosticKind(str, Enum):
    FILE_TOO_LARGE = "FileTooLarge"
    PARSE_FAILURE = "ParseFailure"
    CALL_UNRESOLVED = "CallUnresolved"
    ID_COLLISION = "IdCollision"
    FILE_TIMEOUT = "FileTimeout"
    ANALYSIS_FAULT = "AnalysisFault"


# Kinds that mean a file contributed nothing to the merge.
FILE_FAILURE_KINDS = frozenset(
    {
        DiagnosticKind.FILE_TOO_LARGE,
        DiagnosticKind.PARSE_FAILURE,
        DiagnosticKind.FILE_TIMEOUT,
        DiagnosticKind.ANALYSIS_FAULT,
    }
)


@dataclass(frozen=True)
class Diagnostic:
    kind: DiagnosticKind
    file_path: str
    message: str
    line: Optional[int] = None
    column: Optional[int] = None

    @property
    def file_level(self) -> bool:
        return self.kind in FILE_FAILURE_KINDS

    def __str__(self) -> str:
        where = self.file_path
        if self.line is not None:
            where = f"{where}:{self.line}"
            if self.column is not None:
                where = f"{where}:{self.column}"
        return f"[{self.kind.value}] {where}: {self.message}"


class UnsafeReachError(Exception):
    """Base class for every error raised by this package."""


class FileAnalysisError(UnsafeReachError):
    """A failure confined to a single file."""

    kind = DiagnosticKind.ANALYSIS_FAULT

    def __init__(self, file_path: str, message: str) -> None:
        super().__init__(f"{file_path}: {message}")
        self.file_path = file_path
        self.message = message

    def to_diagnostic(self) -> Diagnostic:
        return Diagnostic(self.kind, self.file_path, self.message)


class FileTooLargeError(FileAnalysisError):
    kind = DiagnosticKind.FILE_TOO_LARGE

    def __init__(self, file_path: str, size: int, limit: int) -> None:
        super().__init__(file_path, f"{size} bytes exceeds the {limit} byte limit")
        self.size = size
        self.limit = limit


class ParseFailureError(FileAnalysisError):
    kind = DiagnosticKind.PARSE_FAILURE

    def __init__(self, file_path: str, line: int, column: int, message: str = "syntax error") -> None:
        super().__init__(file_path, message)
        self.line = line
        self.column = column

    def to_diagnostic(self) -> Diagnostic:
        return Diagnostic(self.kind, self.file_path, self.message, self.line, self.column)


class FileTimeoutError(FileAnalysisError):
    kind = DiagnosticKind.FILE_TIMEOUT

    def __init__(self, file_path: str, timeout: float) -> None:
        super().__init__(file_path, f"analysis exceeded {timeout:g}s")
        self.timeout = timeout


class InputPathError(UnsafeReachError):
    """The input root does not exist, cannot be read, or is not Rust source."""


class OutputNotWritableError(UnsafeReachError):
    """The report destination cannot be written."""


class AnalysisCancelled(UnsafeReachError):
    """The run was interrupted before phase 2; no report is produced."""


class ConfigError(UnsafeReachError):
    """An explicitly requested configuration file could not be used."""
