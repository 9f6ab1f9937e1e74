"""Two-phase analysis driver.

Phase 1 runs one task per source file on a bounded thread pool. A task reads,
parses and collects records for its file and always returns a
:class:`FileOutcome`; failures become diagnostics instead of exceptions.
Phase 2 sorts the outcomes by file path and builds, searches and reports on a
single thread.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Callable, Deque, Dict, List, Optional, Sequence, Tuple

from .call_collector import CallCollector
from .call_graph import CallGraphBuilder
from .config import AnalysisConfig
from .errors import (
    AnalysisCancelled,
    Diagnostic,
    DiagnosticKind,
    FileAnalysisError,
    FileTimeoutError,
)
from .function_collector import FunctionCollector
from .models import AnalysisResult, CallGraph, FileOutcome, FileRecords
from .parser import Deadline, SyntaxParser
from .path_finder import PathFinder
from .report import derive_output_path, ensure_writable, write_report
from .source_loader import SourceFile, SourceLoader

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.05

ProgressCallback = Callable[[FileOutcome, int, int], None]


class AnalysisOrchestrator:
    """Coordinates loading, per-file analysis, graph building and path search."""

    def __init__(self, config: Optional[AnalysisConfig] = None, progress: Optional[ProgressCallback] = None):
        self.config = config or AnalysisConfig()
        self.progress = progress
        self.loader = SourceLoader(self.config.file_size_limit)
        self.parser = SyntaxParser(self.config.file_size_limit)
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        """Request cancellation; the running phase stops at its next poll."""
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    # ------------------------------------------------------------------
    # Phase 1: one file
    # ------------------------------------------------------------------

    def analyze_file(self, source: SourceFile) -> FileOutcome:
        """Analyze one file. Never raises for problems confined to the file."""
        started = time.monotonic()
        file_path = source.rel_path
        deadline = Deadline(file_path, self.config.timeout)
        try:
            data = source.read()
            parsed = self.parser.parse(file_path, data, deadline)
            functions = FunctionCollector(parsed, source.module_path, deadline).collect()
            calls = CallCollector(parsed, source.module_path, deadline).collect()
        except FileAnalysisError as exc:
            logger.warning("%s", exc.to_diagnostic())
            return FileOutcome(file_path, diagnostic=exc.to_diagnostic(), elapsed=time.monotonic() - started)
        except OSError as exc:
            logger.warning("Cannot read %s: %s", file_path, exc)
            return FileOutcome(
                file_path,
                diagnostic=Diagnostic(DiagnosticKind.ANALYSIS_FAULT, file_path, str(exc)),
                elapsed=time.monotonic() - started,
            )
        except Exception as exc:  # noqa: BLE001 - any fault stays confined to its file
            logger.exception("Unexpected failure while analyzing %s", file_path)
            return FileOutcome(
                file_path,
                diagnostic=Diagnostic(
                    DiagnosticKind.ANALYSIS_FAULT, file_path, f"{type(exc).__name__}: {exc}"
                ),
                elapsed=time.monotonic() - started,
            )

        records = FileRecords(
            file_path=file_path,
            module_path=source.module_path,
            functions=functions.functions,
            types=functions.types,
            modules=functions.modules,
            calls=calls.calls,
            imports=calls.imports,
        )
        elapsed = time.monotonic() - started
        logger.debug(
            "Analyzed %s in %.3fs: %d functions, %d calls",
            file_path, elapsed, len(records.functions), len(records.calls),
        )
        return FileOutcome(file_path, records=records, elapsed=elapsed)

    # ------------------------------------------------------------------
    # Phase 1: all files
    # ------------------------------------------------------------------

    def collect(self, sources: Sequence[SourceFile]) -> List[FileOutcome]:
        """Run :meth:`analyze_file` for every source on the worker pool.

        At most ``workers`` tasks are in flight. A task still running
        ``timeout`` seconds after it started is abandoned, recorded as
        ``FileTimeout`` and its slot is handed to the next file. Tasks still
        queued inside the executor are not timed. Outcomes come back sorted
        by path.
        """
        workers = self.config.workers
        timeout = self.config.timeout
        total = len(sources)
        pending: Deque[SourceFile] = deque(sources)
        running: Dict[Future, SourceFile] = {}
        # rel path -> monotonic time the worker thread picked the task up
        started: Dict[str, float] = {}
        outcomes: Dict[str, FileOutcome] = {}

        # Abandoned tasks keep their thread until their deadline trips, so
        # the pool has headroom beyond the in-flight cap.
        executor = ThreadPoolExecutor(max_workers=workers * 2, thread_name_prefix="unsafe-reach")
        try:
            while pending or running:
                if self._cancelled.is_set():
                    raise AnalysisCancelled("Analysis cancelled")
                while pending and len(running) < workers:
                    source = pending.popleft()
                    running[executor.submit(self._timed_task, source, started)] = source

                done, _ = wait(list(running), timeout=POLL_INTERVAL, return_when=FIRST_COMPLETED)
                for future in done:
                    running.pop(future)
                    self._record(outcomes, future.result(), total)

                now = time.monotonic()
                for future, source in list(running.items()):
                    began = started.get(source.rel_path)
                    if began is None or now - began <= timeout:
                        continue
                    running.pop(future)
                    future.cancel()
                    error = FileTimeoutError(source.rel_path, timeout)
                    logger.warning("%s", error.to_diagnostic())
                    self._record(outcomes, FileOutcome(source.rel_path, diagnostic=error.to_diagnostic()), total)
        except KeyboardInterrupt:
            self._cancelled.set()
            raise AnalysisCancelled("Analysis interrupted") from None
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        return [outcomes[key] for key in sorted(outcomes)]

    def _timed_task(self, source: SourceFile, started: Dict[str, float]) -> FileOutcome:
        started[source.rel_path] = time.monotonic()
        return self.analyze_file(source)

    def _record(self, outcomes: Dict[str, FileOutcome], outcome: FileOutcome, total: int) -> None:
        outcomes[outcome.file_path] = outcome
        if self.progress is not None:
            self.progress(outcome, len(outcomes), total)

    # ------------------------------------------------------------------
    # Full run
    # ------------------------------------------------------------------

    def build_graph(self, input_path: Path) -> Tuple[CallGraph, List[Diagnostic], int, int]:
        """Run phase 1 and the merge; returns graph, diagnostics and file counts."""
        plan = self.loader.discover(Path(input_path))
        outcomes = self.collect(plan.sources)
        if self._cancelled.is_set():
            raise AnalysisCancelled("Analysis cancelled")

        diagnostics: List[Diagnostic] = list(plan.skipped)
        diagnostics.extend(o.diagnostic for o in outcomes if o.diagnostic is not None)
        records = [o.records for o in outcomes if o.records is not None]

        builder = CallGraphBuilder()
        graph = builder.build(records)
        diagnostics.extend(builder.diagnostics)
        diagnostics.sort(key=lambda d: (d.file_path, d.line or 0))
        return graph, diagnostics, plan.total, len(records)

    def run(self, input_path: Path) -> AnalysisResult:
        graph, diagnostics, files_total, files_analyzed = self.build_graph(input_path)
        search = PathFinder(graph, self.config).search()
        return AnalysisResult(
            input_path=str(input_path),
            graph=graph,
            paths=search.paths,
            diagnostics=diagnostics,
            type_usage=search.type_usage,
            files_total=files_total,
            files_analyzed=files_analyzed,
            truncated=search.truncated,
        )

    def run_and_render(
        self, input_path: Path, output: Optional[Path] = None, fmt: str = "rust"
    ) -> Tuple[AnalysisResult, Path]:
        """Analyze *input_path* and write the report; returns the result and report path.

        The destination is checked before any analysis work starts.
        """
        target = Path(output) if output is not None else derive_output_path(Path(input_path), fmt)
        ensure_writable(target)
        result = self.run(input_path)
        write_report(result, target, fmt)
        logger.info("Report written to %s", target)
        return result, target
