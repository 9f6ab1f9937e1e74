"""Typer-based CLI for unsafe-reach."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn
from rich.table import Table

from . import __version__, config
from .config import AnalysisConfig
from .config_manager import resolve_config, save_analysis_settings
from .errors import (
    AnalysisCancelled,
    ConfigError,
    InputPathError,
    OutputNotWritableError,
)
from .models import AnalysisResult, FileOutcome
from .orchestrator import AnalysisOrchestrator
from .report import FORMATS

logger = logging.getLogger(__name__)

EXIT_FATAL = 1
EXIT_CANCELLED = 130

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    help="Find call paths from a Rust crate's public API to its unsafe code.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        typer.echo(f"unsafe-reach v{__version__}")
        raise typer.Exit()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False, rich_tracebacks=True)],
        force=True,
    )


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Log progress and per-file details."),
):
    """Static reachability analysis of unsafe Rust code."""
    _configure_logging(verbose)


def _fail(message: str, code: int = EXIT_FATAL) -> typer.Exit:
    err_console.print(f"[red]✗[/red] {escape(message)}")
    return typer.Exit(code=code)


def _load_config(config_file: Optional[Path], **overrides) -> AnalysisConfig:
    try:
        return resolve_config(config_file, **overrides)
    except ConfigError as exc:
        raise _fail(str(exc))


@app.command("analyze")
def analyze(
    input_path: Path = typer.Argument(..., help="A .rs file or a directory of Rust sources."),
    output: Optional[Path] = typer.Option(
        None, "--output", "-o", help="Report destination (default: ./<input-name>_unsafe_paths.<ext>)."
    ),
    fmt: str = typer.Option("rust", "--format", "-f", help="Report format: rust, json or dot."),
    max_depth: Optional[int] = typer.Option(None, "--max-depth", min=0, help="Maximum hops from entry to unsafe code."),
    file_size_limit: Optional[int] = typer.Option(None, "--file-size-limit", min=1, help="Skip files above this many bytes."),
    timeout: Optional[float] = typer.Option(None, "--timeout", min=0.001, help="Per-file analysis budget in seconds."),
    workers: Optional[int] = typer.Option(None, "--workers", "-j", min=1, help="Files analyzed concurrently."),
    max_paths: Optional[int] = typer.Option(None, "--max-paths", min=1, help="Stop after this many paths."),
    include_crate_visible: Optional[bool] = typer.Option(
        None, "--include-crate-visible/--public-only", help="Also start from pub(crate) functions."
    ),
    skip_unsafe_entries: Optional[bool] = typer.Option(
        None, "--skip-unsafe-entries", help="Do not start from functions declared `unsafe fn`."
    ),
    stop_at_unsafe: Optional[bool] = typer.Option(
        None, "--stop-at-unsafe", help="Do not follow calls past the first unsafe-containing function."
    ),
    minimal_paths: Optional[bool] = typer.Option(
        None, "--minimal-paths", help="Do not pass through other entry points."
    ),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="TOML file with an [analysis] table."),
):
    """Analyze Rust sources and write a report of public-to-unsafe call paths."""
    if fmt not in FORMATS:
        raise typer.BadParameter(f"Unknown format '{fmt}'. Choose from: {', '.join(FORMATS)}.")

    cfg = _load_config(
        config_file,
        max_depth=max_depth,
        file_size_limit=file_size_limit,
        timeout=timeout,
        workers=workers,
        max_paths=max_paths,
        include_crate_visible=include_crate_visible,
        skip_unsafe_entries=skip_unsafe_entries,
        stop_at_unsafe=stop_at_unsafe,
        minimal_paths=minimal_paths,
    )

    with Progress(
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        console=err_console,
        transient=True,
    ) as progress:
        task = progress.add_task("[cyan]Analyzing files...", total=None)

        def on_file(outcome: FileOutcome, done: int, total: int) -> None:
            progress.update(task, completed=done, total=total, description=f"[cyan]{outcome.file_path}")

        orchestrator = AnalysisOrchestrator(cfg, progress=on_file)
        try:
            result, report_path = orchestrator.run_and_render(input_path, output, fmt)
        except (InputPathError, OutputNotWritableError) as exc:
            raise _fail(str(exc))
        except AnalysisCancelled as exc:
            raise _fail(f"{exc}; no report written.", EXIT_CANCELLED)

    _print_summary(result)
    console.print(f"[green]✓[/green] Report written to {report_path}")


def _print_summary(result: AnalysisResult) -> None:
    graph = result.graph
    table = Table(title="Analysis summary", show_header=True, show_lines=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Files analyzed", f"{result.files_analyzed} / {result.files_total}")
    table.add_row("Failed files", str(len(result.failed_files)))
    table.add_row("Functions", str(len(graph.functions)))
    table.add_row("Unsafe-containing functions", str(sum(1 for r in graph.functions.values() if r.contains_unsafe)))
    table.add_row("Resolved calls", str(len(graph.edges)))
    table.add_row("Unresolved calls", str(len(graph.unresolved)))
    table.add_row("Unsafe paths", str(len(result.paths)) + (" (truncated)" if result.truncated else ""))
    console.print(table)

    for diag in result.failed_files:
        console.print(f"[yellow]![/yellow] {escape(str(diag))}")
    for diag in result.warnings:
        console.print(f"[dim]{escape(str(diag))}[/dim]")


@app.command("functions")
def functions(
    input_path: Path = typer.Argument(..., help="A .rs file or a directory of Rust sources."),
    unsafe_only: bool = typer.Option(False, "--unsafe-only", help="List only unsafe-containing functions."),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="TOML file with an [analysis] table."),
):
    """List the functions collected from INPUT_PATH with visibility and unsafety."""
    cfg = _load_config(config_file)
    orchestrator = AnalysisOrchestrator(cfg)
    try:
        graph, diagnostics, _total, _analyzed = orchestrator.build_graph(input_path)
    except InputPathError as exc:
        raise _fail(str(exc))
    except AnalysisCancelled as exc:
        raise _fail(str(exc), EXIT_CANCELLED)

    records = [r for r in graph.functions.values() if r.contains_unsafe or not unsafe_only]
    if not records:
        typer.echo("No functions found.")
        raise typer.Exit(code=0)

    table = Table(show_header=True, show_lines=False)
    table.add_column("Function", style="cyan")
    table.add_column("Visibility")
    table.add_column("Unsafe", justify="center")
    table.add_column("Location")
    for rec in records:
        marks = []
        if rec.is_unsafe_fn:
            marks.append("unsafe fn")
        if rec.contains_unsafe:
            marks.append("block")
        flag = f"[red]{', '.join(marks)}[/red]" if marks else ""
        table.add_row(rec.qualname, rec.visibility.value, flag, f"{rec.file_path}:{rec.start_line}")
    console.print(table)

    for diag in diagnostics:
        console.print(f"[yellow]![/yellow] {escape(str(diag))}")


@app.command("show-config")
def show_config(
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="TOML file with an [analysis] table."),
):
    """Show the effective analysis settings."""
    cfg = _load_config(config_file)
    table = Table(title="Analysis settings", show_header=True)
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    for key, value in cfg.as_dict().items():
        table.add_row(key, str(value))
    console.print(table)
    console.print(f"Config file: {config_file or config.CONFIG_FILE}")


@app.command("set-config")
def set_config(
    key: str = typer.Argument(..., help="Setting name, e.g. max_depth."),
    value: str = typer.Argument(..., help="New value."),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="TOML file to update."),
):
    """Persist one analysis setting in the config file."""
    name = key.replace("-", "_")
    current = AnalysisConfig()
    if name not in current.as_dict():
        raise typer.BadParameter(f"Unknown setting '{key}'. Choose from: {', '.join(current.as_dict())}.")
    try:
        updated = current.with_overrides(**{name: value})
    except ValueError as exc:
        raise typer.BadParameter(str(exc))
    try:
        target = save_analysis_settings({name: getattr(updated, name)}, config_file)
    except (ConfigError, OSError) as exc:
        raise _fail(str(exc))
    console.print(f"[green]✓[/green] {name} = {getattr(updated, name)} ({target})")


if __name__ == "__main__":
    app()
