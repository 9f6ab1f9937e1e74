"""Report rendering: annotated Rust source (default), JSON and Graphviz DOT."""

from __future__ import annotations

import json
import logging
import os
import re
import textwrap
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List

from . import __version__
from .errors import Diagnostic, OutputNotWritableError
from .models import AnalysisResult, FunctionRecord, UnsafePath

logger = logging.getLogger(__name__)

FORMATS: Dict[str, str] = {"rust": ".rs", "json": ".json", "dot": ".dot"}

_RUST_ALLOWS = ("dead_code", "unused_variables", "unused_imports", "non_snake_case")


def derive_output_path(input_path: Path, fmt: str = "rust", directory: Path | None = None) -> Path:
    """``<directory>/<input-name>_unsafe_paths.<ext>``, defaulting to the cwd."""
    if fmt not in FORMATS:
        raise ValueError(f"unknown report format: {fmt}")
    resolved = Path(input_path).resolve()
    name = resolved.stem if resolved.suffix == ".rs" else resolved.name
    return Path(directory or Path.cwd()) / f"{name}_unsafe_paths{FORMATS[fmt]}"


def ensure_writable(path: Path) -> None:
    """Raise :class:`OutputNotWritableError` if *path* cannot be written."""
    path = Path(path)
    if path.is_dir():
        raise OutputNotWritableError(f"Output path is a directory: {path}")
    if path.exists():
        if not os.access(path, os.W_OK):
            raise OutputNotWritableError(f"Output file is not writable: {path}")
        return
    parent = path.parent if str(path.parent) else Path(".")
    if not parent.is_dir():
        raise OutputNotWritableError(f"Output directory does not exist: {parent}")
    if not os.access(parent, os.W_OK):
        raise OutputNotWritableError(f"Output directory is not writable: {parent}")


def write_report(result: AnalysisResult, output_file: Path, fmt: str = "rust") -> None:
    text = render(result, fmt)
    try:
        Path(output_file).write_text(text, encoding="utf-8")
    except OSError as exc:
        raise OutputNotWritableError(f"Could not write report to {output_file}: {exc}") from exc
    logger.debug("Wrote %d characters of %s report to %s", len(text), fmt, output_file)


def render(result: AnalysisResult, fmt: str = "rust") -> str:
    renderers: Dict[str, Callable[[AnalysisResult], str]] = {
        "rust": render_rust,
        "json": render_json,
        "dot": render_dot,
    }
    if fmt not in renderers:
        raise ValueError(f"unknown report format: {fmt}")
    return renderers[fmt](result)


def path_label(result: AnalysisResult, path: UnsafePath) -> str:
    """``pub fn read -> fn Buf::copy``."""
    return " -> ".join(result.graph.functions[fid].signature_label for fid in path.nodes)


# ---------------------------------------------------------------------------
# Rust
# ---------------------------------------------------------------------------

def render_rust(result: AnalysisResult) -> str:
    """Render the result as a Rust source file meant for reading in an editor.

    The file carries ``UNSAFE_PATHS`` and ``FAILED_FILES`` constants, then one
    module per file holding unsafe targets. Each module has one ``group_N``
    submodule per unsafe target with the paths reaching it, the types those
    paths touch and the source of every function on them.
    """
    graph = result.graph
    lines: List[str] = [
        f"// Unsafe call paths for {result.input_path}",
        f"// Generated by unsafe-reach {__version__} at {_timestamp()}",
        "// This file is for reading; it is not meant to be compiled.",
        "",
    ]
    lines.extend(f"#![allow({lint})]" for lint in _RUST_ALLOWS)
    lines.append("")

    lines.append(f"// {len(result.paths)} paths, {result.files_analyzed} of {result.files_total} files analyzed")
    if result.truncated:
        lines.append("// Path limit reached: the list below is incomplete.")
    lines.append("pub const UNSAFE_PATHS: &[&str] = &[")
    lines.extend(f"    {_rust_str(path_label(result, p))}," for p in result.paths)
    lines.append("];")
    lines.append("")
    lines.append("pub const FAILED_FILES: &[&str] = &[")
    lines.extend(f"    {_rust_str(str(d))}," for d in result.failed_files)
    lines.append("];")
    lines.append("")

    for diag in result.warnings:
        lines.append(f"// warning: {diag}")
    if result.warnings:
        lines.append("")

    # file -> terminal id -> paths
    by_file: Dict[str, Dict[str, List[UnsafePath]]] = {}
    for path in result.paths:
        terminal = graph.functions[path.terminal_id]
        by_file.setdefault(terminal.file_path, {}).setdefault(path.terminal_id, []).append(path)

    for file_path in sorted(by_file):
        groups = by_file[file_path]
        lines.append("// " + "=" * 60)
        lines.append(f"// File: {file_path}")
        lines.append("// " + "=" * 60)
        lines.append(f"pub mod {_module_ident(file_path)} {{")
        lines.append(f"    // {len(groups)} unsafe targets reached")
        lines.append("")
        for index, (terminal_id, paths) in enumerate(groups.items(), start=1):
            lines.extend(_render_group(result, index, terminal_id, paths))
        lines.append("}")
        lines.append("")

    return "\n".join(lines)


def _render_group(result: AnalysisResult, index: int, terminal_id: str, paths: List[UnsafePath]) -> List[str]:
    graph = result.graph
    terminal = graph.functions[terminal_id]
    out = [
        f"    // Group {index}: paths reaching {terminal.qualname}",
        f"    pub mod group_{index} {{",
        "        // Paths:",
    ]
    for n, path in enumerate(paths, start=1):
        out.append(f"        // {index}.{n} {path_label(result, path)}")
    out.append("")

    type_ids: Dict[str, None] = {}
    function_ids: Dict[str, None] = {}
    for path in paths:
        for tid in path.type_ids:
            type_ids.setdefault(tid, None)
        for fid in path.nodes:
            function_ids.setdefault(fid, None)

    if type_ids:
        out.append("        // Related types:")
        for tid in type_ids:
            trec = graph.types[tid]
            out.append(f"        // {trec.kind.value}: {trec.qualname} ({trec.file_path}:{trec.start_line})")
            out.extend(_indent(_normalize(trec.snippet), 8))
            # constructors already on a path are printed with the path functions
            ctors = [graph.functions[fid] for fid in trec.constructors if fid not in function_ids]
            if ctors:
                out.append(f"        // constructors of {trec.name}:")
                body = "\n\n".join(_normalize(rec.snippet) for rec in ctors)
                out.extend(_indent(f"impl {trec.name} {{\n{textwrap.indent(body, '    ')}\n}}", 8))
            out.append("")

    for fid in function_ids:
        rec = graph.functions[fid]
        out.extend(_function_header(rec))
        snippet = _normalize(rec.snippet)
        if rec.owner_type:
            snippet = f"impl {rec.owner_type} {{\n{textwrap.indent(snippet, '    ')}\n}}"
        out.extend(_indent(snippet, 8))
        out.append("")

    out.append(f"    }} // end of module group_{index}")
    out.append("")
    return out


def _function_header(rec: FunctionRecord) -> List[str]:
    header = [f"        // fn: {rec.qualname} ({rec.file_path}:{rec.start_line})"]
    if rec.contains_unsafe:
        where = ", ".join(str(line) for line in rec.unsafe_lines)
        header.append(f"        // unsafe blocks at lines: {where}")
    return header


def _normalize(snippet: str) -> str:
    """Dedent a snippet whose first line was cut at the item's column."""
    head, _, rest = snippet.partition("\n")
    if not rest:
        return head
    return head + "\n" + textwrap.dedent(rest)


def _indent(text: str, width: int) -> List[str]:
    pad = " " * width
    return [pad + line if line.strip() else "" for line in text.splitlines()]


def _module_ident(file_path: str) -> str:
    stem = file_path[:-3] if file_path.endswith(".rs") else file_path
    ident = re.sub(r"\W", "_", stem)
    if not ident or ident[0].isdigit():
        ident = "_" + ident
    return ident


def _rust_str(text: str) -> str:
    escaped = text.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")
    return f'"{escaped}"'


def _timestamp() -> str:
    return datetime.now().isoformat(timespec="seconds")


# ---------------------------------------------------------------------------
# JSON
# ---------------------------------------------------------------------------

def render_json(result: AnalysisResult) -> str:
    graph = result.graph
    payload = {
        "input": result.input_path,
        "generated_at": _timestamp(),
        "version": __version__,
        "summary": {
            "files_total": result.files_total,
            "files_analyzed": result.files_analyzed,
            "functions": len(graph.functions),
            "unsafe_functions": sum(1 for r in graph.functions.values() if r.contains_unsafe),
            "resolved_calls": len(graph.edges),
            "unresolved_calls": len(graph.unresolved),
            "paths": len(result.paths),
            "truncated": result.truncated,
        },
        "paths": [
            {
                "entry": graph.functions[p.entry_id].qualname,
                "terminal": graph.functions[p.terminal_id].qualname,
                "depth": p.depth,
                "label": path_label(result, p),
                "nodes": [_function_json(graph.functions[fid]) for fid in p.nodes],
                "types": [graph.types[tid].qualname for tid in p.type_ids],
            }
            for p in result.paths
        ],
        "type_usage": {graph.types[tid].qualname: count for tid, count in result.type_usage.items()},
        "types": {
            graph.types[tid].qualname: {
                "kind": graph.types[tid].kind.value,
                "file": graph.types[tid].file_path,
                "line": graph.types[tid].start_line,
                "constructors": [graph.functions[fid].qualname for fid in graph.types[tid].constructors],
            }
            for tid in result.type_usage
        },
        "failed_files": [_diagnostic_json(d) for d in result.failed_files],
        "warnings": [_diagnostic_json(d) for d in result.warnings],
    }
    return json.dumps(payload, indent=2)


def _function_json(rec: FunctionRecord) -> dict:
    return {
        "id": rec.function_id,
        "qualname": rec.qualname,
        "visibility": rec.visibility.value,
        "file": rec.file_path,
        "line": rec.start_line,
        "contains_unsafe": rec.contains_unsafe,
        "unsafe_fn": rec.is_unsafe_fn,
    }


def _diagnostic_json(diag: Diagnostic) -> dict:
    return {
        "kind": diag.kind.value,
        "file": diag.file_path,
        "line": diag.line,
        "column": diag.column,
        "message": diag.message,
    }


# ---------------------------------------------------------------------------
# DOT
# ---------------------------------------------------------------------------

def render_dot(result: AnalysisResult) -> str:
    graph = result.graph
    node_ids: Dict[str, None] = {}
    edge_pairs: Dict[tuple, None] = {}
    entries = {p.entry_id for p in result.paths}
    for path in result.paths:
        for fid in path.nodes:
            node_ids.setdefault(fid, None)
        for src, dst in zip(path.nodes, path.nodes[1:]):
            edge_pairs.setdefault((src, dst), None)

    lines = ["digraph UnsafePaths {", "  rankdir=LR;", "  node [shape=ellipse];"]
    for fid in node_ids:
        rec = graph.functions[fid]
        label = f"{rec.visibility.value}\\n{rec.qualname}"
        attrs = [f'label="{_esc(label)}"']
        if rec.contains_unsafe:
            attrs.append("shape=box")
            attrs.append("color=red")
        if fid in entries:
            attrs.append("style=bold")
        lines.append(f'  "{_esc(fid)}" [{", ".join(attrs)}];')
    for src, dst in edge_pairs:
        lines.append(f'  "{_esc(src)}" -> "{_esc(dst)}";')
    lines.append("}")
    return "\n".join(lines)


def _esc(text: str) -> str:
    return text.replace('"', '\\"')
