"""Pytest configuration and fixtures for unsafe-reach tests."""

import shutil
import tempfile
import textwrap
from pathlib import Path
from typing import Callable, Dict, Generator

import pytest

from unsafe_reach.call_collector import CallCollection, CallCollector
from unsafe_reach.config import AnalysisConfig
from unsafe_reach.function_collector import FunctionCollection, FunctionCollector
from unsafe_reach.models import CallGraph
from unsafe_reach.orchestrator import AnalysisOrchestrator
from unsafe_reach.parser import ParsedFile, SyntaxParser


@pytest.fixture(autouse=True)
def _isolated_config(tmp_path_factory, monkeypatch):
    """Point the default config file at an empty location for every test."""
    home = tmp_path_factory.mktemp("unsafe-reach-home")
    monkeypatch.setattr("unsafe_reach.config.BASE_DIR", home)
    monkeypatch.setattr("unsafe_reach.config.CONFIG_FILE", home / "config.toml")


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    tmp = Path(tempfile.mkdtemp())
    yield tmp
    shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def sample_crate_path() -> Path:
    """Get path to the sample Rust crate."""
    return Path(__file__).parent / "fixtures" / "sample_crate"


@pytest.fixture
def test_config() -> AnalysisConfig:
    return AnalysisConfig(max_depth=20, timeout=30.0, workers=2)


@pytest.fixture
def parse_rust() -> Callable[..., ParsedFile]:
    """Parse a snippet of Rust source (dedented) into a :class:`ParsedFile`."""

    def _parse(code: str, file_path: str = "src/lib.rs") -> ParsedFile:
        source = textwrap.dedent(code).encode("utf-8")
        return SyntaxParser(size_limit=1024 * 1024).parse(file_path, source)

    return _parse


@pytest.fixture
def collect_functions(parse_rust) -> Callable[..., FunctionCollection]:
    def _collect(code: str, file_path: str = "src/lib.rs", module_path: str = "crate") -> FunctionCollection:
        return FunctionCollector(parse_rust(code, file_path), module_path).collect()

    return _collect


@pytest.fixture
def collect_calls(parse_rust) -> Callable[..., CallCollection]:
    def _collect(code: str, file_path: str = "src/lib.rs", module_path: str = "crate") -> CallCollection:
        return CallCollector(parse_rust(code, file_path), module_path).collect()

    return _collect


@pytest.fixture
def write_crate(temp_dir: Path) -> Callable[[Dict[str, str]], Path]:
    """Write ``{relative path: source}`` files below a fresh crate root."""

    def _write(files: Dict[str, str]) -> Path:
        for rel, code in files.items():
            target = temp_dir / rel
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(textwrap.dedent(code), encoding="utf-8")
        return temp_dir

    return _write


@pytest.fixture
def build_graph(write_crate, test_config) -> Callable[[Dict[str, str]], CallGraph]:
    """Write a crate and return its merged call graph."""

    def _build(files: Dict[str, str]) -> CallGraph:
        root = write_crate(files)
        graph, _diagnostics, _total, _analyzed = AnalysisOrchestrator(test_config).build_graph(root)
        return graph

    return _build


@pytest.fixture
def find_function() -> Callable:
    """Find the single function record with a given qualname."""

    def _find(graph: CallGraph, qualname: str):
        matches = [rec for rec in graph.functions.values() if rec.qualname == qualname]
        assert len(matches) == 1, f"expected one {qualname}, found {len(matches)}"
        return matches[0]

    return _find
