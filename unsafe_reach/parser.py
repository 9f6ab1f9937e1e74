"""Tree-sitter front end for Rust source.

The ``Language`` object is loaded once per process; a fresh ``Parser`` is
created for every file so worker threads never share parser state.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

import tree_sitter_rust
from tree_sitter import Language, Parser, Tree

from .errors import FileTimeoutError, FileTooLargeError, ParseFailureError

logger = logging.getLogger(__name__)

RUST_LANGUAGE = Language(tree_sitter_rust.language())


class Deadline:
    """Wall-clock budget for one file, checked cooperatively while visiting."""

    def __init__(self, file_path: str, seconds: float) -> None:
        self.file_path = file_path
        self.seconds = seconds
        self.expires_at = time.monotonic() + seconds

    @property
    def expired(self) -> bool:
        return time.monotonic() > self.expires_at

    def check(self) -> None:
        if self.expired:
            raise FileTimeoutError(self.file_path, self.seconds)


@dataclass
class ParsedFile:
    file_path: str
    source: bytes
    tree: Tree

    @property
    def root(self) -> Any:
        return self.tree.root_node

    def text(self, node: Any) -> str:
        return self.source[node.start_byte:node.end_byte].decode("utf-8", errors="replace")


class SyntaxParser:
    """Turns raw bytes into a syntax tree or a structured failure."""

    def __init__(self, size_limit: int) -> None:
        self.size_limit = size_limit

    def parse(self, file_path: str, source: bytes, deadline: Optional[Deadline] = None) -> ParsedFile:
        if len(source) > self.size_limit:
            raise FileTooLargeError(file_path, len(source), self.size_limit)
        if deadline is not None:
            deadline.check()

        tree = Parser(RUST_LANGUAGE).parse(source)

        if deadline is not None:
            deadline.check()
        if tree.root_node.has_error:
            line, column, message = _first_error(tree.root_node, deadline)
            logger.debug("Parse error in %s at %d:%d", file_path, line, column)
            raise ParseFailureError(file_path, line, column, message)
        return ParsedFile(file_path, source, tree)


def _first_error(root: Any, deadline: Optional[Deadline]) -> tuple:
    """Locate the first ERROR or missing node in document order."""
    stack = [root]
    while stack:
        if deadline is not None:
            deadline.check()
        node = stack.pop()
        if node.is_missing:
            row, col = node.start_point
            return row + 1, col + 1, f"missing {node.type}"
        if node.type == "ERROR":
            row, col = node.start_point
            return row + 1, col + 1, "syntax error"
        stack.extend(reversed([child for child in node.children if child.has_error or child.is_missing]))
    row, col = root.start_point
    return row + 1, col + 1, "syntax error"
