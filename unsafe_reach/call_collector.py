"""Extraction of call sites and ``use`` imports from a parsed Rust file."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .models import CallKind, CallSite
from .visitor import Frame, Scope, SyntaxVisitor, strip_generics

logger = logging.getLogger(__name__)

_LEAF_SEGMENTS = {
    "identifier", "type_identifier", "primitive_type",
    "self", "super", "crate", "metavariable",
}


@dataclass
class CallCollection:
    calls: List[CallSite] = field(default_factory=list)
    imports: Dict[str, Dict[str, str]] = field(default_factory=dict)


class CallCollector(SyntaxVisitor):
    """Records every call expression inside a function body.

    Calls are attributed to the innermost enclosing ``fn`` item; closures are
    not functions, so calls inside them belong to the enclosing function.
    """

    handlers = {
        **SyntaxVisitor.handlers,
        "call_expression": "visit_call",
        "use_declaration": "visit_use",
    }

    def __init__(self, parsed, module_path, deadline=None) -> None:
        super().__init__(parsed, module_path, deadline)
        self._calls: List[CallSite] = []
        self._imports: Dict[str, Dict[str, str]] = {}

    def collect(self) -> CallCollection:
        self.walk()
        return CallCollection(list(self._calls), {k: dict(v) for k, v in self._imports.items()})

    def visit_call(self, node: Any, scope: Scope) -> Iterable[Frame]:
        function = node.child_by_field_name("function")
        if scope.function_id is not None and function is not None:
            callee, kind, receiver = self.callee(function)
            self._calls.append(
                CallSite(
                    caller_id=scope.function_id,
                    callee_ref=callee,
                    kind=kind,
                    line=self.line(node),
                    receiver=receiver,
                )
            )
        return [(child, scope) for child in node.named_children]

    def visit_use(self, node: Any, scope: Scope) -> Iterable[Frame]:
        argument = node.child_by_field_name("argument")
        if argument is not None:
            table = self._imports.setdefault(scope.module_path, {})
            for alias, target in self.use_targets(argument):
                table[alias] = target
        return []

    # ------------------------------------------------------------------
    # Callee extraction
    # ------------------------------------------------------------------

    def callee(self, function: Any) -> Tuple[str, CallKind, Optional[str]]:
        """Classify the callee expression of a call."""
        if function.type == "generic_function":
            inner = function.child_by_field_name("function")
            if inner is not None:
                function = inner

        if function.type == "field_expression":
            field_node = function.child_by_field_name("field")
            value = function.child_by_field_name("value")
            name = self.text(field_node) if field_node is not None else ""
            receiver = None
            if value is not None:
                receiver = "self" if value.type == "self" else _squash(self.text(value))
            return name, CallKind.METHOD, receiver

        if function.type in _LEAF_SEGMENTS or function.type in ("scoped_identifier", "scoped_type_identifier"):
            path = self.path_text(function)
            if path:
                return path, CallKind.PATH, None

        return _squash(self.text(function)), CallKind.EXPRESSION, None

    def path_text(self, node: Any) -> str:
        """Join the segments of a path expression, dropping generic arguments."""
        segments: List[str] = []
        current: Optional[Any] = node
        while current is not None:
            kind = current.type
            if kind in ("scoped_identifier", "scoped_type_identifier"):
                name = current.child_by_field_name("name")
                if name is not None:
                    segments.append(self.text(name))
                current = current.child_by_field_name("path")
            elif kind in ("generic_type", "generic_type_with_turbofish"):
                current = current.child_by_field_name("type")
            elif kind == "bracketed_type":
                current = current.named_children[0] if current.named_children else None
            elif kind == "qualified_type":
                current = current.child_by_field_name("type")
            elif kind in _LEAF_SEGMENTS:
                segments.append(self.text(current))
                current = None
            else:
                segments.append(_squash(self.text(current)))
                current = None
        return strip_generics("::".join(reversed(segments)))

    # ------------------------------------------------------------------
    # Use trees
    # ------------------------------------------------------------------

    def use_targets(self, argument: Any) -> List[Tuple[str, str]]:
        """Flatten a use tree into ``(local name, imported path)`` pairs.

        Glob imports are ignored.
        """
        found: List[Tuple[str, str]] = []
        stack: List[Tuple[Any, str]] = [(argument, "")]
        while stack:
            node, prefix = stack.pop()
            kind = node.type
            if kind == "use_as_clause":
                path = node.child_by_field_name("path")
                alias = node.child_by_field_name("alias")
                if path is not None and alias is not None:
                    target = _join(prefix, self.path_text(path))
                    if target.endswith("::self"):
                        target = target[: -len("::self")]
                    found.append((self.text(alias), target))
            elif kind == "scoped_use_list":
                path = node.child_by_field_name("path")
                use_list = node.child_by_field_name("list")
                inner_prefix = _join(prefix, self.path_text(path)) if path is not None else prefix
                if use_list is not None:
                    stack.extend((child, inner_prefix) for child in reversed(use_list.named_children))
            elif kind == "use_list":
                stack.extend((child, prefix) for child in reversed(node.named_children))
            elif kind == "use_wildcard":
                continue
            elif kind in _LEAF_SEGMENTS or kind == "scoped_identifier":
                target = _join(prefix, self.path_text(node))
                if target.endswith("::self") or target == "self":
                    target = target[: -len("::self")] if target != "self" else prefix
                if not target:
                    continue
                found.append((target.rsplit("::", 1)[-1], target))
        return found


def _join(prefix: str, path: str) -> str:
    if not prefix:
        return path
    if not path:
        return prefix
    return f"{prefix}::{path}"


def _squash(text: str) -> str:
    return "".join(text.split())
