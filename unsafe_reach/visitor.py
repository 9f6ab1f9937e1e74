"""Handler-table traversal over tree-sitter Rust syntax trees.

Each visitor maps node kinds to handler methods. Traversal uses an explicit
work stack instead of recursion, so deeply nested input cannot exhaust the
interpreter stack. A handler receives the node and its :class:`Scope` and
returns the ``(child, scope)`` pairs to descend into; node kinds without a
handler descend into all named children with the same scope.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from .models import Visibility
from .parser import Deadline, ParsedFile

logger = logging.getLogger(__name__)

Frame = Tuple[Any, "Scope"]


@dataclass(frozen=True)
class Scope:
    module_segments: Tuple[str, ...]
    module_visibility: Visibility = Visibility.PUBLIC
    impl_type: Optional[str] = None
    impl_trait: Optional[str] = None
    trait_name: Optional[str] = None
    trait_visibility: Visibility = Visibility.PUBLIC
    function_id: Optional[str] = None
    function_qualname: Optional[str] = None
    function_slot: int = -1

    @property
    def module_path(self) -> str:
        return "::".join(self.module_segments)


class SyntaxVisitor:
    """Base class with the item-level scope handling shared by the collectors."""

    handlers: Dict[str, str] = {
        "mod_item": "enter_module",
        "impl_item": "enter_impl",
        "trait_item": "enter_trait",
        "function_item": "enter_function",
    }

    def __init__(self, parsed: ParsedFile, module_path: str, deadline: Optional[Deadline] = None) -> None:
        self.parsed = parsed
        self.file_path = parsed.file_path
        self.deadline = deadline
        self.root_scope = Scope(module_segments=tuple(module_path.split("::")))
        self._function_count = 0
        self._dispatch: Dict[str, Callable[[Any, Scope], Iterable[Frame]]] = {
            kind: getattr(self, name) for kind, name in self.handlers.items()
        }

    # ------------------------------------------------------------------
    # Traversal
    # ------------------------------------------------------------------

    def walk(self) -> None:
        stack: List[Frame] = [(self.parsed.root, self.root_scope)]
        while stack:
            if self.deadline is not None:
                self.deadline.check()
            node, scope = stack.pop()
            handler = self._dispatch.get(node.type)
            if handler is None:
                frames: Iterable[Frame] = [(child, scope) for child in node.named_children]
            else:
                frames = handler(node, scope)
            stack.extend(reversed(list(frames)))

    def text(self, node: Any) -> str:
        return self.parsed.text(node)

    def line(self, node: Any) -> int:
        return node.start_point[0] + 1

    # ------------------------------------------------------------------
    # Scope transitions
    # ------------------------------------------------------------------

    def enter_module(self, node: Any, scope: Scope) -> Iterable[Frame]:
        name_node = node.child_by_field_name("name")
        if name_node is None:
            return []
        visibility = scope.module_visibility.narrow(declared_visibility(self, node))
        inner = Scope(
            module_segments=scope.module_segments + (self.text(name_node),),
            module_visibility=visibility,
        )
        self.on_module(node, scope, inner)
        body = node.child_by_field_name("body")
        return [(body, inner)] if body is not None else []

    def enter_impl(self, node: Any, scope: Scope) -> Iterable[Frame]:
        body = node.child_by_field_name("body")
        type_node = node.child_by_field_name("type")
        if body is None or type_node is None:
            return []
        trait_node = node.child_by_field_name("trait")
        inner = replace(
            scope,
            impl_type=type_name(self, type_node),
            impl_trait=type_name(self, trait_node) if trait_node is not None else None,
            trait_name=None,
            function_id=None,
            function_qualname=None,
            function_slot=-1,
        )
        return [(body, inner)]

    def enter_trait(self, node: Any, scope: Scope) -> Iterable[Frame]:
        name_node = node.child_by_field_name("name")
        body = node.child_by_field_name("body")
        if name_node is None:
            return []
        self.on_trait(node, scope)
        if body is None:
            return []
        inner = replace(
            scope,
            impl_type=None,
            impl_trait=None,
            trait_name=self.text(name_node),
            trait_visibility=scope.module_visibility.narrow(declared_visibility(self, node)),
            function_id=None,
            function_qualname=None,
            function_slot=-1,
        )
        return [(body, inner)]

    def enter_function(self, node: Any, scope: Scope) -> Iterable[Frame]:
        name_node = node.child_by_field_name("name")
        if name_node is None:
            return []
        name = self.text(name_node)
        qualname, owner = function_qualname(scope, name)
        inner = Scope(
            module_segments=scope.module_segments,
            module_visibility=scope.module_visibility,
            function_id=f"{self.file_path}#{qualname}",
            function_qualname=qualname,
            function_slot=self._function_count,
        )
        self._function_count += 1
        self.on_function(node, scope, inner, name, owner)
        body = node.child_by_field_name("body")
        return [(body, inner)] if body is not None else []

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    def on_module(self, node: Any, outer: Scope, inner: Scope) -> None:
        pass

    def on_trait(self, node: Any, scope: Scope) -> None:
        pass

    def on_function(self, node: Any, outer: Scope, inner: Scope, name: str, owner: Optional[str]) -> None:
        pass


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------

def function_qualname(scope: Scope, name: str) -> Tuple[str, Optional[str]]:
    """Return ``(qualname, owner_type)`` for a function declared in *scope*."""
    if scope.function_qualname:
        return f"{scope.function_qualname}::{name}", None
    if scope.impl_type:
        owner = scope.impl_type
        segment = f"<{owner} as {scope.impl_trait}>" if scope.impl_trait else owner
        return f"{scope.module_path}::{segment}::{name}", owner
    if scope.trait_name:
        return f"{scope.module_path}::{scope.trait_name}::{name}", scope.trait_name
    return f"{scope.module_path}::{name}", None


def declared_visibility(visitor: SyntaxVisitor, node: Any) -> Visibility:
    modifier = next((c for c in node.children if c.type == "visibility_modifier"), None)
    if modifier is None:
        return Visibility.PRIVATE
    raw = "".join(visitor.text(modifier).split())
    if raw == "pub":
        return Visibility.PUBLIC
    if raw in ("pub(crate)", "crate"):
        return Visibility.CRATE
    if raw == "pub(self)":
        return Visibility.PRIVATE
    return Visibility.RESTRICTED


_TYPE_WRAPPERS = {
    "generic_type": "type",
    "generic_type_with_turbofish": "type",
    "reference_type": "type",
    "pointer_type": "type",
    "scoped_type_identifier": "name",
    "dynamic_type": "trait",
    "abstract_type": "trait",
}


def type_name(visitor: SyntaxVisitor, node: Any) -> str:
    """Base name of a type expression: ``&mut Buf<T>`` -> ``Buf``."""
    current = node
    while current is not None and current.type in _TYPE_WRAPPERS:
        inner = current.child_by_field_name(_TYPE_WRAPPERS[current.type])
        if inner is None:
            break
        current = inner
    if current is None:
        current = node
    return strip_generics("".join(visitor.text(current).split()))


def strip_generics(text: str) -> str:
    out: List[str] = []
    depth = 0
    for ch in text:
        if ch == "<":
            depth += 1
        elif ch == ">" and depth:
            depth -= 1
        elif depth == 0:
            out.append(ch)
    cleaned = "".join(out)
    while "::::" in cleaned:
        cleaned = cleaned.replace("::::", "::")
    return cleaned.strip(":")
