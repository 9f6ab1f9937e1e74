"""Extraction of function and type records from a parsed Rust file."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set

from .models import FunctionRecord, ModuleDecl, TypeKind, TypeRecord, Visibility
from .visitor import Frame, Scope, SyntaxVisitor, declared_visibility, type_name

# Primitive and common std types that never name a type of the analyzed crate.
NON_CUSTOM_TYPES: Set[str] = {
    "bool", "char", "str", "u8", "u16", "u32", "u64", "u128", "usize",
    "i8", "i16", "i32", "i64", "i128", "isize", "f32", "f64", "Self",
    "String", "Vec", "Option", "Result", "Box", "Rc", "Arc", "Cell", "RefCell",
    "HashMap", "HashSet", "BTreeMap", "BTreeSet", "VecDeque", "LinkedList",
    "Mutex", "RwLock", "Condvar", "Once", "Thread", "Duration", "Instant",
    "SystemTime", "Path", "PathBuf",
}

TYPE_ITEM_KINDS: Dict[str, TypeKind] = {
    "struct_item": TypeKind.STRUCT,
    "enum_item": TypeKind.ENUM,
    "union_item": TypeKind.UNION,
    "type_item": TypeKind.ALIAS,
}


@dataclass
class FunctionCollection:
    functions: List[FunctionRecord] = field(default_factory=list)
    types: List[TypeRecord] = field(default_factory=list)
    modules: List[ModuleDecl] = field(default_factory=list)


class FunctionCollector(SyntaxVisitor):
    """Collects one :class:`FunctionRecord` per ``fn`` item with a body.

    A function is unsafe-containing when an ``unsafe`` block appears in its
    own body. Macro token trees are opaque, so unsafe code produced only by
    macro expansion is not seen. Nested ``fn`` items get their own record and
    do not make the enclosing function unsafe-containing.
    """

    handlers = {
        **SyntaxVisitor.handlers,
        "unsafe_block": "visit_unsafe_block",
        "struct_item": "visit_type_item",
        "enum_item": "visit_type_item",
        "union_item": "visit_type_item",
        "type_item": "visit_type_item",
    }

    def __init__(self, parsed, module_path, deadline=None) -> None:
        super().__init__(parsed, module_path, deadline)
        self._pending: List[Dict[str, Any]] = []
        self._unsafe_lines: Dict[int, List[int]] = {}
        self._types: List[TypeRecord] = []
        self._modules: List[ModuleDecl] = []

    def collect(self) -> FunctionCollection:
        self.walk()
        functions = [
            FunctionRecord(
                contains_unsafe=bool(self._unsafe_lines.get(slot)),
                unsafe_lines=tuple(self._unsafe_lines.get(slot, ())),
                **fields,
            )
            for slot, fields in enumerate(self._pending)
        ]
        return FunctionCollection(functions, list(self._types), list(self._modules))

    # ------------------------------------------------------------------
    # Hooks and handlers
    # ------------------------------------------------------------------

    def on_function(self, node: Any, outer: Scope, inner: Scope, name: str, owner: Optional[str]) -> None:
        if outer.function_qualname:
            declared = Visibility.PRIVATE
        elif outer.impl_type and outer.impl_trait:
            declared = Visibility.PUBLIC
        elif outer.trait_name:
            declared = outer.trait_visibility
        else:
            declared = declared_visibility(self, node)

        params = node.child_by_field_name("parameters")
        return_type = node.child_by_field_name("return_type")
        signature_types: List[str] = []
        has_self = False
        if params is not None:
            has_self = any(c.type == "self_parameter" for c in params.named_children)
            for param in params.named_children:
                if param.type == "parameter":
                    self._custom_types(param.child_by_field_name("type"), signature_types)
        if return_type is not None:
            self._custom_types(return_type, signature_types)
        if has_self and owner and owner not in signature_types:
            signature_types.insert(0, owner)

        self._pending.append(
            dict(
                function_id=inner.function_id,
                name=name,
                qualname=inner.function_qualname,
                module_path=outer.module_path,
                visibility=outer.module_visibility.narrow(declared),
                file_path=self.file_path,
                start_line=node.start_point[0] + 1,
                end_line=node.end_point[0] + 1,
                snippet=self.text(node),
                is_unsafe_fn=_has_unsafe_modifier(node),
                owner_type=owner,
                trait_name=outer.impl_trait or outer.trait_name,
                signature_types=tuple(signature_types),
                has_self_param=has_self,
                is_constructor=self._is_constructor(node, outer, owner, return_type),
            )
        )

    def on_module(self, node: Any, outer: Scope, inner: Scope) -> None:
        self._modules.append(
            ModuleDecl(
                module_path=inner.module_path,
                visibility=inner.module_visibility,
                file_path=self.file_path,
                line=self.line(node),
                inline=node.child_by_field_name("body") is not None,
            )
        )

    def on_trait(self, node: Any, scope: Scope) -> None:
        self._add_type(node, scope, TypeKind.TRAIT)

    def visit_unsafe_block(self, node: Any, scope: Scope) -> Iterable[Frame]:
        if scope.function_slot >= 0:
            self._unsafe_lines.setdefault(scope.function_slot, []).append(self.line(node))
        return [(child, scope) for child in node.named_children]

    def visit_type_item(self, node: Any, scope: Scope) -> Iterable[Frame]:
        self._add_type(node, scope, TYPE_ITEM_KINDS[node.type])
        return []

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _add_type(self, node: Any, scope: Scope, kind: TypeKind) -> None:
        name_node = node.child_by_field_name("name")
        if name_node is None:
            return
        name = self.text(name_node)
        prefix = scope.function_qualname or scope.module_path
        qualname = f"{prefix}::{name}"
        self._types.append(
            TypeRecord(
                type_id=f"{self.file_path}#{qualname}",
                name=name,
                qualname=qualname,
                module_path=scope.module_path,
                kind=kind,
                visibility=scope.module_visibility.narrow(declared_visibility(self, node)),
                file_path=self.file_path,
                start_line=node.start_point[0] + 1,
                end_line=node.end_point[0] + 1,
                snippet=self.text(node),
                owner_function=scope.function_id,
            )
        )

    def _is_constructor(self, node: Any, outer: Scope, owner: Optional[str], return_type: Any) -> bool:
        if not owner or return_type is None or _has_unsafe_modifier(node):
            return False
        if outer.impl_trait and _last_segment(outer.impl_trait) != "Default":
            return False
        returned = _last_segment(type_name(self, return_type))
        return returned in ("Self", _last_segment(owner))

    def _custom_types(self, type_node: Any, out: List[str]) -> None:
        if type_node is None:
            return
        stack = [type_node]
        while stack:
            node = stack.pop()
            if node.type == "type_identifier":
                name = self.text(node)
                if name not in NON_CUSTOM_TYPES and name not in out:
                    out.append(name)
                continue
            if node.type == "scoped_type_identifier":
                name_node = node.child_by_field_name("name")
                if name_node is not None:
                    stack.append(name_node)
                continue
            stack.extend(reversed(node.named_children))


def _has_unsafe_modifier(node: Any) -> bool:
    modifiers = next((c for c in node.children if c.type == "function_modifiers"), None)
    if modifiers is None:
        return False
    return any(c.type == "unsafe" for c in modifiers.children)


def _last_segment(path: str) -> str:
    return path.rsplit("::", 1)[-1]
