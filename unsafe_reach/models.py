"""Core data models shared by the collectors, the call graph and the renderers."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from .errors import Diagnostic


class Visibility(str, Enum):
    """How far outside its module a Rust item can be reached."""

    PUBLIC = "public"
    CRATE = "crate"
    RESTRICTED = "restricted"
    PRIVATE = "private"

    @property
    def rank(self) -> int:
        return _VISIBILITY_RANK[self]

    def narrow(self, other: "Visibility") -> "Visibility":
        """Return the less reachable of ``self`` and ``other``."""
        return self if self.rank <= other.rank else other

    @property
    def rust_prefix(self) -> str:
        return _RUST_PREFIX[self]


_VISIBILITY_RANK = {
    Visibility.PRIVATE: 0,
    Visibility.RESTRICTED: 1,
    Visibility.CRATE: 2,
    Visibility.PUBLIC: 3,
}

_RUST_PREFIX = {
    Visibility.PUBLIC: "pub ",
    Visibility.CRATE: "pub(crate) ",
    Visibility.RESTRICTED: "pub(restricted) ",
    Visibility.PRIVATE: "",
}


class TypeKind(str, Enum):
    STRUCT = "struct"
    ENUM = "enum"
    UNION = "union"
    TRAIT = "trait"
    ALIAS = "alias"


class CallKind(str, Enum):
    PATH = "path"
    METHOD = "method"
    EXPRESSION = "expression"


@dataclass(frozen=True)
class FunctionRecord:
    function_id: str
    name: str
    qualname: str
    module_path: str
    visibility: Visibility
    file_path: str
    start_line: int
    end_line: int
    snippet: str
    contains_unsafe: bool
    is_unsafe_fn: bool = False
    owner_type: Optional[str] = None
    trait_name: Optional[str] = None
    signature_types: Tuple[str, ...] = ()
    has_self_param: bool = False
    # inherent or `Default` method returning `Self` or its own type
    is_constructor: bool = False
    unsafe_lines: Tuple[int, ...] = ()

    @property
    def display_name(self) -> str:
        if self.owner_type:
            return f"{self.owner_type}::{self.name}"
        return self.name

    @property
    def signature_label(self) -> str:
        """Short Rust-like label such as ``pub fn Buf::copy``."""
        return f"{self.visibility.rust_prefix}fn {self.display_name}"


@dataclass(frozen=True)
class TypeRecord:
    type_id: str
    name: str
    qualname: str
    module_path: str
    kind: TypeKind
    visibility: Visibility
    file_path: str
    start_line: int
    end_line: int
    snippet: str
    owner_function: Optional[str] = None
    # ids of the safe constructor functions found for this type
    constructors: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ModuleDecl:
    """A ``mod`` item, either inline (``mod a { .. }``) or file-backed (``mod a;``)."""

    module_path: str
    visibility: Visibility
    file_path: str
    line: int
    inline: bool


@dataclass(frozen=True)
class CallSite:
    caller_id: str
    callee_ref: str
    kind: CallKind
    line: int
    receiver: Optional[str] = None


@dataclass(frozen=True)
class CallEdge:
    caller_id: str
    callee_ref: str
    line: int
    callee_id: Optional[str] = None
    note: str = ""

    @property
    def resolved(self) -> bool:
        return self.callee_id is not None


@dataclass
class FileRecords:
    """Everything a single file task hands back to the orchestrator."""

    file_path: str
    module_path: str
    functions: List[FunctionRecord] = field(default_factory=list)
    types: List[TypeRecord] = field(default_factory=list)
    modules: List[ModuleDecl] = field(default_factory=list)
    calls: List[CallSite] = field(default_factory=list)
    # module path -> {local name: imported path}
    imports: Dict[str, Dict[str, str]] = field(default_factory=dict)


@dataclass
class FileOutcome:
    file_path: str
    records: Optional[FileRecords] = None
    diagnostic: Optional[Diagnostic] = None
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return self.records is not None


@dataclass(frozen=True)
class CallGraph:
    """Merged, read-only view over every analyzed file."""

    functions: Mapping[str, FunctionRecord]
    types: Mapping[str, TypeRecord]
    adjacency: Mapping[str, Tuple[str, ...]]
    edges: Tuple[CallEdge, ...] = ()
    unresolved: Tuple[CallEdge, ...] = ()

    @classmethod
    def freeze(
        cls,
        functions: Dict[str, FunctionRecord],
        types: Dict[str, TypeRecord],
        adjacency: Dict[str, List[str]],
        edges: Sequence[CallEdge],
        unresolved: Sequence[CallEdge],
    ) -> "CallGraph":
        return cls(
            functions=MappingProxyType(dict(functions)),
            types=MappingProxyType(dict(types)),
            adjacency=MappingProxyType({k: tuple(v) for k, v in adjacency.items()}),
            edges=tuple(edges),
            unresolved=tuple(unresolved),
        )

    def callees(self, function_id: str) -> Tuple[str, ...]:
        return self.adjacency.get(function_id, ())

    def entry_points(self, include_crate_visible: bool = False) -> List[str]:
        allowed = {Visibility.PUBLIC}
        if include_crate_visible:
            allowed.add(Visibility.CRATE)
        return [fid for fid, rec in self.functions.items() if rec.visibility in allowed]


@dataclass(frozen=True)
class UnsafePath:
    entry_id: str
    nodes: Tuple[str, ...]
    terminal_id: str
    type_ids: Tuple[str, ...] = ()
    snippets: Tuple[str, ...] = ()

    @property
    def depth(self) -> int:
        return len(self.nodes) - 1


@dataclass
class PathSearchResult:
    paths: List[UnsafePath] = field(default_factory=list)
    # type id -> number of emitted paths that reference it
    type_usage: Dict[str, int] = field(default_factory=dict)
    truncated: bool = False


@dataclass
class AnalysisResult:
    input_path: str
    graph: CallGraph
    paths: List[UnsafePath]
    diagnostics: List[Diagnostic] = field(default_factory=list)
    type_usage: Dict[str, int] = field(default_factory=dict)
    files_total: int = 0
    files_analyzed: int = 0
    truncated: bool = False

    @property
    def failed_files(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.file_level]

    @property
    def warnings(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if not d.file_level]
