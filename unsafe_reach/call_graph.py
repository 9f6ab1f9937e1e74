"""Merging per-file records into one call graph and resolving call sites.

Resolution is purely syntactic: a call site is matched against the merged
function table by crate path, by ``(owner type, name)`` and finally by a
unique bare name. Ambiguous or unmatched sites are kept as unresolved edges.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .errors import Diagnostic, DiagnosticKind
from .models import (
    CallEdge,
    CallGraph,
    CallKind,
    CallSite,
    FileRecords,
    FunctionRecord,
    TypeKind,
    TypeRecord,
    Visibility,
)

logger = logging.getLogger(__name__)

NOTE_NO_MATCH = "no matching function"
NOTE_AMBIGUOUS = "ambiguous"
NOTE_EXPRESSION = "callee is not a path"


class CallResolver:
    """Looks up call sites against the merged function table."""

    def __init__(
        self,
        functions: Dict[str, FunctionRecord],
        imports: Dict[str, Dict[str, Dict[str, str]]],
    ) -> None:
        self.functions = functions
        # file path -> module path -> {alias: imported path}
        self.imports = imports
        self.by_qualname: Dict[str, List[str]] = {}
        self.by_name: Dict[str, List[str]] = {}
        self.methods_by_name: Dict[str, List[str]] = {}
        self.by_owner: Dict[Tuple[str, str], List[str]] = {}

        for fid, rec in functions.items():
            self.by_qualname.setdefault(rec.qualname, []).append(fid)
            if rec.owner_type:
                # only functions taking `self` can be called as `recv.m()`
                if rec.has_self_param:
                    self.methods_by_name.setdefault(rec.name, []).append(fid)
                self.by_owner.setdefault((rec.owner_type, rec.name), []).append(fid)
            else:
                self.by_name.setdefault(rec.name, []).append(fid)

    def resolve(self, site: CallSite) -> Tuple[Optional[str], str]:
        """Return ``(callee_id, note)``; ``callee_id`` is ``None`` when unresolved."""
        caller = self.functions.get(site.caller_id)
        if caller is None:
            return None, NOTE_NO_MATCH
        if site.kind == CallKind.PATH:
            return self._resolve_path(site.callee_ref, caller)
        if site.kind == CallKind.METHOD:
            return self._resolve_method(site.callee_ref, site.receiver, caller)
        return None, NOTE_EXPRESSION

    # ------------------------------------------------------------------
    # Path calls
    # ------------------------------------------------------------------

    def _resolve_path(self, ref: str, caller: FunctionRecord) -> Tuple[Optional[str], str]:
        segments = self.expand(ref, caller)
        if not segments:
            return None, NOTE_NO_MATCH
        path = "::".join(segments)
        ambiguous = False

        for qualname in self._qualname_candidates(path, caller):
            found, multiple = self._pick(self.by_qualname.get(qualname, []), caller)
            if found:
                return found, ""
            ambiguous = ambiguous or multiple

        if len(segments) >= 2:
            owner, name = segments[-2], segments[-1]
            found, multiple = self._pick(self.by_owner.get((owner, name), []), caller)
            if found:
                return found, ""
            ambiguous = ambiguous or multiple

        # Bare-name fallback only for paths that stay inside the crate.
        if len(segments) == 1 or segments[0] == "crate":
            found, multiple = self._unique_by_name(self.by_name.get(segments[-1], []), caller)
            if found:
                return found, ""
            ambiguous = ambiguous or multiple

        return None, NOTE_AMBIGUOUS if ambiguous else NOTE_NO_MATCH

    def expand(self, ref: str, caller: FunctionRecord) -> List[str]:
        """Rewrite *ref* into crate-rooted segments where its prefix allows."""
        segments = [s for s in ref.split("::") if s]
        if not segments:
            return []
        module = caller.module_path.split("::")

        head = segments[0]
        if head == "Self" and caller.owner_type:
            return [caller.owner_type] + segments[1:]
        if head == "self":
            return module + segments[1:]
        if head == "super":
            base = list(module)
            rest = list(segments)
            while rest and rest[0] == "super":
                rest.pop(0)
                if len(base) > 1:
                    base.pop()
            return base + rest
        if head == "crate":
            return segments

        table = self.imports.get(caller.file_path, {}).get(caller.module_path, {})
        if head in table:
            imported = table[head].split("::")
            if imported[0] in ("self", "super"):
                imported = self.expand("::".join(imported), caller)
            return imported + segments[1:]
        return segments

    @staticmethod
    def _qualname_candidates(path: str, caller: FunctionRecord) -> List[str]:
        if path.startswith("crate::") or path == "crate":
            return [path]
        return [
            f"{caller.qualname}::{path}",
            f"{caller.module_path}::{path}",
            f"crate::{path}",
        ]

    # ------------------------------------------------------------------
    # Method calls
    # ------------------------------------------------------------------

    def _resolve_method(
        self, name: str, receiver: Optional[str], caller: FunctionRecord
    ) -> Tuple[Optional[str], str]:
        if receiver == "self" and caller.owner_type:
            candidates = [
                fid for fid in self.by_owner.get((caller.owner_type, name), []) if self.functions[fid].has_self_param
            ]
            found, _ = self._pick(candidates, caller)
            if found:
                return found, ""
        found, multiple = self._unique_by_name(self.methods_by_name.get(name, []), caller)
        if found:
            return found, ""
        return None, NOTE_AMBIGUOUS if multiple else NOTE_NO_MATCH

    # ------------------------------------------------------------------
    # Candidate selection
    # ------------------------------------------------------------------

    def _pick(self, ids: Sequence[str], caller: FunctionRecord) -> Tuple[Optional[str], bool]:
        """One candidate wins outright; otherwise a unique same-file one."""
        if not ids:
            return None, False
        if len(ids) == 1:
            return ids[0], False
        same_file = [i for i in ids if self.functions[i].file_path == caller.file_path]
        if len(same_file) == 1:
            return same_file[0], False
        return None, True

    def _unique_by_name(self, ids: Sequence[str], caller: FunctionRecord) -> Tuple[Optional[str], bool]:
        """Same-file unique match first, then crate-wide unique match."""
        if not ids:
            return None, False
        same_file = [i for i in ids if self.functions[i].file_path == caller.file_path]
        if len(same_file) == 1:
            return same_file[0], False
        if not same_file and len(ids) == 1:
            return ids[0], False
        return None, True


class CallGraphBuilder:
    """Builds the read-only :class:`CallGraph` from per-file record sets."""

    def __init__(self) -> None:
        self.diagnostics: List[Diagnostic] = []

    def build(self, files: Iterable[FileRecords]) -> CallGraph:
        files = sorted(files, key=lambda f: f.file_path)
        functions: Dict[str, FunctionRecord] = {}
        types: Dict[str, TypeRecord] = {}
        imports: Dict[str, Dict[str, Dict[str, str]]] = {}
        sites: List[CallSite] = []

        module_visibility = self._file_module_visibility(files)

        for records in files:
            imports[records.file_path] = records.imports
            for rec in records.functions:
                rec = self._compose(rec, module_visibility)
                if rec.function_id in functions:
                    self._collision(rec.function_id, rec.file_path, rec.start_line)
                    continue
                functions[rec.function_id] = rec
            for trec in records.types:
                trec = self._compose(trec, module_visibility)
                if trec.type_id in types:
                    self._collision(trec.type_id, trec.file_path, trec.start_line)
                    continue
                types[trec.type_id] = trec
            sites.extend(records.calls)

        types = self._attach_constructors(types, functions)

        resolver = CallResolver(functions, imports)
        adjacency: Dict[str, List[str]] = {}
        seen: Dict[str, set] = {}
        edges: List[CallEdge] = []
        unresolved: List[CallEdge] = []

        for site in sites:
            if site.caller_id not in functions:
                continue
            callee_id, note = resolver.resolve(site)
            if callee_id is None:
                unresolved.append(CallEdge(site.caller_id, site.callee_ref, site.line, None, note))
                continue
            edges.append(CallEdge(site.caller_id, site.callee_ref, site.line, callee_id))
            targets = seen.setdefault(site.caller_id, set())
            if callee_id not in targets:
                targets.add(callee_id)
                adjacency.setdefault(site.caller_id, []).append(callee_id)

        logger.info(
            "Call graph: %d functions, %d types, %d resolved and %d unresolved edges",
            len(functions), len(types), len(edges), len(unresolved),
        )
        return CallGraph.freeze(functions, types, adjacency, edges, unresolved)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _attach_constructors(
        types: Dict[str, TypeRecord], functions: Dict[str, FunctionRecord]
    ) -> Dict[str, TypeRecord]:
        """Link each type to its constructors by owner name, same file first."""
        by_owner: Dict[str, List[FunctionRecord]] = {}
        for rec in functions.values():
            if rec.is_constructor:
                by_owner.setdefault(rec.owner_type.rsplit("::", 1)[-1], []).append(rec)

        linked: Dict[str, TypeRecord] = {}
        for tid, trec in types.items():
            candidates = by_owner.get(trec.name, []) if trec.kind is not TypeKind.TRAIT else []
            same_file = [r for r in candidates if r.file_path == trec.file_path]
            chosen = tuple(r.function_id for r in (same_file or candidates))
            linked[tid] = replace(trec, constructors=chosen) if chosen else trec
        return linked

    def _collision(self, item_id: str, file_path: str, line: int) -> None:
        logger.warning("Duplicate id %s; keeping the first definition", item_id)
        self.diagnostics.append(
            Diagnostic(DiagnosticKind.ID_COLLISION, file_path, f"duplicate id {item_id}", line)
        )

    @staticmethod
    def _file_module_visibility(files: Sequence[FileRecords]) -> Dict[str, Visibility]:
        """Effective visibility of each file's module along its ``mod`` chain.

        Modules with no file-backed declaration anywhere (crate roots,
        orphan files) are not narrowed.
        """
        declared: Dict[str, Visibility] = {}
        for records in files:
            for decl in records.modules:
                if decl.inline:
                    continue
                prev = declared.get(decl.module_path)
                declared[decl.module_path] = decl.visibility if prev is None else prev.narrow(decl.visibility)

        result: Dict[str, Visibility] = {}
        for records in files:
            visibility = Visibility.PUBLIC
            parts = records.module_path.split("::")
            for i in range(2, len(parts) + 1):
                step = declared.get("::".join(parts[:i]))
                if step is not None:
                    visibility = visibility.narrow(step)
            result[records.file_path] = visibility
        return result

    @staticmethod
    def _compose(record, module_visibility: Dict[str, Visibility]):
        outer = module_visibility.get(record.file_path, Visibility.PUBLIC)
        narrowed = outer.narrow(record.visibility)
        if narrowed is record.visibility:
            return record
        return replace(record, visibility=narrowed)

