"""Depth-bounded search for call paths from public entries to unsafe code."""

from __future__ import annotations

import logging
from collections import deque
from typing import Deque, Dict, Iterator, List, Optional, Set, Tuple

from .config import AnalysisConfig
from .models import CallGraph, PathSearchResult, TypeRecord, UnsafePath

logger = logging.getLogger(__name__)


class PathFinder:
    """Enumerates simple call paths that end in an unsafe-containing function.

    Each entry gets its own depth-first search with an explicit stack of
    ``(callee iterator)`` frames kept in step with the current path. A node
    already on the path is never revisited, so every emitted path is simple
    and every cycle terminates. ``max_depth`` counts hops, so a function that
    itself contains unsafe code yields a path of depth zero.

    Callees that cannot reach unsafe code within the remaining hop budget are
    never pushed, so safe call trees cost nothing beyond one reverse
    breadth-first pass over the graph.
    """

    def __init__(self, graph: CallGraph, config: Optional[AnalysisConfig] = None) -> None:
        self.graph = graph
        self.config = config or AnalysisConfig()
        self._types_by_name: Dict[str, List[TypeRecord]] = {}
        self._types_by_owner: Dict[str, List[TypeRecord]] = {}
        for trec in graph.types.values():
            self._types_by_name.setdefault(trec.name, []).append(trec)
            if trec.owner_function:
                self._types_by_owner.setdefault(trec.owner_function, []).append(trec)
        self._type_cache: Dict[str, Tuple[str, ...]] = {}
        self._distance: Optional[Dict[str, int]] = None

    def entries(self) -> List[str]:
        ids = self.graph.entry_points(self.config.include_crate_visible)
        if self.config.skip_unsafe_entries:
            ids = [fid for fid in ids if not self.graph.functions[fid].is_unsafe_fn]
        return ids

    def distance_to_unsafe(self) -> Dict[str, int]:
        """Fewest hops from each function to an unsafe-containing one.

        Functions with no route to unsafe code are absent from the mapping.
        """
        if self._distance is not None:
            return self._distance

        callers: Dict[str, List[str]] = {}
        for caller, callees in self.graph.adjacency.items():
            for callee in callees:
                callers.setdefault(callee, []).append(caller)

        distance = {fid: 0 for fid, rec in self.graph.functions.items() if rec.contains_unsafe}
        queue: Deque[str] = deque(distance)
        while queue:
            node = queue.popleft()
            hops = distance[node] + 1
            for caller in callers.get(node, ()):
                if caller not in distance:
                    distance[caller] = hops
                    queue.append(caller)

        self._distance = distance
        return distance

    def search(self) -> PathSearchResult:
        result = PathSearchResult()
        max_depth = self.config.max_depth
        distance = self.distance_to_unsafe()
        entries = self.entries()
        eligible = set(entries)
        for entry in entries:
            if distance.get(entry, max_depth + 1) > max_depth:
                continue
            if not self._search_from(entry, eligible, result):
                result.truncated = True
                logger.warning("Path limit of %d reached; output truncated", self.config.max_paths)
                break
        logger.info("Found %d unsafe paths from %d entry points", len(result.paths), len(entries))
        return result

    def _search_from(self, entry: str, eligible: Set[str], result: PathSearchResult) -> bool:
        """Run one DFS; returns ``False`` once the global path cap is hit."""
        functions = self.graph.functions
        max_depth = self.config.max_depth
        stop_at_unsafe = self.config.stop_at_unsafe
        distance = self.distance_to_unsafe()
        unreachable = max_depth + 1

        path: List[str] = [entry]
        on_path: Set[str] = {entry}
        if functions[entry].contains_unsafe:
            if not self._emit(path, result):
                return False
            if stop_at_unsafe:
                return True
        if max_depth == 0:
            return True

        stack: List[Iterator[str]] = [iter(self.graph.callees(entry))]
        while stack:
            callee = next(stack[-1], None)
            if callee is None:
                stack.pop()
                on_path.discard(path.pop())
                continue
            if callee in on_path:
                continue
            if self.config.minimal_paths and callee in eligible:
                continue
            # the callee would sit len(path) hops from the entry
            if distance.get(callee, unreachable) > max_depth - len(path):
                continue

            record = functions[callee]
            path.append(callee)
            on_path.add(callee)
            if record.contains_unsafe and not self._emit(path, result):
                return False

            descend = (
                len(path) - 1 < max_depth
                and not (stop_at_unsafe and record.contains_unsafe)
                and bool(self.graph.callees(callee))
            )
            if descend:
                stack.append(iter(self.graph.callees(callee)))
            else:
                on_path.discard(path.pop())
        return True

    def _emit(self, path: List[str], result: PathSearchResult) -> bool:
        if len(result.paths) >= self.config.max_paths:
            return False
        nodes = tuple(path)
        type_ids = self._path_types(nodes)
        result.paths.append(
            UnsafePath(
                entry_id=nodes[0],
                nodes=nodes,
                terminal_id=nodes[-1],
                type_ids=type_ids,
                snippets=tuple(self.graph.functions[n].snippet for n in nodes),
            )
        )
        for tid in type_ids:
            result.type_usage[tid] = result.type_usage.get(tid, 0) + 1
        return True

    # ------------------------------------------------------------------
    # Types referenced along a path
    # ------------------------------------------------------------------

    def _path_types(self, nodes: Tuple[str, ...]) -> Tuple[str, ...]:
        ordered: Dict[str, None] = {}
        for fid in nodes:
            for tid in self.function_types(fid):
                ordered.setdefault(tid, None)
        return tuple(ordered)

    def function_types(self, function_id: str) -> Tuple[str, ...]:
        """Types named by a function's owner or signature, or defined in its body."""
        cached = self._type_cache.get(function_id)
        if cached is not None:
            return cached
        rec = self.graph.functions[function_id]
        names: List[str] = []
        for name in ((rec.owner_type,) if rec.owner_type else ()) + rec.signature_types:
            if name not in names:
                names.append(name)

        found: Dict[str, None] = {}
        for name in names:
            candidates = self._types_by_name.get(name, [])
            same_file = [t for t in candidates if t.file_path == rec.file_path]
            for trec in same_file or candidates:
                found.setdefault(trec.type_id, None)
        for trec in self._types_by_owner.get(function_id, []):
            found.setdefault(trec.type_id, None)

        self._type_cache[function_id] = tuple(found)
        return self._type_cache[function_id]
