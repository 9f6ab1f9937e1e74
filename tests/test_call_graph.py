"""Tests for merging records and resolving calls into a call graph."""

import pytest

from unsafe_reach.call_graph import NOTE_AMBIGUOUS, NOTE_EXPRESSION, CallGraphBuilder
from unsafe_reach.errors import DiagnosticKind
from unsafe_reach.models import CallKind, CallSite, FileRecords, FunctionRecord, Visibility


def _callee_names(graph, caller):
    return [graph.functions[c].qualname for c in graph.callees(caller.function_id)]


def test_resolves_imports_and_relative_paths(build_graph, find_function):
    graph = build_graph(
        {
            "src/lib.rs": """
                pub mod api;
                mod raw;
            """,
            "src/raw.rs": """
                pub fn read_at(i: usize) -> u8 { unsafe { 0 } }
                pub fn sibling() {}
            """,
            "src/api.rs": """
                use crate::raw::read_at;
                use super::raw;

                pub fn a() { read_at(0); }
                pub fn b() { raw::sibling(); }
                pub fn c() { super::raw::read_at(1); }
                pub fn d() { self::a(); }
            """,
        }
    )

    assert _callee_names(graph, find_function(graph, "crate::api::a")) == ["crate::raw::read_at"]
    assert _callee_names(graph, find_function(graph, "crate::api::b")) == ["crate::raw::sibling"]
    assert _callee_names(graph, find_function(graph, "crate::api::c")) == ["crate::raw::read_at"]
    assert _callee_names(graph, find_function(graph, "crate::api::d")) == ["crate::api::a"]


def test_resolves_methods_and_self_type(build_graph, find_function):
    graph = build_graph(
        {
            "src/lib.rs": """
                pub struct Buf;

                impl Buf {
                    pub fn new() -> Self { Self::init() }
                    fn init() -> Self { Buf }
                    pub fn get(&self) -> u8 { self.checked() }
                    fn checked(&self) -> u8 { 0 }
                }

                pub fn make() -> Buf { Buf::new() }
                pub fn use_it(b: &Buf) -> u8 { b.get() }
            """,
        }
    )

    assert _callee_names(graph, find_function(graph, "crate::Buf::new")) == ["crate::Buf::init"]
    assert _callee_names(graph, find_function(graph, "crate::Buf::get")) == ["crate::Buf::checked"]
    assert _callee_names(graph, find_function(graph, "crate::make")) == ["crate::Buf::new"]
    assert _callee_names(graph, find_function(graph, "crate::use_it")) == ["crate::Buf::get"]


def test_trait_impl_method_resolved_by_owner(build_graph, find_function):
    graph = build_graph(
        {
            "src/lib.rs": """
                pub struct Buf;
                pub trait Reader { fn read(&self) -> u8; }
                impl Reader for Buf {
                    fn read(&self) -> u8 { unsafe { 1 } }
                }
                pub fn go() -> u8 { <Buf as Reader>::read(&Buf) }
            """,
        }
    )

    assert _callee_names(graph, find_function(graph, "crate::go")) == ["crate::<Buf as Reader>::read"]


def test_ambiguous_and_external_calls_are_unresolved(build_graph, find_function):
    graph = build_graph(
        {
            "src/lib.rs": """
                pub mod a;
                pub mod b;

                pub fn go(x: &a::A, p: *const u8) {
                    x.run();
                    std::ptr::read(p);
                    (make())();
                }

                fn make() -> fn() { noop }
                fn noop() {}
            """,
            "src/a.rs": """
                pub struct A;
                impl A { pub fn run(&self) {} }
                pub fn read() {}
            """,
            "src/b.rs": """
                pub struct B;
                impl B { pub fn run(&self) {} }
            """,
        }
    )

    go = find_function(graph, "crate::go")
    assert _callee_names(graph, go) == ["crate::make"]
    notes = {e.callee_ref: e.note for e in graph.unresolved if e.caller_id == go.function_id}
    assert notes["run"] == NOTE_AMBIGUOUS
    assert "std::ptr::read" in notes
    assert notes["(make())"] == NOTE_EXPRESSION


def test_adjacency_is_deduplicated_but_edges_are_not(build_graph, find_function):
    graph = build_graph(
        {
            "src/lib.rs": """
                pub fn caller() {
                    target();
                    other();
                    target();
                }
                fn target() {}
                fn other() {}
            """,
        }
    )

    caller = find_function(graph, "crate::caller")
    assert _callee_names(graph, caller) == ["crate::target", "crate::other"]
    assert len([e for e in graph.edges if e.caller_id == caller.function_id]) == 3


def test_file_backed_module_visibility_composes(build_graph, find_function):
    graph = build_graph(
        {
            "src/lib.rs": """
                pub mod open;
                mod closed;
                pub(crate) mod shared;
            """,
            "src/open/mod.rs": "pub mod deeper;\npub fn o() {}\n",
            "src/open/deeper.rs": "pub fn d() {}\n",
            "src/closed.rs": "pub fn c() {}\n",
            "src/shared.rs": "pub fn s() {}\nfn p() {}\n",
        }
    )

    assert find_function(graph, "crate::open::o").visibility == Visibility.PUBLIC
    assert find_function(graph, "crate::open::deeper::d").visibility == Visibility.PUBLIC
    assert find_function(graph, "crate::closed::c").visibility == Visibility.PRIVATE
    assert find_function(graph, "crate::shared::s").visibility == Visibility.CRATE
    assert find_function(graph, "crate::shared::p").visibility == Visibility.PRIVATE


def test_every_adjacency_target_is_known(build_graph):
    graph = build_graph(
        {
            "src/lib.rs": """
                pub fn a() { b(); missing(); c::d(); }
                fn b() { a(); }
            """,
        }
    )

    for caller, callees in graph.adjacency.items():
        assert caller in graph.functions
        assert all(callee in graph.functions for callee in callees)


def test_graph_is_read_only(build_graph):
    graph = build_graph({"src/lib.rs": "pub fn a() {}"})

    with pytest.raises(TypeError):
        graph.functions["x"] = None
    with pytest.raises(TypeError):
        graph.adjacency["x"] = ()


def _record(qualname: str, line: int, unsafe: bool = False) -> FunctionRecord:
    return FunctionRecord(
        function_id=f"src/lib.rs#{qualname}",
        name=qualname.rsplit("::", 1)[-1],
        qualname=qualname,
        module_path="crate",
        visibility=Visibility.PUBLIC,
        file_path="src/lib.rs",
        start_line=line,
        end_line=line,
        snippet="fn f() {}",
        contains_unsafe=unsafe,
    )


def test_id_collision_keeps_first_record():
    first = _record("crate::f", 2)
    second = _record("crate::f", 5, unsafe=True)
    caller = _record("crate::g", 8)
    records = FileRecords(
        file_path="src/lib.rs",
        module_path="crate",
        functions=[first, second, caller],
        calls=[CallSite(caller.function_id, "f", CallKind.PATH, 9)],
    )

    builder = CallGraphBuilder()
    graph = builder.build([records])

    assert graph.functions[first.function_id] is first
    assert len(graph.functions) == 2
    (diagnostic,) = builder.diagnostics
    assert diagnostic.kind == DiagnosticKind.ID_COLLISION
    assert diagnostic.line == 5
    assert not diagnostic.file_level
    assert graph.callees(caller.function_id) == (first.function_id,)


def test_merge_order_is_independent_of_input_order():
    a = FileRecords("src/a.rs", "crate::a", functions=[_record("crate::a::x", 1)])
    b = FileRecords("src/b.rs", "crate::b", functions=[_record("crate::b::y", 1)])

    forward = CallGraphBuilder().build([a, b])
    backward = CallGraphBuilder().build([b, a])

    assert list(forward.functions) == list(backward.functions)


def test_method_calls_skip_associated_functions(build_graph, find_function):
    graph = build_graph(
        {
            "src/lib.rs": """
                pub struct A;
                pub struct B;

                impl A { pub fn run(&self) {} }
                impl B {
                    pub fn run() {}
                    pub fn size() -> usize { 0 }
                    pub fn go(&self) -> usize { self.size() }
                }

                pub fn call(a: &A) { a.run(); }
            """,
        }
    )

    assert _callee_names(graph, find_function(graph, "crate::call")) == ["crate::A::run"]
    go = find_function(graph, "crate::B::go")
    assert graph.callees(go.function_id) == ()
    (edge,) = [e for e in graph.unresolved if e.caller_id == go.function_id]
    assert edge.callee_ref == "size"


def test_types_link_their_constructors(build_graph):
    graph = build_graph(
        {
            "src/lib.rs": """
                pub mod other;
                pub struct Buf;
                pub trait Reader { fn make() -> Self; }

                impl Buf {
                    pub fn new() -> Self { Buf }
                    pub fn size(&self) -> usize { 0 }
                }
            """,
            "src/other.rs": """
                pub struct Buf;
                impl Buf { pub fn empty() -> Buf { Buf } }
            """,
        }
    )

    by_qualname = {t.qualname: t for t in graph.types.values()}
    ctor_names = {q: [graph.functions[f].qualname for f in t.constructors] for q, t in by_qualname.items()}

    assert ctor_names["crate::Buf"] == ["crate::Buf::new"]
    assert ctor_names["crate::other::Buf"] == ["crate::other::Buf::empty"]
    assert ctor_names["crate::Reader"] == []
