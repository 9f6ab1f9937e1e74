"""Tests for function, type and module extraction."""

from unsafe_reach.models import TypeKind, Visibility


def _by_name(collection):
    return {rec.qualname: rec for rec in collection.functions}


def test_free_function_visibility(collect_functions):
    functions = _by_name(
        collect_functions(
            """
            pub fn a() {}
            fn b() {}
            pub(crate) fn c() {}
            pub(super) fn d() {}
            pub(in crate::x) fn e() {}
            pub(self) fn f() {}
            """
        )
    )

    assert functions["crate::a"].visibility == Visibility.PUBLIC
    assert functions["crate::b"].visibility == Visibility.PRIVATE
    assert functions["crate::c"].visibility == Visibility.CRATE
    assert functions["crate::d"].visibility == Visibility.RESTRICTED
    assert functions["crate::e"].visibility == Visibility.RESTRICTED
    assert functions["crate::f"].visibility == Visibility.PRIVATE


def test_function_ids_and_lines(collect_functions):
    collection = collect_functions(
        """
        pub fn first() {}

        pub fn second() {
            first();
        }
        """,
        file_path="src/x.rs",
        module_path="crate::x",
    )
    second = _by_name(collection)["crate::x::second"]

    assert second.function_id == "src/x.rs#crate::x::second"
    assert second.file_path == "src/x.rs"
    assert second.module_path == "crate::x"
    assert (second.start_line, second.end_line) == (4, 6)
    assert second.snippet.startswith("pub fn second()")


def test_unsafe_block_detection(collect_functions):
    functions = _by_name(
        collect_functions(
            """
            pub fn direct(p: *const u8) -> u8 {
                unsafe { *p }
            }

            pub fn in_closure(p: *const u8) -> u8 {
                let read = || unsafe { *p };
                read()
            }

            pub fn safe() -> u8 { 0 }

            pub unsafe fn declared_only(p: *const u8) -> u8 {
                0
            }
            """
        )
    )

    assert functions["crate::direct"].contains_unsafe
    assert functions["crate::direct"].unsafe_lines == (3,)
    assert functions["crate::in_closure"].contains_unsafe
    assert not functions["crate::safe"].contains_unsafe
    assert functions["crate::declared_only"].is_unsafe_fn
    assert not functions["crate::declared_only"].contains_unsafe


def test_nested_function_is_separate(collect_functions):
    functions = _by_name(
        collect_functions(
            """
            pub fn outer() {
                fn helper(p: *const u8) -> u8 {
                    unsafe { *p }
                }
                let _ = 1;
            }
            """
        )
    )

    outer = functions["crate::outer"]
    helper = functions["crate::outer::helper"]
    assert not outer.contains_unsafe
    assert helper.contains_unsafe
    assert helper.visibility == Visibility.PRIVATE


def test_macro_token_trees_are_opaque(collect_functions):
    functions = _by_name(
        collect_functions(
            """
            macro_rules! wrap { ($e:expr) => { $e }; }

            pub fn through_macro(p: *const u8) -> u8 {
                wrap!(unsafe { *p })
            }
            """
        )
    )

    assert not functions["crate::through_macro"].contains_unsafe


def test_inline_modules_narrow_visibility(collect_functions):
    functions = _by_name(
        collect_functions(
            """
            mod hidden {
                pub fn f() {}
            }

            pub mod open {
                pub fn g() {}
                pub(crate) fn h() {}

                pub(crate) mod inner {
                    pub fn k() {}
                }
            }
            """
        )
    )

    assert functions["crate::hidden::f"].visibility == Visibility.PRIVATE
    assert functions["crate::open::g"].visibility == Visibility.PUBLIC
    assert functions["crate::open::h"].visibility == Visibility.CRATE
    assert functions["crate::open::inner::k"].visibility == Visibility.CRATE
    assert functions["crate::open::inner::k"].module_path == "crate::open::inner"


def test_methods_and_trait_impls(collect_functions):
    functions = _by_name(
        collect_functions(
            """
            pub struct Buf<T> { items: Vec<T> }

            impl<T> Buf<T> {
                pub fn new() -> Self { Buf { items: Vec::new() } }
                fn private_helper(&self) {}
            }

            impl<T> Drop for Buf<T> {
                fn drop(&mut self) {
                    unsafe { core::ptr::drop_in_place(&mut self.items) }
                }
            }
            """
        )
    )

    new = functions["crate::Buf::new"]
    assert new.owner_type == "Buf"
    assert new.visibility == Visibility.PUBLIC
    assert not new.has_self_param

    helper = functions["crate::Buf::private_helper"]
    assert helper.visibility == Visibility.PRIVATE
    assert helper.has_self_param

    drop = functions["crate::<Buf as Drop>::drop"]
    assert drop.owner_type == "Buf"
    assert drop.trait_name == "Drop"
    assert drop.visibility == Visibility.PUBLIC
    assert drop.contains_unsafe
    assert drop.display_name == "Buf::drop"


def test_trait_default_methods_take_trait_visibility(collect_functions):
    functions = _by_name(
        collect_functions(
            """
            pub trait Reader {
                fn read(&self) -> u8;
                fn read_twice(&self) -> u8 { self.read() }
            }

            trait Hidden {
                fn peek(&self) -> u8 { 0 }
            }
            """
        )
    )

    assert "crate::Reader::read" not in functions
    assert functions["crate::Reader::read_twice"].visibility == Visibility.PUBLIC
    assert functions["crate::Reader::read_twice"].owner_type == "Reader"
    assert functions["crate::Hidden::peek"].visibility == Visibility.PRIVATE


def test_signature_types_skip_std_and_primitives(collect_functions):
    functions = _by_name(
        collect_functions(
            """
            pub fn convert(a: &Header, b: Vec<Packet>, c: u32, d: Option<String>) -> Result<Frame, Error> {
                todo!()
            }
            """
        )
    )

    assert functions["crate::convert"].signature_types == ("Header", "Packet", "Frame", "Error")


def test_type_records(collect_functions):
    collection = collect_functions(
        """
        pub struct Point { x: i32 }
        enum Shape { Dot }
        pub union Bits { i: u32, f: f32 }
        pub type Alias = Point;
        pub trait Draw {}

        pub fn local() {
            struct Scratch;
        }
        """
    )
    types = {t.name: t for t in collection.types}

    assert types["Point"].kind == TypeKind.STRUCT
    assert types["Point"].visibility == Visibility.PUBLIC
    assert types["Shape"].kind == TypeKind.ENUM
    assert types["Shape"].visibility == Visibility.PRIVATE
    assert types["Bits"].kind == TypeKind.UNION
    assert types["Alias"].kind == TypeKind.ALIAS
    assert types["Draw"].kind == TypeKind.TRAIT
    assert types["Scratch"].owner_function == "src/lib.rs#crate::local"
    assert types["Scratch"].qualname == "crate::local::Scratch"
    assert types["Point"].owner_function is None


def test_module_declarations(collect_functions):
    collection = collect_functions(
        """
        pub mod api;
        mod raw;
        pub(crate) mod inline { fn f() {} }
        """
    )
    modules = {m.module_path: m for m in collection.modules}

    assert modules["crate::api"].visibility == Visibility.PUBLIC
    assert not modules["crate::api"].inline
    assert modules["crate::raw"].visibility == Visibility.PRIVATE
    assert modules["crate::inline"].inline
    assert modules["crate::inline"].visibility == Visibility.CRATE


def test_impl_inside_function_is_not_nested(collect_functions):
    functions = _by_name(
        collect_functions(
            """
            pub fn build() {
                struct Local;
                impl Local {
                    pub fn go(&self) {}
                }
            }
            """
        )
    )

    assert "crate::Local::go" in functions
    assert functions["crate::Local::go"].owner_type == "Local"


def test_constructors_are_flagged(collect_functions):
    functions = _by_name(
        collect_functions(
            """
            pub struct Buf<T> { items: Vec<T> }

            impl<T> Buf<T> {
                pub fn new() -> Self { Buf { items: Vec::new() } }
                pub fn named() -> Buf<T> { Self::new() }
                pub fn borrowed(&mut self) -> &mut Self { self }
                pub unsafe fn from_raw(p: *mut T) -> Self { Self::new() }
                pub fn len(&self) -> usize { 0 }
                pub fn try_new() -> Result<Self, ()> { Ok(Self::new()) }
            }

            impl<T> Default for Buf<T> {
                fn default() -> Self { Self::new() }
            }

            impl<T> Clone for Buf<T> {
                fn clone(&self) -> Self { Self::new() }
            }
            """
        )
    )

    flagged = sorted(q for q, rec in functions.items() if rec.is_constructor)

    assert flagged == [
        "crate::<Buf as Default>::default",
        "crate::Buf::borrowed",
        "crate::Buf::named",
        "crate::Buf::new",
    ]
