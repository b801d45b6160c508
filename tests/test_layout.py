import pytest

import cabigen

FLAGS = "struct Flags { int32_t a; int32_t c : 8; int8_t b; };"


def _offsets(info: cabigen.LayoutInfo) -> dict[str, int]:
    return {entry.name: entry.offset for entry in info.fields}


def test_natural_alignment_inserts_padding(make_layouts) -> None:
    info = make_layouts("struct S { char a; int32_t b; int16_t c; int64_t d; };")["S"]

    assert _offsets(info) == {"a": 0, "b": 4, "c": 8, "d": 16}
    assert info.size == 24
    assert info.alignment == 8


def test_int64_aligns_to_four_on_linux_x86(make_layouts) -> None:
    info = make_layouts("struct S { char a; int64_t b; double c; };", "linux/x86")["S"]

    assert _offsets(info) == {"a": 0, "b": 4, "c": 12}
    assert info.size == 20
    assert info.alignment == 4


def test_int64_aligns_to_eight_on_windows_x86(make_layouts) -> None:
    info = make_layouts("struct S { char a; int64_t b; };", "windows/x86")["S"]

    assert info.field("b").offset == 8
    assert info.size == 16


@pytest.mark.parametrize(
    ("platform", "size", "pointer_offset"),
    [("linux/x86_64", 16, 8), ("linux/x86", 8, 4), ("windows/x86", 8, 4)],
)
def test_pointer_size_follows_triple(make_layouts, platform: str, size: int, pointer_offset: int) -> None:
    info = make_layouts("struct P { int32_t id; void* data; };", platform)["P"]

    assert info.field("data").offset == pointer_offset
    assert info.size == size


def test_long_double_size_and_alignment(make_layouts) -> None:
    linux = make_layouts("struct L { char a; long double v; };")["L"]
    apple = make_layouts("struct L { char a; long double v; };", "macos/aarch64")["L"]

    assert (linux.field("v").offset, linux.size, linux.alignment) == (16, 32, 16)
    assert (apple.field("v").offset, apple.size, apple.alignment) == (8, 16, 8)


def test_arrays_and_nested_structs(make_layouts) -> None:
    layouts = make_layouts(
        """
        struct Inner { int16_t x; int16_t y; };
        struct Outer { char tag; struct Inner points[3]; uint8_t grid[2][3]; };
        """
    )
    info = layouts["Outer"]

    assert layouts["Inner"].size == 4
    assert _offsets(info) == {"tag": 0, "points": 2, "grid": 14}
    assert info.field("points").size == 12
    assert info.size == 20
    assert info.alignment == 2


def test_enum_members_use_derived_width(make_layouts) -> None:
    info = make_layouts(
        """
        enum Small { SMALL_A, _SMALL_FORCE = 0x7FFF };
        struct E { char a; enum Small s; char b; };
        """
    )["E"]

    assert _offsets(info) == {"a": 0, "s": 2, "b": 4}
    assert info.size == 6


def test_pragma_pack_caps_member_alignment(make_layouts) -> None:
    layouts = make_layouts(
        """
        #pragma pack(push, 2)
        struct Packed { char a; int32_t b; int64_t c; };
        #pragma pack(pop)
        """
    )
    info = layouts["Packed"]

    assert _offsets(info) == {"a": 0, "b": 2, "c": 6}
    assert info.size == 14
    assert info.alignment == 2


def test_flexible_array_member_adds_no_size(make_layouts) -> None:
    info = make_layouts("struct Msg { uint32_t len; uint8_t data[]; };")["Msg"]

    assert info.field("data").offset == 4
    assert info.field("data").size == 0
    assert info.size == 4


# ===--- Bitfields ---=== #


def test_itanium_bitfield_packs_after_int(make_layouts) -> None:
    info = make_layouts(FLAGS)["Flags"]
    c = info.field("c")

    assert info.size == 8
    assert _offsets(info) == {"a": 0, "c": 4, "b": 5}
    assert (c.size, c.bit_offset, c.bit_width) == (1, 0, 8)
    assert c.slot == "_bitfield_0"


def test_msvc_bitfield_reserves_declared_type(make_layouts) -> None:
    info = make_layouts(FLAGS, "windows/x86_64")["Flags"]
    c = info.field("c")
    slot = next(s for s in info.slots if s.name == "_bitfield_0")

    assert info.size == 12
    assert _offsets(info) == {"a": 0, "c": 4, "b": 8}
    assert (c.size, c.bit_offset, c.bit_width) == (4, 0, 8)
    assert (slot.offset, slot.size, slot.kind) == (4, 4, "bitfield")


def test_msvc_starts_new_unit_when_type_size_changes(make_layouts) -> None:
    source = "struct M { uint8_t a : 4; uint32_t b : 4; };"
    linux = make_layouts(source)["M"]
    windows = make_layouts(source, "windows/x86_64")["M"]

    assert linux.size == 4
    assert (linux.field("a").offset, linux.field("b").offset) == (0, 0)
    assert linux.field("b").bit_offset == 4
    assert windows.size == 8
    assert (windows.field("a").offset, windows.field("b").offset) == (0, 4)
    assert windows.field("b").bit_offset == 0


def test_itanium_bitfield_does_not_straddle_its_unit(make_layouts) -> None:
    info = make_layouts("struct S { uint8_t a : 6; uint8_t b : 4; };")["S"]

    assert info.size == 2
    assert info.field("b").offset == 1
    assert info.field("b").bit_offset == 0
    assert [s.name for s in info.slots] == ["_bitfield_0", "_bitfield_1"]


def test_consecutive_bitfields_share_storage(make_layouts) -> None:
    info = make_layouts("struct S { uint32_t a : 3; uint32_t b : 5; uint32_t c : 10; };")["S"]

    assert {e.slot for e in info.fields} == {"_bitfield_0"}
    assert [e.bit_offset for e in info.fields] == [0, 3, 8]
    assert info.size == 4
    assert info.slots[0].size == 4


def test_zero_width_bitfield_closes_the_unit(make_layouts) -> None:
    info = make_layouts("struct S { uint32_t a : 3; uint32_t : 0; uint32_t b : 3; };")["S"]

    assert info.field("a").offset == 0
    assert info.field("b").offset == 4
    assert info.size == 8


# ===--- Unions and anonymous members ---=== #


def test_union_takes_largest_member(make_layouts) -> None:
    info = make_layouts("union U { char c; int32_t i; double d; char raw[10]; };")["U"]

    assert info.size == 16
    assert info.alignment == 8
    assert set(_offsets(info).values()) == {0}


def test_anonymous_and_named_union_have_identical_layout(make_layouts) -> None:
    layouts = make_layouts(
        """
        struct Anonymous { int32_t tag; union { int32_t i; float f; }; };
        struct Named { int32_t tag; union { int32_t i; float f; } value; };
        """
    )
    anonymous = layouts["Anonymous"]
    named = layouts["Named"]

    assert (anonymous.size, anonymous.alignment) == (named.size, named.alignment)
    assert anonymous.field("i").offset == named.field("value").offset == 4
    assert anonymous.field("f").offset == 4


def test_anonymous_union_fields_are_flattened(make_layouts) -> None:
    info = make_layouts("struct V { int32_t tag; union { int32_t i; float f; }; };")["V"]

    assert [e.name for e in info.fields] == ["tag", "i", "f"]
    assert [s.name for s in info.slots] == ["tag", "_anon_0"]
    assert info.field("i").slot == "_anon_0"
    assert info.slots[1].kind == "anonymous"


def test_named_union_is_a_single_field(make_layouts) -> None:
    info = make_layouts("struct V { int32_t tag; union { int32_t i; float f; } value; };")["V"]

    assert [e.name for e in info.fields] == ["tag", "value"]
    assert info.field("value").type == cabigen.Named("V_value")


def test_nested_anonymous_members_flatten_with_offsets(make_layouts) -> None:
    info = make_layouts(
        """
        struct Deep {
            char kind;
            union {
                struct { int16_t x; int16_t y; };
                int64_t packed;
            };
        };
        """
    )["Deep"]

    assert _offsets(info) == {"kind": 0, "x": 8, "y": 10, "packed": 8}
    assert info.size == 16


# ===--- Failures ---=== #


def test_cyclic_by_value_containment_is_fatal(make_unit) -> None:
    unit = make_unit(
        """
        struct B;
        struct A { struct B b; };
        struct B { struct A a; };
        """
    )

    with pytest.raises(cabigen.CyclicLayoutDependency) as exc_info:
        cabigen.LayoutCalculator(unit).layout("A")

    err = exc_info.value
    assert err.code == "CYCLIC_LAYOUT_DEPENDENCY"
    assert "A -> B -> A" in err.message
    assert err.triple == "linux/x86_64"


def test_pointer_cycles_are_fine(make_layouts) -> None:
    layouts = make_layouts(
        """
        struct Child;
        struct Parent { struct Child* first; };
        struct Child { struct Parent* parent; int32_t id; };
        """
    )

    assert layouts["Parent"].size == 8
    assert layouts["Child"].size == 16


def test_opaque_by_value_is_incomplete(make_unit) -> None:
    unit = make_unit(
        """
        struct Hidden;
        struct User { struct Hidden h; };
        """
    )

    with pytest.raises(cabigen.ExtractionError) as exc_info:
        cabigen.compute_layouts(unit)

    assert exc_info.value.code == "INCOMPLETE_TYPE"


def test_layouts_are_cached_per_calculator(make_unit) -> None:
    unit = make_unit("struct S { int32_t a; };")
    calculator = cabigen.LayoutCalculator(unit)

    assert calculator.layout("S") is calculator.layout("S")


def test_align_up() -> None:
    assert cabigen.align_up(0, 8) == 0
    assert cabigen.align_up(5, 4) == 8
    assert cabigen.align_up(8, 4) == 8
    assert cabigen.align_up(7, 1) == 7
