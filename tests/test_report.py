import json

import cabigen

FLAGS = """
typedef enum Mode { MODE_A, MODE_B, _MODE_FORCE = 0x7FFF } Mode;
struct Flags { int32_t a; int32_t c : 8; int8_t b; };
extern void use_flags(struct Flags* f, Mode mode);
"""

VARIADIC = "extern int log_message(const char* fmt, ...);"


def _report(results, unified=False):
    divergences = cabigen.check_consistency(results)
    failures = tuple(err for result in results for err in result.failures)
    return cabigen.build_layout_report("mojo", results, divergences, failures, unified)


def test_report_top_level_shape(make_result) -> None:
    results = [make_result(FLAGS), make_result(FLAGS, "windows/x86_64")]

    report = _report(results)

    assert set(report) == {
        "format",
        "target",
        "triples",
        "unified",
        "declarations",
        "divergences",
        "failures",
    }
    assert report["format"] == cabigen.REPORT_FORMAT_VERSION
    assert report["target"] == "mojo"
    assert report["triples"] == ["linux/x86_64", "windows/x86_64"]
    assert report["unified"] is False
    assert report["failures"] == []


def test_report_lists_aggregates_and_enums_only(make_result) -> None:
    report = _report([make_result(FLAGS)], unified=True)

    assert [(d["name"], d["kind"]) for d in report["declarations"]] == [
        ("Flags", "struct"),
        ("Mode", "enum"),
    ]


def test_report_records_header_location(make_result) -> None:
    report = _report([make_result(FLAGS), make_result(FLAGS, "windows/x86_64")])

    assert [(d["name"], d["source"]) for d in report["declarations"]] == [
        ("Flags", "lib.h:3"),
        ("Mode", "lib.h:2"),
    ]


def test_report_layout_records_per_triple(make_result) -> None:
    report = _report([make_result(FLAGS), make_result(FLAGS, "windows/x86_64")])
    flags = report["declarations"][0]["triples"]

    assert flags["linux/x86_64"] == {
        "size": 8,
        "alignment": 4,
        "fields": [
            {"name": "a", "offset": 0, "size": 4},
            {"name": "c", "offset": 4, "size": 1, "bit_offset": 0, "bit_width": 8},
            {"name": "b", "offset": 5, "size": 1},
        ],
    }
    assert flags["windows/x86_64"]["size"] == 12
    assert flags["windows/x86_64"]["fields"][2] == {"name": "b", "offset": 8, "size": 1}


def test_report_enum_record(make_result) -> None:
    report = _report([make_result(FLAGS)], unified=True)
    mode = report["declarations"][1]

    assert mode["triples"] == {"linux/x86_64": {"size": 2, "alignment": 2, "signed": True}}


def test_report_divergence_groups(make_result) -> None:
    report = _report([make_result(FLAGS), make_result(FLAGS, "windows/x86_64")])

    (divergence,) = report["divergences"]
    assert divergence["name"] == "Flags"
    assert divergence["kind"] == "layout"
    assert [g["triples"] for g in divergence["groups"]] == [["linux/x86_64"], ["windows/x86_64"]]


def test_report_failures_sorted_by_triple(make_result) -> None:
    results = [make_result(VARIADIC, "windows/x86_64"), make_result(VARIADIC)]

    report = _report(results)

    assert [(f["triple"], f["declaration"], f["code"]) for f in report["failures"]] == [
        ("linux/x86_64", "log_message", "UNMAPPABLE_TYPE"),
        ("windows/x86_64", "log_message", "UNMAPPABLE_TYPE"),
    ]


def test_format_layout_report_is_stable_json(make_result) -> None:
    report = _report([make_result(FLAGS)], unified=True)

    text = cabigen.format_layout_report(report)

    assert text.endswith("}\n")
    assert json.loads(text) == report
    assert text == json.dumps(json.loads(text), indent=2, sort_keys=True) + "\n"
    assert text.index('"declarations"') < text.index('"format"')
