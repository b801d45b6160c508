from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest

import cabigen


def _require_callable(name: str) -> Callable[..., object]:
    symbol = getattr(cabigen, name, None)
    assert callable(symbol), f"Missing writer API symbol: cabigen.{name}"
    return symbol


def _require_type(name: str) -> type:
    symbol = getattr(cabigen, name, None)
    assert isinstance(symbol, type), f"Missing writer type symbol: cabigen.{name}"
    return symbol


def _make_write_config(
    *,
    target: str = "mojo",
    library: str = "mylib",
    module_name: str = "mylib",
) -> object:
    write_config_type = _require_type("WriteConfig")
    return write_config_type(target=target, library=library, module_name=module_name)


def _make_external_import(module: str, names: tuple[str, ...]) -> object:
    external_import_type = _require_type("ExternalImport")
    return external_import_type(module=module, names=names)


def _make_module_spec(
    *,
    filename: str,
    platforms: tuple[str, ...] = ("linux/x86_64",),
    external_imports: tuple[object, ...] = (),
    content_lines: tuple[str, ...] = (),
) -> object:
    module_spec_type = _require_type("ModuleSpec")
    return module_spec_type(
        filename=filename,
        platforms=platforms,
        external_imports=external_imports,
        content_lines=content_lines,
    )


def _lines(text: str) -> list[str]:
    return text.splitlines()


MOJO_BORDER = "# x-------------------------------------------x #"


def test_t_01_format_file_header_names_library_target_and_platforms() -> None:
    format_file_header = _require_callable("format_file_header")
    config = _make_write_config()

    lines = format_file_header(config, ("linux/x86_64", "windows/x86_64"))

    assert lines == [
        MOJO_BORDER,
        "# | mylib bindings for Mojo",
        "# | Generated by cabigen",
        "# | Platforms: linux/x86_64, windows/x86_64",
        MOJO_BORDER,
    ]


def test_t_02_format_file_header_uses_csharp_comments() -> None:
    format_file_header = _require_callable("format_file_header")
    config = _make_write_config(target="csharp")

    lines = format_file_header(config, ("linux/x86_64",))

    assert lines[0] == "// x-------------------------------------------x //"
    assert lines[1] == "// | mylib bindings for C#"


def test_t_03_format_file_header_rejects_empty_platforms() -> None:
    format_file_header = _require_callable("format_file_header")

    with pytest.raises(ValueError):
        format_file_header(_make_write_config(), ())


def test_t_04_format_import_block_renders_declaration_order() -> None:
    format_import_block = _require_callable("format_import_block")
    external = (_make_external_import("ffi", ("c_char", "external_call")),)

    assert format_import_block(_make_write_config(), external) == [
        "from ffi import c_char, external_call"
    ]


def test_t_05_format_import_block_rejects_empty_mojo_names() -> None:
    format_import_block = _require_callable("format_import_block")

    with pytest.raises(ValueError):
        format_import_block(_make_write_config(), (_make_external_import("ffi", ()),))


def test_t_06_format_import_block_csharp_using() -> None:
    format_import_block = _require_callable("format_import_block")
    external = (_make_external_import("System.Runtime.InteropServices", ()),)

    assert format_import_block(_make_write_config(target="csharp"), external) == [
        "using System.Runtime.InteropServices;"
    ]


def test_t_07_assemble_module_source_layout_and_newline() -> None:
    assemble_module_source = _require_callable("assemble_module_source")
    spec = _make_module_spec(
        filename="mylib.mojo",
        external_imports=(_make_external_import("ffi", ("external_call",)),),
        content_lines=("comptime flags_t = UInt32",),
    )

    text = assemble_module_source(_make_write_config(), spec)
    lines = _lines(text)
    header_end = lines.index(MOJO_BORDER, 1)

    assert lines[header_end + 1] == ""
    assert lines[header_end + 2] == "from ffi import external_call"
    assert lines[header_end + 3] == ""
    assert lines[header_end + 4] == "comptime flags_t = UInt32"
    assert text.endswith("\n")
    assert not text.endswith("\n\n")


def test_t_08_assemble_module_source_rejects_invalid_filename() -> None:
    assemble_module_source = _require_callable("assemble_module_source")
    config = _make_write_config()
    for filename in ("", "mylib", "mylib.cs", "mylib.txt"):
        spec = _make_module_spec(filename=filename, content_lines=("comptime X = Int32",))
        with pytest.raises(ValueError):
            assemble_module_source(config, spec)


def test_t_09_assemble_module_source_allows_empty_content() -> None:
    assemble_module_source = _require_callable("assemble_module_source")

    text = assemble_module_source(_make_write_config(), _make_module_spec(filename="mylib.mojo"))

    assert _lines(text)[-1] == MOJO_BORDER
    assert text.endswith("\n")
    assert not text.endswith("\n\n")


@pytest.mark.parametrize(
    ("target", "platform", "expected"),
    [
        ("mojo", None, "mylib.mojo"),
        ("mojo", "linux/x86_64", "mylib_linux_x86_64.mojo"),
        ("csharp", "windows/x86_64/gnu", "mylib_windows_x86_64_gnu.cs"),
    ],
)
def test_t_10_module_filename(target: str, platform: str | None, expected: str) -> None:
    module_filename = _require_callable("module_filename")
    triple = cabigen.resolve_platform(platform) if platform else None

    assert module_filename(_make_write_config(target=target), triple) == expected


def test_t_11_write_module_creates_directory_and_counts(tmp_path: Path) -> None:
    write_module = _require_callable("write_module")
    output_dir = tmp_path / "nested" / "out"
    spec = _make_module_spec(filename="mylib.mojo", content_lines=("comptime X = Int32",))

    result = write_module(output_dir, _make_write_config(), spec)
    written = (output_dir / "mylib.mojo").read_text(encoding="utf-8")

    assert result.filename == "mylib.mojo"
    assert result.path == (output_dir / "mylib.mojo").resolve()
    assert result.line_count == written.count("\n")
    assert result.byte_count == len(written.encode("utf-8"))


def test_t_12_write_package_writes_every_spec_in_order(tmp_path: Path) -> None:
    write_package = _require_callable("write_package")
    specs = (
        _make_module_spec(filename="mylib_linux_x86_64.mojo", content_lines=("comptime A = Int32",)),
        _make_module_spec(filename="mylib_windows_x86_64.mojo", content_lines=("comptime A = Int64",)),
    )

    result = write_package(tmp_path, _make_write_config(), specs)

    assert [f.filename for f in result.files] == [
        "mylib_linux_x86_64.mojo",
        "mylib_windows_x86_64.mojo",
    ]
    assert result.total_lines == sum(f.line_count for f in result.files)
    assert result.output_dir == tmp_path


def test_t_13_diff_against_disk_reports_only_changed_files(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    diff_against_disk = _require_callable("diff_against_disk")
    same = tmp_path / "same.mojo"
    changed = tmp_path / "changed.mojo"
    missing = tmp_path / "missing.mojo"
    same.write_text("a\n", encoding="utf-8")
    changed.write_text("old\n", encoding="utf-8")

    drift = diff_against_disk({same: "a\n", changed: "new\n", missing: "fresh\n"})
    out = capsys.readouterr().out

    assert drift == (str(changed), str(missing))
    assert "-old" in out
    assert "+new" in out
    assert "+fresh" in out
    assert changed.read_text(encoding="utf-8") == "old\n"
    assert not missing.exists()
