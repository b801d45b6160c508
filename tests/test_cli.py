from collections.abc import Callable
from dataclasses import FrozenInstanceError
from pathlib import Path

import pytest

import cabigen

POINT = """
struct Point { int32_t x; int32_t y; };
extern int32_t point_sum(const struct Point* p);
"""


def _assert_config_code(exc_info: pytest.ExceptionInfo[Exception], code: str) -> None:
    err = exc_info.value
    assert getattr(err, "code") == code
    assert getattr(err, "code") in cabigen.VALID_ERROR_CODES


def test_import_cabigen_module_smoke() -> None:
    assert callable(cabigen.main)


def test_build_argument_parser_exposes_surface_and_defaults() -> None:
    parser = cabigen.build_argument_parser()
    option_actions = {
        option: action for action in parser._actions for option in action.option_strings
    }

    expected_options = {
        "--input",
        "--target",
        "--library",
        "--module-name",
        "--output-dir",
        "--report",
        "--decoration",
        "--default-visibility",
        "--ignore",
        "--jobs",
        "--check",
    }

    assert expected_options.issubset(option_actions.keys())
    assert option_actions["--target"].default == cabigen.DEFAULT_TARGET
    assert option_actions["--module-name"].default == cabigen.DEFAULT_MODULE_NAME
    assert option_actions["--output-dir"].default == cabigen.DEFAULT_OUTPUT_DIR
    assert option_actions["--jobs"].default == 1
    assert option_actions["--check"].default is False
    assert option_actions["--input"].default is None


def test_parse_args_collects_repeated_inputs() -> None:
    args = cabigen.parse_args(
        ["--input", "linux/x86_64=a.i", "--input", "windows/x86_64=b.i", "--jobs", "2"]
    )

    assert args.input == ["linux/x86_64=a.i", "windows/x86_64=b.i"]
    assert args.jobs == 2
    assert isinstance(args.output_dir, Path)


@pytest.mark.parametrize(
    "argv",
    [
        ["--not-a-flag"],
        ["--default-visibility", "public"],
        ["--jobs", "many"],
    ],
)
def test_parse_args_usage_errors_exit_with_code_2(argv: list[str]) -> None:
    with pytest.raises(SystemExit) as exc_info:
        cabigen.parse_args(argv)

    assert exc_info.value.code == 2


def test_parse_input_spec_resolves_triple_and_path(write_unit: Callable[..., Path]) -> None:
    path = write_unit("win.i", POINT)

    spec = cabigen.parse_input_spec(f"win/amd64={path}")

    assert spec.triple == cabigen.PlatformTriple("windows", "x86_64", "msvc")
    assert spec.path == path


@pytest.mark.parametrize("raw", ["linux/x86_64", "=lib.i", "linux/x86_64=", ""])
def test_parse_input_spec_rejects_malformed_values(raw: str) -> None:
    with pytest.raises(cabigen.ConfigError) as exc_info:
        cabigen.parse_input_spec(raw)

    _assert_config_code(exc_info, "INVALID_INPUT_SPEC")


def test_parse_input_spec_unknown_platform_is_bindgen_error(tmp_path: Path) -> None:
    with pytest.raises(cabigen.UnsupportedPlatform) as exc_info:
        cabigen.parse_input_spec(f"plan9/x86_64={tmp_path / 'lib.i'}")

    assert exc_info.value.triple == "plan9/x86_64"


def test_parse_input_spec_missing_path(tmp_path: Path) -> None:
    missing = tmp_path / "missing.i"

    with pytest.raises(cabigen.ConfigError) as exc_info:
        cabigen.parse_input_spec(f"linux/x86_64={missing}")

    _assert_config_code(exc_info, "PATH_NOT_FOUND")
    assert str(missing) in exc_info.value.message


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("MYLIB_API=export", ("MYLIB_API", "export")),
        (" MYLIB_LOCAL = Internal ", ("MYLIB_LOCAL", "internal")),
    ],
)
def test_parse_decoration(raw: str, expected: tuple[str, str]) -> None:
    assert cabigen.parse_decoration(raw) == expected


@pytest.mark.parametrize("raw", ["MYLIB_API", "MYLIB_API=public", "9API=export", "=export"])
def test_parse_decoration_rejects_invalid_values(raw: str) -> None:
    with pytest.raises(cabigen.ConfigError) as exc_info:
        cabigen.parse_decoration(raw)

    _assert_config_code(exc_info, "INVALID_DECORATION")


@pytest.mark.parametrize("raw", ["", "two words", "9lives", "ns::name"])
def test_parse_ignore_rejects_invalid_names(raw: str) -> None:
    with pytest.raises(cabigen.ConfigError) as exc_info:
        cabigen.parse_ignore(raw)

    _assert_config_code(exc_info, "INVALID_IGNORE")


def test_validate_config_collects_ignored_names(
    make_args: Callable[..., object],
    write_unit: Callable[..., Path],
) -> None:
    linux = write_unit("linux.i", POINT)
    args = make_args(
        input=[f"linux/x86_64={linux}"],
        ignore=[" legacy_init", "Internal", "legacy_init"],
    )

    config = cabigen.validate_config(args)

    assert config.options.ignore == ("legacy_init", "Internal")


def test_validate_config_returns_generate_config(
    make_args: Callable[..., object],
    write_unit: Callable[..., Path],
    tmp_path: Path,
) -> None:
    linux = write_unit("linux.i", POINT)
    windows = write_unit("windows.i", POINT)
    args = make_args(
        input=[f"windows/x86_64={windows}", f"linux/x86_64={linux}"],
        module_name="mylib",
        decoration=["MYLIB_API=export"],
    )

    config = cabigen.validate_config(args)

    assert isinstance(config, cabigen.GenerateConfig)
    assert [spec.triple.label for spec in config.inputs] == ["linux/x86_64", "windows/x86_64"]
    assert config.library == "mylib"
    assert config.report_path == tmp_path / "out" / cabigen.REPORT_FILENAME
    assert config.options == cabigen.ExtractOptions(decorations=(("MYLIB_API", "export"),))
    assert config.jobs == 1
    assert config.check is False


def test_validate_config_keeps_explicit_library_and_report(
    make_args: Callable[..., object],
    write_unit: Callable[..., Path],
    tmp_path: Path,
) -> None:
    linux = write_unit("linux.i", POINT)
    report = tmp_path / "reports" / "layout.json"
    args = make_args(input=[f"linux/x86_64={linux}"], library="my_c_library", report=report)

    config = cabigen.validate_config(args)

    assert config.library == "my_c_library"
    assert config.module_name == cabigen.DEFAULT_MODULE_NAME
    assert config.report_path == report


def test_validate_config_returns_frozen_dataclass(
    make_args: Callable[..., object],
    write_unit: Callable[..., Path],
) -> None:
    linux = write_unit("linux.i", POINT)
    config = cabigen.validate_config(make_args(input=[f"linux/x86_64={linux}"]))

    with pytest.raises(FrozenInstanceError):
        config.target = "csharp"


def test_error_taxonomy_is_bounded_and_machine_readable(
    make_args: Callable[..., object],
    write_unit: Callable[..., Path],
    tmp_path: Path,
) -> None:
    expected_codes = {
        "MISSING_INPUT",
        "INVALID_INPUT_SPEC",
        "DUPLICATE_PLATFORM",
        "PATH_NOT_FOUND",
        "UNKNOWN_TARGET",
        "INVALID_DECORATION",
        "INVALID_JOBS",
        "INVALID_MODULE_NAME",
        "INVALID_IGNORE",
    }

    assert cabigen.VALID_ERROR_CODES == expected_codes

    unit = write_unit("linux.i", POINT)
    valid = [f"linux/x86_64={unit}"]
    scenarios = [
        ("missing-input", make_args(), "MISSING_INPUT"),
        ("invalid-input", make_args(input=["linux/x86_64"]), "INVALID_INPUT_SPEC"),
        (
            "duplicate-platform",
            make_args(input=[f"linux/x86_64={unit}", f"linux/amd64={unit}"]),
            "DUPLICATE_PLATFORM",
        ),
        (
            "path-not-found",
            make_args(input=[f"linux/x86_64={tmp_path / 'nope.i'}"]),
            "PATH_NOT_FOUND",
        ),
        ("unknown-target", make_args(input=valid, target="rust"), "UNKNOWN_TARGET"),
        (
            "invalid-module-name",
            make_args(input=valid, module_name="my-lib"),
            "INVALID_MODULE_NAME",
        ),
        ("invalid-jobs", make_args(input=valid, jobs=0), "INVALID_JOBS"),
        (
            "invalid-decoration",
            make_args(input=valid, decoration=["API=visible"]),
            "INVALID_DECORATION",
        ),
        ("invalid-ignore", make_args(input=valid, ignore=["not a name"]), "INVALID_IGNORE"),
    ]

    for _name, args, expected_code in scenarios:
        with pytest.raises(cabigen.ConfigError) as exc_info:
            cabigen.validate_config(args)
        _assert_config_code(exc_info, expected_code)


def test_config_error_rejects_unknown_code() -> None:
    with pytest.raises(ValueError):
        cabigen.ConfigError("NOT_A_CODE", "message")


def test_build_config_composes_parse_and_validate(write_unit: Callable[..., Path]) -> None:
    linux = write_unit("linux.i", POINT)

    config = cabigen.build_config(
        ["--input", f"linux/x86_64={linux}", "--target", "csharp", "--check"]
    )

    assert config.target == "csharp"
    assert config.check is True


# ===--- main ---=== #


def test_main_config_error_prints_code_and_exits_1(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as exc_info:
        cabigen.main([])

    out = capsys.readouterr().out
    assert exc_info.value.code == 1
    assert "Config error [MISSING_INPUT]" in out
    assert "Hint:" in out


def test_main_unsupported_platform_prints_error(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    with pytest.raises(SystemExit) as exc_info:
        cabigen.main(["--input", f"plan9/x86_64={tmp_path / 'lib.i'}"])

    out = capsys.readouterr().out
    assert exc_info.value.code == 1
    assert "Error [UNSUPPORTED_PLATFORM] (plan9/x86_64)" in out


def test_main_success_writes_bindings(
    write_unit: Callable[..., Path],
    tmp_path: Path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    linux = write_unit("linux.i", POINT)
    output_dir = tmp_path / "bindings"

    assert cabigen.main(
        ["--input", f"linux/x86_64={linux}", "--output-dir", str(output_dir)]
    ) is None

    out = capsys.readouterr().out
    assert "Mojo bindings generated:" in out
    assert (output_dir / "bindings.mojo").is_file()
    assert (output_dir / cabigen.REPORT_FILENAME).is_file()


def test_main_fatal_error_exits_1(
    write_unit: Callable[..., Path],
    tmp_path: Path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    linux = write_unit("linux.i", "int undecorated(void);")

    with pytest.raises(SystemExit) as exc_info:
        cabigen.main(["--input", f"linux/x86_64={linux}", "--output-dir", str(tmp_path / "out")])

    out = capsys.readouterr().out
    assert exc_info.value.code == 1
    assert "Error [UNKNOWN_VISIBILITY_DECORATION] (undecorated @ linux/x86_64)" in out
    assert not (tmp_path / "out").exists()


def test_main_unmappable_declaration_exits_1(
    write_unit: Callable[..., Path],
    tmp_path: Path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    linux = write_unit("linux.i", "extern int log_message(const char* fmt, ...);")

    with pytest.raises(SystemExit) as exc_info:
        cabigen.main(["--input", f"linux/x86_64={linux}", "--output-dir", str(tmp_path / "out")])

    out = capsys.readouterr().out
    assert exc_info.value.code == 1
    assert "Mojo bindings not generated:" in out
    assert (tmp_path / "out" / cabigen.REPORT_FILENAME).is_file()
