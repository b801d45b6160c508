import argparse
import sys
from collections.abc import Callable
from pathlib import Path

import pytest

import cabigen

PACKAGE_DIR = Path(__file__).resolve().parent.parent
if str(PACKAGE_DIR) not in sys.path:
    sys.path.insert(0, str(PACKAGE_DIR))

STDINT_PRELUDE = """\
# 1 "/usr/include/stdint.h" 1 3 4
typedef signed char int8_t;
typedef short int16_t;
typedef int int32_t;
typedef long long int64_t;
typedef unsigned char uint8_t;
typedef unsigned short uint16_t;
typedef unsigned int uint32_t;
typedef unsigned long long uint64_t;
typedef unsigned long size_t;
# 1 "lib.h" 2
"""


def with_prelude(source: str) -> str:
    return STDINT_PRELUDE + source


@pytest.fixture
def make_unit() -> Callable[..., cabigen.TranslationUnit]:
    def _make_unit(
        source: str,
        platform: str = "linux/x86_64",
        *,
        decorations: tuple[tuple[str, str], ...] = (),
        default_visibility: str | None = None,
    ) -> cabigen.TranslationUnit:
        options = cabigen.ExtractOptions(
            decorations=decorations, default_visibility=default_visibility
        )
        return cabigen.extract_declarations(
            with_prelude(source), cabigen.resolve_platform(platform), options, "lib.h"
        )

    return _make_unit


@pytest.fixture
def make_layouts(make_unit) -> Callable[..., dict[str, cabigen.LayoutInfo]]:
    def _make_layouts(source: str, platform: str = "linux/x86_64") -> dict[str, cabigen.LayoutInfo]:
        unit = make_unit(source, platform)
        return cabigen.compute_layouts(unit)

    return _make_layouts


@pytest.fixture
def make_result() -> Callable[..., cabigen.TripleResult]:
    def _make_result(
        source: str,
        platform: str = "linux/x86_64",
        target: str = "mojo",
    ) -> cabigen.TripleResult:
        return cabigen.analyze_translation_unit(
            with_prelude(source), cabigen.resolve_platform(platform), target, None, "lib.h"
        )

    return _make_result


@pytest.fixture
def write_unit(tmp_path: Path) -> Callable[[str, str], Path]:
    def _write_unit(name: str, source: str) -> Path:
        path = tmp_path / "units" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(with_prelude(source), encoding="utf-8")
        return path

    return _write_unit


@pytest.fixture
def make_args(tmp_path: Path) -> Callable[..., argparse.Namespace]:
    def _make_args(**overrides: object) -> argparse.Namespace:
        base_args: dict[str, object] = {
            "input": None,
            "target": cabigen.DEFAULT_TARGET,
            "library": None,
            "module_name": cabigen.DEFAULT_MODULE_NAME,
            "output_dir": tmp_path / "out",
            "report": None,
            "decoration": None,
            "default_visibility": None,
            "ignore": None,
            "jobs": 1,
            "check": False,
        }
        base_args.update(overrides)
        return argparse.Namespace(**base_args)

    return _make_args
