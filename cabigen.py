"""C ABI bindings generator.

Reads one preprocessed C translation unit per platform triple, computes the
ABI layout of every aggregate under that triple's rules, maps each C type to
a binary-compatible Mojo or C# type, and writes binding modules plus a JSON
layout report.

Usage:
    cabigen --input linux/x86_64=build/my_c_library.linux.i \\
        --input windows/x86_64=build/my_c_library.windows.i \\
        --library my_c_library --output-dir bindings
"""

import argparse
import bisect
import difflib
import json
import re
from collections import defaultdict
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field, replace
from pathlib import Path

from pycparser import c_ast, c_parser

DEFAULT_OUTPUT_DIR = Path("bindings")
DEFAULT_MODULE_NAME = "bindings"
DEFAULT_TARGET = "mojo"
REPORT_FILENAME = "layout_report.json"
REPORT_FORMAT_VERSION = 1


# ===--- CLI config contracts ---=== #


@dataclass(frozen=True)
class InputSpec:
    triple: "PlatformTriple"
    path: Path


@dataclass(frozen=True)
class ExtractOptions:
    """Caller-supplied extraction and emission knobs.

    Attributes:
        decorations: (macro name, "export" | "internal") pairs for decoration
            macros left unexpanded in the translation unit.
        default_visibility: Visibility for functions carrying no decoration at
            all. None means such functions are rejected.
        ignore: Declaration names never emitted on their own. A struct or
            union still needed by value elsewhere is kept in full.
    """

    decorations: tuple[tuple[str, str], ...] = ()
    default_visibility: str | None = None
    ignore: tuple[str, ...] = ()


@dataclass(frozen=True)
class GenerateConfig:
    inputs: tuple[InputSpec, ...]
    target: str
    library: str
    module_name: str
    output_dir: Path
    report_path: Path
    options: ExtractOptions
    jobs: int
    check: bool


VALID_ERROR_CODES = {
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
VALID_TARGETS = ("mojo", "csharp")
VALID_VISIBILITIES = ("export", "internal")
_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class ConfigError(Exception):
    def __init__(self, code: str, message: str, suggestion: str | None = None):
        if code not in VALID_ERROR_CODES:
            raise ValueError(f"Unknown config error code: {code}")
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion


def validate_path_exists(path: Path, flag: str) -> Path:
    if path.exists():
        return path
    raise ConfigError(
        "PATH_NOT_FOUND",
        f"Path for {flag} does not exist: {path}",
        "Provide an existing preprocessed translation unit (for example the output of cc -E).",
    )


def parse_input_spec(raw: str) -> InputSpec:
    platform_text, sep, path_text = raw.partition("=")
    if not sep or not platform_text.strip() or not path_text.strip():
        raise ConfigError(
            "INVALID_INPUT_SPEC",
            f"Invalid --input value: {raw!r}",
            "Use --input os/arch[/abi]=path/to/unit.i, e.g. --input linux/x86_64=lib.i",
        )
    triple = resolve_platform(platform_text)
    path = validate_path_exists(Path(path_text.strip()), "--input")
    return InputSpec(triple=triple, path=path)


def parse_decoration(raw: str) -> tuple[str, str]:
    name, sep, visibility = raw.partition("=")
    name = name.strip()
    visibility = visibility.strip().lower()
    if not sep or not _IDENTIFIER_RE.match(name) or visibility not in VALID_VISIBILITIES:
        raise ConfigError(
            "INVALID_DECORATION",
            f"Invalid --decoration value: {raw!r}",
            "Use --decoration NAME=export or --decoration NAME=internal.",
        )
    return name, visibility


def parse_ignore(raw: str) -> str:
    name = raw.strip()
    if not _IDENTIFIER_RE.match(name):
        raise ConfigError(
            "INVALID_IGNORE",
            f"Invalid --ignore value: {raw!r}",
            "Name one C declaration per --ignore, e.g. --ignore legacy_init.",
        )
    return name


def build_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Generate ABI-exact bindings from preprocessed C headers"
    )

    parser.add_argument("--input", action="append", default=None, metavar="TRIPLE=PATH")
    parser.add_argument("--target", type=str, default=DEFAULT_TARGET)
    parser.add_argument("--library", type=str, default=None)
    parser.add_argument("--module-name", type=str, default=DEFAULT_MODULE_NAME)
    parser.add_argument("--output-dir", type=Path, default=DEFAULT_OUTPUT_DIR)
    parser.add_argument("--report", type=Path, default=None)
    parser.add_argument("--decoration", action="append", default=None, metavar="NAME=VIS")
    parser.add_argument(
        "--default-visibility", choices=VALID_VISIBILITIES, default=None
    )
    parser.add_argument("--ignore", action="append", default=None, metavar="NAME")
    parser.add_argument("--jobs", type=int, default=1)
    parser.add_argument("--check", action="store_true", default=False)

    return parser


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = build_argument_parser()
    return parser.parse_args(argv)


def validate_config(args: argparse.Namespace) -> GenerateConfig:
    raw_inputs = args.input or []
    if not raw_inputs:
        raise ConfigError(
            "MISSING_INPUT",
            "At least one --input is required.",
            "Pass one preprocessed unit per platform: --input linux/x86_64=lib.i",
        )

    inputs: dict[str, InputSpec] = {}
    for raw in raw_inputs:
        spec = parse_input_spec(raw)
        if spec.triple.label in inputs:
            raise ConfigError(
                "DUPLICATE_PLATFORM",
                f"Platform {spec.triple.label} was given more than once.",
                "Pass exactly one --input per platform triple.",
            )
        inputs[spec.triple.label] = spec

    if args.target not in VALID_TARGETS:
        raise ConfigError(
            "UNKNOWN_TARGET",
            f"Unknown target language: {args.target}",
            f"Use one of: {', '.join(VALID_TARGETS)}.",
        )

    if not _IDENTIFIER_RE.match(args.module_name or ""):
        raise ConfigError(
            "INVALID_MODULE_NAME",
            f"Invalid --module-name: {args.module_name!r}",
            "Module names must be identifiers, e.g. my_c_library.",
        )

    if args.jobs < 1:
        raise ConfigError(
            "INVALID_JOBS",
            f"--jobs must be at least 1, got {args.jobs}",
            "Use --jobs 1 for sequential processing.",
        )

    decorations = tuple(parse_decoration(raw) for raw in args.decoration or [])
    ignore = tuple(dict.fromkeys(parse_ignore(raw) for raw in args.ignore or []))
    output_dir = Path(args.output_dir)
    report_path = Path(args.report) if args.report else output_dir / REPORT_FILENAME

    return GenerateConfig(
        inputs=tuple(inputs[label] for label in sorted(inputs)),
        target=args.target,
        library=args.library or args.module_name,
        module_name=args.module_name,
        output_dir=output_dir,
        report_path=report_path,
        options=ExtractOptions(
            decorations=decorations,
            default_visibility=args.default_visibility,
            ignore=ignore,
        ),
        jobs=args.jobs,
        check=args.check,
    )


def build_config(argv: list[str] | None = None) -> GenerateConfig:
    return validate_config(parse_args(argv))


# ===--- Error taxonomy ---=== #


VALID_BINDGEN_ERROR_CODES = {
    "UNSUPPORTED_PLATFORM",
    "UNKNOWN_VISIBILITY_DECORATION",
    "CYCLIC_LAYOUT_DEPENDENCY",
    "BITFIELD_WIDTH_EXCEEDS_STORAGE",
    "UNMAPPABLE_TYPE",
    "PARSE_ERROR",
    "DUPLICATE_DECLARATION",
    "INCOMPLETE_TYPE",
    "UNSUPPORTED_ATTRIBUTE",
    "INVALID_CONSTANT",
}


class BindgenError(Exception):
    """Base for every failure raised by the generation pipeline.

    Carries the declaration and platform triple that triggered it so the
    caller never has to guess where a failure came from. ``triple`` is a
    label such as "linux/x86_64" and is filled in by the per-triple runner
    when the raising stage did not know it.
    """

    def __init__(
        self,
        code: str,
        message: str,
        *,
        declaration: str | None = None,
        triple: str | None = None,
        suggestion: str | None = None,
    ):
        if code not in VALID_BINDGEN_ERROR_CODES:
            raise ValueError(f"Unknown bindgen error code: {code}")
        super().__init__(message)
        self.code = code
        self.message = message
        self.declaration = declaration
        self.triple = triple
        self.suggestion = suggestion


class _FixedCodeError(BindgenError):
    CODE = ""

    def __init__(self, message: str, **context):
        super().__init__(self.CODE, message, **context)


class UnsupportedPlatform(_FixedCodeError):
    CODE = "UNSUPPORTED_PLATFORM"


class UnknownVisibilityDecoration(_FixedCodeError):
    CODE = "UNKNOWN_VISIBILITY_DECORATION"


class CyclicLayoutDependency(_FixedCodeError):
    CODE = "CYCLIC_LAYOUT_DEPENDENCY"


class BitfieldWidthExceedsStorage(_FixedCodeError):
    CODE = "BITFIELD_WIDTH_EXCEEDS_STORAGE"


class UnmappableType(_FixedCodeError):
    CODE = "UNMAPPABLE_TYPE"


class ExtractionError(BindgenError):
    CODES = {
        "PARSE_ERROR",
        "DUPLICATE_DECLARATION",
        "INCOMPLETE_TYPE",
        "UNSUPPORTED_ATTRIBUTE",
        "INVALID_CONSTANT",
    }

    def __init__(self, code: str, message: str, **context):
        if code not in self.CODES:
            raise ValueError(f"Not an extraction error code: {code}")
        super().__init__(code, message, **context)


def format_bindgen_error(err: BindgenError) -> str:
    location = " @ ".join(part for part in (err.declaration, err.triple) if part)
    if location:
        return f"Error [{err.code}] ({location}): {err.message}"
    return f"Error [{err.code}]: {err.message}"


# ===--- Platform triples ---=== #

BITFIELD_MSVC = "msvc"
BITFIELD_ITANIUM = "itanium"


@dataclass(frozen=True)
class AbiRules:
    """Data-model facts for one platform triple.

    Sizes and alignments are in bytes. ``int64_align`` and ``double_align``
    differ from the natural size only on 32-bit System V targets.
    """

    target_name: str
    pointer_size: int
    long_size: int
    long_double_size: int
    long_double_align: int
    int64_align: int
    double_align: int
    char_signed: bool
    bitfield_policy: str


ABI_RULES: dict[tuple[str, str, str], AbiRules] = {
    ("windows", "x86_64", "msvc"): AbiRules(
        target_name="x86_64-pc-windows-msvc",
        pointer_size=8, long_size=4, long_double_size=8, long_double_align=8,
        int64_align=8, double_align=8, char_signed=True,
        bitfield_policy=BITFIELD_MSVC,
    ),
    ("windows", "x86", "msvc"): AbiRules(
        target_name="i686-pc-windows-msvc",
        pointer_size=4, long_size=4, long_double_size=8, long_double_align=8,
        int64_align=8, double_align=8, char_signed=True,
        bitfield_policy=BITFIELD_MSVC,
    ),
    ("windows", "aarch64", "msvc"): AbiRules(
        target_name="aarch64-pc-windows-msvc",
        pointer_size=8, long_size=4, long_double_size=8, long_double_align=8,
        int64_align=8, double_align=8, char_signed=True,
        bitfield_policy=BITFIELD_MSVC,
    ),
    ("windows", "x86_64", "gnu"): AbiRules(
        target_name="x86_64-pc-windows-gnu",
        pointer_size=8, long_size=4, long_double_size=16, long_double_align=16,
        int64_align=8, double_align=8, char_signed=True,
        bitfield_policy=BITFIELD_MSVC,
    ),
    ("windows", "x86", "gnu"): AbiRules(
        target_name="i686-pc-windows-gnu",
        pointer_size=4, long_size=4, long_double_size=12, long_double_align=4,
        int64_align=8, double_align=8, char_signed=True,
        bitfield_policy=BITFIELD_MSVC,
    ),
    ("linux", "x86_64", "gnu"): AbiRules(
        target_name="x86_64-unknown-linux-gnu",
        pointer_size=8, long_size=8, long_double_size=16, long_double_align=16,
        int64_align=8, double_align=8, char_signed=True,
        bitfield_policy=BITFIELD_ITANIUM,
    ),
    ("linux", "x86", "gnu"): AbiRules(
        target_name="i686-unknown-linux-gnu",
        pointer_size=4, long_size=4, long_double_size=12, long_double_align=4,
        int64_align=4, double_align=4, char_signed=True,
        bitfield_policy=BITFIELD_ITANIUM,
    ),
    ("linux", "aarch64", "gnu"): AbiRules(
        target_name="aarch64-unknown-linux-gnu",
        pointer_size=8, long_size=8, long_double_size=16, long_double_align=16,
        int64_align=8, double_align=8, char_signed=False,
        bitfield_policy=BITFIELD_ITANIUM,
    ),
    ("macos", "x86_64", "darwin"): AbiRules(
        target_name="x86_64-apple-darwin",
        pointer_size=8, long_size=8, long_double_size=16, long_double_align=16,
        int64_align=8, double_align=8, char_signed=True,
        bitfield_policy=BITFIELD_ITANIUM,
    ),
    ("macos", "aarch64", "darwin"): AbiRules(
        target_name="aarch64-apple-darwin",
        pointer_size=8, long_size=8, long_double_size=8, long_double_align=8,
        int64_align=8, double_align=8, char_signed=True,
        bitfield_policy=BITFIELD_ITANIUM,
    ),
    ("ios", "aarch64", "darwin"): AbiRules(
        target_name="aarch64-apple-ios",
        pointer_size=8, long_size=8, long_double_size=8, long_double_align=8,
        int64_align=8, double_align=8, char_signed=True,
        bitfield_policy=BITFIELD_ITANIUM,
    ),
    ("ios", "x86_64", "darwin"): AbiRules(
        target_name="x86_64-apple-ios",
        pointer_size=8, long_size=8, long_double_size=16, long_double_align=16,
        int64_align=8, double_align=8, char_signed=True,
        bitfield_policy=BITFIELD_ITANIUM,
    ),
}

DEFAULT_ABI: dict[tuple[str, str], str] = {
    ("windows", "x86_64"): "msvc",
    ("windows", "x86"): "msvc",
    ("windows", "aarch64"): "msvc",
    ("linux", "x86_64"): "gnu",
    ("linux", "x86"): "gnu",
    ("linux", "aarch64"): "gnu",
    ("macos", "x86_64"): "darwin",
    ("macos", "aarch64"): "darwin",
    ("ios", "aarch64"): "darwin",
    ("ios", "x86_64"): "darwin",
}

_OS_ALIASES = {
    "windows": "windows",
    "win": "windows",
    "win32": "windows",
    "linux": "linux",
    "macos": "macos",
    "osx": "macos",
    "darwin": "macos",
    "ios": "ios",
}
_ARCH_ALIASES = {
    "x86_64": "x86_64",
    "amd64": "x86_64",
    "x64": "x86_64",
    "aarch64": "aarch64",
    "arm64": "aarch64",
    "x86": "x86",
    "i386": "x86",
    "i686": "x86",
}
_ABI_ALIASES = {"mingw": "gnu", "mingw32": "gnu", "mingw64": "gnu"}


@dataclass(frozen=True, order=True)
class PlatformTriple:
    os: str
    arch: str
    abi: str

    @property
    def rules(self) -> AbiRules:
        return ABI_RULES[(self.os, self.arch, self.abi)]

    @property
    def label(self) -> str:
        if DEFAULT_ABI.get((self.os, self.arch)) == self.abi:
            return f"{self.os}/{self.arch}"
        return f"{self.os}/{self.arch}/{self.abi}"

    @property
    def slug(self) -> str:
        return self.label.replace("/", "_")

    def __str__(self) -> str:
        return self.label


def supported_platform_labels() -> list[str]:
    return sorted(PlatformTriple(*key).label for key in ABI_RULES)


def resolve_platform(spec: str) -> PlatformTriple:
    """Resolve an "os/arch[/abi]" request into a PlatformTriple.

    Unknown combinations are a hard failure: layout depends on the rules,
    so a guess would silently produce wrong bindings.
    """
    parts = [part.strip().lower() for part in spec.strip().split("/")]
    hint = f"Supported platforms: {', '.join(supported_platform_labels())}"
    if len(parts) not in (2, 3) or not all(parts):
        raise UnsupportedPlatform(
            f"Malformed platform identifier: {spec!r}",
            triple=spec,
            suggestion="Use os/arch or os/arch/abi, e.g. linux/x86_64.",
        )

    os_name = _OS_ALIASES.get(parts[0])
    arch = _ARCH_ALIASES.get(parts[1])
    if os_name is None or arch is None or (os_name, arch) not in DEFAULT_ABI:
        raise UnsupportedPlatform(
            f"No ABI rules for platform {spec!r}", triple=spec, suggestion=hint
        )

    if len(parts) == 2:
        abi = DEFAULT_ABI[(os_name, arch)]
    else:
        abi = _ABI_ALIASES.get(parts[2], parts[2])
    if (os_name, arch, abi) not in ABI_RULES:
        raise UnsupportedPlatform(
            f"No ABI rules for platform {spec!r}", triple=spec, suggestion=hint
        )
    return PlatformTriple(os_name, arch, abi)


# ===--- Data model ---=== #


@dataclass(frozen=True)
class Primitive:
    """Scalar C type. ``kind`` is void, bool, char, int or float; width in bits."""

    kind: str
    width: int
    signed: bool = True


@dataclass(frozen=True)
class Pointer:
    """Pointer to ``pointee``. ``const`` describes the pointee only."""

    pointee: "TypeRef"
    const: bool = False


@dataclass(frozen=True)
class Array:
    element: "TypeRef"
    length: int | None


@dataclass(frozen=True)
class Named:
    """Reference to a struct, union, enum or opaque declaration by canonical name."""

    name: str


@dataclass(frozen=True)
class FunctionPointer:
    return_type: "TypeRef"
    params: tuple["TypeRef", ...]
    variadic: bool = False


TypeRef = Primitive | Pointer | Array | Named | FunctionPointer

VOID = Primitive("void", 0, False)


@dataclass(frozen=True)
class Param:
    name: str | None
    type: TypeRef


@dataclass(frozen=True)
class Field:
    """One member of an aggregate. ``name`` is None for flattened anonymous members
    and unnamed bitfields."""

    name: str | None
    type: TypeRef
    bit_width: int | None = None


@dataclass(frozen=True)
class EnumValue:
    name: str
    value: int


@dataclass(frozen=True)
class Function:
    name: str
    return_type: TypeRef
    params: tuple[Param, ...]
    variadic: bool
    exported: bool
    system: bool = False
    source_file: str = ""
    line: int = 0

    kind = "function"

    @property
    def signature(self) -> FunctionPointer:
        return FunctionPointer(
            self.return_type, tuple(p.type for p in self.params), self.variadic
        )


@dataclass(frozen=True)
class Aggregate:
    name: str
    kind: str
    fields: tuple[Field, ...]
    pack: int | None = None
    anonymous: bool = False
    exported: bool = True
    system: bool = False
    source_file: str = ""
    line: int = 0


@dataclass(frozen=True)
class Enum:
    name: str
    values: tuple[EnumValue, ...]
    underlying: Primitive
    sentinels: tuple[str, ...] = ()
    exported: bool = True
    system: bool = False
    source_file: str = ""
    line: int = 0

    kind = "enum"


@dataclass(frozen=True)
class Typedef:
    name: str
    type: TypeRef
    exported: bool = True
    system: bool = False
    source_file: str = ""
    line: int = 0

    kind = "typedef"


@dataclass(frozen=True)
class FunctionPointerType:
    name: str
    signature: FunctionPointer
    exported: bool = True
    system: bool = False
    source_file: str = ""
    line: int = 0

    kind = "function_pointer"


@dataclass(frozen=True)
class Opaque:
    name: str
    tag_kind: str
    exported: bool = True
    system: bool = False
    source_file: str = ""
    line: int = 0

    kind = "opaque"


@dataclass(frozen=True)
class Variable:
    """Global object exported by the library; bound as a symbol address."""

    name: str
    type: TypeRef
    const: bool = False
    exported: bool = True
    system: bool = False
    source_file: str = ""
    line: int = 0

    kind = "variable"


Declaration = Function | Aggregate | Enum | Typedef | FunctionPointerType | Opaque | Variable


def source_location(decl: Declaration) -> str:
    """``file:line`` of the declaration, or "" when it was synthesized."""
    if not decl.source_file:
        return ""
    if not decl.line:
        return decl.source_file
    return f"{decl.source_file}:{decl.line}"


@dataclass(frozen=True)
class TranslationUnit:
    """All declarations extracted for one platform triple, in source order."""

    triple: PlatformTriple
    declarations: dict[str, Declaration]

    def get(self, name: str) -> Declaration | None:
        return self.declarations.get(name)

    def of_kind(self, *kinds: str) -> list[Declaration]:
        """Declarations whose ``kind`` is one of ``kinds``, in source order."""
        return [d for d in self.declarations.values() if d.kind in kinds]


def describe_type(ref: TypeRef) -> str:
    """Render a TypeRef in C-like notation for messages and reports."""
    if isinstance(ref, Primitive):
        if ref.kind == "void":
            return "void"
        if ref.kind == "int":
            return f"{'' if ref.signed else 'u'}int{ref.width}"
        return f"{ref.kind}{ref.width}"
    if isinstance(ref, Pointer):
        return f"{'const ' if ref.const else ''}{describe_type(ref.pointee)}*"
    if isinstance(ref, Array):
        length = "" if ref.length is None else str(ref.length)
        return f"{describe_type(ref.element)}[{length}]"
    if isinstance(ref, Named):
        return ref.name
    params = ", ".join(describe_type(p) for p in ref.params)
    if ref.variadic:
        params = f"{params}, ..." if params else "..."
    return f"{describe_type(ref.return_type)} (*)({params})"


# ===--- Source preparation ---=== #

_LINEMARKER_RE = re.compile(r'^\s*#\s*(?:line\s+)?(\d+)\s+"((?:[^"\\]|\\.)*)"(.*)$')
_PRAGMA_LINE_RE = re.compile(r"^\s*#\s*pragma\b")
_ASM_RE = re.compile(r"\b__asm(?:__)?\b\s*(?:(?:volatile|__volatile__|goto)\b\s*)*\(")
_DECORATION_RE = re.compile(r"\b(__declspec|__attribute__|__attribute)\s*\(")

_KEYWORD_REWRITES: tuple[tuple[re.Pattern, str], ...] = (
    (re.compile(r"\b__extension__\b"), ""),
    (re.compile(r"\b(?:__inline__|__inline|__forceinline)\b"), "inline"),
    (re.compile(r"\b(?:__restrict__|__restrict)\b"), "restrict"),
    (re.compile(r"\b(?:__const__|__const)\b"), "const"),
    (re.compile(r"\b(?:__signed__|__signed)\b"), "signed"),
    (re.compile(r"\b(?:__volatile__|__volatile)\b"), "volatile"),
    (re.compile(r"\b(?:__cdecl|_cdecl|__stdcall|__fastcall|__vectorcall|__ptr32|__ptr64)\b"), ""),
    (re.compile(r"\b__int64\b"), "long long"),
    (re.compile(r"\b__int32\b"), "int"),
    (re.compile(r"\b__int16\b"), "short"),
    (re.compile(r"\b__int8\b"), "char"),
    (re.compile(r"\b__builtin_va_list\b"), "void*"),
    (re.compile(r"\b_Noreturn\b"), ""),
)

EXPORT_ATTRIBUTES = {"dllexport", "dllimport"}
LAYOUT_ATTRIBUTES = {
    "packed",
    "aligned",
    "align",
    "ms_struct",
    "gcc_struct",
    "mode",
    "vector_size",
    "transparent_union",
    "designated_init",
    "scalar_storage_order",
}
NEUTRAL_ATTRIBUTES = {
    "access",
    "alloc_align",
    "alloc_size",
    "always_inline",
    "artificial",
    "cold",
    "const",
    "deprecated",
    "format",
    "format_arg",
    "gnu_inline",
    "hot",
    "leaf",
    "malloc",
    "may_alias",
    "noinline",
    "nonnull",
    "noreturn",
    "nothrow",
    "novtable",
    "pure",
    "restrict",
    "returns_nonnull",
    "returns_twice",
    "sentinel",
    "unavailable",
    "unused",
    "used",
    "warn_unused_result",
    "weak",
    "availability",
    "cdecl",
    "stdcall",
    "selectany",
    "thread",
    "noalias",
    "nodiscard",
    "fallthrough",
}


@dataclass(frozen=True)
class Decoration:
    """One recognised decoration item found in the source text.

    ``verdict`` is "export", "internal", "layout" or "unknown".
    """

    offset: int
    spelling: str
    verdict: str


@dataclass(frozen=True)
class SourceLocation:
    file: str
    line: int
    system: bool
    statement: int
    decorations: tuple[Decoration, ...]


@dataclass(frozen=True)
class PreparedSource:
    """Parser-ready text plus the bookkeeping needed to attribute nodes.

    The text keeps the physical line structure of the input, so pycparser
    coordinates map straight back to ``line_files``/``line_system``, and
    ``line_numbers`` gives the line within that file the linemarkers named.
    """

    text: str
    filename: str
    line_files: tuple[str, ...]
    line_numbers: tuple[int, ...]
    line_system: tuple[bool, ...]
    line_starts: tuple[int, ...]
    statement_ends: tuple[int, ...]
    decorations: dict[int, tuple[Decoration, ...]]

    def offset_of(self, line: int, column: int | None) -> int:
        index = min(max(line, 1), len(self.line_starts)) - 1
        return self.line_starts[index] + max((column or 1) - 1, 0)

    def statement_at(self, offset: int) -> int:
        return bisect.bisect_left(self.statement_ends, offset)

    def locate(self, coord) -> SourceLocation:
        if coord is None or not coord.line:
            return SourceLocation(self.filename, 0, False, -1, ())
        line = coord.line
        index = min(line, len(self.line_files)) - 1
        statement = self.statement_at(self.offset_of(line, coord.column))
        return SourceLocation(
            file=self.line_files[index],
            line=self.line_numbers[index],
            system=self.line_system[index],
            statement=statement,
            decorations=self.decorations.get(statement, ()),
        )


def _skip_literal(text: str, index: int) -> int:
    quote = text[index]
    index += 1
    while index < len(text):
        ch = text[index]
        if ch == "\\":
            index += 2
            continue
        if ch == quote or ch == "\n":
            return index + 1
        index += 1
    return index


def _matching_paren(text: str, open_index: int) -> int:
    depth = 0
    index = open_index
    while index < len(text):
        ch = text[index]
        if ch in "\"'":
            index = _skip_literal(text, index)
            continue
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth == 0:
                return index
        index += 1
    raise ExtractionError("PARSE_ERROR", "Unbalanced parentheses in decoration")


def _blank(text: str, start: int, end: int) -> str:
    """Replace text[start:end] with spaces, keeping newlines and offsets."""
    segment = "".join("\n" if ch == "\n" else " " for ch in text[start:end])
    return text[:start] + segment + text[end:]


def _split_top_level(text: str) -> list[str]:
    items: list[str] = []
    depth = 0
    current: list[str] = []
    for ch in text:
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        if ch == "," and depth == 0:
            items.append("".join(current))
            current = []
            continue
        current.append(ch)
    items.append("".join(current))
    return [item.strip() for item in items if item.strip()]


def classify_decoration_item(item: str) -> str | None:
    """Return the verdict for one attribute/declspec item, or None to ignore it."""
    match = re.match(r"^(\w+)\s*(?:\((.*)\))?$", item.strip(), re.S)
    if match is None:
        return "unknown"
    name = match.group(1).strip("_")
    argument = (match.group(2) or "").strip().strip('"')
    if name in EXPORT_ATTRIBUTES:
        return "export"
    if name == "visibility":
        if argument in ("default", "protected"):
            return "export"
        if argument in ("hidden", "internal"):
            return "internal"
        return "unknown"
    if name in LAYOUT_ATTRIBUTES:
        return "layout"
    if name in NEUTRAL_ATTRIBUTES:
        return None
    return "unknown"


def _scan_decorations(
    text: str, options: ExtractOptions
) -> tuple[str, list[Decoration]]:
    found: list[Decoration] = []
    position = 0
    while True:
        match = _DECORATION_RE.search(text, position)
        if match is None:
            break
        open_index = match.end() - 1
        close_index = _matching_paren(text, open_index)
        inner = text[open_index + 1 : close_index].strip()
        if match.group(1) != "__declspec":
            while inner.startswith("(") and inner.endswith(")"):
                inner = inner[1:-1].strip()
        for item in _split_top_level(inner):
            verdict = classify_decoration_item(item)
            if verdict is not None:
                found.append(Decoration(match.start(), item, verdict))
        text = _blank(text, match.start(), close_index + 1)
        position = close_index + 1

    for name, visibility in options.decorations:
        for match in re.finditer(rf"\b{re.escape(name)}\b", text):
            found.append(Decoration(match.start(), name, visibility))
        text = re.sub(rf"\b{re.escape(name)}\b", lambda m: " " * len(m.group(0)), text)

    return text, found


def _statement_ends(text: str) -> list[int]:
    """Offsets of the character closing each top-level statement.

    A statement ends at a depth-0 ``;`` or at the ``}`` closing a function
    body, recognised by a ``)`` right before its opening brace.
    """
    ends: list[int] = []
    depth = 0
    last_significant = ""
    function_body = False
    offset = 0
    for line in text.splitlines(keepends=True):
        if line.lstrip().startswith("#"):
            offset += len(line)
            continue
        index = 0
        while index < len(line):
            ch = line[index]
            if ch in "\"'":
                index = _skip_literal(line, index)
                last_significant = ch
                continue
            if ch == "{":
                if depth == 0:
                    function_body = last_significant == ")"
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0 and function_body:
                    ends.append(offset + index)
                    function_body = False
            elif ch == ";" and depth == 0:
                ends.append(offset + index)
            if not ch.isspace():
                last_significant = ch
            index += 1
        offset += len(line)
    return ends


def prepare_source(
    text: str, filename: str, options: ExtractOptions | None = None
) -> PreparedSource:
    """Turn a preprocessed translation unit into text pycparser accepts.

    Linemarkers are blanked after recording which logical file (and whether
    a system header) each physical line came from. Compiler keyword spellings
    are rewritten to standard C, and decorations are blanked and recorded per
    top-level statement.
    """
    options = options or ExtractOptions()
    lines = text.splitlines()
    line_files: list[str] = []
    line_numbers: list[int] = []
    line_system: list[bool] = []
    current_file, current_system = filename, False
    next_line = 1
    for index, line in enumerate(lines):
        marker = _LINEMARKER_RE.match(line)
        line_numbers.append(next_line)
        next_line += 1
        if marker:
            current_file = marker.group(2)
            current_system = "3" in marker.group(3).split()
            next_line = int(marker.group(1))
            lines[index] = ""
        elif line.lstrip().startswith("#") and not _PRAGMA_LINE_RE.match(line):
            lines[index] = ""
        line_files.append(current_file)
        line_system.append(current_system)
    prepared = "\n".join(lines) + "\n"

    while True:
        match = _ASM_RE.search(prepared)
        if match is None:
            break
        close_index = _matching_paren(prepared, match.end() - 1)
        prepared = _blank(prepared, match.start(), close_index + 1)
    for pattern, replacement in _KEYWORD_REWRITES:
        prepared = pattern.sub(replacement, prepared)

    prepared, found = _scan_decorations(prepared, options)
    statement_ends = _statement_ends(prepared)

    by_statement: dict[int, list[Decoration]] = defaultdict(list)
    for decoration in found:
        index = bisect.bisect_left(statement_ends, decoration.offset)
        by_statement[index].append(decoration)

    line_starts: list[int] = []
    offset = 0
    for line in prepared.splitlines(keepends=True):
        line_starts.append(offset)
        offset += len(line)
    if not line_starts:
        line_starts.append(0)
    if not line_files:
        line_files.append(filename)
        line_numbers.append(1)
        line_system.append(False)

    return PreparedSource(
        text=prepared,
        filename=filename,
        line_files=tuple(line_files),
        line_numbers=tuple(line_numbers),
        line_system=tuple(line_system),
        line_starts=tuple(line_starts),
        statement_ends=tuple(statement_ends),
        decorations={k: tuple(v) for k, v in sorted(by_statement.items())},
    )


# ===--- Declaration extraction ---=== #

FORCING_SENTINEL_VALUES = frozenset(
    {
        0x7F,
        0xFF,
        0x7FFF,
        0xFFFF,
        0x7FFFFFFF,
        0xFFFFFFFF,
        0x7FFFFFFFFFFFFFFF,
        0xFFFFFFFFFFFFFFFF,
    }
)

_FIXED_WIDTH_TYPES = {
    "int8_t": (8, True),
    "int16_t": (16, True),
    "int32_t": (32, True),
    "int64_t": (64, True),
    "uint8_t": (8, False),
    "uint16_t": (16, False),
    "uint32_t": (32, False),
    "uint64_t": (64, False),
}
_POINTER_WIDTH_TYPES = {
    "intptr_t": True,
    "uintptr_t": False,
    "size_t": False,
    "ssize_t": True,
    "ptrdiff_t": True,
}
_INT_SUFFIX_RE = re.compile(r"[uUlL]+$")
_PACK_RE = re.compile(r"^pack\s*\((.*)\)$")
_CHAR_ESCAPES = {
    "n": 10,
    "t": 9,
    "r": 13,
    "0": 0,
    "a": 7,
    "b": 8,
    "f": 12,
    "v": 11,
    "\\": 92,
    "'": 39,
    '"': 34,
    "?": 63,
}


def parse_int_literal(text: str) -> int:
    body = _INT_SUFFIX_RE.sub("", text.strip())
    lowered = body.lower()
    if lowered.startswith("0x"):
        return int(body[2:], 16)
    if lowered.startswith("0b"):
        return int(body[2:], 2)
    if len(body) > 1 and body.startswith("0"):
        return int(body[1:], 8)
    return int(body)


def parse_char_literal(text: str) -> int:
    body = text.strip()
    if body[:1] in ("L", "u", "U"):
        body = body.lstrip("LuU8")
    body = body[1:-1]
    if not body.startswith("\\"):
        return ord(body)
    escape = body[1:]
    if escape.startswith("x"):
        return int(escape[1:], 16)
    if escape.isdigit():
        return int(escape, 8)
    if escape in _CHAR_ESCAPES:
        return _CHAR_ESCAPES[escape]
    raise ValueError(f"Unknown character escape: {text}")


def _wrap_integer(value: int, width: int, signed: bool) -> int:
    value &= (1 << width) - 1
    if signed and value >= 1 << (width - 1):
        value -= 1 << width
    return value


def is_forcing_sentinel(value: EnumValue) -> bool:
    if value.value not in FORCING_SENTINEL_VALUES:
        return False
    return value.name.startswith("_") or "FORCE" in value.name.upper()


def derive_enum_representation(
    name: str, values: tuple[EnumValue, ...]
) -> tuple[Primitive, tuple[EnumValue, ...], tuple[str, ...]]:
    """Derive an enum's underlying integer and split off forcing sentinels.

    Without a sentinel the enum keeps C's ``int`` unless a value needs more.
    With one, the width is the smallest that holds every value, sentinels
    included, so ``0x7FFF`` forces int16 and ``0x7FFFFFFF`` forces int32.
    At each width signed wins; unsigned is used only when the values need it.
    """
    sentinels = tuple(v.name for v in values if is_forcing_sentinel(v))
    kept = tuple(v for v in values if not is_forcing_sentinel(v))
    numbers = [v.value for v in values] or [0]
    low, high = min(numbers), max(numbers)
    widths = (8, 16, 32, 64) if sentinels else (32, 64)

    for width in widths:
        if -(1 << (width - 1)) <= low and high < (1 << (width - 1)):
            return Primitive("int", width, True), kept, sentinels
        if low >= 0 and high < (1 << width):
            return Primitive("int", width, False), kept, sentinels
    raise ExtractionError(
        "INVALID_CONSTANT",
        f"Enumerator values of {name} do not fit in a 64-bit integer",
        declaration=name,
    )


class DeclarationExtractor:
    """Walks one pycparser AST and builds the TranslationUnit for a triple.

    One instance per translation unit; nothing is shared between triples.

    C keeps struct, union and enum tags apart from ordinary identifiers, but
    the emitted module has one namespace. ``tags`` maps each tag to its
    emitted name: the tag itself, or ``<tag>_tag`` when a typedef, function
    or variable of the unit already uses that spelling.
    """

    def __init__(self, triple: PlatformTriple, options: ExtractOptions | None = None):
        self.triple = triple
        self.rules = triple.rules
        self.options = options or ExtractOptions()
        self.declarations: dict[str, Declaration] = {}
        self.typedefs: dict[str, TypeRef] = {}
        self.const_typedefs: set[str] = set()
        self.function_typedefs: set[str] = set()
        self.enum_constants: dict[str, int] = {}
        self.tags: dict[str, str] = {}
        self._ordinary: set[str] = set()
        self._tag_names: dict[int, str] = {}
        self._pack: int | None = None
        self._pack_stack: list[int | None] = []
        self._prepared: PreparedSource | None = None
        self._location = SourceLocation("", 0, False, -1, ())

    # -- entry point --

    def extract(self, text: str, filename: str = "<input>") -> TranslationUnit:
        self._prepared = prepare_source(text, filename, self.options)
        try:
            ast = c_parser.CParser().parse(self._prepared.text, filename)
        except c_parser.ParseError as err:
            raise ExtractionError(
                "PARSE_ERROR", str(err), triple=self.triple.label
            ) from err

        self._ordinary = self._ordinary_names(ast)
        for node in ast.ext:
            if isinstance(node, c_ast.Pragma):
                self._apply_pragma(node.string or "")
                continue
            self._location = self._prepared.locate(node.coord)
            if isinstance(node, c_ast.Typedef):
                self._check_decorations(node.name)
                self._extract_typedef(node)
            elif isinstance(node, c_ast.FuncDef):
                self._extract_function(node.decl)
            elif isinstance(node, c_ast.Decl):
                if isinstance(node.type, c_ast.FuncDecl):
                    self._extract_function(node)
                else:
                    self._check_decorations(node.name or self._spec_name(node.type))
                    self._extract_object(node)

        return TranslationUnit(triple=self.triple, declarations=dict(self.declarations))

    @staticmethod
    def _ordinary_names(ast: c_ast.FileAST) -> set[str]:
        """Typedef, function and variable names declared at file scope.

        A typedef naming only its own body (``typedef struct {...} point;``
        or ``typedef struct point point;``) stands for the tag and is left out.
        """
        names = set()
        for node in ast.ext:
            if isinstance(node, c_ast.FuncDef):
                node = node.decl
            if not isinstance(node, (c_ast.Typedef, c_ast.Decl)) or node.name is None:
                continue
            if isinstance(node, c_ast.Typedef) and isinstance(node.type, c_ast.TypeDecl):
                spec = node.type.type
                if isinstance(spec, (c_ast.Struct, c_ast.Union, c_ast.Enum)):
                    if spec.name is None or spec.name == node.name:
                        continue
            names.add(node.name)
        return names

    def _tag_name(self, tag: str) -> str:
        name = self.tags.get(tag)
        if name is None:
            name = tag
            taken = set(self.tags.values())
            while name in self._ordinary or name in taken:
                name = f"{name}_tag"
            self.tags[tag] = name
        return name

    # -- context helpers --

    def _error_context(self, declaration: str | None) -> dict:
        return {"declaration": declaration, "triple": self.triple.label}

    def _where(self) -> str:
        return f"{self._location.file}:{self._location.line}"

    def _spec_name(self, node) -> str | None:
        while isinstance(node, (c_ast.TypeDecl, c_ast.PtrDecl, c_ast.ArrayDecl)):
            node = node.type
        return getattr(node, "name", None)

    def _check_decorations(self, name: str | None) -> None:
        if self._location.system:
            return
        for decoration in self._location.decorations:
            if decoration.verdict == "layout":
                raise ExtractionError(
                    "UNSUPPORTED_ATTRIBUTE",
                    f"Layout-changing attribute '{decoration.spelling}' at {self._where()}",
                    suggestion="Use #pragma pack or remove the attribute; it cannot be modelled.",
                    **self._error_context(name),
                )
            if decoration.verdict == "unknown":
                raise UnknownVisibilityDecoration(
                    f"Unrecognised decoration '{decoration.spelling}' at {self._where()}",
                    suggestion="Register the macro with --decoration NAME=export|internal.",
                    **self._error_context(name),
                )

    def _apply_pragma(self, text: str) -> None:
        match = _PACK_RE.match(text.strip())
        if match is None:
            return
        args = [arg.strip() for arg in match.group(1).split(",") if arg.strip()]
        if not args:
            self._pack = None
        elif args[0] == "push":
            self._pack_stack.append(self._pack)
            if len(args) > 1 and args[-1].isdigit():
                self._pack = int(args[-1])
        elif args[0] == "pop":
            self._pack = self._pack_stack.pop() if self._pack_stack else None
        elif args[0].isdigit():
            self._pack = int(args[0])

    # -- registration --

    def _register(self, decl: Declaration) -> None:
        existing = self.declarations.get(decl.name)
        if existing is None:
            self.declarations[decl.name] = decl
            return
        if isinstance(decl, Opaque):
            return
        if isinstance(existing, Opaque):
            self.declarations[decl.name] = decl
            return
        if isinstance(existing, Function) and isinstance(decl, Function):
            if existing.signature == decl.signature:
                return
        elif self._same_definition(existing, decl):
            return
        raise ExtractionError(
            "DUPLICATE_DECLARATION",
            f"Conflicting redefinition of {decl.name} at {self._where()}",
            **self._error_context(decl.name),
        )

    @staticmethod
    def _same_definition(existing: Declaration, decl: Declaration) -> bool:
        if type(existing) is not type(decl):
            return False
        strip = {"system": False, "source_file": "", "line": 0, "exported": True}
        return replace(existing, **strip) == replace(decl, **strip)

    def _meta(self) -> dict:
        return {
            "system": self._location.system,
            "source_file": self._location.file,
            "line": self._location.line,
            "exported": not self._location.system,
        }

    # -- top-level nodes --

    def _extract_typedef(self, node: c_ast.Typedef) -> None:
        name = node.name
        if isinstance(node.type, c_ast.FuncDecl):
            signature = self._function_signature(node.type, name)
            self.typedefs[name] = signature
            self.function_typedefs.add(name)
            self._register(FunctionPointerType(name, signature, **self._meta()))
            return

        resolved = self.resolve_type(node.type, name)
        self.typedefs[name] = resolved
        if self._is_const(node.type):
            self.const_typedefs.add(name)
        if isinstance(resolved, FunctionPointer):
            self._register(FunctionPointerType(name, resolved, **self._meta()))
        elif isinstance(resolved, Named) and resolved.name == name:
            return
        else:
            self._register(Typedef(name, resolved, **self._meta()))

    def _extract_object(self, node: c_ast.Decl) -> None:
        spec = node.type
        while isinstance(spec, (c_ast.TypeDecl, c_ast.PtrDecl, c_ast.ArrayDecl)):
            spec = spec.type
        if isinstance(spec, (c_ast.Struct, c_ast.Union, c_ast.Enum)):
            if spec.name is None and node.name is None:
                # enum { N = 4 }; only contributes constants.
                if isinstance(spec, c_ast.Enum) and spec.values is not None:
                    self._enum_values(spec, "<anonymous enum>")
                return
            suggested = spec.name or f"{node.name}_type"
            if isinstance(spec, c_ast.Enum):
                self._declare_enum(spec, suggested)
            elif spec.decls is not None or node.name is None:
                self._declare_aggregate(spec, suggested)
        if node.name is not None:
            self._extract_variable(node)

    def _extract_variable(self, node: c_ast.Decl) -> None:
        if self._location.system:
            return
        name = node.name
        var_type = self.resolve_type(node.type, name)
        self._register(
            Variable(
                name=name,
                type=var_type,
                const=self._is_const(node.type),
                exported=self._visibility(node, name),
                system=False,
                source_file=self._location.file,
                line=self._location.line,
            )
        )

    def _extract_function(self, node: c_ast.Decl) -> None:
        if self._location.system:
            return
        name = node.name
        self._check_decorations(name)
        params, variadic = self._function_params(node.type, name)
        return_type = self.resolve_type(node.type.type, name)
        exported = self._visibility(node, name)
        self._register(
            Function(
                name=name,
                return_type=return_type,
                params=params,
                variadic=variadic,
                exported=exported,
                system=False,
                source_file=self._location.file,
                line=self._location.line,
            )
        )

    def _visibility(self, node: c_ast.Decl, name: str) -> bool:
        if "static" in (node.storage or []):
            return False
        verdicts = {d.verdict for d in self._location.decorations}
        if "internal" in verdicts:
            return False
        if "export" in verdicts or "extern" in (node.storage or []):
            return True
        existing = self.declarations.get(name)
        if isinstance(existing, (Function, Variable)):
            return existing.exported
        if self.options.default_visibility is not None:
            return self.options.default_visibility == "export"
        what = "Function" if isinstance(node.type, c_ast.FuncDecl) else "Variable"
        raise UnknownVisibilityDecoration(
            f"{what} {name} at {self._where()} has no export decoration",
            suggestion=(
                "Expand the API macro to __declspec(dllexport) or "
                "__attribute__((visibility(\"default\"))), or pass --default-visibility."
            ),
            **self._error_context(name),
        )

    # -- types --

    def resolve_type(self, node, context: str) -> TypeRef:
        """Map a pycparser declarator tree to its canonical TypeRef."""
        if isinstance(node, c_ast.Typename):
            return self.resolve_type(node.type, context)
        if isinstance(node, c_ast.TypeDecl):
            return self._resolve_specifier(node.type, context)
        if isinstance(node, c_ast.PtrDecl):
            if self._names_function(node.type):
                return self.resolve_type(node.type, context)
            pointee = self.resolve_type(node.type, context)
            return Pointer(pointee, self._is_const(node.type))
        if isinstance(node, c_ast.ArrayDecl):
            element = self.resolve_type(node.type, context)
            length = None if node.dim is None else self.evaluate(node.dim, context)
            return Array(element, length)
        if isinstance(node, c_ast.FuncDecl):
            return self._function_signature(node, context)
        raise ExtractionError(
            "PARSE_ERROR",
            f"Unsupported declarator {type(node).__name__} at {self._where()}",
            **self._error_context(context),
        )

    def _names_function(self, node) -> bool:
        if isinstance(node, c_ast.FuncDecl):
            return True
        if isinstance(node, c_ast.TypeDecl) and isinstance(node.type, c_ast.IdentifierType):
            names = node.type.names
            return len(names) == 1 and names[0] in self.function_typedefs
        return False

    def _is_const(self, node) -> bool:
        if isinstance(node, c_ast.TypeDecl):
            if "const" in (node.quals or []):
                return True
            spec = node.type
            if isinstance(spec, c_ast.IdentifierType) and len(spec.names) == 1:
                return spec.names[0] in self.const_typedefs
            return False
        if isinstance(node, c_ast.PtrDecl):
            return "const" in (node.quals or [])
        if isinstance(node, c_ast.ArrayDecl):
            return self._is_const(node.type)
        return False

    def _resolve_specifier(self, spec, context: str) -> TypeRef:
        if isinstance(spec, c_ast.IdentifierType):
            names = spec.names
            if len(names) == 1:
                fixed = self._fixed_width(names[0])
                if fixed is not None:
                    return fixed
                if names[0] in self.typedefs:
                    return self.typedefs[names[0]]
            return self._primitive(names, context)
        if isinstance(spec, (c_ast.Struct, c_ast.Union)):
            return Named(self._declare_aggregate(spec, context))
        if isinstance(spec, c_ast.Enum):
            return Named(self._declare_enum(spec, context))
        raise ExtractionError(
            "PARSE_ERROR",
            f"Unsupported type specifier {type(spec).__name__} at {self._where()}",
            **self._error_context(context),
        )

    def _fixed_width(self, name: str) -> Primitive | None:
        if name in _FIXED_WIDTH_TYPES:
            width, signed = _FIXED_WIDTH_TYPES[name]
            return Primitive("int", width, signed)
        if name in _POINTER_WIDTH_TYPES:
            return Primitive("int", self.rules.pointer_size * 8, _POINTER_WIDTH_TYPES[name])
        return None

    def _primitive(self, names: list[str], context: str) -> Primitive:
        words = list(names)
        unsigned = "unsigned" in words
        signed = "signed" in words
        core = [w for w in words if w not in ("signed", "unsigned", "int")]
        if core == ["void"]:
            return VOID
        if core == ["_Bool"]:
            return Primitive("bool", 8, False)
        if core == ["char"]:
            if unsigned:
                return Primitive("int", 8, False)
            if signed:
                return Primitive("int", 8, True)
            return Primitive("char", 8, self.rules.char_signed)
        if core == ["float"]:
            return Primitive("float", 32)
        if core == ["double"]:
            return Primitive("float", 64)
        if core == ["long", "double"]:
            return Primitive("float", self.rules.long_double_size * 8)
        if core == ["short"]:
            return Primitive("int", 16, not unsigned)
        if core == []:
            if "int" in words or unsigned or signed:
                return Primitive("int", 32, not unsigned)
        if core == ["long"]:
            return Primitive("int", self.rules.long_size * 8, not unsigned)
        if core == ["long", "long"]:
            return Primitive("int", 64, not unsigned)
        raise ExtractionError(
            "PARSE_ERROR",
            f"Unknown type name '{' '.join(names)}' at {self._where()}",
            **self._error_context(context),
        )

    def _function_params(
        self, func: c_ast.FuncDecl, context: str
    ) -> tuple[tuple[Param, ...], bool]:
        if func.args is None:
            return (), False
        params: list[Param] = []
        variadic = False
        for param in func.args.params:
            if isinstance(param, c_ast.EllipsisParam):
                variadic = True
                continue
            if isinstance(param, c_ast.ID):
                raise ExtractionError(
                    "PARSE_ERROR",
                    f"K&R parameter list in {context} at {self._where()}",
                    **self._error_context(context),
                )
            ptype = self.resolve_type(param.type, context)
            if ptype == VOID and param.name is None and len(func.args.params) == 1:
                return (), False
            if isinstance(ptype, Array):
                ptype = Pointer(ptype.element, self._is_const(param.type.type))
            params.append(Param(param.name, ptype))
        return tuple(params), variadic

    def _function_signature(self, func: c_ast.FuncDecl, context: str) -> FunctionPointer:
        params, variadic = self._function_params(func, context)
        return_type = self.resolve_type(func.type, context)
        return FunctionPointer(return_type, tuple(p.type for p in params), variadic)

    # -- aggregates and enums --

    def _declare_aggregate(self, spec, suggested: str, anonymous: bool = False) -> str:
        kind = "union" if isinstance(spec, c_ast.Union) else "struct"
        cached = self._tag_names.get(id(spec))
        if cached is not None:
            return cached
        name = self._tag_name(spec.name or suggested)
        if spec.decls is None:
            if name not in self.declarations:
                self._register(Opaque(name, kind, **self._meta()))
            return name

        self._tag_names[id(spec)] = name
        fields = self._aggregate_fields(spec, name)
        self._register(
            Aggregate(
                name=name,
                kind=kind,
                fields=fields,
                pack=self._pack,
                anonymous=anonymous,
                **self._meta(),
            )
        )
        return name

    def _aggregate_fields(self, spec, name: str) -> tuple[Field, ...]:
        fields: list[Field] = []
        anonymous_index = 0
        for member in spec.decls:
            if not isinstance(member, c_ast.Decl):
                continue
            member_type = member.type
            if member.name is None and isinstance(member_type, (c_ast.Struct, c_ast.Union)):
                if member_type.name is not None or member_type.decls is None:
                    # Tagged body with no member name declares the tag only.
                    self._declare_aggregate(member_type, member_type.name or name)
                    continue
                kind = "union" if isinstance(member_type, c_ast.Union) else "struct"
                child = self._declare_aggregate(
                    member_type,
                    f"{name}_anon_{kind}_{anonymous_index}",
                    anonymous=True,
                )
                anonymous_index += 1
                fields.append(Field(None, Named(child)))
                continue
            if member.name is None and isinstance(member_type, c_ast.Enum):
                self._declare_enum(member_type, member_type.name or f"{name}_enum")
                continue
            if member.name is None and member.bitsize is None:
                continue

            context = f"{name}_{member.name}" if member.name else name
            field_type = self.resolve_type(member_type, context)
            bit_width = None
            if member.bitsize is not None:
                bit_width = self.evaluate(member.bitsize, name)
                self._check_bitfield(name, member.name, field_type, bit_width)
            fields.append(Field(member.name, field_type, bit_width))
        return tuple(fields)

    def _check_bitfield(
        self, owner: str, member: str | None, ref: TypeRef, bit_width: int
    ) -> None:
        label = f"{owner}.{member or '<unnamed>'}"
        storage_width = None
        if isinstance(ref, Primitive) and ref.kind in ("int", "char", "bool"):
            storage_width = ref.width
        elif isinstance(ref, Named) and isinstance(self.declarations.get(ref.name), Enum):
            storage_width = self.declarations[ref.name].underlying.width
        if storage_width is None:
            raise ExtractionError(
                "PARSE_ERROR",
                f"Bitfield {label} has non-integer type {describe_type(ref)}",
                **self._error_context(label),
            )
        if bit_width < 0:
            raise ExtractionError(
                "INVALID_CONSTANT",
                f"Bitfield {label} has negative width {bit_width}",
                **self._error_context(label),
            )
        if bit_width > storage_width:
            raise BitfieldWidthExceedsStorage(
                f"Bitfield {label} is {bit_width} bits wide but its type "
                f"{describe_type(ref)} holds only {storage_width}",
                **self._error_context(label),
            )

    def _declare_enum(self, spec: c_ast.Enum, suggested: str) -> str:
        cached = self._tag_names.get(id(spec))
        if cached is not None:
            return cached
        name = self._tag_name(spec.name or suggested)
        if spec.values is None:
            if name not in self.declarations:
                self._register(Opaque(name, "enum", **self._meta()))
            return name

        self._tag_names[id(spec)] = name
        values = self._enum_values(spec, name)
        underlying, kept, sentinels = derive_enum_representation(name, values)
        self._register(Enum(name, kept, underlying, sentinels, **self._meta()))
        return name

    def _enum_values(self, spec: c_ast.Enum, context: str) -> tuple[EnumValue, ...]:
        values: list[EnumValue] = []
        next_value = 0
        for enumerator in spec.values.enumerators:
            if enumerator.value is None:
                value = next_value
            else:
                value = self.evaluate(enumerator.value, context)
            self.enum_constants[enumerator.name] = value
            values.append(EnumValue(enumerator.name, value))
            next_value = value + 1
        return tuple(values)

    # -- constant expressions --

    def evaluate(self, node, context: str) -> int:
        """Evaluate an integer constant expression (enumerators, array sizes, bitfields)."""
        if isinstance(node, c_ast.Constant):
            try:
                if node.type == "char":
                    return parse_char_literal(node.value)
                if "int" in node.type or node.type in ("long", "unsigned"):
                    return parse_int_literal(node.value)
            except ValueError as err:
                raise self._constant_error(context, str(err)) from err
            raise self._constant_error(context, f"non-integer constant {node.value}")
        if isinstance(node, c_ast.ID):
            if node.name in self.enum_constants:
                return self.enum_constants[node.name]
            raise self._constant_error(context, f"unknown identifier {node.name}")
        if isinstance(node, c_ast.UnaryOp):
            if node.op == "sizeof":
                return self._sizeof(node.expr, context)
            operand = self.evaluate(node.expr, context)
            if node.op == "-":
                return -operand
            if node.op == "+":
                return operand
            if node.op == "~":
                return ~operand
            if node.op == "!":
                return int(not operand)
            raise self._constant_error(context, f"operator {node.op}")
        if isinstance(node, c_ast.BinaryOp):
            return self._binary(node, context)
        if isinstance(node, c_ast.TernaryOp):
            if self.evaluate(node.cond, context):
                return self.evaluate(node.iftrue, context)
            return self.evaluate(node.iffalse, context)
        if isinstance(node, c_ast.Cast):
            value = self.evaluate(node.expr, context)
            target = self.resolve_type(node.to_type, context)
            if isinstance(target, Primitive) and target.kind in ("int", "char", "bool"):
                return _wrap_integer(value, target.width, target.signed)
            return value
        raise self._constant_error(context, f"unsupported expression {type(node).__name__}")

    def _binary(self, node: c_ast.BinaryOp, context: str) -> int:
        left = self.evaluate(node.left, context)
        right = self.evaluate(node.right, context)
        op = node.op
        if op in ("/", "%"):
            if right == 0:
                raise self._constant_error(context, "division by zero")
            quotient = abs(left) // abs(right)
            if (left < 0) != (right < 0):
                quotient = -quotient
            return quotient if op == "/" else left - quotient * right
        operations = {
            "+": lambda a, b: a + b,
            "-": lambda a, b: a - b,
            "*": lambda a, b: a * b,
            "<<": lambda a, b: a << b,
            ">>": lambda a, b: a >> b,
            "&": lambda a, b: a & b,
            "|": lambda a, b: a | b,
            "^": lambda a, b: a ^ b,
            "&&": lambda a, b: int(bool(a) and bool(b)),
            "||": lambda a, b: int(bool(a) or bool(b)),
            "==": lambda a, b: int(a == b),
            "!=": lambda a, b: int(a != b),
            "<": lambda a, b: int(a < b),
            ">": lambda a, b: int(a > b),
            "<=": lambda a, b: int(a <= b),
            ">=": lambda a, b: int(a >= b),
        }
        if op not in operations:
            raise self._constant_error(context, f"operator {op}")
        return operations[op](left, right)

    def _sizeof(self, node, context: str) -> int:
        if not isinstance(node, c_ast.Typename):
            raise self._constant_error(context, "sizeof of an expression")
        ref = self.resolve_type(node, context)
        count = 1
        while isinstance(ref, Array) and ref.length is not None:
            count *= ref.length
            ref = ref.element
        if isinstance(ref, Primitive) and ref.kind != "void":
            return count * ref.width // 8
        if isinstance(ref, (Pointer, FunctionPointer)):
            return count * self.rules.pointer_size
        raise self._constant_error(context, f"sizeof({describe_type(ref)})")

    def _constant_error(self, context: str, detail: str) -> ExtractionError:
        return ExtractionError(
            "INVALID_CONSTANT",
            f"Cannot evaluate constant expression ({detail}) at {self._where()}",
            **self._error_context(context),
        )


def extract_declarations(
    text: str,
    triple: PlatformTriple,
    options: ExtractOptions | None = None,
    filename: str = "<input>",
) -> TranslationUnit:
    return DeclarationExtractor(triple, options).extract(text, filename)


# ===--- ABI layout ---=== #


@dataclass(frozen=True)
class FieldLayout:
    """Placement of one field, flattened through anonymous members.

    For bitfields ``offset``/``size`` describe the storage slot holding the
    bits and ``bit_offset`` counts from that slot's least significant bit.
    ``slot`` names the storage slot of the owning aggregate that holds the
    field; it equals ``name`` for plain fields.
    """

    name: str
    offset: int
    size: int
    alignment: int
    type: TypeRef
    slot: str
    bit_offset: int | None = None
    bit_width: int | None = None

    @property
    def is_bitfield(self) -> bool:
        return self.bit_width is not None


@dataclass(frozen=True)
class SlotLayout:
    """One storage slot an aggregate binding has to declare.

    ``kind`` is "field", "bitfield" (storage shared by a run of bitfields)
    or "anonymous" (a nested aggregate whose fields are flattened).
    """

    name: str
    offset: int
    size: int
    alignment: int
    kind: str
    type: TypeRef


@dataclass(frozen=True)
class LayoutInfo:
    size: int
    alignment: int
    fields: tuple[FieldLayout, ...]
    slots: tuple[SlotLayout, ...]

    def field(self, name: str) -> FieldLayout:
        for entry in self.fields:
            if entry.name == name:
                return entry
        raise KeyError(name)


def align_up(value: int, alignment: int) -> int:
    if alignment <= 1:
        return value
    return (value + alignment - 1) // alignment * alignment


def storage_type_for(size: int) -> TypeRef:
    if size in (1, 2, 4, 8):
        return Primitive("int", size * 8, False)
    return Array(Primitive("int", 8, False), size)


def _storage_alignment(size: int) -> int:
    return size if size in (1, 2, 4, 8) else 1


@dataclass
class _BitRun:
    """Contiguous itanium bitfields waiting for a storage slot."""

    slot_index: int
    name: str
    start_bit: int
    end_bit: int

    @property
    def byte_span(self) -> tuple[int, int]:
        return self.start_bit // 8, (self.end_bit + 7) // 8


@dataclass
class _MsvcUnit:
    """The open MSVC allocation unit: declared-type sized, shared by same-size bitfields."""

    start_bit: int
    size: int
    name: str
    used: int

    @property
    def end_bit(self) -> int:
        return self.start_bit + self.size * 8


@dataclass
class _StructState:
    pack: int | None
    bit_offset: int = 0
    alignment: int = 1
    fields: list[FieldLayout] = field(default_factory=list)
    slots: list[SlotLayout] = field(default_factory=list)
    runs: list[_BitRun] = field(default_factory=list)
    open_run: _BitRun | None = None
    unit: _MsvcUnit | None = None
    bitfield_count: int = 0
    anonymous_count: int = 0

    def capped(self, alignment: int) -> int:
        return min(alignment, self.pack) if self.pack else alignment

    def close_bitfields(self) -> None:
        self.open_run = None
        if self.unit is not None:
            self.bit_offset = self.unit.end_bit
            self.unit = None

    def next_bitfield_name(self) -> str:
        name = f"_bitfield_{self.bitfield_count}"
        self.bitfield_count += 1
        return name

    def next_anonymous_name(self) -> str:
        name = f"_anon_{self.anonymous_count}"
        self.anonymous_count += 1
        return name


class LayoutCalculator:
    """Computes LayoutInfo for the aggregates of one TranslationUnit.

    Results are cached per declaration for the lifetime of the calculator,
    which belongs to exactly one triple.
    """

    def __init__(self, unit: TranslationUnit):
        self.unit = unit
        self.rules = unit.triple.rules
        self._cache: dict[str, LayoutInfo] = {}
        self._in_progress: list[str] = []

    def _context(self, declaration: str) -> dict:
        return {"declaration": declaration, "triple": self.unit.triple.label}

    def size_align(self, ref: TypeRef, context: str) -> tuple[int, int]:
        """Size and natural alignment of ``ref`` in bytes under this triple's rules."""
        if isinstance(ref, Primitive):
            if ref.kind == "void":
                raise ExtractionError(
                    "INCOMPLETE_TYPE",
                    f"{context} has type void",
                    **self._context(context),
                )
            size = ref.width // 8
            if ref.kind == "int" and ref.width == 64:
                return size, self.rules.int64_align
            if ref.kind == "float" and ref.width == 64:
                return size, self.rules.double_align
            if ref.kind == "float" and ref.width > 64:
                return size, self.rules.long_double_align
            return size, size
        if isinstance(ref, (Pointer, FunctionPointer)):
            return self.rules.pointer_size, self.rules.pointer_size
        if isinstance(ref, Array):
            element_size, element_align = self.size_align(ref.element, context)
            return element_size * (ref.length or 0), element_align

        decl = self.unit.get(ref.name)
        if isinstance(decl, Enum):
            size = decl.underlying.width // 8
            return size, size
        if isinstance(decl, Aggregate):
            info = self.layout(decl.name)
            return info.size, info.alignment
        raise ExtractionError(
            "INCOMPLETE_TYPE",
            f"{context} uses incomplete type {ref.name} by value",
            suggestion=f"Define {ref.name} before it is embedded, or embed a pointer.",
            **self._context(context),
        )

    def layout(self, name: str) -> LayoutInfo:
        cached = self._cache.get(name)
        if cached is not None:
            return cached
        if name in self._in_progress:
            cycle = self._in_progress[self._in_progress.index(name) :] + [name]
            raise CyclicLayoutDependency(
                f"Aggregates contain each other by value: {' -> '.join(cycle)}",
                suggestion="Break the cycle with a pointer member.",
                **self._context(name),
            )
        decl = self.unit.get(name)
        if not isinstance(decl, Aggregate):
            raise ExtractionError(
                "INCOMPLETE_TYPE",
                f"{name} has no definition to lay out",
                **self._context(name),
            )

        self._in_progress.append(name)
        try:
            if decl.kind == "union":
                info = self._union_layout(decl)
            else:
                info = self._struct_layout(decl)
        finally:
            self._in_progress.pop()
        self._cache[name] = info
        return info

    def layout_all(self) -> dict[str, LayoutInfo]:
        return {
            decl.name: self.layout(decl.name)
            for decl in self.unit.declarations.values()
            if isinstance(decl, Aggregate)
        }

    # -- structs --

    def _struct_layout(self, decl: Aggregate) -> LayoutInfo:
        state = _StructState(pack=decl.pack)
        msvc = self.rules.bitfield_policy == BITFIELD_MSVC

        for member in decl.fields:
            context = f"{decl.name}.{member.name or '<anonymous>'}"
            if member.bit_width is None:
                state.close_bitfields()
                self._place_member(state, member, context)
            elif msvc:
                self._place_msvc_bitfield(state, member, context)
            else:
                self._place_itanium_bitfield(state, member, context)

        state.close_bitfields()
        size = align_up((state.bit_offset + 7) // 8, state.alignment)
        if state.runs:
            self._resolve_runs(state, size)
        return LayoutInfo(size, state.alignment, tuple(state.fields), tuple(state.slots))

    def _place_member(self, state: _StructState, member: Field, context: str) -> None:
        size, type_align = self.size_align(member.type, context)
        align = state.capped(type_align)
        state.bit_offset = align_up(state.bit_offset, align * 8)
        offset = state.bit_offset // 8
        state.alignment = max(state.alignment, align)
        state.bit_offset += size * 8

        if member.name is not None:
            state.slots.append(SlotLayout(member.name, offset, size, align, "field", member.type))
            state.fields.append(FieldLayout(member.name, offset, size, align, member.type, member.name))
            return

        slot_name = state.next_anonymous_name()
        state.slots.append(SlotLayout(slot_name, offset, size, align, "anonymous", member.type))
        for child in self.layout(member.type.name).fields:
            state.fields.append(replace(child, offset=child.offset + offset, slot=slot_name))

    def _place_msvc_bitfield(self, state: _StructState, member: Field, context: str) -> None:
        size, type_align = self.size_align(member.type, context)
        align = state.capped(type_align)
        width = member.bit_width
        if width == 0:
            state.close_bitfields()
            return

        unit = state.unit
        if unit is None or unit.size != size or unit.used + width > size * 8:
            state.close_bitfields()
            state.bit_offset = align_up(state.bit_offset, align * 8)
            unit = _MsvcUnit(state.bit_offset, size, state.next_bitfield_name(), 0)
            state.unit = unit
            state.slots.append(
                SlotLayout(unit.name, unit.start_bit // 8, size, align, "bitfield", storage_type_for(size))
            )
            state.alignment = max(state.alignment, align)

        if member.name is not None:
            state.fields.append(
                FieldLayout(
                    name=member.name,
                    offset=unit.start_bit // 8,
                    size=size,
                    alignment=align,
                    type=member.type,
                    slot=unit.name,
                    bit_offset=unit.used,
                    bit_width=width,
                )
            )
        unit.used += width

    def _place_itanium_bitfield(self, state: _StructState, member: Field, context: str) -> None:
        size, type_align = self.size_align(member.type, context)
        width = member.bit_width
        if width == 0:
            state.open_run = None
            state.bit_offset = align_up(state.bit_offset, type_align * 8)
            return

        unit_bits = size * 8
        start = state.bit_offset
        straddles = start // unit_bits != (start + width - 1) // unit_bits
        if straddles and not (state.pack and state.pack < type_align):
            start = align_up(start, unit_bits)

        run = state.open_run
        if run is None or run.end_bit != start:
            run = _BitRun(len(state.slots), state.next_bitfield_name(), start, start)
            state.runs.append(run)
            state.open_run = run
            # Placeholder until the run's storage is chosen.
            state.slots.append(SlotLayout(run.name, start // 8, 0, 1, "bitfield", VOID))
        run.end_bit = start + width
        state.bit_offset = start + width

        if member.name is not None:
            state.alignment = max(state.alignment, state.capped(type_align))
            state.fields.append(
                FieldLayout(
                    name=member.name,
                    offset=0,
                    size=0,
                    alignment=1,
                    type=member.type,
                    slot=run.name,
                    bit_offset=start,
                    bit_width=width,
                )
            )

    def _resolve_runs(self, state: _StructState, struct_size: int) -> None:
        """Pick a storage slot for every itanium bitfield run.

        Storage is the smallest unsigned integer that covers the run's bytes
        and sits naturally aligned in bytes nothing else uses, else a byte
        array over exactly those bytes. When no slot carries the struct's
        alignment, the first run that fits a storage of that size is widened.
        """
        occupied = [
            (slot.offset, slot.offset + slot.size)
            for slot in state.slots
            if slot.kind != "bitfield"
        ]
        spans = [run.byte_span for run in state.runs]

        def fits(index: int, base: int, size: int) -> bool:
            first, last = spans[index]
            if base > first or base + size < last or base + size > struct_size:
                return False
            blocked = occupied + [s for i, s in enumerate(spans) if i != index]
            return all(end <= base or start >= base + size for start, end in blocked)

        choices: list[tuple[int, int]] = []
        for index in range(len(state.runs)):
            first, last = spans[index]
            chosen = (first, last - first)
            for candidate in (1, 2, 4, 8):
                base = first - first % candidate
                if fits(index, base, candidate):
                    chosen = (base, candidate)
                    break
            choices.append(chosen)
            spans[index] = chosen[0], chosen[0] + chosen[1]

        carried = [slot.alignment for slot in state.slots if slot.kind != "bitfield"]
        carried += [_storage_alignment(size) for _, size in choices]
        if max(carried) < state.alignment:
            for index in range(len(state.runs)):
                first, _ = spans[index]
                base = first - first % state.alignment
                if fits(index, base, state.alignment):
                    choices[index] = (base, state.alignment)
                    break

        resolved: dict[str, tuple[int, int]] = {}
        for run, (base, size) in zip(state.runs, choices):
            resolved[run.name] = (base, size)
            state.slots[run.slot_index] = SlotLayout(
                run.name, base, size, _storage_alignment(size), "bitfield", storage_type_for(size)
            )
        for index, entry in enumerate(state.fields):
            if entry.is_bitfield and entry.slot in resolved:
                base, size = resolved[entry.slot]
                state.fields[index] = replace(
                    entry,
                    offset=base,
                    size=size,
                    alignment=_storage_alignment(size),
                    bit_offset=entry.bit_offset - base * 8,
                )

    # -- unions --

    def _union_layout(self, decl: Aggregate) -> LayoutInfo:
        state = _StructState(pack=decl.pack)
        msvc = self.rules.bitfield_policy == BITFIELD_MSVC
        size = 0

        for member in decl.fields:
            context = f"{decl.name}.{member.name or '<anonymous>'}"
            member_size, type_align = self.size_align(member.type, context)
            align = state.capped(type_align)

            if member.bit_width is not None:
                if member.bit_width == 0:
                    continue
                occupied = member_size if msvc else (member.bit_width + 7) // 8
                storage = member_size if msvc else occupied
                slot_name = state.next_bitfield_name()
                state.slots.append(
                    SlotLayout(slot_name, 0, storage, align, "bitfield", storage_type_for(storage))
                )
                size = max(size, occupied)
                if member.name is None:
                    continue
                state.alignment = max(state.alignment, align)
                state.fields.append(
                    FieldLayout(
                        name=member.name,
                        offset=0,
                        size=storage,
                        alignment=align,
                        type=member.type,
                        slot=slot_name,
                        bit_offset=0,
                        bit_width=member.bit_width,
                    )
                )
                continue

            state.alignment = max(state.alignment, align)
            size = max(size, member_size)
            if member.name is None:
                slot_name = state.next_anonymous_name()
                state.slots.append(SlotLayout(slot_name, 0, member_size, align, "anonymous", member.type))
                for child in self.layout(member.type.name).fields:
                    state.fields.append(replace(child, slot=slot_name))
            else:
                state.slots.append(SlotLayout(member.name, 0, member_size, align, "field", member.type))
                state.fields.append(
                    FieldLayout(member.name, 0, member_size, align, member.type, member.name)
                )

        return LayoutInfo(
            align_up(size, state.alignment),
            state.alignment,
            tuple(state.fields),
            tuple(state.slots),
        )


def compute_layouts(unit: TranslationUnit) -> dict[str, LayoutInfo]:
    return LayoutCalculator(unit).layout_all()


# ===--- Type mapping ---=== #

TARGET_MOJO = "mojo"
TARGET_CSHARP = "csharp"

MOJO_RESERVED = {
    "ref",
    "in",
    "out",
    "var",
    "fn",
    "type",
    "def",
    "struct",
    "trait",
    "alias",
    "comptime",
    "self",
    "mut",
    "owned",
    "raises",
    "from",
    "import",
    "pass",
    "return",
    "with",
    "and",
    "or",
    "not",
    "is",
    "as",
    "if",
    "else",
    "elif",
    "for",
    "while",
    "break",
    "continue",
    "raise",
    "try",
    "except",
    "finally",
    "lambda",
    "None",
    "True",
    "False",
}

CSHARP_KEYWORDS = {
    "abstract", "as", "base", "bool", "break", "byte", "case", "catch", "char",
    "checked", "class", "const", "continue", "decimal", "default", "delegate",
    "do", "double", "else", "enum", "event", "explicit", "extern", "false",
    "finally", "fixed", "float", "for", "foreach", "goto", "if", "implicit",
    "in", "int", "interface", "internal", "is", "lock", "long", "namespace",
    "new", "null", "object", "operator", "out", "override", "params", "private",
    "protected", "public", "readonly", "ref", "return", "sbyte", "sealed",
    "short", "sizeof", "stackalloc", "static", "string", "struct", "switch",
    "this", "throw", "true", "try", "typeof", "uint", "ulong", "unchecked",
    "unsafe", "ushort", "using", "virtual", "void", "volatile", "while",
}

CSHARP_INTEGERS = {
    (8, True): "sbyte",
    (8, False): "byte",
    (16, True): "short",
    (16, False): "ushort",
    (32, True): "int",
    (32, False): "uint",
    (64, True): "long",
    (64, False): "ulong",
}


def mojo_identifier(name: str) -> str:
    if name in MOJO_RESERVED:
        return f"{name}_"
    return name


def csharp_identifier(name: str) -> str:
    if name in CSHARP_KEYWORDS:
        return f"@{name}"
    return name


def _unmappable(ref: TypeRef, target: str, unit: TranslationUnit, declaration: str, reason: str = ""):
    detail = f" ({reason})" if reason else ""
    return UnmappableType(
        f"{describe_type(ref)} has no {target} equivalent{detail}",
        declaration=declaration,
        triple=unit.triple.label,
    )


def mojo_type_for(ref: TypeRef, unit: TranslationUnit, declaration: str) -> str:
    """Map a TypeRef to the Mojo spelling used in fields, parameters and aliases."""
    if isinstance(ref, Primitive):
        if ref.kind == "void":
            return "NoneType"
        if ref.kind == "bool":
            return "Bool"
        if ref.kind == "char":
            return "c_char"
        if ref.kind == "int":
            return f"{'' if ref.signed else 'U'}Int{ref.width}"
        if ref.width > 64:
            raise _unmappable(ref, TARGET_MOJO, unit, declaration, "long double wider than 8 bytes")
        return f"Float{ref.width}"
    if isinstance(ref, Pointer):
        origin = "ImmutAnyOrigin" if ref.const else "MutAnyOrigin"
        return f"UnsafePointer[{mojo_type_for(ref.pointee, unit, declaration)}, {origin}]"
    if isinstance(ref, Array):
        if ref.length is None:
            raise _unmappable(ref, TARGET_MOJO, unit, declaration, "array without a length")
        return f"InlineArray[{mojo_type_for(ref.element, unit, declaration)}, {ref.length}]"
    if isinstance(ref, Named):
        return ref.name
    if ref.variadic:
        raise _unmappable(ref, TARGET_MOJO, unit, declaration, "variadic")
    params = ", ".join(mojo_type_for(p, unit, declaration) for p in ref.params)
    return f'fn({params}) abi("C") -> {mojo_return_type_for(ref.return_type, unit, declaration)}'


def mojo_return_type_for(ref: TypeRef, unit: TranslationUnit, declaration: str) -> str:
    if ref == VOID:
        return "None"
    return mojo_type_for(ref, unit, declaration)


def csharp_type_for(ref: TypeRef, unit: TranslationUnit, declaration: str) -> str:
    """Map a TypeRef to the C# spelling used in fields, parameters and delegates."""
    if isinstance(ref, Primitive):
        if ref.kind == "void":
            return "void"
        if ref.kind in ("bool", "char"):
            return "byte"
        if ref.kind == "int":
            return CSHARP_INTEGERS[(ref.width, ref.signed)]
        if ref.width > 64:
            raise _unmappable(ref, TARGET_CSHARP, unit, declaration, "long double wider than 8 bytes")
        return "float" if ref.width == 32 else "double"
    if isinstance(ref, Pointer):
        pointee = csharp_type_for(ref.pointee, unit, declaration)
        if ref.const:
            return f"/*const*/ {pointee}*"
        return f"{pointee}*"
    if isinstance(ref, Array):
        raise _unmappable(ref, TARGET_CSHARP, unit, declaration, "arrays only exist as fixed buffers")
    if isinstance(ref, Named):
        return ref.name
    if ref.variadic:
        raise _unmappable(ref, TARGET_CSHARP, unit, declaration, "variadic")
    parts = [csharp_type_for(p, unit, declaration) for p in ref.params]
    parts.append(csharp_type_for(ref.return_type, unit, declaration))
    return f"delegate* unmanaged[Cdecl]<{', '.join(parts)}>"


TYPE_MAPPERS = {
    TARGET_MOJO: mojo_type_for,
    TARGET_CSHARP: csharp_type_for,
}


def map_type(ref: TypeRef, unit: TranslationUnit, target: str, declaration: str) -> str:
    return TYPE_MAPPERS[target](ref, unit, declaration)


# ===--- Emission planning ---=== #

SECTION_ORDER: tuple[str, ...] = (
    "typedef",
    "enum",
    "opaque",
    "aggregate",
    "function_pointer",
    "function",
    "variable",
)


def section_of(decl: Declaration) -> str:
    if isinstance(decl, Aggregate):
        return "aggregate"
    return decl.kind


def _declaration_refs(decl: Declaration) -> list[TypeRef]:
    if isinstance(decl, Function):
        return [decl.return_type, *(p.type for p in decl.params)]
    if isinstance(decl, Aggregate):
        return [f.type for f in decl.fields]
    if isinstance(decl, (Typedef, Variable)):
        return [decl.type]
    if isinstance(decl, FunctionPointerType):
        return [decl.signature]
    return []


def _named_refs(ref: TypeRef, by_value: bool = True):
    """Yield (name, needed_by_value) for every Named reachable from ``ref``."""
    if isinstance(ref, Named):
        yield ref.name, by_value
    elif isinstance(ref, Pointer):
        yield from _named_refs(ref.pointee, False)
    elif isinstance(ref, Array):
        yield from _named_refs(ref.element, by_value)
    elif isinstance(ref, FunctionPointer):
        yield from _named_refs(ref.return_type, False)
        for param in ref.params:
            yield from _named_refs(param, False)


def emission_closure(unit: TranslationUnit, ignore: Iterable[str] = ()) -> dict[str, bool]:
    """Names to emit, mapped to whether the full definition is needed.

    Roots are every non-system type and every exported function or variable,
    minus the ``ignore`` names. System and ignored aggregates reached only
    through pointers are emitted as opaque types.
    """
    ignored = frozenset(ignore)
    pending = [
        (decl.name, True)
        for decl in unit.declarations.values()
        if not decl.system and decl.exported and decl.name not in ignored
    ]
    needed: dict[str, bool] = {}
    while pending:
        name, full = pending.pop()
        decl = unit.get(name)
        if decl is None:
            continue
        hidden = decl.system or name in ignored
        full = full or not hidden or not isinstance(decl, Aggregate)
        if needed.get(name) is True or (name in needed and not full):
            continue
        needed[name] = full
        if not full:
            continue
        for ref in _declaration_refs(decl):
            pending.extend(_named_refs(ref))
    return needed


def topo_sort_aggregates(aggregates: list[Aggregate]) -> list[Aggregate]:
    aggregate_map = {a.name: a for a in aggregates}
    deps = {}
    for a in aggregates:
        value_deps = set()
        for f in a.fields:
            for name, by_value in _named_refs(f.type):
                if by_value and name in aggregate_map and name != a.name:
                    value_deps.add(name)
        deps[a.name] = value_deps

    in_degree = {a: 0 for a in deps}
    adj = defaultdict(list)
    for a, dd in deps.items():
        for d in dd:
            adj[d].append(a)
            in_degree[a] += 1

    queue = [a for a in deps if in_degree[a] == 0]
    result = []
    while queue:
        queue.sort()
        node = queue.pop(0)
        result.append(node)
        for neighbor in adj[node]:
            in_degree[neighbor] -= 1
            if in_degree[neighbor] == 0:
                queue.append(neighbor)

    if len(result) != len(deps):
        remaining = set(deps.keys()) - set(result)
        raise RuntimeError(f"Dependency cycle in aggregates: {sorted(remaining)}")

    return [aggregate_map[name] for name in result]


def plan_emission(unit: TranslationUnit, ignore: Iterable[str] = ()) -> list[Declaration]:
    """Declarations to emit, grouped by section in SECTION_ORDER."""
    needed = emission_closure(unit, ignore)
    sections: dict[str, list[Declaration]] = {key: [] for key in SECTION_ORDER}
    for decl in unit.declarations.values():
        if decl.name not in needed:
            continue
        if isinstance(decl, Aggregate) and not needed[decl.name]:
            decl = Opaque(
                decl.name,
                decl.kind,
                exported=False,
                system=True,
                source_file=decl.source_file,
                line=decl.line,
            )
        sections[section_of(decl)].append(decl)
    sections["aggregate"] = topo_sort_aggregates(sections["aggregate"])
    return [decl for key in SECTION_ORDER for decl in sections[key]]


# ===--- Code generation ---=== #


@dataclass(frozen=True)
class BitWindow:
    """Smallest little-endian integer load covering one bitfield."""

    offset: int
    size: int
    shift: int
    width: int

    @property
    def mask(self) -> int:
        return ((1 << self.width) - 1) << self.shift

    @property
    def left(self) -> int:
        return 64 - self.shift - self.width

    @property
    def right(self) -> int:
        return 64 - self.width


def bit_window(entry: FieldLayout, aggregate_size: int) -> BitWindow | None:
    absolute = entry.offset * 8 + entry.bit_offset
    first = absolute // 8
    last = (absolute + entry.bit_width - 1) // 8
    span = last - first + 1
    for size in (1, 2, 4, 8):
        if size >= span and size <= max(aggregate_size, span):
            start = max(0, min(first, aggregate_size - size))
            return BitWindow(start, size, absolute - start * 8, entry.bit_width)
    return None


def variable_pointee(decl: Variable) -> TypeRef:
    """Type the symbol address points at; an array global decays to its element."""
    if isinstance(decl.type, Array):
        return decl.type.element
    return decl.type


def _bitfield_value_kind(ref: TypeRef, unit: TranslationUnit) -> str | None:
    if isinstance(ref, Primitive) and ref.kind in ("int", "char", "bool"):
        return ref.kind
    if isinstance(ref, Named) and isinstance(unit.get(ref.name), Enum):
        return "enum"
    return None


def _is_signed_value(ref: TypeRef, unit: TranslationUnit) -> bool:
    if isinstance(ref, Primitive):
        return ref.kind in ("int", "char") and ref.signed
    decl = unit.get(ref.name) if isinstance(ref, Named) else None
    return isinstance(decl, Enum) and decl.underlying.signed


class BindingGenerator:
    """Renders emitted declarations of one TranslationUnit for a target language.

    ``render`` returns the lines for one declaration and raises UnmappableType
    when any part of it cannot be represented; callers collect those.
    """

    target = ""
    extension = ""
    comment = ""
    section_titles: dict[str, str] = {
        "typedef": "TYPE ALIASES",
        "enum": "ENUMS",
        "opaque": "OPAQUE TYPES",
        "aggregate": "STRUCTS AND UNIONS",
        "function_pointer": "FUNCTION POINTER TYPES",
        "function": "FUNCTIONS",
        "variable": "GLOBAL VARIABLES",
    }

    def __init__(self, unit: TranslationUnit, layouts: dict[str, LayoutInfo]):
        self.unit = unit
        self.layouts = layouts

    def map(self, ref: TypeRef, declaration: str) -> str:
        return map_type(ref, self.unit, self.target, declaration)

    def unmappable(self, declaration: str, message: str) -> UnmappableType:
        return UnmappableType(
            f"{message} in the {self.target} target",
            declaration=declaration,
            triple=self.unit.triple.label,
        )

    def render(self, decl: Declaration) -> list[str]:
        if isinstance(decl, Function):
            return self.render_function(decl)
        if isinstance(decl, Aggregate):
            return self.render_aggregate(decl, self.layouts[decl.name])
        if isinstance(decl, Enum):
            return self.render_enum(decl)
        if isinstance(decl, Typedef):
            return self.render_typedef(decl)
        if isinstance(decl, FunctionPointerType):
            return self.render_function_pointer(decl)
        if isinstance(decl, Variable):
            return self.render_variable(decl)
        return self.render_opaque(decl)

    def signature(self, decl: Declaration) -> str:
        """Mapped target signature used to compare functions and aliases across triples."""
        if isinstance(decl, Function):
            if decl.variadic:
                raise self.unmappable(decl.name, "Variadic function")
            params = ", ".join(self.map(p.type, decl.name) for p in decl.params)
            return f"{decl.name}({params}) -> {self.map(decl.return_type, decl.name)}"
        if isinstance(decl, Typedef):
            return self.map(decl.type, decl.name)
        if isinstance(decl, FunctionPointerType):
            return self.map(decl.signature, decl.name)
        if isinstance(decl, Variable):
            return f"{decl.name}: {self.map(Pointer(variable_pointee(decl)), decl.name)}"
        return decl.name

    def param_names(self, decl: Function, escape) -> list[str]:
        return [
            escape(p.name) if p.name else f"arg{index}"
            for index, p in enumerate(decl.params)
        ]

    def section_banner(self, key: str) -> list[str]:
        return [f"{self.comment} ========= {self.section_titles[key]} =========", ""]

    # Subclass hooks.

    def render_function(self, decl: Function) -> list[str]:
        raise NotImplementedError

    def render_aggregate(self, decl: Aggregate, info: LayoutInfo) -> list[str]:
        raise NotImplementedError

    def render_enum(self, decl: Enum) -> list[str]:
        raise NotImplementedError

    def render_typedef(self, decl: Typedef) -> list[str]:
        raise NotImplementedError

    def render_function_pointer(self, decl: FunctionPointerType) -> list[str]:
        raise NotImplementedError

    def render_opaque(self, decl: Opaque) -> list[str]:
        raise NotImplementedError

    def render_variable(self, decl: Variable) -> list[str]:
        raise NotImplementedError

    def external_imports(self, content_lines: list[str]) -> tuple["ExternalImport", ...]:
        raise NotImplementedError

    def build_content(
        self,
        module_name: str,
        library: str,
        blocks: list[tuple[Declaration, list[str]]],
    ) -> list[str]:
        """Join rendered blocks under one banner per section.

        Each block is preceded by a comment naming the header location the
        declaration came from.
        """
        lines: list[str] = []
        current = None
        for decl, block in blocks:
            if not block:
                continue
            key = section_of(decl)
            if key != current:
                if lines and lines[-1] != "":
                    lines.append("")
                lines.extend(self.section_banner(key))
                current = key
            location = source_location(decl)
            if location:
                lines.append(f"{self.comment} {location}")
            lines.extend(block)
        while lines and lines[-1] == "":
            lines.pop()
        return lines


def _is_flexible_array(entry: FieldLayout) -> bool:
    return isinstance(entry.type, Array) and entry.type.length is None


def _indent(lines: list[str], prefix: str) -> list[str]:
    return [f"{prefix}{line}" if line else "" for line in lines]


# ===--- Mojo target ---=== #


def _mojo_at(offset: int, type_name: str) -> str:
    if offset == 0:
        return f"UnsafePointer(to=self).bitcast[{type_name}]()"
    return f"(UnsafePointer(to=self).bitcast[UInt8]() + {offset}).bitcast[{type_name}]()"


_MOJO_UINT = {1: "UInt8", 2: "UInt16", 4: "UInt32", 8: "UInt64"}
_MOJO_DTYPE = {
    "Int8": "int8",
    "Int16": "int16",
    "Int32": "int32",
    "Int64": "int64",
    "UInt8": "uint8",
    "UInt16": "uint16",
    "UInt32": "uint32",
    "UInt64": "uint64",
    "c_char": "int8",
}


class MojoGenerator(BindingGenerator):
    target = TARGET_MOJO
    extension = "mojo"
    comment = "#"

    def natural_alignment(self, ref: TypeRef) -> int:
        """Alignment Mojo gives the mapped type, assuming natural alignment."""
        if isinstance(ref, Primitive):
            return max(1, ref.width // 8)
        if isinstance(ref, (Pointer, FunctionPointer)):
            return self.unit.triple.rules.pointer_size
        if isinstance(ref, Array):
            return self.natural_alignment(ref.element)
        decl = self.unit.get(ref.name)
        if isinstance(decl, Enum):
            return decl.underlying.width // 8
        return self.layouts[ref.name].alignment

    def slots_render_faithfully(self, info: LayoutInfo) -> bool:
        natural = 1
        cursor = 0
        for slot in info.slots:
            align = self.natural_alignment(slot.type)
            if slot.offset % align or slot.offset < cursor:
                return False
            natural = max(natural, align)
            cursor = slot.offset + slot.size
        return natural == info.alignment

    def render_enum(self, decl: Enum) -> list[str]:
        base = self.map(decl.underlying, decl.name)
        lines = [
            "@fieldwise_init",
            f"struct {decl.name}(TrivialRegisterPassable, Intable):",
            f"    var value: {base}",
            "",
        ]
        if decl.values:
            for value in decl.values:
                lines.append(f"    comptime {mojo_identifier(value.name)} = {decl.name}({value.value})")
            lines.append("")
        lines.append("    @always_inline")
        lines.append("    fn __int__(self) -> Int:")
        lines.append("        return Int(self.value)")
        lines.append("")
        return lines

    def render_opaque(self, decl: Opaque) -> list[str]:
        return [
            "@fieldwise_init",
            f"struct {decl.name}(Copyable, Movable):",
            f'    """Opaque C {decl.tag_kind} {decl.name}. Use through a pointer only."""',
            "    pass",
            "",
        ]

    def render_typedef(self, decl: Typedef) -> list[str]:
        return [f"comptime {decl.name} = {self.map(decl.type, decl.name)}"]

    def render_function_pointer(self, decl: FunctionPointerType) -> list[str]:
        return [f"comptime {decl.name} = {self.map(decl.signature, decl.name)}"]

    def render_function(self, decl: Function) -> list[str]:
        if decl.variadic:
            raise self.unmappable(decl.name, "Variadic function")
        names = self.param_names(decl, mojo_identifier)
        params = ", ".join(
            f"{name}: {self.map(p.type, decl.name)}" for name, p in zip(names, decl.params)
        )
        ret = mojo_return_type_for(decl.return_type, self.unit, decl.name)
        call_ret = "NoneType" if ret == "None" else ret
        args = ", ".join(names)
        return [
            f"fn {mojo_identifier(decl.name)}({params}) -> {ret}:",
            f'    return external_call["{decl.name}", {call_ret}]({args})',
            "",
        ]

    def render_variable(self, decl: Variable) -> list[str]:
        pointee = self.map(variable_pointee(decl), decl.name)
        pointer = self.map(Pointer(variable_pointee(decl)), decl.name)
        qualifier = "const " if decl.const else ""
        return [
            f"fn {mojo_identifier(decl.name)}() raises -> {pointer}:",
            f'    """Address of the {qualifier}C global {decl.name}."""',
            f'    return OwnedDLHandle().get_symbol[{pointee}]("{decl.name}")',
            "",
        ]

    def render_aggregate(self, decl: Aggregate, info: LayoutInfo) -> list[str]:
        lines = [
            "@fieldwise_init",
            f"struct {decl.name}(Copyable, Movable):",
            f'    """C {decl.kind} {decl.name} (size={info.size}, align={info.alignment})."""',
        ]
        storage_backed = decl.kind == "union" or not self.slots_render_faithfully(info)
        if storage_backed:
            lines.extend(self._storage_fields(decl, info))
            accessed = [f for f in info.fields if not _is_flexible_array(f)]
        else:
            lines.extend(self._slot_fields(decl, info))
            accessed = [f for f in info.fields if f.slot != f.name and not _is_flexible_array(f)]

        if len(lines) == 3:
            lines.append("    pass")
        for entry in accessed:
            lines.append("")
            if entry.is_bitfield:
                lines.extend(self._bitfield_accessors(decl, info, entry))
            else:
                lines.extend(self._value_accessors(decl, entry))
        lines.append("")
        return lines

    def _storage_fields(self, decl: Aggregate, info: LayoutInfo) -> list[str]:
        if info.size == 0:
            return []
        element = _MOJO_UINT.get(info.alignment)
        if element is None:
            raise self.unmappable(decl.name, f"Alignment {info.alignment}")
        return [f"    var _data: InlineArray[{element}, {info.size // info.alignment}]"]

    def _slot_fields(self, decl: Aggregate, info: LayoutInfo) -> list[str]:
        lines = []
        cursor = 0
        pad_index = 0
        for slot in info.slots:
            if slot.size == 0 and isinstance(slot.type, Array) and slot.type.length is None:
                continue
            if slot.offset > cursor:
                lines.append(f"    var _pad{pad_index}: InlineArray[UInt8, {slot.offset - cursor}]")
                pad_index += 1
            lines.append(f"    var {mojo_identifier(slot.name)}: {self.map(slot.type, decl.name)}")
            cursor = slot.offset + slot.size
        if info.size > cursor:
            lines.append(f"    var _pad{pad_index}: InlineArray[UInt8, {info.size - cursor}]")
        return lines

    def _value_accessors(self, decl: Aggregate, entry: FieldLayout) -> list[str]:
        mapped = self.map(entry.type, decl.name)
        pointer = _mojo_at(entry.offset, mapped)
        return [
            "    @always_inline",
            f"    fn get_{entry.name}(self) -> {mapped}:",
            f"        return {pointer}[]",
            "",
            "    @always_inline",
            f"    fn set_{entry.name}(mut self, value: {mapped}):",
            f"        {pointer}[] = value",
        ]

    def _bitfield_accessors(self, decl: Aggregate, info: LayoutInfo, entry: FieldLayout) -> list[str]:
        kind = _bitfield_value_kind(entry.type, self.unit)
        window = bit_window(entry, info.size)
        if kind is None or window is None:
            raise self.unmappable(decl.name, f"Bitfield {entry.name}")
        mapped = self.map(entry.type, decl.name)
        raw = _MOJO_UINT[window.size]
        signed = _is_signed_value(entry.type, self.unit)
        pointer = _mojo_at(window.offset, raw)

        if kind == "bool":
            result = "bits != 0"
            stored = "UInt64(1) if value else UInt64(0)"
        elif kind == "enum":
            base = self.map(self.unit.get(entry.type.name).underlying, decl.name)
            result = f"{mapped}(bits.cast[DType.{_MOJO_DTYPE[base]}]())"
            stored = "value.value.cast[DType.uint64]()"
        else:
            result = f"bits.cast[DType.{_MOJO_DTYPE[mapped]}]()"
            stored = "value.cast[DType.uint64]()"

        if signed:
            extract = (
                f"        var bits = ((raw.cast[DType.uint64]() << {window.left})"
                f".cast[DType.int64]() >> {window.right})"
            )
        else:
            extract = f"        var bits = (raw.cast[DType.uint64]() << {window.left}) >> {window.right}"
        return [
            "    @always_inline",
            f"    fn get_{entry.name}(self) -> {mapped}:",
            f"        var raw = {pointer}[]",
            extract,
            f"        return {result}",
            "",
            "    @always_inline",
            f"    fn set_{entry.name}(mut self, value: {mapped}):",
            f"        var ptr = {pointer}",
            f"        var bits = (({stored}) << {window.shift}) & {window.mask:#x}",
            f"        var kept = ptr[].cast[DType.uint64]() & ~UInt64({window.mask:#x})",
            f"        ptr[] = (kept | bits).cast[DType.{_MOJO_DTYPE[raw]}]()",
        ]

    def external_imports(self, content_lines: list[str]) -> tuple["ExternalImport", ...]:
        text = "\n".join(content_lines)
        names = tuple(
            name for name in ("OwnedDLHandle", "c_char", "external_call") if name in text
        )
        if not names:
            return ()
        return (ExternalImport(module="ffi", names=names),)


# ===--- C# target ---=== #

CSHARP_CLASS_NAME = "NativeMethods"
_CSHARP_UINT = {1: "byte", 2: "ushort", 4: "uint", 8: "ulong"}
_CSHARP_FIXED_ELEMENTS = {
    "sbyte", "byte", "short", "ushort", "int", "uint", "long", "ulong", "float", "double",
}


class CSharpGenerator(BindingGenerator):
    target = TARGET_CSHARP
    extension = "cs"
    comment = "//"

    def render_enum(self, decl: Enum) -> list[str]:
        base = CSHARP_INTEGERS[(decl.underlying.width, decl.underlying.signed)]
        lines = [f"public enum {decl.name} : {base}", "{"]
        for value in decl.values:
            lines.append(f"    {csharp_identifier(value.name)} = {value.value},")
        lines.extend(["}", ""])
        return lines

    def render_opaque(self, decl: Opaque) -> list[str]:
        return [
            f"/// <summary>Opaque C {decl.tag_kind} {decl.name}. Use through a pointer only.</summary>",
            f"public partial struct {decl.name}",
            "{",
            "}",
            "",
        ]

    def render_typedef(self, decl: Typedef) -> list[str]:
        # C# has no namespace-level aliases; uses resolve to the underlying type.
        if not isinstance(decl.type, Array):
            self.map(decl.type, decl.name)
        return []

    def render_function_pointer(self, decl: FunctionPointerType) -> list[str]:
        return [
            f"public unsafe partial struct {decl.name}",
            "{",
            f"    public {self.map(decl.signature, decl.name)} Pointer;",
            "}",
            "",
        ]

    def render_function(self, decl: Function) -> list[str]:
        if decl.variadic:
            raise self.unmappable(decl.name, "Variadic function")
        names = self.param_names(decl, csharp_identifier)
        params = ", ".join(
            f"{self.map(p.type, decl.name)} {name}" for name, p in zip(names, decl.params)
        )
        ret = self.map(decl.return_type, decl.name)
        return [
            f'[DllImport(LibraryName, CallingConvention = CallingConvention.Cdecl, EntryPoint = "{decl.name}")]',
            f"public static extern {ret} {csharp_identifier(decl.name)}({params});",
            "",
        ]

    def render_variable(self, decl: Variable) -> list[str]:
        pointer = self.map(Pointer(variable_pointee(decl), decl.const), decl.name)
        return [
            f"/// <summary>Address of the C global {decl.name}.</summary>",
            (
                f"public static {pointer} {csharp_identifier(decl.name)} => "
                f'({pointer})NativeLibrary.GetExport(NativeLibrary.Load(LibraryName), "{decl.name}");'
            ),
            "",
        ]

    def render_aggregate(self, decl: Aggregate, info: LayoutInfo) -> list[str]:
        attributes = ["LayoutKind.Explicit"]
        if info.size:
            attributes.append(f"Size = {info.size}")
        attributes.append(f"Pack = {info.alignment}")
        lines = [
            f"[StructLayout({', '.join(attributes)})]",
            f"public unsafe partial struct {decl.name}",
            "{",
        ]
        body: list[str] = []
        for entry in info.fields:
            if _is_flexible_array(entry):
                continue
            if entry.is_bitfield:
                body.extend(self._bitfield_property(decl, info, entry))
            else:
                body.append(self._field(decl, entry))
        lines.extend(f"    {line}" if line else "" for line in body)
        lines.extend(["}", ""])
        return lines

    def _field(self, decl: Aggregate, entry: FieldLayout) -> str:
        name = csharp_identifier(entry.name)
        prefix = f"[FieldOffset({entry.offset})] public"
        if not isinstance(entry.type, Array):
            return f"{prefix} {self.map(entry.type, decl.name)} {name};"
        element, count = entry.type, 1
        while isinstance(element, Array):
            count *= element.length or 0
            element = element.element
        mapped = None
        if isinstance(element, Primitive) and element.kind != "void":
            mapped = self.map(element, decl.name)
        if mapped in _CSHARP_FIXED_ELEMENTS:
            return f"{prefix} fixed {mapped} {name}[{count}];"
        return f"{prefix} fixed byte {name}[{entry.size}];"

    def _bitfield_property(self, decl: Aggregate, info: LayoutInfo, entry: FieldLayout) -> list[str]:
        kind = _bitfield_value_kind(entry.type, self.unit)
        window = bit_window(entry, info.size)
        if kind is None or window is None:
            raise self.unmappable(decl.name, f"Bitfield {entry.name}")
        mapped = self.map(entry.type, decl.name)
        raw = _CSHARP_UINT[window.size]
        storage = f"_{entry.name}_bits"
        shifted = f"((ulong){storage} << {window.left})"
        if _is_signed_value(entry.type, self.unit):
            getter = f"({mapped})((long){shifted} >> {window.right})"
        else:
            getter = f"({mapped})({shifted} >> {window.right})"
        return [
            f"[FieldOffset({window.offset})] private {raw} {storage};",
            f"public {mapped} {csharp_identifier(entry.name)}",
            "{",
            f"    get => {getter};",
            (
                f"    set => {storage} = ({raw})(((ulong){storage} & ~{window.mask:#x}UL)"
                f" | (((ulong)value << {window.shift}) & {window.mask:#x}UL));"
            ),
            "}",
        ]

    def external_imports(self, content_lines: list[str]) -> tuple["ExternalImport", ...]:
        return (ExternalImport(module="System.Runtime.InteropServices", names=()),)

    def build_content(
        self,
        module_name: str,
        library: str,
        blocks: list[tuple[Declaration, list[str]]],
    ) -> list[str]:
        """Place types in the namespace; functions and globals in the static class."""
        members = (Function, Variable)
        types = super().build_content(
            module_name, library, [(d, b) for d, b in blocks if not isinstance(d, members)]
        )
        functions = super().build_content(
            module_name, library, [(d, b) for d, b in blocks if isinstance(d, members)]
        )
        lines = [f"namespace {module_name}", "{"]
        if types:
            lines.extend(_indent(types, "    "))
            lines.append("")
        lines.append(f"    public static unsafe partial class {CSHARP_CLASS_NAME}")
        lines.append("    {")
        lines.append(f'        public const string LibraryName = "{library}";')
        if functions:
            lines.append("")
            lines.extend(_indent(functions, "        "))
        lines.extend(["    }", "}"])
        return lines


GENERATORS: dict[str, type[BindingGenerator]] = {
    TARGET_MOJO: MojoGenerator,
    TARGET_CSHARP: CSharpGenerator,
}


# ===--- Package writer ---=== #

TARGET_LABELS = {TARGET_MOJO: "Mojo", TARGET_CSHARP: "C#"}


@dataclass(frozen=True)
class WriteConfig:
    """Shared generation metadata embedded in every file header.

    Attributes:
        target: Target language key, "mojo" or "csharp".
        library: Library name shown in headers and used for C# DllImport.
        module_name: Output filename stem; also the C# namespace.
    """

    target: str
    library: str
    module_name: str = DEFAULT_MODULE_NAME

    @property
    def generator(self) -> type[BindingGenerator]:
        return GENERATORS[self.target]


@dataclass(frozen=True)
class ExternalImport:
    """Import from a non-generated module.

    Mojo renders ``from <module> import <names>``; names must be non-empty.
    C# renders ``using <module>;`` and ignores names.
    """

    module: str
    names: tuple[str, ...]


@dataclass(frozen=True)
class ModuleSpec:
    """Complete input for one generated binding file.

    Attributes:
        filename: Output filename including the target extension.
        platforms: Triple labels the file is valid for, shown in the header.
        external_imports: Imports in declaration order.
        content_lines: Generated source lines without header or imports.
    """

    filename: str
    platforms: tuple[str, ...]
    external_imports: tuple[ExternalImport, ...]
    content_lines: tuple[str, ...]


@dataclass(frozen=True)
class FileWriteResult:
    """Result of writing a single generated file.

    Attributes:
        filename: Filename written, e.g. "bindings.mojo".
        path: Absolute path of the written file.
        line_count: Number of newline characters in the written UTF-8 content.
        byte_count: Number of bytes written (UTF-8 encoded).
    """

    filename: str
    path: Path
    line_count: int
    byte_count: int


@dataclass(frozen=True)
class PackageWriteResult:
    output_dir: Path
    files: tuple[FileWriteResult, ...]

    @property
    def total_lines(self) -> int:
        """Sum of line_count across all written files."""
        return sum(f.line_count for f in self.files)


_HEADER_BORDER: str = "x-------------------------------------------x"


def module_filename(config: WriteConfig, triple: PlatformTriple | None = None) -> str:
    extension = config.generator.extension
    if triple is None:
        return f"{config.module_name}.{extension}"
    return f"{config.module_name}_{triple.slug}.{extension}"


def format_file_header(config: WriteConfig, platforms: tuple[str, ...]) -> list[str]:
    """Return comment-block lines for a generated module file header.

    Output format (Mojo; C# uses // instead of #):
        # x-------------------------------------------x #
        # | my_c_library bindings for Mojo
        # | Generated by cabigen
        # | Platforms: linux/x86_64, windows/x86_64
        # x-------------------------------------------x #

    Raises:
        ValueError: If platforms is empty.
    """
    if not platforms:
        raise ValueError("platforms must not be empty")
    comment = config.generator.comment
    border = f"{comment} {_HEADER_BORDER} {comment}"
    return [
        border,
        f"{comment} | {config.library} bindings for {TARGET_LABELS[config.target]}",
        f"{comment} | Generated by cabigen",
        f"{comment} | Platforms: {', '.join(platforms)}",
        border,
    ]


def format_import_block(config: WriteConfig, imports: tuple[ExternalImport, ...]) -> list[str]:
    lines: list[str] = []
    for imp in imports:
        if config.target == TARGET_CSHARP:
            lines.append(f"using {imp.module};")
            continue
        if not imp.names:
            raise ValueError(f"ExternalImport for module '{imp.module}' has empty names tuple")
        lines.append(f"from {imp.module} import {', '.join(imp.names)}")
    return lines


def assemble_module_source(config: WriteConfig, spec: ModuleSpec) -> str:
    """Assemble a complete binding source string from a ModuleSpec.

    Header block, blank line, imports, blank line, content, trailing newline.
    Sections that are empty are left out together with their blank line.

    Raises:
        ValueError: If spec.filename does not carry the target's extension.
    """
    extension = f".{config.generator.extension}"
    if not spec.filename or not spec.filename.endswith(extension):
        raise ValueError(
            f"spec.filename must be non-empty and end with '{extension}', got {spec.filename!r}"
        )

    parts: list[str] = list(format_file_header(config, spec.platforms))
    if spec.external_imports:
        parts.append("")
        parts.extend(format_import_block(config, spec.external_imports))
    if spec.content_lines:
        parts.append("")
        parts.extend(spec.content_lines)
    return "\n".join(parts) + "\n"


def write_text_file(path: Path, content: str) -> FileWriteResult:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    resolved = path.resolve()
    return FileWriteResult(
        filename=path.name,
        path=resolved,
        line_count=content.count("\n"),
        byte_count=len(resolved.read_bytes()),
    )


def write_module(output_dir: Path, config: WriteConfig, spec: ModuleSpec) -> FileWriteResult:
    """Write a single generated module; creates output_dir when missing.

    Raises:
        ValueError: Propagated from assemble_module_source on invalid spec.
        OSError: Propagated directly if the filesystem write fails.
    """
    content = assemble_module_source(config, spec)
    return write_text_file(Path(output_dir) / spec.filename, content)


def write_package(
    output_dir: Path,
    config: WriteConfig,
    module_specs: tuple[ModuleSpec, ...],
) -> PackageWriteResult:
    """Write every module spec in order. Partial writes are possible on OSError."""
    files = tuple(write_module(output_dir, config, spec) for spec in module_specs)
    return PackageWriteResult(output_dir=Path(output_dir), files=files)


def diff_against_disk(outputs: dict[Path, str]) -> tuple[str, ...]:
    """Print a unified diff for every output whose file content differs.

    Returns the drifted paths; nothing is written.
    """
    drifted = []
    for path in sorted(outputs):
        content = outputs[path]
        existing = path.read_text(encoding="utf-8") if path.exists() else ""
        if existing == content:
            continue
        diff = difflib.unified_diff(
            existing.splitlines(),
            content.splitlines(),
            fromfile=f"a/{path}",
            tofile=f"b/{path}",
            lineterm="",
        )
        print("\n".join(diff))
        drifted.append(str(path))
    return tuple(drifted)


# ===--- Per-triple analysis ---=== #


@dataclass(frozen=True)
class TripleResult:
    """Everything computed for one platform triple, independent of the others.

    Attributes:
        declarations: Declarations to emit, in emission order.
        blocks: Rendered lines per emitted declaration that mapped cleanly.
        signatures: Mapped target signature per emitted declaration.
        failures: UnmappableType errors collected while rendering.
    """

    triple: PlatformTriple
    unit: TranslationUnit
    layouts: dict[str, LayoutInfo]
    declarations: tuple[Declaration, ...]
    blocks: dict[str, tuple[str, ...]]
    signatures: dict[str, str]
    failures: tuple[UnmappableType, ...]

    @property
    def emitted(self) -> dict[str, Declaration]:
        return {decl.name: decl for decl in self.declarations}


def analyze_translation_unit(
    text: str,
    triple: PlatformTriple,
    target: str = DEFAULT_TARGET,
    options: ExtractOptions | None = None,
    filename: str = "<input>",
) -> TripleResult:
    """Run extraction, layout and mapping for one triple.

    Fatal BindgenErrors propagate with the triple filled in. UnmappableType
    errors are collected in the result instead.
    """
    try:
        unit = extract_declarations(text, triple, options, filename)
        ignore = options.ignore if options else ()
        needed = emission_closure(unit, ignore)
        calculator = LayoutCalculator(unit)
        layouts = {
            decl.name: calculator.layout(decl.name)
            for decl in unit.of_kind("struct", "union")
            if needed.get(decl.name)
        }
        plan = plan_emission(unit, ignore)
        generator = GENERATORS[target](unit, layouts)
        blocks: dict[str, tuple[str, ...]] = {}
        signatures: dict[str, str] = {}
        failures: list[UnmappableType] = []
        for decl in plan:
            try:
                blocks[decl.name] = tuple(generator.render(decl))
                signatures[decl.name] = generator.signature(decl)
            except UnmappableType as err:
                blocks.pop(decl.name, None)
                failures.append(err)
    except BindgenError as err:
        if err.triple is None:
            err.triple = triple.label
        raise

    return TripleResult(
        triple=triple,
        unit=unit,
        layouts=layouts,
        declarations=tuple(plan),
        blocks=blocks,
        signatures=signatures,
        failures=tuple(failures),
    )


def _analyze_input(spec: InputSpec, config: GenerateConfig) -> TripleResult:
    text = Path(spec.path).read_text(encoding="utf-8")
    return analyze_translation_unit(
        text, spec.triple, config.target, config.options, str(spec.path)
    )


def analyze_inputs(config: GenerateConfig) -> list[TripleResult]:
    """Analyze every input; with jobs > 1 the triples run on a thread pool.

    The first fatal error cancels the work still queued and propagates.
    """
    if config.jobs <= 1 or len(config.inputs) <= 1:
        return [_analyze_input(spec, config) for spec in config.inputs]

    results = []
    with ThreadPoolExecutor(max_workers=config.jobs) as pool:
        futures = {pool.submit(_analyze_input, spec, config): spec for spec in config.inputs}
        try:
            for fut in as_completed(futures):
                results.append(fut.result())
        except BaseException:
            for fut in futures:
                fut.cancel()
            raise
    return sorted(results, key=lambda r: r.triple.label)


# ===--- Cross-platform consistency ---=== #

DIVERGENCE_KINDS = ("layout", "enum", "signature", "presence")


@dataclass(frozen=True)
class DivergenceGroup:
    triples: tuple[str, ...]
    value: object


@dataclass(frozen=True)
class Divergence:
    """A declaration whose fingerprint is not the same on every triple."""

    name: str
    kind: str
    groups: tuple[DivergenceGroup, ...]


def field_record(entry: FieldLayout) -> dict:
    record = {"name": entry.name, "offset": entry.offset, "size": entry.size}
    if entry.is_bitfield:
        record["bit_offset"] = entry.bit_offset
        record["bit_width"] = entry.bit_width
    return record


def layout_record(info: LayoutInfo) -> dict:
    return {
        "size": info.size,
        "alignment": info.alignment,
        "fields": [field_record(entry) for entry in info.fields],
    }


def enum_record(decl: Enum) -> dict:
    width = decl.underlying.width // 8
    return {"size": width, "alignment": width, "signed": decl.underlying.signed}


def fingerprint(result: TripleResult, decl: Declaration) -> tuple[str, object]:
    """Divergence kind and comparable value of one declaration on one triple."""
    if isinstance(decl, Aggregate):
        record = layout_record(result.layouts[decl.name])
        record["types"] = [describe_type(entry.type) for entry in result.layouts[decl.name].fields]
        return "layout", record
    if isinstance(decl, Opaque):
        return "layout", {"opaque": decl.tag_kind}
    if isinstance(decl, Enum):
        record = enum_record(decl)
        record["values"] = [[value.name, value.value] for value in decl.values]
        return "enum", record
    return "signature", result.signatures.get(decl.name)


def _group(values: list[tuple[str, object]]) -> tuple[DivergenceGroup, ...]:
    groups: dict[str, tuple[list[str], object]] = {}
    for label, value in values:
        key = json.dumps(value, sort_keys=True)
        groups.setdefault(key, ([], value))[0].append(label)
    return tuple(DivergenceGroup(tuple(labels), value) for labels, value in groups.values())


def check_consistency(results: list[TripleResult]) -> list[Divergence]:
    """Compare every emitted declaration across triples.

    A declaration missing from some triples diverges with kind "presence";
    otherwise the fingerprints decide. Returned sorted by name.
    """
    names: dict[str, None] = {}
    for result in results:
        for decl in result.declarations:
            names.setdefault(decl.name, None)

    divergences = []
    for name in sorted(names):
        present = [(r.triple.label, name in r.emitted) for r in results]
        if not all(flag for _, flag in present):
            divergences.append(Divergence(name, "presence", _group(present)))
            continue
        values = []
        kind = ""
        for result in results:
            kind, value = fingerprint(result, result.emitted[name])
            values.append((result.triple.label, value))
        groups = _group(values)
        if len(groups) > 1:
            divergences.append(Divergence(name, kind, groups))
    return divergences


def format_divergence(divergence: Divergence) -> str:
    sides = " | ".join(", ".join(group.triples) for group in divergence.groups)
    return f"{divergence.name} [{divergence.kind}]: {sides}"


# ===--- Layout report ---=== #


def build_layout_report(
    target: str,
    results: list[TripleResult],
    divergences: list[Divergence],
    failures: tuple[BindgenError, ...],
    unified: bool,
) -> dict:
    """Build the JSON-ready layout report for one run.

    Structs, unions and enums are listed by name with their header location
    (from the first triple) and one record per triple that emits them.
    Failures are sorted by triple, then declaration.
    """
    declarations: dict[str, dict] = {}
    for result in results:
        for decl in result.declarations:
            if isinstance(decl, Aggregate):
                record = layout_record(result.layouts[decl.name])
            elif isinstance(decl, Enum):
                record = enum_record(decl)
            else:
                continue
            entry = declarations.setdefault(
                decl.name,
                {
                    "name": decl.name,
                    "kind": decl.kind,
                    "source": source_location(decl),
                    "triples": {},
                },
            )
            entry["triples"][result.triple.label] = record

    return {
        "format": REPORT_FORMAT_VERSION,
        "target": target,
        "triples": [result.triple.label for result in results],
        "unified": unified,
        "declarations": [declarations[name] for name in sorted(declarations)],
        "divergences": [
            {
                "name": d.name,
                "kind": d.kind,
                "groups": [{"triples": list(g.triples), "value": g.value} for g in d.groups],
            }
            for d in divergences
        ],
        "failures": [
            {
                "code": err.code,
                "declaration": err.declaration,
                "triple": err.triple,
                "message": err.message,
            }
            for err in sorted(failures, key=lambda e: (e.triple or "", e.declaration or ""))
        ],
    }


def format_layout_report(report: dict) -> str:
    return json.dumps(report, indent=2, sort_keys=True) + "\n"


# ===--- Module assembly ---=== #


def build_module_spec(
    config: WriteConfig,
    result: TripleResult,
    platforms: tuple[str, ...],
    filename: str,
) -> ModuleSpec:
    generator = config.generator(result.unit, result.layouts)
    blocks = [
        (decl, list(result.blocks[decl.name]))
        for decl in result.declarations
        if decl.name in result.blocks
    ]
    content = generator.build_content(config.module_name, config.library, blocks)
    return ModuleSpec(
        filename=filename,
        platforms=platforms,
        external_imports=generator.external_imports(content),
        content_lines=tuple(content),
    )


def build_module_specs(
    config: WriteConfig,
    results: list[TripleResult],
    unified: bool,
) -> tuple[ModuleSpec, ...]:
    """One unified module when every triple agrees, else one per triple."""
    if unified:
        platforms = tuple(r.triple.label for r in results)
        return (build_module_spec(config, results[0], platforms, module_filename(config)),)
    return tuple(
        build_module_spec(config, r, (r.triple.label,), module_filename(config, r.triple))
        for r in results
    )


# ===--- Pipeline ---=== #


@dataclass(frozen=True)
class GenerationResult:
    """Outcome of one run.

    Attributes:
        results: Per-triple analysis results, sorted by triple label.
        divergences: Cross-triple differences, sorted by declaration name.
        failures: Collected UnmappableType errors from every triple.
        outputs: Rendered content per output path, report included.
        write_result: Files written, or None when nothing was written.
        drift: Paths whose on-disk content differs (check mode only).
        check: True when the run compared against disk instead of writing.
    """

    results: tuple[TripleResult, ...]
    divergences: tuple[Divergence, ...]
    failures: tuple[UnmappableType, ...]
    outputs: dict[Path, str]
    write_result: PackageWriteResult | None
    report_path: Path
    drift: tuple[str, ...] = ()
    check: bool = False

    @property
    def unified(self) -> bool:
        return not self.divergences

    @property
    def ok(self) -> bool:
        return not self.failures and not self.drift


def run_generate(config: GenerateConfig) -> GenerationResult:
    """Execute the complete pipeline for a GenerateConfig.

    Raises:
        BindgenError: Any fatal extraction, layout or platform error.
        OSError: Input not readable or filesystem write failure.
    """
    labels = ", ".join(spec.triple.label for spec in config.inputs)
    print(f"Parsing: {len(config.inputs)} translation unit(s) for {labels}")
    results = analyze_inputs(config)
    for result in results:
        print(
            f"  Extracted: {result.triple.label}: {len(result.unit.declarations)} declarations, "
            f"{len(result.declarations)} to emit, {len(result.layouts)} layouts"
        )

    divergences = check_consistency(results)
    failures = tuple(err for result in results for err in result.failures)
    unified = not divergences
    print(f"  Consistency: {len(divergences)} divergence(s), {'unified' if unified else 'per-triple'} output")

    write_config = WriteConfig(
        target=config.target, library=config.library, module_name=config.module_name
    )
    report_text = format_layout_report(
        build_layout_report(config.target, results, divergences, failures, unified)
    )
    specs = () if failures else build_module_specs(write_config, results, unified)
    outputs = {
        config.output_dir / spec.filename: assemble_module_source(write_config, spec)
        for spec in specs
    }
    outputs[config.report_path] = report_text

    def finish(write_result=None, drift=()):
        return GenerationResult(
            results=tuple(results),
            divergences=tuple(divergences),
            failures=failures,
            outputs=outputs,
            write_result=write_result,
            report_path=config.report_path,
            drift=drift,
            check=config.check,
        )

    if config.check:
        drift = diff_against_disk(outputs)
        print(f"  Check: {len(drift)} of {len(outputs)} file(s) out of date")
        result = finish(drift=drift)
        print_generation_summary(build_generation_summary(write_config, result))
        return result

    write_text_file(config.report_path, report_text)
    if failures:
        print(f"  Failed: {len(failures)} unmappable declaration(s); wrote {config.report_path} only")
        result = finish()
    else:
        write_result = write_package(config.output_dir, write_config, specs)
        print(
            f"  Written: {len(write_result.files)} files, "
            f"{write_result.total_lines} lines to {write_result.output_dir}"
        )
        result = finish(write_result=write_result)

    print_generation_summary(build_generation_summary(write_config, result))
    return result


# ===--- Summary report ---=== #


@dataclass(frozen=True)
class DeclarationCounts:
    """Emitted declarations by kind, counted once across all triples."""

    functions: int
    structs: int
    unions: int
    enums: int
    typedefs: int
    function_pointers: int
    opaques: int
    variables: int = 0


@dataclass(frozen=True)
class GenerationSummary:
    """Complete, immutable data for the post-generation console report."""

    target_label: str
    library: str
    platforms: tuple[str, ...]
    output_dir: str
    report_path: str
    counts: DeclarationCounts
    files: tuple[FileWriteResult, ...]
    divergences: tuple[Divergence, ...]
    failures: tuple[BindgenError, ...]
    check: bool = False
    drift: tuple[str, ...] = ()


def build_declaration_counts(results: tuple[TripleResult, ...]) -> DeclarationCounts:
    kinds: dict[str, str] = {}
    for result in results:
        for decl in result.declarations:
            kinds.setdefault(decl.name, decl.kind)
    tally = defaultdict(int)
    for kind in kinds.values():
        tally[kind] += 1
    return DeclarationCounts(
        functions=tally["function"],
        structs=tally["struct"],
        unions=tally["union"],
        enums=tally["enum"],
        typedefs=tally["typedef"],
        function_pointers=tally["function_pointer"],
        opaques=tally["opaque"],
        variables=tally["variable"],
    )


def build_generation_summary(config: WriteConfig, result: GenerationResult) -> GenerationSummary:
    files = result.write_result.files if result.write_result else ()
    output_dir = str(result.write_result.output_dir) if result.write_result else ""
    return GenerationSummary(
        target_label=TARGET_LABELS[config.target],
        library=config.library,
        platforms=tuple(r.triple.label for r in result.results),
        output_dir=output_dir or str(result.report_path.parent),
        report_path=str(result.report_path),
        counts=build_declaration_counts(result.results),
        files=files,
        divergences=result.divergences,
        failures=result.failures,
        check=result.check,
        drift=result.drift,
    )


def format_generation_summary(summary: GenerationSummary) -> str:
    """Render a GenerationSummary as the multi-section console report.

    Returns a string with exactly one trailing newline.
    """
    if summary.failures:
        heading = f"{summary.target_label} bindings not generated:"
    elif summary.check:
        heading = f"{summary.target_label} bindings checked:"
    else:
        heading = f"{summary.target_label} bindings generated:"

    lines: list[str] = [heading, ""]
    lines.append(f"  Library:    {summary.library}")
    lines.append(f"  Platforms:  {', '.join(summary.platforms)}")
    lines.append(f"  Output:     {summary.output_dir}")
    lines.append(f"  Report:     {summary.report_path}")
    lines.append("")
    lines.append("  Declarations emitted:")

    counts = summary.counts
    for label, count in (
        ("Functions:", counts.functions),
        ("Structs:", counts.structs),
        ("Unions:", counts.unions),
        ("Enums:", counts.enums),
        ("Typedefs:", counts.typedefs),
        ("Fn pointers:", counts.function_pointers),
        ("Opaque:", counts.opaques),
        ("Variables:", counts.variables),
    ):
        lines.append(f"    {label:<13}{count:>6}")

    if summary.files:
        lines.append("")
        lines.append("  Files written:")
        for file_result in summary.files:
            line_str = f"{file_result.line_count:>6,} lines"
            lines.append(f"    {file_result.filename:<36} {line_str}")
        total_lines = sum(f.line_count for f in summary.files)
        lines.append("")
        lines.append(f"  Total: {total_lines:,} lines across {len(summary.files)} files")

    if summary.check:
        lines.append("")
        if summary.drift:
            lines.append(f"  Out of date: {len(summary.drift)} file(s)")
            lines.extend(f"    {path}" for path in summary.drift)
        else:
            lines.append("  Up to date.")

    lines.append("")
    if summary.divergences:
        lines.append(f"  Divergences ({len(summary.divergences)}):")
        lines.extend(f"    {format_divergence(d)}" for d in summary.divergences)
    else:
        lines.append("  Divergences: none (unified module)")

    if summary.failures:
        lines.append("")
        lines.append(f"  Failures ({len(summary.failures)}):")
        lines.extend(f"    {format_bindgen_error(err)}" for err in summary.failures)

    lines.append("")
    return "\n".join(lines)


def print_generation_summary(summary: GenerationSummary) -> None:
    """Print the generation summary to stdout.

    Kept apart from format_generation_summary so the formatter stays testable
    without stdout capture.
    """
    print(format_generation_summary(summary), end="")


# ===--- Main generation ---=== #


def main(argv: list[str] | None = None):
    try:
        config = build_config(argv)
    except ConfigError as err:
        print(f"Config error [{err.code}]: {err.message}")
        if err.suggestion:
            print(f"Hint: {err.suggestion}")
        raise SystemExit(1) from err
    except BindgenError as err:
        print(format_bindgen_error(err))
        if err.suggestion:
            print(f"Hint: {err.suggestion}")
        raise SystemExit(1) from err

    try:
        result = run_generate(config)
    except BindgenError as err:
        print(format_bindgen_error(err))
        if err.suggestion:
            print(f"Hint: {err.suggestion}")
        raise SystemExit(1) from err
    except OSError as err:
        print(f"Error: {err}")
        raise SystemExit(1) from err
    except (RuntimeError, ValueError) as err:
        print(f"Internal error: {err}")
        raise SystemExit(1) from err

    if not result.ok:
        raise SystemExit(1)


if __name__ == "__main__":
    main()
