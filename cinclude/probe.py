"""Resolve macro values by compiling and running a probe program.

Some macros only have a value once the preprocessor and the compiler have
done their work (``#define TCSANOW 0`` is easy, ``#define B38400 0000017``
too, but ``#define O_ACCMODE (O_RDONLY|O_WRONLY|O_RDWR)`` is not). For those,
:class:`MacroProbe` writes a small C++ program that includes the headers and
prints every requested macro as::

    <delimiter>const NAME = VALUE

where ``VALUE`` is a Python literal chosen by the macro's C++ type (strings
quoted, ``char`` as ``chr(N)``, byte-sized integers widened). The output is
split on the delimiter and each segment becomes a
:class:`~cinclude.ir.Constant`. Segments are matched to requested names by
the name they carry, never by position.

Before compiling, the program is checked with libclang and entries that do
not compile (macros naming types, function designators, struct values...) are
dropped, so one unprintable macro does not fail the whole batch.
"""

from __future__ import (
    annotations,
)

import ast
import logging
import os
import re
import subprocess
import tempfile
from typing import (
    TYPE_CHECKING,
    Union,
)

from cinclude.errors import (
    CIncludeError,
    ProbeError,
    ProbeFormatError,
)
from cinclude.includes import (
    include_args,
)
from cinclude.ir import (
    Constant,
    ConstantKind,
)

if TYPE_CHECKING:
    from cinclude.pipeline import HeaderRequest

logger = logging.getLogger(__name__)

PROBE_DELIMITER = "\n@@cinclude@@"
PROBE_SOURCE = "cinclude_probe.cpp"
PROBE_STD = "-std=c++11"

# Bounded: each pass can only remove entries
MAX_PRUNE_PASSES = 3

_PRELUDE = r"""#include <stdio.h>
#include <stdint.h>

static const char cinclude_delimiter[] = "%(delimiter)s";

static void cinclude_emit(const char *cinclude_v) {
    if (!cinclude_v) { fputs("None", stdout); return; }
    fputs("b\"", stdout);
    for (const unsigned char *p = (const unsigned char *)cinclude_v; *p; ++p) {
        if (*p == '"' || *p == '\\') printf("\\%%c", *p);
        else if (*p < 32 || *p > 126) printf("\\x%%02x", *p);
        else putchar(*p);
    }
    putchar('"');
}
static void cinclude_emit(char cinclude_v) { printf("chr(%%d)", (int)(unsigned char)cinclude_v); }
static void cinclude_emit(signed char cinclude_v) { printf("%%d", (int)cinclude_v); }
static void cinclude_emit(unsigned char cinclude_v) { printf("%%u", (unsigned)cinclude_v); }
static void cinclude_emit(bool cinclude_v) { fputs(cinclude_v ? "True" : "False", stdout); }
static void cinclude_emit(short cinclude_v) { printf("%%d", (int)cinclude_v); }
static void cinclude_emit(unsigned short cinclude_v) { printf("%%u", (unsigned)cinclude_v); }
static void cinclude_emit(int cinclude_v) { printf("%%d", cinclude_v); }
static void cinclude_emit(unsigned int cinclude_v) { printf("%%u", cinclude_v); }
static void cinclude_emit(long cinclude_v) { printf("%%ld", cinclude_v); }
static void cinclude_emit(unsigned long cinclude_v) { printf("%%lu", cinclude_v); }
static void cinclude_emit(long long cinclude_v) { printf("%%lld", cinclude_v); }
static void cinclude_emit(unsigned long long cinclude_v) { printf("%%llu", cinclude_v); }
static void cinclude_emit(float cinclude_v) { printf("%%.9g", (double)cinclude_v); }
static void cinclude_emit(double cinclude_v) { printf("%%.17g", cinclude_v); }
static void cinclude_emit(long double cinclude_v) { printf("%%.21Lg", cinclude_v); }
static void cinclude_emit(const void *cinclude_v) { printf("%%llu", (unsigned long long)(uintptr_t)cinclude_v); }
static void cinclude_emit(decltype(nullptr)) { fputs("0", stdout); }
static void cinclude_emit(const wchar_t *) = delete;
template <typename R, typename... A> void cinclude_emit(R (*)(A...)) = delete;

extern "C" {
"""

_ENTRY = 'fputs(cinclude_delimiter, stdout); fputs("const %(name)s = ", stdout); cinclude_emit(%(name)s);'

_SEGMENT_RE = re.compile(r"^const\s+([A-Za-z_]\w*)\s*=\s*(.+)$", re.DOTALL)
_CHR_RE = re.compile(r"^chr\((\d+)\)$")


def _c_string(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


class ProbeProgram:
    """Source of one probe program.

    :param headers: Header paths to include.
    :param names: Macro names to print, in order.

    :attr:`entry_lines` maps the 1-based source line of each entry to its
    macro name, so that compiler diagnostics can be traced back to a macro.
    """

    def __init__(self, headers: list[str], names: list[str]) -> None:
        self.headers = list(headers)
        self.names = list(names)
        self.entry_lines: dict[int, str] = {}
        self.source = self._render()

    def _render(self) -> str:
        lines = (_PRELUDE % {"delimiter": _c_string(PROBE_DELIMITER)}).splitlines()
        for header in self.headers:
            lines.append(f'#include "{_c_string(os.path.abspath(header))}"')
        lines.append("}")
        lines.append("")
        lines.append("int main(void) {")
        for name in self.names:
            lines.append("    " + _ENTRY % {"name": name})
            self.entry_lines[len(lines)] = name
        lines.append('    fputs("\\n", stdout);')
        lines.append("    return 0;")
        lines.append("}")
        return "\n".join(lines) + "\n"

    def without(self, names: set[str]) -> ProbeProgram:
        return ProbeProgram(self.headers, [name for name in self.names if name not in names])


def parse_segment(segment: str) -> tuple[str, Union[int, float, str, bool], ConstantKind]:
    """Parse one ``const NAME = VALUE`` probe segment.

    :returns: ``(name, value, kind)``.
    :raises ProbeFormatError: If the segment is malformed or the value is not
        one of the printed literal forms.
    """
    match = _SEGMENT_RE.match(segment.strip())
    if not match:
        raise ProbeFormatError(f"malformed probe segment {segment!r}")
    name, text = match.group(1), match.group(2).strip()

    chr_match = _CHR_RE.match(text)
    if chr_match:
        return name, chr(int(chr_match.group(1))), ConstantKind.CHAR
    if text in ("True", "False"):
        return name, text == "True", ConstantKind.BOOL
    if text.startswith(('b"', '"')):
        try:
            value = ast.literal_eval(text)
        except (ValueError, SyntaxError) as e:
            raise ProbeFormatError(f"bad string for {name}: {text!r}") from e
        # C strings are printed byte by byte
        if isinstance(value, bytes):
            value = value.decode("utf-8", "replace")
        return name, value, ConstantKind.STRING
    try:
        return name, int(text), ConstantKind.INTEGER
    except ValueError:
        pass
    try:
        return name, float(text), ConstantKind.FLOAT
    except ValueError as e:
        raise ProbeFormatError(f"unsupported value for {name}: {text!r}") from e


def parse_probe_output(output: str, names: list[str]) -> list[Constant]:
    """Turn probe output into constants for the requested ``names``.

    Empty segments are ignored. Segments naming something that was not
    requested, repeated names and unparsable values are logged and dropped.

    :returns: Constants in the order of ``names``.
    """
    requested = set(names)
    found: dict[str, Constant] = {}
    for segment in output.split(PROBE_DELIMITER):
        if not segment.strip():
            continue
        try:
            name, value, kind = parse_segment(segment)
        except ProbeFormatError as e:
            logger.warning("Dropping probe output: %s", e)
            continue
        if name not in requested or name in found:
            logger.warning("Dropping unexpected probe value for %s", name)
            continue
        found[name] = Constant(name=name, value=value, kind=kind, is_macro=True, probed=True)

    missing = [name for name in names if name not in found]
    if missing:
        logger.info("No probe value for %s", ", ".join(missing))
    return [found[name] for name in names if name in found]


class MacroProbe:
    """Resolves opaque macro names to constants with a native program.

    :param request: The header request (extra compiler flags, quiet flag).
    :param headers: Located header paths to include in the probe.
    :param search_path: System include directories, used by the libclang
        pre-check.
    """

    def __init__(self, request: HeaderRequest, headers: list[str], search_path: list[str]) -> None:
        self.request = request
        self.headers = headers
        self.search_path = search_path

    @property
    def compiler(self) -> str:
        return os.environ.get("CXX", "c++")

    def _note(self, msg: str, *args: object) -> None:
        if not self.request.quiet:
            logger.info(msg, *args)

    def _preprocessor_args(self) -> list[str]:
        args = [arg for arg in self.request.extra_args if arg.startswith(("-I", "-D", "-U"))]
        for header in self.headers:
            args.append(f"-I{os.path.dirname(os.path.abspath(header))}")
        return args

    def resolve(self, names: list[str]) -> list[Constant]:
        """Probe ``names`` (deduplicated) in one program.

        :returns: The resolved constants; empty if the program could not be
            built or run.
        """
        names = list(dict.fromkeys(names))
        if not names:
            return []

        program = self.prune(ProbeProgram(self.headers, names))
        if not program.names:
            return []

        try:
            output = self.run(program)
        except ProbeError as e:
            logger.error("%s", e)
            return []
        return parse_probe_output(output, program.names)

    def prune(self, program: ProbeProgram) -> ProbeProgram:
        """Drop entries that libclang reports as not compiling."""
        # pylint: disable=import-outside-toplevel
        from cinclude.libclang import (
            error_diagnostics,
            parse_header,
        )

        args = ["-x", "c++", PROBE_STD] + self._preprocessor_args() + include_args(self.search_path)
        for _ in range(MAX_PRUNE_PASSES):
            if not program.names:
                break
            try:
                tu = parse_header(
                    PROBE_SOURCE,
                    args,
                    unsaved_files=[(PROBE_SOURCE, program.source)],
                    skip_bodies=False,
                )
            except CIncludeError as e:
                logger.debug("Skipping probe pre-check: %s", e)
                break

            failing: set[str] = set()
            for diag in error_diagnostics(tu):
                loc = diag.location
                if loc.file is not None and os.path.basename(loc.file.name) == PROBE_SOURCE:
                    name = program.entry_lines.get(loc.line)
                    if name is not None:
                        failing.add(name)
            if not failing:
                break
            self._note("Can't probe %s", ", ".join(sorted(failing)))
            program = program.without(failing)
        return program

    def run(self, program: ProbeProgram) -> str:
        """Compile and execute ``program`` in a temporary directory.

        :returns: The program's standard output.
        :raises ProbeError: If compilation or execution fails.
        """
        with tempfile.TemporaryDirectory(prefix="cinclude-") as tmpdir:
            source = os.path.join(tmpdir, PROBE_SOURCE)
            binary = os.path.join(tmpdir, "cinclude_probe")
            with open(source, "w", encoding="utf-8") as f:
                f.write(program.source)

            cmd = [self.compiler, PROBE_STD, "-w", "-o", binary, source] + self._preprocessor_args()
            logger.debug("Compiling macro probe: %s", " ".join(cmd))
            try:
                subprocess.run(cmd, capture_output=True, text=True, check=True)
            except subprocess.CalledProcessError as e:
                raise ProbeError("compilation", f"{self.compiler} exited with {e.returncode}", e.stderr) from e
            except (OSError, subprocess.SubprocessError) as e:
                raise ProbeError("compilation", str(e)) from e

            try:
                result = subprocess.run([binary], capture_output=True, text=True, errors="replace", check=True)
            except subprocess.CalledProcessError as e:
                raise ProbeError("execution", f"probe exited with {e.returncode}", e.stderr) from e
            except (OSError, subprocess.SubprocessError) as e:
                raise ProbeError("execution", str(e)) from e
            return result.stdout
