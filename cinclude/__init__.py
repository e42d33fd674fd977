import dataclasses
import json
import logging
import re
import sys
import types
from importlib.metadata import (
    version as get_version,
)
from typing import (
    IO,
    Optional,
    Union,
)

import click

from .includes import (
    discover_include_paths,
)
from .ir import (
    Declaration,
    declaration_kind,
)
from .pipeline import (
    HeaderRequest,
    wrap_headers,
)
from .registrar import (
    ConstantIndex,
    Registrar,
    constant_names,
)
from .synthesis import (
    DEFAULT_LIBRARY,
)

__version__ = get_version("cinclude")

__all__ = [
    "ConstantIndex",
    "HeaderRequest",
    "Registrar",
    "cinclude",
    "cli",
    "constant_names",
    "load",
    "wrap_headers",
]


def cinclude(
    *headers: str,
    namespace: Optional[Union[dict, types.ModuleType]] = None,
    include: Optional[str] = None,
    exclude: Optional[str] = None,
    lib: str = DEFAULT_LIBRARY,
    quiet: bool = False,
    extra_args: Optional[list[str]] = None,
    reserved_prefix: str = "_",
) -> Union[dict, types.ModuleType]:
    """Import the declarations of C headers into a namespace.

    :param headers: Header names (``"termios.h"``) or paths.
    :param namespace: Module or dict to register into (e.g. ``globals()``).
        A new module is created when omitted.
    :param include: Regex of names to keep even if ``exclude`` matches them.
    :param exclude: Regex of names to leave out.
    :param lib: Library the functions are bound to (default: the C library
        already loaded in the process).
    :param quiet: Suppress informational messages.
    :param extra_args: Extra compiler flags (``-I``, ``-D``...).
    :param reserved_prefix: Macro prefix treated as reserved.
    :returns: The namespace.
    :raises FilterPatternError: If ``include`` or ``exclude`` is not a valid
        regex.

    Example
    -------
    ::

        termios = cinclude("termios.h")
        t = termios.termios.zero()
        termios.tcgetattr(0, ctypes.byref(t))
    """
    if namespace is None:
        namespace = types.ModuleType("cinclude_" + "_".join(_module_name(h) for h in headers))

    request = HeaderRequest(
        headers=tuple(headers),
        include=include,
        exclude=exclude,
        library=lib,
        quiet=quiet,
        extra_args=tuple(extra_args or ()),
        reserved_prefix=reserved_prefix,
    )
    Registrar(namespace, quiet=quiet).register(wrap_headers(request))
    return namespace


def load(*headers: str, **options) -> types.ModuleType:
    """Like :func:`cinclude`, always into a new module."""
    options.pop("namespace", None)
    return cinclude(*headers, **options)


def _module_name(header: str) -> str:
    base = header.strip("<>").rsplit("/", 1)[-1]
    return "".join(c if c.isalnum() else "_" for c in base.rsplit(".", 1)[0])


def _declaration_json(decl: Declaration) -> dict:
    data = dataclasses.asdict(decl)
    data["kind"] = declaration_kind(decl)
    return data


def _check_pattern(ctx: click.Context, param: click.Parameter, value: Optional[str]) -> Optional[str]:
    if value is not None:
        try:
            re.compile(value)
        except re.error as e:
            raise click.BadParameter(f"invalid regex {value!r}: {e}", ctx=ctx, param=param) from e
    return value


CONTEXT_SETTINGS: dict[str, list[str]] = dict(help_option_names=["-h", "--help"])


@click.command(
    context_settings=CONTEXT_SETTINGS,
    help="""Extract declarations from C headers.

\b
Prints the declarations cinclude would register, one per line, or as JSON.
""",
)
# === General options ===
@click.option("--version", "-v", is_flag=True, help="Print version and exit.")
@click.option(
    "--quiet",
    "-q",
    is_flag=True,
    help="Suppress informational messages.",
)
@click.option(
    "--debug/--no-debug",
    default=False,
    help="Print debug info to stderr.",
)
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["text", "json"], case_sensitive=False),
    default="text",
    help="Output format (default: text).",
)
@click.option(
    "--list-include-paths",
    is_flag=True,
    help="Print the discovered system include paths and exit.",
)
# === Filtering options ===
@click.option(
    "--include",
    "-i",
    metavar="<regex>",
    callback=_check_pattern,
    help="Keep names matching regex even if excluded.",
)
@click.option(
    "--exclude",
    "-e",
    metavar="<regex>",
    callback=_check_pattern,
    help="Leave out names matching regex (enums are always kept).",
)
@click.option(
    "--lib",
    "-l",
    default=DEFAULT_LIBRARY,
    show_default=True,
    metavar="<name>",
    help="Library functions are bound to.",
)
# === Preprocessing options ===
@click.option(
    "--include-dir",
    "-I",
    multiple=True,
    metavar="<dir>",
    help="Add include search path.",
)
@click.option(
    "--define",
    "-D",
    "defines",
    multiple=True,
    metavar="<macro>",
    help="Define preprocessor macro.",
)
@click.option(
    "--output",
    "-o",
    "outfile",
    type=click.File("w"),
    default="-",
    help="Write output to file (default: stdout).",
)
@click.argument("headers", nargs=-1)
def cli(
    version: bool,
    quiet: bool,
    debug: bool,
    output_format: str,
    list_include_paths: bool,
    include: Optional[str],
    exclude: Optional[str],
    lib: str,
    include_dir: tuple[str, ...],
    defines: tuple[str, ...],
    outfile: IO[str],
    headers: tuple[str, ...],
) -> None:
    if version:
        print(__version__)
        return

    level = logging.DEBUG if debug else logging.WARNING if quiet else logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s", stream=sys.stderr)

    if list_include_paths:
        for path in discover_include_paths():
            outfile.write(f"{path}\n")
        return

    if not headers:
        click.echo("Error: Missing argument 'HEADERS...'.", err=True)
        raise SystemExit(2)

    extra_args: list[str] = []
    for define in defines:
        extra_args.append(f"-D{define}")
    for directory in include_dir:
        extra_args.append(f"-I{directory}")

    request = HeaderRequest(
        headers=headers,
        include=include,
        exclude=exclude,
        library=lib,
        quiet=quiet,
        extra_args=tuple(extra_args),
    )
    declarations = wrap_headers(request)

    if output_format == "json":
        json.dump([_declaration_json(decl) for decl in declarations], outfile, indent=2)
        outfile.write("\n")
    else:
        for decl in declarations:
            outfile.write(f"{decl}\n")
