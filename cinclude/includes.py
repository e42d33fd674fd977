"""Header search path discovery and header lookup.

libclang does not know where the system headers of the local toolchain live,
so the search path is taken from the toolchain itself:

* macOS: ``/usr/include`` plus the active SDK's ``usr/include``
  (``xcrun --show-sdk-path``).
* Elsewhere: ``/usr/include`` plus every directory the C compiler prints
  between ``#include <...> search starts here:`` and ``End of search list.``
  when run as ``cc -E -v -x c /dev/null``.

The path is rediscovered for every request.
"""

import logging
import os
import subprocess
import sys

logger = logging.getLogger(__name__)

DEFAULT_INCLUDE_DIRS = ("/usr/include",)

SEARCH_START = "#include <...> search starts here:"
SEARCH_END = "End of search list."


def _compiler() -> str:
    return os.environ.get("CC", "cc")


def parse_search_list(output: str) -> list[str]:
    """Extract the system include directories from ``cc -v`` diagnostics.

    :param output: Combined stdout/stderr of a verbose preprocessor run.
    :returns: Directories between the two sentinel lines, in order.
    """
    paths: list[str] = []
    in_includes = False
    for line in output.splitlines():
        if SEARCH_START in line:
            in_includes = True
            continue
        if in_includes:
            if line.strip() == SEARCH_END:
                break
            path = line.strip()
            if path and not path.endswith("(framework directory)"):
                paths.append(path)
    return paths


def _sdk_include_dirs() -> list[str]:
    result = subprocess.run(
        ["xcrun", "--show-sdk-path"],
        capture_output=True,
        text=True,
        check=True,
    )
    sdk = result.stdout.strip()
    return [os.path.join(sdk, "usr/include")] if sdk else []


def _compiler_include_dirs() -> list[str]:
    result = subprocess.run(
        [_compiler(), "-E", "-v", "-x", "c", os.devnull],
        stdin=subprocess.DEVNULL,
        capture_output=True,
        text=True,
        check=True,
    )
    return parse_search_list(result.stderr + "\n" + result.stdout)


def discover_include_paths() -> list[str]:
    """Determine the toolchain's system header search path.

    Failures are not fatal: a warning is logged and the directories collected
    so far are returned.

    :returns: Ordered list of directories; earlier entries win.
    """
    paths: list[str] = list(DEFAULT_INCLUDE_DIRS)
    query = _sdk_include_dirs if sys.platform == "darwin" else _compiler_include_dirs
    try:
        found = query()
    except (OSError, subprocess.SubprocessError) as e:
        logger.warning("Can't query system include path (%s), using %s", e, paths)
        return paths

    for path in found:
        if path not in paths:
            paths.append(path)
    logger.debug("System include path: %s", paths)
    return paths


def include_args(paths: list[str]) -> list[str]:
    """Turn a search path into ``-I`` flags, preserving order."""
    return [f"-I{path}" for path in paths]


def find_header(header: str, search_path: list[str]) -> str:
    """Resolve a header identifier to a path usable for parsing.

    Accepts ``"termios.h"``, ``"<sys/socket.h>"`` or a path. If nothing
    matches, the identifier is returned unchanged so that the parser reports
    the missing file.

    :param header: Header name or path.
    :param search_path: Directories from :func:`discover_include_paths`.
    :returns: Path of the first existing match, or ``header``.
    """
    if header.startswith("<") and header.endswith(">"):
        header = header[1:-1].strip()

    if os.path.isfile(header):
        return header

    for inc_dir in search_path:
        candidate = os.path.join(inc_dir, header)
        if os.path.isfile(candidate):
            return candidate

    return header
