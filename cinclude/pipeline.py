"""The extraction pipeline: headers in, declarations out.

::

    request -> discover_include_paths -> find_header -> parse + HeaderWalker
            -> MacroProbe (opaque macros, one batch) -> synthesize

The result is plain data; :class:`~cinclude.registrar.Registrar` turns it into
ctypes objects.
"""

import logging
from dataclasses import (
    dataclass,
)
from typing import (
    Optional,
)

from cinclude.errors import (
    HeaderParseError,
)
from cinclude.includes import (
    discover_include_paths,
    find_header,
    include_args,
)
from cinclude.ir import (
    Declaration,
    Info,
)
from cinclude.libclang import (
    error_diagnostics,
    parse_header,
)
from cinclude.probe import (
    MacroProbe,
)
from cinclude.synthesis import (
    DEFAULT_LIBRARY,
    synthesize,
)
from cinclude.walker import (
    HeaderWalker,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HeaderRequest:
    """What to extract.

    :param headers: Header names (``"termios.h"``, ``"<sys/socket.h>"``) or
        paths.
    :param include: Regex of names kept even when ``exclude`` matches them.
    :param exclude: Regex of names to leave out (enumerations are never
        excluded).
    :param library: Library that functions and variables are bound to.
    :param quiet: Suppress informational log messages.
    :param extra_args: Extra compiler flags (``-I``, ``-D``, ``-U``, ``-std``)
        for libclang and the macro probe.
    :param reserved_prefix: Macros with this prefix are skipped, and failures
        to wrap names with it are not logged. Empty disables the rule.
    """

    headers: tuple[str, ...]
    include: Optional[str] = None
    exclude: Optional[str] = None
    library: str = DEFAULT_LIBRARY
    quiet: bool = False
    extra_args: tuple[str, ...] = ()
    reserved_prefix: str = "_"


def wrap_headers(request: HeaderRequest) -> list[Declaration]:
    """Run the pipeline for ``request``.

    Nothing here raises for a bad header, declaration or macro: failures are
    logged and the affected part is left out.

    :returns: :class:`~cinclude.ir.Info` messages followed by the declarations
        in registration order.
    :raises FilterPatternError: If ``include`` or ``exclude`` is not a valid
        regex.
    """
    walker = HeaderWalker(request)
    search_path = discover_include_paths()
    located = [find_header(header, search_path) for header in request.headers]
    args = ["-x", "c"] + list(request.extra_args) + include_args(search_path)

    parsed: list[str] = []
    for path in located:
        try:
            tu = parse_header(path, args)
        except HeaderParseError as e:
            logger.error("%s", e)
            continue
        for diag in error_diagnostics(tu):
            logger.warning("%s: %s", diag.location, diag.spelling)
        walker.walk(tu)
        parsed.append(path)

    constants = []
    if parsed and walker.opaque_macros:
        constants = MacroProbe(request, parsed, search_path).resolve(walker.opaque_macros)

    infos: list[Declaration] = []
    if not request.quiet:
        infos = [Info(f'cinclude "{path}"') for path in parsed]
    return infos + synthesize(walker.declarations + constants)
