"""Walk parsed headers and collect declarations.

The walker visits the top-level cursors of every translation unit in order,
applies the request's name filters, names anonymous enums, sorts macros into
direct constants and names for the probe, and converts everything else with
:class:`~cinclude.libclang.DeclarationConverter`.

Filtering
---------
For a declaration named ``n``:

* ``n`` already emitted in this run: skipped.
* ``exclude`` matches ``n`` and ``include`` is unset or does not match:
  skipped. Enumerations are exempt since their generated names may match.
* macros starting with the reserved prefix: skipped.
"""

from __future__ import (
    annotations,
)

import logging
import re
from dataclasses import (
    dataclass,
    field,
)
from typing import (
    TYPE_CHECKING,
    Optional,
    Union,
)

from clang.cindex import (
    CursorKind,
)

from cinclude.errors import (
    FilterPatternError,
    SynthesisError,
)
from cinclude.ir import (
    Declaration,
    MacroKind,
    declaration_name,
)
from cinclude.libclang import (
    RECORD_KINDS,
    DeclarationConverter,
    is_unnamed,
    location_of,
    macro_is_function_like,
    macro_tokens,
)
from cinclude.macros import (
    classify_macro,
    constant_from_tokens,
)

if TYPE_CHECKING:
    import clang.cindex

    from cinclude.pipeline import HeaderRequest

logger = logging.getLogger(__name__)

ANONYMOUS_ENUM_PREFIX = "ANONYMOUS_ENUM_"

_WALKED_KINDS = RECORD_KINDS + (
    CursorKind.ENUM_DECL,
    CursorKind.FUNCTION_DECL,
    CursorKind.TYPEDEF_DECL,
    CursorKind.VAR_DECL,
    CursorKind.MACRO_DEFINITION,
)


def compile_filter(pattern: Optional[str], option: str) -> Optional[re.Pattern]:
    """Compile an ``include``/``exclude`` regex.

    :raises FilterPatternError: If ``pattern`` is not a valid regex.
    """
    if pattern is None:
        return None
    try:
        return re.compile(pattern)
    except re.error as e:
        raise FilterPatternError(option, pattern, str(e)) from e


def is_filtered(
    name: str,
    is_enum: bool,
    include: Optional[Union[str, re.Pattern]],
    exclude: Optional[Union[str, re.Pattern]],
) -> bool:
    """Apply the include/exclude policy to one name.

    :returns: True if the declaration must be skipped.
    """
    if is_enum or not exclude:
        return False
    if not re.search(exclude, name):
        return False
    return include is None or not re.search(include, name)


@dataclass
class WalkState:
    """Mutable state of one walk. Owned by a single :class:`HeaderWalker`."""

    seen: set[str] = field(default_factory=set)
    anonymous_enums: int = 0
    opaque_macros: list[str] = field(default_factory=list)

    def next_anonymous_enum(self) -> str:
        self.anonymous_enums += 1
        return f"{ANONYMOUS_ENUM_PREFIX}{self.anonymous_enums}"


class HeaderWalker:
    """Collects declarations from translation units for one request.

    :param request: The header request (filters, library, quiet flag).
    :raises FilterPatternError: If the request's ``include`` or ``exclude``
        is not a valid regex.

    Example
    -------
    ::

        walker = HeaderWalker(request)
        for tu in units:
            walker.walk(tu)
        walker.declarations, walker.opaque_macros
    """

    def __init__(self, request: HeaderRequest) -> None:
        self.request = request
        self.state = WalkState()
        self._include = compile_filter(request.include, "include")
        # an empty exclude leaves out nothing
        self._exclude = compile_filter(request.exclude, "exclude") if request.exclude else None
        self.declarations: list[Declaration] = []
        self._converter = DeclarationConverter(request.library)

    @property
    def opaque_macros(self) -> list[str]:
        """Macro names whose values must be probed, in encounter order."""
        return list(self.state.opaque_macros)

    def _note(self, msg: str, *args: object) -> None:
        if not self.request.quiet:
            logger.info(msg, *args)

    def _is_reserved(self, name: str) -> bool:
        prefix = self.request.reserved_prefix
        return bool(prefix) and name.startswith(prefix)

    def walk(self, tu: clang.cindex.TranslationUnit) -> None:
        """Visit the top-level cursors of ``tu`` in source order."""
        children = [
            child
            for child in tu.cursor.get_children()
            if child.kind in _WALKED_KINDS and child.location.file is not None
        ]
        for i, child in enumerate(children):
            following = children[i + 1] if i + 1 < len(children) else None
            self._visit(child, following)

    def _forced_name(
        self,
        cursor: clang.cindex.Cursor,
        following: Optional[clang.cindex.Cursor],
    ) -> Optional[str]:
        """Name an anonymous record/enum after the typedef that follows it."""
        if following is None or following.kind != CursorKind.TYPEDEF_DECL:
            return None
        if following.underlying_typedef_type.get_declaration() == cursor:
            return following.spelling
        return None

    def _visit(self, cursor: clang.cindex.Cursor, following: Optional[clang.cindex.Cursor]) -> None:
        kind = cursor.kind
        is_enum = kind == CursorKind.ENUM_DECL

        if (kind in RECORD_KINDS or is_enum) and is_unnamed(cursor):
            name = self._forced_name(cursor, following)
            if name is None:
                if not is_enum or not cursor.is_definition():
                    # anonymous struct variables have no type name to bind
                    return
                name = self.state.next_anonymous_enum()
        else:
            name = cursor.spelling

        if not name or name in self.state.seen:
            return
        if is_filtered(name, is_enum, self._include, self._exclude):
            return

        if kind == CursorKind.MACRO_DEFINITION:
            self._visit_macro(cursor, name)
            return

        try:
            decls = self._converter.convert(cursor, name)
        except SynthesisError as e:
            if not self._is_reserved(name):
                self._note("Can't wrap %s (%s)", name, e)
            return
        self._emit(decls)

    def _visit_macro(self, cursor: clang.cindex.Cursor, name: str) -> None:
        tokens = macro_tokens(cursor)
        macro_kind = classify_macro(
            name,
            tokens,
            function_like=macro_is_function_like(cursor),
            reserved_prefix=self.request.reserved_prefix,
        )
        if macro_kind == MacroKind.SKIPPED:
            return
        if macro_kind == MacroKind.OPAQUE:
            self.state.seen.add(name)
            self.state.opaque_macros.append(name)
            return
        try:
            constant = constant_from_tokens(name, tokens, location_of(cursor))
        except SynthesisError as e:
            self._note("Can't wrap %s (%s)", name, e)
            return
        self._emit([constant])

    def _emit(self, decls: list[Declaration]) -> None:
        for decl in decls:
            name = declaration_name(decl)
            if name is not None:
                if name in self.state.seen:
                    continue
                self.state.seen.add(name)
            self.declarations.append(decl)
