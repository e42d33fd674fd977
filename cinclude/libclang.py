"""libclang access: library configuration, parsing, cursor conversion.

Requirements
------------
* The ``clang.cindex`` Python bindings (the ``libclang`` wheel ships a
  matching shared library).
* Optionally ``CINCLUDE_LIBCLANG`` pointing at a specific ``libclang``
  shared library.

If the bindings cannot find a library on their own, common platform
locations are searched (Homebrew, Xcode, Debian/Ubuntu ``llvm-*``).
"""

from __future__ import (
    annotations,
)

import glob
import itertools
import logging
import os
import sys
from typing import (
    Optional,
)

import clang.cindex
from clang.cindex import (
    CursorKind,
    StorageClass,
    TypeKind,
)

from cinclude.errors import (
    HeaderParseError,
    SynthesisError,
)
from cinclude.ir import (
    Array,
    CType,
    Declaration,
    Enum,
    EnumValue,
    Field,
    Function,
    FunctionPointer,
    Parameter,
    Pointer,
    SourceLocation,
    Struct,
    Typedef,
    TypeExpr,
    Variable,
)

logger = logging.getLogger(__name__)

RECORD_KINDS = (CursorKind.STRUCT_DECL, CursorKind.UNION_DECL)

_BUILTIN_TYPES: dict[TypeKind, str] = {
    TypeKind.VOID: "void",
    TypeKind.BOOL: "bool",
    TypeKind.CHAR_U: "char",
    TypeKind.CHAR_S: "char",
    TypeKind.SCHAR: "signed char",
    TypeKind.UCHAR: "unsigned char",
    TypeKind.SHORT: "short",
    TypeKind.USHORT: "unsigned short",
    TypeKind.INT: "int",
    TypeKind.UINT: "unsigned int",
    TypeKind.LONG: "long",
    TypeKind.ULONG: "unsigned long",
    TypeKind.LONGLONG: "long long",
    TypeKind.ULONGLONG: "unsigned long long",
    TypeKind.INT128: "__int128",
    TypeKind.UINT128: "unsigned __int128",
    TypeKind.FLOAT: "float",
    TypeKind.DOUBLE: "double",
    TypeKind.LONGDOUBLE: "long double",
    TypeKind.WCHAR: "wchar_t",
    TypeKind.CHAR16: "char16_t",
    TypeKind.CHAR32: "char32_t",
}


def _get_libclang_search_paths() -> list[str]:
    """Platform-specific candidate locations of the libclang library."""
    paths: list[str] = []

    if sys.platform == "darwin":
        paths.append("/opt/homebrew/opt/llvm/lib/libclang.dylib")
        paths.extend(sorted(glob.glob("/opt/homebrew/Cellar/llvm/*/lib/libclang.dylib"), reverse=True))
        paths.append("/usr/local/opt/llvm/lib/libclang.dylib")
        paths.append("/Library/Developer/CommandLineTools/usr/lib/libclang.dylib")
        paths.append(
            "/Applications/Xcode.app/Contents/Developer/Toolchains/" "XcodeDefault.xctoolchain/usr/lib/libclang.dylib"
        )
    elif sys.platform == "linux":
        paths.extend(sorted(glob.glob("/usr/lib/llvm-*/lib/libclang.so*"), reverse=True))
        paths.append("/usr/lib64/libclang.so")
        paths.append("/usr/lib/libclang.so")
        paths.append("/usr/local/lib/libclang.so")

    return paths


# Module-level flag to track if we've already attempted configuration
_libclang_configured: bool = False


def configure_libclang() -> bool:
    """Make sure ``clang.cindex`` can load a libclang library.

    Tries ``CINCLUDE_LIBCLANG``, then the bindings' default loading, then the
    platform search paths.

    :returns: True if libclang is usable.
    """
    global _libclang_configured  # pylint: disable=global-statement

    if not _libclang_configured:
        _libclang_configured = True
        explicit = os.environ.get("CINCLUDE_LIBCLANG")
        if explicit:
            clang.cindex.Config.set_library_file(explicit)
        else:
            try:
                clang.cindex.Config().get_cindex_library()
                return True
            except clang.cindex.LibclangError:
                for path in _get_libclang_search_paths():
                    if os.path.isfile(path):
                        logger.debug("Using libclang at %s", path)
                        clang.cindex.Config.set_library_file(path)
                        break

    try:
        clang.cindex.Config().get_cindex_library()
        return True
    except clang.cindex.LibclangError:
        return False


_index: Optional[clang.cindex.Index] = None


def get_index() -> clang.cindex.Index:
    """Get or create the process-wide clang index."""
    global _index  # pylint: disable=global-statement
    if _index is None:
        if not configure_libclang():
            raise HeaderParseError("libclang", "libclang shared library not found (set CINCLUDE_LIBCLANG)")
        _index = clang.cindex.Index.create()
    return _index


def parse_header(
    path: str,
    args: list[str],
    unsaved_files: Optional[list[tuple[str, str]]] = None,
    skip_bodies: bool = True,
) -> clang.cindex.TranslationUnit:
    """Parse one file into a translation unit with macro records.

    Error diagnostics do not raise (see :func:`error_diagnostics`): a header
    with a few broken declarations still yields the rest.

    :param path: File to parse.
    :param args: Compiler arguments (``-I``, ``-D``, ``-x``...).
    :param unsaved_files: In-memory ``(path, contents)`` overrides.
    :param skip_bodies: Skip function bodies; headers only need declarations.
    :raises HeaderParseError: If no translation unit could be created.
    """
    options = clang.cindex.TranslationUnit.PARSE_DETAILED_PROCESSING_RECORD
    if skip_bodies:
        options |= clang.cindex.TranslationUnit.PARSE_SKIP_FUNCTION_BODIES
    try:
        tu = get_index().parse(path, args=args, unsaved_files=unsaved_files, options=options)
    except clang.cindex.TranslationUnitLoadError as e:
        raise HeaderParseError(path, str(e)) from e
    return tu


def error_diagnostics(tu: clang.cindex.TranslationUnit) -> list[clang.cindex.Diagnostic]:
    """Diagnostics of error severity or worse."""
    return [diag for diag in tu.diagnostics if diag.severity >= clang.cindex.Diagnostic.Error]


def is_unnamed(cursor: clang.cindex.Cursor) -> bool:
    """True for anonymous records and enums.

    Recent libclang spells them ``(unnamed struct at file:line:col)`` or
    ``(anonymous ...)`` instead of an empty string.
    """
    spelling = cursor.spelling
    return not spelling or "(unnamed" in spelling or "(anonymous" in spelling


def macro_tokens(cursor: clang.cindex.Cursor) -> list[str]:
    """Token spellings of a macro definition, the name first."""
    return [token.spelling for token in cursor.get_tokens()]


def macro_is_function_like(cursor: clang.cindex.Cursor) -> bool:
    """Whether a macro definition takes parameters.

    A macro is function-like when a ``(`` directly touches its name:
    ``#define F(x)`` is, ``#define X (1 << 3)`` is not.
    """
    tokens = list(itertools.islice(cursor.get_tokens(), 2))
    if len(tokens) < 2 or tokens[1].spelling != "(":
        return False
    return tokens[1].extent.start.offset == tokens[0].extent.end.offset


def _declared_record(clang_type: clang.cindex.Type) -> clang.cindex.Cursor:
    """Declaration behind a type, looking through arrays and pointers."""
    t = clang_type.get_canonical()
    while t.kind in (TypeKind.CONSTANTARRAY, TypeKind.INCOMPLETEARRAY, TypeKind.POINTER):
        t = t.get_pointee() if t.kind == TypeKind.POINTER else t.element_type
    return t.get_declaration()


def location_of(cursor: clang.cindex.Cursor) -> Optional[SourceLocation]:
    loc = cursor.location
    if loc.file:
        return SourceLocation(file=loc.file.name, line=loc.line, column=loc.column)
    return None


class DeclarationConverter:
    """Converts top-level libclang cursors into IR declarations.

    :param library: Library name that functions and variables are bound to.

    Unsupported constructs raise :class:`~cinclude.errors.SynthesisError`;
    cursors that legitimately produce nothing (static functions, forward
    declarations of types defined elsewhere) return an empty list.
    """

    def __init__(self, library: Optional[str]) -> None:
        self.library = library

    def convert(self, cursor: clang.cindex.Cursor, name: str) -> list[Declaration]:
        """Convert ``cursor``, emitting it under ``name``."""
        kind = cursor.kind
        if kind in RECORD_KINDS:
            return self.convert_record(cursor, name)
        if kind == CursorKind.ENUM_DECL:
            return self.convert_enum(cursor, name)
        if kind == CursorKind.FUNCTION_DECL:
            return self.convert_function(cursor)
        if kind == CursorKind.TYPEDEF_DECL:
            return self.convert_typedef(cursor)
        if kind == CursorKind.VAR_DECL:
            return self.convert_variable(cursor)
        return []

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def convert_record(self, cursor: clang.cindex.Cursor, name: str) -> list[Declaration]:
        """Convert a struct/union, preceded by any named nested definitions.

        A forward declaration yields nothing when the type is defined
        somewhere in the unit, and an opaque :class:`Struct` otherwise.
        """
        is_union = cursor.kind == CursorKind.UNION_DECL
        if not cursor.is_definition():
            if cursor.get_definition() is not None:
                return []
            return [Struct(name=name, fields=None, is_union=is_union, location=location_of(cursor))]

        nested: list[Declaration] = []
        struct = self._build_struct(cursor, name, nested)
        return nested + [struct]

    def _build_struct(self, cursor: clang.cindex.Cursor, name: str, nested: list[Declaration]) -> Struct:
        fields: list[Field] = []
        anonymous: list[str] = []
        children = list(cursor.get_children())
        # Unnamed records that are the type of a named member
        member_records = [
            _declared_record(child.type)
            for child in children
            if child.kind == CursorKind.FIELD_DECL and child.spelling
        ]

        for child in children:
            if child.kind in RECORD_KINDS and child.is_definition():
                if not is_unnamed(child):
                    # C hoists nested tagged definitions to file scope
                    nested.extend(self.convert_record(child, child.spelling))
                    continue
                if any(record == child for record in member_records):
                    continue
                member = f"_anon{len(anonymous)}"
                inline = self._build_struct(child, f"{name}_{member}", nested)
                fields.append(Field(name=member, type=inline))
                anonymous.append(member)
            elif child.kind == CursorKind.FIELD_DECL and child.spelling:
                field_type = self.convert_type(child.type, context=f"{name}_{child.spelling}")
                bit_width = child.get_bitfield_width() if child.is_bitfield() else None
                fields.append(Field(name=child.spelling, type=field_type, bit_width=bit_width))

        return Struct(
            name=name,
            fields=fields,
            is_union=cursor.kind == CursorKind.UNION_DECL,
            anonymous=anonymous,
            location=location_of(cursor),
        )

    # ------------------------------------------------------------------
    # Enums, functions, typedefs, variables
    # ------------------------------------------------------------------

    def convert_enum(self, cursor: clang.cindex.Cursor, name: str) -> list[Declaration]:
        if not cursor.is_definition():
            return []
        values = [
            EnumValue(name=child.spelling, value=child.enum_value)
            for child in cursor.get_children()
            if child.kind == CursorKind.ENUM_CONSTANT_DECL
        ]
        underlying = self.convert_type(cursor.enum_type)
        if not isinstance(underlying, CType):
            raise SynthesisError(f"unexpected enum type {cursor.enum_type.spelling}")
        return [Enum(name=name, values=values, underlying_type=underlying, location=location_of(cursor))]

    def convert_function(self, cursor: clang.cindex.Cursor) -> list[Declaration]:
        if cursor.storage_class == StorageClass.STATIC:
            # static inline helpers have no exported symbol
            return []

        return_type = self.convert_type(cursor.result_type)
        parameters: list[Parameter] = []
        for arg in cursor.get_arguments():
            parameters.append(Parameter(name=arg.spelling or None, type=self.convert_type(arg.type)))

        fn_type = cursor.type
        is_variadic = fn_type.kind == TypeKind.FUNCTIONPROTO and fn_type.is_function_variadic()

        return [
            Function(
                name=cursor.spelling,
                return_type=return_type,
                parameters=parameters,
                is_variadic=is_variadic,
                library=self.library,
                location=location_of(cursor),
            )
        ]

    def convert_typedef(self, cursor: clang.cindex.Cursor) -> list[Declaration]:
        name = cursor.spelling
        underlying = cursor.underlying_typedef_type

        # compiler internals such as __builtin_va_list
        if underlying.spelling.startswith("__builtin_"):
            return []

        decl = underlying.get_declaration()
        if decl.kind in RECORD_KINDS or decl.kind == CursorKind.ENUM_DECL:
            if is_unnamed(decl):
                # typedef struct { ... } name;
                return self.convert(decl, name)
            if decl.spelling == name:
                # typedef struct name name; the record itself carries the name
                if decl.kind in RECORD_KINDS and decl.get_definition() is None:
                    return self.convert_record(decl, name)
                return []

        return [Typedef(name=name, underlying_type=self.convert_type(underlying), location=location_of(cursor))]

    def convert_variable(self, cursor: clang.cindex.Cursor) -> list[Declaration]:
        if cursor.storage_class == StorageClass.STATIC:
            return []
        return [
            Variable(
                name=cursor.spelling,
                type=self.convert_type(cursor.type),
                library=self.library,
                location=location_of(cursor),
            )
        ]

    # ------------------------------------------------------------------
    # Types
    # ------------------------------------------------------------------

    def convert_type(self, clang_type: clang.cindex.Type, context: str = "anonymous") -> TypeExpr:
        """Convert a libclang type to an IR type expression.

        :param context: Name given to an anonymous aggregate met here.
        :raises SynthesisError: For types ctypes cannot represent.
        """
        kind = clang_type.kind

        if kind in _BUILTIN_TYPES:
            qualifiers = ["const"] if clang_type.is_const_qualified() else []
            return CType(name=_BUILTIN_TYPES[kind], qualifiers=qualifiers)

        if kind == TypeKind.POINTER:
            pointee = clang_type.get_pointee()
            if pointee.get_canonical().kind in (TypeKind.FUNCTIONPROTO, TypeKind.FUNCTIONNOPROTO):
                return self._convert_function_type(pointee.get_canonical())
            return Pointer(pointee=self.convert_type(pointee, context))

        if kind == TypeKind.CONSTANTARRAY:
            return Array(element_type=self.convert_type(clang_type.element_type, context), size=clang_type.element_count)

        if kind == TypeKind.INCOMPLETEARRAY:
            return Array(element_type=self.convert_type(clang_type.element_type, context), size=None)

        if kind in (TypeKind.FUNCTIONPROTO, TypeKind.FUNCTIONNOPROTO):
            return self._convert_function_type(clang_type)

        if kind == TypeKind.ELABORATED:
            return self.convert_type(clang_type.get_named_type(), context)

        if kind == TypeKind.RECORD:
            decl = clang_type.get_declaration()
            if is_unnamed(decl):
                return self._build_struct(decl, context, [])
            tag = "union" if decl.kind == CursorKind.UNION_DECL else "struct"
            return CType(name=f"{tag} {decl.spelling}")

        if kind == TypeKind.ENUM:
            decl = clang_type.get_declaration()
            integer = self.convert_type(decl.enum_type)
            if is_unnamed(decl):
                return integer
            return CType(name=f"enum {decl.spelling}", canonical=integer)

        if kind == TypeKind.TYPEDEF:
            decl = clang_type.get_declaration()
            canonical = self.convert_type(clang_type.get_canonical(), context=decl.spelling)
            qualifiers = ["const"] if clang_type.is_const_qualified() else []
            return CType(name=decl.spelling, qualifiers=qualifiers, canonical=canonical)

        # Attributed, typeof, atomic... resolve through the canonical type
        canonical = clang_type.get_canonical()
        if canonical.kind != kind:
            return self.convert_type(canonical, context)

        raise SynthesisError(f"unsupported type {clang_type.spelling!r}")

    def _convert_function_type(self, clang_type: clang.cindex.Type) -> FunctionPointer:
        parameters: list[Parameter] = []
        is_variadic = False
        if clang_type.kind == TypeKind.FUNCTIONPROTO:
            is_variadic = clang_type.is_function_variadic()
            for arg_type in clang_type.argument_types():
                parameters.append(Parameter(name=None, type=self.convert_type(arg_type)))
        return FunctionPointer(
            return_type=self.convert_type(clang_type.get_result()),
            parameters=parameters,
            is_variadic=is_variadic,
        )
