"""Intermediate Representation (IR) for extracted C declarations.

The walker produces this IR from libclang cursors and the macro probe, the
synthesizer post-processes it, and the registrar turns it into live
:mod:`ctypes` objects. Every value here is plain data: nothing in the IR
refers to libclang or ctypes, so a declaration list can be printed, compared
or serialised to JSON.

Type Hierarchy
--------------
* :class:`CType` - Named C type (``int``, ``size_t``, ``struct stat``)
* :class:`Pointer` - Pointer to another type
* :class:`Array` - Fixed or flexible array
* :class:`FunctionPointer` - Function pointer type
* :class:`Struct` - Only as a field type, for nested anonymous aggregates

Declaration Types
-----------------
The declaration variant is closed. Consumers handle each of:

* :class:`Constant` - Macro or constant value
* :class:`Struct` - Struct or union type
* :class:`Enum` - Enumeration with its value table
* :class:`Function` - Function bound to a library symbol
* :class:`Typedef` - Type alias
* :class:`Variable` - Extern global variable
* :class:`Constructor` - Generated zero-value constructor for a struct
* :class:`Info` - Message for the log, never registered

Example
-------
::

    from cinclude.ir import Struct, Field, CType

    point = Struct("Point", [Field("x", CType("int")), Field("y", CType("int"))])
    print(point)  # struct Point
"""

from __future__ import (
    annotations,
)

import enum
from dataclasses import (
    dataclass,
    field,
)
from typing import (
    Optional,
    Union,
)

# =============================================================================
# Source Location
# =============================================================================


@dataclass(frozen=True)
class SourceLocation:
    """Location of a declaration in a header.

    :param file: Path to the header.
    :param line: Line number (1-indexed).
    :param column: Column number (1-indexed), or None if unknown.
    """

    file: str
    line: int
    column: Optional[int] = None


# =============================================================================
# Type Representations
# =============================================================================


@dataclass
class CType:
    """A named C type with optional qualifiers.

    Builtin types use their C spelling (``"unsigned int"``, ``"char"``).
    Typedef and enum types keep their own name and carry the ``canonical``
    type they stand for, so a consumer that does not know the alias can still
    resolve it. Record types are spelled with their tag (``"struct stat"``).

    :param name: The type name.
    :param qualifiers: Type qualifiers (e.g., ``["const"]``).
    :param canonical: The canonical type behind a typedef or enum, if any.

    Examples
    --------
    ::

        int_type = CType("int")
        size = CType("size_t", canonical=CType("unsigned long"))
        const_char = CType("char", ["const"])
    """

    name: str
    qualifiers: list[str] = field(default_factory=list)
    canonical: Optional[TypeExpr] = None

    def __str__(self) -> str:
        if self.qualifiers:
            return f"{' '.join(self.qualifiers)} {self.name}"
        return self.name

    @property
    def tag(self) -> Optional[str]:
        """``"struct"``, ``"union"`` or ``"enum"`` for tagged types."""
        head, _, rest = self.name.partition(" ")
        if head in ("struct", "union", "enum") and rest:
            return head
        return None

    @property
    def bare_name(self) -> str:
        """Name without the ``struct``/``union``/``enum`` tag."""
        if self.tag:
            return self.name.partition(" ")[2]
        return self.name


@dataclass
class Pointer:
    """Pointer to another type.

    :param pointee: The type being pointed to.
    """

    pointee: TypeExpr

    def __str__(self) -> str:
        return f"{self.pointee}*"


@dataclass
class Array:
    """Fixed-size or flexible array type.

    :param element_type: The type of array elements.
    :param size: Number of elements, or None for flexible arrays.
    """

    element_type: TypeExpr
    size: Optional[int] = None

    def __str__(self) -> str:
        size_str = str(self.size) if self.size is not None else ""
        return f"{self.element_type}[{size_str}]"


@dataclass
class Parameter:
    """Function parameter. Anonymous parameters have no name."""

    name: Optional[str]
    type: TypeExpr

    def __str__(self) -> str:
        if self.name:
            return f"{self.type} {self.name}"
        return str(self.type)


@dataclass
class FunctionPointer:
    """Function pointer type.

    :param return_type: The function's return type.
    :param parameters: List of function parameters.
    :param is_variadic: True if the function ends with ``...``.
    """

    return_type: TypeExpr
    parameters: list[Parameter] = field(default_factory=list)
    is_variadic: bool = False

    def __str__(self) -> str:
        params = ", ".join(str(p) for p in self.parameters)
        if self.is_variadic:
            params = f"{params}, ..." if params else "..."
        return f"{self.return_type} (*)({params})"


# =============================================================================
# Declarations
# =============================================================================


@dataclass
class Field:
    """Struct or union member.

    :param name: The member name. Members of anonymous nested aggregates
        (C11 anonymous structs/unions) get a generated name and are listed in
        :attr:`Struct.anonymous`.
    :param type: The member type.
    :param bit_width: Width for bit-fields, None otherwise.
    """

    name: str
    type: TypeExpr
    bit_width: Optional[int] = None

    def __str__(self) -> str:
        if self.bit_width is not None:
            return f"{self.type} {self.name} : {self.bit_width}"
        return f"{self.type} {self.name}"


@dataclass
class Struct:
    """Struct or union type.

    ``fields`` is None for opaque types (declared but never defined in the
    parsed headers); such types can only be used through pointers.

    :param name: The type name.
    :param fields: Members in declaration order, or None when opaque.
    :param is_union: True for unions.
    :param anonymous: Names of members that are anonymous nested aggregates.
    :param location: Source location.

    Example
    -------
    ::

        point = Struct("Point", [
            Field("x", CType("int")),
            Field("y", CType("int")),
        ])
    """

    name: str
    fields: Optional[list[Field]] = field(default_factory=list)
    is_union: bool = False
    anonymous: list[str] = field(default_factory=list)
    location: Optional[SourceLocation] = None

    @property
    def is_opaque(self) -> bool:
        return self.fields is None

    def __str__(self) -> str:
        kind = "union" if self.is_union else "struct"
        return f"{kind} {self.name}"


@dataclass
class EnumValue:
    """Single enumerator with its resolved integer value."""

    name: str
    value: int

    def __str__(self) -> str:
        return f"{self.name} = {self.value}"


@dataclass
class Enum:
    """Enumeration with its inline value table.

    :param name: The enum name; anonymous enums are given
        ``ANONYMOUS_ENUM_<n>`` by the walker.
    :param values: Enumerators in declaration order.
    :param underlying_type: Integer type the enum is stored as.
    :param location: Source location.
    """

    name: str
    values: list[EnumValue] = field(default_factory=list)
    underlying_type: CType = field(default_factory=lambda: CType("unsigned int"))
    location: Optional[SourceLocation] = None

    def names_by_value(self) -> dict[int, list[str]]:
        """Value to enumerator names table, in declaration order."""
        table: dict[int, list[str]] = {}
        for value in self.values:
            table.setdefault(value.value, []).append(value.name)
        return table

    def __str__(self) -> str:
        return f"enum {self.name}"


@dataclass
class Function:
    """Function declaration bound to a library symbol.

    :param name: The function (and symbol) name.
    :param return_type: The return type.
    :param parameters: Parameters in order.
    :param is_variadic: True for ``...`` functions.
    :param library: Library the symbol is resolved from; None means the
        symbols already loaded in the running process.
    :param location: Source location.
    """

    name: str
    return_type: TypeExpr
    parameters: list[Parameter] = field(default_factory=list)
    is_variadic: bool = False
    library: Optional[str] = None
    location: Optional[SourceLocation] = None

    def __str__(self) -> str:
        params = ", ".join(str(p) for p in self.parameters)
        if self.is_variadic:
            params = f"{params}, ..." if params else "..."
        where = f" [{self.library}]" if self.library else ""
        return f"{self.return_type} {self.name}({params}){where}"


@dataclass
class Typedef:
    """Type alias."""

    name: str
    underlying_type: TypeExpr
    location: Optional[SourceLocation] = None

    def __str__(self) -> str:
        return f"typedef {self.underlying_type} {self.name}"


@dataclass
class Variable:
    """Extern global variable, resolved from ``library`` like functions."""

    name: str
    type: TypeExpr
    library: Optional[str] = None
    location: Optional[SourceLocation] = None

    def __str__(self) -> str:
        return f"extern {self.type} {self.name}"


class ConstantKind(str, enum.Enum):
    """How a constant's value was written or printed."""

    INTEGER = "integer"
    FLOAT = "float"
    STRING = "string"
    CHAR = "char"
    BOOL = "bool"


@dataclass
class Constant:
    """Compile-time constant, usually from a ``#define``.

    :param name: The constant name.
    :param value: The Python value (``int``, ``float``, ``str`` or ``bool``;
        characters are one-character strings).
    :param kind: Literal kind of the value.
    :param is_macro: True for ``#define`` constants.
    :param probed: True if the value came from the compiled macro probe.
    :param location: Source location, if known.

    Examples
    --------
    ::

        size = Constant("SIZE", 100, ConstantKind.INTEGER, is_macro=True)
        version = Constant("VERSION", "1.0", ConstantKind.STRING, is_macro=True)
    """

    name: str
    value: Union[int, float, str, bool]
    kind: ConstantKind = ConstantKind.INTEGER
    is_macro: bool = True
    probed: bool = False
    location: Optional[SourceLocation] = None

    def __str__(self) -> str:
        return f"const {self.name} = {self.value!r}"


@dataclass
class Constructor:
    """Generated zero-value constructor for the struct ``type_name``."""

    type_name: str

    @property
    def name(self) -> str:
        return self.type_name

    def __str__(self) -> str:
        return f"{self.type_name}.zero()"


@dataclass
class Info:
    """Informational message carried in the declaration stream."""

    message: str

    def __str__(self) -> str:
        return f"# {self.message}"


# Type alias for any type expression
TypeExpr = Union[CType, Pointer, Array, FunctionPointer, Struct]

# Type alias for any declaration
Declaration = Union[Constant, Struct, Enum, Function, Typedef, Variable, Constructor, Info]


class MacroKind(str, enum.Enum):
    """Classification of a ``#define`` by how its value can be obtained."""

    DIRECT = "direct"
    """Value is a literal in the macro's tokens."""

    OPAQUE = "opaque"
    """Value must be computed by the compiled probe."""

    SKIPPED = "skipped"
    """Function-like, reserved, empty, or otherwise not a value."""


def declaration_kind(decl: Declaration) -> str:
    """Short tag naming the variant of ``decl`` (used for JSON output)."""
    if isinstance(decl, Constant):
        return "constant"
    if isinstance(decl, Struct):
        return "union" if decl.is_union else "struct"
    if isinstance(decl, Enum):
        return "enum"
    if isinstance(decl, Function):
        return "function"
    if isinstance(decl, Typedef):
        return "typedef"
    if isinstance(decl, Variable):
        return "variable"
    if isinstance(decl, Constructor):
        return "constructor"
    if isinstance(decl, Info):
        return "info"
    raise TypeError(f"Not a declaration: {decl!r}")


def declaration_name(decl: Declaration) -> Optional[str]:
    """Primary name a declaration registers, or None for :class:`Info`."""
    if isinstance(decl, Info):
        return None
    return decl.name
