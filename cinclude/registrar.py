"""Register declarations into a Python namespace with ctypes.

The registrar is the second half of the pipeline's two-phase contract: the
pipeline produces plain declarations, the registrar materialises them:

=================  ==============================================
Declaration        Registered as
=================  ==============================================
``Constant``       the Python value
``Struct``         a ``ctypes.Structure``/``ctypes.Union`` subclass
``Constructor``    a ``zero()`` classmethod on that class
``Enum``           an :class:`enum.IntEnum`, plus each enumerator
``Function``       a lazily bound :class:`~cinclude.runtime.ForeignFunction`
``Typedef``        the aliased ctypes type
``Variable``       a :class:`~cinclude.runtime.ForeignVariable`
``Info``           nothing (logged)
=================  ==============================================

Names that already exist are not replaced, except functions whose existing
definition has constrained (annotated) parameters or another arity. After
each :meth:`Registrar.register` call the namespace holds a fresh
:class:`ConstantIndex` under ``__cinclude_constants__``.
"""

from __future__ import (
    annotations,
)

import ctypes
import enum
import inspect
import logging
import types
from dataclasses import (
    dataclass,
    field,
)
from typing import (
    Any,
    Optional,
    Union,
)

from cinclude.errors import (
    RegistrationError,
)
from cinclude.ir import (
    Array,
    Constant,
    Constructor,
    CType,
    Declaration,
    Enum,
    Function,
    FunctionPointer,
    Info,
    Pointer,
    Struct,
    Typedef,
    TypeExpr,
    Variable,
)
from cinclude.runtime import (
    ForeignFunction,
    ForeignVariable,
    zero,
)

logger = logging.getLogger(__name__)

CONSTANT_INDEX_ATTR = "__cinclude_constants__"

_MISSING = object()

_BASIC_CTYPES: dict[str, Any] = {
    "void": None,
    "bool": ctypes.c_bool,
    "char": ctypes.c_char,
    "signed char": ctypes.c_byte,
    "unsigned char": ctypes.c_ubyte,
    "short": ctypes.c_short,
    "unsigned short": ctypes.c_ushort,
    "int": ctypes.c_int,
    "unsigned int": ctypes.c_uint,
    "long": ctypes.c_long,
    "unsigned long": ctypes.c_ulong,
    "long long": ctypes.c_longlong,
    "unsigned long long": ctypes.c_ulonglong,
    "float": ctypes.c_float,
    "double": ctypes.c_double,
    "long double": ctypes.c_longdouble,
    "wchar_t": ctypes.c_wchar,
    "char16_t": ctypes.c_uint16,
    "char32_t": ctypes.c_uint32,
}

_CTYPE_BASES = (
    ctypes._SimpleCData,  # pylint: disable=protected-access
    ctypes.Structure,
    ctypes.Union,
    ctypes.Array,
    ctypes._Pointer,  # pylint: disable=protected-access
    ctypes._CFuncPtr,  # pylint: disable=protected-access
)

Namespace = Union[dict, types.ModuleType]


def _is_ctype(obj: Any) -> bool:
    return isinstance(obj, type) and issubclass(obj, _CTYPE_BASES)


def _is_record(obj: Any) -> bool:
    return isinstance(obj, type) and issubclass(obj, (ctypes.Structure, ctypes.Union))


def _namespace_dict(namespace: Namespace) -> dict:
    if isinstance(namespace, types.ModuleType):
        return vars(namespace)
    return namespace


class ConstantIndex:
    """Reverse map from integer values to the constant names that have them.

    Ties keep insertion order::

        index.add(0, "TCSANOW")
        index.add(0, "B0")
        index.names(0)  # ["TCSANOW", "B0"]
    """

    def __init__(self) -> None:
        self._names: dict[int, list[str]] = {}

    def add(self, value: Any, name: str) -> None:
        """Record ``name`` under ``value``; non-integers are ignored."""
        if isinstance(value, bool) or not isinstance(value, int):
            return
        names = self._names.setdefault(int(value), [])
        if name not in names:
            names.append(name)

    def names(self, value: int) -> list[str]:
        return list(self._names.get(value, []))

    def as_dict(self) -> dict[int, list[str]]:
        return {value: list(names) for value, names in self._names.items()}

    def __contains__(self, value: object) -> bool:
        return value in self._names

    def __len__(self) -> int:
        return len(self._names)


def constant_names(namespace: Namespace, value: int) -> list[str]:
    """Names of the constants registered in ``namespace`` with ``value``."""
    index = _namespace_dict(namespace).get(CONSTANT_INDEX_ATTR)
    if index is None:
        return []
    return index.names(value)


def accepts_unconstrained(obj: Any, arity: int) -> bool:
    """True if ``obj`` takes ``arity`` positional arguments of any type.

    Parameters without annotations are unconstrained; ``*args`` accepts any
    number of extra arguments.
    """
    try:
        signature = inspect.signature(obj)
    except (TypeError, ValueError):
        return False

    positional = []
    has_varargs = False
    for param in signature.parameters.values():
        if param.kind in (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD):
            positional.append(param)
        elif param.kind == inspect.Parameter.VAR_POSITIONAL:
            has_varargs = True
            if param.annotation is not inspect.Parameter.empty:
                return False

    if len(positional) != arity and not (has_varargs and len(positional) <= arity):
        return False
    return all(param.annotation is inspect.Parameter.empty for param in positional)


def _is_function_like(obj: Any) -> bool:
    return isinstance(obj, ForeignFunction) or inspect.isroutine(obj)


@dataclass
class RegistrationReport:
    """Outcome of one :meth:`Registrar.register` call."""

    registered: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    index: ConstantIndex = field(default_factory=ConstantIndex)


class Registrar:
    """Materialise declarations into ``namespace``.

    :param namespace: A module or a dict (``globals()``).
    :param quiet: Suppress informational log messages.

    Example
    -------
    ::

        ns = {}
        Registrar(ns).register(wrap_headers(HeaderRequest(("termios.h",))))
        ns["termios"].zero()
    """

    def __init__(self, namespace: Namespace, quiet: bool = False) -> None:
        self.ns = _namespace_dict(namespace)
        self.quiet = quiet
        # Records referenced before their definition
        self._pending: dict[str, type] = {}
        self._structs: set[str] = set()

    def _note(self, msg: str, *args: object) -> None:
        if not self.quiet:
            logger.info(msg, *args)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, declarations: list[Declaration]) -> RegistrationReport:
        """Register ``declarations`` in order.

        A declaration that cannot be materialised is logged and skipped.
        """
        report = RegistrationReport()
        self._structs = set()

        for decl in declarations:
            if isinstance(decl, Info):
                self._note("%s", decl.message)
                continue
            try:
                done = self._register_one(decl, report.index)
            except (RegistrationError, TypeError, ValueError, AttributeError) as e:
                logger.warning("%s in %s", e, decl)
                report.failed.append(decl.name)
                continue
            if done:
                report.registered.append(decl.name)
            else:
                report.skipped.append(decl.name)

        self.ns[CONSTANT_INDEX_ATTR] = report.index
        return report

    def _exists(self, name: str) -> bool:
        if name in self.ns:
            self._note("Skipping %s: already defined", name)
            return True
        return False

    def _register_one(self, decl: Declaration, index: ConstantIndex) -> bool:
        if isinstance(decl, Constant):
            if self._exists(decl.name):
                return False
            self.ns[decl.name] = decl.value
            index.add(decl.value, decl.name)
            return True
        if isinstance(decl, Struct):
            if self._exists(decl.name):
                return False
            self._register_struct(decl)
            return True
        if isinstance(decl, Constructor):
            return self._register_constructor(decl)
        if isinstance(decl, Enum):
            # enumerators are bound even when the enum's own name is taken
            taken = self._exists(decl.name)
            self._register_enum(decl, index, bind_type=not taken)
            return not taken
        if isinstance(decl, Function):
            return self._register_function(decl)
        if isinstance(decl, Typedef):
            if self._exists(decl.name):
                return False
            target = self.ctype_of(decl.underlying_type)
            if target is None:
                raise RegistrationError(f"{decl.name} aliases void")
            self.ns[decl.name] = target
            return True
        if isinstance(decl, Variable):
            if self._exists(decl.name):
                return False
            self.ns[decl.name] = ForeignVariable(decl.name, decl.library, self._value_ctype(decl.type))
            return True
        raise TypeError(f"Not a declaration: {decl!r}")

    def _register_struct(self, decl: Struct) -> None:
        base = ctypes.Union if decl.is_union else ctypes.Structure
        cls = self._pending.pop(decl.name, None)
        if cls is None or not issubclass(cls, base):
            cls = type(decl.name, (base,), {})
        # Registered before its fields so that self-references resolve
        self.ns[decl.name] = cls
        try:
            self._set_fields(cls, decl)
        except Exception:
            del self.ns[decl.name]
            raise
        self._structs.add(decl.name)

    def _set_fields(self, cls: type, decl: Struct) -> None:
        if decl.fields is None:
            return
        specs: list[tuple] = []
        for member in decl.fields:
            ctype = self._value_ctype(member.type)
            if member.bit_width is not None:
                specs.append((member.name, ctype, member.bit_width))
            else:
                specs.append((member.name, ctype))
        if decl.anonymous:
            cls._anonymous_ = list(decl.anonymous)
        cls._fields_ = specs

    def _register_constructor(self, decl: Constructor) -> bool:
        if decl.type_name not in self._structs:
            return False
        cls = self.ns[decl.type_name]
        field_names = {spec[0] for spec in getattr(cls, "_fields_", ())}
        if "zero" in field_names:
            self._note("Skipping %s.zero(): field named zero", decl.type_name)
            return False
        cls.zero = classmethod(zero)
        return True

    def _register_enum(self, decl: Enum, index: ConstantIndex, bind_type: bool = True) -> None:
        cls = enum.IntEnum(decl.name, [(value.name, value.value) for value in decl.values])
        if bind_type:
            self.ns[decl.name] = cls
        for value in decl.values:
            if self._exists(value.name):
                continue
            self.ns[value.name] = cls[value.name]
            index.add(value.value, value.name)

    def _register_function(self, decl: Function) -> bool:
        arity = len(decl.parameters)
        existing = self.ns.get(decl.name, _MISSING)
        if existing is not _MISSING:
            if not _is_function_like(existing) or accepts_unconstrained(existing, arity):
                self._note("Skipping %s: already defined", decl.name)
                return False
            logger.debug("Redefining %s", decl.name)

        restype = self.ctype_of(decl.return_type)
        argtypes = [self._value_ctype(param.type) for param in decl.parameters]
        self.ns[decl.name] = ForeignFunction(
            decl.name,
            decl.library,
            restype,
            argtypes,
            variadic=decl.is_variadic,
            param_names=[param.name or "" for param in decl.parameters],
        )
        return True

    # ------------------------------------------------------------------
    # Type resolution
    # ------------------------------------------------------------------

    def _value_ctype(self, type_expr: TypeExpr) -> Any:
        ctype = self.ctype_of(type_expr)
        if ctype is None:
            raise RegistrationError(f"void used as a value type ({type_expr})")
        return ctype

    def _lookup(self, name: str) -> Any:
        obj = self.ns.get(name, _MISSING)
        if _is_ctype(obj):
            return obj
        return _MISSING

    def _record_class(self, name: str, is_union: bool) -> type:
        """Class for a struct/union tag, created on first reference."""
        obj = self.ns.get(name)
        if _is_record(obj):
            return obj
        if name not in self._pending:
            base = ctypes.Union if is_union else ctypes.Structure
            self._pending[name] = type(name, (base,), {})
        return self._pending[name]

    def _is_char(self, type_expr: TypeExpr) -> bool:
        if not isinstance(type_expr, CType):
            return False
        if type_expr.name == "char":
            return True
        canonical = type_expr.canonical
        return isinstance(canonical, CType) and canonical.name == "char"

    def ctype_of(self, type_expr: TypeExpr) -> Optional[Any]:
        """Resolve an IR type to a ctypes type (None for ``void``).

        :raises RegistrationError: If the type cannot be resolved.
        """
        if isinstance(type_expr, CType):
            return self._ctype_of_named(type_expr)

        if isinstance(type_expr, Pointer):
            pointee = type_expr.pointee
            if self._is_char(pointee):
                return ctypes.c_char_p
            try:
                target = self.ctype_of(pointee)
            except RegistrationError:
                return ctypes.c_void_p
            if target is None:
                return ctypes.c_void_p
            return ctypes.POINTER(target)

        if isinstance(type_expr, Array):
            return self._value_ctype(type_expr.element_type) * (type_expr.size or 0)

        if isinstance(type_expr, FunctionPointer):
            restype = self.ctype_of(type_expr.return_type)
            argtypes = [self._value_ctype(param.type) for param in type_expr.parameters]
            return ctypes.CFUNCTYPE(restype, *argtypes)

        if isinstance(type_expr, Struct):
            base = ctypes.Union if type_expr.is_union else ctypes.Structure
            cls = type(type_expr.name, (base,), {})
            self._set_fields(cls, type_expr)
            return cls

        raise TypeError(f"Not a type expression: {type_expr!r}")

    def _ctype_of_named(self, type_expr: CType) -> Optional[Any]:
        tag = type_expr.tag
        if tag in ("struct", "union"):
            return self._record_class(type_expr.bare_name, tag == "union")
        if tag == "enum":
            if type_expr.canonical is None:
                return ctypes.c_int
            return self.ctype_of(type_expr.canonical)

        if type_expr.name in _BASIC_CTYPES:
            return _BASIC_CTYPES[type_expr.name]
        found = self._lookup(type_expr.name)
        if found is not _MISSING:
            return found
        if type_expr.canonical is not None:
            return self.ctype_of(type_expr.canonical)
        raise RegistrationError(f"unknown type {type_expr.name}")
