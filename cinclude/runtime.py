"""ctypes runtime support for registered declarations.

* :class:`ForeignFunction` - a C function resolved from its library on first
  call.
* :class:`ForeignVariable` - an extern variable resolved on first access.
* :func:`czero` / :func:`czeros` - recursive zero values of ctypes types,
  used by the generated ``zero()`` constructors.
"""

from __future__ import (
    annotations,
)

import ctypes
import ctypes.util
import inspect
import os
from typing import (
    Any,
    Optional,
)

_libraries: dict[Optional[str], ctypes.CDLL] = {}


def load_library(name: Optional[str]) -> ctypes.CDLL:
    """Load (once) the library called ``name``.

    ``None`` is the running process. Bare names such as ``"libm"`` or
    ``"m"`` are looked up with :func:`ctypes.util.find_library`; paths and
    file names are loaded as given.

    :raises OSError: If the library cannot be loaded.
    """
    if name not in _libraries:
        if name is None or os.sep in name or ".so" in name or name.endswith((".dylib", ".dll")):
            path = name
        else:
            path = ctypes.util.find_library(name.removeprefix("lib")) or name
        _libraries[name] = ctypes.CDLL(path)
    return _libraries[name]


class ForeignFunction:
    """Callable bound to a native symbol, resolved lazily.

    Arguments are converted by ctypes, so the Python-level signature is
    unconstrained: positional parameters without annotations, plus ``*args``
    for variadic functions.

    :param name: Symbol name.
    :param library: Library name, or None for the running process.
    :param restype: ctypes return type (None for ``void``).
    :param argtypes: ctypes types of the fixed parameters.
    :param variadic: True if the C function takes ``...``.
    :param param_names: Parameter names for the signature.
    """

    def __init__(
        self,
        name: str,
        library: Optional[str],
        restype: Any,
        argtypes: list[Any],
        variadic: bool = False,
        param_names: Optional[list[str]] = None,
    ) -> None:
        self.__name__ = name
        self.library = library
        self.restype = restype
        self.argtypes = list(argtypes)
        self.variadic = variadic
        names = list(param_names or [])
        self.param_names = [names[i] if i < len(names) and names[i] else f"arg{i}" for i in range(len(argtypes))]
        self._fn: Optional[Any] = None

    @property
    def __signature__(self) -> inspect.Signature:
        params = [inspect.Parameter(name, inspect.Parameter.POSITIONAL_ONLY) for name in self.param_names]
        if self.variadic:
            params.append(inspect.Parameter("args", inspect.Parameter.VAR_POSITIONAL))
        return inspect.Signature(params)

    def resolve(self) -> Any:
        """Look the symbol up and configure it.

        :raises OSError: If the library cannot be loaded.
        :raises AttributeError: If the symbol is missing.
        """
        if self._fn is None:
            fn = load_library(self.library)[self.__name__]
            fn.restype = self.restype
            if not self.variadic:
                fn.argtypes = self.argtypes
            self._fn = fn
        return self._fn

    def __call__(self, *args: Any) -> Any:
        return self.resolve()(*args)

    def __repr__(self) -> str:
        where = self.library or "process"
        return f"<ForeignFunction {self.__name__} from {where}>"


class ForeignVariable:
    """Extern variable of a native library, resolved on access."""

    def __init__(self, name: str, library: Optional[str], ctype: Any) -> None:
        self.name = name
        self.library = library
        self.ctype = ctype

    @property
    def ref(self) -> Any:
        """The ctypes object living at the symbol's address."""
        return self.ctype.in_dll(load_library(self.library), self.name)

    @property
    def value(self) -> Any:
        ref = self.ref
        return getattr(ref, "value", ref)

    @value.setter
    def value(self, new_value: Any) -> None:
        ref = self.ref
        if hasattr(ref, "value"):
            ref.value = new_value
        else:
            ctypes.pointer(ref)[0] = new_value

    def __repr__(self) -> str:
        return f"<ForeignVariable {self.name}>"


def czero(ctype: Any) -> Any:
    """Zero value of a ctypes type.

    Simple types give their intrinsic zero (``0``, ``0.0``, ``b"\\x00"``,
    ``None`` for ``c_char_p``), pointers a NULL pointer, ``char`` and
    ``wchar_t`` arrays the empty string, other arrays a zero-filled array,
    structs and unions themselves applied to the zeros of their fields.
    """
    if issubclass(ctype, (ctypes.Structure, ctypes.Union)):
        return ctype(*czeros(ctype))
    if issubclass(ctype, ctypes.Array):
        # struct fields of these array types only take bytes/str
        if issubclass(ctype._type_, ctypes.c_char):
            return b""
        if issubclass(ctype._type_, ctypes.c_wchar):
            return ""
        return ctype()
    if issubclass(ctype, (ctypes._Pointer, ctypes._CFuncPtr)):  # pylint: disable=protected-access
        return ctype()
    if issubclass(ctype, ctypes._SimpleCData):  # pylint: disable=protected-access
        return ctype().value
    raise TypeError(f"No zero value for {ctype!r}")


def czeros(ctype: Any) -> tuple:
    """Zero values of the fields of a struct or union type, in order."""
    return tuple(czero(spec[1]) for spec in getattr(ctype, "_fields_", ()))


def zero(cls: Any) -> Any:
    """Generated ``zero()`` constructor body: ``cls(*czeros(cls))``."""
    return cls(*czeros(cls))
