"""Tests for the ctypes runtime helpers."""

import ctypes
import inspect

import pytest

from cinclude.runtime import (
    ForeignFunction,
    czero,
    czeros,
    zero,
)


class Inner(ctypes.Structure):
    _fields_ = [("a", ctypes.c_int), ("b", ctypes.c_double)]


class Outer(ctypes.Structure):
    _fields_ = [
        ("inner", Inner),
        ("name", ctypes.c_char_p),
        ("data", ctypes.c_ubyte * 4),
        ("next", ctypes.POINTER(Inner)),
    ]


class TestCzero:
    def test_simple_types(self):
        assert czero(ctypes.c_int) == 0
        assert czero(ctypes.c_double) == 0.0
        assert czero(ctypes.c_char) == b"\x00"
        assert czero(ctypes.c_char_p) is None
        assert czero(ctypes.c_void_p) is None

    def test_pointer_is_null(self):
        assert not czero(ctypes.POINTER(ctypes.c_int))

    def test_array(self):
        arr = czero(ctypes.c_int * 3)
        assert list(arr) == [0, 0, 0]

    def test_text_arrays_are_empty_strings(self):
        assert czero(ctypes.c_char * 14) == b""
        assert czero(ctypes.c_wchar * 4) == ""

    def test_struct_with_text_arrays(self):
        class Named(ctypes.Structure):
            _fields_ = [
                ("family", ctypes.c_ushort),
                ("data", ctypes.c_char * 14),
                ("label", ctypes.c_wchar * 4),
                ("grid", (ctypes.c_char * 2) * 3),
            ]

        value = czero(Named)
        assert value.family == 0
        assert value.data == b""
        assert value.label == ""
        assert [row.value for row in value.grid] == [b"", b"", b""]

    def test_nested_struct(self):
        value = czero(Outer)
        assert value.inner.a == 0
        assert value.inner.b == 0.0
        assert value.name is None
        assert list(value.data) == [0, 0, 0, 0]
        assert not value.next

    def test_rejects_non_ctypes(self):
        with pytest.raises(TypeError):
            czero(int)


def test_czeros_follows_field_order():
    zeros = czeros(Inner)
    assert zeros == (0, 0.0)


def test_czeros_of_opaque_struct():
    class Opaque(ctypes.Structure):
        pass

    assert czeros(Opaque) == ()


def test_zero_constructor():
    Inner.zero = classmethod(zero)
    try:
        value = Inner.zero()
        assert isinstance(value, Inner)
        assert (value.a, value.b) == (0, 0.0)
        value.a = 5
        assert Inner.zero().a == 0
    finally:
        del Inner.zero


class TestForeignFunction:
    def test_signature_is_unconstrained(self):
        fn = ForeignFunction("abs", None, ctypes.c_int, [ctypes.c_int], param_names=["j"])
        params = list(inspect.signature(fn).parameters.values())
        assert [p.name for p in params] == ["j"]
        assert params[0].annotation is inspect.Parameter.empty

    def test_variadic_signature(self):
        fn = ForeignFunction("printf", None, ctypes.c_int, [ctypes.c_char_p], variadic=True)
        params = list(inspect.signature(fn).parameters.values())
        assert [p.name for p in params] == ["arg0", "args"]
        assert params[1].kind == inspect.Parameter.VAR_POSITIONAL

    def test_calls_process_symbol(self):
        fn = ForeignFunction("abs", None, ctypes.c_int, [ctypes.c_int])
        assert fn(-3) == 3

    def test_repr(self):
        assert "abs" in repr(ForeignFunction("abs", None, ctypes.c_int, [ctypes.c_int]))
