"""Tests for macro classification and literal parsing."""

import pytest

from cinclude.errors import SynthesisError
from cinclude.ir import ConstantKind, MacroKind
from cinclude.macros import (
    classify_macro,
    constant_from_tokens,
    macro_literal,
    parse_char,
    parse_number,
    parse_strings,
)


class TestClassifyMacro:
    def test_integer_literal_is_direct(self):
        assert classify_macro("FOO", ["FOO", "42"]) == MacroKind.DIRECT

    def test_string_literal_is_direct(self):
        assert classify_macro("BAR", ["BAR", '"hi"']) == MacroKind.DIRECT

    def test_negative_number_is_direct(self):
        assert classify_macro("NEG", ["NEG", "-", "1"]) == MacroKind.DIRECT

    def test_reserved_prefix_is_skipped(self):
        assert classify_macro("_FOO", ["_FOO", "1"]) == MacroKind.SKIPPED

    def test_empty_reserved_prefix_disables_rule(self):
        assert classify_macro("_FOO", ["_FOO", "1"], reserved_prefix="") == MacroKind.DIRECT

    def test_custom_reserved_prefix(self):
        assert classify_macro("PRIV_X", ["PRIV_X", "1"], reserved_prefix="PRIV_") == MacroKind.SKIPPED
        assert classify_macro("_X", ["_X", "1"], reserved_prefix="PRIV_") == MacroKind.DIRECT

    def test_empty_macro_is_skipped(self):
        assert classify_macro("GUARD_H", ["GUARD_H"]) == MacroKind.SKIPPED

    def test_function_like_inferred_from_paren(self):
        tokens = ["MAX", "(", "a", ",", "b", ")", "a"]
        assert classify_macro("MAX", tokens) == MacroKind.SKIPPED

    def test_function_like_flag_wins(self):
        assert classify_macro("F", ["F", "1"], function_like=True) == MacroKind.SKIPPED

    def test_parenthesised_object_like_is_opaque(self):
        tokens = ["MASK", "(", "1", "<<", "4", ")"]
        assert classify_macro("MASK", tokens, function_like=False) == MacroKind.OPAQUE

    def test_parenthesised_literal_is_direct(self):
        tokens = ["NEG", "(", "-", "1", ")"]
        assert classify_macro("NEG", tokens, function_like=False) == MacroKind.DIRECT
        assert constant_from_tokens("NEG", tokens).value == -1

    def test_initializer_is_skipped(self):
        assert classify_macro("INIT", ["INIT", "{", "0", "}"]) == MacroKind.SKIPPED

    def test_member_access_is_skipped(self):
        assert classify_macro("st_atime", ["st_atime", "st_atim", ".", "tv_sec"]) == MacroKind.SKIPPED

    def test_alias_is_opaque(self):
        assert classify_macro("B", ["B", "A"]) == MacroKind.OPAQUE

    def test_expression_is_opaque(self):
        assert classify_macro("SUM", ["SUM", "A", "|", "B"]) == MacroKind.OPAQUE


class TestParseNumber:
    @pytest.mark.parametrize(
        "token,expected",
        [
            ("42", 42),
            ("0", 0),
            ("0xFF", 255),
            ("0755", 0o755),
            ("0b101", 5),
            ("10UL", 10),
            ("10LL", 10),
            ("7u", 7),
            ("0x10ULL", 16),
        ],
    )
    def test_integers(self, token, expected):
        assert parse_number(token) == (expected, ConstantKind.INTEGER)

    @pytest.mark.parametrize(
        "token,expected",
        [
            ("1.5", 1.5),
            ("1.5f", 1.5),
            ("1e3", 1000.0),
            ("2.5L", 2.5),
            ("0x1p4", 16.0),
        ],
    )
    def test_floats(self, token, expected):
        assert parse_number(token) == (expected, ConstantKind.FLOAT)

    @pytest.mark.parametrize("token", ["abc", "LEN", "value", "'a'"])
    def test_not_numbers(self, token):
        assert parse_number(token) is None


class TestParseChar:
    def test_plain(self):
        assert parse_char("'A'") == ("A", ConstantKind.CHAR)

    def test_escape(self):
        assert parse_char("'\\n'") == ("\n", ConstantKind.CHAR)

    def test_not_char(self):
        assert parse_char('"A"') is None


class TestParseStrings:
    def test_single(self):
        assert parse_strings(['"hi"']) == ("hi", ConstantKind.STRING)

    def test_adjacent_literals_concatenate(self):
        assert parse_strings(['"a"', '"b"', '"c"']) == ("abc", ConstantKind.STRING)

    def test_prefixed(self):
        assert parse_strings(['L"wide"']) == ("wide", ConstantKind.STRING)

    def test_rejects_identifiers(self):
        assert parse_strings(['"a"', "B"]) is None


class TestMacroLiteral:
    def test_signed(self):
        assert macro_literal(["-", "1"]) == (-1, ConstantKind.INTEGER)
        assert macro_literal(["+", "2.0"]) == (2.0, ConstantKind.FLOAT)

    def test_expression(self):
        assert macro_literal(["1", "+", "2"]) is None

    def test_outer_parentheses(self):
        assert macro_literal(["(", "-", "1", ")"]) == (-1, ConstantKind.INTEGER)
        assert macro_literal(["(", "(", "0x10", ")", ")"]) == (16, ConstantKind.INTEGER)
        assert macro_literal(["(", '"a"', '"b"', ")"]) == ("ab", ConstantKind.STRING)

    def test_separate_groups_are_not_stripped(self):
        assert macro_literal(["(", "1", ")", "+", "(", "2", ")"]) is None
        assert macro_literal(["(", "(", "int", ")", "-", "1", ")"]) is None

    def test_utf8_escapes(self):
        assert macro_literal(['"caf\\xc3\\xa9"']) == ("café", ConstantKind.STRING)
        assert macro_literal(['"caf\\303\\251"']) == ("café", ConstantKind.STRING)
        assert macro_literal(['"café"']) == ("café", ConstantKind.STRING)

    def test_empty(self):
        assert macro_literal([]) is None


class TestConstantFromTokens:
    def test_builds_constant(self):
        constant = constant_from_tokens("FOO", ["FOO", "42"])
        assert constant.name == "FOO"
        assert constant.value == 42
        assert constant.kind == ConstantKind.INTEGER
        assert constant.is_macro is True
        assert constant.probed is False

    def test_non_literal_raises(self):
        with pytest.raises(SynthesisError):
            constant_from_tokens("X", ["X", "A", "+", "B"])
