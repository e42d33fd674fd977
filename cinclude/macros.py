"""``#define`` classification and literal parsing.

A macro's tokens (as produced by libclang, the macro name first) decide how
its value is obtained:

* :attr:`~cinclude.ir.MacroKind.DIRECT` - the value is a literal in the
  tokens (``#define SIZE 100``, ``#define NEG (-1)``, ``#define NAME "x"``,
  ``#define NL '\\n'``).
* :attr:`~cinclude.ir.MacroKind.OPAQUE` - the value is an expression or a
  reference to other macros and has to be computed by the probe program
  (``#define MASK (1 << 4)``, ``#define B A``).
* :attr:`~cinclude.ir.MacroKind.SKIPPED` - not a value at all: function-like
  macros, empty macros, aggregate initializers, member accesses, and names
  with the reserved prefix.
"""

import ast
from typing import (
    Optional,
    Union,
)

from cinclude.errors import (
    SynthesisError,
)
from cinclude.ir import (
    Constant,
    ConstantKind,
    MacroKind,
    SourceLocation,
)

LiteralValue = tuple[Union[int, float, str], ConstantKind]

_INT_SUFFIXES = ("ULL", "LLU", "LL", "UL", "LU", "U", "L")
_STRING_PREFIXES = ("u8", "u", "U", "L")


def classify_macro(
    name: str,
    tokens: list[str],
    function_like: Optional[bool] = None,
    reserved_prefix: str = "_",
) -> MacroKind:
    """Classify a macro by its token stream.

    :param name: Macro name.
    :param tokens: Token spellings, the macro name first.
    :param function_like: Whether the macro takes parameters (see
        :func:`cinclude.libclang.macro_is_function_like`). When unknown, a
        second token ``(`` is taken to mean function-like.
    :param reserved_prefix: Names starting with this prefix are skipped.
        An empty prefix disables the rule.
    :returns: The macro's kind.
    """
    if reserved_prefix and name.startswith(reserved_prefix):
        return MacroKind.SKIPPED
    if len(tokens) < 2:
        return MacroKind.SKIPPED
    if function_like is None:
        function_like = tokens[1] == "("
    if function_like:
        return MacroKind.SKIPPED
    # aggregate initializer / member access
    if tokens[1] == "{" or (len(tokens) > 2 and tokens[2] == "."):
        return MacroKind.SKIPPED
    if macro_literal(tokens[1:]) is not None:
        return MacroKind.DIRECT
    return MacroKind.OPAQUE


def parse_number(token: str) -> Optional[LiteralValue]:
    """Parse a C numeric literal, stripping type suffixes.

    Handles decimal, hex (``0xFF``), octal (``0755``) and binary (``0b101``)
    integers and decimal or hex floats.

    :returns: ``(value, kind)`` or None if ``token`` is not numeric.
    """
    lower = token.lower()
    is_hex = lower.startswith("0x")

    if (is_hex and "p" in lower) or (not is_hex and ("." in token or "e" in lower)):
        if lower.endswith(("f", "l")):
            token = token[:-1]
        try:
            if is_hex:
                return float.fromhex(token), ConstantKind.FLOAT
            return float(token), ConstantKind.FLOAT
        except ValueError:
            return None

    upper = token.upper()
    for suffix in _INT_SUFFIXES:
        if upper.endswith(suffix):
            token = token[: -len(suffix)]
            break

    try:
        if is_hex:
            return int(token, 16), ConstantKind.INTEGER
        if lower.startswith("0b"):
            return int(token, 2), ConstantKind.INTEGER
        if token.startswith("0") and len(token) > 1 and token[1:].isdigit():
            return int(token, 8), ConstantKind.INTEGER
        if token.isdigit():
            return int(token), ConstantKind.INTEGER
    except ValueError:
        pass
    return None


def _strip_prefix(token: str, quote: str) -> Optional[str]:
    """Remove an encoding prefix (``L``, ``u8``...) from a quoted literal."""
    for prefix in ("",) + _STRING_PREFIXES:
        if token.startswith(prefix + quote) and token.endswith(quote) and len(token) >= len(prefix) + 2:
            return token[len(prefix) :]
    return None


def _unquote(literal: str) -> Optional[str]:
    try:
        value = ast.literal_eval(literal)
    except (ValueError, SyntaxError):
        return None
    return value if isinstance(value, str) else None


def _unquote_bytes(literal: str) -> Optional[str]:
    """Evaluate a quoted C string as bytes, decoded as UTF-8.

    Escapes denote bytes, so ``"caf\\xc3\\xa9"`` is ``"café"``.
    """
    if "\\u" in literal or "\\U" in literal:
        return _unquote(literal)
    escaped = "".join(c if c.isascii() else "".join(f"\\x{b:02x}" for b in c.encode("utf-8")) for c in literal)
    try:
        value = ast.literal_eval("b" + escaped)
    except (ValueError, SyntaxError):
        return None
    return value.decode("utf-8", "replace") if isinstance(value, bytes) else None


def parse_char(token: str) -> Optional[LiteralValue]:
    """Parse a single-character literal such as ``'A'`` or ``'\\n'``."""
    body = _strip_prefix(token, "'")
    if body is None:
        return None
    value = _unquote(body)
    if value is None or len(value) != 1:
        return None
    return value, ConstantKind.CHAR


def parse_strings(tokens: list[str]) -> Optional[LiteralValue]:
    """Parse one or more adjacent string literals, concatenated."""
    parts: list[str] = []
    for token in tokens:
        body = _strip_prefix(token, '"')
        if body is None:
            return None
        value = _unquote_bytes(body)
        if value is None:
            return None
        parts.append(value)
    return "".join(parts), ConstantKind.STRING


def _strip_parentheses(tokens: list[str]) -> list[str]:
    """Remove balanced parentheses enclosing the whole token list."""
    while len(tokens) > 2 and tokens[0] == "(" and tokens[-1] == ")":
        depth = 0
        for i, token in enumerate(tokens):
            if token == "(":
                depth += 1
            elif token == ")":
                depth -= 1
            if depth == 0 and i < len(tokens) - 1:
                # ``(a) + (b)``: the first group closes early
                return tokens
        tokens = tokens[1:-1]
    return tokens


def macro_literal(tokens: list[str]) -> Optional[LiteralValue]:
    """Statically derive a macro value from its value tokens.

    :param tokens: Value tokens (the macro name excluded).
    :returns: ``(value, kind)`` when the tokens are a single literal, an
        optionally signed number, or adjacent string literals, possibly in
        balanced outer parentheses; None otherwise.
    """
    tokens = _strip_parentheses(tokens)
    if not tokens:
        return None

    if len(tokens) == 2 and tokens[0] in ("-", "+"):
        parsed = parse_number(tokens[1])
        if parsed is None:
            return None
        value, kind = parsed
        return (-value if tokens[0] == "-" else value), kind

    if len(tokens) == 1:
        token = tokens[0]
        return parse_number(token) or parse_char(token) or parse_strings(tokens)

    return parse_strings(tokens)


def constant_from_tokens(
    name: str,
    tokens: list[str],
    location: Optional[SourceLocation] = None,
) -> Constant:
    """Build the constant for a :attr:`~cinclude.ir.MacroKind.DIRECT` macro.

    :raises SynthesisError: If the value tokens are not a literal.
    """
    parsed = macro_literal(tokens[1:])
    if parsed is None:
        raise SynthesisError(f"not a literal: {' '.join(tokens[1:])}")
    value, kind = parsed
    return Constant(name=name, value=value, kind=kind, is_macro=True, location=location)
