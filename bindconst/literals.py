# Copyright (C) 2019-2024 Intel Corporation
# SPDX-License-Identifier: BSD-3-Clause
"""
Contains the typed values of C literals and the evaluators that produce
them:
- LiteralEvaluator decodes a single literal token
- ExpressionEvaluator combines already-resolved literals with C arithmetic
"""
from __future__ import annotations

import collections
import logging
import math
import re
import typing
from dataclasses import dataclass
from enum import Enum

import numpy as np

from bindconst.errors import EvalError, UnknownMacroError
from bindconst.lexer import (
    CharacterConstant,
    Identifier,
    NumericalConstant,
    Operator,
    ParseError,
    Parser,
    Punctuator,
    StringConstant,
    Token,
)

log = logging.getLogger(__name__)


class LiteralKind(Enum):
    BOOL = "bool"
    CHAR8 = "char8"
    CHAR16 = "char16"
    CHAR32 = "char32"
    WCHAR = "wchar"
    INT = "int"
    FLOAT = "float"
    DOUBLE = "double"
    STRING8 = "string8"
    STRING_UTF8 = "string_utf8"
    STRING16 = "string16"
    STRING32 = "string32"
    STRING_WIDE = "string_wide"


class Encoding(Enum):
    """
    The encoding prefix of a character or string literal.
    """

    NONE = ""
    UTF8 = "u8"
    UTF16 = "u"
    UTF32 = "U"
    WIDE = "L"


CHARACTER_KINDS = {
    Encoding.NONE: LiteralKind.CHAR8,
    Encoding.UTF8: LiteralKind.CHAR8,
    Encoding.UTF16: LiteralKind.CHAR16,
    Encoding.UTF32: LiteralKind.CHAR32,
    Encoding.WIDE: LiteralKind.WCHAR,
}

STRING_KINDS = {
    Encoding.NONE: LiteralKind.STRING8,
    Encoding.UTF8: LiteralKind.STRING_UTF8,
    Encoding.UTF16: LiteralKind.STRING16,
    Encoding.UTF32: LiteralKind.STRING32,
    Encoding.WIDE: LiteralKind.STRING_WIDE,
}

SIMPLE_ESCAPES = {
    "n": 0x0A,
    "t": 0x09,
    "r": 0x0D,
    "a": 0x07,
    "b": 0x08,
    "f": 0x0C,
    "v": 0x0B,
    "e": 0x1B,
    "\\": 0x5C,
    "'": 0x27,
    '"': 0x22,
    "?": 0x3F,
}

HEX_DIGITS = "0123456789abcdefABCDEF"

# C integer types on an LP64 target: (bits, unsigned, number of 'l's)
INT = (32, False, 0)
UINT = (32, True, 0)
LONG = (64, False, 1)
ULONG = (64, True, 1)
LLONG = (64, False, 2)
ULLONG = (64, True, 2)

# Candidate types for each suffix, for decimal and for other radices.
INTEGER_CANDIDATES = {
    "": ([INT, LONG, LLONG], [INT, UINT, LONG, ULONG, LLONG, ULLONG]),
    "u": ([UINT, ULONG, ULLONG], [UINT, ULONG, ULLONG]),
    "l": ([LONG, LLONG], [LONG, ULONG, LLONG, ULLONG]),
    "ul": ([ULONG, ULLONG], [ULONG, ULLONG]),
    "ll": ([LLONG], [LLONG, ULLONG]),
    "ull": ([ULLONG], [ULLONG]),
}

INTEGER_NAMES = {
    INT: "int",
    UINT: "unsigned int",
    LONG: "long",
    ULONG: "unsigned long",
    LLONG: "long long",
    ULLONG: "unsigned long long",
}

INTEGER_RE = re.compile(
    r"(?P<prefix>0[xX]|0[bB])?(?P<digits>[0-9a-fA-F]*?)"
    r"(?P<suffix>(?:[uU][lL]{0,2}|[lL]{1,2}[uU]?)?)",
)
DECIMAL_FLOAT_RE = re.compile(
    r"(?:[0-9]+\.[0-9]*|\.[0-9]+|[0-9]+)(?:[eE][+-]?[0-9]+)?",
)
HEX_FLOAT_RE = re.compile(
    r"0[xX](?:[0-9a-fA-F]+\.?[0-9a-fA-F]*|\.[0-9a-fA-F]+)[pP][+-]?[0-9]+",
)


def integer_dtype(bits: int, unsigned: bool) -> np.dtype:
    """
    Return the numpy dtype of an integer with the given width and sign.
    """
    return np.dtype(f"{'u' if unsigned else 'i'}{bits // 8}")


def wrap(value: int, dtype: np.dtype) -> np.integer:
    """
    Reduce `value` modulo the width of `dtype`, as C conversions do.
    """
    info = np.iinfo(dtype)
    value &= (1 << info.bits) - 1
    if info.min < 0 and value > info.max:
        value -= 1 << info.bits
    return dtype.type(value)


@dataclass(frozen=True)
class LiteralValue:
    """
    The typed value of a C literal (or of an expression over literals).

    `value` is a bool, int, float or str depending on `kind`. Integers keep
    the exact magnitude alongside the radix and suffix they were spelled
    with; characters and strings keep their encoding and the width in bits
    of one code unit. A character whose code point does not fit `width` is
    recorded as-is.
    """

    kind: LiteralKind
    value: bool | int | float | str
    width: int
    radix: int | None = None
    encoding: Encoding | None = None
    unsigned: bool = False
    long: int = 0
    suffix: str = ""
    units: tuple[int, ...] = ()

    def is_integer(self) -> bool:
        return self.kind in [
            LiteralKind.BOOL,
            LiteralKind.INT,
            LiteralKind.CHAR8,
            LiteralKind.CHAR16,
            LiteralKind.CHAR32,
            LiteralKind.WCHAR,
        ]

    def is_floating(self) -> bool:
        return self.kind in [LiteralKind.FLOAT, LiteralKind.DOUBLE]

    def is_numeric(self) -> bool:
        return self.is_integer() or self.is_floating()

    def is_string(self) -> bool:
        return self.kind in STRING_KINDS.values()

    @property
    def dtype(self) -> np.dtype:
        """
        The numpy dtype matching the C type of this value. For strings, the
        dtype of one code unit.
        """
        if self.kind == LiteralKind.BOOL:
            return np.dtype(np.bool_)
        if self.kind == LiteralKind.FLOAT:
            return np.dtype(np.float32)
        if self.kind == LiteralKind.DOUBLE:
            return np.dtype(np.longdouble if self.long else np.float64)
        if self.kind == LiteralKind.INT:
            return integer_dtype(self.width, self.unsigned)
        if self.encoding == Encoding.NONE:
            # plain char is signed on the targets we describe
            return np.dtype(np.int8)
        if self.encoding == Encoding.WIDE:
            return integer_dtype(self.width, self.width != 32)
        return integer_dtype(self.width, True)

    @property
    def type_name(self) -> str:
        """
        The C spelling of the type of this value.
        """
        if self.kind == LiteralKind.INT:
            return INTEGER_NAMES[(self.width, self.unsigned, self.long)]
        if self.kind == LiteralKind.DOUBLE and self.long:
            return "long double"
        names = {
            LiteralKind.BOOL: "bool",
            LiteralKind.FLOAT: "float",
            LiteralKind.DOUBLE: "double",
            LiteralKind.CHAR16: "char16_t",
            LiteralKind.CHAR32: "char32_t",
            LiteralKind.WCHAR: "wchar_t",
            LiteralKind.STRING16: "const char16_t *",
            LiteralKind.STRING32: "const char32_t *",
            LiteralKind.STRING_WIDE: "const wchar_t *",
            LiteralKind.STRING_UTF8: "const char8_t *",
            LiteralKind.STRING8: "const char *",
        }
        if self.kind == LiteralKind.CHAR8:
            return "char8_t" if self.encoding == Encoding.UTF8 else "char"
        return names[self.kind]

    def as_numpy(self) -> np.generic | np.ndarray:
        """
        Return this value as a numpy scalar (or an array of code units for
        strings).
        """
        if self.is_string():
            return np.array(self.units, dtype=np.uint64).astype(self.dtype)
        if self.is_floating():
            return self.dtype.type(self.value)
        if self.kind == LiteralKind.BOOL:
            return np.bool_(self.value)
        return wrap(int(self.value), self.dtype)

    def canonical(self) -> str:
        """
        Return a canonical spelling of the value: decimal for numbers,
        the decoded text for strings.
        """
        if self.kind == LiteralKind.BOOL:
            return "true" if self.value else "false"
        if self.is_floating():
            return repr(float(self.value))
        return str(self.value)


class LiteralEvaluator:
    """
    Converts literal tokens into LiteralValues.

    Raises EvalError for malformed escapes, invalid digits or suffixes, and
    values that cannot be represented.
    """

    def __init__(self, wchar_width: int = 32) -> None:
        if wchar_width not in [16, 32]:
            raise ValueError("'wchar_width' must be 16 or 32.")
        self.wchar_width = wchar_width

    def width_of(self, encoding: Encoding) -> int:
        """
        Return the width in bits of a code unit in `encoding`.
        """
        if encoding == Encoding.UTF16:
            return 16
        if encoding == Encoding.UTF32:
            return 32
        if encoding == Encoding.WIDE:
            return self.wchar_width
        return 8

    def evaluate(self, token: Token) -> LiteralValue:
        """
        Return the value of a single literal token.
        """
        decoders: dict[type, typing.Callable[[typing.Any], LiteralValue]] = {
            NumericalConstant: self.number,
            CharacterConstant: self.character,
            StringConstant: lambda t: self.strings([t]),
            Identifier: self.boolean,
        }
        decoder = decoders.get(type(token))
        if decoder is None:
            raise EvalError(f"'{token}' is not a literal", token.offset)
        return decoder(token)

    def boolean(self, token: Identifier) -> LiteralValue:
        if token.token == "true":
            return LiteralValue(LiteralKind.BOOL, True, 8)
        if token.token == "false":
            return LiteralValue(LiteralKind.BOOL, False, 8)
        raise UnknownMacroError(token.token, token.offset)

    def number(self, token: NumericalConstant) -> LiteralValue:
        """
        Decode an integer or floating constant.
        """
        text = token.token
        lowered = text.lower()
        is_hex = lowered.startswith("0x")
        if (is_hex and "p" in lowered) or (
            not is_hex and ("." in lowered or "e" in lowered)
        ):
            return self.floating(token)
        return self.integer(token)

    def integer(self, token: NumericalConstant) -> LiteralValue:
        text = token.token
        match = INTEGER_RE.fullmatch(text)
        if match is None:
            raise EvalError(
                f"invalid integer constant '{text}'",
                token.offset,
            )
        prefix = (match.group("prefix") or "").lower()
        digits = match.group("digits")
        suffix = match.group("suffix")
        start = match.start("digits")

        if prefix == "0x":
            radix = 16
        elif prefix == "0b":
            radix = 2
        elif len(digits) > 1 and digits.startswith("0"):
            radix = 8
            digits = digits[1:]
            start += 1
        else:
            radix = 10

        if not digits:
            raise EvalError(f"no digits in integer constant '{text}'", token.offset)
        for index, digit in enumerate(digits):
            if int(digit, 16) >= radix:
                raise EvalError(
                    f"invalid digit '{digit}' in base {radix} constant '{text}'",
                    token.offset + start + index,
                )
        value = int(digits, radix)

        key = "".join(sorted(suffix.lower(), key=lambda c: c != "u"))
        decimal, other = INTEGER_CANDIDATES[key]
        candidates = decimal if radix == 10 else other
        for candidate in candidates:
            bits, unsigned, longs = candidate
            if value <= np.iinfo(integer_dtype(bits, unsigned)).max:
                break
        else:
            if value > np.iinfo(np.uint64).max:
                raise EvalError(
                    f"integer constant '{text}' is too large",
                    token.offset,
                )
            log.warning(
                f"integer constant '{text}' is so large that it is unsigned",
            )
            bits, unsigned, longs = ULLONG

        return LiteralValue(
            LiteralKind.INT,
            value,
            bits,
            radix=radix,
            unsigned=unsigned,
            long=longs,
            suffix=suffix,
        )

    def floating(self, token: NumericalConstant) -> LiteralValue:
        text = token.token
        body = text
        suffix = ""
        if body[-1] in "fFlL":
            body, suffix = body[:-1], body[-1]

        if HEX_FLOAT_RE.fullmatch(body):
            value = float.fromhex(body)
            radix = 16
        elif DECIMAL_FLOAT_RE.fullmatch(body):
            value = float(body)
            radix = 10
        else:
            raise EvalError(f"invalid floating constant '{text}'", token.offset)

        if suffix in ["f", "F"]:
            with np.errstate(over="ignore"):
                single = np.float32(value)
            if math.isinf(single) and not math.isinf(value):
                raise EvalError(
                    f"floating constant '{text}' exceeds range of float",
                    token.offset,
                )
            return LiteralValue(
                LiteralKind.FLOAT,
                float(single),
                32,
                radix=radix,
                suffix=suffix,
            )
        if math.isinf(value):
            raise EvalError(
                f"floating constant '{text}' exceeds range of double",
                token.offset,
            )
        return LiteralValue(
            LiteralKind.DOUBLE,
            value,
            64,
            radix=radix,
            long=1 if suffix else 0,
            suffix=suffix,
        )

    @staticmethod
    def escapes(text: str, offset: int) -> list[tuple[int, bool]]:
        """
        Decode the escape sequences in the body of a literal.
        Return a list of (value, is_code_point) pairs: universal character
        names and plain characters are code points, while octal and
        hexadecimal escapes are raw code unit values.
        """
        elements = []
        pos = 0
        while pos < len(text):
            char = text[pos]
            if char != "\\":
                elements.append((ord(char), True))
                pos += 1
                continue

            start = pos
            pos += 1
            if pos == len(text):
                raise EvalError("incomplete escape sequence", offset + start)
            char = text[pos]
            if char in SIMPLE_ESCAPES:
                elements.append((SIMPLE_ESCAPES[char], False))
                pos += 1
            elif char == "x":
                pos += 1
                end = pos
                while end < len(text) and text[end] in HEX_DIGITS:
                    end += 1
                if end == pos:
                    raise EvalError(
                        "\\x used with no following hex digits",
                        offset + start,
                    )
                elements.append((int(text[pos:end], 16), False))
                pos = end
            elif char in "01234567":
                end = pos
                while end < len(text) and end < pos + 3 and text[end] in "01234567":
                    end += 1
                elements.append((int(text[pos:end], 8), False))
                pos = end
            elif char in ["u", "U"]:
                count = 4 if char == "u" else 8
                digits = text[pos + 1 : pos + 1 + count]
                if len(digits) != count or any(d not in HEX_DIGITS for d in digits):
                    raise EvalError(
                        f"incomplete universal character name \\{char}{digits}",
                        offset + start,
                    )
                code_point = int(digits, 16)
                if code_point > 0x10FFFF or 0xD800 <= code_point <= 0xDFFF:
                    raise EvalError(
                        f"\\{char}{digits} is not a valid universal character",
                        offset + start,
                    )
                elements.append((code_point, True))
                pos += 1 + count
            else:
                raise EvalError(
                    f"unknown escape sequence '\\{char}'",
                    offset + start,
                )
        return elements

    def character(self, token: CharacterConstant) -> LiteralValue:
        """
        Decode a character constant to its code point. The declared width
        comes from the encoding prefix and is not enforced on code points.
        """
        encoding = Encoding(token.prefix)
        width = self.width_of(encoding)
        body_offset = token.offset + len(token.prefix) + 1
        elements = self.escapes(token.token, body_offset)
        if not elements:
            raise EvalError("empty character constant", token.offset)
        if len(elements) > 1:
            raise EvalError(
                f"multi-character constant {token.spelling()} is not supported",
                token.offset,
            )
        value, is_code_point = elements[0]
        if not is_code_point and value >= 1 << width:
            raise EvalError(
                f"escape sequence out of range in {token.spelling()}",
                token.offset,
            )
        return LiteralValue(
            CHARACTER_KINDS[encoding],
            value,
            width,
            encoding=encoding,
            unsigned=encoding not in [Encoding.NONE, Encoding.WIDE],
        )

    def strings(self, tokens: list[StringConstant]) -> LiteralValue:
        """
        Decode one string literal, or several adjacent ones concatenated.
        """
        prefixes = {t.prefix for t in tokens if t.prefix}
        if len(prefixes) > 1:
            raise EvalError(
                "concatenation of string literals with different encodings "
                + f"{sorted(prefixes)}",
                tokens[0].offset,
            )
        encoding = Encoding(prefixes.pop() if prefixes else "")
        width = self.width_of(encoding)

        text = []
        units: list[int] = []
        for token in tokens:
            body_offset = token.offset + len(token.prefix) + 1
            for value, is_code_point in self.escapes(token.token, body_offset):
                if is_code_point:
                    text.append(chr(value))
                    units.extend(self.encode(value, width))
                    continue
                if value >= 1 << width:
                    raise EvalError(
                        f"escape sequence out of range in {token.spelling()}",
                        token.offset,
                    )
                text.append(chr(value) if value <= 0x10FFFF else "�")
                units.append(value)

        return LiteralValue(
            STRING_KINDS[encoding],
            "".join(text),
            width,
            encoding=encoding,
            units=tuple(units),
        )

    @staticmethod
    def encode(code_point: int, width: int) -> list[int]:
        """
        Return the code units encoding `code_point` in UTF-8, UTF-16 or
        UTF-32 depending on `width`.
        """
        char = chr(code_point)
        if width == 8:
            return list(char.encode("utf-8", "surrogatepass"))
        if width == 16:
            data = char.encode("utf-16-le", "surrogatepass")
            return [int.from_bytes(data[i : i + 2], "little") for i in range(0, len(data), 2)]
        return [code_point]


def integer_type(value: LiteralValue) -> tuple[int, bool, int]:
    """
    Return the promoted (bits, unsigned, longs) type of an integer value.
    """
    if value.kind == LiteralKind.INT:
        return (value.width, value.unsigned, value.long)
    # bool and character types promote to int, or to unsigned int when
    # int cannot hold all of their values.
    if value.width >= 32 and value.dtype.kind == "u":
        return UINT
    return INT


def common_type(lhs: tuple[int, bool, int], rhs: tuple[int, bool, int]) -> tuple[int, bool, int]:
    """
    Apply the usual arithmetic conversions to two promoted integer types.
    """
    if lhs == rhs:
        return lhs
    if lhs[1] == rhs[1]:
        return max(lhs, rhs)
    unsigned, signed = (lhs, rhs) if lhs[1] else (rhs, lhs)
    if (unsigned[0], unsigned[2]) >= (signed[0], signed[2]):
        return unsigned
    if signed[0] > unsigned[0]:
        return signed
    return (signed[0], True, signed[2])


class ExpressionEvaluator(Parser):
    """
    A specialized token parser for evaluating the fully expanded body of a
    macro: a literal, adjacent string literals, or simple arithmetic over
    numeric literals.
    """

    # Operator precedence, associativity and Python equivalent
    # Lower numbers = higher precedence
    # Based on:
    # https://en.cppreference.com/w/cpp/language/operator_precedence
    OpInfo = collections.namedtuple("OpInfo", ["prec", "assoc"])
    UnaryOperators = {
        "-": OpInfo(12, "RIGHT"),
        "+": OpInfo(12, "RIGHT"),
        "~": OpInfo(12, "RIGHT"),
    }
    BinaryOperators = {
        "|": OpInfo(4, "LEFT"),
        "^": OpInfo(5, "LEFT"),
        "&": OpInfo(6, "LEFT"),
        "<<": OpInfo(9, "LEFT"),
        ">>": OpInfo(9, "LEFT"),
        "+": OpInfo(10, "LEFT"),
        "-": OpInfo(10, "LEFT"),
        "*": OpInfo(11, "LEFT"),
        "/": OpInfo(11, "LEFT"),
        "%": OpInfo(11, "LEFT"),
    }

    def __init__(self, tokens: list[Token], literals: LiteralEvaluator) -> None:
        super().__init__(tokens)
        self.literals = literals

    def term(self) -> LiteralValue:
        """
        Match a literal, a run of adjacent string literals, or true/false.

        <term> := [<number>|<character-constant>|<string-constant>+|
                   'true'|'false']
        """
        token = self.cursor()
        if isinstance(token, StringConstant):
            strings = []
            while not self.eol() and isinstance(self.cursor(), StringConstant):
                strings.append(typing.cast(StringConstant, self.cursor()))
                self.pos += 1
            return self.literals.strings(strings)
        if isinstance(token, (NumericalConstant, CharacterConstant, Identifier)):
            self.pos += 1
            return self.literals.evaluate(token)
        raise ParseError("Expected literal.")

    def primary(self) -> LiteralValue:
        """
        Match a simple expression
        <primary> := [<unary-op><primary>|'('<expression>')'|<term>]
        """
        initial_pos = self.pos

        if isinstance(self.cursor(), Operator):
            operator = self.match_type(Operator)
            if operator.token not in ExpressionEvaluator.UnaryOperators:
                self.pos = initial_pos
                raise ParseError("Not a UnaryOperator")
            (prec, assoc) = ExpressionEvaluator.UnaryOperators[operator.token]
            operand = self.expression(prec)
            return self.__apply_unary_op(operator, operand)

        if self.peek_value("("):
            self.match_value(Punctuator, "(")
            expr = self.expression()
            self.match_value(Punctuator, ")")
            return expr

        return self.term()

    def expression(self, min_precedence: int = 0) -> LiteralValue:
        """
        Match an expression.
        Minimum precedence used to match operators during precedence
        climbing.

        <expression> := <primary>[<binary-op><expression>]?
        """
        expr = self.primary()

        while (
            not self.eol()
            and isinstance(self.cursor(), Operator)
            and self.cursor().token in ExpressionEvaluator.BinaryOperators
            and (
                ExpressionEvaluator.BinaryOperators[self.cursor().token].prec
                >= min_precedence
            )
        ):
            operator = self.match_type(Operator)
            (prec, assoc) = ExpressionEvaluator.BinaryOperators[operator.token]
            rhs = self.expression(prec + 1)
            expr = self.__apply_binary_op(operator, expr, rhs)

        return expr

    @staticmethod
    def __numeric(operator: Token, *operands: LiteralValue) -> None:
        for operand in operands:
            if not operand.is_numeric():
                raise EvalError(
                    f"operand of '{operator}' is not a number",
                    operator.offset,
                )

    @staticmethod
    def __integer_result(value: int, ctype: tuple[int, bool, int]) -> LiteralValue:
        bits, unsigned, longs = ctype
        result = wrap(value, integer_dtype(bits, unsigned))
        return LiteralValue(
            LiteralKind.INT,
            int(result),
            bits,
            radix=10,
            unsigned=unsigned,
            long=longs,
        )

    @staticmethod
    def __floating_result(value: np.floating) -> LiteralValue:
        if value.dtype == np.float32:
            return LiteralValue(LiteralKind.FLOAT, float(value), 32, radix=10)
        return LiteralValue(LiteralKind.DOUBLE, float(value), 64, radix=10)

    def __apply_unary_op(self, operator: Token, operand: LiteralValue) -> LiteralValue:
        """
        Apply the specified unary operator: op operand
        """
        self.__numeric(operator, operand)
        op = operator.token
        if operand.is_floating():
            if op == "~":
                raise EvalError("'~' applied to a floating value", operator.offset)
            value = operand.as_numpy()
            return self.__floating_result(-value if op == "-" else value)

        ctype = integer_type(operand)
        if op == "-":
            return self.__integer_result(-int(operand.value), ctype)
        elif op == "+":
            if operand.kind == LiteralKind.INT:
                return operand
            return self.__integer_result(int(operand.value), ctype)
        elif op == "~":
            return self.__integer_result(~int(operand.value), ctype)
        else:
            raise ValueError("Not a valid unary operator.")

    def __apply_binary_op(
        self,
        operator: Token,
        lhs: LiteralValue,
        rhs: LiteralValue,
    ) -> LiteralValue:
        """
        Apply the specified binary operator: lhs op rhs
        """
        self.__numeric(operator, lhs, rhs)
        op = operator.token

        if lhs.is_floating() or rhs.is_floating():
            if op not in ["+", "-", "*", "/"]:
                raise EvalError(
                    f"invalid operands to '{op}': floating values",
                    operator.offset,
                )
            dtype = np.result_type(
                *[v.dtype if v.is_floating() else np.float32 for v in [lhs, rhs]],
            )
            a = dtype.type(lhs.value)
            b = dtype.type(rhs.value)
            with np.errstate(all="ignore"):
                if op == "+":
                    result = a + b
                elif op == "-":
                    result = a - b
                elif op == "*":
                    result = a * b
                else:
                    result = a / b
            return self.__floating_result(result)

        if op in ["<<", ">>"]:
            # The type of a shift is the promoted type of the left operand
            ctype = integer_type(lhs)
        else:
            ctype = common_type(integer_type(lhs), integer_type(rhs))
        dtype = integer_dtype(ctype[0], ctype[1])
        a = int(wrap(int(lhs.value), dtype))
        b = int(wrap(int(rhs.value), dtype))

        if op == "|":
            value = a | b
        elif op == "^":
            value = a ^ b
        elif op == "&":
            value = a & b
        elif op in ["<<", ">>"]:
            b = int(rhs.value)
            if b < 0 or b >= ctype[0]:
                raise EvalError(
                    f"shift count {b} is out of range",
                    operator.offset,
                )
            value = a << b if op == "<<" else a >> b
        elif op == "+":
            value = a + b
        elif op == "-":
            value = a - b
        elif op == "*":
            value = a * b
        elif op in ["/", "%"]:
            if b == 0:
                raise EvalError("division by zero", operator.offset)
            # C division truncates towards zero
            quotient = abs(a) // abs(b)
            if (a < 0) != (b < 0):
                quotient = -quotient
            value = quotient if op == "/" else a - quotient * b
        else:
            raise ValueError("Not a binary operator.")
        return self.__integer_result(value, ctype)

    def evaluate(self) -> LiteralValue:
        """
        Evaluate the token list as a single value.
        Raises EvalError if the tokens do not form one expression.
        """
        if not self.tokens:
            raise EvalError("empty expression")
        try:
            value = self.expression()
        except ParseError:
            raise EvalError(
                f"cannot evaluate '{self.spelling()}'",
                self.offset(),
            )
        if not self.eol():
            raise EvalError(
                f"unexpected '{self.cursor()}' in '{self.spelling()}'",
                self.offset(),
            )
        return value

    def spelling(self) -> str:
        out = []
        for token in self.tokens:
            if token.prev_white and out:
                out.append(" ")
            out.append(str(token))
        return "".join(out)
