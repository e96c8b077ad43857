# Copyright (C) 2019-2024 Intel Corporation
# SPDX-License-Identifier: BSD-3-Clause
"""
Contains classes that define:
- Tokens from lexing a logical line of C header text
- The Lexer that produces them
"""
from __future__ import annotations

import logging
import re
from collections.abc import Iterator
from dataclasses import dataclass, replace
from enum import Enum

from bindconst.errors import LexError, PasteError

log = logging.getLogger(__name__)

# Encoding prefixes, longest first so that u8 wins over u.
ENCODING_PREFIXES = ["u8", "u", "U", "L", ""]


class TokenError(ValueError):
    """
    Represents a failed attempt to match a particular kind of token.
    The lexer recovers from these by trying the next kind.
    """


class TokenKind(Enum):
    IDENTIFIER = "identifier"
    PUNCTUATOR = "punctuator"
    LITERAL = "literal"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Token:
    """
    Represents a token constructed by the lexer.
    """

    offset: int
    prev_white: bool
    token: str

    kind = TokenKind.UNKNOWN

    def __str__(self) -> str:
        return self.spelling()

    def spelling(self) -> str:
        """
        Return the string representation of this token in the input code.
        """
        return self.token

    def sanitized_str(self) -> str:
        """
        Return the spelling of this token as it must appear inside a
        stringified argument.
        """
        return self.spelling()

    def is_punctuation(self, value: str) -> bool:
        """
        Return True if this token is the operator or punctuator `value`.
        A literal spelled the same way never matches.
        """
        return self.kind == TokenKind.PUNCTUATOR and self.token == value

    def with_white(self, prev_white: bool) -> Token:
        """
        Return a copy of this token with a different leading whitespace flag.
        """
        if prev_white == self.prev_white:
            return self
        return replace(self, prev_white=prev_white)


@dataclass(frozen=True)
class CharacterConstant(Token):
    """
    Represents a character constant. `token` holds the text between the
    quotes, escapes included.
    """

    prefix: str = ""

    kind = TokenKind.LITERAL

    def spelling(self) -> str:
        return f"{self.prefix}'{self.token}'"

    def sanitized_str(self) -> str:
        return self.spelling().replace("\\", "\\\\").replace('"', '\\"')


@dataclass(frozen=True)
class NumericalConstant(Token):
    """
    Represents a 'preprocessing number'.
    These cannot necessarily be evaluated (and may not be valid syntax).
    """

    kind = TokenKind.LITERAL


@dataclass(frozen=True)
class StringConstant(Token):
    """
    Represents a string constant. `token` holds the text between the
    quotes, escapes included.
    """

    prefix: str = ""

    kind = TokenKind.LITERAL

    def spelling(self) -> str:
        return f'{self.prefix}"{self.token}"'

    def sanitized_str(self) -> str:
        """
        Return this string quoted for stringification.
        """
        return self.spelling().replace("\\", "\\\\").replace('"', '\\"')


@dataclass(frozen=True)
class Identifier(Token):
    """
    Represents a C identifier.
    """

    kind = TokenKind.IDENTIFIER


@dataclass(frozen=True)
class Operator(Token):
    """
    Represents a C operator.
    """

    kind = TokenKind.PUNCTUATOR


@dataclass(frozen=True)
class Punctuator(Token):
    """
    Represents a punctuator (e.g. parentheses)
    """

    kind = TokenKind.PUNCTUATOR


@dataclass(frozen=True)
class Unknown(Token):
    """
    Represents an unknown token.
    """


OPERATORS = ["...", "->", "||", "&&", ">>", "<<", "!=", ">=", "<=", "==", "##"] + [
    "-",
    "+",
    "!",
    "*",
    "/",
    "|",
    "&",
    "^",
    "<",
    ">",
    "?",
    ":",
    "~",
    "#",
    "=",
    "%",
]

PUNCTUATORS = ["(", ")", "{", "}", "[", "]", ",", ".", ";"]

WHITESPACE = " \t\n\r\v\f"

PP_NUMBER_RE = re.compile(r"\.?[0-9](?:[eEpP][+-]|[\w.])*")

IDENTIFIER_RE = re.compile(r"[^\W\d]\w*")


class Lexer:
    """
    A lexer for C header text.

    Offsets of tokens are reported relative to the original source: either
    through `offsets`, which maps every character of `string` back to the
    source, or by adding `base` to the position in `string`.
    """

    def __init__(
        self,
        string: str,
        offsets: list[int] | None = None,
        base: int = 0,
    ) -> None:
        self.string = string
        self.offsets = offsets
        self.base = base
        self.pos = 0
        self.prev_white = False

    def offset(self, pos: int | None = None) -> int:
        """
        Return the source offset of position `pos` (default: current).
        """
        if pos is None:
            pos = self.pos
        if self.offsets is None:
            return self.base + pos
        if pos < len(self.offsets):
            return self.offsets[pos]
        if self.offsets:
            return self.offsets[-1] + 1
        return self.base

    def read(self, n: int = 1) -> str:
        """
        Peek at the next `n` characters without consuming them.
        """
        return self.string[self.pos : self.pos + n]

    def eos(self) -> bool:
        return self.pos >= len(self.string)

    def whitespace(self) -> None:
        start = self.pos
        while not self.eos() and self.read() in WHITESPACE:
            self.pos += 1
        if self.pos != start:
            self.prev_white = True

    def literal(self, candidates: list[str]) -> str:
        """
        Consume the first of `candidates` spelled at the current position.
        Candidates sharing a prefix must be listed longest first.
        """
        for candidate in candidates:
            if self.string.startswith(candidate, self.pos):
                self.pos += len(candidate)
                return candidate
        raise TokenError(f"Expected one of {candidates}.")

    def pattern(self, regex: re.Pattern[str], what: str) -> tuple[int, str]:
        """
        Consume a match of `regex`, returning its start and text.
        """
        match = regex.match(self.string, self.pos)
        if match is None:
            raise TokenError(f"Expected {what}.")
        self.pos = match.end()
        return (match.start(), match.group())

    def number(self) -> NumericalConstant:
        """
        Match a preprocessing number. Its spelling is not checked here, so
        it may not be a valid literal.

        <number>   := '.'?<digit>[<alpha>|<digit>|'_'|'.'|<exponent>]*
        <exponent> := ['e'|'E'|'p'|'P']['+'|'-']
        """
        (start, text) = self.pattern(PP_NUMBER_RE, "a number")
        return NumericalConstant(self.offset(start), self.prev_white, text)

    def quoted(self, quote: str, what: str) -> tuple[str, str]:
        """
        Match an optional encoding prefix abutting a quoted literal.
        Return the prefix and the text between the quotes, and advance.

        <quoted> := <prefix>?<quote>[<escape>|<char>]*<quote>
        <prefix> := ['u8'|'u'|'U'|'L']

        Raises
        ------
        LexError
            If the closing quote is missing.
        """
        col = self.pos
        prefix = self.literal(ENCODING_PREFIXES)
        if self.read() != quote:
            self.pos = col
            raise TokenError(f"Expected {what}.")
        self.pos += 1

        chars = []
        while not self.eos() and self.read() != quote:
            # An escaped quote does not close the literal
            step = 2 if self.read() == "\\" else 1
            chars.append(self.read(step))
            self.pos += step

        if self.eos():
            raise LexError(f"unterminated {what}", self.offset(col))
        self.pos += 1
        return (prefix, "".join(chars))

    def character_constant(self) -> CharacterConstant:
        col = self.pos
        prefix, value = self.quoted("'", "character constant")
        return CharacterConstant(self.offset(col), self.prev_white, value, prefix)

    def string_constant(self) -> StringConstant:
        col = self.pos
        prefix, value = self.quoted('"', "string constant")
        return StringConstant(self.offset(col), self.prev_white, value, prefix)

    def identifier(self) -> Identifier:
        """
        <identifier> := [<alpha>|'_'][<alpha>|<digit>|'_']*
        """
        (start, text) = self.pattern(IDENTIFIER_RE, "an identifier")
        return Identifier(self.offset(start), self.prev_white, text)

    def operator(self) -> Operator:
        col = self.pos
        spelling = self.literal(OPERATORS)
        return Operator(self.offset(col), self.prev_white, spelling)

    def punctuator(self) -> Punctuator:
        """
        <punc> := ['('|')'|'{'|'}'|'['|']'|','|'.'|';']
        """
        col = self.pos
        spelling = self.literal(PUNCTUATORS)
        return Punctuator(self.offset(col), self.prev_white, spelling)

    def tokenize_one(self) -> Token | None:
        """
        Consume the token at the current position, trying each kind of
        token in turn. Return None if no kind matches.

        Raises
        ------
        LexError
            If a character or string literal is not terminated.
        """
        rules = [
            self.number,
            self.character_constant,
            self.string_constant,
            self.identifier,
            self.operator,
            self.punctuator,
        ]
        col = self.pos
        for rule in rules:
            try:
                token = rule()
            except TokenError:
                self.pos = col
                continue
            self.prev_white = False
            return token
        return None

    def tokens(self) -> Iterator[Token]:
        """
        Lazily yield all tokens in the string. A character that starts no
        token becomes an Unknown token.
        """
        self.whitespace()
        while not self.eos():
            token = self.tokenize_one()
            if token is None:
                token = Unknown(self.offset(), self.prev_white, self.read())
                self.prev_white = False
                self.pos += 1
            yield token
            self.whitespace()

    def tokenize(self) -> list[Token]:
        return list(self.tokens())

    @staticmethod
    def stringify(tokens: list[Token], offset: int = -1) -> StringConstant:
        """
        Return a string constant spelling the input series of tokens.
        Whitespace between tokens becomes a single space and is dropped at
        both ends.
        """
        parts = []
        for index, p in enumerate(tokens):
            if p.prev_white and index > 0:
                parts.append(" ")
            parts.append(p.sanitized_str())
        if tokens:
            offset = tokens[0].offset
        return StringConstant(offset, False, "".join(parts))

    @staticmethod
    def paste(lhs: Token, rhs: Token) -> Token:
        """
        Concatenate the spellings of two tokens and lex the result as a
        single token.

        Raises
        ------
        PasteError
            If the concatenation is not exactly one valid token.
        """
        spelling = lhs.spelling() + rhs.spelling()
        lexer = Lexer(spelling, base=lhs.offset)
        try:
            token = lexer.tokenize_one()
        except LexError:
            token = None
        if token is None or not lexer.eos():
            raise PasteError(
                f"pasting '{lhs}' and '{rhs}' does not give a valid token",
                rhs.offset,
            )
        return token.with_white(lhs.prev_white)


class TokenSequence:
    """
    A lazy, restartable sequence of tokens: every iteration lexes the text
    again from the start.
    """

    def __init__(
        self,
        string: str,
        offsets: list[int] | None = None,
        base: int = 0,
    ) -> None:
        self.string = string
        self.offsets = offsets
        self.base = base

    def __iter__(self) -> Iterator[Token]:
        return Lexer(self.string, self.offsets, self.base).tokens()

    def __repr__(self) -> str:
        return f"TokenSequence({self.string!r})"


class ParseError(ValueError):
    """
    Represents a failed attempt to match a grammar rule.
    """


class Parser:
    """
    A generic token parser for matching tokens from a list.
    """

    def __init__(self, tokens: list[Token]) -> None:
        self.tokens = tokens
        self.pos = 0

    def cursor(self) -> Token:
        """
        Return the current token in the list.
        """
        try:
            return self.tokens[self.pos]
        except IndexError:
            raise ParseError("No tokens left for cursor to traverse")

    def eol(self) -> bool:
        """
        Return True when the end of the list is reached.
        """
        return self.pos == len(self.tokens)

    def peek_value(self, token_value: str) -> bool:
        """
        Return True if the current token is the keyword or punctuation
        `token_value`. String and character literals never match.
        """
        if self.eol():
            return False
        token = self.cursor()
        return token.kind != TokenKind.LITERAL and token.token == token_value

    def match_type(self, token_type: type) -> Token:
        """
        Match a token of the specified type and advance position.
        """
        if isinstance(self.cursor(), token_type):
            token = self.cursor()
            self.pos += 1
        else:
            raise ParseError(f"Expected {token_type.__name__}.")
        return token

    def match_value(self, token_type: type, token_value: str) -> Token:
        """
        Match a token of the specified type and value, and advance
        position.
        """
        if (
            isinstance(self.cursor(), token_type)
            and self.cursor().token == token_value
        ):
            token = self.cursor()
            self.pos += 1
        else:
            raise ParseError(f"Expected {token_value!s}.")
        return token

    def offset(self) -> int:
        """
        Return the source offset of the current token, or of the end of the
        last token if the list is exhausted.
        """
        if not self.eol():
            return self.cursor().offset
        if self.tokens:
            last = self.tokens[-1]
            return last.offset + len(last.spelling())
        return -1
