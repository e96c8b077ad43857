# Copyright (C) 2019-2024 Intel Corporation
# SPDX-License-Identifier: BSD-3-Clause
"""
Contains classes and functions for splicing line continuations, stripping
comments and merging whitespace in C header text, while remembering where
each surviving character came from in the original text.
"""
from __future__ import annotations

import itertools as it
import logging
from collections.abc import Callable, Generator, Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from bindconst.errors import LexError

log = logging.getLogger(__name__)


class Category(str, Enum):
    BLANK = "BLANK"
    SRC_NONBLANK = "SRC_NONBLANK"
    CPP_DIRECTIVE = "CPP_DIRECTIVE"


class Scan(Enum):
    """
    States of the comment stripper.
    """

    CODE = "code"
    DIRECTIVE = "directive"
    STRING = "string"
    CHARACTER = "character"
    ESCAPE = "escape"
    SLASH = "slash"
    LINE_COMMENT = "line-comment"
    BLOCK_COMMENT = "block-comment"
    BLOCK_STAR = "block-star"


class one_space_line:
    """
    Collects the characters of one logical line. Consecutive whitespace
    is stored as a single space, and every stored character keeps the
    offset it had in the source.
    """

    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        self.parts: list[str] = []
        self.offsets: list[int] = []
        self.trailing_space = False

    def append_char(self, c: str, offset: int) -> None:
        if c.isspace():
            self.append_space(offset)
        else:
            self.append_nonspace(c, offset)

    def append_space(self, offset: int) -> None:
        if self.trailing_space:
            return
        self.parts.append(" ")
        self.offsets.append(offset)
        self.trailing_space = True

    def append_nonspace(self, c: str, offset: int) -> None:
        self.parts.append(c)
        self.offsets.append(offset)
        self.trailing_space = False

    def category(self) -> Category:
        """
        Returns
        -------
        Category
            BLANK if the line holds nothing but whitespace, CPP_DIRECTIVE
            if its first visible character is '#', and SRC_NONBLANK
            otherwise.
        """
        first = next((p for p in self.parts if p != " "), None)
        if first is None:
            return Category.BLANK
        if first == "#":
            return Category.CPP_DIRECTIVE
        return Category.SRC_NONBLANK

    def flush(self) -> logical_line:
        """
        Return the collected characters as a logical_line and start a new
        line.
        """
        line = logical_line("".join(self.parts), self.offsets, self.category())
        self.reset()
        return line


@dataclass
class logical_line:
    """
    A logical line of C: continuations spliced, comments replaced by a
    space and whitespace merged.
    """

    text: str
    offsets: list[int]
    category: Category

    def offset(self, pos: int) -> int:
        """
        Return the source offset of character `pos`. Positions past the
        end map just after the last character.
        """
        if not self.offsets:
            return -1
        if pos >= len(self.offsets):
            return self.offsets[-1] + 1
        return self.offsets[pos]


class iter_keep1:
    """
    Wraps an iterator so that one item can be pushed back and returned
    again by the next call to next().
    """

    def __init__(self, iterable: Iterable) -> None:
        self.iterator = iter(iterable)
        self.pending: list[Any] = []

    def __iter__(self) -> iter_keep1:
        return self

    def __next__(self) -> Any:
        if self.pending:
            return self.pending.pop()
        return next(self.iterator)

    def putback(self, item: Any) -> None:
        if self.pending:
            raise RuntimeError(
                "iter_keep1 can only have one item put back at a time!",
            )
        self.pending.append(item)


class c_cleaner:
    """
    Strips comments from C text fed one physical line at a time. The
    state survives line boundaries, so block comments and continued
    lines are handled; logical_newline() resets it at the end of a
    logical line.
    """

    def __init__(self, outbuf: one_space_line) -> None:
        self.state = [Scan.CODE]
        self.outbuf = outbuf
        self.comment_start = -1
        self.handlers: dict[Scan, Callable[[int, str, iter_keep1], bool]] = {
            Scan.CODE: self.code,
            Scan.DIRECTIVE: self.code,
            Scan.STRING: self.quoted,
            Scan.CHARACTER: self.quoted,
            Scan.ESCAPE: self.escape,
            Scan.SLASH: self.slash,
            Scan.BLOCK_COMMENT: self.block_comment,
            Scan.BLOCK_STAR: self.block_star,
            Scan.LINE_COMMENT: self.line_comment,
        }

    def in_block_comment(self) -> bool:
        return self.state[-1] in [Scan.BLOCK_COMMENT, Scan.BLOCK_STAR]

    def logical_newline(self, offset: int) -> None:
        """
        Finish a logical line. A dangling '/' is kept; an open quote is
        left for the lexer to diagnose.
        """
        if self.state[-1] == Scan.SLASH:
            self.outbuf.append_nonspace("/", offset - 1)
        if not self.in_block_comment():
            self.state = [Scan.CODE]

    def code(self, offset: int, char: str, chars: iter_keep1) -> bool:
        if char == "/":
            self.state.append(Scan.SLASH)
            return False
        if char in "\"'":
            self.state.append(Scan.STRING if char == '"' else Scan.CHARACTER)
            self.outbuf.append_nonspace(char, offset)
            return False
        directive_start = (
            char == "#"
            and self.state[-1] == Scan.CODE
            and self.outbuf.category() == Category.BLANK
        )
        if directive_start:
            self.state.append(Scan.DIRECTIVE)
        self.outbuf.append_char(char, offset)
        return False

    def quoted(self, offset: int, char: str, chars: iter_keep1) -> bool:
        closing = '"' if self.state[-1] == Scan.STRING else "'"
        if char == "\\":
            self.state.append(Scan.ESCAPE)
        elif char == closing:
            self.state.pop()
        self.outbuf.append_nonspace(char, offset)
        return False

    def escape(self, offset: int, char: str, chars: iter_keep1) -> bool:
        self.state.pop()
        self.outbuf.append_nonspace(char, offset)
        return False

    def slash(self, offset: int, char: str, chars: iter_keep1) -> bool:
        self.state.pop()
        if char == "/":
            self.state.append(Scan.LINE_COMMENT)
        elif char == "*":
            self.state.append(Scan.BLOCK_COMMENT)
            self.comment_start = offset - 1
        else:
            # Division; the next character is scanned as code.
            self.outbuf.append_nonspace("/", offset - 1)
            chars.putback((offset, char))
        return False

    def block_comment(self, offset: int, char: str, chars: iter_keep1) -> bool:
        if char == "*":
            self.state.append(Scan.BLOCK_STAR)
        return False

    def block_star(self, offset: int, char: str, chars: iter_keep1) -> bool:
        if char == "/":
            del self.state[-2:]
            self.outbuf.append_space(offset)
        elif char != "*":
            self.state.pop()
        return False

    def line_comment(self, offset: int, char: str, chars: iter_keep1) -> bool:
        # The rest of the physical line belongs to the comment.
        self.outbuf.append_space(offset)
        return True

    def process(self, chars: Iterable[tuple[int, str]]) -> None:
        """
        Feed (offset, character) pairs of one physical line to the output
        buffer, with comments replaced by a single space.
        """
        pending = iter_keep1(chars)
        for offset, char in pending:
            if self.handlers[self.state[-1]](offset, char, pending):
                return


def physical_lines(source: str) -> Generator[tuple[int, str], None, None]:
    """
    Yield (offset, line) for each physical line of `source`, without the
    line terminator.
    """
    offset = 0
    for line in source.splitlines(keepends=True):
        yield offset, line.rstrip("\r\n")
        offset += len(line)


def c_file_source(source: str) -> Generator[logical_line, None, None]:
    """
    Process `source` in terms of logical lines of C code.
    Yield each non-blank logical line.

    Raises
    ------
    LexError
        If a block comment is not terminated.
    """
    current = one_space_line()
    cleaner = c_cleaner(current)

    spliced = False
    for offset, line in physical_lines(source):
        spliced = line.endswith("\\")
        length = len(line) - 1 if spliced else len(line)
        cleaner.process(zip(it.count(offset), it.islice(line, length)))
        if spliced:
            continue

        end = offset + len(line)
        if cleaner.in_block_comment():
            current.append_space(end)
            continue
        cleaner.logical_newline(end)
        if current.category() == Category.BLANK:
            current.reset()
        else:
            yield current.flush()

    if spliced:
        log.warning("backslash-newline at end of file")

    if cleaner.in_block_comment():
        raise LexError("unterminated comment", cleaner.comment_start)

    if current.category() != Category.BLANK:
        yield current.flush()
