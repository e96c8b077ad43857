# Copyright (C) 2019-2024 Intel Corporation
# SPDX-License-Identifier: BSD-3-Clause
"""
Contains the exceptions raised while extracting constants and layouts, and
the Diagnostic records they are converted into when reported to the caller.
"""
from __future__ import annotations

from dataclasses import dataclass


class ExtractionError(ValueError):
    """
    Base class for all errors reported by the extraction pipeline.
    Carries the offset into the original source text where the problem was
    found (-1 if unknown).
    """

    def __init__(self, message: str, offset: int = -1) -> None:
        super().__init__(message)
        self.message = message
        self.offset = offset


class LexError(ExtractionError):
    """
    Represents a malformed token: an unterminated literal or comment.
    """


class EvalError(ExtractionError):
    """
    Represents a literal or expression that cannot be evaluated.
    """


class StructureError(ExtractionError):
    """
    Represents unbalanced directives, braces or an invalid declaration.
    """


class PasteError(ExtractionError):
    """
    Represents a ## concatenation that does not produce a single token.
    """


class UnknownMacroError(ExtractionError):
    """
    Represents a reference to a name that is not a defined macro.
    """

    def __init__(self, name: str, offset: int = -1) -> None:
        super().__init__(f"'{name}' is not a defined macro", offset)
        self.name = name


class CircularReferenceError(ExtractionError):
    """
    Represents a macro that depends on itself, directly or indirectly.
    """

    def __init__(
        self,
        members: list[str],
        offset: int = -1,
        *,
        dependent: str | None = None,
    ) -> None:
        cycle = " -> ".join(members + members[:1])
        if dependent is None:
            message = f"circular macro reference: {cycle}"
        else:
            message = f"'{dependent}' depends on circular macro reference: {cycle}"
        super().__init__(message, offset)
        self.members = list(members)
        self.dependent = dependent


class DeadlineExceeded(TimeoutError):
    """
    Raised when a pipeline runs past the deadline given by its caller.
    """


@dataclass(frozen=True)
class Diagnostic:
    """
    A structured report of an ExtractionError.
    """

    kind: str
    message: str
    offset: int = -1
    line: int | None = None
    column: int | None = None
    filename: str = "<input>"

    @classmethod
    def from_error(
        cls,
        error: ExtractionError,
        source: str,
        filename: str = "<input>",
    ) -> Diagnostic:
        """
        Build a Diagnostic for `error`, deriving line and column from the
        offset into `source`.
        """
        line, column = location(source, error.offset)
        return cls(
            type(error).__name__,
            error.message,
            error.offset,
            line,
            column,
            filename,
        )

    def __str__(self) -> str:
        if self.line is None:
            return f"{self.filename}: {self.kind}: {self.message}"
        return (
            f"{self.filename}:{self.line}:{self.column}: "
            + f"{self.kind}: {self.message}"
        )


def location(source: str, offset: int) -> tuple[int | None, int | None]:
    """
    Return the 1-based (line, column) of `offset` in `source`, or
    (None, None) if the offset is unknown.
    """
    if offset < 0 or offset > len(source):
        return (None, None)
    line = source.count("\n", 0, offset) + 1
    column = offset - (source.rfind("\n", 0, offset) + 1) + 1
    return (line, column)
