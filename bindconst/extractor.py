# Copyright (C) 2019-2024 Intel Corporation
# SPDX-License-Identifier: BSD-3-Clause
"""
Contains the pipeline that extracts the constants, layouts and imported
symbols of one header, and the batch processing of several headers.
"""
from __future__ import annotations

import logging
import os
import time
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path

from tqdm import tqdm

from bindconst.conditional import ConditionalFilter
from bindconst.declarations import (
    Aggregate,
    DeclarationAnalyzer,
    Declarations,
    FunctionPointer,
    ImportedSymbol,
    TypeRef,
)
from bindconst.directives import parse_source
from bindconst.errors import (
    DeadlineExceeded,
    Diagnostic,
    ExtractionError,
    LexError,
    StructureError,
)
from bindconst.expander import ResolvedConstant, resolve_constants
from bindconst.literals import LiteralEvaluator
from bindconst.macros import MacroTableBuilder
from bindconst.platform import Platform

log = logging.getLogger(__name__)


@dataclass
class ExtractionResult:
    """
    Everything extracted from one header.

    Constants are in definition order; a redefined macro keeps the position
    of its first definition and the value of its last.
    """

    constants: list[ResolvedConstant] = field(default_factory=list)
    layouts: list[Aggregate] = field(default_factory=list)
    symbols: list[ImportedSymbol] = field(default_factory=list)
    diagnostics: list[Diagnostic] = field(default_factory=list)
    circular: list[list[str]] = field(default_factory=list)
    typedefs: dict[str, TypeRef | FunctionPointer] = field(default_factory=dict)
    filename: str = "<input>"

    def constant(self, name: str) -> ResolvedConstant | None:
        for constant in self.constants:
            if constant.name == name:
                return constant
        return None

    def layout(self, name: str) -> Aggregate | None:
        """
        Return the aggregate with tag or typedef alias `name`, or None.
        """
        return Declarations(self.layouts).layout(name)

    def symbol(self, name: str) -> ImportedSymbol | None:
        for symbol in self.symbols:
            if symbol.name == name:
                return symbol
        return None

    def errors(self, kind: type[ExtractionError]) -> list[Diagnostic]:
        """
        Return the diagnostics reporting errors of type `kind`.
        """
        return [d for d in self.diagnostics if d.kind == kind.__name__]


class Deadline:
    """
    Tracks the time left for a pipeline.
    """

    def __init__(self, timeout: float | None, filename: str = "<input>") -> None:
        if timeout is not None and timeout <= 0:
            raise ValueError("'timeout' must be a positive number of seconds.")
        self.timeout = timeout
        self.filename = filename
        self.expires = None if timeout is None else time.monotonic() + timeout

    def check(self) -> None:
        """
        Raises
        ------
        DeadlineExceeded
            If the deadline has passed.
        """
        if self.expires is not None and time.monotonic() > self.expires:
            raise DeadlineExceeded(
                f"extracting '{self.filename}' took longer than {self.timeout}s",
            )


def _diagnostics(
    errors: Iterable[ExtractionError],
    source: str,
    filename: str,
) -> list[Diagnostic]:
    diagnostics = [Diagnostic.from_error(e, source, filename) for e in errors]
    diagnostics.sort(key=lambda d: d.offset)
    for diagnostic in diagnostics:
        log.warning(str(diagnostic))
    return diagnostics


def extract(
    source: str,
    platform: Platform | None = None,
    *,
    filename: str = "<input>",
    timeout: float | None = None,
) -> ExtractionResult:
    """
    Extract the constants, layouts and imported symbols of a header.

    Errors in individual macros and declarations are reported as
    diagnostics. An unterminated literal or comment, or unbalanced
    conditional directives, make the result empty apart from that single
    diagnostic.

    Raises
    ------
    TypeError
        If `platform` is not a Platform.
    DeadlineExceeded
        If extraction takes longer than `timeout` seconds.
    """
    if platform is None:
        platform = Platform()
    elif not isinstance(platform, Platform):
        raise TypeError("'platform' must be a Platform.")
    deadline = Deadline(timeout, filename)
    literals = LiteralEvaluator(platform.wchar_width)
    depth = platform.max_expansion_depth

    try:
        tree = parse_source(source, filename)
    except (LexError, StructureError) as error:
        return ExtractionResult(
            diagnostics=_diagnostics([error], source, filename),
            filename=filename,
        )
    deadline.check()

    builder = MacroTableBuilder(list(platform.macros()))
    conditional = ConditionalFilter(platform, builder, literals)
    nodes = conditional.filter(tree)
    deadline.check()

    resolution = resolve_constants(
        builder.graph,
        literals,
        max_depth=depth,
        check=deadline.check,
    )

    analyzer = DeclarationAnalyzer(builder.graph, literals, max_depth=depth)
    try:
        declarations = analyzer.analyze(nodes)
    except StructureError as error:
        declarations = Declarations(errors=[error])
    deadline.check()

    errors = conditional.errors + resolution.errors + declarations.errors
    result = ExtractionResult(
        constants=resolution.constants,
        layouts=declarations.layouts,
        symbols=declarations.symbols,
        diagnostics=_diagnostics(errors, source, filename),
        circular=resolution.cycles,
        typedefs=declarations.typedefs,
        filename=filename,
    )
    log.debug(
        f"Extracted {len(result.constants)} constants, "
        + f"{len(result.layouts)} layouts and {len(result.symbols)} symbols "
        + f"from {filename}",
    )
    return result


def extract_file(
    path: str | os.PathLike[str],
    platform: Platform | None = None,
    *,
    timeout: float | None = None,
    encoding: str = "utf-8",
) -> ExtractionResult:
    """
    Extract the constants, layouts and imported symbols of the header at
    `path`.
    """
    path = Path(path)
    with open(path, encoding=encoding, errors="replace") as f:
        source = f.read()
    return extract(source, platform, filename=str(path), timeout=timeout)


def extract_files(
    paths: Iterable[str | os.PathLike[str]],
    platform: Platform | None = None,
    *,
    timeout: float | None = None,
    show_progress: bool = False,
    max_workers: int | None = None,
) -> dict[str, ExtractionResult]:
    """
    Extract several headers in parallel, each in its own pipeline.

    Returns
    -------
    dict[str, ExtractionResult]
        The result for each path, in the order the paths were given.

    Raises
    ------
    DeadlineExceeded
        If any header takes longer than `timeout` seconds.
    """
    filenames = [str(p) for p in paths]
    results: dict[str, ExtractionResult | None] = {f: None for f in filenames}

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        future_to_file = {
            executor.submit(extract_file, f, platform, timeout=timeout): f
            for f in results
        }
        for future in tqdm(
            as_completed(future_to_file),
            total=len(future_to_file),
            desc="Extracting",
            unit=" file",
            leave=False,
            disable=not show_progress,
        ):
            filename = future_to_file[future]
            log.debug(f"Finished {filename}")
            results[filename] = future.result()

    return {f: r for f, r in results.items() if r is not None}
