# Copyright (C) 2019-2024 Intel Corporation
# SPDX-License-Identifier: BSD-3-Clause
"""
Contains the Platform class used to specify the externally supplied macro
definitions (the equivalent of -D and -U) for extracting a header.
"""
from __future__ import annotations

import types
from collections.abc import Iterable, Mapping

from bindconst.macros import MacroDefinition, macro_from_definition_string


class Platform:
    """
    Represents a platform, and everything associated with a platform:
    the symbols defined or forced undefined before the header is read,
    and target properties that affect literal values.

    A Platform is immutable once constructed, so a single instance can be
    shared by pipelines running in parallel.
    """

    def __init__(
        self,
        name: str | None = None,
        *,
        defines: list[str] | None = None,
        undefines: list[str] | None = None,
        wchar_width: int = 32,
        max_expansion_depth: int = 200,
    ) -> None:
        if name is not None and not isinstance(name, str):
            raise TypeError("'name' must be a string.")
        self._name = name

        if defines is None:
            defines = []
        elif not isinstance(defines, list) or not all(
            [isinstance(d, str) for d in defines],
        ):
            raise TypeError("'defines' must be a list of strings.")

        if undefines is None:
            undefines = []
        elif not isinstance(undefines, list) or not all(
            [isinstance(u, str) for u in undefines],
        ):
            raise TypeError("'undefines' must be a list of strings.")

        if wchar_width not in [16, 32]:
            raise ValueError("'wchar_width' must be 16 or 32.")
        if not isinstance(max_expansion_depth, int) or max_expansion_depth < 1:
            raise ValueError("'max_expansion_depth' must be a positive integer.")

        definitions: dict[str, MacroDefinition] = {}
        for definition in defines:
            macro = macro_from_definition_string(definition)
            definitions[macro.name] = macro

        # -U is applied after -D, so an undefined name always wins.
        for identifier in undefines:
            definitions.pop(identifier, None)

        self._definitions = types.MappingProxyType(definitions)
        self._undefines = frozenset(undefines)
        self._wchar_width = wchar_width
        self._max_expansion_depth = max_expansion_depth

    @property
    def name(self) -> str | None:
        return self._name

    @property
    def definitions(self) -> Mapping[str, MacroDefinition]:
        return self._definitions

    @property
    def wchar_width(self) -> int:
        return self._wchar_width

    @property
    def max_expansion_depth(self) -> int:
        return self._max_expansion_depth

    def macros(self) -> Iterable[MacroDefinition]:
        return self._definitions.values()

    def __repr__(self) -> str:
        definitions = ",".join(
            m.spelling()[0] for m in self._definitions.values()
        )
        return (
            f"Platform(name={self._name!r},definitions=[{definitions}],"
            + f"undefines={sorted(self._undefines)})"
        )
