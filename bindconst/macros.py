# Copyright (C) 2019-2024 Intel Corporation
# SPDX-License-Identifier: BSD-3-Clause
"""
Contains the macro definitions collected from a header and the graph of
references between them.
"""
from __future__ import annotations

import collections
import logging
from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum

from bindconst.directives import DirectiveParser
from bindconst.errors import PasteError, StructureError
from bindconst.lexer import Identifier, Lexer, NumericalConstant, Operator, Token

log = logging.getLogger(__name__)


def _representation_string(macro: MacroDefinition) -> str:
    body = " ".join(str(t) for t in macro.body)
    if macro.params is None:
        return f"{macro.name}={body}"
    return f"{macro.name}({','.join(macro.params)})={body}"


@dataclass(frozen=True)
class MacroDefinition:
    """
    Represents a macro definition.

    `params` is None for an object-like macro and a (possibly empty) tuple
    of parameter names for a function-like macro. A variadic macro's last
    parameter collects all remaining arguments; an unnamed `...` is called
    __VA_ARGS__.
    """

    name: str
    params: tuple[str, ...] | None
    body: tuple[Token, ...]
    variadic: bool = False
    version: int = 1
    offset: int = -1
    external: bool = False

    def __post_init__(self) -> None:
        if self.body:
            if self.body[0].is_punctuation("##"):
                raise PasteError(
                    "'##' cannot appear at start of macro expansion",
                    self.body[0].offset,
                )
            if self.body[-1].is_punctuation("##"):
                raise PasteError(
                    "'##' cannot appear at end of macro expansion",
                    self.body[-1].offset,
                )
        if self.params is not None:
            duplicates = [
                p for p, n in collections.Counter(self.params).items() if n > 1
            ]
            if duplicates:
                raise StructureError(
                    f"duplicate macro parameter '{duplicates[0]}' in '{self.name}'",
                    self.offset,
                )

    def is_function_like(self) -> bool:
        return self.params is not None

    def which_arg(self, tok: str) -> int:
        """
        Returns index token occupies in this Macro's parameters. -1 if not
        found.
        """
        if self.params is None:
            return -1
        try:
            return self.params.index(tok)
        except ValueError:
            return -1

    def references(self) -> list[str]:
        """
        Return the identifiers in the body that are not parameters, in
        order of first appearance.
        """
        names: dict[str, None] = {}
        for token in self.body:
            if isinstance(token, Identifier) and self.which_arg(token.token) == -1:
                names.setdefault(token.token, None)
        return list(names)

    def spelling(self) -> list[str]:
        """
        Return (a list containing) a string with a lexable representation of
        this macro.
        """
        return [_representation_string(self)]


def make_macro(
    identifier: Identifier,
    args: list[Identifier] | None,
    expansion: list[Token],
    *,
    version: int = 1,
    external: bool = False,
) -> MacroDefinition:
    """
    Return a MacroDefinition for the parsed pieces of a #define.
    """
    if args is None:
        return MacroDefinition(
            identifier.token,
            None,
            tuple(expansion),
            version=version,
            offset=identifier.offset,
            external=external,
        )

    params = [x.token for x in args]
    variadic = len(params) > 0 and params[-1].endswith("...")
    if variadic:
        if params[-1] == "...":
            # An unnamed variable argument replaces __VA_ARGS__
            params[-1] = "__VA_ARGS__"
        else:
            # Strip '...' from argument name
            params[-1] = params[-1][:-3]
    return MacroDefinition(
        identifier.token,
        tuple(params),
        tuple(expansion),
        variadic=variadic,
        version=version,
        offset=identifier.offset,
        external=external,
    )


def macro_from_definition_string(string: str) -> MacroDefinition:
    """
    Construct a MacroDefinition by parsing a string of the form
    MACRO=expansion, as given to a compiler with -D.
    """
    tokens = Lexer(string).tokenize()
    parser = DirectiveParser(tokens)

    (identifier, args) = parser.macro_definition()

    # Any remaining tokens after an "=" are the macro expansion
    if not parser.eol():
        parser.match_value(Operator, "=")
        expansion = parser.tokens[parser.pos :]
        parser.pos = len(parser.tokens)
    else:
        expansion = [NumericalConstant(-1, False, "1")]

    if expansion:
        expansion[0] = expansion[0].with_white(False)
    return make_macro(identifier, args, expansion, external=True)


class MacroState(Enum):
    UNVISITED = "unvisited"
    IN_PROGRESS = "in-progress"
    DONE = "done"
    CIRCULAR = "circular"
    FAILED = "failed"


@dataclass
class MacroGraph:
    """
    An index-stable table of macro definitions, addressed by integer id,
    with an edge A -> B when the body of A references B.

    Redefining a name replaces the definition in place (last definition
    wins) and keeps its id; removing a name leaves a hole so that ids of
    other macros never change.
    """

    nodes: list[MacroDefinition | None] = field(default_factory=list)
    index: dict[str, int] = field(default_factory=dict)
    states: list[MacroState] = field(default_factory=list)

    def add(self, macro: MacroDefinition) -> int:
        """
        Define a macro, as if the preprocessor encountered #define.
        Return its id.
        """
        if macro.name in self.index:
            node_id = self.index[macro.name]
            self.nodes[node_id] = macro
            self.states[node_id] = MacroState.UNVISITED
            return node_id
        node_id = len(self.nodes)
        self.nodes.append(macro)
        self.states.append(MacroState.UNVISITED)
        self.index[macro.name] = node_id
        return node_id

    def remove(self, name: str) -> None:
        """
        Undefine a previously defined macro.
        """
        if name in self.index:
            node_id = self.index.pop(name)
            self.nodes[node_id] = None

    def __contains__(self, name: object) -> bool:
        return name in self.index

    def __len__(self) -> int:
        return len(self.index)

    def __iter__(self) -> Iterator[MacroDefinition]:
        """
        Iterate over the live definitions in order of first definition.
        """
        for node in self.nodes:
            if node is not None:
                yield node

    def id_of(self, name: str) -> int:
        return self.index[name]

    def get(self, name: str) -> MacroDefinition | None:
        """
        Returns
        -------
        MacroDefinition | None
            The macro associated with `name`, or None.
        """
        if name in self.index:
            return self.nodes[self.index[name]]
        return None

    def node(self, node_id: int) -> MacroDefinition:
        macro = self.nodes[node_id]
        if macro is None:
            raise KeyError(node_id)
        return macro

    def state(self, name: str) -> MacroState:
        return self.states[self.index[name]]

    def set_state(self, name: str, state: MacroState) -> None:
        self.states[self.index[name]] = state

    def edges(self, node_id: int) -> list[int]:
        """
        Return the ids of the macros referenced by the body of `node_id`.
        """
        return [
            self.index[name]
            for name in self.node(node_id).references()
            if name in self.index
        ]

    def dependencies(self, name: str) -> list[str]:
        """
        Return the names of the macros referenced by the body of `name`.
        """
        return [self.node(i).name for i in self.edges(self.index[name])]

    def topological_order(self) -> tuple[list[str], list[str]]:
        """
        Order macros so that every macro follows the macros it references.

        Returns
        -------
        tuple[list[str], list[str]]
            The ordered names of macros that do not depend on a cycle, and
            the names of macros on or depending on a cycle, in definition
            order.
        """
        live = [i for i, node in enumerate(self.nodes) if node is not None]
        remaining = {i: set(self.edges(i)) for i in live}
        dependents: dict[int, list[int]] = collections.defaultdict(list)
        for i, deps in remaining.items():
            for d in deps:
                dependents[d].append(i)

        ready = collections.deque(i for i in live if not remaining[i])
        order = []
        while ready:
            i = ready.popleft()
            order.append(i)
            for dependent in dependents[i]:
                remaining[dependent].discard(i)
                if not remaining[dependent]:
                    ready.append(dependent)

        ordered = set(order)
        blocked = [self.node(i).name for i in live if i not in ordered]
        return ([self.node(i).name for i in order], blocked)


class MacroTableBuilder:
    """
    Collects #define and #undef directives into a MacroGraph.
    A later definition of a name replaces the earlier one.
    """

    def __init__(self, predefined: list[MacroDefinition] | None = None) -> None:
        self.graph = MacroGraph()
        self.versions: collections.Counter[str] = collections.Counter()
        for macro in predefined or []:
            self.graph.add(macro)

    def define(
        self,
        identifier: Identifier,
        args: list[Identifier] | None,
        expansion: list[Token],
    ) -> MacroDefinition:
        """
        Add the definition of a #define directive to the table.
        """
        name = identifier.token
        self.versions[name] += 1
        if expansion:
            expansion = [expansion[0].with_white(False)] + expansion[1:]
        macro = make_macro(
            identifier,
            args,
            expansion,
            version=self.versions[name],
        )
        previous = self.graph.get(name)
        if previous is not None and not previous.external:
            log.debug(
                f"'{name}' redefined (version {macro.version}); "
                + "the last definition wins",
            )
        self.graph.add(macro)
        return macro

    def undefine(self, identifier: Identifier) -> None:
        """
        Remove a macro from the table, as #undef does.
        """
        self.graph.remove(identifier.token)
