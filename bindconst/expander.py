# Copyright (C) 2019-2024 Intel Corporation
# SPDX-License-Identifier: BSD-3-Clause
"""
Contains the MacroExpander, which substitutes macro definitions into token
lists, and the resolver that turns every emitted object-like macro into a
typed constant.
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from bindconst.errors import (
    CircularReferenceError,
    EvalError,
    ExtractionError,
    UnknownMacroError,
)
from bindconst.lexer import Identifier, Lexer, Operator, Token
from bindconst.literals import ExpressionEvaluator, LiteralEvaluator, LiteralValue
from bindconst.macros import MacroDefinition, MacroGraph, MacroState

log = logging.getLogger(__name__)

# The C standard requires at least 15 levels of nesting, but cpp has been
# implemented to handle 200.
MAX_EXPANSION_DEPTH = 200


@dataclass(frozen=True)
class Provenance:
    """
    Where a constant came from: the macro that defines it, which definition
    of that macro was used, and every macro consulted while expanding it.
    """

    macro: str
    version: int
    chain: tuple[str, ...]
    offset: int = -1


@dataclass(frozen=True)
class ResolvedConstant:
    name: str
    value: LiteralValue
    provenance: Provenance


class MacroExpander:
    """
    Expands macros by depth-first search over a MacroGraph.

    The expansion of every object-like macro is memoized. A macro found on
    the active path again is circular: every member of the cycle is marked
    CIRCULAR and all further requests for them fail with the same
    CircularReferenceError.
    """

    def __init__(
        self,
        graph: MacroGraph,
        *,
        max_depth: int = MAX_EXPANSION_DEPTH,
    ) -> None:
        self.graph = graph
        self.max_depth = max_depth
        self.path: list[str] = []
        self.expansions: dict[str, list[Token]] = {}
        self.consulted: dict[str, tuple[str, ...]] = {}
        self.failures: dict[str, ExtractionError] = {}
        self.cycles: list[list[str]] = []
        self.cycle_of: dict[str, list[str]] = {}
        self._traces: list[dict[str, None]] = []

        # States belong to a single expansion pass.
        for i in range(len(self.graph.states)):
            self.graph.states[i] = MacroState.UNVISITED

    def __note(self, name: str) -> None:
        if self._traces:
            self._traces[-1].setdefault(name, None)
            for consulted in self.consulted.get(name, ()):
                self._traces[-1].setdefault(consulted, None)

    def __circular(self, name: str, offset: int) -> CircularReferenceError:
        """
        Mark the members of the cycle closed by `name` as CIRCULAR.
        """
        start = self.path.index(name)
        members = self.path[start:]
        self.cycles.append(members)
        for member in members:
            self.cycle_of[member] = members
            self.graph.set_state(member, MacroState.CIRCULAR)
        log.debug(f"Found circular reference: {' -> '.join(members + [name])}")
        return CircularReferenceError(members, self.graph.get(members[0]).offset)

    def __enter(self, macro: MacroDefinition, offset: int, depth: int) -> None:
        """
        Check that `macro` may be expanded now, and push it on the path.
        """
        if depth > self.max_depth:
            raise EvalError(
                f"macro expansion exceeds maximum depth of {self.max_depth}",
                offset,
            )
        state = self.graph.state(macro.name)
        if state == MacroState.IN_PROGRESS:
            raise self.__circular(macro.name, offset)
        if state == MacroState.CIRCULAR:
            raise CircularReferenceError(
                self.cycle_of[macro.name],
                self.graph.get(self.cycle_of[macro.name][0]).offset,
            )
        self.graph.set_state(macro.name, MacroState.IN_PROGRESS)
        self.path.append(macro.name)

    def expand_macro(self, name: str, depth: int = 0) -> list[Token]:
        """
        Return the fully expanded body of the object-like macro `name`.

        Raises
        ------
        CircularReferenceError
            If `name` is on, or depends on, a cycle.
        EvalError
            If an invocation inside the body is malformed, or expansion is
            nested too deeply.
        PasteError
            If a ## in the expansion does not produce a single token.
        """
        macro = self.graph.get(name)
        if macro is None:
            raise UnknownMacroError(name)

        state = self.graph.state(name)
        if state == MacroState.DONE:
            return self.expansions[name]
        if state == MacroState.FAILED:
            raise self.failures[name]

        self.__enter(macro, macro.offset, depth)
        self._traces.append({})
        try:
            tokens = self.expand(list(macro.body), depth + 1)
        except ExtractionError as error:
            if name in self.cycle_of:
                raise CircularReferenceError(
                    self.cycle_of[name],
                    self.graph.get(self.cycle_of[name][0]).offset,
                )
            if isinstance(error, CircularReferenceError):
                error = CircularReferenceError(
                    error.members,
                    macro.offset,
                    dependent=name,
                )
            self.graph.set_state(name, MacroState.FAILED)
            self.failures[name] = error
            raise error
        finally:
            trace = self._traces.pop()
            self.path.pop()

        self.graph.set_state(name, MacroState.DONE)
        self.expansions[name] = tokens
        self.consulted[name] = tuple(trace)
        return tokens

    def __collect_args(
        self,
        macro: MacroDefinition,
        tokens: list[Token],
        pos: int,
    ) -> tuple[list[list[Token]], int]:
        """
        Collect the arguments of an invocation whose '(' is at `pos`.
        Return the arguments and the position after the closing ')'.
        """
        call = tokens[pos - 1]
        if macro.params is None:
            raise EvalError(
                f"macro '{macro.name}' takes no arguments",
                call.offset,
            )
        variadic_from = len(macro.params) - 1 if macro.variadic else -1

        args: list[list[Token]] = []
        current: list[Token] = []
        depth = 1
        pos += 1
        while pos < len(tokens):
            tok = tokens[pos]
            pos += 1
            if tok.is_punctuation(",") and depth == 1 and len(args) != variadic_from:
                args.append(current)
                current = []
                continue
            if tok.is_punctuation("("):
                depth += 1
            elif tok.is_punctuation(")"):
                depth -= 1
                if depth == 0:
                    args.append(current)
                    return (args, pos)
            current.append(tok)

        raise EvalError(
            f"unterminated argument list invoking macro '{macro.name}'",
            call.offset,
        )

    def __bind(
        self,
        macro: MacroDefinition,
        args: list[list[Token]],
        call: Token,
    ) -> list[list[Token]]:
        """
        Match the collected arguments to the parameters of `macro`.
        """
        if macro.params is None:
            raise EvalError(
                f"macro '{macro.name}' takes no arguments",
                call.offset,
            )
        nparams = len(macro.params)
        if nparams == 0 and args == [[]]:
            args = []
        if macro.variadic and len(args) == nparams - 1:
            args = args + [[]]
        if len(args) != nparams:
            raise EvalError(
                f"macro '{macro.name}' requires {nparams} arguments, "
                + f"but {len(args)} given",
                call.offset,
            )
        return args

    def __substitute(
        self,
        macro: MacroDefinition,
        args: list[list[Token]],
        call: Token,
        depth: int,
    ) -> list[Token]:
        """
        Return the body of `macro` with its parameters replaced.
        Parameters next to # or ## are replaced by the argument as written,
        all others by the fully expanded argument.
        """
        body = macro.body
        expanded: dict[int, list[Token]] = {}

        def is_paste(index: int) -> bool:
            return (
                0 <= index < len(body)
                and body[index].is_punctuation("##")
            )

        # A piece of None marks a ## operator; an empty piece is a
        # placemarker left by an empty argument.
        pieces: list[list[Token] | None] = []
        idx = 0
        while idx < len(body):
            tok = body[idx]
            if isinstance(tok, Operator) and tok.token == "#":
                argidx = -1
                if idx + 1 < len(body):
                    argidx = macro.which_arg(body[idx + 1].token)
                if argidx == -1:
                    raise EvalError(
                        "'#' is not followed by a macro parameter",
                        tok.offset,
                    )
                string = Lexer.stringify(args[argidx], call.offset)
                pieces.append([string.with_white(tok.prev_white)])
                idx += 2
                continue
            if is_paste(idx):
                pieces.append(None)
                idx += 1
                continue

            argidx = -1
            if isinstance(tok, Identifier):
                argidx = macro.which_arg(tok.token)
            if argidx == -1:
                pieces.append([tok])
            else:
                if is_paste(idx - 1) or is_paste(idx + 1):
                    substitution = list(args[argidx])
                else:
                    if argidx not in expanded:
                        expanded[argidx] = self.expand(args[argidx], depth + 1)
                    substitution = list(expanded[argidx])
                if substitution:
                    substitution[0] = substitution[0].with_white(tok.prev_white)
                pieces.append(substitution)
            idx += 1

        result: list[Token] = []
        last: list[Token] = []
        idx = 0
        while idx < len(pieces):
            piece = pieces[idx]
            if piece is not None:
                result.extend(piece)
                last = piece
                idx += 1
                continue
            rhs = pieces[idx + 1]
            if rhs is None:
                raise EvalError("'##' cannot follow '##'", call.offset)
            if last and rhs:
                result[-1] = Lexer.paste(result[-1], rhs[0])
                result.extend(rhs[1:])
                last = rhs
            elif rhs:
                result.extend(rhs)
                last = rhs
            idx += 2
        return result

    def invoke(
        self,
        macro: MacroDefinition,
        args: list[list[Token]],
        call: Token,
        depth: int,
    ) -> list[Token]:
        """
        Expand an invocation of the function-like `macro` with `args`, as
        written at the call site.
        """
        args = self.__bind(macro, args, call)
        substituted = self.__substitute(macro, args, call, depth)

        self.__enter(macro, call.offset, depth)
        try:
            return self.expand(substituted, depth + 1)
        finally:
            self.path.pop()
            if self.graph.state(macro.name) == MacroState.IN_PROGRESS:
                self.graph.set_state(macro.name, MacroState.UNVISITED)

    def expand(self, tokens: list[Token], depth: int = 0) -> list[Token]:
        """
        Expand a list of input tokens using the definitions in the graph.
        Return a list of new tokens, representing the result of macro
        expansion.
        """
        if depth > self.max_depth:
            offset = tokens[0].offset if tokens else -1
            raise EvalError(
                f"macro expansion exceeds maximum depth of {self.max_depth}",
                offset,
            )

        result: list[Token] = []
        pos = 0
        while pos < len(tokens):
            tok = tokens[pos]
            macro = None
            if isinstance(tok, Identifier):
                macro = self.graph.get(tok.token)
            if macro is None:
                result.append(tok)
                pos += 1
                continue

            if macro.is_function_like():
                # A function-like macro name not followed by '(' is left alone
                called = pos + 1 < len(tokens) and tokens[pos + 1].is_punctuation(
                    "(",
                )
                if not called:
                    result.append(tok)
                    pos += 1
                    continue
                args, pos = self.__collect_args(macro, tokens, pos + 1)
                self.__note(macro.name)
                replacement = self.invoke(macro, args, tok, depth + 1)
            else:
                replacement = self.expand_macro(macro.name, depth + 1)
                self.__note(macro.name)
                pos += 1

            if not replacement:
                continue
            replacement = list(replacement)
            replacement[0] = replacement[0].with_white(tok.prev_white)

            # A trailing function-like name may be invoked by the '(' that
            # follows the expansion, so it is rescanned with the rest.
            tail = replacement[-1]
            callee = None
            if isinstance(tail, Identifier):
                callee = self.graph.get(tail.token)
            if (
                callee is not None
                and callee.is_function_like()
                and pos < len(tokens)
                and tokens[pos].is_punctuation("(")
            ):
                result.extend(replacement[:-1])
                tokens = [tail] + tokens[pos:]
                pos = 0
                continue
            result.extend(replacement)
        return result


@dataclass
class Resolution:
    """
    The outcome of resolving every macro in a graph.
    """

    constants: list[ResolvedConstant] = field(default_factory=list)
    errors: list[ExtractionError] = field(default_factory=list)
    cycles: list[list[str]] = field(default_factory=list)


def evaluate_tokens(
    tokens: list[Token],
    literals: LiteralEvaluator,
) -> LiteralValue:
    """
    Evaluate the fully expanded body of a macro.

    Raises
    ------
    UnknownMacroError
        If an identifier other than true or false remains.
    EvalError
        If the tokens are not a literal or an expression over literals.
    """
    for token in tokens:
        if isinstance(token, Identifier) and token.token not in ["true", "false"]:
            raise UnknownMacroError(token.token, token.offset)
    return ExpressionEvaluator(tokens, literals).evaluate()


def emitted(macro: MacroDefinition) -> bool:
    """
    Return whether `macro` becomes a constant: it is object-like, defined
    by the header and not a flag with an empty body.
    """
    return not macro.external and not macro.is_function_like() and bool(macro.body)


def within(macro: MacroDefinition, offset: int) -> bool:
    """
    Return whether `offset` lies in the definition of `macro`, rather than
    in the definition of a macro it expands.
    """
    if offset < macro.offset or macro.offset < 0:
        return False
    last = macro.body[-1] if macro.body else None
    end = macro.offset if last is None else last.offset + len(last.spelling())
    return offset <= end


def resolve_constants(
    graph: MacroGraph,
    literals: LiteralEvaluator,
    *,
    max_depth: int = MAX_EXPANSION_DEPTH,
    check: Callable[[], None] | None = None,
) -> Resolution:
    """
    Resolve every emitted macro of `graph` into a typed constant, in
    definition order. A macro that fails is reported and skipped; it does
    not stop the others.
    """
    expander = MacroExpander(graph, max_depth=max_depth)
    resolution = Resolution(cycles=expander.cycles)
    reported: list[ExtractionError] = []
    reported_cycles: set[frozenset[str]] = set()

    def report(error: ExtractionError) -> None:
        reported.append(error)
        resolution.errors.append(error)

    for macro in list(graph):
        if check is not None:
            check()
        if not emitted(macro):
            continue

        try:
            tokens = expander.expand_macro(macro.name)
        except CircularReferenceError as error:
            if error.dependent is None:
                # One report per cycle, however many members it has
                members = frozenset(error.members)
                if members not in reported_cycles:
                    reported_cycles.add(members)
                    report(error)
            elif not any(error is e for e in reported):
                report(error)
            continue
        except ExtractionError as error:
            # A failure shared with the macro that caused it is reported
            # once, at that macro, plus once per dependent.
            origin = next(
                (n for n, e in expander.failures.items() if e is error),
                macro.name,
            )
            if not any(error is e for e in reported):
                report(error)
            if origin != macro.name:
                report(
                    EvalError(
                        f"'{macro.name}' depends on '{origin}', "
                        + "which cannot be resolved",
                        macro.offset,
                    ),
                )
            continue

        try:
            value = evaluate_tokens(tokens, literals)
        except ExtractionError as error:
            if not within(macro, error.offset):
                error.offset = macro.offset
            report(error)
            continue

        chain = (macro.name,) + expander.consulted.get(macro.name, ())
        provenance = Provenance(macro.name, macro.version, chain, macro.offset)
        resolution.constants.append(
            ResolvedConstant(macro.name, value, provenance),
        )
        log.debug(f"Resolved {macro.name} = {value.canonical()}")

    return resolution
