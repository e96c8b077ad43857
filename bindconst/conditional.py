# Copyright (C) 2019-2024 Intel Corporation
# SPDX-License-Identifier: BSD-3-Clause
"""
Contains the evaluation of #if conditions and the filter that selects the
branches of a SourceTree taken for a Platform.
"""
from __future__ import annotations

import logging
import typing

from bindconst.directives import (
    CodeNode,
    DefineNode,
    ElseNode,
    FileNode,
    IfNode,
    MalformedDirectiveNode,
    Node,
    Role,
    SourceTree,
    UndefNode,
    Visit,
)
from bindconst.errors import EvalError, ExtractionError
from bindconst.expander import MAX_EXPANSION_DEPTH, MacroExpander, evaluate_tokens
from bindconst.lexer import (
    Identifier,
    NumericalConstant,
    Operator,
    ParseError,
    Parser,
    Punctuator,
    Token,
)
from bindconst.literals import LiteralEvaluator, LiteralValue
from bindconst.macros import MacroGraph, MacroTableBuilder
from bindconst.platform import Platform

log = logging.getLogger(__name__)


class ConditionEvaluator(Parser):
    """
    A specialized token parser for evaluating the condition of an #if or
    #elif directive. Only the presence and truthiness of symbols are
    supported, combined with !, && and ||.
    """

    def __init__(
        self,
        tokens: list[Token],
        graph: MacroGraph,
        literals: LiteralEvaluator,
        max_depth: int = MAX_EXPANSION_DEPTH,
    ) -> None:
        super().__init__(tokens)
        self.graph = graph
        self.literals = literals
        self.max_depth = max_depth

    def truth(self, value: LiteralValue, offset: int) -> bool:
        """
        Return whether `value` is true in a condition.
        """
        if not value.is_integer():
            raise EvalError(
                f"condition value '{value.canonical()}' is not an integer",
                offset,
            )
        return bool(value.value)

    def symbol(self, identifier: Identifier) -> bool:
        """
        Return the truthiness of a symbol: false if it is undefined or has
        an empty body, else the value of its body.
        """
        macro = self.graph.get(identifier.token)
        if macro is None:
            return False
        if macro.is_function_like():
            raise EvalError(
                f"function-like macro '{macro.name}' used as a condition",
                identifier.offset,
            )
        if not macro.body:
            return False
        expander = MacroExpander(self.graph, max_depth=self.max_depth)
        tokens = expander.expand_macro(macro.name)
        if not tokens:
            return False
        return self.truth(evaluate_tokens(tokens, self.literals), identifier.offset)

    def defined(self) -> bool:
        """
        Match a call to defined(X) or defined X.

        <defined> := 'defined'['('<identifier>')'|<identifier>]
        """
        self.match_value(Identifier, "defined")
        if self.peek_value("("):
            self.match_value(Punctuator, "(")
            identifier = self.match_type(Identifier)
            self.match_value(Punctuator, ")")
        else:
            identifier = self.match_type(Identifier)
        return identifier.token in self.graph

    def primary(self) -> bool:
        """
        Match a simple condition.

        <primary> := ['!'<primary>|'('<condition>')'|<defined>|
                      <identifier>|<number>]
        """
        if self.peek_value("!"):
            self.match_value(Operator, "!")
            return not self.primary()

        if self.peek_value("("):
            self.match_value(Punctuator, "(")
            value = self.condition()
            self.match_value(Punctuator, ")")
            return value

        if self.peek_value("defined"):
            return self.defined()

        token = self.cursor()
        if isinstance(token, Identifier):
            self.pos += 1
            return self.symbol(token)
        if isinstance(token, NumericalConstant):
            self.pos += 1
            return self.truth(self.literals.evaluate(token), token.offset)
        raise ParseError("Expected condition.")

    def conjunction(self) -> bool:
        """
        <conjunction> := <primary>['&&'<primary>]*
        """
        value = self.primary()
        while self.peek_value("&&"):
            self.match_value(Operator, "&&")
            rhs = self.primary()
            value = value and rhs
        return value

    def condition(self) -> bool:
        """
        <condition> := <conjunction>['||'<conjunction>]*
        """
        value = self.conjunction()
        while self.peek_value("||"):
            self.match_value(Operator, "||")
            rhs = self.conjunction()
            value = value or rhs
        return value

    def evaluate(self) -> bool:
        """
        Evaluate the condition.

        Raises
        ------
        EvalError
            If the condition uses an unsupported form, or a symbol whose
            value is not an integer.
        """
        try:
            value = self.condition()
        except ParseError:
            raise EvalError(
                "unsupported condition '"
                + " ".join(str(t) for t in self.tokens)
                + "'",
                self.offset(),
            )
        if not self.eol():
            raise EvalError(
                f"unsupported condition: unexpected '{self.cursor()}'",
                self.offset(),
            )
        return value


class ConditionalFilter:
    """
    Selects the nodes of a SourceTree in the branches taken for a Platform.

    #define and #undef directives in taken branches update the macro
    table as they are reached, so later conditions see them.
    """

    def __init__(
        self,
        platform: Platform,
        builder: MacroTableBuilder | None = None,
        literals: LiteralEvaluator | None = None,
    ) -> None:
        self.platform = platform
        if builder is None:
            builder = MacroTableBuilder(list(platform.macros()))
        self.builder = builder
        if literals is None:
            literals = LiteralEvaluator(platform.wchar_width)
        self.literals = literals
        self.errors: list[ExtractionError] = []

    def evaluate(self, node: Node) -> bool:
        """
        Return whether the branch started by `node` is taken.
        A condition that cannot be evaluated is reported and not taken.
        """
        if isinstance(node, ElseNode):
            return True
        if not isinstance(node, IfNode):
            return False
        evaluator = ConditionEvaluator(
            node.expr,
            self.builder.graph,
            self.literals,
            self.platform.max_expansion_depth,
        )
        try:
            return evaluator.evaluate()
        except ExtractionError as error:
            log.warning(f"Treating condition as false: {error.message}")
            self.errors.append(error)
            return False

    def record(self, node: Node) -> None:
        """
        Apply the effect of a #define or #undef in a taken branch.
        """
        if isinstance(node, MalformedDirectiveNode):
            self.errors.append(node.error)
            return
        try:
            if isinstance(node, DefineNode):
                self.builder.define(node.identifier, node.args, node.value)
            elif isinstance(node, UndefNode):
                self.builder.undefine(node.identifier)
        except ExtractionError as error:
            self.errors.append(error)

    def filter(self, tree: SourceTree) -> list[CodeNode]:
        """
        Returns
        -------
        list[CodeNode]
            The nodes in taken branches, in source order, excluding the
            conditional directives themselves.
        """
        active: list[CodeNode] = []
        branch_taken: list[bool] = []

        def visitor(node: Node) -> Visit:
            if isinstance(node, FileNode):
                return Visit.NEXT

            # Ensure we only descend into one branch of an if/else/endif.
            if node.role == Role.OPEN:
                taken = self.evaluate(node)
                branch_taken.append(taken)
            elif node.role == Role.CONTINUE:
                if branch_taken[-1]:
                    return Visit.NEXT_SIBLING
                taken = self.evaluate(node)
                branch_taken[-1] = taken
            elif node.role == Role.CLOSE:
                branch_taken.pop()
                return Visit.NEXT_SIBLING
            else:
                self.record(node)
                active.append(typing.cast(CodeNode, node))
                return Visit.NEXT

            if taken:
                return Visit.NEXT
            return Visit.NEXT_SIBLING

        tree.visit(visitor)
        return active
