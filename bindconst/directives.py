# Copyright (C) 2019-2024 Intel Corporation
# SPDX-License-Identifier: BSD-3-Clause
"""
Contains classes that define:
- Nodes of a source tree (code lines and preprocessor directives)
- The parser that recognizes directives
- The SourceTree built from a header
"""
from __future__ import annotations

import logging
import typing
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum

from bindconst.errors import StructureError
from bindconst.file_source import Category, c_file_source
from bindconst.lexer import (
    Identifier,
    Lexer,
    Operator,
    ParseError,
    Parser,
    Punctuator,
    Token,
)

log = logging.getLogger(__name__)

# Directives whose errors affect a single macro rather than the file.
DEFINITIONS = ["define", "undef"]


class Visit(Enum):
    NEXT = 0
    NEXT_SIBLING = 1


class Role(Enum):
    """
    The part a node plays in a conditional group.
    """

    CODE = 0
    OPEN = 1
    CONTINUE = 2
    CLOSE = 3


@dataclass(eq=False)
class Node:
    """
    Base class for all other Node types.
    Contains a single parent, and an ordered list of children.
    """

    role: typing.ClassVar[Role] = Role.CODE

    children: list[Node] = field(default_factory=list, init=False)
    parent: Node | None = field(default=None, init=False)

    def add_child(self, child: Node) -> None:
        self.children.append(child)
        child.parent = self

    def walk(self) -> Iterable[Node]:
        """
        Returns
        -------
        Iterable[Node]
            This node and all of its descendants, in preorder.
        """
        pending: list[Node] = [self]
        while pending:
            node = pending.pop()
            yield node
            pending.extend(reversed(node.children))

    def visit(self, visitor: Callable[[Node], Visit]) -> None:
        """
        Call `visitor` on this node and its descendants in preorder. The
        children of a node are skipped when `visitor` returns
        Visit.NEXT_SIBLING for it.

        Raises
        ------
        TypeError
            If `visitor` is not callable.
        """
        if not callable(visitor):
            raise TypeError("visitor is not callable.")
        if visitor(self) == Visit.NEXT_SIBLING:
            return
        for child in self.children:
            child.visit(visitor)


@dataclass(eq=False)
class FileNode(Node):
    """
    The root of a tree, named after the header it was built from.
    """

    filename: str

    def __str__(self) -> str:
        return str(self.filename)


@dataclass(eq=False)
class CodeNode(Node):
    """
    Represents a logical line of declarations.
    """

    tokens: list[Token]

    @property
    def offset(self) -> int:
        if not self.tokens:
            return -1
        return self.tokens[0].offset

    def spelling(self) -> list[str]:
        """
        Recover the spelling of this line, with single spaces wherever
        the input had whitespace.
        """
        text = ""
        for token in self.tokens:
            if text and token.prev_white:
                text += " "
            text += str(token)
        return [text]


@dataclass(eq=False)
class DirectiveNode(CodeNode):
    """
    A CodeNode representing a C preprocessor directive.
    """

    @property
    def keyword(self) -> str:
        if len(self.tokens) < 2:
            return ""
        return str(self.tokens[1])


@dataclass(eq=False)
class UnrecognizedDirectiveNode(DirectiveNode):
    """
    A directive that does not affect extraction, such as #include or
    #pragma.
    """


@dataclass(eq=False)
class MalformedDirectiveNode(UnrecognizedDirectiveNode):
    """
    A #define or #undef that could not be parsed. The error is reported
    only if the directive is in a taken branch.
    """

    error: StructureError


@dataclass(eq=False)
class DefineNode(DirectiveNode):
    """
    A #define directive. `args` is None for object-like macros.
    """

    identifier: Identifier
    args: list[Identifier] | None = None
    value: list[Token] = field(default_factory=list)


@dataclass(eq=False)
class UndefNode(DirectiveNode):
    identifier: Identifier


@dataclass(eq=False)
class IfNode(DirectiveNode):
    """
    Opens a conditional group. #ifdef and #ifndef are stored with their
    condition rewritten in terms of defined().
    """

    role: typing.ClassVar[Role] = Role.OPEN

    expr: list[Token]


@dataclass(eq=False)
class ElIfNode(IfNode):
    role: typing.ClassVar[Role] = Role.CONTINUE


@dataclass(eq=False)
class ElseNode(DirectiveNode):
    role: typing.ClassVar[Role] = Role.CONTINUE


@dataclass(eq=False)
class EndIfNode(DirectiveNode):
    role: typing.ClassVar[Role] = Role.CLOSE


class DirectiveParser(Parser):
    """
    A specialized token parser for recognizing directives.

    The first token must be '#'. The keyword that follows selects the
    rule; unknown keywords produce an UnrecognizedDirectiveNode.
    """

    def __init__(self, tokens: list[Token]) -> None:
        super().__init__(tokens)
        self.rules: dict[str, Callable[[], DirectiveNode]] = {
            "define": self.define,
            "undef": self.undef,
            "if": self.if_,
            "ifdef": lambda: self.ifdef_(negate=False),
            "ifndef": lambda: self.ifdef_(negate=True),
            "elif": self.elif_,
            "else": lambda: ElseNode(self.tokens),
            "endif": lambda: EndIfNode(self.tokens),
        }

    def rest(self) -> list[Token]:
        """
        Consume and return the tokens left on the line.
        """
        remaining = self.tokens[self.pos :]
        self.pos = len(self.tokens)
        return remaining

    def parameter(self) -> Identifier:
        """
        <parameter> := <identifier> | <identifier>'...' | '...'
        """
        name = None
        if not self.eol() and isinstance(self.cursor(), Identifier):
            name = typing.cast(Identifier, self.match_type(Identifier))
        if not self.peek_value("..."):
            if name is None:
                raise ParseError("Invalid parameter")
            return name

        ellipsis = self.match_value(Operator, "...")
        if name is None:
            return Identifier(ellipsis.offset, ellipsis.prev_white, "...")
        return Identifier(name.offset, name.prev_white, name.token + "...")

    def parameters(self) -> list[Identifier]:
        """
        <parameters> := [<parameter>[','<parameter>]*]?
        Nothing may follow a variadic parameter.
        """
        params: list[Identifier] = []
        if self.peek_value(")"):
            return params
        params.append(self.parameter())
        while self.peek_value(",") and not params[-1].token.endswith("..."):
            self.match_value(Punctuator, ",")
            params.append(self.parameter())
        return params

    def macro_definition(self) -> tuple[Identifier, list[Identifier] | None]:
        """
        Match a macro name and, for function-like macros, its parameter
        list. The '(' must follow the name without whitespace.

        Returns
        -------
        tuple[Identifier, list[Identifier] | None]
            The name, and the parameters or None for object-like macros.

        Raises
        ------
        StructureError
            If the parameter list is not closed.
        """
        identifier = typing.cast(Identifier, self.match_type(Identifier))
        if not self.peek_value("(") or self.cursor().prev_white:
            return (identifier, None)

        self.match_value(Punctuator, "(")
        try:
            params = self.parameters()
            self.match_value(Punctuator, ")")
        except ParseError:
            raise StructureError(
                f"missing ')' in parameter list of macro '{identifier}'",
                self.offset(),
            )
        return (identifier, params)

    def define(self) -> DefineNode:
        """
        <define> := 'define'<identifier>['('<parameters>')']?<token-list>?
        """
        (identifier, args) = self.macro_definition()
        return DefineNode(self.tokens, identifier, args, self.rest())

    def undef(self) -> UndefNode:
        """
        <undef> := 'undef'<identifier>
        """
        identifier = typing.cast(Identifier, self.match_type(Identifier))
        return UndefNode(self.tokens, identifier)

    def condition(self) -> list[Token]:
        expr = self.rest()
        if not expr:
            keyword = str(self.tokens[1])
            raise StructureError(
                f"#{keyword} with no expression",
                self.tokens[0].offset,
            )
        return expr

    def if_(self) -> IfNode:
        return IfNode(self.tokens, self.condition())

    def elif_(self) -> ElIfNode:
        return ElIfNode(self.tokens, self.condition())

    def ifdef_(self, negate: bool) -> IfNode:
        """
        <ifdef>  := 'ifdef'<identifier>
        <ifndef> := 'ifndef'<identifier>

        Return an IfNode testing defined(<identifier>), negated for
        #ifndef.
        """
        try:
            name = typing.cast(Identifier, self.match_type(Identifier))
        except ParseError:
            keyword = str(self.tokens[1])
            raise StructureError(
                f"#{keyword} requires an identifier",
                self.tokens[0].offset,
            )

        at = name.offset
        expr: list[Token] = []
        if negate:
            expr.append(Operator(at, True, "!"))
        expr += [
            Identifier(at, True, "defined"),
            Punctuator(at, False, "("),
            name,
            Punctuator(at, False, ")"),
        ]
        return IfNode(self.tokens, expr)

    def parse(self) -> DirectiveNode:
        """
        Parse a preprocessor directive.
        Return a DirectiveNode.

        Raises
        ------
        ParseError
            If the line does not start with '#'.
        StructureError
            If a recognized directive has malformed operands.
        """
        try:
            self.match_value(Operator, "#")
        except ParseError:
            raise ParseError("Not a directive.")

        rule = None
        if not self.eol() and isinstance(self.cursor(), Identifier):
            rule = self.rules.get(self.cursor().token)
        if rule is None:
            log.debug(
                "Ignoring directive: " + " ".join(str(x) for x in self.tokens),
            )
            return UnrecognizedDirectiveNode(self.tokens)

        keyword = self.cursor().token
        self.pos += 1
        try:
            directive = rule()
        except ParseError:
            raise StructureError(
                f"#{keyword} requires a macro name",
                self.tokens[0].offset,
            )

        if not self.eol():
            extra = " ".join(str(x) for x in self.tokens[self.pos :])
            log.warning(f"Additional tokens at end of directive: {extra}")
        return directive


class SourceTree:
    """
    Represents a source file as a tree of directive and code nodes.

    Lines inside a branch are children of the directive that opened the
    branch (#if, #elif or #else). The directives of one group are
    siblings, closed by their #endif.
    """

    def __init__(self, filename: str) -> None:
        self.root = FileNode(filename)
        # One (#if, current branch) pair per open group, innermost last.
        self._groups: list[tuple[DirectiveNode, DirectiveNode]] = []

    def walk(self) -> Iterable[Node]:
        yield from self.root.walk()

    def visit(self, visitor: Callable[[Node], Visit]) -> None:
        self.root.visit(visitor)

    def _container(self) -> Node:
        if self._groups:
            return self._groups[-1][1]
        return self.root

    def insert(self, node: Node) -> None:
        """
        Add the next node of the file.

        Raises
        ------
        StructureError
            If #elif, #else or #endif do not match an open #if.
        """
        if node.role == Role.CODE:
            self._container().add_child(node)
            return

        directive = typing.cast(DirectiveNode, node)
        if node.role == Role.OPEN:
            self._container().add_child(directive)
            self._groups.append((directive, directive))
            return

        if not self._groups:
            raise StructureError(
                f"#{directive.keyword} without #if",
                directive.offset,
            )
        (opening, branch) = self._groups.pop()
        if node.role == Role.CONTINUE and isinstance(branch, ElseNode):
            raise StructureError(
                f"#{directive.keyword} after #else",
                directive.offset,
            )
        self._container().add_child(directive)
        if node.role == Role.CONTINUE:
            self._groups.append((opening, directive))

    def finish(self) -> None:
        """
        Check that every #if group was closed.

        Raises
        ------
        StructureError
            If an #if, #ifdef or #ifndef has no matching #endif.
        """
        if self._groups:
            (opening, _) = self._groups[-1]
            raise StructureError(
                "unterminated conditional directive",
                opening.offset,
            )


def parse_source(source: str, filename: str = "<input>") -> SourceTree:
    """
    Build a SourceTree from header text.

    Raises
    ------
    LexError
        If a literal or comment is not terminated.
    StructureError
        If conditional directives are unbalanced or malformed. A malformed
        #define or #undef becomes a MalformedDirectiveNode instead.
    """
    tree = SourceTree(filename)
    for line in c_file_source(source):
        tokens = Lexer(line.text, line.offsets).tokenize()
        if not tokens:
            continue
        node: Node
        if line.category == Category.CPP_DIRECTIVE:
            try:
                node = DirectiveParser(tokens).parse()
            except StructureError as error:
                node = MalformedDirectiveNode(tokens, error)
                if node.keyword not in DEFINITIONS:
                    raise
        else:
            node = CodeNode(tokens)
        tree.insert(node)
    tree.finish()
    return tree
