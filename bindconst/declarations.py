# Copyright (C) 2019-2024 Intel Corporation
# SPDX-License-Identifier: BSD-3-Clause
"""
Contains classes that define:
- The layout records of struct, union and enum definitions
- Function pointer signatures and imported symbols
- The analyzer that recovers them from the code lines of a header
"""
from __future__ import annotations

import logging
import typing
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from enum import Enum

import numpy as np

from bindconst.directives import CodeNode, DirectiveNode, Node
from bindconst.errors import EvalError, ExtractionError, StructureError
from bindconst.expander import MAX_EXPANSION_DEPTH, MacroExpander, evaluate_tokens
from bindconst.lexer import (
    Identifier,
    NumericalConstant,
    Operator,
    ParseError,
    Parser,
    Punctuator,
    StringConstant,
    Token,
    TokenKind,
)
from bindconst.literals import LiteralEvaluator
from bindconst.macros import MacroGraph

log = logging.getLogger(__name__)

BUILTIN_TYPES = {
    "void",
    "char",
    "short",
    "int",
    "long",
    "float",
    "double",
    "signed",
    "unsigned",
    "_Bool",
    "bool",
    "__int128",
    "_Complex",
}

QUALIFIERS = {
    "const",
    "volatile",
    "restrict",
    "__restrict",
    "static",
    "inline",
    "__inline",
    "register",
    "auto",
    "_Atomic",
    "__extension__",
}

AGGREGATE_KEYWORDS = ["struct", "union", "enum"]

# Integer types on an LP64 target, after dropping 'signed' and 'int'.
INTEGER_DTYPES = {
    "char": np.int8,
    "short": np.int16,
    "int": np.int32,
    "long": np.int64,
    "long long": np.int64,
    "__int128": np.int64,
    "size_t": np.uint64,
    "ssize_t": np.int64,
    "ptrdiff_t": np.int64,
    "intptr_t": np.int64,
    "uintptr_t": np.uint64,
}

STDINT_TYPES = [
    f"{sign}int{bits}_t" for sign in ["", "u"] for bits in [8, 16, 32, 64]
]


class AggregateKind(Enum):
    STRUCT = "struct"
    UNION = "union"
    ENUM = "enum"


@dataclass(frozen=True)
class TypeRef:
    """
    A reference to a type by name, with pointer depth and array dimensions
    (as written).
    """

    name: str
    pointer: int = 0
    array: tuple[str, ...] = ()
    const: bool = False

    def spelling(self) -> str:
        out = f"const {self.name}" if self.const else self.name
        if self.pointer:
            out += " " + "*" * self.pointer
        return out + "".join(f"[{d}]" for d in self.array)

    def __str__(self) -> str:
        return self.spelling()


@dataclass(frozen=True)
class FunctionPointer:
    """
    The signature of a pointer to a function.
    """

    returns: TypeRef
    params: tuple[TypeRef | FunctionPointer, ...]
    names: tuple[str | None, ...] = ()
    variadic: bool = False
    pointer: int = 1

    def signature(self) -> str:
        params = [p.spelling() for p in self.params]
        if self.variadic:
            params.append("...")
        stars = "*" * self.pointer
        return f"{self.returns.spelling()} ({stars})({', '.join(params) or 'void'})"

    def spelling(self) -> str:
        return self.signature()

    def __str__(self) -> str:
        return self.signature()


@dataclass(eq=False)
class Field:
    """
    A member of a struct or union. Anonymous nested aggregates have no
    name; bitfields record their width and the type their bits are
    allocated from.
    """

    name: str | None
    type: TypeRef | FunctionPointer | Aggregate
    bit_width: int | None = None
    offset: int = -1
    unit_bits: int | None = None

    def is_bitfield(self) -> bool:
        return self.bit_width is not None

    @property
    def allocation(self) -> TypeRef | None:
        if self.is_bitfield():
            return typing.cast(TypeRef, self.type)
        return None


@dataclass(frozen=True)
class Enumerator:
    name: str
    value: int
    offset: int = -1


@dataclass(frozen=True)
class BitfieldUnit:
    """
    Consecutive bitfields sharing one allocation unit of `bits` bits.
    """

    type: TypeRef
    bits: int
    fields: tuple[Field, ...]

    @property
    def used(self) -> int:
        return sum(f.bit_width or 0 for f in self.fields)


@dataclass(eq=False)
class Aggregate:
    """
    A struct, union or enum definition.
    """

    kind: AggregateKind
    tag: str | None
    fields: list[Field] = field(default_factory=list)
    enumerators: list[Enumerator] = field(default_factory=list)
    aliases: list[str] = field(default_factory=list)
    pointer_aliases: list[str] = field(default_factory=list)
    offset: int = -1

    @property
    def name(self) -> str | None:
        """
        The tag of this aggregate or, failing that, its first typedef alias.
        """
        if self.tag is not None:
            return self.tag
        if self.aliases:
            return self.aliases[0]
        return None

    def is_anonymous(self) -> bool:
        return self.tag is None and not self.aliases

    def spelling(self) -> str:
        return f"{self.kind.value} {self.tag or '<anonymous>'}"

    def members(self) -> Iterator[tuple[str, Field]]:
        """
        Iterate over the named members of this aggregate, including the
        members of anonymous nested aggregates.
        """
        for f in self.fields:
            if f.name is not None:
                yield (f.name, f)
            elif isinstance(f.type, Aggregate):
                yield from f.type.members()

    def lookup(self, name: str) -> Field | None:
        """
        Returns
        -------
        Field | None
            The member called `name`, found through anonymous nested
            aggregates, or None.
        """
        for member, f in self.members():
            if member == name:
                return f
        return None

    def enumerator(self, name: str) -> Enumerator | None:
        for e in self.enumerators:
            if e.name == name:
                return e
        return None

    def bitfield_units(self) -> list[BitfieldUnit]:
        """
        Group consecutive bitfields into allocation units: a bitfield joins
        the current unit when it has the same allocation width and still
        fits. A zero-width bitfield or an ordinary member closes the unit.
        In a union every bitfield is a unit of its own.
        """
        units: list[BitfieldUnit] = []
        current: list[Field] = []
        current_type: TypeRef | None = None
        current_bits = 0

        def close() -> None:
            nonlocal current, current_type
            if current and current_type is not None:
                units.append(BitfieldUnit(current_type, current_bits, tuple(current)))
            current = []
            current_type = None

        for f in self.fields:
            allocation = f.allocation
            if allocation is None or f.bit_width is None or f.unit_bits is None:
                close()
                continue
            if f.bit_width == 0:
                close()
                continue
            bits = f.unit_bits
            used = sum(x.bit_width or 0 for x in current)
            if (
                self.kind == AggregateKind.UNION
                or current_type is None
                or bits != current_bits
                or used + f.bit_width > bits
            ):
                close()
                current_type = allocation
                current_bits = bits
            current.append(f)
        close()
        return units


@dataclass(frozen=True)
class ImportedSymbol:
    """
    An object declared extern by the header, such as a function pointer
    the binding must import.
    """

    name: str
    type: FunctionPointer | TypeRef
    offset: int = -1

    def signature(self) -> str:
        return self.type.spelling()


def allocation_bits(allocation: TypeRef) -> int:
    """
    Return the width in bits of an integral bitfield allocation type.

    Raises
    ------
    StructureError
        If the type is not integral.
    """
    if allocation.pointer or allocation.array:
        raise StructureError(f"bit-field has non-integral type '{allocation}'")
    name = allocation.name
    if name.startswith("enum "):
        return np.iinfo(np.int32).bits
    if name in STDINT_TYPES:
        return np.iinfo(np.dtype(name[:-2])).bits
    if name in ["_Bool", "bool"]:
        return 1

    words = name.split()
    if "float" in words or "double" in words or "void" in words:
        raise StructureError(f"bit-field has non-integral type '{allocation}'")
    if words.count("long") == 2:
        key = "long long"
    else:
        key = " ".join(w for w in words if w not in ["signed", "unsigned", "int"])
        key = key or "int"
    if key not in INTEGER_DTYPES:
        raise StructureError(f"bit-field has non-integral type '{allocation}'")
    return np.iinfo(INTEGER_DTYPES[key]).bits


@dataclass
class Specifiers:
    """
    The type specifiers of a declaration.
    """

    name: str
    const: bool = False
    aggregate: Aggregate | None = None
    offset: int = -1


@dataclass
class Declarator:
    """
    The declarator of one name in a declaration.
    """

    name: Identifier | None
    pointer: int = 0
    array: list[str] = field(default_factory=list)
    params: tuple[list[TypeRef | FunctionPointer], list[str | None], bool] | None = None
    function_pointer: int = 0

    def build(self, specifiers: Specifiers) -> TypeRef | FunctionPointer:
        """
        Return the type this declarator gives to its name.
        """
        base = TypeRef(
            specifiers.name,
            self.pointer,
            tuple(self.array) if not self.function_pointer else (),
            specifiers.const,
        )
        if self.function_pointer and self.params is not None:
            params, names, variadic = self.params
            return FunctionPointer(
                base,
                tuple(params),
                tuple(names),
                variadic,
                self.function_pointer,
            )
        return base

    def is_function(self) -> bool:
        return self.params is not None and not self.function_pointer


def spelling(tokens: list[Token]) -> str:
    out = []
    for token in tokens:
        if token.prev_white and out:
            out.append(" ")
        out.append(str(token))
    return "".join(out)


class DeclarationParser(Parser):
    """
    A specialized token parser for recognizing the declarations of a
    single top-level statement.
    """

    def __init__(self, tokens: list[Token], analyzer: DeclarationAnalyzer) -> None:
        super().__init__(tokens)
        self.analyzer = analyzer
        self.aggregates: list[Aggregate] = []
        self.symbols: list[ImportedSymbol] = []
        self.typedefs: dict[str, TypeRef | FunctionPointer] = {}
        self.enumerators: dict[str, int] = {}
        self.nesting = 0

    def at(self, value: str, ahead: int = 0) -> bool:
        """
        Return True if the token `ahead` positions from the cursor is the
        keyword or punctuation `value`.
        """
        pos = self.pos + ahead
        if pos >= len(self.tokens):
            return False
        token = self.tokens[pos]
        return token.kind != TokenKind.LITERAL and token.token == value

    def expect(self, value: str) -> Token:
        if not self.at(value):
            found = "end of declaration" if self.eol() else f"'{self.cursor()}'"
            raise ParseError(f"Expected '{value}' but found {found}.")
        token = self.cursor()
        self.pos += 1
        return token

    def until(self, stops: list[str]) -> list[Token]:
        """
        Match the tokens up to the first of `stops` outside of parentheses
        and brackets.
        """
        tokens: list[Token] = []
        depth = 0
        while not self.eol():
            token = self.cursor()
            if depth == 0 and token.kind != TokenKind.LITERAL and token.token in stops:
                break
            if token.token in ["(", "["] and token.kind != TokenKind.LITERAL:
                depth += 1
            elif token.token in [")", "]"] and token.kind != TokenKind.LITERAL:
                depth -= 1
            tokens.append(token)
            self.pos += 1
        return tokens

    def specifiers(self) -> Specifiers:
        """
        Match the type specifiers and qualifiers of a declaration.

        <specifiers> := [<qualifier>|<builtin>|<aggregate>|<typedef-name>]+
        """
        words: list[str] = []
        type_name = None
        aggregate = None
        const = False
        offset = self.offset()

        while not self.eol() and isinstance(self.cursor(), Identifier):
            word = self.cursor().token
            if word in AGGREGATE_KEYWORDS:
                if words or type_name is not None:
                    break
                type_name, aggregate = self.aggregate_specifier()
                continue
            if word in QUALIFIERS:
                const = const or word == "const"
            elif word in BUILTIN_TYPES and type_name is None:
                words.append(word)
            elif not words and type_name is None:
                type_name = word
            else:
                break
            self.pos += 1

        if type_name is None:
            if not words:
                raise ParseError("Expected type specifier.")
            type_name = " ".join(words)
        return Specifiers(type_name, const, aggregate, offset)

    def aggregate_specifier(self) -> tuple[str, Aggregate | None]:
        """
        Match a struct, union or enum specifier, with or without a body.
        Return the type name and the Aggregate it defines (or None).

        <aggregate> := ['struct'|'union'|'enum']<identifier>?['{'<body>'}']?
        """
        keyword = self.match_type(Identifier)
        kind = AggregateKind(keyword.token)
        tag = None
        if not self.eol() and isinstance(self.cursor(), Identifier):
            tag = self.match_type(Identifier).token
        if not self.at("{"):
            if tag is None:
                raise ParseError(f"Expected {kind.value} tag or definition.")
            return (f"{kind.value} {tag}", None)

        aggregate = Aggregate(kind, tag, offset=keyword.offset)
        index = len(self.aggregates)
        self.expect("{")
        self.nesting += 1
        try:
            if kind == AggregateKind.ENUM:
                self.enumerator_list(aggregate)
            else:
                while not self.at("}"):
                    if self.eol():
                        raise ParseError(
                            f"Expected '}}' closing {aggregate.spelling()}.",
                        )
                    self.member_declaration(aggregate)
        finally:
            self.nesting -= 1
        self.expect("}")

        # Anonymous nested aggregates are only reachable through their parent
        if self.nesting == 0 or tag is not None:
            self.aggregates.insert(index, aggregate)
        return (aggregate.spelling(), aggregate)

    def enumerator_list(self, aggregate: Aggregate) -> None:
        """
        Match the enumerators of an enum; an enumerator without a value
        is one more than the previous one.

        <enumerators> := <identifier>['='<expression>]?[','<enumerators>]?','?
        """
        next_value = 0
        while not self.at("}"):
            identifier = self.match_type(Identifier)
            value = next_value
            if self.at("="):
                self.expect("=")
                expr = self.until([",", "}"])
                value = self.analyzer.constant(expr, self.enumerators, identifier.offset)
            aggregate.enumerators.append(
                Enumerator(identifier.token, value, identifier.offset),
            )
            self.enumerators[identifier.token] = value
            next_value = value + 1
            if not self.at(","):
                break
            self.expect(",")

    def member_declaration(self, aggregate: Aggregate) -> None:
        """
        Match the declaration of one or more members.

        <member> := <specifiers>[<declarator>[':'<expression>]?]*';'
        """
        specifiers = self.specifiers()

        # Anonymous struct or union
        if self.at(";") and specifiers.aggregate is not None:
            self.expect(";")
            if specifiers.aggregate.tag is None:
                aggregate.fields.append(
                    Field(None, specifiers.aggregate, offset=specifiers.offset),
                )
            return

        while True:
            offset = self.offset()
            declarator = self.declarator(abstract=self.at(":"))
            member_type: TypeRef | FunctionPointer | Aggregate
            if declarator.is_function():
                raise ParseError("Functions cannot be members.")
            if (
                specifiers.aggregate is not None
                and not declarator.pointer
                and not declarator.array
                and not declarator.function_pointer
            ):
                member_type = specifiers.aggregate
            else:
                member_type = declarator.build(specifiers)

            name = declarator.name.token if declarator.name is not None else None
            width = None
            bits = None
            if self.at(":"):
                colon = self.expect(":")
                expr = self.until([",", ";"])
                width = self.analyzer.constant(expr, self.enumerators, colon.offset)
                if isinstance(member_type, Aggregate):
                    member_type = declarator.build(specifiers)
                bits = self.analyzer.check_bitfield(
                    name,
                    typing.cast(TypeRef, member_type),
                    width,
                    offset,
                    self.typedefs,
                )
            elif name is None:
                raise ParseError("Expected member name.")

            aggregate.fields.append(Field(name, member_type, width, offset, bits))
            if not self.at(","):
                break
            self.expect(",")
        self.expect(";")

    def declarator(self, abstract: bool = False) -> Declarator:
        """
        Match a declarator: pointers, a name, array dimensions and either
        a parameter list or a parenthesized function pointer.

        <declarator> := '*'*[<identifier>|'(''*'+<identifier>?')'<params>]?
                        ['['<expression>?']']*<params>?
        """
        declarator = Declarator(None)
        while self.at("*"):
            self.expect("*")
            declarator.pointer += 1
            while not self.eol() and self.cursor().token in QUALIFIERS:
                self.pos += 1

        if self.at("(") and self.at("*", ahead=1):
            self.expect("(")
            while self.at("*"):
                self.expect("*")
                declarator.function_pointer += 1
            if not self.eol() and isinstance(self.cursor(), Identifier):
                declarator.name = typing.cast(Identifier, self.match_type(Identifier))
            while self.at("["):
                self.array_dimension()
            self.expect(")")
            declarator.params = self.parameter_list()
            return declarator

        if not self.eol() and isinstance(self.cursor(), Identifier):
            declarator.name = typing.cast(Identifier, self.match_type(Identifier))
        elif not abstract:
            raise ParseError("Expected declarator.")

        while self.at("["):
            declarator.array.append(self.array_dimension())
        if self.at("("):
            declarator.params = self.parameter_list()
        return declarator

    def array_dimension(self) -> str:
        self.expect("[")
        dimension = spelling(self.until(["]"]))
        self.expect("]")
        return dimension

    def parameter_list(
        self,
    ) -> tuple[list[TypeRef | FunctionPointer], list[str | None], bool]:
        """
        Match a parameter list. Return the parameter types, their names and
        whether the function is variadic.

        <params> := '('['void'|<param>[','<param>]*[',''...']?]?')'
        """
        params: list[TypeRef | FunctionPointer] = []
        names: list[str | None] = []
        variadic = False
        self.expect("(")
        if self.at("void") and self.at(")", ahead=1):
            self.expect("void")
        while not self.at(")"):
            if self.at("..."):
                self.expect("...")
                variadic = True
                break
            specifiers = self.specifiers()
            declarator = self.declarator(abstract=True)
            params.append(declarator.build(specifiers))
            names.append(declarator.name.token if declarator.name else None)
            if not self.at(","):
                break
            self.expect(",")
        self.expect(")")
        return (params, names, variadic)

    def typedef(self) -> None:
        """
        Match a typedef. Plain aliases of an aggregate are recorded on the
        aggregate; all other aliases are recorded by name.

        <typedef> := 'typedef'<specifiers><declarator>[','<declarator>]*';'
        """
        self.expect("typedef")
        specifiers = self.specifiers()
        while True:
            declarator = self.declarator()
            if declarator.name is None:
                raise ParseError("Expected declarator name.")
            name = declarator.name.token
            aggregate = specifiers.aggregate
            plain = not declarator.array and not declarator.function_pointer
            if aggregate is not None and plain and not declarator.pointer:
                aggregate.aliases.append(name)
            elif aggregate is not None and plain and declarator.pointer == 1:
                aggregate.pointer_aliases.append(name)
                self.typedefs[name] = declarator.build(specifiers)
            else:
                self.typedefs[name] = declarator.build(specifiers)
            if not self.at(","):
                break
            self.expect(",")
        self.expect(";")

    def extern(self) -> None:
        """
        Match an extern declaration, recording function pointers as
        imported symbols.

        <extern> := 'extern'<specifiers><declarator>[','<declarator>]*';'
        """
        self.expect("extern")
        specifiers = self.specifiers()
        while True:
            declarator = self.declarator()
            if declarator.name is None:
                raise ParseError("Expected declarator name.")
            if declarator.function_pointer:
                self.symbols.append(
                    ImportedSymbol(
                        declarator.name.token,
                        declarator.build(specifiers),
                        declarator.name.offset,
                    ),
                )
            else:
                log.debug(f"Skipping extern declaration of '{declarator.name}'")
            if self.at("="):
                self.until([",", ";"])
            if not self.at(","):
                break
            self.expect(",")
        self.expect(";")

    def declaration(self) -> None:
        """
        Match one top-level declaration. Only the aggregates defined by
        declarations other than typedef and extern are of interest.
        """
        if self.at("typedef"):
            self.typedef()
        elif self.at("extern"):
            self.extern()
        else:
            self.specifiers()


@dataclass
class Declarations:
    """
    The layouts, imported symbols and type aliases found in a header.
    """

    layouts: list[Aggregate] = field(default_factory=list)
    symbols: list[ImportedSymbol] = field(default_factory=list)
    typedefs: dict[str, TypeRef | FunctionPointer] = field(default_factory=dict)
    errors: list[ExtractionError] = field(default_factory=list)

    def layout(self, name: str) -> Aggregate | None:
        """
        Return the aggregate with tag or typedef alias `name`, or None.
        """
        for aggregate in self.layouts:
            if aggregate.tag == name or name in aggregate.aliases:
                return aggregate
        return None

    def symbol(self, name: str) -> ImportedSymbol | None:
        for symbol in self.symbols:
            if symbol.name == name:
                return symbol
        return None


class DeclarationAnalyzer:
    """
    Recovers struct, union and enum layouts, typedefs and extern function
    pointers from the code lines of a header.

    Each top-level declaration is analyzed separately: a declaration that
    cannot be parsed, or that has an invalid bitfield, is reported and
    skipped. Unbalanced braces are fatal.
    """

    def __init__(
        self,
        graph: MacroGraph | None = None,
        literals: LiteralEvaluator | None = None,
        *,
        max_depth: int = MAX_EXPANSION_DEPTH,
    ) -> None:
        self.graph = graph if graph is not None else MacroGraph()
        self.literals = literals if literals is not None else LiteralEvaluator()
        self.expander = MacroExpander(self.graph, max_depth=max_depth)
        self.result = Declarations()
        self.enumerators: dict[str, int] = {}

    def constant(
        self,
        tokens: list[Token],
        enumerators: dict[str, int],
        offset: int,
    ) -> int:
        """
        Evaluate an integer constant expression, which may use macros and
        enumerators already defined.
        """
        if not tokens:
            raise EvalError("expected a constant expression", offset)
        expanded = []
        for token in self.expander.expand(tokens):
            value = None
            if isinstance(token, Identifier):
                value = enumerators.get(token.token, self.enumerators.get(token.token))
            if value is None:
                expanded.append(token)
                continue
            number = NumericalConstant(token.offset, token.prev_white, str(abs(value)))
            if value < 0:
                expanded.extend(
                    [
                        Punctuator(token.offset, token.prev_white, "("),
                        Operator(token.offset, False, "-"),
                        number.with_white(False),
                        Punctuator(token.offset, False, ")"),
                    ],
                )
            else:
                expanded.append(number)

        result = evaluate_tokens(expanded, self.literals)
        if not result.is_integer():
            raise EvalError(
                f"'{spelling(tokens)}' is not an integer constant",
                offset,
            )
        return int(result.value)

    def check_bitfield(
        self,
        name: str | None,
        allocation: TypeRef,
        width: int,
        offset: int,
        typedefs: dict[str, TypeRef | FunctionPointer] | None = None,
    ) -> int:
        """
        Check the width of a bitfield against its allocation type.
        Return the width in bits of the allocation type.

        Raises
        ------
        StructureError
            If the width is negative, zero for a named bitfield, or wider
            than the allocation type.
        """
        label = f"'{name}'" if name is not None else "unnamed bit-field"
        resolved = self.resolve(allocation, typedefs)
        try:
            bits = allocation_bits(resolved)
        except StructureError as error:
            raise StructureError(f"{label}: {error.message}", offset)
        if width < 0:
            raise StructureError(f"bit-field {label} has negative width ({width})", offset)
        if width == 0 and name is not None:
            raise StructureError(f"named bit-field {label} has zero width", offset)
        if width > bits:
            raise StructureError(
                f"width of bit-field {label} ({width} bits) exceeds the width "
                + f"of its type '{allocation}' ({bits} bits)",
                offset,
            )
        return bits

    def resolve(
        self,
        ref: TypeRef,
        typedefs: dict[str, TypeRef | FunctionPointer] | None = None,
    ) -> TypeRef:
        """
        Follow typedef aliases of `ref` to the underlying type.
        """
        seen = set()
        while ref.name not in seen:
            seen.add(ref.name)
            target = None
            if typedefs is not None:
                target = typedefs.get(ref.name)
            if target is None:
                target = self.result.typedefs.get(ref.name)
            if not isinstance(target, TypeRef):
                break
            ref = TypeRef(
                target.name,
                ref.pointer + target.pointer,
                target.array + ref.array,
                ref.const or target.const,
            )
        return ref

    def statements(self, tokens: list[Token]) -> Iterator[list[Token]]:
        """
        Split tokens into top-level statements: up to a ';' outside of
        braces, or the closing brace of a function body. The contents of
        extern "C" blocks are treated as top-level.

        Raises
        ------
        StructureError
            If braces are unbalanced.
        """
        statement: list[Token] = []
        depth = 0
        function_body = False
        opening: list[Token] = []
        extern_blocks = 0
        pos = 0
        while pos < len(tokens):
            token = tokens[pos]
            pos += 1
            is_punct = isinstance(token, Punctuator)

            if (
                depth == 0
                and not statement
                and isinstance(token, Identifier)
                and token.token == "extern"
                and pos + 1 < len(tokens)
                and isinstance(tokens[pos], StringConstant)
                and tokens[pos + 1].is_punctuation("{")
            ):
                extern_blocks += 1
                pos += 2
                continue

            if is_punct and token.token == "{":
                if depth == 0:
                    function_body = bool(statement) and statement[
                        -1
                    ].is_punctuation(")")
                opening.append(token)
                depth += 1
            elif is_punct and token.token == "}":
                if depth == 0:
                    if extern_blocks and not statement:
                        extern_blocks -= 1
                        continue
                    raise StructureError("unbalanced '}'", token.offset)
                opening.pop()
                depth -= 1
                if depth == 0 and function_body:
                    statement.append(token)
                    yield statement
                    statement = []
                    function_body = False
                    continue
            elif is_punct and token.token == ";" and depth == 0:
                statement.append(token)
                yield statement
                statement = []
                continue
            statement.append(token)

        if depth:
            raise StructureError("'{' is never closed", opening[0].offset)
        if extern_blocks:
            log.warning("extern block is never closed")
        if statement:
            log.warning(f"Ignoring incomplete declaration: {spelling(statement)}")

    def analyze(self, nodes: Iterable[Node]) -> Declarations:
        """
        Analyze the code lines among `nodes`, in order.

        Raises
        ------
        StructureError
            If braces are unbalanced.
        """
        tokens: list[Token] = []
        for node in nodes:
            if isinstance(node, CodeNode) and not isinstance(node, DirectiveNode):
                tokens.extend(node.tokens)

        for statement in self.statements(tokens):
            keywords = {t.token for t in statement if isinstance(t, Identifier)}
            if not keywords & {"typedef", "extern", *AGGREGATE_KEYWORDS}:
                continue
            if statement[-1].is_punctuation("}"):
                # function definitions are skipped
                continue

            parser = DeclarationParser(statement, self)
            try:
                parser.declaration()
            except ParseError as error:
                self.result.errors.append(
                    StructureError(
                        f"cannot parse declaration '{spelling(statement)}': {error}",
                        statement[0].offset,
                    ),
                )
                continue
            except ExtractionError as error:
                self.result.errors.append(error)
                continue

            self.result.layouts.extend(parser.aggregates)
            self.result.symbols.extend(parser.symbols)
            self.result.typedefs.update(parser.typedefs)
            self.enumerators.update(parser.enumerators)

        return self.result
