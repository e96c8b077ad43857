# Copyright (C) 2019-2024 Intel Corporation
# SPDX-License-Identifier: BSD-3-Clause

import logging
import unittest

from bindconst.directives import (
    CodeNode,
    DefineNode,
    DirectiveParser,
    ElIfNode,
    ElseNode,
    EndIfNode,
    FileNode,
    IfNode,
    MalformedDirectiveNode,
    Role,
    UndefNode,
    UnrecognizedDirectiveNode,
    Visit,
    parse_source,
)
from bindconst.errors import StructureError
from bindconst.lexer import Lexer


def parse(text):
    return DirectiveParser(Lexer(text).tokenize()).parse()


class TestDirectiveParser(unittest.TestCase):
    """
    Test recognition of individual directives.
    """

    @classmethod
    def setUpClass(self):
        logging.disable()

    def test_define(self):
        """Check object-like and function-like definitions"""
        node = parse("#define X (1 + 2)")
        self.assertIsInstance(node, DefineNode)
        self.assertEqual(node.identifier.token, "X")
        self.assertIsNone(node.args)
        self.assertEqual(len(node.value), 5)

        node = parse("#define F(a, ...) a")
        self.assertEqual([a.token for a in node.args], ["a", "..."])
        self.assertEqual([t.token for t in node.value], ["a"])

        node = parse("#define EMPTY")
        self.assertEqual(node.value, [])

    def test_space_before_paren(self):
        """Check whitespace before '(' makes a macro object-like"""
        node = parse("#define F (a) a")
        self.assertIsNone(node.args)
        self.assertEqual(node.value[0].token, "(")

    def test_missing_paren(self):
        """Check an unterminated parameter list"""
        with self.assertRaises(StructureError):
            parse("#define F(a, b 1")

    def test_undef(self):
        """Check #undef"""
        node = parse("#undef X")
        self.assertIsInstance(node, UndefNode)
        self.assertEqual(node.identifier.token, "X")

    def test_conditionals(self):
        """Check #ifdef and #ifndef are rewritten with defined()"""
        node = parse("#ifdef X")
        self.assertIsInstance(node, IfNode)
        self.assertEqual([t.token for t in node.expr], ["defined", "(", "X", ")"])

        node = parse("#ifndef X")
        self.assertEqual(
            [t.token for t in node.expr],
            ["!", "defined", "(", "X", ")"],
        )

        node = parse("#if A && B")
        self.assertEqual([t.token for t in node.expr], ["A", "&&", "B"])

        self.assertIsInstance(parse("#elif 1"), ElIfNode)
        self.assertIsInstance(parse("#else"), ElseNode)
        self.assertIsInstance(parse("#endif"), EndIfNode)

    def test_invalid_conditionals(self):
        """Check conditionals missing their operand"""
        with self.assertRaises(StructureError):
            parse("#ifdef")
        with self.assertRaises(StructureError):
            parse("#ifndef 1")
        with self.assertRaises(StructureError):
            parse("#if")

    def test_other_directives(self):
        """Check pragmas and includes are not interpreted"""
        for text in ["#pragma once", "#include <stdint.h>"]:
            node = parse(text)
            self.assertIsInstance(node, UnrecognizedDirectiveNode, text)

    def test_malformed(self):
        """Check malformed definitions are errors and empty directives are ignored"""
        for text in ["#define", "#define 1", "#define 5 x", "#undef", "#undef \"x\""]:
            with self.assertRaises(StructureError, msg=text) as context:
                parse(text)
            self.assertIn("requires a macro name", context.exception.message)
            self.assertEqual(context.exception.offset, 0)

        for text in ["#", "# 1"]:
            node = parse(text)
            self.assertIsInstance(node, UnrecognizedDirectiveNode, text)

    def test_roles(self):
        """Check the role of each directive in a conditional group"""
        self.assertEqual(parse("#if 1").role, Role.OPEN)
        self.assertEqual(parse("#ifdef X").role, Role.OPEN)
        self.assertEqual(parse("#elif 1").role, Role.CONTINUE)
        self.assertEqual(parse("#else").role, Role.CONTINUE)
        self.assertEqual(parse("#endif").role, Role.CLOSE)
        self.assertEqual(parse("#define X").role, Role.CODE)
        self.assertEqual(parse("#else").keyword, "else")


class TestSourceTree(unittest.TestCase):
    """
    Test construction of a tree from header text.
    """

    @classmethod
    def setUpClass(self):
        logging.disable()

    def test_tree(self):
        """Check branches become children of their directives"""
        source = "#ifdef A\nint a;\n#else\nint b;\n#endif\nint c;\n"
        tree = parse_source(source, "tree.h")

        self.assertIsInstance(tree.root, FileNode)
        self.assertEqual(str(tree.root), "tree.h")
        kinds = [type(n) for n in tree.root.children]
        self.assertEqual(kinds, [IfNode, ElseNode, EndIfNode, CodeNode])

        branch = tree.root.children[0].children
        self.assertEqual(len(branch), 1)
        self.assertEqual(branch[0].spelling(), ["int a;"])

    def test_offsets(self):
        """Check code nodes report offsets into the original text"""
        source = "#define X 1\n\nint  value;\n"
        tree = parse_source(source)
        code = [n for n in tree.walk() if type(n) is CodeNode]
        self.assertEqual(code[0].offset, source.index("int"))

    def test_visit(self):
        """Check visitors can skip the children of a node"""
        source = "#if 1\nint a;\n#endif\nint b;\n"
        tree = parse_source(source)

        visited = []

        def visitor(node):
            visited.append(type(node))
            if isinstance(node, IfNode):
                return Visit.NEXT_SIBLING
            return Visit.NEXT

        tree.visit(visitor)
        self.assertEqual(visited, [FileNode, IfNode, EndIfNode, CodeNode])

        with self.assertRaises(TypeError):
            tree.visit(1)

    def test_unbalanced(self):
        """Check unbalanced conditionals are errors"""
        sources = [
            "#endif\n",
            "#else\n",
            "#if 1\n#else\n#else\n#endif\n",
            "#if 1\n#else\n#elif 1\n#endif\n",
            "#if 1\nint a;\n",
        ]
        for source in sources:
            with self.assertRaises(StructureError, msg=source):
                parse_source(source)

    def test_malformed_definitions(self):
        """Check malformed definitions are kept as nodes and parsing continues"""
        source = "#define 5 x\n#undef\n#include <x.h>\n#define A 1\n"
        tree = parse_source(source)

        kinds = [type(n) for n in tree.root.children]
        self.assertEqual(
            kinds,
            [
                MalformedDirectiveNode,
                MalformedDirectiveNode,
                UnrecognizedDirectiveNode,
                DefineNode,
            ],
        )
        errors = [n.error for n in tree.root.children[:2]]
        self.assertTrue(all(isinstance(e, StructureError) for e in errors))
        self.assertEqual([e.offset for e in errors], [0, source.index("#undef")])

        with self.assertRaises(StructureError):
            parse_source("#ifdef\n#endif\n")


if __name__ == "__main__":
    unittest.main()
