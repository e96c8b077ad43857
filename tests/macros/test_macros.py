# Copyright (C) 2019-2024 Intel Corporation
# SPDX-License-Identifier: BSD-3-Clause

import logging
import unittest

from bindconst.directives import DirectiveParser
from bindconst.errors import PasteError, StructureError
from bindconst.lexer import Identifier, Lexer
from bindconst.macros import (
    MacroGraph,
    MacroState,
    MacroTableBuilder,
    macro_from_definition_string,
)


def define(builder, text):
    node = DirectiveParser(Lexer(text).tokenize()).parse()
    return builder.define(node.identifier, node.args, node.value)


class TestDefinitionStrings(unittest.TestCase):
    """
    Test construction of macros from command-line style definitions.
    """

    @classmethod
    def setUpClass(self):
        logging.disable()

    def test_name_only(self):
        """Check a bare name defines the value 1"""
        macro = macro_from_definition_string("MACRO")
        self.assertEqual(macro.name, "MACRO")
        self.assertIsNone(macro.params)
        self.assertEqual([t.token for t in macro.body], ["1"])
        self.assertTrue(macro.external)

    def test_value(self):
        """Check an explicit value"""
        macro = macro_from_definition_string("MACRO=x")
        self.assertEqual([t.token for t in macro.body], ["x"])
        self.assertFalse(macro.body[0].prev_white)
        self.assertEqual(macro.spelling(), ["MACRO=x"])

    def test_function_like(self):
        """Check function-like and variadic definitions"""
        macro = macro_from_definition_string("F(a,b)=a+b")
        self.assertTrue(macro.is_function_like())
        self.assertEqual(macro.params, ("a", "b"))
        self.assertFalse(macro.variadic)
        self.assertEqual(macro.which_arg("b"), 1)
        self.assertEqual(macro.which_arg("c"), -1)

        macro = macro_from_definition_string("F(...)=__VA_ARGS__")
        self.assertEqual(macro.params, ("__VA_ARGS__",))
        self.assertTrue(macro.variadic)

        macro = macro_from_definition_string("G(first, rest...)=rest")
        self.assertEqual(macro.params, ("first", "rest"))
        self.assertTrue(macro.variadic)

    def test_invalid(self):
        """Check invalid definitions"""
        with self.assertRaises(PasteError):
            macro_from_definition_string("X=## a")
        with self.assertRaises(PasteError):
            macro_from_definition_string("X=a ##")
        with self.assertRaises(StructureError):
            macro_from_definition_string("F(a,a)=a")

    def test_references(self):
        """Check references exclude parameters"""
        macro = macro_from_definition_string("F(x)=x + y + z + y")
        self.assertEqual(macro.references(), ["y", "z"])


class TestMacroTable(unittest.TestCase):
    """
    Test collection of #define and #undef into a macro graph.
    """

    @classmethod
    def setUpClass(self):
        logging.disable()

    def test_last_definition_wins(self):
        """Check redefinition keeps the first position"""
        builder = MacroTableBuilder()
        define(builder, "#define X 1")
        define(builder, "#define Y 2")
        first = builder.graph.id_of("X")
        macro = define(builder, "#define X 3")

        self.assertEqual(macro.version, 2)
        self.assertEqual(builder.graph.id_of("X"), first)
        self.assertEqual([m.name for m in builder.graph], ["X", "Y"])
        self.assertEqual([t.token for t in builder.graph.get("X").body], ["3"])

    def test_undefine(self):
        """Check #undef removes a macro without moving others"""
        builder = MacroTableBuilder()
        define(builder, "#define X 1")
        define(builder, "#define Y 2")
        builder.undefine(Identifier(0, False, "X"))

        self.assertNotIn("X", builder.graph)
        self.assertIsNone(builder.graph.get("X"))
        self.assertEqual(len(builder.graph), 1)
        self.assertEqual(builder.graph.id_of("Y"), 1)

        # Undefining an unknown name is not an error
        builder.undefine(Identifier(0, False, "Z"))
        self.assertEqual(len(builder.graph), 1)

    def test_predefined(self):
        """Check predefined macros are visible and can be replaced"""
        predefined = [macro_from_definition_string("X=1")]
        builder = MacroTableBuilder(predefined)
        self.assertTrue(builder.graph.get("X").external)

        macro = define(builder, "#define X 2")
        self.assertFalse(macro.external)
        self.assertEqual(macro.version, 1)

    def test_body_whitespace(self):
        """Check the first body token carries no leading whitespace"""
        builder = MacroTableBuilder()
        macro = define(builder, "#define X    (1 + 2)")
        self.assertFalse(macro.body[0].prev_white)
        self.assertTrue(macro.body[3].prev_white)


class TestMacroGraph(unittest.TestCase):
    """
    Test the reference graph between macros.
    """

    @classmethod
    def setUpClass(self):
        logging.disable()

    def graph(self, *definitions):
        graph = MacroGraph()
        for definition in definitions:
            graph.add(macro_from_definition_string(definition))
        return graph

    def test_dependencies(self):
        """Check edges follow references to defined macros only"""
        graph = self.graph("A=B + C + unknown", "B=C", "C=1")
        self.assertEqual(graph.dependencies("A"), ["B", "C"])
        self.assertEqual(graph.dependencies("C"), [])
        self.assertEqual(graph.edges(graph.id_of("B")), [graph.id_of("C")])

    def test_topological_order(self):
        """Check every macro follows the macros it references"""
        graph = self.graph("A=B + C", "B=C", "C=1")
        ordered, blocked = graph.topological_order()
        self.assertEqual(ordered, ["C", "B", "A"])
        self.assertEqual(blocked, [])

    def test_cycles_block_order(self):
        """Check macros on or depending on a cycle are not ordered"""
        graph = self.graph("P=Q", "Q=P", "R=P", "S=1")
        ordered, blocked = graph.topological_order()
        self.assertEqual(ordered, ["S"])
        self.assertEqual(blocked, ["P", "Q", "R"])

    def test_states(self):
        """Check redefinition resets the state of a macro"""
        graph = self.graph("A=1")
        self.assertEqual(graph.state("A"), MacroState.UNVISITED)
        graph.set_state("A", MacroState.DONE)
        graph.add(macro_from_definition_string("A=2"))
        self.assertEqual(graph.state("A"), MacroState.UNVISITED)

    def test_removed_node(self):
        """Check removed ids are holes"""
        graph = self.graph("A=1", "B=2")
        graph.remove("A")
        with self.assertRaises(KeyError):
            graph.node(0)
        self.assertEqual(graph.node(1).name, "B")


if __name__ == "__main__":
    unittest.main()
