# Copyright (C) 2019-2024 Intel Corporation
# SPDX-License-Identifier: BSD-3-Clause

import logging
import unittest

from bindconst.conditional import ConditionalFilter
from bindconst.declarations import (
    Aggregate,
    AggregateKind,
    DeclarationAnalyzer,
    FunctionPointer,
    TypeRef,
    allocation_bits,
)
from bindconst.directives import parse_source
from bindconst.errors import StructureError
from bindconst.platform import Platform


def analyze(source, platform=None):
    """
    Return the declarations in the taken branches of `source`.
    """
    if platform is None:
        platform = Platform()
    conditional = ConditionalFilter(platform)
    nodes = conditional.filter(parse_source(source))
    return DeclarationAnalyzer(conditional.builder.graph).analyze(nodes)


BITFIELDS = """
typedef struct bitfields {
    short a : 3;
    short b : 13;
    struct {
        int c : 8;
        int d : 24;
    };
    union {
        unsigned int e : 7;
        float f;
    } named;
} bitfields_t;
"""


class TestLayouts(unittest.TestCase):
    """
    Test recovery of struct and union layouts.
    """

    @classmethod
    def setUpClass(self):
        logging.disable()

    def test_bitfields(self):
        """Check members and bitfield widths"""
        declarations = analyze(BITFIELDS)
        self.assertEqual(declarations.errors, [])
        self.assertEqual(len(declarations.layouts), 1)

        layout = declarations.layout("bitfields_t")
        self.assertIs(layout, declarations.layout("bitfields"))
        self.assertEqual(layout.kind, AggregateKind.STRUCT)
        self.assertEqual(layout.aliases, ["bitfields_t"])
        self.assertEqual(
            [name for name, _ in layout.members()],
            ["a", "b", "c", "d", "named"],
        )

        a = layout.lookup("a")
        self.assertEqual(a.bit_width, 3)
        self.assertEqual(a.allocation, TypeRef("short"))
        self.assertEqual(a.unit_bits, 16)

        # Members of anonymous aggregates are reachable from the parent
        c = layout.lookup("c")
        self.assertEqual(c.bit_width, 8)
        self.assertEqual(c.allocation, TypeRef("int"))

        named = layout.lookup("named")
        self.assertIsInstance(named.type, Aggregate)
        self.assertEqual(named.type.kind, AggregateKind.UNION)
        self.assertIsNone(layout.lookup("e"))
        self.assertEqual(named.type.lookup("e").bit_width, 7)
        self.assertFalse(named.type.lookup("f").is_bitfield())

    def test_bitfield_units(self):
        """Check consecutive bitfields share allocation units"""
        layout = analyze(BITFIELDS).layout("bitfields_t")
        units = layout.bitfield_units()
        self.assertEqual(len(units), 1)
        self.assertEqual(units[0].bits, 16)
        self.assertEqual(units[0].used, 16)
        self.assertEqual([f.name for f in units[0].fields], ["a", "b"])

        inner = layout.fields[2].type
        units = inner.bitfield_units()
        self.assertEqual(len(units), 1)
        self.assertEqual(units[0].bits, 32)
        self.assertEqual(units[0].used, 32)

        source = "struct s { int a : 20; int b : 20; int : 0; int c : 1; };"
        units = analyze(source).layout("s").bitfield_units()
        self.assertEqual([[f.name for f in u.fields] for u in units], [["a"], ["b"], ["c"]])

    def test_bitfield_errors(self):
        """Check bitfields wider than their type are reported"""
        declarations = analyze("struct s { short a : 17; };\nstruct t { int x; };\n")
        self.assertEqual(len(declarations.errors), 1)
        self.assertIsInstance(declarations.errors[0], StructureError)
        self.assertIsNone(declarations.layout("s"))
        self.assertIsNotNone(declarations.layout("t"))

        for source in [
            "struct s { int a : 0; };",
            "struct s { int a : -1; };",
            "struct s { float a : 1; };",
            "struct s { int *a : 1; };",
        ]:
            declarations = analyze(source)
            self.assertEqual(len(declarations.errors), 1, source)

    def test_bitfield_macro(self):
        """Check bitfield widths may use macros"""
        source = "#define WIDTH 4\nstruct s { int x : WIDTH * 2; };\n"
        self.assertEqual(analyze(source).layout("s").lookup("x").bit_width, 8)

    def test_bitfield_typedef(self):
        """Check bitfield types are resolved through typedefs"""
        source = "typedef unsigned int u32;\nstruct s { u32 x : 32; };\n"
        declarations = analyze(source)
        self.assertEqual(declarations.errors, [])
        self.assertEqual(declarations.layout("s").lookup("x").unit_bits, 32)

        source = "typedef unsigned int u32;\nstruct s { u32 x : 33; };\n"
        self.assertEqual(len(analyze(source).errors), 1)

        source = "struct s { uint8_t x : 8; uint64_t y : 64; };\n"
        self.assertEqual(analyze(source).errors, [])

    def test_members(self):
        """Check arrays, pointers and function pointer members"""
        source = """
struct buffer {
    char data[16];
    int *next, count;
    const char *name;
    int (*open)(const char *path, int flags);
};
"""
        layout = analyze(source).layout("buffer")
        self.assertEqual(layout.lookup("data").type.spelling(), "char[16]")
        self.assertEqual(layout.lookup("next").type.spelling(), "int *")
        self.assertEqual(layout.lookup("count").type.spelling(), "int")
        self.assertEqual(layout.lookup("name").type.spelling(), "const char *")

        open_ = layout.lookup("open").type
        self.assertIsInstance(open_, FunctionPointer)
        self.assertEqual(open_.signature(), "int (*)(const char *, int)")
        self.assertEqual(open_.names, ("path", "flags"))

    def test_nested_tagged(self):
        """Check tagged nested aggregates follow their parent"""
        source = "struct outer { struct inner { int x; } in; int y; };"
        declarations = analyze(source)
        self.assertEqual([a.tag for a in declarations.layouts], ["outer", "inner"])
        self.assertIs(
            declarations.layout("outer").lookup("in").type,
            declarations.layout("inner"),
        )

    def test_self_reference(self):
        """Check typedefs of aggregates and of pointers to them"""
        source = """
typedef struct node {
    struct node *next;
    int value;
} node_t, *node_ptr;
"""
        declarations = analyze(source)
        layout = declarations.layout("node_t")
        self.assertEqual(layout.pointer_aliases, ["node_ptr"])
        self.assertEqual(layout.lookup("next").type, TypeRef("struct node", 1))
        self.assertEqual(declarations.typedefs["node_ptr"], TypeRef("struct node", 1))


class TestEnums(unittest.TestCase):
    """
    Test recovery of enumerations.
    """

    @classmethod
    def setUpClass(self):
        logging.disable()

    def test_values(self):
        """Check implicit and explicit enumerator values"""
        source = "enum colors {\n    RED,\n    GREEN = 5,\n    BLUE\n};\n"
        layout = analyze(source).layout("colors")
        self.assertEqual(layout.kind, AggregateKind.ENUM)
        values = [(e.name, e.value) for e in layout.enumerators]
        self.assertEqual(values, [("RED", 0), ("GREEN", 5), ("BLUE", 6)])
        self.assertEqual(layout.enumerator("GREEN").value, 5)

    def test_expressions(self):
        """Check values may use macros and earlier enumerators"""
        source = (
            "#define BASE 10\n"
            + "enum e { A = BASE, B = A + 2, C = -1, D, };\n"
            + "enum f { E = D + A };\n"
        )
        declarations = analyze(source)
        self.assertEqual(declarations.errors, [])
        values = [e.value for e in declarations.layout("e").enumerators]
        self.assertEqual(values, [10, 12, -1, 0])
        self.assertEqual(declarations.layout("f").enumerator("E").value, 10)

    def test_invalid(self):
        """Check values that are not integer constants"""
        declarations = analyze('enum e { A = "text" };\n')
        self.assertEqual(len(declarations.errors), 1)
        self.assertIsNone(declarations.layout("e"))


class TestSymbols(unittest.TestCase):
    """
    Test recovery of function pointer typedefs and imported symbols.
    """

    @classmethod
    def setUpClass(self):
        logging.disable()

    def test_callback(self):
        """Check function pointer typedefs"""
        source = "typedef void (*callback_t)(int, const char *);\n"
        declarations = analyze(source)
        callback = declarations.typedefs["callback_t"]
        self.assertIsInstance(callback, FunctionPointer)
        self.assertEqual(callback.signature(), "void (*)(int, const char *)")
        self.assertEqual(callback.names, (None, None))

    def test_imported(self):
        """Check extern function pointers are imported"""
        source = (
            "typedef void (*callback_t)(int, const char *);\n"
            + "extern int (*imported_function)(double value, callback_t cb);\n"
            + "extern int counter;\n"
            + "extern void (*log_fn)(const char *fmt, ...);\n"
        )
        declarations = analyze(source)
        self.assertEqual(
            [s.name for s in declarations.symbols],
            ["imported_function", "log_fn"],
        )
        symbol = declarations.symbol("imported_function")
        self.assertEqual(symbol.signature(), "int (*)(double, callback_t)")
        self.assertEqual(symbol.type.names, ("value", "cb"))
        self.assertTrue(declarations.symbol("log_fn").type.variadic)
        self.assertEqual(
            declarations.symbol("log_fn").signature(),
            "void (*)(const char *, ...)",
        )

    def test_void_parameters(self):
        """Check (void) declares no parameters"""
        declarations = analyze("typedef int (*getter_t)(void);\n")
        self.assertEqual(declarations.typedefs["getter_t"].params, ())
        self.assertEqual(
            declarations.typedefs["getter_t"].signature(),
            "int (*)(void)",
        )


class TestStatements(unittest.TestCase):
    """
    Test splitting of code into top-level statements.
    """

    @classmethod
    def setUpClass(self):
        logging.disable()

    def test_function_body(self):
        """Check function definitions are skipped"""
        source = (
            "static inline int add(int a, int b) {\n"
            + "    struct local { int x; } l;\n"
            + "    return a + b;\n"
            + "}\n"
            + "struct after { int x; };\n"
        )
        declarations = analyze(source)
        self.assertEqual(declarations.errors, [])
        self.assertEqual([a.tag for a in declarations.layouts], ["after"])

    def test_extern_block(self):
        """Check the contents of extern "C" blocks are top-level"""
        source = 'extern "C" {\nstruct s { int x; };\n}\n'
        declarations = analyze(source)
        self.assertIsNotNone(declarations.layout("s"))

    def test_unbalanced(self):
        """Check unbalanced braces are fatal"""
        with self.assertRaises(StructureError):
            analyze("struct s { int x;\n")
        with self.assertRaises(StructureError):
            analyze("struct s { int x; };\n};\n")

    def test_unparseable(self):
        """Check declarations that cannot be parsed are reported"""
        declarations = analyze("typedef int;\nstruct t { int x; };\n")
        self.assertEqual(len(declarations.errors), 1)
        self.assertIn("cannot parse declaration", declarations.errors[0].message)
        self.assertIsNotNone(declarations.layout("t"))

    def test_unnamed_declarator(self):
        """Check typedefs and externs without a name are reported"""
        source = (
            "typedef int (*)(void);\n"
            + "extern void (*)(int);\n"
            + "struct t { int x; };\n"
        )
        declarations = analyze(source)
        self.assertEqual(len(declarations.errors), 2)
        for error in declarations.errors:
            self.assertIsInstance(error, StructureError)
            self.assertIn("Expected declarator name", error.message)
        self.assertEqual(declarations.errors[1].offset, source.index("extern"))
        self.assertIsNotNone(declarations.layout("t"))
        self.assertEqual(declarations.symbols, [])

    def test_conditional_declarations(self):
        """Check only declarations in taken branches are analyzed"""
        source = (
            "#ifdef WIDE\nstruct s { long x; };\n"
            + "#else\nstruct s { short x; };\n#endif\n"
        )
        layout = analyze(source).layout("s")
        self.assertEqual(layout.lookup("x").type, TypeRef("short"))
        layout = analyze(source, Platform(defines=["WIDE"])).layout("s")
        self.assertEqual(layout.lookup("x").type, TypeRef("long"))


class TestAllocationBits(unittest.TestCase):
    """
    Test widths of bitfield allocation types.
    """

    @classmethod
    def setUpClass(self):
        logging.disable()

    def test_widths(self):
        """Check integral types"""
        expected = {
            "char": 8,
            "unsigned char": 8,
            "short": 16,
            "unsigned short int": 16,
            "int": 32,
            "unsigned": 32,
            "long": 64,
            "long long": 64,
            "unsigned long long int": 64,
            "int16_t": 16,
            "_Bool": 1,
            "enum colors": 32,
        }
        for name, bits in expected.items():
            self.assertEqual(allocation_bits(TypeRef(name)), bits, name)

    def test_invalid(self):
        """Check non-integral types"""
        for ref in [TypeRef("double"), TypeRef("int", 1), TypeRef("point_t")]:
            with self.assertRaises(StructureError):
                allocation_bits(ref)


if __name__ == "__main__":
    unittest.main()
