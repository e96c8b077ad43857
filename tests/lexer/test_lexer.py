# Copyright (C) 2019-2024 Intel Corporation
# SPDX-License-Identifier: BSD-3-Clause

import logging
import unittest

from bindconst.errors import LexError, PasteError
from bindconst.lexer import (
    CharacterConstant,
    Identifier,
    Lexer,
    NumericalConstant,
    Operator,
    Punctuator,
    StringConstant,
    TokenSequence,
    Unknown,
)


class TestLexer(unittest.TestCase):
    """
    Test ability to tokenize header text.
    """

    @classmethod
    def setUpClass(self):
        logging.disable()

    def test_encoding_prefix(self):
        """Check prefixes abutting a quote belong to the literal"""
        tokens = Lexer("u8'c' U\"s\" L'x'").tokenize()
        self.assertEqual(len(tokens), 3)
        self.assertIsInstance(tokens[0], CharacterConstant)
        self.assertEqual(tokens[0].prefix, "u8")
        self.assertEqual(tokens[0].token, "c")
        self.assertIsInstance(tokens[1], StringConstant)
        self.assertEqual(tokens[1].prefix, "U")
        self.assertEqual(tokens[2].spelling(), "L'x'")

    def test_separated_prefix(self):
        """Check a prefix separated by whitespace is an identifier"""
        tokens = Lexer("u8 'c'").tokenize()
        self.assertEqual(len(tokens), 2)
        self.assertIsInstance(tokens[0], Identifier)
        self.assertIsInstance(tokens[1], CharacterConstant)
        self.assertEqual(tokens[1].prefix, "")
        self.assertTrue(tokens[1].prev_white)

    def test_escaped_quote(self):
        """Check escaped quotes do not end a literal"""
        tokens = Lexer(r"'\'' " + r'"a\"b"').tokenize()
        self.assertEqual(len(tokens), 2)
        self.assertEqual(tokens[0].token, r"\'")
        self.assertEqual(tokens[1].token, r"a\"b")

    def test_numbers(self):
        """Check preprocessing numbers"""
        for text in ["0x1.8p3", "1e+5", "243.23e2f", "232323ULL", ".5", "0b101"]:
            tokens = Lexer(text).tokenize()
            self.assertEqual(len(tokens), 1, text)
            self.assertIsInstance(tokens[0], NumericalConstant)
            self.assertEqual(tokens[0].token, text)

    def test_operators(self):
        """Check multi-character operators"""
        tokens = Lexer("a ## b # c ... ->").tokenize()
        self.assertEqual(
            [t.token for t in tokens],
            ["a", "##", "b", "#", "c", "...", "->"],
        )
        self.assertIsInstance(tokens[1], Operator)
        self.assertIsInstance(tokens[5], Operator)

    def test_punctuators(self):
        """Check punctuators"""
        tokens = Lexer("{ ( ) } ;").tokenize()
        self.assertTrue(all(isinstance(t, Punctuator) for t in tokens))

    def test_is_punctuation(self):
        """Check literals are never mistaken for punctuation"""
        tokens = Lexer("( \"(\" '(' ## \"##\" ,").tokenize()
        self.assertEqual(
            [t.is_punctuation("(") for t in tokens[:3]],
            [True, False, False],
        )
        self.assertTrue(tokens[3].is_punctuation("##"))
        self.assertFalse(tokens[4].is_punctuation("##"))
        self.assertTrue(tokens[5].is_punctuation(","))
        self.assertFalse(Identifier(0, False, "x").is_punctuation("x"))

    def test_unknown(self):
        """Check unmatched characters become unknown tokens"""
        tokens = Lexer("a @ b").tokenize()
        self.assertIsInstance(tokens[1], Unknown)
        self.assertEqual(tokens[1].token, "@")

    def test_unterminated(self):
        """Check unterminated literals are errors"""
        with self.assertRaises(LexError) as context:
            Lexer('x = "abc').tokenize()
        self.assertEqual(context.exception.offset, 4)

        with self.assertRaises(LexError):
            Lexer("'a").tokenize()

    def test_offsets(self):
        """Check offsets refer to the original source"""
        tokens = Lexer("a b", base=10).tokenize()
        self.assertEqual([t.offset for t in tokens], [10, 12])

        tokens = Lexer("ab", offsets=[3, 7]).tokenize()
        self.assertEqual(tokens[0].offset, 3)

    def test_restartable(self):
        """Check token sequences can be iterated more than once"""
        sequence = TokenSequence("x + 1")
        first = list(sequence)
        second = list(sequence)
        self.assertEqual(len(first), 3)
        self.assertEqual(first, second)

    def test_stringify(self):
        """Check stringification collapses whitespace"""
        tokens = Lexer(" call(a,   (b, c)) ").tokenize()
        string = Lexer.stringify(tokens)
        self.assertIsInstance(string, StringConstant)
        self.assertEqual(string.token, "call(a, (b, c))")

    def test_stringify_literals(self):
        """Check quotes and backslashes are escaped by stringification"""
        tokens = Lexer(r'"hi\n"').tokenize()
        string = Lexer.stringify(tokens)
        self.assertEqual(string.token, r"\"hi\\n\"")

    def test_paste(self):
        """Check pasting produces exactly one token"""
        lhs = NumericalConstant(0, False, "1024")
        rhs = Identifier(6, True, "ULL")
        pasted = Lexer.paste(lhs, rhs)
        self.assertIsInstance(pasted, NumericalConstant)
        self.assertEqual(pasted.token, "1024ULL")

        pasted = Lexer.paste(Identifier(0, False, "x"), Identifier(1, False, "y"))
        self.assertEqual(pasted, Identifier(0, False, "xy"))

        with self.assertRaises(PasteError):
            Lexer.paste(Operator(0, False, "+"), Operator(1, False, "-"))


if __name__ == "__main__":
    unittest.main()
