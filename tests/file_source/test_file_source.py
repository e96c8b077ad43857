# Copyright (C) 2019-2024 Intel Corporation
# SPDX-License-Identifier: BSD-3-Clause

import logging
import unittest

from bindconst.errors import LexError
from bindconst.file_source import c_file_source, iter_keep1


class TestFileSource(unittest.TestCase):
    """
    Test splitting of header text into logical lines.
    """

    @classmethod
    def setUpClass(self):
        logging.disable()

    def test_inline_comment(self):
        """Check inline comments are replaced with whitespace"""
        lines = list(c_file_source("int  a; // comment\n"))
        self.assertEqual(len(lines), 1)
        self.assertEqual(lines[0].text, "int a; ")
        self.assertEqual(lines[0].category, "SRC_NONBLANK")

    def test_block_comment(self):
        """Check block comments are replaced with a single space"""
        lines = list(c_file_source("a /* x */ b\n"))
        self.assertEqual(lines[0].text, "a b")

    def test_multiline_block_comment(self):
        """Check block comments spanning lines join them"""
        lines = list(c_file_source("int a; /* one\ntwo */ int b;\n"))
        self.assertEqual(len(lines), 1)
        self.assertEqual(lines[0].text, "int a; int b;")

    def test_comment_in_string(self):
        """Check comment markers inside literals are preserved"""
        source = 'const char *s = "http://x";\n'
        lines = list(c_file_source(source))
        self.assertIn('"http://x"', lines[0].text)

    def test_continuation(self):
        """Check backslash-newline splices lines and keeps offsets"""
        lines = list(c_file_source("ab\\\ncd\n"))
        self.assertEqual(len(lines), 1)
        self.assertEqual(lines[0].text, "abcd")
        self.assertEqual(lines[0].offsets, [0, 1, 4, 5])

    def test_directive(self):
        """Check directives are categorized"""
        lines = list(c_file_source("  # define X 1\nint x;\n"))
        self.assertEqual(lines[0].category, "CPP_DIRECTIVE")
        self.assertEqual(lines[1].category, "SRC_NONBLANK")

    def test_blank_lines(self):
        """Check blank and comment-only lines are skipped"""
        source = "\n\n// only a comment\n   \nint x;\n"
        lines = list(c_file_source(source))
        self.assertEqual(len(lines), 1)
        self.assertEqual(lines[0].offset(0), source.index("int"))

    def test_unterminated_comment(self):
        """Check unterminated block comments are errors"""
        with self.assertRaises(LexError) as context:
            list(c_file_source("int a; /* never closed\nint b;\n"))
        self.assertEqual(context.exception.offset, 7)

    def test_iter_keep1(self):
        """Check a single item can be put back"""
        iterator = iter_keep1([1, 2])
        self.assertEqual(next(iterator), 1)
        iterator.putback(1)
        with self.assertRaises(RuntimeError):
            iterator.putback(1)
        self.assertEqual(list(iterator), [1, 2])


if __name__ == "__main__":
    unittest.main()
