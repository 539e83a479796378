import unittest

import ccheck


def significant(tokens):
    return [t for t in tokens if t.kind not in ccheck.TRIVIA_KINDS]


class ScannerTests(unittest.TestCase):
    def test_basic_kinds_and_positions(self) -> None:
        tokens = significant(ccheck.scan(b"int x = 42;\nchar *s = \"hi\";\n", "a.c"))
        kinds = [(t.kind, t.text) for t in tokens]
        self.assertEqual(
            kinds[:5],
            [("keyword", "int"), ("identifier", "x"), ("punctuation", "="), ("number", "42"), ("punctuation", ";")],
        )
        string = next(t for t in tokens if t.kind == "string")
        self.assertEqual((string.line, string.column), (2, 11))
        self.assertEqual(string.file, "a.c")

    def test_scan_is_restartable(self) -> None:
        raw = b"a + b;\n"
        self.assertEqual(list(ccheck.scan(raw)), list(ccheck.scan(raw)))

    def test_crlf_counts_as_one_newline(self) -> None:
        tokens = significant(ccheck.scan(b"a;\r\nb;\rc;\n"))
        lines = [(t.text, t.line) for t in tokens if t.kind == "identifier"]
        self.assertEqual(lines, [("a", 1), ("b", 2), ("c", 3)])

    def test_line_continuation_tracking(self) -> None:
        tokens = significant(ccheck.scan(b"#define X \\\n  1\nint y;\n"))
        one = next(t for t in tokens if t.text == "1")
        self.assertEqual((one.line, one.column), (2, 3))
        y = next(t for t in tokens if t.text == "y")
        self.assertEqual((y.line, y.column), (3, 5))

    def test_multiline_comment_positions(self) -> None:
        tokens = list(ccheck.scan(b"/* one\n two */ int z;\n"))
        comment = tokens[0]
        self.assertEqual(comment.kind, "comment")
        self.assertEqual(comment.end_position(), (2, 8))
        z = next(t for t in tokens if t.text == "z")
        self.assertEqual((z.line, z.column), (2, 13))

    def test_directive_and_header_name(self) -> None:
        tokens = significant(ccheck.scan(b"# include <stdio.h>\n#include \"a.h\"\n"))
        self.assertEqual(tokens[0].kind, "directive")
        self.assertEqual(ccheck.directive_name(tokens[0]), "include")
        self.assertEqual((tokens[1].kind, tokens[1].text), ("header_name", "<stdio.h>"))
        self.assertEqual((tokens[3].kind, tokens[3].text), ("string", '"a.h"'))

    def test_hash_inside_line_is_punctuation(self) -> None:
        tokens = significant(ccheck.scan(b"#define S(x) #x\n"))
        self.assertEqual([t.kind for t in tokens][-2:], ["punctuation", "identifier"])

    def test_longest_match_punctuators_and_digraphs(self) -> None:
        tokens = significant(ccheck.scan(b"a <<= b->c; d <% e %>"))
        texts = [t.text for t in tokens]
        self.assertIn("<<=", texts)
        self.assertIn("->", texts)
        self.assertIn("<%", texts)
        self.assertEqual(ccheck.canonical("<%"), "{")

    def test_literal_prefixes(self) -> None:
        tokens = significant(ccheck.scan(b"u8\"a\" L'b' U\"c\" u'd'"))
        self.assertEqual([t.kind for t in tokens], ["string", "char", "string", "char"])

    def test_unterminated_block_comment_spans_to_eof(self) -> None:
        tokens = list(ccheck.scan(b"int a;\n/* never\nclosed"))
        self.assertEqual(tokens[-1].kind, "error")
        self.assertEqual(tokens[-1].text, "/* never\nclosed")

    def test_unterminated_string_stops_at_line_end(self) -> None:
        tokens = list(ccheck.scan(b"char *s = \"oops;\nint b;\n"))
        error = next(t for t in tokens if t.kind == "error")
        self.assertEqual(error.text, '"oops;')
        b = next(t for t in tokens if t.text == "b")
        self.assertEqual(b.line, 2)

    def test_apostrophe_in_error_directive_is_punctuation(self) -> None:
        tokens = list(ccheck.scan(b"#error config.h wasn't included\nint a;\n"))
        self.assertNotIn("error", [t.kind for t in tokens])
        quote = next(t for t in tokens if t.text == "'")
        self.assertEqual((quote.kind, quote.line, quote.column), ("punctuation", 1, 21))
        self.assertEqual(next(t for t in tokens if t.text == "a").line, 2)

    def test_warning_directive_keeps_terminated_strings(self) -> None:
        tokens = significant(ccheck.scan(b"#warning \"don't\" isn't supported\n"))
        self.assertEqual([t.kind for t in tokens][:2], ["directive", "string"])
        self.assertNotIn("error", [t.kind for t in tokens])

    def test_apostrophe_outside_message_directives_is_still_an_error(self) -> None:
        tokens = list(ccheck.scan(b"#define Q it's\n"))
        self.assertIn("error", [t.kind for t in tokens])

    def test_invalid_utf8_and_stray_bytes_do_not_raise(self) -> None:
        tokens = list(ccheck.scan(b"int \xff\xfe x @ `;\n"))
        self.assertIn("@", [t.text for t in tokens])
        self.assertIn("x", [t.text for t in tokens])

    def test_bom_is_dropped(self) -> None:
        tokens = list(ccheck.scan(b"\xef\xbb\xbfint a;"))
        self.assertEqual((tokens[0].text, tokens[0].column), ("int", 1))


if __name__ == "__main__":
    unittest.main()
