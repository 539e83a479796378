import unittest

import ccheck


def facts_for(text: str, path: str = "sample.c"):
    source = ccheck.SourceFile.from_text(path, text)
    return source, ccheck.extract_facts(source)


class HeaderGuardFactTests(unittest.TestCase):
    def test_guard_after_leading_comment(self) -> None:
        _, facts = facts_for("/* lib */\n#ifndef A_H_\n#define A_H_\nint x;\n#endif\n", "a.h")
        guard = facts.header_guard
        self.assertIsNotNone(guard)
        self.assertEqual(guard.macro_name, "A_H_")
        self.assertEqual(guard.define_name, "A_H_")
        self.assertEqual(guard.start_line, 2)
        self.assertIsNotNone(guard.endif_index)
        self.assertIsNone(guard.trailing_index)
        self.assertEqual(facts.ambiguities, [])

    def test_code_after_endif_is_recorded(self) -> None:
        source, facts = facts_for("#ifndef A_H_\n#define A_H_\n#endif\nint late;\n", "a.h")
        trailing = source.tokens[facts.header_guard.trailing_index]
        self.assertEqual((trailing.text, trailing.line), ("int", 4))

    def test_code_before_ifndef_means_no_guard(self) -> None:
        _, facts = facts_for("int x;\n#ifndef A_H_\n#define A_H_\n#endif\n", "a.h")
        self.assertIsNone(facts.header_guard)

    def test_define_must_follow_immediately(self) -> None:
        _, facts = facts_for("#ifndef A_H_\nint x;\n#define A_H_\n#endif\n", "a.h")
        self.assertIsNone(facts.header_guard.define_name)


class PreprocessorFactTests(unittest.TestCase):
    def test_includes(self) -> None:
        _, facts = facts_for(
            "#include <stdio.h>\n#include \"foo.h\"\n#include HDR\n#ifdef X\n#include <a.h>\n#endif\n"
        )
        self.assertEqual([i.header_name for i in facts.includes], ["stdio.h", "foo.h", "a.h"])
        self.assertEqual([i.is_system_header for i in facts.includes], [True, False, True])
        self.assertEqual([i.in_conditional for i in facts.includes], [False, False, True])

    def test_includes_inside_guard_are_not_conditional(self) -> None:
        _, facts = facts_for("#ifndef B_H_\n#define B_H_\n#include <stdint.h>\n#endif\n", "b.h")
        self.assertFalse(facts.includes[0].in_conditional)

    def test_macros(self) -> None:
        source, facts = facts_for(
            "#define ADD(a, b) ((a) + (b))\n"
            "#define NOT_FN (1)\n"
            "#define LOG(fmt, ...) printf(fmt, __VA_ARGS__)\n"
            "#define NAMED(args...) f(args)\n"
        )
        by_name = {m.name: m for m in facts.macros}
        self.assertTrue(by_name["ADD"].is_function_like)
        self.assertEqual(by_name["ADD"].params, ("a", "b"))
        self.assertEqual(source.tokens[by_name["ADD"].body[0]].text, "(")
        self.assertFalse(by_name["NOT_FN"].is_function_like)
        self.assertEqual(by_name["LOG"].params, ("fmt", "__VA_ARGS__"))
        self.assertTrue(by_name["LOG"].is_variadic)
        self.assertEqual(by_name["NAMED"].params, ("args",))

    def test_unbalanced_conditionals_are_ambiguous(self) -> None:
        _, facts = facts_for("#endif\n#if A\nint x;\n")
        messages = [a.message for a in facts.ambiguities]
        self.assertEqual(len(messages), 2)
        self.assertTrue(any("#endif" in m for m in messages))


class CodeFactTests(unittest.TestCase):
    def test_function_definitions(self) -> None:
        _, facts = facts_for(
            "static int add(int a, int b)\n{\n  return a + b;\n}\nint proto(void);\nvoid none() { }\n"
        )
        self.assertEqual([f.name for f in facts.functions], ["add", "none"])
        add = facts.functions[0]
        self.assertEqual(add.parameter_list, ("int a", "int b"))
        self.assertEqual((add.body_start_line, add.body_end_line), (2, 4))
        self.assertEqual(facts.functions[1].parameter_list, ())

    def test_extern_c_block_is_transparent(self) -> None:
        _, facts = facts_for('extern "C" {\nint f(void) { return 0; }\n}\n')
        self.assertEqual([f.name for f in facts.functions], ["f"])

    def test_macro_invocation_is_not_a_function(self) -> None:
        _, facts = facts_for("DECLARE_THING(x)\nint g(void) { return 1; }\n")
        self.assertEqual([f.name for f in facts.functions], ["g"])

    def test_stray_brace_is_ambiguous_and_analysis_continues(self) -> None:
        _, facts = facts_for("int f(void) {\n  return 0;\n}\n}\n")
        self.assertEqual([f.name for f in facts.functions], ["f"])
        self.assertEqual(len(facts.ambiguities), 1)
        self.assertEqual(facts.ambiguities[0].line, 4)
        self.assertIn("unmatched", facts.ambiguities[0].message)

    def test_typedefs(self) -> None:
        _, facts = facts_for(
            "typedef struct point { int x; } point;\n"
            "typedef struct node *node_ref;\n"
            "typedef int (*handler_t)(int);\n"
            "typedef unsigned long ulong_t, *ulong_p;\n"
        )
        by_name = {t.name: t for t in facts.typedefs}
        self.assertEqual(by_name["point"].tag_name, "point")
        self.assertTrue(by_name["point"].has_body)
        self.assertTrue(by_name["node_ref"].is_pointer)
        self.assertEqual(by_name["node_ref"].tag_kind, "struct")
        self.assertTrue(by_name["handler_t"].is_function_pointer)
        self.assertFalse(by_name["handler_t"].is_pointer)
        self.assertFalse(by_name["ulong_t"].is_pointer)
        self.assertTrue(by_name["ulong_p"].is_pointer)
        self.assertEqual(by_name["ulong_p"].declarator_index, 1)

    def test_initializers(self) -> None:
        _, facts = facts_for("struct point p = { .x = 1, 2 };\nint arr[] = {1, 2};\n")
        first, second = facts.initializers
        self.assertEqual(first.type_name, "struct point")
        self.assertTrue(first.is_aggregate)
        self.assertEqual([e.designated for e in first.entries], [True, False])
        self.assertEqual(first.entries[0].field_name, "x")
        self.assertFalse(second.is_aggregate)

    def test_typedef_aggregate_and_compound_literal(self) -> None:
        _, facts = facts_for(
            "typedef struct { int a; int b; } pair_t;\n"
            "pair_t v = {1, 2};\n"
            "void f(void) { g((struct point){1, 2}); }\n"
        )
        names = [(i.type_name, i.is_aggregate) for i in facts.initializers]
        self.assertEqual(names, [("pair_t", True), ("struct point", True)])


if __name__ == "__main__":
    unittest.main()
