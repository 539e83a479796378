import unittest

import ccheck


def run_rules(text: str, rules, path: str = "decls.c", registry=None):
    source = ccheck.SourceFile.from_text(path, text)
    engine = ccheck.RuleEngine(registry or ccheck.build_default_registry(), rules)
    return ccheck.check_source(source, engine)


class DesignatedInitializerTests(unittest.TestCase):
    def test_mixed_entries_warn_per_positional(self) -> None:
        text = "struct point p = { .x = 1, 2, .z = 3, 4 };\n"
        findings = run_rules(text, ["designated-initializer"])
        self.assertEqual(len(findings), 2)
        self.assertTrue(all(f.severity == "warning" for f in findings))
        self.assertEqual([f.column for f in findings], [28, 39])

    def test_all_positional_aggregate_is_info(self) -> None:
        findings = run_rules("struct point p = { 1, 2 };\n", ["designated-initializer"])
        self.assertEqual(len(findings), 1)
        self.assertEqual(findings[0].severity, "info")
        self.assertIn("'struct point'", findings[0].message)

    def test_zero_and_empty_initializers_are_exempt(self) -> None:
        text = "struct point a = {0};\nstruct point b = {};\n"
        self.assertEqual(run_rules(text, ["designated-initializer"]), [])

    def test_fully_designated_is_clean(self) -> None:
        text = "struct point p = { .x = 1, .y = 2 };\nint arr[3] = { 1, 2, 3 };\n"
        self.assertEqual(run_rules(text, ["designated-initializer"]), [])

    def test_typedef_aggregate_is_recognized(self) -> None:
        text = "typedef struct pair { int a; int b; } pair;\npair v = { 1, 2 };\n"
        findings = run_rules(text, ["designated-initializer"])
        self.assertEqual(len(findings), 1)
        self.assertEqual(findings[0].line, 2)


class TypedefDisciplineTests(unittest.TestCase):
    def test_tag_name_mismatch(self) -> None:
        findings = run_rules("typedef struct list_node { int v; } node_t;\n", ["typedef-discipline"])
        self.assertEqual([f.rule_id for f in findings], ["typedef-name-mismatch"])
        self.assertIn("'list_node'", findings[0].message)

    def test_matching_and_anonymous_tags_are_clean(self) -> None:
        text = (
            "typedef struct point { int x; } point;\n"
            "typedef struct { int y; } anon_t;\n"
            "typedef enum color color;\n"
        )
        self.assertEqual(run_rules(text, ["typedef-discipline"]), [])

    def test_pointer_typedef(self) -> None:
        findings = run_rules("typedef struct handle *handle_t;\n", ["typedef-discipline"])
        self.assertEqual([f.rule_id for f in findings], ["typedef-pointer"])

    def test_function_pointer_typedef_is_exempt(self) -> None:
        self.assertEqual(run_rules("typedef void (*callback_t)(void *ctx);\n", ["typedef-discipline"]), [])

    def test_finding_ids_select_a_subset(self) -> None:
        text = "typedef struct a { int v; } b;\ntypedef struct c *c_ptr;\n"
        findings = run_rules(text, ["typedef-pointer"])
        self.assertEqual([f.rule_id for f in findings], ["typedef-pointer"])


class ForbiddenFunctionTests(unittest.TestCase):
    def test_calls_are_flagged(self) -> None:
        text = "void f(char *d, const char *s)\n{\n  strcpy(d, s);\n  sprintf(d, \"%s\", s);\n}\n"
        findings = run_rules(text, ["forbidden-function"])
        self.assertEqual([f.line for f in findings], [3, 4])
        self.assertIn("strlcpy", findings[0].message)

    def test_members_and_declarations_are_not_calls(self) -> None:
        text = "char *gets(char *buf);\nvoid g(struct ops *o) { o->strcpy(1); }\n"
        self.assertEqual(run_rules(text, ["forbidden-function"]), [])

    def test_calls_after_statement_keywords_are_flagged(self) -> None:
        text = (
            "void f(char *a, char *b, int x) { if (x) {\n"
            "} else strcpy(a, b);\n"
            " do gets(a); while (0);\n"
            " x = sizeof strcat(a, b);\n"
            "}\n"
        )
        findings = run_rules(text, ["forbidden-function"])
        self.assertEqual([f.line for f in findings], [2, 3, 4])

    def test_qualified_declarations_are_not_calls(self) -> None:
        text = "extern char *strtok(char *s, const char *d);\nstatic inline int sprintf(void);\n"
        self.assertEqual(run_rules(text, ["forbidden-function"]), [])

    def test_custom_list_replaces_defaults(self) -> None:
        settings = ccheck.Settings(forbidden_functions={"malloc": "use the pool allocator"})
        registry = ccheck.build_default_registry(settings)
        text = "void f(void) { char *p = malloc(4); strcpy(p, \"a\"); }\n"
        findings = run_rules(text, ["forbidden-function"], registry=registry)
        self.assertEqual(len(findings), 1)
        self.assertIn("'malloc'", findings[0].message)


class VoidParameterListTests(unittest.TestCase):
    def test_empty_parameter_list(self) -> None:
        findings = run_rules("int main() { return 0; }\nint ok(void) { return 1; }\n", ["void-parameter-list"])
        self.assertEqual(len(findings), 1)
        self.assertIn("'main(void)'", findings[0].message)

    def test_prototypes_are_ignored(self) -> None:
        self.assertEqual(run_rules("int later();\n", ["void-parameter-list"]), [])


if __name__ == "__main__":
    unittest.main()
