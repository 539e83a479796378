import unittest

import ccheck


def run_rules(text: str, path: str, relative_path=None, rules=None):
    source = ccheck.SourceFile.from_text(path, text, relative_path)
    engine = ccheck.RuleEngine(ccheck.build_default_registry(), rules)
    return ccheck.check_source(source, engine)


GOOD_HEADER = (
    "/* baz: helpers */\n"
    "#ifndef FOO_BAR_BAZ_H_\n"
    "#define FOO_BAR_BAZ_H_\n"
    "\n"
    "int baz(void);\n"
    "\n"
    "#endif /* FOO_BAR_BAZ_H_ */\n"
)


class GuardNameTests(unittest.TestCase):
    def test_guard_macro_for_path(self) -> None:
        self.assertEqual(ccheck.guard_macro_for("foo/bar/baz.h"), "FOO_BAR_BAZ_H_")
        self.assertEqual(ccheck.guard_macro_for("./include/my-lib.h"), "INCLUDE_MY_LIB_H_")
        self.assertEqual(ccheck.guard_macro_for("../x.h"), "X_H_")


class HeaderGuardRuleTests(unittest.TestCase):
    def test_correct_guard_has_no_findings(self) -> None:
        findings = run_rules(GOOD_HEADER, "foo/bar/baz.h", rules=["header-guard"])
        self.assertEqual(findings, [])

    def test_short_guard_name_is_single_mismatch(self) -> None:
        text = GOOD_HEADER.replace("FOO_BAR_BAZ_H_", "BAZ_H_")
        findings = run_rules(text, "foo/bar/baz.h", rules=["header-guard"])
        self.assertEqual([f.rule_id for f in findings], ["header-guard-name-mismatch"])
        self.assertEqual(findings[0].severity, "warning")
        self.assertEqual((findings[0].line, findings[0].column), (2, 9))

    def test_single_character_mutation_is_single_mismatch(self) -> None:
        text = GOOD_HEADER.replace("FOO_BAR_BAZ_H_", "FOO_BAR_BAZ_H")
        findings = run_rules(text, "foo/bar/baz.h", rules=["header-guard"])
        self.assertEqual([f.rule_id for f in findings], ["header-guard-name-mismatch"])

    def test_relative_path_drives_expected_name(self) -> None:
        findings = run_rules(GOOD_HEADER, "/abs/checkout/foo/bar/baz.h", "foo/bar/baz.h", ["header-guard"])
        self.assertEqual(findings, [])

    def test_missing_guard(self) -> None:
        findings = run_rules("int baz(void);\n", "baz.h", rules=["header-guard"])
        self.assertEqual([f.rule_id for f in findings], ["header-guard-missing"])
        self.assertEqual(findings[0].severity, "error")
        self.assertIn("BAZ_H_", findings[0].message)

    def test_pragma_once_is_missing_guard(self) -> None:
        findings = run_rules("#pragma once\nint baz(void);\n", "baz.h", rules=["header-guard"])
        self.assertEqual([f.rule_id for f in findings], ["header-guard-missing"])

    def test_mismatched_define_is_unbalanced(self) -> None:
        text = "#ifndef BAZ_H_\n#define BAZ_HH_\n#endif\n"
        findings = run_rules(text, "baz.h", rules=["header-guard"])
        self.assertEqual([f.rule_id for f in findings], ["header-guard-unbalanced"])

    def test_unclosed_guard_is_unbalanced(self) -> None:
        text = "#ifndef BAZ_H_\n#define BAZ_H_\nint baz(void);\n"
        findings = run_rules(text, "baz.h", rules=["header-guard"])
        self.assertEqual([f.rule_id for f in findings], ["header-guard-unbalanced"])

    def test_code_after_endif_is_unbalanced(self) -> None:
        text = "#ifndef BAZ_H_\n#define BAZ_H_\n#endif\nint late;\n"
        findings = run_rules(text, "baz.h", rules=["header-guard"])
        self.assertEqual([f.rule_id for f in findings], ["header-guard-unbalanced"])
        self.assertEqual(findings[0].line, 4)

    def test_sources_are_not_checked(self) -> None:
        self.assertEqual(run_rules("int main(void) { return 0; }\n", "main.c", rules=["header-guard"]), [])


if __name__ == "__main__":
    unittest.main()
