"""
Tests for the rule contract, the built-in OWASP rule sets and the rule
registry.
"""

from __future__ import annotations

import logging
import re
from typing import List
from unittest.mock import MagicMock

import pytest

from owasp_scanner.exceptions import RuleExecutionError
from owasp_scanner.models import Severity, Violation
from owasp_scanner.rules.base import (
    BaseRule,
    PatternCheck,
    PatternRule,
    RuleContext,
    RuleDefinition,
    has_authorization_nearby,
)
from owasp_scanner.rules.registry import RuleRegistry, create_default_registry


def _ctx(code: str, language: str = "java", version: str = "2021") -> RuleContext:
    return RuleContext(code=code, language=language, file_name="Sample.java", owasp_version=version)


@pytest.fixture(scope="module")
def registry() -> RuleRegistry:
    return create_default_registry()


class ExplodingRule(BaseRule):
    def _do_execute(self, context: RuleContext) -> List[Violation]:
        raise RuntimeError("boom")


# ============================================================================
# BaseRule helpers
# ============================================================================


class TestBaseRuleHelpers:
    CODE = "line one\nline two\nline three\nline four"

    def test_find_matching_lines(self):
        assert BaseRule.find_matching_lines(self.CODE, re.compile(r"t\w+")) == [2, 3]

    def test_get_code_snippet(self):
        assert BaseRule.get_code_snippet(self.CODE, 2) == "line two"
        assert BaseRule.get_code_snippet(self.CODE, 0) == ""
        assert BaseRule.get_code_snippet(self.CODE, 9) == ""

    def test_get_code_context_marks_line(self):
        context = BaseRule.get_code_context(self.CODE, 2, context_lines=1)
        assert context == "line one\n>>> line two\nline three\n"

    def test_empty_rule_id_rejected(self):
        with pytest.raises(ValueError):
            ExplodingRule(RuleDefinition(rule_id="", name="x"))

    def test_execute_isolates_failures(self):
        rule = ExplodingRule(RuleDefinition(rule_id="test-explode", name="Explode"))
        result = rule.execute(_ctx("anything"))
        assert result.success is False
        assert result.violations == []
        assert result.error_message == "Rule execution failed: boom"

    def test_overrides(self):
        rule = ExplodingRule(RuleDefinition(rule_id="r", name="r", severity=Severity.MINOR))
        rule.apply_overrides(severity="blocker", requires_ai=True)
        assert rule.severity is Severity.BLOCKER
        assert rule.requires_ai is True
        assert rule.definition.severity is Severity.MINOR

    def test_pattern_check_render(self):
        check = PatternCheck(re.compile(r"MD5\""), "Weak: {match}")
        assert check.render(check.pattern.search('getInstance("MD5")')) == "Weak: MD5"
        assert PatternCheck(re.compile("x"), "Static").render(re.search("x", "x")) == "Static"

    def test_failing_guard_fails_the_rule(self):
        def guard(code, line_number):
            raise KeyError("context")

        check = PatternCheck(re.compile(r"eval\("), "eval call", guard=guard)
        rule = PatternRule(RuleDefinition(rule_id="test-guard", name="Guard"), [check])
        result = rule.execute(_ctx("Object o = eval(x);"))
        assert result.success is False
        assert result.error_message.startswith("Rule execution failed: guard for /eval\\(/ failed at line 1")

        with pytest.raises(RuleExecutionError):
            rule._do_execute(_ctx("Object o = eval(x);"))

    def test_authorization_nearby(self):
        code = '@PreAuthorize("hasRole(\'ADMIN\')")\n@GetMapping("/admin")\npublic void admin() {}'
        assert has_authorization_nearby(code, 2)
        assert not has_authorization_nearby("@GetMapping(\"/open\")\nvoid open() {}", 1)


# ============================================================================
# OWASP 2021
# ============================================================================


class TestOwasp2021Rules:
    SQL_CODE = (
        "public class UserDao {\n"
        "    public User find(HttpServletRequest request) throws SQLException {\n"
        "        ResultSet rs = stmt.executeQuery(\"SELECT * FROM users WHERE name = '\" + request.getParameter(\"name\") + \"'\");\n"
        "        return map(rs);\n"
        "    }\n"
        "}\n"
    )

    def test_sql_injection(self, registry):
        rule = registry.get("owasp-2021-a03-001")
        context = _ctx(self.SQL_CODE)
        assert rule.matches(context)

        result = rule.execute(context)
        assert result.success
        sql = [v for v in result.violations if "SQL Injection" in v.message]
        assert len(sql) == 1
        violation = sql[0]
        assert violation.line_number == 3
        assert violation.severity is Severity.BLOCKER
        assert violation.owasp_category == "A03"
        assert "CWE-89" in violation.cwe_ids
        assert "PreparedStatement" in violation.fix_suggestion
        assert "executeQuery" in violation.code_snippet

    def test_weak_hash_message_names_algorithm(self, registry):
        rule = registry.get("owasp-2021-a02-001")
        context = _ctx('MessageDigest md = MessageDigest.getInstance("MD5");')
        assert rule.matches(context)
        violations = rule.execute(context).violations
        assert [v.message for v in violations] == [
            "Weak cryptographic algorithm detected: MD5 is considered insecure (CWE-327)"
        ]

    def test_endpoint_without_authorization(self, registry):
        rule = registry.get("owasp-2021-a01-001")
        code = '@GetMapping("/users")\npublic List<User> list() {\n    return repo.findAll();\n}'
        violations = rule.execute(_ctx(code)).violations
        assert len(violations) == 1
        assert violations[0].line_number == 1
        assert violations[0].message.startswith("Missing authorization check")

    def test_endpoint_with_authorization_nearby_is_suppressed(self, registry):
        rule = registry.get("owasp-2021-a01-001")
        code = (
            '@PreAuthorize("hasRole(\'ADMIN\')")\n'
            '@GetMapping("/users")\n'
            "public List<User> list() {\n"
            "    return repo.findAll();\n"
            "}"
        )
        assert rule.execute(_ctx(code)).violations == []

    def test_debug_keyword_is_case_insensitive(self, registry):
        rule = registry.get("owasp-2021-a05-001")
        context = _ctx("static final boolean DEBUG = true;")
        assert rule.matches(context)
        assert len(rule.execute(context).violations) == 1

    def test_unstable_dependency_in_pom(self, registry):
        rule = registry.get("owasp-2021-a06-001")
        context = _ctx("<dependency>\n  <version>2.0.0-SNAPSHOT</version>\n</dependency>", language="xml")
        assert rule.matches(context)
        violations = rule.execute(context).violations
        assert len(violations) == 1
        assert violations[0].line_number == 2

    def test_keyword_prefilter(self, registry):
        rule = registry.get("owasp-2021-a03-001")
        assert not rule.matches(_ctx("public class Plain { int x = 1; }"))

    def test_language_scope(self, registry):
        rule = registry.get("owasp-2021-a03-001")
        assert not rule.matches(_ctx(self.SQL_CODE, language="python"))
        assert rule.matches(_ctx(self.SQL_CODE, language="JAVA"))

    def test_version_scope(self, registry):
        rule = registry.get("owasp-2021-a03-001")
        assert not rule.matches(_ctx(self.SQL_CODE, version="2017"))

    def test_clean_code_has_no_violations(self, registry):
        code = (
            "public class Greeter {\n"
            "    public String greet(String name) {\n"
            "        return \"Hello, \" + name;\n"
            "    }\n"
            "}\n"
        )
        context = _ctx(code)
        for rule in registry.rules_by_version("2021"):
            if rule.matches(context):
                assert rule.execute(context).violations == [], rule.rule_id


# ============================================================================
# OWASP 2017 and 2025
# ============================================================================


class TestOwasp2017Rules:
    def test_deserialization(self, registry):
        rule = registry.get("owasp-2017-a8-001")
        context = _ctx("ObjectInputStream in = new ObjectInputStream(socket.getInputStream());", version="2017")
        assert rule.matches(context)
        violations = rule.execute(context).violations
        assert len(violations) == 1
        assert violations[0].owasp_category == "A8"
        assert violations[0].cwe_ids == ("CWE-502",)

    def test_rule_ids_and_categories(self, registry):
        rules = registry.rules_by_version("2017")
        assert len(rules) == 10
        assert {r.owasp_category for r in rules} == {f"A{i}" for i in range(1, 11)}


class TestOwasp2025Rules:
    def test_prompt_injection_requires_ai(self, registry):
        rule = registry.get("owasp-2025-a03-prompt-injection")
        assert rule.requires_ai is True
        assert rule.severity is Severity.CRITICAL

        context = _ctx('String full = prompt + request.getParameter("q");', version="2025")
        assert rule.matches(context)
        violations = rule.execute(context).violations
        assert len(violations) == 1
        assert violations[0].message == "Direct Prompt Injection: user input concatenated into prompt"

    def test_prompt_rule_skips_files_without_llm_keywords(self, registry):
        rule = registry.get("owasp-2025-a03-prompt-injection")
        assert not rule.matches(_ctx("int total = a + b;", version="2025"))

    def test_path_traversal(self, registry):
        rule = registry.get("owasp-2025-a01-001")
        context = _ctx('File f = new File("../etc/passwd");', version="2025")
        assert rule.matches(context)
        messages = [v.message for v in rule.execute(context).violations]
        assert any(m.startswith("Path traversal") for m in messages)
        assert rule.severity is Severity.BLOCKER


# ============================================================================
# Registry
# ============================================================================


def _simple_rule(rule_id: str, version: str = "2021", languages=("java",)) -> PatternRule:
    definition = RuleDefinition(rule_id=rule_id, name=rule_id, owasp_version=version, languages=languages)
    return PatternRule(definition, [PatternCheck(re.compile(r"eval\("), "eval call")])


class TestRuleRegistry:
    def test_default_registry_contents(self, registry):
        assert len(registry) == 22
        assert len(registry.rules_by_version("2021")) == 10
        assert len(registry.rules_by_version("2025")) == 2
        assert registry.enabled_count == 22

    def test_register_and_get(self):
        reg = RuleRegistry()
        rule = _simple_rule("r1")
        reg.register(rule)
        assert reg.get("r1") is rule
        assert "r1" in reg
        assert reg.is_enabled("r1")

    def test_register_none_or_empty_id(self):
        reg = RuleRegistry()
        with pytest.raises(ValueError):
            reg.register(None)
        with pytest.raises(ValueError):
            reg.register(MagicMock(rule_id=""))

    def test_register_duplicate_replaces(self):
        reg = RuleRegistry()
        reg.register(_simple_rule("r1"))
        replacement = _simple_rule("r1")
        reg.register(replacement)
        assert len(reg) == 1
        assert reg.get("r1") is replacement

    def test_enable_disable(self):
        reg = RuleRegistry()
        reg.register_all([_simple_rule("r1"), _simple_rule("r2")])
        reg.disable("r1")
        assert [r.rule_id for r in reg.enabled_rules()] == ["r2"]
        reg.enable("r1")
        assert reg.enabled_count == 2

    def test_unknown_rule_toggle_warns(self, caplog):
        reg = RuleRegistry()
        with caplog.at_level(logging.WARNING, logger="owasp_scanner.rules.registry"):
            reg.enable("ghost")
            reg.disable("ghost")
        assert "ghost" in caplog.text
        assert not reg.is_registered("ghost")

    def test_unregister(self):
        reg = RuleRegistry()
        reg.register(_simple_rule("r1"))
        assert reg.unregister("r1") is True
        assert reg.unregister("r1") is False
        assert not reg.is_enabled("r1")

    def test_lookups(self):
        reg = RuleRegistry()
        reg.register_all(
            [_simple_rule("r1"), _simple_rule("r2", version="2017"), _simple_rule("r3", languages=("xml",))]
        )
        assert {r.rule_id for r in reg.rules_by_language("JAVA")} == {"r1", "r2"}
        assert [r.rule_id for r in reg.rules_by_version("2017")] == ["r2"]

    def test_statistics(self):
        reg = RuleRegistry()
        reg.register_all([_simple_rule("r1"), _simple_rule("r2", version="2017")])
        reg.disable("r2")
        stats = reg.statistics()
        assert stats["total"] == 2
        assert stats["enabled"] == 1
        assert stats["disabled"] == 1
        assert stats["by_version"] == {"2021": 1, "2017": 1}
        assert stats["by_language"] == {"java": 2}

    def test_clear(self):
        reg = RuleRegistry()
        reg.register(_simple_rule("r1"))
        reg.clear()
        assert len(reg) == 0
        assert reg.enabled_count == 0
