"""
Rule Base - Contract and helpers shared by every detection rule.

A rule runs in two phases:

1. ``matches(context)`` -- a cheap filter on language, OWASP edition and
   keyword containment so that irrelevant files never reach the regex scan.
2. ``execute(context)`` -- the line-by-line scan that builds ``Violation``
   objects.  ``execute`` never raises: any failure is converted into a
   failed ``RuleResult``.

``PatternRule`` covers the common case of a rule that is fully described by
a definition, a keyword prefilter and a table of ``PatternCheck`` entries.
"""

from __future__ import annotations

import logging
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from functools import cached_property
from typing import Any, Callable, Dict, Iterable, List, Optional, Pattern, Sequence, Tuple

from owasp_scanner.exceptions import RuleExecutionError
from owasp_scanner.models import RuleResult, RuleType, Severity, Violation

logger = logging.getLogger(__name__)

DEFAULT_OWASP_VERSION = "2021"


@dataclass(frozen=True)
class RuleDefinition:
    """Static description of a rule.

    Attributes
    ----------
    rule_id : str
        Unique key, e.g. ``owasp-2021-a03-001``.
    owasp_category : str
        Category code within the edition (``A03``, ``A1``).
    owasp_version : str
        OWASP Top 10 edition the rule belongs to.
    languages : tuple
        Lower-case language names the rule applies to.
    requires_ai : bool
        Whether the engine should also ask the AI provider about files this
        rule matches.
    """

    rule_id: str
    name: str
    description: str = ""
    severity: Severity = Severity.MAJOR
    rule_type: RuleType = RuleType.VULNERABILITY
    owasp_category: str = ""
    owasp_version: str = DEFAULT_OWASP_VERSION
    cwe_ids: Tuple[str, ...] = ()
    languages: Tuple[str, ...] = ("java",)
    tags: Tuple[str, ...] = ()
    requires_ai: bool = False


@dataclass
class RuleContext:
    """Everything a rule may look at while analyzing one file."""

    code: str
    language: str
    file_name: Optional[str] = None
    file_path: Optional[str] = None
    owasp_version: str = DEFAULT_OWASP_VERSION
    ai_provider: Any = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def has_ai_provider(self) -> bool:
        return self.ai_provider is not None

    @cached_property
    def lines(self) -> List[str]:
        return self.code.split("\n")


class BaseRule(ABC):
    """Abstract base class for all rules.

    Subclasses must implement ``_do_execute(context)`` and may override
    ``_prefilter(context)`` to skip files cheaply.
    """

    def __init__(self, definition: RuleDefinition):
        if not definition.rule_id:
            raise ValueError("Rule ID cannot be empty")
        self.definition = definition
        self._severity_override: Optional[Severity] = None
        self._requires_ai_override: Optional[bool] = None

    # -- Definition proxies --

    @property
    def rule_id(self) -> str:
        return self.definition.rule_id

    @property
    def name(self) -> str:
        return self.definition.name

    @property
    def description(self) -> str:
        return self.definition.description

    @property
    def owasp_category(self) -> str:
        return self.definition.owasp_category

    @property
    def owasp_version(self) -> str:
        return self.definition.owasp_version

    @property
    def cwe_ids(self) -> Tuple[str, ...]:
        return self.definition.cwe_ids

    @property
    def languages(self) -> Tuple[str, ...]:
        return self.definition.languages

    @property
    def tags(self) -> Tuple[str, ...]:
        return self.definition.tags

    @property
    def severity(self) -> Severity:
        if self._severity_override is not None:
            return self._severity_override
        return self.definition.severity

    @property
    def requires_ai(self) -> bool:
        if self._requires_ai_override is not None:
            return self._requires_ai_override
        return self.definition.requires_ai

    def apply_overrides(self, severity: Any = None, requires_ai: Optional[bool] = None) -> None:
        """Override the default severity and/or AI requirement (rule config documents)."""
        if severity is not None:
            self._severity_override = Severity.parse(severity)
        if requires_ai is not None:
            self._requires_ai_override = bool(requires_ai)

    # -- Two-phase contract --

    def matches(self, context: RuleContext) -> bool:
        """Return ``True`` if this rule should run against *context*."""
        language = (context.language or "").lower()
        if language not in (lang.lower() for lang in self.languages):
            return False
        if context.owasp_version != self.owasp_version:
            return False
        return self._prefilter(context)

    def _prefilter(self, context: RuleContext) -> bool:
        """Override to add keyword checks.  Defaults to True."""
        return True

    def execute(self, context: RuleContext) -> RuleResult:
        """Run the rule with timing and error isolation."""
        start = time.perf_counter()
        try:
            violations = self._do_execute(context)
        except Exception as exc:
            elapsed_ms = (time.perf_counter() - start) * 1000
            logger.error("Rule %s execution failed: %s", self.rule_id, exc, exc_info=True)
            return RuleResult.failure(self.rule_id, f"Rule execution failed: {exc}", elapsed_ms)
        elapsed_ms = (time.perf_counter() - start) * 1000
        return RuleResult.success_result(self.rule_id, violations, elapsed_ms)

    @abstractmethod
    def _do_execute(self, context: RuleContext) -> List[Violation]:
        """Scan ``context.code`` and return the violations found."""
        ...

    # -- Helpers --

    @staticmethod
    def find_matching_lines(code: str, pattern: Pattern[str]) -> List[int]:
        """Return 1-based numbers of the lines where *pattern* matches."""
        return [
            number
            for number, line in enumerate(code.split("\n"), start=1)
            if pattern.search(line)
        ]

    @staticmethod
    def get_code_snippet(code: str, line_number: int) -> str:
        lines = code.split("\n")
        if line_number < 1 or line_number > len(lines):
            return ""
        return lines[line_number - 1]

    @staticmethod
    def get_code_context(code: str, line_number: int, context_lines: int = 3) -> str:
        """Return the lines around *line_number*, the problem line marked with ``>>> ``."""
        lines = code.split("\n")
        if line_number < 1 or line_number > len(lines):
            return ""
        start = max(1, line_number - context_lines)
        end = min(len(lines), line_number + context_lines)
        out = []
        for number in range(start, end + 1):
            prefix = ">>> " if number == line_number else ""
            out.append(f"{prefix}{lines[number - 1]}\n")
        return "".join(out)

    def create_violation(
        self, line_number: int, message: str, code: str, fix_suggestion: Optional[str] = None
    ) -> Violation:
        return Violation(
            rule_id=self.rule_id,
            message=message,
            line_number=line_number,
            code_snippet=self.get_code_snippet(code, line_number),
            fix_suggestion=fix_suggestion,
            severity=self.severity,
            owasp_category=self.owasp_category,
            cwe_ids=self.cwe_ids,
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.rule_id!r})"


@dataclass(frozen=True)
class PatternCheck:
    """One regex detector inside a ``PatternRule``.

    ``message`` may contain ``{match}``, replaced by the matched text with
    surrounding quotes, spaces and parentheses stripped.  ``guard`` receives
    the full code and the 1-based line number and returns ``True`` when the
    match should be suppressed.
    """

    pattern: Pattern[str]
    message: str
    fix: Optional[str] = None
    guard: Optional[Callable[[str, int], bool]] = None

    def render(self, match: "re.Match[str]") -> str:
        if "{match}" not in self.message:
            return self.message
        return self.message.replace("{match}", match.group(0).strip(" \t'\"("))


class PatternRule(BaseRule):
    """A rule fully described by data: keywords plus a table of regex checks."""

    def __init__(
        self,
        definition: RuleDefinition,
        checks: Sequence[PatternCheck],
        keywords: Iterable[str] = (),
        ignore_keyword_case: bool = False,
    ):
        super().__init__(definition)
        self.checks = list(checks)
        self.ignore_keyword_case = ignore_keyword_case
        if ignore_keyword_case:
            self.keywords = tuple(k.lower() for k in keywords)
        else:
            self.keywords = tuple(keywords)

    def _prefilter(self, context: RuleContext) -> bool:
        if not self.keywords:
            return True
        code = context.code.lower() if self.ignore_keyword_case else context.code
        return any(keyword in code for keyword in self.keywords)

    def _do_execute(self, context: RuleContext) -> List[Violation]:
        code = context.code
        violations: List[Violation] = []
        for check in self.checks:
            for number, line in enumerate(context.lines, start=1):
                match = check.pattern.search(line)
                if match is None:
                    continue
                if self._suppressed(check, code, number):
                    continue
                violations.append(
                    self.create_violation(number, check.render(match), code, check.fix)
                )
        return violations

    @staticmethod
    def _suppressed(check: PatternCheck, code: str, line_number: int) -> bool:
        if check.guard is None:
            return False
        try:
            return check.guard(code, line_number)
        except Exception as e:
            raise RuleExecutionError(
                f"guard for /{check.pattern.pattern}/ failed at line {line_number}: {e}"
            ) from e


AUTHORIZATION_MARKERS = (
    "@PreAuthorize",
    "@Secured",
    "@RolesAllowed",
    "hasRole",
    "hasAuthority",
    "checkPermission",
    "isAuthorized",
)


def has_authorization_nearby(code: str, line_number: int, radius: int = 5) -> bool:
    """True if an authorization marker appears within *radius* lines of *line_number*."""
    context = BaseRule.get_code_context(code, line_number, radius)
    return any(marker in context for marker in AUTHORIZATION_MARKERS)


def compile_ci(pattern: str) -> Pattern[str]:
    """Compile a case-insensitive pattern."""
    return re.compile(pattern, re.IGNORECASE)


__all__ = [
    "DEFAULT_OWASP_VERSION",
    "RuleDefinition",
    "RuleContext",
    "BaseRule",
    "PatternCheck",
    "PatternRule",
    "AUTHORIZATION_MARKERS",
    "has_authorization_nearby",
    "compile_ci",
]
