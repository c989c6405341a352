"""
Security Analysis Data Models.

Core dataclasses shared by the rule engine, the parallel analyzer, the cache
and the AI providers.

Classes:
    Severity: Five-level violation severity with lenient parsing
    RuleType: Kind of issue a rule reports
    AnalysisTask: One file to analyze
    Violation: A single reported issue (pattern match or AI finding)
    RuleResult: Outcome of running one rule against one file
    AnalysisResult: All rule results for one file
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple


class Severity(str, Enum):
    """Violation severity, ordered from most to least severe."""

    BLOCKER = "BLOCKER"
    CRITICAL = "CRITICAL"
    MAJOR = "MAJOR"
    MINOR = "MINOR"
    INFO = "INFO"

    @classmethod
    def parse(cls, value: Any) -> "Severity":
        """Parse a severity label; anything unrecognized becomes INFO."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return cls.INFO
        label = value.strip().upper()
        if label in cls.__members__:
            return cls[label]
        return _SEVERITY_ALIASES.get(label, cls.INFO)

    @property
    def rank(self) -> int:
        return _SEVERITY_ORDER.index(self)


_SEVERITY_ORDER = [
    Severity.BLOCKER,
    Severity.CRITICAL,
    Severity.MAJOR,
    Severity.MINOR,
    Severity.INFO,
]

# Labels used by AI backends and other scanners
_SEVERITY_ALIASES = {
    "HIGH": Severity.CRITICAL,
    "ERROR": Severity.CRITICAL,
    "MEDIUM": Severity.MAJOR,
    "WARNING": Severity.MAJOR,
    "LOW": Severity.MINOR,
    "NOTE": Severity.INFO,
}


class RuleType(str, Enum):
    VULNERABILITY = "VULNERABILITY"
    SECURITY_HOTSPOT = "SECURITY_HOTSPOT"
    BUG = "BUG"
    CODE_SMELL = "CODE_SMELL"


@dataclass(frozen=True)
class AnalysisTask:
    """One file queued for analysis."""

    file_path: Path
    language: str
    ruleset_version: str = "2021"


@dataclass(frozen=True)
class Violation:
    """A single reported issue."""

    rule_id: str
    message: str
    line_number: int = 1
    code_snippet: str = ""
    fix_suggestion: Optional[str] = None
    severity: Severity = Severity.INFO
    owasp_category: str = ""
    cwe_ids: Tuple[str, ...] = ()
    source: str = "pattern"  # 'pattern' or 'ai'
    confidence: float = 1.0

    def __post_init__(self):
        # frozen: go through object.__setattr__ for normalization
        object.__setattr__(self, "severity", Severity.parse(self.severity))
        object.__setattr__(self, "cwe_ids", tuple(self.cwe_ids))

    def with_rule(
        self,
        rule_id: str,
        owasp_category: Optional[str] = None,
        cwe_ids: Optional[Tuple[str, ...]] = None,
    ) -> "Violation":
        """Return a copy attributed to *rule_id*, keeping existing metadata where set."""
        category = self.owasp_category
        if category in ("", "Unknown") and owasp_category:
            category = owasp_category
        return replace(
            self,
            rule_id=rule_id,
            owasp_category=category,
            cwe_ids=self.cwe_ids or tuple(cwe_ids or ()),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "message": self.message,
            "line": self.line_number,
            "code_snippet": self.code_snippet,
            "fix_suggestion": self.fix_suggestion,
            "severity": self.severity.value,
            "owasp_category": self.owasp_category,
            "cwe_ids": list(self.cwe_ids),
            "source": self.source,
            "confidence": self.confidence,
        }


@dataclass
class RuleResult:
    """Outcome of executing one rule against one file."""

    rule_id: str
    success: bool
    violations: List[Violation] = field(default_factory=list)
    execution_time_ms: float = 0.0
    error_message: Optional[str] = None

    @classmethod
    def success_result(
        cls, rule_id: str, violations: Optional[List[Violation]] = None, execution_time_ms: float = 0.0
    ) -> "RuleResult":
        return cls(rule_id=rule_id, success=True, violations=list(violations or []), execution_time_ms=execution_time_ms)

    @classmethod
    def failure(cls, rule_id: str, error_message: str, execution_time_ms: float = 0.0) -> "RuleResult":
        return cls(
            rule_id=rule_id,
            success=False,
            violations=[],
            execution_time_ms=execution_time_ms,
            error_message=error_message,
        )

    @property
    def violation_count(self) -> int:
        return len(self.violations)


@dataclass
class AnalysisResult:
    """All rule results for a single file.

    Attributes
    ----------
    rule_results : list
        One ``RuleResult`` per executed rule; order is not significant.
    execution_time_ms : float
        Wall-clock time spent in the rule engine.
    file_path : str
        Path of the analyzed file, if known.
    language : str
        Language the file was analyzed as.
    ruleset_version : str
        OWASP edition the rules were selected for.
    """

    rule_results: List[RuleResult] = field(default_factory=list)
    execution_time_ms: float = 0.0
    file_path: Optional[str] = None
    language: str = ""
    ruleset_version: str = ""

    @property
    def all_violations(self) -> List[Violation]:
        return [v for result in self.rule_results for v in result.violations]

    @property
    def total_violations(self) -> int:
        return sum(result.violation_count for result in self.rule_results)

    @property
    def success_count(self) -> int:
        return sum(1 for result in self.rule_results if result.success)

    @property
    def failure_count(self) -> int:
        return sum(1 for result in self.rule_results if not result.success)

    @property
    def total_rules_executed(self) -> int:
        return len(self.rule_results)

    def violations_by_severity(self) -> Dict[Severity, int]:
        counts: Dict[Severity, int] = {}
        for violation in self.all_violations:
            counts[violation.severity] = counts.get(violation.severity, 0) + 1
        return counts

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file": self.file_path,
            "language": self.language,
            "ruleset_version": self.ruleset_version,
            "execution_time_ms": round(self.execution_time_ms, 2),
            "rules_executed": self.total_rules_executed,
            "rules_failed": self.failure_count,
            "violations": [v.to_dict() for v in self.all_violations],
        }


__all__ = [
    "Severity",
    "RuleType",
    "AnalysisTask",
    "Violation",
    "RuleResult",
    "AnalysisResult",
]
