"""
AI Response Parser - turns free-form model output into ``Violation`` objects.

Backends answer in one of three shapes, tried in order:

1. A JSON object with an ``issues`` array (what the prompt asks for).
2. Markdown-ish sections introduced by ``## Finding N``, ``Vulnerability N:``
   or ``Issue N:`` / ``Finding N:`` markers.
3. Anything else.  Output of at least ``FALLBACK_MIN_LENGTH`` characters is
   kept as a single low-confidence finding so that nothing the model said is
   silently dropped.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Optional

from owasp_scanner.exceptions import AIProviderError
from owasp_scanner.models import Severity, Violation

logger = logging.getLogger(__name__)

AI_RULE_ID = "ai-analysis"
AI_CONFIDENCE = 0.8

FALLBACK_MIN_LENGTH = 50
FALLBACK_MAX_LENGTH = 500
FALLBACK_CONFIDENCE = 0.3
DESCRIPTION_PREVIEW_LENGTH = 250

NO_VULNERABILITY_PHRASES = (
    "no security vulnerabilities detected",
    "no vulnerabilities found",
    "no issues found",
)

SECTION_MARKERS = (
    re.compile(r"##\s*Finding\s*\d+", re.IGNORECASE),
    re.compile(r"Vulnerability\s+\d+:", re.IGNORECASE),
    re.compile(r"(?:Issue|Finding)\s+\d+:", re.IGNORECASE),
)

_SEVERITY_RE = re.compile(r"severity[:\s]+(BLOCKER|CRITICAL|MAJOR|MINOR|INFO|HIGH|MEDIUM|LOW)", re.IGNORECASE)
_OWASP_RE = re.compile(r"(A\d{2}:\d{4}-[A-Za-z -]+)")
_CWE_RE = re.compile(r"CWE[-\s]*(\d+)", re.IGNORECASE)
_DESCRIPTION_RE = re.compile(r"description\s*:\s*(.+)", re.IGNORECASE)
_FIX_RE = re.compile(r"(?:(?:suggested\s+)?fix|recommendation)\s*:\s*(.+)", re.IGNORECASE)
_LINE_RE = re.compile(r"line(?:\s+number)?\s*:\s*(\d+)", re.IGNORECASE)


def parse_response(output: Optional[str], provider_name: str = "") -> List[Violation]:
    """Parse raw backend output into violations.

    Args:
        output: Text returned by the model or CLI tool.
        provider_name: Used only for error reporting.

    Returns:
        Parsed violations; empty when the model reports no issues.

    Raises:
        AIProviderError: If the output is empty.
    """
    if output is None or not output.strip():
        raise AIProviderError("AI backend returned an empty response", "empty_response", provider_name)

    text = output.strip()
    lowered = text.lower()
    if any(phrase in lowered for phrase in NO_VULNERABILITY_PHRASES) and "{" not in text:
        return []

    issues = _extract_json_issues(text)
    if issues is not None:
        return [_violation_from_issue(issue) for issue in issues if isinstance(issue, dict)]

    if any(phrase in lowered for phrase in NO_VULNERABILITY_PHRASES):
        return []

    sections = _split_sections(text)
    if sections:
        return [_violation_from_section(section) for section in sections]

    return _fallback(text)


def _extract_json_issues(text: str) -> Optional[List[Any]]:
    """Return the ``issues`` array of the JSON object embedded in *text*, if any."""
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    try:
        data = json.loads(text[start:end + 1])
    except json.JSONDecodeError:
        logger.debug("AI output contains braces but no parseable JSON object")
        return None
    if not isinstance(data, dict) or not isinstance(data.get("issues"), list):
        return None
    return data["issues"]


def _normalize_cwe(value: Any) -> List[str]:
    if value is None or value == "":
        return []
    found = _CWE_RE.findall(str(value))
    if found:
        return [f"CWE-{n}" for n in found]
    if str(value).strip().isdigit():
        return [f"CWE-{str(value).strip()}"]
    return []


def _violation_from_issue(issue: Dict[str, Any]) -> Violation:
    line = issue.get("lineNumber")
    description = str(issue.get("description") or "AI-detected security issue")
    return Violation(
        rule_id=AI_RULE_ID,
        message=description,
        line_number=line if isinstance(line, int) and line > 0 else 1,
        fix_suggestion=issue.get("fixSuggestion"),
        severity=Severity.parse(issue.get("severity")),
        owasp_category=str(issue.get("owaspCategory") or "Unknown"),
        cwe_ids=tuple(_normalize_cwe(issue.get("cweId"))),
        source="ai",
        confidence=AI_CONFIDENCE,
    )


def _split_sections(text: str) -> List[str]:
    """Split *text* on the first marker style that occurs in it."""
    for marker in SECTION_MARKERS:
        starts = [m.start() for m in marker.finditer(text)]
        if not starts:
            continue
        bounds = starts + [len(text)]
        return [text[bounds[i]:bounds[i + 1]].strip() for i in range(len(starts))]
    return []


def _violation_from_section(section: str) -> Violation:
    severity_match = _SEVERITY_RE.search(section)
    severity = Severity.parse(severity_match.group(1)) if severity_match else Severity.MAJOR

    owasp_match = _OWASP_RE.search(section)
    category = owasp_match.group(1).strip() if owasp_match else "Unknown"

    description_match = _DESCRIPTION_RE.search(section)
    if description_match:
        description = description_match.group(1).strip()
    else:
        description = section[:DESCRIPTION_PREVIEW_LENGTH].strip()

    fix_match = _FIX_RE.search(section)
    line_match = _LINE_RE.search(section)

    return Violation(
        rule_id=AI_RULE_ID,
        message=description,
        line_number=int(line_match.group(1)) if line_match else 1,
        fix_suggestion=fix_match.group(1).strip() if fix_match else None,
        severity=severity,
        owasp_category=category,
        cwe_ids=tuple(f"CWE-{n}" for n in dict.fromkeys(_CWE_RE.findall(section))),
        source="ai",
        confidence=AI_CONFIDENCE,
    )


def _fallback(text: str) -> List[Violation]:
    if len(text) < FALLBACK_MIN_LENGTH:
        logger.debug("AI output too short to keep (%d chars)", len(text))
        return []
    message = text
    if len(message) > FALLBACK_MAX_LENGTH:
        message = message[:FALLBACK_MAX_LENGTH] + "..."
    logger.info("AI output did not match a known format; keeping it as one low-confidence finding")
    return [
        Violation(
            rule_id=AI_RULE_ID,
            message=message,
            severity=Severity.MAJOR,
            owasp_category="Unknown",
            source="ai",
            confidence=FALLBACK_CONFIDENCE,
        )
    ]


__all__ = [
    "AI_RULE_ID",
    "FALLBACK_MIN_LENGTH",
    "FALLBACK_MAX_LENGTH",
    "FALLBACK_CONFIDENCE",
    "NO_VULNERABILITY_PHRASES",
    "parse_response",
]
