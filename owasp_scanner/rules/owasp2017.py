"""
OWASP Top 10 (2017) rules for Java sources.

The 2017 edition is kept for projects still reporting against it.  Checks
are simpler than the 2021 ones and all case-insensitive.
"""

from typing import List, Sequence, Tuple

from owasp_scanner.models import Severity
from owasp_scanner.rules.base import BaseRule, PatternCheck, PatternRule, RuleDefinition, compile_ci

VERSION = "2017"

# (rule_id, name, category, severity, cwe numbers, [(pattern, message, fix), ...])
_RULE_TABLE: Sequence[Tuple[str, str, str, Severity, Tuple[int, ...], List[Tuple[str, str, str]]]] = [
    (
        "owasp-2017-a1-001", "Injection Detection", "A1", Severity.MAJOR, (89, 79, 78, 90),
        [
            (r"(?:executeQuery|executeUpdate|execute|createQuery)\s*\([^)]*(?:\+|\{|\$\{|concat).*(?:request\.|params\.)",
             "SQL Injection vulnerability (CWE-89)", "Use prepared statements"),
            (r"(?:response\.getWriter\(\)\.write|out\.print|innerHTML|document\.write)\s*\([^)]*(?:request\.|params\.)",
             "Cross-Site Scripting (XSS) vulnerability (CWE-79)", "Sanitize output"),
            (r"(?:Runtime\.getRuntime\(\)\.exec|ProcessBuilder|Process\.start).*(?:request\.|params\.)",
             "Command Injection vulnerability (CWE-78)", "Validate input"),
            (r"(?:search|lookup)\s*\([^)]*(?:\+|concat).*(?:request\.|params\.)",
             "LDAP Injection vulnerability (CWE-90)", "Use parameterized queries"),
        ],
    ),
    (
        "owasp-2017-a2-001", "Broken Authentication Detection", "A2", Severity.CRITICAL, (287, 384, 307),
        [
            (r"(?:sessionId|session_id)\s*=\s*(?:request\.|cookie\.).*(?:Math\.random|Random\.next)",
             "Weak session ID generation (CWE-384)", "Use SecureRandom"),
            (r"(?:password|passwd|pwd)\s*=\s*['\"][^'\"]{3,}['\"]",
             "Hardcoded credentials (CWE-798)", "Use secure credential storage"),
            (r"(?:session\.setMaxInactiveInterval).*(?:[3-9]\d{3,}|\d{5,})",
             "Excessive session timeout (CWE-613)", "Limit session timeout to 30 minutes"),
        ],
    ),
    (
        "owasp-2017-a3-001", "Sensitive Data Exposure Detection", "A3", Severity.CRITICAL, (319, 327, 326),
        [
            (r"(?:http://|url\s*=\s*['\"]http:|setUrl\(\s*['\"]http:)",
             "Plaintext HTTP transmission (CWE-319)", "Use HTTPS"),
            (r"(?:DES|RC4|MD5)(?:['\"]|\s|\()",
             "Weak cryptographic algorithm (CWE-327)", "Use AES-256"),
            (r"(?:SSLv2|SSLv3|TLSv1\.0)",
             "Insecure SSL/TLS version (CWE-326)", "Use TLS 1.2+"),
        ],
    ),
    (
        "owasp-2017-a4-001", "XML External Entities Detection", "A4", Severity.CRITICAL, (611, 827),
        [
            (r"(?:DocumentBuilderFactory|SAXParserFactory|XMLInputFactory)\.newInstance\(\)(?!.*setFeature)",
             "XXE vulnerability: XML parser not configured securely (CWE-611)", "Disable external entities"),
            (r"setFeature.*FEATURE_SECURE_PROCESSING.*false",
             "Insecure XML processing feature (CWE-611)", "Enable FEATURE_SECURE_PROCESSING"),
        ],
    ),
    (
        "owasp-2017-a5-001", "Broken Access Control Detection", "A5", Severity.MAJOR, (22, 284, 601),
        [
            (r"\.\.[\\/]|\.\.%2[fF]",
             "Path traversal vulnerability (CWE-22)", "Validate file paths"),
            (r"@(?:GetMapping|PostMapping|RequestMapping)(?!.*@(?:PreAuthorize|Secured))",
             "Missing authorization check (CWE-862)", "Add @PreAuthorize"),
            (r"(?:sendRedirect|redirect:)\s*\(\s*(?:request\.|params\.)",
             "Open redirect vulnerability (CWE-601)", "Validate redirect URLs"),
        ],
    ),
    (
        "owasp-2017-a6-001", "Security Misconfiguration Detection", "A6", Severity.MAJOR, (2, 16, 798),
        [
            (r"(?:debug|DEBUG)\s*=\s*(?:true|1|enabled)",
             "Debug mode enabled (CWE-489)", "Disable debug in production"),
            (r"(?:admin|root).*(?:admin|root|password)",
             "Default credentials detected (CWE-798)", "Use unique credentials"),
        ],
    ),
    (
        "owasp-2017-a7-001", "Cross-Site Scripting Detection", "A7", Severity.CRITICAL, (79, 80),
        [
            (r"(?:response\.getWriter|out\.print|innerHTML|document\.write).*(?:request\.|params\.)",
             "XSS vulnerability: Unescaped output (CWE-79)", "Escape HTML entities"),
            (r"eval\s*\(.*(?:request\.|params\.|user)",
             "Unsafe eval with user input (CWE-95)", "Avoid eval"),
        ],
    ),
    (
        "owasp-2017-a8-001", "Insecure Deserialization Detection", "A8", Severity.CRITICAL, (502,),
        [
            (r"(?:ObjectInputStream|readObject|readUnshared|XMLDecoder)",
             "Insecure deserialization (CWE-502)", "Validate before deserialization"),
        ],
    ),
    (
        "owasp-2017-a9-001", "Vulnerable Components Detection", "A9", Severity.MAJOR, (1035, 1104),
        [
            (r"(?:SNAPSHOT|alpha|beta|rc)",
             "Potentially vulnerable component version (CWE-1104)", "Use stable releases"),
        ],
    ),
    (
        "owasp-2017-a10-001", "Insufficient Logging Detection", "A10", Severity.MAJOR, (778, 117),
        [
            (r"(?:login|authenticate|authorize).*(?:fail|error|exception)(?!.*log)",
             "Missing security logging (CWE-778)", "Add security event logging"),
            (r"log\.(?:info|warn|error).*(?:\+|concat).*(?:request\.|params\.)",
             "Log injection vulnerability (CWE-117)", "Sanitize log input"),
        ],
    ),
]


def create_rules() -> List[BaseRule]:
    """Return fresh instances of every 2017 rule."""
    rules: List[BaseRule] = []
    for rule_id, name, category, severity, cwes, checks in _RULE_TABLE:
        definition = RuleDefinition(
            rule_id=rule_id,
            name=name,
            description=f"OWASP 2017 {category}: {name.replace(' Detection', '')}",
            severity=severity,
            owasp_category=category,
            owasp_version=VERSION,
            cwe_ids=tuple(f"CWE-{n}" for n in cwes),
            languages=("java",),
            tags=("owasp-2017", "security"),
        )
        rules.append(
            PatternRule(
                definition,
                [PatternCheck(compile_ci(pattern), message, fix) for pattern, message, fix in checks],
            )
        )
    return rules


__all__ = ["VERSION", "create_rules"]
