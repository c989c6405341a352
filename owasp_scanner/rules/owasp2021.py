"""
OWASP Top 10 (2021) rules for Java sources.

One rule per category, each a table of line-oriented regex checks.  Patterns
are matched against single lines, so constructs spanning several lines are
not detected.
"""

import re
from typing import List

from owasp_scanner.models import Severity
from owasp_scanner.rules.base import (
    BaseRule,
    PatternCheck,
    PatternRule,
    RuleDefinition,
    compile_ci,
    has_authorization_nearby,
)

VERSION = "2021"
LANGUAGES = ("java",)
_USER_INPUT = r"(?:request\.|params\.|input\.|user\.)"


def _cwes(*numbers: int) -> tuple:
    return tuple(f"CWE-{n}" for n in numbers)


# ---------------------------------------------------------------------------
# A01 Broken Access Control
# ---------------------------------------------------------------------------

def broken_access_control() -> PatternRule:
    definition = RuleDefinition(
        rule_id="owasp-2021-a01-001",
        name="Broken Access Control Detection",
        description="Detects path traversal, unsafe file access with user input, insecure "
                    "direct object references, endpoints without authorization and open redirects.",
        severity=Severity.CRITICAL,
        owasp_category="A01",
        owasp_version=VERSION,
        cwe_ids=_cwes(22, 23, 35, 59, 200, 201, 219, 264, 275, 284, 285, 352, 359, 377, 402,
                      425, 441, 497, 538, 540, 548, 552, 566, 601, 639, 651, 668, 706, 862,
                      863, 913, 922, 1275),
        languages=LANGUAGES,
        tags=("owasp-2021", "security", "access-control"),
    )
    checks = [
        PatternCheck(
            re.compile(r"\.\.[\\/]|\.\.%2[fF]|%2[eE]%2[eE]%2[fF]|%252[eE]%252[eE]%252[fF]"),
            "Path Traversal vulnerability detected: Code contains '../' or encoded traversal sequences",
            "Validate and sanitize file paths. Use Path.normalize() and check if the resolved "
            "path is within allowed directories.",
        ),
        PatternCheck(
            re.compile(
                r"(?:new\s+File|FileInputStream|FileOutputStream|FileReader|FileWriter|"
                r"Files\.(?:read|write|delete|move|copy)|"
                r"Path\.(?:get|of)|Paths\.get)\s*\([^)]*" + _USER_INPUT + r"[^)]*\)"
            ),
            "Unsafe file operation with user input: Direct use of user-controlled input in file operations",
            "Validate file paths against a whitelist. Use secure file handling libraries and "
            "restrict access to specific directories.",
        ),
        PatternCheck(
            re.compile(
                r"(?:SELECT|UPDATE|DELETE)\s+.*\s+WHERE\s+id\s*=\s*['\"]?\s*(?:\$|\{|request\.|params\.)"
            ),
            "Insecure Direct Object Reference: Database query uses direct ID from user input "
            "without authorization check",
            "Implement proper authorization checks. Verify that the current user has permission "
            "to access the requested object.",
        ),
        PatternCheck(
            re.compile(
                r"@(?:GetMapping|PostMapping|PutMapping|DeleteMapping|RequestMapping|Route)\s*\([^)]*\)"
                r"\s*(?!.*@(?:PreAuthorize|Secured|RolesAllowed))"
            ),
            "Missing authorization check: Endpoint lacks @PreAuthorize, @Secured, or @RolesAllowed annotation",
            "Add appropriate authorization annotation (@PreAuthorize, @Secured, or @RolesAllowed) "
            "to restrict access.",
            guard=has_authorization_nearby,
        ),
        PatternCheck(
            re.compile(
                r"(?:response\.sendRedirect|redirect:|window\.location|location\.href)\s*\(?\s*"
                r"(?:request\.|params\.|input\.)"
            ),
            "Unsafe redirect with user input: Open redirect vulnerability (CWE-601)",
            "Validate redirect URLs against a whitelist of allowed domains. Never use user input "
            "directly in redirects.",
        ),
    ]
    return PatternRule(
        definition,
        checks,
        keywords=("File", "Path", "request", "Mapping", "redirect", "WHERE"),
    )


# ---------------------------------------------------------------------------
# A02 Cryptographic Failures
# ---------------------------------------------------------------------------

def cryptographic_failures() -> PatternRule:
    definition = RuleDefinition(
        rule_id="owasp-2021-a02-001",
        name="Cryptographic Failures Detection",
        description="Detects weak algorithms, hardcoded secrets, insecure randomness, plaintext "
                    "HTTP, deprecated SSL/TLS, ECB mode and Base64 used as encryption.",
        severity=Severity.CRITICAL,
        owasp_category="A02",
        owasp_version=VERSION,
        cwe_ids=_cwes(261, 296, 310, 319, 321, 322, 323, 324, 325, 326, 327, 328, 329, 330,
                      331, 335, 336, 337, 338, 340, 347, 523, 720, 757, 759, 760, 780, 818, 916),
        languages=LANGUAGES,
        tags=("owasp-2021", "security", "cryptography"),
    )
    checks = [
        PatternCheck(
            compile_ci(r"(?:DES|RC2|RC4|MD5|SHA1|SHA-1)(?:['\"]|\s|\()"),
            "Weak cryptographic algorithm detected: {match} is considered insecure (CWE-327)",
            "Replace it with secure algorithms: AES-256, RSA-2048+, SHA-256, or SHA-3",
        ),
        PatternCheck(
            compile_ci(
                r"(?:password|passwd|pwd|secret|key|token|api[_-]?key)\s*[=:]\s*['\"][^'\"]{8,}['\"]"
            ),
            "Hardcoded secret detected: Credentials should never be hardcoded in source code (CWE-798)",
            "Use environment variables, configuration files, or secure secret management systems "
            "(e.g., HashiCorp Vault, AWS Secrets Manager)",
        ),
        PatternCheck(
            compile_ci(r"(?:new\s+Random\s*\(|Math\.random\(|Random\.next(?:Int|Long|Double))"),
            "Insecure random number generation: java.util.Random is not cryptographically secure (CWE-330)",
            "Use SecureRandom for cryptographic operations: SecureRandom.getInstanceStrong() or "
            "SecureRandom.getInstance(\"NativePRNG\")",
        ),
        PatternCheck(
            compile_ci(r"(?:http://|url\s*=\s*['\"]http:|setUrl\(\s*['\"]http:)"),
            "Plaintext HTTP transmission: Data transmitted over HTTP is not encrypted (CWE-319)",
            "Use HTTPS for all network communication to ensure data encryption in transit",
        ),
        PatternCheck(
            compile_ci(
                r"(?:SSLv2|SSLv3|TLSv1\.0|TLSv1\.1|ALLOW_ALL_HOSTNAME_VERIFIER|"
                r"setHostnameVerifier\s*\(\s*null)"
            ),
            "Insecure SSL/TLS configuration: {match} is deprecated and vulnerable (CWE-326)",
            "Use TLSv1.2 or TLSv1.3 with strong cipher suites. Avoid SSLv2, SSLv3, TLSv1.0, and TLSv1.1",
        ),
        PatternCheck(
            compile_ci(r"(?:AES/ECB|DES/ECB|Cipher\.getInstance\s*\(\s*['\"](?:AES|DES)['\"]\s*\))"),
            "Insecure cipher mode: ECB mode does not provide semantic security (CWE-327)",
            "Use secure cipher modes: AES/GCM/NoPadding or AES/CBC/PKCS5Padding with random IV",
        ),
        PatternCheck(
            compile_ci(r"(?:Base64\.(?:encode|decode)).*(?:password|secret|key|token)"),
            "Base64 is not encryption: Base64 is encoding, not encryption, and provides no security (CWE-327)",
            "Use proper encryption (AES-256) for sensitive data. Base64 should only be used for "
            "encoding binary data",
        ),
    ]
    return PatternRule(
        definition,
        checks,
        keywords=("Cipher", "encrypt", "password", "secret", "Random", "http://", "SSL",
                  "TLS", "Base64", "MessageDigest"),
    )


# ---------------------------------------------------------------------------
# A03 Injection
# ---------------------------------------------------------------------------

def injection() -> PatternRule:
    definition = RuleDefinition(
        rule_id="owasp-2021-a03-001",
        name="Injection Detection",
        description="Detects SQL, XSS, OS command, LDAP, XML, expression language and NoSQL "
                    "injection where user input reaches an interpreter.",
        severity=Severity.BLOCKER,
        owasp_category="A03",
        owasp_version=VERSION,
        cwe_ids=_cwes(20, 74, 75, 77, 78, 79, 80, 83, 87, 88, 89, 90, 91, 93, 94, 95, 96, 97,
                      98, 99, 100, 113, 116, 138, 184, 470, 471, 564, 610, 643, 644, 652, 917),
        languages=LANGUAGES,
        tags=("owasp-2021", "security", "injection"),
    )
    checks = [
        PatternCheck(
            compile_ci(
                r"(?:executeQuery|executeUpdate|execute|createQuery|createNativeQuery)\s*\([^)]*"
                r"(?:\+|\{|\$\{|concat).*" + _USER_INPUT
            ),
            "SQL Injection vulnerability: User input directly concatenated into SQL query (CWE-89)",
            "Use PreparedStatement with parameter binding or JPA named parameters instead of "
            "string concatenation.",
        ),
        PatternCheck(
            compile_ci(
                r"(?:response\.getWriter\(\)\.write|out\.print|innerHTML|outerHTML|document\.write)"
                r"\s*\([^)]*(?:request\.|params\.|input\.)"
            ),
            "Cross-Site Scripting (XSS) vulnerability: Unescaped user input rendered in output (CWE-79)",
            "Encode output for the HTML context (e.g., OWASP Java Encoder) and validate input.",
        ),
        PatternCheck(
            compile_ci(
                r"(?:Runtime\.getRuntime\(\)\.exec|ProcessBuilder|Process\.start|bash|sh|cmd\.exe)"
                r".*" + _USER_INPUT
            ),
            "Command Injection vulnerability: User input passed to system command execution (CWE-78)",
            "Avoid shelling out with user input. Use an allowlist of commands and pass arguments "
            "as a list, never through a shell.",
        ),
        PatternCheck(
            compile_ci(r"(?:search|lookup)\s*\([^)]*(?:\+|concat).*(?:request\.|params\.|input\.)"),
            "LDAP Injection vulnerability: Unsanitized user input in LDAP query (CWE-90)",
            "Escape LDAP special characters and use parameterized search filters.",
        ),
        PatternCheck(
            compile_ci(r"(?:DocumentBuilder|XMLReader|SAXParser).*(?:request\.|params\.|input\.).*(?:parse|read)"),
            "XML Injection vulnerability: User input parsed as XML without validation (CWE-91)",
            "Validate XML input against a schema and disable external entity resolution.",
        ),
        PatternCheck(
            compile_ci(
                r"\$\{.*(?:request\.|params\.|param\.).*\}|ValueExpression.*evaluate.*(?:request\.|params\.)"
            ),
            "Expression Language Injection: User input evaluated as EL expression (CWE-917)",
            "Never evaluate user-controlled expressions. Escape or validate values before they "
            "reach the expression evaluator.",
        ),
        PatternCheck(
            compile_ci(
                r"(?:find|findOne|update|remove|aggregate)\s*\(\s*\{[^}]*(?:request\.|params\.|\$where)"
            ),
            "NoSQL Injection vulnerability: Unsanitized input in NoSQL query (CWE-943)",
            "Build queries with typed filter builders and reject operator keys ($where, $ne) in input.",
        ),
    ]
    return PatternRule(
        definition,
        checks,
        keywords=("execute", "Query", "request", "Runtime", "Process", "write", "innerHTML", "search"),
    )


# ---------------------------------------------------------------------------
# A04 Insecure Design
# ---------------------------------------------------------------------------

def insecure_design() -> PatternRule:
    definition = RuleDefinition(
        rule_id="owasp-2021-a04-001",
        name="Insecure Design Detection",
        description="Detects file uploads without validation and sensitive endpoints without rate limiting.",
        severity=Severity.MAJOR,
        owasp_category="A04",
        owasp_version=VERSION,
        cwe_ids=_cwes(73, 183, 209, 213, 235, 256, 257, 266, 269, 280, 311, 312, 313, 316, 419,
                      430, 434, 444, 451, 472, 501, 522, 525, 539, 579, 598, 602, 642, 646, 650,
                      653, 656, 657, 799, 807, 840, 841, 927, 1021, 1173),
        languages=LANGUAGES,
        tags=("owasp-2021", "security", "design"),
    )
    checks = [
        PatternCheck(
            compile_ci(
                r"(?:MultipartFile|FileUpload|uploadFile).*(?:save|store|write)"
                r"(?!.*(?:validate|check|verify|whitelist))"
            ),
            "Unrestricted file upload: Missing file type/size validation (CWE-434)",
            "Validate file type, size and name before storing uploads, and store them outside the web root.",
        ),
        PatternCheck(
            compile_ci(r"@(?:PostMapping|RequestMapping).*(?:/login|/register|/reset|/api/)(?!.*@RateLimited)"),
            "Missing rate limiting: Endpoint vulnerable to brute-force attacks",
            "Implement rate limiting using @RateLimited or bucket4j library",
        ),
    ]
    return PatternRule(
        definition,
        checks,
        keywords=("MultipartFile", "FileUpload", "uploadFile", "Mapping"),
    )


# ---------------------------------------------------------------------------
# A05 Security Misconfiguration
# ---------------------------------------------------------------------------

def security_misconfiguration() -> PatternRule:
    definition = RuleDefinition(
        rule_id="owasp-2021-a05-001",
        name="Security Misconfiguration Detection",
        description="Detects debug mode left enabled and default credentials.",
        severity=Severity.MAJOR,
        owasp_category="A05",
        owasp_version=VERSION,
        cwe_ids=_cwes(2, 11, 13, 15, 16, 260, 315, 520, 526, 537, 541, 547, 611, 614, 756, 776,
                      942, 1004, 1032, 1174),
        languages=LANGUAGES,
        tags=("owasp-2021", "security", "configuration"),
    )
    checks = [
        PatternCheck(
            compile_ci(r"\bdebug\s*[=:]\s*true\b|@Profile\(\"dev\"\)"),
            "Debug mode enabled in production (CWE-489)",
            "Disable debug mode",
        ),
        PatternCheck(
            compile_ci(r"admin:admin|root:root|password:password"),
            "Default credentials detected (CWE-798)",
            "Change default credentials",
        ),
    ]
    return PatternRule(
        definition,
        checks,
        keywords=("debug", "@profile", "admin", "root", "password"),
        ignore_keyword_case=True,
    )


# ---------------------------------------------------------------------------
# A06 Vulnerable and Outdated Components
# ---------------------------------------------------------------------------

def vulnerable_components() -> PatternRule:
    definition = RuleDefinition(
        rule_id="owasp-2021-a06-001",
        name="Vulnerable Components Detection",
        description="Detects pre-release dependency versions declared in build files.",
        severity=Severity.CRITICAL,
        owasp_category="A06",
        owasp_version=VERSION,
        cwe_ids=_cwes(1035, 1104),
        languages=("java", "xml"),
        tags=("owasp-2021", "security", "dependencies"),
    )
    checks = [
        PatternCheck(
            compile_ci(r"<version>.*(?:SNAPSHOT|alpha|beta|M\d|RC\d)</version>"),
            "Unstable dependency version detected (CWE-1104)",
            "Use stable release versions",
        ),
    ]
    return PatternRule(definition, checks, keywords=("<version>",))


# ---------------------------------------------------------------------------
# A07 Identification and Authentication Failures
# ---------------------------------------------------------------------------

def authentication_failures() -> PatternRule:
    definition = RuleDefinition(
        rule_id="owasp-2021-a07-001",
        name="Authentication Failures Detection",
        description="Detects predictable session identifiers and login endpoints without MFA.",
        severity=Severity.CRITICAL,
        owasp_category="A07",
        owasp_version=VERSION,
        cwe_ids=_cwes(255, 259, 287, 288, 290, 294, 295, 297, 300, 302, 304, 306, 307, 346, 384,
                      521, 613, 620, 640, 798, 940, 1216),
        languages=LANGUAGES,
        tags=("owasp-2021", "security", "authentication"),
    )
    checks = [
        PatternCheck(
            compile_ci(r"(?:sessionId|JSESSIONID).*(?:=|predictable|sequential)"),
            "Weak session management (CWE-384)",
            "Use cryptographically secure session IDs",
        ),
        PatternCheck(
            compile_ci(r"@PostMapping.*(?:/login|/signin)(?!.*(?:MFA|2FA|OTP))"),
            "Missing MFA for sensitive operations (CWE-308)",
            "Implement multi-factor authentication",
        ),
    ]
    return PatternRule(
        definition,
        checks,
        keywords=("session", "login", "signin"),
        ignore_keyword_case=True,
    )


# ---------------------------------------------------------------------------
# A08 Software and Data Integrity Failures
# ---------------------------------------------------------------------------

def data_integrity_failures() -> PatternRule:
    definition = RuleDefinition(
        rule_id="owasp-2021-a08-001",
        name="Data Integrity Failures Detection",
        description="Detects deserialization of user-controlled data.",
        severity=Severity.BLOCKER,
        owasp_category="A08",
        owasp_version=VERSION,
        cwe_ids=_cwes(345, 353, 426, 494, 502, 565, 784, 829, 830, 915),
        languages=LANGUAGES,
        tags=("owasp-2021", "security", "integrity"),
    )
    checks = [
        PatternCheck(
            compile_ci(
                r"(?:ObjectInputStream|readObject|XMLDecoder|Yaml\.load|JSON\.parse).*(?:request\.|params\.)"
            ),
            "Unsafe deserialization (CWE-502)",
            "Validate and sanitize deserialized data, use safe serialization formats",
        ),
    ]
    return PatternRule(
        definition,
        checks,
        keywords=("objectinputstream", "readobject", "xmldecoder", "yaml", "json"),
        ignore_keyword_case=True,
    )


# ---------------------------------------------------------------------------
# A09 Security Logging and Monitoring Failures
# ---------------------------------------------------------------------------

def logging_failures() -> PatternRule:
    definition = RuleDefinition(
        rule_id="owasp-2021-a09-001",
        name="Security Logging Failures Detection",
        description="Detects unlogged authentication failures and log injection.",
        severity=Severity.MAJOR,
        owasp_category="A09",
        owasp_version=VERSION,
        cwe_ids=_cwes(117, 223, 532, 778),
        languages=LANGUAGES,
        tags=("owasp-2021", "security", "logging"),
    )
    checks = [
        PatternCheck(
            compile_ci(r"(?:login|authenticate|authorize).*(?:fail|error|exception)(?!.*log)"),
            "Missing security event logging (CWE-778)",
            "Log security events with appropriate detail",
        ),
        PatternCheck(
            compile_ci(r"log\.(?:info|warn|error).*(?:\+|concat).*(?:request\.|params\.)"),
            "Log injection vulnerability (CWE-117)",
            "Sanitize user input before logging",
        ),
    ]
    return PatternRule(
        definition,
        checks,
        keywords=("login", "authenticate", "authorize", "log."),
        ignore_keyword_case=True,
    )


# ---------------------------------------------------------------------------
# A10 Server-Side Request Forgery
# ---------------------------------------------------------------------------

def ssrf() -> PatternRule:
    definition = RuleDefinition(
        rule_id="owasp-2021-a10-001",
        name="SSRF Detection",
        description="Detects server-side HTTP requests to user-controlled URLs.",
        severity=Severity.CRITICAL,
        owasp_category="A10",
        owasp_version=VERSION,
        cwe_ids=_cwes(918),
        languages=LANGUAGES,
        tags=("owasp-2021", "security", "ssrf"),
    )
    checks = [
        PatternCheck(
            compile_ci(
                r"(?:HttpClient|RestTemplate|URL|URLConnection|HttpURLConnection)\."
                r"(?:get|post|connect|openConnection).*(?:request\.|params\.|input\.)"
            ),
            "SSRF vulnerability: User-controlled URL in server-side request (CWE-918)",
            "Validate URLs against whitelist, block internal IPs",
        ),
    ]
    return PatternRule(
        definition,
        checks,
        keywords=("HttpClient", "RestTemplate", "URL"),
    )


def create_rules() -> List[BaseRule]:
    """Return fresh instances of every 2021 rule."""
    return [
        broken_access_control(),
        cryptographic_failures(),
        injection(),
        insecure_design(),
        security_misconfiguration(),
        vulnerable_components(),
        authentication_failures(),
        data_integrity_failures(),
        logging_failures(),
        ssrf(),
    ]


__all__ = ["VERSION", "create_rules"]
