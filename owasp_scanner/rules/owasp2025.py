"""
OWASP Top 10 (2025, preview) rules.

The 2025 edition is still a release candidate, so the rule set is small:
an extended access-control rule covering API, GraphQL, cloud IAM and
service-to-service calls, and a prompt-injection rule for code that talks to
LLMs.  The prompt-injection rule is marked ``requires_ai``: its patterns run
on their own, and when an AI provider is configured the engine also sends the
file for a semantic review.
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

VERSION = "2025"
_USER_INPUT = r"(?:request\.|params\.|input\.|user\.)"


def broken_access_control() -> PatternRule:
    definition = RuleDefinition(
        rule_id="owasp-2025-a01-001",
        name="Broken Access Control Detection (PREVIEW)",
        description="Detects unauthenticated API and GraphQL endpoints, public cloud IAM grants, "
                    "unauthenticated service-to-service calls and path traversal.",
        severity=Severity.BLOCKER,
        owasp_category="A01",
        owasp_version=VERSION,
        cwe_ids=("CWE-22", "CWE-284", "CWE-639", "CWE-862", "CWE-863", "CWE-1270", "CWE-1390"),
        languages=("java",),
        tags=("owasp-2025", "security", "access-control", "preview"),
    )
    checks = [
        PatternCheck(
            compile_ci(
                r"(?:@GetMapping|@PostMapping|@PutMapping|@DeleteMapping|@RequestMapping|@Query|@Mutation)"
                r"(?!.*@PreAuthorize|.*@Secured|.*@RolesAllowed)"
            ),
            "API authorization bypass: endpoint has no access control annotation (CWE-862)",
            "Protect the endpoint with @PreAuthorize, @Secured or @RolesAllowed.",
            guard=has_authorization_nearby,
        ),
        PatternCheck(
            compile_ci(r"@(?:Query|Mutation|Subscription)\s*\([^)]*\)\s*(?!.*@PreAuthorize|.*@Authorize)"),
            "GraphQL authorization missing: resolver is reachable without an authorization check (CWE-862)",
            "Add field-level authorization to GraphQL resolvers (@PreAuthorize or a directive).",
            guard=has_authorization_nearby,
        ),
        PatternCheck(
            compile_ci(
                r"(?:\"Principal\"\s*:\s*\"\*\"|publicRead|public-read|AllUsers|allAuthenticatedUsers|Action.*\*)"
            ),
            "Cloud IAM misconfiguration: resource is granted to everyone (CWE-284)",
            "Apply least privilege. Grant access to named principals and specific actions only.",
        ),
        PatternCheck(
            compile_ci(r"(?:@FeignClient|RestTemplate|WebClient)(?!.*(?:Authorization|Bearer|OAuth))"),
            "Microservice call without authentication: no Authorization header or token propagation (CWE-306)",
            "Propagate service credentials (OAuth2 client credentials, mTLS) on internal calls.",
        ),
        PatternCheck(
            compile_ci(r"\.\./|\.\.\\|%2e%2e%2f|%2e%2e%5c|\.\.%2F|\.\.%5C"),
            "Path traversal: path contains '../' or an encoded traversal sequence (CWE-22)",
            "Normalize the path and verify it stays inside the allowed base directory.",
        ),
    ]
    return PatternRule(
        definition,
        checks,
        keywords=("@GetMapping", "@PostMapping", "@Query", "@Mutation", "@FeignClient",
                  "RestTemplate", "File", "Principal", "AllUsers", "../"),
    )


def prompt_injection() -> PatternRule:
    definition = RuleDefinition(
        rule_id="owasp-2025-a03-prompt-injection",
        name="Prompt Injection Detection (PREVIEW)",
        description="Detects LLM prompts built from user input, system prompt overrides, "
                    "over-privileged tools and training on user-controlled data.",
        severity=Severity.CRITICAL,
        owasp_category="A03",
        owasp_version=VERSION,
        cwe_ids=("CWE-1236", "CWE-20", "CWE-74", "CWE-77", "CWE-94"),
        languages=("java",),
        tags=("owasp-2025", "security", "injection", "llm", "preview"),
        requires_ai=True,
    )
    checks = [
        PatternCheck(
            compile_ci(r"(?:prompt|systemPrompt|userMessage|llmInput)\s*[+]\s*" + _USER_INPUT),
            "Direct Prompt Injection: user input concatenated into prompt",
            "Keep user input in a separate message role and validate it before it reaches the model.",
        ),
        PatternCheck(
            re.compile(r"(?:\"You are a|\"Act as|\"System:|\"Assistant:).*\+.*" + _USER_INPUT),
            "System prompt bypass: user input appended to system instructions",
            "Never append user input to system instructions. Use structured message roles.",
        ),
        PatternCheck(
            re.compile(r"@Tool|@Function.*(?:exec|execute|run|shell|cmd|bash|powershell)"),
            "Excessive Agency: LLM tool can execute commands",
            "Restrict tools to an allowlist of safe operations and require human approval for side effects.",
        ),
        PatternCheck(
            compile_ci(r"(?:train|fit|fine_?tune).*" + _USER_INPUT),
            "Training Data Poisoning: model trained on user-controlled data",
            "Validate and curate training data. Never train directly on unreviewed user input.",
        ),
    ]
    return PatternRule(
        definition,
        checks,
        keywords=("prompt", "llm", "openai", "claude", "gemini", "gpt", "chatgpt", "anthropic"),
        ignore_keyword_case=True,
    )


def create_rules() -> List[BaseRule]:
    """Return fresh instances of every 2025 preview rule."""
    return [broken_access_control(), prompt_injection()]


__all__ = ["VERSION", "create_rules"]
