"""
AI Provider Contract - request/response types and the provider protocol.

Every backend (remote API or local CLI) implements ``AIProvider``.  The
rule engine only ever talks to this protocol; ``factory.create_provider``
picks the concrete class from a ``ProviderConfig``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from owasp_scanner.exceptions import ConfigurationError
from owasp_scanner.models import Violation

SYSTEM_PROMPT = """You are a security analysis expert specializing in OWASP Top 10 vulnerabilities.
Your task is to analyze code for security issues and provide actionable remediation advice.

Guidelines:
1. Identify security vulnerabilities based on OWASP Top 10 standards
2. Map each issue to the corresponding CWE (Common Weakness Enumeration) ID
3. Provide clear, step-by-step fix instructions
4. Be concise but comprehensive

Respond with JSON only:
{
  "issues": [
    {
      "owaspCategory": "A01:2021-Broken Access Control",
      "cweId": "CWE-284",
      "severity": "HIGH|MEDIUM|LOW",
      "description": "Brief description of the issue",
      "lineNumber": 42,
      "fixSuggestion": "Step-by-step instructions"
    }
  ]
}
If the code has no issues, answer exactly: No security vulnerabilities detected."""

USER_PROMPT_TEMPLATE = """Analyze the following {language} code for OWASP Top 10 {version} security vulnerabilities:

File: {file_name}
{focus}
Code:
```{language}
{code}
```

Please identify all security issues and provide detailed remediation advice."""


@dataclass(frozen=True)
class AIRequest:
    """One code-review request sent to an AI backend."""

    code: str
    language: str
    file_name: Optional[str] = None
    rule_id: Optional[str] = None
    owasp_category: Optional[str] = None
    owasp_version: str = "2021"

    def build_user_prompt(self) -> str:
        focus = ""
        if self.owasp_category:
            focus = f"Focus on OWASP {self.owasp_version} category {self.owasp_category}"
            if self.rule_id:
                focus += f" (rule {self.rule_id})"
            focus += ".\n"
        return USER_PROMPT_TEMPLATE.format(
            language=self.language,
            version=self.owasp_version,
            file_name=self.file_name or "unknown",
            focus=focus,
            code=self.code,
        )

    def build_prompt(self) -> str:
        """System instructions and user prompt as a single text block (CLI backends)."""
        return f"{SYSTEM_PROMPT}\n\n{self.build_user_prompt()}"


@dataclass
class AIResponse:
    violations: List[Violation] = field(default_factory=list)
    raw_response: str = ""
    provider: str = ""
    model: str = ""
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class ProviderType(str, Enum):
    """Supported AI backends; the value is the configuration string."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GEMINI_API = "gemini-api"
    CLAUDE_CLI = "claude-cli"
    GEMINI_CLI = "gemini-cli"
    COPILOT_CLI = "copilot-cli"

    @classmethod
    def from_value(cls, value: str) -> "ProviderType":
        normalized = (value or "").strip().lower()
        for member in cls:
            if member.value == normalized:
                return member
        supported = ", ".join(m.value for m in cls)
        raise ConfigurationError(f"Unsupported AI provider '{value}'. Supported: {supported}")

    @property
    def is_cli(self) -> bool:
        return self in (ProviderType.CLAUDE_CLI, ProviderType.GEMINI_CLI, ProviderType.COPILOT_CLI)

    @property
    def is_api(self) -> bool:
        return not self.is_cli


DEFAULT_MODELS = {
    ProviderType.OPENAI: "gpt-4o",
    ProviderType.ANTHROPIC: "claude-3-5-sonnet-20241022",
    ProviderType.GEMINI_API: "gemini-1.5-flash",
}

DEFAULT_CLI_PATHS = {
    ProviderType.CLAUDE_CLI: "claude",
    ProviderType.GEMINI_CLI: "gemini",
    ProviderType.COPILOT_CLI: "gh",
}

# OpenAI's default tier; 0 turns throttling off.
DEFAULT_RATE_LIMIT_TOKENS_PER_MINUTE = 30000


@dataclass(frozen=True)
class ProviderConfig:
    """Settings for one AI backend."""

    provider_type: ProviderType
    api_key: Optional[str] = None
    cli_path: Optional[str] = None
    model: Optional[str] = None
    temperature: float = 0.3
    max_tokens: int = 2000
    timeout_seconds: int = 60
    max_retries: int = 3
    retry_delay_seconds: float = 1.0
    api_base_url: Optional[str] = None
    rate_limit_tokens_per_minute: int = DEFAULT_RATE_LIMIT_TOKENS_PER_MINUTE
    rate_limit_buffer_ratio: float = 0.9

    @property
    def effective_model(self) -> str:
        return self.model or DEFAULT_MODELS.get(self.provider_type, "")

    @property
    def effective_cli_path(self) -> str:
        return self.cli_path or DEFAULT_CLI_PATHS.get(self.provider_type, "")

    def validate(self) -> None:
        """Raise ``ConfigurationError`` if the settings cannot work."""
        if not isinstance(self.provider_type, ProviderType):
            raise ConfigurationError(f"Unsupported AI provider '{self.provider_type}'")
        if not 0.0 <= self.temperature <= 2.0:
            raise ConfigurationError(
                f"temperature must be between 0.0 and 2.0, got {self.temperature}"
            )
        if self.max_tokens <= 0:
            raise ConfigurationError(f"max_tokens must be positive, got {self.max_tokens}")
        if self.timeout_seconds <= 0:
            raise ConfigurationError(f"timeout_seconds must be positive, got {self.timeout_seconds}")
        if self.max_retries < 0:
            raise ConfigurationError(f"max_retries cannot be negative, got {self.max_retries}")
        if self.rate_limit_tokens_per_minute < 0:
            raise ConfigurationError(
                f"rate_limit_tokens_per_minute cannot be negative, got {self.rate_limit_tokens_per_minute}"
            )
        if not 0.0 < self.rate_limit_buffer_ratio <= 1.0:
            raise ConfigurationError(
                f"rate_limit_buffer_ratio must be in (0, 1], got {self.rate_limit_buffer_ratio}"
            )
        if self.provider_type.is_api and not self.api_key:
            raise ConfigurationError(f"API key is required for provider '{self.provider_type.value}'")

    @classmethod
    def from_config(cls, config: Dict[str, Any], provider_key: str = "ai_provider") -> "ProviderConfig":
        """Build a provider config from the flat configuration dict.

        The fallback backend does not inherit the primary's ``model`` or
        ``cli_path``; it reads ``fallback_model`` and ``fallback_cli_path``
        and otherwise uses the backend defaults.

        Args:
            config: Output of ``config_loader.build_unified_config``.
            provider_key: Key holding the provider name (``fallback_provider``
                for the fallback backend).
        """
        provider_type = ProviderType.from_value(config.get(provider_key, ""))
        if provider_key == "fallback_provider":
            model = config.get("fallback_model")
            cli_path = config.get("fallback_cli_path")
        else:
            model = config.get("model")
            cli_path = config.get("cli_path")
        return cls(
            provider_type=provider_type,
            api_key=config.get("api_key") or None,
            cli_path=cli_path or None,
            model=model or None,
            temperature=float(config.get("temperature", 0.3)),
            max_tokens=int(config.get("max_tokens", 2000)),
            timeout_seconds=int(config.get("timeout_seconds", 60)),
            max_retries=int(config.get("max_retries", 3)),
            retry_delay_seconds=float(config.get("retry_delay_seconds", 1.0)),
            api_base_url=config.get("api_base_url") or None,
            rate_limit_tokens_per_minute=int(
                config.get("rate_limit_tokens_per_minute", DEFAULT_RATE_LIMIT_TOKENS_PER_MINUTE)
            ),
            rate_limit_buffer_ratio=float(config.get("rate_limit_buffer_ratio", 0.9)),
        )


@runtime_checkable
class AIProvider(Protocol):
    """Protocol every AI backend implements."""

    @property
    def provider_name(self) -> str:
        ...

    @property
    def model_name(self) -> str:
        ...

    def analyze_code(self, request: AIRequest) -> AIResponse:
        """Review ``request.code`` and return the violations found.

        Raises ``AIProviderError`` when the backend cannot produce an answer.
        """
        ...

    def test_connection(self) -> bool:
        ...

    def close(self) -> None:
        ...


__all__ = [
    "SYSTEM_PROMPT",
    "AIRequest",
    "AIResponse",
    "ProviderType",
    "ProviderConfig",
    "AIProvider",
    "DEFAULT_MODELS",
    "DEFAULT_CLI_PATHS",
    "DEFAULT_RATE_LIMIT_TOKENS_PER_MINUTE",
]
