"""
Provider factory - builds the AI backend selected by configuration.

``create_provider`` fails fast on configuration mistakes and returns
``None`` when a CLI tool is not installed or not responding, so a scan can
carry on with pattern rules only.  It never substitutes another backend on
its own; ``select_provider`` does that explicitly when a fallback config is
given, and says so in its result.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Type

from owasp_scanner.providers.api_clients import AnthropicProvider, GeminiProvider, OpenAIProvider
from owasp_scanner.providers.base import AIProvider, ProviderConfig, ProviderType
from owasp_scanner.providers.cli_clients import (
    BaseCliProvider,
    ClaudeCliProvider,
    CliExecutor,
    CopilotCliProvider,
    GeminiCliProvider,
)

logger = logging.getLogger(__name__)

STATUS_READY = "ready"
STATUS_FALLBACK = "fallback"
STATUS_UNAVAILABLE = "unavailable"

_API_PROVIDERS: Dict[ProviderType, type] = {
    ProviderType.ANTHROPIC: AnthropicProvider,
    ProviderType.OPENAI: OpenAIProvider,
    ProviderType.GEMINI_API: GeminiProvider,
}

_CLI_PROVIDERS: Dict[ProviderType, Type[BaseCliProvider]] = {
    ProviderType.CLAUDE_CLI: ClaudeCliProvider,
    ProviderType.GEMINI_CLI: GeminiCliProvider,
    ProviderType.COPILOT_CLI: CopilotCliProvider,
}


def create_provider(config: ProviderConfig) -> Optional[AIProvider]:
    """Build the provider described by *config*.

    Returns ``None`` when a CLI backend's tool does not answer its
    ``--version`` probe.

    Raises:
        ConfigurationError: If *config* is invalid.
    """
    config.validate()

    if config.provider_type.is_api:
        provider = _API_PROVIDERS[config.provider_type](config)
        logger.info("AI provider ready: %s (%s)", provider.provider_name, provider.model_name)
        return provider

    executor = CliExecutor(config.effective_cli_path, config.timeout_seconds)
    if not executor.is_available():
        logger.warning(
            "AI provider %s unavailable: '%s --version' did not succeed",
            config.provider_type.value,
            executor.cli_path,
        )
        return None

    provider = _CLI_PROVIDERS[config.provider_type](config, executor=executor)
    logger.info("AI provider ready: %s via %s", provider.provider_name, executor.cli_path)
    return provider


@dataclass
class ProviderSelection:
    """Outcome of choosing a backend, for display to the user."""

    provider: Optional[AIProvider]
    status: str
    message: str
    fallback_used: bool = False

    @property
    def is_available(self) -> bool:
        return self.provider is not None


def select_provider(
    primary: ProviderConfig, fallback: Optional[ProviderConfig] = None
) -> ProviderSelection:
    """Create *primary*, switching to *fallback* if the primary is unavailable.

    Configuration errors in either config propagate.
    """
    provider = create_provider(primary)
    if provider is not None:
        return ProviderSelection(provider, STATUS_READY, f"Using {provider.provider_name}")

    if fallback is not None:
        fallback_provider = create_provider(fallback)
        if fallback_provider is not None:
            logger.warning(
                "Primary AI provider %s unavailable; falling back to %s",
                primary.provider_type.value,
                fallback_provider.provider_name,
            )
            return ProviderSelection(
                fallback_provider,
                STATUS_FALLBACK,
                f"{primary.provider_type.value} unavailable, using {fallback_provider.provider_name}",
                fallback_used=True,
            )

    return ProviderSelection(
        None,
        STATUS_UNAVAILABLE,
        f"AI provider unavailable: {primary.provider_type.value}",
    )


__all__ = [
    "STATUS_READY",
    "STATUS_FALLBACK",
    "STATUS_UNAVAILABLE",
    "ProviderSelection",
    "create_provider",
    "select_provider",
]
