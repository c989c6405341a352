"""
AI backends for the OWASP scanner.

Key components:
- ``AIProvider`` -- protocol every backend implements
- ``AIRequest`` / ``AIResponse`` -- request and parsed answer
- ``ProviderType`` / ``ProviderConfig`` -- backend selection and settings
- ``AnthropicProvider``, ``OpenAIProvider``, ``GeminiProvider`` -- remote APIs
- ``ClaudeCliProvider``, ``GeminiCliProvider``, ``CopilotCliProvider`` -- local CLIs
- ``create_provider`` / ``select_provider`` -- factory
- ``TokenBucketRateLimiter`` -- per-provider API throttling
"""

from .base import AIProvider, AIRequest, AIResponse, ProviderConfig, ProviderType
from .api_clients import AnthropicProvider, GeminiProvider, OpenAIProvider
from .cli_clients import ClaudeCliProvider, CliExecutor, CopilotCliProvider, GeminiCliProvider
from .factory import ProviderSelection, create_provider, select_provider
from .rate_limiter import TokenBucketRateLimiter
from .response_parser import parse_response

__all__ = [
    # Contract
    "AIProvider",
    "AIRequest",
    "AIResponse",
    "ProviderConfig",
    "ProviderType",
    # API backends
    "AnthropicProvider",
    "GeminiProvider",
    "OpenAIProvider",
    # CLI backends
    "ClaudeCliProvider",
    "CliExecutor",
    "CopilotCliProvider",
    "GeminiCliProvider",
    # Factory
    "ProviderSelection",
    "create_provider",
    "select_provider",
    # Throttling
    "TokenBucketRateLimiter",
    # Parsing
    "parse_response",
]
