"""
Remote API backends: Anthropic, OpenAI and Google Gemini.

Each client builds the prompt from an ``AIRequest``, calls the vendor with
the configured model, temperature, token limit and timeout, and parses the
answer with ``response_parser.parse_response``.  Transient failures are
retried through tenacity with the error classifier deciding what is worth
retrying; whatever is still failing afterwards surfaces as
``AIProviderError``.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional, Tuple

import requests

from owasp_scanner.error_classifier import ERROR_TYPE_RATE_LIMIT, build_retrying, classify_provider_error
from owasp_scanner.exceptions import AIProviderError, ConfigurationError
from owasp_scanner.providers.base import SYSTEM_PROMPT, AIRequest, AIResponse, ProviderConfig, ProviderType
from owasp_scanner.providers.rate_limiter import TokenBucketRateLimiter
from owasp_scanner.providers.response_parser import parse_response

logger = logging.getLogger(__name__)

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"

_CONNECTION_TEST_REQUEST = AIRequest(code="class Ping {}", language="java", file_name="Ping.java")


class BaseApiProvider(ABC):
    """Shared throttling, retry, parsing and error wrapping for HTTP backends.

    Subclasses implement ``_complete(request)`` returning
    ``(text, input_tokens, output_tokens)``.  Every attempt first reserves
    ``max_tokens`` from the provider's rate limiter.
    """

    provider_type: ProviderType

    def __init__(self, config: ProviderConfig):
        if config.provider_type != self.provider_type:
            raise ConfigurationError(
                f"{type(self).__name__} cannot be built from a '{config.provider_type.value}' config"
            )
        config.validate()
        self.config = config
        self._client: Any = None
        self.rate_limiter: Optional[TokenBucketRateLimiter] = None
        if config.rate_limit_tokens_per_minute > 0:
            self.rate_limiter = TokenBucketRateLimiter(
                config.rate_limit_tokens_per_minute, config.rate_limit_buffer_ratio
            )

    @property
    def provider_name(self) -> str:
        return self.provider_type.value

    @property
    def model_name(self) -> str:
        return self.config.effective_model

    def analyze_code(self, request: AIRequest) -> AIResponse:
        retrying = build_retrying(
            self.provider_name, self.config.max_retries, self.config.retry_delay_seconds
        )
        try:
            for attempt in retrying:
                self._throttle()
                with attempt:
                    text, input_tokens, output_tokens = self._complete(request)
                    violations = parse_response(text, self.provider_name)
        except AIProviderError:
            raise
        except Exception as e:
            classified = classify_provider_error(e, self.provider_name)
            logger.error(
                "%s call failed: %s (retryable=%s): %s",
                self.provider_name,
                classified.error_type,
                classified.retryable,
                e,
            )
            raise AIProviderError(str(e), classified.error_type, self.provider_name) from e

        logger.debug(
            "%s returned %d violations (%d in / %d out tokens)",
            self.provider_name,
            len(violations),
            input_tokens,
            output_tokens,
        )
        return AIResponse(
            violations=violations,
            raw_response=text,
            provider=self.provider_name,
            model=self.model_name,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )

    def test_connection(self) -> bool:
        try:
            self._complete(_CONNECTION_TEST_REQUEST)
        except Exception as e:
            logger.warning("%s connection test failed: %s", self.provider_name, e)
            return False
        return True

    def close(self) -> None:
        client, self._client = self._client, None
        if client is not None and hasattr(client, "close"):
            client.close()

    def _throttle(self) -> None:
        if self.rate_limiter is None:
            return
        tokens = self.config.max_tokens
        if not self.rate_limiter.acquire(tokens, timeout=self.config.timeout_seconds):
            raise AIProviderError(
                f"rate limit: no capacity for {tokens} tokens within {self.config.timeout_seconds}s",
                ERROR_TYPE_RATE_LIMIT,
                self.provider_name,
            )

    @abstractmethod
    def _complete(self, request: AIRequest) -> Tuple[str, int, int]:
        """Send *request* and return ``(text, input_tokens, output_tokens)``."""


class AnthropicProvider(BaseApiProvider):
    provider_type = ProviderType.ANTHROPIC

    def _get_client(self):
        if self._client is None:
            from anthropic import Anthropic

            kwargs = {"api_key": self.config.api_key}
            if self.config.api_base_url:
                kwargs["base_url"] = self.config.api_base_url
            self._client = Anthropic(**kwargs)
            logger.info("Using Anthropic API (model %s)", self.model_name)
        return self._client

    def _complete(self, request: AIRequest) -> Tuple[str, int, int]:
        message = self._get_client().messages.create(
            model=self.model_name,
            max_tokens=self.config.max_tokens,
            temperature=self.config.temperature,
            system=SYSTEM_PROMPT,
            messages=[{"role": "user", "content": request.build_user_prompt()}],
            timeout=float(self.config.timeout_seconds),
        )
        text = message.content[0].text if message.content else ""
        return text, message.usage.input_tokens, message.usage.output_tokens


class OpenAIProvider(BaseApiProvider):
    provider_type = ProviderType.OPENAI

    def _get_client(self):
        if self._client is None:
            from openai import OpenAI

            kwargs = {"api_key": self.config.api_key}
            if self.config.api_base_url:
                kwargs["base_url"] = self.config.api_base_url
            self._client = OpenAI(**kwargs)
            logger.info("Using OpenAI API (model %s)", self.model_name)
        return self._client

    def _complete(self, request: AIRequest) -> Tuple[str, int, int]:
        response = self._get_client().chat.completions.create(
            model=self.model_name,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": request.build_user_prompt()},
            ],
            temperature=self.config.temperature,
            max_tokens=self.config.max_tokens,
            timeout=float(self.config.timeout_seconds),
        )
        text = response.choices[0].message.content or ""
        usage = response.usage
        if usage is None:
            return text, 0, 0
        return text, usage.prompt_tokens, usage.completion_tokens


class GeminiProvider(BaseApiProvider):
    """Google Gemini over its REST ``generateContent`` endpoint."""

    provider_type = ProviderType.GEMINI_API

    def _endpoint(self) -> str:
        base = (self.config.api_base_url or GEMINI_BASE_URL).rstrip("/")
        return f"{base}/models/{self.model_name}:generateContent"

    def _complete(self, request: AIRequest) -> Tuple[str, int, int]:
        payload = {
            "systemInstruction": {"parts": [{"text": SYSTEM_PROMPT}]},
            "contents": [{"role": "user", "parts": [{"text": request.build_user_prompt()}]}],
            "generationConfig": {
                "temperature": self.config.temperature,
                "maxOutputTokens": self.config.max_tokens,
            },
        }
        response = requests.post(
            self._endpoint(),
            params={"key": self.config.api_key},
            json=payload,
            timeout=self.config.timeout_seconds,
        )
        response.raise_for_status()
        data = response.json()
        input_tokens, output_tokens = _gemini_usage(data)
        return _gemini_text(data), input_tokens, output_tokens


def _gemini_text(data: dict) -> str:
    candidates = data.get("candidates") or []
    if not candidates:
        return ""
    parts = (candidates[0].get("content") or {}).get("parts") or []
    return "".join(part.get("text", "") for part in parts)


def _gemini_usage(data: dict) -> Tuple[int, int]:
    usage: Optional[dict] = data.get("usageMetadata")
    if not usage:
        return 0, 0
    return usage.get("promptTokenCount", 0), usage.get("candidatesTokenCount", 0)


__all__ = [
    "BaseApiProvider",
    "AnthropicProvider",
    "OpenAIProvider",
    "GeminiProvider",
    "GEMINI_BASE_URL",
]
