"""
Error Classification + Retry Policy for AI backend calls.

Classifies errors raised by the vendor SDKs, HTTP calls and CLI tools into
types with different retry strategies:

- rate_limit: retryable, medium backoff
- transient: retryable, exponential backoff with jitter
- validation: retryable, short fixed delay (malformed or empty answers)
- billing: NOT retryable (quota will not recover within a scan)
- auth: NOT retryable
- config: NOT retryable
- permanent: NOT retryable (fail-safe default)

Usage:
    from owasp_scanner.error_classifier import build_retrying

    for attempt in build_retrying("anthropic", max_retries=3, base_delay=1.0):
        with attempt:
            call_api()
"""

from __future__ import annotations

import logging
import math
import random
import subprocess
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Tuple

from tenacity import Retrying, before_sleep_log, retry_if_exception, stop_after_attempt

from owasp_scanner.exceptions import AIProviderError, CliExecutionError, ConfigurationError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Error type constants
# ---------------------------------------------------------------------------

ERROR_TYPE_BILLING = "billing"
ERROR_TYPE_RATE_LIMIT = "rate_limit"
ERROR_TYPE_AUTH = "auth"
ERROR_TYPE_CONFIG = "config"
ERROR_TYPE_VALIDATION = "validation"
ERROR_TYPE_TRANSIENT = "transient"
ERROR_TYPE_PERMANENT = "permanent"

# ---------------------------------------------------------------------------
# Pattern registries
# ---------------------------------------------------------------------------

BILLING_PATTERNS: List[str] = [
    "credit balance",
    "insufficient credits",
    "insufficient_quota",
    "quota exceeded",
    "payment required",
    "billing",
]

RATE_LIMIT_PATTERNS: List[str] = [
    "rate limit",
    "ratelimit",
    "rate_limit_error",
    "429",
    "too many requests",
    "resource_exhausted",
    "requests per minute",
]

AUTH_PATTERNS: List[str] = [
    "invalid api key",
    "invalid_api_key",
    "api key not valid",
    "authentication",
    "unauthorized",
    "permission denied",
    "forbidden",
    "401",
    "403",
    "not logged in",
]

CONFIG_PATTERNS: List[str] = [
    "no such file",
    "command not found",
    "invalid model",
    "model not found",
    "missing required",
    "unsupported ai provider",
]

VALIDATION_PATTERNS: List[str] = [
    "empty response",
    "empty_response",
    "invalid response",
    "malformed",
    "invalid json",
    "content filter",
]

TRANSIENT_PATTERNS: List[str] = [
    "timeout",
    "timed out",
    "connection",
    "network",
    "overloaded",
    "service unavailable",
    "internal server error",
    "bad gateway",
    "500",
    "502",
    "503",
    "504",
]

# Classification priority: more specific patterns first
_PATTERN_REGISTRY: List[Tuple[str, List[str], bool]] = [
    (ERROR_TYPE_AUTH, AUTH_PATTERNS, False),
    (ERROR_TYPE_CONFIG, CONFIG_PATTERNS, False),
    (ERROR_TYPE_BILLING, BILLING_PATTERNS, False),
    (ERROR_TYPE_RATE_LIMIT, RATE_LIMIT_PATTERNS, True),
    (ERROR_TYPE_VALIDATION, VALIDATION_PATTERNS, True),
    (ERROR_TYPE_TRANSIENT, TRANSIENT_PATTERNS, True),
]

_RETRYABLE = {t: r for t, _, r in _PATTERN_REGISTRY}
_RETRYABLE[ERROR_TYPE_PERMANENT] = False


@dataclass
class ClassifiedError:
    """A classified backend error with retry metadata.

    Attributes:
        error_type: One of billing, auth, rate_limit, transient, validation,
                    config, permanent.
        retryable:  Whether this error type should be retried.
        original:   The original exception instance.
        context:    Extra details (exception class, HTTP status, exit code).
        provider:   The backend that raised the error.
    """

    error_type: str
    retryable: bool
    original: Exception
    context: Dict[str, Any] = field(default_factory=dict)
    provider: str = ""

    def __str__(self) -> str:
        retry_label = "retryable" if self.retryable else "non-retryable"
        return f"ClassifiedError(type={self.error_type}, {retry_label}, provider={self.provider!r})"


def _classified(error_type: str, error: Exception, context: Dict[str, Any], provider: str) -> ClassifiedError:
    return ClassifiedError(
        error_type=error_type,
        retryable=_RETRYABLE[error_type],
        original=error,
        context=context,
        provider=provider,
    )


def classify_provider_error(error: Exception, provider: str = "") -> ClassifiedError:
    """Classify an error raised while talking to an AI backend.

    Typed errors are classified first (configuration problems, CLI timeouts,
    provider errors that already carry a known type).  Everything else is
    matched on the lower-cased exception class name and message.  Unknown
    errors are ``permanent`` so that surprises are never retried.

    Parameters
    ----------
    error:
        The exception to classify.
    provider:
        Backend name, e.g. ``"anthropic"`` or ``"claude-cli"``.
    """
    context: Dict[str, Any] = {"error_class": type(error).__name__}

    status_code = getattr(error, "status_code", None)
    if status_code is not None:
        context["status_code"] = status_code

    if isinstance(error, ConfigurationError):
        return _classified(ERROR_TYPE_CONFIG, error, context, provider)

    if isinstance(error, AIProviderError) and error.error_type in _RETRYABLE:
        return _classified(error.error_type, error, context, provider)

    if isinstance(error, subprocess.TimeoutExpired):
        return _classified(ERROR_TYPE_TRANSIENT, error, context, provider)

    if isinstance(error, CliExecutionError):
        context["exit_code"] = error.exit_code
        combined = f"{error} {error.stderr}".lower()
    else:
        combined = f"{type(error).__name__} {error}".lower()

    for error_type, patterns, _ in _PATTERN_REGISTRY:
        if any(pattern in combined for pattern in patterns):
            return _classified(error_type, error, context, provider)

    if isinstance(error, (ConnectionError, TimeoutError)):
        return _classified(ERROR_TYPE_TRANSIENT, error, context, provider)

    return _classified(ERROR_TYPE_PERMANENT, error, context, provider)


def get_retry_delay(classified: ClassifiedError, attempt: int, base_delay: float = 1.0) -> float:
    """Seconds to wait before retry *attempt* (1-based).

    All delays scale with *base_delay* (``retry_delay_seconds`` in the
    provider config).
    """
    if classified.error_type == ERROR_TYPE_RATE_LIMIT:
        return min(base_delay * (10.0 + attempt * 5.0), 120.0)

    if classified.error_type == ERROR_TYPE_TRANSIENT:
        jitter = random.uniform(0, base_delay)  # noqa: S311
        return min(base_delay * math.pow(2, attempt - 1) + jitter, 30.0)

    if classified.error_type == ERROR_TYPE_VALIDATION:
        return base_delay

    return 0.0


def is_retryable_error(error: Exception, provider: str = "") -> bool:
    return classify_provider_error(error, provider).retryable


# ---------------------------------------------------------------------------
# Tenacity integration
# ---------------------------------------------------------------------------


def classified_retry_predicate(provider: str = "") -> Callable[[BaseException], bool]:
    """Predicate for tenacity's ``retry_if_exception``."""

    def _predicate(error: BaseException) -> bool:
        if not isinstance(error, Exception):
            return False
        return is_retryable_error(error, provider)

    return _predicate


def classified_wait(provider: str = "", base_delay: float = 1.0) -> Callable:
    """Wait function for tenacity's ``wait`` parameter."""

    def _wait(retry_state: Any) -> float:
        exc = retry_state.outcome.exception()
        if exc is None:
            return 0.0
        classified = classify_provider_error(exc, provider)
        return get_retry_delay(classified, retry_state.attempt_number, base_delay)

    return _wait


def build_retrying(provider: str, max_retries: int, base_delay: float = 1.0) -> Retrying:
    """Return a ``tenacity.Retrying`` controller for one backend call.

    ``max_retries`` counts retries, so the call is attempted at most
    ``max_retries + 1`` times.  The final exception is re-raised unchanged.
    """
    return Retrying(
        stop=stop_after_attempt(max(1, max_retries + 1)),
        wait=classified_wait(provider, base_delay),
        retry=retry_if_exception(classified_retry_predicate(provider)),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )


__all__ = [
    "ClassifiedError",
    "classify_provider_error",
    "get_retry_delay",
    "is_retryable_error",
    "classified_retry_predicate",
    "classified_wait",
    "build_retrying",
    "ERROR_TYPE_BILLING",
    "ERROR_TYPE_RATE_LIMIT",
    "ERROR_TYPE_AUTH",
    "ERROR_TYPE_CONFIG",
    "ERROR_TYPE_VALIDATION",
    "ERROR_TYPE_TRANSIENT",
    "ERROR_TYPE_PERMANENT",
]
