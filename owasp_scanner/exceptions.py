"""
OWASP Scanner Exceptions Module

Custom exception classes shared by the rule engine, the AI providers and
the command-line driver.
"""

from typing import Optional

__all__ = [
    "OwaspScannerError",
    "ConfigurationError",
    "AIProviderError",
    "CliExecutionError",
    "RuleExecutionError",
]


class OwaspScannerError(Exception):
    """Base exception for all scanner errors"""
    pass


class ConfigurationError(OwaspScannerError):
    """Raised when configuration is missing, invalid or unsupported"""
    pass


class AIProviderError(OwaspScannerError):
    """Raised when an AI backend call fails after retries"""

    def __init__(self, message: str, error_type: str = "unknown", provider_name: str = ""):
        super().__init__(message)
        self.error_type = error_type
        self.provider_name = provider_name

    def __str__(self) -> str:
        base = super().__str__()
        if self.provider_name:
            return f"[{self.provider_name}:{self.error_type}] {base}"
        return base


class CliExecutionError(OwaspScannerError):
    """Raised when a local AI command-line tool fails or times out"""

    def __init__(self, message: str, exit_code: Optional[int] = None, stderr: str = ""):
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr


class RuleExecutionError(OwaspScannerError):
    """Raised inside a rule when its scan cannot complete"""
    pass
