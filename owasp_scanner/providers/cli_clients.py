"""
Local CLI backends: Claude Code, Gemini CLI and GitHub Copilot CLI.

These providers shell out to a locally installed, already authenticated
tool instead of calling a vendor API.  ``CliExecutor`` owns process
handling: a hard timeout on every call (``subprocess.run`` kills the child
when it expires) and a quick ``--version`` probe used to decide whether the
tool is usable at all.
"""

from __future__ import annotations

import logging
import re
import subprocess
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from owasp_scanner.exceptions import AIProviderError, CliExecutionError, ConfigurationError
from owasp_scanner.providers.base import AIRequest, AIResponse, ProviderConfig, ProviderType
from owasp_scanner.providers.response_parser import parse_response

logger = logging.getLogger(__name__)

PROBE_TIMEOUT_SECONDS = 5

_ANSI_ESCAPE_RE = re.compile(r"\x1b\[[;\d]*[A-Za-z]")
_PROMPT_MARKER_RE = re.compile(r"^\s*[>?]\s?", re.MULTILINE)


class CliExecutor:
    """Run one CLI tool with a timeout."""

    def __init__(
        self,
        cli_path: str,
        timeout_seconds: float = 60,
        probe_timeout_seconds: float = PROBE_TIMEOUT_SECONDS,
    ):
        if not cli_path:
            raise ConfigurationError("CLI path cannot be empty")
        self.cli_path = cli_path
        self.timeout_seconds = timeout_seconds
        self.probe_timeout_seconds = probe_timeout_seconds

    def execute(self, args: Sequence[str], input_text: Optional[str] = None) -> str:
        """Run ``cli_path *args`` and return its stdout.

        Raises:
            CliExecutionError: If the tool is missing, times out or exits non-zero.
        """
        cmd = [self.cli_path, *args]
        logger.debug("Running %s (%d args)", self.cli_path, len(args))
        try:
            result = subprocess.run(
                cmd,
                input=input_text,
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
            )
        except FileNotFoundError as e:
            raise CliExecutionError(f"CLI not found: {self.cli_path}") from e
        except subprocess.TimeoutExpired as e:
            raise CliExecutionError(
                f"CLI timed out after {self.timeout_seconds}s: {self.cli_path}"
            ) from e
        except OSError as e:
            raise CliExecutionError(f"CLI could not be started: {self.cli_path}: {e}") from e

        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            raise CliExecutionError(
                f"{self.cli_path} exited with code {result.returncode}: {stderr[:200]}",
                exit_code=result.returncode,
                stderr=stderr,
            )
        return result.stdout or ""

    def _probe(self) -> Optional[subprocess.CompletedProcess]:
        try:
            return subprocess.run(
                [self.cli_path, "--version"],
                capture_output=True,
                text=True,
                timeout=self.probe_timeout_seconds,
            )
        except (subprocess.SubprocessError, OSError):
            return None

    def is_available(self) -> bool:
        """True if ``<cli> --version`` succeeds within the probe timeout."""
        result = self._probe()
        available = result is not None and result.returncode == 0
        if not available:
            logger.debug("CLI %s is not available", self.cli_path)
        return available

    def get_version(self) -> Optional[str]:
        result = self._probe()
        if result is None or result.returncode != 0:
            return None
        return (result.stdout or "").strip() or None


class BaseCliProvider(ABC):
    """Shared analyze flow for CLI backends: build command, execute, parse."""

    provider_type: ProviderType

    def __init__(self, config: ProviderConfig, executor: Optional[CliExecutor] = None):
        if config.provider_type != self.provider_type:
            raise ConfigurationError(
                f"{type(self).__name__} cannot be built from a '{config.provider_type.value}' config"
            )
        config.validate()
        self.config = config
        self.executor = executor or CliExecutor(config.effective_cli_path, config.timeout_seconds)

    @property
    def provider_name(self) -> str:
        return self.provider_type.value

    @property
    def model_name(self) -> str:
        return self.config.model or "default"

    @abstractmethod
    def build_command(self, prompt: str) -> List[str]:
        """Arguments passed to the CLI after its executable."""

    def clean_output(self, output: str) -> str:
        return output.strip()

    def analyze_code(self, request: AIRequest) -> AIResponse:
        args = self.build_command(request.build_prompt())
        try:
            output = self.executor.execute(args)
        except CliExecutionError as e:
            logger.error("%s failed: %s", self.provider_name, e)
            raise AIProviderError(str(e), "cli_execution", self.provider_name) from e

        text = self.clean_output(output)
        violations = parse_response(text, self.provider_name)
        return AIResponse(
            violations=violations,
            raw_response=text,
            provider=self.provider_name,
            model=self.model_name,
        )

    def test_connection(self) -> bool:
        return self.executor.is_available()

    def close(self) -> None:
        pass


class ClaudeCliProvider(BaseCliProvider):
    provider_type = ProviderType.CLAUDE_CLI

    def build_command(self, prompt: str) -> List[str]:
        args = ["-p", prompt]
        if self.config.model:
            args += ["--model", self.config.model]
        return args


class GeminiCliProvider(BaseCliProvider):
    provider_type = ProviderType.GEMINI_CLI

    def build_command(self, prompt: str) -> List[str]:
        return ["chat", prompt]


class CopilotCliProvider(BaseCliProvider):
    """``gh copilot explain``; output is decorated for a terminal."""

    provider_type = ProviderType.COPILOT_CLI

    def build_command(self, prompt: str) -> List[str]:
        return ["copilot", "explain", prompt]

    def clean_output(self, output: str) -> str:
        text = _ANSI_ESCAPE_RE.sub("", output)
        text = _PROMPT_MARKER_RE.sub("", text)
        return text.strip()


__all__ = [
    "PROBE_TIMEOUT_SECONDS",
    "CliExecutor",
    "BaseCliProvider",
    "ClaudeCliProvider",
    "GeminiCliProvider",
    "CopilotCliProvider",
]
