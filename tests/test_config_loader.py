"""
Tests for config_loader.py: layered configuration and validation.

Layers (last wins): defaults < profile < .owasp-scanner.yml < env < CLI.
"""

from __future__ import annotations

import argparse
from unittest.mock import patch

import pytest

from owasp_scanner.config_loader import (
    build_unified_config,
    deep_merge,
    extract_cli_overrides,
    flatten_profile,
    get_default_config,
    list_available_profiles,
    load_env_overrides,
    load_profile,
    validate_config,
)


@pytest.fixture(autouse=True)
def isolated(tmp_path, monkeypatch):
    """Run every test from an empty directory with no OWASP_* variables set."""
    monkeypatch.chdir(tmp_path)
    with patch.dict("os.environ", {"HOME": str(tmp_path)}, clear=True):
        yield


def _cli(**kwargs) -> argparse.Namespace:
    return argparse.Namespace(**kwargs)


# ============================================================================
# Defaults and profiles
# ============================================================================


class TestDefaults:
    def test_default_values(self):
        config = get_default_config()
        assert config["ai_provider"] == ""
        assert config["owasp_version"] == "2021"
        assert config["execution_mode"] == "sequential"
        assert config["cache_enabled"] is True
        assert config["cache_ttl_seconds"] == 3600
        assert config["cache_max_size"] == 1000
        assert config["max_retries"] == 3
        assert config["cost_multiplier"] == 1.5
        assert config["max_parallel_files"] >= 1
        assert config["fallback_model"] == ""
        assert config["rate_limit_tokens_per_minute"] == 30000
        assert config["rate_limit_buffer_ratio"] == 0.9

    def test_defaults_are_valid(self):
        assert validate_config(get_default_config()) == []

    def test_build_without_inputs_equals_defaults(self):
        assert build_unified_config() == get_default_config()


class TestProfiles:
    def test_builtin_profiles_listed(self):
        assert {"default", "fast", "deep"} <= set(list_available_profiles())

    def test_fast_profile(self):
        flat = load_profile("fast")
        assert flat["max_parallel_files"] == 16
        assert flat["file_timeout_seconds"] == 15
        assert flat["incremental_enabled"] is True
        assert flat["cache_ttl_seconds"] == 7200

    def test_deep_profile_extends_default(self):
        flat = load_profile("deep")
        assert flat["name"] == "deep"
        assert flat["ai_provider"] == "claude-cli"
        assert flat["fallback_provider"] == "anthropic"
        assert flat["max_tokens"] == 4000
        assert flat["execution_mode"] == "parallel"
        # inherited from default
        assert flat["temperature"] == 0.3
        assert flat["cache_max_size"] == 1000
        assert flat["cost_model"] == "claude-3.5-sonnet"

    def test_missing_profile_raises(self):
        with pytest.raises(FileNotFoundError):
            load_profile("nonexistent")

    def test_missing_profile_skipped_in_build(self):
        assert build_unified_config(profile="nonexistent") == get_default_config()

    def test_project_local_profile_wins(self, tmp_path):
        local = tmp_path / ".owasp-scanner" / "profiles"
        local.mkdir(parents=True)
        (local / "fast.yml").write_text("limits:\n  max_parallel_files: 2\n")
        assert load_profile("fast")["max_parallel_files"] == 2

    def test_circular_extends(self, tmp_path):
        local = tmp_path / ".owasp-scanner" / "profiles"
        local.mkdir(parents=True)
        (local / "loop-a.yml").write_text("_extends: loop-b\n")
        (local / "loop-b.yml").write_text("_extends: loop-a\n")
        with pytest.raises(ValueError, match="Circular"):
            load_profile("loop-a")

    def test_profile_from_env(self):
        with patch.dict("os.environ", {"OWASP_PROFILE": "fast"}):
            assert build_unified_config()["max_parallel_files"] == 16

    def test_flatten_profile(self):
        flat = flatten_profile(
            {
                "name": "x",
                "ai": {"provider": "openai", "model": "gpt-4o", "api_key": None},
                "scan": {"owasp_version": "2017"},
                "cache": {"enabled": False},
                "cost": {"multiplier": 2.0},
            }
        )
        assert flat == {
            "name": "x",
            "ai_provider": "openai",
            "model": "gpt-4o",
            "owasp_version": "2017",
            "cache_enabled": False,
            "cost_multiplier": 2.0,
        }


# ============================================================================
# Overrides
# ============================================================================


class TestEnvOverrides:
    def test_typed_values(self):
        env = {
            "OWASP_AI_PROVIDER": "openai",
            "OWASP_MAX_RETRIES": "5",
            "OWASP_TEMPERATURE": "0.7",
            "OWASP_CACHE_ENABLED": "false",
            "OWASP_INCREMENTAL": "TRUE",
        }
        with patch.dict("os.environ", env):
            overrides = load_env_overrides()
        assert overrides == {
            "ai_provider": "openai",
            "max_retries": 5,
            "temperature": 0.7,
            "cache_enabled": False,
            "incremental_enabled": True,
        }

    def test_fallback_and_rate_limit_variables(self):
        env = {
            "OWASP_FALLBACK_PROVIDER": "gemini-cli",
            "OWASP_FALLBACK_MODEL": "gemini-1.5-pro",
            "OWASP_RATE_LIMIT_TPM": "0",
        }
        with patch.dict("os.environ", env):
            overrides = load_env_overrides()
        assert overrides == {
            "fallback_provider": "gemini-cli",
            "fallback_model": "gemini-1.5-pro",
            "rate_limit_tokens_per_minute": 0,
        }

    def test_bad_value_is_skipped(self, caplog):
        with patch.dict("os.environ", {"OWASP_MAX_TOKENS": "lots"}):
            assert load_env_overrides() == {}
        assert "OWASP_MAX_TOKENS" in caplog.text

    def test_vendor_key_resolution(self):
        with patch.dict("os.environ", {"OWASP_AI_PROVIDER": "anthropic", "ANTHROPIC_API_KEY": "sk-ant"}):
            assert build_unified_config()["api_key"] == "sk-ant"

    def test_vendor_key_for_fallback(self):
        env = {"OWASP_AI_PROVIDER": "claude-cli", "OPENAI_API_KEY": "sk-openai"}
        with patch.dict("os.environ", env):
            config = build_unified_config(cli_args=_cli(fallback_provider="openai"))
        assert config["api_key"] == "sk-openai"

    def test_explicit_key_beats_vendor_key(self):
        env = {"OWASP_AI_PROVIDER": "openai", "OWASP_API_KEY": "explicit", "OPENAI_API_KEY": "vendor"}
        with patch.dict("os.environ", env):
            assert build_unified_config()["api_key"] == "explicit"


class TestCliOverrides:
    def test_only_set_attributes(self):
        args = _cli(provider=None, model="gpt-4o", max_parallel=8, timeout=None, no_cache=True, incremental="staged")
        assert extract_cli_overrides(args) == {
            "model": "gpt-4o",
            "max_parallel_files": 8,
            "cache_enabled": False,
            "incremental_enabled": True,
        }

    def test_fallback_model_kept_apart_from_model(self):
        args = _cli(model="sonnet", fallback_provider="openai", fallback_model="gpt-4o-mini")
        assert extract_cli_overrides(args) == {
            "model": "sonnet",
            "fallback_provider": "openai",
            "fallback_model": "gpt-4o-mini",
        }

    def test_none_args(self):
        assert extract_cli_overrides(None) == {}

    def test_deep_merge_ignores_none(self):
        assert deep_merge({"a": 1, "b": 2}, {"a": None, "b": 3}) == {"a": 1, "b": 3}


class TestLayerPrecedence:
    def test_repo_file_overrides_profile(self, tmp_path):
        (tmp_path / ".owasp-scanner.yml").write_text("scan:\n  owasp_version: '2017'\nlimits:\n  max_parallel_files: 3\n")
        config = build_unified_config(profile="fast", repo_path=str(tmp_path))
        assert config["owasp_version"] == "2017"
        assert config["max_parallel_files"] == 3
        assert config["cache_ttl_seconds"] == 7200

    def test_env_overrides_repo_file(self, tmp_path):
        (tmp_path / ".owasp-scanner.yml").write_text("scan:\n  owasp_version: '2017'\n")
        with patch.dict("os.environ", {"OWASP_VERSION": "2025"}):
            assert build_unified_config(repo_path=str(tmp_path))["owasp_version"] == "2025"

    def test_cli_overrides_env(self):
        with patch.dict("os.environ", {"OWASP_VERSION": "2025", "OWASP_MAX_PARALLEL_FILES": "2"}):
            config = build_unified_config(cli_args=_cli(owasp_version="2017", max_parallel=None))
        assert config["owasp_version"] == "2017"
        assert config["max_parallel_files"] == 2

    def test_profile_from_cli_args(self):
        config = build_unified_config(cli_args=_cli(profile="deep"))
        assert config["ai_provider"] == "claude-cli"
        assert "_profile" not in config

    def test_explicit_profile_beats_cli_profile(self):
        config = build_unified_config(profile="fast", cli_args=_cli(profile="deep"))
        assert config["ai_provider"] == ""
        assert config["max_parallel_files"] == 16


# ============================================================================
# Validation
# ============================================================================


class TestValidateConfig:
    def _config(self, **overrides):
        config = get_default_config()
        config.update(overrides)
        return config

    def test_invalid_provider(self):
        issues = validate_config(self._config(ai_provider="watson"))
        assert len(issues) == 1
        assert issues[0].startswith("ERROR: Invalid ai_provider 'watson'")

    def test_api_provider_needs_key(self):
        issues = validate_config(self._config(ai_provider="gemini-api"))
        assert issues == ["ERROR: ai_provider is 'gemini-api' but no API key is set (OWASP_API_KEY or GEMINI_API_KEY)."]
        assert validate_config(self._config(ai_provider="gemini-api", api_key="k")) == []

    def test_cli_provider_needs_no_key(self):
        assert validate_config(self._config(ai_provider="claude-cli")) == []

    def test_fallback_without_primary_warns(self):
        issues = validate_config(self._config(fallback_provider="claude-cli"))
        assert issues == ["WARNING: fallback_provider is set but ai_provider is empty; it will be ignored."]

    def test_invalid_fallback(self):
        assert validate_config(self._config(fallback_provider="nope"))[0].startswith("ERROR: Invalid fallback_provider")

    def test_versions(self):
        assert validate_config(self._config(owasp_version="2013"))[0].startswith("ERROR: Invalid owasp_version")
        assert validate_config(self._config(owasp_version="2025")) == [
            "WARNING: OWASP 2025 rules are a preview and may change."
        ]

    def test_execution_mode(self):
        assert validate_config(self._config(execution_mode="turbo"))[0].startswith("ERROR: Invalid execution_mode")

    @pytest.mark.parametrize(
        "key, value, message",
        [
            ("temperature", 3.0, "ERROR: temperature must be between 0.0 and 2.0."),
            ("max_tokens", 0, "ERROR: max_tokens must be > 0."),
            ("cache_max_size", -1, "ERROR: cache_max_size must be > 0."),
            ("file_timeout_seconds", 0, "ERROR: file_timeout_seconds must be > 0."),
            ("max_retries", -1, "ERROR: max_retries must be >= 0."),
            ("cost_multiplier", 0, "ERROR: cost_multiplier must be > 0."),
            (
                "rate_limit_tokens_per_minute",
                -1,
                "ERROR: rate_limit_tokens_per_minute must be >= 0 (0 disables throttling).",
            ),
            ("rate_limit_buffer_ratio", 1.2, "ERROR: rate_limit_buffer_ratio must be in (0, 1]."),
        ],
    )
    def test_numeric_bounds(self, key, value, message):
        assert validate_config(self._config(**{key: value})) == [message]

    def test_rule_config_path_must_exist(self, tmp_path):
        issues = validate_config(self._config(rule_config_path=str(tmp_path / "missing.yml")))
        assert issues[0].startswith("ERROR: rule_config_path")

        present = tmp_path / "rules.yml"
        present.write_text("rules: []\n")
        assert validate_config(self._config(rule_config_path=str(present))) == []
