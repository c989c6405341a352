"""
Configuration Loader for the OWASP scanner.

Implements a layered configuration system:
    hardcoded defaults < profile YAML < .owasp-scanner.yml < env vars < CLI args

Usage:
    from owasp_scanner.config_loader import build_unified_config
    config = build_unified_config(profile="deep", cli_args=args, repo_path=".")
"""

import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import yaml

logger = logging.getLogger(__name__)

PACKAGE_DIR = Path(__file__).resolve().parent
REPO_CONFIG_FILENAME = ".owasp-scanner.yml"

SUPPORTED_OWASP_VERSIONS = ("2017", "2021", "2025")

# ---------------------------------------------------------------------------
# Default configuration
# ---------------------------------------------------------------------------

def get_default_config() -> Dict[str, Any]:
    """Return every configuration key with its default value.

    This is the lowest-priority layer.  Every configurable key appears here
    so that downstream code never needs to guard against missing keys.
    """
    return {
        # -- AI provider --
        "ai_provider": "",              # empty: pattern rules only
        "api_key": "",
        "cli_path": "",
        "model": "",
        "temperature": 0.3,
        "max_tokens": 2000,
        "timeout_seconds": 60,
        "max_retries": 3,
        "retry_delay_seconds": 1.0,
        "fallback_provider": "",
        "fallback_model": "",           # empty: the fallback backend's default
        "fallback_cli_path": "",
        "rate_limit_tokens_per_minute": 30000,  # 0: no throttling
        "rate_limit_buffer_ratio": 0.9,

        # -- Execution --
        "max_parallel_files": os.cpu_count() or 1,
        "file_timeout_seconds": 60,
        "execution_mode": "sequential",

        # -- Cache --
        "cache_enabled": True,
        "cache_ttl_seconds": 3600,
        "cache_max_size": 1000,

        # -- Scan scope --
        "incremental_enabled": False,
        "owasp_version": "2021",
        "rule_config_path": "",

        # -- Cost estimation --
        "cost_model": "claude-3.5-sonnet",
        "cost_multiplier": 1.5,
    }

# ---------------------------------------------------------------------------
# Profile loading
# ---------------------------------------------------------------------------

def _profile_dirs() -> List[Path]:
    return [
        PACKAGE_DIR / "profiles",                              # built-in
        Path.home() / ".owasp-scanner" / "profiles",           # user
        Path(".owasp-scanner") / "profiles",                   # project-local
    ]


def _find_profile(profile_name: str) -> Path:
    """Locate ``{profile_name}.yml``; later directories in ``_profile_dirs`` win.

    Raises
    ------
    FileNotFoundError
        If no profile directory contains the file.
    """
    candidates = [d / f"{profile_name}.yml" for d in reversed(_profile_dirs())]
    found = next((c for c in candidates if c.is_file()), None)
    if found is None:
        raise FileNotFoundError(
            f"Profile '{profile_name}' not found in: {', '.join(str(c) for c in candidates)}"
        )
    return found


def _load_raw_profile(profile_name: str, seen: Tuple[str, ...] = ()) -> dict:
    """Read the nested YAML of *profile_name* with its ``_extends`` parent merged in.

    Raises ``ValueError`` when profiles extend each other in a cycle.
    """
    if profile_name in seen:
        chain = " -> ".join(seen + (profile_name,))
        raise ValueError(f"Circular profile inheritance detected: {chain}")

    path = _find_profile(profile_name)
    logger.info("Loading profile '%s' from %s", profile_name, path)
    raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}

    parent = raw.pop("_extends", None)
    if not parent:
        return raw
    return _merge_sections(_load_raw_profile(parent, seen + (profile_name,)), raw)


def _merge_sections(parent: dict, child: dict) -> dict:
    """Overlay *child* on *parent*; section mappings merge key by key."""
    merged = dict(parent)
    for key, value in child.items():
        inherited = merged.get(key)
        if isinstance(inherited, dict) and isinstance(value, dict):
            merged[key] = _merge_sections(inherited, value)
        else:
            merged[key] = value
    return merged

# ---------------------------------------------------------------------------
# Flatten nested YAML -> flat config dict
# ---------------------------------------------------------------------------

# section -> prefix added to each key
_SECTION_PREFIX_MAP = {
    "scan": "",
    "limits": "",
    "cache": "cache_",
    "cost": "cost_",
}


def flatten_profile(nested: dict) -> Dict[str, Any]:
    """Convert a nested profile YAML dict to a flat config dict.

    Mapping rules:
    - ``nested["ai"]["provider"]`` -> ``ai_provider``
    - ``nested["ai"][key]``        -> key (directly)
    - ``nested["scan"][key]``      -> key (directly)
    - ``nested["limits"][key]``    -> key (directly)
    - ``nested["cache"][key]``     -> ``cache_{key}``
    - ``nested["cost"][key]``      -> ``cost_{key}``
    - Top-level ``name`` and ``description`` pass through.

    Only non-None values are included.
    """
    flat: Dict[str, Any] = {}

    ai = nested.get("ai")
    if isinstance(ai, dict):
        for key, value in ai.items():
            if value is None:
                continue
            flat["ai_provider" if key == "provider" else key] = value

    for section, prefix in _SECTION_PREFIX_MAP.items():
        block = nested.get(section)
        if isinstance(block, dict):
            for key, value in block.items():
                if value is not None:
                    flat[f"{prefix}{key}"] = value

    for scalar_key in ("name", "description"):
        if nested.get(scalar_key) is not None:
            flat[scalar_key] = nested[scalar_key]

    return flat


def load_profile(profile_name: str) -> Dict[str, Any]:
    """Load a profile by name and return a flat config dict.

    Search order (first match wins):
      1. ``.owasp-scanner/profiles/{name}.yml``      (project-local)
      2. ``~/.owasp-scanner/profiles/{name}.yml``    (user)
      3. ``owasp_scanner/profiles/{name}.yml``       (built-in)

    The ``_extends`` key enables profile inheritance: the parent profile is
    loaded first and the child values are overlaid on top.
    """
    return flatten_profile(_load_raw_profile(profile_name))

# ---------------------------------------------------------------------------
# Environment variable overrides
# ---------------------------------------------------------------------------

def _env_bool(raw: str) -> bool:
    return raw.strip().lower() in ("1", "true", "yes", "on")


# env var -> (config key, parser)
_ENV_MAPPINGS: Dict[str, Tuple[str, Callable[[str], Any]]] = {
    "OWASP_AI_PROVIDER": ("ai_provider", str),
    "OWASP_API_KEY": ("api_key", str),
    "OWASP_CLI_PATH": ("cli_path", str),
    "OWASP_MODEL": ("model", str),
    "OWASP_TEMPERATURE": ("temperature", float),
    "OWASP_MAX_TOKENS": ("max_tokens", int),
    "OWASP_TIMEOUT_SECONDS": ("timeout_seconds", int),
    "OWASP_MAX_RETRIES": ("max_retries", int),
    "OWASP_FALLBACK_PROVIDER": ("fallback_provider", str),
    "OWASP_FALLBACK_MODEL": ("fallback_model", str),
    "OWASP_RATE_LIMIT_TPM": ("rate_limit_tokens_per_minute", int),
    "OWASP_MAX_PARALLEL_FILES": ("max_parallel_files", int),
    "OWASP_CACHE_ENABLED": ("cache_enabled", _env_bool),
    "OWASP_CACHE_TTL_SECONDS": ("cache_ttl_seconds", int),
    "OWASP_CACHE_MAX_SIZE": ("cache_max_size", int),
    "OWASP_INCREMENTAL": ("incremental_enabled", _env_bool),
    "OWASP_VERSION": ("owasp_version", str),
}

# Vendor key variables consulted when no explicit api_key is configured
_VENDOR_KEY_VARS: Dict[str, str] = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
    "gemini-api": "GEMINI_API_KEY",
}


def load_env_overrides() -> Dict[str, Any]:
    """Config values taken from the ``OWASP_*`` variables that are set.

    A value its parser rejects is logged and left out.
    """
    overrides: Dict[str, Any] = {}
    for env_name, (config_key, parse) in _ENV_MAPPINGS.items():
        raw = os.environ.get(env_name)
        if raw is None:
            continue
        try:
            overrides[config_key] = parse(raw)
        except ValueError:
            logger.warning("Ignoring %s=%r: expected %s", env_name, raw, getattr(parse, "__name__", "value"))
    return overrides


def _resolve_vendor_api_key(config: Dict[str, Any]) -> None:
    if config.get("api_key"):
        return
    for provider_key in ("ai_provider", "fallback_provider"):
        env_name = _VENDOR_KEY_VARS.get(str(config.get(provider_key, "")).lower())
        if env_name and os.environ.get(env_name):
            config["api_key"] = os.environ[env_name]
            logger.debug("Using %s for the API key", env_name)
            return

# ---------------------------------------------------------------------------
# CLI argument extraction
# ---------------------------------------------------------------------------

# Mapping: argparse attribute -> config key
_CLI_ATTR_MAP: Dict[str, str] = {
    "provider": "ai_provider",
    "model": "model",
    "cli_path": "cli_path",
    "owasp_version": "owasp_version",
    "max_parallel": "max_parallel_files",
    "timeout": "file_timeout_seconds",
    "rule_config": "rule_config_path",
    "execution_mode": "execution_mode",
    "fallback_provider": "fallback_provider",
    "fallback_model": "fallback_model",
    "profile": "_profile",  # handled separately in build_unified_config
}


def extract_cli_overrides(args: Any) -> Dict[str, Any]:
    """Extract explicitly-set CLI arguments into a flat config dict.

    Only attributes whose value is not ``None`` are included, so that
    argparse defaults do not shadow earlier layers.
    """
    if args is None:
        return {}

    overrides: Dict[str, Any] = {}
    for attr, config_key in _CLI_ATTR_MAP.items():
        value = getattr(args, attr, None)
        if value is not None:
            overrides[config_key] = value

    if getattr(args, "no_cache", False):
        overrides["cache_enabled"] = False
    if getattr(args, "incremental", None):
        overrides["incremental_enabled"] = True

    return overrides

# ---------------------------------------------------------------------------
# Merge helpers
# ---------------------------------------------------------------------------

def deep_merge(base: dict, override: dict) -> dict:
    """Merge *override* into *base*.  Only non-None override values win."""
    merged = dict(base)
    for key, value in override.items():
        if value is not None:
            merged[key] = value
    return merged


def _load_repo_config(repo_path: str) -> Dict[str, Any]:
    """Load ``.owasp-scanner.yml`` from *repo_path*; empty if absent."""
    yml_path = Path(repo_path) / REPO_CONFIG_FILENAME
    if not yml_path.is_file():
        return {}

    logger.info("Loading %s from %s", REPO_CONFIG_FILENAME, yml_path)
    with open(yml_path, "r", encoding="utf-8") as fh:
        raw = yaml.safe_load(fh) or {}
    return flatten_profile(raw)

# ---------------------------------------------------------------------------
# Main entry point
# ---------------------------------------------------------------------------

def build_unified_config(
    profile: Optional[str] = None,
    cli_args: Any = None,
    repo_path: str = ".",
) -> Dict[str, Any]:
    """Build a fully-merged configuration dict.

    Layer precedence (last wins):
        1. Hard-coded defaults          (``get_default_config()``)
        2. Profile YAML                 (``load_profile()``)
        3. ``.owasp-scanner.yml``       (repository overrides)
        4. Environment variables        (``load_env_overrides()``)
        5. CLI arguments                (``extract_cli_overrides()``)

    Parameters
    ----------
    profile:
        Explicit profile name.  If ``None``, the function checks
        ``cli_args.profile``, then the ``OWASP_PROFILE`` env var.
    cli_args:
        An ``argparse.Namespace`` (or ``None``).
    repo_path:
        Directory searched for ``.owasp-scanner.yml``.
    """
    config = get_default_config()

    profile_name = profile
    if profile_name is None and cli_args is not None:
        profile_name = getattr(cli_args, "profile", None)
    if profile_name is None:
        profile_name = os.environ.get("OWASP_PROFILE")

    if profile_name:
        try:
            config = deep_merge(config, load_profile(profile_name))
            logger.info("Applied profile '%s'", profile_name)
        except FileNotFoundError:
            logger.warning("Profile '%s' not found; skipping", profile_name)

    repo_config = _load_repo_config(repo_path)
    if repo_config:
        config = deep_merge(config, repo_config)
        logger.info("Applied %s overrides (%d keys)", REPO_CONFIG_FILENAME, len(repo_config))

    env_overrides = load_env_overrides()
    if env_overrides:
        config = deep_merge(config, env_overrides)
        logger.debug("Applied %d env-var overrides", len(env_overrides))

    cli_overrides = extract_cli_overrides(cli_args)
    cli_overrides.pop("_profile", None)
    if cli_overrides:
        config = deep_merge(config, cli_overrides)
        logger.debug("Applied %d CLI overrides", len(cli_overrides))

    _resolve_vendor_api_key(config)
    return config


def list_available_profiles() -> List[str]:
    """Return the names of all available profiles."""
    names: set = set()
    for directory in _profile_dirs():
        if directory.is_dir():
            for yml_file in directory.glob("*.yml"):
                names.add(yml_file.stem)
    return sorted(names)

# ---------------------------------------------------------------------------
# Configuration validation
# ---------------------------------------------------------------------------

_VALID_AI_PROVIDERS = {"", "openai", "anthropic", "gemini-api", "claude-cli", "gemini-cli", "copilot-cli"}
_API_PROVIDERS = {"openai", "anthropic", "gemini-api"}
_VALID_EXECUTION_MODES = {"sequential", "parallel"}

_POSITIVE_KEYS = (
    "max_tokens",
    "timeout_seconds",
    "max_parallel_files",
    "file_timeout_seconds",
    "cache_ttl_seconds",
    "cache_max_size",
)


def validate_config(config: Dict[str, Any]) -> List[str]:
    """Validate a configuration dict and return a list of warnings/errors.

    Returns
    -------
    list[str]
        Messages prefixed ``ERROR:`` or ``WARNING:``.  An empty list means
        the config is valid.
    """
    issues: List[str] = []

    provider = str(config.get("ai_provider", "") or "").lower()
    if provider not in _VALID_AI_PROVIDERS:
        issues.append(
            f"ERROR: Invalid ai_provider '{provider}'. "
            f"Must be one of: {', '.join(sorted(p for p in _VALID_AI_PROVIDERS if p))}"
        )
    elif provider in _API_PROVIDERS and not config.get("api_key"):
        issues.append(
            f"ERROR: ai_provider is '{provider}' but no API key is set "
            f"(OWASP_API_KEY or {_VENDOR_KEY_VARS[provider]})."
        )

    fallback = str(config.get("fallback_provider", "") or "").lower()
    if fallback not in _VALID_AI_PROVIDERS:
        issues.append(f"ERROR: Invalid fallback_provider '{fallback}'.")
    elif fallback and not provider:
        issues.append("WARNING: fallback_provider is set but ai_provider is empty; it will be ignored.")

    version = str(config.get("owasp_version", "2021"))
    if version not in SUPPORTED_OWASP_VERSIONS:
        issues.append(
            f"ERROR: Invalid owasp_version '{version}'. "
            f"Must be one of: {', '.join(SUPPORTED_OWASP_VERSIONS)}"
        )
    elif version == "2025":
        issues.append("WARNING: OWASP 2025 rules are a preview and may change.")

    mode = str(config.get("execution_mode", "sequential")).lower()
    if mode not in _VALID_EXECUTION_MODES:
        issues.append(
            f"ERROR: Invalid execution_mode '{mode}'. "
            f"Must be one of: {', '.join(sorted(_VALID_EXECUTION_MODES))}"
        )

    temperature = config.get("temperature", 0.3)
    if isinstance(temperature, (int, float)) and not 0.0 <= temperature <= 2.0:
        issues.append("ERROR: temperature must be between 0.0 and 2.0.")

    for key in _POSITIVE_KEYS:
        value = config.get(key)
        if isinstance(value, (int, float)) and value <= 0:
            issues.append(f"ERROR: {key} must be > 0.")

    max_retries = config.get("max_retries", 3)
    if isinstance(max_retries, int) and max_retries < 0:
        issues.append("ERROR: max_retries must be >= 0.")

    tpm = config.get("rate_limit_tokens_per_minute", 0)
    if isinstance(tpm, int) and tpm < 0:
        issues.append("ERROR: rate_limit_tokens_per_minute must be >= 0 (0 disables throttling).")

    ratio = config.get("rate_limit_buffer_ratio", 0.9)
    if isinstance(ratio, (int, float)) and not 0.0 < ratio <= 1.0:
        issues.append("ERROR: rate_limit_buffer_ratio must be in (0, 1].")

    multiplier = config.get("cost_multiplier", 1.5)
    if isinstance(multiplier, (int, float)) and multiplier <= 0:
        issues.append("ERROR: cost_multiplier must be > 0.")

    rule_config_path = config.get("rule_config_path")
    if rule_config_path and not Path(rule_config_path).is_file():
        issues.append(f"ERROR: rule_config_path '{rule_config_path}' does not exist.")

    return issues


__all__ = [
    "SUPPORTED_OWASP_VERSIONS",
    "get_default_config",
    "load_profile",
    "flatten_profile",
    "load_env_overrides",
    "extract_cli_overrides",
    "deep_merge",
    "build_unified_config",
    "list_available_profiles",
    "validate_config",
]
