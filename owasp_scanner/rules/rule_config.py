"""
Rule configuration documents.

A rule configuration is a YAML file that enables, disables and re-grades
rules of one OWASP edition.  Fields absent from a rule entry fall back to
the document's ``defaults`` block, and absent defaults fall back to
``enabled: true, severity: MAJOR, requires_ai: false``.

Example::

    owasp_version: "2025"
    status: preview
    defaults: {enabled: true, severity: MAJOR, requires_ai: false}
    rules:
      - rule_id: owasp-2025-a03-prompt-injection
        severity: CRITICAL
        requires_ai: true
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from owasp_scanner.exceptions import ConfigurationError
from owasp_scanner.models import Severity
from owasp_scanner.rules.registry import RuleRegistry

logger = logging.getLogger(__name__)

BUNDLED_2025_CONFIG = Path(__file__).parent / "owasp2025-rules.yml"

_BUILTIN_DEFAULTS = {"enabled": True, "severity": "MAJOR", "requires_ai": False}


@dataclass(frozen=True)
class RuleConfigEntry:
    rule_id: str
    category: str = ""
    name: str = ""
    description: str = ""
    enabled: bool = True
    severity: Severity = Severity.MAJOR
    requires_ai: bool = False
    cwe_ids: tuple = ()
    preview_features: tuple = ()


@dataclass
class RuleSetConfig:
    """Parsed rule configuration document."""

    owasp_version: str = ""
    status: str = "stable"
    last_updated: str = ""
    rules: List[RuleConfigEntry] = field(default_factory=list)

    @property
    def is_preview(self) -> bool:
        return self.status.lower() == "preview"

    @property
    def is_stable(self) -> bool:
        return self.status.lower() == "stable"

    def get(self, rule_id: str) -> Optional[RuleConfigEntry]:
        for entry in self.rules:
            if entry.rule_id == rule_id:
                return entry
        return None

    @property
    def enabled_count(self) -> int:
        return sum(1 for entry in self.rules if entry.enabled)


def _parse_entry(raw: Dict[str, Any], defaults: Dict[str, Any]) -> RuleConfigEntry:
    rule_id = raw.get("rule_id")
    if not rule_id:
        raise ConfigurationError("Rule entry is missing 'rule_id'")

    def pick(key: str) -> Any:
        return raw[key] if key in raw else defaults[key]

    return RuleConfigEntry(
        rule_id=str(rule_id),
        category=str(raw.get("category", "")),
        name=str(raw.get("name", "")),
        description=str(raw.get("description", "")),
        enabled=bool(pick("enabled")),
        severity=Severity.parse(pick("severity")),
        requires_ai=bool(pick("requires_ai")),
        cwe_ids=tuple(str(c) for c in raw.get("cwe_ids") or ()),
        preview_features=tuple(str(f) for f in raw.get("preview_features") or ()),
    )


def load_rule_config(path: Union[str, Path]) -> RuleSetConfig:
    """Load a rule configuration document.

    Raises
    ------
    ConfigurationError
        If the file is missing, is not valid YAML, or has the wrong shape.
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigurationError(f"Rule configuration not found: {path}")

    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Failed to parse rule configuration {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Rule configuration {path} must be a mapping")

    defaults = dict(_BUILTIN_DEFAULTS)
    raw_defaults = data.get("defaults") or {}
    if not isinstance(raw_defaults, dict):
        raise ConfigurationError(f"'defaults' in {path} must be a mapping")
    defaults.update(raw_defaults)

    raw_rules = data.get("rules") or []
    if not isinstance(raw_rules, list):
        raise ConfigurationError(f"'rules' in {path} must be a list")

    rules = []
    for raw in raw_rules:
        if not isinstance(raw, dict):
            raise ConfigurationError(f"Rule entries in {path} must be mappings")
        rules.append(_parse_entry(raw, defaults))

    config = RuleSetConfig(
        owasp_version=str(data.get("owasp_version", "")),
        status=str(data.get("status", "stable")),
        last_updated=str(data.get("last_updated", "")),
        rules=rules,
    )
    logger.debug("Loaded rule configuration %s (%d rules)", path, len(rules))
    return config


def apply_rule_config(registry: RuleRegistry, config: RuleSetConfig) -> int:
    """Apply *config* to the rules in *registry*.

    Returns the number of rule entries that matched a registered rule.
    """
    applied = 0
    for entry in config.rules:
        rule = registry.get(entry.rule_id)
        if rule is None:
            logger.warning("Rule configuration references unknown rule %s; skipping", entry.rule_id)
            continue
        rule.apply_overrides(severity=entry.severity, requires_ai=entry.requires_ai)
        if entry.enabled:
            registry.enable(entry.rule_id)
        else:
            registry.disable(entry.rule_id)
        applied += 1

    if config.is_preview:
        logger.info("Applied preview rule configuration for OWASP %s", config.owasp_version)
    return applied


__all__ = [
    "BUNDLED_2025_CONFIG",
    "RuleConfigEntry",
    "RuleSetConfig",
    "load_rule_config",
    "apply_rule_config",
]
