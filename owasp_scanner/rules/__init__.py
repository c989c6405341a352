"""
Detection rules for the OWASP scanner.

Key components:
- ``BaseRule`` -- two-phase rule contract (``matches`` then ``execute``)
- ``PatternRule`` / ``PatternCheck`` -- data-driven regex rules
- ``RuleRegistry`` -- thread-safe registry with enable/disable state
- ``create_default_registry`` -- registry holding the 2017, 2021 and 2025 sets
- ``load_rule_config`` / ``apply_rule_config`` -- YAML rule configuration
"""

from .base import (
    BaseRule,
    PatternCheck,
    PatternRule,
    RuleContext,
    RuleDefinition,
    has_authorization_nearby,
)
from .registry import RuleRegistry, create_default_registry
from .rule_config import (
    BUNDLED_2025_CONFIG,
    RuleConfigEntry,
    RuleSetConfig,
    apply_rule_config,
    load_rule_config,
)

__all__ = [
    # Contract
    "BaseRule",
    "PatternCheck",
    "PatternRule",
    "RuleContext",
    "RuleDefinition",
    "has_authorization_nearby",
    # Registry
    "RuleRegistry",
    "create_default_registry",
    # Configuration
    "BUNDLED_2025_CONFIG",
    "RuleConfigEntry",
    "RuleSetConfig",
    "apply_rule_config",
    "load_rule_config",
]
