"""
Rule Registry - holds every known rule and its enabled state.

Rules are keyed by ``rule_id``.  Registering an id that already exists
replaces the previous rule.  All mutations are guarded by a lock so a
registry can be shared by the worker threads of the parallel analyzer.
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, Iterable, List, Optional, Set

from owasp_scanner.rules.base import BaseRule

logger = logging.getLogger(__name__)


class RuleRegistry:
    """Registry of rules scoped by language and OWASP edition."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._rules: Dict[str, BaseRule] = {}
        self._enabled: Set[str] = set()

    def register(self, rule: Optional[BaseRule]) -> None:
        """Register *rule* and enable it.

        Raises
        ------
        ValueError
            If *rule* is ``None`` or has an empty id.
        """
        if rule is None:
            raise ValueError("Rule cannot be None")
        if not getattr(rule, "rule_id", None):
            raise ValueError("Rule ID cannot be None or empty")

        with self._lock:
            if rule.rule_id in self._rules:
                logger.warning("Rule %s already registered; replacing", rule.rule_id)
            self._rules[rule.rule_id] = rule
            self._enabled.add(rule.rule_id)
        logger.debug("Registered rule %s", rule.rule_id)

    def register_all(self, rules: Iterable[BaseRule]) -> None:
        for rule in rules:
            self.register(rule)

    def unregister(self, rule_id: str) -> bool:
        with self._lock:
            removed = self._rules.pop(rule_id, None)
            self._enabled.discard(rule_id)
        if removed is not None:
            logger.debug("Unregistered rule %s", rule_id)
        return removed is not None

    def get(self, rule_id: str) -> Optional[BaseRule]:
        return self._rules.get(rule_id)

    def all_rules(self) -> List[BaseRule]:
        with self._lock:
            return list(self._rules.values())

    def enabled_rules(self) -> List[BaseRule]:
        with self._lock:
            return [rule for rule_id, rule in self._rules.items() if rule_id in self._enabled]

    def rules_by_category(self, category: str) -> List[BaseRule]:
        wanted = category.lower()
        return [r for r in self.all_rules() if r.owasp_category.lower() == wanted]

    def rules_by_language(self, language: str) -> List[BaseRule]:
        wanted = language.lower()
        return [r for r in self.all_rules() if wanted in (lang.lower() for lang in r.languages)]

    def rules_by_version(self, version: str) -> List[BaseRule]:
        return [r for r in self.all_rules() if r.owasp_version == version]

    def enable(self, rule_id: str) -> None:
        with self._lock:
            if rule_id not in self._rules:
                logger.warning("Cannot enable unknown rule %s", rule_id)
                return
            self._enabled.add(rule_id)

    def disable(self, rule_id: str) -> None:
        with self._lock:
            if rule_id not in self._rules:
                logger.warning("Cannot disable unknown rule %s", rule_id)
                return
            self._enabled.discard(rule_id)

    def is_registered(self, rule_id: str) -> bool:
        return rule_id in self._rules

    def is_enabled(self, rule_id: str) -> bool:
        return rule_id in self._enabled

    def __len__(self) -> int:
        return len(self._rules)

    def __contains__(self, rule_id: object) -> bool:
        return rule_id in self._rules

    @property
    def enabled_count(self) -> int:
        return len(self._enabled)

    def clear(self) -> None:
        with self._lock:
            self._rules.clear()
            self._enabled.clear()

    def statistics(self) -> Dict[str, object]:
        """Counts of registered rules overall, per edition and per language."""
        rules = self.all_rules()
        by_version: Dict[str, int] = {}
        by_language: Dict[str, int] = {}
        for rule in rules:
            by_version[rule.owasp_version] = by_version.get(rule.owasp_version, 0) + 1
            for lang in rule.languages:
                by_language[lang] = by_language.get(lang, 0) + 1
        return {
            "total": len(rules),
            "enabled": self.enabled_count,
            "disabled": len(rules) - self.enabled_count,
            "by_version": by_version,
            "by_language": by_language,
        }


def create_default_registry() -> RuleRegistry:
    """Return a registry holding every built-in rule set."""
    from owasp_scanner.rules import owasp2017, owasp2021, owasp2025

    registry = RuleRegistry()
    registry.register_all(owasp2017.create_rules())
    registry.register_all(owasp2021.create_rules())
    registry.register_all(owasp2025.create_rules())
    logger.info("Default rule registry created with %d rules", len(registry))
    return registry


__all__ = ["RuleRegistry", "create_default_registry"]
