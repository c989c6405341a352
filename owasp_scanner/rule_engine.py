"""
Rule Engine - runs the enabled rules of one OWASP edition against a file.

For each file the engine:

1. selects the enabled rules whose ``matches(context)`` is true,
2. executes each one in isolation (a failing rule yields a failed
   ``RuleResult`` and the rest continue),
3. for rules flagged ``requires_ai``, asks the AI provider (when one is
   supplied) for a semantic review and merges its findings into that
   rule's result.  Provider errors are logged and the pattern findings are
   kept.
"""

from __future__ import annotations

import concurrent.futures
import logging
import os
import time
from dataclasses import replace
from enum import Enum
from typing import List, Optional

from owasp_scanner.exceptions import AIProviderError
from owasp_scanner.models import AnalysisResult, RuleResult
from owasp_scanner.providers.base import AIProvider, AIRequest
from owasp_scanner.rules.base import DEFAULT_OWASP_VERSION, BaseRule, RuleContext
from owasp_scanner.rules.registry import RuleRegistry

logger = logging.getLogger(__name__)


class ExecutionMode(str, Enum):
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"

    @classmethod
    def from_value(cls, value: str) -> "ExecutionMode":
        try:
            return cls((value or cls.SEQUENTIAL.value).lower())
        except ValueError:
            logger.warning("Unknown execution mode '%s'; using sequential", value)
            return cls.SEQUENTIAL


class RuleEngine:
    """Executes registry rules against source code.

    Parameters
    ----------
    registry : RuleRegistry
        Source of rules and their enabled state.
    execution_mode : ExecutionMode
        ``SEQUENTIAL`` runs rules one after another; ``PARALLEL`` runs them on
        a thread pool of ``max_workers`` threads.
    max_workers : int, optional
        Thread count for parallel mode.  Defaults to the CPU count.
    """

    def __init__(
        self,
        registry: RuleRegistry,
        execution_mode: ExecutionMode = ExecutionMode.SEQUENTIAL,
        max_workers: Optional[int] = None,
    ):
        self.registry = registry
        self.execution_mode = ExecutionMode(execution_mode)
        self.max_workers = max_workers or os.cpu_count() or 1

    def candidate_rules(self, context: RuleContext) -> List[BaseRule]:
        return [rule for rule in self.registry.enabled_rules() if rule.matches(context)]

    def analyze(
        self,
        code: str,
        language: str,
        ruleset_version: str = DEFAULT_OWASP_VERSION,
        ai_provider: Optional[AIProvider] = None,
        file_name: Optional[str] = None,
        file_path: Optional[str] = None,
    ) -> AnalysisResult:
        """Analyze *code* and return one ``RuleResult`` per candidate rule."""
        start = time.perf_counter()
        context = RuleContext(
            code=code,
            language=language,
            file_name=file_name,
            file_path=file_path,
            owasp_version=ruleset_version,
            ai_provider=ai_provider,
        )
        rules = self.candidate_rules(context)
        logger.debug(
            "Running %d rules on %s (%s, OWASP %s)",
            len(rules),
            file_name or file_path or "<code>",
            language,
            ruleset_version,
        )

        if self.execution_mode is ExecutionMode.PARALLEL and len(rules) > 1:
            rule_results = self._execute_parallel(rules, context)
        else:
            rule_results = [self._execute_rule(rule, context) for rule in rules]

        elapsed_ms = (time.perf_counter() - start) * 1000
        return AnalysisResult(
            rule_results=rule_results,
            execution_time_ms=elapsed_ms,
            file_path=file_path,
            language=language,
            ruleset_version=ruleset_version,
        )

    def _execute_parallel(self, rules: List[BaseRule], context: RuleContext) -> List[RuleResult]:
        workers = min(self.max_workers, len(rules))
        results: List[RuleResult] = []
        with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {executor.submit(self._execute_rule, rule, context): rule for rule in rules}
            for future in concurrent.futures.as_completed(futures):
                rule = futures[future]
                try:
                    results.append(future.result())
                except Exception as e:
                    logger.error("Rule %s crashed outside its own error handling: %s", rule.rule_id, e)
                    results.append(RuleResult.failure(rule.rule_id, f"Rule execution failed: {e}"))
        return results

    def _execute_rule(self, rule: BaseRule, context: RuleContext) -> RuleResult:
        result = rule.execute(context)
        if not result.success:
            logger.warning("Rule %s failed: %s", rule.rule_id, result.error_message)
            return result
        if rule.requires_ai and context.has_ai_provider:
            return self._merge_ai_findings(rule, context, result)
        return result

    def _merge_ai_findings(self, rule: BaseRule, context: RuleContext, result: RuleResult) -> RuleResult:
        request = AIRequest(
            code=context.code,
            language=context.language,
            file_name=context.file_name,
            rule_id=rule.rule_id,
            owasp_category=rule.owasp_category,
            owasp_version=context.owasp_version,
        )
        start = time.perf_counter()
        try:
            response = context.ai_provider.analyze_code(request)
        except AIProviderError as e:
            logger.warning("AI analysis for rule %s failed; keeping pattern results: %s", rule.rule_id, e)
            return result

        ai_violations = [
            v.with_rule(rule.rule_id, rule.owasp_category, rule.cwe_ids) for v in response.violations
        ]
        logger.debug("AI added %d findings to rule %s", len(ai_violations), rule.rule_id)
        return replace(
            result,
            violations=result.violations + ai_violations,
            execution_time_ms=result.execution_time_ms + (time.perf_counter() - start) * 1000,
        )


__all__ = ["ExecutionMode", "RuleEngine"]
