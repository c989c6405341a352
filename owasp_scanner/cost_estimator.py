"""
Cost Estimator - projects AI API spend before a scan runs.

Only rules that ask the AI provider for a review (``requires_ai``) cost
money; pattern rules are free.  Token counts are rough: four characters
per token for the code, plus a fixed prompt overhead and a fixed answer
size per AI rule, all scaled by a safety multiplier.

The estimate is a projection for display only and never gates a scan.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple, Union

from owasp_scanner.rules.registry import RuleRegistry

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4
PROMPT_OVERHEAD_TOKENS = 500
OUTPUT_TOKENS_PER_RULE = 300
DEFAULT_MULTIPLIER = 1.5
DEFAULT_MODEL = "claude-3.5-sonnet"

# USD per 1,000 tokens: (input, output)
PRICING: Dict[str, Tuple[float, float]] = {
    "openai-gpt-4o": (0.0025, 0.01),
    "openai-gpt-3.5-turbo": (0.0005, 0.0015),
    "claude-3.5-sonnet": (0.003, 0.015),
    "claude-3-opus": (0.015, 0.075),
    "claude-3-haiku": (0.00025, 0.00125),
}
DEFAULT_PRICING: Tuple[float, float] = (0.003, 0.015)


@dataclass(frozen=True)
class CostEstimate:
    input_tokens: int = 0
    output_tokens: int = 0
    input_cost: float = 0.0
    output_cost: float = 0.0
    file_path: Optional[str] = None

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    @property
    def total_cost(self) -> float:
        return self.input_cost + self.output_cost


@dataclass
class BatchCostEstimate:
    file_estimates: List[CostEstimate] = field(default_factory=list)
    model: str = DEFAULT_MODEL

    @property
    def file_count(self) -> int:
        return len(self.file_estimates)

    @property
    def total_input_tokens(self) -> int:
        return sum(e.input_tokens for e in self.file_estimates)

    @property
    def total_output_tokens(self) -> int:
        return sum(e.output_tokens for e in self.file_estimates)

    @property
    def total_cost(self) -> float:
        return sum(e.total_cost for e in self.file_estimates)

    @property
    def average_cost_per_file(self) -> float:
        return self.total_cost / self.file_count if self.file_count else 0.0


class CostEstimator:
    """Estimate AI spend for files under one model's pricing.

    Args:
        registry: Rule registry; enabled ``requires_ai`` rules drive the estimate.
        model: Key into ``PRICING``.  Unknown models use ``DEFAULT_PRICING``.
        multiplier: Safety factor applied to both token counts.
    """

    def __init__(self, registry: RuleRegistry, model: str = DEFAULT_MODEL, multiplier: float = DEFAULT_MULTIPLIER):
        self.registry = registry
        self.model = model
        self.multiplier = multiplier
        if model in PRICING:
            self.input_price, self.output_price = PRICING[model]
        else:
            logger.warning("No pricing for model '%s'; using default tier %s", model, DEFAULT_PRICING)
            self.input_price, self.output_price = DEFAULT_PRICING

    def ai_rule_count(self, ruleset_version: str) -> int:
        return sum(
            1
            for rule in self.registry.enabled_rules()
            if rule.owasp_version == ruleset_version and rule.requires_ai
        )

    def estimate_code_cost(self, code: str, ruleset_version: str, file_path: Optional[str] = None) -> CostEstimate:
        ai_rules = self.ai_rule_count(ruleset_version)
        code_tokens = max(1, len(code) // CHARS_PER_TOKEN)
        input_tokens = int((code_tokens + PROMPT_OVERHEAD_TOKENS * ai_rules) * self.multiplier)
        output_tokens = int(OUTPUT_TOKENS_PER_RULE * ai_rules * self.multiplier)
        return CostEstimate(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            input_cost=input_tokens / 1000 * self.input_price,
            output_cost=output_tokens / 1000 * self.output_price,
            file_path=file_path,
        )

    def estimate_file_cost(self, path: Union[str, Path], ruleset_version: str) -> CostEstimate:
        try:
            code = Path(path).read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.warning("Cannot estimate cost for %s: %s", path, e)
            return CostEstimate(file_path=str(path))
        return self.estimate_code_cost(code, ruleset_version, file_path=str(path))

    def estimate_batch_cost(self, paths: Iterable[Union[str, Path]], ruleset_version: str) -> BatchCostEstimate:
        batch = BatchCostEstimate(
            file_estimates=[self.estimate_file_cost(p, ruleset_version) for p in paths],
            model=self.model,
        )
        logger.info(
            "Estimated %d files: %d input / %d output tokens, $%.4f",
            batch.file_count,
            batch.total_input_tokens,
            batch.total_output_tokens,
            batch.total_cost,
        )
        return batch

    def generate_summary(self, batch: BatchCostEstimate) -> str:
        lines = [
            "=== AI API Cost Estimate ===",
            f"Model: {batch.model}",
            f"Files: {batch.file_count}",
            f"Input tokens: {batch.total_input_tokens:,}",
            f"Output tokens: {batch.total_output_tokens:,}",
            f"Total cost: ${batch.total_cost:.4f}",
            f"Average cost per file: ${batch.average_cost_per_file:.4f}",
            f"Overhead multiplier: {self.multiplier}x",
        ]
        return "\n".join(lines)


__all__ = [
    "PRICING",
    "DEFAULT_PRICING",
    "CostEstimate",
    "BatchCostEstimate",
    "CostEstimator",
]
