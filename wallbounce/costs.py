"""
Invocation cost calculation.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from .schemas import TokenUsage


@dataclass
class ModelPricing:
    """Pricing per million tokens."""

    input_per_million: Decimal
    output_per_million: Decimal

    def calculate_cost(self, input_tokens: int, output_tokens: int) -> Decimal:
        input_cost = (Decimal(input_tokens) / Decimal(1_000_000)) * self.input_per_million
        output_cost = (Decimal(output_tokens) / Decimal(1_000_000)) * self.output_per_million
        return input_cost + output_cost


MODEL_PRICING: dict[str, ModelPricing] = {
    "gpt-5-nano": ModelPricing(
        input_per_million=Decimal("0.05"),
        output_per_million=Decimal("0.40"),
    ),
    "gpt-5-mini": ModelPricing(
        input_per_million=Decimal("0.25"),
        output_per_million=Decimal("2.00"),
    ),
    "gpt-5": ModelPricing(
        input_per_million=Decimal("1.25"),
        output_per_million=Decimal("10.00"),
    ),
    "claude-opus-4": ModelPricing(
        input_per_million=Decimal("15.00"),
        output_per_million=Decimal("75.00"),
    ),
    "claude-haiku-3.5": ModelPricing(
        input_per_million=Decimal("0.80"),
        output_per_million=Decimal("4.00"),
    ),
    "claude-sonnet-4": ModelPricing(
        input_per_million=Decimal("3.00"),
        output_per_million=Decimal("15.00"),
    ),
    "claude-4": ModelPricing(
        input_per_million=Decimal("3.00"),
        output_per_million=Decimal("15.00"),
    ),
    "gemini-2.5-flash": ModelPricing(
        input_per_million=Decimal("0.30"),
        output_per_million=Decimal("2.50"),
    ),
    "gemini-2.5-pro": ModelPricing(
        input_per_million=Decimal("1.25"),
        output_per_million=Decimal("10.00"),
    ),
}

FALLBACK_PRICING = ModelPricing(
    input_per_million=Decimal("3.00"),
    output_per_million=Decimal("15.00"),
)


def get_pricing(model: str) -> ModelPricing:
    """Look up pricing by model name, most specific key first."""
    model_lower = model.lower()
    for key, pricing in MODEL_PRICING.items():
        if key in model_lower:
            return pricing
    return FALLBACK_PRICING


def cost_for(model: str, usage: TokenUsage) -> Decimal:
    return get_pricing(model).calculate_cost(usage.prompt_tokens, usage.completion_tokens)
