from decimal import Decimal

from wallbounce.costs import FALLBACK_PRICING, ModelPricing, cost_for, get_pricing
from wallbounce.schemas import TokenUsage


def test_model_pricing_calculate_cost() -> None:
    pricing = ModelPricing(input_per_million=Decimal("2.00"), output_per_million=Decimal("4.00"))
    cost = pricing.calculate_cost(1000, 2000)
    assert cost == Decimal("0.010")


def test_most_specific_pricing_wins() -> None:
    assert get_pricing("gpt-5-mini").input_per_million == Decimal("0.25")
    assert get_pricing("gpt-5").input_per_million == Decimal("1.25")
    assert get_pricing("openrouter/claude-opus-4.1").output_per_million == Decimal("75.00")


def test_unknown_model_uses_fallback() -> None:
    assert get_pricing("mystery-model") is FALLBACK_PRICING


def test_cost_for_prices_prompt_and_completion_separately() -> None:
    usage = TokenUsage(prompt_tokens=1_000_000, completion_tokens=100_000)
    assert cost_for("gpt-5", usage) == Decimal("1.25") + Decimal("1.00")
