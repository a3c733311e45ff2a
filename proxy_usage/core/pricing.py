"""
Pricing calculations and rate management.

Estimates request costs from token counts using a fixed per-model table.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict

from .token_counter import TokenUsage


@dataclass(frozen=True)
class ModelPricing:
    """Per-token pricing for a model family."""
    input_cost_per_1m: Decimal  # Cost per 1M input tokens
    output_cost_per_1m: Decimal  # Cost per 1M output tokens


@dataclass(frozen=True)
class PricingTable:
    """Pricing keyed by model name prefix."""
    prices: Dict[str, ModelPricing]

    def get_pricing(self, model: str) -> ModelPricing:
        """Get pricing for a model, matching the longest known prefix.

        Args:
            model: Model identifier as seen in the proxy log

        Returns:
            ModelPricing for the model

        Raises:
            ValueError: If no prefix in the table matches
        """
        name = model.lower()
        matches = [prefix for prefix in self.prices if name.startswith(prefix)]
        if not matches:
            raise ValueError(f"Unsupported model: {model}")
        return self.prices[max(matches, key=len)]


PRICING_TABLE = PricingTable({
    "claude-opus": ModelPricing(
        input_cost_per_1m=Decimal("5.00"),
        output_cost_per_1m=Decimal("25.00")
    ),
    "claude-sonnet": ModelPricing(
        input_cost_per_1m=Decimal("3.00"),
        output_cost_per_1m=Decimal("15.00")
    ),
    "claude-haiku": ModelPricing(
        input_cost_per_1m=Decimal("1.00"),
        output_cost_per_1m=Decimal("5.00")
    ),
    "gpt-5": ModelPricing(
        input_cost_per_1m=Decimal("1.25"),
        output_cost_per_1m=Decimal("10.00")
    ),
    "gpt-5.2": ModelPricing(
        input_cost_per_1m=Decimal("1.75"),
        output_cost_per_1m=Decimal("14.00")
    ),
    "gemini-3-pro": ModelPricing(
        input_cost_per_1m=Decimal("2.00"),
        output_cost_per_1m=Decimal("12.00")
    ),
    "gemini-3-flash": ModelPricing(
        input_cost_per_1m=Decimal("0.50"),
        output_cost_per_1m=Decimal("3.00")
    ),
    "gemini-2.5-pro": ModelPricing(
        input_cost_per_1m=Decimal("1.25"),
        output_cost_per_1m=Decimal("10.00")
    ),
    "gemini-2.5-flash": ModelPricing(
        input_cost_per_1m=Decimal("0.30"),
        output_cost_per_1m=Decimal("2.50")
    ),
    "minimax": ModelPricing(
        input_cost_per_1m=Decimal("0.30"),
        output_cost_per_1m=Decimal("1.20")
    ),
})

# Blended rate for models missing from the table (~$3/1M in, ~$15/1M out)
BLENDED_PRICING = ModelPricing(
    input_cost_per_1m=Decimal("3.00"),
    output_cost_per_1m=Decimal("15.00")
)


def calculate_cost(model: str, usage: TokenUsage) -> float:
    """Estimate the cost of token usage for a model.

    Args:
        model: Model identifier
        usage: Token usage data

    Returns:
        Estimated cost in USD, rounded to 6 decimal places. Models missing
        from the pricing table are charged the blended rate.
    """
    try:
        pricing = PRICING_TABLE.get_pricing(model)
    except ValueError:
        pricing = BLENDED_PRICING

    million = Decimal("1000000")
    input_cost = (Decimal(usage.input_tokens) / million) * pricing.input_cost_per_1m
    output_cost = (Decimal(usage.output_tokens) / million) * pricing.output_cost_per_1m

    total_cost = input_cost + output_cost
    return float(total_cost.quantize(Decimal("0.000001"), rounding=ROUND_HALF_UP))


def estimate_request_cost(model: str, tokens_in: int, tokens_out: int) -> float:
    """Convenience wrapper for callers holding raw token counts."""
    return calculate_cost(model, TokenUsage(input_tokens=tokens_in, output_tokens=tokens_out))
