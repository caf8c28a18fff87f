"""
Token pricing for the remote models.

Prices are USD per 1M tokens. Costs are rounded up to 1e-8 USD: single calls
cost fractions of a cent, so cent rounding would erase them.
"""
from dataclasses import dataclass
from decimal import ROUND_UP, Decimal
from typing import Dict, Optional

from wizard_ai.core.logging import get_logger

logger = get_logger(__name__)

COST_QUANTUM = Decimal("0.00000001")
CHARS_PER_TOKEN = 4


@dataclass(frozen=True)
class ModelPricing:
    """Per-token pricing for a specific model."""
    input_cost_per_1m: Decimal  # Cost per 1M prompt tokens
    output_cost_per_1m: Decimal  # Cost per 1M completion tokens


@dataclass(frozen=True)
class PricingTable:
    """Fixed pricing table with a default for unknown models."""
    prices: Dict[str, ModelPricing]
    default_model: str

    def get_pricing(self, model: str) -> ModelPricing:
        pricing = self.prices.get(model)
        if pricing is None:
            logger.warning(
                "pricing_unknown_model",
                model=model,
                default_model=self.default_model,
            )
            pricing = self.prices[self.default_model]
        return pricing


PRICING_TABLE = PricingTable(
    prices={
        "gemini-2.5-flash": ModelPricing(
            input_cost_per_1m=Decimal("0.075"),
            output_cost_per_1m=Decimal("0.30"),
        ),
        "gemini-1.5-flash": ModelPricing(
            input_cost_per_1m=Decimal("0.075"),
            output_cost_per_1m=Decimal("0.30"),
        ),
        "gemini-2.5-pro": ModelPricing(
            input_cost_per_1m=Decimal("1.25"),
            output_cost_per_1m=Decimal("5.00"),
        ),
        "gemini-1.5-pro": ModelPricing(
            input_cost_per_1m=Decimal("1.25"),
            output_cost_per_1m=Decimal("5.00"),
        ),
    },
    default_model="gemini-2.5-flash",
)


def estimate_tokens(text: str) -> int:
    """Rough token count (4 characters per token, rounded up)."""
    if not text:
        return 0
    return -(-len(text) // CHARS_PER_TOKEN)


def calculate_cost(
    model: str,
    input_tokens: int,
    output_tokens: int,
    table: Optional[PricingTable] = None,
) -> float:
    """
    Calculate the USD cost of one remote call.

    Args:
        model: Model identifier
        input_tokens: Prompt tokens
        output_tokens: Completion tokens
        table: Pricing table (defaults to PRICING_TABLE)

    Returns:
        Cost rounded UP to COST_QUANTUM
    """
    pricing = (table or PRICING_TABLE).get_pricing(model)
    million = Decimal("1000000")
    input_cost = Decimal(max(input_tokens, 0)) / million * pricing.input_cost_per_1m
    output_cost = Decimal(max(output_tokens, 0)) / million * pricing.output_cost_per_1m
    total = (input_cost + output_cost).quantize(COST_QUANTUM, rounding=ROUND_UP)
    return float(total)

