"""
Pricing calculations and rate management.

Maps model identifiers to per-million-token rates and computes request cost.
An unknown model has an unknown cost (None), never a zero cost.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Mapping, Optional

from .token_counter import TokenUsage

TOKENS_PER_MILLION = Decimal("1000000")


@dataclass(frozen=True)
class ModelPrice:
    """Per-million-token pricing for a model."""
    input_per_million: Decimal
    output_per_million: Decimal


@dataclass(frozen=True)
class PricingTable:
    """Pricing table keyed by model-id fragments, in declaration order."""
    prices: Dict[str, ModelPrice]

    def get_price(self, model_id: str) -> Optional[ModelPrice]:
        """Get pricing for a model.

        An exact key match wins. Otherwise the first key (in declaration
        order) contained in the lowercased model id is used, so provider
        prefixes like "anthropic/" or suffixes like ":online" still match.

        Args:
            model_id: Model identifier as configured

        Returns:
            ModelPrice for the model, or None if the model is not priced
        """
        normalized = model_id.lower()
        if normalized in self.prices:
            return self.prices[normalized]

        for key, price in self.prices.items():
            if key in normalized:
                return price

        return None

    def with_overrides(self, overrides: Mapping[str, ModelPrice]) -> "PricingTable":
        """Return a new table with operator overrides merged over this one.

        Overridden keys keep their position; new keys are appended.
        """
        merged = dict(self.prices)
        for key, price in overrides.items():
            merged[key.lower()] = price
        return PricingTable(merged)

    def calculate_cost(self, model_id: str, input_tokens: int, output_tokens: int) -> Optional[float]:
        price = self.get_price(model_id)
        if price is None:
            return None

        input_cost = (Decimal(input_tokens) / TOKENS_PER_MILLION) * price.input_per_million
        output_cost = (Decimal(output_tokens) / TOKENS_PER_MILLION) * price.output_per_million

        return float(input_cost + output_cost)


# Built-in rates in USD; operators extend or replace them with a prices file.
PRICING_TABLE = PricingTable({
    # Anthropic
    "claude-haiku-4-5": ModelPrice(
        input_per_million=Decimal("1.0"),
        output_per_million=Decimal("5.0")
    ),
    "claude-sonnet-4-6": ModelPrice(
        input_per_million=Decimal("3.0"),
        output_per_million=Decimal("15.0")
    ),
    "claude-opus-4-6": ModelPrice(
        input_per_million=Decimal("5.0"),
        output_per_million=Decimal("25.0")
    ),
    # Google
    "gemini-3-flash-preview": ModelPrice(
        input_per_million=Decimal("0.5"),
        output_per_million=Decimal("3.0")
    ),
    # OpenRouter
    "minimax/minimax-m2.5": ModelPrice(
        input_per_million=Decimal("0.3"),
        output_per_million=Decimal("1.1")
    ),
})


def calculate_cost(
    model_id: str,
    input_tokens: int,
    output_tokens: int,
    table: PricingTable = PRICING_TABLE,
) -> Optional[float]:
    """Calculate the cost of a request.

    Args:
        model_id: Model identifier
        input_tokens: Prompt tokens consumed
        output_tokens: Completion tokens produced
        table: Pricing table to use (defaults to the built-in rates)

    Returns:
        Cost in USD, or None if the model has no known price
    """
    return table.calculate_cost(model_id, input_tokens, output_tokens)


def calculate_usage_cost(model_id: str, usage: TokenUsage, table: PricingTable = PRICING_TABLE) -> Optional[float]:
    """Price a TokenUsage payload; cache counters are not billed separately."""
    return table.calculate_cost(model_id, usage.input_tokens, usage.output_tokens)
