"""
Unit tests for pricing calculations.

Tests model lookup rules, cost accuracy and the unknown-model contract.
"""

import pytest
from decimal import Decimal

from fleet_agent.core.pricing import (
    PRICING_TABLE,
    ModelPrice,
    PricingTable,
    calculate_cost,
    calculate_usage_cost,
)
from fleet_agent.core.token_counter import TokenUsage


class TestTokenUsage:
    """Test TokenUsage dataclass."""

    def test_total_tokens_calculation(self):
        """Verify total_tokens is computed correctly."""
        usage = TokenUsage(input_tokens=100, output_tokens=50)
        assert usage.total_tokens == 150

    def test_cache_counters_default_to_zero(self):
        usage = TokenUsage(input_tokens=1, output_tokens=1)
        assert usage.cache_read_tokens == 0
        assert usage.cache_write_tokens == 0

    def test_negative_counter_rejected(self):
        with pytest.raises(ValueError, match="output_tokens cannot be negative"):
            TokenUsage(input_tokens=1, output_tokens=-1)

    def test_to_dict_keys(self):
        usage = TokenUsage(input_tokens=3, output_tokens=4, cache_read_tokens=2, cache_write_tokens=1)
        assert usage.to_dict() == {
            "inputTokens": 3,
            "outputTokens": 4,
            "totalTokens": 7,
            "cacheReadTokens": 2,
            "cacheWriteTokens": 1,
        }


class TestPricingTable:
    """Test pricing table lookup rules."""

    def test_exact_match(self):
        price = PRICING_TABLE.get_price("claude-sonnet-4-6")
        assert price.input_per_million == Decimal("3.0")
        assert price.output_per_million == Decimal("15.0")

    def test_lookup_is_case_insensitive(self):
        assert PRICING_TABLE.get_price("Claude-Haiku-4-5") == PRICING_TABLE.prices["claude-haiku-4-5"]

    def test_substring_match(self):
        """Provider prefixes and suffixes still resolve to the base model."""
        price = PRICING_TABLE.get_price("anthropic/claude-opus-4-6-20260101")
        assert price == PRICING_TABLE.prices["claude-opus-4-6"]

    def test_openrouter_model_matches(self):
        price = PRICING_TABLE.get_price("openrouter:minimax/minimax-m2.5")
        assert price.input_per_million == Decimal("0.3")

    def test_first_substring_match_wins(self):
        table = PricingTable({
            "model-a": ModelPrice(Decimal("1"), Decimal("1")),
            "model": ModelPrice(Decimal("9"), Decimal("9")),
        })
        assert table.get_price("vendor/model-a-large").input_per_million == Decimal("1")

    def test_exact_match_beats_earlier_substring(self):
        table = PricingTable({
            "model": ModelPrice(Decimal("9"), Decimal("9")),
            "model-a": ModelPrice(Decimal("1"), Decimal("1")),
        })
        assert table.get_price("model-a").input_per_million == Decimal("1")

    def test_unknown_model_returns_none(self):
        assert PRICING_TABLE.get_price("unknown-model-xyz") is None

    def test_with_overrides_replaces_and_appends(self):
        table = PRICING_TABLE.with_overrides({
            "claude-haiku-4-5": ModelPrice(Decimal("2"), Decimal("4")),
            "My-Model": ModelPrice(Decimal("1"), Decimal("1")),
        })
        assert table.get_price("claude-haiku-4-5").input_per_million == Decimal("2")
        assert list(table.prices)[0] == "claude-haiku-4-5"
        assert list(table.prices)[-1] == "my-model"
        # Original table is untouched
        assert PRICING_TABLE.get_price("claude-haiku-4-5").input_per_million == Decimal("1.0")


class TestCostCalculation:
    """Test cost calculation accuracy."""

    def test_haiku_one_million_input(self):
        assert calculate_cost("claude-haiku-4-5", 1_000_000, 0) == 1.00

    def test_unknown_model_cost_is_none(self):
        """Unknown cost is distinct from zero cost."""
        assert calculate_cost("unknown-model-xyz", 100, 100) is None

    def test_input_and_output_rates(self):
        # 2M * $3.00 + 1M * $15.00
        assert calculate_cost("claude-sonnet-4-6", 2_000_000, 1_000_000) == pytest.approx(21.0)

    def test_small_request_not_rounded(self):
        # 1000/1e6 * $1.00 + 200/1e6 * $5.00 = $0.002
        assert calculate_cost("claude-haiku-4-5", 1000, 200) == pytest.approx(0.002)

    def test_zero_tokens_cost_is_zero(self):
        assert calculate_cost("claude-haiku-4-5", 0, 0) == 0.0

    def test_custom_table(self):
        table = PricingTable({"local": ModelPrice(Decimal("0"), Decimal("0"))})
        assert calculate_cost("local-llama", 500, 500, table=table) == 0.0
        assert calculate_cost("claude-haiku-4-5", 500, 500, table=table) is None

    def test_usage_cost_ignores_cache_counters(self):
        usage = TokenUsage(input_tokens=1_000_000, output_tokens=0, cache_read_tokens=900_000)
        assert calculate_usage_cost("claude-haiku-4-5", usage) == 1.00
