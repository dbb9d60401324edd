"""
Cost Calculation Tests

Validates registry pricing and the statistics helpers used by reports.

Test Categories:
1. TestCostBreakdown - CostBreakdown dataclass validation
2. TestCostCalculator - Per-invocation cost calculation
3. TestModelRegistry - Lookup by id and bare name, provider derivation
4. TestStats - Percentile, median and percent change helpers
"""

import pytest

from aiops.metrics.cost import CostBreakdown, CostCalculator
from aiops.metrics.stats import (
    interquartile_range,
    mean,
    median,
    percent_change,
    percentile,
    stdev,
)
from aiops.registry.models import get_model_registry, provider_for


class TestCostBreakdown:
    """Tests for CostBreakdown dataclass."""

    def test_total_tokens_property(self):
        """Verify total_tokens property calculates correctly."""
        breakdown = CostBreakdown(
            input_tokens=100,
            output_tokens=50,
            input_cost_usd=0.0001,
            output_cost_usd=0.00005,
            total_cost_usd=0.00015,
            model_used="openai/gpt-4o-mini",
        )

        assert breakdown.total_tokens == 150

    def test_cost_per_token(self):
        """Blended cost per token divides total cost by tokens."""
        breakdown = CostBreakdown(
            input_tokens=100,
            output_tokens=100,
            input_cost_usd=0.001,
            output_cost_usd=0.001,
            total_cost_usd=0.002,
            model_used="openai/gpt-4o",
        )

        assert breakdown.cost_per_token == pytest.approx(0.00001)

    def test_cost_per_token_without_tokens(self):
        """Zero tokens yields zero cost per token."""
        breakdown = CostBreakdown(0, 0, 0.0, 0.0, 0.0, "openai/gpt-4o")

        assert breakdown.cost_per_token == 0.0


class TestCostCalculator:
    """Tests for CostCalculator class."""

    @pytest.fixture
    def calculator(self):
        """Get a fresh CostCalculator instance."""
        return CostCalculator()

    def test_gpt4o_cost_calculation(self, calculator):
        """GPT-4o cost is calculated from its per-million prices."""
        breakdown = calculator.calculate_by_model_id(
            "openai/gpt-4o", input_tokens=1000, output_tokens=500
        )

        # Expected: (1000/1M * 2.50) + (500/1M * 10.00) = 0.0075
        assert breakdown.input_cost_usd == pytest.approx(0.0025)
        assert breakdown.output_cost_usd == pytest.approx(0.005)
        assert breakdown.total_cost_usd == pytest.approx(0.0075)
        assert breakdown.model_used == "openai/gpt-4o"

    def test_mini_cheaper_than_flagship(self, calculator):
        """The mini model costs less for the same usage."""
        mini = calculator.cost_for("openai/gpt-4o-mini", 1000, 500)
        flagship = calculator.cost_for("openai/gpt-4o", 1000, 500)

        assert mini < flagship

    def test_embedding_has_no_output_cost(self, calculator):
        """Embedding models only charge for input tokens."""
        breakdown = calculator.calculate_by_model_id(
            "openai/text-embedding-3-small", input_tokens=1_000_000, output_tokens=10
        )

        assert breakdown.output_cost_usd == 0.0
        assert breakdown.total_cost_usd == pytest.approx(0.02)

    def test_bare_name_lookup(self, calculator):
        """Bare model names resolve to the registered id."""
        breakdown = calculator.calculate_by_model_id("gpt-4o-mini", 1000, 1000)

        assert breakdown is not None
        assert breakdown.model_used == "openai/gpt-4o-mini"

    def test_unknown_model_returns_none(self, calculator):
        """Unknown models have no breakdown."""
        assert calculator.calculate_by_model_id("acme/unknown-model", 10, 10) is None

    def test_unknown_model_costs_zero(self, calculator):
        """cost_for prices unknown models at zero."""
        assert calculator.cost_for("acme/unknown-model", 10, 10) == 0.0

    def test_zero_tokens(self, calculator):
        """Zero tokens cost nothing."""
        assert calculator.cost_for("openai/gpt-4o", 0, 0) == 0.0


class TestModelRegistry:
    """Tests for the model registry."""

    def test_registered_models(self):
        """Benchmark default models are all registered."""
        registry = get_model_registry()
        ids = registry.get_model_ids()

        for model_id in (
            "openai/gpt-4o",
            "openai/gpt-4o-mini",
            "anthropic/claude-3-haiku",
            "anthropic/claude-3-sonnet",
        ):
            assert model_id in ids

    def test_all_prices_non_negative(self):
        """No model has negative pricing."""
        for model in get_model_registry().list_models():
            assert model.cost_per_1m_input_tokens >= 0
            assert model.cost_per_1m_output_tokens >= 0

    def test_provider_from_prefix(self):
        """The provider is the identifier prefix."""
        assert provider_for("anthropic/claude-3-haiku") == "anthropic"
        assert provider_for("groq/llama-3.1-8b") == "groq"

    def test_provider_defaults_to_openai(self):
        """Identifiers without a prefix are attributed to OpenAI."""
        assert provider_for("gpt-4o") == "openai"


class TestStats:
    """Tests for descriptive statistics helpers."""

    def test_empty_inputs(self):
        """Empty lists produce zeros instead of errors."""
        assert mean([]) == 0.0
        assert median([]) == 0.0
        assert percentile([], 95) == 0.0

    def test_percentile_interpolates(self):
        """Percentiles use linear interpolation."""
        values = [1.0, 2.0, 3.0, 4.0]

        assert percentile(values, 50) == pytest.approx(2.5)
        assert percentile(values, 100) == 4.0
        assert percentile(values, 0) == 1.0

    def test_percentile_out_of_range(self):
        """Percentiles outside 0-100 are rejected."""
        with pytest.raises(ValueError):
            percentile([1.0], 101)

    def test_interquartile_range(self):
        """IQR spans the 25th to 75th percentile."""
        assert interquartile_range([1.0, 2.0, 3.0, 4.0, 5.0]) == pytest.approx(2.0)

    def test_percent_change(self):
        """Percent change is relative to the previous value."""
        assert percent_change(150.0, 100.0) == pytest.approx(50.0)
        assert percent_change(50.0, 100.0) == pytest.approx(-50.0)

    def test_percent_change_from_zero(self):
        """Growth from zero is 100%, no change from zero is 0%."""
        assert percent_change(5.0, 0.0) == 100.0
        assert percent_change(0.0, 0.0) == 0.0

    def test_stdev_single_value(self):
        """Standard deviation of one value is zero."""
        assert stdev([3.0]) == 0.0
