"""
Cost Calculator for Model Invocations

Prices recorded invocations from the model registry so that every
MetricRecord carries a monetary cost, and reports cost per token for
model comparisons and benchmarks.
"""

import logging
from dataclasses import dataclass

from aiops.registry.models import ModelMetadata, ModelRegistry, get_model_registry

logger = logging.getLogger(__name__)


@dataclass
class CostBreakdown:
    """
    Detailed cost breakdown for a single invocation.

    Attributes:
        input_tokens: Number of input tokens processed
        output_tokens: Number of output tokens generated
        input_cost_usd: Cost for input tokens in USD
        output_cost_usd: Cost for output tokens in USD
        total_cost_usd: Total cost (input + output)
        model_used: ID of the model that processed the request
    """

    input_tokens: int
    output_tokens: int
    input_cost_usd: float
    output_cost_usd: float
    total_cost_usd: float
    model_used: str

    @property
    def total_tokens(self) -> int:
        """Total tokens processed (input + output)."""
        return self.input_tokens + self.output_tokens

    @property
    def cost_per_token(self) -> float:
        """Blended cost of one token for this invocation."""
        return self.total_cost_usd / self.total_tokens if self.total_tokens else 0.0


class CostCalculator:
    """
    Calculate invocation costs from registry pricing.

    The calculator is thread-safe as it only performs read operations
    on the model registry.

    Example:
        calculator = CostCalculator()
        cost = calculator.calculate_by_model_id(
            model_id="openai/gpt-4o-mini",
            input_tokens=150,
            output_tokens=50
        )
        print(f"${cost.total_cost_usd:.6f}")
    """

    def __init__(self, registry: ModelRegistry | None = None):
        self._registry = registry or get_model_registry()

    def calculate(
        self, model: ModelMetadata, input_tokens: int, output_tokens: int
    ) -> CostBreakdown:
        """
        Calculate cost breakdown for an invocation.

        Args:
            model: Model metadata with pricing information
            input_tokens: Number of input tokens used
            output_tokens: Number of output tokens generated

        Returns:
            Complete cost breakdown
        """
        input_cost = (input_tokens / 1_000_000) * model.cost_per_1m_input_tokens
        output_cost = (output_tokens / 1_000_000) * model.cost_per_1m_output_tokens

        return CostBreakdown(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            input_cost_usd=input_cost,
            output_cost_usd=output_cost,
            total_cost_usd=input_cost + output_cost,
            model_used=model.model_id,
        )

    def calculate_by_model_id(
        self, model_id: str, input_tokens: int, output_tokens: int
    ) -> CostBreakdown | None:
        """
        Calculate cost using model ID lookup.

        Args:
            model_id: ID (or bare name) of the model in the registry
            input_tokens: Number of input tokens used
            output_tokens: Number of output tokens generated

        Returns:
            CostBreakdown if model found, None otherwise
        """
        model = self._registry.get_model(model_id)
        if model is None:
            return None
        return self.calculate(model, input_tokens, output_tokens)

    def cost_for(self, model_id: str, input_tokens: int, output_tokens: int) -> float:
        """
        Total cost in USD, zero for models without registered pricing.
        """
        breakdown = self.calculate_by_model_id(model_id, input_tokens, output_tokens)
        if breakdown is None:
            logger.debug(f"No pricing registered for {model_id}, recording zero cost")
            return 0.0
        return breakdown.total_cost_usd
