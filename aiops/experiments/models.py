"""
A/B Experiment Data Models

Pydantic models for experiments, their variants and objectives, the
per-execution rows they produce and the computed results.
"""

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


# =============================================================================
# ENUMERATIONS
# =============================================================================


class ExperimentStatus(str, Enum):
    """
    Experiment lifecycle.

    DRAFT -> ACTIVE <-> PAUSED -> COMPLETED; any non-terminal state can be
    CANCELLED.
    """

    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class SignificanceStatus(str, Enum):
    """Outcome of the significance test."""

    INCONCLUSIVE = "inconclusive"
    NOT_SIGNIFICANT = "not_significant"
    SIGNIFICANT = "significant"
    HIGHLY_SIGNIFICANT = "highly_significant"

    @property
    def is_significant(self) -> bool:
        return self in (
            SignificanceStatus.SIGNIFICANT,
            SignificanceStatus.HIGHLY_SIGNIFICANT,
        )


class ObjectiveMetric(str, Enum):
    """Metric an experiment optimizes."""

    QUALITY = "quality"
    LATENCY = "latency"
    COST = "cost"
    USER_SATISFACTION = "user_satisfaction"
    SUCCESS_RATE = "success_rate"


class Direction(str, Enum):
    MAXIMIZE = "maximize"
    MINIMIZE = "minimize"


# =============================================================================
# CONFIGURATION
# =============================================================================


class ModelConfiguration(BaseModel):
    """Model and generation parameters a variant runs with."""

    model: str = Field(description="Registered model id, e.g. openai/gpt-4o-mini")
    temperature: float = Field(default=0.7, ge=0, le=2)
    max_tokens: int = Field(default=1000, gt=0)
    system_prompt: str | None = None


class Variant(BaseModel):
    """
    One configuration under test.

    ``prompt_template`` may contain ``{prompt}``, replaced by the input
    text at execution time.
    """

    id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    name: str
    description: str = ""
    configuration: ModelConfiguration
    prompt_template: str | None = None
    allocated_traffic: float = Field(default=0.0, description="Percent of traffic")

    def render_prompt(self, text: str) -> str:
        if not self.prompt_template:
            return text
        return self.prompt_template.replace("{prompt}", text)


class Objective(BaseModel):
    primary: ObjectiveMetric = ObjectiveMetric.QUALITY
    direction: Direction = Direction.MAXIMIZE
    target_improvement: float | None = Field(
        default=None, description="Expected improvement in percent"
    )


# =============================================================================
# RESULTS
# =============================================================================


class ConfidenceInterval(BaseModel):
    lower: float = 0.0
    upper: float = 0.0


class VariantMetrics(BaseModel):
    """Observed metrics of one variant."""

    sample_size: int = 0
    average_quality: float = 0.0
    average_latency: float = 0.0
    average_cost: float = 0.0
    success_rate: float = Field(default=0.0, description="Percent with quality > 70")
    user_satisfaction: float | None = Field(
        default=None, description="Average 1-5 rating, None without feedback"
    )
    confidence_interval: ConfidenceInterval = Field(
        default_factory=ConfidenceInterval,
        description="95% interval of the mean quality",
    )


class ABTestResults(BaseModel):
    status: SignificanceStatus
    p_value: float = 1.0
    t_statistic: float = 0.0
    confidence: float = Field(default=0.0, description="(1 - p) * 100")
    winning_variant: str | None = None
    compared_variants: list[str] = Field(default_factory=list)
    statistical_power: float = 0.0
    metrics: dict[str, VariantMetrics] = Field(default_factory=dict)
    recommendations: list[str] = Field(default_factory=list)
    calculated_at: float


class ABTest(BaseModel):
    """
    An experiment. The first variant is the control.
    """

    id: str = Field(default_factory=lambda: f"test_{uuid.uuid4().hex[:16]}")
    name: str
    description: str = ""
    hypothesis: str = ""
    status: ExperimentStatus = ExperimentStatus.DRAFT
    variants: list[Variant]
    traffic_split: list[float]
    objective: Objective = Field(default_factory=Objective)
    operation: str = Field(default="ab_test", description="Operation recorded for executions")
    minimum_sample_size: int = Field(default=100, ge=1)
    confidence_level: float = Field(default=0.95, gt=0, lt=1)
    created_by: str | None = None
    created_at: float
    started_at: float | None = None
    ended_at: float | None = None
    results: ABTestResults | None = None

    @property
    def control(self) -> Variant:
        return self.variants[0]

    def get_variant(self, variant_id: str) -> Variant | None:
        return next((v for v in self.variants if v.id == variant_id), None)

    def to_row(self) -> dict[str, Any]:
        row = self.model_dump(mode="json")
        row["timestamp"] = self.created_at
        return row

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "ABTest":
        return cls.model_validate({k: v for k, v in row.items() if k != "timestamp"})


class ABExecution(BaseModel):
    """One request served through a variant."""

    id: str = Field(default_factory=lambda: f"exec_{uuid.uuid4().hex[:16]}")
    test_id: str
    variant_id: str
    user_id: str
    operation: str
    prompt: str = ""
    response: str = ""
    latency_ms: float = 0.0
    cost: float = 0.0
    quality_score: float = 0.0
    success: bool = True
    error: str | None = None
    assessment_id: str | None = None
    rating: int | None = None
    helpful: bool | None = None
    timestamp: float

    def to_row(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "ABExecution":
        return cls.model_validate(row)


@dataclass
class UserAssignment:
    """Permanent binding of a user to a variant within a test."""

    test_id: str
    user_id: str
    variant_id: str
    assigned_at: float


@dataclass
class ExperimentAnalysis:
    """Interim view of a running or finished experiment."""

    test: ABTest
    current_metrics: dict[str, VariantMetrics]
    projected_results: ABTestResults | None = None
    recommendations: list[str] = field(default_factory=list)
