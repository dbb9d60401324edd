"""
Pydantic Schemas for the AIOps API

Request and response models for the HTTP surface:
- Metric recording and metrics reports
- Quality evaluation and feedback
- Alert thresholds and alert lifecycle actions
- A/B experiment lifecycle, execution and feedback
- Benchmark runs
- Error responses and health checks

Domain models that are already pydantic (AlertThreshold, Alert, ABTest,
ABExecution, Dashboard) are returned as-is; everything else is converted
here.
"""

from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from aiops.alerting.models import AlertSeverity, NotificationTarget, AlertCondition
from aiops.experiments.models import Objective, Variant

if TYPE_CHECKING:
    from aiops.metrics.recorder import AggregateStats
    from aiops.quality.scorer import QualityAssessment


# =============================================================================
# METRICS MODELS
# =============================================================================


class MetricRecordRequest(BaseModel):
    """
    One completed model invocation reported by a client.

    When ``cost`` is omitted it is computed from the pricing registry.
    """

    operation: str = Field(..., min_length=1, max_length=200)
    model: str = Field(..., min_length=1, description="Model id, e.g. openai/gpt-4o")
    start_time: float = Field(..., description="Unix seconds")
    end_time: float = Field(..., description="Unix seconds, >= start_time")
    input_tokens: int = Field(default=0, ge=0)
    output_tokens: int = Field(default=0, ge=0)
    cost: float | None = Field(default=None, ge=0, description="USD; priced if omitted")
    success: bool = True
    quality_score: float | None = Field(default=None, ge=0, le=100)
    user_id: str | None = None
    error: str | None = None

    @model_validator(mode="after")
    def check_times(self) -> "MetricRecordRequest":
        if self.end_time < self.start_time:
            raise ValueError("end_time must not be earlier than start_time")
        return self


class MetricRecordResponse(BaseModel):
    request_id: str
    latency_ms: float
    cost: float
    recorded: bool = True


class StatsResponse(BaseModel):
    """Aggregate statistics over a window. Rates are percentages."""

    count: int = Field(..., ge=0)
    avg_latency_ms: float
    median_latency_ms: float
    p95_latency_ms: float
    p99_latency_ms: float
    total_cost_usd: float
    avg_cost_usd: float
    total_tokens: int
    cost_per_token: float
    success_rate: float
    error_rate: float
    avg_quality: float


class ModelStatsResponse(StatsResponse):
    model: str
    provider: str
    score: float = Field(..., description="Composite score, higher is better")


class MetricsResponse(BaseModel):
    """
    Metrics report for a window.

    Example:
        {
            "window_start": 1760000000.0,
            "window_end": 1760086400.0,
            "totals": {"count": 1200, "avg_latency_ms": 1840.2, ...},
            "operations": {"generate_okr": {...}},
            "models": [{"model": "openai/gpt-4o-mini", "score": 91.3, ...}]
        }
    """

    window_start: float
    window_end: float
    filters: dict[str, str] = Field(default_factory=dict)
    totals: StatsResponse
    operations: dict[str, StatsResponse] = Field(default_factory=dict)
    models: list[ModelStatsResponse] = Field(default_factory=list)


# =============================================================================
# QUALITY MODELS
# =============================================================================


class EvaluateRequest(BaseModel):
    prompt: str = Field(..., min_length=1, max_length=50000)
    response: str = Field(..., max_length=100000)
    operation: str = Field(default="default", description="Selects the weight profile")
    model: str = "unknown"
    request_id: str | None = None
    user_id: str | None = None


class FeedbackRequest(BaseModel):
    rating: int = Field(..., ge=1, le=5, description="1 (poor) to 5 (excellent)")
    helpful: bool = True
    issues: list[str] = Field(default_factory=list)
    comment: str | None = Field(default=None, max_length=2000)


class AssessmentResponse(BaseModel):
    id: str
    request_id: str
    operation: str
    model: str
    overall: float
    grade: str
    scores: dict[str, float]
    judged: bool
    feedback_rating: int | None = None
    timestamp: float


# =============================================================================
# ALERTING MODELS
# =============================================================================


class ThresholdUpdateRequest(BaseModel):
    """Partial threshold update; omitted fields keep their values."""

    name: str | None = None
    description: str | None = None
    conditions: list[AlertCondition] | None = Field(default=None, min_length=1)
    severity: AlertSeverity | None = None
    enabled: bool | None = None
    cooldown_minutes: float | None = Field(default=None, ge=0)
    notifications: list[NotificationTarget] | None = None


class AcknowledgeRequest(BaseModel):
    user: str | None = Field(default=None, max_length=200)


class ResolveRequest(BaseModel):
    note: str | None = Field(default=None, max_length=2000)


# =============================================================================
# EXPERIMENT MODELS
# =============================================================================


class ExperimentCreateRequest(BaseModel):
    """
    New A/B experiment. The first variant is the control.

    Example:
        {
            "name": "mini vs 4o",
            "variants": [
                {"id": "control", "name": "gpt-4o",
                 "configuration": {"model": "openai/gpt-4o"}},
                {"id": "candidate", "name": "gpt-4o-mini",
                 "configuration": {"model": "openai/gpt-4o-mini"}}
            ],
            "traffic_split": [50, 50]
        }
    """

    name: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    hypothesis: str = ""
    variants: list[Variant] = Field(..., min_length=1)
    traffic_split: list[float]
    objective: Objective = Field(default_factory=Objective)
    minimum_sample_size: int = Field(default=100, ge=1)
    confidence_level: float = Field(default=0.95, gt=0, lt=1)
    operation: str = "ab_test"
    created_by: str | None = None


class TrafficSplitRequest(BaseModel):
    traffic_split: list[float]


class ExecuteRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    input_text: str = Field(..., min_length=1, max_length=50000)
    params: dict[str, Any] | None = None


class ExecutionFeedbackRequest(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    helpful: bool = True
    comment: str | None = Field(default=None, max_length=2000)


class VariantAssignmentResponse(BaseModel):
    test_id: str
    user_id: str
    variant_id: str | None = Field(
        ..., description="None when the experiment is not active"
    )


# =============================================================================
# BENCHMARK MODELS
# =============================================================================


class BenchmarkRunRequest(BaseModel):
    suite_id: str = "default_suite"
    models: list[str] | None = Field(
        default=None, description="Models in tie-break order; suite models if omitted"
    )
    case_ids: list[str] | None = None
    parallel: bool = False


# =============================================================================
# ERROR MODELS
# =============================================================================


class ErrorCodes:
    """
    Standard error codes for API responses.

    These codes enable programmatic error handling by clients
    without parsing human-readable messages.
    """

    VALIDATION_ERROR = "VALIDATION_ERROR"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"


class ErrorDetail(BaseModel):
    """
    Detailed error information for API error responses.

    Provides machine-readable error codes, human-readable messages,
    and optional field information for validation errors.
    """

    code: str = Field(
        ...,
        description="Machine-readable error code for programmatic handling",
    )

    message: str = Field(
        ...,
        description="Human-readable error message",
    )

    field: str | None = Field(
        default=None,
        description="Field that caused the error (for validation errors)",
    )


class ErrorResponse(BaseModel):
    """
    Standard error response format for all API errors.

    Example:
        {
            "error": {
                "code": "CONFIGURATION_ERROR",
                "message": "traffic split must sum to 100, got 90",
                "field": null
            }
        }
    """

    error: ErrorDetail

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "error": {
                        "code": "NOT_FOUND",
                        "message": "A/B test not found: test_123",
                        "field": None,
                    }
                }
            ]
        }
    )


# =============================================================================
# HEALTH MODELS
# =============================================================================


class ComponentHealth(BaseModel):
    """Health status of an individual component (store, cache tier, tasks)."""

    name: str
    status: Literal["healthy", "degraded", "unhealthy"]
    message: str | None = None


class HealthResponse(BaseModel):
    status: Literal["healthy", "degraded", "unhealthy"]
    service: str = "aiops-telemetry"
    version: str
    components: list[ComponentHealth] = Field(default_factory=list)
    uptime_seconds: float | None = Field(default=None, ge=0.0)


# =============================================================================
# CONVERSION UTILITIES
# =============================================================================


def stats_fields(stats: "AggregateStats") -> dict[str, Any]:
    """StatsResponse fields from AggregateStats."""
    return {
        "count": stats.count,
        "avg_latency_ms": round(stats.avg_latency, 2),
        "median_latency_ms": round(stats.median_latency, 2),
        "p95_latency_ms": round(stats.p95_latency, 2),
        "p99_latency_ms": round(stats.p99_latency, 2),
        "total_cost_usd": round(stats.total_cost, 6),
        "avg_cost_usd": round(stats.avg_cost, 6),
        "total_tokens": stats.total_tokens,
        "cost_per_token": stats.cost_per_token,
        "success_rate": round(stats.success_rate, 2),
        "error_rate": round(stats.error_rate, 2),
        "avg_quality": round(stats.avg_quality, 2),
    }


def assessment_response(assessment: "QualityAssessment") -> AssessmentResponse:
    from aiops.quality.scorer import grade

    return AssessmentResponse(
        id=assessment.id,
        request_id=assessment.request_id,
        operation=assessment.operation,
        model=assessment.model,
        overall=round(assessment.overall, 2),
        grade=grade(assessment.overall),
        scores={k: round(v, 2) for k, v in assessment.scores.dimensions().items()},
        judged=assessment.judged,
        feedback_rating=assessment.feedback.rating if assessment.feedback else None,
        timestamp=assessment.timestamp,
    )
