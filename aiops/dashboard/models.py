"""
Dashboard Response Models

Pydantic models for the dashboard snapshot. The overview section is fully
typed; the remaining sections carry JSON-ready dictionaries built from
the components' own result types.
"""

from typing import Any, Literal

from pydantic import BaseModel, Field


KpiStatus = Literal["good", "warning", "critical", "neutral"]


# =============================================================================
# OVERVIEW
# =============================================================================


class KPI(BaseModel):
    """One headline number with its change versus the previous period."""

    value: float
    previous: float
    change_percent: float = Field(
        description="Percent change vs the previous equal-length period"
    )
    unit: str = ""
    status: KpiStatus = "neutral"


class CostProjection(BaseModel):
    daily: float
    monthly: float


class HealthScore(BaseModel):
    """
    Aggregate health (0-100).

    Components: performance (100 - latency/100), quality, reliability
    (success rate) and cost (100 - total cost x 1000).
    """

    overall: float
    performance: float
    quality: float
    reliability: float
    cost: float
    status: Literal["healthy", "warning", "critical"]


class QuickStats(BaseModel):
    active_models: int
    running_tests: int
    active_alerts: int
    top_operation: str | None = None
    top_model: str | None = None


class TimeSeriesPoint(BaseModel):
    timestamp: float
    requests: int
    average_latency: float
    average_quality: float
    total_cost: float
    errors: int


class Overview(BaseModel):
    total_requests: KPI
    average_latency: KPI
    success_rate: KPI
    quality_score: KPI
    total_cost: KPI
    cost_projection: CostProjection
    health: HealthScore
    quick_stats: QuickStats
    trends: list[TimeSeriesPoint] = Field(default_factory=list)


# =============================================================================
# SNAPSHOT
# =============================================================================


class DashboardMetadata(BaseModel):
    generated_at: float
    time_range: str
    window_start: float
    window_end: float
    filters: dict[str, str] = Field(default_factory=dict)
    version: str


class Dashboard(BaseModel):
    """Full dashboard snapshot."""

    overview: Overview
    performance: dict[str, Any]
    quality: dict[str, Any]
    costs: dict[str, Any]
    benchmarks: dict[str, Any]
    ab_tests: dict[str, Any]
    alerts: dict[str, Any]
    recommendations: list[dict[str, Any]]
    metadata: DashboardMetadata
