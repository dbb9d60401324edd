"""
Dashboard Module: Cached Snapshot of the Whole Engine

Components:
    DashboardAggregator: Composes overview, performance, quality, costs,
        benchmarks, A/B tests, alerts and recommendations
    Dashboard: Snapshot response model
"""

from aiops.dashboard.models import (
    KPI,
    CostProjection,
    Dashboard,
    DashboardMetadata,
    HealthScore,
    Overview,
    QuickStats,
    TimeSeriesPoint,
)
from aiops.dashboard.aggregator import (
    TIME_RANGES,
    DashboardAggregator,
    health_score,
    latency_distribution,
    resolve_time_range,
)

__all__ = [
    # Models
    "KPI",
    "CostProjection",
    "Dashboard",
    "DashboardMetadata",
    "HealthScore",
    "Overview",
    "QuickStats",
    "TimeSeriesPoint",
    # Aggregator
    "TIME_RANGES",
    "DashboardAggregator",
    "health_score",
    "latency_distribution",
    "resolve_time_range",
]
