"""
Metrics Module: Invocation Recording, Cost and Reporting

Components:
    CostCalculator: Price an invocation from the model registry
    MetricsRecorder: Buffered recording, aggregation, anomaly detection
    MetricRecord: One completed model invocation
    AggregateStats: Window statistics (latency percentiles, cost, rates)
    MetricsReporter: Generate MetricsResponse for API endpoints

Usage:
    from aiops.metrics import MetricsRecorder
    from aiops.storage import InMemoryStore

    recorder = MetricsRecorder(InMemoryStore())
    recorder.record_invocation(
        operation="generate_okr",
        model="openai/gpt-4o-mini",
        start_time=t0,
        end_time=t1,
        input_tokens=150,
        output_tokens=420,
    )
    stats = recorder.aggregate(t0 - 3600, t1)
"""

# Cost calculation
from aiops.metrics.cost import (
    CostBreakdown,
    CostCalculator,
)

# Statistics helpers
from aiops.metrics.stats import mean, median, percent_change, percentile

# Recording
from aiops.metrics.recorder import (
    AggregateStats,
    Anomaly,
    MetricRecord,
    MetricsRecorder,
    ModelComparison,
    Recommendation,
    compute_stats,
)

# Reporting
from aiops.metrics.reporter import MetricsReporter


__all__ = [
    # Cost calculation
    "CostBreakdown",
    "CostCalculator",
    # Statistics helpers
    "mean",
    "median",
    "percent_change",
    "percentile",
    # Recording
    "AggregateStats",
    "Anomaly",
    "MetricRecord",
    "MetricsRecorder",
    "ModelComparison",
    "Recommendation",
    "compute_stats",
    # Reporting
    "MetricsReporter",
]
