"""
Schemas module: Pydantic request/response models.

This module provides validated data models for the AIOps API:
- Request/response models for metrics, quality, alerts, experiments
  and benchmarks
- Error response models for consistent error handling
- Health check response models

Example usage:
    from aiops.schemas import MetricRecordRequest

    request = MetricRecordRequest(
        operation="generate_okr", model="openai/gpt-4o-mini",
        start_time=1760000000.0, end_time=1760000001.2,
    )
"""

from aiops.schemas.api import (
    # Metrics models
    MetricRecordRequest,
    MetricRecordResponse,
    MetricsResponse,
    ModelStatsResponse,
    StatsResponse,
    # Quality models
    AssessmentResponse,
    EvaluateRequest,
    FeedbackRequest,
    # Alerting models
    AcknowledgeRequest,
    ResolveRequest,
    ThresholdUpdateRequest,
    # Experiment models
    ExecuteRequest,
    ExecutionFeedbackRequest,
    ExperimentCreateRequest,
    TrafficSplitRequest,
    VariantAssignmentResponse,
    # Benchmark models
    BenchmarkRunRequest,
    # Error models
    ErrorCodes,
    ErrorDetail,
    ErrorResponse,
    # Health models
    ComponentHealth,
    HealthResponse,
    # Conversion utilities
    assessment_response,
    stats_fields,
)

__all__ = [
    # Metrics models
    "MetricRecordRequest",
    "MetricRecordResponse",
    "MetricsResponse",
    "ModelStatsResponse",
    "StatsResponse",
    # Quality models
    "AssessmentResponse",
    "EvaluateRequest",
    "FeedbackRequest",
    # Alerting models
    "AcknowledgeRequest",
    "ResolveRequest",
    "ThresholdUpdateRequest",
    # Experiment models
    "ExecuteRequest",
    "ExecutionFeedbackRequest",
    "ExperimentCreateRequest",
    "TrafficSplitRequest",
    "VariantAssignmentResponse",
    # Benchmark models
    "BenchmarkRunRequest",
    # Error models
    "ErrorCodes",
    "ErrorDetail",
    "ErrorResponse",
    # Health models
    "ComponentHealth",
    "HealthResponse",
    # Conversion utilities
    "assessment_response",
    "stats_fields",
]
