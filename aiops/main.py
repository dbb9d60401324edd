"""
AIOps: FastAPI Application Entry Point

This module initializes the FastAPI application and defines the endpoints:
- /health, /config, /models: Service information
- /metrics: Invocation recording, statistics, anomalies, model comparison
- /quality: Response evaluation and feedback
- /alerts: Thresholds and alert lifecycle
- /experiments: A/B experiment lifecycle, assignment and execution
- /benchmarks: Benchmark runs
- /dashboard: Aggregated snapshot
- /cache: Cache statistics and invalidation

The application uses a lifespan context manager to:
1. Load configuration and configure logging
2. Build the service container
3. Start the periodic tasks (flush, sweep, thresholds, anomalies, baselines)
4. Stop them and flush buffered metrics on shutdown
"""

import asyncio
from contextlib import asynccontextmanager
import logging

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from aiops import __version__
from aiops.alerting import AlertSeverity, AlertStatus, AlertThreshold, AlertType
from aiops.config import Settings, configure_logging, get_settings
from aiops.errors import ConfigurationError, InvalidTransitionError, NotFoundError
from aiops.experiments import ExperimentStatus
from aiops.metrics import MetricRecord
from aiops.registry import get_model_registry
from aiops.schemas.api import (
    AcknowledgeRequest,
    AssessmentResponse,
    BenchmarkRunRequest,
    ComponentHealth,
    ErrorCodes,
    ErrorDetail,
    ErrorResponse,
    EvaluateRequest,
    ExecuteRequest,
    ExecutionFeedbackRequest,
    ExperimentCreateRequest,
    FeedbackRequest,
    HealthResponse,
    MetricRecordRequest,
    MetricRecordResponse,
    MetricsResponse,
    ResolveRequest,
    ThresholdUpdateRequest,
    TrafficSplitRequest,
    VariantAssignmentResponse,
    assessment_response,
)
from aiops.services import AIOpsServices

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler for startup/shutdown events.

    On startup:
    - Loads configuration from environment and configures logging
    - Builds the service container unless one was installed on app.state
    - Starts the periodic tasks

    On shutdown:
    - Cancels the periodic tasks and flushes buffered metrics
    """
    settings = get_settings()
    configure_logging(settings)

    logger.info("=" * 60)
    logger.info("AIOps telemetry engine starting up...")
    logger.info("=" * 60)

    services = getattr(app.state, "services", None)
    if services is None:
        services = AIOpsServices.build(settings)
        app.state.services = services

    s = services.settings
    logger.info(f"Store: {type(services.store).__name__}")
    logger.info(f"Cache tiers: {', '.join(services.cache.tier_names)}")
    logger.info(f"Judge model: {s.judge_model if s.judge_enabled else 'disabled'}")
    logger.info(f"Anomaly sensitivity: {s.anomaly_sensitivity}")
    logger.info(f"OpenAI API key: {'configured' if s.openai_api_key else 'not configured'}")
    logger.info(f"Groq API key: {'configured' if s.groq_api_key else 'not configured'}")

    services.start()
    logger.info("AIOps telemetry engine ready to accept requests")

    yield  # Application runs here

    logger.info("AIOps telemetry engine shutting down...")
    await services.stop()


app = FastAPI(
    title="AIOps Telemetry",
    description="Telemetry and experimentation engine for language-model operations",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_services(request: Request) -> AIOpsServices:
    return request.app.state.services


def _window(
    services: AIOpsServices, hours: float, start: float | None, end: float | None
) -> tuple[float, float]:
    end = end if end is not None else services.clock()
    start = start if start is not None else end - hours * 3600
    return start, end


# =============================================================================
# SERVICE INFORMATION
# =============================================================================


@app.get("/")
async def root():
    """
    Root endpoint with API information.
    """
    return {
        "name": "AIOps Telemetry",
        "description": "Telemetry and experimentation engine for language-model operations",
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
        "dashboard": "/dashboard",
    }


@app.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check store, cache and periodic task status.",
)
async def health_check(services: AIOpsServices = Depends(get_services)):
    """
    Health check endpoint for monitoring and orchestration.

    Checks:
    - Append-only store readable
    - Cache tier errors
    - Periodic tasks alive
    """
    components = []
    overall_status = "healthy"

    try:
        services.store.query("__health__")
        components.append(ComponentHealth(name="store", status="healthy"))
    except Exception as e:
        components.append(ComponentHealth(name="store", status="unhealthy", message=str(e)))
        overall_status = "unhealthy"

    cache_stats = services.cache.get_stats()
    failing = [name for name, count in cache_stats.errors_by_tier.items() if count]
    if failing:
        components.append(
            ComponentHealth(
                name="cache",
                status="degraded",
                message=f"Tier errors: {', '.join(failing)}",
            )
        )
        if overall_status == "healthy":
            overall_status = "degraded"
    else:
        components.append(
            ComponentHealth(
                name="cache",
                status="healthy",
                message=f"Hit rate {cache_stats.hit_rate:.1f}%",
            )
        )

    running = services.running_tasks
    components.append(
        ComponentHealth(
            name="periodic_tasks",
            status="healthy" if len(running) == 5 else "degraded",
            message=f"{len(running)} running",
        )
    )
    if len(running) != 5 and overall_status == "healthy":
        overall_status = "degraded"

    uptime = services.clock() - services.started_at if services.started_at else 0.0

    return HealthResponse(
        status=overall_status,
        version=__version__,
        components=components,
        uptime_seconds=max(uptime, 0.0),
    )


@app.get("/config")
async def show_config(settings: Settings = Depends(get_settings)):
    """
    Returns non-sensitive configuration values.

    API keys and SMTP credentials are SecretStr and are NOT exposed here.
    """
    return {
        "models": {
            "timeout_seconds": settings.model_timeout_seconds,
            "judge_enabled": settings.judge_enabled,
            "judge_model": settings.judge_model,
        },
        "metrics": {
            "flush_interval_seconds": settings.metrics_flush_interval_seconds,
            "flush_batch_size": settings.metrics_flush_batch_size,
        },
        "cache": {
            "default_ttl_seconds": settings.cache_default_ttl_seconds,
            "max_entries": settings.cache_max_entries,
            "redis_enabled": bool(settings.redis_url),
        },
        "alerting": {
            "threshold_check_interval_seconds": settings.threshold_check_interval_seconds,
            "anomaly_scan_interval_seconds": settings.anomaly_scan_interval_seconds,
            "anomaly_sensitivity": settings.anomaly_sensitivity,
            "email_enabled": bool(settings.smtp_host),
        },
        "server": {
            "host": settings.host,
            "port": settings.port,
            "debug": settings.debug,
        },
        "logging": {"level": settings.log_level},
        "api_keys_configured": {
            "openai": bool(settings.openai_api_key),
            "groq": bool(settings.groq_api_key),
        },
    }


@app.get("/models")
async def list_models():
    """
    List registered models with their pricing.
    """
    registry = get_model_registry()
    return {
        "models": [
            {
                "model_id": model.model_id,
                "display_name": model.display_name,
                "provider": model.provider.value,
                "kind": model.kind.value,
                "cost_per_1m_input": model.cost_per_1m_input_tokens,
                "cost_per_1m_output": model.cost_per_1m_output_tokens,
                "latency_target_ms": model.latency_target_ms,
            }
            for model in registry.list_models()
        ],
        "total_models": len(registry.list_models()),
    }


# =============================================================================
# METRICS
# =============================================================================


@app.post("/metrics/records", response_model=MetricRecordResponse, status_code=201)
async def record_metric(
    request: MetricRecordRequest, services: AIOpsServices = Depends(get_services)
):
    """
    Record one completed model invocation.

    The record is buffered and persisted by the periodic flush; it is
    visible to statistics immediately.
    """
    data = request.model_dump()
    if data["cost"] is None:
        record = services.recorder.record_invocation(**data)
    else:
        record = MetricRecord(**data)
        services.recorder.record(record)
    return MetricRecordResponse(
        request_id=record.request_id,
        latency_ms=record.latency_ms,
        cost=record.cost,
    )


@app.get("/metrics/stats", response_model=MetricsResponse)
async def get_metrics(
    hours: float = Query(24, gt=0, le=24 * 90),
    start: float | None = None,
    end: float | None = None,
    operation: str | None = None,
    model: str | None = None,
    provider: str | None = None,
    user_id: str | None = None,
    services: AIOpsServices = Depends(get_services),
):
    """
    Aggregated statistics for a window, with operation and model breakdowns.
    """
    start, end = _window(services, hours, start, end)
    return await asyncio.to_thread(
        services.reporter.generate_report, start, end, operation, model, provider, user_id
    )


@app.get("/metrics/anomalies")
async def get_anomalies(
    lookback_hours: float = Query(24, gt=0, le=24 * 30),
    sensitivity: str = Query("medium", pattern="^(low|medium|high)$"),
    services: AIOpsServices = Depends(get_services),
):
    """Latency and cost outliers and error-rate spikes."""
    anomalies = await asyncio.to_thread(
        services.recorder.detect_anomalies, lookback_hours, sensitivity
    )
    return {"anomalies": anomalies, "count": len(anomalies)}


@app.get("/metrics/models")
async def get_model_comparison(
    hours: float = Query(24, gt=0, le=24 * 90),
    services: AIOpsServices = Depends(get_services),
):
    """Models ranked by the composite score."""
    start, end = _window(services, hours, None, None)
    report = await asyncio.to_thread(services.reporter.generate_report, start, end)
    return {"models": report.models}


@app.get("/metrics/recommendations")
async def get_recommendations(
    hours: float = Query(24, gt=0, le=24 * 90),
    services: AIOpsServices = Depends(get_services),
):
    """Rule-based optimization recommendations."""
    start, end = _window(services, hours, None, None)
    recommendations = await asyncio.to_thread(services.recorder.get_recommendations, start, end)
    return {"recommendations": recommendations}


# =============================================================================
# QUALITY
# =============================================================================


@app.post("/quality/evaluate", response_model=AssessmentResponse)
async def evaluate_quality(
    request: EvaluateRequest, services: AIOpsServices = Depends(get_services)
):
    """Score a response on six dimensions with the operation's profile."""
    assessment = await services.scorer.evaluate(**request.model_dump())
    return assessment_response(assessment)


@app.get("/quality/metrics")
async def quality_metrics(
    hours: float = Query(24, gt=0, le=24 * 90),
    operation: str | None = None,
    model: str | None = None,
    services: AIOpsServices = Depends(get_services),
):
    start, end = _window(services, hours, None, None)
    return await asyncio.to_thread(
        services.scorer.get_quality_metrics, start, end, operation, model
    )


@app.get("/quality/trends")
async def quality_trends(
    days: int = Query(7, ge=1, le=90),
    operation: str | None = None,
    services: AIOpsServices = Depends(get_services),
):
    trends = await asyncio.to_thread(services.scorer.get_quality_trends, days, operation)
    return {"trends": trends}


@app.get("/quality/{assessment_id}", response_model=AssessmentResponse)
async def get_assessment(
    assessment_id: str, services: AIOpsServices = Depends(get_services)
):
    return assessment_response(services.scorer.get_assessment(assessment_id))


@app.post("/quality/{assessment_id}/feedback", response_model=AssessmentResponse)
async def quality_feedback(
    assessment_id: str,
    request: FeedbackRequest,
    services: AIOpsServices = Depends(get_services),
):
    """Attach user feedback; scores are blended at most once."""
    assessment = services.scorer.attach_feedback(assessment_id, **request.model_dump())
    return assessment_response(assessment)


# =============================================================================
# ALERTS
# =============================================================================


@app.get("/alerts/thresholds", response_model=list[AlertThreshold])
async def list_thresholds(services: AIOpsServices = Depends(get_services)):
    return services.alerting.list_thresholds()


@app.post("/alerts/thresholds", response_model=AlertThreshold, status_code=201)
async def create_threshold(
    threshold: AlertThreshold, services: AIOpsServices = Depends(get_services)
):
    """Add a threshold; metric names and time windows are validated."""
    return services.alerting.add_threshold(threshold)


@app.get("/alerts/thresholds/{threshold_id}", response_model=AlertThreshold)
async def get_threshold(threshold_id: str, services: AIOpsServices = Depends(get_services)):
    return services.alerting.get_threshold(threshold_id)


@app.patch("/alerts/thresholds/{threshold_id}", response_model=AlertThreshold)
async def update_threshold(
    threshold_id: str,
    request: ThresholdUpdateRequest,
    services: AIOpsServices = Depends(get_services),
):
    changes = request.model_dump(exclude_unset=True)
    return services.alerting.update_threshold(threshold_id, changes)


@app.delete("/alerts/thresholds/{threshold_id}", status_code=204)
async def delete_threshold(threshold_id: str, services: AIOpsServices = Depends(get_services)):
    services.alerting.delete_threshold(threshold_id)


@app.post("/alerts/check")
async def check_thresholds(services: AIOpsServices = Depends(get_services)):
    """Evaluate every threshold now and deliver fired alerts."""
    evaluations = await services.alerting.check_thresholds()
    return {
        "evaluations": [
            {"threshold_id": e.threshold_id, "decision": e.decision, "values": e.values}
            for e in evaluations
        ],
        "fired": [e.alert for e in evaluations if e.fired],
    }


@app.get("/alerts")
async def list_alerts(
    status: str = Query("active", pattern="^(active|all)$"),
    hours: float = Query(24 * 7, gt=0),
    severity: AlertSeverity | None = None,
    alert_type: AlertType | None = Query(None, alias="type"),
    services: AIOpsServices = Depends(get_services),
):
    """
    Active alerts (most severe first) or the full history of a window.
    """
    if status == AlertStatus.ACTIVE.value:
        alerts = await asyncio.to_thread(services.alerting.get_active_alerts)
        if severity is not None:
            alerts = [a for a in alerts if a.severity == severity]
        if alert_type is not None:
            alerts = [a for a in alerts if a.type == alert_type]
    else:
        start, end = _window(services, hours, None, None)
        alerts = await asyncio.to_thread(
            services.alerting.get_alert_history, start, end, severity, alert_type
        )
    return {"alerts": alerts, "count": len(alerts)}


@app.get("/alerts/statistics")
async def alert_statistics(
    hours: float = Query(24 * 7, gt=0),
    services: AIOpsServices = Depends(get_services),
):
    start, end = _window(services, hours, None, None)
    return await asyncio.to_thread(services.alerting.get_alert_statistics, start, end)


@app.get("/alerts/baselines")
async def alert_baselines(services: AIOpsServices = Depends(get_services)):
    return services.alerting.get_baselines()


@app.get("/alerts/{alert_id}")
async def get_alert(alert_id: str, services: AIOpsServices = Depends(get_services)):
    return services.alerting.get_alert(alert_id)


@app.post("/alerts/{alert_id}/acknowledge")
async def acknowledge_alert(
    alert_id: str,
    request: AcknowledgeRequest | None = None,
    services: AIOpsServices = Depends(get_services),
):
    return services.alerting.acknowledge(alert_id, request.user if request else None)


@app.post("/alerts/{alert_id}/resolve")
async def resolve_alert(
    alert_id: str,
    request: ResolveRequest | None = None,
    services: AIOpsServices = Depends(get_services),
):
    return services.alerting.resolve(alert_id, request.note if request else None)


@app.post("/alerts/{alert_id}/suppress")
async def suppress_alert(alert_id: str, services: AIOpsServices = Depends(get_services)):
    return services.alerting.suppress(alert_id)


# =============================================================================
# EXPERIMENTS
# =============================================================================


@app.post("/experiments", status_code=201)
async def create_experiment(
    request: ExperimentCreateRequest, services: AIOpsServices = Depends(get_services)
):
    """Create a draft experiment; the traffic split must sum to 100."""
    return services.experiments.create_test(
        name=request.name,
        variants=request.variants,
        traffic_split=request.traffic_split,
        objective=request.objective,
        minimum_sample_size=request.minimum_sample_size,
        confidence_level=request.confidence_level,
        description=request.description,
        hypothesis=request.hypothesis,
        operation=request.operation,
        created_by=request.created_by,
    )


@app.get("/experiments")
async def list_experiments(
    status: ExperimentStatus | None = None,
    services: AIOpsServices = Depends(get_services),
):
    tests = await asyncio.to_thread(services.experiments.list_tests, status)
    return {"experiments": tests, "count": len(tests)}


@app.post("/experiments/executions/{execution_id}/feedback")
async def execution_feedback(
    execution_id: str,
    request: ExecutionFeedbackRequest,
    services: AIOpsServices = Depends(get_services),
):
    """Record a user's rating of one execution."""
    return services.experiments.record_user_feedback(execution_id, **request.model_dump())


@app.get("/experiments/{test_id}")
async def get_experiment(test_id: str, services: AIOpsServices = Depends(get_services)):
    return services.experiments.get_test(test_id)


@app.post("/experiments/{test_id}/start")
async def start_experiment(test_id: str, services: AIOpsServices = Depends(get_services)):
    return services.experiments.start_test(test_id)


@app.post("/experiments/{test_id}/pause")
async def pause_experiment(test_id: str, services: AIOpsServices = Depends(get_services)):
    return services.experiments.pause_test(test_id)


@app.post("/experiments/{test_id}/complete")
async def complete_experiment(test_id: str, services: AIOpsServices = Depends(get_services)):
    """Complete the experiment and compute its final results."""
    return services.experiments.complete_test(test_id)


@app.post("/experiments/{test_id}/cancel")
async def cancel_experiment(test_id: str, services: AIOpsServices = Depends(get_services)):
    return services.experiments.cancel_test(test_id)


@app.put("/experiments/{test_id}/traffic-split")
async def update_traffic_split(
    test_id: str,
    request: TrafficSplitRequest,
    services: AIOpsServices = Depends(get_services),
):
    """Change the split; existing assignments are kept."""
    return services.experiments.update_traffic_split(test_id, request.traffic_split)


@app.get("/experiments/{test_id}/variant", response_model=VariantAssignmentResponse)
async def get_variant(
    test_id: str,
    user_id: str = Query(..., min_length=1),
    services: AIOpsServices = Depends(get_services),
):
    """Sticky variant assignment for a user."""
    services.experiments.get_test(test_id)
    return VariantAssignmentResponse(
        test_id=test_id,
        user_id=user_id,
        variant_id=services.experiments.get_user_variant(test_id, user_id),
    )


@app.post("/experiments/{test_id}/execute")
async def execute_experiment(
    test_id: str,
    request: ExecuteRequest,
    services: AIOpsServices = Depends(get_services),
):
    """Serve a request through the user's variant."""
    return await services.experiments.execute_test(
        test_id, request.user_id, request.input_text, request.params
    )


@app.get("/experiments/{test_id}/executions")
async def list_executions(
    test_id: str,
    variant_id: str | None = None,
    services: AIOpsServices = Depends(get_services),
):
    services.experiments.get_test(test_id)
    executions = await asyncio.to_thread(
        services.experiments.get_executions, test_id, variant_id
    )
    return {"executions": executions, "count": len(executions)}


@app.get("/experiments/{test_id}/analysis")
async def experiment_analysis(test_id: str, services: AIOpsServices = Depends(get_services)):
    """Per-variant metrics and, past half the minimum sample, a projection."""
    return await asyncio.to_thread(services.experiments.get_test_analysis, test_id)


# =============================================================================
# BENCHMARKS
# =============================================================================


@app.get("/benchmarks/suites")
async def list_suites(services: AIOpsServices = Depends(get_services)):
    return {
        "suites": [
            {
                "id": suite.id,
                "name": suite.name,
                "description": suite.description,
                "models": suite.models,
                "cases": [case.id for case in suite.cases],
            }
            for suite in services.benchmarks.get_suites()
        ]
    }


@app.post("/benchmarks/run")
async def run_benchmark(
    request: BenchmarkRunRequest, services: AIOpsServices = Depends(get_services)
):
    """Run a suite and return ranked model summaries."""
    return await services.benchmarks.run_benchmark(**request.model_dump())


@app.get("/benchmarks/latest")
async def latest_benchmark(services: AIOpsServices = Depends(get_services)):
    report = await asyncio.to_thread(services.benchmarks.latest_report)
    if report is None:
        raise NotFoundError("No benchmark has been run")
    return report


# =============================================================================
# DASHBOARD AND CACHE
# =============================================================================


@app.get("/dashboard")
async def get_dashboard(
    time_range: str = "24h",
    operation: str | None = None,
    model: str | None = None,
    provider: str | None = None,
    user_id: str | None = None,
    services: AIOpsServices = Depends(get_services),
):
    """Dashboard snapshot; cached for five minutes per range and filters."""
    return await services.dashboard.get_dashboard(
        time_range, operation, model, provider, user_id
    )


@app.get("/cache/stats")
async def cache_stats(services: AIOpsServices = Depends(get_services)):
    return services.cache.get_stats()


@app.delete("/cache")
async def clear_cache(
    tag: str | None = None, services: AIOpsServices = Depends(get_services)
):
    """Clear entries carrying a tag, or everything when no tag is given."""
    if tag:
        return {"removed": services.cache.clear_by_tag(tag)}
    services.cache.clear()
    return {"removed": None}


# =============================================================================
# EXCEPTION HANDLERS
# =============================================================================


def _error(status_code: int, code: str, message: str, field: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(
            error=ErrorDetail(code=code, message=message, field=field)
        ).model_dump(),
    )


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError) -> JSONResponse:
    return _error(400, ErrorCodes.CONFIGURATION_ERROR, str(exc))


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return _error(404, ErrorCodes.NOT_FOUND, str(exc))


@app.exception_handler(InvalidTransitionError)
async def invalid_transition_handler(
    request: Request, exc: InvalidTransitionError
) -> JSONResponse:
    return _error(409, ErrorCodes.INVALID_TRANSITION, str(exc))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """
    Handle request validation errors.

    Returns a consistent error response format with the first validation
    error's details for client-side error handling.
    """
    errors = exc.errors()
    first_error = errors[0] if errors else {}
    return _error(
        422,
        ErrorCodes.VALIDATION_ERROR,
        first_error.get("msg", "Validation failed"),
        ".".join(str(loc) for loc in first_error.get("loc", [])),
    )


@app.exception_handler(ValidationError)
async def model_validation_handler(request: Request, exc: ValidationError) -> JSONResponse:
    """Validation failures raised while applying a partial update."""
    errors = exc.errors()
    first_error = errors[0] if errors else {}
    return _error(
        422,
        ErrorCodes.VALIDATION_ERROR,
        first_error.get("msg", "Validation failed"),
        ".".join(str(loc) for loc in first_error.get("loc", [])),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """
    Handle HTTP exceptions with consistent format.
    """
    detail = exc.detail
    if isinstance(detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": detail})
    return _error(exc.status_code, "HTTP_ERROR", str(detail))


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Handle unexpected exceptions.

    Logs the full exception for debugging and returns a generic error
    response to avoid leaking implementation details.
    """
    logger.exception("Unhandled exception")
    return _error(500, ErrorCodes.INTERNAL_ERROR, "An unexpected error occurred")
