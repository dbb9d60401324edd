"""
Dashboard Aggregator

Composes one read-only snapshot from the Metrics Recorder, Quality
Scorer, Alerting Engine, A/B Framework and Benchmark Runner. Snapshots
are cached in the Tiered Cache under the ``dashboard`` preset, keyed by
time range and filters, so repeated loads within five minutes cost one
lookup.
"""

import asyncio
import logging
import math
import time
from collections import Counter
from dataclasses import asdict
from typing import Any, Callable

from aiops import __version__
from aiops.alerting.engine import AlertingEngine
from aiops.benchmark.runner import BenchmarkRunner
from aiops.cache.tiered import TieredCache
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
from aiops.experiments.framework import ABTestingFramework
from aiops.experiments.models import ExperimentStatus
from aiops.metrics.recorder import AggregateStats, MetricsRecorder, compute_stats
from aiops.metrics.stats import clamp, percent_change
from aiops.quality.scorer import QualityScorer

logger = logging.getLogger(__name__)

TIME_RANGES: dict[str, float] = {
    "1h": 3600,
    "6h": 6 * 3600,
    "24h": 24 * 3600,
    "7d": 7 * 86400,
    "30d": 30 * 86400,
}
DEFAULT_TIME_RANGE = "24h"
TREND_POINTS = 24

LATENCY_BUCKETS: list[tuple[str, float, float]] = [
    ("<500ms", 0, 500),
    ("500-1000ms", 500, 1000),
    ("1000-2000ms", 1000, 2000),
    ("2000-5000ms", 2000, 5000),
    (">5000ms", 5000, math.inf),
]


def resolve_time_range(time_range: str) -> tuple[str, float]:
    """Known range label and its length in seconds; unknown labels mean 24h."""
    if time_range in TIME_RANGES:
        return time_range, TIME_RANGES[time_range]
    return DEFAULT_TIME_RANGE, TIME_RANGES[DEFAULT_TIME_RANGE]


def latency_status(avg_latency: float) -> str:
    if avg_latency < 2000:
        return "good"
    if avg_latency < 5000:
        return "warning"
    return "critical"


def success_status(success_rate: float) -> str:
    if success_rate >= 99:
        return "good"
    if success_rate >= 95:
        return "warning"
    return "critical"


def quality_status(quality: float) -> str:
    if quality >= 85:
        return "good"
    if quality >= 70:
        return "warning"
    return "critical"


def health_score(stats: AggregateStats) -> HealthScore:
    performance = clamp(100 - stats.avg_latency / 100)
    quality = clamp(stats.avg_quality)
    reliability = clamp(stats.success_rate)
    cost = clamp(100 - stats.total_cost * 1000)
    overall = (performance + quality + reliability + cost) / 4

    if overall >= 80:
        status = "healthy"
    elif overall >= 60:
        status = "warning"
    else:
        status = "critical"

    return HealthScore(
        overall=round(overall, 1),
        performance=round(performance, 1),
        quality=round(quality, 1),
        reliability=round(reliability, 1),
        cost=round(cost, 1),
        status=status,
    )


def cost_projection(total_cost: float, window_seconds: float) -> CostProjection:
    days = window_seconds / 86400
    daily = total_cost / days if days > 0 else 0.0
    return CostProjection(daily=daily, monthly=daily * 30)


def latency_distribution(latencies: list[float]) -> dict[str, int]:
    distribution = {label: 0 for label, _, _ in LATENCY_BUCKETS}
    for latency in latencies:
        for label, low, high in LATENCY_BUCKETS:
            if low <= latency < high:
                distribution[label] += 1
                break
    return distribution


def _kpi(current: float, previous: float, unit: str = "", status: str = "neutral") -> KPI:
    return KPI(
        value=current,
        previous=previous,
        change_percent=percent_change(current, previous),
        unit=unit,
        status=status,
    )


class DashboardAggregator:
    """
    Build dashboard snapshots.

    Example:
        dashboard = await aggregator.get_dashboard("7d", model="openai/gpt-4o")
        print(dashboard.overview.health.status)
    """

    def __init__(
        self,
        recorder: MetricsRecorder,
        scorer: QualityScorer,
        alerting: AlertingEngine,
        experiments: ABTestingFramework,
        benchmarks: BenchmarkRunner,
        cache: TieredCache,
        clock: Callable[[], float] = time.time,
        cache_ttl_seconds: float | None = None,
        anomaly_sensitivity: str = "medium",
    ):
        self._recorder = recorder
        self._scorer = scorer
        self._alerting = alerting
        self._experiments = experiments
        self._benchmarks = benchmarks
        self._cache = cache
        self._clock = clock
        self._cache_ttl = cache_ttl_seconds
        self._sensitivity = anomaly_sensitivity

    async def get_dashboard(
        self,
        time_range: str = DEFAULT_TIME_RANGE,
        operation: str | None = None,
        model: str | None = None,
        provider: str | None = None,
        user_id: str | None = None,
    ) -> Dashboard:
        """
        Return the dashboard for a time range, cached for five minutes.

        Args:
            time_range: One of 1h, 6h, 24h, 7d, 30d (others mean 24h)
            operation: Restrict metric sections to one operation
            model: Restrict metric sections to one model
            provider: Restrict metric sections to one provider
            user_id: Restrict metric sections to one user

        Returns:
            Dashboard snapshot
        """
        label, _ = resolve_time_range(time_range)
        filters = {
            k: v
            for k, v in {
                "operation": operation,
                "model": model,
                "provider": provider,
                "user_id": user_id,
            }.items()
            if v is not None
        }

        async def compute() -> dict[str, Any]:
            snapshot = await asyncio.to_thread(self.build_snapshot, label, filters)
            return snapshot.model_dump(mode="json")

        data = await self._cache.get_or_compute(
            "dashboard",
            {"time_range": label, **filters},
            compute,
            ttl=self._cache_ttl,
            preset="dashboard",
        )
        return Dashboard.model_validate(data)

    def invalidate(self) -> int:
        """Drop every cached snapshot."""
        return self._cache.clear_by_tag("dashboard")

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    def build_snapshot(self, time_range: str, filters: dict[str, str]) -> Dashboard:
        """Build an uncached snapshot."""
        label, window = resolve_time_range(time_range)
        now = self._clock()
        start = now - window

        records = self._recorder.query(start, now, **filters)
        current = compute_stats(records)
        previous = self._recorder.aggregate(start - window, start, **filters)
        breakdown = self._recorder.get_operation_breakdown(start, now, **filters)
        comparison = self._recorder.get_model_comparison(start, now)

        logger.debug(
            f"Building dashboard for {label} ({current.count} records, filters={filters})"
        )

        return Dashboard(
            overview=self._overview(
                current, previous, window, records, start, breakdown, comparison
            ),
            performance=self._performance(current, records, breakdown, comparison, window),
            quality=self._quality(start, now, window, filters),
            costs=self._costs(current, breakdown, comparison, window),
            benchmarks=self._benchmark_section(),
            ab_tests=self._ab_test_section(),
            alerts=self._alert_section(start, now),
            recommendations=[asdict(r) for r in self._recorder.get_recommendations(start, now)],
            metadata=DashboardMetadata(
                generated_at=now,
                time_range=label,
                window_start=start,
                window_end=now,
                filters=filters,
                version=__version__,
            ),
        )

    def _overview(
        self, current, previous, window, records, start, breakdown, comparison
    ) -> Overview:
        top_model = max(comparison, key=lambda c: c.stats.count).model if comparison else None
        return Overview(
            total_requests=_kpi(current.count, previous.count),
            average_latency=_kpi(
                current.avg_latency,
                previous.avg_latency,
                "ms",
                latency_status(current.avg_latency),
            ),
            success_rate=_kpi(
                current.success_rate,
                previous.success_rate,
                "%",
                success_status(current.success_rate),
            ),
            quality_score=_kpi(
                current.avg_quality,
                previous.avg_quality,
                "%",
                quality_status(current.avg_quality),
            ),
            total_cost=_kpi(current.total_cost, previous.total_cost, "$"),
            cost_projection=cost_projection(current.total_cost, window),
            health=health_score(current),
            quick_stats=QuickStats(
                active_models=len({r.model for r in records}),
                running_tests=len(self._experiments.list_tests(ExperimentStatus.ACTIVE)),
                active_alerts=len(self._alerting.get_active_alerts()),
                top_operation=next(iter(breakdown), None),
                top_model=top_model,
            ),
            trends=self._trends(records, start, window),
        )

    @staticmethod
    def _trends(records, start: float, window: float) -> list[TimeSeriesPoint]:
        width = window / TREND_POINTS
        buckets: list[list] = [[] for _ in range(TREND_POINTS)]
        for record in records:
            index = min(int((record.timestamp - start) // width), TREND_POINTS - 1)
            buckets[max(index, 0)].append(record)

        points = []
        for index, bucket in enumerate(buckets):
            stats = compute_stats(bucket)
            points.append(
                TimeSeriesPoint(
                    timestamp=start + index * width,
                    requests=stats.count,
                    average_latency=stats.avg_latency,
                    average_quality=stats.avg_quality,
                    total_cost=stats.total_cost,
                    errors=stats.count - stats.success_count,
                )
            )
        return points

    def _performance(self, current, records, breakdown, comparison, window) -> dict[str, Any]:
        anomalies = self._recorder.detect_anomalies(
            lookback_hours=window / 3600, sensitivity=self._sensitivity
        )
        return {
            "summary": asdict(current),
            "model_comparison": [
                {"model": c.model, "provider": c.provider, "score": c.score, **asdict(c.stats)}
                for c in comparison
            ],
            "operation_breakdown": {op: asdict(s) for op, s in breakdown.items()},
            "latency_distribution": latency_distribution([r.latency_ms for r in records]),
            "throughput_per_hour": current.count / (window / 3600),
            "anomalies": [asdict(a) for a in anomalies],
        }

    def _quality(self, start, end, window, filters) -> dict[str, Any]:
        operation = filters.get("operation")
        metrics = self._scorer.get_quality_metrics(
            start, end, operation=operation, model=filters.get("model")
        )
        days = max(1, math.ceil(window / 86400))
        return {
            "metrics": asdict(metrics),
            "trends": [asdict(t) for t in self._scorer.get_quality_trends(days, operation)],
            "model_comparison": [
                asdict(m) for m in self._scorer.compare_model_quality(start, end)
            ],
        }

    @staticmethod
    def _costs(current, breakdown, comparison, window) -> dict[str, Any]:
        by_model = {c.model: c.stats.total_cost for c in comparison}
        projection = cost_projection(current.total_cost, window)
        return {
            "total_cost": current.total_cost,
            "average_cost": current.avg_cost,
            "cost_per_token": current.cost_per_token,
            "by_model": dict(sorted(by_model.items(), key=lambda kv: kv[1], reverse=True)),
            "by_operation": {op: s.total_cost for op, s in breakdown.items()},
            "projection": projection.model_dump(),
        }

    def _benchmark_section(self) -> dict[str, Any]:
        report = self._benchmarks.latest_report()
        if report is None:
            return {"last_run": None, "summaries": [], "top_performer": None}
        return {
            "last_run": report.timestamp,
            "run_id": report.run_id,
            "suite_id": report.suite_id,
            "total_results": len(report.results),
            "summaries": [asdict(s) for s in report.summaries],
            "top_performer": report.summaries[0].model if report.summaries else None,
        }

    def _ab_test_section(self) -> dict[str, Any]:
        tests = self._experiments.list_tests()
        completed = [t for t in tests if t.status == ExperimentStatus.COMPLETED]
        significant = [
            t for t in completed if t.results is not None and t.results.status.is_significant
        ]
        active = []
        for test in tests:
            if test.status != ExperimentStatus.ACTIVE:
                continue
            executions = self._experiments.get_executions(test.id)
            active.append(
                {
                    "id": test.id,
                    "name": test.name,
                    "variants": [v.name for v in test.variants],
                    "traffic_split": test.traffic_split,
                    "executions": len(executions),
                    "minimum_sample_size": test.minimum_sample_size,
                    "started_at": test.started_at,
                }
            )
        return {
            "total": len(tests),
            "by_status": dict(Counter(t.status.value for t in tests)),
            "significant_results": len(significant),
            "active_tests": active,
        }

    def _alert_section(self, start: float, end: float) -> dict[str, Any]:
        active = self._alerting.get_active_alerts()
        stats = self._alerting.get_alert_statistics(start, end)
        return {
            "active": [a.model_dump(mode="json") for a in active],
            "active_by_severity": dict(Counter(a.severity.value for a in active)),
            "statistics": asdict(stats),
        }
