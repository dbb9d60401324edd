"""
Metrics Recorder for Model Invocations

Ingests one MetricRecord per model invocation and answers time-windowed
questions about them: aggregate statistics, IQR anomalies, per-model and
per-operation breakdowns, and optimization recommendations.

Writes never wait on persistence. ``record()`` appends to a pending buffer
under a short lock; ``flush()`` moves buffered records to the append-only
store in batches and puts them back if the store is unavailable. Reads
combine the durable store with a snapshot of the buffer, serialized
against flushes so that no record is counted twice or missed.
"""

import asyncio
import logging
import threading
import time
import uuid
from collections import defaultdict, deque
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass, field
from typing import Any, AsyncIterator, Callable

from aiops.metrics.cost import CostCalculator
from aiops.metrics.stats import clamp, interquartile_range, mean, median, percentile
from aiops.registry.models import provider_for
from aiops.storage.repository import METRIC_RECORDS, AppendOnlyStore

logger = logging.getLogger(__name__)

SENSITIVITY_MULTIPLIERS = {"low": 3.0, "medium": 2.0, "high": 1.5}

ERROR_RATE_FLOOR = 5.0
ERROR_RATE_CRITICAL = 20.0


@dataclass(frozen=True)
class MetricRecord:
    """
    Immutable record of a single model invocation.

    Attributes:
        operation: Named category of invocation (e.g. 'generate_okr')
        model: Model identifier, ``provider/name`` form
        start_time: Unix timestamp when the call started
        end_time: Unix timestamp when the call finished
        input_tokens: Prompt tokens
        output_tokens: Completion tokens
        cost: Monetary cost in USD
        success: Whether the call succeeded
        quality_score: Quality of the output (0-100), None if unscored
        user_id: Optional end-user identifier
        provider: Provider name, derived from the model prefix when empty
        request_id: Unique id of the invocation
        error: Error message for failed calls
    """

    operation: str
    model: str
    start_time: float
    end_time: float
    input_tokens: int = 0
    output_tokens: int = 0
    cost: float = 0.0
    success: bool = True
    quality_score: float | None = None
    user_id: str | None = None
    provider: str = ""
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    error: str | None = None

    def __post_init__(self) -> None:
        if not self.provider:
            object.__setattr__(self, "provider", provider_for(self.model))

    @property
    def latency_ms(self) -> float:
        """Call duration in milliseconds."""
        return (self.end_time - self.start_time) * 1000

    @property
    def total_tokens(self) -> int:
        """Total tokens processed (input + output)."""
        return self.input_tokens + self.output_tokens

    @property
    def timestamp(self) -> float:
        """Time the record belongs to for windowing (its end time)."""
        return self.end_time

    def to_row(self) -> dict[str, Any]:
        """Serialize for the append-only store."""
        row = asdict(self)
        row["timestamp"] = self.timestamp
        return row

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "MetricRecord":
        """Rebuild a record from a stored row."""
        data = {k: v for k, v in row.items() if k != "timestamp"}
        return cls(**data)


@dataclass
class AggregateStats:
    """
    Aggregate statistics over a set of MetricRecords.

    Rates are percentages (0-100). Every field is zero when the window is
    empty.
    """

    count: int = 0
    success_count: int = 0
    avg_latency: float = 0.0
    median_latency: float = 0.0
    p95_latency: float = 0.0
    p99_latency: float = 0.0
    total_cost: float = 0.0
    avg_cost: float = 0.0
    total_tokens: int = 0
    cost_per_token: float = 0.0
    success_rate: float = 0.0
    error_rate: float = 0.0
    avg_quality: float = 0.0
    quality_samples: int = 0

    @property
    def has_data(self) -> bool:
        return self.count > 0


def compute_stats(records: list[MetricRecord]) -> AggregateStats:
    """
    Fold a list of records into AggregateStats.

    Args:
        records: Records to aggregate (any order)

    Returns:
        AggregateStats; all zeros when ``records`` is empty
    """
    if not records:
        return AggregateStats()

    count = len(records)
    successes = sum(1 for r in records if r.success)
    latencies = [r.latency_ms for r in records]
    total_cost = sum(r.cost for r in records)
    total_tokens = sum(r.total_tokens for r in records)
    qualities = [r.quality_score for r in records if r.quality_score is not None]

    return AggregateStats(
        count=count,
        success_count=successes,
        avg_latency=mean(latencies),
        median_latency=median(latencies),
        p95_latency=percentile(latencies, 95),
        p99_latency=percentile(latencies, 99),
        total_cost=total_cost,
        avg_cost=total_cost / count,
        total_tokens=total_tokens,
        cost_per_token=total_cost / total_tokens if total_tokens else 0.0,
        success_rate=successes / count * 100,
        error_rate=(count - successes) / count * 100,
        avg_quality=mean(qualities),
        quality_samples=len(qualities),
    )


@dataclass
class Anomaly:
    """
    Statistical outlier found by ``detect_anomalies``.

    Attributes:
        type: 'latency', 'cost' or 'error_rate'
        severity: 'high' or 'critical'
        value: Observed value
        reference: Median (point anomalies) or baseline rate (error rate)
        spread: Interquartile range used for the decision (0 for error rate)
        description: Human-readable summary
        affected_operations: Operations the outlier belongs to
        model: Model of the outlying record, if any
        detected_at: Unix timestamp of detection
        recommendation: Suggested next step
    """

    type: str
    severity: str
    value: float
    reference: float
    spread: float
    description: str
    affected_operations: list[str]
    model: str | None
    detected_at: float
    recommendation: str


@dataclass
class ModelComparison:
    """Per-model statistics and composite score."""

    model: str
    provider: str
    stats: AggregateStats
    score: float


@dataclass
class Recommendation:
    """Rule-based optimization hint."""

    category: str  # "performance" | "reliability" | "quality" | "cost"
    priority: str  # "high" | "medium" | "low"
    title: str
    description: str
    affected: list[str] = field(default_factory=list)


@dataclass
class TrackedCall:
    """Mutable usage holder filled in inside ``MetricsRecorder.track``."""

    input_tokens: int = 0
    output_tokens: int = 0
    quality_score: float | None = None


class MetricsRecorder:
    """
    Thread-safe recorder of model invocations.

    Example:
        recorder = MetricsRecorder(InMemoryStore())
        recorder.record_invocation(
            operation="generate_okr",
            model="openai/gpt-4o-mini",
            start_time=t0,
            end_time=t1,
            input_tokens=150,
            output_tokens=400,
        )
        stats = recorder.aggregate(t0 - 3600, t1)
        print(f"Success rate: {stats.success_rate:.1f}%")
    """

    def __init__(
        self,
        store: AppendOnlyStore,
        cost_calculator: CostCalculator | None = None,
        clock: Callable[[], float] = time.time,
        batch_size: int = 500,
        max_history: int = 10000,
    ):
        """
        Initialize the recorder.

        Args:
            store: Durable append-only store, the source of truth
            cost_calculator: Prices records created via record_invocation
            clock: Time source (unix seconds)
            batch_size: Maximum records written per flush
            max_history: Recent records kept in process for get_recent
        """
        self._store = store
        self._costs = cost_calculator or CostCalculator()
        self._clock = clock
        self._batch_size = batch_size

        self._lock = threading.Lock()
        self._flush_lock = threading.Lock()
        self._pending: list[MetricRecord] = []
        self._history: deque[MetricRecord] = deque(maxlen=max_history)

    @property
    def clock(self) -> Callable[[], float]:
        return self._clock

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    def record(self, metric: MetricRecord) -> None:
        """
        Record a new invocation metric.

        Thread-safe and non-blocking with respect to persistence.

        Args:
            metric: The record to append
        """
        with self._lock:
            self._pending.append(metric)
            self._history.append(metric)

    def record_invocation(
        self,
        operation: str,
        model: str,
        start_time: float,
        end_time: float,
        input_tokens: int = 0,
        output_tokens: int = 0,
        success: bool = True,
        quality_score: float | None = None,
        user_id: str | None = None,
        error: str | None = None,
        cost: float | None = None,
    ) -> MetricRecord:
        """
        Build, price and record a MetricRecord.

        When ``cost`` is None it is computed from registry pricing.

        Returns:
            The recorded MetricRecord
        """
        if cost is None:
            cost = self._costs.cost_for(model, input_tokens, output_tokens)
        metric = MetricRecord(
            operation=operation,
            model=model,
            start_time=start_time,
            end_time=end_time,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost=cost,
            success=success,
            quality_score=None if quality_score is None else clamp(quality_score),
            user_id=user_id,
            error=error,
        )
        self.record(metric)
        return metric

    @asynccontextmanager
    async def track(
        self, operation: str, model: str, user_id: str | None = None
    ) -> AsyncIterator[TrackedCall]:
        """
        Time a block of code and record it as one invocation.

        The block may fill in token usage and quality on the yielded
        TrackedCall. Exceptions are recorded as failures and re-raised.

        Example:
            async with recorder.track("chat_completion", "openai/gpt-4o") as call:
                result = await invoker.invoke(...)
                call.input_tokens = result.input_tokens
                call.output_tokens = result.output_tokens
        """
        call = TrackedCall()
        start = self._clock()
        try:
            yield call
        except Exception as e:
            logger.error(
                f"Tracked invocation failed: operation={operation}, model={model}, "
                f"error={e}"
            )
            self.record_invocation(
                operation=operation,
                model=model,
                start_time=start,
                end_time=self._clock(),
                input_tokens=call.input_tokens,
                output_tokens=call.output_tokens,
                success=False,
                user_id=user_id,
                error=str(e),
            )
            raise
        self.record_invocation(
            operation=operation,
            model=model,
            start_time=start,
            end_time=self._clock(),
            input_tokens=call.input_tokens,
            output_tokens=call.output_tokens,
            success=True,
            quality_score=call.quality_score,
            user_id=user_id,
        )

    def flush(self) -> int:
        """
        Write one batch of buffered records to the store.

        On store failure the batch is returned to the head of the buffer
        and the failure is logged.

        Returns:
            Number of records persisted
        """
        with self._flush_lock:
            with self._lock:
                batch = self._pending[: self._batch_size]
                del self._pending[: len(batch)]
            if not batch:
                return 0
            try:
                self._store.append_many(METRIC_RECORDS, [m.to_row() for m in batch])
            except Exception as e:
                logger.error(f"Metric flush failed, re-buffering {len(batch)} records: {e}")
                with self._lock:
                    self._pending[:0] = batch
                return 0
            logger.debug(f"Flushed {len(batch)} metric records")
            return len(batch)

    def flush_all(self) -> int:
        """Flush until the buffer is empty or the store refuses a batch."""
        total = 0
        while True:
            written = self.flush()
            total += written
            if written < self._batch_size:
                return total

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    async def run_flusher(self, interval_seconds: float) -> None:
        """Periodic flush loop; runs until cancelled."""
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await asyncio.to_thread(self.flush_all)
            except Exception:
                logger.exception("Metric flush tick failed")

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    def query(
        self,
        start: float,
        end: float,
        operation: str | None = None,
        model: str | None = None,
        provider: str | None = None,
        user_id: str | None = None,
    ) -> list[MetricRecord]:
        """
        Return records with ``start <= timestamp <= end`` matching filters.

        Combines durable rows with the unflushed buffer.
        """
        filters = {
            "operation": operation,
            "model": model,
            "provider": provider,
            "user_id": user_id,
        }
        with self._flush_lock:
            rows = self._store.query(METRIC_RECORDS, start, end, **filters)
            with self._lock:
                pending = list(self._pending)

        records = [MetricRecord.from_row(r) for r in rows]
        for m in pending:
            if not start <= m.timestamp <= end:
                continue
            if any(v is not None and getattr(m, k) != v for k, v in filters.items()):
                continue
            records.append(m)
        return records

    def aggregate(
        self,
        start: float,
        end: float,
        operation: str | None = None,
        model: str | None = None,
        provider: str | None = None,
        user_id: str | None = None,
    ) -> AggregateStats:
        """
        Aggregate statistics over a time range.

        Returns:
            AggregateStats; count and every rate are 0 when no record matches
        """
        return compute_stats(
            self.query(start, end, operation, model, provider, user_id)
        )

    def get_recent(self, count: int = 100) -> list[MetricRecord]:
        """
        Get most recent records seen by this process.

        Args:
            count: Number of recent records to return
        """
        with self._lock:
            return list(self._history)[-count:]

    def detect_anomalies(
        self, lookback_hours: float = 24, sensitivity: str = "medium"
    ) -> list[Anomaly]:
        """
        Find latency/cost outliers and error-rate spikes.

        A latency or cost point is anomalous when its distance from the
        window median exceeds ``m * IQR`` (m from the sensitivity profile);
        it is critical beyond ``2m * IQR``. The window error rate is
        compared with the preceding window of equal length.

        Args:
            lookback_hours: Window length ending now
            sensitivity: 'low', 'medium' or 'high'

        Returns:
            List of Anomaly, possibly empty
        """
        multiplier = SENSITIVITY_MULTIPLIERS.get(sensitivity)
        if multiplier is None:
            raise ValueError(f"Unknown sensitivity: {sensitivity}")

        now = self._clock()
        window = lookback_hours * 3600
        records = self.query(now - window, now)
        anomalies: list[Anomaly] = []

        for metric_name, getter in (
            ("latency", lambda r: r.latency_ms),
            ("cost", lambda r: r.cost),
        ):
            anomalies.extend(
                self._point_anomalies(metric_name, records, getter, multiplier, now)
            )

        baseline = compute_stats(self.query(now - 2 * window, now - window))
        current = compute_stats(records)
        if current.count and current.error_rate > max(
            baseline.error_rate * 2, ERROR_RATE_FLOOR
        ):
            failing = sorted({r.operation for r in records if not r.success})
            anomalies.append(
                Anomaly(
                    type="error_rate",
                    severity=(
                        "critical"
                        if current.error_rate > ERROR_RATE_CRITICAL
                        else "high"
                    ),
                    value=current.error_rate,
                    reference=baseline.error_rate,
                    spread=0.0,
                    description=(
                        f"Error rate {current.error_rate:.1f}% "
                        f"(baseline {baseline.error_rate:.1f}%)"
                    ),
                    affected_operations=failing,
                    model=None,
                    detected_at=now,
                    recommendation="Check provider connectivity and fallback configuration",
                )
            )

        if anomalies:
            logger.info(f"Detected {len(anomalies)} anomalies over {lookback_hours}h")
        return anomalies

    @staticmethod
    def _point_anomalies(
        metric_name: str,
        records: list[MetricRecord],
        getter: Callable[[MetricRecord], float],
        multiplier: float,
        now: float,
    ) -> list[Anomaly]:
        values = [getter(r) for r in records]
        if len(values) < 4:
            return []
        center = median(values)
        spread = interquartile_range(values)
        if spread <= 0:
            return []

        found = []
        for record, value in zip(records, values):
            deviation = abs(value - center)
            if deviation <= multiplier * spread:
                continue
            severity = "critical" if deviation > 2 * multiplier * spread else "high"
            found.append(
                Anomaly(
                    type=metric_name,
                    severity=severity,
                    value=value,
                    reference=center,
                    spread=spread,
                    description=(
                        f"{metric_name} {value:.4g} deviates {deviation:.4g} from "
                        f"median {center:.4g} (IQR {spread:.4g})"
                    ),
                    affected_operations=[record.operation],
                    model=record.model,
                    detected_at=now,
                    recommendation=(
                        "Review model choice and prompt size"
                        if metric_name == "latency"
                        else "Consider a cheaper model or fewer tokens"
                    ),
                )
            )
        return found

    # ------------------------------------------------------------------
    # Breakdowns
    # ------------------------------------------------------------------

    def get_model_comparison(self, start: float, end: float) -> list[ModelComparison]:
        """
        Rank models seen in the window by a composite score.

        Score: 0.3 success rate, 0.25 latency (100 - ms/100), 0.25 cost
        (100 - avg_cost*10000), 0.2 quality (50 when unscored). Each
        component is clamped to [0, 100].
        """
        by_model: dict[str, list[MetricRecord]] = defaultdict(list)
        for record in self.query(start, end):
            by_model[record.model].append(record)

        comparisons = []
        for model, records in by_model.items():
            stats = compute_stats(records)
            quality = stats.avg_quality if stats.quality_samples else 50.0
            score = (
                0.3 * clamp(stats.success_rate)
                + 0.25 * clamp(100 - stats.avg_latency / 100)
                + 0.25 * clamp(100 - stats.avg_cost * 10000)
                + 0.2 * clamp(quality)
            )
            comparisons.append(
                ModelComparison(
                    model=model,
                    provider=records[0].provider,
                    stats=stats,
                    score=score,
                )
            )
        comparisons.sort(key=lambda c: c.score, reverse=True)
        return comparisons

    def get_operation_breakdown(
        self, start: float, end: float, **filters: Any
    ) -> dict[str, AggregateStats]:
        """Aggregate statistics per operation, busiest first."""
        by_operation: dict[str, list[MetricRecord]] = defaultdict(list)
        for record in self.query(start, end, **filters):
            by_operation[record.operation].append(record)
        breakdown = {op: compute_stats(rs) for op, rs in by_operation.items()}
        return dict(sorted(breakdown.items(), key=lambda kv: kv[1].count, reverse=True))

    def get_recommendations(self, start: float, end: float) -> list[Recommendation]:
        """
        Rule-based optimization recommendations for the window.

        Rules:
            - operation averaging over 5s latency
            - operation success rate below 95%
            - model average quality below 70
            - a model at least twice as expensive per call as another with
              quality within 5 points
        """
        recommendations: list[Recommendation] = []

        for operation, stats in self.get_operation_breakdown(start, end).items():
            if stats.avg_latency > 5000:
                recommendations.append(
                    Recommendation(
                        category="performance",
                        priority="high",
                        title=f"Slow operation: {operation}",
                        description=(
                            f"Average latency {stats.avg_latency:.0f}ms; consider a "
                            "faster model or caching"
                        ),
                        affected=[operation],
                    )
                )
            if stats.success_rate < 95:
                recommendations.append(
                    Recommendation(
                        category="reliability",
                        priority="high",
                        title=f"Unreliable operation: {operation}",
                        description=(
                            f"Success rate {stats.success_rate:.1f}%; review error "
                            "handling and fallbacks"
                        ),
                        affected=[operation],
                    )
                )

        models = self.get_model_comparison(start, end)
        for entry in models:
            if entry.stats.quality_samples and entry.stats.avg_quality < 70:
                recommendations.append(
                    Recommendation(
                        category="quality",
                        priority="medium",
                        title=f"Low quality from {entry.model}",
                        description=(
                            f"Average quality {entry.stats.avg_quality:.1f}; refine "
                            "prompts or switch models"
                        ),
                        affected=[entry.model],
                    )
                )

        scored = [m for m in models if m.stats.quality_samples and m.stats.avg_cost > 0]
        for expensive in scored:
            for cheap in scored:
                if cheap is expensive:
                    continue
                if (
                    cheap.stats.avg_cost * 2 <= expensive.stats.avg_cost
                    and cheap.stats.avg_quality >= expensive.stats.avg_quality - 5
                ):
                    recommendations.append(
                        Recommendation(
                            category="cost",
                            priority="medium",
                            title=f"Replace {expensive.model} with {cheap.model}",
                            description=(
                                f"{cheap.model} costs "
                                f"${cheap.stats.avg_cost:.5f} per call versus "
                                f"${expensive.stats.avg_cost:.5f} at similar quality"
                            ),
                            affected=[expensive.model, cheap.model],
                        )
                    )
                    break

        return recommendations
