"""
Threshold & Anomaly Alerting Engine

Evaluates operator-defined thresholds against the Metrics Recorder on a
fixed tick, raises alerts with a per-threshold cooldown, and separately
turns statistical anomalies into alerts.

Per threshold, per tick:
    1. Skip while ``now - last_fired < cooldown``
    2. Aggregate each condition's trailing window; no decision when the
       window holds fewer than ``minimum_data_points`` samples
    3. Change operators compare against the preceding equal window
    4. When every condition holds, persist an Alert, record the firing
       time and notify every enabled target

Steps 1 to 4 up to persisting run under the threshold's own lock, so two
concurrent ticks can never both fire the same threshold. Notification
happens after the lock is released.
"""

import asyncio
import logging
import threading
import time
from collections import Counter, defaultdict
from typing import Any, Callable

from aiops.alerting.models import (
    SEVERITY_RANK,
    Alert,
    AlertCondition,
    AlertSeverity,
    AlertStatistics,
    AlertStatus,
    AlertThreshold,
    AlertType,
    ComparisonOperator,
    NotificationChannel,
    NotificationTarget,
    ThresholdEvaluation,
    default_thresholds,
    parse_time_window,
    validate_threshold,
)
from aiops.alerting.notifiers import DeliveryResult, Notifier, notify_all
from aiops.errors import InvalidTransitionError, NotFoundError
from aiops.metrics.recorder import AggregateStats, MetricsRecorder
from aiops.metrics.stats import percent_change
from aiops.storage.repository import ALERTS, AppendOnlyStore, latest_by_id

logger = logging.getLogger(__name__)

BASELINE_WINDOW_SECONDS = 24 * 3600


def metric_value(stats: AggregateStats, metric: str) -> float:
    """Read a threshold metric from aggregate statistics."""
    match metric:
        case "average_latency":
            return stats.avg_latency
        case "average_quality":
            return stats.avg_quality
        case "total_cost":
            return stats.total_cost
        case "average_cost":
            return stats.avg_cost
        case "success_rate":
            return stats.success_rate
        case "error_rate":
            return stats.error_rate
        case "total_requests" | "data_points":
            return float(stats.count)
        case _:
            raise ValueError(f"Unknown metric: {metric}")


def compare(operator: ComparisonOperator, value: float, threshold: float) -> bool:
    """
    Apply a comparison operator.

    For change operators ``value`` is the percent change; ``change_lt``
    holds when the metric fell by more than ``threshold`` percent.
    """
    match operator:
        case ComparisonOperator.GT | ComparisonOperator.CHANGE_GT:
            return value > threshold
        case ComparisonOperator.LT:
            return value < threshold
        case ComparisonOperator.GTE:
            return value >= threshold
        case ComparisonOperator.LTE:
            return value <= threshold
        case ComparisonOperator.EQ:
            return value == threshold
        case ComparisonOperator.NE:
            return value != threshold
        case ComparisonOperator.CHANGE_LT:
            return value < -threshold


class AlertingEngine:
    """
    Threshold evaluation, anomaly scanning and alert lifecycle.

    Example:
        engine = AlertingEngine(recorder, store, notifiers)
        evaluations = await engine.check_thresholds()
        for alert in engine.get_active_alerts():
            engine.acknowledge(alert.id, user="oncall")
    """

    def __init__(
        self,
        recorder: MetricsRecorder,
        store: AppendOnlyStore,
        notifiers: dict[NotificationChannel, Notifier],
        clock: Callable[[], float] | None = None,
        thresholds: list[AlertThreshold] | None = None,
        anomaly_sensitivity: str = "medium",
        anomaly_targets: list[NotificationTarget] | None = None,
    ):
        """
        Initialize the engine.

        Args:
            recorder: Source of aggregate statistics and anomalies
            store: Append-only store for alert rows
            notifiers: Notifier per channel
            clock: Time source; defaults to the recorder's clock
            thresholds: Initial thresholds; defaults are installed when None
            anomaly_sensitivity: Profile used by the anomaly scan
            anomaly_targets: Where anomaly alerts are delivered (console)
        """
        self._recorder = recorder
        self._store = store
        self._notifiers = notifiers
        self._clock = clock or recorder.clock
        self._sensitivity = anomaly_sensitivity
        self._anomaly_targets = anomaly_targets or [
            NotificationTarget(channel=NotificationChannel.CONSOLE)
        ]

        self._lock = threading.Lock()
        self._thresholds: dict[str, AlertThreshold] = {}
        self._threshold_locks: dict[str, threading.Lock] = defaultdict(threading.Lock)
        self._last_fired: dict[str, float] = {}
        self._baselines: dict[str, float] = {}

        for threshold in default_thresholds() if thresholds is None else thresholds:
            self.add_threshold(threshold)

    # ------------------------------------------------------------------
    # Threshold configuration
    # ------------------------------------------------------------------

    def add_threshold(self, threshold: AlertThreshold) -> AlertThreshold:
        """
        Register a threshold.

        Raises:
            ConfigurationError: Unknown metric or malformed time window
        """
        validate_threshold(threshold)
        with self._lock:
            self._thresholds[threshold.id] = threshold
        logger.info(f"Alert threshold registered: {threshold.name} ({threshold.id})")
        return threshold

    def get_threshold(self, threshold_id: str) -> AlertThreshold:
        with self._lock:
            threshold = self._thresholds.get(threshold_id)
        if threshold is None:
            raise NotFoundError(f"Alert threshold not found: {threshold_id}")
        return threshold

    def list_thresholds(self) -> list[AlertThreshold]:
        with self._lock:
            return list(self._thresholds.values())

    def update_threshold(
        self, threshold_id: str, changes: dict[str, Any]
    ) -> AlertThreshold:
        """
        Apply a partial update; the result is re-validated as a whole.

        Raises:
            NotFoundError: Unknown threshold
            ConfigurationError: The updated threshold is invalid
        """
        current = self.get_threshold(threshold_id)
        merged = {**current.model_dump(), **changes, "id": threshold_id}
        updated = validate_threshold(AlertThreshold.model_validate(merged))
        with self._lock:
            self._thresholds[threshold_id] = updated
        logger.info(f"Alert threshold updated: {threshold_id}")
        return updated

    def delete_threshold(self, threshold_id: str) -> None:
        with self._lock:
            if self._thresholds.pop(threshold_id, None) is None:
                raise NotFoundError(f"Alert threshold not found: {threshold_id}")
            self._last_fired.pop(threshold_id, None)
        logger.info(f"Alert threshold deleted: {threshold_id}")

    def last_fired_at(self, threshold_id: str) -> float | None:
        with self._lock:
            return self._last_fired.get(threshold_id)

    # ------------------------------------------------------------------
    # Threshold evaluation
    # ------------------------------------------------------------------

    def _evaluate_condition(
        self, condition: AlertCondition, now: float
    ) -> tuple[bool, float] | None:
        """Return (holds, observed value), or None when data is insufficient."""
        window = parse_time_window(condition.time_window)
        filters = {"operation": condition.operation, "model": condition.model}
        stats = self._recorder.aggregate(now - window, now, **filters)

        samples = (
            stats.quality_samples
            if condition.metric == "average_quality"
            else stats.count
        )
        if samples < condition.minimum_data_points:
            return None

        current = metric_value(stats, condition.metric)
        if condition.operator.is_change:
            previous_stats = self._recorder.aggregate(
                now - 2 * window, now - window, **filters
            )
            observed = percent_change(
                current, metric_value(previous_stats, condition.metric)
            )
        else:
            observed = current
        return compare(condition.operator, observed, condition.value), observed

    def evaluate_threshold(self, threshold_id: str) -> ThresholdEvaluation:
        """
        Evaluate one threshold and persist an alert if it fires.

        Does not notify; ``check_thresholds`` delivers notifications.
        The cooldown check and the firing time update are atomic per
        threshold.
        """
        threshold = self.get_threshold(threshold_id)
        if not threshold.enabled:
            return ThresholdEvaluation(threshold.id, "disabled")

        with self._threshold_locks[threshold.id]:
            now = self._clock()
            last = self.last_fired_at(threshold.id)
            if last is not None and now - last < threshold.cooldown_seconds:
                return ThresholdEvaluation(threshold.id, "cooldown")

            values: dict[str, float] = {}
            all_hold = True
            for condition in threshold.conditions:
                outcome = self._evaluate_condition(condition, now)
                if outcome is None:
                    return ThresholdEvaluation(threshold.id, "insufficient_data", values)
                holds, observed = outcome
                values[condition.metric] = observed
                all_hold = all_hold and holds

            if not all_hold:
                return ThresholdEvaluation(threshold.id, "not_met", values)

            alert = self.create_alert(
                alert_type=threshold.resolved_type,
                severity=threshold.severity,
                title=threshold.name,
                message=self._describe(threshold, values),
                metric_snapshot=values,
                threshold_id=threshold.id,
            )
            with self._lock:
                self._last_fired[threshold.id] = now
            return ThresholdEvaluation(threshold.id, "fired", values, alert)

    @staticmethod
    def _describe(threshold: AlertThreshold, values: dict[str, float]) -> str:
        parts = []
        for condition in threshold.conditions:
            observed = values.get(condition.metric, 0.0)
            unit = "% change" if condition.operator.is_change else ""
            parts.append(
                f"{condition.metric} {observed:.2f}{unit} "
                f"{condition.operator.value} {condition.value:g} "
                f"over {condition.time_window}"
            )
        return "; ".join(parts)

    async def check_thresholds(self) -> list[ThresholdEvaluation]:
        """
        Evaluate every enabled threshold and notify for those that fire.

        Evaluation runs in a worker thread so store reads do not stall
        the event loop.
        A threshold that fails to evaluate is logged and skipped.
        """
        evaluations = []
        for threshold in self.list_thresholds():
            if not threshold.enabled:
                continue
            try:
                evaluation = await asyncio.to_thread(
                    self.evaluate_threshold, threshold.id
                )
            except NotFoundError:
                # deleted while the tick was running
                continue
            except Exception:
                logger.exception(f"Threshold {threshold.id} evaluation failed")
                continue
            evaluations.append(evaluation)
            if evaluation.fired and evaluation.alert is not None:
                await self.notify(evaluation.alert, threshold.notifications)
        return evaluations

    async def notify(
        self, alert: Alert, targets: list[NotificationTarget]
    ) -> list[DeliveryResult]:
        """Deliver to every enabled target; failures are isolated per target."""
        results = await notify_all(alert, targets, self._notifiers)
        failed = [r.channel for r in results if not r.success]
        if failed:
            logger.warning(f"Alert {alert.id} not delivered to: {', '.join(failed)}")
        return results

    # ------------------------------------------------------------------
    # Anomalies and baselines
    # ------------------------------------------------------------------

    async def scan_anomalies(self, lookback_hours: float = 24) -> list[Alert]:
        """
        Turn high and critical anomalies into alerts.

        There is no cooldown here; repeated anomalies produce repeated
        alerts for operators to acknowledge.
        """
        anomalies = await asyncio.to_thread(
            self._recorder.detect_anomalies, lookback_hours, self._sensitivity
        )
        alerts = []
        for anomaly in anomalies:
            if anomaly.severity not in ("high", "critical"):
                continue
            alert = self.create_alert(
                alert_type=AlertType.ANOMALY_DETECTED,
                severity=AlertSeverity(anomaly.severity),
                title=f"{anomaly.type.replace('_', ' ').title()} anomaly",
                message=anomaly.description,
                metric_snapshot={
                    anomaly.type: anomaly.value,
                    "reference": anomaly.reference,
                },
                details={
                    "affected_operations": anomaly.affected_operations,
                    "model": anomaly.model,
                    "recommendation": anomaly.recommendation,
                },
            )
            await self.notify(alert, self._anomaly_targets)
            alerts.append(alert)
        return alerts

    def update_baselines(self) -> dict[str, float]:
        """Recompute 24h baseline averages."""
        now = self._clock()
        stats = self._recorder.aggregate(now - BASELINE_WINDOW_SECONDS, now)
        baselines = {
            "average_latency": stats.avg_latency,
            "average_cost": stats.avg_cost,
            "average_quality": stats.avg_quality,
            "error_rate": stats.error_rate,
            "sample_count": float(stats.count),
            "updated_at": now,
        }
        with self._lock:
            self._baselines = baselines
        logger.debug(f"Baselines updated from {stats.count} records")
        return dict(baselines)

    def get_baselines(self) -> dict[str, float]:
        with self._lock:
            return dict(self._baselines)

    # ------------------------------------------------------------------
    # Alert lifecycle
    # ------------------------------------------------------------------

    def create_alert(
        self,
        alert_type: AlertType,
        severity: AlertSeverity,
        title: str,
        message: str,
        metric_snapshot: dict[str, float] | None = None,
        threshold_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> Alert:
        """Persist a new active alert."""
        alert = Alert(
            type=alert_type,
            severity=severity,
            title=title,
            message=message,
            metric_snapshot=metric_snapshot or {},
            threshold_id=threshold_id,
            details=details or {},
            created_at=self._clock(),
        )
        self._store.append(ALERTS, alert.to_row())
        logger.warning(
            f"Alert created: {alert.title} ({alert.type.value}, {alert.severity.value})"
        )
        return alert

    def get_alert(self, alert_id: str) -> Alert:
        rows = self._store.query(ALERTS, id=alert_id)
        if not rows:
            raise NotFoundError(f"Alert not found: {alert_id}")
        return Alert.from_row(rows[-1])

    def _transition(
        self, alert_id: str, allowed: tuple[AlertStatus, ...], **changes: Any
    ) -> Alert:
        with self._lock:
            alert = self.get_alert(alert_id)
            if alert.status not in allowed:
                raise InvalidTransitionError(
                    f"Alert {alert_id} is {alert.status.value}; cannot move to "
                    f"{changes['status'].value}"
                )
            updated = alert.model_copy(update=changes)
            self._store.append(ALERTS, updated.to_row())
        logger.info(f"Alert {alert_id} is now {updated.status.value}")
        return updated

    def acknowledge(self, alert_id: str, user: str | None = None) -> Alert:
        """active -> acknowledged"""
        return self._transition(
            alert_id,
            (AlertStatus.ACTIVE,),
            status=AlertStatus.ACKNOWLEDGED,
            acknowledged_at=self._clock(),
            acknowledged_by=user,
        )

    def resolve(self, alert_id: str, note: str | None = None) -> Alert:
        """active or acknowledged -> resolved"""
        return self._transition(
            alert_id,
            (AlertStatus.ACTIVE, AlertStatus.ACKNOWLEDGED),
            status=AlertStatus.RESOLVED,
            resolved_at=self._clock(),
            resolution_note=note,
        )

    def suppress(self, alert_id: str) -> Alert:
        """active -> suppressed"""
        return self._transition(
            alert_id,
            (AlertStatus.ACTIVE,),
            status=AlertStatus.SUPPRESSED,
            suppressed_at=self._clock(),
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _current_alerts(
        self, start: float | None = None, end: float | None = None
    ) -> list[Alert]:
        rows = latest_by_id(self._store.query(ALERTS, start, end))
        return [Alert.from_row(r) for r in rows]

    def get_active_alerts(self) -> list[Alert]:
        """Active alerts, most severe first, newest first within a severity."""
        active = [a for a in self._current_alerts() if a.status == AlertStatus.ACTIVE]
        active.sort(key=lambda a: (-SEVERITY_RANK[a.severity], -a.created_at))
        return active

    def get_alert_history(
        self,
        start: float | None = None,
        end: float | None = None,
        severity: AlertSeverity | None = None,
        alert_type: AlertType | None = None,
    ) -> list[Alert]:
        """Current state of alerts created in a range, newest first."""
        alerts = self._current_alerts(start, end)
        if severity is not None:
            alerts = [a for a in alerts if a.severity == severity]
        if alert_type is not None:
            alerts = [a for a in alerts if a.type == alert_type]
        alerts.sort(key=lambda a: a.created_at, reverse=True)
        return alerts

    def get_alert_statistics(
        self, start: float | None = None, end: float | None = None
    ) -> AlertStatistics:
        """Counts by severity, type and status plus MTTR in minutes."""
        alerts = self._current_alerts(start, end)
        if not alerts:
            return AlertStatistics()

        resolution_times = [
            a.resolution_minutes for a in alerts if a.resolution_minutes is not None
        ]
        by_status = Counter(a.status.value for a in alerts)
        return AlertStatistics(
            total=len(alerts),
            active=by_status.get(AlertStatus.ACTIVE.value, 0),
            resolved=by_status.get(AlertStatus.RESOLVED.value, 0),
            by_severity=dict(Counter(a.severity.value for a in alerts)),
            by_type=dict(Counter(a.type.value for a in alerts)),
            by_status=dict(by_status),
            mean_time_to_resolution_minutes=(
                sum(resolution_times) / len(resolution_times)
                if resolution_times
                else 0.0
            ),
        )

    # ------------------------------------------------------------------
    # Periodic tasks
    # ------------------------------------------------------------------

    async def run_threshold_checks(self, interval_seconds: float) -> None:
        """Threshold loop; runs until cancelled."""
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await self.check_thresholds()
            except Exception:
                logger.exception("Threshold check tick failed")

    async def run_anomaly_scans(self, interval_seconds: float) -> None:
        """Anomaly loop; runs until cancelled."""
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await self.scan_anomalies()
            except Exception:
                logger.exception("Anomaly scan tick failed")

    async def run_baseline_updates(self, interval_seconds: float) -> None:
        """Baseline loop; runs until cancelled."""
        while True:
            try:
                await asyncio.to_thread(self.update_baselines)
            except Exception:
                logger.exception("Baseline update tick failed")
            await asyncio.sleep(interval_seconds)
