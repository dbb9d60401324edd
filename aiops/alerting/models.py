"""
Alerting Data Models

Pydantic models for alert thresholds, their conditions and notification
targets, and the Alert rows produced when a threshold fires.

Thresholds are operator configuration; Alerts are append-only rows whose
lifecycle changes are written as new revisions with the same id.
"""

import re
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from aiops.errors import ConfigurationError


# =============================================================================
# ENUMERATIONS
# =============================================================================


class AlertType(str, Enum):
    """Category of an alert."""

    PERFORMANCE_DEGRADATION = "performance_degradation"
    COST_SPIKE = "cost_spike"
    QUALITY_DROP = "quality_drop"
    ERROR_RATE_HIGH = "error_rate_high"
    ANOMALY_DETECTED = "anomaly_detected"
    AB_TEST_CONCERN = "ab_test_concern"
    MODEL_FAILURE = "model_failure"
    THRESHOLD_BREACH = "threshold_breach"


class AlertSeverity(str, Enum):
    """Alert severity, ordered low to critical."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


SEVERITY_RANK = {
    AlertSeverity.LOW: 0,
    AlertSeverity.MEDIUM: 1,
    AlertSeverity.HIGH: 2,
    AlertSeverity.CRITICAL: 3,
}


class AlertStatus(str, Enum):
    """
    Alert lifecycle status.

    Transitions only move forward:
    ACTIVE -> ACKNOWLEDGED -> RESOLVED, ACTIVE -> RESOLVED,
    ACTIVE -> SUPPRESSED.
    """

    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"
    SUPPRESSED = "suppressed"


class ComparisonOperator(str, Enum):
    """Comparison applied between a metric and a threshold value."""

    GT = "gt"
    LT = "lt"
    GTE = "gte"
    LTE = "lte"
    EQ = "eq"
    NE = "ne"
    CHANGE_GT = "change_gt"
    CHANGE_LT = "change_lt"

    @property
    def is_change(self) -> bool:
        return self in (ComparisonOperator.CHANGE_GT, ComparisonOperator.CHANGE_LT)


class NotificationChannel(str, Enum):
    """Supported notification sinks."""

    CONSOLE = "console"
    WEBHOOK = "webhook"
    SLACK = "slack"
    TEAMS = "teams"
    EMAIL = "email"


# =============================================================================
# THRESHOLD CONFIGURATION
# =============================================================================


THRESHOLD_METRICS = (
    "average_latency",
    "average_quality",
    "total_cost",
    "average_cost",
    "success_rate",
    "error_rate",
    "total_requests",
    "data_points",
)

TIME_WINDOW_PATTERN = re.compile(r"^(\d+)([smhd])$")

_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600, "d": 86400}


def parse_time_window(window: str) -> float:
    """
    Convert a window such as ``15m`` or ``24h`` to seconds.

    Raises:
        ConfigurationError: If the window does not match ``<n><s|m|h|d>``
            or is zero
    """
    match = TIME_WINDOW_PATTERN.match(window or "")
    if match is None:
        raise ConfigurationError(
            f"Invalid time window {window!r}; expected a number followed by s, m, h or d"
        )
    seconds = int(match.group(1)) * _UNIT_SECONDS[match.group(2)]
    if seconds <= 0:
        raise ConfigurationError(f"Time window {window!r} must be positive")
    return float(seconds)


def alert_type_for(metric: str) -> AlertType:
    """Alert type implied by the metric a threshold watches."""
    if "latency" in metric:
        return AlertType.PERFORMANCE_DEGRADATION
    if "cost" in metric:
        return AlertType.COST_SPIKE
    if "quality" in metric:
        return AlertType.QUALITY_DROP
    if "error" in metric or "success" in metric:
        return AlertType.ERROR_RATE_HIGH
    return AlertType.THRESHOLD_BREACH


class NotificationTarget(BaseModel):
    """
    One place an alert is delivered to.

    ``url`` is used by webhook, slack and teams; ``recipients`` by email.
    """

    channel: NotificationChannel = Field(description="Delivery channel")
    enabled: bool = Field(default=True, description="Disabled targets are skipped")
    url: str | None = Field(default=None, description="Endpoint for HTTP channels")
    recipients: list[str] = Field(
        default_factory=list, description="E-mail addresses for the email channel"
    )


class AlertCondition(BaseModel):
    """
    A single comparison evaluated over a trailing time window.

    Example:
        {"metric": "average_latency", "operator": "gt", "value": 10000,
         "time_window": "15m", "minimum_data_points": 5}
    """

    metric: str = Field(description="One of THRESHOLD_METRICS")
    operator: ComparisonOperator = Field(description="Comparison operator")
    value: float = Field(description="Threshold value (percent for change operators)")
    time_window: str = Field(default="15m", description="Trailing window, e.g. 15m, 1h")
    minimum_data_points: int = Field(
        default=1, ge=1, description="Samples required before deciding"
    )
    operation: str | None = Field(default=None, description="Restrict to an operation")
    model: str | None = Field(default=None, description="Restrict to a model")


class AlertThreshold(BaseModel):
    """
    Operator-defined rule that raises an alert when all conditions hold.
    """

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    name: str = Field(min_length=1, max_length=200)
    description: str = ""
    conditions: list[AlertCondition] = Field(min_length=1)
    severity: AlertSeverity = AlertSeverity.MEDIUM
    enabled: bool = True
    cooldown_minutes: float = Field(default=30.0, ge=0)
    notifications: list[NotificationTarget] = Field(
        default_factory=lambda: [NotificationTarget(channel=NotificationChannel.CONSOLE)]
    )
    alert_type: AlertType | None = Field(
        default=None, description="Override of the type derived from the first metric"
    )

    @property
    def cooldown_seconds(self) -> float:
        return self.cooldown_minutes * 60

    @property
    def resolved_type(self) -> AlertType:
        return self.alert_type or alert_type_for(self.conditions[0].metric)


def validate_threshold(threshold: AlertThreshold) -> AlertThreshold:
    """
    Check semantic constraints pydantic cannot express.

    Raises:
        ConfigurationError: Unknown metric or malformed time window
    """
    for condition in threshold.conditions:
        if condition.metric not in THRESHOLD_METRICS:
            raise ConfigurationError(
                f"Unknown threshold metric {condition.metric!r}; "
                f"expected one of {', '.join(THRESHOLD_METRICS)}"
            )
        parse_time_window(condition.time_window)
    return threshold


def default_thresholds() -> list[AlertThreshold]:
    """Thresholds installed when the engine starts with none configured."""
    return [
        AlertThreshold(
            id="high_latency",
            name="High Latency",
            description="Average response latency is too high",
            conditions=[
                AlertCondition(
                    metric="average_latency",
                    operator=ComparisonOperator.GT,
                    value=10000,
                    time_window="15m",
                    minimum_data_points=5,
                )
            ],
            severity=AlertSeverity.HIGH,
            cooldown_minutes=30,
        ),
        AlertThreshold(
            id="cost_spike",
            name="Cost Spike",
            description="Spend more than tripled versus the previous hour",
            conditions=[
                AlertCondition(
                    metric="total_cost",
                    operator=ComparisonOperator.CHANGE_GT,
                    value=200,
                    time_window="1h",
                    minimum_data_points=3,
                )
            ],
            severity=AlertSeverity.CRITICAL,
            cooldown_minutes=60,
        ),
        AlertThreshold(
            id="quality_degradation",
            name="Quality Degradation",
            description="Average quality score dropped below acceptable level",
            conditions=[
                AlertCondition(
                    metric="average_quality",
                    operator=ComparisonOperator.LT,
                    value=70,
                    time_window="30m",
                    minimum_data_points=10,
                )
            ],
            severity=AlertSeverity.MEDIUM,
            cooldown_minutes=45,
        ),
        AlertThreshold(
            id="error_rate_spike",
            name="Error Rate Spike",
            description="Too many failed invocations",
            conditions=[
                AlertCondition(
                    metric="error_rate",
                    operator=ComparisonOperator.GT,
                    value=10,
                    time_window="10m",
                    minimum_data_points=5,
                )
            ],
            severity=AlertSeverity.HIGH,
            cooldown_minutes=20,
        ),
    ]


# =============================================================================
# ALERTS
# =============================================================================


class Alert(BaseModel):
    """
    An alert raised by a threshold, an anomaly scan or another component.

    ``metric_snapshot`` holds the values that caused it.
    """

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    type: AlertType
    severity: AlertSeverity
    status: AlertStatus = AlertStatus.ACTIVE
    title: str
    message: str
    threshold_id: str | None = None
    metric_snapshot: dict[str, float] = Field(default_factory=dict)
    details: dict[str, Any] = Field(default_factory=dict)
    created_at: float
    acknowledged_at: float | None = None
    acknowledged_by: str | None = None
    resolved_at: float | None = None
    resolution_note: str | None = None
    suppressed_at: float | None = None

    @property
    def resolution_minutes(self) -> float | None:
        if self.resolved_at is None:
            return None
        return (self.resolved_at - self.created_at) / 60

    def to_row(self) -> dict[str, Any]:
        row = self.model_dump(mode="json")
        row["timestamp"] = self.created_at
        return row

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Alert":
        return cls.model_validate({k: v for k, v in row.items() if k != "timestamp"})


@dataclass
class ThresholdEvaluation:
    """
    Outcome of evaluating one threshold on one tick.

    decision is one of 'fired', 'not_met', 'cooldown',
    'insufficient_data' or 'disabled'.
    """

    threshold_id: str
    decision: str
    values: dict[str, float] = field(default_factory=dict)
    alert: Alert | None = None

    @property
    def fired(self) -> bool:
        return self.decision == "fired"


@dataclass
class AlertStatistics:
    """Alert counts and mean time to resolution over a range."""

    total: int = 0
    active: int = 0
    resolved: int = 0
    by_severity: dict[str, int] = field(default_factory=dict)
    by_type: dict[str, int] = field(default_factory=dict)
    by_status: dict[str, int] = field(default_factory=dict)
    mean_time_to_resolution_minutes: float = 0.0
