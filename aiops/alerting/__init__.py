"""
Alerting Module: Thresholds, Anomaly Alerts and Notifications

Components:
    AlertingEngine: Threshold evaluation with cooldowns, anomaly scans,
        alert lifecycle and statistics
    AlertThreshold / AlertCondition: Operator-defined rules
    Alert: Append-only alert rows
    Notifiers: Console, webhook, Slack, Teams and e-mail delivery

Usage:
    from aiops.alerting import AlertingEngine, default_notifiers

    engine = AlertingEngine(recorder, store, default_notifiers(settings))
    await engine.check_thresholds()
"""

# Models
from aiops.alerting.models import (
    THRESHOLD_METRICS,
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
    alert_type_for,
    default_thresholds,
    parse_time_window,
    validate_threshold,
)

# Notification
from aiops.alerting.notifiers import (
    ConsoleNotifier,
    DeliveryResult,
    EmailNotifier,
    Notifier,
    SlackNotifier,
    TeamsNotifier,
    WebhookNotifier,
    default_notifiers,
    notify_all,
)

# Engine
from aiops.alerting.engine import AlertingEngine, compare, metric_value


__all__ = [
    # Models
    "THRESHOLD_METRICS",
    "Alert",
    "AlertCondition",
    "AlertSeverity",
    "AlertStatistics",
    "AlertStatus",
    "AlertThreshold",
    "AlertType",
    "ComparisonOperator",
    "NotificationChannel",
    "NotificationTarget",
    "ThresholdEvaluation",
    "alert_type_for",
    "default_thresholds",
    "parse_time_window",
    "validate_threshold",
    # Notification
    "ConsoleNotifier",
    "DeliveryResult",
    "EmailNotifier",
    "Notifier",
    "SlackNotifier",
    "TeamsNotifier",
    "WebhookNotifier",
    "default_notifiers",
    "notify_all",
    # Engine
    "AlertingEngine",
    "compare",
    "metric_value",
]
