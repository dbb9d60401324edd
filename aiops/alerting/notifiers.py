"""
Alert Notifiers

Fire-and-forget delivery of alerts to console, webhook, Slack, Teams and
e-mail sinks.

Every delivery attempt is isolated: ``notify_all`` runs targets
concurrently and converts each failure into a logged DeliveryResult, so
one broken channel never blocks the others or the alert itself.
"""

import asyncio
import logging
import smtplib
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from email.mime.text import MIMEText
from typing import Any

import httpx

from aiops.alerting.models import (
    Alert,
    AlertSeverity,
    NotificationChannel,
    NotificationTarget,
)
from aiops.config import Settings

logger = logging.getLogger(__name__)

SEVERITY_COLORS = {
    AlertSeverity.LOW: "#36a64f",
    AlertSeverity.MEDIUM: "#ff9900",
    AlertSeverity.HIGH: "#ff6600",
    AlertSeverity.CRITICAL: "#ff0000",
}


@dataclass
class DeliveryResult:
    """Outcome of delivering one alert to one target."""

    channel: str
    success: bool
    error: str | None = None


def _format_time(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


class Notifier(ABC):
    """Delivers an alert to a single target; raises on failure."""

    @abstractmethod
    async def send(self, alert: Alert, target: NotificationTarget) -> None: ...


class ConsoleNotifier(Notifier):
    """Writes the alert to the application log."""

    async def send(self, alert: Alert, target: NotificationTarget) -> None:
        level = (
            logging.ERROR
            if alert.severity in (AlertSeverity.HIGH, AlertSeverity.CRITICAL)
            else logging.WARNING
        )
        logger.log(
            level,
            f"ALERT [{alert.severity.value.upper()}] {alert.title}: {alert.message} "
            f"(type={alert.type.value}, id={alert.id})",
        )


class WebhookNotifier(Notifier):
    """
    POSTs a JSON payload to ``target.url``.

    Subclasses only change the payload shape.
    """

    def __init__(
        self,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._timeout = timeout_seconds
        self._transport = transport

    def build_payload(self, alert: Alert) -> dict[str, Any]:
        return {
            "alert": alert.model_dump(mode="json"),
            "timestamp": _format_time(alert.created_at),
        }

    async def send(self, alert: Alert, target: NotificationTarget) -> None:
        if not target.url:
            raise ValueError(f"{target.channel.value} target has no url")
        async with httpx.AsyncClient(
            timeout=self._timeout, transport=self._transport
        ) as client:
            response = await client.post(target.url, json=self.build_payload(alert))
            response.raise_for_status()


class SlackNotifier(WebhookNotifier):
    """Slack incoming-webhook message with a colored attachment."""

    def build_payload(self, alert: Alert) -> dict[str, Any]:
        fields = [
            {"title": "Severity", "value": alert.severity.value.upper(), "short": True},
            {"title": "Type", "value": alert.type.value, "short": True},
        ]
        fields.extend(
            {"title": name, "value": f"{value:.4g}", "short": True}
            for name, value in alert.metric_snapshot.items()
        )
        return {
            "text": f"{alert.title}",
            "attachments": [
                {
                    "color": SEVERITY_COLORS[alert.severity],
                    "text": alert.message,
                    "fields": fields,
                    "ts": int(alert.created_at),
                }
            ],
        }


class TeamsNotifier(WebhookNotifier):
    """Microsoft Teams connector MessageCard."""

    def build_payload(self, alert: Alert) -> dict[str, Any]:
        facts = [
            {"name": "Severity", "value": alert.severity.value.upper()},
            {"name": "Type", "value": alert.type.value},
            {"name": "Created", "value": _format_time(alert.created_at)},
        ]
        facts.extend(
            {"name": name, "value": f"{value:.4g}"}
            for name, value in alert.metric_snapshot.items()
        )
        return {
            "@type": "MessageCard",
            "@context": "https://schema.org/extensions",
            "summary": alert.title,
            "themeColor": SEVERITY_COLORS[alert.severity].lstrip("#"),
            "sections": [
                {
                    "activityTitle": alert.title,
                    "activitySubtitle": alert.message,
                    "facts": facts,
                }
            ],
        }


class EmailNotifier(Notifier):
    """
    Plain-text e-mail through SMTP.

    smtplib blocks, so the send runs in a worker thread.
    """

    def __init__(self, settings: Settings):
        self._settings = settings

    def _send_blocking(self, alert: Alert, recipients: list[str]) -> None:
        settings = self._settings
        body = "\n".join(
            [
                alert.message,
                "",
                f"Severity: {alert.severity.value}",
                f"Type: {alert.type.value}",
                f"Created: {_format_time(alert.created_at)}",
                *(f"{k}: {v:.4g}" for k, v in alert.metric_snapshot.items()),
            ]
        )
        msg = MIMEText(body, "plain", "utf-8")
        msg["Subject"] = f"[{alert.severity.value.upper()}] {alert.title}"
        msg["From"] = settings.smtp_from
        msg["To"] = ", ".join(recipients)

        server = smtplib.SMTP(
            settings.smtp_host,
            settings.smtp_port,
            timeout=settings.notification_timeout_seconds,
        )
        try:
            if settings.smtp_use_tls:
                server.starttls()
            if settings.smtp_user and settings.smtp_password:
                server.login(
                    settings.smtp_user, settings.smtp_password.get_secret_value()
                )
            server.sendmail(settings.smtp_from, recipients, msg.as_string())
        finally:
            server.quit()

    async def send(self, alert: Alert, target: NotificationTarget) -> None:
        if not self._settings.smtp_host:
            raise ValueError("SMTP_HOST is not configured")
        if not target.recipients:
            raise ValueError("email target has no recipients")
        await asyncio.to_thread(self._send_blocking, alert, target.recipients)


def default_notifiers(settings: Settings) -> dict[NotificationChannel, Notifier]:
    """One notifier per channel, configured from settings."""
    timeout = settings.notification_timeout_seconds
    return {
        NotificationChannel.CONSOLE: ConsoleNotifier(),
        NotificationChannel.WEBHOOK: WebhookNotifier(timeout),
        NotificationChannel.SLACK: SlackNotifier(timeout),
        NotificationChannel.TEAMS: TeamsNotifier(timeout),
        NotificationChannel.EMAIL: EmailNotifier(settings),
    }


async def _deliver(
    notifier: Notifier | None, alert: Alert, target: NotificationTarget
) -> DeliveryResult:
    channel = target.channel.value
    if notifier is None:
        logger.error(f"No notifier registered for channel {channel}")
        return DeliveryResult(channel=channel, success=False, error="no notifier")
    try:
        await notifier.send(alert, target)
    except Exception as e:
        logger.error(
            f"Alert delivery failed: channel={channel}, alert={alert.id}, error={e}"
        )
        return DeliveryResult(channel=channel, success=False, error=str(e))
    return DeliveryResult(channel=channel, success=True)


async def notify_all(
    alert: Alert,
    targets: list[NotificationTarget],
    notifiers: dict[NotificationChannel, Notifier],
) -> list[DeliveryResult]:
    """
    Deliver an alert to every enabled target concurrently.

    Returns:
        One DeliveryResult per enabled target, in target order
    """
    enabled = [t for t in targets if t.enabled]
    if not enabled:
        return []
    return list(
        await asyncio.gather(
            *(_deliver(notifiers.get(t.channel), alert, t) for t in enabled)
        )
    )
