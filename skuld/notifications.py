"""Notification system: console, Slack, webhook, in-app inbox and email stubs."""

from __future__ import annotations

from collections import deque
from datetime import datetime
from typing import TYPE_CHECKING, Any

import httpx
import structlog
from pydantic import BaseModel, Field

from skuld.metrics import notifications_total
from skuld.models.base import new_id, utcnow
from skuld.models.config import NotificationChannel, NotificationEvent

if TYPE_CHECKING:
    from skuld.config import Settings
    from skuld.models.config import NotificationConfig

logger = structlog.get_logger()

INBOX_SIZE = 500

DEFAULT_TEMPLATES: dict[NotificationEvent, str] = {
    NotificationEvent.STARTED: "Experiment {experiment_id} started ({triggered_by})",
    NotificationEvent.PAUSED: "Experiment {experiment_id} paused: {reason}",
    NotificationEvent.STOPPED: "Experiment {experiment_id} stopped: {reason}",
    NotificationEvent.COMPLETED: "Experiment {experiment_id} completed: {reason}",
    NotificationEvent.ROLLED_BACK: "Experiment {experiment_id} rolled back: {reason}",
    NotificationEvent.MILESTONE_REACHED: "Experiment {experiment_id}: {milestone} ({percentage}%)",
    NotificationEvent.ALERT: "Experiment {experiment_id} is {health}: {alert_count} new alert(s)",
}


class _Fields(dict[str, Any]):
    def __missing__(self, key: str) -> str:
        return ""


def render_message(
    experiment_id: str,
    event: NotificationEvent,
    data: dict[str, Any],
    templates: dict[str, str] | None = None,
) -> str:
    """Fill the event's template. Custom templates are keyed by event name.

    Placeholders missing from *data* render as empty strings.
    """
    template = (templates or {}).get(event.value) or DEFAULT_TEMPLATES[event]
    fields = _Fields(data)
    fields["experiment_id"] = experiment_id
    fields["event"] = event.value
    fields.setdefault("alert_count", len(data.get("alerts", [])))
    return template.format_map(fields)


class InAppNotification(BaseModel):
    id: str = Field(default_factory=lambda: new_id("notification"))
    experiment_id: str
    event: NotificationEvent
    message: str
    severity: str = "info"
    recipients: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    read: bool = False


class NotificationDispatcher:
    """Delivers lifecycle notifications to every channel a config names.

    Delivery failures are logged and counted, never raised.
    """

    def __init__(
        self,
        slack_webhook_url: str = "",
        webhook_url: str = "",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.slack_webhook_url = slack_webhook_url
        self.webhook_url = webhook_url
        self.timeout = timeout
        self._transport = transport
        self._inbox: deque[InAppNotification] = deque(maxlen=INBOX_SIZE)

    @classmethod
    def from_settings(cls, settings: Settings) -> NotificationDispatcher:
        return cls(
            slack_webhook_url=settings.slack_webhook_url,
            webhook_url=settings.notification_webhook_url,
        )

    async def send(
        self,
        experiment_id: str,
        event: NotificationEvent,
        data: dict[str, Any],
        config: NotificationConfig,
    ) -> None:
        message = render_message(experiment_id, event, data, config.templates)
        severity = str(data.get("severity", "info"))
        for channel in config.channels:
            try:
                await self._deliver(channel, experiment_id, event, message, severity, data, config)
            except httpx.HTTPError as exc:
                notifications_total.labels(channel=channel.value, status="failed").inc()
                logger.warning(
                    "Notification delivery failed",
                    channel=channel.value,
                    experiment_id=experiment_id,
                    error=str(exc),
                )
            else:
                notifications_total.labels(channel=channel.value, status="sent").inc()

    async def _deliver(
        self,
        channel: NotificationChannel,
        experiment_id: str,
        event: NotificationEvent,
        message: str,
        severity: str,
        data: dict[str, Any],
        config: NotificationConfig,
    ) -> None:
        if channel == NotificationChannel.CONSOLE:
            notify_console(event.value, message, experiment_id=experiment_id)
        elif channel == NotificationChannel.SLACK:
            await self._post_slack(message, severity)
        elif channel == NotificationChannel.WEBHOOK:
            await self._post_webhook(
                {
                    "experiment_id": experiment_id,
                    "event": event.value,
                    "message": message,
                    "severity": severity,
                    "recipients": config.recipients,
                    "data": data,
                }
            )
        elif channel == NotificationChannel.IN_APP:
            self._inbox.append(
                InAppNotification(
                    experiment_id=experiment_id,
                    event=event,
                    message=message,
                    severity=severity,
                    recipients=list(config.recipients),
                )
            )
        elif channel == NotificationChannel.EMAIL:
            for recipient in config.recipients:
                notify_email(recipient, f"[{event.value}] {experiment_id}", message)

    async def _post_slack(self, message: str, severity: str) -> None:
        if not self.slack_webhook_url:
            logger.debug("Slack webhook not configured, skipping")
            return
        prefix = ":rotating_light: " if severity == "critical" else ""
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            resp = await client.post(self.slack_webhook_url, json={"text": f"{prefix}{message}"})
            resp.raise_for_status()

    async def _post_webhook(self, payload: dict[str, Any]) -> None:
        if not self.webhook_url:
            logger.debug("Notification webhook not configured, skipping")
            return
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            resp = await client.post(self.webhook_url, json=payload)
            resp.raise_for_status()

    # --- In-app inbox ---

    def inbox(
        self, experiment_id: str | None = None, unread_only: bool = False
    ) -> list[InAppNotification]:
        """In-app notifications, newest first."""
        items = [
            n
            for n in reversed(self._inbox)
            if (experiment_id is None or n.experiment_id == experiment_id)
            and not (unread_only and n.read)
        ]
        return [n.model_copy() for n in items]

    def mark_read(self, notification_id: str) -> bool:
        for notification in self._inbox:
            if notification.id == notification_id:
                notification.read = True
                return True
        return False


def notify_console(title: str, message: str, experiment_id: str | None = None) -> None:
    """Print a notification to the console."""
    logger.info("Notification", title=title, message=message, experiment_id=experiment_id)


def notify_email(to: str, subject: str, _body: str) -> None:
    """Send an email notification. Stub, no mail transport is wired."""
    logger.info("Email stub", to=to, subject=subject)
