"""
Notification gate and channel notifiers.

The gate decides whether a freshly written event crosses the configured
severity threshold and, if so, hands it to the notifier for the configured
channel. Delivery is best-effort: failures are logged and counted, never
raised back to the writer.
"""

import asyncio
import logging
import smtplib
from abc import ABC, abstractmethod
from email.message import EmailMessage
from typing import Any, Dict, Optional

import httpx
from prometheus_client import Counter

from auditlog.config import Settings
from auditlog.models import EventRecord, NotificationRule, Severity
from auditlog.services.config_store import ConfigProvider

logger = logging.getLogger(__name__)

notifications_sent = Counter(
    'audit_notifications_sent_total',
    'Total notifications delivered',
    ['channel']
)
notifications_failed = Counter(
    'audit_notifications_failed_total',
    'Total notifications that could not be delivered',
    ['channel']
)

SLACK_COLORS = {
    Severity.INFO: "good",
    Severity.WARNING: "warning",
    Severity.ERROR: "danger",
}


class NotificationDispatchError(Exception):
    """A notification could not be delivered."""
    pass


def alert_subject(event: EventRecord) -> str:
    return f"[SecurePress] Security Alert: {event.type}"


def alert_body(event: EventRecord) -> str:
    return (
        "A security event has been detected:\n\n"
        f"Type: {event.type}\n"
        f"Severity: {event.severity.value}\n"
        f"Message: {event.message}\n"
        f"IP: {event.source_address}\n"
        f"User: {event.actor}\n\n"
        f"Time: {event.timestamp.isoformat()}"
    )


class Notifier(ABC):
    """Delivers one event to one destination over a channel."""

    channel: str = ""

    @abstractmethod
    async def send(self, event: EventRecord, destination: str) -> None:
        """
        Raises:
            NotificationDispatchError: If delivery failed
        """


class EmailNotifier(Notifier):
    """Plain-text alert mail over SMTP, sent from a worker thread."""

    channel = "email"

    def __init__(
        self,
        host: str,
        port: int,
        sender: str,
        timeout: float,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = False
    ):
        self.host = host
        self.port = port
        self.sender = sender
        self.timeout = timeout
        self.username = username
        self.password = password
        self.use_tls = use_tls

    def build_message(self, event: EventRecord, destination: str) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = alert_subject(event)
        message["From"] = self.sender
        message["To"] = destination
        message.set_content(alert_body(event))
        return message

    def _deliver(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            if self.use_tls:
                smtp.starttls()
            if self.username:
                smtp.login(self.username, self.password or "")
            smtp.send_message(message)

    async def send(self, event: EventRecord, destination: str) -> None:
        message = self.build_message(event, destination)
        try:
            await asyncio.to_thread(self._deliver, message)
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationDispatchError(f"SMTP delivery to {destination} failed: {e}") from e


class WebhookNotifier(Notifier):
    """POST the event as JSON to an HTTP endpoint."""

    channel = "webhook"

    def __init__(self, timeout: float, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self.transport = transport

    def payload(self, event: EventRecord) -> Dict[str, Any]:
        return {
            "type": event.type,
            "message": event.message,
            "severity": event.severity.value,
            "sourceAddress": event.source_address,
            "actor": event.actor,
            "timestamp": event.timestamp.isoformat(),
        }

    async def send(self, event: EventRecord, destination: str) -> None:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(destination, json=self.payload(event))
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise NotificationDispatchError(f"POST to {destination} failed: {e}") from e

        if not response.is_success:
            raise NotificationDispatchError(
                f"POST to {destination} returned HTTP {response.status_code}"
            )


class SlackNotifier(WebhookNotifier):
    """Slack incoming-webhook message with one colour-coded attachment."""

    channel = "slack"

    def payload(self, event: EventRecord) -> Dict[str, Any]:
        return {
            "text": alert_subject(event),
            "attachments": [
                {
                    "color": SLACK_COLORS[event.severity],
                    "text": event.message,
                    "fields": [
                        {"title": "Severity", "value": event.severity.value, "short": True},
                        {"title": "IP", "value": event.source_address, "short": True},
                        {"title": "User", "value": event.actor, "short": True},
                    ],
                    "ts": int(event.timestamp.timestamp()),
                }
            ],
        }


def build_notifiers(settings: Settings) -> Dict[str, Notifier]:
    """One notifier per supported channel, configured from settings."""
    timeout = settings.notification_timeout_seconds
    notifiers = [
        EmailNotifier(
            host=settings.smtp_host,
            port=settings.smtp_port,
            sender=settings.smtp_from,
            timeout=timeout,
            username=settings.smtp_username,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
        ),
        WebhookNotifier(timeout=timeout),
        SlackNotifier(timeout=timeout),
    ]
    return {n.channel: n for n in notifiers}


class NotificationGate:
    """Evaluate written events against the notification rule and dispatch."""

    def __init__(self, config: ConfigProvider, notifiers: Dict[str, Notifier]):
        self.config = config
        self.notifiers = notifiers

    @staticmethod
    def should_notify(event: EventRecord, rule: NotificationRule) -> bool:
        """True if the rule is active and the event is at least as severe as its minimum."""
        if not rule.enabled or not rule.destination.strip():
            return False
        return event.severity.rank >= rule.minimum_severity.rank

    async def handle(self, event: EventRecord) -> bool:
        """
        Dispatch a notification for the event if the rule allows it.

        Returns:
            True if a notification was delivered
        """
        rule = self.config.current.notification
        if not self.should_notify(event, rule):
            return False

        notifier = self.notifiers.get(rule.channel)
        if notifier is None:
            logger.error(f"No notifier configured for channel {rule.channel!r}")
            notifications_failed.labels(channel=rule.channel).inc()
            return False

        try:
            await notifier.send(event, rule.destination.strip())
        except NotificationDispatchError as e:
            logger.error(f"Notification for event {event.id} failed: {e}")
            notifications_failed.labels(channel=rule.channel).inc()
            return False

        notifications_sent.labels(channel=rule.channel).inc()
        logger.info(f"Notification sent for event {event.id} via {rule.channel}")
        return True
