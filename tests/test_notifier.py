"""
Tests for the notification gate, channel notifiers and the dispatcher.
"""

import json
from datetime import datetime, timezone

import httpx
import pytest
from prometheus_client import REGISTRY

from auditlog.models import EventRecord, NotificationRule, Severity
from auditlog.services.dispatcher import EventDispatcher
from auditlog.services.notifier import (
    EmailNotifier,
    NotificationDispatchError,
    NotificationGate,
    SlackNotifier,
    WebhookNotifier,
)

from conftest import RecordingNotifier

FAILED_METRIC = "audit_notifications_failed_total"


def make_event(severity: Severity = Severity.WARNING, event_id: int = 1) -> EventRecord:
    return EventRecord(
        id=event_id,
        type="login_failed",
        message="Failed login for user alice",
        severity=severity,
        timestamp=datetime(2025, 6, 15, 12, 0, 0, tzinfo=timezone.utc),
        source_address="203.0.113.9",
        actor="Guest",
    )


class TestShouldNotify:
    """Tests for the severity threshold decision."""

    @pytest.mark.parametrize("severity,minimum,expected", [
        (Severity.INFO, Severity.WARNING, False),
        (Severity.WARNING, Severity.WARNING, True),
        (Severity.ERROR, Severity.WARNING, True),
        (Severity.WARNING, Severity.ERROR, False),
        (Severity.INFO, Severity.INFO, True),
    ])
    def test_threshold(self, severity, minimum, expected):
        rule = NotificationRule(
            enabled=True,
            destination="ops@example.com",
            minimum_severity=minimum
        )

        assert NotificationGate.should_notify(make_event(severity), rule) is expected

    def test_disabled_rule(self):
        rule = NotificationRule(enabled=False, destination="ops@example.com")

        assert NotificationGate.should_notify(make_event(Severity.ERROR), rule) is False

    def test_enabled_rule_requires_valid_destination(self):
        with pytest.raises(ValueError):
            NotificationRule(enabled=True, channel="webhook", destination="not a url")


class TestNotificationGate:
    """Tests for end-to-end gate behaviour behind the writer."""

    @pytest.mark.asyncio
    async def test_only_events_over_threshold_are_sent(
        self, writer, dispatcher, config_provider, recording_notifier
    ):
        await config_provider.update({"notification": {
            "enabled": True,
            "destination": "ops@example.com",
            "minimum_severity": "error",
        }})

        await writer.log("scan", "routine scan finished", "info")
        error = await writer.log("lockout", "ip locked out", "error")
        await dispatcher.drain()

        assert len(recording_notifier.sent) == 1
        sent_event, destination = recording_notifier.sent[0]
        assert sent_event.id == error.id
        assert destination == "ops@example.com"

    @pytest.mark.asyncio
    async def test_nothing_sent_while_disabled(self, writer, dispatcher, recording_notifier):
        await writer.log("lockout", "ip locked out", "error")
        await dispatcher.drain()

        assert recording_notifier.sent == []

    @pytest.mark.asyncio
    async def test_delivery_failure_is_swallowed(self, config_provider):
        await config_provider.update({"notification": {
            "enabled": True, "destination": "ops@example.com"
        }})
        gate = NotificationGate(config_provider, {"email": RecordingNotifier(fail=True)})

        assert await gate.handle(make_event(Severity.ERROR)) is False

    @pytest.mark.asyncio
    async def test_missing_channel_notifier(self, config_provider):
        await config_provider.update({"notification": {
            "enabled": True, "channel": "slack", "destination": "https://hooks.example.com/x"
        }})
        gate = NotificationGate(config_provider, {})

        assert await gate.handle(make_event(Severity.ERROR)) is False


class TestWebhookNotifier:
    """Tests for webhook and Slack delivery over httpx."""

    @pytest.mark.asyncio
    async def test_posts_camel_case_payload(self):
        received = []

        def handler(request: httpx.Request) -> httpx.Response:
            received.append((str(request.url), json.loads(request.content)))
            return httpx.Response(204)

        notifier = WebhookNotifier(timeout=5, transport=httpx.MockTransport(handler))
        await notifier.send(make_event(), "https://hooks.example.com/audit")

        url, body = received[0]
        assert url == "https://hooks.example.com/audit"
        assert body == {
            "type": "login_failed",
            "message": "Failed login for user alice",
            "severity": "warning",
            "sourceAddress": "203.0.113.9",
            "actor": "Guest",
            "timestamp": "2025-06-15T12:00:00+00:00",
        }

    @pytest.mark.asyncio
    async def test_non_success_status_raises(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(500))
        notifier = WebhookNotifier(timeout=5, transport=transport)

        with pytest.raises(NotificationDispatchError):
            await notifier.send(make_event(), "https://hooks.example.com/audit")

    @pytest.mark.asyncio
    async def test_transport_error_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        notifier = WebhookNotifier(timeout=5, transport=httpx.MockTransport(handler))

        with pytest.raises(NotificationDispatchError):
            await notifier.send(make_event(), "https://hooks.example.com/audit")

    @pytest.mark.asyncio
    async def test_invalid_url_raises_dispatch_error(self, monkeypatch):
        async def reject(self, url, **kwargs):
            raise httpx.InvalidURL(f"Invalid URL: {url}")

        monkeypatch.setattr(httpx.AsyncClient, "post", reject)
        notifier = WebhookNotifier(timeout=5)

        with pytest.raises(NotificationDispatchError):
            await notifier.send(make_event(), "http://[bad")

    @pytest.mark.asyncio
    async def test_gate_counts_invalid_url_as_failure(self, config_provider, monkeypatch):
        async def reject(self, url, **kwargs):
            raise httpx.InvalidURL(f"Invalid URL: {url}")

        monkeypatch.setattr(httpx.AsyncClient, "post", reject)
        await config_provider.update({"notification": {
            "enabled": True, "channel": "webhook", "destination": "http://[bad"
        }})
        gate = NotificationGate(config_provider, {"webhook": WebhookNotifier(timeout=5)})
        failed_before = REGISTRY.get_sample_value(FAILED_METRIC, {"channel": "webhook"}) or 0

        assert await gate.handle(make_event(Severity.ERROR)) is False
        assert REGISTRY.get_sample_value(FAILED_METRIC, {"channel": "webhook"}) == failed_before + 1

    def test_slack_payload(self):
        payload = SlackNotifier(timeout=5).payload(make_event(Severity.ERROR))

        assert payload["text"] == "[SecurePress] Security Alert: login_failed"
        attachment = payload["attachments"][0]
        assert attachment["color"] == "danger"
        assert attachment["text"] == "Failed login for user alice"
        assert {"title": "IP", "value": "203.0.113.9", "short": True} in attachment["fields"]


class TestEmailNotifier:
    """Tests for alert mail composition."""

    def test_build_message(self):
        notifier = EmailNotifier(
            host="localhost", port=25, sender="securepress@example.com", timeout=5
        )

        message = notifier.build_message(make_event(), "ops@example.com")

        assert message["Subject"] == "[SecurePress] Security Alert: login_failed"
        assert message["To"] == "ops@example.com"
        assert message["From"] == "securepress@example.com"
        body = message.get_content()
        assert "IP: 203.0.113.9" in body
        assert "Severity: warning" in body

    @pytest.mark.asyncio
    async def test_smtp_failure_raises_dispatch_error(self, monkeypatch):
        notifier = EmailNotifier(host="localhost", port=25, sender="a@example.com", timeout=1)

        def refuse(message):
            raise ConnectionRefusedError("connection refused")

        monkeypatch.setattr(notifier, "_deliver", refuse)

        with pytest.raises(NotificationDispatchError):
            await notifier.send(make_event(), "ops@example.com")


class TestEventDispatcher:
    """Tests for ordered post-write delivery."""

    @pytest.mark.asyncio
    async def test_delivers_in_publish_order(self):
        dispatcher = EventDispatcher(max_queue_size=10)
        seen = []

        async def handler(event):
            seen.append(event.id)

        dispatcher.subscribe(handler)
        for event_id in (1, 2, 3):
            dispatcher.publish(make_event(event_id=event_id))

        assert await dispatcher.drain() == 3
        assert seen == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_full_queue_drops_event(self):
        dispatcher = EventDispatcher(max_queue_size=1)

        assert dispatcher.publish(make_event(event_id=1)) is True
        assert dispatcher.publish(make_event(event_id=2)) is False
        assert dispatcher.pending == 1

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_block_others(self):
        dispatcher = EventDispatcher()
        seen = []

        async def broken(event):
            raise RuntimeError("boom")

        async def recorder(event):
            seen.append(event.id)

        dispatcher.subscribe(broken)
        dispatcher.subscribe(recorder)
        dispatcher.publish(make_event(event_id=7))
        await dispatcher.drain()

        assert seen == [7]

    @pytest.mark.asyncio
    async def test_stop_flushes_pending_events(self):
        dispatcher = EventDispatcher()
        seen = []

        async def recorder(event):
            seen.append(event.id)

        dispatcher.subscribe(recorder)
        dispatcher.start()
        assert dispatcher.running
        dispatcher.publish(make_event(event_id=1))
        dispatcher.publish(make_event(event_id=2))
        await dispatcher.stop()

        assert seen == [1, 2]
        assert not dispatcher.running
