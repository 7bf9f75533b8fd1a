"""
Tests for alert payloads, the built-in transports and the
notification dispatcher.
"""

import json
from datetime import datetime, time, timedelta
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from config.constants import CircuitState, NotificationOutcome, TransitionType
from config.settings import NotificationSettings
from exceptions import TransportConfigurationError, TransportError
from monitoring.incidents import IncidentTransition
from monitoring.notifications import (
    AlertPayload,
    BaseTransport,
    EmailTransport,
    NotificationDispatcher,
    TransportAck,
    WebhookTransport,
    build_transports,
)
from monitoring.resilience import CircuitBreaker, RetryPolicy
from tests.factories import fake_incident, fake_resource


NOW = datetime(2030, 6, 1, 12, 0, 0)


class StubTransport(BaseTransport):
    """Transport whose send behaviour is an AsyncMock."""

    def __init__(self, name, side_effect=None):
        self.name = name
        self.send = AsyncMock(side_effect=side_effect, return_value=TransportAck(name))
        self.closed = False

    def recipient_for(self, payload):
        return f"{self.name}-target"

    async def close(self):
        self.closed = True


def started(resource_id=1):
    return IncidentTransition(resource_id, TransitionType.STARTED, fake_incident(NOW, incident_id=7), NOW)


def resolved(resource_id=1):
    incident = fake_incident(NOW - timedelta(minutes=5), NOW, incident_id=7)
    incident.duration_seconds = lambda now=None: 300
    return IncidentTransition(resource_id, TransitionType.RESOLVED, incident, NOW)


@pytest.fixture
def make_dispatcher(notification_settings, resilience_settings):
    def _make(transports, local_now=NOW, failure_threshold=3, settings=None):
        return NotificationDispatcher(
            transports,
            settings or notification_settings,
            resilience_settings,
            retry_factory=lambda: RetryPolicy(max_retries=2, sleep=AsyncMock()),
            breaker_factory=lambda name: CircuitBreaker(
                name,
                failure_threshold=failure_threshold,
                reset_timeout=60.0,
                error_filter=lambda e: not isinstance(e, TransportConfigurationError),
            ),
            local_clock=lambda: local_now,
        )
    return _make


# ============================================================
# PAYLOAD
# ============================================================

class TestAlertPayload:

    def test_down_message(self):
        payload = NotificationDispatcher.build_payload(
            fake_resource(name="API", url="https://api.example.com"),
            started(),
            recent_checks=[{"status": "down", "error_message": "HTTP 503"}],
        )

        assert payload.subject == "Alert: API is DOWN"
        assert "HTTP 503" in payload.message
        assert payload.incident_id == 7
        assert payload.status == "down"

    def test_up_message_includes_downtime_and_stats(self):
        payload = NotificationDispatcher.build_payload(
            fake_resource(name="API"),
            resolved(),
            stats={"total_checks": 10, "uptime": 90.0, "avg_response_time": 123.4, "window_hours": 24},
        )

        assert payload.subject == "Alert: API is UP"
        assert "Down for: 5m" in payload.message
        assert "uptime 90.00%" in payload.message

    def test_webhook_json(self):
        payload = AlertPayload(
            resource_id=1,
            resource_name="API",
            resource_url="https://api.example.com",
            transition=TransitionType.STARTED,
            occurred_at=NOW,
            incident_id=3,
            error_message="HTTP 500",
        )

        body = payload.to_webhook_json()

        assert body["resource"] == "API"
        assert body["status"] == "down"
        assert body["timestamp"] == NOW.isoformat()
        assert body["incident_id"] == 3


# ============================================================
# TRANSPORTS
# ============================================================

class TestWebhookTransport:

    async def test_posts_json(self, notification_settings):
        received = {}

        def handler(request):
            received["url"] = str(request.url)
            received["body"] = json.loads(request.content)
            return httpx.Response(200)

        transport = WebhookTransport(notification_settings, transport=httpx.MockTransport(handler))
        payload = NotificationDispatcher.build_payload(fake_resource(name="API"), started())

        ack = await transport.send(transport.recipient_for(payload), payload)
        await transport.close()

        assert ack.detail == "HTTP 200"
        assert received["url"] == "https://hooks.example.com/alert"
        assert received["body"]["status"] == "down"

    async def test_error_status_raises(self, notification_settings):
        transport = WebhookTransport(
            notification_settings, transport=httpx.MockTransport(lambda r: httpx.Response(500))
        )
        payload = NotificationDispatcher.build_payload(fake_resource(), started())

        with pytest.raises(TransportError, match="HTTP 500"):
            await transport.send(transport.recipient_for(payload), payload)
        await transport.close()

    async def test_missing_url(self):
        transport = WebhookTransport(NotificationSettings(webhook_enabled=True, webhook_url=None))
        payload = NotificationDispatcher.build_payload(fake_resource(), started())

        with pytest.raises(TransportConfigurationError):
            await transport.send(transport.recipient_for(payload), payload)
        await transport.close()


class TestEmailTransport:

    async def test_sends_via_smtp(self, notification_settings):
        smtp_factory = MagicMock()
        transport = EmailTransport(notification_settings, smtp_factory=smtp_factory)
        payload = NotificationDispatcher.build_payload(fake_resource(name="API"), started())

        ack = await transport.send(transport.recipient_for(payload), payload)

        smtp = smtp_factory.return_value.__enter__.return_value
        smtp.starttls.assert_called_once()
        message = smtp.send_message.call_args.args[0]
        assert message["To"] == "ops@example.com"
        assert message["Subject"] == "Alert: API is DOWN"
        assert ack.recipient == "ops@example.com"

    def test_resource_recipient_overrides_global(self, notification_settings):
        transport = EmailTransport(notification_settings, smtp_factory=MagicMock())
        payload = NotificationDispatcher.build_payload(
            fake_resource(email_to="team@example.com"), started()
        )

        assert transport.recipient_for(payload) == "team@example.com"

    async def test_smtp_failure_becomes_transport_error(self, notification_settings):
        smtp_factory = MagicMock(side_effect=OSError("connection refused"))
        transport = EmailTransport(notification_settings, smtp_factory=smtp_factory)
        payload = NotificationDispatcher.build_payload(fake_resource(), started())

        with pytest.raises(TransportError):
            await transport.send("ops@example.com", payload)


class TestBuildTransports:

    def test_enabled_transports(self, notification_settings):
        names = [t.name for t in build_transports(notification_settings)]
        assert names == ["email", "webhook"]

    def test_nothing_enabled(self):
        assert build_transports(NotificationSettings(email_enabled=False, webhook_enabled=False)) == []


# ============================================================
# DISPATCHER
# ============================================================

class TestNotificationDispatcher:

    async def test_no_change_sends_nothing(self, make_dispatcher):
        email = StubTransport("email")
        dispatcher = make_dispatcher([email])

        transition = IncidentTransition(1, TransitionType.NONE, None, NOW)

        assert await dispatcher.dispatch(fake_resource(), transition) == []
        email.send.assert_not_awaited()

    async def test_failing_transport_does_not_block_others(self, make_dispatcher):
        email = StubTransport("email")
        webhook = StubTransport("webhook", side_effect=TransportError("Webhook returned HTTP 500"))
        dispatcher = make_dispatcher([email, webhook])

        attempts = {a.transport: a for a in await dispatcher.dispatch(fake_resource(), started())}

        assert attempts["email"].outcome == NotificationOutcome.SENT
        assert attempts["email"].attempts == 1
        assert attempts["webhook"].outcome == NotificationOutcome.FAILED
        assert attempts["webhook"].attempts == 3
        assert attempts["webhook"].error == "Webhook returned HTTP 500"
        assert webhook.send.await_count == 3

    async def test_open_breaker_short_circuits(self, make_dispatcher):
        webhook = StubTransport("webhook", side_effect=TransportError("down"))
        dispatcher = make_dispatcher([webhook], failure_threshold=1)

        first = await dispatcher.dispatch(fake_resource(), started())
        second = await dispatcher.dispatch(fake_resource(), resolved())

        assert first[0].outcome == NotificationOutcome.FAILED
        assert first[0].breaker_state == CircuitState.OPEN
        assert second[0].outcome == NotificationOutcome.SHORT_CIRCUITED
        assert second[0].attempts == 0
        assert webhook.send.await_count == 3
        assert dispatcher.breaker_states()["webhook"]["state"] == "open"

    async def test_configuration_error_is_not_retried(self, make_dispatcher):
        email = StubTransport("email", side_effect=TransportConfigurationError("no recipient"))
        dispatcher = make_dispatcher([email], failure_threshold=1)

        attempts = await dispatcher.dispatch(fake_resource(), started())

        assert attempts[0].outcome == NotificationOutcome.FAILED
        assert attempts[0].attempts == 1
        assert attempts[0].breaker_state == CircuitState.CLOSED

    async def test_maintenance_mode_suppresses(self, make_dispatcher):
        email = StubTransport("email")
        dispatcher = make_dispatcher([email])

        attempts = await dispatcher.dispatch(fake_resource(maintenance_mode=True), started())

        assert [a.outcome for a in attempts] == [NotificationOutcome.SUPPRESSED]
        assert attempts[0].error == "maintenance mode"
        email.send.assert_not_awaited()

    async def test_resource_quiet_hours_wrap_midnight(self, make_dispatcher):
        email = StubTransport("email")
        resource = fake_resource(quiet_hours=(time(22, 0), time(6, 0)))

        night = make_dispatcher([email], local_now=datetime(2030, 6, 1, 23, 30))
        day = make_dispatcher([email], local_now=datetime(2030, 6, 1, 12, 0))

        assert (await night.dispatch(resource, started()))[0].outcome == NotificationOutcome.SUPPRESSED
        assert (await day.dispatch(resource, started()))[0].outcome == NotificationOutcome.SENT

    async def test_global_quiet_hours(self, make_dispatcher, notification_settings):
        email = StubTransport("email")
        settings = notification_settings.model_copy(
            update={"quiet_hours_start": "11:00", "quiet_hours_end": "13:00"}
        )
        dispatcher = make_dispatcher([email], settings=settings)

        attempts = await dispatcher.dispatch(fake_resource(), started())

        assert attempts[0].outcome == NotificationOutcome.SUPPRESSED
        assert attempts[0].error == "quiet hours 11:00-13:00"

    async def test_close_closes_transports(self, make_dispatcher):
        email = StubTransport("email")
        dispatcher = make_dispatcher([email])

        await dispatcher.close()

        assert email.closed is True
