"""
============================================================================
UPTIME MONITOR - NOTIFICATION DISPATCHER
============================================================================
Delivers incident transitions through every configured transport.

Design
------
For each transition the dispatcher builds one AlertPayload and fans it
out to all transports concurrently with ``asyncio.gather``. Every
transport owns its own circuit breaker (outer) and retry policy (inner):

    breaker.execute(lambda: retry.execute(lambda: transport.send(...)))

so one dead webhook never slows down or blocks email delivery, and an
open breaker skips its retries entirely.

Suppression
-----------
Resources in maintenance mode, and transitions that happen inside the
resource's quiet-hours window (or the global window when the resource
has none), are not delivered. They are reported as ``suppressed``.

Transports
----------
WebhookTransport   POST JSON via httpx
EmailTransport     SMTP via smtplib, run in a worker thread

Author: Professional Development Team
Version: 1.0.0
License: MIT
============================================================================
"""

import asyncio
import smtplib
from dataclasses import dataclass, field
from datetime import datetime, time as dt_time
from email.message import EmailMessage
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import httpx

from config.constants import (
    CircuitState,
    MessageTemplates,
    NotificationOutcome,
    TransitionType,
    TransportName,
)
from config.settings import NotificationSettings, ResilienceSettings
from exceptions import (
    CircuitOpenError,
    RetryExhaustedError,
    TransportConfigurationError,
    TransportError,
)
from monitoring.incidents import IncidentTransition
from monitoring.resilience import CircuitBreaker, RetryPolicy
from utils.helpers import TimeHelper
from utils.logger import get_logger


logger = get_logger("Notifications")


# ============================================================================
# PAYLOAD / RESULT TYPES
# ============================================================================

@dataclass
class AlertPayload:
    """
    Everything a transport needs to render one alert.
    """
    resource_id: int
    resource_name: str
    resource_url: str
    transition: TransitionType
    occurred_at: datetime
    incident_id: Optional[int] = None
    error_message: Optional[str] = None
    downtime_seconds: Optional[int] = None
    email_to: Optional[str] = None
    recent_checks: List[Dict[str, Any]] = field(default_factory=list)
    stats: Optional[Dict[str, Any]] = None

    @property
    def status(self) -> str:
        return "down" if self.transition == TransitionType.STARTED else "up"

    @property
    def subject(self) -> str:
        template = (
            MessageTemplates.SUBJECT_DOWN
            if self.transition == TransitionType.STARTED
            else MessageTemplates.SUBJECT_UP
        )
        return template.format(name=self.resource_name)

    @property
    def message(self) -> str:
        timestamp = self.occurred_at.strftime("%Y-%m-%d %H:%M:%S UTC")
        if self.transition == TransitionType.STARTED:
            text = MessageTemplates.BODY_DOWN.format(
                name=self.resource_name,
                url=self.resource_url,
                timestamp=timestamp,
                error=self.error_message or "unknown error",
            )
        else:
            text = MessageTemplates.BODY_UP.format(
                name=self.resource_name,
                url=self.resource_url,
                timestamp=timestamp,
                downtime=TimeHelper.seconds_to_human_readable(self.downtime_seconds or 0),
            )

        if self.stats and self.stats.get("total_checks"):
            text += MessageTemplates.STATS_FOOTER.format(
                window=self.stats.get("window_hours", 24),
                uptime=self.stats.get("uptime", 0.0),
                avg_response=self.stats.get("avg_response_time", 0.0),
            )
        return text

    def to_webhook_json(self) -> Dict[str, Any]:
        return {
            "resource": self.resource_name,
            "url": self.resource_url,
            "status": self.status,
            "message": self.message,
            "timestamp": self.occurred_at.isoformat(),
            "incident_id": self.incident_id,
        }


@dataclass
class TransportAck:
    """Successful delivery receipt returned by a transport."""
    transport: str
    recipient: Optional[str] = None
    detail: Optional[str] = None


@dataclass
class NotificationAttempt:
    """
    Result of delivering one payload through one transport.
    Ephemeral: logged and returned, never persisted.
    """
    transport: str
    resource_id: int
    incident_id: Optional[int]
    transition: TransitionType
    outcome: NotificationOutcome
    attempts: int = 0
    breaker_state: CircuitState = CircuitState.CLOSED
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transport": self.transport,
            "resource_id": self.resource_id,
            "incident_id": self.incident_id,
            "transition": self.transition.value,
            "outcome": self.outcome.value,
            "attempts": self.attempts,
            "breaker_state": self.breaker_state.value,
            "error": self.error,
        }


# ============================================================================
# TRANSPORTS
# ============================================================================

class BaseTransport:
    """
    A delivery channel. ``send`` raises TransportError on failure and
    TransportConfigurationError when it cannot send at all.
    """

    name = "base"

    def recipient_for(self, payload: AlertPayload) -> Optional[str]:
        return None

    async def send(self, recipient: Optional[str], payload: AlertPayload) -> TransportAck:
        raise NotImplementedError

    async def close(self) -> None:
        return None


class WebhookTransport(BaseTransport):
    """POSTs the alert as JSON to a configured URL."""

    name = TransportName.WEBHOOK.value

    def __init__(
        self,
        settings: NotificationSettings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(settings.webhook_timeout),
            transport=transport,
        )

    def recipient_for(self, payload: AlertPayload) -> Optional[str]:
        return self.settings.webhook_url

    async def send(self, recipient: Optional[str], payload: AlertPayload) -> TransportAck:
        if not recipient:
            raise TransportConfigurationError("Webhook URL is not configured", transport=self.name)

        try:
            response = await self._client.post(recipient, json=payload.to_webhook_json())
        except httpx.HTTPError as e:
            raise TransportError(
                f"Webhook request failed: {str(e) or type(e).__name__}",
                transport=self.name,
                cause=e
            ) from e

        if response.status_code >= 400:
            raise TransportError(
                f"Webhook returned HTTP {response.status_code}",
                transport=self.name
            )

        return TransportAck(self.name, recipient, f"HTTP {response.status_code}")

    async def close(self) -> None:
        await self._client.aclose()


class EmailTransport(BaseTransport):
    """
    Sends plain-text alert emails over SMTP.

    smtplib is blocking, so each send runs in a worker thread.
    The per-resource ``email_to`` overrides the global recipient.
    """

    name = TransportName.EMAIL.value

    def __init__(self, settings: NotificationSettings, smtp_factory: Callable[..., smtplib.SMTP] = smtplib.SMTP):
        self.settings = settings
        self._smtp_factory = smtp_factory

    def recipient_for(self, payload: AlertPayload) -> Optional[str]:
        return payload.email_to or self.settings.email_to

    def _build_message(self, recipient: str, payload: AlertPayload) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = payload.subject
        message["From"] = self.settings.email_from
        message["To"] = recipient
        message.set_content(payload.message)
        return message

    def _send_sync(self, message: EmailMessage) -> None:
        with self._smtp_factory(
            self.settings.email_host,
            self.settings.email_port,
            timeout=self.settings.email_timeout,
        ) as smtp:
            if self.settings.email_starttls:
                smtp.starttls()
            if self.settings.email_user:
                smtp.login(self.settings.email_user, self.settings.email_password.get_secret_value())
            smtp.send_message(message)

    async def send(self, recipient: Optional[str], payload: AlertPayload) -> TransportAck:
        if not self.settings.email_host or not self.settings.email_from:
            raise TransportConfigurationError("SMTP host or sender is not configured", transport=self.name)
        if not recipient:
            raise TransportConfigurationError("No email recipient configured", transport=self.name)

        message = self._build_message(recipient, payload)
        try:
            await asyncio.to_thread(self._send_sync, message)
        except (smtplib.SMTPException, OSError) as e:
            raise TransportError(
                f"SMTP delivery failed: {str(e) or type(e).__name__}",
                transport=self.name,
                cause=e
            ) from e

        return TransportAck(self.name, recipient, payload.subject)


def build_transports(settings: NotificationSettings) -> List[BaseTransport]:
    """Instantiate the transports enabled in settings."""
    transports: List[BaseTransport] = []
    if settings.email_enabled:
        if not settings.email_configured:
            logger.warning("Email transport enabled but SMTP host or sender is missing")
        transports.append(EmailTransport(settings))
    if settings.webhook_enabled:
        if not settings.webhook_configured:
            logger.warning("Webhook transport enabled but no URL is set")
        transports.append(WebhookTransport(settings))
    return transports


# ============================================================================
# DISPATCHER
# ============================================================================

class _Channel:
    """A transport with its own breaker and retry policy."""

    def __init__(self, transport: BaseTransport, breaker: CircuitBreaker, retry: RetryPolicy):
        self.transport = transport
        self.breaker = breaker
        self.retry = retry


class NotificationDispatcher:
    """
    Fans each transition out to every transport.
    """

    def __init__(
        self,
        transports: Sequence[BaseTransport],
        settings: NotificationSettings,
        resilience: ResilienceSettings,
        retry_factory: Optional[Callable[[], RetryPolicy]] = None,
        breaker_factory: Optional[Callable[[str], CircuitBreaker]] = None,
        local_clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Args:
            transports: Delivery channels
            settings: Notification settings (global quiet hours)
            resilience: Retry / breaker parameters
            retry_factory: Builds a RetryPolicy per transport
            breaker_factory: Builds a CircuitBreaker per transport name
            local_clock: Server-local time used for quiet hours
        """
        self.settings = settings
        self._local_clock = local_clock

        def not_config_error(error: BaseException) -> bool:
            return not isinstance(error, TransportConfigurationError)

        retry_factory = retry_factory or (lambda: RetryPolicy.from_settings(resilience))
        breaker_factory = breaker_factory or (
            lambda name: CircuitBreaker.from_settings(name, resilience, error_filter=not_config_error)
        )

        self._channels: List[_Channel] = [
            _Channel(transport, breaker_factory(transport.name), retry_factory())
            for transport in transports
        ]

    @property
    def transports(self) -> List[BaseTransport]:
        return [channel.transport for channel in self._channels]

    def breaker_states(self) -> Dict[str, Dict[str, Any]]:
        return {channel.transport.name: channel.breaker.snapshot() for channel in self._channels}

    # ------------------------------------------------------------------
    # Payload
    # ------------------------------------------------------------------

    @staticmethod
    def build_payload(
        resource,
        transition: IncidentTransition,
        recent_checks: Sequence[Any] = (),
        stats: Optional[Dict[str, Any]] = None,
    ) -> AlertPayload:
        """Assemble the alert context for one transition."""
        checks = [c.to_dict() if hasattr(c, "to_dict") else dict(c) for c in recent_checks]
        error_message = None
        for check in reversed(checks):
            if check.get("status") == "down":
                error_message = check.get("error_message")
                break

        return AlertPayload(
            resource_id=resource.id,
            resource_name=resource.name,
            resource_url=resource.url,
            transition=transition.type,
            occurred_at=transition.occurred_at,
            incident_id=transition.incident.id if transition.incident else None,
            error_message=error_message,
            downtime_seconds=transition.downtime_seconds,
            email_to=getattr(resource, "email_to", None),
            recent_checks=checks,
            stats=stats,
        )

    # ------------------------------------------------------------------
    # Suppression
    # ------------------------------------------------------------------

    def _quiet_window(self, resource) -> Optional[Tuple[dt_time, dt_time]]:
        try:
            window = resource.quiet_hours
        except (AttributeError, ValueError) as e:
            logger.warning(f"Ignoring quiet hours of resource {resource.id}: {e}")
            window = None
        return window or self.settings.quiet_hours

    def suppression_reason(self, resource) -> Optional[str]:
        """Why alerts for *resource* are muted right now, or None."""
        if getattr(resource, "maintenance_mode", False):
            return "maintenance mode"

        window = self._quiet_window(resource)
        if window and TimeHelper.in_window(self._local_clock().time(), *window):
            return f"quiet hours {window[0]:%H:%M}-{window[1]:%H:%M}"
        return None

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def _deliver(self, channel: _Channel, payload: AlertPayload) -> NotificationAttempt:
        transport = channel.transport
        recipient = transport.recipient_for(payload)
        attempts = 0

        async def send_once() -> TransportAck:
            nonlocal attempts
            attempts += 1
            return await transport.send(recipient, payload)

        async def send_with_retry() -> TransportAck:
            return await channel.retry.execute(send_once, context=f"{transport.name} notification")

        attempt = NotificationAttempt(
            transport=transport.name,
            resource_id=payload.resource_id,
            incident_id=payload.incident_id,
            transition=payload.transition,
            outcome=NotificationOutcome.SENT,
            breaker_state=channel.breaker.state,
        )

        try:
            await channel.breaker.execute(send_with_retry)
        except CircuitOpenError as e:
            attempt.outcome = NotificationOutcome.SHORT_CIRCUITED
            attempt.error = e.message
        except RetryExhaustedError as e:
            attempt.outcome = NotificationOutcome.FAILED
            attempt.error = str(e.last_error) if e.last_error else e.message
        except TransportConfigurationError as e:
            attempt.outcome = NotificationOutcome.FAILED
            attempt.error = e.message
        except Exception as e:
            attempt.outcome = NotificationOutcome.FAILED
            attempt.error = str(e) or type(e).__name__
            logger.exception(f"Unexpected error in {transport.name} transport")

        attempt.attempts = attempts
        attempt.breaker_state = channel.breaker.state
        return attempt

    async def dispatch(
        self,
        resource,
        transition: IncidentTransition,
        recent_checks: Sequence[Any] = (),
        stats: Optional[Dict[str, Any]] = None,
    ) -> List[NotificationAttempt]:
        """
        Deliver one transition through every transport.

        Returns:
            One NotificationAttempt per transport
        """
        if not transition.changed:
            return []

        payload = self.build_payload(resource, transition, recent_checks, stats)

        reason = self.suppression_reason(resource)
        if reason:
            logger.info(
                f"Alert for {resource.name} ({transition.type.value}) suppressed: {reason}"
            )
            return [
                NotificationAttempt(
                    transport=channel.transport.name,
                    resource_id=payload.resource_id,
                    incident_id=payload.incident_id,
                    transition=payload.transition,
                    outcome=NotificationOutcome.SUPPRESSED,
                    breaker_state=channel.breaker.state,
                    error=reason,
                )
                for channel in self._channels
            ]

        results = await asyncio.gather(
            *(self._deliver(channel, payload) for channel in self._channels),
            return_exceptions=True
        )

        attempts: List[NotificationAttempt] = []
        for channel, result in zip(self._channels, results):
            if isinstance(result, BaseException):
                logger.opt(exception=result).error(f"{channel.transport.name} delivery crashed")
                result = NotificationAttempt(
                    transport=channel.transport.name,
                    resource_id=payload.resource_id,
                    incident_id=payload.incident_id,
                    transition=payload.transition,
                    outcome=NotificationOutcome.FAILED,
                    breaker_state=channel.breaker.state,
                    error=str(result) or type(result).__name__,
                )
            attempts.append(result)

            log = logger.info if result.outcome == NotificationOutcome.SENT else logger.warning
            log(
                f"Notification {result.transport} for {resource.name} "
                f"({transition.type.value}): {result.outcome.value} "
                f"after {result.attempts} attempt(s), breaker {result.breaker_state.value}"
                + (f" - {result.error}" if result.error else "")
            )

        return attempts

    async def close(self) -> None:
        for channel in self._channels:
            await channel.transport.close()
