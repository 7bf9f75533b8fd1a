"""
Constants Module for Uptime Monitor

Contains all constant values, enumerations, templates, and
static configuration used throughout the application.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, Final, Tuple


class ResourceType(str, Enum):
    """
    Resource Type Enumeration

    Every protocol the monitoring engine knows how to probe.
    Each member must have exactly one checker registered.
    """

    HTTP = "http"
    HTTPS = "https"
    HEALTH = "health"
    TCP = "tcp"
    TLS = "tls"
    DNS = "dns"
    WEBSOCKET = "websocket"
    ICMP = "icmp"

    @classmethod
    def parse(cls, value: object) -> "ResourceType":
        """
        Parse a stored type value, falling back to HTTP.

        Args:
            value: Raw value from storage (enum member, string or None)

        Returns:
            Matching ResourceType, HTTP when unknown
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.HTTP

    @classmethod
    def http_family(cls) -> Tuple["ResourceType", ...]:
        """Types that share HTTP GET semantics."""
        return (cls.HTTP, cls.HTTPS, cls.HEALTH)


class CheckStatus(str, Enum):
    """Outcome of a single probe."""
    UP = "up"
    DOWN = "down"


class TransitionType(str, Enum):
    """
    Incident Transition Enumeration

    Result of feeding one observation into the incident tracker.
    """

    NONE = "none"
    STARTED = "started"
    RESOLVED = "resolved"

    @classmethod
    def get_display_name(cls, transition: "TransitionType") -> str:
        """Get human-readable transition name."""
        names = {
            cls.NONE: "No change",
            cls.STARTED: "🔴 DOWN",
            cls.RESOLVED: "🟢 UP",
        }
        return names.get(transition, "Unknown")


class CircuitState(str, Enum):
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class NotificationOutcome(str, Enum):
    """Outcome of one transport delivery attempt."""
    SENT = "sent"
    FAILED = "failed"
    SHORT_CIRCUITED = "short_circuited"
    SUPPRESSED = "suppressed"


class TransportName(str, Enum):
    """Built-in notification transports."""
    EMAIL = "email"
    WEBHOOK = "webhook"


class Defaults:
    """
    Default Values

    Fallbacks used when neither the resource nor the settings
    provide a value.
    """

    TIMEOUT_MS: Final[int] = 5000
    CHECK_INTERVAL_MS: Final[int] = 60000
    SLA_TARGET: Final[float] = 99.9
    CERT_EXPIRY_DAYS: Final[int] = 30
    CONSECUTIVE_FAILURES_THRESHOLD: Final[int] = 1
    MAX_REDIRECTS: Final[int] = 5
    RECENT_CHECKS_LIMIT: Final[int] = 12
    STATS_WINDOW_HOURS: Final[int] = 24
    SLA_WINDOW_DAYS: Final[int] = 30
    RETENTION_DAYS: Final[int] = 30
    TCP_DEFAULT_PORT: Final[int] = 80
    TLS_DEFAULT_PORT: Final[int] = 443
    ERROR_MESSAGE_MAX_LENGTH: Final[int] = 500


class Percentiles:
    """Latency percentiles reported in statistics snapshots."""

    REPORTED: Final[Tuple[int, ...]] = (50, 95, 99)


# Bucket width (hours) for the averaged history view, keyed by the
# largest window (days) the width applies to. Larger windows use the
# fallback width.
HISTORY_BUCKET_HOURS: Final[Dict[int, int]] = {
    7: 1,
    14: 3,
}
HISTORY_BUCKET_HOURS_FALLBACK: Final[int] = 6


class MessageTemplates:
    """
    Alert Message Templates

    Plain-text templates rendered by the notification dispatcher.
    Placeholders are filled with str.format().
    """

    SUBJECT_DOWN: Final[str] = "Alert: {name} is DOWN"
    SUBJECT_UP: Final[str] = "Alert: {name} is UP"

    BODY_DOWN: Final[str] = (
        "🔴 {name} is DOWN!\n\n"
        "URL: {url}\n"
        "Time: {timestamp}\n"
        "Error: {error}"
    )

    BODY_UP: Final[str] = (
        "🟢 {name} is back UP!\n\n"
        "URL: {url}\n"
        "Time: {timestamp}\n"
        "Down for: {downtime}"
    )

    STATS_FOOTER: Final[str] = (
        "\n\nLast {window}h: uptime {uptime:.2f}%, "
        "avg response {avg_response:.0f} ms"
    )
