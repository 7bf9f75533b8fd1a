"""
Exceptions Package for Uptime Monitor

Provides a comprehensive exception hierarchy for error handling
throughout the application.
"""

from exceptions.base import (
    UptimeMonitorException,
    ConfigurationError,
    InitializationError,
    ShutdownError
)

from exceptions.database import (
    DatabaseException,
    DatabaseConnectionError,
    DatabaseQueryError,
    DatabaseNotFoundError
)

from exceptions.monitoring import (
    ProbeException,
    ProbeTimeoutError,
    ProbeConnectionError,
    DNSResolutionError,
    TLSCertificateError,
    HTTPStatusError,
    KeywordMismatchError,
    NotificationException,
    TransportError,
    TransportConfigurationError,
    RetryExhaustedError,
    CircuitOpenError
)

__all__ = [
    # Base exceptions
    "UptimeMonitorException",
    "ConfigurationError",
    "InitializationError",
    "ShutdownError",

    # Database exceptions
    "DatabaseException",
    "DatabaseConnectionError",
    "DatabaseQueryError",
    "DatabaseNotFoundError",

    # Probe exceptions
    "ProbeException",
    "ProbeTimeoutError",
    "ProbeConnectionError",
    "DNSResolutionError",
    "TLSCertificateError",
    "HTTPStatusError",
    "KeywordMismatchError",

    # Notification exceptions
    "NotificationException",
    "TransportError",
    "TransportConfigurationError",
    "RetryExhaustedError",
    "CircuitOpenError"
]
