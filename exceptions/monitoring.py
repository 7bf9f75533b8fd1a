"""
Monitoring Exception Classes for Uptime Monitor

Two families live here:

- Probe failures, raised inside protocol checkers and converted into
  ``down`` check results at the checker boundary. They never reach
  the scheduler.
- Transport failures, raised by notification transports and the
  retry / circuit-breaker layer wrapped around them.
"""

from __future__ import annotations

from typing import Any, Optional

from exceptions.base import UptimeMonitorException


# ============================================================================
# PROBE FAILURES
# ============================================================================

class ProbeException(UptimeMonitorException):
    """
    Base Probe Exception

    Parent class for everything that makes a probe report ``down``.
    ``str()`` of a probe exception is the plain message, since it is
    stored verbatim as the check's error message.
    """

    default_error_code = 4000
    default_recoverable = True

    def __init__(
        self,
        message: str,
        target: Optional[str] = None,
        status_code: Optional[int] = None,
        **kwargs: Any
    ) -> None:
        super().__init__(message, **kwargs)
        self.status_code = status_code

        if target:
            self.details["target"] = target

        if status_code is not None:
            self.details["status_code"] = status_code

    def __str__(self) -> str:
        return self.message


class ProbeTimeoutError(ProbeException):
    """Raised when a probe exceeds its deadline."""

    default_error_code = 4001

    def __init__(
        self,
        message: Optional[str] = None,
        timeout_ms: Optional[int] = None,
        **kwargs: Any
    ) -> None:
        if message is None:
            message = f"Timeout after {timeout_ms}ms" if timeout_ms else "Timed out"
        super().__init__(message, **kwargs)

        if timeout_ms is not None:
            self.details["timeout_ms"] = timeout_ms


class ProbeConnectionError(ProbeException):
    """Raised when the target refuses or drops the connection."""

    default_error_code = 4002


class DNSResolutionError(ProbeException):
    """Raised when a hostname cannot be resolved."""

    default_error_code = 4003


class TLSCertificateError(ProbeException):
    """Raised when a certificate is missing or cannot be parsed."""

    default_error_code = 4004


class HTTPStatusError(ProbeException):
    """Raised when an HTTP probe gets a status outside [200, 400)."""

    default_error_code = 4005

    def __init__(self, status_code: int, **kwargs: Any) -> None:
        super().__init__(f"HTTP {status_code}", status_code=status_code, **kwargs)


class KeywordMismatchError(ProbeException):
    """Raised when the configured keyword is absent from the response body."""

    default_error_code = 4006

    def __init__(self, keyword: str, status_code: Optional[int] = None, **kwargs: Any) -> None:
        super().__init__(
            f"Keyword '{keyword}' not found in response",
            status_code=status_code,
            **kwargs
        )
        self.details["keyword"] = keyword


# ============================================================================
# TRANSPORT FAILURES
# ============================================================================

class NotificationException(UptimeMonitorException):
    """
    Base Notification Exception

    Parent class for alert delivery failures.
    """

    default_error_code = 5000
    default_recoverable = True

    def __init__(
        self,
        message: str,
        transport: Optional[str] = None,
        **kwargs: Any
    ) -> None:
        super().__init__(message, **kwargs)
        self.transport = transport

        if transport:
            self.details["transport"] = transport


class TransportError(NotificationException):
    """Raised by a transport when a single send attempt fails."""

    default_error_code = 5001


class TransportConfigurationError(NotificationException):
    """
    Raised when a transport cannot send because it is misconfigured.

    Not retried and not counted by the circuit breaker.
    """

    default_error_code = 5002


class RetryExhaustedError(NotificationException):
    """
    Raised when every attempt allowed by a retry policy has failed.

    Attributes:
        attempts: Number of calls made
        last_error: The exception raised by the final attempt
    """

    default_error_code = 5003

    def __init__(
        self,
        context: str,
        attempts: int,
        last_error: Optional[BaseException] = None,
        **kwargs: Any
    ) -> None:
        super().__init__(
            f"{context} failed after {attempts} attempts",
            cause=last_error,
            **kwargs
        )
        self.attempts = attempts
        self.last_error = last_error
        self.details["attempts"] = attempts

        if last_error is not None:
            self.details["last_error"] = str(last_error)


class CircuitOpenError(NotificationException):
    """Raised when a call is short-circuited by an open breaker."""

    default_error_code = 5004

    def __init__(
        self,
        message: str = "Circuit breaker is open",
        retry_after: Optional[float] = None,
        **kwargs: Any
    ) -> None:
        super().__init__(message, **kwargs)
        self.retry_after = retry_after

        if retry_after is not None:
            self.details["retry_after"] = round(retry_after, 3)
