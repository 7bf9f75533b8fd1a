"""
Configuration Package for Uptime Monitor

This package contains all configuration-related modules including:
- Settings management with environment variable support
- Constants and enums used throughout the application
"""

from config.settings import (
    Settings,
    DatabaseSettings,
    MonitoringSettings,
    NotificationSettings,
    ResilienceSettings,
    LoggingSettings,
    HealthSettings,
    get_settings,
    parse_clock,
)

from config.constants import (
    ResourceType,
    CheckStatus,
    TransitionType,
    CircuitState,
    NotificationOutcome,
    TransportName,
    Defaults,
    Percentiles,
    MessageTemplates,
)

__all__ = [
    # Settings
    "Settings",
    "DatabaseSettings",
    "MonitoringSettings",
    "NotificationSettings",
    "ResilienceSettings",
    "LoggingSettings",
    "HealthSettings",
    "get_settings",
    "parse_clock",

    # Constants
    "ResourceType",
    "CheckStatus",
    "TransitionType",
    "CircuitState",
    "NotificationOutcome",
    "TransportName",
    "Defaults",
    "Percentiles",
    "MessageTemplates",
]
