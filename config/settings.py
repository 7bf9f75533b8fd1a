"""
Settings Module for Uptime Monitor

Comprehensive configuration management using Pydantic Settings.
Supports environment variables, .env files, and runtime configuration.
Includes validation, type checking, and sensible defaults.
"""

from __future__ import annotations

import re
from datetime import time as dt_time
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional, Tuple
from enum import Enum

from pydantic import (
    Field,
    SecretStr,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from config.constants import Defaults


_QUIET_HOURS_RE = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")


def parse_clock(value: Optional[str]) -> Optional[dt_time]:
    """
    Parse an ``HH:MM`` string into a time object.

    Returns None for empty values and raises ValueError for malformed ones.
    """
    if value is None or not str(value).strip():
        return None
    match = _QUIET_HOURS_RE.match(str(value).strip())
    if not match:
        raise ValueError(f"Expected HH:MM, got {value!r}")
    return dt_time(int(match.group(1)), int(match.group(2)))


class Environment(str, Enum):
    """Application environment enumeration."""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


class LogLevel(str, Enum):
    """Logging level enumeration."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class DatabaseType(str, Enum):
    """Supported database types."""
    POSTGRESQL = "postgresql"
    SQLITE = "sqlite"


class BaseSettingsConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        validate_default=True
    )


class DatabaseSettings(BaseSettingsConfig):
    """
    Database Configuration Settings

    Supports PostgreSQL (production) and SQLite (development, tests).
    """

    model_config = SettingsConfigDict(
        env_prefix="DB_",
        env_file=".env",
        extra="ignore"
    )

    type: DatabaseType = Field(
        default=DatabaseType.SQLITE,
        description="Database type: postgresql or sqlite"
    )

    # PostgreSQL settings
    host: str = Field(
        default="localhost",
        description="Database host address"
    )
    port: int = Field(
        default=5432,
        ge=1,
        le=65535,
        description="Database port number"
    )
    name: str = Field(
        default="uptime_monitor",
        min_length=1,
        max_length=64,
        description="Database name"
    )
    user: str = Field(
        default="postgres",
        min_length=1,
        max_length=64,
        description="Database username"
    )
    password: SecretStr = Field(
        default=SecretStr(""),
        description="Database password"
    )

    # SQLite settings
    sqlite_path: Path = Field(
        default=Path("data/monitor.db"),
        description="Path to SQLite database file, ':memory:' for an in-memory database"
    )

    # Connection pool settings
    pool_size: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Connection pool size (PostgreSQL only)"
    )
    max_overflow: int = Field(
        default=20,
        ge=0,
        le=100,
        description="Maximum overflow connections"
    )
    pool_recycle: int = Field(
        default=1800,
        ge=60,
        le=7200,
        description="Connection recycle time in seconds"
    )

    echo: bool = Field(
        default=False,
        description="Echo SQL queries (debug mode)"
    )

    @property
    def is_memory(self) -> bool:
        """True when the SQLite database lives in memory."""
        return self.type == DatabaseType.SQLITE and str(self.sqlite_path) == ":memory:"

    @property
    def url(self) -> str:
        """Generate async database URL based on configuration."""
        if self.type == DatabaseType.SQLITE:
            if self.is_memory:
                return "sqlite+aiosqlite:///:memory:"
            self.sqlite_path.parent.mkdir(parents=True, exist_ok=True)
            return f"sqlite+aiosqlite:///{self.sqlite_path}"

        elif self.type == DatabaseType.POSTGRESQL:
            password = self.password.get_secret_value()
            return (
                f"postgresql+asyncpg://{self.user}:{password}"
                f"@{self.host}:{self.port}/{self.name}"
            )

        raise ValueError(f"Unsupported database type: {self.type}")

    @field_validator("sqlite_path")
    @classmethod
    def validate_sqlite_path(cls, v: Path) -> Path:
        """Validate and normalize SQLite path."""
        if str(v) == ":memory:":
            return v
        if not v.suffix:
            v = v.with_suffix(".db")
        return v


class MonitoringSettings(BaseSettingsConfig):
    """
    Monitoring Engine Configuration Settings

    Controls the scheduler tick, probe defaults, concurrency,
    and check retention.
    """

    model_config = SettingsConfigDict(
        env_prefix="MONITOR_",
        env_file=".env",
        extra="ignore"
    )

    # Scheduler
    tick_interval: float = Field(
        default=60.0,
        gt=0,
        le=3600,
        description="Seconds between scheduler ticks (all enabled resources are probed every tick)"
    )
    max_concurrent_checks: int = Field(
        default=20,
        ge=1,
        le=500,
        description="Maximum number of probes running at once within a tick"
    )

    # Probe defaults
    default_timeout_ms: int = Field(
        default=Defaults.TIMEOUT_MS,
        ge=100,
        le=120000,
        description="Probe timeout used when a resource has none (milliseconds)"
    )
    max_redirects: int = Field(
        default=Defaults.MAX_REDIRECTS,
        ge=0,
        le=20,
        description="Maximum HTTP redirects followed by the HTTP checker"
    )
    user_agent: str = Field(
        default="UptimeMonitor/1.0",
        description="User-Agent header sent by HTTP probes"
    )
    icmp_count: int = Field(
        default=3,
        ge=1,
        le=20,
        description="Echo requests sent per ICMP probe"
    )

    # Alert context
    recent_checks_limit: int = Field(
        default=Defaults.RECENT_CHECKS_LIMIT,
        ge=1,
        le=500,
        description="Number of recent checks attached to an alert"
    )
    stats_window_hours: int = Field(
        default=Defaults.STATS_WINDOW_HOURS,
        ge=1,
        le=24 * 90,
        description="Window of the statistics attached to an alert"
    )

    # Retention
    retention_days: int = Field(
        default=Defaults.RETENTION_DAYS,
        ge=1,
        le=365,
        description="Checks older than this are pruned"
    )
    prune_interval: float = Field(
        default=86400.0,
        ge=60,
        description="Seconds between retention pruning runs"
    )
    checks_cap_per_resource: int = Field(
        default=10000,
        ge=0,
        description="Rolling cap of stored checks per resource (0 = unlimited)"
    )


class NotificationSettings(BaseSettingsConfig):
    """
    Notification Transport Settings

    SMTP and webhook configuration, plus the global quiet-hours window.
    """

    model_config = SettingsConfigDict(
        env_prefix="NOTIFY_",
        env_file=".env",
        extra="ignore"
    )

    # Email
    email_enabled: bool = Field(default=False, description="Enable the email transport")
    email_host: Optional[str] = Field(default=None, description="SMTP host")
    email_port: int = Field(default=587, ge=1, le=65535, description="SMTP port")
    email_user: Optional[str] = Field(default=None, description="SMTP username")
    email_password: SecretStr = Field(default=SecretStr(""), description="SMTP password")
    email_from: Optional[str] = Field(default=None, description="Sender address")
    email_to: Optional[str] = Field(default=None, description="Default recipient address")
    email_starttls: bool = Field(default=True, description="Upgrade the SMTP session with STARTTLS")
    email_timeout: float = Field(default=10.0, gt=0, le=120, description="SMTP timeout in seconds")

    # Webhook
    webhook_enabled: bool = Field(default=False, description="Enable the webhook transport")
    webhook_url: Optional[str] = Field(default=None, description="Webhook endpoint")
    webhook_timeout: float = Field(default=10.0, gt=0, le=120, description="Webhook timeout in seconds")

    # Global quiet hours (HH:MM, local to the server clock)
    quiet_hours_start: Optional[str] = Field(default=None, description="Global quiet hours start (HH:MM)")
    quiet_hours_end: Optional[str] = Field(default=None, description="Global quiet hours end (HH:MM)")

    @field_validator("quiet_hours_start", "quiet_hours_end")
    @classmethod
    def validate_clock(cls, v: Optional[str]) -> Optional[str]:
        """Reject malformed HH:MM strings."""
        parse_clock(v)
        return v.strip() if v else None

    @property
    def email_configured(self) -> bool:
        """True when the email transport has everything it needs."""
        return bool(
            self.email_enabled
            and self.email_host
            and self.email_from
        )

    @property
    def webhook_configured(self) -> bool:
        """True when the webhook transport has a target URL."""
        return bool(self.webhook_enabled and self.webhook_url)

    @property
    def quiet_hours(self) -> Optional[Tuple[dt_time, dt_time]]:
        """Parsed global quiet-hours window, or None."""
        start = parse_clock(self.quiet_hours_start)
        end = parse_clock(self.quiet_hours_end)
        if start is None or end is None:
            return None
        return start, end


class ResilienceSettings(BaseSettingsConfig):
    """
    Retry and Circuit Breaker Settings

    Applied independently to every notification transport.
    """

    model_config = SettingsConfigDict(
        env_prefix="RESILIENCE_",
        env_file=".env",
        extra="ignore"
    )

    max_retries: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Retries after the first attempt"
    )
    initial_delay: float = Field(
        default=1.0,
        ge=0,
        le=60,
        description="Initial backoff delay in seconds"
    )
    max_delay: float = Field(
        default=10.0,
        ge=0,
        le=600,
        description="Backoff delay cap in seconds"
    )
    failure_threshold: int = Field(
        default=5,
        ge=1,
        le=100,
        description="Consecutive failures that open the breaker"
    )
    reset_timeout: float = Field(
        default=60.0,
        gt=0,
        le=3600,
        description="Seconds an open breaker waits before a trial call"
    )

    @model_validator(mode="after")
    def validate_delays(self) -> "ResilienceSettings":
        """Validate delay relationships."""
        if self.initial_delay > self.max_delay:
            raise ValueError("initial_delay cannot be greater than max_delay")
        return self


class LoggingSettings(BaseSettingsConfig):
    """
    Logging Configuration Settings

    Console and rotating file sinks handled by loguru.
    """

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        env_file=".env",
        extra="ignore"
    )

    level: LogLevel = Field(
        default=LogLevel.INFO,
        description="Minimum logging level"
    )

    # Console logging
    console_enabled: bool = Field(
        default=True,
        description="Enable console logging"
    )
    console_colored: bool = Field(
        default=True,
        description="Enable colored console output"
    )

    # File logging
    file_enabled: bool = Field(
        default=False,
        description="Enable file logging"
    )
    file_path: Path = Field(
        default=Path("logs/uptime_monitor.log"),
        description="Log file path"
    )
    file_rotation: str = Field(
        default="10 MB",
        description="Log rotation size (e.g., '10 MB', '1 day')"
    )
    file_retention: str = Field(
        default="30 days",
        description="Log retention period"
    )
    file_compression: str = Field(
        default="zip",
        description="Compression format for rotated logs"
    )
    json_enabled: bool = Field(
        default=False,
        description="Serialize file log records as JSON"
    )

    # Error logging (separate file for errors)
    error_file_enabled: bool = Field(
        default=False,
        description="Enable separate error log file"
    )
    error_file_path: Path = Field(
        default=Path("logs/errors.log"),
        description="Error log file path"
    )


class HealthSettings(BaseSettingsConfig):
    """Health endpoint settings."""

    model_config = SettingsConfigDict(
        env_prefix="HEALTH_",
        env_file=".env",
        extra="ignore"
    )

    enabled: bool = Field(default=True, description="Serve the health endpoint")
    host: str = Field(default="0.0.0.0", description="Bind host")
    port: int = Field(default=8080, ge=1, le=65535, description="Bind port")


class Settings(BaseSettingsConfig):
    """
    Main Settings Class

    Aggregates all settings sections and provides the main
    configuration interface for the application.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Application environment"
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode"
    )

    app_name: str = Field(
        default="Uptime Monitor",
        description="Application name"
    )
    app_version: str = Field(
        default="1.0.0",
        description="Application version"
    )

    # Nested settings
    database: DatabaseSettings = Field(
        default_factory=DatabaseSettings
    )
    monitoring: MonitoringSettings = Field(
        default_factory=MonitoringSettings
    )
    notifications: NotificationSettings = Field(
        default_factory=NotificationSettings
    )
    resilience: ResilienceSettings = Field(
        default_factory=ResilienceSettings
    )
    logging: LoggingSettings = Field(
        default_factory=LoggingSettings
    )
    health: HealthSettings = Field(
        default_factory=HealthSettings
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == Environment.PRODUCTION

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == Environment.DEVELOPMENT

    @property
    def is_testing(self) -> bool:
        """Check if running in testing environment."""
        return self.environment == Environment.TESTING

    @model_validator(mode="after")
    def configure_for_environment(self) -> "Settings":
        """Apply environment-specific configuration."""
        if self.is_production:
            self.debug = False
            self.database.echo = False

        elif self.is_development and self.debug:
            if self.logging.level == LogLevel.INFO:
                self.logging.level = LogLevel.DEBUG

        return self

    def to_dict(self, *, exclude_secrets: bool = True) -> Dict[str, Any]:
        """Convert settings to dictionary."""
        data = self.model_dump(mode="json")

        if exclude_secrets:
            def remove_secrets(obj: Any) -> Any:
                if isinstance(obj, dict):
                    return {
                        k: remove_secrets(v)
                        for k, v in obj.items()
                        if "password" not in k.lower()
                        and "secret" not in k.lower()
                        and "token" not in k.lower()
                    }
                elif isinstance(obj, list):
                    return [remove_secrets(item) for item in obj]
                return obj

            data = remove_secrets(data)

        return data


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Only the process entry point should call this; every component
    receives its settings section through its constructor.

    Returns:
        Settings: Application settings instance
    """
    return Settings()
