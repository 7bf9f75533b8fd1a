"""
Shared fixtures for the uptime monitor test suite.

Storage tests run against an in-memory SQLite database; everything
else gets plain settings objects and mocks.
"""

import pytest

from config.settings import (
    DatabaseSettings,
    MonitoringSettings,
    NotificationSettings,
    ResilienceSettings,
)
from database.manager import DatabaseManager, MonitorStore


# ============================================================
# SETTINGS
# ============================================================

@pytest.fixture
def monitoring_settings() -> MonitoringSettings:
    return MonitoringSettings(
        tick_interval=1.0,
        max_concurrent_checks=5,
        default_timeout_ms=2000,
        icmp_count=2,
        checks_cap_per_resource=0,
        retention_days=30,
    )


@pytest.fixture
def notification_settings() -> NotificationSettings:
    return NotificationSettings(
        webhook_enabled=True,
        webhook_url="https://hooks.example.com/alert",
        email_enabled=True,
        email_host="smtp.example.com",
        email_from="monitor@example.com",
        email_to="ops@example.com",
        quiet_hours_start=None,
        quiet_hours_end=None,
    )


@pytest.fixture
def resilience_settings() -> ResilienceSettings:
    return ResilienceSettings(
        max_retries=2,
        initial_delay=0.0,
        max_delay=0.0,
        failure_threshold=3,
        reset_timeout=30.0,
    )


# ============================================================
# STORAGE
# ============================================================

@pytest.fixture
async def db_manager():
    manager = DatabaseManager(DatabaseSettings(type="sqlite", sqlite_path=":memory:"))
    await manager.initialize()
    yield manager
    await manager.close()


@pytest.fixture
def store(db_manager) -> MonitorStore:
    return MonitorStore(db_manager)


@pytest.fixture
def make_resource(store):
    """Factory persisting a resource with sensible defaults."""

    async def _make(**fields):
        fields.setdefault("name", "Example")
        fields.setdefault("url", "https://example.com")
        return await store.add_resource(**fields)

    return _make
