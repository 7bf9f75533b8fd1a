"""
Tests for application wiring, startup and shutdown.
"""

from unittest.mock import AsyncMock, patch

import pytest

from config.settings import DatabaseSettings, HealthSettings, Settings
from exceptions import InitializationError
from main import UptimeMonitorApplication


@pytest.fixture
def app_settings() -> Settings:
    return Settings(
        database=DatabaseSettings(type="sqlite", sqlite_path=":memory:"),
        health=HealthSettings(enabled=False),
    )


class TestApplication:

    async def test_startup_and_shutdown(self, app_settings):
        app = UptimeMonitorApplication(app_settings)

        await app.startup()
        assert app.scheduler.is_running
        assert app.health_server is None

        await app.shutdown()
        assert app.scheduler.is_running is False
        assert app.db_manager is None

    async def test_unreachable_database_fails_startup(self, app_settings):
        app = UptimeMonitorApplication(app_settings)

        with patch("main.DatabaseManager.check_connection", AsyncMock(return_value=False)):
            with pytest.raises(InitializationError) as exc_info:
                await app.startup()

        assert exc_info.value.details["component"] == "database"
        await app.shutdown()

    async def test_shutdown_survives_component_errors(self, app_settings):
        app = UptimeMonitorApplication(app_settings)
        await app.startup()
        app.dispatcher.close = AsyncMock(side_effect=RuntimeError("socket already closed"))

        await app.shutdown()

        assert app.db_manager is None

    async def test_run_returns_after_stop_request(self, app_settings):
        app = UptimeMonitorApplication(app_settings)
        app.request_stop()

        await app.run()
