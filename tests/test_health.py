"""
Tests for the health / status endpoint.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from aiohttp.test_utils import TestClient, TestServer

from config.settings import HealthSettings
from monitoring.health import HealthServer


@pytest.fixture
def scheduler():
    mock = MagicMock()
    mock.is_running = True
    mock.last_tick = None
    mock.pending_dispatches = 0
    mock.get_job_stats.return_value = [{"name": "monitor_tick", "run_count": 3}]
    return mock


class TestHealthServer:

    async def test_root_is_plain_ok(self, scheduler):
        server = HealthServer(HealthSettings(), "Uptime Monitor", "1.0.0", scheduler=scheduler)
        async with TestClient(TestServer(server.app)) as client:
            response = await client.get("/")
            assert response.status == 200
            assert await response.text() == "OK"

    async def test_healthy(self, scheduler, db_manager):
        server = HealthServer(
            HealthSettings(), "Uptime Monitor", "1.0.0", scheduler=scheduler, db_manager=db_manager
        )
        async with TestClient(TestServer(server.app)) as client:
            response = await client.get("/health")
            body = await response.json()

        assert response.status == 200
        assert body["status"] == "healthy"
        assert body["database_ok"] is True
        assert body["scheduler_running"] is True

    async def test_degraded_when_scheduler_stopped(self, scheduler):
        scheduler.is_running = False
        server = HealthServer(HealthSettings(), "Uptime Monitor", "1.0.0", scheduler=scheduler)
        async with TestClient(TestServer(server.app)) as client:
            response = await client.get("/health")
            body = await response.json()

        assert response.status == 503
        assert body["status"] == "degraded"

    async def test_degraded_when_database_down(self, scheduler):
        db_manager = MagicMock()
        db_manager.check_connection = AsyncMock(return_value=False)
        server = HealthServer(
            HealthSettings(), "Uptime Monitor", "1.0.0", scheduler=scheduler, db_manager=db_manager
        )
        async with TestClient(TestServer(server.app)) as client:
            response = await client.get("/health")

        assert response.status == 503

    async def test_status_includes_jobs_and_breakers(self, scheduler):
        dispatcher = MagicMock()
        dispatcher.breaker_states.return_value = {"webhook": {"state": "closed"}}
        server = HealthServer(
            HealthSettings(), "Uptime Monitor", "1.0.0", scheduler=scheduler, dispatcher=dispatcher
        )
        async with TestClient(TestServer(server.app)) as client:
            response = await client.get("/status")
            body = await response.json()

        assert body["jobs"][0]["name"] == "monitor_tick"
        assert body["last_tick"] is None
        assert body["breakers"]["webhook"]["state"] == "closed"
        assert body["requests_served"] == 1
