"""
============================================================================
UPTIME MONITOR - HEALTH SERVER
============================================================================
Lightweight aiohttp server exposing the monitor's own health: scheduler
state, job counters, the last tick and the notification breakers.

Endpoints
---------
GET /         plain liveness probe
GET /health   health JSON (503 when the scheduler or database is down)
GET /status   health JSON plus jobs, last tick and breaker states

Author: Professional Development Team
Version: 1.0.0
License: MIT
============================================================================
"""

import time
from typing import Any, Dict, Optional

from aiohttp import web

from config.settings import HealthSettings
from utils.helpers import TimeHelper
from utils.logger import get_logger


logger = get_logger("HealthServer")


class HealthServer:
    """
    aiohttp server reporting on the running monitor.

    Attributes
    ----------
    _app : aiohttp.web.Application
    _runner : aiohttp.web.AppRunner
    _site : aiohttp.web.TCPSite
    _start_time : float          — epoch seconds when the server started
    _request_count : int         — total requests served
    """

    def __init__(
        self,
        settings: HealthSettings,
        app_name: str,
        app_version: str,
        scheduler: Any = None,
        dispatcher: Any = None,
        db_manager: Any = None,
    ):
        self.settings = settings
        self.app_name = app_name
        self.app_version = app_version
        self.scheduler = scheduler
        self.dispatcher = dispatcher
        self.db_manager = db_manager

        self._app = web.Application()
        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None
        self._start_time: float = 0.0
        self._request_count: int = 0

        self._app.router.add_get("/", self._handle_root)
        self._app.router.add_get("/health", self._handle_health)
        self._app.router.add_get("/status", self._handle_status)

    @property
    def app(self) -> web.Application:
        return self._app

    async def start(self) -> None:
        """Bind and start serving."""
        self._start_time = time.time()
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self.settings.host, self.settings.port)
        await self._site.start()
        logger.info(f"✓ HealthServer listening on {self.settings.host}:{self.settings.port}")

    async def stop(self) -> None:
        """Gracefully shut down the server."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            self._site = None
        logger.info("✓ HealthServer stopped")

    # ------------------------------------------------------------------
    # HEALTH REPORT
    # ------------------------------------------------------------------

    async def build_health(self) -> Dict[str, Any]:
        """Assemble the health document."""
        uptime_seconds = time.time() - self._start_time if self._start_time else 0

        scheduler_running = bool(self.scheduler and self.scheduler.is_running)
        database_ok = True
        if self.db_manager is not None:
            database_ok = await self.db_manager.check_connection()

        healthy = database_ok and (self.scheduler is None or scheduler_running)

        return {
            "status": "healthy" if healthy else "degraded",
            "app": self.app_name,
            "version": self.app_version,
            "uptime_seconds": round(uptime_seconds, 1),
            "uptime_human": TimeHelper.seconds_to_human_readable(int(uptime_seconds)),
            "requests_served": self._request_count,
            "scheduler_running": scheduler_running,
            "database_ok": database_ok,
            "timestamp": TimeHelper.get_utc_now().isoformat(),
        }

    # ------------------------------------------------------------------
    # ROUTE HANDLERS
    # ------------------------------------------------------------------

    async def _handle_root(self, request: web.Request) -> web.Response:
        """GET / — simple liveness probe."""
        self._request_count += 1
        return web.Response(text="OK", status=200)

    async def _handle_health(self, request: web.Request) -> web.Response:
        """GET /health — health JSON."""
        self._request_count += 1
        health = await self.build_health()
        status = 200 if health["status"] == "healthy" else 503
        return web.json_response(health, status=status)

    async def _handle_status(self, request: web.Request) -> web.Response:
        """GET /status — health plus scheduler and breaker details."""
        self._request_count += 1
        report = await self.build_health()

        if self.scheduler is not None:
            last_tick = self.scheduler.last_tick
            report["jobs"] = self.scheduler.get_job_stats()
            report["last_tick"] = last_tick.to_dict() if last_tick else None
            report["pending_dispatches"] = self.scheduler.pending_dispatches

        if self.dispatcher is not None:
            report["breakers"] = self.dispatcher.breaker_states()

        return web.json_response(report, status=200)
