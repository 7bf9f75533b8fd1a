"""
============================================================================
UPTIME MONITOR - MAIN APPLICATION
============================================================================
Process entry point wiring every layer of the monitor together.

    Layer 1 — Core & Database
        • Settings (pydantic-settings)
        • SQLAlchemy async engine + models
        • DatabaseManager + MonitorStore
        • Logging (loguru)

    Layer 2 — Monitoring Engine
        • CheckerRegistry     — HTTP/TCP/TLS/DNS/WebSocket/ICMP checkers
        • CheckRecorder       — append-only check history
        • IncidentTracker     — incident lifecycle + transition stream
        • StatsAggregator     — uptime / latency / SLA
        • NotificationDispatcher — email + webhook with retry & breaker
        • Scheduler           — monitor tick + retention pruning

    Layer 3 — Infra
        • HealthServer        — aiohttp health / status endpoint

Startup Order
-------------
1.  Load settings & configure logging
2.  Initialize DatabaseManager (create tables if needed)
3.  Build monitoring components
4.  Start HealthServer
5.  Start Scheduler (runs until a signal arrives)

Shutdown Order (reverse)
-------------------------
On SIGINT or SIGTERM:
    stop scheduler (drains pending alerts) → close transports →
    stop health server → close DB → exit

Author: Professional Development Team
Version: 1.0.0
License: MIT
============================================================================
"""

import asyncio
import signal
import sys
from typing import Optional

from config.settings import Settings, get_settings
from database.manager import DatabaseManager, MonitorStore
from exceptions import InitializationError, ShutdownError, UptimeMonitorException
from monitoring.checkers import CheckerRegistry
from monitoring.health import HealthServer
from monitoring.incidents import IncidentTracker
from monitoring.notifications import NotificationDispatcher, build_transports
from monitoring.recorder import CheckRecorder
from monitoring.scheduler import Scheduler
from monitoring.stats import StatsAggregator
from utils.logger import get_logger, setup_logging


logger = get_logger("Main")


# ============================================================================
# APPLICATION CLASS
# ============================================================================

class UptimeMonitorApplication:
    """
    Top-level application orchestrator.

    Owns every subsystem and is the single place that knows the startup /
    shutdown order. Components receive their settings section through
    their constructors.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

        # --- subsystems (populated during startup) ---
        self.db_manager: Optional[DatabaseManager] = None
        self.store: Optional[MonitorStore] = None
        self.tracker: Optional[IncidentTracker] = None
        self.stats: Optional[StatsAggregator] = None
        self.dispatcher: Optional[NotificationDispatcher] = None
        self.scheduler: Optional[Scheduler] = None
        self.health_server: Optional[HealthServer] = None

        # --- lifecycle ---
        self._stop_event = asyncio.Event()
        self._is_running = False

    # ------------------------------------------------------------------
    # BANNER
    # ------------------------------------------------------------------

    def _print_banner(self) -> None:
        banner = f"""
╔══════════════════════════════════════════════════════════════════════════╗
║   {self.settings.app_name:<24} v{self.settings.app_version:<12}                                ║
║   Environment : {self.settings.environment.value:<12}  Database : {self.settings.database.type.value:<12}           ║
╚══════════════════════════════════════════════════════════════════════════╝
"""
        logger.info(banner)

    # ==================================================================
    # PHASE 1: DATABASE
    # ==================================================================

    async def _init_database(self) -> None:
        """
        Initialize the database manager and verify connectivity.

        Raises:
            InitializationError: when the engine cannot be created or reached
        """
        logger.info("── Phase 1: Database ─────────────────────────────")
        try:
            self.db_manager = DatabaseManager(self.settings.database)
            await self.db_manager.initialize()

            if not await self.db_manager.check_connection():
                raise InitializationError("Database connection check failed", component="database")

            self.store = MonitorStore(self.db_manager)
            resources = await self.store.list_enabled_resources()
        except InitializationError:
            raise
        except UptimeMonitorException as e:
            raise InitializationError(
                f"Database init failed: {e.message}", component="database", cause=e
            ) from e

        logger.info(
            f"  ✓ Connected to {self.settings.database.type.value} — "
            f"{len(resources)} enabled resources"
        )

    # ==================================================================
    # PHASE 2: MONITORING ENGINE
    # ==================================================================

    def _init_monitoring(self) -> None:
        """Wire checkers, recorder, tracker, stats, dispatcher, scheduler."""
        logger.info("── Phase 2: Monitoring Engine ────────────────────")
        monitoring = self.settings.monitoring

        checkers = CheckerRegistry(monitoring)
        recorder = CheckRecorder(self.store, monitoring)
        self.tracker = IncidentTracker(self.store)
        self.stats = StatsAggregator(self.store, monitoring)

        transports = build_transports(self.settings.notifications)
        self.dispatcher = NotificationDispatcher(
            transports,
            self.settings.notifications,
            self.settings.resilience,
        )

        self.scheduler = Scheduler(
            store=self.store,
            checkers=checkers,
            recorder=recorder,
            tracker=self.tracker,
            stats=self.stats,
            dispatcher=self.dispatcher,
            settings=monitoring,
        )

        logger.info(
            f"  ✓ Engine ready — tick {monitoring.tick_interval}s, "
            f"{monitoring.max_concurrent_checks} concurrent checks, "
            f"transports: {', '.join(t.name for t in transports) or 'none'}"
        )

    # ==================================================================
    # PHASE 3: HEALTH ENDPOINT
    # ==================================================================

    def _init_health(self) -> None:
        if not self.settings.health.enabled:
            return
        self.health_server = HealthServer(
            self.settings.health,
            app_name=self.settings.app_name,
            app_version=self.settings.app_version,
            scheduler=self.scheduler,
            dispatcher=self.dispatcher,
            db_manager=self.db_manager,
        )

    # ==================================================================
    # FULL STARTUP SEQUENCE
    # ==================================================================

    async def startup(self) -> None:
        """
        Execute the complete startup sequence.

        Raises:
            InitializationError: when a critical phase fails
        """
        self._print_banner()

        await self._init_database()
        self._init_monitoring()
        self._init_health()

        logger.info("── Starting background services ───────────────────")

        if self.health_server:
            try:
                await self.health_server.start()
            except OSError as e:
                logger.warning(f"  ⚠ HealthServer failed to start — continuing without it: {e}")
                self.health_server = None

        await self.scheduler.start()
        self._is_running = True

        logger.info("  ✓ ALL SYSTEMS OPERATIONAL")

    # ==================================================================
    # SHUTDOWN SEQUENCE
    # ==================================================================

    async def _stop_component(self, component: str, closer) -> None:
        """Await *closer*; a failure is logged and never stops the sequence."""
        try:
            await closer()
        except Exception as e:
            error = ShutdownError.from_exception(e, component=component)
            logger.error(f"  ✗ {error.log_format()}")

    async def shutdown(self) -> None:
        """
        Graceful shutdown in reverse order.
        A failure in one subsystem doesn't prevent the others from
        cleaning up.
        """
        if not self._is_running and self.db_manager is None:
            return
        logger.info("  SHUTTING DOWN …")
        self._is_running = False

        if self.scheduler:
            await self._stop_component("scheduler", self.scheduler.stop)
        if self.dispatcher:
            await self._stop_component("transports", self.dispatcher.close)
        if self.health_server:
            await self._stop_component("health_server", self.health_server.stop)
        if self.db_manager:
            await self._stop_component("database", self.db_manager.close)
            self.db_manager = None

        logger.info("  ✓ SHUTDOWN COMPLETE")

    # ==================================================================
    # RUN
    # ==================================================================

    def request_stop(self) -> None:
        self._stop_event.set()

    async def run(self) -> None:
        """Block until a stop is requested."""
        await self._stop_event.wait()


# ============================================================================
# SIGNAL HANDLER SETUP
# ============================================================================

def _install_signal_handlers(app: UptimeMonitorApplication) -> None:
    """
    Install SIGTERM / SIGINT handlers so that the monitor shuts down
    gracefully even when killed by the OS.
    """
    loop = asyncio.get_running_loop()

    def _handle_signal(sig: signal.Signals) -> None:
        logger.info(f"  ⚡ {sig.name} received — initiating graceful shutdown…")
        app.request_stop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, _handle_signal, sig)
        except (NotImplementedError, RuntimeError):
            # not supported on Windows; KeyboardInterrupt still works there
            logger.debug(f"Signal handler for {sig.name} not installed")


# ============================================================================
# MAIN ENTRY POINT
# ============================================================================

async def main() -> int:
    """
    Async main — creates the app, starts it, and runs until shutdown.
    """
    settings = get_settings()
    setup_logging(settings.logging)

    app = UptimeMonitorApplication(settings)
    _install_signal_handlers(app)

    try:
        await app.startup()
        await app.run()
    except InitializationError as e:
        logger.error(f"  ✗ Startup failed — {e.log_format()}")
        return 1
    finally:
        await app.shutdown()
    return 0


def run() -> None:
    """Console-script entry point."""
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        logger.info("  ⚡ KeyboardInterrupt received")


# ============================================================================
# SCRIPT ENTRY POINT
# ============================================================================

if __name__ == "__main__":
    run()
