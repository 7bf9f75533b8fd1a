"""
============================================================================
UPTIME MONITOR - SCHEDULER
============================================================================
An asyncio-native periodic job scheduler driving the monitoring engine.
All jobs run as coroutines in the same event loop (single process, no
broker, no cross-node coordination).

Registered Jobs
---------------
1.  monitor_tick            (every MONITOR_TICK_INTERVAL, default 60 s)
    Probes every enabled resource once: probe → record → debounce →
    incident tracker → background notification dispatch.

2.  check_pruning           (every MONITOR_PRUNE_INTERVAL, default 24 h)
    Deletes checks older than the retention window; a resource's own
    ``retention_days`` overrides the global value.

Ticks never overlap: a tick that is still running when the next one is
due causes the new one to be skipped with a warning.

Author: Professional Development Team
Version: 1.0.0
License: MIT
============================================================================
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Set

from config.constants import CheckStatus, NotificationOutcome, TransitionType
from config.settings import MonitoringSettings
from monitoring.checkers import CheckerRegistry
from monitoring.incidents import FailureStreakTracker, IncidentTracker, IncidentTransition
from monitoring.notifications import NotificationDispatcher
from monitoring.recorder import CheckRecorder
from monitoring.stats import StatsAggregator
from utils.helpers import TimeHelper
from utils.logger import MonitorLogger, get_logger, log_execution_time


logger = get_logger("Scheduler")


# ============================================================================
# JOB DEFINITION
# ============================================================================

@dataclass
class ScheduledJob:
    """
    Describes a single periodic background job.

    Attributes
    ----------
    name : str
        Human-readable identifier (used in logs).
    interval_seconds : float
        How often the job runs.
    coroutine_factory : Callable
        An async callable (no arguments) that performs the work.
    enabled : bool
        Can be toggled at runtime.
    last_run : Optional[float]
        Epoch timestamp of the last successful execution.
    next_run : float
        Epoch timestamp when the job should next execute.
    run_count : int
        Total number of successful executions since startup.
    error_count : int
        Total number of failed executions since startup.
    """
    name: str
    interval_seconds: float
    coroutine_factory: Callable
    enabled: bool = True
    last_run: Optional[float] = None
    next_run: float = field(default_factory=time.time)
    run_count: int = 0
    error_count: int = 0


# ============================================================================
# TICK SUMMARY
# ============================================================================

@dataclass
class TickSummary:
    """Outcome of one monitoring tick."""
    started_at: datetime
    finished_at: Optional[datetime] = None
    skipped: bool = False
    resources: int = 0
    up: int = 0
    down: int = 0
    errors: int = 0
    transitions: List[IncidentTransition] = field(default_factory=list)

    @property
    def duration_seconds(self) -> float:
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "skipped": self.skipped,
            "resources": self.resources,
            "up": self.up,
            "down": self.down,
            "errors": self.errors,
            "transitions": [
                {"resource_id": t.resource_id, "type": t.type.value} for t in self.transitions
            ],
            "duration_seconds": round(self.duration_seconds, 3),
        }


# ============================================================================
# SCHEDULER
# ============================================================================

class Scheduler:
    """
    Asyncio-based periodic scheduler for the monitoring engine.

    Usage
    -----
        scheduler = Scheduler(store, checkers, recorder, tracker, stats, dispatcher, settings)
        await scheduler.start()
        # ... later ...
        await scheduler.stop()

    ``run_once()`` triggers a tick manually (tests, admin tooling).
    """

    def __init__(
        self,
        store,
        checkers: CheckerRegistry,
        recorder: CheckRecorder,
        tracker: IncidentTracker,
        stats: StatsAggregator,
        dispatcher: NotificationDispatcher,
        settings: MonitoringSettings,
        streaks: Optional[FailureStreakTracker] = None,
    ):
        self.store = store
        self.checkers = checkers
        self.recorder = recorder
        self.tracker = tracker
        self.stats = stats
        self.dispatcher = dispatcher
        self.settings = settings
        self.streaks = streaks or FailureStreakTracker()
        self.monitor_log = MonitorLogger()

        self._jobs: Dict[str, ScheduledJob] = {}
        self._running = False
        self._loop_task: Optional[asyncio.Task] = None
        self._job_tasks: Set[asyncio.Task] = set()
        self._dispatch_tasks: Set[asyncio.Task] = set()
        self._tick_in_progress = False
        self._semaphore = asyncio.Semaphore(settings.max_concurrent_checks)
        # how often the main loop wakes up to check jobs
        self._wake_interval = min(1.0, settings.tick_interval)

        self.last_tick: Optional[TickSummary] = None

        self._register_builtin_jobs()

        logger.info(f"Scheduler created with {len(self._jobs)} built-in jobs")

    # ------------------------------------------------------------------
    # JOB REGISTRATION
    # ------------------------------------------------------------------

    def register_job(
        self,
        name: str,
        interval_seconds: float,
        coroutine_factory: Callable,
        enabled: bool = True,
    ) -> None:
        """
        Register a new periodic job.

        Parameters
        ----------
        name : str
            Unique job name.
        interval_seconds : float
            Period in seconds.
        coroutine_factory : Callable
            An async callable that takes no arguments.
        enabled : bool
            Whether the job starts enabled.
        """
        if name in self._jobs:
            logger.warning(f"Job '{name}' already registered, overwriting")

        self._jobs[name] = ScheduledJob(
            name=name,
            interval_seconds=interval_seconds,
            coroutine_factory=coroutine_factory,
            enabled=enabled,
            next_run=time.time(),  # run immediately on first wake-up
        )
        logger.debug(f"Registered job '{name}' (interval={interval_seconds}s)")

    def _register_builtin_jobs(self) -> None:
        self.register_job("monitor_tick", self.settings.tick_interval, self.run_once)
        self.register_job("check_pruning", self.settings.prune_interval, self.prune_old_checks)

    # ------------------------------------------------------------------
    # LIFECYCLE
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the scheduler loop."""
        if self._running:
            logger.warning("Scheduler is already running")
            return
        self._running = True
        self._loop_task = asyncio.create_task(self._main_loop())
        logger.info("✓ Scheduler started")

    async def stop(self) -> None:
        """Stop the loop, then wait for running jobs and pending dispatches."""
        self._running = False
        if self._loop_task:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

        if self._job_tasks:
            await asyncio.gather(*self._job_tasks, return_exceptions=True)
        await self.drain()
        logger.info("✓ Scheduler stopped")

    async def drain(self) -> None:
        """Wait until every background notification dispatch has finished."""
        while self._dispatch_tasks:
            await asyncio.gather(*list(self._dispatch_tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # MAIN LOOP
    # ------------------------------------------------------------------

    async def _main_loop(self) -> None:
        """
        Wake up every _wake_interval seconds. For each enabled job whose
        next_run time has arrived, launch it as a background task.
        """
        logger.info("Main loop started")
        while self._running:
            now = time.time()
            for job in self._jobs.values():
                if job.enabled and now >= job.next_run:
                    task = asyncio.create_task(self._execute_job(job))
                    self._job_tasks.add(task)
                    task.add_done_callback(self._job_tasks.discard)
                    # advance next_run immediately so we don't re-trigger
                    job.next_run = now + job.interval_seconds

            try:
                await asyncio.sleep(self._wake_interval)
            except asyncio.CancelledError:
                break

        logger.info("Main loop exited")

    async def _execute_job(self, job: ScheduledJob) -> None:
        """
        Run a single job, capture timing and errors.
        """
        start_time = time.time()
        try:
            await job.coroutine_factory()
            job.run_count += 1
            job.last_run = time.time()
            logger.debug(
                f"Job '{job.name}' completed in {time.time() - start_time:.2f}s "
                f"(run #{job.run_count})"
            )
        except Exception as e:
            job.error_count += 1
            logger.opt(exception=True).error(
                f"Job '{job.name}' FAILED after {time.time() - start_time:.2f}s: {e}"
            )

    # ------------------------------------------------------------------
    # MONITORING TICK
    # ------------------------------------------------------------------

    @log_execution_time
    async def run_once(self) -> TickSummary:
        """
        Probe every enabled resource once.

        Returns:
            TickSummary; ``skipped`` is set when a tick was already running
        """
        summary = TickSummary(started_at=TimeHelper.get_utc_now())

        if self._tick_in_progress:
            logger.warning("Previous tick still running, skipping this tick")
            summary.skipped = True
            summary.finished_at = summary.started_at
            return summary

        self._tick_in_progress = True
        try:
            resources = await self.store.list_enabled_resources()
            summary.resources = len(resources)
            self.tracker.release_locks(resource.id for resource in resources)

            outcomes = await asyncio.gather(
                *(self._process_resource(resource) for resource in resources)
            )

            for status, transition in outcomes:
                if status == CheckStatus.UP:
                    summary.up += 1
                elif status == CheckStatus.DOWN:
                    summary.down += 1
                else:
                    summary.errors += 1
                if transition is not None and transition.changed:
                    summary.transitions.append(transition)
        finally:
            self._tick_in_progress = False

        summary.finished_at = TimeHelper.get_utc_now()
        self.last_tick = summary

        logger.info(
            f"Tick finished: {summary.resources} resources, {summary.up} up, "
            f"{summary.down} down, {summary.errors} errors, "
            f"{len(summary.transitions)} transitions"
        )
        return summary

    async def _process_resource(self, resource):
        """
        probe → record → debounce → incident tracker for one resource.

        Exactly one check row is written per call: a failure before the
        row exists records an internal-error row instead, a failure after
        it is only logged.

        Returns:
            (probe status or None on internal error, transition or None)
        """
        async with self._semaphore:
            try:
                result = await self.checkers.probe(resource)
                await self.recorder.record(resource, result)
            except Exception as e:
                logger.opt(exception=True).error(
                    f"Error processing resource {resource.id} ({resource.name}): {e}"
                )
                try:
                    await self.recorder.record_failure(resource, e)
                except Exception as record_error:
                    logger.error(f"Could not record failure for resource {resource.id}: {record_error}")
                return None, None

            try:
                self.monitor_log.log_check(
                    resource.id, resource.name, result.is_up,
                    result.response_time, result.error_message
                )

                effective = self.streaks.observe(
                    resource.id, result.status, resource.consecutive_failures_threshold
                )
                if effective is None:
                    return result.status, None

                transition = await self.tracker.handle(resource.id, effective)
                if transition.changed:
                    self._on_transition(resource, transition, result.error_message)
                return result.status, transition

            except Exception as e:
                logger.opt(exception=True).error(
                    f"Incident update failed for resource {resource.id} ({resource.name}): {e}"
                )
                return None, None

    # ------------------------------------------------------------------
    # NOTIFICATIONS
    # ------------------------------------------------------------------

    def _on_transition(self, resource, transition: IncidentTransition, error: Optional[str]) -> None:
        if transition.type == TransitionType.STARTED:
            self.monitor_log.log_downtime(resource.id, resource.name, error)
        else:
            self.monitor_log.log_recovery(resource.id, resource.name, transition.downtime_seconds or 0)

        task = asyncio.create_task(self._dispatch(resource, transition))
        self._dispatch_tasks.add(task)
        task.add_done_callback(self._dispatch_tasks.discard)

    async def _dispatch(self, resource, transition: IncidentTransition) -> None:
        """Gather alert context and hand the transition to the dispatcher."""
        try:
            recent = await self.store.get_recent_checks(resource.id, self.settings.recent_checks_limit)
            snapshot = await self.stats.get_resource_stats(resource.id, self.settings.stats_window_hours)

            attempts = await self.dispatcher.dispatch(
                resource, transition, recent_checks=recent, stats=snapshot.to_dict()
            )

            delivered = any(a.outcome == NotificationOutcome.SENT for a in attempts)
            if delivered and transition.type == TransitionType.STARTED and transition.incident:
                await self.store.mark_incident_notified(transition.incident.id)
        except Exception as e:
            logger.opt(exception=True).error(
                f"Notification dispatch failed for resource {resource.id}: {e}"
            )

    # ------------------------------------------------------------------
    # RETENTION
    # ------------------------------------------------------------------

    async def prune_old_checks(self) -> int:
        """
        Delete checks past their retention window.

        Returns:
            Number of deleted rows
        """
        now = TimeHelper.get_utc_now()
        deleted = 0

        overrides = [r for r in await self.store.list_resources() if r.retention_days]
        for resource in overrides:
            cutoff = now - timedelta(days=resource.retention_days)
            deleted += await self.store.prune_checks_older_than(cutoff, resource_id=resource.id)

        cutoff = now - timedelta(days=self.settings.retention_days)
        deleted += await self.store.prune_checks_older_than(
            cutoff, exclude_resource_ids=[r.id for r in overrides]
        )

        logger.info(f"Pruned {deleted} checks past retention")
        return deleted

    # ------------------------------------------------------------------
    # DIAGNOSTICS
    # ------------------------------------------------------------------

    @property
    def pending_dispatches(self) -> int:
        return len(self._dispatch_tasks)

    def get_job_stats(self) -> List[Dict[str, Any]]:
        """Return status of all registered jobs."""
        stats = []
        for job in self._jobs.values():
            stats.append({
                "name": job.name,
                "interval_seconds": job.interval_seconds,
                "enabled": job.enabled,
                "run_count": job.run_count,
                "error_count": job.error_count,
                "last_run": (
                    datetime.fromtimestamp(job.last_run).isoformat()
                    if job.last_run else None
                ),
                "next_run": (
                    datetime.fromtimestamp(job.next_run).isoformat()
                    if job.next_run else None
                ),
            })
        return stats
