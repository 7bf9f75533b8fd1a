"""
============================================================================
UPTIME MONITOR - INCIDENT TRACKER
============================================================================
Incident lifecycle state machine, the failure-streak debouncer that
feeds it, and the in-process stream of incident transitions.

State per resource
------------------
    no incident ──down──▶ open incident ──up──▶ no incident
         ▲  │ up                │ down
         └──┘ (none)            └──▶ (none)

The tracker is invoked once per *effective* observation. The debouncer
decides when a raw ``down`` probe becomes effective: once the resource's
consecutive failure streak reaches its threshold. Any ``up`` probe is
effective immediately and resets the streak.

Author: Professional Development Team
Version: 1.0.0
License: MIT
============================================================================
"""

import asyncio
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, Optional, Set

from config.constants import CheckStatus, Defaults, TransitionType
from database.models import Incident
from utils.helpers import TimeHelper
from utils.logger import get_logger


logger = get_logger("IncidentTracker")


# ============================================================================
# TRANSITION RESULT / EVENT
# ============================================================================

@dataclass
class IncidentTransition:
    """
    Outcome of one observation fed into the tracker.
    ``incident`` is set for started and resolved transitions.
    """
    resource_id: int
    type: TransitionType
    incident: Optional[Incident] = None
    occurred_at: datetime = field(default_factory=TimeHelper.get_utc_now)

    @property
    def changed(self) -> bool:
        return self.type != TransitionType.NONE

    @property
    def downtime_seconds(self) -> Optional[int]:
        if self.type != TransitionType.RESOLVED or self.incident is None:
            return None
        return self.incident.duration_seconds()


# ============================================================================
# FAILURE STREAK DEBOUNCER
# ============================================================================

class FailureStreakTracker:
    """
    Counts consecutive ``down`` probes per resource.

    ``observe()`` returns the effective status to feed to the incident
    tracker, or None while a down streak is still below its threshold.
    """

    def __init__(self):
        self._streaks: Dict[int, int] = defaultdict(int)

    def observe(
        self,
        resource_id: int,
        status: CheckStatus,
        threshold: Optional[int] = None,
    ) -> Optional[CheckStatus]:
        if status == CheckStatus.UP:
            self._streaks.pop(resource_id, None)
            return CheckStatus.UP

        threshold = max(1, threshold or Defaults.CONSECUTIVE_FAILURES_THRESHOLD)
        self._streaks[resource_id] += 1
        if self._streaks[resource_id] >= threshold:
            return CheckStatus.DOWN

        logger.debug(
            f"Resource {resource_id} down streak {self._streaks[resource_id]}/{threshold}, "
            f"incident pending"
        )
        return None

    def streak(self, resource_id: int) -> int:
        return self._streaks.get(resource_id, 0)

    def reset(self, resource_id: int) -> None:
        self._streaks.pop(resource_id, None)


# ============================================================================
# INCIDENT TRACKER
# ============================================================================

class IncidentTracker:
    """
    Opens and resolves incidents from effective observations.

    Read-modify-write on a resource's open incident is serialised by a
    per-resource asyncio.Lock, so at most one incident is ever open per
    resource. Every started / resolved transition is published to all
    subscriber queues.
    """

    def __init__(self, store, subscriber_queue_size: int = 100):
        """
        Args:
            store: MonitorStore (or any object with the same incident methods)
            subscriber_queue_size: Capacity of each subscriber queue
        """
        self.store = store
        self._locks: Dict[int, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._subscribers: Set[asyncio.Queue] = set()
        self._queue_size = subscriber_queue_size

    # ------------------------------------------------------------------
    # Transition event stream
    # ------------------------------------------------------------------

    def subscribe(self, maxsize: Optional[int] = None) -> asyncio.Queue:
        """Register a new subscriber and return its queue."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize or self._queue_size)
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._subscribers.discard(queue)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def _publish(self, transition: IncidentTransition) -> None:
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(transition)
            except asyncio.QueueFull:
                logger.warning(
                    f"Subscriber queue full, dropping {transition.type.value} event "
                    f"for resource {transition.resource_id}"
                )

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    async def handle(
        self,
        resource_id: int,
        status: CheckStatus,
        observed_at: Optional[datetime] = None,
    ) -> IncidentTransition:
        """
        Apply one effective observation.

        Args:
            resource_id: Resource the observation belongs to
            status: Effective status (after debouncing)
            observed_at: Observation time, defaults to now

        Returns:
            The resulting transition (started, resolved or none)
        """
        now = observed_at or TimeHelper.get_utc_now()

        async with self._locks[resource_id]:
            open_incident = await self.store.get_open_incident(resource_id)

            if status == CheckStatus.DOWN and open_incident is None:
                incident = await self.store.create_incident(resource_id, started_at=now)
                transition = IncidentTransition(resource_id, TransitionType.STARTED, incident, now)
                logger.info(f"Incident {incident.id} started for resource {resource_id}")

            elif status == CheckStatus.UP and open_incident is not None:
                incident = await self.store.resolve_incident(open_incident.id, now)
                transition = IncidentTransition(resource_id, TransitionType.RESOLVED, incident, now)
                logger.info(
                    f"Incident {incident.id} resolved for resource {resource_id} "
                    f"after {incident.duration_seconds()}s"
                )

            else:
                return IncidentTransition(resource_id, TransitionType.NONE, open_incident, now)

        self._publish(transition)
        return transition

    def release_locks(self, active_ids: Iterable[int]) -> int:
        """
        Drop the locks of resources outside *active_ids*.

        A lock that is currently held is kept until a later call.

        Returns:
            Number of locks dropped
        """
        active = set(active_ids)
        stale = [
            resource_id for resource_id, lock in self._locks.items()
            if resource_id not in active and not lock.locked()
        ]
        for resource_id in stale:
            del self._locks[resource_id]
        return len(stale)

    @property
    def lock_count(self) -> int:
        return len(self._locks)

    async def acknowledge(self, incident_id: int, acknowledged_by: Optional[str] = None) -> Incident:
        """Mark an incident as acknowledged."""
        incident = await self.store.acknowledge_incident(incident_id, acknowledged_by)
        logger.info(f"Incident {incident_id} acknowledged by {acknowledged_by or 'unknown'}")
        return incident
