"""
Tests for the incident lifecycle, the failure-streak debouncer and the
transition event stream.
"""

import asyncio
from datetime import timedelta

from config.constants import CheckStatus, TransitionType
from monitoring.incidents import FailureStreakTracker, IncidentTracker
from utils.helpers import TimeHelper


class TestFailureStreakTracker:

    def test_default_threshold_is_immediate(self):
        streaks = FailureStreakTracker()
        assert streaks.observe(1, CheckStatus.DOWN) == CheckStatus.DOWN

    def test_down_pending_until_threshold(self):
        streaks = FailureStreakTracker()

        assert streaks.observe(1, CheckStatus.DOWN, threshold=3) is None
        assert streaks.observe(1, CheckStatus.DOWN, threshold=3) is None
        assert streaks.streak(1) == 2
        assert streaks.observe(1, CheckStatus.DOWN, threshold=3) == CheckStatus.DOWN

    def test_up_resets_streak(self):
        streaks = FailureStreakTracker()
        streaks.observe(1, CheckStatus.DOWN, threshold=3)
        streaks.observe(1, CheckStatus.DOWN, threshold=3)

        assert streaks.observe(1, CheckStatus.UP, threshold=3) == CheckStatus.UP
        assert streaks.streak(1) == 0
        assert streaks.observe(1, CheckStatus.DOWN, threshold=3) is None

    def test_resources_are_independent(self):
        streaks = FailureStreakTracker()
        streaks.observe(1, CheckStatus.DOWN, threshold=2)

        assert streaks.observe(2, CheckStatus.DOWN, threshold=2) is None
        assert streaks.observe(1, CheckStatus.DOWN, threshold=2) == CheckStatus.DOWN


class TestIncidentTracker:

    async def test_down_opens_incident(self, store, make_resource):
        resource = await make_resource()
        tracker = IncidentTracker(store)

        transition = await tracker.handle(resource.id, CheckStatus.DOWN)

        assert transition.type == TransitionType.STARTED
        assert transition.incident.resolved_at is None
        assert (await store.get_open_incident(resource.id)).id == transition.incident.id

    async def test_repeated_down_keeps_single_incident(self, store, make_resource):
        resource = await make_resource()
        tracker = IncidentTracker(store)

        first = await tracker.handle(resource.id, CheckStatus.DOWN)
        second = await tracker.handle(resource.id, CheckStatus.DOWN)

        assert second.type == TransitionType.NONE
        assert second.incident.id == first.incident.id

    async def test_concurrent_downs_open_one_incident(self, store, make_resource):
        resource = await make_resource()
        tracker = IncidentTracker(store)

        transitions = await asyncio.gather(
            *(tracker.handle(resource.id, CheckStatus.DOWN) for _ in range(5))
        )

        started = [t for t in transitions if t.type == TransitionType.STARTED]
        assert len(started) == 1
        now = TimeHelper.get_utc_now()
        incidents = await store.get_incidents_in_window(resource.id, now - timedelta(hours=1))
        assert len(incidents) == 1

    async def test_up_resolves_incident(self, store, make_resource):
        resource = await make_resource()
        tracker = IncidentTracker(store)
        start = TimeHelper.get_utc_now() - timedelta(minutes=10)

        await tracker.handle(resource.id, CheckStatus.DOWN, observed_at=start)
        transition = await tracker.handle(
            resource.id, CheckStatus.UP, observed_at=start + timedelta(minutes=4)
        )

        assert transition.type == TransitionType.RESOLVED
        assert transition.incident.resolved_at >= transition.incident.started_at
        assert transition.downtime_seconds == 240
        assert await store.get_open_incident(resource.id) is None

    async def test_up_without_incident_is_noop(self, store, make_resource):
        resource = await make_resource()
        tracker = IncidentTracker(store)

        transition = await tracker.handle(resource.id, CheckStatus.UP)

        assert transition.type == TransitionType.NONE
        assert transition.incident is None
        assert not transition.changed

    async def test_acknowledge(self, store, make_resource):
        resource = await make_resource()
        tracker = IncidentTracker(store)
        started = await tracker.handle(resource.id, CheckStatus.DOWN)

        incident = await tracker.acknowledge(started.incident.id, "alice")

        assert incident.acknowledged is True
        assert incident.acknowledged_by == "alice"

    async def test_release_locks_keeps_active_and_held(self, store, make_resource):
        kept, removed, busy = [await make_resource(name=n) for n in ("kept", "removed", "busy")]
        tracker = IncidentTracker(store)
        for resource in (kept, removed, busy):
            await tracker.handle(resource.id, CheckStatus.UP)

        async with tracker._locks[busy.id]:
            dropped = tracker.release_locks([kept.id])

        assert dropped == 1
        assert set(tracker._locks) == {kept.id, busy.id}
        assert tracker.release_locks([kept.id]) == 1
        assert tracker.lock_count == 1


class TestTransitionStream:

    async def test_subscribers_receive_changes_only(self, store, make_resource):
        resource = await make_resource()
        tracker = IncidentTracker(store)
        queue = tracker.subscribe()

        await tracker.handle(resource.id, CheckStatus.UP)
        await tracker.handle(resource.id, CheckStatus.DOWN)
        await tracker.handle(resource.id, CheckStatus.DOWN)
        await tracker.handle(resource.id, CheckStatus.UP)

        received = [queue.get_nowait().type for _ in range(queue.qsize())]
        assert received == [TransitionType.STARTED, TransitionType.RESOLVED]

    async def test_full_queue_drops_events(self, store, make_resource):
        resource = await make_resource()
        tracker = IncidentTracker(store)
        slow = tracker.subscribe(maxsize=1)
        fast = tracker.subscribe(maxsize=10)

        await tracker.handle(resource.id, CheckStatus.DOWN)
        await tracker.handle(resource.id, CheckStatus.UP)

        assert slow.qsize() == 1
        assert fast.qsize() == 2

    async def test_unsubscribe(self, store, make_resource):
        resource = await make_resource()
        tracker = IncidentTracker(store)
        queue = tracker.subscribe()
        tracker.unsubscribe(queue)

        await tracker.handle(resource.id, CheckStatus.DOWN)

        assert tracker.subscriber_count == 0
        assert queue.empty()
