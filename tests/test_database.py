"""
Tests for the storage layer against an in-memory SQLite database.
"""

from datetime import timedelta

import pytest

from config.settings import DatabaseSettings
from database.manager import DatabaseManager
from database.models import Check, Resource
from exceptions import DatabaseNotFoundError
from utils.helpers import TimeHelper


class TestDatabaseManager:

    def test_password_is_masked(self):
        masked = DatabaseManager._mask_password("postgresql+asyncpg://bot:secret@db:5432/uptime")
        assert masked == "postgresql+asyncpg://bot:****@db:5432/uptime"

    def test_memory_url(self):
        settings = DatabaseSettings(type="sqlite", sqlite_path=":memory:")
        assert settings.is_memory
        assert settings.url == "sqlite+aiosqlite:///:memory:"

    async def test_connection_check(self, db_manager):
        assert await db_manager.check_connection() is True


class TestResources:

    async def test_defaults_applied(self, make_resource):
        resource = await make_resource()

        assert resource.id is not None
        assert resource.type == "http"
        assert resource.enabled is True
        assert resource.sla_target == 99.9
        assert resource.consecutive_failures_threshold == 1

    async def test_enabled_listing(self, store, make_resource):
        kept = await make_resource(name="kept")
        await make_resource(name="paused", enabled=False)

        enabled = await store.list_enabled_resources()
        everything = await store.list_resources()

        assert [r.id for r in enabled] == [kept.id]
        assert len(everything) == 2

    async def test_missing_resource(self, store):
        with pytest.raises(DatabaseNotFoundError):
            await store.get_resource(999)

    async def test_quiet_hours_property(self, make_resource):
        resource = await make_resource(quiet_hours_start="22:00", quiet_hours_end="06:30")
        start, end = resource.quiet_hours
        assert (start.hour, end.hour, end.minute) == (22, 6, 30)

    async def test_unknown_type_parses_as_http(self):
        assert Resource(name="x", url="y", type="carrier-pigeon").resource_type.value == "http"


class TestChecks:

    async def test_recent_checks_oldest_first(self, store, make_resource):
        resource = await make_resource()
        base = TimeHelper.get_utc_now() - timedelta(minutes=10)
        for minute in range(5):
            await store.append_check(resource.id, "up", checked_at=base + timedelta(minutes=minute))

        recent = await store.get_recent_checks(resource.id, 3)

        assert [c.checked_at for c in recent] == [base + timedelta(minutes=m) for m in (2, 3, 4)]

    async def test_window_is_half_open(self, store, make_resource):
        resource = await make_resource()
        start = TimeHelper.get_utc_now() - timedelta(hours=2)
        end = start + timedelta(hours=1)
        await store.append_check(resource.id, "up", checked_at=start)
        await store.append_check(resource.id, "down", checked_at=start + timedelta(minutes=30))
        await store.append_check(resource.id, "up", checked_at=end)

        checks = await store.get_checks_in_window(resource.id, start, end)

        assert [c.status for c in checks] == ["up", "down"]

    async def test_prune_respects_exclusions(self, store, make_resource):
        short = await make_resource(name="short")
        other = await make_resource(name="other")
        old = TimeHelper.get_utc_now() - timedelta(days=40)
        await store.append_check(short.id, "up", checked_at=old)
        await store.append_check(other.id, "up", checked_at=old)

        deleted = await store.prune_checks_older_than(
            TimeHelper.get_utc_now() - timedelta(days=30),
            exclude_resource_ids=[short.id],
        )

        assert deleted == 1
        assert len(await store.get_recent_checks(short.id, 10)) == 1
        assert await store.get_recent_checks(other.id, 10) == []

    async def test_cap_keeps_newest(self, store, make_resource):
        resource = await make_resource()
        base = TimeHelper.get_utc_now() - timedelta(hours=1)
        for minute in range(6):
            await store.append_check(resource.id, "up", checked_at=base + timedelta(minutes=minute))

        removed = await store.enforce_check_cap(resource.id, 4)
        remaining = await store.get_recent_checks(resource.id, 10)

        assert removed == 2
        assert [c.checked_at for c in remaining] == [base + timedelta(minutes=m) for m in range(2, 6)]
        assert await store.checks.count(Check) == 4


class TestIncidents:

    async def test_open_and_resolve(self, store, make_resource):
        resource = await make_resource()
        started = TimeHelper.get_utc_now() - timedelta(minutes=5)

        incident = await store.create_incident(resource.id, started_at=started)
        assert (await store.get_open_incident(resource.id)).id == incident.id

        resolved = await store.resolve_incident(incident.id, started + timedelta(minutes=3))

        assert resolved.resolved_at == started + timedelta(minutes=3)
        assert resolved.duration_seconds() == 180
        assert await store.get_open_incident(resource.id) is None

    async def test_resolution_never_precedes_start(self, store, make_resource):
        resource = await make_resource()
        started = TimeHelper.get_utc_now()
        incident = await store.create_incident(resource.id, started_at=started)

        resolved = await store.resolve_incident(incident.id, started - timedelta(minutes=1))

        assert resolved.resolved_at == started

    async def test_acknowledge(self, store, make_resource):
        resource = await make_resource()
        incident = await store.create_incident(resource.id)

        acked = await store.acknowledge_incident(incident.id, acknowledged_by="oncall")

        assert acked.acknowledged is True
        assert acked.acknowledged_by == "oncall"
        assert acked.acknowledged_at is not None

    async def test_mark_notified(self, store, make_resource):
        resource = await make_resource()
        incident = await store.create_incident(resource.id)

        await store.mark_incident_notified(incident.id)

        assert (await store.get_open_incident(resource.id)).notified is True

    async def test_window_by_start_time(self, store, make_resource):
        resource = await make_resource()
        now = TimeHelper.get_utc_now()
        await store.create_incident(resource.id, started_at=now - timedelta(days=3))
        recent = await store.create_incident(resource.id, started_at=now - timedelta(hours=1))

        incidents = await store.get_incidents_in_window(resource.id, now - timedelta(days=1), now)

        assert [i.id for i in incidents] == [recent.id]

    async def test_window_by_resolution_time(self, store, make_resource):
        resource = await make_resource()
        now = TimeHelper.get_utc_now()
        straddling = await store.create_incident(resource.id, started_at=now - timedelta(hours=25))
        await store.resolve_incident(straddling.id, now - timedelta(hours=23))
        stale = await store.create_incident(resource.id, started_at=now - timedelta(days=3))
        await store.resolve_incident(stale.id, now - timedelta(days=2))
        await store.create_incident(resource.id, started_at=now - timedelta(hours=1))

        resolved = await store.get_incidents_resolved_in_window(resource.id, now - timedelta(days=1), now)

        assert [i.id for i in resolved] == [straddling.id]
