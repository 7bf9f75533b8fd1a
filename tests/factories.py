"""Plain stand-ins for ORM rows, used where a database is not needed."""

from datetime import datetime
from types import SimpleNamespace


def fake_resource(**overrides) -> SimpleNamespace:
    """Unpersisted stand-in for a Resource row."""
    data = {
        "id": 1,
        "name": "Example",
        "url": "https://example.com",
        "type": "http",
        "timeout": 2000,
        "http_keyword": None,
        "http_headers": None,
        "cert_expiry_days": 30,
        "consecutive_failures_threshold": 1,
        "maintenance_mode": False,
        "quiet_hours": None,
        "email_to": None,
        "sla_target": 99.9,
        "retention_days": None,
    }
    data.update(overrides)
    return SimpleNamespace(**data)


def fake_check(status: str, checked_at: datetime, response_time=None, error_message=None):
    return SimpleNamespace(
        status=status,
        checked_at=checked_at,
        response_time=response_time,
        error_message=error_message,
    )


def fake_incident(started_at: datetime, resolved_at=None, incident_id: int = 1):
    return SimpleNamespace(id=incident_id, started_at=started_at, resolved_at=resolved_at)
