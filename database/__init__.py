"""
Database Package for Uptime Monitor

Provides database connectivity, models, and repository patterns
for data persistence using SQLAlchemy with async support.
"""

from database.models import (
    Base,
    Resource,
    Check,
    Incident
)

from database.manager import (
    DatabaseManager,
    BaseRepository,
    ResourceRepository,
    CheckRepository,
    IncidentRepository,
    MonitorStore
)

__all__ = [
    # Connection
    "DatabaseManager",

    # Models
    "Base",
    "Resource",
    "Check",
    "Incident",

    # Repositories
    "BaseRepository",
    "ResourceRepository",
    "CheckRepository",
    "IncidentRepository",
    "MonitorStore"
]
