"""
============================================================================
UPTIME MONITOR - DATABASE MODELS
============================================================================
SQLAlchemy ORM models for monitored resources, probe results and
outage incidents. All datetimes are stored as naive UTC.

Author: Professional Development Team
Version: 1.0.0
License: MIT
============================================================================
"""

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Text,
    Float, JSON, ForeignKey, Index, func
)
from sqlalchemy.orm import relationship, declarative_base

from config.constants import CheckStatus, Defaults, ResourceType
from config.settings import parse_clock
from utils.helpers import TimeHelper


# ============================================================================
# BASE MODEL CONFIGURATION
# ============================================================================

Base = declarative_base()


class TimestampMixin:
    """
    Mixin to add created_at and updated_at timestamps to models.
    Automatically manages these fields.
    """
    created_at = Column(
        DateTime,
        nullable=False,
        default=TimeHelper.get_utc_now,
        server_default=func.now()
    )
    updated_at = Column(
        DateTime,
        nullable=False,
        default=TimeHelper.get_utc_now,
        onupdate=TimeHelper.get_utc_now,
        server_default=func.now()
    )


# ============================================================================
# RESOURCE MODEL
# ============================================================================

class Resource(Base, TimestampMixin):
    """
    A monitored endpoint: URL or host plus probe and alerting options.
    """
    __tablename__ = "resources"

    id = Column(Integer, primary_key=True, autoincrement=True)

    # Target
    name = Column(String(255), nullable=False)
    url = Column(Text, nullable=False)
    type = Column(String(32), nullable=False, default=ResourceType.HTTP.value)

    # Probe configuration (milliseconds)
    check_interval = Column(Integer, nullable=False, default=Defaults.CHECK_INTERVAL_MS)
    timeout = Column(Integer, nullable=False, default=Defaults.TIMEOUT_MS)
    enabled = Column(Boolean, nullable=False, default=True, index=True)

    # HTTP options
    http_keyword = Column(String(500), nullable=True)
    http_headers = Column(JSON, nullable=True)

    # TLS options
    cert_expiry_days = Column(Integer, nullable=False, default=Defaults.CERT_EXPIRY_DAYS)

    # Alerting
    quiet_hours_start = Column(String(5), nullable=True)
    quiet_hours_end = Column(String(5), nullable=True)
    consecutive_failures_threshold = Column(
        Integer, nullable=False, default=Defaults.CONSECUTIVE_FAILURES_THRESHOLD
    )
    response_time_threshold = Column(Integer, nullable=True)
    maintenance_mode = Column(Boolean, nullable=False, default=False)
    email_to = Column(String(500), nullable=True)

    # SLA & retention
    sla_target = Column(Float, nullable=False, default=Defaults.SLA_TARGET)
    retention_days = Column(Integer, nullable=True)

    # Relationships
    checks = relationship(
        "Check",
        back_populates="resource",
        cascade="all, delete-orphan",
        passive_deletes=True
    )
    incidents = relationship(
        "Incident",
        back_populates="resource",
        cascade="all, delete-orphan",
        passive_deletes=True
    )

    @property
    def resource_type(self) -> ResourceType:
        """Parsed type; unknown values fall back to HTTP."""
        return ResourceType.parse(self.type)

    @property
    def quiet_hours(self):
        """(start, end) as datetime.time, or None when no window is set."""
        if not self.quiet_hours_start or not self.quiet_hours_end:
            return None
        return parse_clock(self.quiet_hours_start), parse_clock(self.quiet_hours_end)

    def to_dict(self) -> Dict[str, Any]:
        """Convert resource to dictionary"""
        return {
            "id": self.id,
            "name": self.name,
            "url": self.url,
            "type": self.type,
            "check_interval": self.check_interval,
            "timeout": self.timeout,
            "enabled": self.enabled,
            "sla_target": self.sla_target,
            "maintenance_mode": self.maintenance_mode,
        }

    def __repr__(self) -> str:
        return f"<Resource(id={self.id}, name={self.name!r}, type={self.type})>"


# ============================================================================
# CHECK MODEL
# ============================================================================

class Check(Base):
    """
    One probe outcome. Append-only; removed only by retention pruning.
    """
    __tablename__ = "checks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    resource_id = Column(
        Integer,
        ForeignKey("resources.id", ondelete="CASCADE"),
        nullable=False
    )

    status = Column(String(8), nullable=False)
    response_time = Column(Float, nullable=True)
    status_code = Column(Integer, nullable=True)
    error_message = Column(Text, nullable=True)
    details = Column(JSON, nullable=True)
    checked_at = Column(DateTime, nullable=False, default=TimeHelper.get_utc_now)

    resource = relationship("Resource", back_populates="checks")

    __table_args__ = (
        Index("idx_checks_resource_time", "resource_id", "checked_at"),
    )

    @property
    def is_up(self) -> bool:
        return self.status == CheckStatus.UP.value

    def to_dict(self) -> Dict[str, Any]:
        """Convert check to dictionary"""
        return {
            "id": self.id,
            "resource_id": self.resource_id,
            "status": self.status,
            "response_time": self.response_time,
            "status_code": self.status_code,
            "error_message": self.error_message,
            "details": self.details,
            "checked_at": self.checked_at.isoformat() if self.checked_at else None,
        }

    def __repr__(self) -> str:
        return f"<Check(resource_id={self.resource_id}, status={self.status}, at={self.checked_at})>"


# ============================================================================
# INCIDENT MODEL
# ============================================================================

class Incident(Base):
    """
    An outage interval. Open while resolved_at is null; at most one open
    incident exists per resource.
    """
    __tablename__ = "incidents"

    id = Column(Integer, primary_key=True, autoincrement=True)
    resource_id = Column(
        Integer,
        ForeignKey("resources.id", ondelete="CASCADE"),
        nullable=False
    )

    started_at = Column(DateTime, nullable=False, default=TimeHelper.get_utc_now)
    resolved_at = Column(DateTime, nullable=True)
    notified = Column(Boolean, nullable=False, default=False)

    # Acknowledgement
    acknowledged = Column(Boolean, nullable=False, default=False)
    acknowledged_at = Column(DateTime, nullable=True)
    acknowledged_by = Column(String(255), nullable=True)

    resource = relationship("Resource", back_populates="incidents")

    __table_args__ = (
        Index("idx_incidents_resource_open", "resource_id", "resolved_at"),
        Index("idx_incidents_resource_started", "resource_id", "started_at"),
    )

    @property
    def is_open(self) -> bool:
        return self.resolved_at is None

    def duration_seconds(self, now: Optional[datetime] = None) -> int:
        """Length of the outage; open incidents are measured up to now."""
        end = self.resolved_at or now or TimeHelper.get_utc_now()
        return max(0, int((end - self.started_at).total_seconds()))

    def to_dict(self) -> Dict[str, Any]:
        """Convert incident to dictionary"""
        return {
            "id": self.id,
            "resource_id": self.resource_id,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "notified": self.notified,
            "acknowledged": self.acknowledged,
            "acknowledged_at": self.acknowledged_at.isoformat() if self.acknowledged_at else None,
            "acknowledged_by": self.acknowledged_by,
        }

    def __repr__(self) -> str:
        return f"<Incident(id={self.id}, resource_id={self.resource_id}, open={self.is_open})>"


# ============================================================================
# END OF MODELS MODULE
# ============================================================================
