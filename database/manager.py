"""
============================================================================
UPTIME MONITOR - DATABASE MANAGER
============================================================================
Async engine and session management plus the repositories that back
the monitoring engine: resources, checks and incidents.

Author: Professional Development Team
Version: 1.0.0
License: MIT
============================================================================
"""

import asyncio
from contextlib import asynccontextmanager, nullcontext
from datetime import datetime
from typing import Any, AsyncGenerator, Dict, List, Optional, Sequence

from sqlalchemy import delete, func, select, text, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from config.settings import DatabaseSettings, DatabaseType
from database.models import Base, Check, Incident, Resource
from exceptions import (
    DatabaseConnectionError,
    DatabaseNotFoundError,
    DatabaseQueryError,
)
from utils.helpers import TimeHelper
from utils.logger import get_logger


logger = get_logger("Database")


# ============================================================================
# DATABASE MANAGER CLASS
# ============================================================================

class DatabaseManager:
    """
    Database manager owning the async engine and session factory.
    """

    def __init__(self, settings: DatabaseSettings):
        """
        Initialize database manager.

        Args:
            settings: Database section of the application settings
        """
        self.settings = settings
        self.engine: Optional[AsyncEngine] = None
        self.session_factory: Optional[async_sessionmaker] = None
        self._is_initialized = False
        self._lock = asyncio.Lock()
        # an in-memory database has a single shared connection, so session scopes must not interleave
        self._serial_lock = asyncio.Lock() if settings.is_memory else None

        self.database_url = settings.url

        logger.info(f"DatabaseManager initialized with URL: {self._mask_password(self.database_url)}")

    @staticmethod
    def _mask_password(url: str) -> str:
        """
        Mask password in database URL for logging.

        Args:
            url: Database URL

        Returns:
            Masked URL
        """
        if "://" not in url:
            return url

        protocol, rest = url.split("://", 1)
        if "@" not in rest:
            return url

        credentials, host_part = rest.split("@", 1)
        if ":" in credentials:
            user, _ = credentials.split(":", 1)
            return f"{protocol}://{user}:****@{host_part}"

        return url

    def _engine_options(self) -> Dict[str, Any]:
        """Pool options per backend."""
        if self.settings.type == DatabaseType.POSTGRESQL:
            return {
                "pool_size": self.settings.pool_size,
                "max_overflow": self.settings.max_overflow,
                "pool_recycle": self.settings.pool_recycle,
                "pool_pre_ping": True,
            }

        options: Dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if self.settings.is_memory:
            # one shared connection, otherwise every checkout sees an empty database
            options["poolclass"] = StaticPool
        else:
            self.settings.sqlite_path.parent.mkdir(parents=True, exist_ok=True)
        return options

    async def initialize(self) -> None:
        """
        Initialize database engine and session factory.
        Creates all tables if they don't exist.
        """
        async with self._lock:
            if self._is_initialized:
                logger.warning("Database already initialized")
                return

            try:
                self.engine = create_async_engine(
                    self.database_url,
                    echo=self.settings.echo,
                    **self._engine_options()
                )

                self.session_factory = async_sessionmaker(
                    self.engine,
                    class_=AsyncSession,
                    expire_on_commit=False,
                    autoflush=False
                )

                await self.create_tables()

                self._is_initialized = True
                logger.info("Database initialized successfully")

            except SQLAlchemyError as e:
                logger.exception(f"Failed to initialize database: {e}")
                raise DatabaseConnectionError(
                    url=self._mask_password(self.database_url),
                    cause=e
                ) from e

    async def create_tables(self) -> None:
        """
        Create all database tables.
        """
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created successfully")

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Provide a transactional scope for database operations.

        Yields:
            AsyncSession instance

        Example:
            async with db_manager.session() as session:
                resource = await session.get(Resource, resource_id)
        """
        if not self._is_initialized:
            await self.initialize()

        async with self._serial_lock or nullcontext():
            session = self.session_factory()
            try:
                yield session
                await session.commit()
            except Exception as e:
                await session.rollback()
                logger.error(f"Session error: {e}")
                raise
            finally:
                await session.close()

    async def check_connection(self) -> bool:
        """
        Check if database connection is alive.

        Returns:
            True if connection is alive, False otherwise
        """
        try:
            async with self.session() as session:
                await session.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error(f"Database connection check failed: {e}")
            return False

    async def close(self) -> None:
        """
        Close database connections and cleanup resources.
        """
        if self.engine:
            await self.engine.dispose()
            logger.info("Database connections closed")
            self._is_initialized = False


# ============================================================================
# DATABASE REPOSITORY BASE CLASS
# ============================================================================

class BaseRepository:
    """
    Base repository class for database operations.
    """

    def __init__(self, db_manager: DatabaseManager):
        """
        Initialize repository.

        Args:
            db_manager: DatabaseManager instance
        """
        self.db = db_manager
        self.logger = get_logger(self.__class__.__name__)

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncGenerator[AsyncSession, None]:
        """Session scope that converts driver errors into DatabaseQueryError."""
        try:
            async with self.db.session() as session:
                yield session
        except SQLAlchemyError as e:
            self.logger.error(f"{operation} failed: {e}")
            raise DatabaseQueryError(
                f"{operation} failed",
                operation=operation,
                cause=e
            ) from e

    async def get_by_id(self, model_class, record_id: int):
        """
        Get record by ID.

        Args:
            model_class: SQLAlchemy model class
            record_id: Record ID

        Returns:
            Model instance or None
        """
        async with self._session(f"get {model_class.__name__}") as session:
            return await session.get(model_class, record_id)

    async def create(self, model_instance):
        """
        Create new record.

        Args:
            model_instance: Model instance to create

        Returns:
            Created model instance
        """
        async with self._session(f"create {model_instance.__class__.__name__}") as session:
            session.add(model_instance)
            await session.flush()
            await session.refresh(model_instance)
            return model_instance

    async def count(self, model_class) -> int:
        """
        Count total records.

        Args:
            model_class: SQLAlchemy model class

        Returns:
            Total count
        """
        async with self._session(f"count {model_class.__name__}") as session:
            result = await session.execute(select(func.count(model_class.id)))
            return result.scalar() or 0


# ============================================================================
# RESOURCE REPOSITORY
# ============================================================================

class ResourceRepository(BaseRepository):
    """Repository for Resource model operations."""

    async def list_enabled_resources(self) -> List[Resource]:
        """Get all enabled resources ordered by id."""
        async with self._session("list_enabled_resources") as session:
            result = await session.execute(
                select(Resource).where(Resource.enabled.is_(True)).order_by(Resource.id)
            )
            return list(result.scalars().all())

    async def list_resources(self) -> List[Resource]:
        """Get every resource, enabled or not."""
        async with self._session("list_resources") as session:
            result = await session.execute(select(Resource).order_by(Resource.id))
            return list(result.scalars().all())

    async def get_resource(self, resource_id: int) -> Resource:
        """Get a resource or raise DatabaseNotFoundError."""
        resource = await self.get_by_id(Resource, resource_id)
        if resource is None:
            raise DatabaseNotFoundError(entity_type="Resource", entity_id=resource_id)
        return resource

    async def add_resource(self, **fields: Any) -> Resource:
        """Create a resource from keyword fields."""
        return await self.create(Resource(**fields))


# ============================================================================
# CHECK REPOSITORY
# ============================================================================

class CheckRepository(BaseRepository):
    """Repository for Check model operations."""

    async def append_check(
        self,
        resource_id: int,
        status: str,
        response_time: Optional[float] = None,
        status_code: Optional[int] = None,
        error_message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        checked_at: Optional[datetime] = None,
    ) -> Check:
        """Insert one probe outcome."""
        check = Check(
            resource_id=resource_id,
            status=status,
            response_time=response_time,
            status_code=status_code,
            error_message=error_message,
            details=details,
            checked_at=checked_at or TimeHelper.get_utc_now(),
        )
        return await self.create(check)

    async def get_recent_checks(self, resource_id: int, limit: int) -> List[Check]:
        """Latest ``limit`` checks, returned oldest first."""
        async with self._session("get_recent_checks") as session:
            result = await session.execute(
                select(Check)
                .where(Check.resource_id == resource_id)
                .order_by(Check.checked_at.desc(), Check.id.desc())
                .limit(limit)
            )
            checks = list(result.scalars().all())
        checks.reverse()
        return checks

    async def get_checks_in_window(
        self,
        resource_id: int,
        window_start: datetime,
        window_end: Optional[datetime] = None,
    ) -> List[Check]:
        """Checks with window_start <= checked_at (< window_end), oldest first."""
        query = select(Check).where(
            Check.resource_id == resource_id,
            Check.checked_at >= window_start,
        )
        if window_end is not None:
            query = query.where(Check.checked_at < window_end)

        async with self._session("get_checks_in_window") as session:
            result = await session.execute(query.order_by(Check.checked_at.asc(), Check.id.asc()))
            return list(result.scalars().all())

    async def prune_checks_older_than(
        self,
        cutoff: datetime,
        resource_id: Optional[int] = None,
        exclude_resource_ids: Sequence[int] = (),
    ) -> int:
        """
        Delete checks recorded before cutoff.

        Args:
            cutoff: Oldest timestamp to keep
            resource_id: Restrict pruning to one resource
            exclude_resource_ids: Resources to leave untouched

        Returns:
            Number of deleted rows
        """
        statement = delete(Check).where(Check.checked_at < cutoff)
        if resource_id is not None:
            statement = statement.where(Check.resource_id == resource_id)
        if exclude_resource_ids:
            statement = statement.where(Check.resource_id.not_in(list(exclude_resource_ids)))

        async with self._session("prune_checks_older_than") as session:
            result = await session.execute(statement)
            return result.rowcount or 0

    async def enforce_cap(self, resource_id: int, cap: int) -> int:
        """
        Keep only the newest ``cap`` checks of a resource.

        Returns:
            Number of deleted rows
        """
        async with self._session("enforce_cap") as session:
            total = await session.scalar(
                select(func.count(Check.id)).where(Check.resource_id == resource_id)
            )
            if not total or total <= cap:
                return 0

            keep = (
                select(Check.id)
                .where(Check.resource_id == resource_id)
                .order_by(Check.checked_at.desc(), Check.id.desc())
                .limit(cap)
                .scalar_subquery()
            )
            result = await session.execute(
                delete(Check).where(
                    Check.resource_id == resource_id,
                    Check.id.not_in(keep),
                )
            )
            return result.rowcount or 0


# ============================================================================
# INCIDENT REPOSITORY
# ============================================================================

class IncidentRepository(BaseRepository):
    """Repository for Incident model operations."""

    async def get_open_incident(self, resource_id: int) -> Optional[Incident]:
        """The unresolved incident of a resource, if any."""
        async with self._session("get_open_incident") as session:
            result = await session.execute(
                select(Incident)
                .where(
                    Incident.resource_id == resource_id,
                    Incident.resolved_at.is_(None),
                )
                .order_by(Incident.started_at.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def create_incident(self, resource_id: int, started_at: Optional[datetime] = None) -> Incident:
        """Open a new incident."""
        incident = Incident(
            resource_id=resource_id,
            started_at=started_at or TimeHelper.get_utc_now(),
        )
        return await self.create(incident)

    async def resolve_incident(self, incident_id: int, resolved_at: datetime) -> Incident:
        """Close an incident; resolved_at is clamped to started_at."""
        async with self._session("resolve_incident") as session:
            incident = await session.get(Incident, incident_id)
            if incident is None:
                raise DatabaseNotFoundError(entity_type="Incident", entity_id=incident_id)
            incident.resolved_at = max(resolved_at, incident.started_at)
            return incident

    async def mark_notified(self, incident_id: int) -> None:
        async with self._session("mark_notified") as session:
            await session.execute(
                update(Incident).where(Incident.id == incident_id).values(notified=True)
            )

    async def acknowledge_incident(
        self,
        incident_id: int,
        acknowledged_by: Optional[str] = None,
        acknowledged_at: Optional[datetime] = None,
    ) -> Incident:
        """Mark an incident as acknowledged by an operator."""
        async with self._session("acknowledge_incident") as session:
            incident = await session.get(Incident, incident_id)
            if incident is None:
                raise DatabaseNotFoundError(entity_type="Incident", entity_id=incident_id)
            incident.acknowledged = True
            incident.acknowledged_at = acknowledged_at or TimeHelper.get_utc_now()
            incident.acknowledged_by = acknowledged_by
            return incident

    async def get_incidents_in_window(
        self,
        resource_id: int,
        window_start: datetime,
        window_end: Optional[datetime] = None,
    ) -> List[Incident]:
        """Incidents started inside the window, oldest first."""
        query = select(Incident).where(
            Incident.resource_id == resource_id,
            Incident.started_at >= window_start,
        )
        if window_end is not None:
            query = query.where(Incident.started_at < window_end)

        async with self._session("get_incidents_in_window") as session:
            result = await session.execute(query.order_by(Incident.started_at.asc()))
            return list(result.scalars().all())

    async def get_incidents_resolved_in_window(
        self,
        resource_id: int,
        window_start: datetime,
        window_end: Optional[datetime] = None,
    ) -> List[Incident]:
        """Incidents resolved inside the window, whenever they started."""
        query = select(Incident).where(
            Incident.resource_id == resource_id,
            Incident.resolved_at.is_not(None),
            Incident.resolved_at >= window_start,
        )
        if window_end is not None:
            query = query.where(Incident.resolved_at < window_end)

        async with self._session("get_incidents_resolved_in_window") as session:
            result = await session.execute(query.order_by(Incident.resolved_at.asc()))
            return list(result.scalars().all())


# ============================================================================
# STORE FACADE
# ============================================================================

class MonitorStore:
    """
    Storage interface consumed by the monitoring engine.

    Composes the three repositories behind one object so components can
    be constructed with a single collaborator (and mocked with one
    AsyncMock in tests).
    """

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager
        self.resources = ResourceRepository(db_manager)
        self.checks = CheckRepository(db_manager)
        self.incidents = IncidentRepository(db_manager)

    # Resources
    async def list_enabled_resources(self) -> List[Resource]:
        return await self.resources.list_enabled_resources()

    async def list_resources(self) -> List[Resource]:
        return await self.resources.list_resources()

    async def get_resource(self, resource_id: int) -> Resource:
        return await self.resources.get_resource(resource_id)

    async def add_resource(self, **fields: Any) -> Resource:
        return await self.resources.add_resource(**fields)

    # Checks
    async def append_check(self, resource_id: int, status: str, **fields: Any) -> Check:
        return await self.checks.append_check(resource_id, status, **fields)

    async def get_recent_checks(self, resource_id: int, limit: int) -> List[Check]:
        return await self.checks.get_recent_checks(resource_id, limit)

    async def get_checks_in_window(
        self,
        resource_id: int,
        window_start: datetime,
        window_end: Optional[datetime] = None,
    ) -> List[Check]:
        return await self.checks.get_checks_in_window(resource_id, window_start, window_end)

    async def prune_checks_older_than(
        self,
        cutoff: datetime,
        resource_id: Optional[int] = None,
        exclude_resource_ids: Sequence[int] = (),
    ) -> int:
        return await self.checks.prune_checks_older_than(cutoff, resource_id, exclude_resource_ids)

    async def enforce_check_cap(self, resource_id: int, cap: int) -> int:
        return await self.checks.enforce_cap(resource_id, cap)

    # Incidents
    async def get_open_incident(self, resource_id: int) -> Optional[Incident]:
        return await self.incidents.get_open_incident(resource_id)

    async def create_incident(self, resource_id: int, started_at: Optional[datetime] = None) -> Incident:
        return await self.incidents.create_incident(resource_id, started_at)

    async def resolve_incident(self, incident_id: int, resolved_at: datetime) -> Incident:
        return await self.incidents.resolve_incident(incident_id, resolved_at)

    async def mark_incident_notified(self, incident_id: int) -> None:
        await self.incidents.mark_notified(incident_id)

    async def acknowledge_incident(
        self,
        incident_id: int,
        acknowledged_by: Optional[str] = None,
    ) -> Incident:
        return await self.incidents.acknowledge_incident(incident_id, acknowledged_by)

    async def get_incidents_in_window(
        self,
        resource_id: int,
        window_start: datetime,
        window_end: Optional[datetime] = None,
    ) -> Sequence[Incident]:
        return await self.incidents.get_incidents_in_window(resource_id, window_start, window_end)

    async def get_incidents_resolved_in_window(
        self,
        resource_id: int,
        window_start: datetime,
        window_end: Optional[datetime] = None,
    ) -> Sequence[Incident]:
        return await self.incidents.get_incidents_resolved_in_window(resource_id, window_start, window_end)


# ============================================================================
# END OF DATABASE MANAGER MODULE
# ============================================================================
