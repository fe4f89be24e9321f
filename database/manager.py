"""
============================================================================
APPWATCH - DATABASE MANAGER
============================================================================
Async engine/session management and the monitoring store used by the
engine, the alert dispatcher and the control API.

Version: 1.0.0
License: MIT
============================================================================
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Any, AsyncGenerator, Dict, Iterable, List, Optional

from sqlalchemy import and_, case, event, func, or_, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from config.constants import Defaults, EndpointStatus, Severity
from config.settings import DatabaseSettings
from database.models import AlertConfig, AlertHistory, Base, Endpoint, StatusLog
from exceptions import (
    DatabaseConnectionError,
    DatabaseNotFoundError,
    DatabaseQueryError,
    ValidationException,
)
from utils.helpers import TimeHelper
from utils.logger import get_logger
from utils.validators import DataValidator, URLValidator, validate_alert_config


logger = get_logger("Database")


# ============================================================================
# DATABASE MANAGER CLASS
# ============================================================================

class DatabaseManager:
    """
    Owns the async engine and session factory.
    """

    def __init__(self, settings: Optional[DatabaseSettings] = None):
        """
        Initialize database manager.

        Args:
            settings: Database settings section
        """
        self.settings = settings or DatabaseSettings()
        self.engine: Optional[AsyncEngine] = None
        self.session_factory: Optional[async_sessionmaker] = None
        self._is_initialized = False
        self._lock = asyncio.Lock()

        self.database_url = self.settings.url

        logger.info(f"DatabaseManager initialized with URL: {self._mask_password(self.database_url)}")

    @staticmethod
    def _mask_password(url: str) -> str:
        """Mask password in database URL for logging."""
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

    def _engine_kwargs(self) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {"echo": self.settings.echo}

        if self.database_url.startswith("sqlite"):
            kwargs["poolclass"] = NullPool
        else:
            kwargs["pool_pre_ping"] = True

        return kwargs

    @property
    def is_initialized(self) -> bool:
        return self._is_initialized

    async def initialize(self) -> None:
        """
        Create the engine and session factory, then create missing tables.

        Raises:
            DatabaseConnectionError: if the database is unreachable
        """
        async with self._lock:
            if self._is_initialized:
                logger.warning("Database already initialized")
                return

            sqlite_path = self.settings.sqlite_path
            if sqlite_path is not None:
                sqlite_path.parent.mkdir(parents=True, exist_ok=True)

            try:
                self.engine = create_async_engine(self.database_url, **self._engine_kwargs())
                self._register_event_listeners()

                self.session_factory = async_sessionmaker(
                    self.engine,
                    class_=AsyncSession,
                    expire_on_commit=False,
                    autoflush=False,
                )

                await self.create_tables()

                self._is_initialized = True
                logger.info("Database initialized successfully")

            except SQLAlchemyError as e:
                logger.error(f"Failed to initialize database: {e}")
                raise DatabaseConnectionError(
                    f"Failed to initialize database: {e}",
                    url=self.database_url,
                    cause=e,
                )

    def _register_event_listeners(self) -> None:
        """Register SQLAlchemy event listeners for connection management."""

        @event.listens_for(self.engine.sync_engine, "connect")
        def receive_connect(dbapi_conn, connection_record):
            if self.database_url.startswith("sqlite"):
                cursor = dbapi_conn.cursor()
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.close()
            logger.trace("New database connection established")

    async def create_tables(self) -> None:
        """Create all database tables."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created successfully")

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Provide a transactional scope for database operations.

        Example:
            async with db_manager.session() as session:
                endpoint = await session.get(Endpoint, endpoint_id)
        """
        if not self._is_initialized:
            await self.initialize()

        session = self.session_factory()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
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
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Database connection check failed: {e}")
            return False

    async def close(self) -> None:
        """Dispose of the engine."""
        if self.engine:
            await self.engine.dispose()
            logger.info("Database connections closed")
        self._is_initialized = False


# ============================================================================
# MONITOR STORE
# ============================================================================

class MonitorStore:
    """
    Persistence operations needed by the monitoring engine and the alert
    dispatcher.

    Every SQLAlchemy error is re-raised as ``DatabaseQueryError`` carrying
    the operation name.
    """

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager
        self.logger = get_logger("MonitorStore")

    @asynccontextmanager
    async def _operation(self, name: str) -> AsyncGenerator[AsyncSession, None]:
        try:
            async with self.db.session() as session:
                yield session
        except SQLAlchemyError as e:
            self.logger.error(f"{name} failed: {e}")
            raise DatabaseQueryError(f"{name} failed: {e}", operation=name, cause=e)

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------

    async def select_due_endpoints(
        self,
        limit: int,
        now: Optional[datetime] = None,
        exclude_ids: Iterable[str] = (),
    ) -> List[Endpoint]:
        """
        Endpoints due for a check, never-checked first then oldest
        ``last_checked`` first.

        Args:
            limit: Maximum number of endpoints
            now: Reference time (naive UTC), defaults to now
            exclude_ids: Ids to leave out (open circuit breakers)
        """
        now = now or TimeHelper.utc_now()
        exclude_ids = list(exclude_ids)

        query = select(Endpoint).where(
            and_(
                Endpoint.status != EndpointStatus.DISABLED,
                or_(
                    Endpoint.last_checked.is_(None),
                    Endpoint.next_check.is_(None),
                    Endpoint.next_check <= now,
                ),
            )
        )
        if exclude_ids:
            query = query.where(Endpoint.id.not_in(exclude_ids))

        query = query.order_by(
            case((Endpoint.last_checked.is_(None), 0), else_=1),
            Endpoint.last_checked.asc(),
            Endpoint.id.asc(),
        ).limit(limit)

        async with self._operation("select_due_endpoints") as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def select_offline_endpoints(self) -> List[Endpoint]:
        """All endpoints whose stored status is offline."""
        query = (
            select(Endpoint)
            .where(Endpoint.status == EndpointStatus.OFFLINE)
            .order_by(Endpoint.last_checked.asc(), Endpoint.id.asc())
        )
        async with self._operation("select_offline_endpoints") as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def get_endpoint(self, endpoint_id: str) -> Optional[Endpoint]:
        async with self._operation("get_endpoint") as session:
            return await session.get(Endpoint, endpoint_id)

    async def list_endpoints(self) -> List[Endpoint]:
        async with self._operation("list_endpoints") as session:
            result = await session.execute(select(Endpoint).order_by(Endpoint.created_at))
            return list(result.scalars().all())

    async def update_endpoint_status(
        self,
        endpoint_id: str,
        status: EndpointStatus,
        checked_at: datetime,
        response_time: Optional[int],
        uptime_percentage: Optional[float] = None,
    ) -> Endpoint:
        """
        Record the outcome of a check on the endpoint row.

        ``next_check`` is derived as ``checked_at + check_interval``.

        Raises:
            DatabaseNotFoundError: unknown endpoint
        """
        async with self._operation("update_endpoint_status") as session:
            endpoint = await session.get(Endpoint, endpoint_id)
            if endpoint is None:
                raise DatabaseNotFoundError(model="Endpoint", record_id=endpoint_id)

            endpoint.status = EndpointStatus(status)
            endpoint.last_checked = checked_at
            endpoint.next_check = checked_at + timedelta(seconds=endpoint.check_interval)
            endpoint.response_time = response_time
            if uptime_percentage is not None:
                endpoint.uptime_percentage = uptime_percentage

            return endpoint

    async def create_endpoint(
        self,
        name: str,
        url: str,
        timeout: int = Defaults.TIMEOUT_MS,
        check_interval: int = Defaults.CHECK_INTERVAL,
        alerts_enabled: bool = True,
        status: EndpointStatus = EndpointStatus.UNKNOWN,
    ) -> Endpoint:
        """
        Register an endpoint.

        Raises:
            InvalidURLError: malformed URL
            ValidationException: bad name, timeout or interval
        """
        url = URLValidator.validate(url)
        name = DataValidator.sanitize_name(name or "")
        if not name:
            raise ValidationException("Endpoint name is required", field="name")
        if not DataValidator.is_valid_timeout(timeout):
            raise ValidationException("Timeout out of range (ms)", field="timeout", value=timeout)
        if not DataValidator.is_valid_interval(check_interval):
            raise ValidationException(
                "Check interval out of range (s)", field="check_interval", value=check_interval
            )

        endpoint = Endpoint(
            name=name,
            url=url,
            timeout=timeout,
            check_interval=check_interval,
            alerts_enabled=alerts_enabled,
            status=EndpointStatus(status),
            uptime_percentage=100.0,
        )
        async with self._operation("create_endpoint") as session:
            session.add(endpoint)

        self.logger.info(f"Endpoint created: {endpoint.name} ({endpoint.url})")
        return endpoint

    # ------------------------------------------------------------------
    # Status logs
    # ------------------------------------------------------------------

    async def append_status_log(
        self,
        endpoint_id: str,
        status: EndpointStatus,
        response_time: Optional[int],
        checked_at: datetime,
        error: Optional[str] = None,
    ) -> StatusLog:
        entry = StatusLog(
            endpoint_id=endpoint_id,
            status=EndpointStatus(status),
            response_time=response_time,
            checked_at=checked_at,
            error_message=error,
        )
        async with self._operation("append_status_log") as session:
            session.add(entry)
        return entry

    async def get_status_logs(self, endpoint_id: str, limit: int = 100) -> List[StatusLog]:
        """Most recent status logs of an endpoint, newest first."""
        query = (
            select(StatusLog)
            .where(StatusLog.endpoint_id == endpoint_id)
            .order_by(StatusLog.checked_at.desc(), StatusLog.id.desc())
            .limit(limit)
        )
        async with self._operation("get_status_logs") as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def compute_uptime(self, endpoint_id: str, since: datetime) -> float:
        """
        Percentage of online checks since ``since``, rounded to two
        decimals. 100.0 when there are no checks in the window.
        """
        query = select(
            func.count(StatusLog.id),
            func.sum(case((StatusLog.status == EndpointStatus.ONLINE, 1), else_=0)),
        ).where(
            and_(StatusLog.endpoint_id == endpoint_id, StatusLog.checked_at > since)
        )
        async with self._operation("compute_uptime") as session:
            total, online = (await session.execute(query)).one()

        if not total:
            return 100.0
        return round((online or 0) * 100.0 / total, 2)

    # ------------------------------------------------------------------
    # Alert configuration & history
    # ------------------------------------------------------------------

    async def select_enabled_alert_configs(self, endpoint_id: str) -> List[AlertConfig]:
        query = (
            select(AlertConfig)
            .where(and_(AlertConfig.endpoint_id == endpoint_id, AlertConfig.enabled.is_(True)))
            .order_by(AlertConfig.created_at, AlertConfig.id)
        )
        async with self._operation("select_enabled_alert_configs") as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def get_alert_config(self, config_id: str) -> Optional[AlertConfig]:
        async with self._operation("get_alert_config") as session:
            return await session.get(AlertConfig, config_id)

    async def create_alert_config(
        self,
        endpoint_id: str,
        channel: str,
        destination: str,
        enabled: bool = True,
    ) -> AlertConfig:
        """
        Store an alert configuration after validating it.

        Raises:
            InvalidAlertConfigError: unknown channel or bad destination
            DatabaseNotFoundError: unknown endpoint
        """
        channel_type, destination = validate_alert_config(channel, destination)

        async with self._operation("create_alert_config") as session:
            if await session.get(Endpoint, endpoint_id) is None:
                raise DatabaseNotFoundError(model="Endpoint", record_id=endpoint_id)

            config = AlertConfig(
                endpoint_id=endpoint_id,
                channel=channel_type.value,
                destination=destination,
                enabled=enabled,
            )
            session.add(config)

        self.logger.info(f"Alert config created: {channel_type.value} for endpoint {endpoint_id}")
        return config

    async def append_alert_result(
        self,
        endpoint_id: str,
        alert_config_id: Optional[str],
        channel: str,
        severity: Severity,
        old_status: str,
        new_status: str,
        success: bool,
        attempts: int,
        error: Optional[str] = None,
    ) -> AlertHistory:
        """Persist the outcome of one channel delivery."""
        row = AlertHistory(
            endpoint_id=endpoint_id,
            alert_config_id=alert_config_id,
            channel=str(channel),
            severity=Severity(severity),
            old_status=str(EndpointStatus(old_status).value),
            new_status=str(EndpointStatus(new_status).value),
            success=success,
            attempts=attempts,
            error=error,
        )
        async with self._operation("append_alert_result") as session:
            session.add(row)
        return row

    async def get_alert_history(
        self,
        endpoint_id: Optional[str] = None,
        limit: int = 50,
    ) -> List[AlertHistory]:
        """Most recent delivery outcomes, newest first."""
        query = select(AlertHistory).order_by(AlertHistory.created_at.desc(), AlertHistory.id.desc())
        if endpoint_id is not None:
            query = query.where(AlertHistory.endpoint_id == endpoint_id)
        async with self._operation("get_alert_history") as session:
            result = await session.execute(query.limit(limit))
            return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    async def get_monitoring_stats(self, since: datetime) -> Dict[str, Any]:
        """
        Aggregate status-log statistics since ``since``.

        Returns:
            monitored_endpoints, total_checks, success_rate (whole percent),
            avg_response_time (ms), last_check (ISO or None)
        """
        query = select(
            func.count(func.distinct(StatusLog.endpoint_id)),
            func.count(StatusLog.id),
            func.sum(case((StatusLog.status == EndpointStatus.ONLINE, 1), else_=0)),
            func.avg(StatusLog.response_time),
            func.max(StatusLog.checked_at),
        ).where(StatusLog.checked_at > since)

        async with self._operation("get_monitoring_stats") as session:
            monitored, total, online, avg_rt, last_check = (await session.execute(query)).one()

        if isinstance(last_check, str):
            last_check = datetime.fromisoformat(last_check)

        return {
            "monitored_endpoints": monitored or 0,
            "total_checks": total or 0,
            "success_rate": round((online or 0) * 100 / total) if total else 0,
            "avg_response_time": round(avg_rt or 0),
            "last_check": last_check.isoformat() if last_check else None,
        }


# ============================================================================
# END OF DATABASE MANAGER MODULE
# ============================================================================
