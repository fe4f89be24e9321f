"""
============================================================================
APPWATCH - DATABASE MODELS
============================================================================
SQLAlchemy ORM models for monitored endpoints, their status history and
alert routing.

Version: 1.0.0
License: MIT
============================================================================
"""

import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy import (
    Boolean, Column, DateTime, Enum, Float, ForeignKey, Index, Integer,
    String, Text,
)
from sqlalchemy.orm import declarative_base

from config.constants import Defaults, EndpointStatus, Severity
from utils.helpers import TimeHelper


# ============================================================================
# BASE MODEL CONFIGURATION
# ============================================================================

Base = declarative_base()


def _new_id() -> str:
    return uuid.uuid4().hex


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class TimestampMixin:
    """
    Mixin adding a creation timestamp (naive UTC).
    """
    created_at = Column(
        DateTime,
        nullable=False,
        default=TimeHelper.utc_now,
        index=True
    )


# ============================================================================
# ENDPOINT MODEL
# ============================================================================

class Endpoint(Base, TimestampMixin):
    """
    A monitored URL.

    The engine only writes the monitoring-state columns, and only through
    ``MonitorStore.update_endpoint_status``.
    """
    __tablename__ = "endpoints"

    # Primary Key
    id = Column(String(36), primary_key=True, default=_new_id)

    # Endpoint Information
    name = Column(String(255), nullable=False)
    url = Column(Text, nullable=False)

    # Monitoring Configuration
    timeout = Column(Integer, default=Defaults.TIMEOUT_MS, nullable=False)  # ms
    check_interval = Column(Integer, default=Defaults.CHECK_INTERVAL, nullable=False)  # s
    alerts_enabled = Column(Boolean, default=True, nullable=False)

    # Status
    status = Column(
        Enum(
            EndpointStatus,
            values_callable=_enum_values,
            native_enum=False,
            length=20,
        ),
        nullable=False,
        default=EndpointStatus.UNKNOWN,
        index=True
    )

    # Monitoring State
    last_checked = Column(DateTime, nullable=True)
    next_check = Column(DateTime, nullable=True, index=True)
    response_time = Column(Integer, nullable=True)  # ms
    uptime_percentage = Column(Float, default=100.0, nullable=False)

    __table_args__ = (
        Index("idx_endpoint_due", "status", "next_check"),
    )

    @property
    def is_disabled(self) -> bool:
        return self.status == EndpointStatus.DISABLED

    def is_due(self, now: datetime) -> bool:
        """
        Interval part of the due rule: not disabled and either never
        checked or checked at least ``check_interval`` seconds ago.
        """
        if self.is_disabled:
            return False
        if self.last_checked is None:
            return True
        return now - self.last_checked >= timedelta(seconds=self.check_interval)

    def to_dict(self) -> Dict[str, Any]:
        """Convert endpoint to dictionary"""
        return {
            "id": self.id,
            "name": self.name,
            "url": self.url,
            "timeout": self.timeout,
            "check_interval": self.check_interval,
            "status": EndpointStatus(self.status).value,
            "last_checked": self.last_checked.isoformat() if self.last_checked else None,
            "next_check": self.next_check.isoformat() if self.next_check else None,
            "response_time": self.response_time,
            "uptime_percentage": round(self.uptime_percentage or 0.0, 2),
            "alerts_enabled": self.alerts_enabled,
        }

    def __repr__(self) -> str:
        return f"<Endpoint(id={self.id}, name={self.name!r}, status={self.status})>"


# ============================================================================
# STATUS LOG MODEL
# ============================================================================

class StatusLog(Base):
    """
    One row per probe. Append-only.
    """
    __tablename__ = "status_logs"

    # Primary Key
    id = Column(Integer, primary_key=True, autoincrement=True)

    # Foreign Keys
    endpoint_id = Column(
        String(36),
        ForeignKey("endpoints.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    # Check Details
    status = Column(
        Enum(
            EndpointStatus,
            values_callable=_enum_values,
            native_enum=False,
            length=20,
        ),
        nullable=False
    )
    response_time = Column(Integer, nullable=True)  # ms
    checked_at = Column(DateTime, nullable=False, default=TimeHelper.utc_now, index=True)

    # Error Information
    error_message = Column(Text, nullable=True)

    __table_args__ = (
        Index("idx_status_log_endpoint_time", "endpoint_id", "checked_at"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert status log to dictionary"""
        return {
            "id": self.id,
            "endpoint_id": self.endpoint_id,
            "status": EndpointStatus(self.status).value,
            "response_time": self.response_time,
            "checked_at": self.checked_at.isoformat(),
            "error_message": self.error_message,
        }


# ============================================================================
# ALERT CONFIGURATION MODEL
# ============================================================================

class AlertConfig(Base, TimestampMixin):
    """
    Routing of status-change alerts for one endpoint to one destination.

    ``channel`` is kept as raw text; it is resolved against ``ChannelType``
    when an alert is dispatched.
    """
    __tablename__ = "alert_configs"

    # Primary Key
    id = Column(String(36), primary_key=True, default=_new_id)

    # Foreign Keys
    endpoint_id = Column(
        String(36),
        ForeignKey("endpoints.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    # Routing
    channel = Column(String(20), nullable=False)
    destination = Column(Text, nullable=False)
    enabled = Column(Boolean, default=True, nullable=False, index=True)

    def to_dict(self) -> Dict[str, Any]:
        """Convert alert config to dictionary"""
        return {
            "id": self.id,
            "endpoint_id": self.endpoint_id,
            "channel": self.channel,
            "destination": self.destination,
            "enabled": self.enabled,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


# ============================================================================
# ALERT HISTORY MODEL
# ============================================================================

class AlertHistory(Base, TimestampMixin):
    """
    Outcome of one channel delivery for one status change.
    """
    __tablename__ = "alert_history"

    # Primary Key
    id = Column(Integer, primary_key=True, autoincrement=True)

    # Foreign Keys
    endpoint_id = Column(
        String(36),
        ForeignKey("endpoints.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    alert_config_id = Column(String(36), nullable=True, index=True)

    # Alert Information
    channel = Column(String(20), nullable=False)
    severity = Column(
        Enum(Severity, values_callable=_enum_values, native_enum=False, length=20),
        nullable=False
    )
    old_status = Column(String(20), nullable=False)
    new_status = Column(String(20), nullable=False)

    # Delivery Outcome
    success = Column(Boolean, nullable=False, index=True)
    attempts = Column(Integer, default=1, nullable=False)
    error = Column(Text, nullable=True)

    def to_dict(self) -> Dict[str, Any]:
        """Convert alert history row to dictionary"""
        return {
            "id": self.id,
            "endpoint_id": self.endpoint_id,
            "alert_config_id": self.alert_config_id,
            "channel": self.channel,
            "severity": Severity(self.severity).value,
            "old_status": self.old_status,
            "new_status": self.new_status,
            "success": self.success,
            "attempts": self.attempts,
            "error": self.error,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


__all__ = [
    "Base",
    "Endpoint",
    "StatusLog",
    "AlertConfig",
    "AlertHistory",
]
