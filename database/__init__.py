"""
Database Package for AppWatch

Provides the async engine/session manager, ORM models and the monitoring
store built on SQLAlchemy.
"""

from database.manager import DatabaseManager, MonitorStore

from database.models import (
    Base,
    Endpoint,
    StatusLog,
    AlertConfig,
    AlertHistory,
)

__all__ = [
    # Manager
    "DatabaseManager",
    "MonitorStore",

    # Models
    "Base",
    "Endpoint",
    "StatusLog",
    "AlertConfig",
    "AlertHistory",
]
