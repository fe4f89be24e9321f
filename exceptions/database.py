"""
Database Exception Classes for AppWatch

Errors raised by the persistent store. SQLAlchemy errors are wrapped into
DatabaseQueryError with the operation name so callers never depend on the
driver's exception types.
"""

from __future__ import annotations

import re
from typing import Any, Optional

from exceptions.base import AppWatchException


class DatabaseException(AppWatchException):
    """
    Base Database Exception

    Parent class for all store-related exceptions.
    """

    default_error_code = 2000
    default_recoverable = False

    def __init__(
        self,
        message: str,
        query: Optional[str] = None,
        table: Optional[str] = None,
        **kwargs: Any
    ) -> None:
        super().__init__(message, **kwargs)

        if query:
            self.details["query"] = self._sanitize_query(query)

        if table:
            self.details["table"] = table

    @staticmethod
    def _sanitize_query(query: str) -> str:
        """Strip literal values from a SQL statement before logging it."""
        query = re.sub(r"'[^']*'", "'***'", query)
        query = re.sub(r"= \d+", "= ***", query)

        if len(query) > 500:
            query = query[:500] + "..."

        return query


class DatabaseConnectionError(DatabaseException):
    """Raised when the database cannot be reached."""

    default_error_code = 2001

    def __init__(
        self,
        message: str = "Unable to connect to database",
        url: Optional[str] = None,
        **kwargs: Any
    ) -> None:
        super().__init__(message, **kwargs)

        if url:
            # Drop credentials
            self.details["url"] = re.sub(r"//[^@/]*@", "//***@", url)


class DatabaseQueryError(DatabaseException):
    """
    Database Query Error

    Raised when a statement fails. ``operation`` names the store method.
    """

    default_error_code = 2002
    default_recoverable = True

    def __init__(
        self,
        message: str = "Database query failed",
        operation: Optional[str] = None,
        **kwargs: Any
    ) -> None:
        super().__init__(message, **kwargs)

        if operation:
            self.details["operation"] = operation


class DatabaseNotFoundError(DatabaseException):
    """Raised when a requested row does not exist."""

    default_error_code = 2003
    default_recoverable = True

    def __init__(
        self,
        message: str = "Record not found",
        model: Optional[str] = None,
        record_id: Optional[Any] = None,
        **kwargs: Any
    ) -> None:
        super().__init__(message, **kwargs)

        if model:
            self.details["model"] = model

        if record_id is not None:
            self.details["record_id"] = str(record_id)
