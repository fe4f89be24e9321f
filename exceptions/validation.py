"""
Validation Exception Classes for AppWatch

Raised eagerly when endpoints or alert configurations are created with
values the engine could not act on later.
"""

from __future__ import annotations

from typing import Any, Optional

from exceptions.base import AppWatchException


class ValidationException(AppWatchException):
    """
    Base Validation Exception

    Parent class for all validation-related exceptions.
    """

    default_error_code = 3000
    default_recoverable = True

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        **kwargs: Any
    ) -> None:
        super().__init__(message, **kwargs)

        if field:
            self.details["field"] = field

        if value is not None:
            self.details["value"] = self._sanitize_value(value)

    @staticmethod
    def _sanitize_value(value: Any) -> str:
        str_value = str(value)

        if len(str_value) > 100:
            str_value = str_value[:100] + "..."

        return str_value


class InvalidURLError(ValidationException):
    """Raised when a URL is malformed or uses an unsupported scheme."""

    default_error_code = 3001

    def __init__(
        self,
        message: str = "Invalid URL format",
        url: Optional[str] = None,
        reason: Optional[str] = None,
        **kwargs: Any
    ) -> None:
        super().__init__(message, field="url", value=url, **kwargs)

        if reason:
            self.details["reason"] = reason


class InvalidEmailError(ValidationException):
    """Raised when an email destination is not a valid address."""

    default_error_code = 3002

    def __init__(
        self,
        message: str = "Invalid email address",
        email: Optional[str] = None,
        **kwargs: Any
    ) -> None:
        super().__init__(message, field="destination", value=email, **kwargs)


class InvalidAlertConfigError(ValidationException):
    """
    Invalid Alert Configuration

    Raised by ``create_alert_config`` when the channel type is unknown or
    the destination does not fit the channel.
    """

    default_error_code = 3003

    def __init__(
        self,
        message: str = "Invalid alert configuration",
        channel: Optional[str] = None,
        destination: Optional[str] = None,
        **kwargs: Any
    ) -> None:
        super().__init__(message, field="alert_config", **kwargs)

        if channel:
            self.details["channel"] = str(channel)

        if destination:
            self.details["destination"] = self._sanitize_value(destination)
