"""
Monitoring Exception Classes for AppWatch

Errors raised by the alert dispatcher. Probe failures are never raised:
they are returned as classified results.
"""

from __future__ import annotations

from typing import Any, Optional

from exceptions.base import AppWatchException


class MonitoringException(AppWatchException):
    """Parent class for engine and dispatcher errors."""

    default_error_code = 4000

    def __init__(
        self,
        message: str,
        endpoint_id: Optional[str] = None,
        **kwargs: Any
    ) -> None:
        super().__init__(message, **kwargs)

        if endpoint_id:
            self.details["endpoint_id"] = endpoint_id


class UnknownChannelError(MonitoringException):
    """
    Unknown Channel Error

    Raised at dispatch time when a stored alert configuration names a
    channel type the dispatcher has no sender for. Nothing is sent for the
    transition when this is raised.
    """

    default_error_code = 4001

    def __init__(
        self,
        channel: str,
        alert_config_id: Optional[str] = None,
        **kwargs: Any
    ) -> None:
        super().__init__(f"Unknown alert channel: {channel!r}", **kwargs)

        self.channel = channel
        self.details["channel"] = channel
        if alert_config_id:
            self.details["alert_config_id"] = alert_config_id


class DeliveryError(MonitoringException):
    """One failed delivery attempt to a channel destination."""

    default_error_code = 4002

    def __init__(
        self,
        message: str,
        channel: Optional[str] = None,
        status_code: Optional[int] = None,
        **kwargs: Any
    ) -> None:
        super().__init__(message, **kwargs)

        self.status_code = status_code
        if channel:
            self.details["channel"] = channel
        if status_code is not None:
            self.details["status_code"] = status_code
