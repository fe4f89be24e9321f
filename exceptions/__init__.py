"""
Exceptions Package for AppWatch

Provides the exception hierarchy shared by the store, the monitoring
engine, the alert dispatcher and the control API.
"""

from exceptions.base import (
    AppWatchException,
    ConfigurationError,
    InitializationError,
)

from exceptions.database import (
    DatabaseException,
    DatabaseConnectionError,
    DatabaseQueryError,
    DatabaseNotFoundError,
)

from exceptions.validation import (
    ValidationException,
    InvalidURLError,
    InvalidEmailError,
    InvalidAlertConfigError,
)

from exceptions.monitoring import (
    MonitoringException,
    UnknownChannelError,
    DeliveryError,
)

__all__ = [
    # Base exceptions
    "AppWatchException",
    "ConfigurationError",
    "InitializationError",

    # Database exceptions
    "DatabaseException",
    "DatabaseConnectionError",
    "DatabaseQueryError",
    "DatabaseNotFoundError",

    # Validation exceptions
    "ValidationException",
    "InvalidURLError",
    "InvalidEmailError",
    "InvalidAlertConfigError",

    # Monitoring exceptions
    "MonitoringException",
    "UnknownChannelError",
    "DeliveryError",
]
