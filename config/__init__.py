"""
Configuration Package for AppWatch

This package contains all configuration-related modules including:
- Settings management with environment variable support
- Constants and enums used throughout the engine
"""

from config.settings import (
    Settings,
    DatabaseSettings,
    MonitoringSettings,
    BreakerSettings,
    AlertSettings,
    RateLimitSettings,
    LoggingSettings,
    ApiSettings,
    get_settings,
)

from config.constants import (
    EndpointStatus,
    BreakerPhase,
    ProbeErrorType,
    ChannelType,
    Severity,
    Defaults,
)

__all__ = [
    # Settings
    "Settings",
    "DatabaseSettings",
    "MonitoringSettings",
    "BreakerSettings",
    "AlertSettings",
    "RateLimitSettings",
    "LoggingSettings",
    "ApiSettings",
    "get_settings",

    # Constants
    "EndpointStatus",
    "BreakerPhase",
    "ProbeErrorType",
    "ChannelType",
    "Severity",
    "Defaults",
]
