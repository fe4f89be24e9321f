"""
Constants Module for AppWatch

Contains the enumerations, identifiers and static values shared by the
monitoring engine, the alert dispatcher and the control API.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, Final, Tuple


class EndpointStatus(str, Enum):
    """Stored status of a monitored endpoint."""

    UNKNOWN = "unknown"
    ONLINE = "online"
    OFFLINE = "offline"
    DISABLED = "disabled"


class BreakerPhase(str, Enum):
    """Circuit breaker phase."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class ProbeErrorType(str, Enum):
    """Classification of a failed probe."""

    TIMEOUT = "timeout"
    CONNECTION_ERROR = "connection_error"
    HTTP_STATUS = "http_status"


class ChannelType(str, Enum):
    """
    Alert channel types.

    Adding a channel means adding a member here and a formatter in
    ``monitoring.templates.FORMATTERS``.
    """

    EMAIL = "email"
    WEBHOOK = "webhook"
    SLACK = "slack"
    DISCORD = "discord"
    MSTEAMS = "msteams"

    @classmethod
    def from_value(cls, value: "str | ChannelType") -> "ChannelType":
        """Resolve a raw value, raising ValueError for unknown channels."""
        if isinstance(value, cls):
            return value
        return cls(str(value).strip().lower())


class Severity(str, Enum):
    """Alert severity."""

    CRITICAL = "critical"
    RECOVERY = "recovery"
    INFO = "info"

    @classmethod
    def classify(
        cls,
        old_status: "EndpointStatus | str",
        new_status: "EndpointStatus | str",
    ) -> "Severity":
        """
        critical  -> new status is offline
        recovery  -> offline back to online
        info      -> anything else
        """
        old = EndpointStatus(old_status)
        new = EndpointStatus(new_status)
        if new == EndpointStatus.OFFLINE:
            return cls.CRITICAL
        if old == EndpointStatus.OFFLINE and new == EndpointStatus.ONLINE:
            return cls.RECOVERY
        return cls.INFO


# ============================================================================
# WIRE IDENTIFIERS
# ============================================================================

MONITOR_USER_AGENT: Final[str] = "AppWatch-Monitor/1.0"
ALERT_USER_AGENT: Final[str] = "AppWatch-AlertSystem/1.0"
ALERT_FOOTER: Final[str] = "AppWatch Monitoring System"
GENERIC_WEBHOOK_TYPE: Final[str] = "app_status_change"
GENERIC_WEBHOOK_VERSION: Final[str] = "1.0"

# Substrings of a webhook destination that select a channel formatter.
CHANNEL_HOST_PATTERNS: Final[Tuple[Tuple[str, ChannelType], ...]] = (
    ("hooks.slack.com", ChannelType.SLACK),
    ("discord.com/api/webhooks", ChannelType.DISCORD),
    ("outlook.office.com", ChannelType.MSTEAMS),
    ("webhook.office.com", ChannelType.MSTEAMS),
)

# Colours per channel, keyed by severity bucket.
SLACK_COLORS: Final[Dict[str, str]] = {
    "critical": "danger",
    "online": "good",
    "other": "warning",
}
DISCORD_COLORS: Final[Dict[str, int]] = {
    "critical": 0xFF0000,
    "online": 0x00FF00,
    "other": 0xFFAA00,
}
TEAMS_COLORS: Final[Dict[str, str]] = {
    "critical": "FF0000",
    "online": "00FF00",
    "other": "FFAA00",
}
EMAIL_COLORS: Final[Dict[str, str]] = {
    "critical": "#ff0000",
    "online": "#00ff00",
    "other": "#ffaa00",
}


class Defaults:
    """Engine defaults, mirrored by the settings sections."""

    CHECK_INTERVAL: Final[int] = 300  # seconds
    TIMEOUT_MS: Final[int] = 10_000
    BATCH_SIZE: Final[int] = 50
    MAX_CONCURRENT_PROBES: Final[int] = 10
    FAILURE_THRESHOLD: Final[int] = 3
    COOLDOWN_SECONDS: Final[float] = 60.0
    MAX_COOLDOWN_SECONDS: Final[float] = 1800.0
    ALERT_MAX_ATTEMPTS: Final[int] = 3
    RATE_LIMIT_WINDOW: Final[int] = 60
    RATE_LIMIT_MAX_REQUESTS: Final[int] = 100
    UPTIME_WINDOW_DAYS: Final[int] = 30
