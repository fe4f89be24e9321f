"""
============================================================================
APPWATCH - VALIDATORS UTILITY
============================================================================
Validation of endpoint and alert configuration input.

Version: 1.0.0
License: MIT
============================================================================
"""

from typing import Tuple
from urllib.parse import urlparse

import validators as external_validators

from config.constants import ChannelType
from exceptions import InvalidAlertConfigError, InvalidEmailError, InvalidURLError
from utils.logger import get_logger


logger = get_logger("Validators")


MAX_URL_LENGTH = 2048
MAX_NAME_LENGTH = 255


# ============================================================================
# URL VALIDATORS
# ============================================================================

class URLValidator:
    """
    URL validation and normalisation.
    """

    ALLOWED_SCHEMES = ("http", "https")

    @staticmethod
    def is_valid_url(url: str) -> bool:
        """
        Check if URL is a valid http(s) URL.

        Internal host names (no TLD) are accepted since monitored services
        frequently live on private networks.
        """
        if not isinstance(url, str) or not url or len(url) > MAX_URL_LENGTH:
            return False
        if urlparse(url).scheme.lower() not in URLValidator.ALLOWED_SCHEMES:
            return False
        return external_validators.url(url, simple_host=True) is True

    @staticmethod
    def normalize_url(url: str) -> str:
        """Strip whitespace and a trailing slash from a bare origin."""
        url = url.strip()
        parsed = urlparse(url)
        if parsed.path == "/" and not parsed.query and not parsed.fragment:
            url = url[:-1]
        return url

    @staticmethod
    def validate(url: str) -> str:
        """
        Validate and normalise a URL.

        Raises:
            InvalidURLError: if the URL is unusable
        """
        if not isinstance(url, str) or not url.strip():
            raise InvalidURLError("URL is required", url=url, reason="empty")

        url = URLValidator.normalize_url(url)

        if len(url) > MAX_URL_LENGTH:
            raise InvalidURLError("URL is too long", url=url, reason="too_long")

        if urlparse(url).scheme.lower() not in URLValidator.ALLOWED_SCHEMES:
            raise InvalidURLError(
                "URL must start with http:// or https://", url=url, reason="no_scheme"
            )

        if not URLValidator.is_valid_url(url):
            raise InvalidURLError(url=url, reason="malformed")

        return url


# ============================================================================
# DATA VALIDATORS
# ============================================================================

class DataValidator:
    """
    Scalar field validators.
    """

    @staticmethod
    def is_valid_email(email: str) -> bool:
        """Check if email is valid."""
        if not isinstance(email, str):
            return False
        return external_validators.email(email) is True

    @staticmethod
    def is_valid_interval(interval, min_val: int = 30, max_val: int = 86400) -> bool:
        """Check a check interval in seconds."""
        return isinstance(interval, int) and min_val <= interval <= max_val

    @staticmethod
    def is_valid_timeout(timeout, min_val: int = 100, max_val: int = 120_000) -> bool:
        """Check a probe timeout in milliseconds."""
        return isinstance(timeout, int) and min_val <= timeout <= max_val

    @staticmethod
    def sanitize_name(name: str) -> str:
        """Collapse whitespace and truncate."""
        return " ".join(name.split())[:MAX_NAME_LENGTH]


# ============================================================================
# ALERT CONFIG VALIDATION
# ============================================================================

def validate_alert_config(channel, destination: str) -> Tuple[ChannelType, str]:
    """
    Validate an alert configuration before it is stored.

    ``email`` destinations must be addresses; every other channel takes an
    http(s) webhook URL.

    Returns:
        The resolved channel and the normalised destination

    Raises:
        InvalidAlertConfigError: unknown channel or unusable destination
    """
    try:
        channel_type = ChannelType.from_value(channel)
    except ValueError:
        raise InvalidAlertConfigError(
            f"Unknown alert channel: {channel!r}",
            channel=str(channel),
            destination=destination,
        )

    if not isinstance(destination, str) or not destination.strip():
        raise InvalidAlertConfigError(
            "Alert destination is required", channel=channel_type.value
        )

    destination = destination.strip()

    if channel_type == ChannelType.EMAIL:
        if not DataValidator.is_valid_email(destination):
            raise InvalidAlertConfigError(
                "Email alert destination must be a valid address",
                channel=channel_type.value,
                destination=destination,
                cause=InvalidEmailError(email=destination),
            )
        return channel_type, destination

    try:
        destination = URLValidator.validate(destination)
    except InvalidURLError as e:
        raise InvalidAlertConfigError(
            f"{channel_type.value} alert destination must be an http(s) URL",
            channel=channel_type.value,
            destination=destination,
            cause=e,
        )

    return channel_type, destination
