"""Tests for input validation."""

import pytest

from config.constants import ChannelType
from exceptions import InvalidAlertConfigError, InvalidURLError
from utils.validators import DataValidator, URLValidator, validate_alert_config


class TestURLValidator:
    @pytest.mark.parametrize("url", [
        "https://example.com",
        "https://api.example.com/health?full=1",
        "http://localhost:8080/status",
        "http://10.0.0.5/ping",
    ])
    def test_valid_urls(self, url):
        assert URLValidator.is_valid_url(url)

    @pytest.mark.parametrize("url", ["ftp://example.com", "example.com", "https://", ""])
    def test_invalid_urls(self, url):
        assert not URLValidator.is_valid_url(url)

    def test_validate_normalizes_bare_origin(self):
        assert URLValidator.validate("  https://example.com/ ") == "https://example.com"

    def test_validate_reports_reason(self):
        with pytest.raises(InvalidURLError) as excinfo:
            URLValidator.validate("mailto:ops@example.com")

        assert excinfo.value.details["reason"] == "no_scheme"


class TestDataValidator:
    def test_email(self):
        assert DataValidator.is_valid_email("ops@example.com")
        assert not DataValidator.is_valid_email("ops-at-example")

    def test_ranges(self):
        assert DataValidator.is_valid_interval(300)
        assert not DataValidator.is_valid_interval(10)
        assert DataValidator.is_valid_timeout(5000)
        assert not DataValidator.is_valid_timeout(50)

    def test_sanitize_name(self):
        assert DataValidator.sanitize_name("  My   API \n") == "My API"


class TestAlertConfigValidation:
    def test_email_destination(self):
        assert validate_alert_config("EMAIL", " ops@example.com ") == (
            ChannelType.EMAIL, "ops@example.com"
        )

    def test_webhook_destination(self):
        channel, destination = validate_alert_config("slack", "https://hooks.slack.com/services/x")
        assert channel == ChannelType.SLACK
        assert destination == "https://hooks.slack.com/services/x"

    def test_unknown_channel(self):
        with pytest.raises(InvalidAlertConfigError) as excinfo:
            validate_alert_config("sms", "+15550100")
        assert excinfo.value.details["channel"] == "sms"

    def test_email_channel_needs_address(self):
        with pytest.raises(InvalidAlertConfigError):
            validate_alert_config("email", "https://example.com")

    def test_webhook_channel_needs_url(self):
        with pytest.raises(InvalidAlertConfigError):
            validate_alert_config("discord", "ops@example.com")

    def test_empty_destination(self):
        with pytest.raises(InvalidAlertConfigError):
            validate_alert_config("webhook", "   ")
