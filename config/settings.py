"""
Settings Module for AppWatch

Comprehensive configuration management using Pydantic Settings.
Supports environment variables, .env files, and runtime configuration.
Every engine parameter (breaker threshold, cool-down, concurrency, retry
policy, rate-limit window) is a setting rather than a hard-coded value.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional
from enum import Enum

from pydantic import (
    Field,
    SecretStr,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from config.constants import ALERT_USER_AGENT, MONITOR_USER_AGENT, Defaults


class Environment(str, Enum):
    """Application environment enumeration."""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


class LogLevel(str, Enum):
    """Logging level enumeration."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class BaseSettingsConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        validate_default=True
    )


class DatabaseSettings(BaseSettingsConfig):
    """
    Database Configuration Settings

    SQLite through aiosqlite by default; any SQLAlchemy async URL
    (e.g. postgresql+asyncpg://...) is accepted.
    """

    model_config = SettingsConfigDict(
        env_prefix="DB_",
        env_file=".env",
        extra="ignore"
    )

    url: str = Field(
        default="sqlite+aiosqlite:///data/appwatch.db",
        description="SQLAlchemy async database URL"
    )
    echo: bool = Field(
        default=False,
        description="Echo SQL queries (debug mode)"
    )

    @field_validator("url")
    @classmethod
    def validate_async_driver(cls, v: str) -> str:
        """Only async drivers can back the async session factory."""
        if "+" not in v.split("://", 1)[0]:
            raise ValueError(
                "Database URL must name an async driver, "
                "e.g. sqlite+aiosqlite:// or postgresql+asyncpg://"
            )
        return v

    @property
    def sqlite_path(self) -> Optional[Path]:
        """Filesystem path of the SQLite database, if any."""
        if not self.url.startswith("sqlite"):
            return None
        _, _, path = self.url.partition(":///")
        if not path or path == ":memory:":
            return None
        return Path(path)


class MonitoringSettings(BaseSettingsConfig):
    """
    Monitoring Engine Configuration Settings

    Controls pass cadence, batch size, probe concurrency and timeouts.
    """

    model_config = SettingsConfigDict(
        env_prefix="MONITOR_",
        env_file=".env",
        extra="ignore"
    )

    # Pass cadence
    tick_interval: int = Field(
        default=60,
        ge=1,
        le=3600,
        description="Seconds between scheduled health-check passes"
    )
    self_heal_interval: int = Field(
        default=60,
        ge=1,
        le=3600,
        description="Seconds between self-healing passes"
    )
    pass_deadline: float = Field(
        default=55.0,
        gt=0,
        description="Wall-clock budget of one pass in seconds"
    )

    # Selection & concurrency
    batch_size: int = Field(
        default=Defaults.BATCH_SIZE,
        ge=1,
        le=1000,
        description="Maximum endpoints selected per pass"
    )
    max_concurrent_probes: int = Field(
        default=Defaults.MAX_CONCURRENT_PROBES,
        ge=1,
        le=500,
        description="Maximum simultaneous outbound probes"
    )

    # Probe settings
    default_timeout_ms: int = Field(
        default=Defaults.TIMEOUT_MS,
        ge=100,
        le=120_000,
        description="Probe timeout used when an endpoint has none"
    )
    user_agent: str = Field(
        default=MONITOR_USER_AGENT,
        description="User agent sent with every probe"
    )
    probe_attempts: int = Field(
        default=1,
        ge=1,
        le=5,
        description="Attempts per probe for transport failures (1 = no retry)"
    )
    probe_retry_delay: float = Field(
        default=1.0,
        ge=0,
        le=60,
        description="Initial delay between probe attempts"
    )

    # Metrics
    uptime_window_days: int = Field(
        default=Defaults.UPTIME_WINDOW_DAYS,
        ge=1,
        le=365,
        description="Trailing window used for the uptime percentage"
    )

    @model_validator(mode="after")
    def validate_deadline(self) -> "MonitoringSettings":
        """A pass must finish before the next tick is due."""
        if self.pass_deadline > self.tick_interval:
            raise ValueError("pass_deadline cannot exceed tick_interval")
        return self


class BreakerSettings(BaseSettingsConfig):
    """
    Circuit Breaker Configuration Settings

    ``failure_threshold`` consecutive failures open the breaker for
    ``cooldown_seconds``. Each failed half-open trial multiplies the
    cool-down by ``backoff_multiplier`` up to ``max_cooldown_seconds``.
    """

    model_config = SettingsConfigDict(
        env_prefix="BREAKER_",
        env_file=".env",
        extra="ignore"
    )

    failure_threshold: int = Field(
        default=Defaults.FAILURE_THRESHOLD,
        ge=1,
        le=100,
        description="Consecutive failures that open the breaker"
    )
    cooldown_seconds: float = Field(
        default=Defaults.COOLDOWN_SECONDS,
        gt=0,
        description="Initial open-phase duration"
    )
    backoff_multiplier: float = Field(
        default=2.0,
        ge=1.0,
        le=10.0,
        description="Cool-down growth after a failed half-open trial"
    )
    max_cooldown_seconds: float = Field(
        default=Defaults.MAX_COOLDOWN_SECONDS,
        gt=0,
        description="Upper bound of the cool-down"
    )
    stale_reset_seconds: float = Field(
        default=3600.0,
        gt=0,
        description="Open breakers idle this long are reset by maintenance"
    )

    @model_validator(mode="after")
    def validate_cooldowns(self) -> "BreakerSettings":
        """Validate cool-down relationships."""
        if self.max_cooldown_seconds < self.cooldown_seconds:
            raise ValueError("max_cooldown_seconds cannot be lower than cooldown_seconds")
        return self


class AlertSettings(BaseSettingsConfig):
    """
    Alert Dispatcher Configuration Settings

    Retry policy for channel deliveries, outbound HTTP options and the SMTP
    relay used by the email channel.
    """

    model_config = SettingsConfigDict(
        env_prefix="ALERT_",
        env_file=".env",
        extra="ignore"
    )

    # Retry policy
    max_attempts: int = Field(
        default=Defaults.ALERT_MAX_ATTEMPTS,
        ge=1,
        le=10,
        description="Delivery attempts per channel"
    )
    base_delay: float = Field(
        default=1.0,
        ge=0,
        le=60,
        description="Delay before the first retry in seconds"
    )
    multiplier: float = Field(
        default=2.0,
        ge=1.0,
        le=10.0,
        description="Exponential backoff multiplier"
    )
    max_delay: float = Field(
        default=30.0,
        ge=0,
        le=600,
        description="Upper bound of a single backoff delay"
    )

    # Outbound HTTP
    request_timeout: float = Field(
        default=10.0,
        gt=0,
        le=120,
        description="Webhook request timeout in seconds"
    )
    user_agent: str = Field(
        default=ALERT_USER_AGENT,
        description="User agent sent with webhook deliveries"
    )
    dashboard_url: str = Field(
        default="https://your-appwatch-domain.com",
        description="Link back to the dashboard embedded in alerts"
    )

    # SMTP (email channel)
    smtp_host: Optional[str] = Field(
        default=None,
        description="SMTP relay host; email alerts fail when unset"
    )
    smtp_port: int = Field(
        default=587,
        ge=1,
        le=65535,
        description="SMTP relay port"
    )
    smtp_username: Optional[str] = Field(
        default=None,
        description="SMTP username"
    )
    smtp_password: SecretStr = Field(
        default=SecretStr(""),
        description="SMTP password"
    )
    smtp_use_tls: bool = Field(
        default=True,
        description="Use STARTTLS"
    )
    email_from: str = Field(
        default="appwatch@localhost",
        description="Sender address for email alerts"
    )


class RateLimitSettings(BaseSettingsConfig):
    """Control API rate limiting."""

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        env_file=".env",
        extra="ignore"
    )

    enabled: bool = Field(
        default=True,
        description="Enable per-client rate limiting"
    )
    window_seconds: int = Field(
        default=Defaults.RATE_LIMIT_WINDOW,
        ge=1,
        le=86400,
        description="Fixed window length"
    )
    max_requests: int = Field(
        default=Defaults.RATE_LIMIT_MAX_REQUESTS,
        ge=1,
        le=100_000,
        description="Requests allowed per window"
    )


class LoggingSettings(BaseSettingsConfig):
    """
    Logging Configuration Settings

    Console and rotating file sinks for loguru.
    """

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        env_file=".env",
        extra="ignore"
    )

    level: LogLevel = Field(
        default=LogLevel.INFO,
        description="Minimum logging level"
    )
    console_enabled: bool = Field(
        default=True,
        description="Enable console logging"
    )
    colorize: bool = Field(
        default=True,
        description="Enable colored console output"
    )
    file_enabled: bool = Field(
        default=False,
        description="Enable file logging"
    )
    file_path: Path = Field(
        default=Path("logs/appwatch.log"),
        description="Log file path"
    )
    rotation: str = Field(
        default="10 MB",
        description="Log file rotation trigger"
    )
    retention: str = Field(
        default="7 days",
        description="Log file retention"
    )
    serialize: bool = Field(
        default=False,
        description="Write the file sink as JSON lines"
    )


class ApiSettings(BaseSettingsConfig):
    """Control-plane HTTP server."""

    model_config = SettingsConfigDict(
        env_prefix="API_",
        env_file=".env",
        extra="ignore"
    )

    enabled: bool = Field(
        default=True,
        description="Start the control API"
    )
    host: str = Field(
        default="0.0.0.0",
        description="Bind address"
    )
    port: int = Field(
        default=8080,
        ge=1,
        le=65535,
        description="Bind port"
    )


class Settings(BaseSettingsConfig):
    """
    Main Settings Class

    Aggregates all settings sections and provides the main
    configuration interface for the application.
    """

    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Application environment"
    )
    app_name: str = Field(
        default="AppWatch",
        description="Application name"
    )
    app_version: str = Field(
        default="1.0.0",
        description="Application version"
    )

    # Nested settings
    database: DatabaseSettings = Field(
        default_factory=DatabaseSettings
    )
    monitoring: MonitoringSettings = Field(
        default_factory=MonitoringSettings
    )
    breaker: BreakerSettings = Field(
        default_factory=BreakerSettings
    )
    alerts: AlertSettings = Field(
        default_factory=AlertSettings
    )
    rate_limit: RateLimitSettings = Field(
        default_factory=RateLimitSettings
    )
    logging: LoggingSettings = Field(
        default_factory=LoggingSettings
    )
    api: ApiSettings = Field(
        default_factory=ApiSettings
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == Environment.PRODUCTION

    @property
    def is_testing(self) -> bool:
        """Check if running in testing environment."""
        return self.environment == Environment.TESTING

    @model_validator(mode="after")
    def configure_for_environment(self) -> "Settings":
        """Apply environment-specific configuration."""
        if self.is_production:
            self.database.echo = False
        return self

    def to_dict(self, *, exclude_secrets: bool = True) -> Dict[str, Any]:
        """Convert settings to dictionary."""
        data = self.model_dump(mode="json")

        if exclude_secrets:
            def remove_secrets(obj: Any) -> Any:
                if isinstance(obj, dict):
                    return {
                        k: remove_secrets(v)
                        for k, v in obj.items()
                        if "password" not in k.lower()
                        and "secret" not in k.lower()
                    }
                elif isinstance(obj, list):
                    return [remove_secrets(item) for item in obj]
                return obj

            data = remove_secrets(data)

        return data


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    This function is cached to ensure a single settings instance
    is used throughout the application lifecycle.

    Returns:
        Settings: Application settings instance
    """
    return Settings()
