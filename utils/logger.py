"""
============================================================================
APPWATCH - LOGGING UTILITY
============================================================================
loguru sink configuration plus the specialised loggers used by the
monitoring engine and the alert dispatcher.

Version: 1.0.0
License: MIT
============================================================================
"""

import asyncio
import sys
import time
from functools import wraps
from typing import Optional

from loguru import logger

from config.settings import LoggingSettings


CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[name]}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {extra[name]}:{function}:{line} - {message}"


# ============================================================================
# LOGGER CONFIGURATION
# ============================================================================

def setup_logging(settings: Optional[LoggingSettings] = None) -> None:
    """
    Configure loguru sinks.

    Console sink when enabled; rotating file sink (JSON lines when
    ``serialize`` is set) plus a separate ``errors.log`` when file
    logging is enabled.
    """
    settings = settings or LoggingSettings()

    logger.remove()
    logger.configure(extra={"name": "AppWatch"})

    log_level = settings.level.value

    # Console Handler
    if settings.console_enabled:
        logger.add(
            sys.stdout,
            format=CONSOLE_FORMAT,
            level=log_level,
            colorize=settings.colorize,
            backtrace=True,
            diagnose=False,
        )

    # File Handlers
    if settings.file_enabled:
        log_file_path = settings.file_path
        log_file_path.parent.mkdir(parents=True, exist_ok=True)

        logger.add(
            log_file_path,
            format=FILE_FORMAT,
            level=log_level,
            rotation=settings.rotation,
            retention=settings.retention,
            compression="zip",
            serialize=settings.serialize,
            enqueue=True,
        )

        logger.add(
            log_file_path.parent / "errors.log",
            format=FILE_FORMAT,
            level="ERROR",
            rotation="1 day",
            retention=settings.retention,
            compression="zip",
            backtrace=True,
            enqueue=True,
        )

    logger.info(f"Logging system initialized (level={log_level})")
    logger.info(f"Console logging: {settings.console_enabled}")
    logger.info(f"File logging: {settings.file_enabled}")


def get_logger(name: Optional[str] = None):
    """
    Get logger instance bound to a component name.

    Args:
        name: Component name shown in every record

    Returns:
        Logger instance
    """
    return logger.bind(name=name or "AppWatch")


# ============================================================================
# LOG DECORATORS
# ============================================================================

def log_execution_time(func):
    """
    Decorator to log function execution time.

    Works for both coroutine functions and plain callables.
    """
    log = get_logger("Timing")

    @wraps(func)
    async def async_wrapper(*args, **kwargs):
        start_time = time.perf_counter()
        try:
            result = await func(*args, **kwargs)
            log.debug(
                f"{func.__qualname__} executed in "
                f"{time.perf_counter() - start_time:.4f} seconds"
            )
            return result
        except Exception as e:
            log.error(
                f"{func.__qualname__} failed after "
                f"{time.perf_counter() - start_time:.4f} seconds: {e}"
            )
            raise

    @wraps(func)
    def sync_wrapper(*args, **kwargs):
        start_time = time.perf_counter()
        try:
            result = func(*args, **kwargs)
            log.debug(
                f"{func.__qualname__} executed in "
                f"{time.perf_counter() - start_time:.4f} seconds"
            )
            return result
        except Exception as e:
            log.error(
                f"{func.__qualname__} failed after "
                f"{time.perf_counter() - start_time:.4f} seconds: {e}"
            )
            raise

    if asyncio.iscoroutinefunction(func):
        return async_wrapper
    return sync_wrapper


# ============================================================================
# SPECIALIZED LOGGERS
# ============================================================================

class MonitorLogger:
    """
    Specialized logger for probe outcomes and status transitions.
    """

    def __init__(self):
        self.logger = get_logger("Monitor")

    def log_check(
        self,
        endpoint_id: str,
        url: str,
        success: bool,
        response_time: Optional[int] = None,
        error: Optional[str] = None,
    ):
        """Log one probe outcome."""
        if success:
            self.logger.debug(
                f"Check OK for endpoint {endpoint_id} ({url}) - {response_time}ms"
            )
        else:
            self.logger.warning(
                f"Check failed for endpoint {endpoint_id} ({url}): {error}"
            )

    def log_transition(self, endpoint_id: str, name: str, old_status: str, new_status: str):
        """Log a status change."""
        self.logger.info(
            f"Status change for {name} ({endpoint_id}): {old_status} -> {new_status}"
        )


class AlertLogger:
    """
    Specialized logger for alert deliveries.
    """

    def __init__(self):
        self.logger = get_logger("Alerts")

    def log_delivery(
        self,
        channel: str,
        destination: str,
        success: bool,
        attempts: int,
        error: Optional[str] = None,
    ):
        """Log the final outcome of one channel delivery."""
        if success:
            self.logger.info(
                f"{channel} alert delivered to {destination} "
                f"after {attempts} attempt(s)"
            )
        else:
            self.logger.error(
                f"{channel} alert to {destination} failed "
                f"after {attempts} attempt(s): {error}"
            )


# ============================================================================
# END OF LOGGER MODULE
# ============================================================================
