"""
============================================================================
APPWATCH - HELPERS UTILITY
============================================================================
Time helpers, the shared retry policy and the fixed-window rate limiter.

Version: 1.0.0
License: MIT
============================================================================
"""

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Type

from utils.logger import get_logger


logger = get_logger("Helpers")


# ============================================================================
# TIME UTILITIES
# ============================================================================

class TimeHelper:
    """
    Time and date utilities.

    Timestamps are stored as naive UTC datetimes; SQLite drops tzinfo on
    the way back so everything is normalised to naive UTC here.
    """

    @staticmethod
    def utc_now() -> datetime:
        """Current UTC time as a naive datetime."""
        return datetime.now(timezone.utc).replace(tzinfo=None)

    @staticmethod
    def to_naive_utc(dt: datetime) -> datetime:
        """Convert an aware datetime to naive UTC; naive input is assumed UTC."""
        if dt.tzinfo is not None:
            dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
        return dt

    @staticmethod
    def to_iso(dt: datetime) -> str:
        """ISO-8601 UTC with millisecond precision and a trailing Z."""
        dt = TimeHelper.to_naive_utc(dt)
        return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"

    @staticmethod
    def parse_iso(value: str) -> datetime:
        """Parse a timestamp produced by ``to_iso``."""
        return TimeHelper.to_naive_utc(
            datetime.fromisoformat(value.replace("Z", "+00:00"))
        )

    @staticmethod
    def seconds_to_human_readable(seconds: float) -> str:
        """
        Convert seconds to a compact human readable string.

        Examples:
            45 -> "45s", 90 -> "1m 30s", 3700 -> "1h 1m"
        """
        seconds = int(seconds)
        if seconds < 60:
            return f"{seconds}s"
        if seconds < 3600:
            minutes, secs = divmod(seconds, 60)
            return f"{minutes}m {secs}s" if secs else f"{minutes}m"
        if seconds < 86400:
            hours, rest = divmod(seconds, 3600)
            minutes = rest // 60
            return f"{hours}h {minutes}m" if minutes else f"{hours}h"
        days, rest = divmod(seconds, 86400)
        hours = rest // 3600
        return f"{days}d {hours}h" if hours else f"{days}d"


# ============================================================================
# RETRY POLICY
# ============================================================================

@dataclass(frozen=True)
class RetryPolicy:
    """
    Exponential backoff policy.

    Attempt ``n`` (1-based) that fails waits
    ``min(base_delay * multiplier ** (n - 1), max_delay)`` before attempt
    ``n + 1``. No wait follows the last attempt.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 30.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays cannot be negative")

    def delay_for(self, attempt: int) -> float:
        """Delay after the given failed attempt."""
        return min(self.base_delay * (self.multiplier ** (attempt - 1)), self.max_delay)

    def delays(self) -> List[float]:
        """All waits a fully failing run goes through."""
        return [self.delay_for(n) for n in range(1, self.max_attempts)]


async def retry_async(
    func: Callable[[], Awaitable[Any]],
    policy: RetryPolicy,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    on_retry: Optional[Callable[[int, BaseException, float], None]] = None,
) -> Any:
    """
    Await ``func()`` until it succeeds or the policy is exhausted.

    Exceptions outside ``retry_on`` propagate immediately. After the last
    attempt the final exception is re-raised. Cancellation is never
    retried.

    Args:
        func: Zero-argument coroutine factory
        policy: Retry policy
        retry_on: Exception types that trigger another attempt
        on_retry: Callback ``(attempt, error, delay)`` before each wait

    Returns:
        Whatever ``func`` returns on its first success
    """
    attempt = 1
    while True:
        try:
            return await func()
        except asyncio.CancelledError:
            raise
        except retry_on as e:
            if attempt >= policy.max_attempts:
                raise
            delay = policy.delay_for(attempt)
            if on_retry is not None:
                on_retry(attempt, e, delay)
            else:
                logger.debug(
                    f"Attempt {attempt}/{policy.max_attempts} failed: {e}. "
                    f"Retrying in {delay:.2f}s"
                )
            await asyncio.sleep(delay)
            attempt += 1


# ============================================================================
# RATE LIMITER
# ============================================================================

class RateLimiter:
    """
    Fixed-window rate limiter.

    Each identifier gets a window that starts on its first request and
    lasts ``time_window`` seconds. Expired windows are replaced on access
    and dropped in bulk by ``evict_expired``.
    """

    def __init__(
        self,
        max_calls: int,
        time_window: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize rate limiter.

        Args:
            max_calls: Requests allowed per window
            time_window: Window length in seconds
            clock: Monotonic time source
        """
        if max_calls < 1:
            raise ValueError("max_calls must be at least 1")
        if time_window <= 0:
            raise ValueError("time_window must be positive")

        self.max_calls = max_calls
        self.time_window = time_window
        self._clock = clock
        # identifier -> [window_start, count]
        self._windows: Dict[str, List[float]] = {}

    def _live_window(self, identifier: str, now: float) -> Optional[List[float]]:
        window = self._windows.get(identifier)
        if window is not None and now - window[0] >= self.time_window:
            del self._windows[identifier]
            return None
        return window

    def is_allowed(self, identifier: str) -> bool:
        """
        Count a request and report whether it is within the limit.

        Rejected requests are not counted.
        """
        now = self._clock()
        window = self._live_window(identifier, now)
        if window is None:
            window = self._windows[identifier] = [now, 0]

        if window[1] >= self.max_calls:
            return False

        window[1] += 1
        return True

    def remaining(self, identifier: str) -> int:
        """Requests left in the identifier's current window."""
        window = self._live_window(identifier, self._clock())
        if window is None:
            return self.max_calls
        return max(0, self.max_calls - int(window[1]))

    def retry_after(self, identifier: str) -> float:
        """Seconds until the identifier's window resets (0 when none)."""
        now = self._clock()
        window = self._live_window(identifier, now)
        if window is None:
            return 0.0
        return max(0.0, self.time_window - (now - window[0]))

    def evict_expired(self) -> int:
        """Drop every expired window and return how many were removed."""
        now = self._clock()
        expired = [
            identifier for identifier, (start, _) in self._windows.items()
            if now - start >= self.time_window
        ]
        for identifier in expired:
            del self._windows[identifier]
        return len(expired)

    def reset(self, identifier: str):
        """Reset rate limit for identifier."""
        self._windows.pop(identifier, None)

    def clear(self):
        """Drop all state."""
        self._windows.clear()

    def __len__(self) -> int:
        return len(self._windows)
