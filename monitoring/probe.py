"""
============================================================================
APPWATCH - HTTP PROBE
============================================================================
Performs one HEAD request against an endpoint and classifies the outcome.

A probe never raises to its caller: every failure becomes an ``offline``
result carrying an error type (timeout, connection_error, http_status).
Transport failures may be retried through the shared retry policy; HTTP
status failures are final.

Version: 1.0.0
License: MIT
============================================================================
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

import httpx

from config.constants import EndpointStatus, ProbeErrorType
from config.settings import MonitoringSettings
from utils.helpers import RetryPolicy, TimeHelper, retry_async
from utils.logger import get_logger


logger = get_logger("Probe")


# ============================================================================
# PROBE RESULT
# ============================================================================

@dataclass
class ProbeResult:
    """
    Outcome of a single probe.

    ``response_time`` is in milliseconds. It is set for every request that
    produced a response (including non-2xx) and ``None`` when the request
    never completed.
    """
    endpoint_id: str
    status: EndpointStatus
    checked_at: datetime = field(default_factory=TimeHelper.utc_now)
    response_time: Optional[int] = None
    status_code: Optional[int] = None
    error_type: Optional[ProbeErrorType] = None
    error_message: Optional[str] = None
    attempts: int = 1

    @property
    def success(self) -> bool:
        return self.status == EndpointStatus.ONLINE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "endpoint_id": self.endpoint_id,
            "status": self.status.value,
            "checked_at": TimeHelper.to_iso(self.checked_at),
            "response_time": self.response_time,
            "status_code": self.status_code,
            "error_type": self.error_type.value if self.error_type else None,
            "error_message": self.error_message,
            "attempts": self.attempts,
        }


# ============================================================================
# PROBE
# ============================================================================

class Probe:
    """
    HEAD-request availability probe built on a shared ``httpx.AsyncClient``.

    Parameters
    ----------
    settings : MonitoringSettings
        Default timeout, user agent and transport retry policy.
    client : httpx.AsyncClient | None
        Injected client; when omitted the probe creates and owns one.
    """

    def __init__(
        self,
        settings: Optional[MonitoringSettings] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = settings or MonitoringSettings()
        self.default_timeout_ms = self.settings.default_timeout_ms
        self.user_agent = self.settings.user_agent
        self.retry_policy = RetryPolicy(
            max_attempts=self.settings.probe_attempts,
            base_delay=self.settings.probe_retry_delay,
        )

        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                follow_redirects=True,
                headers={"User-Agent": self.user_agent},
                limits=httpx.Limits(
                    max_connections=self.settings.max_concurrent_probes * 2,
                    max_keepalive_connections=self.settings.max_concurrent_probes,
                ),
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if the probe created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _request(self, url: str, timeout: float) -> httpx.Response:
        return await asyncio.wait_for(
            self.client.head(
                url,
                headers={"User-Agent": self.user_agent},
                timeout=httpx.Timeout(timeout),
            ),
            timeout=timeout,
        )

    async def check(self, endpoint) -> ProbeResult:
        """
        Probe *endpoint* once (plus transport retries when configured).

        Parameters
        ----------
        endpoint : Endpoint
            Needs ``id``, ``url`` and ``timeout`` (milliseconds).

        Returns
        -------
        ProbeResult
            Never raises, except for task cancellation.
        """
        timeout = (endpoint.timeout or self.default_timeout_ms) / 1000.0
        attempts = 0
        started = 0.0

        async def attempt() -> httpx.Response:
            nonlocal attempts, started
            attempts += 1
            started = time.perf_counter()
            return await self._request(endpoint.url, timeout)

        def on_retry(attempt_no: int, error: BaseException, delay: float) -> None:
            logger.debug(
                f"[Probe] {endpoint.url} attempt {attempt_no}/{self.retry_policy.max_attempts} "
                f"failed ({type(error).__name__}), retrying in {delay:.1f}s"
            )

        try:
            response = await retry_async(
                attempt,
                self.retry_policy,
                retry_on=(httpx.TransportError, asyncio.TimeoutError),
                on_retry=on_retry,
            )
        except (httpx.TimeoutException, asyncio.TimeoutError):
            return self._failure(
                endpoint, ProbeErrorType.TIMEOUT,
                f"Request timed out after {timeout * 1000:.0f}ms", attempts,
            )
        except httpx.TransportError as e:
            return self._failure(
                endpoint, ProbeErrorType.CONNECTION_ERROR,
                f"Connection error: {str(e)[:200] or type(e).__name__}", attempts,
            )
        except httpx.InvalidURL as e:
            return self._failure(
                endpoint, ProbeErrorType.CONNECTION_ERROR,
                f"Invalid URL: {str(e)[:200]}", attempts,
            )
        except Exception as e:
            logger.error(f"[Probe] Unexpected error probing {endpoint.url}: {e}")
            return self._failure(
                endpoint, ProbeErrorType.CONNECTION_ERROR,
                f"Unexpected error: {str(e)[:200]}", attempts,
            )

        elapsed_ms = int(round((time.perf_counter() - started) * 1000))

        if 200 <= response.status_code < 400:
            logger.debug(f"[Probe] {endpoint.url} -> {response.status_code} in {elapsed_ms}ms")
            return ProbeResult(
                endpoint_id=endpoint.id,
                status=EndpointStatus.ONLINE,
                response_time=elapsed_ms,
                status_code=response.status_code,
                attempts=attempts,
            )

        return ProbeResult(
            endpoint_id=endpoint.id,
            status=EndpointStatus.OFFLINE,
            response_time=elapsed_ms,
            status_code=response.status_code,
            error_type=ProbeErrorType.HTTP_STATUS,
            error_message=f"HTTP {response.status_code} {response.reason_phrase}".rstrip(),
            attempts=attempts,
        )

    @staticmethod
    def _failure(endpoint, error_type: ProbeErrorType, message: str, attempts: int) -> ProbeResult:
        return ProbeResult(
            endpoint_id=endpoint.id,
            status=EndpointStatus.OFFLINE,
            error_type=error_type,
            error_message=message,
            attempts=attempts,
        )
