"""Shared fixtures: fast settings, an in-memory store and a scripted probe."""

import asyncio
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

import pytest

from config.constants import EndpointStatus, ProbeErrorType, Severity
from config.settings import (
    AlertSettings,
    BreakerSettings,
    MonitoringSettings,
    RateLimitSettings,
    Settings,
)
from database.models import AlertConfig, AlertHistory, Endpoint, StatusLog
from exceptions import DatabaseNotFoundError, DatabaseQueryError
from monitoring.probe import ProbeResult
from utils.helpers import TimeHelper


# ============================================================================
# BUILDERS
# ============================================================================

def make_endpoint(
    endpoint_id: str = "ep-1",
    name: str = "API",
    url: str = "https://api.example.com/health",
    status: EndpointStatus = EndpointStatus.ONLINE,
    check_interval: int = 300,
    last_checked: Optional[datetime] = None,
    timeout: int = 5000,
    alerts_enabled: bool = True,
) -> Endpoint:
    """Transient Endpoint with every column set (defaults apply on insert only)."""
    next_check = (
        last_checked + timedelta(seconds=check_interval) if last_checked is not None else None
    )
    return Endpoint(
        id=endpoint_id,
        name=name,
        url=url,
        timeout=timeout,
        check_interval=check_interval,
        alerts_enabled=alerts_enabled,
        status=status,
        last_checked=last_checked,
        next_check=next_check,
        response_time=None,
        uptime_percentage=100.0,
    )


def make_alert_config(
    config_id: str,
    endpoint_id: str = "ep-1",
    channel: str = "webhook",
    destination: str = "https://hooks.example.com/appwatch",
    enabled: bool = True,
) -> AlertConfig:
    return AlertConfig(
        id=config_id,
        endpoint_id=endpoint_id,
        channel=channel,
        destination=destination,
        enabled=enabled,
        created_at=TimeHelper.utc_now(),
    )


def make_settings(**overrides) -> Settings:
    """Settings with no real waiting anywhere."""
    sections = {
        "monitoring": MonitoringSettings(
            tick_interval=60,
            self_heal_interval=60,
            pass_deadline=5.0,
            batch_size=50,
            max_concurrent_probes=10,
        ),
        "breaker": BreakerSettings(failure_threshold=3, cooldown_seconds=60),
        "alerts": AlertSettings(max_attempts=3, base_delay=0.0, max_delay=0.0),
        "rate_limit": RateLimitSettings(enabled=True, window_seconds=60, max_requests=100),
    }
    sections.update(overrides)
    return Settings(**sections)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ============================================================================
# IN-MEMORY STORE
# ============================================================================

class FakeStore:
    """Implements the store operations the engine and dispatcher call."""

    def __init__(self):
        self.endpoints: Dict[str, Endpoint] = {}
        self.status_logs: List[StatusLog] = []
        self.alert_configs: List[AlertConfig] = []
        self.alert_results: List[dict] = []
        self.fail_selects = False
        self.fail_updates_for: set = set()

    def add(self, endpoint: Endpoint) -> Endpoint:
        self.endpoints[endpoint.id] = endpoint
        return endpoint

    def add_config(self, config: AlertConfig) -> AlertConfig:
        self.alert_configs.append(config)
        return config

    def make_overdue(self, endpoint_id: str, seconds: int = 400) -> None:
        endpoint = self.endpoints[endpoint_id]
        endpoint.last_checked = TimeHelper.utc_now() - timedelta(seconds=seconds)
        endpoint.next_check = endpoint.last_checked + timedelta(seconds=endpoint.check_interval)

    def logs_for(self, endpoint_id: str) -> List[StatusLog]:
        return [log for log in self.status_logs if log.endpoint_id == endpoint_id]

    # --- store operations -------------------------------------------------

    async def select_due_endpoints(
        self, limit: int, now: Optional[datetime] = None, exclude_ids: Iterable[str] = ()
    ) -> List[Endpoint]:
        if self.fail_selects:
            raise DatabaseQueryError("select failed", operation="select_due_endpoints")
        now = now or TimeHelper.utc_now()
        excluded = set(exclude_ids)
        due = [
            endpoint for endpoint in self.endpoints.values()
            if endpoint.status != EndpointStatus.DISABLED
            and endpoint.id not in excluded
            and (
                endpoint.last_checked is None
                or endpoint.next_check is None
                or endpoint.next_check <= now
            )
        ]
        due.sort(key=lambda e: (
            e.last_checked is not None, e.last_checked or datetime.min, e.id
        ))
        return due[:limit]

    async def select_offline_endpoints(self) -> List[Endpoint]:
        if self.fail_selects:
            raise DatabaseQueryError("select failed", operation="select_offline_endpoints")
        return [e for e in self.endpoints.values() if e.status == EndpointStatus.OFFLINE]

    async def get_endpoint(self, endpoint_id: str) -> Optional[Endpoint]:
        return self.endpoints.get(endpoint_id)

    async def update_endpoint_status(
        self, endpoint_id, status, checked_at, response_time, uptime_percentage=None
    ) -> Endpoint:
        if endpoint_id in self.fail_updates_for:
            raise DatabaseQueryError("update failed", operation="update_endpoint_status")
        endpoint = self.endpoints.get(endpoint_id)
        if endpoint is None:
            raise DatabaseNotFoundError(model="Endpoint", record_id=endpoint_id)
        endpoint.status = EndpointStatus(status)
        endpoint.last_checked = checked_at
        endpoint.next_check = checked_at + timedelta(seconds=endpoint.check_interval)
        endpoint.response_time = response_time
        if uptime_percentage is not None:
            endpoint.uptime_percentage = uptime_percentage
        return endpoint

    async def append_status_log(
        self, endpoint_id, status, response_time, checked_at, error=None
    ) -> StatusLog:
        entry = StatusLog(
            id=len(self.status_logs) + 1,
            endpoint_id=endpoint_id,
            status=EndpointStatus(status),
            response_time=response_time,
            checked_at=checked_at,
            error_message=error,
        )
        self.status_logs.append(entry)
        return entry

    async def compute_uptime(self, endpoint_id: str, since: datetime) -> float:
        logs = [log for log in self.logs_for(endpoint_id) if log.checked_at > since]
        if not logs:
            return 100.0
        online = sum(1 for log in logs if log.status == EndpointStatus.ONLINE)
        return round(online * 100.0 / len(logs), 2)

    async def select_enabled_alert_configs(self, endpoint_id: str) -> List[AlertConfig]:
        return [c for c in self.alert_configs if c.endpoint_id == endpoint_id and c.enabled]

    async def get_alert_config(self, config_id: str) -> Optional[AlertConfig]:
        for config in self.alert_configs:
            if config.id == config_id:
                return config
        return None

    async def append_alert_result(self, **kwargs) -> dict:
        self.alert_results.append(kwargs)
        return kwargs

    async def get_status_logs(self, endpoint_id: str, limit: int = 100) -> List[StatusLog]:
        return list(reversed(self.logs_for(endpoint_id)))[:limit]

    async def get_alert_history(self, endpoint_id: Optional[str] = None, limit: int = 50) -> List[AlertHistory]:
        rows = [
            AlertHistory(**{**result, "severity": Severity(result["severity"])})
            for result in self.alert_results
            if endpoint_id is None or result["endpoint_id"] == endpoint_id
        ]
        return list(reversed(rows))[:limit]

    async def get_monitoring_stats(self, since: datetime) -> dict:
        logs = [log for log in self.status_logs if log.checked_at > since]
        return {
            "monitored_endpoints": len({log.endpoint_id for log in logs}),
            "total_checks": len(logs),
            "success_rate": 0,
            "avg_response_time": 0,
            "last_check": None,
        }


# ============================================================================
# SCRIPTED PROBE
# ============================================================================

class FakeProbe:
    """
    Returns scripted statuses per endpoint id (ONLINE by default) and
    records concurrency.
    """

    def __init__(self):
        self.scripts: Dict[str, List[EndpointStatus]] = {}
        self.delays: Dict[str, float] = {}
        self.cancel_delays: Dict[str, float] = {}
        self.calls: List[str] = []
        self.running: Dict[str, int] = {}
        self.max_running_per_endpoint = 0
        self.total_running = 0
        self.max_total_running = 0

    def script(self, endpoint_id: str, *statuses: EndpointStatus) -> None:
        self.scripts.setdefault(endpoint_id, []).extend(statuses)

    async def check(self, endpoint) -> ProbeResult:
        self.calls.append(endpoint.id)
        self.running[endpoint.id] = self.running.get(endpoint.id, 0) + 1
        self.total_running += 1
        self.max_running_per_endpoint = max(self.max_running_per_endpoint, self.running[endpoint.id])
        self.max_total_running = max(self.max_total_running, self.total_running)
        try:
            delay = self.delays.get(endpoint.id, 0)
            if delay:
                await asyncio.sleep(delay)
        except asyncio.CancelledError:
            # slow teardown, like a connection that takes a while to close
            await asyncio.sleep(self.cancel_delays.get(endpoint.id, 0))
            raise
        finally:
            self.running[endpoint.id] -= 1
            self.total_running -= 1

        queue = self.scripts.get(endpoint.id)
        status = queue.pop(0) if queue else EndpointStatus.ONLINE

        if status == EndpointStatus.ONLINE:
            return ProbeResult(
                endpoint_id=endpoint.id,
                status=EndpointStatus.ONLINE,
                response_time=42,
                status_code=200,
            )
        return ProbeResult(
            endpoint_id=endpoint.id,
            status=EndpointStatus.OFFLINE,
            response_time=12,
            status_code=500,
            error_type=ProbeErrorType.HTTP_STATUS,
            error_message="HTTP 500 Internal Server Error",
        )

    async def close(self) -> None:
        pass


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def probe() -> FakeProbe:
    return FakeProbe()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
