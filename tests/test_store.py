"""Tests for MonitorStore against a temporary SQLite database."""

import asyncio
from datetime import timedelta

import pytest

from config.constants import EndpointStatus, Severity
from config.settings import DatabaseSettings
from database.manager import DatabaseManager, MonitorStore
from exceptions import (
    DatabaseNotFoundError,
    InvalidAlertConfigError,
    InvalidURLError,
    ValidationException,
)
from utils.helpers import TimeHelper


def with_store(tmp_path, scenario):
    """Run ``scenario(store)`` against a fresh database file."""
    async def go():
        manager = DatabaseManager(DatabaseSettings(url=f"sqlite+aiosqlite:///{tmp_path}/appwatch.db"))
        await manager.initialize()
        try:
            return await scenario(MonitorStore(manager))
        finally:
            await manager.close()

    return asyncio.run(go())


async def checked_endpoint(store, name, seconds_ago, status=EndpointStatus.ONLINE, interval=300):
    endpoint = await store.create_endpoint(name, f"https://{name}.example.com", check_interval=interval)
    checked_at = TimeHelper.utc_now() - timedelta(seconds=seconds_ago)
    await store.update_endpoint_status(endpoint.id, status, checked_at, 120)
    return endpoint


class TestEndpointSelection:
    def test_due_order_and_filters(self, tmp_path):
        async def scenario(store):
            never = await store.create_endpoint("never", "https://never.example.com")
            recent = await checked_endpoint(store, "recent", 400)
            oldest = await checked_endpoint(store, "oldest", 1000)
            await checked_endpoint(store, "fresh", 100)
            await checked_endpoint(store, "off", 1000, status=EndpointStatus.DISABLED)

            due = await store.select_due_endpoints(10)
            excluded = await store.select_due_endpoints(10, exclude_ids=[oldest.id])
            limited = await store.select_due_endpoints(1)
            return [e.id for e in due], [e.id for e in excluded], [e.id for e in limited], (
                never.id, recent.id, oldest.id
            )

        due, excluded, limited, (never, recent, oldest) = with_store(tmp_path, scenario)

        assert due == [never, oldest, recent]
        assert excluded == [never, recent]
        assert limited == [never]

    def test_update_sets_next_check(self, tmp_path):
        async def scenario(store):
            endpoint = await store.create_endpoint("api", "https://api.example.com", check_interval=120)
            checked_at = TimeHelper.utc_now()
            await store.update_endpoint_status(
                endpoint.id, EndpointStatus.OFFLINE, checked_at, None, uptime_percentage=87.5
            )
            return checked_at, await store.get_endpoint(endpoint.id)

        checked_at, endpoint = with_store(tmp_path, scenario)

        assert endpoint.status == EndpointStatus.OFFLINE
        assert endpoint.last_checked == checked_at
        assert endpoint.next_check == checked_at + timedelta(seconds=120)
        assert endpoint.response_time is None
        assert endpoint.uptime_percentage == 87.5

    def test_update_unknown_endpoint(self, tmp_path):
        async def scenario(store):
            await store.update_endpoint_status("missing", EndpointStatus.ONLINE, TimeHelper.utc_now(), 1)

        with pytest.raises(DatabaseNotFoundError):
            with_store(tmp_path, scenario)

    def test_offline_selection(self, tmp_path):
        async def scenario(store):
            down = await checked_endpoint(store, "down", 10, status=EndpointStatus.OFFLINE)
            await checked_endpoint(store, "up", 10)
            return down.id, [e.id for e in await store.select_offline_endpoints()]

        down, offline = with_store(tmp_path, scenario)

        assert offline == [down]


class TestEndpointCreation:
    def test_defaults(self, tmp_path):
        async def scenario(store):
            return await store.create_endpoint("  My   API ", "https://api.example.com/")

        endpoint = with_store(tmp_path, scenario)

        assert endpoint.name == "My API"
        assert endpoint.url == "https://api.example.com"
        assert endpoint.status == EndpointStatus.UNKNOWN
        assert endpoint.check_interval == 300
        assert endpoint.timeout == 10000

    def test_rejects_bad_url(self, tmp_path):
        async def scenario(store):
            await store.create_endpoint("api", "ftp://api.example.com")

        with pytest.raises(InvalidURLError):
            with_store(tmp_path, scenario)

    def test_rejects_bad_interval(self, tmp_path):
        async def scenario(store):
            await store.create_endpoint("api", "https://api.example.com", check_interval=5)

        with pytest.raises(ValidationException):
            with_store(tmp_path, scenario)


class TestStatusLogs:
    def test_uptime_over_window(self, tmp_path):
        async def scenario(store):
            endpoint = await store.create_endpoint("api", "https://api.example.com")
            now = TimeHelper.utc_now()
            for status in ("online", "online", "online", "offline"):
                await store.append_status_log(endpoint.id, status, 50, now)
            await store.append_status_log(
                endpoint.id, EndpointStatus.OFFLINE, None, now - timedelta(days=40), "old"
            )
            empty = await store.create_endpoint("empty", "https://empty.example.com")

            window = now - timedelta(days=30)
            return (
                await store.compute_uptime(endpoint.id, window),
                await store.compute_uptime(empty.id, window),
                await store.get_status_logs(endpoint.id),
            )

        uptime, empty_uptime, logs = with_store(tmp_path, scenario)

        assert uptime == 75.0
        assert empty_uptime == 100.0
        assert len(logs) == 5
        assert logs[-1].error_message == "old"

    def test_monitoring_stats(self, tmp_path):
        async def scenario(store):
            a = await store.create_endpoint("a", "https://a.example.com")
            b = await store.create_endpoint("b", "https://b.example.com")
            now = TimeHelper.utc_now()
            await store.append_status_log(a.id, EndpointStatus.ONLINE, 100, now)
            await store.append_status_log(a.id, EndpointStatus.ONLINE, 200, now)
            await store.append_status_log(b.id, EndpointStatus.OFFLINE, 300, now)
            await store.append_status_log(b.id, EndpointStatus.OFFLINE, None, now - timedelta(days=2))
            return await store.get_monitoring_stats(now - timedelta(hours=24))

        stats = with_store(tmp_path, scenario)

        assert stats["monitored_endpoints"] == 2
        assert stats["total_checks"] == 3
        assert stats["success_rate"] == 67
        assert stats["avg_response_time"] == 200
        assert stats["last_check"] is not None


class TestAlertConfigs:
    def test_create_and_select_enabled(self, tmp_path):
        async def scenario(store):
            endpoint = await store.create_endpoint("api", "https://api.example.com")
            enabled = await store.create_alert_config(endpoint.id, "Slack", "https://hooks.slack.com/x")
            await store.create_alert_config(endpoint.id, "email", "ops@example.com", enabled=False)
            configs = await store.select_enabled_alert_configs(endpoint.id)
            fetched = await store.get_alert_config(enabled.id)
            return enabled, configs, fetched

        enabled, configs, fetched = with_store(tmp_path, scenario)

        assert enabled.channel == "slack"
        assert [c.id for c in configs] == [enabled.id]
        assert fetched.destination == "https://hooks.slack.com/x"

    def test_rejects_invalid_config(self, tmp_path):
        async def scenario(store):
            endpoint = await store.create_endpoint("api", "https://api.example.com")
            await store.create_alert_config(endpoint.id, "sms", "+15550100")

        with pytest.raises(InvalidAlertConfigError):
            with_store(tmp_path, scenario)

    def test_rejects_unknown_endpoint(self, tmp_path):
        async def scenario(store):
            await store.create_alert_config("missing", "webhook", "https://example.com/hook")

        with pytest.raises(DatabaseNotFoundError):
            with_store(tmp_path, scenario)

    def test_alert_history(self, tmp_path):
        async def scenario(store):
            endpoint = await store.create_endpoint("api", "https://api.example.com")
            config = await store.create_alert_config(endpoint.id, "webhook", "https://example.com/hook")
            await store.append_alert_result(
                endpoint_id=endpoint.id,
                alert_config_id=config.id,
                channel="webhook",
                severity="critical",
                old_status="online",
                new_status="offline",
                success=False,
                attempts=3,
                error="HTTP 500 Internal Server Error",
            )
            return await store.get_alert_history(endpoint.id)

        history = with_store(tmp_path, scenario)

        assert len(history) == 1
        assert history[0].severity == Severity.CRITICAL
        assert history[0].attempts == 3
        assert history[0].to_dict()["success"] is False


class TestDatabaseManager:
    def test_connection_check(self, tmp_path):
        async def scenario(store):
            return await store.db.check_connection()

        assert with_store(tmp_path, scenario) is True

    def test_masks_password(self):
        masked = DatabaseManager._mask_password("postgresql+asyncpg://app:secret@db:5432/appwatch")

        assert masked == "postgresql+asyncpg://app:****@db:5432/appwatch"
