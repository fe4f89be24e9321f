"""Tests for the alert dispatcher and its senders."""

import asyncio
import json

import httpx
import pytest

from conftest import make_alert_config, make_endpoint
from config.constants import ALERT_USER_AGENT, EndpointStatus
from config.settings import AlertSettings
from exceptions import UnknownChannelError
from monitoring.alerts import AlertDispatcher, EmailSender


class RecordingEmailSender:
    def __init__(self):
        self.sent = []

    async def send(self, to_address, content):
        self.sent.append((to_address, content))


def dispatch(store, handler, old, new, settings=None, email_sender=None, endpoint=None):
    endpoint = endpoint or make_endpoint()
    settings = settings or AlertSettings(base_delay=0.0, max_delay=0.0)

    async def go():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            dispatcher = AlertDispatcher(store, settings, client=client, email_sender=email_sender)
            results = await dispatcher.dispatch(endpoint, old, new)
            return results, dispatcher.get_stats()

    return asyncio.run(go())


class TestDeliveryIsolation:
    def test_failing_channel_does_not_affect_sibling(self, store):
        store.add_config(make_alert_config("cfg-a", destination="https://a.example.com/hook"))
        store.add_config(make_alert_config("cfg-b", destination="https://b.example.com/hook"))
        hosts = []

        def handler(request):
            hosts.append(request.url.host)
            if request.url.host == "a.example.com":
                return httpx.Response(500)
            return httpx.Response(200)

        settings = AlertSettings(max_attempts=3, base_delay=0.01, max_delay=0.05)
        results, stats = dispatch(
            store, handler, EndpointStatus.ONLINE, EndpointStatus.OFFLINE, settings=settings
        )

        a, b = results
        assert (a.alert_config_id, a.success, a.attempts) == ("cfg-a", False, 3)
        assert (b.alert_config_id, b.success, b.attempts) == ("cfg-b", True, 1)
        assert a.error == "HTTP 500 Internal Server Error"
        assert hosts.count("a.example.com") == 3
        # B is delivered before A's first retry
        assert hosts.index("b.example.com") < 2
        assert stats["delivered"] == 1
        assert stats["failed"] == 1

    def test_every_outcome_is_recorded(self, store):
        store.add_config(make_alert_config("cfg-a", destination="https://a.example.com/hook"))
        store.add_config(make_alert_config("cfg-b", destination="https://b.example.com/hook"))

        def handler(request):
            return httpx.Response(500 if request.url.host == "a.example.com" else 204)

        dispatch(store, handler, EndpointStatus.ONLINE, EndpointStatus.OFFLINE)

        rows = {row["alert_config_id"]: row for row in store.alert_results}
        assert rows["cfg-a"]["success"] is False
        assert rows["cfg-a"]["attempts"] == 3
        assert rows["cfg-b"]["success"] is True
        assert rows["cfg-b"]["severity"] == "critical"

    def test_network_error_is_retried(self, store):
        store.add_config(make_alert_config("cfg-1"))
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                raise httpx.ConnectError("reset", request=request)
            return httpx.Response(200)

        results, _ = dispatch(store, handler, EndpointStatus.ONLINE, EndpointStatus.OFFLINE)

        assert results[0].success
        assert results[0].attempts == 2

    def test_disabled_configs_are_ignored(self, store):
        store.add_config(make_alert_config("cfg-1", enabled=False))

        results, stats = dispatch(
            store, lambda request: httpx.Response(200),
            EndpointStatus.ONLINE, EndpointStatus.OFFLINE,
        )

        assert results == []
        assert stats["dispatches"] == 0
        assert store.alert_results == []


class TestUnknownChannel:
    def test_nothing_is_sent(self, store):
        store.add_config(make_alert_config("cfg-ok"))
        store.add_config(make_alert_config("cfg-bad", channel="pager"))
        calls = []

        with pytest.raises(UnknownChannelError) as excinfo:
            dispatch(
                store, lambda request: calls.append(request) or httpx.Response(200),
                EndpointStatus.ONLINE, EndpointStatus.OFFLINE,
            )

        assert excinfo.value.channel == "pager"
        assert calls == []
        assert store.alert_results == []


class TestWebhookWireFormat:
    def capture(self, store, destination, old, new, channel="webhook"):
        store.add_config(make_alert_config("cfg-1", channel=channel, destination=destination))
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200)

        dispatch(store, handler, old, new)
        return requests[0]

    def test_headers(self, store):
        request = self.capture(
            store, "https://hooks.example.com/x", EndpointStatus.ONLINE, EndpointStatus.OFFLINE
        )

        assert request.method == "POST"
        assert request.headers["Content-Type"] == "application/json"
        assert request.headers["User-Agent"] == ALERT_USER_AGENT

    def test_generic_payload(self, store):
        request = self.capture(
            store, "https://hooks.example.com/x", EndpointStatus.OFFLINE, EndpointStatus.ONLINE
        )
        body = json.loads(request.content)

        assert body["type"] == "app_status_change"
        assert body["version"] == "1.0"
        assert body["data"]["app"] == "API"
        assert body["data"]["severity"] == "recovery"
        assert body["data"]["new_status"] == "online"

    def test_slack_url_is_detected(self, store):
        request = self.capture(
            store, "https://hooks.slack.com/services/T0/B0/X",
            EndpointStatus.ONLINE, EndpointStatus.OFFLINE,
        )
        body = json.loads(request.content)

        assert body["attachments"][0]["color"] == "danger"
        assert "API is now offline" in body["text"]

    def test_discord_url_is_detected(self, store):
        request = self.capture(
            store, "https://discord.com/api/webhooks/1/abc",
            EndpointStatus.OFFLINE, EndpointStatus.ONLINE,
        )
        body = json.loads(request.content)

        assert body["embeds"][0]["color"] == 0x00FF00

    def test_teams_url_is_detected(self, store):
        request = self.capture(
            store, "https://outlook.office.com/webhook/abc",
            EndpointStatus.ONLINE, EndpointStatus.OFFLINE,
        )
        body = json.loads(request.content)

        assert body["@type"] == "MessageCard"
        assert body["themeColor"] == "FF0000"

    def test_explicit_slack_channel_uses_slack_format(self, store):
        request = self.capture(
            store, "https://chat.example.com/incoming",
            EndpointStatus.UNKNOWN, EndpointStatus.ONLINE, channel="slack",
        )
        body = json.loads(request.content)

        assert body["attachments"][0]["color"] == "good"


class TestEmailChannel:
    def test_email_goes_through_email_sender(self, store):
        store.add_config(make_alert_config("cfg-mail", channel="email", destination="ops@example.com"))
        sender = RecordingEmailSender()

        results, _ = dispatch(
            store, lambda request: httpx.Response(500),
            EndpointStatus.ONLINE, EndpointStatus.OFFLINE, email_sender=sender,
        )

        assert results[0].success
        to_address, content = sender.sent[0]
        assert to_address == "ops@example.com"
        assert "API is offline" in content.subject
        assert "https://api.example.com/health" in content.text

    def test_unconfigured_smtp_fails_without_retry(self, store):
        store.add_config(make_alert_config("cfg-mail", channel="email", destination="ops@example.com"))
        settings = AlertSettings(base_delay=0.0, max_delay=0.0, smtp_host=None)

        results, _ = dispatch(
            store, lambda request: httpx.Response(200),
            EndpointStatus.ONLINE, EndpointStatus.OFFLINE,
            settings=settings, email_sender=EmailSender(settings),
        )

        assert not results[0].success
        assert results[0].attempts == 1
        assert "ALERT_SMTP_HOST" in results[0].error


class TestTestAlert:
    def test_sends_synthetic_alert_without_history(self, store):
        config = store.add_config(make_alert_config("cfg-1"))
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200)

        async def go():
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                dispatcher = AlertDispatcher(
                    store, AlertSettings(base_delay=0.0, max_delay=0.0), client=client
                )
                return await dispatcher.send_test_alert(config)

        result = asyncio.run(go())

        assert result.success
        assert bodies[0]["data"]["app"] == "Test Application"
        assert bodies[0]["data"]["severity"] == "critical"
        assert store.alert_results == []
