"""
============================================================================
APPWATCH - ALERT DISPATCHER
============================================================================
Delivers status-change alerts to every enabled alert configuration of an
endpoint.

Design
------
1.  Load the endpoint's enabled alert configs.
2.  Resolve every channel up front. An unknown channel type raises
    ``UnknownChannelError`` before anything is sent.
3.  Deliver to all channels concurrently (``asyncio.gather``). Inside a
    channel, attempts are sequential and follow the shared RetryPolicy
    (3 attempts, 1s base delay, x2, capped at 30s by default).
4.  Persist one AlertHistory row per channel outcome.

A failing channel never affects another channel and never raises out of
``dispatch``; it is reported in its ``DeliveryResult``.

Senders
-------
WebhookSender  -> JSON POST via httpx (Slack, Discord, Teams, generic)
EmailSender    -> SMTP via smtplib, run in a worker thread

Version: 1.0.0
License: MIT
============================================================================
"""

import asyncio
import smtplib
import ssl
import time
from dataclasses import asdict, dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Dict, List, Optional

import httpx

from config.constants import ChannelType
from config.settings import AlertSettings
from exceptions import (
    AppWatchException,
    ConfigurationError,
    DatabaseException,
    DeliveryError,
    UnknownChannelError,
)
from monitoring.templates import (
    FORMATTERS,
    AlertData,
    EmailContent,
    resolve_formatter,
)
from utils.helpers import RetryPolicy, retry_async
from utils.logger import AlertLogger, get_logger


logger = get_logger("AlertDispatcher")

RETRYABLE_ERRORS = (DeliveryError, httpx.HTTPError, smtplib.SMTPException, OSError)


# ============================================================================
# DELIVERY RESULT
# ============================================================================

@dataclass
class DeliveryResult:
    """Outcome of one channel delivery within one dispatch."""
    alert_config_id: Optional[str]
    channel: str
    destination: str
    success: bool
    attempts: int
    error: Optional[str] = None
    duration_ms: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ============================================================================
# SENDERS
# ============================================================================

class WebhookSender:
    """POSTs JSON payloads; any non-2xx answer is a failed attempt."""

    def __init__(self, settings: AlertSettings, client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.settings.request_timeout)
        return self._client

    async def send(self, destination: str, payload: Dict[str, Any]) -> None:
        response = await self.client.post(
            destination,
            json=payload,
            headers={
                "Content-Type": "application/json",
                "User-Agent": self.settings.user_agent,
            },
            timeout=self.settings.request_timeout,
        )
        if not response.is_success:
            raise DeliveryError(
                f"HTTP {response.status_code} {response.reason_phrase}".rstrip(),
                status_code=response.status_code,
            )

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


class EmailSender:
    """
    SMTP sender. The blocking smtplib session runs in a worker thread.

    Raises ``ConfigurationError`` when no SMTP host is configured.
    """

    def __init__(self, settings: AlertSettings):
        self.settings = settings

    @property
    def is_configured(self) -> bool:
        return bool(self.settings.smtp_host)

    def _build_message(self, to_address: str, content: EmailContent) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = content.subject
        msg["From"] = self.settings.email_from
        msg["To"] = to_address
        msg.attach(MIMEText(content.text, "plain", "utf-8"))
        msg.attach(MIMEText(content.html, "html", "utf-8"))
        return msg

    def _send_sync(self, to_address: str, content: EmailContent) -> None:
        msg = self._build_message(to_address, content)
        host = self.settings.smtp_host
        port = self.settings.smtp_port
        username = self.settings.smtp_username
        password = self.settings.smtp_password.get_secret_value()
        timeout = self.settings.request_timeout

        if port == 465:
            context = ssl.create_default_context()
            with smtplib.SMTP_SSL(host, port, context=context, timeout=timeout) as server:
                if username and password:
                    server.login(username, password)
                server.sendmail(self.settings.email_from, [to_address], msg.as_string())
        else:
            with smtplib.SMTP(host, port, timeout=timeout) as server:
                if self.settings.smtp_use_tls:
                    server.starttls(context=ssl.create_default_context())
                if username and password:
                    server.login(username, password)
                server.sendmail(self.settings.email_from, [to_address], msg.as_string())

    async def send(self, to_address: str, content: EmailContent) -> None:
        if not self.is_configured:
            raise ConfigurationError(
                "Email alerts require ALERT_SMTP_HOST", config_key="ALERT_SMTP_HOST"
            )
        await asyncio.to_thread(self._send_sync, to_address, content)


# ============================================================================
# ALERT DISPATCHER
# ============================================================================

class AlertDispatcher:
    """
    Routes one status change to every enabled channel of an endpoint.

    Parameters
    ----------
    store : MonitorStore
        Source of alert configs and sink of delivery outcomes.
    settings : AlertSettings | None
        Retry policy, HTTP and SMTP options.
    client : httpx.AsyncClient | None
        Shared client for webhook deliveries.
    email_sender : EmailSender | None
        Replacement SMTP sender.
    """

    def __init__(
        self,
        store,
        settings: Optional[AlertSettings] = None,
        client: Optional[httpx.AsyncClient] = None,
        email_sender: Optional[EmailSender] = None,
    ):
        self.store = store
        self.settings = settings or AlertSettings()
        self.retry_policy = RetryPolicy(
            max_attempts=self.settings.max_attempts,
            base_delay=self.settings.base_delay,
            multiplier=self.settings.multiplier,
            max_delay=self.settings.max_delay,
        )

        self.webhook_sender = WebhookSender(self.settings, client)
        self.email_sender = email_sender or EmailSender(self.settings)
        self._alert_logger = AlertLogger()

        # --- statistics ---
        self._dispatches = 0
        self._delivered = 0
        self._failed = 0

        logger.info(
            f"AlertDispatcher created — max_attempts={self.retry_policy.max_attempts}, "
            f"base_delay={self.retry_policy.base_delay}s, "
            f"max_delay={self.retry_policy.max_delay}s"
        )

    # ------------------------------------------------------------------
    # PUBLIC API
    # ------------------------------------------------------------------

    async def dispatch(self, endpoint, old_status, new_status) -> List[DeliveryResult]:
        """
        Send the alert for ``old_status -> new_status`` to every enabled
        channel of *endpoint*.

        Raises
        ------
        UnknownChannelError
            A stored config names an unsupported channel. Nothing is sent.
        """
        configs = await self.store.select_enabled_alert_configs(endpoint.id)
        if not configs:
            logger.debug(f"[Alerts] No enabled alert configs for endpoint {endpoint.id}")
            return []

        routes = [(config, self._resolve_channel(config)) for config in configs]

        data = AlertData.build(endpoint.name, endpoint.url, old_status, new_status)
        self._dispatches += 1

        logger.info(
            f"[Alerts] Dispatching {data.severity} alert for {endpoint.name} "
            f"({data.old_status} -> {data.new_status}) to {len(routes)} channel(s)"
        )

        results = await asyncio.gather(
            *(self._deliver(config, channel, data) for config, channel in routes)
        )

        for result in results:
            await self._record(endpoint.id, result, data)

        return list(results)

    async def send_test_alert(self, config) -> DeliveryResult:
        """Send a synthetic critical alert to one configuration."""
        channel = self._resolve_channel(config)
        result = await self._deliver(config, channel, AlertData.test_alert())
        logger.info(
            f"[Alerts] Test alert to {channel.value} {config.destination}: "
            f"{'delivered' if result.success else 'failed'}"
        )
        return result

    async def close(self) -> None:
        await self.webhook_sender.close()

    def get_stats(self) -> Dict[str, Any]:
        return {
            "dispatches": self._dispatches,
            "delivered": self._delivered,
            "failed": self._failed,
            "max_attempts": self.retry_policy.max_attempts,
        }

    # ------------------------------------------------------------------
    # INTERNALS
    # ------------------------------------------------------------------

    @staticmethod
    def _resolve_channel(config) -> ChannelType:
        try:
            return ChannelType.from_value(config.channel)
        except ValueError:
            raise UnknownChannelError(
                str(config.channel),
                alert_config_id=config.id,
                endpoint_id=config.endpoint_id,
            )

    async def _deliver(self, config, channel: ChannelType, data: AlertData) -> DeliveryResult:
        destination = config.destination
        formatter = FORMATTERS[resolve_formatter(channel, destination)]
        payload = formatter(data, self.settings.dashboard_url)
        attempts = 0

        async def attempt() -> None:
            nonlocal attempts
            attempts += 1
            if channel == ChannelType.EMAIL:
                await self.email_sender.send(destination, payload)
            else:
                await self.webhook_sender.send(destination, payload)

        def on_retry(attempt_no: int, error: BaseException, delay: float) -> None:
            logger.warning(
                f"[Alerts] {channel.value} attempt {attempt_no}/{self.retry_policy.max_attempts} "
                f"to {destination} failed: {_describe(error)}. Retrying in {delay:.1f}s"
            )

        started = time.perf_counter()
        error: Optional[str] = None
        try:
            await retry_async(attempt, self.retry_policy, RETRYABLE_ERRORS, on_retry)
            success = True
        except Exception as e:
            success = False
            error = _describe(e)

        result = DeliveryResult(
            alert_config_id=config.id,
            channel=channel.value,
            destination=destination,
            success=success,
            attempts=attempts,
            error=error,
            duration_ms=int((time.perf_counter() - started) * 1000),
        )

        if success:
            self._delivered += 1
        else:
            self._failed += 1
        self._alert_logger.log_delivery(channel.value, destination, success, attempts, error)
        return result

    async def _record(self, endpoint_id: str, result: DeliveryResult, data: AlertData) -> None:
        try:
            await self.store.append_alert_result(
                endpoint_id=endpoint_id,
                alert_config_id=result.alert_config_id,
                channel=result.channel,
                severity=data.severity,
                old_status=data.old_status,
                new_status=data.new_status,
                success=result.success,
                attempts=result.attempts,
                error=result.error,
            )
        except DatabaseException as e:
            logger.error(f"[Alerts] Failed to record alert result: {e.log_format()}")


def _describe(error: BaseException) -> str:
    if isinstance(error, AppWatchException):
        return error.message
    return str(error) or type(error).__name__
