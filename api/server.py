"""
============================================================================
APPWATCH - CONTROL API
============================================================================
A small aiohttp server that exposes the monitoring passes and diagnostics
over HTTP. Every route calls into the same engine and dispatcher objects
the periodic timer uses, so a manual trigger behaves exactly like a
scheduled one.

Routes
------
    GET  /health                          → liveness JSON
    POST /api/monitoring/health-check     → run a scheduler pass
    POST /api/monitoring/self-heal        → run a self-healing pass
    POST /api/endpoints/{id}/check        → check one endpoint now
    GET  /api/endpoints/{id}/history      → recent checks and alert deliveries
    POST /api/alerts/{id}/test            → send a test alert
    GET  /api/monitoring/stats            → 24 h stats, breakers, jobs

Rate limiting
-------------
Every /api/* request is counted against a fixed window per client. The
client is identified by CF-Connecting-IP, then the first X-Forwarded-For
hop, then the peer address. Over the limit the server answers 429 with
a JSON body; every /api/* response carries X-RateLimit-Limit and
X-RateLimit-Remaining.

Version: 1.0.0
License: MIT
============================================================================
"""

import math
import time
from datetime import timedelta
from typing import Any, Dict, Optional

from aiohttp import web

from config.settings import Settings, get_settings
from exceptions import (
    AppWatchException,
    DatabaseNotFoundError,
    MonitoringException,
    UnknownChannelError,
    ValidationException,
)
from utils.helpers import RateLimiter, TimeHelper
from utils.logger import get_logger


logger = get_logger("ControlAPI")

API_PREFIX = "/api/"


def client_identifier(request: web.Request) -> str:
    """Best-effort client address behind Cloudflare or a reverse proxy."""
    cf_ip = request.headers.get("CF-Connecting-IP")
    if cf_ip:
        return cf_ip.strip()

    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop

    return request.remote or "unknown"


def _status_for(error: AppWatchException) -> int:
    if isinstance(error, DatabaseNotFoundError):
        return 404
    if isinstance(error, ValidationException):
        return 400
    if isinstance(error, UnknownChannelError):
        return 422
    if isinstance(error, MonitoringException):
        return 409
    return 500


def _parse_limit(raw: Optional[str], default: int = 50, maximum: int = 500) -> int:
    if raw is None:
        return default
    try:
        limit = int(raw)
    except ValueError:
        raise ValidationException("limit must be an integer", field="limit", value=raw)
    if not 1 <= limit <= maximum:
        raise ValidationException(f"limit must be between 1 and {maximum}", field="limit", value=raw)
    return limit


# ============================================================================
# CONTROL SERVER
# ============================================================================

class ControlServer:
    """
    aiohttp server fronting the monitoring engine.

    Attributes
    ----------
    rate_limiter : RateLimiter
        Fixed-window limiter for /api/* routes. The periodic timer
        evicts its expired windows.
    _runner : aiohttp.web.AppRunner
    _site : aiohttp.web.TCPSite
    """

    def __init__(
        self,
        engine,
        dispatcher,
        store,
        scheduler=None,
        settings: Optional[Settings] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        self.settings = settings or get_settings()
        self.engine = engine
        self.dispatcher = dispatcher
        self.store = store
        self.scheduler = scheduler

        limits = self.settings.rate_limit
        self.rate_limiter = rate_limiter or RateLimiter(
            max_calls=limits.max_requests,
            time_window=limits.window_seconds,
        )

        self._host = self.settings.api.host
        self._port = self.settings.api.port
        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None
        self._start_time: float = 0.0
        self._request_count = 0

        self._app = self.create_app()

    # ------------------------------------------------------------------
    # APPLICATION
    # ------------------------------------------------------------------

    def create_app(self) -> web.Application:
        """Build the aiohttp application with routes and middleware."""
        app = web.Application(middlewares=[self._rate_limit_middleware, self._error_middleware])
        app.router.add_get("/health", self._handle_health)
        app.router.add_post("/api/monitoring/health-check", self._handle_health_check)
        app.router.add_post("/api/monitoring/self-heal", self._handle_self_heal)
        app.router.add_post("/api/endpoints/{endpoint_id}/check", self._handle_check_endpoint)
        app.router.add_get("/api/endpoints/{endpoint_id}/history", self._handle_history)
        app.router.add_post("/api/alerts/{config_id}/test", self._handle_test_alert)
        app.router.add_get("/api/monitoring/stats", self._handle_stats)
        return app

    @property
    def app(self) -> web.Application:
        return self._app

    async def start(self) -> None:
        """Bind and start serving."""
        self._start_time = time.time()
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self._host, self._port)
        await self._site.start()
        logger.info(f"✓ Control API listening on {self._host}:{self._port}")

    async def stop(self) -> None:
        """Gracefully shut down the server."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            self._site = None
        self.rate_limiter.clear()
        logger.info("✓ Control API stopped")

    # ------------------------------------------------------------------
    # MIDDLEWARE
    # ------------------------------------------------------------------

    @web.middleware
    async def _rate_limit_middleware(self, request: web.Request, handler) -> web.StreamResponse:
        self._request_count += 1
        if not self.settings.rate_limit.enabled or not request.path.startswith(API_PREFIX):
            return await handler(request)

        client = client_identifier(request)
        limit = self.rate_limiter.max_calls

        if not self.rate_limiter.is_allowed(client):
            retry_after = self.rate_limiter.retry_after(client)
            logger.warning(f"[API] Rate limit exceeded for {client} on {request.path}")
            return web.json_response(
                {
                    "error": "Too many requests",
                    "retry_after": round(retry_after, 1),
                },
                status=429,
                headers={
                    "X-RateLimit-Limit": str(limit),
                    "X-RateLimit-Remaining": "0",
                    "Retry-After": str(math.ceil(retry_after)),
                },
            )

        try:
            response = await handler(request)
        except web.HTTPException as e:
            self._set_limit_headers(e.headers, client)
            raise
        self._set_limit_headers(response.headers, client)
        return response

    def _set_limit_headers(self, headers, client: str) -> None:
        headers["X-RateLimit-Limit"] = str(self.rate_limiter.max_calls)
        headers["X-RateLimit-Remaining"] = str(self.rate_limiter.remaining(client))

    @web.middleware
    async def _error_middleware(self, request: web.Request, handler) -> web.StreamResponse:
        try:
            return await handler(request)
        except web.HTTPException:
            raise
        except AppWatchException as e:
            status = _status_for(e)
            if status >= 500:
                logger.error(f"[API] {request.method} {request.path}: {e.log_format()}")
            else:
                logger.info(f"[API] {request.method} {request.path} -> {status}: {e.message}")
            return web.json_response({"error": e.to_dict()}, status=status)
        except Exception as e:
            logger.opt(exception=e).error(f"[API] Unhandled error on {request.method} {request.path}")
            return web.json_response({"error": {"message": "Internal server error"}}, status=500)

    # ------------------------------------------------------------------
    # ROUTE HANDLERS
    # ------------------------------------------------------------------

    async def _handle_health(self, request: web.Request) -> web.Response:
        """GET /health — liveness JSON."""
        uptime_seconds = time.time() - self._start_time if self._start_time else 0
        return web.json_response({
            "status": "healthy",
            "app": self.settings.app_name,
            "version": self.settings.app_version,
            "uptime_seconds": round(uptime_seconds, 1),
            "uptime_human": TimeHelper.seconds_to_human_readable(int(uptime_seconds)),
            "requests_served": self._request_count,
            "timestamp": TimeHelper.to_iso(TimeHelper.utc_now()),
        })

    async def _handle_health_check(self, request: web.Request) -> web.Response:
        report = await self.engine.run_health_checks()
        return web.json_response(report.to_dict())

    async def _handle_self_heal(self, request: web.Request) -> web.Response:
        report = await self.engine.run_self_healing()
        return web.json_response(report.to_dict())

    async def _handle_check_endpoint(self, request: web.Request) -> web.Response:
        outcome = await self.engine.check_endpoint(request.match_info["endpoint_id"])
        return web.json_response(outcome.to_dict())

    async def _handle_history(self, request: web.Request) -> web.Response:
        endpoint_id = request.match_info["endpoint_id"]
        limit = _parse_limit(request.query.get("limit"))

        endpoint = await self.store.get_endpoint(endpoint_id)
        if endpoint is None:
            raise DatabaseNotFoundError(model="Endpoint", record_id=endpoint_id)

        status_logs = await self.store.get_status_logs(endpoint_id, limit=limit)
        alerts = await self.store.get_alert_history(endpoint_id, limit=limit)
        return web.json_response({
            "endpoint": endpoint.to_dict(),
            "status_logs": [log.to_dict() for log in status_logs],
            "alerts": [row.to_dict() for row in alerts],
        })

    async def _handle_test_alert(self, request: web.Request) -> web.Response:
        config_id = request.match_info["config_id"]
        config = await self.store.get_alert_config(config_id)
        if config is None:
            raise DatabaseNotFoundError(model="AlertConfig", record_id=config_id)

        result = await self.dispatcher.send_test_alert(config)
        return web.json_response(result.to_dict(), status=200 if result.success else 502)

    async def _handle_stats(self, request: web.Request) -> web.Response:
        """GET /api/monitoring/stats — last 24 h plus in-memory state."""
        since = TimeHelper.utc_now() - timedelta(hours=24)
        stats: Dict[str, Any] = await self.store.get_monitoring_stats(since)
        stats["engine"] = self.engine.get_stats()
        if self.dispatcher is not None:
            stats["alerts"] = self.dispatcher.get_stats()
        stats["jobs"] = self.scheduler.get_job_stats() if self.scheduler else []
        stats["rate_limiter"] = {
            "clients": len(self.rate_limiter),
            "max_requests": self.rate_limiter.max_calls,
            "window_seconds": self.rate_limiter.time_window,
        }
        return web.json_response(stats)


# ============================================================================
# END OF CONTROL API MODULE
# ============================================================================
