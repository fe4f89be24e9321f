"""
============================================================================
APPWATCH - MAIN APPLICATION
============================================================================
Integrates every layer of the monitoring engine:

    Layer 1 — Core & Database
        • Settings (pydantic-settings)
        • Logging (loguru)
        • SQLAlchemy async engine + models, DatabaseManager + MonitorStore

    Layer 2 — Monitoring
        • Probe                    — HTTP HEAD checks
        • CircuitBreakerRegistry   — failure isolation, single-flight
        • AlertDispatcher          — email / webhook / Slack / Discord / Teams
        • MonitoringEngine         — health-check and self-healing passes

    Layer 3 — Runtime
        • Scheduler                — periodic timer + housekeeping jobs
        • ControlServer            — aiohttp control API

Startup Order
-------------
1.  Load settings & configure logging
2.  Initialize DatabaseManager (create tables if needed)
3.  Wire up Probe, breakers, AlertDispatcher, MonitoringEngine
4.  Wire up ControlServer (owns the rate limiter)
5.  Wire up Scheduler (engine + DB + rate limiter)
6.  Start ControlServer, then Scheduler
7.  Wait for SIGINT / SIGTERM

Shutdown Order (reverse)
------------------------
    stop scheduler → stop control server → close engine (probe client) →
    close dispatcher (webhook client) → close DB → exit

Version: 1.0.0
License: MIT
============================================================================
"""

import asyncio
import signal
import sys
from typing import Optional

from config.settings import get_settings
from database.manager import DatabaseManager, MonitorStore
from exceptions import AppWatchException
from utils.logger import get_logger, setup_logging

from api.server import ControlServer
from monitoring.alerts import AlertDispatcher
from monitoring.breaker import CircuitBreakerRegistry
from monitoring.monitor import MonitoringEngine
from monitoring.probe import Probe
from monitoring.scheduler import Scheduler


logger = get_logger("Main")


# ============================================================================
# APPLICATION CLASS
# ============================================================================

class AppWatchApplication:
    """
    Top-level application orchestrator.

    Owns every subsystem and is the single place that knows the startup /
    shutdown order. Subsystems receive their collaborators explicitly;
    only Settings is cached globally via lru_cache.
    """

    def __init__(self, settings=None):
        self.settings = settings or get_settings()

        # --- subsystems (populated during startup) ---
        self.db_manager: Optional[DatabaseManager] = None
        self.store: Optional[MonitorStore] = None
        self.dispatcher: Optional[AlertDispatcher] = None
        self.engine: Optional[MonitoringEngine] = None
        self.scheduler: Optional[Scheduler] = None
        self.control_server: Optional[ControlServer] = None

        # --- lifecycle ---
        self._is_running = False
        self._stop_event = asyncio.Event()

    # ------------------------------------------------------------------
    # BANNER
    # ------------------------------------------------------------------

    def _print_banner(self) -> None:
        monitoring = self.settings.monitoring
        banner = f"""
╔══════════════════════════════════════════════════════════════════════════╗
║                                                                          ║
║          🚀  APPWATCH UPTIME MONITORING ENGINE  v{self.settings.app_version:<12}            ║
║                                                                          ║
║   Probe  •  Circuit Breaker  •  Self-Healing  •  Multi-channel Alerts    ║
║                                                                          ║
║   Environment : {self.settings.environment.value:<12} Tick : {monitoring.tick_interval:<6}s                      ║
║                                                                          ║
╚══════════════════════════════════════════════════════════════════════════╝
"""
        logger.info(banner)

    # ==================================================================
    # PHASE 1: DATABASE
    # ==================================================================

    async def _init_database(self) -> bool:
        """Initialize the database manager and verify connectivity."""
        logger.info("── Phase 1: Database ─────────────────────────────")
        try:
            self.db_manager = DatabaseManager(self.settings.database)
            await self.db_manager.initialize()

            if not await self.db_manager.check_connection():
                logger.error("✗ Database connection check failed")
                return False

            self.store = MonitorStore(self.db_manager)
            endpoints = await self.store.list_endpoints()
            logger.info(f"  ✓ Database ready — endpoints={len(endpoints)}")
            return True

        except AppWatchException as e:
            logger.error(f"  ✗ Database init failed: {e.log_format()}")
            return False

    # ==================================================================
    # PHASE 2: MONITORING
    # ==================================================================

    async def _init_monitoring(self) -> bool:
        """Wire up Probe, breakers, AlertDispatcher and MonitoringEngine."""
        logger.info("── Phase 2: Monitoring Engine ────────────────────")
        try:
            self.dispatcher = AlertDispatcher(self.store, self.settings.alerts)
            self.engine = MonitoringEngine(
                self.store,
                dispatcher=self.dispatcher,
                probe=Probe(self.settings.monitoring),
                breakers=CircuitBreakerRegistry(self.settings.breaker),
                settings=self.settings,
            )
            logger.info("  ✓ Probe, CircuitBreakerRegistry, AlertDispatcher, MonitoringEngine created")
            return True

        except Exception as e:
            logger.opt(exception=e).error(f"  ✗ Monitoring init failed: {e}")
            return False

    # ==================================================================
    # PHASE 3: RUNTIME (control API + timer)
    # ==================================================================

    async def _init_runtime(self) -> bool:
        """Create the control server and the scheduler."""
        logger.info("── Phase 3: Scheduler & Control API ──────────────")
        try:
            self.control_server = ControlServer(
                self.engine,
                self.dispatcher,
                self.store,
                settings=self.settings,
            )
            self.scheduler = Scheduler(
                engine=self.engine,
                db_manager=self.db_manager,
                rate_limiter=self.control_server.rate_limiter,
                settings=self.settings,
            )
            self.control_server.scheduler = self.scheduler
            logger.info("  ✓ Scheduler and ControlServer created")
            return True

        except Exception as e:
            logger.opt(exception=e).error(f"  ✗ Runtime init failed: {e}")
            return False

    # ==================================================================
    # FULL STARTUP SEQUENCE
    # ==================================================================

    async def startup(self) -> bool:
        """
        Execute the complete startup sequence.
        Returns False (and logs errors) if any critical phase fails.
        """
        self._print_banner()
        logger.info("=" * 74)
        logger.info("  STARTING UP …")
        logger.info("=" * 74)

        if not await self._init_database():
            return False

        if not await self._init_monitoring():
            return False

        if not await self._init_runtime():
            return False

        logger.info("── Starting background services ───────────────────")

        if self.settings.api.enabled:
            try:
                await self.control_server.start()
            except OSError as e:
                logger.warning(f"  ⚠ Control API could not bind — continuing without it: {e}")
                self.control_server = None
        else:
            logger.info("  Control API disabled")

        await self.scheduler.start()

        self._is_running = True

        monitoring = self.settings.monitoring
        logger.info("=" * 74)
        logger.info("  ✓ ALL SYSTEMS OPERATIONAL")
        logger.info("=" * 74)
        logger.info(
            f"  Monitoring: {monitoring.max_concurrent_probes} concurrent, "
            f"batch {monitoring.batch_size}, tick {monitoring.tick_interval}s, "
            f"pass deadline {monitoring.pass_deadline}s"
        )
        if self.control_server:
            logger.info(
                f"  Control API: http://{self.settings.api.host}:{self.settings.api.port}/health"
            )
        logger.info("=" * 74)

        return True

    # ==================================================================
    # SHUTDOWN SEQUENCE
    # ==================================================================

    async def shutdown(self) -> None:
        """
        Graceful shutdown in reverse order.
        Each step is wrapped so a failure in one subsystem doesn't prevent
        the others from cleaning up.
        """
        logger.info("=" * 74)
        logger.info("  SHUTTING DOWN …")
        logger.info("=" * 74)

        self._is_running = False

        steps = [
            ("Scheduler", self.scheduler.stop if self.scheduler else None),
            ("Control API", self.control_server.stop if self.control_server else None),
            ("MonitoringEngine", self.engine.close if self.engine else None),
            ("AlertDispatcher", self.dispatcher.close if self.dispatcher else None),
            ("Database", self.db_manager.close if self.db_manager else None),
        ]
        for name, stop in steps:
            if stop is None:
                continue
            try:
                await stop()
                logger.info(f"  ✓ {name} stopped")
            except Exception as e:
                logger.error(f"  ✗ {name} stop error: {e}")

        logger.info("=" * 74)
        logger.info("  ✓ SHUTDOWN COMPLETE")
        logger.info("=" * 74)

    # ==================================================================
    # RUN
    # ==================================================================

    def request_stop(self) -> None:
        self._stop_event.set()

    async def run(self) -> None:
        """Block until a stop is requested."""
        await self._stop_event.wait()


# ============================================================================
# SIGNAL HANDLER SETUP
# ============================================================================

def _install_signal_handlers(app: AppWatchApplication) -> None:
    """
    Install SIGTERM / SIGINT handlers so the engine shuts down gracefully
    even when killed by the OS.
    """
    loop = asyncio.get_running_loop()

    def _handle_signal(sig: signal.Signals) -> None:
        logger.info(f"  ⚡ {sig.name} received — initiating graceful shutdown…")
        app.request_stop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, _handle_signal, sig)
        except (NotImplementedError, OSError):
            # Not supported on Windows; KeyboardInterrupt still applies
            pass


# ============================================================================
# MAIN ENTRY POINT
# ============================================================================

async def main() -> int:
    """
    Async main — creates the app, starts it, and runs until shutdown.
    """
    settings = get_settings()
    setup_logging(settings.logging)

    app = AppWatchApplication(settings)
    _install_signal_handlers(app)

    try:
        if not await app.startup():
            logger.error("  ✗ Startup failed — exiting")
            return 1
        await app.run()
        return 0
    finally:
        await app.shutdown()


# ============================================================================
# SCRIPT ENTRY POINT
# ============================================================================

def run() -> None:
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
