"""
============================================================================
APPWATCH - PERIODIC TIMER
============================================================================
A lightweight, asyncio-native scheduler that drives the monitoring passes
and the housekeeping jobs. All jobs run as coroutines in the same event
loop; a job never overlaps with its own previous run.

Registered Jobs
---------------
1.  health_check          (MONITOR_TICK_INTERVAL, default 60 s)
    Scheduler pass over due endpoints.

2.  self_heal             (MONITOR_SELF_HEAL_INTERVAL, default 60 s)
    Probes every offline endpoint.

3.  breaker_maintenance   (every 1 h)
    Resets breakers open longer than BREAKER_STALE_RESET_SECONDS since
    their last failure and drops entries in the default state.

4.  rate_limiter_gc       (RATE_LIMIT_WINDOW_SECONDS)
    Evicts expired rate-limit windows.

5.  heartbeat             (every 10 min)
    Logs a liveness line including database connectivity.

Version: 1.0.0
License: MIT
============================================================================
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from config.settings import Settings, get_settings
from utils.logger import get_logger


logger = get_logger("Scheduler")


# ============================================================================
# JOB DEFINITION
# ============================================================================

@dataclass
class ScheduledJob:
    """
    Describes a single periodic background job.

    Attributes
    ----------
    name : str
        Identifier used in logs and stats.
    interval_seconds : float
        How often the job runs.
    coroutine_factory : Callable
        An async callable (no arguments) that performs the work.
    enabled : bool
        Can be toggled at runtime.
    running : bool
        True while an execution is in progress.
    """
    name: str
    interval_seconds: float
    coroutine_factory: Callable
    enabled: bool = True
    running: bool = False
    last_run: Optional[float] = None
    next_run: float = field(default_factory=time.time)
    run_count: int = 0
    error_count: int = 0
    skipped_count: int = 0
    last_error: Optional[str] = None


# ============================================================================
# SCHEDULER
# ============================================================================

class Scheduler:
    """
    Asyncio-based periodic job scheduler.

    Usage
    -----
        scheduler = Scheduler(engine, db_manager, rate_limiter)
        await scheduler.start()
        # ... later ...
        await scheduler.stop()
    """

    def __init__(
        self,
        engine: Any = None,
        db_manager: Any = None,
        rate_limiter: Any = None,
        settings: Optional[Settings] = None,
        tick_interval: float = 1.0,
        register_builtin: bool = True,
    ):
        self.settings = settings or get_settings()
        self.engine = engine
        self.db_manager = db_manager
        self.rate_limiter = rate_limiter

        self._jobs: Dict[str, ScheduledJob] = {}
        self._running = False
        self._loop_task: Optional[asyncio.Task] = None
        self._job_tasks: Dict[str, asyncio.Task] = {}
        self._tick_interval = tick_interval  # how often the main loop wakes up

        if register_builtin:
            self._register_builtin_jobs()

        logger.info(f"Scheduler created with {len(self._jobs)} jobs")

    # ------------------------------------------------------------------
    # JOB REGISTRATION
    # ------------------------------------------------------------------

    def register_job(
        self,
        name: str,
        interval_seconds: float,
        coroutine_factory: Callable,
        enabled: bool = True,
        run_immediately: bool = True,
    ) -> None:
        """
        Register a new periodic job.

        Parameters
        ----------
        name : str
            Unique job name.
        interval_seconds : float
            Period in seconds.
        coroutine_factory : Callable
            An async callable that takes no arguments.
        enabled : bool
            Whether the job starts enabled.
        run_immediately : bool
            First run on the next tick instead of after one interval.
        """
        if interval_seconds <= 0:
            raise ValueError(f"Job '{name}' needs a positive interval")
        if name in self._jobs:
            logger.warning(f"[Scheduler] Job '{name}' already registered, overwriting")

        now = time.time()
        self._jobs[name] = ScheduledJob(
            name=name,
            interval_seconds=interval_seconds,
            coroutine_factory=coroutine_factory,
            enabled=enabled,
            next_run=now if run_immediately else now + interval_seconds,
        )
        logger.debug(f"[Scheduler] Registered job '{name}' (interval={interval_seconds}s)")

    def enable_job(self, name: str) -> bool:
        """Enable a job by name. Returns True if found."""
        if name in self._jobs:
            self._jobs[name].enabled = True
            return True
        return False

    def disable_job(self, name: str) -> bool:
        """Disable a job by name. Returns True if found."""
        if name in self._jobs:
            self._jobs[name].enabled = False
            return True
        return False

    def get_job(self, name: str) -> Optional[ScheduledJob]:
        return self._jobs.get(name)

    # ------------------------------------------------------------------
    # LIFECYCLE
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the scheduler loop."""
        if self._running:
            logger.warning("Scheduler is already running")
            return
        self._running = True
        self._loop_task = asyncio.create_task(self._main_loop())
        logger.info("✓ Scheduler started")

    async def stop(self) -> None:
        """Stop the loop and cancel jobs still running."""
        self._running = False
        if self._loop_task:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

        pending = [task for task in self._job_tasks.values() if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._job_tasks.clear()
        logger.info("✓ Scheduler stopped")

    # ------------------------------------------------------------------
    # MAIN LOOP
    # ------------------------------------------------------------------

    async def _main_loop(self) -> None:
        """
        Wake up every _tick_interval seconds. For each enabled job whose
        next_run time has arrived, launch it unless it is still running.
        """
        logger.info("[Scheduler] Main loop started")
        while self._running:
            now = time.time()
            for job in self._jobs.values():
                if not job.enabled or now < job.next_run:
                    continue
                job.next_run = now + job.interval_seconds
                if job.running:
                    job.skipped_count += 1
                    logger.warning(
                        f"[Scheduler] Job '{job.name}' still running, skipping this tick"
                    )
                    continue
                job.running = True
                self._job_tasks[job.name] = asyncio.create_task(self._execute_job(job))

            try:
                await asyncio.sleep(self._tick_interval)
            except asyncio.CancelledError:
                break

        logger.info("[Scheduler] Main loop exited")

    # ------------------------------------------------------------------
    # JOB EXECUTION
    # ------------------------------------------------------------------

    async def run_job(self, name: str) -> bool:
        """
        Run a job right away, outside the timer.

        Returns False when the job is unknown or already running.
        """
        job = self._jobs.get(name)
        if job is None or job.running:
            return False
        job.running = True
        await self._execute_job(job)
        return True

    async def _execute_job(self, job: ScheduledJob) -> None:
        """Run a single job, capture timing and errors."""
        start_time = time.time()
        try:
            logger.debug(f"[Scheduler] Running job '{job.name}'…")
            await job.coroutine_factory()
            elapsed = time.time() - start_time

            job.run_count += 1
            job.last_run = time.time()
            job.last_error = None
            logger.debug(
                f"[Scheduler] Job '{job.name}' completed in {elapsed:.2f}s "
                f"(run #{job.run_count})"
            )

        except Exception as e:
            job.error_count += 1
            job.last_error = str(e)
            elapsed = time.time() - start_time
            logger.opt(exception=e).error(
                f"[Scheduler] Job '{job.name}' FAILED after {elapsed:.2f}s: {e}"
            )
        finally:
            job.running = False

    # ------------------------------------------------------------------
    # DIAGNOSTICS
    # ------------------------------------------------------------------

    def get_job_stats(self) -> List[Dict[str, Any]]:
        """Return status of all registered jobs."""
        def iso(ts: Optional[float]) -> Optional[str]:
            return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat() if ts else None

        return [
            {
                "name": job.name,
                "interval_seconds": job.interval_seconds,
                "enabled": job.enabled,
                "running": job.running,
                "run_count": job.run_count,
                "error_count": job.error_count,
                "skipped_count": job.skipped_count,
                "last_error": job.last_error,
                "last_run": iso(job.last_run),
                "next_run": iso(job.next_run),
            }
            for job in self._jobs.values()
        ]

    # ==================================================================
    # BUILT-IN JOBS
    # ==================================================================

    def _register_builtin_jobs(self) -> None:
        """Register all built-in periodic jobs."""
        monitoring = self.settings.monitoring

        if self.engine is not None:
            # 1. Health-check pass
            self.register_job(
                "health_check",
                interval_seconds=monitoring.tick_interval,
                coroutine_factory=self._job_health_check,
            )

            # 2. Self-healing pass
            self.register_job(
                "self_heal",
                interval_seconds=monitoring.self_heal_interval,
                coroutine_factory=self._job_self_heal,
                run_immediately=False,
            )

            # 3. Breaker maintenance (every hour)
            self.register_job(
                "breaker_maintenance",
                interval_seconds=3600,
                coroutine_factory=self._job_breaker_maintenance,
                run_immediately=False,
            )

        # 4. Rate limiter GC
        if self.rate_limiter is not None:
            self.register_job(
                "rate_limiter_gc",
                interval_seconds=self.settings.rate_limit.window_seconds,
                coroutine_factory=self._job_rate_limiter_gc,
                run_immediately=False,
            )

        # 5. Heartbeat (every 10 minutes)
        self.register_job(
            "heartbeat",
            interval_seconds=600,
            coroutine_factory=self._job_heartbeat,
        )

    # ------------------------------------------------------------------
    # JOB IMPLEMENTATIONS
    # ------------------------------------------------------------------

    async def _job_health_check(self) -> None:
        await self.engine.run_health_checks()

    async def _job_self_heal(self) -> None:
        await self.engine.run_self_healing()

    async def _job_breaker_maintenance(self) -> None:
        result = self.engine.breakers.reset_stale()
        if result["reset"] or result["dropped"]:
            logger.info(
                f"[Scheduler] Breaker maintenance: reset {result['reset']} stale, "
                f"dropped {result['dropped']} idle entries"
            )

    async def _job_rate_limiter_gc(self) -> None:
        evicted = self.rate_limiter.evict_expired()
        if evicted:
            logger.debug(f"[Scheduler] Rate limiter GC evicted {evicted} windows")

    async def _job_heartbeat(self) -> None:
        db_ok = None
        if self.db_manager is not None:
            db_ok = await self.db_manager.check_connection()

        in_flight = self.engine.breakers.in_flight if self.engine is not None else 0
        logger.info(
            f"[Heartbeat] AppWatch alive — db={'ok' if db_ok else 'n/a' if db_ok is None else 'DOWN'}, "
            f"in_flight={in_flight}, jobs={len(self._jobs)}"
        )


# ============================================================================
# END OF SCHEDULER MODULE
# ============================================================================
