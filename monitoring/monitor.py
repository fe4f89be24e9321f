"""
============================================================================
APPWATCH - MONITORING ENGINE
============================================================================
Runs health-check and self-healing passes over the monitored endpoints.

Architecture
------------
MonitoringEngine
├── run_health_checks()   ← due endpoints, breaker-open ids excluded
├── run_self_healing()    ← every offline endpoint, breaker ignored
├── check_endpoint()      ← manual single-endpoint check
├── _run_pass()           ← fan-out under a semaphore, pass deadline
├── _process()            ← probe → breaker, then hands off to _record()
└── _record()             ← status log → endpoint
                            row → alert dispatch on status change

Every unit of work is isolated: a failing endpoint is logged and counted
in the pass report, it never aborts the rest of the batch. Probes still
running when the pass deadline expires are cancelled and reported as
``timed_out``; they write nothing and their endpoints stay due for the
next pass. A probe that finished before the deadline is always recorded
and alerted on, even if that work outlives the deadline.

Version: 1.0.0
License: MIT
============================================================================
"""

import asyncio
import time
from dataclasses import asdict, dataclass, field
from datetime import timedelta
from typing import Any, Dict, List, Optional, Set

from config.constants import EndpointStatus
from config.settings import Settings, get_settings
from exceptions import AppWatchException, DatabaseNotFoundError, MonitoringException
from monitoring.alerts import DeliveryResult
from monitoring.breaker import CircuitBreakerRegistry
from monitoring.probe import Probe, ProbeResult
from utils.helpers import TimeHelper
from utils.logger import MonitorLogger, get_logger, log_execution_time


logger = get_logger("MonitoringEngine")


# ============================================================================
# PASS REPORT
# ============================================================================

@dataclass
class PassReport:
    """Counters of one pass, returned to the timer and the control API."""
    kind: str
    checked: int = 0
    skipped: int = 0
    timed_out: int = 0
    status_changes: int = 0
    healed: int = 0
    alerts_sent: int = 0
    alerts_failed: int = 0
    errors: int = 0
    duration_ms: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CheckOutcome:
    """Result of processing one endpoint."""
    endpoint_id: str
    old_status: EndpointStatus
    new_status: EndpointStatus
    probe: ProbeResult
    deliveries: List[DeliveryResult] = field(default_factory=list)

    @property
    def status_changed(self) -> bool:
        return self.old_status != self.new_status

    def to_dict(self) -> Dict[str, Any]:
        return {
            "endpoint_id": self.endpoint_id,
            "old_status": self.old_status.value,
            "new_status": self.new_status.value,
            "status_changed": self.status_changed,
            "probe": self.probe.to_dict(),
            "alerts": [delivery.to_dict() for delivery in self.deliveries],
        }


@dataclass
class _PassState:
    """Bookkeeping shared by the tasks of one pass."""
    started: Set[str] = field(default_factory=set)
    recordings: Dict[str, "asyncio.Task"] = field(default_factory=dict)


# ============================================================================
# MONITORING ENGINE
# ============================================================================

class MonitoringEngine:
    """
    Async monitoring engine.

    Parameters
    ----------
    store : MonitorStore
        Persistent store (or any object with the same coroutine methods).
    dispatcher : AlertDispatcher | None
        Receives status changes. Without one, changes are only logged.
    probe : Probe | None
        HTTP probe; created from settings when omitted.
    breakers : CircuitBreakerRegistry | None
        Breaker and single-flight state; created when omitted.
    settings : Settings | None
        Application settings; ``get_settings()`` when omitted.
    """

    def __init__(
        self,
        store,
        dispatcher: Any = None,
        probe: Optional[Probe] = None,
        breakers: Optional[CircuitBreakerRegistry] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.store = store
        self.dispatcher = dispatcher
        self.probe = probe or Probe(self.settings.monitoring)
        self.breakers = breakers or CircuitBreakerRegistry(self.settings.breaker)

        monitoring = self.settings.monitoring
        self._batch_size = monitoring.batch_size
        self._pass_deadline = monitoring.pass_deadline
        self._uptime_window = timedelta(days=monitoring.uptime_window_days)

        # --- concurrency control ---
        self._semaphore = asyncio.Semaphore(monitoring.max_concurrent_probes)
        self._probes_running = 0

        self._monitor_logger = MonitorLogger()
        self._last_reports: Dict[str, Dict[str, Any]] = {}

        logger.info(
            f"MonitoringEngine created — "
            f"max_concurrent={monitoring.max_concurrent_probes}, "
            f"batch_size={self._batch_size}, "
            f"pass_deadline={self._pass_deadline}s"
        )

    # ------------------------------------------------------------------
    # PUBLIC API
    # ------------------------------------------------------------------

    @log_execution_time
    async def run_health_checks(self, deadline: Optional[float] = None) -> PassReport:
        """
        Probe up to ``batch_size`` due endpoints.

        Endpoints whose breaker is open are excluded from selection; an
        expired breaker turns half-open and lets one trial probe through.
        """
        report = PassReport(kind="health_check")
        started = time.perf_counter()

        try:
            endpoints = await self.store.select_due_endpoints(
                self._batch_size,
                now=TimeHelper.utc_now(),
                exclude_ids=self.breakers.open_ids(),
            )
        except AppWatchException as e:
            logger.error(f"[Engine] Could not select due endpoints: {e.log_format()}")
            report.errors += 1
            return self._finish(report, started)

        if endpoints:
            logger.debug(f"[Engine] Health-check pass found {len(endpoints)} due endpoints")
            await self._run_pass(endpoints, report, deadline)

        return self._finish(report, started)

    @log_execution_time
    async def run_self_healing(self, deadline: Optional[float] = None) -> PassReport:
        """
        Probe every endpoint stored as offline, regardless of its interval
        or breaker phase. ``healed`` counts offline -> online transitions.
        """
        report = PassReport(kind="self_heal")
        started = time.perf_counter()

        try:
            endpoints = await self.store.select_offline_endpoints()
        except AppWatchException as e:
            logger.error(f"[Engine] Could not select offline endpoints: {e.log_format()}")
            report.errors += 1
            return self._finish(report, started)

        if endpoints:
            logger.info(f"[Engine] Self-healing pass probing {len(endpoints)} offline endpoints")
            await self._run_pass(endpoints, report, deadline)

        if report.healed:
            logger.info(f"[Engine] Self-healing recovered {report.healed} endpoint(s)")
        return self._finish(report, started)

    async def check_endpoint(self, endpoint_id: str) -> CheckOutcome:
        """
        Manual check of one endpoint through the regular processing path.

        Raises
        ------
        DatabaseNotFoundError
            Unknown endpoint id.
        MonitoringException
            A probe for this endpoint is already in flight.
        """
        endpoint = await self.store.get_endpoint(endpoint_id)
        if endpoint is None:
            raise DatabaseNotFoundError(model="Endpoint", record_id=endpoint_id)

        if not self.breakers.try_acquire(endpoint.id):
            raise MonitoringException(
                "A check for this endpoint is already in progress",
                endpoint_id=endpoint.id,
            )

        report = PassReport(kind="manual")
        try:
            return await self._process(endpoint, report)
        finally:
            self.breakers.release(endpoint.id)

    def get_stats(self) -> Dict[str, Any]:
        """In-memory engine state."""
        return {
            "probes_running": self._probes_running,
            "in_flight": self.breakers.in_flight,
            "circuit_breakers": self.breakers.snapshot(),
            "last_passes": dict(self._last_reports),
        }

    async def close(self) -> None:
        await self.probe.close()

    # ------------------------------------------------------------------
    # PASS EXECUTION
    # ------------------------------------------------------------------

    async def _run_pass(self, endpoints, report: PassReport, deadline: Optional[float]) -> None:
        deadline = self._pass_deadline if deadline is None else deadline

        state = _PassState()
        tasks: Dict[asyncio.Task, Any] = {}
        for endpoint in endpoints:
            if not self.breakers.try_acquire(endpoint.id):
                logger.debug(f"[Engine] Endpoint {endpoint.id} already in flight, skipped")
                report.skipped += 1
                continue
            tasks[asyncio.create_task(self._run_guarded(endpoint, report, state))] = endpoint

        if not tasks:
            return

        done, pending = await asyncio.wait(tasks, timeout=deadline)

        if pending:
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

            # A check whose probe finished is being recorded, not timed out.
            timed_out = [tasks[task] for task in pending if tasks[task].id not in state.recordings]
            for endpoint in timed_out:
                # A task cancelled before its first step never runs its finally.
                if endpoint.id not in state.started:
                    self.breakers.release(endpoint.id)
            report.timed_out += len(timed_out)
            logger.warning(
                f"[Engine] {report.kind} pass deadline ({deadline}s) expired, "
                f"{len(timed_out)} check(s) cancelled"
            )

        if state.recordings:
            await asyncio.gather(*state.recordings.values(), return_exceptions=True)

        for task in done:
            if task.exception() is not None:
                endpoint = tasks[task]
                logger.opt(exception=task.exception()).error(
                    f"[Engine] Check for endpoint {endpoint.id} raised"
                )
                report.errors += 1

    async def _run_guarded(self, endpoint, report: PassReport, state: _PassState) -> None:
        """Process one endpoint; errors are logged and counted, never raised."""
        state.started.add(endpoint.id)
        try:
            await self._process(endpoint, report, state)
        except Exception as e:
            self._count_error(endpoint, report, e)
        finally:
            # Once recording is handed off, the recording task owns the slot.
            if endpoint.id not in state.recordings:
                self.breakers.release(endpoint.id)

    async def _record_guarded(self, endpoint, old_status, result, report: PassReport):
        """Persist and alert outside the pass deadline; owns the single-flight slot."""
        try:
            return await self._record(endpoint, old_status, result, report)
        except Exception as e:
            self._count_error(endpoint, report, e)
        finally:
            self.breakers.release(endpoint.id)
        return None

    @staticmethod
    def _count_error(endpoint, report: PassReport, error: Exception) -> None:
        report.errors += 1
        if isinstance(error, AppWatchException):
            logger.error(f"[Engine] Endpoint {endpoint.id} ({endpoint.url}): {error.log_format()}")
        else:
            logger.opt(exception=error).error(
                f"[Engine] Exception checking endpoint {endpoint.id} ({endpoint.url}): {error}"
            )

    # ------------------------------------------------------------------
    # SINGLE ENDPOINT
    # ------------------------------------------------------------------

    async def _process(
        self, endpoint, report: PassReport, state: Optional[_PassState] = None
    ) -> Optional[CheckOutcome]:
        """
        Probe one endpoint, then record the result.

        Inside a pass the recording runs as its own task, shielded from the
        pass deadline, so a committed status change always reaches the
        dispatcher.
        """
        old_status = EndpointStatus(endpoint.status)

        async with self._semaphore:
            self._probes_running += 1
            try:
                result = await self.probe.check(endpoint)
            finally:
                self._probes_running -= 1

        report.checked += 1

        if result.success:
            self.breakers.record_success(endpoint.id)
        else:
            self.breakers.record_failure(endpoint.id)

        self._monitor_logger.log_check(
            endpoint.id, endpoint.url, result.success, result.response_time, result.error_message
        )

        if state is None:
            return await self._record(endpoint, old_status, result, report)

        recording = asyncio.create_task(self._record_guarded(endpoint, old_status, result, report))
        state.recordings[endpoint.id] = recording
        return await asyncio.shield(recording)

    async def _record(self, endpoint, old_status: EndpointStatus, result: ProbeResult,
                      report: PassReport) -> CheckOutcome:
        """Status log, uptime, endpoint row, then alerts on a status change."""
        await self.store.append_status_log(
            endpoint.id,
            result.status,
            result.response_time,
            result.checked_at,
            result.error_message,
        )
        uptime = await self.store.compute_uptime(
            endpoint.id, result.checked_at - self._uptime_window
        )
        await self.store.update_endpoint_status(
            endpoint.id,
            result.status,
            result.checked_at,
            result.response_time,
            uptime,
        )

        outcome = CheckOutcome(
            endpoint_id=endpoint.id,
            old_status=old_status,
            new_status=result.status,
            probe=result,
        )

        if outcome.status_changed:
            report.status_changes += 1
            if old_status == EndpointStatus.OFFLINE and result.status == EndpointStatus.ONLINE:
                report.healed += 1
            self._monitor_logger.log_transition(
                endpoint.id, endpoint.name, old_status.value, result.status.value
            )

            if endpoint.alerts_enabled and self.dispatcher is not None:
                outcome.deliveries = await self.dispatcher.dispatch(
                    endpoint, old_status, result.status
                )
                for delivery in outcome.deliveries:
                    if delivery.success:
                        report.alerts_sent += 1
                    else:
                        report.alerts_failed += 1

        return outcome

    def _finish(self, report: PassReport, started: float) -> PassReport:
        report.duration_ms = int((time.perf_counter() - started) * 1000)
        self._last_reports[report.kind] = {
            **report.to_dict(),
            "finished_at": TimeHelper.to_iso(TimeHelper.utc_now()),
        }
        if report.checked or report.errors or report.timed_out:
            logger.info(
                f"[Engine] {report.kind} pass: checked={report.checked} "
                f"changes={report.status_changes} errors={report.errors} "
                f"timed_out={report.timed_out} in {report.duration_ms}ms"
            )
        return report


# ============================================================================
# END OF MONITORING ENGINE MODULE
# ============================================================================
