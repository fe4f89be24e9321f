"""
============================================================================
APPWATCH - CIRCUIT BREAKER
============================================================================
Per-endpoint failure tracking and the single-flight slot.

Phases
------
closed     -> open       after ``failure_threshold`` consecutive failures
open       -> half_open  once the cool-down has elapsed
half_open  -> closed     on success (state reset)
half_open  -> open       on failure, cool-down multiplied (capped)

Any success closes the breaker. A failure while open bumps the failure
counter without moving ``open_until``.

State is process-local and created lazily per endpoint id.

Version: 1.0.0
License: MIT
============================================================================
"""

import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Set

from config.constants import BreakerPhase
from config.settings import BreakerSettings
from utils.logger import get_logger


logger = get_logger("CircuitBreaker")


@dataclass
class CircuitState:
    """Breaker state of one endpoint. Times come from the registry clock."""
    cooldown: float
    consecutive_failures: int = 0
    consecutive_successes: int = 0
    phase: BreakerPhase = BreakerPhase.CLOSED
    open_until: Optional[float] = None
    last_failure_time: Optional[float] = None

    def is_default(self, base_cooldown: float) -> bool:
        return (
            self.phase == BreakerPhase.CLOSED
            and self.consecutive_failures == 0
            and self.cooldown == base_cooldown
        )


class CircuitBreakerRegistry:
    """
    Arena of ``CircuitState`` keyed by endpoint id, plus the set of
    endpoint ids with a probe in flight.
    """

    def __init__(
        self,
        settings: Optional[BreakerSettings] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings or BreakerSettings()
        self._clock = clock
        self._states: Dict[str, CircuitState] = {}
        self._in_flight: Set[str] = set()

    # ------------------------------------------------------------------
    # STATE ACCESS
    # ------------------------------------------------------------------

    def _new_state(self) -> CircuitState:
        return CircuitState(cooldown=self.settings.cooldown_seconds)

    def state(self, endpoint_id: str) -> CircuitState:
        """Current state, created on first use."""
        state = self._states.get(endpoint_id)
        if state is None:
            state = self._states[endpoint_id] = self._new_state()
        return self._refresh(state)

    def peek(self, endpoint_id: str) -> Optional[CircuitState]:
        state = self._states.get(endpoint_id)
        return self._refresh(state) if state is not None else None

    def _refresh(self, state: CircuitState) -> CircuitState:
        if (
            state.phase == BreakerPhase.OPEN
            and state.open_until is not None
            and self._clock() >= state.open_until
        ):
            state.phase = BreakerPhase.HALF_OPEN
        return state

    def is_open(self, endpoint_id: str) -> bool:
        """True while the cool-down runs; an expired breaker turns half-open."""
        state = self.peek(endpoint_id)
        return state is not None and state.phase == BreakerPhase.OPEN

    def open_ids(self) -> List[str]:
        """Ids the scheduler must skip right now."""
        return [endpoint_id for endpoint_id in list(self._states) if self.is_open(endpoint_id)]

    # ------------------------------------------------------------------
    # OUTCOMES
    # ------------------------------------------------------------------

    def record_success(self, endpoint_id: str) -> BreakerPhase:
        """
        Reset the endpoint to a default closed state.

        Returns the phase the breaker was in before the success.
        """
        previous = self.peek(endpoint_id)
        previous_phase = previous.phase if previous else BreakerPhase.CLOSED

        state = self._new_state()
        state.consecutive_successes = (previous.consecutive_successes + 1) if previous else 1
        self._states[endpoint_id] = state

        if previous_phase != BreakerPhase.CLOSED:
            logger.info(f"[Breaker] {endpoint_id} closed after {previous_phase.value}")
        return previous_phase

    def record_failure(self, endpoint_id: str) -> CircuitState:
        state = self.state(endpoint_id)
        now = self._clock()

        state.consecutive_failures += 1
        state.consecutive_successes = 0
        state.last_failure_time = now

        if state.phase == BreakerPhase.HALF_OPEN:
            state.cooldown = min(
                state.cooldown * self.settings.backoff_multiplier,
                self.settings.max_cooldown_seconds,
            )
            state.phase = BreakerPhase.OPEN
            state.open_until = now + state.cooldown
            logger.warning(
                f"[Breaker] {endpoint_id} trial failed, re-opened for {state.cooldown:.0f}s"
            )
        elif (
            state.phase == BreakerPhase.CLOSED
            and state.consecutive_failures >= self.settings.failure_threshold
        ):
            state.phase = BreakerPhase.OPEN
            state.open_until = now + state.cooldown
            logger.warning(
                f"[Breaker] {endpoint_id} opened after {state.consecutive_failures} "
                f"consecutive failures ({state.cooldown:.0f}s cool-down)"
            )

        return state

    def reset(self, endpoint_id: str) -> None:
        self._states.pop(endpoint_id, None)

    def reset_stale(self, max_age: Optional[float] = None) -> Dict[str, int]:
        """
        Reset open breakers whose last failure is older than ``max_age``
        seconds and drop entries already in the default state.
        """
        max_age = self.settings.stale_reset_seconds if max_age is None else max_age
        now = self._clock()
        reset = dropped = 0

        for endpoint_id, state in list(self._states.items()):
            self._refresh(state)
            if (
                state.phase != BreakerPhase.CLOSED
                and state.last_failure_time is not None
                and now - state.last_failure_time > max_age
            ):
                del self._states[endpoint_id]
                reset += 1
            elif state.is_default(self.settings.cooldown_seconds):
                del self._states[endpoint_id]
                dropped += 1

        return {"reset": reset, "dropped": dropped}

    # ------------------------------------------------------------------
    # SINGLE-FLIGHT
    # ------------------------------------------------------------------

    def try_acquire(self, endpoint_id: str) -> bool:
        """Claim the probe slot for an endpoint; False if already taken."""
        if endpoint_id in self._in_flight:
            return False
        self._in_flight.add(endpoint_id)
        return True

    def release(self, endpoint_id: str) -> None:
        self._in_flight.discard(endpoint_id)

    def is_in_flight(self, endpoint_id: str) -> bool:
        return endpoint_id in self._in_flight

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    # ------------------------------------------------------------------
    # REPORTING
    # ------------------------------------------------------------------

    def snapshot(self) -> List[Dict[str, object]]:
        now = self._clock()
        snapshot = []
        for endpoint_id in list(self._states):
            state = self.peek(endpoint_id)
            snapshot.append({
                "endpoint_id": endpoint_id,
                "phase": state.phase.value,
                "consecutive_failures": state.consecutive_failures,
                "consecutive_successes": state.consecutive_successes,
                "cooldown_seconds": state.cooldown,
                "open_for_seconds": (
                    round(max(0.0, state.open_until - now), 1)
                    if state.phase == BreakerPhase.OPEN and state.open_until is not None
                    else 0.0
                ),
            })
        return snapshot

    def __len__(self) -> int:
        return len(self._states)
