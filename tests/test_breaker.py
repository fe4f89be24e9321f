"""Tests for the per-endpoint circuit breaker."""

from config.constants import BreakerPhase
from config.settings import BreakerSettings
from monitoring.breaker import CircuitBreakerRegistry


def registry(clock, **overrides):
    options = {"failure_threshold": 3, "cooldown_seconds": 60, "max_cooldown_seconds": 300}
    options.update(overrides)
    return CircuitBreakerRegistry(BreakerSettings(**options), clock=clock)


class TestTransitions:
    def test_opens_after_threshold(self, clock):
        breakers = registry(clock)

        breakers.record_failure("ep")
        breakers.record_failure("ep")
        assert breakers.state("ep").phase == BreakerPhase.CLOSED
        assert not breakers.is_open("ep")

        state = breakers.record_failure("ep")
        assert state.phase == BreakerPhase.OPEN
        assert state.open_until == clock.now + 60
        assert breakers.open_ids() == ["ep"]

    def test_success_resets_failure_count(self, clock):
        breakers = registry(clock)
        breakers.record_failure("ep")
        breakers.record_failure("ep")

        assert breakers.record_success("ep") == BreakerPhase.CLOSED
        breakers.record_failure("ep")
        assert breakers.state("ep").consecutive_failures == 1
        assert breakers.state("ep").phase == BreakerPhase.CLOSED

    def test_turns_half_open_after_cooldown(self, clock):
        breakers = registry(clock)
        for _ in range(3):
            breakers.record_failure("ep")

        clock.advance(59)
        assert breakers.is_open("ep")
        clock.advance(1)
        assert not breakers.is_open("ep")
        assert breakers.state("ep").phase == BreakerPhase.HALF_OPEN
        assert breakers.open_ids() == []

    def test_half_open_success_closes(self, clock):
        breakers = registry(clock)
        for _ in range(3):
            breakers.record_failure("ep")
        clock.advance(60)

        previous = breakers.record_success("ep")

        state = breakers.state("ep")
        assert previous == BreakerPhase.HALF_OPEN
        assert state.phase == BreakerPhase.CLOSED
        assert state.consecutive_failures == 0
        assert state.cooldown == 60

    def test_half_open_failure_reopens_with_longer_cooldown(self, clock):
        breakers = registry(clock)
        for _ in range(3):
            breakers.record_failure("ep")

        clock.advance(60)
        state = breakers.record_failure("ep")
        assert state.phase == BreakerPhase.OPEN
        assert state.cooldown == 120
        assert state.open_until == clock.now + 120

        clock.advance(120)
        assert breakers.record_failure("ep").cooldown == 240

        clock.advance(240)
        assert breakers.record_failure("ep").cooldown == 300

    def test_failure_while_open_keeps_open_until(self, clock):
        breakers = registry(clock)
        for _ in range(3):
            breakers.record_failure("ep")
        open_until = breakers.state("ep").open_until

        clock.advance(10)
        state = breakers.record_failure("ep")

        assert state.phase == BreakerPhase.OPEN
        assert state.open_until == open_until
        assert state.consecutive_failures == 4

    def test_endpoints_are_independent(self, clock):
        breakers = registry(clock, failure_threshold=1)
        breakers.record_failure("a")

        assert breakers.is_open("a")
        assert not breakers.is_open("b")


class TestMaintenance:
    def test_reset_stale_clears_old_open_breakers(self, clock):
        breakers = registry(clock, failure_threshold=1)
        breakers.record_failure("old")
        clock.advance(4000)
        breakers.record_failure("fresh")
        breakers.record_success("healthy")

        result = breakers.reset_stale(max_age=3600)

        assert result == {"reset": 1, "dropped": 1}
        assert breakers.peek("old") is None
        assert breakers.is_open("fresh")
        assert len(breakers) == 1

    def test_snapshot_reports_remaining_open_time(self, clock):
        breakers = registry(clock, failure_threshold=1)
        breakers.record_failure("ep")
        clock.advance(15)

        entry = breakers.snapshot()[0]

        assert entry["phase"] == "open"
        assert entry["open_for_seconds"] == 45.0


class TestSingleFlight:
    def test_slot_is_exclusive_until_released(self, clock):
        breakers = registry(clock)

        assert breakers.try_acquire("ep")
        assert not breakers.try_acquire("ep")
        assert breakers.is_in_flight("ep")
        assert breakers.in_flight == 1

        breakers.release("ep")
        assert breakers.try_acquire("ep")

    def test_release_is_idempotent(self, clock):
        breakers = registry(clock)
        breakers.release("never-acquired")
        assert breakers.in_flight == 0
