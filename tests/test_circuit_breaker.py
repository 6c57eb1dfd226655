"""Tests for the run circuit breaker."""

import threading
import pytest

from freight_assistant.infra.circuit_breaker import CircuitState, RunCircuitBreaker


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def breaker(clock):
    return RunCircuitBreaker(failure_threshold=5, cooldown_seconds=60, clock=clock)


class TestRunCircuitBreaker:
    """Test open/cooldown/reset behaviour with a fake clock."""

    def test_starts_closed(self, breaker):
        assert breaker.can_execute()
        assert breaker.state == CircuitState.CLOSED

    def test_opens_after_five_failures(self, breaker):
        for _ in range(4):
            breaker.record_failure()
        assert breaker.can_execute()
        breaker.record_failure()
        assert breaker.can_execute() is False
        assert breaker.state == CircuitState.OPEN

    def test_stays_open_until_cooldown_elapses(self, breaker, clock):
        for _ in range(5):
            breaker.record_failure()
        clock.advance(59.9)
        assert breaker.can_execute() is False
        assert breaker.retry_after() == 0
        clock.advance(0.1)
        assert breaker.can_execute() is True
        assert breaker.state == CircuitState.CLOSED

    def test_cooldown_measured_from_last_failure(self, breaker, clock):
        for _ in range(5):
            breaker.record_failure()
        clock.advance(30)
        breaker.record_failure()
        clock.advance(45)
        assert breaker.can_execute() is False
        clock.advance(15)
        assert breaker.can_execute() is True

    def test_retry_after(self, breaker, clock):
        assert breaker.retry_after() == 0
        for _ in range(5):
            breaker.record_failure()
        clock.advance(20)
        assert breaker.retry_after() == 40

    def test_success_resets_count(self, breaker):
        for _ in range(4):
            breaker.record_failure()
        breaker.record_success()
        for _ in range(4):
            breaker.record_failure()
        assert breaker.can_execute()

    def test_counter_resets_after_cooldown(self, breaker, clock):
        for _ in range(5):
            breaker.record_failure()
        clock.advance(60)
        assert breaker.can_execute()
        breaker.record_failure()
        assert breaker.can_execute()

    def test_concurrent_failures_counted(self, clock):
        breaker = RunCircuitBreaker(failure_threshold=200, cooldown_seconds=60, clock=clock)
        threads = [threading.Thread(target=breaker.record_failure) for _ in range(200)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert breaker.failure_count == 200
        assert breaker.can_execute() is False
