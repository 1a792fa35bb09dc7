"""
Tests for the per-source circuit breaker.
"""

from unittest.mock import MagicMock

import pytest

from trader.circuit_breaker import CircuitBreaker

FALLBACK = object()


def _fail_times(breaker: CircuitBreaker, times: int) -> None:
    failing = MagicMock(side_effect=RuntimeError("upstream down"))
    for _ in range(times):
        with pytest.raises(RuntimeError):
            breaker.call(failing, FALLBACK)


class TestCircuitBreaker:
    def test_stays_closed_below_threshold(self, clock):
        breaker = CircuitBreaker("news", failure_threshold=5, recovery_timeout=300, clock=clock)
        _fail_times(breaker, 4)

        operation = MagicMock(return_value="ok")
        assert breaker.call(operation, FALLBACK) == "ok"
        operation.assert_called_once()
        assert breaker.failures == 0

    def test_opens_after_threshold_and_short_circuits(self, clock):
        breaker = CircuitBreaker("news", failure_threshold=5, recovery_timeout=300, clock=clock)
        _fail_times(breaker, 5)
        assert breaker.is_open

        clock.advance(10)
        operation = MagicMock(return_value="ok")

        assert breaker.call(operation, FALLBACK) is FALLBACK
        operation.assert_not_called()

    def test_lets_call_through_after_recovery_window(self, clock):
        breaker = CircuitBreaker("news", failure_threshold=5, recovery_timeout=300, clock=clock)
        _fail_times(breaker, 5)

        clock.advance(300)
        operation = MagicMock(return_value="ok")

        assert breaker.call(operation, FALLBACK) == "ok"
        operation.assert_called_once()
        assert not breaker.is_open

    def test_failed_recovery_restarts_window(self, clock):
        breaker = CircuitBreaker("news", failure_threshold=5, recovery_timeout=300, clock=clock)
        _fail_times(breaker, 5)
        clock.advance(301)

        _fail_times(breaker, 1)
        clock.advance(100)

        operation = MagicMock(return_value="ok")
        assert breaker.call(operation, FALLBACK) is FALLBACK
        operation.assert_not_called()

    def test_reset_closes_breaker(self, clock):
        breaker = CircuitBreaker("news", failure_threshold=2, recovery_timeout=300, clock=clock)
        _fail_times(breaker, 2)

        breaker.reset()

        state = breaker.get_state()
        assert state["open"] is False
        assert state["failures"] == 0

    def test_rejects_zero_threshold(self):
        with pytest.raises(ValueError):
            CircuitBreaker("news", failure_threshold=0)
