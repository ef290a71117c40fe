"""
Unit tests for the circuit breaker
"""
import pytest

from marketplace_chat.core.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerError,
    CircuitState,
    get_all_circuit_breaker_stats,
    get_circuit_breaker,
)


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


async def fail(breaker, exc=RuntimeError("boom")):
    with pytest.raises(type(exc)):
        async with breaker:
            raise exc


@pytest.mark.asyncio
class TestCircuitBreaker:
    """Tests for breaker state transitions"""

    async def test_opens_after_threshold(self):
        breaker = CircuitBreaker("t", failure_threshold=3, recovery_timeout=10)
        for _ in range(3):
            await fail(breaker)
        assert breaker.state == CircuitState.OPEN

        with pytest.raises(CircuitBreakerError):
            async with breaker:
                pass

    async def test_success_resets_failure_count(self):
        breaker = CircuitBreaker("t", failure_threshold=2)
        await fail(breaker)
        async with breaker:
            pass
        await fail(breaker)
        assert breaker.state == CircuitState.CLOSED

    async def test_half_open_after_recovery_timeout(self):
        """Test the breaker probes after the timeout and closes on success"""
        clock = FakeClock()
        breaker = CircuitBreaker("t", failure_threshold=1, recovery_timeout=10, clock=clock)
        await fail(breaker)
        assert breaker.state == CircuitState.OPEN

        clock.now += 10
        async with breaker:
            assert breaker.state == CircuitState.HALF_OPEN
        assert breaker.state == CircuitState.CLOSED

    async def test_failure_in_half_open_reopens(self):
        clock = FakeClock()
        breaker = CircuitBreaker("t", failure_threshold=1, recovery_timeout=10, clock=clock)
        await fail(breaker)
        clock.now += 11
        await fail(breaker)
        assert breaker.state == CircuitState.OPEN
        assert breaker.stats.total_circuit_opens == 2

    async def test_unexpected_exceptions_do_not_count(self):
        breaker = CircuitBreaker("t", failure_threshold=1, expected_exceptions=(ConnectionError,))
        await fail(breaker, ValueError("bad input"))
        assert breaker.state == CircuitState.CLOSED
        await fail(breaker, ConnectionError("down"))
        assert breaker.state == CircuitState.OPEN


class TestRegistry:
    """Tests for the named breaker registry"""

    def test_same_name_same_instance(self):
        assert get_circuit_breaker("registry-test") is get_circuit_breaker("registry-test")
        assert "registry-test" in get_all_circuit_breaker_stats()

    def test_reset(self):
        breaker = CircuitBreaker("t")
        breaker._stats.state = CircuitState.OPEN
        breaker.reset()
        assert breaker.state == CircuitState.CLOSED
