"""
Circuit Breaker for backend calls

Fails fast while the chat API is unhealthy so that pollers for several open
views do not keep hammering a backend that is down.

States:
- CLOSED: Normal operation, requests pass through
- OPEN: Backend is failing, requests fail immediately
- HALF_OPEN: Probing whether the backend has recovered

Usage:
    breaker = get_circuit_breaker("chat-api")
    async with breaker:
        await client.request(...)
"""

import time
import logging
from typing import Callable, Dict, Optional
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    """Circuit breaker states"""
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass
class CircuitBreakerStats:
    """Statistics for a circuit breaker"""
    name: str
    state: CircuitState = CircuitState.CLOSED
    failure_count: int = 0
    success_count: int = 0
    last_failure_time: Optional[float] = None
    total_requests: int = 0
    total_failures: int = 0
    total_circuit_opens: int = 0

    def to_dict(self) -> Dict:
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "success_count": self.success_count,
            "total_requests": self.total_requests,
            "total_failures": self.total_failures,
            "total_circuit_opens": self.total_circuit_opens,
            "failure_rate": self.failure_rate,
        }

    @property
    def failure_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.total_failures / self.total_requests


class CircuitBreakerError(Exception):
    """Raised when circuit breaker is open"""
    def __init__(self, name: str, message: str = "Circuit breaker is open"):
        self.name = name
        self.message = f"[{name}] {message}"
        super().__init__(self.message)


class CircuitBreaker:
    """
    Async circuit breaker.

    Attributes:
        name: Identifier for this circuit breaker
        failure_threshold: Consecutive failures before opening the circuit
        recovery_timeout: Seconds to wait before probing (half-open state)
        success_threshold: Successes in half-open before closing
        expected_exceptions: Exception types that count as failures
        clock: Monotonic time source, injectable for tests
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        success_threshold: int = 1,
        expected_exceptions: tuple = (Exception,),
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.success_threshold = success_threshold
        self.expected_exceptions = expected_exceptions
        self._clock = clock
        self._stats = CircuitBreakerStats(name=name)

        logger.debug(
            f"Circuit breaker '{name}' initialized: "
            f"failure_threshold={failure_threshold}, "
            f"recovery_timeout={recovery_timeout}s"
        )

    @property
    def state(self) -> CircuitState:
        return self._stats.state

    @property
    def stats(self) -> CircuitBreakerStats:
        return self._stats

    def _should_allow_request(self) -> bool:
        if self._stats.state == CircuitState.CLOSED:
            return True

        if self._stats.state == CircuitState.OPEN:
            if self._stats.last_failure_time is not None:
                elapsed = self._clock() - self._stats.last_failure_time
                if elapsed >= self.recovery_timeout:
                    self._stats.state = CircuitState.HALF_OPEN
                    self._stats.success_count = 0
                    logger.info(
                        f"Circuit breaker '{self.name}' transitioning to HALF_OPEN "
                        f"after {elapsed:.1f}s"
                    )
                    return True
            return False

        return True

    def _record_success(self):
        self._stats.total_requests += 1
        self._stats.failure_count = 0

        if self._stats.state == CircuitState.HALF_OPEN:
            self._stats.success_count += 1
            if self._stats.success_count >= self.success_threshold:
                self._stats.state = CircuitState.CLOSED
                logger.info(f"Circuit breaker '{self.name}' CLOSED")

    def _record_failure(self, exception: BaseException):
        self._stats.failure_count += 1
        self._stats.total_failures += 1
        self._stats.total_requests += 1
        self._stats.last_failure_time = self._clock()

        if self._stats.state == CircuitState.HALF_OPEN:
            self._open()
            logger.warning(
                f"Circuit breaker '{self.name}' re-OPENED after failure in HALF_OPEN: {exception}"
            )
        elif (
            self._stats.state == CircuitState.CLOSED
            and self._stats.failure_count >= self.failure_threshold
        ):
            self._open()
            logger.warning(
                f"Circuit breaker '{self.name}' OPENED after "
                f"{self._stats.failure_count} failures"
            )

    def _open(self):
        self._stats.state = CircuitState.OPEN
        self._stats.total_circuit_opens += 1

    async def __aenter__(self):
        if not self._should_allow_request():
            raise CircuitBreakerError(
                self.name,
                f"Circuit is OPEN. Will retry after {self.recovery_timeout}s"
            )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if exc_val is None:
            self._record_success()
        elif isinstance(exc_val, self.expected_exceptions):
            self._record_failure(exc_val)
        else:
            # Not a backend health signal (e.g. a 404); the call itself went through
            self._record_success()
        return False

    def reset(self):
        """Manually reset the circuit breaker to closed state."""
        self._stats.state = CircuitState.CLOSED
        self._stats.failure_count = 0
        self._stats.success_count = 0
        logger.info(f"Circuit breaker '{self.name}' manually reset to CLOSED")


_circuit_breakers: Dict[str, CircuitBreaker] = {}


def get_circuit_breaker(
    name: str,
    failure_threshold: int = 5,
    recovery_timeout: float = 30.0,
    expected_exceptions: tuple = (Exception,),
) -> CircuitBreaker:
    """Get or create a circuit breaker by name (one instance per name)."""
    if name not in _circuit_breakers:
        _circuit_breakers[name] = CircuitBreaker(
            name=name,
            failure_threshold=failure_threshold,
            recovery_timeout=recovery_timeout,
            expected_exceptions=expected_exceptions,
        )
    return _circuit_breakers[name]


def get_all_circuit_breaker_stats() -> Dict[str, Dict]:
    return {name: cb.stats.to_dict() for name, cb in _circuit_breakers.items()}


def reset_all_circuit_breakers():
    for cb in _circuit_breakers.values():
        cb.reset()
