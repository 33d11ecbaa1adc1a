"""
Circuit breaker for calls to the external board.

closed: calls allowed; failures are counted and the circuit opens at the
threshold. open: calls blocked until the reset timeout has passed, after
which the circuit is half_open. half_open: calls allowed; enough successes
close it again, any failure re-opens it.
"""

import time
from enum import Enum
from typing import Any, Callable, Dict, Optional

import structlog

from ..config import get_settings

logger = structlog.get_logger()


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    def __init__(
        self,
        failure_threshold: int = 5,
        success_threshold: int = 2,
        reset_timeout: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.success_threshold = success_threshold
        self.reset_timeout = reset_timeout
        self._clock = clock
        self._state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[float] = None
        self.last_state_change = clock()

    @property
    def state(self) -> CircuitState:
        if self._state == CircuitState.OPEN and self.last_failure_time is not None:
            if self._clock() - self.last_failure_time >= self.reset_timeout:
                self._transition(CircuitState.HALF_OPEN)
        return self._state

    def can_execute(self) -> bool:
        return self.state in (CircuitState.CLOSED, CircuitState.HALF_OPEN)

    def record_success(self) -> None:
        state = self.state
        if state == CircuitState.HALF_OPEN:
            self.success_count += 1
            if self.success_count >= self.success_threshold:
                self._transition(CircuitState.CLOSED)
        elif state == CircuitState.CLOSED:
            self.failure_count = 0

    def record_failure(self) -> None:
        state = self.state
        self.last_failure_time = self._clock()
        self.failure_count += 1
        if state == CircuitState.HALF_OPEN:
            self._transition(CircuitState.OPEN)
        elif state == CircuitState.CLOSED and self.failure_count >= self.failure_threshold:
            self._transition(CircuitState.OPEN)

    def _transition(self, new_state: CircuitState) -> None:
        old_state = self._state
        self._state = new_state
        self.success_count = 0
        if new_state in (CircuitState.CLOSED, CircuitState.HALF_OPEN):
            self.failure_count = 0
        self.last_state_change = self._clock()

        log = logger.warning if new_state == CircuitState.OPEN else logger.info
        log(
            "circuit_breaker_transition",
            from_state=old_state.value,
            to_state=new_state.value,
            failure_count=self.failure_count,
            reset_timeout=self.reset_timeout,
        )

    def get_status(self) -> Dict[str, Any]:
        state = self.state
        return {
            "state": state.value,
            "failure_count": self.failure_count,
            "success_count": self.success_count,
            "failure_threshold": self.failure_threshold,
            "success_threshold": self.success_threshold,
            "reset_timeout": self.reset_timeout,
            "seconds_since_state_change": self._clock() - self.last_state_change,
        }

    def reset(self) -> None:
        self._state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time = None
        self.last_state_change = self._clock()
        logger.info("circuit_breaker_reset")


_breaker: Optional[CircuitBreaker] = None


def get_circuit_breaker() -> CircuitBreaker:
    """Process-wide breaker for the board, configured from settings."""
    global _breaker
    if _breaker is None:
        settings = get_settings()
        _breaker = CircuitBreaker(
            failure_threshold=settings.circuit_failure_threshold,
            success_threshold=settings.circuit_success_threshold,
            reset_timeout=settings.circuit_reset_timeout_seconds,
        )
    return _breaker
