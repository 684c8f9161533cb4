"""
Circuit breaker guarding blocking calls to the store, redis and the gateway
"""
import asyncio
import functools
import time
from enum import Enum
from typing import Callable, Any, Tuple, Type
from dataclasses import dataclass, field
import logging

from .error_handling import ServiceError, ErrorCodes, GENERIC_UNAVAILABLE

logger = logging.getLogger(__name__)

class CircuitState(Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"            # failing fast
    HALF_OPEN = "HALF_OPEN"  # probing after reset_timeout

@dataclass
class CircuitBreakerConfig:
    failure_threshold: int = 5   # consecutive failures that open the circuit
    reset_timeout: float = 60.0  # seconds open before probing
    success_threshold: int = 3   # probe successes that close it again
    timeout: float = 10.0        # per-call wait, seconds
    # Outcomes that are answers, not outages (e.g. a lost unique-key race)
    ignored_exceptions: Tuple[Type[BaseException], ...] = field(default_factory=tuple)

class CircuitBreakerOpen(ServiceError):
    def __init__(self, name: str):
        super().__init__(ErrorCodes.CIRCUIT_BREAKER_OPEN, GENERIC_UNAVAILABLE)
        self.name = name

class CircuitBreaker:
    """One breaker per dependency, owned by the service container."""

    def __init__(self, name: str, config: CircuitBreakerConfig):
        self.name = name
        self.config = config
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time = 0.0
        self.last_state_change = time.time()

    def _transition(self, state: CircuitState):
        logger.warning(f"Circuit breaker {self.name}: {self.state.value} -> {state.value}")
        self.state = state
        self.success_count = 0
        if state == CircuitState.CLOSED:
            self.failure_count = 0
        self.last_state_change = time.time()

    def _on_success(self):
        if self.state == CircuitState.CLOSED:
            self.failure_count = 0
            return
        self.success_count += 1
        if self.success_count >= self.config.success_threshold:
            self._transition(CircuitState.CLOSED)

    def _on_failure(self):
        self.failure_count += 1
        self.last_failure_time = time.time()
        if self.state == CircuitState.HALF_OPEN:
            self._transition(CircuitState.OPEN)
        elif self.state == CircuitState.CLOSED and self.failure_count >= self.config.failure_threshold:
            self._transition(CircuitState.OPEN)

    async def call(self, func: Callable, *args, **kwargs) -> Any:
        """Run a blocking callable in the default executor with breaker protection.

        A timeout abandons the wait, not the work: the worker thread still
        runs the call to completion.
        """
        if (self.state == CircuitState.OPEN
                and time.time() - self.last_failure_time >= self.config.reset_timeout):
            self._transition(CircuitState.HALF_OPEN)

        if self.state == CircuitState.OPEN:
            raise CircuitBreakerOpen(self.name)

        loop = asyncio.get_running_loop()
        try:
            result = await asyncio.wait_for(
                loop.run_in_executor(None, functools.partial(func, *args, **kwargs)),
                timeout=self.config.timeout,
            )
        except asyncio.TimeoutError as e:
            self._on_failure()
            raise ServiceError(ErrorCodes.TIMEOUT_ERROR, GENERIC_UNAVAILABLE, e)
        except self.config.ignored_exceptions:
            self._on_success()
            raise
        except Exception:
            self._on_failure()
            raise

        self._on_success()
        return result

    def get_state(self) -> dict:
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "since": self.last_state_change,
        }

STORE_CB_CONFIG = CircuitBreakerConfig(failure_threshold=3, reset_timeout=30.0, success_threshold=2, timeout=5.0)
REDIS_CB_CONFIG = CircuitBreakerConfig(failure_threshold=5, reset_timeout=15.0, success_threshold=2, timeout=2.0)
GATEWAY_CB_CONFIG = CircuitBreakerConfig(failure_threshold=3, reset_timeout=45.0, success_threshold=2, timeout=10.0)
