"""Circuit breaker for the response provider

Repeated provider failures open the circuit so chat turns fail fast into
the fallback reply instead of waiting on a dead upstream.

State Machine:
    CLOSED (normal) -> OPEN (failing fast) -> HALF_OPEN (testing) -> CLOSED/OPEN
"""

import pybreaker
import logging
from typing import Callable, Any, TypeVar
from functools import wraps

logger = logging.getLogger(__name__)

T = TypeVar('T')


class CircuitBreakerListener(pybreaker.CircuitBreakerListener):
    """Listener to log circuit breaker state changes and emit metrics"""

    def state_change(self, cb: pybreaker.CircuitBreaker, old_state: Any, new_state: Any) -> None:
        logger.warning(
            f"[CIRCUIT_BREAKER] {cb.name}: {old_state.name} -> {new_state.name}"
        )

        try:
            from src.resilience.metrics import record_circuit_breaker_state
            record_circuit_breaker_state(cb.name, new_state.name.lower())
        except Exception as e:
            logger.error(f"Failed to record circuit breaker state: {e}")

    def failure(self, cb: pybreaker.CircuitBreaker, exc: Exception) -> None:
        logger.error(
            f"[CIRCUIT_BREAKER] {cb.name} recorded failure: {type(exc).__name__}: {exc}"
        )

        try:
            from src.resilience.metrics import record_api_failure
            record_api_failure(cb.name, type(exc).__name__)
        except Exception as e:
            logger.error(f"Failed to record API failure: {e}")

    def success(self, cb: pybreaker.CircuitBreaker) -> None:
        logger.debug(f"[CIRCUIT_BREAKER] {cb.name} recorded success")


def create_breaker(name: str, fail_max: int = 5, reset_timeout: int = 60) -> pybreaker.CircuitBreaker:
    """Circuit breaker with the logging/metrics listener attached"""
    return pybreaker.CircuitBreaker(
        fail_max=fail_max,
        reset_timeout=reset_timeout,
        name=name,
        listeners=[CircuitBreakerListener()]
    )


# 5 failures opens the circuit, 60s before HALF_OPEN
GEMINI_BREAKER = create_breaker("gemini_api")


def with_circuit_breaker(breaker: pybreaker.CircuitBreaker) -> Callable:
    """
    Decorator to wrap async functions with circuit breaker protection.

    When the circuit is OPEN, calls fail immediately with
    pybreaker.CircuitBreakerError instead of calling the function.

    Example:
        @with_circuit_breaker(GEMINI_BREAKER)
        async def call_gemini():
            ...
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            try:
                return await breaker.call_async(func, *args, **kwargs)
            except pybreaker.CircuitBreakerError:
                logger.warning(
                    f"[CIRCUIT_BREAKER] {breaker.name} is OPEN - failing fast"
                )
                raise
        return wrapper
    return decorator
