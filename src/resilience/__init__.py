"""Resilience patterns

Circuit breaker and retry for the response provider, bounded retries for
row-lock conflicts, the fallback chain used by chat turns, and Prometheus
counters for all of them.
"""

from src.resilience.circuit_breaker import (
    GEMINI_BREAKER,
    create_breaker,
    with_circuit_breaker,
)
from src.resilience.retry import is_retryable_error, retry_with_backoff, with_retry
from src.resilience.fallback import execute_with_fallbacks, FallbackStrategy
from src.resilience.metrics import (
    record_circuit_breaker_state,
    record_api_call,
    record_api_failure,
    record_retry,
    record_fallback,
    record_activity,
    record_derived_failure,
)

__all__ = [
    # Circuit Breakers
    "GEMINI_BREAKER",
    "create_breaker",
    "with_circuit_breaker",
    # Retry
    "is_retryable_error",
    "retry_with_backoff",
    "with_retry",
    # Fallback
    "execute_with_fallbacks",
    "FallbackStrategy",
    # Metrics
    "record_circuit_breaker_state",
    "record_api_call",
    "record_api_failure",
    "record_retry",
    "record_fallback",
    "record_activity",
    "record_derived_failure",
]
