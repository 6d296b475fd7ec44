"""Prometheus metrics for the progress engine and its resilience patterns

Exposes counters for provider calls, circuit breakers, retries, fallbacks,
recorded activities and failed derived computations. The API server
publishes them on /metrics.
"""

import logging
from prometheus_client import Counter, Histogram, Enum

logger = logging.getLogger(__name__)

# Values: closed, open, half_open
circuit_breaker_state = Enum(
    'circuit_breaker_state',
    'Current state of circuit breaker',
    ['api'],
    states=['closed', 'open', 'half_open']
)

# Labels: api (gemini), status (success/failure)
api_calls_total = Counter(
    'api_calls_total',
    'Total number of response provider calls',
    ['api', 'status']
)

api_call_duration = Histogram(
    'api_call_duration_seconds',
    'Duration of response provider calls in seconds',
    ['api'],
    buckets=(0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, float('inf'))
)

# Labels: api, error_type (exception class name)
api_failures_total = Counter(
    'api_failures_total',
    'Total number of response provider failures',
    ['api', 'error_type']
)

# Labels: operation (retried function name)
retries_total = Counter(
    'retries_total',
    'Total number of retry attempts',
    ['operation']
)

# Labels: primary_api, fallback_strategy, status (success/failure)
fallback_executions_total = Counter(
    'fallback_executions_total',
    'Total number of fallback strategy executions',
    ['primary_api', 'fallback_strategy', 'status']
)

# Labels: activity_type
activities_recorded_total = Counter(
    'activities_recorded_total',
    'Activities appended to the activity log',
    ['activity_type']
)

# Labels: stage (fold/insight)
derived_failures_total = Counter(
    'derived_failures_total',
    'Report folds and insight writes that failed after the activity was logged',
    ['stage']
)


def record_circuit_breaker_state(api: str, state: str) -> None:
    try:
        circuit_breaker_state.labels(api=api).state(state)
        logger.debug(f"[METRICS] Circuit breaker {api} state: {state}")
    except Exception as e:
        logger.error(f"Failed to record circuit breaker state: {e}")


def record_api_call(api: str, success: bool, duration: float) -> None:
    """
    Record a provider call.

    Args:
        api: API name (gemini)
        success: Whether the call succeeded
        duration: Call duration in seconds
    """
    try:
        status = 'success' if success else 'failure'
        api_calls_total.labels(api=api, status=status).inc()
        api_call_duration.labels(api=api).observe(duration)
        logger.debug(f"[METRICS] API call {api}: {status}, duration: {duration:.2f}s")
    except Exception as e:
        logger.error(f"Failed to record API call metrics: {e}")


def record_api_failure(api: str, error_type: str) -> None:
    try:
        api_failures_total.labels(api=api, error_type=error_type).inc()
        logger.debug(f"[METRICS] API failure {api}: {error_type}")
    except Exception as e:
        logger.error(f"Failed to record API failure: {e}")


def record_retry(operation: str) -> None:
    try:
        retries_total.labels(operation=operation).inc()
        logger.debug(f"[METRICS] Retry attempt for {operation}")
    except Exception as e:
        logger.error(f"Failed to record retry: {e}")


def record_fallback(primary_api: str, fallback_strategy: str, success: bool) -> None:
    """
    Record fallback strategy execution.

    Args:
        primary_api: Strategy that failed first
        fallback_strategy: Fallback strategy used
        success: Whether the fallback succeeded
    """
    try:
        status = 'success' if success else 'failure'
        fallback_executions_total.labels(
            primary_api=primary_api,
            fallback_strategy=fallback_strategy,
            status=status
        ).inc()
        logger.debug(
            f"[METRICS] Fallback {primary_api} -> {fallback_strategy}: {status}"
        )
    except Exception as e:
        logger.error(f"Failed to record fallback: {e}")


def record_activity(activity_type: str) -> None:
    try:
        activities_recorded_total.labels(activity_type=activity_type).inc()
    except Exception as e:
        logger.error(f"Failed to record activity metric: {e}")


def record_derived_failure(stage: str) -> None:
    try:
        derived_failures_total.labels(stage=stage).inc()
    except Exception as e:
        logger.error(f"Failed to record derived failure: {e}")
