"""Fallback strategies

Tries strategies in priority order until one succeeds. The conversation
service uses it to degrade to a fixed reply when the response provider
is unavailable, so the turn is still recorded.
"""

import logging
from typing import Any, Callable, List, TypeVar
from dataclasses import dataclass

logger = logging.getLogger(__name__)

T = TypeVar('T')


@dataclass
class FallbackStrategy:
    """
    A fallback strategy with priority ordering.

    Attributes:
        name: Human-readable name for logging
        handler: Async callable that implements the strategy
        priority: Priority level (lower = higher priority, 1 = primary)
    """
    name: str
    handler: Callable[..., Any]
    priority: int


def _record(primary: str, strategy: FallbackStrategy, success: bool) -> None:
    if strategy.priority <= 1:
        return
    try:
        from src.resilience.metrics import record_fallback
        record_fallback(primary, strategy.name, success=success)
    except Exception as e:
        logger.debug(f"Failed to record fallback metric: {e}")


async def execute_with_fallbacks(
    strategies: List[FallbackStrategy],
    *args: Any,
    **kwargs: Any
) -> Any:
    """
    Execute strategies in priority order until one succeeds.

    Args:
        strategies: List of FallbackStrategy to try
        *args, **kwargs: Arguments to pass to each strategy handler

    Returns:
        Result from first successful strategy

    Raises:
        Last exception if all strategies fail

    Example:
        strategies = [
            FallbackStrategy("gemini", generate_reply, priority=1),
            FallbackStrategy("fixed_reply", fixed_reply, priority=2),
        ]
        reply = await execute_with_fallbacks(strategies, message, context)
    """
    if not strategies:
        raise ValueError("At least one fallback strategy is required")

    sorted_strategies = sorted(strategies, key=lambda s: s.priority)
    primary = sorted_strategies[0].name
    last_exception = None

    for strategy in sorted_strategies:
        try:
            logger.debug(f"[FALLBACK] Trying strategy: {strategy.name}")
            result = await strategy.handler(*args, **kwargs)
        except Exception as e:
            logger.warning(
                f"[FALLBACK] Strategy '{strategy.name}' failed: "
                f"{type(e).__name__}: {e}"
            )
            last_exception = e
            _record(primary, strategy, success=False)
            continue

        if strategy.priority > 1:
            logger.info(f"[FALLBACK] Strategy '{strategy.name}' succeeded")
        _record(primary, strategy, success=True)
        return result

    logger.error(
        f"[FALLBACK] All {len(sorted_strategies)} fallback strategies exhausted"
    )
    raise last_exception
