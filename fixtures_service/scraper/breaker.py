"""
Circuit breaker guarding the origin site.

Renders share one pybreaker.CircuitBreaker per process. After fail_max
consecutive failed renders the breaker opens and further renders fail fast;
once reset_timeout has passed a trial render is let through, and its outcome
closes or reopens the breaker.
"""
import logging
from enum import Enum
from typing import Any, Dict

import pybreaker
from pybreaker import CircuitBreaker, CircuitBreakerListener

logger = logging.getLogger("scraper.breaker")

FAIL_MAX = 5
RESET_TIMEOUT = 60.0


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = pybreaker.STATE_CLOSED
    OPEN = pybreaker.STATE_OPEN
    HALF_OPEN = pybreaker.STATE_HALF_OPEN


class RenderBreakerListener(CircuitBreakerListener):
    """Logs breaker transitions and failed renders."""

    def failure(self, cb: CircuitBreaker, exc: BaseException) -> None:
        logger.warning(
            f"CircuitBreaker '{cb.name}' render failed with {type(exc).__name__}. "
            f"Failures: {cb.fail_counter}/{cb.fail_max}"
        )

    def state_change(self, cb: CircuitBreaker, old_state: Any, new_state: Any) -> None:
        state = new_state.name if new_state is not None else None
        if state == pybreaker.STATE_OPEN:
            logger.error(
                f"CircuitBreaker '{cb.name}' OPENED! Renders will be rejected "
                f"for {cb.reset_timeout}s"
            )
        elif state == pybreaker.STATE_HALF_OPEN:
            logger.warning(f"CircuitBreaker '{cb.name}' HALF-OPEN. Allowing a trial render.")
        elif state == pybreaker.STATE_CLOSED:
            logger.info(f"CircuitBreaker '{cb.name}' CLOSED. Renders are allowed.")


def create_render_breaker(
    fail_max: int = FAIL_MAX,
    reset_timeout: float = RESET_TIMEOUT,
    name: str = "render",
) -> CircuitBreaker:
    """
    Create the breaker shared by all renders.

    Args:
        fail_max: Consecutive failed renders before the breaker opens
        reset_timeout: Seconds to stay open before allowing a trial render
        name: Breaker name used in log lines

    Returns:
        Configured circuit breaker
    """
    return CircuitBreaker(
        fail_max=fail_max,
        reset_timeout=reset_timeout,
        listeners=[RenderBreakerListener()],
        name=name,
    )


def get_state(breaker: CircuitBreaker) -> CircuitState:
    return CircuitState(breaker.current_state)


def get_breaker_stats(breaker: CircuitBreaker) -> Dict[str, Any]:
    """Get breaker statistics."""
    return {
        "name": breaker.name,
        "state": breaker.current_state,
        "fail_count": breaker.fail_counter,
        "fail_max": breaker.fail_max,
        "reset_timeout": breaker.reset_timeout,
    }
