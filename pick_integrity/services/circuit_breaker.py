"""
Circuit breaker for the sports data provider.

Uses pybreaker. When the provider keeps failing the breaker opens and calls
fail fast with CircuitBreakerError instead of stalling the grading job on
timeouts.

Circuit Breaker States:
- CLOSED: Requests pass through normally
- OPEN: Requests fail immediately (after fail_max failures)
- HALF_OPEN: One request allowed to test if service has recovered
"""
import asyncio
from functools import wraps
from typing import Callable

from pybreaker import CircuitBreaker, CircuitBreakerError, CircuitBreakerListener

from pick_integrity.core.logging import get_logger
from pick_integrity.core.metrics import circuit_breaker_state

logger = get_logger(__name__)

DEFAULT_FAIL_MAX = 5  # Number of failures before opening circuit
DEFAULT_RESET_TIMEOUT = 60  # Seconds before attempting to close circuit

_STATE_VALUES = {"closed": 0, "open": 1, "half-open": 2, "half_open": 2}


class _StateGaugeListener(CircuitBreakerListener):
    """Mirror breaker state changes into the circuit_breaker_state gauge."""

    def state_change(self, cb, old_state, new_state):
        name = new_state.name if new_state else "closed"
        circuit_breaker_state.labels(service=cb.name).set(_STATE_VALUES.get(name, 0))
        logger.warning(f"Circuit breaker '{cb.name}' changed to {name}")


sports_api_breaker = CircuitBreaker(
    fail_max=DEFAULT_FAIL_MAX,
    reset_timeout=DEFAULT_RESET_TIMEOUT,
    name="sports_api",
    listeners=[_StateGaugeListener()],
)


def get_all_breaker_states() -> dict[str, str]:
    """Current state of every breaker, keyed by breaker name."""
    return {sports_api_breaker.name: sports_api_breaker.current_state}


def with_circuit_breaker(breaker: CircuitBreaker):
    """
    Decorator to wrap an async function with circuit breaker protection.

    While the circuit is open the call fails fast with CircuitBreakerError,
    so callers report the outage instead of mistaking it for missing data.

    Args:
        breaker: The circuit breaker to use

    Example:
        @with_circuit_breaker(sports_api_breaker)
        async def fetch_game():
            ...
    """

    def decorator(func: Callable) -> Callable:
        if not asyncio.iscoroutinefunction(func):
            raise TypeError(f"{func.__name__} must be a coroutine function")

        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            try:
                return await breaker.call_async(func, *args, **kwargs)
            except CircuitBreakerError:
                logger.warning(f"Circuit breaker '{breaker.name}' is OPEN - failing fast for {func.__name__}")
                raise

        return async_wrapper

    return decorator


def sports_api_protected():
    """Decorator for sports data provider calls."""
    return with_circuit_breaker(sports_api_breaker)
