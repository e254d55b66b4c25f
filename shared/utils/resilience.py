"""
shared/utils/resilience.py
Circuit breakers for downstream services (pybreaker).
"""

import logging

from pybreaker import CircuitBreaker, CircuitBreakerListener

from config.settings import settings

logger = logging.getLogger(__name__)


class BreakerLogListener(CircuitBreakerListener):
    """Logs every breaker state change so an open circuit shows up in alerts."""

    def state_change(self, cb, old_state, new_state):
        old_name = old_state.name if old_state else None
        logger.warning(
            f"Circuit breaker '{cb.name}' changed state: {old_name} -> {new_state.name}"
        )


class CircuitBreakerManager:
    """Manages circuit breakers for each downstream service."""

    def __init__(self, fail_max: int, reset_timeout: int):
        self.fail_max = fail_max
        self.reset_timeout = reset_timeout
        self.breakers = {}

    def get_breaker(self, service_name: str) -> CircuitBreaker:
        """Get or create a circuit breaker for a service."""
        if service_name not in self.breakers:
            self.breakers[service_name] = CircuitBreaker(
                fail_max=self.fail_max,
                reset_timeout=self.reset_timeout,
                listeners=[BreakerLogListener()],
                name=service_name,
            )
        return self.breakers[service_name]


circuit_breaker_manager = CircuitBreakerManager(
    fail_max=settings.GATEWAY_BREAKER_FAIL_MAX,
    reset_timeout=settings.GATEWAY_BREAKER_RESET_SECONDS,
)
