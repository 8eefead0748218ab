"""Resilience Patterns

Fault tolerance for calls to external collaborators:
- Circuit breakers that fail fast while a collaborator is down
- Timeouts for individual calls
"""
from .circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitState,
    CircuitStats,
)

from .timeout import TimeoutPolicy

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerRegistry",
    "CircuitState",
    "CircuitStats",
    "TimeoutPolicy",
]
