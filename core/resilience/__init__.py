"""
Resilience Patterns

Circuit breaking and retry budgets for broker deliveries.
"""

from core.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitState
)
from core.resilience.retry import (
    RetryPolicy,
    exponential_backoff,
    exponential_with_jitter
)

__all__ = [
    "CircuitBreaker",
    "CircuitState",
    "RetryPolicy",
    "exponential_backoff",
    "exponential_with_jitter"
]
