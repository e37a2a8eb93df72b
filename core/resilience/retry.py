"""
Retry Budget and Backoff

The dispatch engine retries a failed delivery with a fresh instance
selection on every attempt, so the loop itself lives in the engine.
This module supplies the budget and the delay between attempts.

Features:
- Configurable attempt budget
- Exponential backoff with jitter, or immediate retry (base_delay=0)

Usage:
    policy = RetryPolicy(max_attempts=3, base_delay=0.2)
    for attempt in policy.attempts():
        ...
        await policy.sleep(attempt)
"""

import asyncio
import random
from typing import Callable, Iterator
from core.logging.logger import get_logger

logger = get_logger(__name__)


def exponential_backoff(attempt: int, base_delay: float = 1.0, max_delay: float = 60.0) -> float:
    """
    Calculate exponential backoff delay.

    Args:
        attempt: Current attempt number (0-indexed)
        base_delay: Base delay in seconds
        max_delay: Maximum delay cap

    Returns:
        Delay in seconds (1s, 2s, 4s, 8s, 16s, ...)
    """
    delay = min(base_delay * (2 ** attempt), max_delay)
    return delay


def exponential_with_jitter(attempt: int, base_delay: float = 1.0, max_delay: float = 60.0) -> float:
    """
    Calculate exponential backoff with ±25% jitter.

    Jitter prevents thundering herd where all clients retry simultaneously.
    """
    delay = exponential_backoff(attempt, base_delay, max_delay)
    jitter = delay * 0.25 * (2 * random.random() - 1)
    return max(0, delay + jitter)


class RetryPolicy:
    """Attempt budget plus the pause between attempts"""

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 0.0,
        max_delay: float = 10.0,
        backoff: Callable[[int, float, float], float] = exponential_with_jitter
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.backoff = backoff

    def attempts(self) -> Iterator[int]:
        """Yield 1-indexed attempt numbers"""
        return iter(range(1, self.max_attempts + 1))

    def get_delay(self, attempt: int) -> float:
        """Delay after the given (1-indexed) failed attempt"""
        if self.base_delay <= 0:
            return 0.0
        return self.backoff(attempt - 1, self.base_delay, self.max_delay)

    async def sleep(self, attempt: int) -> None:
        delay = self.get_delay(attempt)
        if delay > 0:
            logger.debug("Backing off before retry", attempt=attempt, delay=round(delay, 3))
            await asyncio.sleep(delay)
