"""Retry policy for failed calculation jobs.

Exponential backoff with jitter:

    delay(n) = min(max_delay, base_delay * multiplier ** (n - 1)) + jitter(delay)

where ``n`` is the number of attempts made so far.
"""

import random
from collections.abc import Callable
from dataclasses import dataclass, field


def proportional_jitter(fraction: float, rng: random.Random | None = None) -> Callable[[float], float]:
    """Jitter drawn uniformly from [0, fraction * delay]."""
    source = rng or random.Random()

    def jitter(delay: float) -> float:
        return source.uniform(0, fraction * delay)

    return jitter


def no_jitter(delay: float) -> float:
    return 0.0


@dataclass
class RetryPolicy:
    """How often and how fast failed jobs come back."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    multiplier: float = 2.0
    jitter: Callable[[float], float] = field(default_factory=lambda: proportional_jitter(0.1))

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must not be negative")

    def should_retry(self, attempts: int) -> bool:
        """Whether a job that has failed ``attempts`` times may run again."""
        return attempts < self.max_attempts

    def base_delay_for(self, attempts: int) -> float:
        """Backoff delay without jitter."""
        exponent = max(attempts - 1, 0)
        return min(self.max_delay, self.base_delay * self.multiplier ** exponent)

    def delay(self, attempts: int) -> float:
        """Seconds to wait before the next attempt."""
        base = self.base_delay_for(attempts)
        return base + max(0.0, self.jitter(base))
