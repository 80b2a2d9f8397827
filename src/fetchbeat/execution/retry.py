"""Retry strategies.

Used by the retry-on-conflict save to space out attempts after a lost
version race. Jitter is additive only (``uniform(0, jitter_range * delay)``),
so a retry never fires earlier than the base exponential schedule.
"""

from __future__ import annotations

import random
from abc import ABC, abstractmethod
from dataclasses import dataclass, field


class RetryStrategy(ABC):
    """Abstract base for retry strategies."""

    @abstractmethod
    def next_delay(self, attempt: int) -> float:
        """Calculate delay before next retry attempt.

        Args:
            attempt: Zero-based attempt number (0 = first retry)

        Returns:
            Delay in seconds before next attempt
        """
        ...


@dataclass
class ExponentialBackoff(RetryStrategy):
    """Exponential backoff with additive jitter.

    Delay = min(base_delay * multiplier ** attempt, max_delay) + uniform(0, jitter_range * that)

    Attributes:
        base_delay: Initial delay in seconds
        max_delay: Maximum delay cap in seconds (before jitter)
        multiplier: Exponential multiplier (default: 2)
        jitter: Add randomness so concurrent writers spread out
        jitter_range: Jitter upper bound as fraction of the delay
    """

    base_delay: float = 0.1
    max_delay: float = 30.0
    multiplier: float = 2.0
    jitter: bool = True
    jitter_range: float = 0.5
    rng: random.Random = field(default_factory=random.Random, repr=False)

    def next_delay(self, attempt: int) -> float:
        delay = min(self.base_delay * (self.multiplier ** attempt), self.max_delay)
        if self.jitter and delay > 0:
            delay += self.rng.uniform(0, delay * self.jitter_range)
        return delay


__all__ = ["ExponentialBackoff", "RetryStrategy"]
