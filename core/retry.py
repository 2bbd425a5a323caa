"""
Retry Policy for Store Contention.

Exponential backoff with jitter, used by the atomic counter. Only
TransientStoreError is ever retried; the policy itself is pure data plus
the delay calculation.

Exports:
    RetryPolicy: Backoff parameters and delay calculation
"""

import random
from dataclasses import dataclass, field
from typing import Callable, Optional

from config import CounterConfig
from exceptions import InvalidArgumentError


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded exponential backoff.

    Delay before retry n (n = 1 after the first failure):
        min(base_delay * 2**(n-1), max_delay) + uniform(0, jitter)

    Attributes:
        max_attempts: Total attempts including the first
        base_delay: Delay before the first retry (seconds)
        max_delay: Cap on the exponential part (seconds)
        jitter: Upper bound of the uniform random addition (seconds)
        timeout: Optional wall-clock budget across all attempts (seconds)
    """

    max_attempts: int = 6
    base_delay: float = 0.01
    max_delay: float = 1.0
    jitter: float = 0.01
    timeout: Optional[float] = None
    rng: Callable[[float, float], float] = field(default=random.uniform, repr=False, compare=False)

    def __post_init__(self):
        if self.max_attempts < 1:
            raise InvalidArgumentError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0 or self.jitter < 0:
            raise InvalidArgumentError("retry delays must be non-negative")
        if self.timeout is not None and self.timeout <= 0:
            raise InvalidArgumentError("timeout must be positive")

    @classmethod
    def from_config(cls, config: CounterConfig, timeout: Optional[float] = None) -> "RetryPolicy":
        return cls(
            max_attempts=config.max_attempts,
            base_delay=config.base_delay_seconds,
            max_delay=config.max_delay_seconds,
            jitter=config.jitter_seconds,
            timeout=timeout,
        )

    def backoff(self, retry_number: int) -> float:
        """Exponential part of the delay for retry number retry_number (1-based)."""
        if retry_number < 1:
            return 0.0
        return min(self.base_delay * (2 ** (retry_number - 1)), self.max_delay)

    def delay(self, retry_number: int) -> float:
        """Full delay including jitter."""
        jitter = self.rng(0.0, self.jitter) if self.jitter > 0 else 0.0
        return self.backoff(retry_number) + jitter

    def with_timeout(self, timeout: Optional[float]) -> "RetryPolicy":
        """Copy of this policy with a different wall-clock budget."""
        return RetryPolicy(
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            jitter=self.jitter,
            timeout=timeout,
            rng=self.rng,
        )
