"""
Retry with Exponential Backoff.

RetryPolicy holds the immutable knobs; `calculate_backoff` turns an attempt
number into a delay. The client drives the loop itself so that the decision
(retry or stop) and the sleep stay injectable in tests.
"""

import random
from dataclasses import dataclass
from typing import Optional

DEFAULT_MAX_ATTEMPTS = 6  # 1 attempt + 5 retries
DEFAULT_BASE_DELAY = 0.5  # seconds
DEFAULT_BACKOFF_FACTOR = 2.0
DEFAULT_MAX_DELAY = 30.0  # seconds
DEFAULT_JITTER_LOW = 0.8
DEFAULT_JITTER_HIGH = 1.2


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    base_delay: float = DEFAULT_BASE_DELAY
    factor: float = DEFAULT_BACKOFF_FACTOR
    max_delay: float = DEFAULT_MAX_DELAY
    jitter_low: float = DEFAULT_JITTER_LOW
    jitter_high: float = DEFAULT_JITTER_HIGH

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.jitter_high < self.jitter_low:
            raise ValueError("jitter_high must be >= jitter_low")

    def jitter(self, rng: Optional[random.Random] = None) -> float:
        rng = rng or random
        return rng.uniform(self.jitter_low, self.jitter_high)


DEFAULT_RETRY_POLICY = RetryPolicy()


def calculate_backoff(
    attempt: int,
    policy: RetryPolicy = DEFAULT_RETRY_POLICY,
    jitter: Optional[float] = None,
    retry_after: Optional[float] = None,
    rng: Optional[random.Random] = None,
) -> float:
    """
    Calculate the delay before the next attempt.

    Args:
        attempt: Attempt that just failed (0-indexed)
        policy: Retry policy
        jitter: Jitter multiplier; drawn from the policy band when omitted
        retry_after: Server-specified delay; used verbatim when positive
        rng: Optional Random instance for deterministic testing

    Returns:
        Delay in seconds
    """
    if retry_after is not None and retry_after > 0:
        return float(retry_after)

    if jitter is None:
        jitter = policy.jitter(rng)
    delay = policy.base_delay * (policy.factor**attempt) * jitter
    return max(0.0, min(delay, policy.max_delay))
