"""
Exponential backoff with jitter for publish retries.
"""
import random
from typing import Optional


class ExponentialBackoff:
    """
    Delay generator: initial * multiplier**attempt, jittered, capped.

    Attributes:
        attempts: Consecutive failures since the last reset()
    """

    def __init__(
        self,
        initial: float,
        maximum: float,
        multiplier: float = 2.0,
        jitter: float = 0.1,
        rng: Optional[random.Random] = None,
    ):
        if initial <= 0 or maximum < initial:
            raise ValueError("Backoff needs 0 < initial <= maximum")
        if not 0 <= jitter < 1:
            raise ValueError("jitter must be in [0, 1)")

        self.initial = initial
        self.maximum = maximum
        self.multiplier = multiplier
        self.jitter = jitter
        self.attempts = 0
        self._rng = rng or random.Random()

    def next_delay(self, minimum: Optional[float] = None) -> float:
        """
        Delay before the next attempt.

        Args:
            minimum: Lower bound requested by the server (Retry-After)

        Returns:
            Delay in seconds, never above `maximum`
        """
        # exponent capped to keep the float finite during long outages
        base = self.initial * (self.multiplier ** min(self.attempts, 64))
        self.attempts += 1

        if self.jitter:
            base *= 1 + self._rng.uniform(-self.jitter, self.jitter)
        if minimum is not None:
            base = max(base, minimum)
        return min(base, self.maximum)

    def reset(self) -> None:
        self.attempts = 0
