"""
Bounded retry state for webhook deliveries.

The state is a plain attempt counter plus the delay before the next
attempt; callers decide how to wait.
"""

import random
from dataclasses import dataclass, field


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry limits shared by every delivery.

    Attributes
    ----------
    max_attempts : int
        Total attempts per item, including the first one.
    base_delay : float
        Delay in seconds before the first retry.
    max_delay : float
        Upper bound for any single delay.
    jitter : bool
        Randomize delays between zero and the computed value.
    """

    max_attempts: int = 5
    base_delay: float = 1.0
    max_delay: float = 60.0
    jitter: bool = True

    def start(self) -> "RetryState":
        """Return a fresh state for one item."""
        return RetryState(policy=self)


@dataclass
class RetryState:
    """
    Progress of the attempts for a single item.

    Attributes
    ----------
    policy : RetryPolicy
        Limits being applied.
    attempt : int
        Attempts made so far.
    """

    policy: RetryPolicy
    attempt: int = 0
    _rng: random.Random = field(default_factory=random.Random, repr=False)

    @property
    def exhausted(self) -> bool:
        """True once no attempts are left."""
        return self.attempt >= self.policy.max_attempts

    def record_attempt(self) -> int:
        """Count an attempt and return its 1-based number."""
        self.attempt += 1
        return self.attempt

    def next_delay(self, requested: float | None = None) -> float:
        """
        Delay before the next attempt.

        Exponential in the number of attempts made, capped at
        ``max_delay``. A delay requested by the server (Retry-After)
        replaces the computed one, still capped.

        Parameters
        ----------
        requested : float | None
            Server-requested delay in seconds.

        Returns
        -------
        float
            Seconds to wait.
        """
        if requested is not None:
            return min(max(requested, 0.0), self.policy.max_delay)

        exponent = min(max(self.attempt - 1, 0), 32)
        delay = min(self.policy.base_delay * (2**exponent), self.policy.max_delay)
        if self.policy.jitter:
            delay = self._rng.uniform(0, delay)
        return delay
