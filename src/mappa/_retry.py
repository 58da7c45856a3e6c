import random
from dataclasses import dataclass


def backoff(attempt: int, base_delay: float, max_delay: float) -> float:
    """Exponential delay for a 1-based attempt: ``base * 2**(attempt-1)``, capped."""
    return min(base_delay * 2 ** max(0, attempt - 1), max_delay)


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Backoff between transport retry attempts.

    Each delay is randomized by ``±jitter`` (a fraction) so that clients
    that failed together do not retry together.
    """

    base_delay: float = 0.5
    max_delay: float = 4.0
    jitter: float = 0.2

    def delay(self, attempt: int) -> float:
        base = backoff(attempt, self.base_delay, self.max_delay)
        return base * random.uniform(1 - self.jitter, 1 + self.jitter)


@dataclass(frozen=True, slots=True)
class ReconnectPolicy:
    """Reconnect budget and backoff for job event streams.

    Jitter only lengthens the delay, by up to ``jitter`` (a fraction).
    """

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    jitter: float = 0.5

    def delay(self, attempt: int) -> float:
        base = backoff(attempt, self.base_delay, self.max_delay)
        return base + base * self.jitter * random.random()
