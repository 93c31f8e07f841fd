"""
Exponential backoff for retrying channel sends.

Used by the rate-limited dispatcher between attempts to the same channel.
"""

import random


class ExponentialBackoff:
    """
    Exponential backoff with jitter and an optional attempt budget.

    Delay for attempt n is min(base * multiplier^n, max_delay), then
    jittered by +/- jitter_range of itself. ``reset()`` after a success.

    Usage:
        backoff = ExponentialBackoff(base_delay=1.0, max_delay=30.0, max_attempts=3)
        while True:
            result = await adapter.send(config, payload)
            if result.success or backoff.exhausted:
                break
            await asyncio.sleep(backoff.next_delay())
    """

    def __init__(
        self,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        multiplier: float = 2.0,
        jitter_range: float = 0.5,
        max_attempts: int | None = None,
    ):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.multiplier = multiplier
        self.jitter_range = jitter_range
        self.max_attempts = max_attempts
        self._attempt = 0

    @property
    def attempt(self) -> int:
        """Retries handed out so far."""
        return self._attempt

    @property
    def exhausted(self) -> bool:
        """True once ``max_attempts`` retries have been handed out."""
        return self.max_attempts is not None and self._attempt >= self.max_attempts

    def next_delay(self) -> float:
        """Return the delay before the next retry and advance the counter."""
        delay = min(
            self.base_delay * (self.multiplier ** self._attempt),
            self.max_delay,
        )
        if self.jitter_range:
            delay += delay * random.uniform(-self.jitter_range, self.jitter_range)
        self._attempt += 1
        return max(0.0, delay)

    def reset(self) -> None:
        self._attempt = 0
