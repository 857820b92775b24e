import asyncio
import time
from typing import Callable, Optional

from .errors import DeadlineExceededError


class Deadline:
    """Request-wide cancellation token.

    Every blocking step (preflight, generation, backoff) takes the same
    deadline and calls :meth:`check` right before it blocks.
    """

    def __init__(self, expires_at: float, clock: Callable[[], float] = time.monotonic):
        self._expires_at = expires_at
        self._clock = clock

    @classmethod
    def after(cls, seconds: float, clock: Callable[[], float] = time.monotonic) -> "Deadline":
        return cls(clock() + seconds, clock=clock)

    def remaining(self) -> float:
        return max(0.0, self._expires_at - self._clock())

    def expired(self) -> bool:
        return self._clock() >= self._expires_at

    def check(self, stage: str = "") -> None:
        if self.expired():
            raise DeadlineExceededError(stage)

    def bound(self, timeout: Optional[float]) -> float:
        """Clamp a per-call timeout so it never outlives the deadline."""
        remaining = self.remaining()
        if timeout is None:
            return remaining
        return min(timeout, remaining)

    async def sleep(self, delay: float, stage: str = "backoff") -> None:
        self.check(stage)
        remaining = self.remaining()
        if delay < remaining:
            await asyncio.sleep(delay)
            return
        await asyncio.sleep(remaining)
        raise DeadlineExceededError(stage)
