"""
Deadline-bounded sleeping for the polling loops.

All the waits (for readiness, for registration, for eviction, etc) are driven
by a wall-clock deadline computed once at the loop's entry. The loops do not
check the time themselves: they ask to sleep until the next attempt,
and stop when told that the deadline is reached.
"""
import asyncio
from typing import Optional


class Deadline:
    """
    A point in the event loop's time after which the waiting is over.

    A deadline with no timeout (``None``) never expires.
    """

    def __init__(self, timeout: Optional[float]) -> None:
        super().__init__()
        self.timeout = timeout
        self._loop = asyncio.get_running_loop()
        self._until = None if timeout is None else self._loop.time() + timeout

    def __repr__(self) -> str:
        return f'<{self.__class__.__name__}: remaining={self.remaining!r}>'

    @property
    def remaining(self) -> Optional[float]:
        return None if self._until is None else max(0.0, self._until - self._loop.time())

    @property
    def expired(self) -> bool:
        return self._until is not None and self._loop.time() >= self._until


async def sleep(
        delay: float,
        deadline: Optional[Deadline] = None,
) -> bool:
    """
    Sleep for the delay, but not beyond the deadline.

    Returns ``False`` if the deadline is already reached, so there is no time
    for another attempt; ``True`` if the sleep is over and the attempt can go.
    """
    if deadline is not None:
        remaining = deadline.remaining
        if remaining is not None and remaining <= 0:
            return False
        delay = delay if remaining is None else min(delay, remaining)
    await asyncio.sleep(delay)
    return True
