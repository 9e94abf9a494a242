"""
Bounded retries of the operations failing with the retryable errors.

The retry loops are not hand-written in every place where they are needed.
Instead, a policy (how many times, how long to sleep in between) and
a classifier (which errors are retryable) are given to :func:`retry`.
The classifiers are pure functions of the error, and can be tested alone.
"""
import asyncio
import dataclasses
import random
from typing import Awaitable, Callable, Tuple, TypeVar

from konverge import typedefs

_T = TypeVar('_T')

Classifier = Callable[[BaseException], bool]


@dataclasses.dataclass(frozen=True)
class RetryPolicy:
    """
    How many times to retry, and how long to sleep before each retry.

    The sleeps are uniformly random within the backoff range, so that
    the concurrent writers to the same object do not retry in lockstep.
    """
    retries: int = 3
    backoff: Tuple[float, float] = (0, 5)

    def delay(self) -> float:
        low, high = self.backoff
        return random.uniform(low, high)


async def retry(
        fn: Callable[[], Awaitable[_T]],
        *,
        policy: RetryPolicy,
        retryable: Classifier,
        logger: typedefs.Logger,
        what: str = "operation",
) -> _T:
    """
    Call the function until it succeeds or fails with a non-retryable error.

    The function is called at most ``policy.retries + 1`` times in total.
    When the retries are exhausted, the last error is re-raised as is.
    """
    attempt = 0
    while True:
        try:
            return await fn()
        except Exception as e:
            if not retryable(e) or attempt >= policy.retries:
                raise
            attempt += 1
            delay = policy.delay()
            logger.info(f"Potential race condition detected in {what}; "
                        f"retry #{attempt}/{policy.retries} in {delay:.3f} seconds: {e}")
            await asyncio.sleep(delay)
