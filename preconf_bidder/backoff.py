import asyncio
import dataclasses
import logging

from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from .exceptions import RetryExhaustedError, StopRequestedError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class Backoff_Policy:
    """
    Retry policy shared by every reconnect path.

    :param max_attempts: Attempts before giving up, ``None`` retries forever.
    :param base_delay: Seconds to wait after the first failure.
    :param multiplier: Growth factor per attempt, ``1.0`` gives a fixed delay.
    :param sleep: Awaitable sleep, replaced in tests.
    """
    max_attempts: Optional[int]
    base_delay: float
    multiplier: float = 1.0
    sleep: Sleep = asyncio.sleep

    def __post_init__(self) -> None:
        if self.max_attempts is not None and self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1 or None")

    def delay(self, attempt: int) -> float:
        """Seconds to wait after the failure of ``attempt`` (0-indexed)."""
        return self.base_delay * self.multiplier ** attempt

    def with_sleep(self, sleep: Sleep) -> "Backoff_Policy":
        return dataclasses.replace(self, sleep=sleep)

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        description: str,
        stop_event: Optional[asyncio.Event] = None,
    ) -> T:
        """
        Await ``operation`` until it succeeds or the attempts run out.

        No sleep follows the final failed attempt. Each attempt and each sleep
        is abandoned as soon as ``stop_event`` is set.

        :return: The first successful result.
        :raises StopRequestedError: When ``stop_event`` is set before a result arrives.
        """
        attempt = 0
        limit = self.max_attempts if self.max_attempts is not None else "∞"
        while True:
            try:
                return await _until_stopped(operation, stop_event, description)
            except StopRequestedError:
                raise
            except Exception as e:
                if self.max_attempts is not None and attempt + 1 >= self.max_attempts:
                    logger.warning(f"{description} attempt {attempt + 1}/{limit} failed: {e} ❌")
                    raise RetryExhaustedError(description, attempt + 1, e) from e
                wait = self.delay(attempt)
                logger.warning(
                    f"{description} attempt {attempt + 1}/{limit} failed: {e}. Retrying in {wait:.1f}s... ⏳"
                )
                await _until_stopped(lambda: self.sleep(wait), stop_event, description)
                attempt += 1


async def _until_stopped(
    operation: Callable[[], Awaitable[T]],
    stop_event: Optional[asyncio.Event],
    description: str,
) -> T:
    """Await ``operation`` unless ``stop_event`` is set first."""
    if stop_event is None:
        return await operation()
    if stop_event.is_set():
        raise StopRequestedError(f"{description} abandoned, stop requested")
    task = asyncio.ensure_future(operation())
    stop_task = asyncio.ensure_future(stop_event.wait())
    try:
        done, _ = await asyncio.wait({task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for pending in (task, stop_task):
            if not pending.done():
                pending.cancel()
    if task in done:
        return task.result()
    # Let the cancelled attempt release what it opened
    await asyncio.wait({task})
    raise StopRequestedError(f"{description} abandoned, stop requested")


# Direct query connection: 10s, 20s, 40s, 80s between five attempts
QUERY_CONNECT_POLICY = Backoff_Policy(max_attempts=5, base_delay=10.0, multiplier=2.0)
# Subscription-capable connection: never gives up
SUBSCRIBABLE_CONNECT_POLICY = Backoff_Policy(max_attempts=None, base_delay=10.0)
RESUBSCRIBE_POLICY = Backoff_Policy(max_attempts=10, base_delay=5.0)
