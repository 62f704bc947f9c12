"""Async utilities for bridging blocking HTTP calls to asyncio callers."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Iterable, Sequence, TypeVar

T = TypeVar("T")
logger = logging.getLogger(__name__)


async def run_sync(
    func: Callable[..., T], *args: Any, **kwargs: Any
) -> T:
    """Run a synchronous function in a thread pool without blocking the event loop.

    Used to wrap blocking ``requests`` calls made by ``TrackerClient``.

    Example:
        issue = await run_sync(client.get_issue, 42)
    """
    return await asyncio.to_thread(func, *args, **kwargs)


class RequestLimiter:
    """Bound the number of blocking calls in flight at once.

    One limiter is created per service instance; nothing is shared at
    module level.

    Args:
        max_parallel: Maximum concurrent calls (>= 1).
    """

    def __init__(self, max_parallel: int = 5) -> None:
        if max_parallel < 1:
            raise ValueError("max_parallel must be >= 1")
        self.max_parallel = max_parallel
        self._semaphore: asyncio.Semaphore | None = None

    def _get_semaphore(self) -> asyncio.Semaphore:
        # Created lazily so the limiter can be built outside a running loop
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.max_parallel)
        return self._semaphore

    async def run(
        self, func: Callable[..., T], *args: Any, **kwargs: Any
    ) -> T:
        """Like ``run_sync`` but waits for a free slot first."""
        async with self._get_semaphore():
            return await asyncio.to_thread(func, *args, **kwargs)


async def gather_limited(
    coros: Sequence[Awaitable[T]],
) -> list[T]:
    """Run awaitables concurrently and return results in input order.

    Each awaitable should go through a ``RequestLimiter`` internally.
    Exceptions propagate from the first failure.
    """
    return list(await asyncio.gather(*coros))


def batched(items: Iterable[T], size: int) -> list[list[T]]:
    """Split *items* into consecutive chunks of at most *size* elements."""
    if size < 1:
        raise ValueError("size must be >= 1")
    chunk: list[T] = []
    chunks: list[list[T]] = []
    for item in items:
        chunk.append(item)
        if len(chunk) == size:
            chunks.append(chunk)
            chunk = []
    if chunk:
        chunks.append(chunk)
    return chunks
