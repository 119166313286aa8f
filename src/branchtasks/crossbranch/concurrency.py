"""Bounded concurrency for gateway calls."""

import asyncio
from typing import Awaitable, Callable, Iterable, List, TypeVar, Union

T = TypeVar("T")
R = TypeVar("R")


async def gather_bounded(
    limit: int,
    items: Iterable[T],
    worker: Callable[[T], Awaitable[R]],
) -> List[Union[R, BaseException]]:
    """Run ``worker`` over items with at most ``limit`` calls in flight.

    Exceptions are returned in place of results so one failing item never
    cancels the others.

    Args:
        limit: Maximum number of concurrent calls (at least 1)
        items: Inputs
        worker: Coroutine function applied to each input

    Returns:
        Results (or exceptions) in input order
    """
    semaphore = asyncio.Semaphore(max(1, limit))

    async def run(item: T) -> R:
        async with semaphore:
            return await worker(item)

    return await asyncio.gather(*(run(item) for item in items), return_exceptions=True)
