"""Bounded sliding-window worker pool."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from typing import TypeVar

T = TypeVar("T")
R = TypeVar("R")


async def bounded_map(
    concurrency: int,
    items: Iterable[T],
    fn: Callable[[T, int], Awaitable[R]],
) -> list[R]:
    """Run ``fn(item, index)`` over ``items`` with at most ``concurrency`` in flight.

    Admission is a sliding window: as soon as one task finishes the next
    queued item starts, rather than waiting for a whole batch. Results are
    returned in input order regardless of completion order.

    On the first failure no further items are admitted, tasks still in
    flight are cancelled, and that first error is raised unchanged.

    Args:
        concurrency: Maximum number of concurrently running tasks (>= 1).
        items: The inputs.
        fn: Coroutine function called with each item and its index.

    Returns:
        The results, index-aligned with ``items``.
    """
    if concurrency < 1:
        raise ValueError("concurrency must be at least 1")

    queue = list(enumerate(items))
    results: list[R | None] = [None] * len(queue)
    if not queue:
        return []

    pending = iter(queue)

    async def worker() -> None:
        for index, item in pending:
            results[index] = await fn(item, index)

    workers = [asyncio.create_task(worker()) for _ in range(min(concurrency, len(queue)))]
    try:
        await asyncio.wait(workers, return_when=asyncio.FIRST_EXCEPTION)
        for task in workers:
            if task.done() and task.exception() is not None:
                raise task.exception()
    finally:
        for task in workers:
            if not task.done():
                task.cancel()
        await asyncio.gather(*workers, return_exceptions=True)

    return results  # type: ignore[return-value]
