"""Bounded fan-out for async calls."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Iterable, TypeVar

_T = TypeVar("_T")


async def gather_bounded(awaitables: Iterable[Awaitable[_T]], limit: int) -> list[_T]:
    """Await *awaitables* with at most *limit* running at once; results keep input order.

    The first exception cancels every call that has not finished yet and is
    then re-raised.

    Parameters
    ----------
    awaitables:
        Coroutines or futures to run.
    limit:
        Maximum concurrently running awaitables (values below 1 mean 1).

    Raises
    ------
    BaseException
        Whatever the first failing awaitable raised.
    """
    slots = asyncio.Semaphore(max(1, limit))

    async def _run(awaitable: Awaitable[_T]) -> _T:
        async with slots:
            return await awaitable

    tasks = [asyncio.ensure_future(_run(a)) for a in awaitables]
    if not tasks:
        return []
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
