"""Helpers for running store queries concurrently."""

import asyncio
from typing import Any, Awaitable, List


async def gather_or_cancel(*aws: Awaitable[Any]) -> List[Any]:
    """
    Await all awaitables concurrently, in order.

    On the first failure (or when the caller is cancelled) every sibling that
    is still running is cancelled and awaited before the error propagates, so
    no query outlives the request that issued it.
    """
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
