"""Asyncio helpers shared by the uploader, orchestrator and verifier."""

import asyncio
from typing import Awaitable, Iterable, List


async def cancel_and_wait(tasks: Iterable[asyncio.Future]) -> None:
    """Cancel tasks and wait until every one has finished unwinding."""
    tasks = list(tasks)
    for task in tasks:
        if not task.done():
            task.cancel()
    if tasks:
        await asyncio.gather(*tasks, return_exceptions=True)


async def gather_or_cancel(aws: Iterable[Awaitable]) -> List:
    """
    Run awaitables concurrently; on the first failure cancel the rest.

    Unlike plain asyncio.gather, siblings never keep running (and keep
    sending bytes) after one of them has failed.

    Returns:
        Results in input order

    Raises:
        The first exception raised by any awaitable
    """
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        await cancel_and_wait(tasks)
        raise
