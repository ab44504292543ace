from __future__ import annotations

import asyncio
from collections.abc import Awaitable


class Stopped(Exception):
    """Raised by wait_until_stopped when the stop event wins the race."""


async def wait_until_stopped[T](coro: Awaitable[T], stop_event: asyncio.Event) -> T:
    """Wait for the given coroutine to complete, unless the stop_event is set first.

    When the event wins, the coroutine is cancelled and Stopped is raised. A result
    that is ready at the same time as the event is still returned.
    """
    fut = asyncio.ensure_future(coro)
    waiter = asyncio.ensure_future(stop_event.wait())
    try:
        await asyncio.wait({fut, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()
        if not fut.done():
            fut.cancel()
    if fut.done() and not fut.cancelled():
        return fut.result()
    await asyncio.wait({fut})
    raise Stopped
