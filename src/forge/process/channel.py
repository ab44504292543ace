"""Bounded frame channel between a stdout reader and a turn aggregator."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

from forge.concurrency import Stopped, wait_until_stopped
from forge.errors import ChannelClosedError
from forge.protocol import Frame

DEFAULT_CAPACITY = 100


class FrameChannel:
    """Single-producer, single-consumer queue of frames for one turn.

    The producer ends the stream with close_sender(); the consumer gives up on it
    with close(), after which any pending or later send fails with
    ChannelClosedError.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        self._queue: asyncio.Queue[Frame | None] = asyncio.Queue(maxsize=capacity)
        self._receiver_closed = asyncio.Event()
        self._sender_closed = False
        self._drained = False

    @property
    def receiver_closed(self) -> bool:
        return self._receiver_closed.is_set()

    @property
    def sender_closed(self) -> bool:
        return self._sender_closed

    async def send(self, frame: Frame) -> None:
        if self._sender_closed:
            raise ChannelClosedError("sender already closed")
        if self._receiver_closed.is_set():
            raise ChannelClosedError("receiver closed")
        try:
            await wait_until_stopped(self._queue.put(frame), self._receiver_closed)
        except Stopped:
            raise ChannelClosedError("receiver closed") from None
        if self._receiver_closed.is_set():
            raise ChannelClosedError("receiver closed")

    async def close_sender(self) -> None:
        if self._sender_closed:
            return
        self._sender_closed = True
        if self._receiver_closed.is_set():
            return
        try:
            await wait_until_stopped(self._queue.put(None), self._receiver_closed)
        except Stopped:
            return

    def abort_sender(self) -> None:
        """End the stream now, discarding frames the consumer has not received yet."""
        self._sender_closed = True
        while not self._queue.empty():
            self._queue.get_nowait()
        if not self._receiver_closed.is_set():
            self._queue.put_nowait(None)

    async def receive(self) -> Frame | None:
        """Return the next frame, or None once the sender closed and the queue drained."""
        if self._drained or self._receiver_closed.is_set():
            return None
        frame = await self._queue.get()
        if frame is None:
            self._drained = True
        return frame

    def close(self) -> None:
        self._receiver_closed.set()
        while not self._queue.empty():
            self._queue.get_nowait()

    async def __aiter__(self) -> AsyncIterator[Frame]:
        while True:
            frame = await self.receive()
            if frame is None:
                return
            yield frame
