"""
One-way closable channels between the playback supervisor and a producer.

Each track gets a fresh pair:
- control channel (supervisor → producer), unbounded so the control loop never blocks
- frame channel (producer → supervisor), bounded to apply backpressure to the producer

A closed channel refuses new items. Closing also drains buffered items so
that a sender blocked on a full channel wakes up and sees the closure.
"""

import asyncio
from typing import Generic, Optional, TypeVar

from src.types.errors import ChannelClosed

T = TypeVar("T")

FRAME_CHANNEL_CAPACITY = 64


class Channel(Generic[T]):
    """asyncio.Queue with close semantics"""

    def __init__(self, maxsize: int = 0, name: str = "channel"):
        self.name = name
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def qsize(self) -> int:
        return self._queue.qsize()

    async def send(self, item: T) -> None:
        """
        Send an item, waiting for room if the channel is bounded.

        Raises:
            ChannelClosed: If the channel is (or becomes) closed
        """
        if self._closed:
            raise ChannelClosed(f"{self.name} is closed")
        await self._queue.put(item)
        if self._closed:
            raise ChannelClosed(f"{self.name} closed while sending")

    def send_nowait(self, item: T) -> None:
        """
        Raises:
            ChannelClosed: If the channel is closed
            asyncio.QueueFull: If a bounded channel has no room
        """
        if self._closed:
            raise ChannelClosed(f"{self.name} is closed")
        self._queue.put_nowait(item)

    async def recv(self) -> T:
        """Wait for the next item."""
        return await self._queue.get()

    def try_recv(self) -> Optional[T]:
        """Return the next buffered item, or None when nothing is pending."""
        try:
            return self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None

    def close(self) -> int:
        """
        Close the channel and discard buffered items.

        Returns:
            Number of discarded items
        """
        self._closed = True
        dropped = 0
        while True:
            try:
                self._queue.get_nowait()
                dropped += 1
            except asyncio.QueueEmpty:
                break
        return dropped

    def __repr__(self):
        return f"<Channel name={self.name} size={self._queue.qsize()} closed={self._closed}>"


def control_channel() -> Channel:
    return Channel(maxsize=0, name="control")


def frame_channel() -> Channel:
    return Channel(maxsize=FRAME_CHANNEL_CAPACITY, name="frames")
