"""
Chat/Voice Transport Base Class

The playback supervisor talks to the outside world only through this
interface: text replies, outbound Opus packets, and a disconnect signal.

Lifecycle:
1. The concrete transport connects (Discord gateway + voice channel)
2. Incoming chat messages are interpreted and submitted to the supervisor
3. The supervisor calls send_audio() for every frame and send_message() for replies
4. The transport sets `disconnected` when the connection is gone for good
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any


class Transport(ABC):
    """Abstract outbound transport used by the PlaybackSupervisor"""

    def __init__(self):
        # Set when the connection is lost and cannot be used again
        self.disconnected = asyncio.Event()

    @abstractmethod
    async def send_message(self, target: Any, text: str) -> None:
        """
        Send a text reply.

        Args:
            target: Requester identity the reply is addressed to
            text: Message body
        """
        pass

    @abstractmethod
    async def send_audio(self, packet: bytes) -> None:
        """
        Send one encoded Opus packet to the voice connection.

        Raises:
            Exception: Any failure; the supervisor treats it as fatal
        """
        pass

    async def audio_finished(self) -> None:
        """Called when playback goes idle (no more packets for now)."""
        pass
