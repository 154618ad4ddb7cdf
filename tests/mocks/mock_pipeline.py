"""
Fake yt-dlp/ffmpeg processes and Opus encoder for producer tests

The producer only touches a small surface of asyncio.subprocess.Process:
stdout (a StreamReader), pid, returncode, kill() and wait().
"""
from __future__ import annotations

import asyncio
import os
from typing import Any, List, Optional, Tuple

from src.services.audio_producer import FRAME_BYTES


# ============================================================
# Fake Process
# ============================================================

class FakeProcess:
    """Stand-in for asyncio.subprocess.Process"""

    def __init__(
        self,
        stdout_data: bytes = b"",
        eof: bool = True,
        pid: int = 4242,
        exit_code: int = 0,
    ):
        self.stdout = asyncio.StreamReader()
        if stdout_data:
            self.stdout.feed_data(stdout_data)
        if eof:
            self.stdout.feed_eof()

        self.pid = pid
        self.returncode: Optional[int] = None
        self._exit_code = exit_code

        self.kill_called = False
        self.wait_called = False

    def kill(self) -> None:
        if self.returncode is not None:
            raise ProcessLookupError(self.pid)
        self.kill_called = True
        self.returncode = -9
        if not self.stdout.at_eof():
            self.stdout.feed_eof()

    async def wait(self) -> int:
        self.wait_called = True
        if self.returncode is None:
            self.returncode = self._exit_code
        return self.returncode

    def finish(self, exit_code: int = 0) -> None:
        """Simulate the process exiting on its own"""
        self.returncode = exit_code
        if not self.stdout.at_eof():
            self.stdout.feed_eof()

    def __repr__(self):
        return f"<FakeProcess pid={self.pid} returncode={self.returncode}>"


# ============================================================
# Fake Spawner
# ============================================================

class FakeSpawner:
    """
    Replacement for asyncio.create_subprocess_exec

    Usage:
        spawner = FakeSpawner(decoder_data=pcm_frames(3))
        producer = AudioProducer(..., spawn=spawner)
        await producer.run()
        assert spawner.decoder.kill_called
    """

    def __init__(
        self,
        decoder_data: bytes = b"",
        decoder_eof: bool = True,
        extractor_output: bytes = b"",
        fail_on: Optional[str] = None,
    ):
        self.decoder_data = decoder_data
        self.decoder_eof = decoder_eof
        self.extractor_output = extractor_output
        self.fail_on = fail_on

        self.calls: List[Tuple[List[str], dict]] = []
        self.extractor: Optional[FakeProcess] = None
        self.decoder: Optional[FakeProcess] = None

    async def __call__(self, *command: str, **kwargs: Any) -> FakeProcess:
        self.calls.append((list(command), kwargs))
        name = os.path.basename(command[0])

        if self.fail_on and self.fail_on in name:
            raise FileNotFoundError(2, "No such file or directory", command[0])

        if "ffmpeg" in name:
            self.decoder = FakeProcess(self.decoder_data, eof=self.decoder_eof, pid=2002)
            return self.decoder

        self.extractor = FakeProcess(self.extractor_output, eof=True, pid=1001)
        return self.extractor

    @property
    def commands(self) -> List[List[str]]:
        return [command for command, _ in self.calls]


# ============================================================
# Fake Opus Encoder
# ============================================================

class FakeOpusEncoder:
    """Records PCM input; returns a short deterministic packet per frame"""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.frames: List[bytes] = []

    def encode(self, pcm: bytes, frame_size: int) -> bytes:
        if self.fail:
            raise RuntimeError("encoder exploded")
        self.frames.append(pcm)
        return b"\xfc" + len(self.frames).to_bytes(2, "big")


# ============================================================
# Helper Functions
# ============================================================

def pcm_frames(count: int, sample: int = 1000) -> bytes:
    """
    Big-endian s16 stereo PCM for `count` 20 ms frames

    Every sample has the same value, which makes scaling easy to check.
    """
    return sample.to_bytes(2, "big", signed=True) * (FRAME_BYTES // 2) * count
