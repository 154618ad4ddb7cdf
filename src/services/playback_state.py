"""
Shared playback state store.

The supervisor is the only writer of queue/playing/paused/volume/current_link;
the running producer is the only writer of time_passed. Readers (status
endpoint, info replies) take immutable snapshots. All access goes through one
lock, held only for short copy/update sections so that readers never wait on
the audio pipeline.
"""

from threading import Lock
from typing import Optional

from src.types.playback import PlaybackSnapshot, PlaybackState


class PlaybackStateStore:
    """Lock-guarded PlaybackState with snapshot reads"""

    def __init__(self, volume: float = 0.2):
        self._state = PlaybackState(volume=volume)
        self._lock = Lock()

    def snapshot(self) -> PlaybackSnapshot:
        with self._lock:
            s = self._state
            return PlaybackSnapshot(
                current_link=s.current_link,
                playing=s.playing,
                paused=s.paused,
                volume=s.volume,
                queue=tuple(s.queue),
                time_passed=s.time_passed,
            )

    # ------------------------------------------------------------
    # Supervisor-side mutations
    # ------------------------------------------------------------

    def start_track(self, link: str) -> None:
        with self._lock:
            self._state.current_link = link
            self._state.playing = True
            self._state.paused = False
            self._state.time_passed = 0.0

    def go_idle(self) -> None:
        with self._lock:
            self._state.current_link = None
            self._state.playing = False
            self._state.paused = False

    def set_paused(self, paused: bool) -> None:
        with self._lock:
            # paused implies playing
            self._state.paused = paused and self._state.playing

    def set_volume(self, volume: float) -> None:
        with self._lock:
            self._state.volume = volume

    def enqueue(self, link: str) -> int:
        """Append to the queue tail; returns the new queue length."""
        with self._lock:
            self._state.queue.append(link)
            return len(self._state.queue)

    def enqueue_next(self, link: str) -> int:
        """Push to the queue head; returns the new queue length."""
        with self._lock:
            self._state.queue.appendleft(link)
            return len(self._state.queue)

    def pop_next(self) -> Optional[str]:
        with self._lock:
            if not self._state.queue:
                return None
            return self._state.queue.popleft()

    def clear_queue(self) -> int:
        with self._lock:
            cleared = len(self._state.queue)
            self._state.queue.clear()
            return cleared

    # ------------------------------------------------------------
    # Producer-side mutations
    # ------------------------------------------------------------

    def reset_elapsed(self) -> None:
        with self._lock:
            self._state.time_passed = 0.0

    def add_elapsed(self, seconds: float) -> float:
        with self._lock:
            if seconds > 0:
                self._state.time_passed += seconds
            return self._state.time_passed
