"""
Status Publisher

Read-only projection of the playback state plus the track duration from the
sidecar metadata. Used by the HTTP status endpoint. Never waits on the
audio producer: it only copies the locked state snapshot.

The sidecar is parsed once per (link, file modification time); polls in
between reuse the cached duration.
"""

from datetime import datetime, timezone
from typing import Optional, Tuple

from pydantic import BaseModel

from src.config.logging_config import get_logger
from src.services.playback_state import PlaybackStateStore
from src.services.track_metadata import metadata_mtime, read_track_metadata
from src.types.errors import MetadataError

logger = get_logger(__name__)


class StatusSnapshot(BaseModel):
    """Response body of GET /status"""
    time: float
    timestamp: str
    paused: bool
    duration: int
    link: str


class StatusPublisher:
    """Builds status snapshots from the shared playback state"""

    def __init__(self, store: PlaybackStateStore, metadata_file: str = "-.info.json"):
        self.store = store
        self.metadata_file = metadata_file

        self._duration_key: Optional[Tuple[str, int]] = None
        self._duration = 0

    def get_status(self) -> StatusSnapshot:
        state = self.store.snapshot()
        link = state.current_link or ""

        return StatusSnapshot(
            time=state.time_passed,
            timestamp=datetime.now(timezone.utc).isoformat(),
            paused=state.paused,
            duration=self._track_duration(link) if link else 0,
            link=link,
        )

    def _track_duration(self, link: str) -> int:
        mtime = metadata_mtime(self.metadata_file)
        if mtime is None:
            logger.debug(f"📄 No info JSON at {self.metadata_file}, duration unknown")
            return 0

        key = (link, mtime)
        if key == self._duration_key:
            return self._duration

        try:
            duration = int(read_track_metadata(self.metadata_file).duration)
        except MetadataError as e:
            logger.error(f"❌ Failed to read info JSON: {e}")
            return 0

        self._duration_key = key
        self._duration = duration
        return duration
