"""
Sidecar track metadata (yt-dlp --write-info-json).

The file is best effort: it may be missing, half written, or left over from
a previous track. Callers get a MetadataError and fall back to defaults.
"""

import os
from typing import Optional

from pydantic import ValidationError

from src.config.logging_config import get_logger
from src.types.errors import MetadataError
from src.types.playback import TrackMetadata

logger = get_logger(__name__)


def metadata_mtime(path: str) -> Optional[int]:
    """Modification time of the metadata file in ns, or None if it does not exist."""
    try:
        return os.stat(path).st_mtime_ns
    except OSError:
        return None


def read_track_metadata(path: str) -> TrackMetadata:
    """
    Read and parse the sidecar metadata file.

    Args:
        path: Path of the info JSON file

    Returns:
        Parsed TrackMetadata

    Raises:
        MetadataError: If the file cannot be opened or parsed
    """
    try:
        with open(path, "rb") as f:
            raw = f.read()
    except OSError as e:
        raise MetadataError(f"Failed to open the file: {path} ({e})") from e

    try:
        return TrackMetadata.model_validate_json(raw)
    except ValidationError as e:
        raise MetadataError(f"Failed to parse the JSON file: {path} ({e.error_count()} errors)") from e
