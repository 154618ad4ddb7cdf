"""
TuneBridge Services Package

This package contains the playback service layer:
- channels: closable async channels between supervisor and producer
- command_interpreter: chat text to Action
- playback_state: locked shared playback state
- playback_supervisor: control loop and state machine
- audio_producer: yt-dlp → ffmpeg → Opus per-track task
- status_publisher: read-only status snapshots
- transport: chat/voice transport interface
"""

from .channels import Channel, control_channel, frame_channel
from .command_interpreter import interpret
from .playback_state import PlaybackStateStore
from .audio_producer import AudioProducer
from .playback_supervisor import PlaybackSupervisor
from .status_publisher import StatusPublisher, StatusSnapshot
from .transport import Transport

__all__ = [
    "Channel",
    "control_channel",
    "frame_channel",
    "interpret",
    "PlaybackStateStore",
    "AudioProducer",
    "PlaybackSupervisor",
    "StatusPublisher",
    "StatusSnapshot",
    "Transport",
]
