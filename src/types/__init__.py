"""
TuneBridge Types Module

Message types, playback state and error hierarchy
"""

from .errors import (
    TuneBridgeError,
    StartupError,
    ConfigError,
    DependencyError,
    PipelineError,
    TransportError,
    AudioTransportError,
    TransportDisconnectedError,
    ChannelClosed,
    MetadataError,
)
from .playback import (
    Action,
    ActionKind,
    ProducerControl,
    ControlKind,
    AudioFrame,
    EndReason,
    PlaybackState,
    PlaybackSnapshot,
    TrackMetadata,
)

__all__ = [
    "TuneBridgeError",
    "StartupError",
    "ConfigError",
    "DependencyError",
    "PipelineError",
    "TransportError",
    "AudioTransportError",
    "TransportDisconnectedError",
    "ChannelClosed",
    "MetadataError",
    "Action",
    "ActionKind",
    "ProducerControl",
    "ControlKind",
    "AudioFrame",
    "EndReason",
    "PlaybackState",
    "PlaybackSnapshot",
    "TrackMetadata",
]
