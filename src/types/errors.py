"""
TuneBridge Error Hierarchy

Errors are grouped by how far they are allowed to travel:
- StartupError: configuration/dependency problems, fatal before the control loop starts
- PipelineError: per-track extraction/decoding/encoding failures, contained in the producer
- TransportError: outbound voice/chat failures, fatal for the whole session
- MetadataError: sidecar metadata problems, always degraded to defaults
"""


class TuneBridgeError(Exception):
    """Base exception for all TuneBridge errors."""
    pass


class StartupError(TuneBridgeError):
    """Initialization failed; the control loop must not start."""
    pass


class ConfigError(StartupError):
    """Configuration missing or invalid."""
    pass


class DependencyError(StartupError):
    """A required external tool (yt-dlp, ffmpeg) is not installed."""
    pass


class PipelineError(TuneBridgeError):
    """Extraction, decoding or encoding failed for the current track."""
    pass


class TransportError(TuneBridgeError):
    """Base class for outbound transport failures."""
    pass


class AudioTransportError(TransportError):
    """Sending an audio frame to the voice connection failed."""
    pass


class TransportDisconnectedError(TransportError):
    """The voice/chat connection went away."""
    pass


class ChannelClosed(TuneBridgeError):
    """Send or receive attempted on a closed channel."""
    pass


class MetadataError(TuneBridgeError):
    """Sidecar track metadata is missing or unparsable."""
    pass
