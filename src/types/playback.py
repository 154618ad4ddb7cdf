"""
Playback Data Model

Messages exchanged between the command interpreter, the playback supervisor
and the audio producer, plus the shared playback state.

Flow:
    chat message → Action → PlaybackSupervisor
    PlaybackSupervisor → ProducerControl → AudioProducer
    AudioProducer → AudioFrame → PlaybackSupervisor → voice transport
"""

from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Deque, Optional, Tuple

from pydantic import BaseModel, ConfigDict


# ============================================================
# ACTIONS (interpreter → supervisor)
# ============================================================

class ActionKind(str, Enum):
    """Kinds of user requests produced by the command interpreter"""
    PLAY_OR_QUEUE = "play_or_queue"
    QUEUE_NEXT = "queue_next"
    SKIP = "skip"
    PAUSE = "pause"
    RESUME = "resume"
    STOP = "stop"
    SET_VOLUME = "set_volume"
    INFO = "info"
    HELP = "help"
    QUIT = "quit"
    NONE = "none"


@dataclass(frozen=True)
class Action:
    """
    A single user request.

    Attributes:
        kind: Which request this is
        link: Media link (PLAY_OR_QUEUE, QUEUE_NEXT)
        requester: Sender identity, used as the reply target
        modifier: Volume fraction in [0, 1] for SET_VOLUME; None means
                  "report the current volume"
    """
    kind: ActionKind
    link: Optional[str] = None
    requester: Any = None
    modifier: Optional[float] = None

    @classmethod
    def play_or_queue(cls, link: str, requester: Any) -> "Action":
        return cls(ActionKind.PLAY_OR_QUEUE, link=link, requester=requester)

    @classmethod
    def queue_next(cls, link: str, requester: Any) -> "Action":
        return cls(ActionKind.QUEUE_NEXT, link=link, requester=requester)

    @classmethod
    def set_volume(cls, modifier: Optional[float], requester: Any) -> "Action":
        return cls(ActionKind.SET_VOLUME, requester=requester, modifier=modifier)

    @classmethod
    def info(cls, requester: Any) -> "Action":
        return cls(ActionKind.INFO, requester=requester)

    @classmethod
    def help(cls, requester: Any) -> "Action":
        return cls(ActionKind.HELP, requester=requester)

    @classmethod
    def simple(cls, kind: ActionKind) -> "Action":
        """Actions without payload (SKIP, PAUSE, RESUME, STOP, QUIT, NONE)"""
        return cls(kind)

    @classmethod
    def none(cls) -> "Action":
        return cls(ActionKind.NONE)

    @property
    def is_none(self) -> bool:
        return self.kind is ActionKind.NONE


# ============================================================
# PRODUCER CONTROL (supervisor → producer)
# ============================================================

class ControlKind(str, Enum):
    PAUSE = "pause"
    RESUME = "resume"
    STOP = "stop"
    SET_VOLUME = "set_volume"


@dataclass(frozen=True)
class ProducerControl:
    """Control signal for the running audio producer"""
    kind: ControlKind
    modifier: float = 0.0

    @classmethod
    def pause(cls) -> "ProducerControl":
        return cls(ControlKind.PAUSE)

    @classmethod
    def resume(cls) -> "ProducerControl":
        return cls(ControlKind.RESUME)

    @classmethod
    def stop(cls) -> "ProducerControl":
        return cls(ControlKind.STOP)

    @classmethod
    def set_volume(cls, modifier: float) -> "ProducerControl":
        return cls(ControlKind.SET_VOLUME, modifier=modifier)


# ============================================================
# AUDIO FRAMES (producer → supervisor)
# ============================================================

class EndReason(str, Enum):
    """Why a producer stopped emitting frames"""
    COMPLETED = "completed"  # decoder reached end of input
    STOPPED = "stopped"      # Stop/Skip observed
    ERROR = "error"          # spawn, read, encode or channel failure


@dataclass(frozen=True)
class AudioFrame:
    """Either one encoded Opus packet or the terminal end-of-stream marker"""
    packet: bytes = b""
    reason: Optional[EndReason] = None

    @classmethod
    def payload(cls, packet: bytes) -> "AudioFrame":
        return cls(packet=packet)

    @classmethod
    def end_of_stream(cls, reason: EndReason) -> "AudioFrame":
        return cls(reason=reason)

    @property
    def is_end_of_stream(self) -> bool:
        return self.reason is not None


# ============================================================
# PLAYBACK STATE
# ============================================================

@dataclass
class PlaybackState:
    """
    Authoritative playback state.

    Invariant: paused implies playing. time_passed resets to 0 when a track
    starts and only grows while playing and unpaused.
    """
    current_link: Optional[str] = None
    playing: bool = False
    paused: bool = False
    volume: float = 0.2
    queue: Deque[str] = field(default_factory=deque)
    time_passed: float = 0.0


@dataclass(frozen=True)
class PlaybackSnapshot:
    """Immutable copy of PlaybackState for readers outside the control loop"""
    current_link: Optional[str]
    playing: bool
    paused: bool
    volume: float
    queue: Tuple[str, ...]
    time_passed: float


# ============================================================
# TRACK METADATA (yt-dlp sidecar file)
# ============================================================

class TrackMetadata(BaseModel):
    """Subset of the yt-dlp info JSON written next to the download"""
    model_config = ConfigDict(extra="ignore")

    id: str
    title: str
    channel: str = ""
    duration: float = 0
    view_count: int = 0
    webpage_url: str = ""
