"""
Bot Configuration Module

Runtime settings for the Discord transport, the status server and the audio
pipeline. Loaded from environment variables (a .env file is honoured through
python-dotenv by the entry point) with fallback defaults.

Architecture:
- Environment → BotConfig (validated) → PlaybackSupervisor / AudioProducer
"""

import os
from dataclasses import dataclass
from typing import Literal, Optional

from src.types.errors import ConfigError


@dataclass
class BotConfig:
    """
    Configuration for the music bot.

    Volume, pipeline and pacing policies are configurable because the audio
    path has several valid variants.
    """

    # Discord credentials and target voice channel
    discord_token: str = ""
    voice_channel_id: int = 0

    # Chat command prefix
    command_prefix: str = "!"

    # Status HTTP server
    status_host: str = "0.0.0.0"
    status_port: int = 3000

    # Initial volume fraction (0, 1]
    default_volume: float = 0.2

    # Volume curve applied to samples
    # - 'damped': multiplier = volume * volume_damping
    # - 'linear': multiplier = volume
    volume_curve: Literal['damped', 'linear'] = 'damped'
    volume_damping: float = 0.2

    # How the extractor hands media to the decoder
    # - 'pipe': yt-dlp writes the media to a pipe read by ffmpeg
    # - 'url': yt-dlp prints the resolved media URL which ffmpeg opens
    pipeline_mode: Literal['pipe', 'url'] = 'pipe'

    # Frame pacing
    # - 'adaptive': sleep until a deadline advanced by one frame duration
    # - 'fixed': sleep a constant interval after each frame
    pacing_mode: Literal['adaptive', 'fixed'] = 'adaptive'

    # External tools
    ytdlp_path: str = "yt-dlp"
    ffmpeg_path: str = "ffmpeg"

    # Sidecar metadata written by yt-dlp (--write-info-json with --output -)
    metadata_file: str = "-.info.json"

    # yt-dlp socket timeout (seconds)
    socket_timeout: int = 5

    # Sleep between control checks while paused (seconds)
    pause_poll_interval: float = 0.5

    # Upper bound for producer cleanup during shutdown (seconds)
    shutdown_timeout: float = 5.0

    def validate(self, require_credentials: bool = True) -> None:
        """Validate configuration values."""
        if require_credentials:
            if not self.discord_token:
                raise ConfigError("DISCORD_TOKEN must be set")
            if self.voice_channel_id <= 0:
                raise ConfigError("DISCORD_VOICE_CHANNEL_ID must be a positive channel id")
        if len(self.command_prefix) != 1:
            raise ConfigError("COMMAND_PREFIX must be a single character")
        from src.services.command_interpreter import ALLOWED_PUNCTUATION
        if self.command_prefix.isspace() or self.command_prefix not in ALLOWED_PUNCTUATION:
            # Anything else is removed by message sanitization and could never match
            allowed = "".join(sorted(c for c in ALLOWED_PUNCTUATION if not c.isspace()))
            raise ConfigError(f"COMMAND_PREFIX must be one of {allowed!r}")
        if not 1 <= self.status_port <= 65535:
            raise ConfigError("STATUS_PORT must be between 1 and 65535")
        if not 0.0 < self.default_volume <= 1.0:
            raise ConfigError("DEFAULT_VOLUME must be in (0, 1]")
        if self.volume_curve not in ['damped', 'linear']:
            raise ConfigError("VOLUME_CURVE must be 'damped' or 'linear'")
        if not 0.0 < self.volume_damping <= 1.0:
            raise ConfigError("VOLUME_DAMPING must be in (0, 1]")
        if self.pipeline_mode not in ['pipe', 'url']:
            raise ConfigError("PIPELINE_MODE must be 'pipe' or 'url'")
        if self.pacing_mode not in ['adaptive', 'fixed']:
            raise ConfigError("PACING_MODE must be 'adaptive' or 'fixed'")
        if self.socket_timeout <= 0:
            raise ConfigError("SOCKET_TIMEOUT must be positive")
        if self.pause_poll_interval <= 0:
            raise ConfigError("PAUSE_POLL_INTERVAL must be positive")
        if self.shutdown_timeout <= 0:
            raise ConfigError("SHUTDOWN_TIMEOUT must be positive")

    def volume_multiplier(self, volume: float) -> float:
        """Map a user-facing volume fraction to the sample multiplier."""
        if self.volume_curve == 'damped':
            return volume * self.volume_damping
        return volume


def _env_number(name: str, default: str, cast):
    raw = os.getenv(name, default)
    try:
        return cast(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number (got {raw!r})")


def load_bot_config(require_credentials: bool = True) -> BotConfig:
    """
    Load bot configuration from environment variables.

    Environment Variables:
        DISCORD_TOKEN: Bot token (required)
        DISCORD_VOICE_CHANNEL_ID: Voice channel to join (required)
        COMMAND_PREFIX: Chat command prefix (default: !)
        STATUS_HOST / STATUS_PORT: Status server bind address (default: 0.0.0.0:3000)
        DEFAULT_VOLUME: Initial volume fraction (default: 0.2)
        VOLUME_CURVE: damped or linear (default: damped)
        VOLUME_DAMPING: Damping factor for the damped curve (default: 0.2)
        PIPELINE_MODE: pipe or url (default: pipe)
        PACING_MODE: adaptive or fixed (default: adaptive)
        YTDLP_PATH / FFMPEG_PATH: Tool executables (default: yt-dlp / ffmpeg)
        METADATA_FILE: yt-dlp sidecar file (default: -.info.json)
        SOCKET_TIMEOUT: yt-dlp socket timeout in seconds (default: 5)
        PAUSE_POLL_INTERVAL: Seconds between control checks while paused (default: 0.5)
        SHUTDOWN_TIMEOUT: Seconds to wait for producer cleanup on exit (default: 5)

    Returns:
        Validated BotConfig

    Raises:
        ConfigError: If a value is missing or invalid
    """
    config = BotConfig(
        discord_token=os.getenv('DISCORD_TOKEN', ''),
        voice_channel_id=_env_number('DISCORD_VOICE_CHANNEL_ID', '0', int),
        command_prefix=os.getenv('COMMAND_PREFIX', '!'),
        status_host=os.getenv('STATUS_HOST', '0.0.0.0'),
        status_port=_env_number('STATUS_PORT', '3000', int),
        default_volume=_env_number('DEFAULT_VOLUME', '0.2', float),
        volume_curve=os.getenv('VOLUME_CURVE', 'damped').lower(),  # type: ignore
        volume_damping=_env_number('VOLUME_DAMPING', '0.2', float),
        pipeline_mode=os.getenv('PIPELINE_MODE', 'pipe').lower(),  # type: ignore
        pacing_mode=os.getenv('PACING_MODE', 'adaptive').lower(),  # type: ignore
        ytdlp_path=os.getenv('YTDLP_PATH', 'yt-dlp'),
        ffmpeg_path=os.getenv('FFMPEG_PATH', 'ffmpeg'),
        metadata_file=os.getenv('METADATA_FILE', '-.info.json'),
        socket_timeout=_env_number('SOCKET_TIMEOUT', '5', int),
        pause_poll_interval=_env_number('PAUSE_POLL_INTERVAL', '0.5', float),
        shutdown_timeout=_env_number('SHUTDOWN_TIMEOUT', '5', float),
    )

    config.validate(require_credentials=require_credentials)
    return config


# Global singleton instance
_bot_config: Optional[BotConfig] = None


def get_bot_config() -> BotConfig:
    """
    Get global bot configuration singleton (loaded from environment on first call).

    Raises:
        ConfigError: If the environment holds invalid values
    """
    global _bot_config

    if _bot_config is None:
        _bot_config = load_bot_config()
    return _bot_config


def set_bot_config(config: Optional[BotConfig]) -> None:
    """Replace (or clear, with None) the cached configuration."""
    global _bot_config
    _bot_config = config
