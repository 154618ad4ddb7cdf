"""
Tiered Logging Configuration for TuneBridge

Provides a flexible logging system with 5 levels:
- TRACE (5): Ultra-verbose debugging (every frame, every control check)
- DEBUG (10): Detailed debugging (state transitions, subprocess lifecycle)
- INFO (20): Standard operational messages (tracks started, commands accepted)
- WARN (30): Warnings (recoverable errors, fallbacks)
- ERROR (40): Errors (exceptions, failures)

Environment Variables:
- LOG_LEVEL: Global log level (TRACE, DEBUG, INFO, WARN, ERROR) [default: INFO]
- LOG_LEVEL_PLAYBACK: Override for the playback supervisor
- LOG_LEVEL_PRODUCER: Override for the audio producer (yt-dlp/ffmpeg pipeline)
- LOG_LEVEL_COMMANDS: Override for the command interpreter
- LOG_LEVEL_STATUS: Override for the status publisher and HTTP server
- LOG_LEVEL_DISCORD: Override for the Discord transport

Example Usage:
    from src.config.logging_config import get_logger

    logger = get_logger(__name__)
    logger.trace("🔍 Frame encoded: %d bytes", len(packet))
    logger.debug("🎛️ Volume multiplier changed")
    logger.info("▶️ Playing link")
    logger.warning("⚠️ Metadata file missing")
    logger.error("❌ Failed to spawn ffmpeg: %s", error)
"""

import logging
import os


# Define custom TRACE level (more verbose than DEBUG)
TRACE = 5
logging.addLevelName(TRACE, "TRACE")


def trace(self, message, *args, **kwargs):
    """Log a message with severity 'TRACE'."""
    if self.isEnabledFor(TRACE):
        self._log(TRACE, message, args, **kwargs)


# Add trace method to Logger class
logging.Logger.trace = trace


# Module name mapping: Python module path → Logical service name
MODULE_NAME_MAP = {
    "src.services.playback_supervisor": "tunebridge.playback",
    "src.services.playback_state": "tunebridge.playback",
    "src.services.channels": "tunebridge.playback",
    "src.services.audio_producer": "tunebridge.producer",
    "src.services.command_interpreter": "tunebridge.commands",
    "src.services.status_publisher": "tunebridge.status",
    "src.services.track_metadata": "tunebridge.status",
    "src.api.server": "tunebridge.status",
    "src.discord_bot": "tunebridge.discord",
    "src.utils.dependencies": "tunebridge.discord",
}

SERVICE_OVERRIDES = ["PLAYBACK", "PRODUCER", "COMMANDS", "STATUS", "DISCORD"]


def get_log_level(module_name: str, default: str = "INFO") -> int:
    """
    Get the log level for a module, checking both module-specific and global env vars.

    Priority:
    1. Module-specific env var (LOG_LEVEL_PLAYBACK, LOG_LEVEL_PRODUCER, etc.)
    2. Global LOG_LEVEL env var
    3. Default level (INFO)

    Args:
        module_name: Python module name (e.g., "src.services.audio_producer")
        default: Default log level if no env vars set

    Returns:
        Numeric log level (5=TRACE, 10=DEBUG, 20=INFO, 30=WARN, 40=ERROR)
    """
    logical_name = MODULE_NAME_MAP.get(module_name, module_name)

    # "tunebridge.producer" → "PRODUCER"
    if logical_name.startswith("tunebridge."):
        service_name = logical_name.split(".")[-1].upper()
    else:
        service_name = None

    if service_name:
        module_level = os.getenv(f"LOG_LEVEL_{service_name}")
        if module_level:
            return _parse_log_level(module_level)

    global_level = os.getenv("LOG_LEVEL")
    if global_level:
        return _parse_log_level(global_level)

    return _parse_log_level(default)


def _parse_log_level(level_str: str) -> int:
    """
    Parse log level string to numeric value.

    Args:
        level_str: Log level name (TRACE, DEBUG, INFO, WARN, ERROR)

    Returns:
        Numeric log level (INFO for unknown names)
    """
    level_map = {
        "TRACE": TRACE,
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARN": logging.WARNING,
        "WARNING": logging.WARNING,
        "ERROR": logging.ERROR,
    }
    return level_map.get(level_str.upper(), logging.INFO)


def configure_logging(default_level: str = "INFO") -> None:
    """
    Configure logging system with tiered levels and per-service control.

    Called once at startup by the entry point in discord_bot.py.

    Args:
        default_level: Default log level if LOG_LEVEL env var not set
    """
    global_level = os.getenv("LOG_LEVEL", default_level)
    numeric_level = _parse_log_level(global_level)

    logging.basicConfig(
        level=numeric_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%H:%M:%S'
    )

    # discord.py is chatty at INFO (gateway heartbeats, voice handshakes)
    logging.getLogger("discord").setLevel(max(numeric_level, logging.WARNING))

    root_logger = logging.getLogger()
    root_logger.info(f"🚀 Logging system initialized (global level: {global_level})")

    module_overrides = []
    for env_var in SERVICE_OVERRIDES:
        override = os.getenv(f"LOG_LEVEL_{env_var}")
        if override:
            module_overrides.append(f"{env_var}={override}")

    if module_overrides:
        root_logger.info(f"📋 Module overrides: {', '.join(module_overrides)}")


def get_logger(module_name: str) -> logging.Logger:
    """
    Get a logger for a module with appropriate log level.

    Args:
        module_name: Python module name (use __name__)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(module_name)
    logger.setLevel(get_log_level(module_name))
    return logger
