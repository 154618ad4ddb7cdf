"""
External tool checks run before the bot connects.

Playback shells out to yt-dlp and ffmpeg for every track; without them the
bot would join voice and fail on the first !play.
"""

import shutil
from typing import Dict, List

from src.config.bot_config import BotConfig
from src.config.logging_config import get_logger
from src.types.errors import DependencyError

logger = get_logger(__name__)


def required_tools(config: BotConfig) -> Dict[str, str]:
    return {
        "yt-dlp": config.ytdlp_path,
        "ffmpeg": config.ffmpeg_path,
    }


def check_dependencies(config: BotConfig) -> Dict[str, str]:
    """
    Resolve every required tool on PATH.

    Args:
        config: Bot configuration (tool paths)

    Returns:
        Mapping of tool name → resolved executable path

    Raises:
        DependencyError: If any tool cannot be found
    """
    resolved: Dict[str, str] = {}
    missing: List[str] = []

    for name, command in required_tools(config).items():
        path = shutil.which(command)
        if path is None:
            logger.error(f"❌ {name} not found (looked for '{command}')")
            missing.append(name)
        else:
            logger.debug(f"✅ {name} found at {path}")
            resolved[name] = path

    if missing:
        raise DependencyError(f"Missing required tools: {', '.join(missing)}")

    logger.info("✅ Startup checks passed")
    return resolved
