"""Configuration modules for TuneBridge."""

from .bot_config import (
    BotConfig,
    load_bot_config,
    get_bot_config,
    set_bot_config,
)

__all__ = [
    'BotConfig',
    'load_bot_config',
    'get_bot_config',
    'set_bot_config',
]
