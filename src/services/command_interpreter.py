"""
Command Interpreter

Maps a raw chat message and its sender to a typed Action. Pure: no state,
no I/O besides logging. Never raises; anything it does not understand
becomes a NONE action and is silently ignored by the supervisor.

Command surface (prefix "!" by default):
    !play <link> | !yt <link>       play now, or queue at the tail
    !next <link> | !n <link>        queue at the head
    !next | !n | !skip | !s         skip current track
    !pause | !p                     pause
    !resume | !r | !continue | !c   resume
    !stop                           stop and clear the queue
    !volume [0-100] | !v [0-100]    set or report volume
    !info | !i                      current track info
    !help | !h                      command list
    !quit | !q                      shut down
"""

import re
from typing import Any

from src.config.logging_config import get_logger
from src.types.playback import Action, ActionKind

logger = get_logger(__name__)

# Link markup some chat clients wrap around URLs
MARKUP_TOKENS = ("[URL]", "[/URL]")

# Punctuation kept by sanitization (alphanumerics are always kept)
ALLOWED_PUNCTUATION = frozenset(" .=\t,?!:&/-_")

_UNSIGNED_INT = re.compile(r"\+?[0-9]+")

HELP_TEXT = (
    "\nCommands:\n"
    "!play <link> or !yt <link> - Play audio from link or queue if already playing\n"
    "!next <link> or !n <link> - Queue a track as the next track\n"
    "!pause or !p - Pause current track\n"
    "!resume, !r, !continue, or !c - Resume current track\n"
    "!skip, !s, !next, or !n - Skip current track\n"
    "!stop - Stop all tracks\n"
    "!volume <modifier> or !v <modifier> - Change volume (modifier should be a number from 0 to 100)\n"
    "!info or !i - Get info about current track\n"
    "!help or !h - Get this message\n"
    "!quit or !q - Quit\n"
)

# Verbs without arguments → action kind
_SIMPLE_COMMANDS = {
    "stop": ActionKind.STOP,
    "pause": ActionKind.PAUSE,
    "p": ActionKind.PAUSE,
    "resume": ActionKind.RESUME,
    "r": ActionKind.RESUME,
    "continue": ActionKind.RESUME,
    "c": ActionKind.RESUME,
    "skip": ActionKind.SKIP,
    "s": ActionKind.SKIP,
    "quit": ActionKind.QUIT,
    "q": ActionKind.QUIT,
}

_NEXT_VERBS = {"next", "n"}
_VOLUME_VERBS = {"volume", "v"}
_PLAY_VERBS = {"play", "yt"}
_INFO_VERBS = {"info", "i"}
_HELP_VERBS = {"help", "h"}


def sanitize(text: str) -> str:
    """Drop every character that is neither alphanumeric nor allow-listed punctuation."""
    return "".join(c for c in text if c.isalnum() or c in ALLOWED_PUNCTUATION)


def strip_markup(text: str) -> str:
    for token in MARKUP_TOKENS:
        text = text.replace(token, "")
    return text


def parse_volume(argument: str):
    """
    Parse a volume argument.

    Returns:
        Fraction in [0, 1] (values above 100 clamp to 1.0), or None if the
        argument is not an unsigned integer
    """
    if not _UNSIGNED_INT.fullmatch(argument):
        return None
    return min(int(argument), 100) / 100


def interpret(raw_message: str, sender_id: Any, prefix: str = "!") -> Action:
    """
    Interpret one chat message.

    Args:
        raw_message: Message text as received from the chat transport
        sender_id: Identity of the sender, carried as the reply target
        prefix: Command prefix character

    Returns:
        The matching Action, or a NONE action
    """
    cleaned = sanitize(strip_markup(raw_message or "")).strip()
    if not cleaned.startswith(prefix):
        return Action.none()

    tokens = cleaned.split(" ")
    verb = tokens[0][len(prefix):]
    argument = tokens[1] if len(tokens) > 1 and tokens[1] else None

    if verb in _SIMPLE_COMMANDS:
        kind = _SIMPLE_COMMANDS[verb]
        if kind in (ActionKind.STOP, ActionKind.QUIT):
            logger.info(f"🛑 {kind.value} requested by {sender_id}")
        return Action.simple(kind)

    if verb in _NEXT_VERBS:
        if argument is None:
            return Action.simple(ActionKind.SKIP)
        logger.info(f"⏭️ Queueing next: {argument} (requested by {sender_id})")
        return Action.queue_next(argument, sender_id)

    if verb in _HELP_VERBS:
        return Action.help(sender_id)

    if verb in _INFO_VERBS:
        return Action.info(sender_id)

    if verb in _VOLUME_VERBS:
        if argument is None:
            return Action.set_volume(None, sender_id)
        modifier = parse_volume(argument)
        if modifier is None:
            logger.debug(f"🔇 Ignoring non-numeric volume '{argument}' from {sender_id}")
            return Action.none()
        logger.info(f"🔊 Changing volume to {argument} (requested by {sender_id})")
        return Action.set_volume(modifier, sender_id)

    if verb in _PLAY_VERBS:
        if argument is None:
            return Action.none()
        logger.info(f"▶️ Playing: {argument} (requested by {sender_id})")
        return Action.play_or_queue(argument, sender_id)

    return Action.none()
