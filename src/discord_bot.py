#!/usr/bin/env python3
"""
============================================================
TuneBridge - Discord Music Bot
Streams audio from media links into a Discord voice channel:
- Chat commands (!play, !next, !pause, !volume, ...) from text channels/DMs
- yt-dlp → ffmpeg → Opus pipeline per track (AudioProducer)
- FIFO queue and pause/resume/skip/stop (PlaybackSupervisor)
- HTTP status endpoint (src/api/server.py)

Startup is two-phase:
  1. initialize(): environment, configuration, external tool checks
  2. run(): Discord gateway, voice connection, status server, control loop
============================================================
"""

import asyncio
import signal
import sys
from typing import Any, Dict, Optional

import discord
from discord.ext import commands
import uvicorn
from dotenv import load_dotenv

# Tiered logging system
from src.config.logging_config import configure_logging, get_logger

from src.config.bot_config import BotConfig, load_bot_config, set_bot_config
from src.services.command_interpreter import interpret
from src.services.playback_state import PlaybackStateStore
from src.services.playback_supervisor import PlaybackSupervisor
from src.services.status_publisher import StatusPublisher
from src.services.transport import Transport
from src.types.errors import StartupError, TransportError
from src.utils.dependencies import check_dependencies

# Import FastAPI app from the API module
from src.api.server import app, set_status_publisher

logger = get_logger(__name__)


# ============================================================
# DISCORD TRANSPORT
# ============================================================

class DiscordTransport(Transport):
    """
    Transport over a discord.py bot and a single voice connection.

    Replies go to the channel the requester last wrote in; requesters without
    a known channel get a DM.
    """

    def __init__(self, bot: commands.Bot, config: BotConfig):
        super().__init__()
        self.bot = bot
        self.config = config
        self.voice_client: Optional[discord.VoiceClient] = None

        # Discord user id → last text channel (or DM channel) they wrote in
        self._reply_channels: Dict[int, Any] = {}
        self._speaking = False
        self._gateway_task: Optional[asyncio.Task] = None

    def remember_channel(self, author_id: int, channel: Any) -> None:
        self._reply_channels[author_id] = channel

    async def send_message(self, target: Any, text: str) -> None:
        channel = self._reply_channels.get(target)
        if channel is None:
            user = self.bot.get_user(target) or await self.bot.fetch_user(target)
            channel = user
        await channel.send(text)

    async def connect_voice(self) -> discord.VoiceClient:
        """
        Join the configured voice channel.

        Raises:
            TransportError: If the channel does not exist or the connection fails
        """
        channel_id = self.config.voice_channel_id
        logger.info(f"🔍 Fetching voice channel {channel_id}...")

        try:
            channel = self.bot.get_channel(channel_id)
            if not channel:
                channel = await self.bot.fetch_channel(channel_id)
        except discord.DiscordException as e:
            raise TransportError(f"Voice channel {channel_id} not found: {e}") from e

        if not isinstance(channel, (discord.VoiceChannel, discord.StageChannel)):
            raise TransportError(f"Channel {channel_id} is not a voice channel")

        try:
            self.voice_client = await channel.connect()
        except (discord.DiscordException, asyncio.TimeoutError) as e:
            raise TransportError(f"Joining voice channel '{channel.name}' failed: {e}") from e

        logger.info(f"✅ Joined voice channel '{channel.name}'")
        return self.voice_client

    async def send_audio(self, packet: bytes) -> None:
        voice_client = self.voice_client
        if voice_client is None or not voice_client.is_connected():
            raise TransportError("Not connected to a voice channel")

        if not self._speaking:
            await self._set_speaking(True)
        voice_client.send_audio_packet(packet, encode=False)

    async def audio_finished(self) -> None:
        if self._speaking:
            await self._set_speaking(False)

    async def _set_speaking(self, speaking: bool) -> None:
        self._speaking = speaking
        try:
            await self.voice_client.ws.speak(speaking)
        except Exception as e:
            logger.warning(f"⚠️ Failed to update speaking state: {e}")

    def watch_gateway(self, bot_task: asyncio.Task) -> None:
        """Treat the end of the gateway task (bot.start) as a lost connection."""
        self._gateway_task = bot_task
        bot_task.add_done_callback(self._on_gateway_closed)

    def _on_gateway_closed(self, task: asyncio.Task) -> None:
        error = None if task.cancelled() else task.exception()
        self.mark_disconnected(f"Discord gateway closed: {error!r}")

    def mark_disconnected(self, reason: str = "Bot was removed from the voice channel") -> None:
        if not self.disconnected.is_set():
            logger.warning(f"⚠️ {reason}")
            self.disconnected.set()

    async def disconnect(self) -> None:
        # Orderly shutdown closes the gateway on purpose
        if self._gateway_task is not None:
            self._gateway_task.remove_done_callback(self._on_gateway_closed)
            self._gateway_task = None

        voice_client = self.voice_client
        self.voice_client = None
        if voice_client and voice_client.is_connected():
            try:
                await voice_client.disconnect(force=True)
            except Exception as e:
                logger.error(f"❌ Error disconnecting from voice: {e}")


# ============================================================
# DISCORD BOT SETUP
# ============================================================

def create_bot(config: BotConfig) -> commands.Bot:
    """Discord bot with the intents needed for prefix commands and voice"""
    intents = discord.Intents.default()
    intents.guilds = True
    intents.voice_states = True
    intents.guild_messages = True
    intents.dm_messages = True
    intents.message_content = True

    # Commands are parsed by the command interpreter, not discord.ext.commands
    return commands.Bot(command_prefix=config.command_prefix, intents=intents, help_command=None)


def register_events(
    bot: commands.Bot,
    transport: DiscordTransport,
    supervisor: PlaybackSupervisor,
    ready: asyncio.Event,
    prefix: str = "!",
) -> None:
    """Wire Discord gateway events to the transport and supervisor."""

    @bot.event
    async def on_ready():
        """Bot ready event"""
        logger.info("=" * 60)
        logger.info(f"✅ Discord bot logged in as {bot.user.name}")
        logger.info("=" * 60)
        ready.set()

    @bot.event
    async def on_message(message: discord.Message):
        """Interpret chat messages as playback commands"""
        if message.author.bot:
            return

        transport.remember_channel(message.author.id, message.channel)
        action = interpret(message.content, message.author.id, prefix=prefix)
        await supervisor.submit(action)

    @bot.event
    async def on_voice_state_update(member, before, after):
        """Detect the bot being disconnected from voice"""
        if bot.user is None or member.id != bot.user.id:
            return
        if before.channel is not None and after.channel is None:
            transport.mark_disconnected()

    @bot.event
    async def on_error(event, *args, **kwargs):
        """Bot error handler"""
        logger.error(f"❌ Discord bot error in {event}: {args} {kwargs}", exc_info=True)


# ============================================================
# APPLICATION LIFECYCLE
# ============================================================

def initialize() -> BotConfig:
    """
    Load environment and configuration, and check external tools.

    Returns:
        Validated BotConfig

    Raises:
        StartupError: ConfigError or DependencyError
    """
    load_dotenv()
    config = load_bot_config()
    check_dependencies(config)
    set_bot_config(config)
    logger.info(
        f"⚙️ Config: pipeline={config.pipeline_mode}, pacing={config.pacing_mode}, "
        f"volume_curve={config.volume_curve}"
    )
    return config


def create_status_server(config: BotConfig) -> uvicorn.Server:
    """Build the uvicorn server for the status API (from API module)"""
    server_config = uvicorn.Config(
        app,
        host=config.status_host,
        port=config.status_port,
        log_level="warning",
    )
    return uvicorn.Server(server_config)


def install_signal_handlers(supervisor: PlaybackSupervisor) -> None:
    """Route SIGINT/SIGTERM to an orderly supervisor shutdown"""
    loop = asyncio.get_running_loop()

    def handle_signal_sync(signum):
        """Handle shutdown signals (sync wrapper)"""
        logger.info(f"⚠️ Received signal {signum}")
        supervisor.request_shutdown()

    for signum in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(signum, handle_signal_sync, signum)
        except NotImplementedError:
            # Event loops without signal support (Windows)
            logger.debug(f"🚫 Signal handler for {signum} not supported")


async def wait_until_ready(bot_task: asyncio.Task, ready: asyncio.Event) -> None:
    """
    Wait for the gateway to become ready.

    Raises:
        TransportError: If the bot task ends first (e.g. login failure)
    """
    ready_waiter = asyncio.create_task(ready.wait())
    try:
        await asyncio.wait({ready_waiter, bot_task}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        if not ready_waiter.done():
            ready_waiter.cancel()

    if ready.is_set():
        return

    error = bot_task.exception() if not bot_task.cancelled() else None
    raise TransportError(f"Discord connection ended before ready: {error}") from error


async def run(config: BotConfig) -> None:
    """
    Run the bot until Quit, a shutdown signal, or a fatal transport error.

    Raises:
        TransportError: Login, voice connection or audio transport failure
    """
    bot = create_bot(config)
    transport = DiscordTransport(bot, config)
    store = PlaybackStateStore(volume=config.default_volume)
    supervisor = PlaybackSupervisor(transport, config, store=store)

    set_status_publisher(StatusPublisher(store, config.metadata_file))

    ready = asyncio.Event()
    register_events(bot, transport, supervisor, ready, prefix=config.command_prefix)
    install_signal_handlers(supervisor)

    logger.info("🔐 Logging in to Discord...")
    bot_task = asyncio.create_task(bot.start(config.discord_token), name="discord-bot")
    transport.watch_gateway(bot_task)

    status_server = create_status_server(config)
    status_task = asyncio.create_task(status_server.serve(), name="status-server")
    logger.info(f"🚀 Status API listening on {config.status_host}:{config.status_port}")

    try:
        await wait_until_ready(bot_task, ready)
        await transport.connect_voice()
        await supervisor.run()
    finally:
        await shutdown(bot, transport, status_server, [bot_task, status_task])


async def shutdown(bot: commands.Bot, transport: DiscordTransport, status_server: uvicorn.Server, tasks) -> None:
    """Graceful shutdown"""
    logger.info("⚠️ Shutting down gracefully...")

    status_server.should_exit = True
    set_status_publisher(None)

    # Disconnect from voice
    await transport.disconnect()

    # Close bot
    await bot.close()

    results = await asyncio.gather(*tasks, return_exceptions=True)
    for result in results:
        if isinstance(result, Exception):
            logger.debug(f"🧹 Background task ended with: {result!r}")

    logger.info("👋 Shutdown complete")


def main() -> int:
    """Main application entry point"""
    load_dotenv()
    configure_logging(default_level="INFO")

    try:
        config = initialize()
    except StartupError as e:
        logger.error(f"❌ Startup failed: {e}")
        return 1

    try:
        asyncio.run(run(config))
    except TransportError as e:
        logger.error(f"❌ Fatal transport error: {e}")
        return 1
    except KeyboardInterrupt:
        logger.info("👋 Interrupted by user")

    return 0


if __name__ == "__main__":
    sys.exit(main())
