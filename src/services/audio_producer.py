"""
Audio Producer

One producer runs per playing track. It owns two external processes:

    yt-dlp (extractor) ──pipe or resolved URL──▶ ffmpeg (decoder) ──s16be PCM──▶ producer

and turns the decoder output into a paced stream of Opus packets:

1. Check the control channel without blocking (stop / pause / resume / volume)
2. While paused, sleep a poll interval and check again
3. Read exactly one 20 ms frame (960 stereo samples) from ffmpeg
4. Scale samples by the volume multiplier
5. Encode one Opus packet and send it on the frame channel
6. Sleep so frames leave at the live playback rate

Whatever ends the loop (natural EOF, Stop, read/encode error, closed frame
channel, task cancellation), cleanup runs exactly once: the control channel
is closed, both processes are killed and reaped, and exactly one EndOfStream
is emitted. Pipeline failures never escape as exceptions; the supervisor only
sees EndOfStream(ERROR).
"""

import asyncio
import os
from typing import Any, Awaitable, Callable, List, Optional

import numpy as np

from src.config.bot_config import BotConfig
from src.config.logging_config import get_logger
from src.services.channels import Channel
from src.services.playback_state import PlaybackStateStore
from src.types.errors import ChannelClosed, PipelineError
from src.types.playback import AudioFrame, ControlKind, EndReason

logger = get_logger(__name__)

# Opus at 48 kHz stereo, 20 ms frames
SAMPLE_RATE = 48000
CHANNELS = 2
FRAME_SIZE = 960
FRAME_BYTES = FRAME_SIZE * CHANNELS * 2
FRAME_DURATION = FRAME_SIZE / SAMPLE_RATE

# Fixed pacing leaves ~3 ms of the 20 ms frame for read + encode
FIXED_PACING_INTERVAL = 0.017

# Adaptive pacing gives up catching up when this far behind
MAX_PACING_LAG = 0.2


def create_opus_encoder() -> Any:
    """Create an Opus encoder for 48 kHz stereo music."""
    import opuslib
    return opuslib.Encoder(SAMPLE_RATE, CHANNELS, 'audio')


def scale_frame(pcm_be: bytes, multiplier: float) -> bytes:
    """
    Scale big-endian s16 samples by multiplier.

    Products are narrowed back to int16 by truncation (no dithering, no
    clipping). Returns native-endian samples, as the Opus encoder expects.
    """
    samples = np.frombuffer(pcm_be, dtype='>i2')
    return (samples.astype(np.float32) * multiplier).astype(np.int16).tobytes()


def build_extractor_command(config: BotConfig, link: str) -> List[str]:
    """yt-dlp arguments for the configured pipeline mode."""
    command = [
        config.ytdlp_path,
        "--quiet",
        "--socket-timeout", str(config.socket_timeout),
        "--write-info-json",
        "--output", "-",
    ]
    if config.pipeline_mode == 'url':
        command += [
            "--format", "bestaudio/best",
            "--no-simulate",
            "--skip-download",
            "--get-url",
        ]
    else:
        command += [
            "--extract-audio",
            "--audio-format", "opus",
            "--audio-quality", "48K",
            "--buffer-size", "16M",
        ]
    command.append(link)
    return command


def build_decoder_command(config: BotConfig, source: str = "pipe:0") -> List[str]:
    """ffmpeg arguments producing raw s16be stereo 48 kHz on stdout."""
    command = [config.ffmpeg_path, "-loglevel", "quiet"]
    if source != "pipe:0":
        command += ["-reconnect", "1", "-reconnect_streamed", "1", "-reconnect_delay_max", "5"]
    command += [
        "-i", source,
        "-f", "s16be",
        "-ac", str(CHANNELS),
        "-ar", str(SAMPLE_RATE),
        "pipe:1",
    ]
    return command


async def terminate_process(process: Optional[asyncio.subprocess.Process], name: str) -> None:
    """
    Kill a subprocess and wait for it to exit.

    Never raises: an already-exited process or a failing wait is only logged.
    """
    if process is None:
        return

    try:
        process.kill()
    except ProcessLookupError:
        logger.debug(f"🧹 {name} already exited")
    except OSError as e:
        logger.error(f"❌ Failed to kill {name}: {e}")

    try:
        returncode = await process.wait()
    except Exception as e:
        logger.error(f"❌ Failed to wait on {name}: {e}")
        return

    # Negative return codes mean "killed by signal", which is our own kill
    if returncode is not None and returncode > 0:
        logger.warning(f"⚠️ {name} exited with non-zero status: {returncode}")
    else:
        logger.debug(f"🧹 {name} reaped (returncode={returncode})")


class AudioProducer:
    """
    Produces one track's Opus packet stream.

    Example usage:
        producer = AudioProducer(
            link="https://youtu.be/...",
            control=control_channel(),
            frames=frame_channel(),
            store=store,
            config=config,
            volume=0.2,
        )
        task = asyncio.create_task(producer.run())
    """

    def __init__(
        self,
        link: str,
        control: Channel,
        frames: Channel,
        store: PlaybackStateStore,
        config: BotConfig,
        volume: float,
        spawn: Optional[Callable[..., Awaitable[Any]]] = None,
        encoder_factory: Optional[Callable[[], Any]] = None,
    ):
        """
        Args:
            link: Media link handed to yt-dlp
            control: Control channel (supervisor → producer), closed on exit
            frames: Frame channel (producer → supervisor)
            store: Shared playback state, producer writes time_passed only
            config: Bot configuration (tools, pipeline, pacing, volume curve)
            volume: Initial user-facing volume fraction
            spawn: Subprocess factory (defaults to asyncio.create_subprocess_exec)
            encoder_factory: Opus encoder factory (defaults to opuslib)
        """
        self.link = link
        self.control = control
        self.frames = frames
        self.store = store
        self.config = config
        self.volume = volume

        self._spawn = spawn or asyncio.create_subprocess_exec
        self._encoder_factory = encoder_factory or create_opus_encoder

        self.extractor: Optional[Any] = None
        self.decoder: Optional[Any] = None
        self._encoder: Any = None

        self.frames_sent = 0
        self.end_reason: Optional[EndReason] = None
        self._cleaned_up = False

    # ============================================================
    # LIFECYCLE
    # ============================================================

    async def run(self) -> EndReason:
        """
        Produce the track until it ends, then clean up.

        Returns:
            The reason carried by the emitted EndOfStream
        """
        reason = EndReason.ERROR
        self.store.reset_elapsed()
        logger.info(f"🎵 Producer starting for {self.link}")

        try:
            try:
                await self._start_pipeline()
                self._encoder = self._create_encoder()
            except PipelineError as e:
                logger.error(f"❌ Pipeline startup failed for {self.link}: {e}")
                return reason

            reason = await self._stream()
            return reason

        except asyncio.CancelledError:
            reason = EndReason.STOPPED
            raise
        finally:
            await self._cleanup(reason)

    async def _start_pipeline(self) -> None:
        """
        Spawn yt-dlp and ffmpeg.

        Raises:
            PipelineError: If either process cannot be started
        """
        if self.config.pipeline_mode == 'url':
            await self._start_url_pipeline()
        else:
            await self._start_pipe_pipeline()

    async def _start_pipe_pipeline(self) -> None:
        read_fd, write_fd = os.pipe()
        try:
            self.extractor = await self._spawn_process(
                "yt-dlp",
                build_extractor_command(self.config, self.link),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=write_fd,
            )
            self.decoder = await self._spawn_process(
                "ffmpeg",
                build_decoder_command(self.config),
                stdin=read_fd,
                stdout=asyncio.subprocess.PIPE,
            )
        finally:
            # The children hold their own copies
            os.close(read_fd)
            os.close(write_fd)

    async def _start_url_pipeline(self) -> None:
        self.extractor = await self._spawn_process(
            "yt-dlp",
            build_extractor_command(self.config, self.link),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
        )

        try:
            line = await self.extractor.stdout.readline()
        except Exception as e:
            raise PipelineError(f"yt-dlp output unreadable: {e}") from e

        media_url = line.decode(errors="replace").strip()
        if not media_url:
            raise PipelineError(f"yt-dlp resolved no media URL for {self.link}")
        logger.debug(f"🔗 Resolved media URL for {self.link}")

        self.decoder = await self._spawn_process(
            "ffmpeg",
            build_decoder_command(self.config, media_url),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
        )

    async def _spawn_process(self, name: str, command: List[str], **kwargs) -> Any:
        try:
            process = await self._spawn(*command, stderr=asyncio.subprocess.DEVNULL, **kwargs)
        except OSError as e:
            raise PipelineError(f"couldn't spawn {name}: {e}") from e
        logger.debug(f"🚀 Spawned {name} (pid={getattr(process, 'pid', None)})")
        return process

    def _create_encoder(self) -> Any:
        try:
            return self._encoder_factory()
        except Exception as e:
            raise PipelineError(f"could not create Opus encoder: {e}") from e

    # ============================================================
    # STREAMING LOOP
    # ============================================================

    async def _stream(self) -> EndReason:
        loop = asyncio.get_running_loop()
        multiplier = self.config.volume_multiplier(self.volume)
        paused = False
        deadline: Optional[float] = None

        while True:
            started = loop.time()

            # Drain pending controls without waiting
            stop = False
            control = self.control.try_recv()
            while control is not None:
                if control.kind is ControlKind.STOP:
                    stop = True
                elif control.kind is ControlKind.SET_VOLUME:
                    self.volume = control.modifier
                    multiplier = self.config.volume_multiplier(self.volume)
                    logger.debug(f"🔊 Volume multiplier now {multiplier:.3f}")
                elif control.kind is ControlKind.PAUSE:
                    paused = True
                elif control.kind is ControlKind.RESUME:
                    paused = False
                control = self.control.try_recv()

            if stop:
                logger.info(f"⏹️ Stop received after {self.frames_sent} frames")
                return EndReason.STOPPED

            if paused:
                logger.trace("⏸️ Paused wait...")
                deadline = None
                await asyncio.sleep(self.config.pause_poll_interval)
                continue

            try:
                pcm = await self.decoder.stdout.readexactly(FRAME_BYTES)
            except asyncio.IncompleteReadError:
                logger.debug("🏁 ffmpeg stdout: EOF")
                return EndReason.COMPLETED
            except Exception as e:
                logger.error(f"❌ Error reading ffmpeg stdout: {e}")
                return EndReason.ERROR

            try:
                packet = self._encoder.encode(scale_frame(pcm, multiplier), FRAME_SIZE)
            except Exception as e:
                logger.error(f"❌ Encoding error: {e}")
                return EndReason.ERROR

            try:
                await self.frames.send(AudioFrame.payload(packet))
            except ChannelClosed as e:
                logger.error(f"❌ Audio packet sending error: {e}")
                return EndReason.ERROR

            self.frames_sent += 1
            logger.trace(f"📦 Frame {self.frames_sent}: {len(packet)} bytes")

            deadline = await self._pace(loop, deadline)
            self.store.add_elapsed(loop.time() - started)

    async def _pace(self, loop: asyncio.AbstractEventLoop, deadline: Optional[float]) -> Optional[float]:
        """
        Sleep so that frames leave at the playback rate.

        Returns:
            The next deadline (adaptive pacing) or None (fixed pacing)
        """
        if self.config.pacing_mode == 'fixed':
            await asyncio.sleep(FIXED_PACING_INTERVAL)
            return None

        now = loop.time()
        deadline = (now if deadline is None else deadline) + FRAME_DURATION
        delay = deadline - now
        if delay < -MAX_PACING_LAG:
            logger.debug(f"⏱️ Producer {-delay:.3f}s behind, resetting pacing clock")
            return now
        if delay > 0:
            await asyncio.sleep(delay)
        return deadline

    # ============================================================
    # CLEANUP
    # ============================================================

    async def _cleanup(self, reason: EndReason) -> None:
        """Release everything and emit the single EndOfStream. Runs once."""
        if self._cleaned_up:
            return
        self._cleaned_up = True
        self.end_reason = reason

        logger.debug("🧹 Cleanup...")
        dropped = self.control.close()
        if dropped:
            logger.debug(f"🧹 Dropped {dropped} unhandled control messages")

        await terminate_process(self.extractor, "yt-dlp")
        await terminate_process(self.decoder, "ffmpeg")

        try:
            await self.frames.send(AudioFrame.end_of_stream(reason))
        except ChannelClosed as e:
            logger.error(f"❌ Status packet sending error: {e}")

        logger.info(
            f"✅ Producer finished for {self.link} "
            f"(reason={reason.value}, frames={self.frames_sent})"
        )
