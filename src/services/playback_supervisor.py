"""
Playback Supervisor

The long-lived control loop. It owns the playback state machine

    Idle ──play──▶ Playing ──pause──▶ Playing+Paused
      ▲              │ ▲                  │
      └─end, queue───┘ └──────resume──────┘
        empty

plus the FIFO queue, starts one AudioProducer per track, relays
pause/resume/stop/volume to it, forwards its Opus packets to the transport
and answers info/help/volume queries.

Event sources, serviced by a single asyncio.wait(FIRST_COMPLETED):
- next Action (from the chat transport)
- next AudioFrame (from the active producer, ~50 per second)
- transport disconnect
- shutdown request (SIGINT/SIGTERM)

Frames are handled before actions when both are ready: audio is time
sensitive, commands are not. A new producer is only started after the
previous one's EndOfStream has been observed, so tracks never overlap.
"""

import asyncio
from typing import Any, Callable, Optional, Set

from src.config.bot_config import BotConfig
from src.config.logging_config import get_logger
from src.services.audio_producer import AudioProducer
from src.services.channels import Channel, control_channel, frame_channel
from src.services.command_interpreter import HELP_TEXT
from src.services.playback_state import PlaybackStateStore
from src.services.track_metadata import read_track_metadata
from src.services.transport import Transport
from src.types.errors import (
    AudioTransportError,
    ChannelClosed,
    MetadataError,
    TransportDisconnectedError,
)
from src.types.playback import (
    Action,
    ActionKind,
    AudioFrame,
    EndReason,
    ProducerControl,
)

logger = get_logger(__name__)


class PlaybackSupervisor:
    """
    Single-writer owner of the playback state.

    Example usage:
        supervisor = PlaybackSupervisor(transport=transport, config=config)
        await supervisor.submit(interpret("!play https://...", user_id))
        await supervisor.run()   # returns on !quit or shutdown request
    """

    def __init__(
        self,
        transport: Transport,
        config: BotConfig,
        store: Optional[PlaybackStateStore] = None,
        producer_factory: Optional[Callable[..., Any]] = None,
    ):
        """
        Args:
            transport: Outbound chat/voice transport
            config: Bot configuration
            store: Shared playback state (created if omitted)
            producer_factory: Builds a producer for one track; defaults to AudioProducer
        """
        self.transport = transport
        self.config = config
        self.store = store or PlaybackStateStore(volume=config.default_volume)
        self._producer_factory = producer_factory or AudioProducer

        # Inbound actions, unbounded so chat handlers never wait on playback
        self.actions: Channel = Channel(name="actions")

        # Per-track channel pair and task, replaced on every track start
        self._control: Optional[Channel] = None
        self._frames: Optional[Channel] = None
        self._producer_task: Optional[asyncio.Task] = None
        self.producer: Optional[Any] = None

        self._shutdown = asyncio.Event()
        self.tracks_started = 0
        self.frames_forwarded = 0

    # ============================================================
    # PUBLIC API
    # ============================================================

    async def submit(self, action: Action) -> None:
        """Queue an action for the control loop (NONE actions are dropped)."""
        if action.is_none:
            return
        try:
            await self.actions.send(action)
        except ChannelClosed:
            logger.debug(f"🚫 Control loop finished, dropping {action.kind.value}")

    def request_shutdown(self) -> None:
        """Ask the control loop to exit after cleanup. Safe to call from signal handlers."""
        self._shutdown.set()

    @property
    def playing(self) -> bool:
        return self.store.snapshot().playing

    @property
    def paused(self) -> bool:
        return self.store.snapshot().paused

    # ============================================================
    # CONTROL LOOP
    # ============================================================

    async def run(self) -> None:
        """
        Run until Quit or a shutdown request.

        Raises:
            AudioTransportError: A frame could not be sent to the voice connection
            TransportDisconnectedError: The transport reported a disconnect
        """
        logger.info("🎛️ Playback supervisor started")

        action_waiter: Optional[asyncio.Task] = None
        frame_waiter: Optional[asyncio.Task] = None
        frame_source: Optional[Channel] = None
        disconnect_waiter = asyncio.create_task(self.transport.disconnected.wait())
        shutdown_waiter = asyncio.create_task(self._shutdown.wait())

        try:
            while True:
                if action_waiter is None:
                    action_waiter = asyncio.create_task(self.actions.recv())
                if frame_waiter is None and self._frames is not None:
                    frame_source = self._frames
                    frame_waiter = asyncio.create_task(frame_source.recv())

                waiters: Set[asyncio.Task] = {action_waiter, disconnect_waiter, shutdown_waiter}
                if frame_waiter is not None:
                    waiters.add(frame_waiter)

                done, _ = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)

                if frame_waiter is not None and frame_waiter in done:
                    frame = frame_waiter.result()
                    frame_waiter = None
                    if frame_source is self._frames:
                        await self._handle_frame(frame)

                if action_waiter in done:
                    action = action_waiter.result()
                    action_waiter = None
                    if action.kind is ActionKind.QUIT:
                        logger.info("👋 Quit requested")
                        break
                    await self._handle_action(action)

                if shutdown_waiter in done:
                    logger.info("⚠️ Shutdown requested")
                    break

                if disconnect_waiter in done:
                    logger.error("❌ Transport disconnected")
                    raise TransportDisconnectedError("Disconnected")
        finally:
            pending = [
                t for t in (action_waiter, frame_waiter, disconnect_waiter, shutdown_waiter)
                if t is not None and not t.done()
            ]
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

            await self._release()
            logger.info(
                f"✅ Playback supervisor stopped (tracks={self.tracks_started}, "
                f"frames={self.frames_forwarded})"
            )

    # ============================================================
    # FRAMES
    # ============================================================

    async def _handle_frame(self, frame: AudioFrame) -> None:
        if frame.is_end_of_stream:
            await self._on_track_end(frame.reason)
            return

        if not self.store.snapshot().playing:
            return

        try:
            await self.transport.send_audio(frame.packet)
        except Exception as e:
            logger.error(f"❌ Audio packet sending error: {e}")
            raise AudioTransportError(str(e)) from e
        self.frames_forwarded += 1

    async def _on_track_end(self, reason: EndReason) -> None:
        finished = self.store.snapshot().current_link
        logger.info(f"🏁 Track ended ({reason.value}): {finished}")

        # EndOfStream is the producer's last act; reap the task
        task = self._producer_task
        if task is not None:
            try:
                await task
            except Exception as e:
                logger.error(f"❌ Producer task failed after end of stream: {e}", exc_info=True)

        self._control = None
        self._frames = None
        self._producer_task = None
        self.producer = None

        next_link = self.store.pop_next()
        if next_link is not None:
            self._start_producer(next_link)
            return

        self.store.go_idle()
        logger.info("💤 Queue empty, idle")
        try:
            await self.transport.audio_finished()
        except Exception as e:
            logger.warning(f"⚠️ Transport idle notification failed: {e}")

    def _start_producer(self, link: str) -> None:
        self._control = control_channel()
        self._frames = frame_channel()
        self.store.start_track(link)

        self.producer = self._producer_factory(
            link=link,
            control=self._control,
            frames=self._frames,
            store=self.store,
            config=self.config,
            volume=self.store.snapshot().volume,
        )
        self.tracks_started += 1
        self._producer_task = asyncio.create_task(
            self.producer.run(), name=f"producer-{self.tracks_started}"
        )
        logger.info(f"▶️ Playing {link} (track #{self.tracks_started})")

    def _send_control(self, control: ProducerControl) -> None:
        if self._control is None:
            return
        try:
            self._control.send_nowait(control)
        except ChannelClosed:
            logger.debug(f"🚫 Producer already finishing, dropped {control.kind.value}")

    # ============================================================
    # ACTIONS
    # ============================================================

    async def _handle_action(self, action: Action) -> None:
        kind = action.kind
        state = self.store.snapshot()
        logger.debug(f"🎛️ Action {kind.value} (playing={state.playing}, paused={state.paused})")

        if kind in (ActionKind.PLAY_OR_QUEUE, ActionKind.QUEUE_NEXT):
            if not state.playing:
                self._start_producer(action.link)
                await self._reply(action.requester, "Playing Link")
            elif kind is ActionKind.QUEUE_NEXT:
                self.store.enqueue_next(action.link)
                await self._reply(action.requester, "Queued Link")
            else:
                self.store.enqueue(action.link)
                await self._reply(action.requester, "Queued Link")

        elif kind is ActionKind.SKIP:
            if state.playing:
                self.store.set_paused(False)
                self._send_control(ProducerControl.stop())

        elif kind is ActionKind.STOP:
            cleared = self.store.clear_queue()
            self.store.set_paused(False)
            if state.playing:
                self._send_control(ProducerControl.stop())
            logger.info(f"⏹️ Stopped (cleared {cleared} queued links)")

        elif kind is ActionKind.PAUSE:
            if state.playing and not state.paused:
                self.store.set_paused(True)
                self._send_control(ProducerControl.pause())

        elif kind is ActionKind.RESUME:
            if state.playing and state.paused:
                self.store.set_paused(False)
                self._send_control(ProducerControl.resume())

        elif kind is ActionKind.SET_VOLUME:
            await self._handle_volume(action, state.playing, state.volume)

        elif kind is ActionKind.INFO:
            await self._reply(action.requester, self._info_text())

        elif kind is ActionKind.HELP:
            await self._reply(action.requester, HELP_TEXT)

    async def _handle_volume(self, action: Action, playing: bool, current: float) -> None:
        modifier = action.modifier
        if modifier is not None and 0.0 < modifier <= 1.0:
            self.store.set_volume(modifier)
            if playing:
                self._send_control(ProducerControl.set_volume(modifier))
            await self._reply(action.requester, f"Volume set to: {round(modifier * 100)}")
        else:
            await self._reply(action.requester, f"Current Volume: {round(current * 100)}")

    def _info_text(self) -> str:
        state = self.store.snapshot()
        text = "\nCurrently Playing:\n"
        if not state.playing:
            return text + "Nothing"

        link = state.current_link or ""
        try:
            metadata = read_track_metadata(self.config.metadata_file)
        except MetadataError as e:
            logger.warning(f"⚠️ Track metadata unavailable: {e}")
            return text + link
        return text + f"Title: {metadata.title}\nChannel: {metadata.channel}\nLink: {link}"

    async def _reply(self, target: Any, text: str) -> None:
        try:
            await self.transport.send_message(target, text)
        except Exception as e:
            logger.error(f"❌ Message sending error: {e}")

    # ============================================================
    # SHUTDOWN
    # ============================================================

    async def _release(self) -> None:
        """Stop accepting actions, stop the producer and wait for its cleanup."""
        dropped = self.actions.close()
        if dropped:
            logger.info(f"🚫 Dropped {dropped} pending actions")

        task = self._producer_task
        if task is not None and not task.done():
            self._send_control(ProducerControl.stop())
            # Keep a producer blocked on a full frame channel moving until it sees Stop
            frames = self._frames
            drain = None
            if frames is not None:
                drain = asyncio.create_task(self._discard_frames(frames))
            try:
                await asyncio.wait_for(task, timeout=self.config.shutdown_timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    f"⚠️ Producer did not stop within {self.config.shutdown_timeout}s, cancelled"
                )
            except Exception as e:
                logger.error(f"❌ Producer failed during shutdown: {e}", exc_info=True)
            finally:
                if drain is not None:
                    drain.cancel()
                    await asyncio.gather(drain, return_exceptions=True)
                    frames.close()

        self._control = None
        self._frames = None
        self._producer_task = None
        self.producer = None
        self.store.clear_queue()
        self.store.go_idle()

    async def _discard_frames(self, frames: Channel) -> None:
        discarded = 0
        try:
            while True:
                await frames.recv()
                discarded += 1
        finally:
            logger.debug(f"🧹 Discarded {discarded} frames during shutdown")
