"""
Unit tests for PlaybackSupervisor

Tests the control loop and state machine:
- Play/queue/next/skip/stop transitions
- Pause/resume idempotence
- Volume set/report, info and help replies
- Track advancement on EndOfStream (including failed tracks)
- Fatal transport errors, disconnect, shutdown and quit
"""

import asyncio
import json
import logging

import pytest

from src.services.audio_producer import AudioProducer
from src.services.command_interpreter import HELP_TEXT, interpret
from src.services.playback_supervisor import PlaybackSupervisor
from src.types.errors import AudioTransportError, ChannelClosed, TransportDisconnectedError
from src.types.playback import Action, ActionKind, AudioFrame, ControlKind, EndReason
from tests.mocks.mock_pipeline import FakeOpusEncoder, FakeSpawner, pcm_frames
from tests.mocks.mock_transport import MockTransport
from tests.utils.helpers import assert_eventually


USER = 777


# ============================================================
# Producer doubles
# ============================================================

class IdleProducer:
    """Emits no audio; records control messages until stopped"""

    instances = []

    def __init__(self, link, control, frames, store, config, volume):
        self.link = link
        self.control = control
        self.frames = frames
        self.volume = volume
        self.controls = []
        IdleProducer.instances.append(self)

    async def run(self):
        while True:
            control = await self.control.recv()
            self.controls.append(control.kind)
            if control.kind is ControlKind.STOP:
                break
        self.control.close()
        try:
            await self.frames.send(AudioFrame.end_of_stream(EndReason.STOPPED))
        except ChannelClosed:
            pass
        return EndReason.STOPPED


def pipeline_factory(spawner):
    """Real AudioProducer over fake processes"""
    def factory(**kwargs):
        return AudioProducer(spawn=spawner, encoder_factory=FakeOpusEncoder, **kwargs)
    return factory


@pytest.fixture(autouse=True)
def reset_idle_producers():
    IdleProducer.instances = []
    yield
    IdleProducer.instances = []


async def start(supervisor):
    task = asyncio.create_task(supervisor.run())
    await asyncio.sleep(0)
    return task


async def quit_and_wait(supervisor, task):
    await supervisor.submit(Action.simple(ActionKind.QUIT))
    await asyncio.wait_for(task, timeout=3.0)


async def say(supervisor, text, user=USER):
    await supervisor.submit(interpret(text, user))


# ============================================================
# Scenarios
# ============================================================

class TestScenarios:

    @pytest.mark.asyncio
    async def test_play_while_idle_starts_track(self, bot_config, mock_transport):
        spawner = FakeSpawner(decoder_data=pcm_frames(500), decoder_eof=False)
        supervisor = PlaybackSupervisor(mock_transport, bot_config, producer_factory=pipeline_factory(spawner))
        task = await start(supervisor)

        await say(supervisor, "!play http://x")
        await assert_eventually(lambda: supervisor.playing)

        snap = supervisor.store.snapshot()
        assert snap.current_link == "http://x"
        assert snap.queue == ()
        assert mock_transport.messages == [(USER, "Playing Link")]
        await assert_eventually(lambda: len(mock_transport.packets) >= 3)
        assert spawner.commands[0][-1] == "http://x"

        await quit_and_wait(supervisor, task)
        assert spawner.decoder.kill_called
        assert not supervisor.playing

    @pytest.mark.asyncio
    async def test_volume_250_clamps_and_reports_100(self, bot_config, mock_transport):
        supervisor = PlaybackSupervisor(mock_transport, bot_config, producer_factory=IdleProducer)
        task = await start(supervisor)

        await say(supervisor, "!play http://x")
        await say(supervisor, "!volume 250")
        await assert_eventually(lambda: len(mock_transport.messages) == 2)

        assert mock_transport.texts()[-1] == "Volume set to: 100"
        assert supervisor.store.snapshot().volume == 1.0
        await assert_eventually(lambda: ControlKind.SET_VOLUME in IdleProducer.instances[0].controls)

        await quit_and_wait(supervisor, task)

    @pytest.mark.asyncio
    async def test_next_then_skip_plays_queued_link(self, bot_config, mock_transport):
        supervisor = PlaybackSupervisor(mock_transport, bot_config, producer_factory=IdleProducer)
        task = await start(supervisor)

        await say(supervisor, "!play http://x")
        await say(supervisor, "!n http://y")
        await assert_eventually(lambda: supervisor.store.snapshot().queue == ("http://y",))

        await say(supervisor, "!skip")
        await assert_eventually(lambda: supervisor.store.snapshot().current_link == "http://y")

        assert supervisor.store.snapshot().queue == ()
        assert [p.link for p in IdleProducer.instances] == ["http://x", "http://y"]
        assert IdleProducer.instances[0].controls == [ControlKind.STOP]
        assert supervisor.tracks_started == 2

        await quit_and_wait(supervisor, task)

    @pytest.mark.asyncio
    async def test_spawn_failure_advances_like_completion(self, bot_config, mock_transport):
        spawner = FakeSpawner(fail_on="yt-dlp")
        supervisor = PlaybackSupervisor(mock_transport, bot_config, producer_factory=pipeline_factory(spawner))

        await say(supervisor, "!play http://x")
        await say(supervisor, "!play http://y")
        task = await start(supervisor)

        await assert_eventually(lambda: len(spawner.calls) == 2 and not supervisor.playing)

        assert [command[-1] for command in spawner.commands] == ["http://x", "http://y"]
        assert mock_transport.finished_count >= 1
        assert mock_transport.packets == []
        assert not supervisor.playing
        assert supervisor.store.snapshot().queue == ()

        await quit_and_wait(supervisor, task)


# ============================================================
# Queue
# ============================================================

class TestQueue:

    @pytest.mark.asyncio
    async def test_queue_holds_links_in_arrival_order(self, bot_config, mock_transport):
        supervisor = PlaybackSupervisor(mock_transport, bot_config, producer_factory=IdleProducer)
        task = await start(supervisor)

        await say(supervisor, "!play http://x")
        for link in ("a", "b", "c"):
            await say(supervisor, f"!play http://{link}")
        await say(supervisor, "!next http://urgent")

        await assert_eventually(lambda: len(mock_transport.messages) == 5)
        assert supervisor.store.snapshot().queue == ("http://urgent", "http://a", "http://b", "http://c")
        assert mock_transport.texts() == ["Playing Link"] + ["Queued Link"] * 4

        await quit_and_wait(supervisor, task)

    @pytest.mark.asyncio
    async def test_next_while_idle_plays(self, bot_config, mock_transport):
        supervisor = PlaybackSupervisor(mock_transport, bot_config, producer_factory=IdleProducer)
        task = await start(supervisor)

        await say(supervisor, "!n http://x")
        await assert_eventually(lambda: supervisor.playing)
        assert supervisor.store.snapshot().current_link == "http://x"
        assert mock_transport.texts() == ["Playing Link"]

        await quit_and_wait(supervisor, task)

    @pytest.mark.asyncio
    async def test_natural_end_plays_next_then_goes_idle(self, bot_config, mock_transport):
        spawner = FakeSpawner(decoder_data=pcm_frames(3))
        supervisor = PlaybackSupervisor(mock_transport, bot_config, producer_factory=pipeline_factory(spawner))

        await say(supervisor, "!play http://a")
        await say(supervisor, "!play http://b")
        task = await start(supervisor)

        await assert_eventually(lambda: mock_transport.finished_count == 1)

        assert len(mock_transport.packets) == 6
        assert supervisor.tracks_started == 2
        assert supervisor.frames_forwarded == 6
        snap = supervisor.store.snapshot()
        assert not snap.playing and snap.current_link is None

        await quit_and_wait(supervisor, task)

    @pytest.mark.asyncio
    async def test_stop_clears_queue_and_pause(self, bot_config, mock_transport):
        supervisor = PlaybackSupervisor(mock_transport, bot_config, producer_factory=IdleProducer)
        task = await start(supervisor)

        await say(supervisor, "!play http://x")
        await say(supervisor, "!play http://a")
        await say(supervisor, "!pause")
        await assert_eventually(lambda: supervisor.paused)

        await say(supervisor, "!stop")
        await assert_eventually(lambda: not supervisor.playing)

        snap = supervisor.store.snapshot()
        assert snap.queue == ()
        assert not snap.paused
        assert mock_transport.finished_count == 1
        assert len(IdleProducer.instances) == 1

        await quit_and_wait(supervisor, task)

    @pytest.mark.asyncio
    async def test_stop_while_idle_is_harmless(self, bot_config, mock_transport):
        supervisor = PlaybackSupervisor(mock_transport, bot_config, producer_factory=IdleProducer)
        task = await start(supervisor)

        await say(supervisor, "!stop")
        await say(supervisor, "!skip")
        await say(supervisor, "!info")
        await assert_eventually(lambda: len(mock_transport.messages) == 1)
        assert not supervisor.playing

        await quit_and_wait(supervisor, task)


# ============================================================
# Pause / Resume
# ============================================================

class TestPauseResume:

    @pytest.mark.asyncio
    async def test_pause_and_resume_are_idempotent(self, bot_config, mock_transport):
        supervisor = PlaybackSupervisor(mock_transport, bot_config, producer_factory=IdleProducer)
        task = await start(supervisor)

        await say(supervisor, "!play http://x")
        await say(supervisor, "!resume")
        await say(supervisor, "!pause")
        await say(supervisor, "!p")
        await say(supervisor, "!r")
        await say(supervisor, "!c")
        await say(supervisor, "!info")
        await assert_eventually(lambda: len(mock_transport.messages) == 2)
        await assert_eventually(
            lambda: IdleProducer.instances[0].controls == [ControlKind.PAUSE, ControlKind.RESUME]
        )
        assert not supervisor.paused

        await quit_and_wait(supervisor, task)

    @pytest.mark.asyncio
    async def test_pause_while_idle_is_noop(self, bot_config, mock_transport):
        supervisor = PlaybackSupervisor(mock_transport, bot_config, producer_factory=IdleProducer)
        task = await start(supervisor)

        await say(supervisor, "!pause")
        await say(supervisor, "!info")
        await assert_eventually(lambda: len(mock_transport.messages) == 1)
        assert not supervisor.paused

        await quit_and_wait(supervisor, task)

    @pytest.mark.asyncio
    async def test_skip_while_paused_clears_pause(self, bot_config, mock_transport):
        supervisor = PlaybackSupervisor(mock_transport, bot_config, producer_factory=IdleProducer)
        task = await start(supervisor)

        await say(supervisor, "!play http://x")
        await say(supervisor, "!play http://y")
        await say(supervisor, "!pause")
        await say(supervisor, "!s")
        await assert_eventually(lambda: supervisor.store.snapshot().current_link == "http://y")
        assert not supervisor.paused

        await quit_and_wait(supervisor, task)


# ============================================================
# Replies
# ============================================================

class TestReplies:

    @pytest.mark.asyncio
    async def test_volume_report(self, bot_config, mock_transport):
        supervisor = PlaybackSupervisor(mock_transport, bot_config, producer_factory=IdleProducer)
        task = await start(supervisor)

        await say(supervisor, "!v")
        await say(supervisor, "!v 0")
        await say(supervisor, "!v 35")
        await say(supervisor, "!volume")
        await assert_eventually(lambda: len(mock_transport.messages) == 4)

        assert mock_transport.texts() == [
            "Current Volume: 20",
            "Current Volume: 20",
            "Volume set to: 35",
            "Current Volume: 35",
        ]
        assert supervisor.store.snapshot().volume == 0.35

        await quit_and_wait(supervisor, task)

    @pytest.mark.asyncio
    async def test_new_track_uses_current_volume(self, bot_config, mock_transport):
        supervisor = PlaybackSupervisor(mock_transport, bot_config, producer_factory=IdleProducer)
        task = await start(supervisor)

        await say(supervisor, "!v 70")
        await say(supervisor, "!play http://x")
        await assert_eventually(lambda: len(IdleProducer.instances) == 1)
        assert IdleProducer.instances[0].volume == 0.7

        await quit_and_wait(supervisor, task)

    @pytest.mark.asyncio
    async def test_info_when_idle(self, bot_config, mock_transport):
        supervisor = PlaybackSupervisor(mock_transport, bot_config, producer_factory=IdleProducer)
        task = await start(supervisor)

        await say(supervisor, "!info")
        await assert_eventually(lambda: len(mock_transport.messages) == 1)
        assert mock_transport.texts() == ["\nCurrently Playing:\nNothing"]

        await quit_and_wait(supervisor, task)

    @pytest.mark.asyncio
    async def test_info_with_metadata(self, bot_config, mock_transport, metadata_file):
        metadata_file(json.dumps({"id": "abc", "title": "Song", "channel": "Artist", "duration": 215.0}))
        supervisor = PlaybackSupervisor(mock_transport, bot_config, producer_factory=IdleProducer)
        task = await start(supervisor)

        await say(supervisor, "!play http://x")
        await say(supervisor, "!i")
        await assert_eventually(lambda: len(mock_transport.messages) == 2)
        assert mock_transport.texts()[-1] == (
            "\nCurrently Playing:\nTitle: Song\nChannel: Artist\nLink: http://x"
        )

        await quit_and_wait(supervisor, task)

    @pytest.mark.asyncio
    async def test_info_without_metadata_falls_back_to_link(self, bot_config, mock_transport):
        supervisor = PlaybackSupervisor(mock_transport, bot_config, producer_factory=IdleProducer)
        task = await start(supervisor)

        await say(supervisor, "!play http://x")
        await say(supervisor, "!info")
        await assert_eventually(lambda: len(mock_transport.messages) == 2)
        assert mock_transport.texts()[-1] == "\nCurrently Playing:\nhttp://x"

        await quit_and_wait(supervisor, task)

    @pytest.mark.asyncio
    async def test_help(self, bot_config, mock_transport):
        supervisor = PlaybackSupervisor(mock_transport, bot_config, producer_factory=IdleProducer)
        task = await start(supervisor)

        await say(supervisor, "!help", user=55)
        await assert_eventually(lambda: len(mock_transport.messages) == 1)
        assert mock_transport.messages == [(55, HELP_TEXT)]

        await quit_and_wait(supervisor, task)

    @pytest.mark.asyncio
    async def test_reply_failure_is_not_fatal(self, bot_config):
        transport = MockTransport(fail_messages=True)
        supervisor = PlaybackSupervisor(transport, bot_config, producer_factory=IdleProducer)
        task = await start(supervisor)

        await say(supervisor, "!play http://x")
        await assert_eventually(lambda: supervisor.playing)
        assert not task.done()

        await quit_and_wait(supervisor, task)

    @pytest.mark.asyncio
    async def test_none_actions_are_dropped(self, bot_config, mock_transport):
        supervisor = PlaybackSupervisor(mock_transport, bot_config, producer_factory=IdleProducer)

        await say(supervisor, "just chatting")
        await supervisor.submit(Action.none())

        assert supervisor.actions.qsize() == 0


# ============================================================
# Termination
# ============================================================

class TestTermination:

    @pytest.mark.asyncio
    async def test_audio_send_failure_is_fatal(self, bot_config):
        transport = MockTransport(fail_audio=True)
        spawner = FakeSpawner(decoder_data=pcm_frames(500), decoder_eof=False)
        supervisor = PlaybackSupervisor(transport, bot_config, producer_factory=pipeline_factory(spawner))

        await say(supervisor, "!play http://x")
        with pytest.raises(AudioTransportError):
            await asyncio.wait_for(supervisor.run(), timeout=3.0)

        assert spawner.decoder.kill_called
        assert spawner.extractor.kill_called
        assert not supervisor.playing

    @pytest.mark.asyncio
    async def test_disconnect_is_fatal(self, bot_config, mock_transport):
        supervisor = PlaybackSupervisor(mock_transport, bot_config, producer_factory=IdleProducer)
        task = await start(supervisor)

        await say(supervisor, "!play http://x")
        await assert_eventually(lambda: supervisor.playing)
        mock_transport.disconnected.set()

        with pytest.raises(TransportDisconnectedError):
            await asyncio.wait_for(task, timeout=3.0)
        assert IdleProducer.instances[0].controls == [ControlKind.STOP]

    @pytest.mark.asyncio
    async def test_shutdown_request_stops_producer(self, bot_config, mock_transport):
        spawner = FakeSpawner(decoder_data=pcm_frames(500), decoder_eof=False)
        supervisor = PlaybackSupervisor(mock_transport, bot_config, producer_factory=pipeline_factory(spawner))
        task = await start(supervisor)

        await say(supervisor, "!play http://x")
        await say(supervisor, "!play http://y")
        await assert_eventually(lambda: len(mock_transport.packets) >= 2)

        supervisor.request_shutdown()
        await asyncio.wait_for(task, timeout=3.0)

        assert spawner.decoder.kill_called
        snap = supervisor.store.snapshot()
        assert not snap.playing
        assert snap.queue == ()

    @pytest.mark.asyncio
    async def test_quit_while_playing_stops_producer_cleanly(self, bot_config, mock_transport, caplog):
        spawner = FakeSpawner(decoder_data=pcm_frames(500), decoder_eof=False)
        producers = []

        def factory(**kwargs):
            producer = pipeline_factory(spawner)(**kwargs)
            producers.append(producer)
            return producer

        supervisor = PlaybackSupervisor(mock_transport, bot_config, producer_factory=factory)
        task = await start(supervisor)

        await say(supervisor, "!play http://x")
        await assert_eventually(lambda: len(mock_transport.packets) >= 2)

        with caplog.at_level(logging.DEBUG):
            await quit_and_wait(supervisor, task)

        assert producers[0].end_reason is EndReason.STOPPED
        assert "Audio packet sending error" not in caplog.text
        assert spawner.decoder.kill_called and spawner.extractor.kill_called

    @pytest.mark.asyncio
    async def test_actions_after_exit_are_dropped(self, bot_config, mock_transport):
        supervisor = PlaybackSupervisor(mock_transport, bot_config, producer_factory=IdleProducer)
        task = await start(supervisor)
        await quit_and_wait(supervisor, task)

        await say(supervisor, "!play http://x")
        assert supervisor.actions.closed
        assert IdleProducer.instances == []

    @pytest.mark.asyncio
    async def test_quit_discards_pending_actions(self, bot_config, mock_transport):
        supervisor = PlaybackSupervisor(mock_transport, bot_config, producer_factory=IdleProducer)

        await supervisor.submit(Action.simple(ActionKind.QUIT))
        await say(supervisor, "!play http://x")
        await asyncio.wait_for(supervisor.run(), timeout=2.0)

        assert IdleProducer.instances == []
        assert mock_transport.messages == []
