"""
Pytest configuration and shared fixtures for TuneBridge tests
"""
import pytest
import asyncio
import os
from unittest.mock import AsyncMock

import sys
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from fastapi.testclient import TestClient

from src.api.server import app, set_status_publisher
from src.config.bot_config import BotConfig
from src.services.playback_state import PlaybackStateStore
from src.services.status_publisher import StatusPublisher
from tests.mocks.mock_pipeline import FakeOpusEncoder, FakeSpawner, pcm_frames
from tests.mocks.mock_transport import MockTransport


# ============================================================
# Configuration
# ============================================================

@pytest.fixture
def bot_config(tmp_path):
    """
    BotConfig suitable for tests

    Short pause poll and shutdown timeout keep tests fast; the metadata file
    lives in a per-test temporary directory.
    """
    return BotConfig(
        discord_token="test_discord_token_12345",
        voice_channel_id=555555555,
        pause_poll_interval=0.01,
        shutdown_timeout=1.0,
        metadata_file=str(tmp_path / "-.info.json"),
    )


@pytest.fixture
def metadata_file(bot_config):
    """Writes sidecar metadata into the configured location"""
    def _write(content: str):
        with open(bot_config.metadata_file, "w", encoding="utf-8") as f:
            f.write(content)
        return bot_config.metadata_file
    return _write


# ============================================================
# Playback Components
# ============================================================

@pytest.fixture
def store():
    """Fresh shared playback state"""
    return PlaybackStateStore(volume=0.2)


@pytest.fixture
def mock_transport():
    """In-memory transport recording replies and packets"""
    return MockTransport()


@pytest.fixture
def opus_encoder():
    return FakeOpusEncoder()


@pytest.fixture
def spawner():
    """Fake subprocess spawner producing five PCM frames then EOF"""
    return FakeSpawner(decoder_data=pcm_frames(5))


# ============================================================
# FastAPI Test Client
# ============================================================

@pytest.fixture
def status_client(store, bot_config):
    """
    FastAPI TestClient with a StatusPublisher over the `store` fixture

    Usage:
        def test_endpoint(status_client):
            response = status_client.get("/status")
            assert response.status_code == 200
    """
    set_status_publisher(StatusPublisher(store, bot_config.metadata_file))
    with TestClient(app) as client:
        yield client
    set_status_publisher(None)


# ============================================================
# Environment Configuration
# ============================================================

@pytest.fixture
def clean_env(monkeypatch):
    """Remove every TuneBridge variable from the environment"""
    for key in list(os.environ):
        if key.startswith(("DISCORD_", "STATUS_", "LOG_LEVEL")) or key in (
            "COMMAND_PREFIX", "DEFAULT_VOLUME", "VOLUME_CURVE", "VOLUME_DAMPING",
            "PIPELINE_MODE", "PACING_MODE", "YTDLP_PATH", "FFMPEG_PATH",
            "METADATA_FILE", "SOCKET_TIMEOUT", "PAUSE_POLL_INTERVAL", "SHUTDOWN_TIMEOUT",
        ):
            monkeypatch.delenv(key, raising=False)
    return monkeypatch


# ============================================================
# Async Helper Utilities
# ============================================================

@pytest.fixture
def async_mock():
    """
    Helper to create AsyncMock objects

    Usage:
        async def test_something(async_mock):
            mock_func = async_mock(return_value="test")
            result = await mock_func()
            assert result == "test"
    """
    def _create_async_mock(**kwargs):
        return AsyncMock(**kwargs)
    return _create_async_mock


# ============================================================
# Cleanup Fixtures
# ============================================================

@pytest.fixture(autouse=True)
async def cleanup_tasks():
    """
    Automatically cleanup any running tasks after each test
    to prevent task leakage
    """
    yield

    # Cancel any pending tasks
    tasks = [task for task in asyncio.all_tasks()
             if not task.done() and task != asyncio.current_task()]

    for task in tasks:
        task.cancel()

    # Wait for cancellation
    if tasks:
        await asyncio.gather(*tasks, return_exceptions=True)
