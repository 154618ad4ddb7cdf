"""
FastAPI Server
Status API for TuneBridge

Serves a liveness text at "/" and the playback snapshot at "/status".
The discord_bot module injects the StatusPublisher at startup; until then
"/status" answers 503.
"""

from typing import Optional

from fastapi import FastAPI, HTTPException
from fastapi.responses import PlainTextResponse

from src.config.logging_config import get_logger
from src.services.status_publisher import StatusPublisher, StatusSnapshot

logger = get_logger(__name__)

LIVENESS_TEXT = "TuneBridge is running!"

# ============================================================
# FAST API SETUP
# ============================================================

app = FastAPI(
    title="TuneBridge API",
    description="Playback status for the TuneBridge music bot",
    version="1.0.0"
)

# Publisher will be set by discord_bot module at runtime
_status_publisher: Optional[StatusPublisher] = None


def set_status_publisher(publisher: Optional[StatusPublisher]):
    """Set the status publisher (called by discord_bot module)"""
    global _status_publisher
    _status_publisher = publisher


def get_status_publisher() -> Optional[StatusPublisher]:
    return _status_publisher


# ============================================================
# HEALTH & STATUS ENDPOINTS
# ============================================================

@app.get("/", response_class=PlainTextResponse)
async def liveness():
    """Liveness probe"""
    return LIVENESS_TEXT


@app.get("/status", response_model=StatusSnapshot)
def get_status():
    """
    Current playback status (runs in the threadpool, it may read the info JSON)

    Returns:
        Elapsed time, timestamp, paused flag, track duration and link
    """
    if not _status_publisher:
        raise HTTPException(status_code=503, detail="Status publisher not initialized")

    try:
        return _status_publisher.get_status()
    except Exception as e:
        logger.error(f"❌ Failed to build status snapshot: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))
