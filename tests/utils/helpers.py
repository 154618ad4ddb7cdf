"""
Test utility helpers for TuneBridge testing
"""
import asyncio
from typing import Callable, List

from src.services.channels import Channel


# ============================================================
# Async Helpers
# ============================================================

async def wait_for_condition(
    condition: Callable[[], bool],
    timeout: float = 5.0,
    interval: float = 0.01
) -> bool:
    """
    Wait for a condition to become true

    Args:
        condition: Function that returns True when condition is met
        timeout: Maximum time to wait in seconds
        interval: Check interval in seconds

    Returns:
        True if condition was met, False if timeout

    Usage:
        await wait_for_condition(lambda: len(transport.packets) >= 3, timeout=2.0)
    """
    elapsed = 0.0
    while elapsed < timeout:
        if condition():
            return True
        await asyncio.sleep(interval)
        elapsed += interval
    return False


async def assert_eventually(
    condition: Callable[[], bool],
    timeout: float = 2.0,
    message: str = "Condition not met within timeout"
):
    """
    Assert that a condition becomes true within timeout

    Raises:
        AssertionError: If condition doesn't become true
    """
    result = await wait_for_condition(condition, timeout=timeout)
    assert result, message


async def drain_channel(channel: Channel, timeout: float = 2.0) -> List:
    """
    Receive from a channel until an end-of-stream frame or timeout

    Returns:
        Every received item, the end-of-stream frame included
    """
    items = []
    while True:
        item = await asyncio.wait_for(channel.recv(), timeout=timeout)
        items.append(item)
        if getattr(item, "is_end_of_stream", False):
            return items
