"""Fixed-interval polling of async conditions."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from ..errors import ReadinessTimeoutError

DEFAULT_POLL_INTERVAL = 0.1


async def _poll_forever(condition: Callable[[], Awaitable[bool]], interval: float) -> None:
    while not await condition():
        await asyncio.sleep(interval)


async def poll_immediate(
    condition: Callable[[], Awaitable[bool]],
    interval: float = DEFAULT_POLL_INTERVAL,
    timeout: float | None = None,
    description: str = "condition",
) -> None:
    """Poll a condition until it returns True.

    The condition is evaluated right away, then every ``interval`` seconds.
    Errors raised by the condition abort the poll and propagate unchanged, so
    a condition can signal a fatal state (e.g. an object that was deleted).
    Cancelling the calling task cancels the poll.

    Args:
        condition: Async callable returning True when done.
        interval: Seconds between evaluations.
        timeout: Give up after this many seconds (None = poll until cancelled).
        description: What is being waited for, used in the timeout error.

    Raises:
        ReadinessTimeoutError: If the timeout elapses first.
    """
    try:
        await asyncio.wait_for(_poll_forever(condition, interval), timeout=timeout)
    except asyncio.TimeoutError as e:
        raise ReadinessTimeoutError(
            f"timed out after {timeout}s waiting for {description}"
        ) from e
