"""Background work that must never take its caller down.

``fire_and_forget`` detaches a coroutine (the connectivity monitor's reconnect
trigger, for one); ``run_periodic`` drives the server's dispatcher and
reconciliation loops.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any

logger = logging.getLogger(__name__)

_background: set[asyncio.Task[Any]] = set()


def _log_outcome(task: asyncio.Task[Any]) -> None:
    _background.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Background task %s failed", task.get_name(), exc_info=exc)


def fire_and_forget(
    coro: Coroutine[Any, Any, Any], *, task_name: str | None = None
) -> asyncio.Task[Any] | None:
    """Start ``coro`` on the running loop and return its task, or None with no loop.

    A strong reference is held until the task finishes; failures are logged.
    """
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        coro.close()
        logger.debug("No running loop; dropped background task %s", task_name or "unnamed")
        return None
    task = loop.create_task(coro, name=task_name)
    _background.add(task)
    task.add_done_callback(_log_outcome)
    return task


async def run_periodic(
    job: Callable[[], Awaitable[Any]],
    *,
    interval_seconds: float,
    initial_delay_seconds: float = 0,
    name: str = "periodic job",
) -> None:
    """Await ``job`` every ``interval_seconds`` until cancelled. A failed run is logged and skipped."""
    if initial_delay_seconds:
        await asyncio.sleep(initial_delay_seconds)
    while True:
        try:
            await job()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("%s failed; retrying in %.0fs", name, interval_seconds)
        await asyncio.sleep(interval_seconds)


async def drain_background_tasks(timeout_seconds: float = 1.0) -> None:
    """Let detached tasks settle; whatever is still running after the timeout is cancelled.

    Tests call this before asserting on side effects of ``fire_and_forget``.
    """
    running = [task for task in _background if not task.done()]
    if not running:
        return
    _, late = await asyncio.wait(running, timeout=timeout_seconds)
    for task in late:
        task.cancel()
    await asyncio.gather(*late, return_exceptions=True)
