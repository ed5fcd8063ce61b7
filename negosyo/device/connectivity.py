"""Turns raw connectivity reports into one reconnect trigger per offline→online edge."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from negosyo.core.async_tasks import fire_and_forget

logger = logging.getLogger(__name__)

DEFAULT_SETTLE_SECONDS = 2.0


class ConnectivityMonitor:
    """Feed it every connectivity poll via ``report()``.

    A trigger is scheduled only when the device goes from disconnected to
    connected, and fires after ``settle_seconds`` so the realtime channel can
    re-establish first. Repeated "connected" reports do nothing; going
    offline again before the delay elapses cancels the pending trigger. The
    very first report is not an edge.
    """

    def __init__(
        self,
        on_reconnect: Callable[[], Awaitable[Any]],
        *,
        settle_seconds: float = DEFAULT_SETTLE_SECONDS,
    ):
        self.on_reconnect = on_reconnect
        self.settle_seconds = settle_seconds
        self.connected: bool | None = None
        self._was_offline = False
        self._timer: asyncio.TimerHandle | None = None
        self.last_task: asyncio.Task | None = None

    @property
    def trigger_pending(self) -> bool:
        return self._timer is not None

    def report(self, connected: bool) -> None:
        if not connected:
            if self.connected is not False:
                logger.info("Device went offline")
            self._was_offline = True
            self._cancel_timer()
        elif self._was_offline:
            self._was_offline = False
            logger.info("Device back online; syncing in %.1fs", self.settle_seconds)
            self._cancel_timer()
            loop = asyncio.get_running_loop()
            self._timer = loop.call_later(self.settle_seconds, self._fire)
        self.connected = connected

    def _fire(self) -> None:
        self._timer = None
        self.last_task = fire_and_forget(self.on_reconnect(), task_name="offline-sync")

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def close(self) -> None:
        self._cancel_timer()
