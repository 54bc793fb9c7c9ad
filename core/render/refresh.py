"""Debounced render-refresh scheduling."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from core.utils.log_events import log_event

logger = logging.getLogger("binder.render")

RefreshCallback = Callable[[], Awaitable[None] | None]


class RefreshScheduler:
    """Coalesce bursts of refresh requests into one callback run.

    The first ``schedule`` call opens a window of ``delay_ms``; further calls
    inside that window are absorbed by the pending run. Calls that arrive
    while the callback is running open a new window once it returns.
    """

    def __init__(self, callback: RefreshCallback, delay_ms: int = 150) -> None:
        self._callback = callback
        self._delay_s = max(0, delay_ms) / 1000
        self._pending: asyncio.Task[None] | None = None
        self._requested = 0
        self._running = False
        self.run_count = 0

    @property
    def pending(self) -> bool:
        return self._pending is not None and not self._pending.done()

    def schedule(self) -> None:
        self._requested += 1
        if self._running or self.pending:
            return
        self._pending = asyncio.get_running_loop().create_task(self._run_after_delay())

    async def flush(self) -> None:
        """Run pending refreshes immediately, including follow-ups."""

        while self.pending:
            task = self._pending
            if self._running:
                await task
                continue

            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            if self._pending is task:
                self._pending = None
            await self._run()

    async def _run_after_delay(self) -> None:
        await asyncio.sleep(self._delay_s)
        await self._run()

    async def _run(self) -> None:
        coalesced = self._requested
        self._requested = 0
        self.run_count += 1
        log_event(logger, logging.DEBUG, "refresh", coalesced=coalesced, run_count=self.run_count)
        self._running = True
        try:
            result = self._callback()
            if asyncio.iscoroutine(result):
                await result
        finally:
            self._running = False
            if self._requested:
                log_event(logger, logging.DEBUG, "refresh_follow_up", requested=self._requested)
                self._pending = asyncio.get_running_loop().create_task(self._run_after_delay())
