"""Engagement detection — one engaged_session per page view.

Fires when time on page exceeds 30s or max scroll depth exceeds 50%.
Checked on every scroll observation and by a periodic timer (EngagementTimer),
so a visitor who scrolls once and then stops reading is still credited.
On page exit, flush_on_exit() hands back a pending event if the threshold
was met but never reported.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable

log = logging.getLogger(__name__)


def scroll_depth(scroll_top: float, window_height: float, document_height: float) -> int:
    """Percentage of the document seen, 0-100."""
    if not document_height or document_height <= 0:
        return 0
    pct = round((scroll_top + window_height) / document_height * 100)
    return max(0, min(pct, 100))


class EngagementTracker:
    def __init__(self, min_seconds: float = 30, min_scroll_pct: float = 50,
                 clock: Callable[[], float] = time.monotonic):
        self.min_seconds = min_seconds
        self.min_scroll_pct = min_scroll_pct
        self.clock = clock
        self.reset()

    def reset(self) -> None:
        """Start a new page view."""
        self.started_at = self.clock()
        self.max_scroll = 0
        self.fired = False

    def elapsed(self) -> float:
        return self.clock() - self.started_at

    def record_scroll(self, pct) -> None:
        self.max_scroll = max(self.max_scroll, min(100, max(0, int(pct or 0))))

    def _threshold_met(self, elapsed: float) -> bool:
        return elapsed > self.min_seconds or self.max_scroll > self.min_scroll_pct

    def _payload(self, elapsed: float) -> dict:
        return {"time_on_page": round(elapsed), "scroll_depth": self.max_scroll}

    def check(self, elapsed: float | None = None, scroll_pct: float | None = None) -> dict | None:
        """Event data the first time the threshold is crossed, else None."""
        if scroll_pct is not None:
            self.record_scroll(scroll_pct)
        if self.fired:
            return None
        if elapsed is None:
            elapsed = self.elapsed()
        if not self._threshold_met(elapsed):
            return None
        self.fired = True
        return self._payload(elapsed)

    def flush_on_exit(self, elapsed: float | None = None) -> dict | None:
        return self.check(elapsed=elapsed)


class EngagementTimer:
    """Periodic check on the running loop; stops once the callback returns True."""

    def __init__(self, interval: float, on_tick: Callable[[], Awaitable[bool]]):
        self.interval = interval
        self.on_tick = on_tick
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                if await self.on_tick():
                    return
            except Exception as e:
                log.warning(f"Engagement tick failed: {e}")

    def stop(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
