"""
test_engagement.py — Tests for capture/engagement.py

engaged_session fires once per page view when time on page passes 30s or
scroll depth passes 50%. Threshold boundaries, the once-only rule, reset on
a new page view, exit flush, and the periodic timer.

Called by: pytest
Depends on: storefront_intel/capture/engagement.py
"""

import asyncio

from storefront_intel.capture.engagement import EngagementTimer, EngagementTracker, scroll_depth


def _run(coro):
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


class FakeClock:
    def __init__(self, t: float = 1000.0):
        self.t = t

    def __call__(self) -> float:
        return self.t

    def advance(self, seconds: float) -> None:
        self.t += seconds


# ── scroll_depth ────────────────────────────────────────────────────


class TestScrollDepth:
    def test_top_of_page(self):
        assert scroll_depth(0, 800, 4000) == 20

    def test_bottom_of_page(self):
        assert scroll_depth(3200, 800, 4000) == 100

    def test_clamped(self):
        assert scroll_depth(5000, 800, 4000) == 100

    def test_zero_document_height(self):
        assert scroll_depth(100, 800, 0) == 0


# ── Threshold ───────────────────────────────────────────────────────


class TestThreshold:
    def test_below_both_thresholds_no_event(self):
        tracker = EngagementTracker(clock=FakeClock())
        assert tracker.check(elapsed=29, scroll_pct=40) is None

    def test_exact_thresholds_do_not_fire(self):
        tracker = EngagementTracker(clock=FakeClock())
        assert tracker.check(elapsed=30, scroll_pct=50) is None

    def test_time_threshold_fires(self):
        tracker = EngagementTracker(clock=FakeClock())
        data = tracker.check(elapsed=31, scroll_pct=40)
        assert data == {"time_on_page": 31, "scroll_depth": 40}

    def test_scroll_threshold_fires(self):
        tracker = EngagementTracker(clock=FakeClock())
        data = tracker.check(elapsed=5, scroll_pct=51)
        assert data == {"time_on_page": 5, "scroll_depth": 51}

    def test_fires_only_once_per_page_view(self):
        tracker = EngagementTracker(clock=FakeClock())
        assert tracker.check(elapsed=31) is not None
        assert tracker.check(elapsed=90, scroll_pct=100) is None
        assert tracker.flush_on_exit(elapsed=120) is None

    def test_uses_clock_when_elapsed_not_given(self):
        clock = FakeClock()
        tracker = EngagementTracker(clock=clock)
        clock.advance(12)
        assert tracker.check() is None
        clock.advance(20)
        assert tracker.check()["time_on_page"] == 32

    def test_max_scroll_is_kept(self):
        tracker = EngagementTracker(clock=FakeClock())
        tracker.record_scroll(45)
        tracker.record_scroll(10)
        assert tracker.check(elapsed=40)["scroll_depth"] == 45

    def test_reset_allows_next_page_view_to_fire(self):
        clock = FakeClock()
        tracker = EngagementTracker(clock=clock)
        assert tracker.check(scroll_pct=80) is not None
        tracker.reset()
        assert tracker.max_scroll == 0
        assert tracker.check(scroll_pct=60) is not None

    def test_flush_on_exit_reports_unsent(self):
        tracker = EngagementTracker(clock=FakeClock())
        tracker.record_scroll(70)
        assert tracker.flush_on_exit(elapsed=3) == {"time_on_page": 3, "scroll_depth": 70}

    def test_flush_on_exit_below_threshold(self):
        tracker = EngagementTracker(clock=FakeClock())
        assert tracker.flush_on_exit(elapsed=3) is None


# ── Periodic timer ──────────────────────────────────────────────────


class TestEngagementTimer:
    def test_ticks_until_callback_returns_true(self):
        calls = []

        async def on_tick():
            calls.append(1)
            return len(calls) >= 3

        async def scenario():
            timer = EngagementTimer(0.01, on_tick)
            timer.start()
            await asyncio.sleep(0.2)
            return timer.running

        assert _run(scenario()) is False
        assert len(calls) == 3

    def test_stop_cancels(self):
        calls = []

        async def on_tick():
            calls.append(1)
            return False

        async def scenario():
            timer = EngagementTimer(0.05, on_tick)
            timer.start()
            timer.stop()
            await asyncio.sleep(0.1)
            return timer.running

        assert _run(scenario()) is False
        assert calls == []

    def test_tick_error_does_not_stop_timer(self):
        calls = []

        async def on_tick():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("boom")
            return True

        async def scenario():
            timer = EngagementTimer(0.01, on_tick)
            timer.start()
            await asyncio.sleep(0.2)

        _run(scenario())
        assert len(calls) == 2
