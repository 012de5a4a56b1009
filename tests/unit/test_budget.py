"""Tests for the sliding-window budget tracker."""

import asyncio

import pytest

from ratepipe.core.errors import BudgetExceeded
from ratepipe.core.models import RateBudgetConfig
from ratepipe.queue.budget import RateBudgetTracker


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TestRateBudgetConfig:
    """Tests for RateBudgetConfig."""

    def test_default_values(self):
        config = RateBudgetConfig()
        assert config.max_per_window == 4
        assert config.max_per_day == 500
        assert config.window_seconds == 60.0
        assert config.tolerance_seconds == 5.0

    def test_default_retention_is_about_a_day(self):
        config = RateBudgetConfig()
        assert config.retention_seconds == pytest.approx(65 * 60 * 24)
        assert config.effective_window == 65.0

    def test_explicit_retention(self):
        config = RateBudgetConfig(retention_seconds=120)
        assert config.retention_seconds == 120

    def test_rejects_retention_shorter_than_window(self):
        with pytest.raises(ValueError, match="retention_seconds"):
            RateBudgetConfig(max_per_window=2, retention_seconds=1)

        config = RateBudgetConfig(window_seconds=60, tolerance_seconds=5, retention_seconds=65)
        assert config.retention_seconds == 65

    def test_rejects_invalid_caps(self):
        with pytest.raises(ValueError):
            RateBudgetConfig(max_per_window=0)
        with pytest.raises(ValueError):
            RateBudgetConfig(window_seconds=0)


class TestTryStart:
    """Tests for admission decisions."""

    @pytest.mark.asyncio
    async def test_fifth_start_in_window_is_denied(self):
        tracker = RateBudgetTracker(RateBudgetConfig(max_per_window=4), clock=FakeClock())

        granted = [await tracker.try_start(f"op-{i}") for i in range(5)]

        assert granted == [True, True, True, True, False]

    @pytest.mark.asyncio
    async def test_concurrent_starts_respect_cap(self):
        tracker = RateBudgetTracker(RateBudgetConfig(max_per_window=4), clock=FakeClock())

        results = await asyncio.gather(*(tracker.try_start(f"op-{i}") for i in range(5)))

        assert results.count(True) == 4
        assert results.count(False) == 1

    @pytest.mark.asyncio
    async def test_granted_again_after_window_and_tolerance(self):
        clock = FakeClock()
        tracker = RateBudgetTracker(RateBudgetConfig(max_per_window=4), clock=clock)
        for i in range(4):
            assert await tracker.try_start(f"op-{i}")
        for i in range(4):
            await tracker.end(f"op-{i}")

        clock.advance(30)
        assert await tracker.try_start("early") is False

        clock.advance(35)
        assert await tracker.try_start("late") is True

    @pytest.mark.asyncio
    async def test_in_flight_records_always_count(self):
        clock = FakeClock()
        tracker = RateBudgetTracker(RateBudgetConfig(max_per_window=2), clock=clock)
        assert await tracker.try_start("a")
        assert await tracker.try_start("b")

        clock.advance(3600)

        assert await tracker.try_start("c") is False
        await tracker.end("a")
        assert await tracker.try_start("c") is True

    @pytest.mark.asyncio
    async def test_weight_counts_against_window(self):
        tracker = RateBudgetTracker(RateBudgetConfig(max_per_window=4), clock=FakeClock())

        assert await tracker.try_start("heavy", weight=3)
        assert await tracker.try_start("light", weight=1)
        assert await tracker.try_start("next") is False

    @pytest.mark.asyncio
    async def test_daily_cap(self):
        clock = FakeClock()
        config = RateBudgetConfig(max_per_window=10, max_per_day=3, retention_seconds=3600)
        tracker = RateBudgetTracker(config, clock=clock)
        for i in range(3):
            assert await tracker.try_start(f"op-{i}")
            await tracker.end(f"op-{i}")

        clock.advance(120)
        assert await tracker.try_start("window-ok-day-full") is False

        clock.advance(3600)
        assert await tracker.try_start("after-retention") is True

    @pytest.mark.asyncio
    async def test_rejects_non_positive_weight(self):
        tracker = RateBudgetTracker(clock=FakeClock())
        with pytest.raises(ValueError):
            await tracker.try_start("op", weight=0)

    @pytest.mark.asyncio
    async def test_rejects_duplicate_key(self):
        tracker = RateBudgetTracker(clock=FakeClock())
        assert await tracker.try_start("op")
        with pytest.raises(ValueError):
            await tracker.try_start("op")


class TestEnd:
    """Tests for releasing operations."""

    @pytest.mark.asyncio
    async def test_end_unknown_key_is_noop(self):
        tracker = RateBudgetTracker(clock=FakeClock())
        await tracker.end("missing")

        usage = await tracker.usage()
        assert usage.tracked == 0

    @pytest.mark.asyncio
    async def test_end_is_idempotent(self):
        clock = FakeClock()
        tracker = RateBudgetTracker(clock=clock)
        await tracker.try_start("op")
        await tracker.end("op")
        first_end = tracker._records["op"].ended

        clock.advance(10)
        await tracker.end("op")

        assert tracker._records["op"].ended == first_end
        assert tracker._records["op"].ended >= tracker._records["op"].started

    @pytest.mark.asyncio
    async def test_stale_ended_records_are_purged(self):
        clock = FakeClock()
        tracker = RateBudgetTracker(RateBudgetConfig(retention_seconds=100), clock=clock)
        await tracker.try_start("ended")
        await tracker.end("ended")
        await tracker.try_start("running")

        clock.advance(101)
        usage = await tracker.usage()

        assert usage.tracked == 1
        assert usage.in_flight == 1


class TestUsage:
    """Tests for usage snapshots."""

    @pytest.mark.asyncio
    async def test_usage_snapshot(self):
        clock = FakeClock()
        tracker = RateBudgetTracker(RateBudgetConfig(max_per_window=10), clock=clock)
        await tracker.try_start("a", weight=2)
        await tracker.try_start("b", weight=3)
        await tracker.end("a")

        clock.advance(70)
        usage = await tracker.usage()

        assert usage.window_weight == 3
        assert usage.daily_weight == 5
        assert usage.in_flight == 1
        assert usage.tracked == 2


class TestReserve:
    """Tests for the reserve context manager."""

    @pytest.mark.asyncio
    async def test_reserve_ends_record(self):
        tracker = RateBudgetTracker(clock=FakeClock())

        async with tracker.reserve("op"):
            assert (await tracker.usage()).in_flight == 1

        assert (await tracker.usage()).in_flight == 0

    @pytest.mark.asyncio
    async def test_reserve_ends_record_on_error(self):
        tracker = RateBudgetTracker(clock=FakeClock())

        with pytest.raises(RuntimeError):
            async with tracker.reserve("op"):
                raise RuntimeError("boom")

        assert (await tracker.usage()).in_flight == 0

    @pytest.mark.asyncio
    async def test_reserve_raises_when_denied(self):
        tracker = RateBudgetTracker(RateBudgetConfig(max_per_window=1), clock=FakeClock())
        await tracker.try_start("first")

        with pytest.raises(BudgetExceeded) as exc_info:
            async with tracker.reserve("second", weight=2):
                pass

        assert exc_info.value.key == "second"
        assert exc_info.value.weight == 2
