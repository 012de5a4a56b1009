"""
Sliding-window admission control for a single credential.

Tracks weighted usage per operation and grants or denies new operations
against a rolling per-window cap and a daily cap.
"""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable

import structlog

from ratepipe.core.errors import BudgetExceeded
from ratepipe.core.models import BudgetUsage, RateBudgetConfig, UsageRecord

logger = structlog.get_logger()


class RateBudgetTracker:
    """
    Weighted sliding-window rate budget.

    A record counts against the window cap while it is in flight, and for
    ``window + tolerance`` seconds after it started once it has ended. Every
    record that has not been purged counts against the daily cap. Ended
    records are purged after ``retention_seconds``.

    Example:
        tracker = RateBudgetTracker(RateBudgetConfig(max_per_window=4))

        if await tracker.try_start(key):
            try:
                await call_remote()
            finally:
                await tracker.end(key)
    """

    def __init__(
        self,
        config: RateBudgetConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or RateBudgetConfig()
        self._clock = clock
        self._records: dict[str, UsageRecord] = {}
        self._lock = asyncio.Lock()

    def _purge(self, now: float) -> None:
        retention = self.config.retention_seconds
        stale = [
            key
            for key, record in self._records.items()
            if not record.in_flight and now - record.started > retention
        ]
        for key in stale:
            del self._records[key]

    def _window_weight(self, now: float) -> int:
        window = self.config.effective_window
        return sum(
            record.weight
            for record in self._records.values()
            if record.in_flight or now - record.started < window
        )

    def _daily_weight(self) -> int:
        return sum(record.weight for record in self._records.values())

    async def try_start(self, key: str, weight: int = 1) -> bool:
        """
        Try to admit a new operation.

        Args:
            key: Unique key for the operation, passed to end() later
            weight: Cost of the operation against the budget

        Returns:
            True if the operation was admitted, False otherwise
        """
        if weight < 1:
            raise ValueError(f"Weight must be at least 1, got {weight}")

        async with self._lock:
            now = self._clock()
            self._purge(now)

            if key in self._records:
                raise ValueError(f"Key already tracked: {key}")

            if self._window_weight(now) >= self.config.max_per_window:
                logger.debug("Window budget exhausted", key=key, weight=weight)
                return False

            if self._daily_weight() >= self.config.max_per_day:
                logger.debug("Daily budget exhausted", key=key, weight=weight)
                return False

            self._records[key] = UsageRecord(key=key, started=now, weight=weight)
            return True

    async def end(self, key: str) -> None:
        """Mark an operation as ended. Unknown or ended keys are ignored."""
        async with self._lock:
            record = self._records.get(key)
            if record is None or not record.in_flight:
                return
            record.ended = max(self._clock(), record.started)

    async def usage(self) -> BudgetUsage:
        """Get a consistent snapshot of current consumption."""
        async with self._lock:
            now = self._clock()
            self._purge(now)
            return BudgetUsage(
                window_weight=self._window_weight(now),
                daily_weight=self._daily_weight(),
                in_flight=sum(1 for r in self._records.values() if r.in_flight),
                tracked=len(self._records),
            )

    @asynccontextmanager
    async def reserve(self, key: str, weight: int = 1) -> AsyncIterator[None]:
        """
        Hold budget for the duration of a block.

        Raises:
            BudgetExceeded: If admission is denied
        """
        if not await self.try_start(key, weight):
            raise BudgetExceeded(f"Budget exceeded for {key}", key=key, weight=weight)
        try:
            yield
        finally:
            await self.end(key)
