"""
Bounded-concurrency work queue with completion-order streaming.

Runs a batch of async unit functions under a throughput cap (dispatch starts
per refill interval) and a concurrency cap, retries each unit once, and
streams outcomes back as they complete.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Iterable, Sequence, TypeVar

import structlog

from ratepipe.core.config import PipelineSettings
from ratepipe.core.errors import PipelineCancelledError
from ratepipe.core.models import PipelineResult, WorkItem
from ratepipe.utils.metrics import Metrics
from ratepipe.utils.retry import RetryConfig, retry_async

logger = structlog.get_logger()

T = TypeVar("T")


class TicketPool:
    """
    Throughput permits.

    refill() resets the pool to capacity; permits left over from the
    previous interval are discarded rather than accumulated.
    """

    def __init__(self, capacity: int):
        self.capacity = capacity
        self._available = capacity
        self._condition = asyncio.Condition()

    @property
    def available(self) -> int:
        return self._available

    async def acquire(self) -> None:
        async with self._condition:
            await self._condition.wait_for(lambda: self._available > 0)
            self._available -= 1

    async def refill(self) -> None:
        async with self._condition:
            self._available = self.capacity
            self._condition.notify_all()


@dataclass
class _Batch:
    """Mutable state of one stream() call."""

    total: int
    pending: deque[WorkItem[Any]]
    buffer: asyncio.Queue[PipelineResult[Any]]
    slots: asyncio.Semaphore
    active: int = 0
    tasks: set[asyncio.Task[None]] = field(default_factory=set)
    settled: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def finished(self) -> bool:
        # Completions arrive out of dispatch order, so all three must hold.
        return not self.pending and self.buffer.empty() and self.active == 0


class _Cancelled(Exception):
    pass


class WorkQueuePipeline:
    """
    Dispatcher for batches of independent async units.

    Features:
    - At most ``throughput`` dispatch starts per refill interval
    - At most ``max_concurrency`` units in flight
    - One transparent retry per unit
    - Results streamed in completion order, announced by a total count

    Example:
        pipeline = WorkQueuePipeline(throughput=15, max_concurrency=10)

        async for result in pipeline.stream(pipeline.map(urls, download)):
            if result.is_announcement:
                progress.total = result.total
            elif not result.ok:
                log.warning("failed", error=result.error)
    """

    def __init__(
        self,
        throughput: int = 15,
        max_concurrency: int = 10,
        refill_interval: float = 1.0,
        retry_config: RetryConfig | None = None,
        metrics: Metrics | None = None,
    ):
        if throughput < 1:
            raise ValueError(f"Throughput must be at least 1, got {throughput}")
        if max_concurrency < 1:
            raise ValueError(f"Concurrency must be at least 1, got {max_concurrency}")
        if refill_interval <= 0:
            raise ValueError(f"Refill interval must be positive, got {refill_interval}")

        self.throughput = throughput
        self.max_concurrency = max_concurrency
        self.refill_interval = refill_interval
        self.retry_config = retry_config or RetryConfig()
        self.metrics = metrics

    @classmethod
    def from_settings(
        cls,
        settings: PipelineSettings,
        metrics: Metrics | None = None,
    ) -> "WorkQueuePipeline":
        """Create a pipeline from configuration."""
        return cls(
            throughput=settings.throughput,
            max_concurrency=settings.max_concurrency,
            refill_interval=settings.refill_interval,
            metrics=metrics,
        )

    @staticmethod
    def map(
        payloads: Iterable[T],
        work: Callable[[T], Awaitable[Any]],
    ) -> list[WorkItem[T]]:
        """Build work items applying the same function to every payload."""
        return [
            WorkItem(payload=payload, position=position, work=work)
            for position, payload in enumerate(payloads)
        ]

    async def stream(
        self,
        items: Sequence[WorkItem[Any]],
        cancel_event: asyncio.Event | None = None,
    ) -> AsyncIterator[PipelineResult[Any]]:
        """
        Run a batch and yield its results.

        The first result announces the batch size. Then exactly one result per
        item follows, in completion order, with ``index`` set to its rank.

        Args:
            items: Work items in dispatch order
            cancel_event: Setting this event stops dispatch and cancels
                in-flight units

        Raises:
            PipelineCancelledError: After buffered results have been delivered,
                if the batch was cancelled
        """
        items = list(items)
        batch = _Batch(
            total=len(items),
            pending=deque(items),
            buffer=asyncio.Queue(),
            slots=asyncio.Semaphore(self.max_concurrency),
        )
        cancel = cancel_event or asyncio.Event()
        tickets = TicketPool(self.throughput)

        logger.info(
            "Batch started",
            total=batch.total,
            throughput=self.throughput,
            max_concurrency=self.max_concurrency,
        )
        yield PipelineResult(total=batch.total)

        index = 0
        cancelled = False
        refill_task = asyncio.create_task(self._refill(tickets))
        try:
            while True:
                while not batch.buffer.empty():
                    result = batch.buffer.get_nowait()
                    result.index = index
                    index += 1
                    yield result

                if cancel.is_set():
                    cancelled = True
                    break

                if batch.pending:
                    try:
                        await self._until_cancelled(tickets.acquire(), cancel)
                        await self._until_cancelled(batch.slots.acquire(), cancel)
                    except _Cancelled:
                        cancelled = True
                        break
                    if cancel.is_set():
                        cancelled = True
                        break
                    self._dispatch(batch)
                    continue

                if batch.finished:
                    break

                # Woken by every unit that ends, whether or not it buffered a result
                batch.settled.clear()
                try:
                    await self._until_cancelled(batch.settled.wait(), cancel)
                except _Cancelled:
                    cancelled = True
                    break

            if cancelled:
                await self._cancel_units(batch)
                while not batch.buffer.empty():
                    result = batch.buffer.get_nowait()
                    result.index = index
                    index += 1
                    yield result
                logger.warning(
                    "Batch cancelled",
                    total=batch.total,
                    delivered=index,
                    unfinished=batch.total - index,
                )
                raise PipelineCancelledError(
                    "Batch cancelled",
                    delivered=index,
                    unfinished=batch.total - index,
                )

            logger.info("Batch completed", total=batch.total)
        finally:
            refill_task.cancel()
            await self._cancel_units(batch)
            await asyncio.gather(refill_task, return_exceptions=True)

    async def _refill(self, tickets: TicketPool) -> None:
        while True:
            await asyncio.sleep(self.refill_interval)
            await tickets.refill()

    @staticmethod
    async def _until_cancelled(aw: Awaitable[T], cancel: asyncio.Event) -> T:
        """Await ``aw`` unless ``cancel`` is set first."""
        if cancel.is_set():
            if asyncio.iscoroutine(aw):
                aw.close()
            raise _Cancelled()

        task = asyncio.ensure_future(aw)
        waiter = asyncio.ensure_future(cancel.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except BaseException:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task.done():
            return task.result()
        task.cancel()
        raise _Cancelled()

    def _dispatch(self, batch: _Batch) -> None:
        item = batch.pending.popleft()
        batch.active += 1
        task = asyncio.create_task(self._run_unit(item, batch))
        batch.tasks.add(task)
        task.add_done_callback(batch.tasks.discard)

        if self.metrics:
            self.metrics.record_dispatch()
        logger.debug("Unit dispatched", position=item.position, active=batch.active)

    async def _run_unit(self, item: WorkItem[Any], batch: _Batch) -> None:
        started = time.monotonic()
        attempts = 0

        def count_attempt(attempt: int) -> None:
            nonlocal attempts
            attempts = attempt
            if attempt > 1 and self.metrics:
                self.metrics.record_retry()

        result: PipelineResult[Any] = PipelineResult(total=batch.total, item=item)
        outcome = False
        try:
            try:
                result.value = await retry_async(
                    item.work,
                    item.payload,
                    config=self.retry_config,
                    on_attempt=count_attempt,
                )
            except Exception as e:
                result.error = e
            result.attempts = attempts
            outcome = True

            try:
                self._report(item, result, started)
            except Exception as e:
                # The item still gets its one outcome
                if result.error is None:
                    result.value = None
                    result.error = e
        finally:
            if outcome:
                batch.buffer.put_nowait(result)
            batch.active -= 1
            batch.slots.release()
            batch.settled.set()

    def _report(
        self,
        item: WorkItem[Any],
        result: PipelineResult[Any],
        started: float,
    ) -> None:
        if result.error is not None:
            logger.warning(
                "Unit failed",
                position=item.position,
                attempts=result.attempts,
                error=str(result.error),
                error_type=type(result.error).__name__,
            )
        if self.metrics:
            self.metrics.record_unit(
                latency_ms=(time.monotonic() - started) * 1000,
                error_type=type(result.error).__name__ if result.error else None,
            )

    @staticmethod
    async def _cancel_units(batch: _Batch) -> None:
        tasks = list(batch.tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


async def collect_results(
    results: AsyncIterator[PipelineResult[Any]],
) -> list[PipelineResult[Any]]:
    """Drain a result stream into a list, announcement included."""
    return [result async for result in results]
