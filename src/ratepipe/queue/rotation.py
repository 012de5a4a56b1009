"""
Credential rotation across independent rate budgets.

Spreads one class of remote operation over several credentials, each with its
own RateBudgetTracker, and parks credentials the remote side throttles.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from collections import deque
from typing import Awaitable, Callable, Iterable, TypeVar

import structlog

from ratepipe.core.config import BudgetSettings, RotationSettings
from ratepipe.core.errors import NoCredentialAvailableError, ThrottleSignal
from ratepipe.core.models import CredentialSlot, RateBudgetConfig
from ratepipe.queue.budget import RateBudgetTracker
from ratepipe.utils.logging import mask_credential
from ratepipe.utils.metrics import Metrics

logger = structlog.get_logger()

R = TypeVar("R")


class KeyRotationLimiter:
    """
    Round-robin limiter over a set of credentials.

    Each call checks out the credential at the head of a FIFO and puts it
    back at the tail once its attempt is over, so a credential serves one
    call at a time and successive attempts visit credentials in strict
    rotation. Credentials in cooldown are skipped; a denied budget, or a
    queue emptied by other calls, costs a short fixed delay.

    Example:
        limiter = KeyRotationLimiter(["key-a", "key-b"], RateBudgetConfig(max_per_window=4))

        async def fetch_report(api_key: str) -> dict:
            response = await client.get(url, headers={"x-apikey": api_key})
            if response.status_code == 429:
                raise ThrottleSignal("throttled", credential=api_key)
            response.raise_for_status()
            return response.json()

        report = await limiter.with_rate_limiting(fetch_report)
    """

    def __init__(
        self,
        credentials: Iterable[str],
        config: RateBudgetConfig | None = None,
        cooldown_seconds: float = 600.0,
        retry_delay: float = 0.01,
        acquire_timeout: float | None = None,
        clock: Callable[[], float] = time.monotonic,
        metrics: Metrics | None = None,
    ):
        self.config = config or RateBudgetConfig()
        self.cooldown_seconds = cooldown_seconds
        self.retry_delay = retry_delay
        self.acquire_timeout = acquire_timeout
        self.metrics = metrics
        self._clock = clock

        self._slots: dict[str, CredentialSlot] = {}
        for credential in credentials:
            if credential in self._slots:
                continue
            self._slots[credential] = CredentialSlot(
                credential=credential,
                tracker=RateBudgetTracker(self.config, clock=clock),
            )
        self._rotation: deque[CredentialSlot] = deque(self._slots.values())

    @classmethod
    def from_settings(
        cls,
        rotation: RotationSettings,
        budget: BudgetSettings,
        metrics: Metrics | None = None,
    ) -> "KeyRotationLimiter":
        """Create a limiter from configuration."""
        return cls(
            rotation.credentials,
            config=budget.to_config(),
            cooldown_seconds=rotation.cooldown_seconds,
            retry_delay=rotation.retry_delay,
            acquire_timeout=rotation.acquire_timeout,
            metrics=metrics,
        )

    @property
    def credentials(self) -> list[str]:
        return list(self._slots)

    def tracker(self, credential: str) -> RateBudgetTracker:
        """Get the budget tracker of a credential."""
        return self._slots[credential].tracker

    def available_credentials(self) -> list[str]:
        """Credentials not currently in cooldown, queued ones first in rotation order."""
        now = self._clock()
        queued = [slot.credential for slot in self._rotation]
        checked_out = [c for c in self._slots if c not in queued]
        return [
            credential
            for credential in queued + checked_out
            if not self._slots[credential].in_cooldown(now)
        ]

    def cooldown_remaining(self, credential: str) -> float:
        """Seconds until a credential leaves cooldown (0 if it is not cooling down)."""
        slot = self._slots[credential]
        now = self._clock()
        if not slot.in_cooldown(now):
            return 0.0
        return slot.cooldown_until - now

    def clear_cooldowns(self) -> None:
        for slot in self._slots.values():
            slot.cooldown_until = None

    def _start_cooldown(self, slot: CredentialSlot, signal: ThrottleSignal) -> None:
        duration = max(self.cooldown_seconds, signal.retry_after or 0.0)
        slot.cooldown_until = self._clock() + duration

        if self.metrics:
            self.metrics.record_throttle(slot.credential)
        logger.warning(
            "Credential throttled, cooling down",
            credential=mask_credential(slot.credential),
            cooldown_seconds=duration,
            error=str(signal),
        )

    async def with_rate_limiting(
        self,
        work: Callable[[str], Awaitable[R]],
        weight: int = 1,
    ) -> R:
        """
        Run ``work`` with the next credential that has budget.

        Args:
            work: Async function called with the credential
            weight: Budget cost of the call

        Returns:
            Whatever ``work`` returns

        Raises:
            NoCredentialAvailableError: If no credentials are configured, or
                ``acquire_timeout`` passes without a usable credential
        """
        if not self._slots:
            raise NoCredentialAvailableError("No credentials configured")
        if weight < 1:
            raise ValueError(f"Weight must be at least 1, got {weight}")

        started = self._clock()
        skipped = 0

        while True:
            waited = self._clock() - started
            if self.acquire_timeout is not None and waited >= self.acquire_timeout:
                raise NoCredentialAvailableError(
                    f"No credential available after {waited:.1f}s", waited=waited
                )

            if not self._rotation:
                # Every credential is checked out by another call
                await asyncio.sleep(self.retry_delay)
                continue

            slot = self._rotation.popleft()
            now = self._clock()

            if slot.in_cooldown(now):
                self._rotation.append(slot)
                if self.metrics:
                    self.metrics.record_cooldown_skip(slot.credential)
                skipped += 1
                if skipped >= len(self._rotation):
                    await asyncio.sleep(self._idle_delay(now, started))
                    skipped = 0
                continue
            skipped = 0

            key = str(uuid.uuid4())
            try:
                granted = await slot.tracker.try_start(key, weight)
                if self.metrics:
                    self.metrics.record_admission(slot.credential, granted)

                if granted:
                    try:
                        return await work(slot.credential)
                    except ThrottleSignal as signal:
                        self._start_cooldown(slot, signal)
                    finally:
                        await slot.tracker.end(key)
            finally:
                self._rotation.append(slot)

            if not granted:
                await asyncio.sleep(self.retry_delay)

    def _idle_delay(self, now: float, started: float) -> float:
        """How long to sleep once every queued credential is cooling down."""
        if len(self._rotation) < len(self._slots):
            # A checked-out credential may come back before any cooldown ends
            return self.retry_delay

        end = min(
            (
                slot.cooldown_until
                for slot in self._slots.values()
                if slot.cooldown_until is not None
            ),
            default=now,
        )
        if self.acquire_timeout is not None:
            end = min(end, started + self.acquire_timeout)
        return max(end - now, self.retry_delay)
