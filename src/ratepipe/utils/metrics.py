"""
Metrics collection for pipelines and rotation limiters.

Counters are kept per collector instance; pass the same collector to a
pipeline and a limiter to get a combined view of a batch.
"""

from __future__ import annotations

import time
from collections import defaultdict
from dataclasses import dataclass, field
from threading import Lock
from typing import Any


@dataclass
class UnitMetrics:
    """Aggregated outcomes of pipeline units."""

    dispatched: int = 0
    succeeded: int = 0
    failed: int = 0
    retried: int = 0
    total_latency_ms: float = 0.0
    errors: dict[str, int] = field(default_factory=lambda: defaultdict(int))

    @property
    def completed(self) -> int:
        return self.succeeded + self.failed

    @property
    def success_rate(self) -> float:
        """Calculate success rate."""
        if self.completed == 0:
            return 0.0
        return self.succeeded / self.completed

    @property
    def avg_latency_ms(self) -> float:
        """Calculate average latency over completed units."""
        if self.completed == 0:
            return 0.0
        return self.total_latency_ms / self.completed


@dataclass
class CredentialMetrics:
    """Admission counters for one credential."""

    granted: int = 0
    denied: int = 0
    throttled: int = 0
    cooldown_skips: int = 0


class Metrics:
    """
    Thread-safe metrics collector.

    Records unit outcomes from WorkQueuePipeline and admission decisions
    from KeyRotationLimiter.
    """

    def __init__(self):
        self._lock = Lock()
        self._units = UnitMetrics()
        self._credentials: dict[str, CredentialMetrics] = defaultdict(CredentialMetrics)
        self._start_time = time.monotonic()

    def record_dispatch(self) -> None:
        with self._lock:
            self._units.dispatched += 1

    def record_retry(self) -> None:
        with self._lock:
            self._units.retried += 1

    def record_unit(
        self,
        latency_ms: float,
        error_type: str | None = None,
    ) -> None:
        """
        Record a finished unit.

        Args:
            latency_ms: Time from dispatch to completion, retries included
            error_type: Exception class name if the unit failed
        """
        with self._lock:
            self._units.total_latency_ms += latency_ms
            if error_type is None:
                self._units.succeeded += 1
            else:
                self._units.failed += 1
                self._units.errors[error_type] += 1

    def record_admission(self, credential: str, granted: bool) -> None:
        with self._lock:
            cm = self._credentials[credential]
            if granted:
                cm.granted += 1
            else:
                cm.denied += 1

    def record_throttle(self, credential: str) -> None:
        with self._lock:
            self._credentials[credential].throttled += 1

    def record_cooldown_skip(self, credential: str) -> None:
        with self._lock:
            self._credentials[credential].cooldown_skips += 1

    def get_summary(self) -> dict[str, Any]:
        """
        Get metrics summary.

        Returns:
            Dictionary with aggregated metrics, credentials keyed as recorded
        """
        with self._lock:
            units = self._units
            return {
                "uptime_seconds": time.monotonic() - self._start_time,
                "dispatched": units.dispatched,
                "succeeded": units.succeeded,
                "failed": units.failed,
                "retried": units.retried,
                "success_rate": units.success_rate,
                "avg_latency_ms": units.avg_latency_ms,
                "errors": dict(units.errors),
                "credentials": {
                    name: {
                        "granted": cm.granted,
                        "denied": cm.denied,
                        "throttled": cm.throttled,
                        "cooldown_skips": cm.cooldown_skips,
                    }
                    for name, cm in self._credentials.items()
                },
            }

    def reset(self) -> None:
        """Reset all metrics."""
        with self._lock:
            self._units = UnitMetrics()
            self._credentials.clear()
            self._start_time = time.monotonic()
