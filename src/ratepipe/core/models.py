"""
Core data models for ratepipe.

Defines budget configuration, usage bookkeeping, work items and results.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Generic, TypeVar

from pydantic import BaseModel, Field, model_validator

if TYPE_CHECKING:
    from ratepipe.queue.budget import RateBudgetTracker

T = TypeVar("T")

SECONDS_PER_DAY = 86400


class RateBudgetConfig(BaseModel):
    """Admission limits for one credential."""

    max_per_window: int = Field(default=4, ge=1, description="Weight per rolling window")
    window_seconds: float = Field(default=60.0, gt=0, description="Rolling window length")
    tolerance_seconds: float = Field(default=5.0, ge=0, description="Grace added to the window")
    max_per_day: int = Field(default=500, ge=1, description="Weight per retention period")
    retention_seconds: float | None = Field(
        default=None,
        gt=0,
        description="How long ended records are kept (defaults to about a day)",
    )

    @model_validator(mode="after")
    def _default_retention(self) -> "RateBudgetConfig":
        if self.retention_seconds is None:
            retention = (
                (self.window_seconds + self.tolerance_seconds)
                * SECONDS_PER_DAY
                / self.window_seconds
            )
            self.retention_seconds = retention
        elif self.retention_seconds < self.effective_window:
            raise ValueError(
                f"retention_seconds ({self.retention_seconds}) must cover the window "
                f"plus tolerance ({self.effective_window})"
            )
        return self

    @property
    def effective_window(self) -> float:
        """Window length including tolerance."""
        return self.window_seconds + self.tolerance_seconds


@dataclass
class UsageRecord:
    """One admitted operation tracked by a budget."""

    key: str
    started: float
    weight: int = 1
    ended: float | None = None

    @property
    def in_flight(self) -> bool:
        return self.ended is None


@dataclass(frozen=True)
class BudgetUsage:
    """Snapshot of a tracker's consumption."""

    window_weight: int
    daily_weight: int
    in_flight: int
    tracked: int


@dataclass
class WorkItem(Generic[T]):
    """A payload, its input position, and the function that processes it."""

    payload: T
    position: int
    work: Callable[[T], Awaitable[Any]]


@dataclass
class PipelineResult(Generic[T]):
    """
    One element of a pipeline result stream.

    The first result of every stream is an announcement that carries only
    ``total``. Every later result has ``index`` set to its completion rank,
    which is unrelated to ``item.position``.
    """

    total: int
    index: int | None = None
    item: WorkItem[T] | None = None
    value: Any = None
    error: BaseException | None = None
    attempts: int = 0

    @property
    def is_announcement(self) -> bool:
        return self.item is None

    @property
    def ok(self) -> bool:
        return self.item is not None and self.error is None


@dataclass
class CredentialSlot:
    """A credential with its own budget and cooldown state."""

    credential: str
    tracker: RateBudgetTracker
    cooldown_until: float | None = field(default=None)

    def in_cooldown(self, now: float) -> bool:
        """Check whether the cooldown is still running, clearing it once elapsed."""
        if self.cooldown_until is None:
            return False
        if now >= self.cooldown_until:
            self.cooldown_until = None
            return False
        return True
