"""
ratepipe - Rate-budgeted async work pipelines

Runs batches of independent remote operations under throughput and
concurrency caps, streams results in completion order, and rotates calls
across credentials with per-credential sliding-window budgets.
"""

__version__ = "1.0.0"

from ratepipe.core.errors import (
    BudgetExceeded,
    NoCredentialAvailableError,
    PipelineCancelledError,
    RatepipeError,
    ThrottleSignal,
)
from ratepipe.core.models import (
    CredentialSlot,
    PipelineResult,
    RateBudgetConfig,
    UsageRecord,
    WorkItem,
)
from ratepipe.queue.budget import RateBudgetTracker
from ratepipe.queue.pipeline import WorkQueuePipeline, collect_results
from ratepipe.queue.rotation import KeyRotationLimiter

__all__ = [
    "BudgetExceeded",
    "NoCredentialAvailableError",
    "PipelineCancelledError",
    "RatepipeError",
    "ThrottleSignal",
    "CredentialSlot",
    "PipelineResult",
    "RateBudgetConfig",
    "UsageRecord",
    "WorkItem",
    "RateBudgetTracker",
    "WorkQueuePipeline",
    "collect_results",
    "KeyRotationLimiter",
]
