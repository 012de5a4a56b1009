"""
Rate limiting and work queue module.

Provides sliding-window budgets, credential rotation and bounded
dispatch of async work.
"""

from ratepipe.queue.budget import RateBudgetTracker
from ratepipe.queue.pipeline import TicketPool, WorkQueuePipeline, collect_results
from ratepipe.queue.rotation import KeyRotationLimiter

__all__ = [
    "RateBudgetTracker",
    "TicketPool",
    "WorkQueuePipeline",
    "collect_results",
    "KeyRotationLimiter",
]
