"""Core configuration, models and errors."""

from ratepipe.core.config import Settings, get_settings, reload_settings
from ratepipe.core.errors import (
    BudgetExceeded,
    NoCredentialAvailableError,
    PipelineCancelledError,
    RatepipeError,
    ThrottleSignal,
)
from ratepipe.core.models import (
    BudgetUsage,
    CredentialSlot,
    PipelineResult,
    RateBudgetConfig,
    UsageRecord,
    WorkItem,
)

__all__ = [
    "Settings",
    "get_settings",
    "reload_settings",
    "BudgetExceeded",
    "NoCredentialAvailableError",
    "PipelineCancelledError",
    "RatepipeError",
    "ThrottleSignal",
    "BudgetUsage",
    "CredentialSlot",
    "PipelineResult",
    "RateBudgetConfig",
    "UsageRecord",
    "WorkItem",
]
