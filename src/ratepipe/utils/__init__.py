"""Utility modules for ratepipe."""

from ratepipe.utils.logging import setup_logging, mask_credential
from ratepipe.utils.metrics import Metrics
from ratepipe.utils.retry import with_retry, retry_async, RetryConfig

__all__ = [
    "setup_logging",
    "mask_credential",
    "Metrics",
    "with_retry",
    "retry_async",
    "RetryConfig",
]
