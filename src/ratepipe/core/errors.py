"""
Error taxonomy for ratepipe.

Unit failures are plain exceptions raised by caller-supplied work functions;
everything raised by the engine itself derives from RatepipeError.
"""

from __future__ import annotations


class RatepipeError(Exception):
    """Base exception for engine errors."""


class BudgetExceeded(RatepipeError):
    """Raised when a rate budget denies admission."""

    def __init__(
        self,
        message: str,
        key: str | None = None,
        weight: int = 1,
    ):
        super().__init__(message)
        self.key = key
        self.weight = weight


class ThrottleSignal(RatepipeError):
    """
    Raised by a work function when the remote service rejects a call
    for rate-limit reasons (e.g. HTTP 429).
    """

    def __init__(
        self,
        message: str,
        credential: str | None = None,
        retry_after: float | None = None,
    ):
        super().__init__(message)
        self.credential = credential
        self.retry_after = retry_after


class NoCredentialAvailableError(RatepipeError):
    """Raised when no credential can serve a call."""

    def __init__(self, message: str, waited: float = 0.0):
        super().__init__(message)
        self.waited = waited


class PipelineCancelledError(RatepipeError):
    """Raised at the end of a cancelled result stream."""

    def __init__(self, message: str, delivered: int = 0, unfinished: int = 0):
        super().__init__(message)
        self.delivered = delivered
        self.unfinished = unfinished
