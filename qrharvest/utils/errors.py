"""
Exception types for the QR extraction pipeline.

None of these are fatal to the scheduler: a failing strategy is dropped from
the merge, and a failing task becomes an error result.
"""

from typing import Any, Optional


class QRHarvestError(Exception):
    """Base exception for the qrharvest package."""
    pass


class BufferAcquisitionError(QRHarvestError):
    """Raised when no usable pixel buffer can be obtained for a task."""
    pass


class StrategyError(QRHarvestError):
    """Raised (and recovered) when a single detection strategy fails."""

    def __init__(self, strategy: str, cause: BaseException):
        self.strategy = strategy
        self.cause = cause
        super().__init__(f"Strategy '{strategy}' failed: {cause}")


class DecodeTaskError(QRHarvestError):
    """Wraps any other failure raised while processing one task."""

    def __init__(self, key: Any, cause: BaseException, message: Optional[str] = None):
        self.key = key
        self.cause = cause
        super().__init__(message or f"Task {key} failed: {cause}")
