"""
Exception hierarchy for the sync engine.

Item-level errors (navigation, extraction, reconciliation) are caught by the
orchestrator and recorded against the SKU. Authentication failures,
cancellation and store connectivity problems fail the whole run.
"""

from typing import Optional


class SyncError(Exception):
    """Base class for sync engine errors."""


class AuthenticationError(SyncError):
    """Login form not found, credentials rejected, or post-login check failed."""


class NavigationError(SyncError):
    """
    A collection or product page failed to load.

    status is the HTTP status when the server answered. Timeouts, dropped
    connections, rate limits (429) and server errors are retryable.
    """

    def __init__(self, message: str, status: Optional[int] = None, retryable: Optional[bool] = None):
        super().__init__(message)
        self.status = status
        if retryable is None:
            retryable = status is not None and (status == 429 or status >= 500)
        self.retryable = retryable


class ExtractionError(SyncError):
    """A page loaded but yielded no usable fields."""


class ReconciliationError(SyncError):
    """A catalog write failed for one candidate."""

    def __init__(self, sku: Optional[str], message: str):
        super().__init__(message)
        self.sku = sku


class RunError(SyncError):
    """An error that escapes the run boundary and fails the run."""


class RunCancelledError(RunError):
    """The run was cancelled by an operator."""


class SyncAlreadyRunningError(SyncError):
    """Another sync run currently owns the browser session."""
