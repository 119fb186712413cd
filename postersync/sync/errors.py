"""
Error taxonomy for the poster sync engine.

Remote failures are recoverable: the affected records stay pending and the
next sync cycle retries them. Storage failures are not: the transaction is
rolled back and the error propagates to the caller.
"""

from typing import Optional


class PosterSyncError(Exception):
    """Base class for all poster sync errors."""


class RemoteServiceError(PosterSyncError):
    """A call to the remote poster service did not succeed."""


class TransientNetworkError(RemoteServiceError):
    """Timeout, unreachable endpoint, server-side failure or unreadable response."""


class RemoteRejectedError(RemoteServiceError):
    """The remote service explicitly refused the request."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status

    @property
    def requires_reauth(self) -> bool:
        return self.status in (401, 403)


class LocalStorageError(PosterSyncError):
    """A local transaction could not commit and was rolled back."""


class PosterNotFound(PosterSyncError):
    """No local record matches the requested poster."""
