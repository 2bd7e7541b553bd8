"""
Exceptions raised by the offline sync engine.
"""

from typing import Optional


class SyncError(Exception):
    """Base exception for sync operations."""
    pass


class RemoteError(SyncError):
    """The remote store rejected or could not apply a request."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TransientRemoteError(RemoteError):
    """Network error, timeout, or 5xx. Worth retrying."""
    pass


class PermanentRemoteError(RemoteError):
    """Client error (4xx). Retrying the same request will not help."""
    pass


class PayloadError(SyncError):
    """An operation payload could not be encoded or decoded."""
    pass


class QueueStoreError(SyncError):
    """The persisted queue store could not be read or written."""
    pass


class LocalStoreError(SyncError):
    """The local entity store failed to read or commit."""
    pass
