"""
Offline-first poster synchronization.

This module provides the components that keep the local poster cache and the
remote poster service in step:
- LocalStore: SQLite table of poster records, including unsent edits
- Checkpoint: persisted watermark of the last successful pull
- HttpRemoteService: HTTP client for the remote poster API
- SyncEngine: flush-then-pull reconciliation with single-flight scheduling
"""

from .checkpoint import Checkpoint
from .database import SyncDatabase
from .errors import (
    LocalStorageError,
    PosterNotFound,
    PosterSyncError,
    RemoteRejectedError,
    RemoteServiceError,
    TransientNetworkError,
)
from .http_remote_service import HttpRemoteService
from .local_store import LocalStore
from .remote_service import RemoteService
from .sync_engine import FlushResult, PullResult, SyncEngine, SyncResult

__all__ = [
    'Checkpoint',
    'FlushResult',
    'HttpRemoteService',
    'LocalStorageError',
    'LocalStore',
    'PosterNotFound',
    'PosterSyncError',
    'PullResult',
    'RemoteRejectedError',
    'RemoteService',
    'RemoteServiceError',
    'SyncDatabase',
    'SyncEngine',
    'SyncResult',
    'TransientNetworkError',
]
