"""
Main application class for the poster sync client.
"""
import logging
from typing import Optional

from config.app_config import AppConfig
from sync.checkpoint import Checkpoint
from sync.database import SyncDatabase
from sync.http_remote_service import HttpRemoteService
from sync.local_store import LocalStore
from sync.remote_service import RemoteService
from sync.sync_engine import SyncEngine

logger = logging.getLogger(__name__)


class PosterApplication:
    """
    Owns the long-lived resources of the sync client.

    This class manages the lifecycle of:
    - The local database connection, store and checkpoint
    - The remote service client
    - The sync engine and its background worker

    Everything is opened by ``setup`` and released by ``shutdown``.
    """

    def __init__(self, config: AppConfig, remote: Optional[RemoteService] = None):
        """
        Initialize the application.

        Args:
            config: Application configuration
            remote: Remote service to use instead of the configured HTTP client
        """
        self.config = config
        self.database: Optional[SyncDatabase] = None
        self.store: Optional[LocalStore] = None
        self.checkpoint: Optional[Checkpoint] = None
        self.remote: Optional[RemoteService] = remote
        self.engine: Optional[SyncEngine] = None

    @property
    def is_ready(self) -> bool:
        return self.engine is not None

    def setup_local_store(self) -> None:
        """Open the local database and the components built on it."""
        logger.info(f"Opening local poster cache: {self.config.store.path}")
        self.database = SyncDatabase(self.config.store.path)
        self.store = LocalStore(self.database)
        self.checkpoint = Checkpoint(self.database)

    def setup_remote(self) -> None:
        """Create the remote service client unless one was injected."""
        if self.remote is None:
            self.remote = HttpRemoteService(
                base_url=self.config.remote.base_url,
                timeout=self.config.remote.timeout
            )
        logger.info(f"Remote poster service: {getattr(self.remote, 'base_url', type(self.remote).__name__)}")

    def setup_sync_engine(self) -> None:
        self.engine = SyncEngine(self.store, self.checkpoint, self.remote)

    def setup(self) -> 'PosterApplication':
        """Open every resource. Returns self for chaining."""
        try:
            self.setup_local_store()
            self.setup_remote()
            self.setup_sync_engine()
        except Exception:
            self.shutdown()
            raise
        return self

    def shutdown(self) -> None:
        """
        Release every resource.

        A sync cycle that has already started is allowed to finish first so the
        local store is never left with a partially applied batch.
        """
        logger.info("Shutting down poster sync client...")
        if self.engine is not None:
            self.engine.close()
            self.engine = None
        if self.remote is not None:
            self.remote.close()
        if self.database is not None:
            self.database.close()
            self.database = None
        self.store = None
        self.checkpoint = None
        logger.info("Poster sync client shut down")

    def __enter__(self) -> 'PosterApplication':
        return self.setup()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()
