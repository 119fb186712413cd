"""
Managed SQLite connection shared by the local store and the checkpoint.

One connection is opened for the lifetime of the application and handed out
under a lock, one transaction per logical operation. Any ``sqlite3.Error``
raised inside a transaction rolls the whole transaction back and is re-raised
as ``LocalStorageError``.
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from typing import Iterator, Optional

from .errors import LocalStorageError

logger = logging.getLogger(__name__)


SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS posters (
        local_id INTEGER PRIMARY KEY AUTOINCREMENT,
        server_id INTEGER UNIQUE,
        lat REAL NOT NULL,
        lng REAL NOT NULL,
        removed INTEGER NOT NULL DEFAULT 0,
        pending_sync INTEGER NOT NULL DEFAULT 1,
        attempts INTEGER NOT NULL DEFAULT 0,
        last_error TEXT
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_posters_pending
    ON posters(pending_sync)
    """,
    """
    CREATE TABLE IF NOT EXISTS sync_state (
        key TEXT PRIMARY KEY,
        value INTEGER NOT NULL
    )
    """,
)


class SyncDatabase:
    """
    Owner of the single SQLite connection used by the sync components.

    Use ":memory:" as the path for an in-memory database (useful for testing).
    """

    DEFAULT_DB_PATH = "poster_cache.db"

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path or self.DEFAULT_DB_PATH
        self._lock = threading.RLock()
        self._conn: Optional[sqlite3.Connection] = None
        self.open()

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def open(self) -> None:
        """Open the connection and create the schema if needed."""
        with self._lock:
            if self._conn is not None:
                return
            try:
                conn = sqlite3.connect(
                    self.db_path,
                    check_same_thread=False,
                    isolation_level=None,
                )
                conn.row_factory = sqlite3.Row
                for statement in SCHEMA:
                    conn.execute(statement)
            except sqlite3.Error as e:
                raise LocalStorageError(f"Failed to open local database {self.db_path}: {e}") from e
            self._conn = conn
            logger.debug(f"Opened local database {self.db_path}")

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Run a block inside one write transaction.

        Yields:
            The connection, with ``BEGIN IMMEDIATE`` already issued

        Raises:
            LocalStorageError: If the database is closed or any statement fails
        """
        with self._lock:
            conn = self._require_connection()
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise LocalStorageError(f"Could not start transaction: {e}") from e
            try:
                yield conn
            except BaseException as e:
                self._rollback(conn)
                if isinstance(e, sqlite3.Error):
                    raise LocalStorageError(f"Transaction rolled back: {e}") from e
                raise
            else:
                try:
                    conn.execute("COMMIT")
                except sqlite3.Error as e:
                    self._rollback(conn)
                    raise LocalStorageError(f"Commit failed: {e}") from e

    @contextmanager
    def reader(self) -> Iterator[sqlite3.Connection]:
        """Run read-only statements against the connection."""
        with self._lock:
            conn = self._require_connection()
            try:
                yield conn
            except sqlite3.Error as e:
                raise LocalStorageError(f"Read failed: {e}") from e

    @staticmethod
    def _rollback(conn: sqlite3.Connection) -> None:
        # sqlite may already have rolled back on its own (e.g. a failed COMMIT)
        if conn.in_transaction:
            conn.execute("ROLLBACK")

    def _require_connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise LocalStorageError("Local database is closed")
        return self._conn

    def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
                logger.debug(f"Closed local database {self.db_path}")
