"""
Persisted "last synchronized at" watermark.

The value is milliseconds since the epoch at which the last successful pull was
issued. It only ever moves forward, except through an explicit reset at the start
of a new session.
"""

import logging
import sqlite3

from .database import SyncDatabase

logger = logging.getLogger(__name__)


class Checkpoint:
    """Monotonic pull watermark stored in the ``sync_state`` table."""

    KEY = "checkpoint"

    def __init__(self, database: SyncDatabase):
        self.database = database

    def get(self) -> int:
        """
        Get the current watermark.

        Returns:
            Milliseconds since the epoch, or 0 if no pull has succeeded yet
        """
        with self.database.reader() as conn:
            row = conn.execute(
                "SELECT value FROM sync_state WHERE key = ?",
                (self.KEY,)
            ).fetchone()
            return row['value'] if row else 0

    def advance(self, value: int) -> int:
        """
        Move the watermark forward to ``value``.

        A value lower than the stored one is ignored.

        Args:
            value: Candidate watermark in milliseconds

        Returns:
            The watermark after the call
        """
        with self.database.transaction() as conn:
            conn.execute(
                """
                INSERT INTO sync_state (key, value) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value = MAX(value, excluded.value)
                """,
                (self.KEY, int(value))
            )
            current = conn.execute(
                "SELECT value FROM sync_state WHERE key = ?",
                (self.KEY,)
            ).fetchone()['value']
        logger.debug(f"Checkpoint now at {current}")
        return current

    def reset(self) -> None:
        """Zero the watermark. Only called when a new session starts."""
        with self.database.transaction() as conn:
            self.clear_within(conn)
        logger.info("Checkpoint reset")

    @classmethod
    def clear_within(cls, conn: sqlite3.Connection) -> None:
        """Zero the watermark inside a transaction the caller already holds."""
        conn.execute(
            "INSERT OR REPLACE INTO sync_state (key, value) VALUES (?, 0)",
            (cls.KEY,)
        )
