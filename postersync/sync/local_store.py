"""
Local SQLite store of poster records.

This module holds the device's view of the poster set, including placements
and removals that have not been acknowledged by the remote service yet. Every
public method runs as one transaction on the shared ``SyncDatabase``
connection, so a failure part way through a batch leaves the table exactly as
it was before the call.
"""

import logging
import sqlite3
from typing import Iterable, List, Optional

from models import Location, PosterDelta, PosterRecord

from .checkpoint import Checkpoint
from .database import SyncDatabase
from .errors import PosterNotFound

logger = logging.getLogger(__name__)


class LocalStore:
    """
    Durable, transactional table of PosterRecords.

    This class provides:
    - Upsert by remote identity for remote-originated records
    - The pending work-list consumed by the flush phase
    - Soft deletes (tombstones) and explicit purges
    - Atomic merging of remote deltas
    """

    def __init__(self, database: SyncDatabase):
        """
        Initialize the local store.

        Args:
            database: Open database whose connection this store shares
        """
        self.database = database

    @staticmethod
    def _to_record(row: sqlite3.Row) -> PosterRecord:
        return PosterRecord(
            local_id=row['local_id'],
            server_id=row['server_id'],
            latitude=row['lat'],
            longitude=row['lng'],
            removed=bool(row['removed']),
            pending_sync=bool(row['pending_sync']),
            attempts=row['attempts'],
            last_error=row['last_error'],
        )

    @staticmethod
    def _fetch(conn: sqlite3.Connection, column: str, value: int) -> Optional[sqlite3.Row]:
        return conn.execute(
            f"SELECT * FROM posters WHERE {column} = ?",
            (value,)
        ).fetchone()

    def _upsert(self, conn: sqlite3.Connection, record: PosterRecord) -> int:
        if not record.pending_sync and record.server_id is None:
            raise ValueError("A synced poster record must carry a server id")

        if record.server_id is not None:
            existing = self._fetch(conn, 'server_id', record.server_id)
            if existing is not None:
                conn.execute(
                    """
                    UPDATE posters
                    SET lat = ?, lng = ?, removed = ?, pending_sync = ?,
                        attempts = 0, last_error = NULL
                    WHERE local_id = ?
                    """,
                    (record.latitude, record.longitude, int(record.removed),
                     int(record.pending_sync), existing['local_id'])
                )
                return existing['local_id']

        cursor = conn.execute(
            """
            INSERT INTO posters (server_id, lat, lng, removed, pending_sync)
            VALUES (?, ?, ?, ?, ?)
            """,
            (record.server_id, record.latitude, record.longitude,
             int(record.removed), int(record.pending_sync))
        )
        return cursor.lastrowid

    def insert(self, record: PosterRecord) -> int:
        """
        Insert a record, or replace the row already holding its server id.

        Args:
            record: The record to store. ``local_id`` is ignored.

        Returns:
            The local id of the stored row
        """
        with self.database.transaction() as conn:
            local_id = self._upsert(conn, record)
        record.local_id = local_id
        return local_id

    def insert_many(self, records: Iterable[PosterRecord]) -> List[int]:
        """Insert a batch of records atomically. Returns their local ids in order."""
        records = list(records)
        with self.database.transaction() as conn:
            local_ids = [self._upsert(conn, record) for record in records]
        for record, local_id in zip(records, local_ids):
            record.local_id = local_id
        return local_ids

    def get(self, local_id: int) -> Optional[PosterRecord]:
        with self.database.reader() as conn:
            row = self._fetch(conn, 'local_id', local_id)
            return self._to_record(row) if row else None

    def get_by_server_id(self, server_id: int) -> Optional[PosterRecord]:
        with self.database.reader() as conn:
            row = self._fetch(conn, 'server_id', server_id)
            return self._to_record(row) if row else None

    def list_active(self) -> List[PosterRecord]:
        """All records that are not removed."""
        with self.database.reader() as conn:
            rows = conn.execute(
                "SELECT * FROM posters WHERE removed = 0 ORDER BY local_id"
            ).fetchall()
            return [self._to_record(row) for row in rows]

    def list_pending(self) -> List[PosterRecord]:
        """All records with a mutation the remote has not acknowledged, oldest first."""
        with self.database.reader() as conn:
            rows = conn.execute(
                "SELECT * FROM posters WHERE pending_sync = 1 ORDER BY local_id"
            ).fetchall()
            return [self._to_record(row) for row in rows]

    def count_pending(self) -> int:
        with self.database.reader() as conn:
            return conn.execute(
                "SELECT COUNT(*) AS count FROM posters WHERE pending_sync = 1"
            ).fetchone()['count']

    def count_active(self) -> int:
        with self.database.reader() as conn:
            return conn.execute(
                "SELECT COUNT(*) AS count FROM posters WHERE removed = 0"
            ).fetchone()['count']

    def mark_synced(self, local_id: int, server_id: int, location: Optional[Location] = None) -> int:
        """
        Record that the remote accepted the mutation on ``local_id``.

        Calling it again with the same arguments changes nothing. If another
        row already owns ``server_id`` (for example a pull fetched the poster
        before this acknowledgment was stored), the pending row is folded into
        that row and deleted.

        If ``local_id`` is gone, the placement was withdrawn while it was being
        sent. Given the placed ``location``, a removal of ``server_id`` is then
        queued so the poster does not survive on the remote.

        Args:
            local_id: The pending record
            server_id: Identity assigned by the remote service
            location: Where the acknowledged placement was made

        Returns:
            The local id of the row now holding ``server_id``
        """
        with self.database.transaction() as conn:
            row = self._fetch(conn, 'local_id', local_id)
            if row is None:
                owner = self._fetch(conn, 'server_id', server_id)
                if location is None:
                    logger.debug(f"mark_synced: local poster {local_id} no longer exists")
                    return owner['local_id'] if owner else local_id
                return self._queue_withdrawn_removal(conn, local_id, server_id, location, owner)

            owner = self._fetch(conn, 'server_id', server_id)
            if owner is not None and owner['local_id'] != local_id:
                logger.warning(
                    f"Server poster {server_id} already cached as local {owner['local_id']}; "
                    f"folding local {local_id} into it"
                )
                conn.execute(
                    """
                    UPDATE posters
                    SET lat = ?, lng = ?, removed = ?, pending_sync = 0,
                        attempts = 0, last_error = NULL
                    WHERE local_id = ?
                    """,
                    (row['lat'], row['lng'], row['removed'], owner['local_id'])
                )
                conn.execute("DELETE FROM posters WHERE local_id = ?", (local_id,))
                return owner['local_id']

            conn.execute(
                """
                UPDATE posters
                SET server_id = ?, pending_sync = 0, attempts = 0, last_error = NULL
                WHERE local_id = ?
                """,
                (server_id, local_id)
            )
            return local_id

    @staticmethod
    def _queue_withdrawn_removal(
        conn: sqlite3.Connection,
        local_id: int,
        server_id: int,
        location: Location,
        owner: Optional[sqlite3.Row]
    ) -> int:
        if owner is not None:
            if not owner['removed']:
                conn.execute(
                    """
                    UPDATE posters
                    SET removed = 1, pending_sync = 1, attempts = 0, last_error = NULL
                    WHERE local_id = ?
                    """,
                    (owner['local_id'],)
                )
            return owner['local_id']

        logger.info(
            f"Local poster {local_id} was removed while being placed as server poster "
            f"{server_id}; queueing its removal"
        )
        cursor = conn.execute(
            """
            INSERT INTO posters (server_id, lat, lng, removed, pending_sync)
            VALUES (?, ?, ?, 1, 1)
            """,
            (server_id, location.latitude, location.longitude)
        )
        return cursor.lastrowid

    def mark_failed(self, local_id: int, error: str) -> None:
        """
        Update a pending record after a failed flush attempt.

        Args:
            local_id: The record that could not be sent
            error: The error message from the failed attempt
        """
        with self.database.transaction() as conn:
            conn.execute(
                """
                UPDATE posters
                SET attempts = attempts + 1, last_error = ?
                WHERE local_id = ? AND pending_sync = 1
                """,
                (error, local_id)
            )

    def mark_removed(self, local_id: int) -> Optional[Location]:
        """
        Queue the removal of a known poster.

        A placement that never reached the remote is simply dropped, since
        there is nothing to remove on the other side. If a flush is sending it
        at that moment, ``mark_synced`` queues the remote removal instead.

        Returns:
            The poster's coordinates, or None if it is absent or already removed
        """
        with self.database.transaction() as conn:
            row = self._fetch(conn, 'local_id', local_id)
            if row is None or row['removed']:
                return None
            if row['server_id'] is None:
                conn.execute("DELETE FROM posters WHERE local_id = ?", (local_id,))
            else:
                conn.execute(
                    """
                    UPDATE posters
                    SET removed = 1, pending_sync = 1, attempts = 0, last_error = NULL
                    WHERE local_id = ?
                    """,
                    (local_id,)
                )
            return Location(row['lat'], row['lng'])

    def mark_removed_by_server_id(self, server_id: int) -> Location:
        """
        Soft-delete the poster with the given remote identity.

        Returns:
            The poster's coordinates before removal

        Raises:
            PosterNotFound: If no row holds ``server_id``
        """
        with self.database.transaction() as conn:
            row = self._fetch(conn, 'server_id', server_id)
            if row is None:
                raise PosterNotFound(f"No cached poster with server id {server_id}")
            conn.execute(
                "UPDATE posters SET removed = 1 WHERE local_id = ?",
                (row['local_id'],)
            )
            return Location(row['lat'], row['lng'])

    def confirm_removal(self, local_id: int, server_id: int) -> Optional[Location]:
        """
        Apply the remote's acknowledgment of a removal sent for ``local_id``.

        The remote reports which poster it removed. That poster becomes a
        tombstone. A removal intent with no identity of its own is then
        deleted; a known poster that was not the one removed stays pending.

        Returns:
            Coordinates of the poster that was removed, if it is cached
        """
        with self.database.transaction() as conn:
            row = self._fetch(conn, 'local_id', local_id)
            if row is None:
                return None

            owner = self._fetch(conn, 'server_id', server_id)
            if owner is not None and owner['local_id'] != local_id:
                self._tombstone(conn, owner['local_id'])
                if row['server_id'] is None:
                    conn.execute("DELETE FROM posters WHERE local_id = ?", (local_id,))
                else:
                    logger.info(
                        f"Remote removed poster {server_id} instead of {row['server_id']}; "
                        f"local {local_id} stays pending"
                    )
                return Location(owner['lat'], owner['lng'])

            if row['server_id'] is None or row['server_id'] == server_id:
                conn.execute(
                    "UPDATE posters SET server_id = ? WHERE local_id = ?",
                    (server_id, local_id)
                )
                self._tombstone(conn, local_id)
                return Location(row['lat'], row['lng'])

            logger.info(
                f"Remote removed uncached poster {server_id} instead of {row['server_id']}; "
                f"local {local_id} stays pending"
            )
            conn.execute(
                """
                INSERT INTO posters (server_id, lat, lng, removed, pending_sync)
                VALUES (?, ?, ?, 1, 0)
                """,
                (server_id, row['lat'], row['lng'])
            )
            return None

    @staticmethod
    def _tombstone(conn: sqlite3.Connection, local_id: int) -> None:
        conn.execute(
            """
            UPDATE posters
            SET removed = 1, pending_sync = 0, attempts = 0, last_error = NULL
            WHERE local_id = ?
            """,
            (local_id,)
        )

    def purge_by_server_id(self, server_id: int) -> bool:
        """Hard-delete the row holding ``server_id``. Returns whether a row was deleted."""
        with self.database.transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM posters WHERE server_id = ?",
                (server_id,)
            )
            return cursor.rowcount > 0

    def purge_removed(self) -> int:
        """
        Hard-delete tombstones whose removal the remote has confirmed.

        Returns:
            Number of records deleted
        """
        with self.database.transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM posters WHERE removed = 1 AND pending_sync = 0"
            )
            deleted = cursor.rowcount
        if deleted:
            logger.info(f"Purged {deleted} removed posters")
        return deleted

    def apply_remote_delta(self, deltas: Iterable[PosterDelta]) -> int:
        """
        Merge remote changes into the store in one transaction.

        Applying the same deltas twice leaves the store as applying them once.

        Args:
            deltas: Posters placed, moved or removed on the remote

        Returns:
            Number of rows inserted or updated
        """
        changed = 0
        with self.database.transaction() as conn:
            for delta in deltas:
                if self._merge_delta(conn, delta):
                    changed += 1
        return changed

    def _merge_delta(self, conn: sqlite3.Connection, delta: PosterDelta) -> bool:
        location = delta.location
        existing = self._fetch(conn, 'server_id', delta.server_id)

        if existing is None:
            conn.execute(
                """
                INSERT INTO posters (server_id, lat, lng, removed, pending_sync)
                VALUES (?, ?, ?, ?, 0)
                """,
                (delta.server_id, location.latitude, location.longitude, int(delta.removed))
            )
            return True

        if delta.removed:
            conn.execute(
                """
                UPDATE posters
                SET lat = ?, lng = ?, removed = 1, pending_sync = 0,
                    attempts = 0, last_error = NULL
                WHERE local_id = ?
                """,
                (location.latitude, location.longitude, existing['local_id'])
            )
            return True

        # Local mutations win until acknowledged; confirmed tombstones stay retired.
        if existing['pending_sync'] or existing['removed']:
            return False

        conn.execute(
            "UPDATE posters SET lat = ?, lng = ? WHERE local_id = ?",
            (location.latitude, location.longitude, existing['local_id'])
        )
        return True

    def reset_all(self) -> int:
        """
        Wipe every record and zero the checkpoint, for a new session.

        Returns:
            Number of records deleted
        """
        with self.database.transaction() as conn:
            deleted = conn.execute("DELETE FROM posters").rowcount
            Checkpoint.clear_within(conn)
        logger.info(f"Local poster cache reset ({deleted} records removed)")
        return deleted
