"""
Push/pull reconciliation between the local poster store and the remote service.

A sync cycle first flushes pending local mutations, then pulls remote deltas
issued since the checkpoint and merges them. Pushing first means a placement
made just before a pull cannot be overwritten by a remote snapshot that
predates it.
"""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

from models import Session

from .checkpoint import Checkpoint
from .errors import RemoteRejectedError, RemoteServiceError
from .local_store import LocalStore
from .remote_service import RemoteService

logger = logging.getLogger(__name__)


def wall_clock_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class FlushResult:
    """Outcome of one flush pass."""
    sent: int = 0
    failed: int = 0
    errors: List[Tuple[int, RemoteServiceError]] = field(default_factory=list)


@dataclass
class PullResult:
    """Outcome of one successful pull."""
    received: int = 0
    applied: int = 0
    checkpoint: int = 0


@dataclass
class SyncResult:
    """Outcome of a full sync cycle."""
    flush: FlushResult
    pull: Optional[PullResult] = None
    pull_error: Optional[RemoteServiceError] = None

    @property
    def ok(self) -> bool:
        return self.flush.failed == 0 and self.pull_error is None

    @property
    def remote_errors(self) -> List[RemoteServiceError]:
        errors = [error for _, error in self.flush.errors]
        if self.pull_error is not None:
            errors.append(self.pull_error)
        return errors

    @property
    def requires_reauth(self) -> bool:
        """True when the remote refused our credentials; retrying will not help."""
        return any(
            isinstance(error, RemoteRejectedError) and error.requires_reauth
            for error in self.remote_errors
        )


class SyncEngine:
    """
    Reconciles a LocalStore with a RemoteService.

    Cycles are single-flight: ``run_sync_cycle`` is serialized by a lock, and
    ``request_sync`` runs cycles on one background worker, coalescing every
    request made while a cycle is waiting to start into that waiting cycle.
    """

    def __init__(
        self,
        store: LocalStore,
        checkpoint: Checkpoint,
        remote: RemoteService,
        clock: Optional[Callable[[], int]] = None
    ):
        """
        Initialize the sync engine.

        Args:
            store: Local poster store
            checkpoint: Pull watermark
            remote: Remote poster service
            clock: Returns the current time in milliseconds
        """
        self.store = store
        self.checkpoint = checkpoint
        self.remote = remote
        self.clock = clock or wall_clock_ms
        self._cycle_lock = threading.Lock()
        self._schedule_lock = threading.Lock()
        self._queued: Optional[Future] = None
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="PosterSync")
        self._closed = False

    def flush_pending(self, session: Session) -> FlushResult:
        """
        Send every pending placement and removal to the remote service.

        A remote failure leaves that record pending and moves on to the next
        one. Storage failures propagate.

        Args:
            session: Authenticated user context

        Returns:
            Counts of sent and failed records, with the remote errors
        """
        result = FlushResult()
        pending = self.store.list_pending()
        if not pending:
            logger.debug("No pending posters to flush")
            return result

        logger.info(f"Flushing {len(pending)} pending posters")

        for record in pending:
            try:
                if record.removed:
                    server_id = self.remote.remove(session, record.location)
                else:
                    server_id = self.remote.place(session, record.location)
            except RemoteServiceError as e:
                action = "removal" if record.removed else "placement"
                logger.warning(f"Failed to send {action} for local poster {record.local_id}: {e}")
                self.store.mark_failed(record.local_id, str(e))
                result.failed += 1
                result.errors.append((record.local_id, e))
                continue

            if record.removed:
                self.store.confirm_removal(record.local_id, server_id)
            else:
                self.store.mark_synced(record.local_id, server_id, location=record.location)
            result.sent += 1
            logger.debug(f"Local poster {record.local_id} synced as server poster {server_id}")

        logger.info(f"Flush finished: {result.sent} sent, {result.failed} still pending")
        return result

    def pull_updates(self, session: Session) -> PullResult:
        """
        Fetch remote deltas since the checkpoint and merge them.

        The checkpoint advances to the time the pull was issued, and only once
        a non-empty merge has committed. An empty pull leaves it where it was.

        Raises:
            RemoteServiceError: If the fetch fails; the checkpoint is unchanged
            LocalStorageError: If the merge fails; the store is unchanged
        """
        issued_at = self.clock()
        since = self.checkpoint.get()
        logger.debug(f"Pulling poster updates since {since}")

        deltas = self.remote.fetch_updates_since(session, since)
        if not deltas:
            logger.debug("No poster updates, checkpoint unchanged")
            return PullResult(checkpoint=since)

        applied = self.store.apply_remote_delta(deltas)
        current = self.checkpoint.advance(issued_at)

        logger.info(f"Pulled {len(deltas)} poster updates ({applied} applied), checkpoint {current}")
        return PullResult(received=len(deltas), applied=applied, checkpoint=current)

    def run_sync_cycle(self, session: Session) -> SyncResult:
        """
        Flush, then pull.

        Remote errors are reported in the result; storage errors propagate.
        """
        with self._cycle_lock:
            logger.info(f"Starting sync cycle for user {session.user_id}")
            result = SyncResult(flush=self.flush_pending(session))
            try:
                result.pull = self.pull_updates(session)
            except RemoteServiceError as e:
                logger.warning(f"Pull failed, will retry next cycle: {e}")
                result.pull_error = e
            return result

    def request_sync(self, session: Session) -> Future:
        """
        Schedule a sync cycle on the background worker.

        If a cycle is already waiting to start, its future is returned instead
        of scheduling another one.

        Returns:
            Future resolving to a SyncResult
        """
        with self._schedule_lock:
            if self._closed:
                raise RuntimeError("Sync engine is closed")
            queued = self._queued
            if queued is not None and not queued.running() and not queued.done():
                logger.debug("Sync cycle already queued, joining it")
                return queued
            self._queued = self._executor.submit(self.run_sync_cycle, session)
            return self._queued

    def reset_session(self) -> int:
        """
        Wipe the store and checkpoint for a new session.

        A cycle waiting to start is cancelled, since it carries the previous
        session. A running cycle finishes first, so none of its writes land
        after the wipe.

        Returns:
            Number of records deleted
        """
        with self._schedule_lock:
            queued = self._queued
            if queued is not None and queued.cancel():
                logger.info("Cancelled queued sync cycle of the previous session")
            self._queued = None
            with self._cycle_lock:
                return self.store.reset_all()

    def sync(self, session: Session, timeout: Optional[float] = None) -> SyncResult:
        """Run a sync cycle on the background worker and wait for its result."""
        return self.request_sync(session).result(timeout=timeout)

    def close(self) -> None:
        """Stop accepting cycles and wait for any started or queued cycle to finish."""
        with self._schedule_lock:
            self._closed = True
        self._executor.shutdown(wait=True)
        logger.debug("Sync engine closed")
