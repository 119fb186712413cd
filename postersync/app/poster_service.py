"""
User-action facade over the poster sync client.

Every action writes to the local store first and then triggers a sync cycle,
so nothing the user does is lost while the device is offline. Status changes
are reported through an optional callback.
"""

import logging
import threading
from concurrent.futures import CancelledError, Future, TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional

from app.poster_application import PosterApplication
from config.app_config import AppConfig
from models import Location, PosterRecord, Session
from sync.errors import LocalStorageError, PosterNotFound
from sync.remote_service import RemoteService
from sync.sync_engine import SyncResult


class ServiceStatus(Enum):
    """Status states for the poster service."""
    STOPPED = "stopped"
    IDLE = "idle"
    SYNCING = "syncing"
    SYNCED = "synced"
    OFFLINE = "offline"
    RETRY_LATER = "retry_later"
    AUTH_REQUIRED = "auth_required"
    ERROR = "error"


@dataclass
class ServiceState:
    """Current state of the poster service."""
    status: ServiceStatus = ServiceStatus.STOPPED
    message: str = ""
    last_sync: Optional[datetime] = None
    pending_count: int = 0
    error_count: int = 0
    errors: list = field(default_factory=list)


class PosterService:
    """
    Entry point for user actions: login, place, remove, refresh.

    Wraps PosterApplication and keeps a ServiceState for display.
    """

    def __init__(
        self,
        config: AppConfig,
        remote: Optional[RemoteService] = None,
        on_status_change: Optional[Callable[[ServiceState], None]] = None,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize the poster service.

        Args:
            config: Application configuration
            remote: Remote service to use instead of the configured HTTP client
            on_status_change: Callback for status updates
            logger: Optional logger instance
        """
        self.config = config
        self.on_status_change = on_status_change
        self.logger = logger or logging.getLogger(__name__)

        self._remote = remote
        self._app: Optional[PosterApplication] = None
        self._session: Optional[Session] = None
        self._state = ServiceState()
        self._lock = threading.Lock()

    @property
    def state(self) -> ServiceState:
        """Get current service state."""
        with self._lock:
            return self._state

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def app(self) -> PosterApplication:
        if self._app is None:
            raise RuntimeError("Poster service is not started")
        return self._app

    def _update_status(
        self,
        status: ServiceStatus,
        message: str = "",
        error: Optional[Exception] = None
    ) -> None:
        """
        Update service status and notify callback.

        Args:
            status: New status
            message: Optional status message
            error: Optional error that occurred
        """
        with self._lock:
            self._state.status = status
            self._state.message = message

            if error:
                self._state.error_count += 1
                self._state.errors.append({
                    'time': datetime.now(),
                    'error': str(error)
                })
                # Keep only last 10 errors
                self._state.errors = self._state.errors[-10:]

            if status == ServiceStatus.SYNCED:
                self._state.last_sync = datetime.now()

        self.logger.info(f"Status: {status.value} - {message}")

        if self.on_status_change:
            try:
                self.on_status_change(self._state)
            except Exception as e:
                self.logger.error(f"Error in status callback: {e}")

    def _refresh_pending_count(self) -> None:
        if self._app is None or self._app.store is None:
            return
        count = self._app.store.count_pending()
        with self._lock:
            self._state.pending_count = count

    # --- Lifecycle ---

    def start(self, session: Optional[Session] = None) -> None:
        """
        Open the local cache and remote client.

        Args:
            session: Session restored from a previous run; the cache is kept
        """
        if self._app is not None:
            self.logger.warning("Service is already running")
            return
        self._app = PosterApplication(self.config, remote=self._remote).setup()
        self._session = session
        self._refresh_pending_count()
        self._update_status(ServiceStatus.IDLE, "Poster cache opened")
        if session is not None and self.config.sync.sync_on_start:
            self.refresh()

    def stop(self) -> None:
        """Shut the application down, letting any started sync cycle finish."""
        if self._app is None:
            return
        try:
            self._app.shutdown()
        finally:
            self._app = None
            self._update_status(ServiceStatus.STOPPED, "Service stopped")

    def login(self, session: Session) -> Optional[SyncResult]:
        """
        Start a new session: wipe the cache and checkpoint, then pull everything.

        Waits for a sync cycle that is already running before wiping.

        Returns:
            The first sync result, or None if offline
        """
        self._session = session
        self._write(self.app.engine.reset_session)
        self.logger.info(f"Logged in as user {session.user_id} (party {session.party_id})")
        return self.refresh()

    def logout(self) -> None:
        self._session = None
        self._update_status(ServiceStatus.IDLE, "Logged out")

    # --- User actions ---

    def place_poster(self, location: Location, wait: bool = True) -> PosterRecord:
        """
        Place a poster locally and try to send it.

        Returns:
            The stored record, as it stands after the sync attempt
        """
        record = PosterRecord.pending_placement(location)
        local_id = self._write(lambda: self.app.store.insert(record))
        self._trigger_sync(wait)
        return self.app.store.get(local_id) or record

    def remove_poster(self, location: Location, wait: bool = True) -> PosterRecord:
        """
        Remove the poster nearest to ``location``.

        Which poster that is gets decided by the remote service, so the
        removal is queued as an intent until the remote answers.
        """
        record = PosterRecord.pending_removal(location)
        local_id = self._write(lambda: self.app.store.insert(record))
        self._trigger_sync(wait)
        return self.app.store.get(local_id) or record

    def remove_known_poster(self, local_id: int, wait: bool = True) -> Optional[Location]:
        """
        Remove a poster already in the cache.

        Returns:
            Its coordinates, for clearing it from a display, or None if absent
        """
        location = self._write(lambda: self.app.store.mark_removed(local_id))
        if location is not None:
            self._trigger_sync(wait)
        return location

    def forget_remote_poster(self, server_id: int) -> Optional[Location]:
        """
        Mark a poster the remote already removed. Unknown ids are a no-op.
        """
        try:
            return self._write(lambda: self.app.store.mark_removed_by_server_id(server_id))
        except PosterNotFound:
            self.logger.debug(f"Poster {server_id} not cached, nothing to remove")
            return None

    def refresh(self) -> Optional[SyncResult]:
        """Manual refresh: run a full sync cycle and wait for it."""
        return self._trigger_sync(wait=True)

    def on_foreground(self) -> Optional[Future]:
        """App came to the foreground: sync in the background."""
        return self._trigger_sync(wait=False)

    def active_posters(self) -> List[PosterRecord]:
        return self.app.store.list_active()

    def pending_posters(self) -> List[PosterRecord]:
        return self.app.store.list_pending()

    # --- Sync plumbing ---

    def _write(self, action: Callable):
        try:
            result = action()
        except LocalStorageError as e:
            self._update_status(ServiceStatus.ERROR, f"Could not save locally: {e}", error=e)
            raise
        self._refresh_pending_count()
        return result

    def _trigger_sync(self, wait: bool):
        if self._session is None:
            self.logger.debug("No session, sync skipped")
            return None
        if not self.app.remote.is_available():
            self._update_status(ServiceStatus.OFFLINE, "Offline, changes will be sent later")
            return None

        self._update_status(ServiceStatus.SYNCING, "Syncing posters...")
        future = self.app.engine.request_sync(self._session)
        if not wait:
            future.add_done_callback(self._on_cycle_done)
            return future

        try:
            result = future.result(timeout=self.config.sync.cycle_timeout)
        except FutureTimeoutError:
            self._update_status(ServiceStatus.SYNCING, "Sync still running in the background")
            future.add_done_callback(self._on_cycle_done)
            return None
        except CancelledError:
            self.logger.info("Sync cycle cancelled by a session change")
            return None
        except LocalStorageError as e:
            self._update_status(ServiceStatus.ERROR, f"Local cache failure: {e}", error=e)
            raise
        self._record_result(result)
        return result

    def _on_cycle_done(self, future: Future) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            self.logger.error(f"Background sync failed: {error}")
            self._update_status(ServiceStatus.ERROR, str(error), error=error)
            return
        self._record_result(future.result())

    def _record_result(self, result: SyncResult) -> None:
        if self._app is not None and self.config.sync.purge_removed_after_sync and result.ok:
            self._app.store.purge_removed()
        self._refresh_pending_count()

        if result.requires_reauth:
            error = result.remote_errors[0]
            self._update_status(ServiceStatus.AUTH_REQUIRED, "Please log in again", error=error)
        elif not result.ok:
            error = result.remote_errors[0]
            self._update_status(ServiceStatus.RETRY_LATER, "Some changes will be retried later", error=error)
        else:
            self._update_status(
                ServiceStatus.SYNCED,
                f"Sent {result.flush.sent}, received {result.pull.received if result.pull else 0}"
            )

    def get_status_summary(self) -> dict:
        """
        Get a summary of current service status.

        Returns:
            Dictionary with status information
        """
        state = self.state
        return {
            'status': state.status.value,
            'message': state.message,
            'running': self._app is not None,
            'logged_in': self._session is not None,
            'last_sync': state.last_sync.isoformat() if state.last_sync else None,
            'pending_count': state.pending_count,
            'checkpoint': self._app.checkpoint.get() if self._app is not None else None,
            'error_count': state.error_count,
            'recent_errors': state.errors[-3:] if state.errors else []
        }
