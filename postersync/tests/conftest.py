"""
Pytest configuration and shared fixtures for the poster sync tests.
"""
import os
import tempfile
import threading
import uuid
from typing import List, Optional

import pytest

from config.app_config import AppConfig, RemoteConfig, StoreConfig, SyncConfig
from models import Location, PosterDelta, Session
from sync.checkpoint import Checkpoint
from sync.database import SyncDatabase
from sync.errors import RemoteRejectedError, TransientNetworkError
from sync.local_store import LocalStore
from sync.remote_service import RemoteService
from sync.sync_engine import SyncEngine


class FakeRemoteService(RemoteService):
    """In-memory remote service with switchable failure modes."""

    def __init__(self, first_id: int = 1):
        self.next_id = first_id
        self.posters = {}
        self.calls = []
        self.updates: List[PosterDelta] = []
        self.offline = False
        self.reject_status: Optional[int] = None
        self.failing_locations = set()
        self.fetch_error: Optional[Exception] = None
        self.closed = False

    def _check(self, location: Optional[Location] = None) -> None:
        if self.offline:
            raise TransientNetworkError("connection refused")
        if self.reject_status is not None:
            raise RemoteRejectedError("rejected", status=self.reject_status)
        if location is not None and location in self.failing_locations:
            raise TransientNetworkError("timed out")

    def place(self, session: Session, location: Location) -> int:
        self.calls.append(('place', location))
        self._check(location)
        server_id = self.next_id
        self.next_id += 1
        self.posters[server_id] = location
        return server_id

    def remove(self, session: Session, location: Location) -> int:
        self.calls.append(('remove', location))
        self._check(location)
        for server_id, placed in self.posters.items():
            if placed == location:
                del self.posters[server_id]
                return server_id
        raise RemoteRejectedError("no posters found within 20 meters", status=404)

    def fetch_updates_since(self, session: Session, since_ms: int) -> List[PosterDelta]:
        self.calls.append(('fetch', since_ms))
        if self.fetch_error is not None:
            raise self.fetch_error
        self._check()
        return list(self.updates)

    def is_available(self) -> bool:
        return not self.offline

    def close(self) -> None:
        self.closed = True


class BlockingRemoteService(FakeRemoteService):
    """Fake remote whose chosen calls wait until released."""

    def __init__(self, first_id: int = 1, block=('place',)):
        super().__init__(first_id)
        self.block = set(block)
        self.started = threading.Event()
        self.release = threading.Event()
        self.active = 0
        self.max_active = 0
        self._active_lock = threading.Lock()

    def _hold(self, call: str) -> None:
        if call not in self.block:
            return
        with self._active_lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            self.started.set()
            self.release.wait(timeout=5)
        finally:
            with self._active_lock:
                self.active -= 1

    def place(self, session: Session, location: Location) -> int:
        self._hold('place')
        return super().place(session, location)

    def fetch_updates_since(self, session: Session, since_ms: int) -> List[PosterDelta]:
        self._hold('fetch')
        return super().fetch_updates_since(session, since_ms)


class FakeClock:
    """Controllable millisecond clock."""

    def __init__(self, now: int = 1_700_000_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now


@pytest.fixture
def session():
    """Create a test session."""
    return Session(auth_key="test-auth-key", user_id=7, party_id=3, username="tester")


@pytest.fixture
def database():
    """Create an in-memory database for testing."""
    db = SyncDatabase(":memory:")
    yield db
    db.close()


@pytest.fixture
def store(database):
    return LocalStore(database)


@pytest.fixture
def checkpoint(database):
    return Checkpoint(database)


@pytest.fixture
def fake_remote():
    return FakeRemoteService(first_id=42)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def engine(store, checkpoint, fake_remote, clock):
    """Create a sync engine wired to the in-memory store and fake remote."""
    eng = SyncEngine(store, checkpoint, fake_remote, clock=clock)
    yield eng
    eng.close()


@pytest.fixture
def temp_db_path():
    """Temporary file-based SQLite database path."""
    temp_path = os.path.join(tempfile.gettempdir(), f"test_posters_{uuid.uuid4().hex}.db")

    yield temp_path

    # Cleanup
    for suffix in ("", "-journal", "-wal", "-shm"):
        try:
            os.unlink(temp_path + suffix)
        except FileNotFoundError:
            pass


@pytest.fixture
def test_app_config():
    """Create a test application configuration."""
    return AppConfig(
        store=StoreConfig(path=":memory:"),
        remote=RemoteConfig(base_url="http://test.example.com/api", timeout=1.0),
        sync=SyncConfig(cycle_timeout=5.0, sync_on_start=False)
    )
