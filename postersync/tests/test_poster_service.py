"""
Tests for PosterService class.

This module covers:
- Service lifecycle and status reporting
- Local-first user actions (place, remove, refresh)
- Offline, retry and re-authentication states
- Session changes
"""
import threading

import pytest
from unittest.mock import Mock, patch

from app.poster_service import PosterService, ServiceState, ServiceStatus
from models import Location, PosterDelta, PosterRecord, Session
from sync.errors import LocalStorageError

from conftest import BlockingRemoteService


@pytest.fixture
def service(test_app_config, fake_remote, session):
    svc = PosterService(test_app_config, remote=fake_remote)
    svc.start(session)
    yield svc
    svc.stop()


class TestPosterServiceLifecycle:
    """Test cases for start, stop and status."""

    @pytest.mark.unit
    def test_initial_state(self, test_app_config):
        svc = PosterService(test_app_config)

        assert svc.state.status == ServiceStatus.STOPPED
        assert svc.session is None
        with pytest.raises(RuntimeError):
            svc.app

    @pytest.mark.unit
    def test_start_opens_cache(self, service):
        assert service.state.status == ServiceStatus.IDLE
        assert service.app.is_ready

    @pytest.mark.unit
    def test_start_twice_is_noop(self, service):
        app = service.app
        service.start()
        assert service.app is app

    @pytest.mark.unit
    def test_start_syncs_when_configured(self, test_app_config, fake_remote, session):
        test_app_config.sync.sync_on_start = True
        fake_remote.updates = [PosterDelta(5, Location(1.0, 2.0))]
        svc = PosterService(test_app_config, remote=fake_remote)

        svc.start(session)
        try:
            assert svc.state.status == ServiceStatus.SYNCED
            assert [p.server_id for p in svc.active_posters()] == [5]
        finally:
            svc.stop()

    @pytest.mark.unit
    def test_stop(self, test_app_config, fake_remote):
        svc = PosterService(test_app_config, remote=fake_remote)
        svc.start()

        svc.stop()

        assert svc.state.status == ServiceStatus.STOPPED
        assert fake_remote.closed
        with pytest.raises(RuntimeError):
            svc.active_posters()

    @pytest.mark.unit
    def test_status_callback(self, test_app_config, fake_remote):
        callback = Mock()
        svc = PosterService(test_app_config, remote=fake_remote, on_status_change=callback)

        svc.start()
        svc.stop()

        statuses = [c[0][0].status for c in callback.call_args_list]
        assert ServiceStatus.STOPPED in statuses
        assert isinstance(callback.call_args[0][0], ServiceState)

    @pytest.mark.unit
    def test_status_callback_errors_are_contained(self, test_app_config, fake_remote):
        callback = Mock(side_effect=ValueError("display gone"))
        svc = PosterService(test_app_config, remote=fake_remote, on_status_change=callback)

        svc.start()
        svc.stop()

        assert callback.called

    @pytest.mark.unit
    def test_status_summary(self, service):
        summary = service.get_status_summary()

        assert summary['status'] == 'idle'
        assert summary['running'] is True
        assert summary['logged_in'] is True
        assert summary['pending_count'] == 0
        assert summary['checkpoint'] == 0


class TestPlacePoster:
    """Test cases for place_poster."""

    @pytest.mark.unit
    def test_place_online(self, service, fake_remote):
        record = service.place_poster(Location(1.0, 2.0))

        assert record.server_id == 42
        assert record.pending_sync is False
        assert service.state.status == ServiceStatus.SYNCED
        assert service.state.pending_count == 0
        assert service.state.last_sync is not None

    @pytest.mark.unit
    def test_place_offline(self, service, fake_remote):
        """Test that an offline placement is kept and reported as offline."""
        fake_remote.offline = True

        record = service.place_poster(Location(1.0, 2.0))

        assert record.local_id == 1
        assert record.server_id is None
        assert record.pending_sync is True
        assert service.state.status == ServiceStatus.OFFLINE
        assert service.state.pending_count == 1
        assert fake_remote.calls == []

    @pytest.mark.unit
    def test_place_without_session_stays_local(self, test_app_config, fake_remote):
        svc = PosterService(test_app_config, remote=fake_remote)
        svc.start()
        try:
            record = svc.place_poster(Location(1.0, 2.0))

            assert record.pending_sync is True
            assert fake_remote.calls == []
        finally:
            svc.stop()

    @pytest.mark.unit
    def test_place_retry_later(self, service, fake_remote):
        fake_remote.failing_locations.add(Location(1.0, 2.0))

        record = service.place_poster(Location(1.0, 2.0))

        assert record.pending_sync is True
        assert record.attempts == 1
        assert service.state.status == ServiceStatus.RETRY_LATER
        assert service.state.error_count == 1

    @pytest.mark.unit
    def test_place_auth_required(self, service, fake_remote):
        fake_remote.reject_status = 401

        service.place_poster(Location(1.0, 2.0))

        assert service.state.status == ServiceStatus.AUTH_REQUIRED
        assert service.state.pending_count == 1

    @pytest.mark.unit
    def test_storage_failure_reported(self, service):
        with patch.object(service.app.store, 'insert', side_effect=LocalStorageError("disk full")):
            with pytest.raises(LocalStorageError):
                service.place_poster(Location(1.0, 2.0))

        assert service.state.status == ServiceStatus.ERROR
        assert service.state.errors[-1]['error'] == "disk full"

    @pytest.mark.unit
    def test_offline_then_refresh(self, service, fake_remote):
        fake_remote.offline = True
        record = service.place_poster(Location(1.0, 2.0))

        fake_remote.offline = False
        result = service.refresh()

        assert result.flush.sent == 1
        assert service.app.store.get(record.local_id).server_id == 42
        assert service.state.status == ServiceStatus.SYNCED


class TestRemovePoster:
    """Test cases for the removal actions."""

    @pytest.mark.unit
    def test_remove_by_location(self, service, fake_remote):
        service.place_poster(Location(1.0, 2.0))

        service.remove_poster(Location(1.0, 2.0))

        assert service.active_posters() == []
        assert service.pending_posters() == []
        assert fake_remote.posters == {}

    @pytest.mark.unit
    def test_remove_by_location_offline(self, service, fake_remote):
        service.place_poster(Location(1.0, 2.0))
        fake_remote.offline = True

        record = service.remove_poster(Location(1.0, 2.0))

        assert record.removed is True
        assert record.pending_sync is True
        assert len(service.active_posters()) == 1
        assert service.state.pending_count == 1

    @pytest.mark.unit
    def test_remove_known_poster(self, service, fake_remote):
        placed = service.place_poster(Location(1.0, 2.0))

        location = service.remove_known_poster(placed.local_id)

        assert location == Location(1.0, 2.0)
        record = service.app.store.get(placed.local_id)
        assert record.removed is True
        assert record.pending_sync is False
        assert 42 not in fake_remote.posters

    @pytest.mark.unit
    def test_remove_known_poster_absent(self, service, fake_remote):
        assert service.remove_known_poster(999) is None
        assert fake_remote.calls == []

    @pytest.mark.unit
    def test_forget_remote_poster(self, service):
        service.app.store.insert(PosterRecord(latitude=1.0, longitude=2.0, server_id=9, pending_sync=False))

        assert service.forget_remote_poster(9) == Location(1.0, 2.0)
        assert service.active_posters() == []

    @pytest.mark.unit
    def test_forget_unknown_poster(self, service):
        assert service.forget_remote_poster(9) is None

    @pytest.mark.unit
    def test_purge_after_sync(self, test_app_config, fake_remote, session):
        test_app_config.sync.purge_removed_after_sync = True
        svc = PosterService(test_app_config, remote=fake_remote)
        svc.start(session)
        try:
            placed = svc.place_poster(Location(1.0, 2.0))
            svc.remove_known_poster(placed.local_id)

            assert svc.app.store.get(placed.local_id) is None
        finally:
            svc.stop()


class TestSessions:
    """Test cases for login, logout and background refresh."""

    @pytest.mark.unit
    def test_login_resets_cache(self, service, fake_remote):
        """Test that a new session starts from an empty cache and a full pull."""
        fake_remote.offline = True
        service.place_poster(Location(1.0, 2.0))
        service.app.checkpoint.advance(5000)
        fake_remote.offline = False
        fake_remote.updates = [PosterDelta(100, Location(5.0, 5.0))]

        result = service.login(Session(auth_key="other-key", user_id=8, party_id=3))

        assert result.ok
        assert fake_remote.calls[-1] == ('fetch', 0)
        assert [p.server_id for p in service.active_posters()] == [100]
        assert service.session.user_id == 8

    @pytest.mark.concurrency
    def test_login_waits_for_background_cycle(self, test_app_config, session):
        """Test that a cycle of the previous session cannot move the new session's checkpoint."""
        remote = BlockingRemoteService(block=('fetch',))
        remote.updates = [PosterDelta(100, Location(5.0, 5.0))]
        svc = PosterService(test_app_config, remote=remote)
        svc.start(session)
        try:
            background = svc.on_foreground()
            assert remote.started.wait(timeout=5)

            results = []
            login = threading.Thread(
                target=lambda: results.append(svc.login(Session(auth_key="other-key", user_id=8, party_id=3)))
            )
            login.start()
            login.join(timeout=0.2)
            assert login.is_alive()

            remote.release.set()
            login.join(timeout=5)

            assert background.result(timeout=5).pull.received == 1
            assert results[0].ok
            assert remote.calls == [('fetch', 0), ('fetch', 0)]
            assert [p.server_id for p in svc.active_posters()] == [100]
        finally:
            remote.release.set()
            svc.stop()

    @pytest.mark.unit
    def test_logout(self, service, fake_remote):
        service.logout()

        assert service.session is None
        service.place_poster(Location(1.0, 2.0))
        assert fake_remote.calls == []

    @pytest.mark.unit
    def test_on_foreground_syncs_in_background(self, service, fake_remote):
        fake_remote.offline = True
        service.place_poster(Location(1.0, 2.0))
        fake_remote.offline = False

        future = service.on_foreground()
        result = future.result(timeout=5)

        assert result.flush.sent == 1
        assert service.app.store.count_pending() == 0

    @pytest.mark.unit
    def test_on_foreground_offline(self, service, fake_remote):
        fake_remote.offline = True

        assert service.on_foreground() is None
        assert service.state.status == ServiceStatus.OFFLINE
