"""
Tests for data models.
"""
import dataclasses

import pytest
from models import Location, PosterDelta, PosterRecord, Session


class TestLocation:
    """Test cases for Location class."""

    def test_to_dict(self):
        assert Location(1.5, -2.25).to_dict() == {"lat": 1.5, "lng": -2.25}

    def test_from_dict_coerces_numbers(self):
        location = Location.from_dict({"lat": "1.5", "lng": 2})

        assert location == Location(1.5, 2.0)

    def test_from_dict_missing_key(self):
        with pytest.raises(KeyError):
            Location.from_dict({"lat": 1.0})

    def test_is_immutable(self):
        location = Location(1.0, 2.0)
        with pytest.raises(dataclasses.FrozenInstanceError):
            location.latitude = 3.0


class TestPosterRecord:
    """Test cases for PosterRecord class."""

    def test_pending_placement(self):
        """Test that a new placement has no identity and is pending."""
        record = PosterRecord.pending_placement(Location(1.0, 2.0))

        assert record.local_id is None
        assert record.server_id is None
        assert record.removed is False
        assert record.pending_sync is True
        assert record.attempts == 0
        assert record.location == Location(1.0, 2.0)

    def test_pending_removal(self):
        record = PosterRecord.pending_removal(Location(1.0, 2.0))

        assert record.removed is True
        assert record.pending_sync is True
        assert record.server_id is None


class TestPosterDelta:
    """Test cases for PosterDelta class."""

    def test_defaults_to_not_removed(self):
        delta = PosterDelta(5, Location(1.0, 2.0))

        assert delta.removed is False
        assert delta == PosterDelta(server_id=5, location=Location(1.0, 2.0), removed=False)


class TestSession:
    """Test cases for Session class."""

    def test_auth_key_hidden_from_repr(self, session):
        assert "test-auth-key" not in repr(session)
        assert "user_id=7" in repr(session)

    def test_is_immutable(self, session):
        with pytest.raises(dataclasses.FrozenInstanceError):
            session.user_id = 8
