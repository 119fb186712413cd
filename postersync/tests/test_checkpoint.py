"""
Tests for the persisted pull watermark.
"""
import threading

import pytest

from sync.checkpoint import Checkpoint
from sync.database import SyncDatabase


class TestCheckpoint:
    """Test cases for Checkpoint."""

    @pytest.mark.unit
    def test_defaults_to_zero(self, checkpoint):
        assert checkpoint.get() == 0

    @pytest.mark.unit
    def test_advance_moves_forward(self, checkpoint):
        assert checkpoint.advance(1000) == 1000
        assert checkpoint.advance(2500) == 2500
        assert checkpoint.get() == 2500

    @pytest.mark.unit
    def test_advance_never_moves_backward(self, checkpoint):
        """Test that a stale value is ignored."""
        checkpoint.advance(5000)

        assert checkpoint.advance(4000) == 5000
        assert checkpoint.get() == 5000

    @pytest.mark.unit
    def test_reset_zeroes(self, checkpoint):
        checkpoint.advance(5000)

        checkpoint.reset()

        assert checkpoint.get() == 0
        assert checkpoint.advance(10) == 10

    @pytest.mark.unit
    def test_persists_across_reopen(self, temp_db_path):
        db = SyncDatabase(temp_db_path)
        Checkpoint(db).advance(1_700_000_000_000)
        db.close()

        reopened = SyncDatabase(temp_db_path)
        try:
            assert Checkpoint(reopened).get() == 1_700_000_000_000
        finally:
            reopened.close()

    @pytest.mark.concurrency
    def test_concurrent_advances_keep_maximum(self, checkpoint):
        """Test that racing advances settle on the largest value."""
        values = list(range(0, 10000, 97))

        threads = [threading.Thread(target=checkpoint.advance, args=(v,)) for v in values]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert checkpoint.get() == max(values)
