"""
Replay window tests for SecureLink.
"""

import pytest

from securelink.protocol.window import ReplayGuard


class TestReplayGuard:
    """Test the sliding replay window."""

    def test_duplicate_rejected(self):
        """A sequence seen twice is accepted once."""
        guard = ReplayGuard()
        assert guard.accept(5)
        assert not guard.accept(5)

    def test_stale_sequence_rejected(self):
        """After 1..70, sequence 3 is below the 64-entry window."""
        guard = ReplayGuard()
        for seq in range(1, 71):
            assert guard.accept(seq)

        assert not guard.accept(3)
        assert guard.highest_seen == 70

    def test_window_edge(self):
        guard = ReplayGuard()
        guard.accept(100)
        assert guard.is_acceptable(37)  # 100 - 63
        assert not guard.is_acceptable(36)  # 100 - 64

    def test_out_of_order_within_window(self):
        guard = ReplayGuard()
        assert guard.accept(10)
        assert guard.accept(8)
        assert guard.accept(9)
        assert not guard.accept(8)
        assert guard.recorded() == {8, 9, 10}

    def test_large_jump_clears_window(self):
        guard = ReplayGuard()
        for seq in range(1, 10):
            guard.accept(seq)
        assert guard.accept(1000)
        assert guard.recorded() == {1000}
        assert not guard.accept(5)

    def test_recorded_entries_stay_inside_window(self):
        guard = ReplayGuard()
        for seq in range(1, 200):
            guard.accept(seq)
        recorded = guard.recorded()
        assert len(recorded) == 64
        assert min(recorded) == 199 - 63

    def test_is_acceptable_does_not_record(self):
        guard = ReplayGuard()
        assert guard.is_acceptable(1)
        assert guard.is_acceptable(1)
        assert guard.highest_seen == -1

    def test_sequence_zero_accepted_once(self):
        guard = ReplayGuard()
        assert guard.accept(0)
        assert not guard.accept(0)

    def test_negative_sequence_rejected(self):
        assert not ReplayGuard().accept(-1)

    def test_custom_window_size(self):
        guard = ReplayGuard(window_size=8)
        guard.accept(20)
        assert guard.is_acceptable(13)
        assert not guard.is_acceptable(12)

    @pytest.mark.parametrize("size", [0, -1, 65])
    def test_invalid_window_size(self, size):
        with pytest.raises(ValueError):
            ReplayGuard(window_size=size)

    def test_reset(self):
        guard = ReplayGuard()
        guard.accept(5)
        guard.reset()
        assert guard.accept(5)

    def test_snapshot(self):
        guard = ReplayGuard()
        guard.accept(3)
        guard.accept(1)
        snapshot = guard.snapshot()
        assert snapshot['highest_seen'] == 3
        assert snapshot['recorded_count'] == 2
        assert snapshot['window_size'] == 64
