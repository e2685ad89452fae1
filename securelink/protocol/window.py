"""
Sliding window management for replay protection.

This module implements a sliding window to track received sequence numbers
and reject duplicates or stale frames while allowing bounded out-of-order
delivery (the classic IPsec anti-replay window).
"""

from ..config import REPLAY_WINDOW_SIZE


class ReplayGuard:
    """
    Sliding window for replay protection, one per session.

    The set of sequence numbers inside the window
    [highest_seen - window_size + 1, highest_seen] is kept as a bitmap:
    bit i set means sequence (highest_seen - i) has been accepted.
    """

    def __init__(self, window_size: int = REPLAY_WINDOW_SIZE):
        """
        Initialize sliding window.

        Args:
            window_size: Size of the replay protection window (default: 64)
        """
        if window_size <= 0 or window_size > 64:
            raise ValueError("Window size must be between 1 and 64")

        self.window_size = window_size
        self.highest_seen = -1  # Nothing accepted yet
        self.seen_map = 0

    def is_acceptable(self, sequence: int) -> bool:
        """
        Check whether a sequence would be accepted, without recording it.

        Args:
            sequence: Frame sequence number

        Returns:
            True if the sequence is new and inside (or ahead of) the window
        """
        if sequence < 0:
            return False

        # Ahead of the window - always new
        if sequence > self.highest_seen:
            return True

        diff = self.highest_seen - sequence
        if diff >= self.window_size:
            # Too old
            return False

        return not bool(self.seen_map & (1 << diff))

    def accept(self, sequence: int) -> bool:
        """
        Record a sequence if it is new and recent enough.

        Args:
            sequence: Frame sequence number

        Returns:
            True if accepted, False if stale or duplicate
        """
        if not self.is_acceptable(sequence):
            return False

        if sequence > self.highest_seen:
            shift = sequence - self.highest_seen

            if shift >= self.window_size:
                # Whole window slides out
                self.seen_map = 0
            else:
                # Entries pushed past the trailing edge are pruned by the mask
                self.seen_map = (self.seen_map << shift) & ((1 << self.window_size) - 1)

            self.highest_seen = sequence
            self.seen_map |= 1
        else:
            self.seen_map |= (1 << (self.highest_seen - sequence))

        return True

    def recorded(self) -> set:
        """Get the set of sequence numbers currently inside the window."""
        return {
            self.highest_seen - i
            for i in range(self.window_size)
            if self.seen_map & (1 << i)
        }

    def snapshot(self) -> dict:
        """
        Get current window state information.

        Returns:
            Dictionary with window state details
        """
        return {
            'window_size': self.window_size,
            'highest_seen': self.highest_seen,
            'seen_bitmap_hex': f"0x{self.seen_map:x}",
            'recorded_count': bin(self.seen_map).count('1'),
        }

    def reset(self):
        """Reset window state."""
        self.highest_seen = -1
        self.seen_map = 0

    def __repr__(self) -> str:
        return (
            f"ReplayGuard(size={self.window_size}, "
            f"highest_seen={self.highest_seen}, "
            f"bitmap=0x{self.seen_map:x})"
        )
