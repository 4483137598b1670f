"""
Utility functions for the pagecollator package.

This module provides internal helpers used throughout the collator.
These functions are not part of the public API and may change without notice.
"""

from __future__ import annotations

import os
import random
import socket
import threading
import time


class Jitter:
    """
    Random multiplicative jitter for retry delays.

    Uses a per-process seeded RNG to ensure:
    - Same process = deterministic sequence (reproducible for debugging)
    - Different processes = different sequences (desynchronization)

    A factor of 0.20 means values will be multiplied by a random number
    in the range [0.80, 1.20] (±20%).

    Example:
        >>> jitter = Jitter(factor=0.20)
        >>> jittered = jitter.apply(2.0)  # Returns ~1.6-2.4
        >>> jittered = 2.0 * jitter  # Same effect

    Args:
        factor: Jitter factor (default: 0.20 = ±20%).
        rng: Optional RNG for testing. If None, creates a per-process seeded RNG.
    """

    def __init__(self, factor: float = 0.20, rng: random.Random | None = None):
        assert factor >= 0, "factor must be non-negative"
        assert factor < 1, "factor must be less than 1"

        self.factor = factor
        self._rng = rng or self._create_process_local_rng()

    @staticmethod
    def _create_process_local_rng() -> random.Random:
        """Create a deterministic RNG seeded with hostname and PID."""
        seed = hash((socket.gethostname(), os.getpid()))
        return random.Random(seed)

    def next(self) -> float:
        """Return a random jitter multiplier in [1-factor, 1+factor]."""
        return self._rng.uniform(1.0 - self.factor, 1.0 + self.factor)

    def apply(self, value: float) -> float:
        """Multiply value by a jittered factor."""
        return value * self.next()

    def __mul__(self, other: float) -> float:
        return self.apply(other)

    def __rmul__(self, other: float) -> float:
        return self.apply(other)


def sleep_unless_set(seconds: float, event: threading.Event | None = None) -> bool:
    """
    Sleep for the given duration, waking up early if `event` gets set.

    Args:
        seconds: Sleep duration in seconds. Non-positive values return immediately.
        event: Optional event that interrupts the sleep when set.

    Returns:
        True if the event was set (sleep interrupted), False otherwise.
    """
    if seconds <= 0:
        return event.is_set() if event is not None else False
    if event is None:
        time.sleep(seconds)
        return False
    return event.wait(seconds)


def format_elapsed(seconds: float) -> str:
    """
    Format a duration as HH:MM:SS.

    Example:
        >>> format_elapsed(3725.4)
        '01:02:05'
    """
    total = int(seconds)
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"
