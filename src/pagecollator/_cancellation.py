"""
Cooperative cancellation for page fetches.

A CancellationToken is shared between whoever wants to stop the run (typically
a signal handler installed by the CLI) and the code doing the work. Waiting
points (rate limiter queue, retry backoff) wake up as soon as the token is
cancelled; other code polls `raise_if_cancelled()` at safe points.

Example:
    >>> token = CancellationToken()
    >>> signal.signal(signal.SIGTERM, lambda *_: token.cancel())
    >>> collator.collate(total_pages=10, cancellation=token)
"""

from __future__ import annotations

import threading

from pagecollator._utils import sleep_unless_set


class OperationCancelledError(Exception):
    """Raised when an operation is aborted through its CancellationToken."""

    def __init__(self, message: str = "Operation was cancelled."):
        super().__init__(message)


class CancellationToken:
    """
    Thread-safe, one-way cancellation flag.

    Once cancelled, a token stays cancelled. Create a new token per run.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        """Request cancellation. Idempotent."""
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        """
        Raise OperationCancelledError if cancellation was requested.

        Raises:
            OperationCancelledError: If the token is cancelled.
        """
        if self._event.is_set():
            raise OperationCancelledError()

    def sleep(self, seconds: float) -> None:
        """
        Sleep for `seconds`, aborting early if the token gets cancelled.

        Raises:
            OperationCancelledError: If the token is (or becomes) cancelled.
        """
        if sleep_unless_set(seconds, self._event):
            raise OperationCancelledError()

    def wait(self, timeout: float | None) -> bool:
        """Block until cancelled or `timeout` elapses. Returns True if cancelled."""
        return self._event.wait(timeout)
