"""
Rate limiting components for the pagecollator package.

This module provides a Token Bucket rate limiter and an HTTP client decorator
that acquires a token before every outbound request.

The limiter replenishes `tokens_per_period` tokens once per
`replenishment_period` (capped at `token_limit`), so bursts up to
`token_limit` are allowed while the sustained rate stays bounded. Callers
that cannot get a token right away wait in FIFO order; once `queue_limit`
callers are waiting, further callers fail fast with RateLimiterQueueFullError.

Example:
    >>> from pagecollator._rate_limit import TokenBucketRateLimiter, TokenBucketRateLimitedHttpClient
    >>> from pagecollator._http import BearerTokenHttpClient
    >>> limiter = TokenBucketRateLimiter(token_limit=5, replenishment_period=1.0, queue_limit=500)
    >>> client = TokenBucketRateLimitedHttpClient(
    ...     delegate=BearerTokenHttpClient(token="my-token"),
    ...     rate_limiter=limiter,
    ... )
"""

import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from typing import override

import requests

from pagecollator._cancellation import CancellationToken, OperationCancelledError
from pagecollator._http import HttpClient
from pagecollator._retry import RetryableError

logger = logging.getLogger(__name__)


# =============================================================================
# Exceptions
# =============================================================================


class ClientSideRateLimitError(RetryableError):
    """
    Base exception for client-side rate limiting errors.

    Extends RetryableError so all client-side rate limit errors are
    automatically retried by the Retrying context manager.
    """

    pass


class RateLimiterQueueFullError(ClientSideRateLimitError):
    """
    Raised when the rate limiter queue is full and a request cannot wait for a token.

    Attributes:
        queue_limit: The configured maximum number of waiting requests.
    """

    def __init__(self, queue_limit: int):
        self.queue_limit = queue_limit
        super().__init__(
            f"Rate limiter queue is full: {queue_limit} request(s) already waiting for a token"
        )


# =============================================================================
# Token Bucket
# =============================================================================


class TokenBucketRateLimiter:
    """
    Thread-safe Token Bucket rate limiter with a bounded FIFO wait queue.

    Args:
        token_limit: Maximum number of tokens in the bucket (max burst size).
        tokens_per_period: Tokens added every replenishment period.
            Defaults to `token_limit`.
        replenishment_period: Replenishment period in seconds (default: 1.0).
        queue_limit: Maximum number of callers allowed to wait for a token
            (default: 500). Use 0 to never wait.
        clock: Monotonic clock, injectable for tests.
    """

    # Upper bound for a single wait while a cancellation token is observed.
    _CANCELLATION_POLL_INTERVAL = 0.1

    def __init__(
        self,
        token_limit: int = 5,
        tokens_per_period: int | None = None,
        replenishment_period: float = 1.0,
        queue_limit: int = 500,
        clock: Callable[[], float] = time.monotonic,
    ):
        assert token_limit is not None, "token_limit cannot be None."
        assert token_limit > 0, "token_limit must be greater than 0."
        assert tokens_per_period is None or tokens_per_period > 0, "tokens_per_period must be greater than 0."
        assert replenishment_period is not None, "replenishment_period cannot be None."
        assert replenishment_period > 0, "replenishment_period must be greater than 0."
        assert queue_limit is not None, "queue_limit cannot be None."
        assert queue_limit >= 0, "queue_limit must be >= 0."

        self.token_limit = token_limit
        self.tokens_per_period = tokens_per_period or token_limit
        self.replenishment_period = replenishment_period
        self.queue_limit = queue_limit
        self._clock = clock

        # Bucket state
        self._tokens = token_limit
        self._next_replenishment = clock() + replenishment_period
        self._queue: deque[object] = deque()
        self._condition = threading.Condition()

    @property
    def available_tokens(self) -> int:
        with self._condition:
            self._replenish(self._clock())
            return self._tokens

    @property
    def queued(self) -> int:
        with self._condition:
            return len(self._queue)

    def _replenish(self, now: float) -> None:
        """Add tokens for every whole period elapsed. Must hold the lock."""
        if now < self._next_replenishment:
            return
        periods = int((now - self._next_replenishment) // self.replenishment_period) + 1
        self._tokens = min(self.token_limit, self._tokens + periods * self.tokens_per_period)
        self._next_replenishment += periods * self.replenishment_period

    def try_acquire(self) -> bool:
        """
        Take a token without waiting.

        Returns False when no token is available or other callers are already
        queued (queued callers are served first).
        """
        with self._condition:
            self._replenish(self._clock())
            if not self._queue and self._tokens >= 1:
                self._tokens -= 1
                return True
            return False

    def acquire(self, cancellation: CancellationToken | None = None) -> None:
        """
        Take a token, waiting in FIFO order if none is available.

        Args:
            cancellation: Optional token that aborts the wait.

        Raises:
            RateLimiterQueueFullError: If `queue_limit` callers are already waiting.
            OperationCancelledError: If cancelled while waiting.
        """
        with self._condition:
            self._replenish(self._clock())
            if not self._queue and self._tokens >= 1:
                self._tokens -= 1
                return

            if len(self._queue) >= self.queue_limit:
                raise RateLimiterQueueFullError(self.queue_limit)

            ticket = object()
            self._queue.append(ticket)
            logger.debug(f"No token available, waiting in queue (position {len(self._queue)})")
            try:
                while True:
                    if cancellation is not None and cancellation.is_cancelled:
                        raise OperationCancelledError("Cancelled while waiting for a rate limit token.")

                    now = self._clock()
                    self._replenish(now)
                    if self._queue[0] is ticket and self._tokens >= 1:
                        self._tokens -= 1
                        self._queue.popleft()
                        return

                    timeout = max(0.0, self._next_replenishment - now)
                    if cancellation is not None:
                        timeout = min(timeout, self._CANCELLATION_POLL_INTERVAL)
                    self._condition.wait(timeout)
            finally:
                if ticket in self._queue:
                    self._queue.remove(ticket)
                self._condition.notify_all()


# =============================================================================
# Rate-Limited Decorator
# =============================================================================


class TokenBucketRateLimitedHttpClient(HttpClient):
    """
    HTTP client decorator that acquires a rate limit token before every request.

    The limiter is passed in explicitly, so independent runs (or tests) never
    share bucket state by accident.

    Args:
        delegate: The underlying HTTP client to delegate requests to.
        rate_limiter: The token bucket guarding outbound requests.

    Raises:
        RateLimiterQueueFullError: If the limiter's wait queue is full.
    """

    def __init__(self, delegate: HttpClient, rate_limiter: TokenBucketRateLimiter):
        assert delegate is not None, "Delegate HTTP client is required."
        assert rate_limiter is not None, "Rate limiter is required."

        self.delegate = delegate
        self.rate_limiter = rate_limiter

    @override
    def get(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        timeout: float = 300,
        cancellation: CancellationToken | None = None,
    ) -> requests.Response:
        """Acquire a rate limit token, then delegate the GET request."""
        self.rate_limiter.acquire(cancellation)
        return self.delegate.get(url, headers, timeout, cancellation)

    @override
    def close(self) -> None:
        self.delegate.close()
