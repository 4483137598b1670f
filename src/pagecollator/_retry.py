"""
Retry utilities with exponential backoff and jitter.

Inspired by Tenacity's Retrying class, this module provides a context manager
for implementing retry logic with configurable backoff and exception handling.

Example:
    >>> from pagecollator._retry import Retrying
    >>> for attempt in Retrying(max_retries=5, median_first_retry_delay=2.0):
    ...     with attempt:
    ...         response = http_client.get(url)
    ...         response.raise_for_status()
    ...         return response.text
"""

from __future__ import annotations

import logging
import time
from collections.abc import Generator
from dataclasses import dataclass
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime

import requests

from pagecollator._cancellation import CancellationToken, OperationCancelledError
from pagecollator._utils import Jitter

logger = logging.getLogger(__name__)


class RetryableError(Exception):
    """
    Base class for exceptions that should trigger automatic retry.

    Exceptions extending this class are automatically retried by the Retrying
    context manager without needing explicit configuration in retry_on_exceptions.

    Example:
        >>> class MyTransientError(RetryableError):
        ...     '''Custom retryable error for my service.'''
        ...     pass
    """

    pass


class MaxRetriesExceededError(Exception):
    """
    Raised when all retry attempts are exhausted.

    This exception wraps the last exception that occurred during retry attempts,
    providing access to the original error for debugging.

    Attributes:
        message: Human-readable error message.
        last_exception: The original exception from the last retry attempt.
    """

    def __init__(self, message: str, last_exception: Exception | None = None):
        super().__init__(message)
        self.last_exception = last_exception


@dataclass(frozen=True)
class RetryAttempt:
    """
    Metadata about the current attempt within a retry loop.

    Attributes:
        attempt_number: One-based index of the current attempt (1 = first attempt).
        max_attempts: Total number of attempts allowed (max_retries + 1).
    """

    attempt_number: int
    max_attempts: int

    @property
    def is_last_attempt(self) -> bool:
        """Return True if this is the last attempt."""
        return self.attempt_number >= self.max_attempts


class Retrying:
    """
    Context manager for retry with exponential backoff and jitter.

    Usage:
        >>> for attempt in Retrying(max_retries=5, median_first_retry_delay=2.0):
        ...     with attempt:
        ...         response = http_client.get(url)
        ...         response.raise_for_status()
        ...         return response.text

    Args:
        max_retries: Maximum number of retries after the first attempt (default: 5).
            Use 0 to disable retries (single attempt only).
        median_first_retry_delay: Median delay in seconds before the first retry
            (default: 2.0). Retry `n` (0-based) waits
            `median_first_retry_delay * 2**n`, scaled by a random jitter factor.
        retry_on_status_codes: HTTP status codes that trigger retry.
            Only applies to RequestException with a response attached.
            Default: 408, 429, 500, 502, 503, 504.
        retry_on_exceptions: Exception types that trigger retry
            (default: Timeout, ConnectionError, and a connection dropped while
            reading the body). Errors in the request itself, such as InvalidURL,
            are not retried.
        skip_retry_on_exceptions: Exception types that never trigger retry.
            Takes precedence over everything else.
        jitter: Jitter applied to the computed backoff (default: ±20%).
        cancellation: Optional token; backoff sleeps abort when it is cancelled.
        logger_prefix: Prefix for log messages (e.g., "Page 12").

    Raises:
        MaxRetriesExceededError: When all retry attempts are exhausted.
            Contains the last exception in the `last_exception` attribute.

    Note:
        - Exceptions extending RetryableError are automatically retried
        - A `Retry-After` header on the failing response overrides the computed
          backoff; unparseable values fall back to RETRY_AFTER_FALLBACK seconds
        - OperationCancelledError is never retried
    """

    # Delay used when the server sends a Retry-After header we cannot parse.
    RETRY_AFTER_FALLBACK = 5.0

    def __init__(
        self,
        max_retries: int = 5,
        median_first_retry_delay: float = 2.0,
        retry_on_status_codes: tuple[int, ...] = (408, 429, 500, 502, 503, 504),
        retry_on_exceptions: tuple[type[Exception], ...] = (
            requests.Timeout,
            requests.ConnectionError,
            requests.exceptions.ChunkedEncodingError,
            requests.exceptions.ContentDecodingError,
        ),
        skip_retry_on_exceptions: tuple[type[Exception], ...] = (),
        jitter: Jitter | None = None,
        cancellation: CancellationToken | None = None,
        logger_prefix: str = "",
    ):
        assert max_retries >= 0, f"max_retries must be >= 0, got {max_retries}"
        assert median_first_retry_delay >= 0, \
            f"median_first_retry_delay must be >= 0, got {median_first_retry_delay}"
        assert retry_on_status_codes is not None, "retry_on_status_codes cannot be None"
        assert retry_on_exceptions is not None, "retry_on_exceptions cannot be None"
        assert skip_retry_on_exceptions is not None, "skip_retry_on_exceptions cannot be None"

        self.max_retries = max_retries
        self.median_first_retry_delay = median_first_retry_delay
        self.retry_on_status_codes = set(retry_on_status_codes)
        self.retry_on_exceptions = retry_on_exceptions
        self.skip_retry_on_exceptions = skip_retry_on_exceptions
        self.jitter = jitter or Jitter()
        self.cancellation = cancellation
        self.logger_prefix = logger_prefix

        self._current_attempt = 0
        self._last_exception: Exception | None = None

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def __iter__(self) -> Generator[_RetryContext, None, None]:
        """Yield retry contexts for each attempt."""
        for attempt in range(self.max_attempts):
            self._current_attempt = attempt
            yield _RetryContext(self, attempt)

    def _should_retry(self, exception: Exception) -> bool:
        """
        Determine if exception should trigger a retry.

        Logic:
            1. Never retry cancellation or exceptions in skip_retry_on_exceptions
            2. For RequestException with response: retry if status code is in retry_on_status_codes
            3. Auto-retry if exception extends RetryableError
            4. Retry on configured exception types (Timeout, ConnectionError, etc.)
        """
        if isinstance(exception, OperationCancelledError):
            return False

        if isinstance(exception, self.skip_retry_on_exceptions):
            return False

        if isinstance(exception, requests.RequestException):
            response = getattr(exception, "response", None)
            if response is not None:
                return response.status_code in self.retry_on_status_codes

        if isinstance(exception, RetryableError):
            return True

        return isinstance(exception, self.retry_on_exceptions)

    def _handle_retry(self, exception: Exception) -> None:
        """Log the failed attempt, then sleep before the next one."""
        self._last_exception = exception
        sleep_time, from_header = self._calculate_wait_time(exception)

        prefix = f"{self.logger_prefix} | " if self.logger_prefix else ""
        retry_number = self._current_attempt + 1
        if from_header:
            logger.warning(
                f"{prefix}Retry attempt {retry_number}/{self.max_retries} - "
                f"server asked to wait {sleep_time:.1f}s (Retry-After) "
                f"(status: {_status_of(exception)}, exception: {exception})"
            )
        else:
            logger.warning(
                f"{prefix}Retry attempt {retry_number}/{self.max_retries} - "
                f"waiting {sleep_time:.1f}s "
                f"(status: {_status_of(exception)}, exception: {exception})"
            )
        self._sleep(sleep_time)

    def _sleep(self, seconds: float) -> None:
        if self.cancellation is not None:
            self.cancellation.sleep(seconds)
        else:
            time.sleep(seconds)

    def _calculate_wait_time(self, exception: Exception) -> tuple[float, bool]:
        """
        Calculate the wait time before the next attempt.

        Returns:
            A tuple of (seconds, from_retry_after). The Retry-After header of the
            failing response, when present, overrides the exponential backoff.
        """
        response: requests.Response | None = getattr(exception, "response", None)
        if response is not None:
            header = response.headers.get("Retry-After")
            if header is not None:
                retry_after = self._parse_retry_after(header)
                if retry_after is None:
                    return self.RETRY_AFTER_FALLBACK, True
                return retry_after, True

        base_wait = self.median_first_retry_delay * (2 ** self._current_attempt)
        return self.jitter.apply(base_wait), False

    @staticmethod
    def _parse_retry_after(header: str) -> float | None:
        """
        Parse a Retry-After header value.

        Supports both delta-seconds and HTTP-date formats.

        Returns:
            The delay in seconds (never negative), or None if the value is invalid.
        """
        value = header.strip()
        if not value:
            return None

        try:
            return max(0.0, float(value))
        except ValueError:
            pass

        try:
            retry_at = parsedate_to_datetime(value)
        except (TypeError, ValueError, IndexError):
            return None
        if retry_at.tzinfo is None:
            retry_at = retry_at.replace(tzinfo=UTC)
        return max(0.0, (retry_at - datetime.now(UTC)).total_seconds())

    def _handle_exhausted(self, exception: Exception) -> None:
        """
        Handle when all retries are exhausted.

        Raises:
            MaxRetriesExceededError: Always raised with the last exception.
        """
        self._last_exception = exception
        prefix = f"{self.logger_prefix} | " if self.logger_prefix else ""
        logger.error(
            f"{prefix}Max retries ({self.max_retries}) exceeded. Last error: {exception}"
        )
        raise MaxRetriesExceededError(
            message=f"Max retries exceeded. Last error: {exception}",
            last_exception=exception,
        ) from exception


def _status_of(exception: Exception) -> int | None:
    response = getattr(exception, "response", None)
    return response.status_code if response is not None else None


class _RetryContext:
    """
    Context for a single retry attempt (internal).

    On success (no exception): exits normally, caller should break/return
    On retryable exception: suppresses exception, loop continues
    On non-retryable exception: re-raises exception, loop exits
    On exhausted retries: raises MaxRetriesExceededError
    """

    def __init__(self, retrying: Retrying, attempt: int):
        self._retrying = retrying
        self.attempt = attempt

    def __enter__(self) -> RetryAttempt:
        if self._retrying.cancellation is not None:
            self._retrying.cancellation.raise_if_cancelled()
        return RetryAttempt(
            attempt_number=self.attempt + 1,
            max_attempts=self._retrying.max_attempts,
        )

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> bool:
        """
        Returns:
            True to suppress exception and continue loop (retry)
            False to propagate exception (no retry)
        """
        if exc_val is None:
            return False

        # Only handle Exception, not BaseException (KeyboardInterrupt, etc.)
        if not isinstance(exc_val, Exception):
            return False

        if not self._retrying._should_retry(exc_val):
            return False

        # Retries disabled: let the original exception propagate unwrapped
        if self._retrying.max_retries == 0:
            return False

        if self.attempt >= self._retrying.max_retries:
            self._retrying._handle_exhausted(exc_val)
            return False  # Never reached

        self._retrying._handle_retry(exc_val)
        return True
