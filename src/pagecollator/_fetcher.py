"""
Page fetcher: one authenticated GET per page number, hardened by the
rate-limited transport and the Retrying policy.
"""

from __future__ import annotations

import logging

import requests

from pagecollator._cancellation import CancellationToken
from pagecollator._config import CollatorConfig, RateLimitingConfig
from pagecollator._http import BearerTokenHttpClient, HttpClient
from pagecollator._pagination import PaginationStrategy, PathSegmentPagination
from pagecollator._rate_limit import TokenBucketRateLimitedHttpClient, TokenBucketRateLimiter
from pagecollator._retry import MaxRetriesExceededError, RetryableError, Retrying

logger = logging.getLogger(__name__)


class PageFetchError(RuntimeError):
    """
    Raised when a page cannot be fetched (non-2xx status or network failure
    that survived all retries).

    Attributes:
        page: The page number that failed.
        status_code: The final HTTP status code, or None for network-class failures.
    """

    def __init__(self, page: int, status_code: int | None, message: str):
        self.page = page
        self.status_code = status_code
        super().__init__(message)


class PageFetcher:
    """
    Fetches the raw body of a single page.

    Every attempt goes through `http_client` (typically rate limited); transient
    failures are retried with exponential backoff and jitter.

    Example:
        >>> fetcher = PageFetcher.from_config(collator_config, rate_limiting_config)
        >>> body = fetcher.fetch_page(1)

    Args:
        http_client: Authenticated (and usually rate-limited) HTTP client.
        base_url: The API endpoint.
        max_retries: Retries after the first attempt.
        median_first_retry_delay: Median delay in seconds before the first retry.
        request_timeout: Per-request timeout in seconds.
        pagination: Maps page numbers to URLs (default: `/page/{n}`).
    """

    def __init__(
        self,
        http_client: HttpClient,
        base_url: str,
        max_retries: int = 5,
        median_first_retry_delay: float = 2.0,
        request_timeout: float = 300.0,
        pagination: PaginationStrategy | None = None,
    ):
        assert http_client is not None, "http_client is required."
        assert base_url, "base_url cannot be empty."
        assert max_retries >= 0, "max_retries must be >= 0."
        assert request_timeout > 0, "request_timeout must be greater than 0."

        self.http_client = http_client
        self.base_url = base_url
        self.max_retries = max_retries
        self.median_first_retry_delay = median_first_retry_delay
        self.request_timeout = request_timeout
        self.pagination = pagination or PathSegmentPagination()

    @classmethod
    def from_config(
        cls,
        collator: CollatorConfig,
        rate_limiting: RateLimitingConfig,
        rate_limiter: TokenBucketRateLimiter | None = None,
    ) -> PageFetcher:
        """
        Wire the bearer-token client, the token bucket and the retry settings.

        Args:
            collator: Validated run configuration.
            rate_limiting: Validated rate limiting configuration.
            rate_limiter: Optional limiter to share; a new one is built otherwise.
        """
        assert collator.base_url, "base_url is required."
        assert collator.bearer_token, "bearer_token is required."

        limiter = rate_limiter or TokenBucketRateLimiter(
            token_limit=rate_limiting.requests_per_second,
            tokens_per_period=rate_limiting.requests_per_second,
            replenishment_period=1.0,
            queue_limit=rate_limiting.queue_limit,
        )
        http_client = TokenBucketRateLimitedHttpClient(
            delegate=BearerTokenHttpClient(token=collator.bearer_token),
            rate_limiter=limiter,
        )
        return cls(
            http_client=http_client,
            base_url=collator.base_url,
            max_retries=rate_limiting.max_retry_attempts,
            median_first_retry_delay=float(rate_limiting.median_first_retry_delay_seconds),
            request_timeout=collator.request_timeout,
        )

    def fetch_page(self, page: int, cancellation: CancellationToken | None = None) -> str:
        """
        Fetch one page and return its body as text.

        Args:
            page: 1-based page number.
            cancellation: Optional token; a cancelled fetch never returns content.

        Returns:
            The complete response body.

        Raises:
            ValueError: If page < 1.
            PageFetchError: On a non-2xx final status or exhausted network retries.
            OperationCancelledError: If cancelled before the body was returned.
        """
        if page < 1:
            raise ValueError(f"page must be >= 1, got {page}")

        url = self.pagination.url_for(self.base_url, page)
        logger.debug(f"Requesting page {page}: {url}")

        try:
            for attempt in Retrying(
                max_retries=self.max_retries,
                median_first_retry_delay=self.median_first_retry_delay,
                cancellation=cancellation,
                logger_prefix=f"Page {page}",
            ):
                with attempt:
                    response = self.http_client.get(
                        url,
                        timeout=self.request_timeout,
                        cancellation=cancellation,
                    )
                    response.raise_for_status()
                    # raise_for_status only covers 4xx/5xx
                    if not 200 <= response.status_code < 300:
                        raise requests.HTTPError(
                            f"{response.status_code} Unexpected status for url: {url}",
                            response=response,
                        )
                    body = response.text
                    if cancellation is not None:
                        cancellation.raise_if_cancelled()
                    return body
        except MaxRetriesExceededError as e:
            raise self._to_fetch_error(page, e.last_exception or e) from e
        except (requests.RequestException, RetryableError) as e:
            raise self._to_fetch_error(page, e) from e

        # Should never reach here - Retrying raises MaxRetriesExceededError
        raise RuntimeError(f"Unexpected end of retry loop while fetching page {page}.")

    @staticmethod
    def _to_fetch_error(page: int, cause: Exception) -> PageFetchError:
        response = getattr(cause, "response", None)
        if response is not None:
            return PageFetchError(
                page=page,
                status_code=response.status_code,
                message=f"Page {page} failed with HTTP {response.status_code}: {cause}",
            )
        return PageFetchError(page=page, status_code=None, message=f"Page {page} failed: {cause}")

    def close(self) -> None:
        self.http_client.close()
