"""
HTTP client abstraction for the pagecollator package.

Available implementations:
    - BearerTokenHttpClient: Sends requests with a fixed `Authorization: Bearer` header.
    - TokenBucketRateLimitedHttpClient: Decorator that adds rate limiting (Token Bucket).

Example:
    >>> from pagecollator._http import BearerTokenHttpClient
    >>> client = BearerTokenHttpClient(token="my-token")
    >>> response = client.get("https://api.example.com/page/1")

With rate limiting:
    >>> from pagecollator._rate_limit import TokenBucketRateLimiter, TokenBucketRateLimitedHttpClient
    >>> client = TokenBucketRateLimitedHttpClient(
    ...     delegate=BearerTokenHttpClient(token="my-token"),
    ...     rate_limiter=TokenBucketRateLimiter(token_limit=5),
    ... )
"""

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, override

import requests

if TYPE_CHECKING:
    from pagecollator._cancellation import CancellationToken

logger = logging.getLogger(__name__)


# =============================================================================
# Abstract Base Class
# =============================================================================


class HttpClient(ABC):
    """
    Abstract base class for HTTP clients.

    Implementations handle authentication and can be wrapped with
    decorators for rate limiting and other cross-cutting concerns.

    Example:
        >>> class MyHttpClient(HttpClient):
        ...     def get(self, url, headers=None, timeout=300, cancellation=None):
        ...         return requests.get(url, headers=headers, timeout=timeout)
    """

    @abstractmethod
    def get(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        timeout: float = 300,
        cancellation: "CancellationToken | None" = None,
    ) -> requests.Response:
        """
        Execute an authenticated GET request.

        Args:
            url: The full URL to request.
            headers: Additional headers to include (merged with auth headers).
            timeout: Request timeout in seconds.
            cancellation: Optional token observed while waiting before the request.

        Returns:
            The HTTP response.

        Raises:
            requests.RequestException: If the HTTP request fails.
        """
        pass

    def close(self) -> None:  # noqa: B027
        """Release any pooled connections. No-op by default."""


# =============================================================================
# Bearer Token Implementation
# =============================================================================


class BearerTokenHttpClient(HttpClient):
    """
    HTTP client that authenticates every request with a fixed bearer token.

    Connections are pooled through a single `requests.Session` for the
    lifetime of the client.

    Args:
        token: The bearer token sent as `Authorization: Bearer {token}`.
        session: Optional session (useful for tests or custom adapters).
    """

    def __init__(self, token: str, session: requests.Session | None = None):
        assert token, "Bearer token cannot be empty."

        self._session = session or requests.Session()
        self._auth_headers = {"Authorization": f"Bearer {token}"}

    @override
    def get(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        timeout: float = 300,
        cancellation: "CancellationToken | None" = None,
    ) -> requests.Response:
        """
        Execute an authenticated GET request.

        Raises:
            AssertionError: If url is empty or timeout is invalid.
            requests.RequestException: If the HTTP request fails.
        """
        assert url, "URL cannot be empty."
        assert timeout is not None, "Timeout cannot be None."
        assert timeout > 0, "Timeout must be greater than 0."

        if cancellation is not None:
            cancellation.raise_if_cancelled()

        merged_headers = {**self._auth_headers, **(headers or {})}
        logger.debug(f"GET {url}")
        return self._session.get(url, headers=merged_headers, timeout=timeout)

    @override
    def close(self) -> None:
        self._session.close()
