"""
pagecollator: stitch a paginated JSON API into one JSON array on disk.

Fetches pages 1..N from `{base_url}/page/{n}` (bearer-token authenticated,
rate limited, retried with exponential backoff) and streams the inner elements
of every page into a single top-level JSON array, holding at most one page in
memory at a time.

Quick Start:
    >>> from pagecollator import PageCollatorConfig, PageFetcher, StreamingCollator
    >>> config = PageCollatorConfig.load().with_section_overrides(
    ...     collator={"base_url": "https://api.example.com/items", "bearer_token": "secret"},
    ... ).validate()
    >>> fetcher = PageFetcher.from_config(config.collator, config.rate_limiting)
    >>> result = StreamingCollator(fetcher).collate(total_pages=397, output_path="output.json")
    >>> print(result.size_mb)

Main Classes:
    - StreamingCollator: Drives the sequential page loop and writes the output array.
    - PageFetcher: Fetches the raw body of one page.
    - CollationResult: Summary of a successful run.

Configuration:
    - PageCollatorConfig: Root configuration (defaults, settings file, env vars).
    - CollatorConfig: Run configuration.
    - RateLimitingConfig: Rate limiting and retry configuration.

HTTP Client:
    - HttpClient: Abstract base class for HTTP clients.
    - BearerTokenHttpClient: Client sending a fixed bearer token.
    - TokenBucketRateLimiter: Token bucket with a bounded FIFO wait queue.
    - TokenBucketRateLimitedHttpClient: HTTP client decorator with rate limiting.

Retry:
    - Retrying: Context manager for retry with exponential backoff and jitter.
    - RetryableError: Base class for exceptions that trigger automatic retry.
    - MaxRetriesExceededError: Raised when all retry attempts are exhausted.
"""

from importlib.metadata import version as _get_version

__version__ = _get_version("pagecollator")

from pagecollator._cancellation import CancellationToken, OperationCancelledError
from pagecollator._collator import (
    ClassifiedPage,
    CollationResult,
    JsonArrayWriter,
    PageKind,
    StreamingCollator,
    classify_page,
)
from pagecollator._config import (
    CollatorConfig,
    ConfigEnvVarError,
    ConfigFileError,
    ConfigValidationError,
    PageCollatorConfig,
    RateLimitingConfig,
)
from pagecollator._fetcher import PageFetcher, PageFetchError
from pagecollator._http import BearerTokenHttpClient, HttpClient
from pagecollator._pagination import PaginationStrategy, PathSegmentPagination
from pagecollator._rate_limit import (
    ClientSideRateLimitError,
    RateLimiterQueueFullError,
    TokenBucketRateLimitedHttpClient,
    TokenBucketRateLimiter,
)
from pagecollator._retry import (
    MaxRetriesExceededError,
    RetryableError,
    Retrying,
)

__all__ = [
    "__version__",
    # Collation
    "StreamingCollator",
    "CollationResult",
    "JsonArrayWriter",
    "ClassifiedPage",
    "PageKind",
    "classify_page",
    # Fetching
    "PageFetcher",
    "PageFetchError",
    "PaginationStrategy",
    "PathSegmentPagination",
    # Cancellation
    "CancellationToken",
    "OperationCancelledError",
    # Configuration
    "PageCollatorConfig",
    "CollatorConfig",
    "RateLimitingConfig",
    "ConfigEnvVarError",
    "ConfigFileError",
    "ConfigValidationError",
    # HTTP Client
    "HttpClient",
    "BearerTokenHttpClient",
    "TokenBucketRateLimiter",
    "TokenBucketRateLimitedHttpClient",
    "ClientSideRateLimitError",
    "RateLimiterQueueFullError",
    # Retry
    "Retrying",
    "RetryableError",
    "MaxRetriesExceededError",
]
