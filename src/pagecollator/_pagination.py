"""
Pagination strategies: how a page number maps to a request URL.

Only the path-segment scheme (`{base_url}/page/{n}`) ships today. Other
schemes (query parameters, cursors) can be plugged into PageFetcher by
implementing PaginationStrategy.
"""

from abc import ABC, abstractmethod
from typing import override


class PaginationStrategy(ABC):
    """Builds the URL of a given page."""

    @abstractmethod
    def url_for(self, base_url: str, page: int) -> str:
        """
        Return the URL for `page` (1-based) relative to `base_url`.
        """
        pass


class PathSegmentPagination(PaginationStrategy):
    """
    Appends `/page/{n}` to the base URL, after stripping trailing slashes.

    Example:
        >>> PathSegmentPagination().url_for("https://api.example.com/items/", 3)
        'https://api.example.com/items/page/3'
    """

    @override
    def url_for(self, base_url: str, page: int) -> str:
        assert base_url, "base_url cannot be empty."
        return f"{base_url.rstrip('/')}/page/{page}"
