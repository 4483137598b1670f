"""
Streaming collation of paginated JSON arrays into a single top-level array.

Pages are fetched strictly in order and each page's inner elements are written
straight to the output sink, so at most one page's raw text is held in memory
regardless of how many pages are collated.

Example:
    >>> fetcher = PageFetcher.from_config(config.collator, config.rate_limiting)
    >>> collator = StreamingCollator(fetcher)
    >>> result = collator.collate(total_pages=3, output_path="output.json")
    >>> # pages [1,2], [] and [3] produce: [1,2,3]
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, TextIO

from pagecollator._utils import format_elapsed

if TYPE_CHECKING:
    from pagecollator._cancellation import CancellationToken
    from pagecollator._fetcher import PageFetcher

logger = logging.getLogger(__name__)

# Write buffer for the output file (pages are tens of kilobytes each).
OUTPUT_BUFFER_SIZE = 128 * 1024


# =============================================================================
# Page classification
# =============================================================================


class PageKind(Enum):
    """How a page body was classified."""

    ARRAY = "array"
    EMPTY_ARRAY = "empty_array"
    NOT_ARRAY = "not_array"


@dataclass(frozen=True)
class ClassifiedPage:
    """
    A page body ready to be written.

    Attributes:
        kind: The classification of the body.
        content: The element group to emit: the trimmed interior of an array,
            the raw untrimmed body for non-array content, or None for an empty array.
    """

    kind: PageKind
    content: str | None


def classify_page(raw: str) -> ClassifiedPage:
    """
    Classify a raw page body and extract the element group to write.

    Only the outer brackets are inspected; the content itself is not parsed
    or validated.

    Example:
        >>> classify_page(" [1, 2] ")
        ClassifiedPage(kind=<PageKind.ARRAY: 'array'>, content='1, 2')
        >>> classify_page("[ ]").kind
        <PageKind.EMPTY_ARRAY: 'empty_array'>
        >>> classify_page('{"error": "x"}').content
        '{"error": "x"}'
    """
    trimmed = raw.strip()
    if len(trimmed) < 2 or trimmed[0] != "[" or trimmed[-1] != "]":
        return ClassifiedPage(kind=PageKind.NOT_ARRAY, content=raw)

    inner = trimmed[1:-1].strip()
    if not inner:
        return ClassifiedPage(kind=PageKind.EMPTY_ARRAY, content=None)
    return ClassifiedPage(kind=PageKind.ARRAY, content=inner)


# =============================================================================
# Output writer
# =============================================================================


class JsonArrayWriter:
    """
    Writes a top-level JSON array one element group at a time.

    Tracks whether any content was emitted yet, so the separating comma goes
    before every group except the first one actually written.

    Args:
        sink: A text stream owned by the caller.
    """

    def __init__(self, sink: TextIO):
        self._sink = sink
        self._has_content = False
        self.groups_written = 0

    def open(self) -> None:
        self._sink.write("[")

    def write_group(self, content: str) -> None:
        """Write one element group, preceded by a comma unless it is the first."""
        if self._has_content:
            self._sink.write(",")
        self._sink.write(content)
        self._has_content = True
        self.groups_written += 1

    def flush(self) -> None:
        self._sink.flush()

    def close(self) -> None:
        """Write the closing bracket and flush. Does not close the sink."""
        self._sink.write("]")
        self._sink.flush()


# =============================================================================
# Collator
# =============================================================================


@dataclass(frozen=True)
class CollationResult:
    """
    Summary of a successful run.

    Attributes:
        total_pages: Pages fetched.
        groups_written: Element groups written (pages that contributed content).
        empty_pages: Pages that returned an empty array.
        malformed_pages: Pages whose body was not a JSON array.
        bytes_written: Size of the output file in bytes.
        elapsed: Wall-clock duration in seconds.
        output_path: Absolute path of the output file.
    """

    total_pages: int
    groups_written: int
    empty_pages: int
    malformed_pages: int
    bytes_written: int
    elapsed: float
    output_path: Path

    @property
    def size_mb(self) -> float:
        return self.bytes_written / (1024.0 * 1024.0)


@dataclass
class _PageStats:
    groups_written: int = 0
    empty_pages: int = 0
    malformed_pages: int = 0


class StreamingCollator:
    """
    Drives the sequential page loop and assembles one JSON array on a sink.

    Page N+1 is never requested before page N has been written and flushed.
    Any unrecovered fetch failure aborts the run (fail-fast): the output is
    left without its closing bracket, and the error is re-raised.

    Args:
        fetcher: Produces the raw body of each page.
        progress_interval: Log progress every N pages, and on the last page.
        clock: Monotonic clock used for elapsed time, injectable for tests.
    """

    def __init__(
        self,
        fetcher: PageFetcher,
        progress_interval: int = 10,
        clock: Callable[[], float] = time.monotonic,
    ):
        assert fetcher is not None, "fetcher is required."
        assert progress_interval > 0, "progress_interval must be greater than 0."

        self.fetcher = fetcher
        self.progress_interval = progress_interval
        self._clock = clock

    def collate(
        self,
        total_pages: int,
        output_path: str | Path,
        cancellation: CancellationToken | None = None,
    ) -> CollationResult:
        """
        Fetch pages 1..total_pages and write them to `output_path`.

        The file is created or truncated and written as UTF-8.

        Raises:
            PageFetchError: If a page cannot be fetched.
            OperationCancelledError: If the run is cancelled.
        """
        assert total_pages >= 0, "total_pages must be >= 0."

        path = Path(output_path).resolve()
        logger.info(f"Starting collation of {total_pages} pages")
        logger.info(f"Output will be written to: {path}")

        start = self._clock()
        with path.open(mode="w", encoding="utf-8", newline="", buffering=OUTPUT_BUFFER_SIZE) as file:
            stats = self._write_pages(file, total_pages, start, cancellation)
        elapsed = self._clock() - start

        result = CollationResult(
            total_pages=total_pages,
            groups_written=stats.groups_written,
            empty_pages=stats.empty_pages,
            malformed_pages=stats.malformed_pages,
            bytes_written=path.stat().st_size,
            elapsed=elapsed,
            output_path=path,
        )
        logger.info(
            f"✅ Collated {total_pages} pages into {path} "
            f"({result.size_mb:.2f} MB, {format_elapsed(elapsed)})"
        )
        return result

    def collate_to(
        self,
        sink: TextIO,
        total_pages: int,
        cancellation: CancellationToken | None = None,
    ) -> int:
        """
        Same as `collate()`, but writes to an already open text stream.

        Returns:
            The number of element groups written.
        """
        stats = self._write_pages(sink, total_pages, self._clock(), cancellation)
        return stats.groups_written

    def _write_pages(
        self,
        sink: TextIO,
        total_pages: int,
        start: float,
        cancellation: CancellationToken | None,
    ) -> _PageStats:
        writer = JsonArrayWriter(sink)
        stats = _PageStats()
        writer.open()

        for page in range(1, total_pages + 1):
            try:
                raw = self.fetcher.fetch_page(page, cancellation)
            except Exception as e:
                logger.error(
                    f"❌ Failed to fetch page {page} after all retries - aborting: {e}",
                    exc_info=logger.isEnabledFor(logging.DEBUG),
                )
                raise

            classified = classify_page(raw)
            if classified.kind is PageKind.NOT_ARRAY:
                logger.warning(f"⚠️ Page {page} response is not a JSON array - appending raw content.")
                stats.malformed_pages += 1
            elif classified.kind is PageKind.EMPTY_ARRAY:
                logger.debug(f"Page {page} returned an empty array - skipping.")
                stats.empty_pages += 1

            if classified.content is not None:
                writer.write_group(classified.content)
                writer.flush()

            if page % self.progress_interval == 0 or page == total_pages:
                logger.info(
                    f"Progress: {page}/{total_pages} pages fetched | "
                    f"Elapsed: {format_elapsed(self._clock() - start)}"
                )

        writer.close()
        stats.groups_written = writer.groups_written
        return stats
