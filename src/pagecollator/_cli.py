"""
Command-line entry point for pagecollator.

Usage:
    pagecollator --base-url https://api.example.com/items --pages 397 --output output.json
    python -m pagecollator --interactive

Missing base URL and bearer token are prompted for. Values not given on the
command line come from environment variables (PAGECOLLATOR_*), then from the
settings file (appsettings.json by default), then from the built-in defaults.
"""

from __future__ import annotations

import logging
import signal
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

import typer

from pagecollator._cancellation import CancellationToken, OperationCancelledError
from pagecollator._collator import CollationResult, StreamingCollator
from pagecollator._config import (
    ConfigEnvVarError,
    ConfigFileError,
    ConfigValidationError,
    PageCollatorConfig,
)
from pagecollator._fetcher import PageFetcher, PageFetchError
from pagecollator._utils import format_elapsed

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="pagecollator",
    help="Fetch numbered pages of JSON arrays and stitch them into one JSON array on disk.",
    add_completion=False,
)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)-8s %(name)s | %(message)s",
    )


@contextmanager
def _cancel_on_signals(token: CancellationToken) -> Iterator[None]:
    """
    Cancel `token` on SIGINT/SIGTERM. A second signal interrupts immediately.
    """
    def handler(signum: int, frame: object) -> None:
        if token.is_cancelled:
            raise KeyboardInterrupt
        logger.warning(
            f"Received {signal.Signals(signum).name}, stopping after the in-flight request "
            "(send again to interrupt immediately)..."
        )
        token.cancel()

    signums = [signal.SIGINT, signal.SIGTERM]
    previous = {signum: signal.signal(signum, handler) for signum in signums}
    try:
        yield
    finally:
        for signum, old_handler in previous.items():
            signal.signal(signum, old_handler)


def _print_summary(result: CollationResult) -> None:
    line = "=" * 48
    typer.echo("")
    typer.echo(line)
    typer.echo(f"  Done! {result.total_pages} pages collated successfully.")
    typer.echo(f"  File size: {result.size_mb:.2f} MB")
    typer.echo(f"  Elapsed:   {format_elapsed(result.elapsed)}")
    typer.echo(f"  Output:    {result.output_path}")
    typer.echo(line)


@app.command()
def main(
    base_url: Optional[str] = typer.Option(None, "--base-url", "-u", help="API endpoint URL."),
    token: Optional[str] = typer.Option(None, "--token", "-t", help="Bearer token."),
    pages: Optional[int] = typer.Option(None, "--pages", "-p", min=1, help="Total pages to fetch [397]."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Output file path [output.json]."),
    settings: Path = typer.Option(Path("appsettings.json"), "--settings", help="Optional settings file."),
    interactive: bool = typer.Option(False, "--interactive", "-i", help="Also prompt for pages and output path."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Collate pages 1..N of a paginated JSON API into a single JSON array."""
    _configure_logging(verbose)

    try:
        config = PageCollatorConfig.load(settings_file=settings)
    except (ConfigFileError, ConfigEnvVarError, ConfigValidationError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from e

    collator_config = config.collator
    if not (base_url or collator_config.base_url):
        base_url = typer.prompt("API endpoint URL", default="", show_default=False).strip()
        if not base_url:
            typer.echo("Error: API endpoint URL is required.", err=True)
            raise typer.Exit(1)
    if not (token or collator_config.bearer_token):
        token = typer.prompt("Bearer token", default="", show_default=False, hide_input=True).strip()
        if not token:
            typer.echo("Error: Bearer token is required.", err=True)
            raise typer.Exit(1)
    if interactive:
        if pages is None:
            pages = typer.prompt("Total pages to fetch", default=collator_config.total_pages, type=int)
        if output is None:
            output = Path(typer.prompt("Output file path", default=collator_config.output_file))

    try:
        config = config.with_section_overrides(
            collator={
                "base_url": base_url,
                "bearer_token": token,
                "total_pages": pages,
                "output_file": str(output) if output is not None else None,
            }
        ).validate()
    except ConfigValidationError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from e

    collator_config = config.collator
    rate_limiting = config.rate_limiting
    logger.info(f"Collating from {collator_config.base_url}")
    logger.info(
        f"Rate limit: ~{rate_limiting.requests_per_second} req/s | "
        f"Max retries per request: {rate_limiting.max_retry_attempts}"
    )

    cancellation = CancellationToken()
    fetcher = PageFetcher.from_config(collator_config, rate_limiting)
    try:
        with _cancel_on_signals(cancellation):
            result = StreamingCollator(
                fetcher,
                progress_interval=collator_config.progress_interval,
            ).collate(
                total_pages=collator_config.total_pages,
                output_path=collator_config.output_file,
                cancellation=cancellation,
            )
    except (PageFetchError, OperationCancelledError) as e:
        typer.echo(f"Error: run aborted, output file is incomplete: {e}", err=True)
        raise typer.Exit(1) from e
    except KeyboardInterrupt as e:
        logger.error("❌ Run interrupted - aborting.")
        typer.echo("Error: run interrupted, output file is incomplete.", err=True)
        raise typer.Exit(1) from e
    finally:
        fetcher.close()

    _print_summary(result)
