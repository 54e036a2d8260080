"""Command line entry point.

    catalog-scraper scrape-category tommy https://nl.tommy.com/heren-kleding --pdp-concurrency 10
    catalog-scraper collect-links nike
    catalog-scraper list-sites
    catalog-scraper job-status 42
"""

import argparse
import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalog_scraper.config import settings
from catalog_scraper.ingest.http_client import PageFetcher, build_client
from catalog_scraper.ingest.request_batcher import BatchFetcher
from catalog_scraper.logging_config import setup_logging
from catalog_scraper.sites import SiteRegistry, UnknownSiteError
from catalog_scraper.sites.base import SiteAdapter
from catalog_scraper.worker.options import ScrapeOptions
from catalog_scraper.worker.orchestrator import ScrapeError, ScraperOrchestrator

logger = logging.getLogger(__name__)


def _int_at_least(minimum: int) -> Callable[[str], int]:
    def parse(value: str) -> int:
        try:
            number = int(value)
        except ValueError:
            raise argparse.ArgumentTypeError(f"invalid integer: {value!r}")
        if number < minimum:
            raise argparse.ArgumentTypeError(f"must be >= {minimum}, got {number}")
        return number
    return parse


def _non_negative_float(value: str) -> float:
    try:
        number = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid number: {value!r}")
    if number < 0:
        raise argparse.ArgumentTypeError(f"must be >= 0, got {number}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="catalog-scraper",
        description="Crawl shop category listings and scrape product detail pages.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_listing_args(sub: argparse.ArgumentParser) -> None:
        sub.add_argument("site", help="Site slug (see list-sites)")
        sub.add_argument(
            "category_url",
            nargs="?",
            default=None,
            help="Category listing URL (API sites fall back to their default listing)",
        )
        sub.add_argument(
            "--category-concurrency",
            type=_int_at_least(1),
            default=settings.default_category_concurrency,
            help="Listing pages fetched concurrently (default: %(default)s)",
        )
        sub.add_argument(
            "--max-products",
            type=_int_at_least(1),
            default=None,
            help="Keep only the first N discovered products",
        )

    scrape = subparsers.add_parser("scrape-category", help="Collect links and scrape every product")
    add_listing_args(scrape)
    scrape.add_argument(
        "--pdp-concurrency",
        type=_int_at_least(1),
        default=settings.default_pdp_concurrency,
        help="Detail pages fetched concurrently (default: %(default)s)",
    )
    scrape.add_argument(
        "--batch-size",
        type=_int_at_least(10),
        default=settings.default_batch_size,
        help="Detail pages per batch (default: %(default)s)",
    )
    scrape.add_argument(
        "--batch-sleep",
        type=_non_negative_float,
        default=settings.default_batch_sleep,
        help="Seconds to wait between detail batches (default: %(default)s)",
    )

    collect = subparsers.add_parser("collect-links", help="Collect product links into a text file")
    add_listing_args(collect)

    subparsers.add_parser("list-sites", help="List registered sites")

    status = subparsers.add_parser("job-status", help="Show a stored scrape job")
    status.add_argument("job_id", type=_int_at_least(1), help="Scrape job id")

    return parser


def options_from_args(args: argparse.Namespace) -> ScrapeOptions:
    """Build validated run options from parsed arguments."""
    values = {
        "category_concurrency": args.category_concurrency,
        "max_products": args.max_products,
    }
    for name in ("pdp_concurrency", "batch_size", "batch_sleep"):
        if hasattr(args, name):
            values[name] = getattr(args, name)
    return ScrapeOptions(**values)


async def default_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory for the configured database, with tables created."""
    from catalog_scraper.db.session import AsyncSessionLocal, init_db

    await init_db()
    return AsyncSessionLocal


@asynccontextmanager
async def open_orchestrator(
    adapter: SiteAdapter,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> AsyncIterator[ScraperOrchestrator]:
    """
    Wire an orchestrator with SQL collaborators and a shared HTTP client.

    Args:
        adapter: Site adapter
        session_factory: Session factory (defaults to the configured database)
        transport: Optional HTTP transport override
    """
    from catalog_scraper.db.repositories import SqlJobStore, SqlProductStore, SqlWebsiteResolver

    if session_factory is None:
        session_factory = await default_session_factory()

    async with build_client(adapter.request_headers(), transport=transport) as client:
        yield ScraperOrchestrator(
            adapter=adapter,
            website_resolver=SqlWebsiteResolver(session_factory),
            job_store=SqlJobStore(session_factory),
            product_store=SqlProductStore(session_factory),
            page_fetcher=PageFetcher(client, site=adapter.slug),
            batch_fetcher=BatchFetcher(client, site=adapter.slug),
        )


async def scrape_category(adapter: SiteAdapter, url: Optional[str], options: ScrapeOptions) -> int:
    async with open_orchestrator(adapter) as orchestrator:
        summary = await orchestrator.scrape_category(url, options)

    print(f"Job {summary.job_id}: {summary.status.value}")
    print(f"  Total found:   {summary.total_found}")
    print(f"  Created:       {summary.total_created}")
    print(f"  Updated:       {summary.total_updated}")
    print(f"  Failed:        {summary.total_failed}")
    print(f"  Duration:      {summary.duration_seconds:.1f}s")
    print(f"  Rate:          {summary.products_per_second:.2f} products/s")
    return 0


async def collect_links(adapter: SiteAdapter, url: Optional[str], options: ScrapeOptions) -> int:
    async with open_orchestrator(adapter) as orchestrator:
        result = await orchestrator.collect_links(url, options)

    print(f"Job {result.job_id}: {len(result.links)} product links")
    if result.link_file:
        print(f"  Saved to: {result.link_file}")
    print(f"  Duration: {result.duration_seconds:.1f}s")
    return 0


async def show_job(job_id: int) -> int:
    from catalog_scraper.db.repositories import SqlJobStore

    try:
        job = await SqlJobStore(await default_session_factory()).get(job_id)
    except LookupError as exc:
        print(str(exc), file=sys.stderr)
        return 1

    print(f"Job {job.id}: {job.status.value}")
    print(f"  Started:       {job.started_at or '-'}")
    print(f"  Finished:      {job.finished_at or '-'}")
    print(f"  Total found:   {job.total_found}")
    print(f"  Created:       {job.total_created}")
    print(f"  Updated:       {job.total_updated}")
    if job.error_message:
        print(f"  Error:         {job.error_message}")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "list-sites":
        for slug in SiteRegistry.list_sites():
            print(slug)
        return 0

    if args.command == "job-status":
        return asyncio.run(show_job(args.job_id))

    try:
        adapter = SiteRegistry.get_adapter(args.site)
    except UnknownSiteError as exc:
        parser.error(str(exc))

    if args.category_url is None and adapter.default_category_url is None:
        parser.error(f"{adapter.slug} needs a category URL")

    setup_logging()
    options = options_from_args(args)
    runner = scrape_category if args.command == "scrape-category" else collect_links

    try:
        return asyncio.run(runner(adapter, args.category_url, options))
    except KeyboardInterrupt:
        print("Interrupted", file=sys.stderr)
        return 130
    except ScrapeError as exc:
        print(f"Scrape aborted: {exc}", file=sys.stderr)
        return 1
    except Exception as exc:
        logger.exception("Scrape failed")
        print(f"Scrape failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
