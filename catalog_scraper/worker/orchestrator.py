"""Category scrape orchestration: listing pages -> product links -> detail pages -> persistence.

Job state machine:

    pending --first listing page fetched--> running --> completed
       |                                       |
       +-------- first page failed ------------+--> failed (unhandled error)

Per-item failures (a listing page, a detail page, one product that will not
parse or persist) are logged and counted; they never fail the job.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Awaitable, Callable, Optional, TypeVar

from catalog_scraper.config import settings
from catalog_scraper.ingest.batch_scheduler import BatchScheduler
from catalog_scraper.ingest.debug_bundle import FirstPageSnapshot, write_link_file
from catalog_scraper.ingest.http_client import PageFetcher, SleepFunc
from catalog_scraper.ingest.request_batcher import BatchFetcher
from catalog_scraper.logging_config import LoggerAdapter, get_logger
from catalog_scraper.metrics import (
    detail_batch_duration_seconds,
    links_discovered_total,
    products_persisted_total,
    scrape_jobs_total,
)
from catalog_scraper.sites.base import SiteAdapter
from catalog_scraper.worker.contracts import (
    JobStatus,
    JobStore,
    ProductStore,
    ScrapeJob,
    Website,
    WebsiteResolver,
)
from catalog_scraper.worker.options import ScrapeOptions

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ScrapeError(RuntimeError):
    """Base error for scrape runs."""

    pass


class ScrapeAbortedError(ScrapeError):
    """Raised when a run cannot continue (the job is already marked failed)."""

    pass


@dataclass
class ScrapeSummary:
    """Outcome of a category scrape."""

    job_id: int
    status: JobStatus
    total_found: int
    total_created: int
    total_updated: int
    total_failed: int
    detail_batches: int
    duration_seconds: float

    @property
    def products_per_second(self) -> float:
        processed = self.total_created + self.total_updated
        return processed / self.duration_seconds if self.duration_seconds > 0 else 0.0


@dataclass
class LinkCollectionResult:
    """Outcome of a link-only run."""

    job_id: int
    links: list[str]
    link_file: Optional[Path]
    duration_seconds: float


@dataclass
class _DetailStats:
    created: int = 0
    updated: int = 0
    failed: int = 0
    batches: int = 0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def truncate_error(message: str, limit: Optional[int] = None) -> str:
    """Cut an error message to `limit` characters, marking the cut with '...'."""
    limit = limit or settings.error_message_max_length
    if len(message) <= limit:
        return message
    return message[:limit] + "..."


class ScraperOrchestrator:
    """Runs one site's scrape end to end and keeps its job record current."""

    def __init__(
        self,
        adapter: SiteAdapter,
        website_resolver: WebsiteResolver,
        job_store: JobStore,
        product_store: ProductStore,
        page_fetcher: PageFetcher,
        batch_fetcher: BatchFetcher,
        scheduler: Optional[BatchScheduler] = None,
        snapshot: Optional[FirstPageSnapshot] = None,
        link_dir: Optional[str] = None,
        sleep: SleepFunc = asyncio.sleep,
    ):
        """
        Initialize orchestrator.

        Args:
            adapter: Site strategy (selectors, URLs, detail parsing)
            website_resolver: Finds or creates the website record
            job_store: Persists job state
            product_store: Persists normalized products
            page_fetcher: Retrying single-page fetcher
            batch_fetcher: Concurrent fetcher sharing the page fetcher's client
            scheduler: Chunk scheduler (built from the fetchers when omitted)
            snapshot: First-page snapshot writer (one per orchestrator)
            link_dir: Directory for link collection files (defaults to config)
            sleep: Awaitable sleep, replaceable in tests
        """
        self.adapter = adapter
        self.website_resolver = website_resolver
        self.job_store = job_store
        self.product_store = product_store
        self.page_fetcher = page_fetcher
        self.batch_fetcher = batch_fetcher
        self.scheduler = scheduler or BatchScheduler(
            batch_fetcher, page_fetcher, site=adapter.slug, sleep=sleep
        )
        self.snapshot = snapshot or FirstPageSnapshot()
        self.link_dir = link_dir
        self._sleep = sleep
        self._stop_requested = False

    def request_stop(self) -> None:
        """Stop after the detail batch in progress."""
        self._stop_requested = True

    async def scrape_category(
        self,
        category_url: Optional[str] = None,
        options: Optional[ScrapeOptions] = None,
    ) -> ScrapeSummary:
        """
        Collect product links from a category and scrape every detail page.

        Args:
            category_url: Listing URL (defaults to the adapter's default listing)
            options: Run options (defaults to ScrapeOptions())

        Returns:
            ScrapeSummary of the completed job

        Raises:
            ScrapeAbortedError: If the first listing page could not be fetched
            Exception: Any unexpected error, after the job is marked failed
        """
        options = options or ScrapeOptions()
        category_url = self._resolve_category_url(category_url)
        website, job = await self._start_job()
        log = get_logger(__name__, site=self.adapter.slug, job_id=job.id)
        started = time.monotonic()

        async def run() -> _DetailStats:
            links = await self._collect_links(category_url, options, job, log)
            stats = await self._scrape_details(website, job, links, options, log)
            await self._complete(job)
            return stats

        stats = await self._guarded(job, log, run)
        duration = time.monotonic() - started
        log.info(
            f"Scrape finished: {job.total_found} found, {stats.created} created, "
            f"{stats.updated} updated, {stats.failed} failed in {duration:.1f}s"
        )

        return ScrapeSummary(
            job_id=job.id,
            status=job.status,
            total_found=job.total_found,
            total_created=job.total_created,
            total_updated=job.total_updated,
            total_failed=stats.failed,
            detail_batches=stats.batches,
            duration_seconds=duration,
        )

    async def collect_links(
        self,
        category_url: Optional[str] = None,
        options: Optional[ScrapeOptions] = None,
    ) -> LinkCollectionResult:
        """
        Collect product links only and write them to a link file.

        Args:
            category_url: Listing URL (defaults to the adapter's default listing)
            options: Run options; only category_concurrency and max_products apply

        Returns:
            LinkCollectionResult with the links and the written file
        """
        options = options or ScrapeOptions()
        category_url = self._resolve_category_url(category_url)
        _, job = await self._start_job()
        log = get_logger(__name__, site=self.adapter.slug, job_id=job.id)
        started = time.monotonic()

        async def run() -> tuple[list[str], Optional[Path]]:
            links = await self._collect_links(category_url, options, job, log)
            link_file = write_link_file(self.adapter.slug, links, self.link_dir)
            await self._complete(job)
            return links, link_file

        links, link_file = await self._guarded(job, log, run)
        return LinkCollectionResult(
            job_id=job.id,
            links=links,
            link_file=link_file,
            duration_seconds=time.monotonic() - started,
        )

    def _resolve_category_url(self, category_url: Optional[str]) -> str:
        url = category_url or self.adapter.default_category_url
        if not url:
            raise ValueError(f"A category URL is required for {self.adapter.slug}")
        return url

    async def _start_job(self) -> tuple[Website, ScrapeJob]:
        website = await self.website_resolver.ensure_website(
            self.adapter.name, self.adapter.slug, self.adapter.base_url
        )
        job = await self.job_store.create(website.id)
        logger.info(f"{self.adapter.slug}: created scrape job {job.id}")
        return website, job

    async def _guarded(
        self,
        job: ScrapeJob,
        log: LoggerAdapter,
        work: Callable[[], Awaitable[T]],
    ) -> T:
        """Run the job body; any escaping error marks the job failed and is re-raised."""
        try:
            return await work()
        except ScrapeAbortedError:
            raise
        except asyncio.CancelledError:
            await self._fail(job, "Scrape cancelled")
            raise
        except Exception as exc:
            log.exception(f"Scrape failed: {exc}")
            await self._fail(job, str(exc) or type(exc).__name__)
            raise

    async def _collect_links(
        self,
        category_url: str,
        options: ScrapeOptions,
        job: ScrapeJob,
        log: LoggerAdapter,
    ) -> list[str]:
        adapter = self.adapter
        api_listing = adapter.listing_mode == "api"
        headers = adapter.listing_headers()
        first_url = adapter.build_listing_url(category_url, 0) if api_listing else category_url

        await self._sleep(settings.first_page_delay)
        body = await self.page_fetcher.fetch(first_url, headers=headers)
        if body is None:
            message = f"Failed to fetch first listing page: {first_url}"
            log.error(message)
            await self._fail(job, message)
            raise ScrapeAbortedError(message)

        await self._update(job, status=JobStatus.RUNNING, started_at=_utcnow())
        self.snapshot.save(adapter.slug, body, adapter.snapshot_extension())

        extractor = adapter.link_extractor()
        if api_listing:
            links = extractor.extract(body, adapter.base_url)
            del body
            log.info(f"First listing page: {len(links)} links")
            if links:
                scan = await self.scheduler.process_until_exhausted(
                    lambda offset: adapter.build_listing_url(category_url, offset),
                    start=adapter.page_size,
                    step=adapter.page_size,
                    concurrency=options.category_concurrency,
                    extractor=extractor,
                    base_url=adapter.base_url,
                    headers=headers,
                )
                links.extend(scan.links)
        else:
            resolver = adapter.pagination_resolver()
            info = resolver.resolve(body) if resolver else None
            total_pages = info.total_pages if info else 1
            links = extractor.extract(body, adapter.base_url)
            del body
            log.info(f"First listing page: {len(links)} links, {total_pages} pages")
            if total_pages > 1:
                scan = await self.scheduler.process_pages(
                    range(2, total_pages + 1),
                    category_url,
                    options.category_concurrency,
                    extractor,
                    adapter.base_url,
                    build_url=adapter.build_page_url,
                    headers=headers,
                )
                links.extend(scan.links)

        links = adapter.finalize_links(links)
        if not links:
            log.warning(f"No product links found on {category_url}")

        if options.max_products is not None and len(links) > options.max_products:
            log.info(f"Limiting {len(links)} links to {options.max_products}")
            links = links[:options.max_products]

        links_discovered_total.labels(adapter.slug).inc(len(links))
        await self._update(job, total_found=len(links))
        log.info(f"Collected {len(links)} product links")
        return links

    async def _scrape_details(
        self,
        website: Website,
        job: ScrapeJob,
        links: list[str],
        options: ScrapeOptions,
        log: LoggerAdapter,
    ) -> _DetailStats:
        stats = _DetailStats()
        batches = [links[i:i + options.batch_size] for i in range(0, len(links), options.batch_size)]

        for index, batch in enumerate(batches, start=1):
            if self._stop_requested:
                log.warning(f"Stop requested, skipping {len(batches) - index + 1} remaining batches")
                break

            batch_started = time.monotonic()
            async for outcome in self.scheduler.iter_chunks(
                {url: url for url in batch},
                options.pdp_concurrency,
                chunk_delay=settings.detail_chunk_delay,
                stage="detail",
            ):
                for url in list(outcome.results.keys()):
                    result = outcome.results.pop(url)
                    if not result.success:
                        stats.failed += 1
                        products_persisted_total.labels(self.adapter.slug, "fetch_failed").inc()
                        log.warning(f"Detail page failed: {url}: {result.error}")
                        continue
                    await self._store_product(website, result.url or url, result.body, stats, log)

            stats.batches += 1
            detail_batch_duration_seconds.labels(self.adapter.slug).observe(
                time.monotonic() - batch_started
            )
            await self._update(job, total_created=stats.created, total_updated=stats.updated)
            log.info(
                f"Detail batch {index}/{len(batches)} done: {stats.created} created, "
                f"{stats.updated} updated, {stats.failed} failed"
            )

            if index < len(batches) and options.batch_sleep > 0:
                await self._sleep(options.batch_sleep)

        return stats

    async def _store_product(
        self,
        website: Website,
        url: str,
        body: str,
        stats: _DetailStats,
        log: LoggerAdapter,
    ) -> None:
        """Parse and persist one detail page; failures are counted, not raised."""
        try:
            product = self.adapter.parse_product(body, url)
        except Exception as exc:
            stats.failed += 1
            products_persisted_total.labels(self.adapter.slug, "parse_failed").inc()
            log.warning(f"Could not parse {url}: {exc}")
            return

        if product is None:
            stats.failed += 1
            products_persisted_total.labels(self.adapter.slug, "parse_failed").inc()
            return

        try:
            result = await self.product_store.store_or_update(website.id, product)
        except Exception as exc:
            stats.failed += 1
            products_persisted_total.labels(self.adapter.slug, "store_failed").inc()
            log.error(f"Could not store {url}: {exc}", exc_info=True)
            return

        if result.was_created:
            stats.created += 1
            products_persisted_total.labels(self.adapter.slug, "created").inc()
        else:
            stats.updated += 1
            products_persisted_total.labels(self.adapter.slug, "updated").inc()

    async def _update(self, job: ScrapeJob, **fields) -> None:
        for name, value in fields.items():
            setattr(job, name, value)
        await self.job_store.update(job.id, **fields)

    async def _complete(self, job: ScrapeJob) -> None:
        await self._update(job, status=JobStatus.COMPLETED, finished_at=_utcnow())
        scrape_jobs_total.labels(self.adapter.slug, JobStatus.COMPLETED.value).inc()

    async def _fail(self, job: ScrapeJob, message: str) -> None:
        await self._update(
            job,
            status=JobStatus.FAILED,
            finished_at=_utcnow(),
            error_message=truncate_error(message),
        )
        scrape_jobs_total.labels(self.adapter.slug, JobStatus.FAILED.value).inc()
