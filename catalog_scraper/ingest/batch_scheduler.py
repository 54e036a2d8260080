"""Chunked, paced fetching with sequential retry of transient failures.

Work is split into chunks of at most `concurrency` URLs. Each chunk is
fetched concurrently by the BatchFetcher, then every entry that failed with
a transient status is retried once, sequentially, through the PageFetcher.
Chunks are paced by a fixed delay and bodies are dropped as soon as links
have been extracted from them.
"""

import asyncio
import gc
import logging
from dataclasses import dataclass, field
from typing import (
    AsyncIterator,
    Callable,
    Generic,
    Hashable,
    Iterable,
    Mapping,
    Optional,
    TypeVar,
)
from urllib.parse import parse_qsl, urlencode, urlsplit

from catalog_scraper.config import settings
from catalog_scraper.ingest.base import FetchResult
from catalog_scraper.ingest.http_client import PageFetcher, SleepFunc
from catalog_scraper.ingest.link_extractor import LinkExtractor
from catalog_scraper.ingest.request_batcher import BatchFetcher
from catalog_scraper.metrics import fetch_retries_total

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)


def build_page_url(
    category_url: str,
    page: int,
    base_url: Optional[str] = None,
    page_param: str = "page",
) -> str:
    """
    Build the URL of listing page N.

    Keeps the category path and its existing query parameters and sets
    page_param=N. Relative category URLs are resolved against base_url.
    """
    parts = urlsplit(category_url)
    query = [
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if key != page_param
    ]
    query.append((page_param, str(page)))

    if parts.netloc:
        origin = f"{parts.scheme or 'https'}://{parts.netloc}"
    else:
        origin = (base_url or "").rstrip("/")

    path = "/" + parts.path.lstrip("/")
    return f"{origin}{path}?{urlencode(query)}"


@dataclass
class PageScanResult:
    """Links gathered from a run over listing pages, with bookkeeping."""

    links: list[str] = field(default_factory=list)
    pages_fetched: int = 0
    pages_failed: list = field(default_factory=list)
    pages_retried: list = field(default_factory=list)


@dataclass
class ChunkOutcome(Generic[K]):
    """Results of one chunk after the retry pass."""

    index: int
    total: int
    results: dict[K, FetchResult]
    retried: list[K]


class BatchScheduler:
    """Drives BatchFetcher over chunks with pacing and per-entry retry."""

    def __init__(
        self,
        batch_fetcher: BatchFetcher,
        page_fetcher: PageFetcher,
        site: str = "default",
        retry_delay: Optional[float] = None,
        chunk_delay: Optional[float] = None,
        gc_interval: Optional[int] = None,
        sleep: SleepFunc = asyncio.sleep,
    ):
        """
        Initialize scheduler.

        Args:
            batch_fetcher: Concurrent fetcher used for whole chunks
            page_fetcher: Retrying fetcher used for transient failures
            site: Site slug for logs and metrics
            retry_delay: Delay before each sequential retry (defaults to config)
            chunk_delay: Delay between chunks (defaults to config)
            gc_interval: Chunks between gc.collect() calls (defaults to config)
            sleep: Awaitable sleep, replaceable in tests
        """
        self.batch_fetcher = batch_fetcher
        self.page_fetcher = page_fetcher
        self.site = site
        self.retry_delay = settings.page_retry_delay if retry_delay is None else retry_delay
        self.chunk_delay = settings.chunk_delay if chunk_delay is None else chunk_delay
        self.gc_interval = gc_interval or settings.gc_collect_interval
        self._sleep = sleep

    async def fetch_chunk(
        self,
        urls: Mapping[K, str],
        headers: Optional[dict[str, str]] = None,
        stage: str = "listing",
    ) -> tuple[dict[K, FetchResult], list[K]]:
        """
        Fetch one chunk concurrently, then retry transient failures one by one.

        Returns:
            (results keyed like `urls`, keys that were retried)
        """
        results = await self.batch_fetcher.fetch_all(urls, headers=headers, stage=stage)
        retried: list[K] = []

        for key, result in list(results.items()):
            if not result.is_retryable:
                continue

            retried.append(key)
            fetch_retries_total.labels(self.site, "batch").inc()
            await self._sleep(self.retry_delay)

            retry = await self.page_fetcher.fetch_result(urls[key], headers=headers)
            results[key] = retry
            if retry.success:
                logger.info(f"{self.site}: {key} succeeded on retry after {result.error}")
            else:
                logger.warning(f"{self.site}: {key} still failing after retry: {retry.error}")

        return results, retried

    async def iter_chunks(
        self,
        urls: Mapping[K, str],
        concurrency: int,
        chunk_delay: Optional[float] = None,
        headers: Optional[dict[str, str]] = None,
        stage: str = "detail",
    ) -> AsyncIterator[ChunkOutcome[K]]:
        """
        Yield chunk outcomes in input order.

        Args:
            urls: Keyed URLs to fetch
            concurrency: Maximum requests in flight at once (chunk size)
            chunk_delay: Override of the delay between chunks
            headers: Optional per-request headers
            stage: Metrics label

        Yields:
            ChunkOutcome per chunk
        """
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")

        delay = self.chunk_delay if chunk_delay is None else chunk_delay
        keys = list(urls.keys())
        chunks = [keys[i:i + concurrency] for i in range(0, len(keys), concurrency)]

        for index, chunk_keys in enumerate(chunks, start=1):
            if index > 1 and delay > 0:
                await self._sleep(delay)

            results, retried = await self.fetch_chunk(
                {key: urls[key] for key in chunk_keys}, headers=headers, stage=stage
            )
            yield ChunkOutcome(index=index, total=len(chunks), results=results, retried=retried)

            if index % self.gc_interval == 0:
                gc.collect()

    async def process_pages(
        self,
        page_numbers: Iterable[int],
        category_url: str,
        concurrency: int,
        extractor: LinkExtractor,
        base_url: str,
        build_url: Callable[[str, int], str] = build_page_url,
        headers: Optional[dict[str, str]] = None,
    ) -> PageScanResult:
        """
        Fetch listing pages in chunks and extract their product links.

        Args:
            page_numbers: Page numbers to fetch (usually 2..N)
            category_url: Category URL the page URLs are built from
            concurrency: Chunk size
            extractor: Link extraction strategy
            base_url: Site base URL for relative links
            build_url: (category_url, page) -> page URL
            headers: Optional per-request headers

        Returns:
            PageScanResult with links in page order (not yet deduplicated across pages)
        """
        urls = {page: build_url(category_url, page) for page in page_numbers}
        scan = PageScanResult()

        async for outcome in self.iter_chunks(urls, concurrency, headers=headers, stage="listing"):
            found = self._collect(outcome.results, extractor, base_url, scan)
            scan.pages_retried.extend(outcome.retried)
            logger.info(
                f"{self.site}: listing chunk {outcome.index}/{outcome.total} "
                f"gave {found} links ({len(scan.links)} total)"
            )

        logger.info(
            f"{self.site}: scanned {scan.pages_fetched} listing pages, "
            f"{len(scan.pages_failed)} failed, {len(scan.links)} links"
        )
        return scan

    async def process_until_exhausted(
        self,
        build_url: Callable[[int], str],
        start: int,
        step: int,
        concurrency: int,
        extractor: LinkExtractor,
        base_url: str,
        max_pages: Optional[int] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> PageScanResult:
        """
        Fetch offset-paginated listings until a whole chunk yields no links.

        Args:
            build_url: offset -> page URL
            start: First offset to fetch
            step: Offset increment per page
            concurrency: Chunk size
            extractor: Link extraction strategy
            base_url: Site base URL for relative links
            max_pages: Safety cap on pages fetched (defaults to config)
            headers: Optional per-request headers

        Returns:
            PageScanResult keyed by offset
        """
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")

        max_pages = max_pages or settings.api_max_pages
        scan = PageScanResult()
        offset = start
        fetched_pages = 0
        index = 0

        while fetched_pages < max_pages:
            count = min(concurrency, max_pages - fetched_pages)
            offsets = [offset + i * step for i in range(count)]

            if index > 0 and self.chunk_delay > 0:
                await self._sleep(self.chunk_delay)
            index += 1

            results, retried = await self.fetch_chunk(
                {value: build_url(value) for value in offsets}, headers=headers, stage="listing"
            )
            scan.pages_retried.extend(retried)
            found = self._collect(results, extractor, base_url, scan)

            fetched_pages += count
            offset += count * step
            logger.info(
                f"{self.site}: listing chunk {index} (offsets {offsets[0]}-{offsets[-1]}) "
                f"gave {found} links ({len(scan.links)} total)"
            )

            if found == 0:
                break

            if index % self.gc_interval == 0:
                gc.collect()
        else:
            logger.warning(f"{self.site}: stopped listing at the {max_pages} page cap")

        return scan

    def _collect(
        self,
        results: dict,
        extractor: LinkExtractor,
        base_url: str,
        scan: PageScanResult,
    ) -> int:
        """Extract links from successful results in key order, releasing bodies as we go."""
        found = 0
        for key in list(results.keys()):
            result = results.pop(key)
            if result.success:
                scan.pages_fetched += 1
                links = extractor.extract(result.body, base_url)
                scan.links.extend(links)
                found += len(links)
            else:
                scan.pages_failed.append(key)
                logger.warning(f"{self.site}: listing page {key} failed: {result.error}")
        return found
