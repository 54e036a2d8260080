"""Concurrent fan-out of page requests over a shared client.

Every URL handed to one call is requested at once; callers pre-chunk
the work to the concurrency they want. There is no retry here, the
scheduler decides what to retry.
"""

import asyncio
import logging
from typing import Hashable, Mapping, Optional, TypeVar

import httpx

from catalog_scraper.ingest.base import FetchResult
from catalog_scraper.ingest.http_client import request_page
from catalog_scraper.metrics import page_fetches_total

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)


class BatchFetcher:
    """Fetches a keyed set of URLs concurrently, one result per key."""

    def __init__(self, client: httpx.AsyncClient, site: str = "default"):
        """
        Initialize batch fetcher.

        Args:
            client: Shared client (same headers, timeout and TLS as PageFetcher)
            site: Site slug used in logs and metrics
        """
        self.client = client
        self.site = site

    async def fetch_all(
        self,
        urls: Mapping[K, str],
        headers: Optional[dict[str, str]] = None,
        stage: str = "batch",
    ) -> dict[K, FetchResult]:
        """
        Fetch all URLs concurrently.

        Args:
            urls: Mapping of caller key (page number, URL, ...) to URL
            headers: Optional per-request headers
            stage: Metrics label for the caller ("listing", "detail", ...)

        Returns:
            Mapping with exactly one FetchResult per input key, in input order
        """
        keys = list(urls.keys())
        if not keys:
            return {}

        responses = await asyncio.gather(
            *(request_page(self.client, urls[key], headers) for key in keys)
        )

        results: dict[K, FetchResult] = {}
        failed = 0
        for key, result in zip(keys, responses):
            results[key] = result
            if not result.success:
                failed += 1
                logger.debug(f"{self.site}: {urls[key]} failed: {result.error}")
            page_fetches_total.labels(
                self.site, stage, "success" if result.success else "failed"
            ).inc()

        if failed:
            logger.info(f"{self.site}: batch of {len(keys)} finished with {failed} failures")

        return results
