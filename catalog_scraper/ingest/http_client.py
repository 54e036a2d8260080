"""HTTP client construction and the retrying single-page fetcher."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

import httpx

from catalog_scraper.config import settings
from catalog_scraper.ingest.base import RATE_LIMIT_STATUSES, FetchResult
from catalog_scraper.metrics import fetch_retries_total, page_fetches_total

logger = logging.getLogger(__name__)

# Substrings of transport error text that mark the error as transient
RETRYABLE_ERROR_MARKERS = (
    "timeout",
    "timed out",
    "connect",
    "connection",
    "ssl",
    "reset",
)

SleepFunc = Callable[[float], Awaitable[None]]


def default_headers(base_url: Optional[str] = None) -> dict[str, str]:
    """Get browser-like headers, with Referer/Origin pointing at the site when given."""
    headers = {
        "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,"
        "image/avif,image/webp,*/*;q=0.8",
        "Accept-Language": "en-US,en;q=0.9,nl;q=0.8",
        "Accept-Encoding": "gzip, deflate",
        "Connection": "keep-alive",
        "Upgrade-Insecure-Requests": "1",
        "Sec-Fetch-Dest": "document",
        "Sec-Fetch-Mode": "navigate",
        "Sec-Fetch-Site": "none",
        "Sec-Fetch-User": "?1",
        "Cache-Control": "max-age=0",
    }
    if base_url:
        headers["Referer"] = base_url
        headers["Origin"] = base_url.rstrip("/")
    return headers


def build_timeout() -> httpx.Timeout:
    """Total timeout with a shorter connect phase."""
    return httpx.Timeout(settings.http_timeout, connect=settings.http_connect_timeout)


def build_client(
    headers: Optional[dict[str, str]] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """
    Create the shared client used by the single-page and batch fetchers.

    Args:
        headers: Default headers for every request (defaults to default_headers())
        transport: Optional transport override (tests use httpx.MockTransport)

    Returns:
        Configured httpx.AsyncClient (caller closes it)
    """
    return httpx.AsyncClient(
        headers=headers or default_headers(),
        timeout=build_timeout(),
        follow_redirects=True,
        max_redirects=settings.http_max_redirects,
        verify=True,
        transport=transport,
    )


def describe_error(exc: Exception) -> str:
    """Render a transport exception as text, keeping the class name for classification."""
    message = str(exc).strip()
    return f"{type(exc).__name__}: {message}" if message else type(exc).__name__


def is_retryable_error(error_text: Optional[str]) -> bool:
    """Whether a transport error message looks transient."""
    if not error_text:
        return False
    lowered = error_text.lower()
    return any(marker in lowered for marker in RETRYABLE_ERROR_MARKERS)


async def request_page(
    client: httpx.AsyncClient,
    url: str,
    headers: Optional[dict[str, str]] = None,
) -> FetchResult:
    """
    Issue one GET and map the outcome to a FetchResult.

    Transport errors yield a failed result with no status code; non-2xx
    responses yield a failed result with the status and "HTTP <code>".
    """
    try:
        response = await client.get(url, headers=headers)
    except (httpx.HTTPError, httpx.InvalidURL) as exc:
        return FetchResult.failed(describe_error(exc))

    if 200 <= response.status_code < 300:
        return FetchResult.ok(response.text, response.status_code, str(response.url))
    return FetchResult.failed(f"HTTP {response.status_code}", response.status_code)


class PageFetcher:
    """
    Fetches a single page with bounded retries and exponential backoff.

    Rate-limit statuses (429/503) wait 2**attempt + 5 seconds, other non-2xx
    statuses and transient transport errors wait 2**attempt seconds.
    Non-transient transport errors abort at once. Nothing is raised: a
    failure after the last attempt comes back as None / a failed FetchResult.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        max_retries: Optional[int] = None,
        site: str = "default",
        sleep: SleepFunc = asyncio.sleep,
    ):
        self.client = client
        self.max_retries = max_retries or settings.max_retries
        self.site = site
        self._sleep = sleep

    async def fetch(self, url: str, headers: Optional[dict[str, str]] = None) -> Optional[str]:
        """Fetch a page body, or None when every attempt failed."""
        result = await self.fetch_result(url, headers=headers)
        return result.body if result.success else None

    async def fetch_result(
        self,
        url: str,
        headers: Optional[dict[str, str]] = None,
    ) -> FetchResult:
        """
        Fetch a page, retrying transient failures.

        Args:
            url: Absolute URL to fetch
            headers: Optional per-request headers merged over the client's

        Returns:
            The successful FetchResult, or the last failed one
        """
        result = FetchResult.failed("no attempt made")

        for attempt in range(1, self.max_retries + 1):
            result = await request_page(self.client, url, headers)

            if result.success:
                if attempt > 1:
                    logger.info(f"{self.site}: fetched after retry (attempt {attempt}): {url}")
                page_fetches_total.labels(self.site, "page", "success").inc()
                return result

            delay = self._backoff(result, attempt)
            if delay is None:
                page_fetches_total.labels(self.site, "page", "failed").inc()
                logger.error(f"{self.site}: non-retryable error for {url}: {result.error}")
                return result

            if attempt >= self.max_retries:
                break

            reason = "rate_limited" if result.status_code in RATE_LIMIT_STATUSES else (
                "transport" if result.status_code is None else "http_status"
            )
            fetch_retries_total.labels(self.site, reason).inc()
            logger.warning(
                f"{self.site}: {result.error} for {url}, retrying in {delay:.0f}s "
                f"(attempt {attempt}/{self.max_retries})"
            )
            await self._sleep(delay)

        page_fetches_total.labels(self.site, "page", "failed").inc()
        logger.error(
            f"{self.site}: failed to fetch {url} after {self.max_retries} attempts: {result.error}"
        )
        return result

    @staticmethod
    def _backoff(result: FetchResult, attempt: int) -> Optional[float]:
        """Seconds to wait before the next attempt, or None when the failure is permanent."""
        if result.status_code is None:
            if not is_retryable_error(result.error):
                return None
            return float(2 ** attempt)

        if result.status_code in RATE_LIMIT_STATUSES:
            return float(2 ** attempt + 5)
        return float(2 ** attempt)
