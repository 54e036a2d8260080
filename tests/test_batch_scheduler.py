"""Tests for chunked listing fetches, sequential retry and pacing."""

import asyncio
import json

import httpx
import pytest

from catalog_scraper.ingest.batch_scheduler import BatchScheduler, build_page_url
from catalog_scraper.ingest.http_client import PageFetcher, build_client
from catalog_scraper.ingest.link_extractor import GridLinkExtractor, ProductWallLinkExtractor
from catalog_scraper.ingest.request_batcher import BatchFetcher

BASE_URL = "https://shop.test"
CATEGORY_URL = "https://shop.test/men?sort=new"
EXTRACTOR = GridLinkExtractor("li.item", "a")


def _listing(page: int, per_page: int = 3) -> str:
    items = "".join(
        f'<li class="item"><a href="/p/{page}-{n}">p</a></li>' for n in range(per_page)
    )
    return f"<ul>{items}</ul>"


class CountingPageFetcher(PageFetcher):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.retried_urls: list[str] = []

    async def fetch_result(self, url, headers=None):
        self.retried_urls.append(url)
        return await super().fetch_result(url, headers=headers)


class ListingSite:
    """Serves listing pages; `failures` maps page -> list of statuses to return first."""

    def __init__(self, failures=None, delay: float = 0.0):
        self.failures = {page: list(codes) for page, codes in (failures or {}).items()}
        self.delay = delay
        self.hits: dict[int, int] = {}
        self.in_flight = 0
        self.max_in_flight = 0

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        page = int(request.url.params["page"])
        self.hits[page] = self.hits.get(page, 0) + 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            codes = self.failures.get(page)
            status = 200
            if codes:
                status = codes.pop(0) if len(codes) > 1 else codes[0]
            if status != 200:
                return httpx.Response(status)
            return httpx.Response(200, text=_listing(page))
        finally:
            self.in_flight -= 1


def _scheduler(client, sleeps, **kwargs):
    page_fetcher = CountingPageFetcher(client, sleep=sleeps)
    scheduler = BatchScheduler(
        BatchFetcher(client),
        page_fetcher,
        retry_delay=0.25,
        chunk_delay=0.5,
        sleep=sleeps,
        **kwargs,
    )
    return scheduler, page_fetcher


def test_build_page_url_keeps_existing_query():
    assert build_page_url(CATEGORY_URL, 3) == "https://shop.test/men?sort=new&page=3"


def test_build_page_url_replaces_existing_page_param():
    assert build_page_url("https://shop.test/men?page=1&q=x", 4) == "https://shop.test/men?q=x&page=4"


def test_build_page_url_resolves_relative_category():
    assert build_page_url("/men/shoes", 2, base_url="https://shop.test/") == "https://shop.test/men/shoes?page=2"


@pytest.mark.asyncio
@pytest.mark.parametrize("concurrency,pages", [(4, 11), (3, 3), (5, 2), (1, 4)])
async def test_never_exceeds_concurrency(sleeps, concurrency, pages):
    site = ListingSite(delay=0.01)
    async with build_client(transport=httpx.MockTransport(site)) as client:
        scheduler, _ = _scheduler(client, sleeps)
        scan = await scheduler.process_pages(
            range(2, pages + 2), CATEGORY_URL, concurrency, EXTRACTOR, BASE_URL
        )

    assert site.max_in_flight <= concurrency
    assert site.max_in_flight == min(concurrency, pages)
    assert scan.pages_fetched == pages
    assert len(scan.links) == pages * 3


@pytest.mark.asyncio
async def test_links_follow_page_order(sleeps):
    async with build_client(transport=httpx.MockTransport(ListingSite())) as client:
        scheduler, _ = _scheduler(client, sleeps)
        scan = await scheduler.process_pages([2, 3, 4], CATEGORY_URL, 2, EXTRACTOR, BASE_URL)

    assert scan.links[0] == "https://shop.test/p/2-0"
    assert scan.links[3] == "https://shop.test/p/3-0"
    assert scan.links[-1] == "https://shop.test/p/4-2"


@pytest.mark.asyncio
async def test_transient_failure_is_retried_alone_and_recovers(sleeps):
    site = ListingSite(failures={3: [503, 200]})
    async with build_client(transport=httpx.MockTransport(site)) as client:
        scheduler, page_fetcher = _scheduler(client, sleeps)
        scan = await scheduler.process_pages([2, 3, 4], CATEGORY_URL, 3, EXTRACTOR, BASE_URL)

    assert scan.pages_retried == [3]
    assert page_fetcher.retried_urls == ["https://shop.test/men?sort=new&page=3"]
    assert site.hits == {2: 1, 3: 2, 4: 1}
    assert "https://shop.test/p/3-1" in scan.links
    assert scan.pages_failed == []
    assert sleeps.calls == [0.25]


@pytest.mark.asyncio
async def test_transient_failure_that_persists_contributes_no_links(sleeps):
    site = ListingSite(failures={3: [503]})
    async with build_client(transport=httpx.MockTransport(site)) as client:
        scheduler, page_fetcher = _scheduler(client, sleeps)
        scan = await scheduler.process_pages([2, 3, 4], CATEGORY_URL, 3, EXTRACTOR, BASE_URL)

    assert len(page_fetcher.retried_urls) == 1
    assert scan.pages_failed == [3]
    assert not any("/p/3-" in link for link in scan.links)
    assert len(scan.links) == 6


@pytest.mark.asyncio
async def test_permanent_status_is_not_retried(sleeps):
    site = ListingSite(failures={4: [404]})
    async with build_client(transport=httpx.MockTransport(site)) as client:
        scheduler, page_fetcher = _scheduler(client, sleeps)
        scan = await scheduler.process_pages([2, 3, 4], CATEGORY_URL, 3, EXTRACTOR, BASE_URL)

    assert page_fetcher.retried_urls == []
    assert scan.pages_retried == []
    assert scan.pages_failed == [4]
    assert site.hits[4] == 1


@pytest.mark.asyncio
async def test_chunks_are_paced_but_not_after_the_last(sleeps):
    async with build_client(transport=httpx.MockTransport(ListingSite())) as client:
        scheduler, _ = _scheduler(client, sleeps)
        await scheduler.process_pages(range(2, 7), CATEGORY_URL, 2, EXTRACTOR, BASE_URL)

    # 5 pages in chunks of 2 -> 3 chunks -> 2 pauses
    assert sleeps.calls == [0.5, 0.5]


@pytest.mark.asyncio
async def test_iter_chunks_rejects_zero_concurrency(sleeps):
    async with build_client(transport=httpx.MockTransport(ListingSite())) as client:
        scheduler, _ = _scheduler(client, sleeps)
        with pytest.raises(ValueError):
            async for _ in scheduler.iter_chunks({1: "https://shop.test/?page=1"}, 0):
                pass


@pytest.mark.asyncio
async def test_offset_listing_stops_on_first_empty_chunk(sleeps):
    requested = []

    def handler(request: httpx.Request) -> httpx.Response:
        anchor = int(request.url.params["anchor"])
        requested.append(anchor)
        products = []
        if anchor < 72:
            products = [{"pdpUrl": {"path": f"/t/item-{anchor + n}/X"}} for n in range(24)]
        return httpx.Response(200, json={"productGroupings": [{"products": products}]})

    async with build_client(transport=httpx.MockTransport(handler)) as client:
        scheduler, _ = _scheduler(client, sleeps)
        scan = await scheduler.process_until_exhausted(
            lambda offset: f"https://api.shop.test/wall?anchor={offset}",
            start=24,
            step=24,
            concurrency=2,
            extractor=ProductWallLinkExtractor(),
            base_url=BASE_URL,
        )

    # chunks: [24, 48] -> links, [72, 96] -> empty, stop
    assert sorted(requested) == [24, 48, 72, 96]
    assert len(scan.links) == 48
    assert scan.pages_fetched == 4


@pytest.mark.asyncio
async def test_offset_listing_respects_page_cap(sleeps):
    def handler(request: httpx.Request) -> httpx.Response:
        anchor = request.url.params["anchor"]
        return httpx.Response(
            200, text=json.dumps({"productGroupings": [{"products": [{"pdpUrl": {"path": f"/t/{anchor}"}}]}]})
        )

    async with build_client(transport=httpx.MockTransport(handler)) as client:
        scheduler, _ = _scheduler(client, sleeps)
        scan = await scheduler.process_until_exhausted(
            lambda offset: f"https://api.shop.test/wall?anchor={offset}",
            start=0,
            step=10,
            concurrency=3,
            extractor=ProductWallLinkExtractor(),
            base_url=BASE_URL,
            max_pages=5,
        )

    assert scan.pages_fetched == 5
    assert len(scan.links) == 5
