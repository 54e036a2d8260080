"""Shared fakes for the scraper tests."""

from dataclasses import replace
from typing import Any

import pytest

from catalog_scraper.normalize.product import NormalizedProduct
from catalog_scraper.worker.contracts import (
    JobStore,
    ProductStore,
    ScrapeJob,
    StoreResult,
    Website,
    WebsiteResolver,
)


class SleepRecorder:
    """Awaitable stand-in for asyncio.sleep that records requested delays."""

    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class InMemoryWebsiteResolver(WebsiteResolver):
    def __init__(self):
        self.websites: dict[str, Website] = {}

    async def ensure_website(self, name: str, slug: str, base_url: str) -> Website:
        existing = self.websites.get(slug)
        website = Website(
            id=existing.id if existing else len(self.websites) + 1,
            name=name,
            slug=slug,
            base_url=base_url,
        )
        self.websites[slug] = website
        return website


class InMemoryJobStore(JobStore):
    def __init__(self):
        self.jobs: dict[int, ScrapeJob] = {}
        self.updates: list[tuple[int, dict[str, Any]]] = []

    async def create(self, website_id: int) -> ScrapeJob:
        job = ScrapeJob(id=len(self.jobs) + 1, website_id=website_id)
        self.jobs[job.id] = replace(job)
        return job

    async def update(self, job_id: int, **fields: Any) -> None:
        self.updates.append((job_id, fields))
        for name, value in fields.items():
            setattr(self.jobs[job_id], name, value)

    def statuses(self, job_id: int) -> list[str]:
        return [
            fields["status"].value
            for updated_id, fields in self.updates
            if updated_id == job_id and "status" in fields
        ]


class InMemoryProductStore(ProductStore):
    def __init__(self):
        self.products: dict[tuple[int, str], NormalizedProduct] = {}

    async def store_or_update(self, website_id: int, product: NormalizedProduct) -> StoreResult:
        key = (website_id, product.external_id)
        created = key not in self.products
        self.products[key] = product
        return StoreResult(entity_id=key, was_created=created)


@pytest.fixture
def sleeps() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def website_resolver() -> InMemoryWebsiteResolver:
    return InMemoryWebsiteResolver()


@pytest.fixture
def job_store() -> InMemoryJobStore:
    return InMemoryJobStore()


@pytest.fixture
def product_store() -> InMemoryProductStore:
    return InMemoryProductStore()
