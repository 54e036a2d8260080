"""SQL implementations of the orchestrator's collaborators."""

import enum
import logging
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from catalog_scraper.db.models import Product, ProductAttribute, ProductMedia
from catalog_scraper.db.models import ScrapeJob as ScrapeJobRow
from catalog_scraper.db.models import Website as WebsiteRow
from catalog_scraper.normalize.product import NormalizedProduct
from catalog_scraper.worker.contracts import (
    JobStatus,
    JobStore,
    ProductStore,
    ScrapeJob,
    StoreResult,
    Website,
    WebsiteResolver,
)

logger = logging.getLogger(__name__)


class SqlWebsiteResolver(WebsiteResolver):
    """Get-or-create websites by slug."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def ensure_website(self, name: str, slug: str, base_url: str) -> Website:
        async with self.session_factory() as session:
            async with session.begin():
                row = (
                    await session.execute(select(WebsiteRow).where(WebsiteRow.slug == slug))
                ).scalar_one_or_none()

                if row is None:
                    row = WebsiteRow(name=name, slug=slug, base_url=base_url, is_active=True)
                    session.add(row)
                    logger.info(f"Created website {slug}")
                else:
                    row.name = name
                    row.base_url = base_url
                    row.is_active = True

                await session.flush()
                return Website(id=row.id, name=row.name, slug=row.slug, base_url=row.base_url)


class SqlJobStore(JobStore):
    """Scrape job rows."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def create(self, website_id: int) -> ScrapeJob:
        async with self.session_factory() as session:
            async with session.begin():
                row = ScrapeJobRow(website_id=website_id, status=JobStatus.PENDING.value)
                session.add(row)
                await session.flush()
                return ScrapeJob(id=row.id, website_id=website_id)

    async def update(self, job_id: int, **fields: Any) -> None:
        values = {
            name: value.value if isinstance(value, enum.Enum) else value
            for name, value in fields.items()
        }
        async with self.session_factory() as session:
            async with session.begin():
                await session.execute(
                    update(ScrapeJobRow).where(ScrapeJobRow.id == job_id).values(**values)
                )

    async def get(self, job_id: int) -> ScrapeJob:
        """Load a job for reporting."""
        async with self.session_factory() as session:
            row = await session.get(ScrapeJobRow, job_id)
            if row is None:
                raise LookupError(f"Scrape job {job_id} not found")
            return ScrapeJob(
                id=row.id,
                website_id=row.website_id,
                status=JobStatus(row.status),
                started_at=row.started_at,
                finished_at=row.finished_at,
                total_found=row.total_found,
                total_created=row.total_created,
                total_updated=row.total_updated,
                error_message=row.error_message,
            )


class SqlProductStore(ProductStore):
    """Upserts products keyed by (website_id, external_id)."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def store_or_update(self, website_id: int, product: NormalizedProduct) -> StoreResult:
        async with self.session_factory() as session:
            async with session.begin():
                row = (
                    await session.execute(
                        select(Product)
                        .where(
                            Product.website_id == website_id,
                            Product.external_id == product.external_id,
                        )
                        .options(selectinload(Product.media), selectinload(Product.attributes))
                    )
                ).scalar_one_or_none()

                created = row is None
                if created:
                    row = Product(website_id=website_id, external_id=product.external_id)
                    session.add(row)

                row.title = product.title
                row.slug = product.slug
                row.source_url = product.source_url
                row.description = product.description
                row.price = product.price
                row.currency = product.currency
                row.stock_quantity = product.stock_quantity
                row.status = product.status or "draft"
                row.raw_data = product.raw

                # Media and attributes are replaced wholesale
                row.media = [
                    ProductMedia(
                        type=item.type,
                        source_url=item.source_url,
                        alt_text=item.alt_text,
                        is_primary=item.is_primary,
                        position=position,
                    )
                    for position, item in enumerate(product.media)
                ]
                row.attributes = [
                    ProductAttribute(name=item.name, value=item.value)
                    for item in product.attributes
                ]
                await session.flush()
                return StoreResult(entity_id=row.id, was_created=created)
