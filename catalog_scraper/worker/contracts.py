"""Job/website records and the collaborator interfaces the orchestrator depends on."""

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from catalog_scraper.normalize.product import NormalizedProduct


class JobStatus(str, enum.Enum):
    """Scrape job lifecycle: pending -> running -> completed | failed."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class Website:
    """Site the products belong to."""

    id: int
    name: str
    slug: str
    base_url: str


@dataclass
class ScrapeJob:
    """One scrape run and its counters."""

    id: int
    website_id: int
    status: JobStatus = JobStatus.PENDING
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    total_found: int = 0
    total_created: int = 0
    total_updated: int = 0
    error_message: Optional[str] = None


@dataclass
class StoreResult:
    """Outcome of an upsert."""

    entity_id: Any
    was_created: bool


class WebsiteResolver(ABC):
    """Finds or creates the website record for a site."""

    @abstractmethod
    async def ensure_website(self, name: str, slug: str, base_url: str) -> Website:
        """Get-or-create by slug; refreshes name and base URL. Idempotent."""
        pass


class JobStore(ABC):
    """Persists scrape job state."""

    @abstractmethod
    async def create(self, website_id: int) -> ScrapeJob:
        """Create a job in the pending state."""
        pass

    @abstractmethod
    async def update(self, job_id: int, **fields: Any) -> None:
        """Write the given job fields."""
        pass


class ProductStore(ABC):
    """Persists normalized products."""

    @abstractmethod
    async def store_or_update(self, website_id: int, product: NormalizedProduct) -> StoreResult:
        """
        Insert or update a product keyed by (website_id, external_id).

        Media and attribute rows are replaced with the given ones.
        """
        pass
