"""Validated run options for a scrape."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from catalog_scraper.config import settings


class ScrapeOptions(BaseModel):
    """Concurrency, batching and pacing for one run."""

    model_config = ConfigDict(frozen=True)

    category_concurrency: int = Field(default=settings.default_category_concurrency, ge=1)
    pdp_concurrency: int = Field(default=settings.default_pdp_concurrency, ge=1)
    batch_size: int = Field(default=settings.default_batch_size, ge=10)
    max_products: Optional[int] = Field(default=None, ge=1)
    batch_sleep: float = Field(default=settings.default_batch_sleep, ge=0)
