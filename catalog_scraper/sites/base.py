"""Per-site strategy: selectors, headers, URL building and detail parsing."""

import logging
from abc import ABC, abstractmethod
from typing import ClassVar, Optional

from catalog_scraper.ingest.batch_scheduler import build_page_url
from catalog_scraper.ingest.http_client import default_headers
from catalog_scraper.ingest.link_extractor import LinkExtractor, dedupe_links
from catalog_scraper.ingest.pagination import PaginationResolver
from catalog_scraper.normalize.product import NormalizedProduct

logger = logging.getLogger(__name__)


class SiteAdapter(ABC):
    """
    Everything that differs between shops.

    HTML sites (listing_mode "html") paginate with ?page=N and expose a
    pagination marker. API sites (listing_mode "api") page through a JSON
    endpoint by offset until a chunk comes back empty.
    """

    name: ClassVar[str] = ""
    slug: ClassVar[str] = ""
    base_url: ClassVar[str] = ""
    default_category_url: ClassVar[Optional[str]] = None
    listing_mode: ClassVar[str] = "html"
    page_size: ClassVar[int] = 24  # Offset step for API listings

    def request_headers(self) -> dict[str, str]:
        """Headers every request of a run carries."""
        return default_headers(self.base_url)

    def listing_headers(self) -> Optional[dict[str, str]]:
        """Extra headers for listing requests only."""
        return None

    @abstractmethod
    def link_extractor(self) -> LinkExtractor:
        """Strategy that pulls product links out of a listing page."""
        pass

    def pagination_resolver(self) -> Optional[PaginationResolver]:
        """Resolver for HTML listings; None means a single page."""
        return None

    def build_page_url(self, category_url: str, page: int) -> str:
        """URL of listing page N for HTML listings."""
        return build_page_url(category_url, page, base_url=self.base_url)

    def build_listing_url(self, listing_url: str, offset: int) -> str:
        """URL of the listing page starting at `offset` for API listings."""
        raise NotImplementedError(f"{self.slug} does not page by offset")

    def snapshot_extension(self) -> str:
        return "json" if self.listing_mode == "api" else "html"

    def finalize_links(self, links: list[str]) -> list[str]:
        """Final deduplication of the collected links (exact match, first occurrence wins)."""
        return dedupe_links(links)

    @abstractmethod
    def parse_product(self, html: str, url: str) -> Optional[NormalizedProduct]:
        """
        Parse a product detail page.

        Args:
            html: Detail page body
            url: Detail page URL

        Returns:
            NormalizedProduct, or None when the page has no product title
        """
        pass
