"""Product link extraction strategies and URL helpers."""

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Iterable, Optional
from urllib.parse import urlparse

from selectolax.parser import HTMLParser

logger = logging.getLogger(__name__)

_ABSOLUTE_URL = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*://")


def normalize_url(href: str, base_url: str) -> str:
    """
    Make a link absolute against the site base URL.

    Absolute URLs are kept verbatim. Protocol-relative URLs ("//host/path")
    take the base URL's scheme. Anything else is joined as
    base.rstrip("/") + "/" + href.lstrip("/"); "../" segments are not resolved.
    """
    href = href.strip()
    if _ABSOLUTE_URL.match(href):
        return href
    if href.startswith("//"):
        scheme = urlparse(base_url).scheme or "https"
        return f"{scheme}:{href}"
    return base_url.rstrip("/") + "/" + href.lstrip("/")


def dedupe_links(links: Iterable[str]) -> list[str]:
    """Drop exact duplicates, keeping the first occurrence."""
    return list(dict.fromkeys(links))


class LinkExtractor(ABC):
    """Turns one listing page body into product detail URLs."""

    def extract(self, body: str, base_url: str) -> list[str]:
        """
        Extract product links from a listing page.

        Args:
            body: Page body (HTML or JSON depending on the strategy)
            base_url: Site base URL for relative links

        Returns:
            Ordered, deduplicated absolute URLs. Parse failures give [].
        """
        try:
            hrefs = self._extract_hrefs(body)
            return dedupe_links(
                normalize_url(href, base_url)
                for href in hrefs
                if isinstance(href, str) and href.strip()
            )
        except (ValueError, TypeError, KeyError, AttributeError) as exc:
            logger.error(f"{type(self).__name__}: failed to parse listing page: {exc}")
            return []

    @abstractmethod
    def _extract_hrefs(self, body: str) -> list[str]:
        """Raw href values in page order."""
        pass


class GridLinkExtractor(LinkExtractor):
    """Selects each product-grid item, then the first matching anchor inside it."""

    def __init__(self, item_selector: str, link_selector: str = "a"):
        self.item_selector = item_selector
        self.link_selector = link_selector

    def _extract_hrefs(self, body: str) -> list[str]:
        hrefs = []
        for item in HTMLParser(body).css(self.item_selector):
            anchor = item.css_first(self.link_selector)
            if anchor is None:
                continue
            href = anchor.attributes.get("href")
            if href:
                hrefs.append(href)
        return hrefs


class ProductWallLinkExtractor(LinkExtractor):
    """Reads product URLs from a JSON product wall (productGroupings -> products -> pdpUrl)."""

    def _extract_hrefs(self, body: str) -> list[str]:
        data = json.loads(body)
        hrefs = []
        for grouping in data.get("productGroupings") or []:
            for product in grouping.get("products") or []:
                href = self._pdp_href(product)
                if href:
                    hrefs.append(href)
        return hrefs

    @staticmethod
    def _pdp_href(product: dict) -> Optional[str]:
        pdp_url = product.get("pdpUrl") or {}
        if not isinstance(pdp_url, dict):
            return None
        for key in ("url", "path"):
            value = pdp_url.get(key)
            if isinstance(value, str) and value:
                return value
        return None
