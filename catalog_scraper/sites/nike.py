"""Nike (nike.com/ca) adapter: product wall JSON API for listings, HTML detail pages."""

import logging
from decimal import Decimal
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from selectolax.parser import HTMLParser, Node

from catalog_scraper.ingest.link_extractor import LinkExtractor, ProductWallLinkExtractor
from catalog_scraper.normalize.product import (
    AttributeItem,
    NormalizedProduct,
    collapse_whitespace,
    dedupe_media,
    normalize_media_url,
    parse_price,
    slug_from_url,
)
from catalog_scraper.sites.base import SiteAdapter

logger = logging.getLogger(__name__)

API_BASE_URL = (
    "https://api.nike.com/discover/product_wall/v1/marketplace/CA/language/en-GB/"
    "consumerChannelId/d9a5bc42-4b9c-4976-858a-f159cf99c647"
)
DEFAULT_WALL_PATH = "/ca/w/sale-3yaep"
DEFAULT_ATTRIBUTE_IDS = "5b21a62a-0503-400c-8336-3ccfbff2a684"
PAGE_SIZE = 24

# Displayed prices outside this range are layout noise, not prices
MIN_PRICE = Decimal("10")
MAX_PRICE = Decimal("10000")

SELECTOR_TITLE = ('h1[data-testid="product-title"]', "h1.product-title", "h1")
SELECTOR_DESCRIPTION = "div#product-description-container"
SELECTOR_CURRENT_PRICE = '[data-testid="currentPrice-container"]'
SELECTOR_INITIAL_PRICE = '[data-testid="initialPrice-container"]'
SELECTOR_DISCOUNT = '[data-testid="OfferPercentage"]'
SELECTOR_HERO_IMAGE = 'div#hero-image img[data-testid="HeroImg"]'
SELECTOR_SIZE_ITEM = "div.nds-grid-item"


def build_wall_url(
    anchor: int = 0,
    count: int = PAGE_SIZE,
    path: str = DEFAULT_WALL_PATH,
    attribute_ids: str = DEFAULT_ATTRIBUTE_IDS,
) -> str:
    """Product wall API URL for one page."""
    query = urlencode({
        "path": path,
        "attributeIds": attribute_ids,
        "queryType": "PRODUCTS",
        "anchor": anchor,
        "count": count,
    })
    return f"{API_BASE_URL}?{query}"


def base_product_path(url: str) -> str:
    """Product URL without its trailing colour code segment."""
    parts = urlsplit(url)
    path = parts.path.rstrip("/")
    head = path.rpartition("/")[0]
    return urlunsplit((parts.scheme, parts.netloc, head or path, "", ""))


class NikeAdapter(SiteAdapter):
    """Offset-paginated product wall API, colour variants collapsed to one product."""

    name = "Nike"
    slug = "nike"
    base_url = "https://www.nike.com"
    default_category_url = build_wall_url()
    listing_mode = "api"
    page_size = PAGE_SIZE

    def listing_headers(self) -> dict[str, str]:
        return {
            "Accept": "*/*",
            "nike-api-caller-id": "nike:dotcom:browse:wall.client:2.0",
            "Sec-Fetch-Dest": "empty",
            "Sec-Fetch-Mode": "cors",
            "Sec-Fetch-Site": "same-site",
        }

    def link_extractor(self) -> LinkExtractor:
        return ProductWallLinkExtractor()

    def build_listing_url(self, listing_url: str, offset: int) -> str:
        """Replace the anchor parameter of a wall API URL (other parameters are kept)."""
        parts = urlsplit(listing_url)
        query = dict(parse_qsl(parts.query, keep_blank_values=True))
        query["anchor"] = str(offset)
        query.setdefault("count", str(self.page_size))
        return urlunsplit(parts._replace(query=urlencode(query)))

    def finalize_links(self, links: list[str]) -> list[str]:
        """Exact dedupe, then keep one URL per base product (colourways share a base path)."""
        unique = super().finalize_links(links)
        seen = set()
        kept = []
        for link in unique:
            key = base_product_path(link)
            if key in seen:
                continue
            seen.add(key)
            kept.append(link)

        if len(kept) < len(unique):
            logger.info(f"nike: collapsed {len(unique) - len(kept)} colour variants")
        return kept

    def parse_product(self, html: str, url: str) -> Optional[NormalizedProduct]:
        tree = HTMLParser(html)

        title = None
        for selector in SELECTOR_TITLE:
            title = self._text(tree.css_first(selector))
            if title:
                break
        if not title:
            logger.warning(f"No product title on {url}")
            return None

        external_id = slug_from_url(url)
        price = self._bounded_price(tree.css_first(SELECTOR_CURRENT_PRICE))
        original_price = self._bounded_price(tree.css_first(SELECTOR_INITIAL_PRICE))
        if original_price is not None and price is not None and original_price <= price:
            original_price = None
        discount = self._text(tree.css_first(SELECTOR_DISCOUNT))

        attributes = []
        if original_price is not None:
            attributes.append(AttributeItem("original_price", str(original_price)))
        if discount:
            attributes.append(AttributeItem("discount", discount))

        sizes = self._extract_sizes(tree)
        if sizes:
            attributes.append(AttributeItem(
                "sizes", ", ".join(size for size, _ in sizes)
            ))
        available = [size for size, in_stock in sizes if in_stock]
        status = "out_of_stock" if sizes and not available else "published"

        images = [
            normalize_media_url(img.attributes.get("src"), self.base_url)
            for img in tree.css(SELECTOR_HERO_IMAGE)
        ]

        return NormalizedProduct(
            external_id=external_id,
            title=title,
            slug=slug_from_url(base_product_path(url)),
            source_url=url,
            description=self._extract_description(tree),
            price=price,
            currency="CAD" if price is not None else None,
            stock_quantity=1,
            status=status,
            raw={
                "url": url,
                "original_price": str(original_price) if original_price is not None else None,
                "discount": discount,
                "sizes": [{"size": size, "in_stock": in_stock} for size, in_stock in sizes],
            },
            media=dedupe_media([image for image in images if image]),
            attributes=attributes,
        )

    @staticmethod
    def _text(node: Optional[Node]) -> Optional[str]:
        return collapse_whitespace(node.text()) if node is not None else None

    def _bounded_price(self, node: Optional[Node]) -> Optional[Decimal]:
        value = parse_price(self._text(node))
        if value is None or not MIN_PRICE <= value <= MAX_PRICE:
            return None
        return value

    def _extract_description(self, tree: HTMLParser) -> Optional[str]:
        """Paragraphs, then list items as bullets."""
        container = tree.css_first(SELECTOR_DESCRIPTION)
        if container is None:
            return None

        lines = [self._text(p) for p in container.css("p")]
        lines += [f"• {text}" for text in (self._text(li) for li in container.css("li")) if text]
        lines = [line for line in lines if line]
        return "\n".join(lines) or None

    def _extract_sizes(self, tree: HTMLParser) -> list[tuple[str, bool]]:
        sizes = []
        for item in tree.css(SELECTOR_SIZE_ITEM):
            text = self._text(item)
            if not text:
                continue
            classes = (item.attributes.get("class") or "").split()
            disabled = "disabled" in classes or item.css_first(".disabled") is not None
            sizes.append((text, not disabled))
        return sizes
