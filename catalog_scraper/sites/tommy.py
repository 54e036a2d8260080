"""Tommy Hilfiger (nl.tommy.com) adapter: HTML category pages."""

import logging
from typing import Optional

from selectolax.parser import HTMLParser, Node

from catalog_scraper.ingest.link_extractor import GridLinkExtractor, LinkExtractor
from catalog_scraper.ingest.pagination import PaginationResolver
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

# Listing
SELECTOR_PAGINATION = 'div.Pagination_ItemCount__q8mzz[data-testid="Pagination-item-count"] span'
SELECTOR_GRID_ITEM = "li.ProductGrid_ProductGridItem__VJcst"
SELECTOR_GRID_LINK = "a.Link_Link__RX3bc.ProductGrid_ProductGridLink__AQ1KN"

# Detail
SELECTOR_PRODUCT_NAME = 'h1[data-testid="ProductHeader-ProductName-typography-h1"]'
SELECTOR_DESCRIPTION_SECTION = "section#description"
SELECTOR_TYPOGRAPHY = 'div[data-testid="typography-div"]'
SELECTOR_STYLE_NUMBER = "div.ProductAccordions_styleNumber__uzRY1"
SELECTOR_PRICE = 'span[data-testid*="ProductHeaderPrice-PriceText"]'
SELECTOR_CAROUSEL_ITEM = 'div[data-testid="CarouselItemWrapper"]'
SELECTOR_PRODUCT_IMAGE = 'img[data-testid="prod-mainImage_img"]'
SELECTOR_ADD_TO_BAG = 'button[data-testid*="AddToBag"], button[data-testid*="add-to-bag"]'
SELECTOR_OUT_OF_STOCK = '[data-testid*="out-of-stock"], [data-testid*="OutOfStock"]'
SELECTOR_ACCORDION = 'section[data-testid*="accordion"]'


class TommyHilfigerAdapter(SiteAdapter):
    """Category grid links, "viewed N of M items" pagination, EUR detail pages."""

    name = "Tommy Hilfiger"
    slug = "tommy"
    base_url = "https://nl.tommy.com"

    def link_extractor(self) -> LinkExtractor:
        return GridLinkExtractor(SELECTOR_GRID_ITEM, SELECTOR_GRID_LINK)

    def pagination_resolver(self) -> PaginationResolver:
        return PaginationResolver(SELECTOR_PAGINATION)

    def parse_product(self, html: str, url: str) -> Optional[NormalizedProduct]:
        tree = HTMLParser(html)

        title = self._text(tree.css_first(SELECTOR_PRODUCT_NAME))
        if not title:
            logger.warning(f"No product title on {url}")
            return None

        slug = slug_from_url(url)
        description_section = tree.css_first(SELECTOR_DESCRIPTION_SECTION)
        description = None
        style_number = None
        if description_section is not None:
            description = self._text(description_section.css_first(SELECTOR_TYPOGRAPHY))
            style_number = self._text(description_section.css_first(SELECTOR_STYLE_NUMBER))

        price, original_price = self._extract_price(tree)
        status, availability_message = self._extract_availability(tree)

        attributes = []
        if original_price is not None:
            attributes.append(AttributeItem("original_price", str(original_price)))
        if availability_message:
            attributes.append(AttributeItem("availability_message", availability_message))
        attributes.extend(self._extract_accordions(tree))

        return NormalizedProduct(
            external_id=style_number or slug,
            title=title,
            slug=slug,
            source_url=url,
            description=description,
            price=price,
            currency="EUR" if price is not None else None,
            stock_quantity=1,
            status=status,
            raw={
                "url": url,
                "style_number": style_number,
                "original_price": str(original_price) if original_price is not None else None,
            },
            media=dedupe_media(self._extract_images(tree)),
            attributes=attributes,
        )

    @staticmethod
    def _text(node: Optional[Node]) -> Optional[str]:
        return collapse_whitespace(node.text()) if node is not None else None

    def _extract_price(self, tree: HTMLParser):
        """Current price is the last price span; with several, the first is the original price."""
        spans = tree.css(SELECTOR_PRICE)
        if not spans:
            return None, None

        price = parse_price(self._text(spans[-1]))
        original_price = parse_price(self._text(spans[0])) if len(spans) > 1 else None
        return price, original_price

    def _extract_availability(self, tree: HTMLParser) -> tuple[str, Optional[str]]:
        marker = tree.css_first(SELECTOR_OUT_OF_STOCK)
        if marker is not None:
            return "out_of_stock", self._text(marker) or "Out of stock"

        for button in tree.css(SELECTOR_ADD_TO_BAG):
            if "disabled" in button.attributes or button.attributes.get("aria-disabled") == "true":
                return "out_of_stock", "Add to bag disabled"

        return "published", None

    def _extract_images(self, tree: HTMLParser) -> list[str]:
        urls = []
        for item in tree.css(SELECTOR_CAROUSEL_ITEM):
            img = None
            for selector in (SELECTOR_PRODUCT_IMAGE, "picture img", "img"):
                img = item.css_first(selector)
                if img is not None:
                    break
            if img is None:
                continue
            src = img.attributes.get("src") or img.attributes.get("data-src")
            url = normalize_media_url(src, self.base_url)
            if url:
                urls.append(url)
        return urls

    def _extract_accordions(self, tree: HTMLParser) -> list[AttributeItem]:
        attributes = []
        for section in tree.css(SELECTOR_ACCORDION):
            section_id = (section.attributes.get("id") or "").replace("-", "_")
            if not section_id or section_id == "description":
                continue
            text = self._text(section.css_first(SELECTOR_TYPOGRAPHY))
            if text:
                attributes.append(AttributeItem(section_id, text))
        return attributes
