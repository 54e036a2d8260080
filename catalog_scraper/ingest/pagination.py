"""Pagination discovery from a listing page's item-count marker."""

import logging
import math
import re
from dataclasses import dataclass
from typing import Optional

from selectolax.parser import HTMLParser

logger = logging.getLogger(__name__)

# "You've viewed 48 of 480 items"
DEFAULT_MARKER_PATTERN = re.compile(r"viewed\s+(\d+)\s+of\s+(\d+)\s+items", re.IGNORECASE)


@dataclass(frozen=True)
class PaginationInfo:
    """Page geometry of a category listing."""

    items_per_page: int
    total_items: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_items / self.items_per_page)


def parse_marker(
    text: str,
    pattern: re.Pattern = DEFAULT_MARKER_PATTERN,
) -> Optional[PaginationInfo]:
    """
    Parse "viewed N of M items" style text.

    Returns:
        PaginationInfo, or None when the text does not match or either value is not positive
    """
    if not text:
        return None

    match = pattern.search(text)
    if not match:
        return None

    items_per_page = int(match.group(1))
    total_items = int(match.group(2))
    if items_per_page <= 0 or total_items <= 0:
        return None

    return PaginationInfo(items_per_page=items_per_page, total_items=total_items)


class PaginationResolver:
    """Locates the item-count node on a listing page and parses it."""

    def __init__(self, selector: str, pattern: re.Pattern = DEFAULT_MARKER_PATTERN):
        self.selector = selector
        self.pattern = pattern

    def resolve(self, html: str) -> Optional[PaginationInfo]:
        """
        Resolve pagination from the first listing page.

        Args:
            html: First page body

        Returns:
            PaginationInfo, or None when the marker is missing or malformed
            (callers treat None as a single page)
        """
        node = HTMLParser(html).css_first(self.selector)
        if node is None:
            logger.warning(f"Pagination marker not found ({self.selector})")
            return None

        text = " ".join(node.text().split())
        info = parse_marker(text, self.pattern)
        if info is None:
            logger.warning(f"Could not parse pagination marker: {text!r}")
            return None

        logger.info(
            f"Pagination: {info.items_per_page} per page, {info.total_items} items, "
            f"{info.total_pages} pages"
        )
        return info
