"""Normalized product record and parsing helpers shared by site adapters."""

import logging
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Optional
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

_PRICE_NUMBER = re.compile(r"\d[\d.,]*")


@dataclass
class MediaItem:
    """Image reference attached to a product (source URL only, nothing is downloaded)."""

    source_url: str
    type: str = "image"
    alt_text: Optional[str] = None
    is_primary: bool = False


@dataclass
class AttributeItem:
    """Name/value pair shown on the detail page."""

    name: str
    value: str


@dataclass
class NormalizedProduct:
    """Product fields extracted from one detail page."""

    external_id: str
    title: str
    slug: str
    source_url: str
    description: Optional[str] = None
    price: Optional[Decimal] = None
    currency: Optional[str] = None
    stock_quantity: Optional[int] = None
    status: str = "draft"  # "published", "out_of_stock", "draft"
    raw: dict[str, Any] = field(default_factory=dict)
    media: list[MediaItem] = field(default_factory=list)
    attributes: list[AttributeItem] = field(default_factory=list)


def slug_from_url(url: str, default: str = "unknown") -> str:
    """Last non-empty path segment of a URL."""
    segments = [segment for segment in urlparse(url).path.split("/") if segment]
    return segments[-1] if segments else default


def collapse_whitespace(text: Optional[str]) -> Optional[str]:
    """Collapse runs of whitespace; empty text becomes None."""
    if not text:
        return None
    collapsed = " ".join(text.split())
    return collapsed or None


def parse_price(text: Optional[str]) -> Optional[Decimal]:
    """
    Parse a displayed price such as "€ 89,90", "€1.299,95", "CA$120.00" or "1,299.95".

    The last separator followed by exactly one or two digits is treated as
    the decimal mark; every other separator is a thousands separator.
    """
    if not text:
        return None

    match = _PRICE_NUMBER.search(text)
    if not match:
        return None

    number = match.group().rstrip(".,")
    last_sep = max(number.rfind(","), number.rfind("."))
    if last_sep != -1 and 1 <= len(number) - last_sep - 1 <= 2:
        integer_part = re.sub(r"[.,]", "", number[:last_sep])
        number = f"{integer_part}.{number[last_sep + 1:]}"
    else:
        number = re.sub(r"[.,]", "", number)

    try:
        return Decimal(number)
    except InvalidOperation as exc:
        logger.debug("Failed to parse price: %s", text, exc_info=exc)
        return None


def normalize_media_url(url: Optional[str], base_url: str) -> Optional[str]:
    """Absolute image URL, upgrading protocol-relative URLs to https."""
    if not url:
        return None
    url = url.strip()
    if url.startswith(("http://", "https://")):
        return url
    if url.startswith("//"):
        return "https:" + url
    return base_url.rstrip("/") + "/" + url.lstrip("/")


def dedupe_media(urls: list[str]) -> list[MediaItem]:
    """Unique image URLs as MediaItems, the first one primary."""
    unique = list(dict.fromkeys(url for url in urls if url))
    return [MediaItem(source_url=url, is_primary=index == 0) for index, url in enumerate(unique)]
