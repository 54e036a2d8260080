"""Tests for pagination marker parsing."""

import pytest

from catalog_scraper.ingest.pagination import PaginationInfo, PaginationResolver, parse_marker

SELECTOR = 'div[data-testid="Pagination-item-count"] span'


def _page(marker: str) -> str:
    return (
        "<html><body><ul></ul>"
        f'<div data-testid="Pagination-item-count"><span>{marker}</span></div>'
        "</body></html>"
    )


def test_parse_marker_computes_total_pages():
    info = parse_marker("viewed 48 of 480 items")

    assert info == PaginationInfo(items_per_page=48, total_items=480)
    assert info.total_pages == 10


def test_total_pages_rounds_up():
    assert PaginationInfo(items_per_page=48, total_items=481).total_pages == 11
    assert PaginationInfo(items_per_page=48, total_items=12).total_pages == 1


@pytest.mark.parametrize(
    "text",
    [
        "viewed 0 of 480 items",
        "viewed 48 of 0 items",
        "Showing 48 products",
        "",
    ],
)
def test_parse_marker_rejects_unusable_text(text):
    assert parse_marker(text) is None


def test_resolver_reads_marker_case_insensitively():
    info = PaginationResolver(SELECTOR).resolve(_page("You've Viewed 24 of 100 Items"))

    assert info.items_per_page == 24
    assert info.total_pages == 5


def test_resolver_handles_marker_split_across_tags():
    html = _page("You've viewed <b>30</b> of <b>95</b> items")

    assert PaginationResolver(SELECTOR).resolve(html).total_pages == 4


def test_resolver_returns_none_without_marker():
    assert PaginationResolver(SELECTOR).resolve("<html><body><p>No grid</p></body></html>") is None


def test_resolver_returns_none_for_malformed_marker():
    assert PaginationResolver(SELECTOR).resolve(_page("lots of items")) is None
