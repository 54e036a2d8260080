"""Tests for the site adapters and the registry."""

from decimal import Decimal
from urllib.parse import parse_qs, urlsplit

import pytest

from catalog_scraper.sites import SiteRegistry, UnknownSiteError
from catalog_scraper.sites.nike import NikeAdapter, base_product_path, build_wall_url
from catalog_scraper.sites.tommy import TommyHilfigerAdapter

TOMMY_PDP = """
<html><body>
  <h1 data-testid="ProductHeader-ProductName-typography-h1">  Essential   Polo </h1>
  <span data-testid="ProductHeaderPrice-PriceText-original">€ 99,90</span>
  <span data-testid="ProductHeaderPrice-PriceText-sale">€ 69,90</span>
  <div data-testid="CarouselItemWrapper"><img data-testid="prod-mainImage_img" src="//img.tommy.test/a.jpg"></div>
  <div data-testid="CarouselItemWrapper"><picture><img src="https://img.tommy.test/b.jpg"></picture></div>
  <div data-testid="CarouselItemWrapper"><img data-testid="prod-mainImage_img" src="//img.tommy.test/a.jpg"></div>
  <section id="description">
    <div data-testid="typography-div">Soft cotton piqué.</div>
    <div class="ProductAccordions_styleNumber__uzRY1">MW0MW12345</div>
  </section>
  <section id="materials-care" data-testid="accordion-materials">
    <div data-testid="typography-div">100% cotton</div>
  </section>
  <button data-testid="AddToBag-button">Add to bag</button>
</body></html>
"""

NIKE_PDP = """
<html><body>
  <h1 data-testid="product-title">Air Max 90</h1>
  <div id="price-container">
    <span data-testid="currentPrice-container">$129.99</span>
    <span data-testid="initialPrice-container">$180.00</span>
    <span data-testid="OfferPercentage">27% off</span>
  </div>
  <div id="product-description-container">
    <p>Classic comfort.</p>
    <ul><li>Foam midsole</li><li>Rubber outsole</li></ul>
  </div>
  <div id="hero-image">
    <img data-testid="HeroImg" src="https://static.nike.test/1.png">
    <img data-testid="HeroImg" src="https://static.nike.test/2.png">
  </div>
  <div class="nds-grid-item">M 8</div>
  <div class="nds-grid-item disabled">M 9</div>
</body></html>
"""


def test_registry_lists_and_creates_adapters():
    assert SiteRegistry.list_sites() == ["nike", "tommy"]
    assert isinstance(SiteRegistry.get_adapter("tommy"), TommyHilfigerAdapter)


def test_registry_rejects_unknown_site():
    with pytest.raises(UnknownSiteError, match="Unknown site"):
        SiteRegistry.get_adapter("nope")


def test_tommy_parses_detail_page():
    url = "https://nl.tommy.com/essential-polo-mw0mw12345"
    product = TommyHilfigerAdapter().parse_product(TOMMY_PDP, url)

    assert product.title == "Essential Polo"
    assert product.external_id == "MW0MW12345"
    assert product.slug == "essential-polo-mw0mw12345"
    assert product.description == "Soft cotton piqué."
    assert product.price == Decimal("69.90")
    assert product.currency == "EUR"
    assert product.status == "published"
    assert product.stock_quantity == 1
    assert [m.source_url for m in product.media] == [
        "https://img.tommy.test/a.jpg",
        "https://img.tommy.test/b.jpg",
    ]
    assert product.media[0].is_primary and not product.media[1].is_primary
    attributes = {a.name: a.value for a in product.attributes}
    assert attributes["original_price"] == "99.90"
    assert attributes["materials_care"] == "100% cotton"


def test_tommy_marks_disabled_add_to_bag_out_of_stock():
    html = TOMMY_PDP.replace(
        '<button data-testid="AddToBag-button">', '<button data-testid="AddToBag-button" disabled>'
    )
    product = TommyHilfigerAdapter().parse_product(html, "https://nl.tommy.com/polo")

    assert product.status == "out_of_stock"


def test_tommy_without_title_is_not_a_product():
    assert TommyHilfigerAdapter().parse_product("<html></html>", "https://nl.tommy.com/x") is None


def test_tommy_page_url_keeps_category_query():
    url = TommyHilfigerAdapter().build_page_url("https://nl.tommy.com/heren?color=blue", 2)

    assert url == "https://nl.tommy.com/heren?color=blue&page=2"


def test_nike_parses_detail_page():
    url = "https://www.nike.com/ca/t/air-max-90-shoes-abc/FD1234-001"
    product = NikeAdapter().parse_product(NIKE_PDP, url)

    assert product.title == "Air Max 90"
    assert product.external_id == "FD1234-001"
    assert product.slug == "air-max-90-shoes-abc"
    assert product.price == Decimal("129.99")
    assert product.currency == "CAD"
    assert product.description == "Classic comfort.\n• Foam midsole\n• Rubber outsole"
    assert len(product.media) == 2
    attributes = {a.name: a.value for a in product.attributes}
    assert attributes["original_price"] == "180.00"
    assert attributes["discount"] == "27% off"
    assert attributes["sizes"] == "M 8, M 9"
    assert product.raw["sizes"] == [
        {"size": "M 8", "in_stock": True},
        {"size": "M 9", "in_stock": False},
    ]
    assert product.status == "published"


def test_nike_ignores_implausible_prices():
    html = NIKE_PDP.replace("$129.99", "$2").replace("$180.00", "$5")
    product = NikeAdapter().parse_product(html, "https://www.nike.com/ca/t/x/Y")

    assert product.price is None
    assert product.currency is None


def test_nike_listing_url_replaces_anchor_only():
    adapter = NikeAdapter()
    url = adapter.build_listing_url(build_wall_url(anchor=0), 48)
    query = parse_qs(urlsplit(url).query)

    assert query["anchor"] == ["48"]
    assert query["count"] == ["24"]
    assert query["path"] == ["/ca/w/sale-3yaep"]
    assert query["queryType"] == ["PRODUCTS"]


def test_nike_collapses_colour_variants():
    links = [
        "https://www.nike.com/ca/t/shoe-a/AA-001",
        "https://www.nike.com/ca/t/shoe-b/BB-001",
        "https://www.nike.com/ca/t/shoe-a/AA-002",
        "https://www.nike.com/ca/t/shoe-b/BB-001",
    ]

    assert NikeAdapter().finalize_links(links) == [
        "https://www.nike.com/ca/t/shoe-a/AA-001",
        "https://www.nike.com/ca/t/shoe-b/BB-001",
    ]


def test_base_product_path_drops_last_segment():
    assert base_product_path("https://www.nike.com/ca/t/shoe-a/AA-001/") == "https://www.nike.com/ca/t/shoe-a"
