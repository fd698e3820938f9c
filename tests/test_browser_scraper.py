"""Tests for the browser fallback: JSON-LD extraction and availability checks."""
import json
from decimal import Decimal

import pytest

from clearance.collectors import browser
from clearance.collectors.browser import BrowserScraper, extract_products
from clearance.core.exceptions import ScraperUnavailableError
from clearance.normalizers.item import DealSource


def ld_script(data):
    return f'<script type="application/ld+json">{json.dumps(data)}</script>'


PRODUCT = {"@type": "Product", "sku": "311", "name": "Shop Vac", "offers": {"price": "59.02"}}

PAGE = "<html><head>{}{}{}</head></html>".format(
    ld_script(PRODUCT),
    ld_script({
        "@type": "ItemList",
        "itemListElement": [
            {"@type": "ListItem", "item": {"@type": "Product", "sku": "412", "offers": {"price": 9.04}}},
            {"@type": "ListItem", "item": {"@type": "Thing", "name": "not a product"}},
        ],
    }),
    '<script type="application/ld+json">{broken json</script>',
)


class TestExtraction:

    def test_products_and_item_lists(self):
        assert [p["sku"] for p in extract_products(PAGE)] == ["311", "412"]

    def test_graph_container(self):
        html = ld_script({"@context": "https://schema.org", "@graph": [PRODUCT, {"@type": "Organization"}]})
        assert [p["sku"] for p in extract_products(html)] == ["311"]

    @pytest.mark.parametrize("html", ["", None, "<html></html>"])
    def test_nothing_to_extract(self, html):
        assert extract_products(html) == []


class TestAvailability:

    def test_missing_playwright(self, monkeypatch):
        monkeypatch.setattr(browser, "PLAYWRIGHT_AVAILABLE", False)
        with pytest.raises(ScraperUnavailableError):
            BrowserScraper(start_urls=["https://example.com/clearance"]).fetch("clearance", 10)

    def test_no_start_urls(self, monkeypatch):
        monkeypatch.setattr(browser, "PLAYWRIGHT_AVAILABLE", True)
        with pytest.raises(ScraperUnavailableError):
            BrowserScraper(start_urls=[]).fetch("clearance", 10)


class TestFetch:

    @pytest.fixture
    def scraper(self, monkeypatch):
        monkeypatch.setattr(browser, "PLAYWRIGHT_AVAILABLE", True)
        scraper = BrowserScraper(start_urls=["https://example.com/a", "https://example.com/b"])
        monkeypatch.setattr(
            scraper,
            "_render_pages",
            lambda: [("https://example.com/a", PAGE), ("https://example.com/b", ld_script({"@type": "Product"}))],
        )
        return scraper

    def test_items_are_normalized_as_scraper_deals(self, scraper):
        items = scraper.fetch("clearance", 10)

        assert [i.sku for i in items] == ["311", "412"]
        assert items[0].current_price == Decimal("59.02")
        assert items[1].price_ending == ".04"
        assert all(i.source == DealSource.SCRAPER for i in items)

    def test_limit(self, scraper):
        assert len(scraper.fetch("clearance", 1)) == 1
