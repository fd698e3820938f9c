"""
Scraper de secours (Playwright), utilisé uniquement quand l'API amont ne
renvoie rien.

Le contrat de sortie est le même que le fetcher principal: des DealItem
normalisés, source=scraper. L'extraction se limite aux blocs JSON-LD
Product / ItemList exposés par les pages listées dans SCRAPER_START_URLS.
"""
import json
import re
from typing import Any, Dict, List, Optional

from clearance.core.config import SCRAPER_START_URLS
from clearance.core.exceptions import NormalizationError, ScraperUnavailableError
from clearance.core.logging import get_logger
from clearance.normalizers.item import DealItem, DealSource
from clearance.normalizers.upstream import ensure_storable, normalize_record

logger = get_logger(__name__)

# Flag pour vérifier si Playwright est disponible
PLAYWRIGHT_AVAILABLE = False
try:
    from playwright.sync_api import Error as PlaywrightError
    from playwright.sync_api import sync_playwright
    PLAYWRIGHT_AVAILABLE = True
except ImportError:
    logger.warning("Playwright not installed - browser fallback disabled")

_JSON_LD = re.compile(r'<script[^>]+type="application/ld\+json"[^>]*>([\s\S]*?)</script>', re.IGNORECASE)


def _walk_products(node: Any, out: List[Dict[str, Any]]):
    if isinstance(node, list):
        for child in node:
            _walk_products(child, out)
        return
    if not isinstance(node, dict):
        return
    kind = node.get("@type")
    if kind == "Product" or (isinstance(kind, list) and "Product" in kind):
        out.append(node)
    elif kind == "ItemList":
        for element in node.get("itemListElement") or []:
            if isinstance(element, dict):
                _walk_products(element.get("item", element), out)
    if "@graph" in node:
        _walk_products(node["@graph"], out)


def extract_products(html: str) -> List[Dict[str, Any]]:
    """Extrait les objets JSON-LD Product d'une page HTML."""
    products: List[Dict[str, Any]] = []
    for match in _JSON_LD.findall(html or ""):
        try:
            data = json.loads(match.strip())
        except (json.JSONDecodeError, ValueError):
            continue
        _walk_products(data, products)
    return products


class BrowserScraper:
    def __init__(
        self,
        start_urls: Optional[List[str]] = None,
        timeout: int = 30,
        headless: bool = True,
    ):
        self.start_urls = list(start_urls if start_urls is not None else SCRAPER_START_URLS)
        self.timeout = timeout
        self.headless = headless

    def fetch(self, query: str, limit: int) -> List[DealItem]:
        if not PLAYWRIGHT_AVAILABLE:
            raise ScraperUnavailableError("Playwright not installed")
        if not self.start_urls:
            raise ScraperUnavailableError("No scraper start URLs configured")

        pages = self._render_pages()
        items: List[DealItem] = []
        for url, html in pages:
            for raw in extract_products(html):
                item = normalize_record(raw, source=DealSource.SCRAPER)
                try:
                    ensure_storable(item)
                except NormalizationError as e:
                    logger.warning(f"Product skipped: {e}", source="scraper", url=url)
                    continue
                if item.sku:
                    items.append(item)
                if len(items) >= limit:
                    break
            logger.info(f"Scraped {len(items)} deals so far", source="scraper", url=url, query=query)
            if len(items) >= limit:
                break
        return items[:limit]

    def _render_pages(self) -> List[tuple]:
        pages = []
        try:
            with sync_playwright() as playwright:
                browser = playwright.chromium.launch(
                    headless=self.headless,
                    args=["--disable-blink-features=AutomationControlled", "--no-sandbox"],
                )
                try:
                    page = browser.new_page()
                    for url in self.start_urls:
                        try:
                            page.goto(url, timeout=self.timeout * 1000, wait_until="domcontentloaded")
                            pages.append((url, page.content()))
                        except PlaywrightError as e:
                            logger.warning(f"Page load failed: {e}", source="scraper", url=url)
                finally:
                    browser.close()
        except PlaywrightError as e:
            raise ScraperUnavailableError(f"Browser launch failed: {e}") from e
        return pages
