from typing import List, Protocol

from clearance.normalizers.item import DealItem


class DealFeed(Protocol):
    """Source de deals: primaire (API amont) ou secours (scraper)."""

    def fetch(self, query: str, limit: int) -> List[DealItem]:
        ...
