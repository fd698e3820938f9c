"""
Read path des deals.

Politique par défaut:
- disponible sur au moins un canal (online OU magasin), sauf online_only / in_store_only
- markdowns uniquement (.06, .04, .03, .02), sauf show_all ou price_ending explicite
- tri: mis en avant d'abord, puis plus récemment mis à jour
"""
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clearance.core.exceptions import PersistenceError
from clearance.core.logging import get_logger
from clearance.normalizers.item import MARKDOWN_ENDINGS
from clearance.repositories.category_repository import CategoryRepository
from clearance.repositories.deal_repository import (
    AVAILABILITY_ANY,
    AVAILABILITY_IN_STORE,
    AVAILABILITY_ONLINE,
    DealQuery,
    DealRepository,
)
from clearance.services.cache_service import CACHE_TTL, CacheService

logger = get_logger(__name__)

DEFAULT_LIMIT = 30
MAX_LIMIT = 100


def store_unavailable(message: str) -> Dict[str, str]:
    return {"type": "store_unavailable", "message": message}


@dataclass
class DealFilters:
    sku: Optional[str] = None
    price_ending: Optional[str] = None
    category_id: Optional[int] = None
    min_discount: Optional[float] = None
    max_discount: Optional[float] = None
    zip_code: Optional[str] = None
    online_only: bool = False
    in_store_only: bool = False
    featured_only: bool = False
    show_all: bool = False
    page: int = 1
    limit: int = DEFAULT_LIMIT

    def __post_init__(self):
        self.page = max(1, int(self.page))
        self.limit = max(1, min(int(self.limit), MAX_LIMIT))
        if self.price_ending and not self.price_ending.startswith("."):
            self.price_ending = f".{self.price_ending}"

    def to_query(self) -> DealQuery:
        if self.online_only:
            availability = AVAILABILITY_ONLINE
        elif self.in_store_only:
            availability = AVAILABILITY_IN_STORE
        else:
            availability = AVAILABILITY_ANY

        if self.price_ending:
            endings = [self.price_ending]
        elif self.show_all:
            endings = None
        else:
            endings = list(MARKDOWN_ENDINGS)

        return DealQuery(
            sku=self.sku,
            price_endings=endings,
            category_id=self.category_id,
            min_discount=self.min_discount,
            max_discount=self.max_discount,
            location=self.zip_code,
            availability=availability,
            featured_only=self.featured_only,
            offset=(self.page - 1) * self.limit,
            # Marge pour la déduplication par sku
            limit=self.limit * 2,
        )


def dedupe_by_sku(deals: List[Dict[str, Any]], limit: int) -> List[Dict[str, Any]]:
    seen = set()
    unique = []
    for deal in deals:
        if deal["sku"] in seen:
            continue
        seen.add(deal["sku"])
        unique.append(deal)
    return unique[:limit]


class DealQueryService:
    def __init__(self, session: Session, cache: CacheService):
        self.session = session
        self.cache = cache
        self.deals = DealRepository(session)
        self.categories = CategoryRepository(session)

    def list(self, filters: DealFilters) -> Dict[str, Any]:
        key = self.cache.deals_list_key(asdict(filters))

        def compute() -> Dict[str, Any]:
            rows = self.deals.query(filters.to_query())
            return {
                "deals": dedupe_by_sku([deal.to_api_dict() for deal in rows], filters.limit),
                "page": filters.page,
                "limit": filters.limit,
            }

        try:
            return self.cache.get_or_compute(key, compute, CACHE_TTL["deals_list"])
        except (SQLAlchemyError, PersistenceError) as e:
            logger.error(f"Deal listing failed: {e}", error_type=type(e).__name__)
            self.session.rollback()
            return {
                "deals": [],
                "page": filters.page,
                "limit": filters.limit,
                "error": store_unavailable("Failed to fetch deals"),
            }

    def get(self, deal_id: int) -> Optional[Dict[str, Any]]:
        """Deal sérialisé, None si inconnu, {"deal": None, "error": ...} si la base tombe."""
        def compute():
            deal = self.deals.get(deal_id)
            return deal.to_api_dict() if deal else None

        try:
            return self.cache.get_or_compute(self.cache.deal_key(deal_id), compute, CACHE_TTL["deal_single"])
        except SQLAlchemyError as e:
            logger.error(f"Deal lookup failed: {e}", error_type=type(e).__name__, deal_id=deal_id)
            self.session.rollback()
            return {"deal": None, "error": store_unavailable("Failed to fetch deal")}

    def list_categories(self, active_only: bool = True) -> Dict[str, Any]:
        def compute():
            return [c.to_api_dict() for c in self.categories.list(active_only=active_only)]

        try:
            categories = self.cache.get_or_compute(
                self.cache.categories_key(active_only), compute, CACHE_TTL["categories"]
            )
        except SQLAlchemyError as e:
            logger.error(f"Category listing failed: {e}", error_type=type(e).__name__)
            self.session.rollback()
            return {"categories": [], "error": store_unavailable("Failed to fetch categories")}
        return {"categories": categories}
