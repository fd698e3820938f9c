from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import String, cast, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from clearance.core.exceptions import PersistenceError
from clearance.core.logging import get_logger, timed
from clearance.models.deal import Deal
from clearance.normalizers.item import DealItem
from clearance.repositories.category_repository import CategoryRepository

logger = get_logger(__name__)

# Politiques de disponibilité
AVAILABILITY_ANY = "any"            # online OU magasin
AVAILABILITY_ONLINE = "online"
AVAILABILITY_IN_STORE = "in_store"


@dataclass
class DealQuery:
    """Critères de recherche sur les deals persistés."""
    sku: Optional[str] = None
    price_endings: Optional[Sequence[str]] = None
    category_id: Optional[int] = None
    min_discount: Optional[float] = None
    max_discount: Optional[float] = None
    location: Optional[str] = None
    availability: Optional[str] = AVAILABILITY_ANY
    featured_only: bool = False
    offset: int = 0
    limit: int = 30


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class DealRepository:
    """
    Repository pour la persistance des deals.
    Upsert basé sur la clé naturelle sku.
    """

    def __init__(self, session: Session, clock: Callable[[], datetime] = datetime.utcnow):
        self.session = session
        self._clock = clock
        self._categories = CategoryRepository(session)

    def upsert(self, item: DealItem) -> Tuple[Deal, bool]:
        """
        Insert ou update un deal par sku.

        - Si le deal existe: mise à jour des champs catalogue, created_at et
          is_featured conservés
        - Sinon: insert dans un SAVEPOINT; une violation d'unicité (insert
          concurrent) est convertie en update

        Returns: (deal, is_new)
        """
        if not item.sku:
            raise PersistenceError("Cannot persist a deal without sku")

        now = self._clock()
        try:
            existing = self.find_by_sku(item.sku)
            if existing is not None:
                self._apply(existing, item, now)
                self.session.flush()
                return existing, False

            deal = Deal(sku=item.sku, created_at=now, is_featured=False)
            self._apply(deal, item, now)
            try:
                with self.session.begin_nested():
                    self.session.add(deal)
            except IntegrityError:
                logger.info("Duplicate sku on insert, updating instead", sku=item.sku)
                existing = self.find_by_sku(item.sku)
                if existing is None:
                    raise
                self._apply(existing, item, now)
                self.session.flush()
                return existing, False
            return deal, True
        except SQLAlchemyError as e:
            raise PersistenceError(f"Upsert failed for sku {item.sku}: {e}", detail={"sku": item.sku}) from e

    def _apply(self, deal: Deal, item: DealItem, now: datetime):
        deal.title = item.title
        deal.description = item.description
        deal.image_url = item.image_url
        deal.current_price = item.current_price
        deal.original_price = item.original_price
        deal.discount_percent = item.discount_percent
        deal.price_ending = item.price_ending
        deal.online_available = item.online_available
        deal.in_store_available = item.in_store_available
        deal.availability_data = item.availability_data
        deal.store_locations = item.store_locations
        deal.source = item.source.value
        deal.last_updated_at = now

        category = self._categories.resolve(item.category_id, item.category_hint)
        if category is not None:
            deal.category_id = category.id

    def find_by_sku(self, sku: str) -> Optional[Deal]:
        return self.session.scalars(select(Deal).where(Deal.sku == sku)).first()

    def get(self, deal_id: int) -> Optional[Deal]:
        return self.session.get(Deal, deal_id)

    def query(self, criteria: DealQuery) -> List[Deal]:
        stmt = select(Deal)

        if criteria.sku:
            stmt = stmt.where(Deal.sku.ilike(f"%{_escape_like(criteria.sku)}%", escape="\\"))
        if criteria.price_endings:
            stmt = stmt.where(Deal.price_ending.in_(list(criteria.price_endings)))
        if criteria.category_id is not None:
            stmt = stmt.where(Deal.category_id == criteria.category_id)
        if criteria.min_discount is not None:
            stmt = stmt.where(Deal.discount_percent >= criteria.min_discount)
        if criteria.max_discount is not None:
            stmt = stmt.where(Deal.discount_percent <= criteria.max_discount)

        if criteria.availability == AVAILABILITY_ONLINE:
            stmt = stmt.where(Deal.online_available.is_(True))
        elif criteria.availability == AVAILABILITY_IN_STORE:
            stmt = stmt.where(Deal.in_store_available.is_(True))
        elif criteria.availability == AVAILABILITY_ANY:
            stmt = stmt.where(or_(Deal.online_available.is_(True), Deal.in_store_available.is_(True)))

        if criteria.featured_only:
            stmt = stmt.where(Deal.is_featured.is_(True))

        if criteria.location:
            # Recherche textuelle dans les données de localisation brutes
            pattern = f"%{_escape_like(criteria.location)}%"
            stmt = stmt.where(or_(
                cast(Deal.availability_data, String).like(pattern, escape="\\"),
                cast(Deal.store_locations, String).like(pattern, escape="\\"),
            ))

        stmt = (
            stmt.order_by(Deal.is_featured.desc(), Deal.last_updated_at.desc(), Deal.id.desc())
            .offset(max(criteria.offset, 0))
            .limit(criteria.limit)
        )
        return list(self.session.scalars(stmt).unique())

    @timed(logger)
    def mark_unavailable_except(self, seen: Iterable[str]) -> int:
        """
        Passe à indisponible (online et magasin) tout deal actuellement
        disponible dont le sku n'est pas dans `seen`. Un seul UPDATE.

        Un ensemble vide ne touche rien et renvoie 0.
        """
        seen = set(seen)
        if not seen:
            return 0
        stmt = (
            update(Deal)
            .where(Deal.sku.not_in(sorted(seen)))
            .where(or_(Deal.online_available.is_(True), Deal.in_store_available.is_(True)))
            .values(online_available=False, in_store_available=False, last_updated_at=self._clock())
            .execution_options(synchronize_session=False)
        )
        try:
            result = self.session.execute(stmt)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Reconciliation failed: {e}") from e
        return result.rowcount or 0

    def set_featured(self, deal_id: int, featured: bool) -> Optional[Deal]:
        deal = self.get(deal_id)
        if deal is None:
            return None
        deal.is_featured = featured
        self.session.flush()
        return deal
