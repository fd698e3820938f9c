from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from clearance.models.base import Base
from clearance.normalizers.item import MAX_SKU_LENGTH, MAX_TITLE_LENGTH


def _as_float(value: Optional[Decimal]) -> Optional[float]:
    return float(value) if value is not None else None


class Deal(Base):
    """
    Produit du catalogue amont, normalisé.

    Clé naturelle: sku (unique).
    - Un deal absent du dernier cycle complet a ses deux flags de
      disponibilité à False (masqué, jamais supprimé).
    - created_at n'est jamais réécrit après l'insert.
    - is_featured n'est modifié que par la curation admin.
    """
    __tablename__ = "deals"

    id: Mapped[int] = mapped_column(primary_key=True)
    sku: Mapped[str] = mapped_column(String(MAX_SKU_LENGTH), nullable=False)

    title: Mapped[str] = mapped_column(String(MAX_TITLE_LENGTH), nullable=False, default="")
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    image_url: Mapped[str] = mapped_column(Text, nullable=False, default="")

    current_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=0)
    original_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    discount_percent: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2), nullable=True)
    # Terminaison de prix "markdown" (.06, .04, .03, .02), NULL sinon
    price_ending: Mapped[Optional[str]] = mapped_column(String(3), nullable=True)

    category_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("categories.id", ondelete="SET NULL"), nullable=True
    )

    online_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    in_store_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    availability_data: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    store_locations: Mapped[List[Any]] = mapped_column(JSON, nullable=False, default=list)

    is_featured: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    source: Mapped[str] = mapped_column(String(20), nullable=False, default="api")

    last_updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    category = relationship("Category", lazy="joined")

    __table_args__ = (
        Index("ix_deals_sku", "sku", unique=True),
        Index("ix_deals_price_ending", "price_ending"),
        Index("ix_deals_featured_updated", "is_featured", "last_updated_at"),
        Index("ix_deals_category", "category_id"),
    )

    def __repr__(self) -> str:
        return f"<Deal sku={self.sku} price={self.current_price} ending={self.price_ending}>"

    @property
    def is_available(self) -> bool:
        return bool(self.online_available or self.in_store_available)

    def to_api_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "sku": self.sku,
            "title": self.title,
            "description": self.description,
            "image_url": self.image_url,
            "current_price": _as_float(self.current_price),
            "original_price": _as_float(self.original_price),
            "discount_percent": _as_float(self.discount_percent),
            "price_ending": self.price_ending,
            "category_id": self.category_id,
            "category": self.category.name if self.category else None,
            "online_available": self.online_available,
            "in_store_available": self.in_store_available,
            "availability_data": self.availability_data or {},
            "store_locations": self.store_locations or [],
            "is_featured": self.is_featured,
            "source": self.source,
            "last_updated": self.last_updated_at.isoformat() if self.last_updated_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
