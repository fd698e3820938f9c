from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

# Terminaisons de prix signalant une démarque (clearance)
MARKDOWN_ENDINGS = (".06", ".04", ".03", ".02")

# Bornes des colonnes deals (sku, title, prix Numeric(10,2))
MAX_SKU_LENGTH = 100
MAX_TITLE_LENGTH = 500
MAX_PRICE = Decimal("99999999.99")


class DealSource(str, Enum):
    API = "api"
    SCRAPER = "scraper"


class DealItem(BaseModel):
    """Deal canonique produit par le normalizer, avant persistance."""

    sku: str = ""
    title: str = ""
    description: str = ""
    image_url: str = ""

    current_price: Decimal = Decimal("0")
    original_price: Optional[Decimal] = None
    discount_percent: Optional[Decimal] = None
    price_ending: Optional[str] = None

    # Id de catégorie fourni par l'amont, et indice textuel (nom / slug)
    category_id: Optional[int] = None
    category_hint: Optional[str] = None

    online_available: bool = True
    in_store_available: bool = True
    availability_data: Dict[str, Any] = Field(default_factory=dict)
    store_locations: List[Any] = Field(default_factory=list)

    source: DealSource = DealSource.API

    @property
    def is_markdown(self) -> bool:
        return self.price_ending in MARKDOWN_ENDINGS
