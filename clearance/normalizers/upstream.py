"""
Normalisation des enregistrements bruts du catalogue amont.

Les formes renvoyées par l'acteur amont varient (champs à plat, objets
`pricing` / `fulfillment` / `media` imbriqués, JSON-LD schema.org côté
scraper). Chaque attribut est résolu via une table de priorité de chemins
pointés: le premier candidat présent, non vide et parsable gagne.

Aucune I/O, aucune exception: une entrée inexploitable donne un DealItem
avec les valeurs par défaut. Les valeurs hors colonnes sont tronquées
(title) ou écartées (prix); seul ensure_storable lève, pour un sku trop long.
"""
import re
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Callable, Dict, Optional, Tuple

from clearance.core.exceptions import NormalizationError
from clearance.normalizers.item import (
    MARKDOWN_ENDINGS,
    MAX_PRICE,
    MAX_SKU_LENGTH,
    MAX_TITLE_LENGTH,
    DealItem,
    DealSource,
)

_PRICE_PATHS_PRICING = tuple(
    f"pricing.{key}"
    for key in (
        "currentPrice", "price", "regularPrice", "unitPrice", "salePrice", "finalPrice",
        "displayPrice", "amount", "current", "now", "today", "value",
    )
) + tuple(
    f"pricing.{group}.{key}"
    for group, keys in (
        ("regular", ("amount", "price", "value")),
        ("sale", ("amount", "price", "value")),
        ("current", ("amount", "price", "value")),
        ("original", ("amount", "price")),
    )
    for key in keys
) + ("pricing.0.amount", "pricing.0.price", "pricing.0.value")

FIELD_PRIORITY: Dict[str, Tuple[str, ...]] = {
    "sku": (
        "storeSkuNumber", "sku", "productId", "product_id", "itemNumber", "model",
        "itemId", "id", "productNumber", "productID", "mpn",
    ),
    "title": (
        "productLabel", "title", "name", "productName", "productTitle", "displayName",
        "productDisplayName", "brandName", "brand.name",
    ),
    "description": ("description", "productDescription", "url"),
    "current_price": (
        ("sskMax", "sskMin")
        + _PRICE_PATHS_PRICING
        + (
            "fulfillment.pricing.currentPrice", "fulfillment.pricing.price",
            "fulfillment.price", "fulfillment.currentPrice", "fulfillment.amount",
            "price", "currentPrice", "current_price", "priceValue", "unitPrice",
            # JSON-LD
            "offers.price", "offers.0.price", "offers.lowPrice",
        )
    ),
    "original_price": (
        "wasMaxPriceRange", "wasMinPriceRange",
        "pricing.originalPrice", "pricing.listPrice", "pricing.wasPrice",
        "pricing.regular.amount", "pricing.original.amount",
        "originalPrice", "original_price", "listPrice", "regularPrice",
        "fulfillment.pricing.originalPrice",
        "offers.highPrice",
    ),
    "image_url": (
        "media.primaryImage", "media.image", "media.thumbnail", "media.images.0.url",
        "image", "imageUrl", "image_url", "thumbnail", "photo", "productImage",
        "primaryImage", "images.0", "image.0", "image.url",
    ),
    "category_id": ("categoryId", "category_id"),
    "category_hint": (
        "categoryName", "category_name", "categoryHierarchy.-1", "categories.-1",
        "categorySlug", "category_slug", "category",
    ),
    "availability_data": ("availability", "availabilityData"),
    "store_locations": ("storeLocations", "store_locations"),
}

# Pour chaque canal, le premier signal présent décide.
# Seul un "false" explicite rend le canal indisponible; absence = disponible.
AVAILABILITY_SIGNALS: Dict[str, Tuple[str, ...]] = {
    "online_available": (
        "onlineAvailable", "availableOnline", "fulfillment.online", "availabilityType.online",
    ),
    "in_store_available": (
        "inStoreAvailable", "availableInStore", "storeAvailable",
        "fulfillment.inStore", "availabilityType.inStore",
    ),
}

_MISSING = object()
_CENT = Decimal("0.01")
_NON_PRICE_CHARS = re.compile(r"[^0-9.\-]")


def _lookup(raw: Any, path: str) -> Any:
    """Résout un chemin pointé (clés de dict, index de liste, -1 inclus)."""
    current = raw
    for part in path.split("."):
        if isinstance(current, dict):
            if part not in current:
                return _MISSING
            current = current[part]
        elif isinstance(current, list):
            try:
                index = int(part)
            except ValueError:
                return _MISSING
            if not -len(current) <= index < len(current):
                return _MISSING
            current = current[index]
        else:
            return _MISSING
    return current


def _is_empty(value: Any) -> bool:
    return value is _MISSING or value is None or value == "" or value == [] or value == {}


def _first(raw: Any, paths: Tuple[str, ...], parse: Callable[[Any], Any]) -> Any:
    for path in paths:
        value = _lookup(raw, path)
        if _is_empty(value):
            continue
        parsed = parse(value)
        if parsed is not None:
            return parsed
    return None


def parse_price(value: Any) -> Optional[Decimal]:
    """
    Prix positif en Decimal tronqué au centime, ou None (absent, illisible,
    <= 0, hors de Numeric(10,2)).
    """
    if isinstance(value, bool):
        return None
    try:
        if isinstance(value, (int, float)):
            price = Decimal(str(value))
        elif isinstance(value, str):
            cleaned = _NON_PRICE_CHARS.sub("", value)
            if not cleaned:
                return None
            price = Decimal(cleaned)
        else:
            return None
    except InvalidOperation:
        return None
    if not price.is_finite() or price > MAX_PRICE:
        return None
    # Tronqué comme price_ending, pour que le prix stocké et son tag concordent
    price = price.quantize(_CENT, rounding=ROUND_DOWN)
    if price <= 0:
        return None
    return price


def _parse_text(value: Any) -> Optional[str]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return None


def _parse_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _parse_dict(value: Any) -> Optional[dict]:
    return value if isinstance(value, dict) else None


def _parse_list(value: Any) -> Optional[list]:
    return value if isinstance(value, list) else None


def _parse_flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() not in ("false", "0", "no", "")
    if isinstance(value, (int, float)):
        return value != 0
    return bool(value)


def _availability(raw: Any, paths: Tuple[str, ...]) -> bool:
    for path in paths:
        value = _lookup(raw, path)
        if value is _MISSING or value is None or value == "":
            continue
        return _parse_flag(value)
    return True


def extract_price_ending(price: Any) -> Optional[str]:
    """
    Terminaison markdown du prix (".06", ".04", ".03", ".02") ou None.

    Le prix est tronqué à deux décimales avant lecture des deux chiffres
    après le point.
    """
    if price is None or isinstance(price, bool):
        return None
    try:
        truncated = Decimal(str(price)).quantize(_CENT, rounding=ROUND_DOWN)
    except InvalidOperation:
        return None
    if not truncated.is_finite():
        return None
    ending = "." + f"{truncated:.2f}".split(".")[1]
    return ending if ending in MARKDOWN_ENDINGS else None


def calculate_discount(current: Optional[Decimal], original: Optional[Decimal]) -> Optional[Decimal]:
    """Remise en % arrondie à 2 décimales, None si original absent ou <= current."""
    if current is None or original is None or original <= 0 or original <= current:
        return None
    current = Decimal(str(current))
    original = Decimal(str(original))
    return (100 * (original - current) / original).quantize(_CENT, rounding=ROUND_HALF_UP)


def normalize_record(raw: Any, source: DealSource = DealSource.API) -> DealItem:
    """Transforme un enregistrement brut en DealItem. Ne lève jamais."""
    if not isinstance(raw, dict):
        raw = {}

    sku = _first(raw, FIELD_PRIORITY["sku"], _parse_text) or ""
    title = _first(raw, FIELD_PRIORITY["title"], _parse_text)
    if not title:
        title = f"Product {sku}" if sku else ""
    title = title[:MAX_TITLE_LENGTH]

    current_price = _first(raw, FIELD_PRIORITY["current_price"], parse_price) or Decimal("0")
    original_price = _first(raw, FIELD_PRIORITY["original_price"], parse_price)

    image_url = _first(raw, FIELD_PRIORITY["image_url"], _parse_text) or ""
    image_url = image_url.replace("<SIZE>", "600")

    return DealItem(
        sku=sku,
        title=title,
        description=_first(raw, FIELD_PRIORITY["description"], _parse_text) or "",
        image_url=image_url,
        current_price=current_price,
        original_price=original_price,
        discount_percent=calculate_discount(current_price, original_price),
        price_ending=extract_price_ending(current_price) if current_price > 0 else None,
        category_id=_first(raw, FIELD_PRIORITY["category_id"], _parse_int),
        category_hint=_first(raw, FIELD_PRIORITY["category_hint"], _parse_text),
        online_available=_availability(raw, AVAILABILITY_SIGNALS["online_available"]),
        in_store_available=_availability(raw, AVAILABILITY_SIGNALS["in_store_available"]),
        availability_data=_first(raw, FIELD_PRIORITY["availability_data"], _parse_dict) or {},
        store_locations=_first(raw, FIELD_PRIORITY["store_locations"], _parse_list) or [],
        source=source,
    )


def ensure_storable(item: DealItem) -> DealItem:
    """
    Rejette un item dont le sku dépasse la colonne (NormalizationError).

    Le sku est la clé naturelle: on ne le tronque pas, deux produits
    distincts finiraient sur la même ligne.
    """
    if len(item.sku) > MAX_SKU_LENGTH:
        raise NormalizationError(
            f"sku longer than {MAX_SKU_LENGTH} characters",
            source=item.source.value,
            detail={"sku": item.sku[:40]},
        )
    return item
