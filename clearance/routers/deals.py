"""
Deals Router - lecture des deals persistés.
Endpoints: /v1/deals/*
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from clearance.db.deps import get_db
from clearance.deps import get_cache
from clearance.services.cache_service import CacheService
from clearance.services.deal_query_service import DEFAULT_LIMIT, MAX_LIMIT, DealFilters, DealQueryService

router = APIRouter(prefix="/v1/deals", tags=["deals"])


@router.get("")
def list_deals(
    sku: Optional[str] = None,
    price_ending: Optional[str] = Query(None, pattern=r"^\.?\d{2}$"),
    category_id: Optional[int] = None,
    min_discount: Optional[float] = Query(None, ge=0, le=100),
    max_discount: Optional[float] = Query(None, ge=0, le=100),
    zip_code: Optional[str] = None,
    online_only: bool = False,
    in_store_only: bool = False,
    featured_only: bool = False,
    show_all: bool = False,
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT),
    db: Session = Depends(get_db),
    cache: CacheService = Depends(get_cache),
):
    """
    List available deals.

    Default visibility: markdown price endings only (.06, .04, .03, .02),
    available online or in store. `show_all` or an explicit `price_ending`
    lifts the markdown filter.
    """
    filters = DealFilters(
        sku=sku,
        price_ending=price_ending,
        category_id=category_id,
        min_discount=min_discount,
        max_discount=max_discount,
        zip_code=zip_code,
        online_only=online_only,
        in_store_only=in_store_only,
        featured_only=featured_only,
        show_all=show_all,
        page=page,
        limit=limit,
    )
    result = DealQueryService(db, cache).list(filters)
    if "error" in result:
        return JSONResponse(status_code=503, content=result)
    return result


@router.get("/categories")
def list_categories(db: Session = Depends(get_db), cache: CacheService = Depends(get_cache)):
    """Active categories."""
    result = DealQueryService(db, cache).list_categories(active_only=True)
    if "error" in result:
        return JSONResponse(status_code=503, content=result)
    return result


@router.get("/{deal_id}")
def get_deal(deal_id: int, db: Session = Depends(get_db), cache: CacheService = Depends(get_cache)):
    deal = DealQueryService(db, cache).get(deal_id)
    if deal is None:
        raise HTTPException(status_code=404, detail="Deal not found")
    if "error" in deal:
        return JSONResponse(status_code=503, content=deal)
    return deal
