"""
Admin Router - curation et pilotage du pipeline.
Endpoints: /v1/admin/*
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from rq import Queue
from rq.exceptions import NoSuchJobError
from rq.job import Job
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from clearance.core.logging import get_logger
from clearance.core.security import require_admin
from clearance.db.deps import get_db
from clearance.deps import get_cache, get_refresh_queue
from clearance.jobs_refresh import find_active_refresh, manual_refresh
from clearance.models.activity_log import ActivityType
from clearance.repositories.activity_log_repository import MAX_LIST_LIMIT, ActivityLogRepository
from clearance.repositories.category_repository import CategoryRepository
from clearance.repositories.deal_repository import DealRepository
from clearance.scheduler import get_scheduled_jobs_info
from clearance.services.cache_service import CacheService
from clearance.services.refresh_coordinator import refresh_job_timeout

logger = get_logger(__name__)

router = APIRouter(prefix="/v1/admin", tags=["admin"], dependencies=[Depends(require_admin)])


class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    slug: Optional[str] = Field(None, max_length=100)
    is_active: bool = True


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    slug: Optional[str] = Field(None, max_length=100)
    is_active: Optional[bool] = None


class FeatureUpdate(BaseModel):
    is_featured: bool


# =============================================================================
# REFRESH
# =============================================================================

@router.post("/refresh", status_code=202)
def trigger_refresh(queue: Queue = Depends(get_refresh_queue)):
    """Enqueue a manual refresh cycle, unless a refresh is already running or queued."""
    active = find_active_refresh(queue.connection)
    if active is not None:
        logger.info("Refresh already running or queued, manual trigger skipped", job_id=active)
        return {"job_id": active, "status": "skipped"}

    job = queue.enqueue(manual_refresh, job_timeout=refresh_job_timeout(), result_ttl=3600)
    logger.info("Manual refresh enqueued", job_id=job.id)
    return {"job_id": job.id, "status": "queued"}


@router.get("/refresh/schedule")
def refresh_schedule():
    return {"jobs": get_scheduled_jobs_info()}


@router.get("/refresh/{job_id}")
def refresh_status(job_id: str, queue: Queue = Depends(get_refresh_queue)):
    try:
        job = Job.fetch(job_id, connection=queue.connection)
    except NoSuchJobError:
        raise HTTPException(status_code=404, detail="Job not found")

    status = job.get_status()
    response = {"job_id": job.id, "status": getattr(status, "value", status)}
    if job.is_finished:
        response["result"] = job.return_value()
    elif job.is_failed:
        response["error"] = job.exc_info
    return response


# =============================================================================
# LOGS
# =============================================================================

@router.get("/logs")
def list_logs(
    type: Optional[ActivityType] = None,
    limit: int = Query(100, ge=1, le=MAX_LIST_LIMIT),
    db: Session = Depends(get_db),
):
    entries = ActivityLogRepository(db).list(kind=type.value if type else None, limit=limit)
    return {"logs": [entry.to_api_dict() for entry in entries], "count": len(entries)}


# =============================================================================
# CATEGORIES
# =============================================================================

@router.get("/categories")
def list_categories(db: Session = Depends(get_db)):
    return {"categories": [c.to_api_dict() for c in CategoryRepository(db).list()]}


@router.post("/categories", status_code=201)
def create_category(
    body: CategoryCreate,
    db: Session = Depends(get_db),
    cache: CacheService = Depends(get_cache),
):
    try:
        category = CategoryRepository(db).create(body.name, slug=body.slug, is_active=body.is_active)
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail="Category name or slug already exists")
    cache.invalidate_categories()
    return category.to_api_dict()


@router.put("/categories/{category_id}")
def update_category(
    category_id: int,
    body: CategoryUpdate,
    db: Session = Depends(get_db),
    cache: CacheService = Depends(get_cache),
):
    repo = CategoryRepository(db)
    category = repo.get(category_id)
    if category is None:
        raise HTTPException(status_code=404, detail="Category not found")
    try:
        repo.update(category, name=body.name, slug=body.slug, is_active=body.is_active)
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail="Category name or slug already exists")
    cache.invalidate_categories()
    cache.invalidate_deals()
    return category.to_api_dict()


# =============================================================================
# CURATION
# =============================================================================

@router.put("/deals/{deal_id}/feature")
def feature_deal(
    deal_id: int,
    body: FeatureUpdate,
    db: Session = Depends(get_db),
    cache: CacheService = Depends(get_cache),
):
    deal = DealRepository(db).set_featured(deal_id, body.is_featured)
    if deal is None:
        raise HTTPException(status_code=404, detail="Deal not found")
    db.commit()
    cache.invalidate_deals()
    logger.info(f"Deal featured={body.is_featured}", sku=deal.sku)
    return deal.to_api_dict()
