"""
Jobs RQ du rafraîchissement.

Les deux déclencheurs (planifié et manuel) passent par le même coordinator,
construit une seule fois par process worker: le verrou single-flight est
partagé tant que le worker n'exécute pas les jobs dans des process forkés
(voir worker.py, SimpleWorker).

Le verrou ne voit que le job en cours. Deux gardes complètent côté queue:
- l'API admin n'enqueue rien si un refresh est déjà en cours ou en attente
  (find_active_refresh);
- un job mis en file pendant un cycle est ignoré à son démarrage, via son
  enqueued_at comparé à la fin du dernier cycle.
"""
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from rq import Queue, get_current_job
from rq.job import Job

from clearance.collectors.apify import ApifyFetcher
from clearance.collectors.browser import BrowserScraper
from clearance.core.logging import get_logger
from clearance.deps import get_redis_resource
from clearance.services.activity_log import ActivityLogger
from clearance.services.cache_service import CacheService
from clearance.services.refresh_coordinator import RefreshCoordinator

logger = get_logger(__name__)

# Queues écoutées par worker.py
REFRESH_QUEUES = ("high", "default")
REFRESH_JOB_FUNCS = (f"{__name__}.scheduled_refresh", f"{__name__}.manual_refresh")

_coordinator: Optional[RefreshCoordinator] = None
_coordinator_lock = threading.Lock()


def build_coordinator() -> RefreshCoordinator:
    activity = ActivityLogger()
    return RefreshCoordinator(
        primary=ApifyFetcher(activity=activity),
        fallback=BrowserScraper(),
        cache=CacheService(get_redis_resource()),
        activity=activity,
    )


def get_coordinator() -> RefreshCoordinator:
    global _coordinator
    with _coordinator_lock:
        if _coordinator is None:
            _coordinator = build_coordinator()
        return _coordinator


def find_active_refresh(connection, exclude_job_id: Optional[str] = None) -> Optional[str]:
    """Id d'un job de refresh en cours ou en file sur les queues du worker, sinon None."""
    for name in REFRESH_QUEUES:
        queue = Queue(name, connection=connection)
        job_ids = [
            job_id
            for job_id in queue.started_job_registry.get_job_ids() + queue.get_job_ids()
            if job_id != exclude_job_id
        ]
        for job in Job.fetch_many(job_ids, connection=connection):
            if job is not None and job.func_name in REFRESH_JOB_FUNCS:
                return job.id
    return None


def _requested_at() -> Optional[datetime]:
    """enqueued_at du job courant, en UTC naïf comme l'horloge du coordinator."""
    job = get_current_job()
    if job is None or job.enqueued_at is None:
        return None
    enqueued_at = job.enqueued_at
    if enqueued_at.tzinfo is not None:
        enqueued_at = enqueued_at.astimezone(timezone.utc).replace(tzinfo=None)
    return enqueued_at


def scheduled_refresh() -> Dict[str, Any]:
    """Job planifié (rq-scheduler)."""
    result = get_coordinator().run_cycle("scheduled", requested_at=_requested_at())
    logger.info(f"Scheduled refresh finished: {result.status}", status=result.status)
    return result.to_dict()


def manual_refresh() -> Dict[str, Any]:
    """Job déclenché depuis l'API admin."""
    result = get_coordinator().trigger_manual(requested_at=_requested_at())
    logger.info(f"Manual refresh finished: {result.status}", status=result.status)
    return result.to_dict()
