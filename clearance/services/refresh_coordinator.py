"""
Refresh Coordinator - un cycle complet d'ingestion.

Flow:
1. Parcourir les termes de recherche dans l'ordre, fusionner par sku
2. Arrêt anticipé dès que le nombre de markdowns ou le total atteint son seuil
3. Si l'API ne renvoie rien: scraper de secours (optionnel)
4. Upsert de tous les deals, puis réconciliation (barrière: après tous les upserts)
5. Invalidation du cache deals, puis une entrée de journal récapitulative

Single-flight: un seul cycle à la fois par process. Un déclenchement pendant
un cycle en cours est ignoré (status "skipped"), jamais mis en file; un job
mis en file pendant un cycle est ignoré quand il démarre (requested_at).
"""
import threading
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

from clearance.collectors.base import DealFeed
from clearance.core.config import (
    REFRESH_JOB_TIMEOUT_MARGIN_SEC,
    REFRESH_JOB_TIMEOUT_SEC,
    REFRESH_MARKDOWN_TARGET,
    REFRESH_MAX_TOTAL,
    REFRESH_PER_TERM_LIMIT,
    UPSTREAM_HTTP_TIMEOUT_SEC,
    UPSTREAM_MAX_WAIT_SEC,
    UPSTREAM_POLL_INTERVAL_SEC,
    UPSTREAM_SUBMIT_RETRIES,
)
from clearance.core.exceptions import ScraperUnavailableError
from clearance.core.logging import get_logger, set_trace_id
from clearance.db.session import SessionLocal, session_scope
from clearance.normalizers.item import DealItem, DealSource
from clearance.repositories.deal_repository import DealRepository
from clearance.services.activity_log import ActivityLogger
from clearance.services.cache_service import CacheService
from clearance.utils.retry import backoff_delay

logger = get_logger(__name__)

QUERY_TERMS = (
    "drill", "tool", "power tool", "saw", "hammer",
    "screwdriver", "wrench", "pliers", "level", "tape measure",
    "paint", "brush", "roller", "ladder", "safety",
    "light", "bulb", "outlet", "switch", "wire",
    "pipe", "fitting", "valve", "faucet", "sink",
)

STATUS_COMPLETED = "completed"
STATUS_SKIPPED = "skipped"
STATUS_FAILED = "failed"


def term_worst_case_sec() -> float:
    """
    Durée maximale d'un terme côté amont.

    submit et collect: toutes les tentatives expirent, plus le backoff entre
    elles. poll: plafond max_wait, plus la dernière requête et un intervalle.
    """
    retried_request = (
        (UPSTREAM_SUBMIT_RETRIES + 1) * UPSTREAM_HTTP_TIMEOUT_SEC
        + sum(backoff_delay(attempt) for attempt in range(UPSTREAM_SUBMIT_RETRIES))
    )
    poll = UPSTREAM_MAX_WAIT_SEC + UPSTREAM_HTTP_TIMEOUT_SEC + UPSTREAM_POLL_INTERVAL_SEC
    return 2 * retried_request + poll


def refresh_job_timeout(query_terms: Sequence[str] = QUERY_TERMS) -> int:
    """Timeout rq d'un job de refresh: au-dessus du pire cas, jamais sous le plancher configuré."""
    worst_case = len(query_terms) * term_worst_case_sec() + REFRESH_JOB_TIMEOUT_MARGIN_SEC
    return int(max(REFRESH_JOB_TIMEOUT_SEC, worst_case))


@dataclass
class CycleResult:
    status: str
    trigger: str
    source: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_seconds: float = 0.0
    fetched: int = 0
    markdown: int = 0
    created: int = 0
    updated: int = 0
    skipped_records: int = 0
    reconciled: int = 0
    queries_run: List[str] = field(default_factory=list)
    error: Optional[str] = None
    error_type: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key in ("started_at", "completed_at"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data

    def summary(self) -> Dict[str, Any]:
        return {
            "trigger": self.trigger,
            "fetched": self.fetched,
            "markdown": self.markdown,
            "created": self.created,
            "updated": self.updated,
            "reconciled": self.reconciled,
            "skipped_records": self.skipped_records,
            "queries_run": len(self.queries_run),
            "duration_seconds": self.duration_seconds,
        }


class RefreshCoordinator:
    def __init__(
        self,
        primary: DealFeed,
        cache: CacheService,
        activity: ActivityLogger,
        fallback: Optional[DealFeed] = None,
        session_factory=SessionLocal,
        query_terms: Sequence[str] = QUERY_TERMS,
        per_term_limit: int = REFRESH_PER_TERM_LIMIT,
        markdown_target: int = REFRESH_MARKDOWN_TARGET,
        max_total: int = REFRESH_MAX_TOTAL,
        fallback_query: str = "clearance",
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.primary = primary
        self.fallback = fallback
        self.cache = cache
        self.activity = activity
        self.query_terms = tuple(query_terms)
        self.per_term_limit = per_term_limit
        self.markdown_target = markdown_target
        self.max_total = max_total
        self.fallback_query = fallback_query
        self._session_factory = session_factory
        self._clock = clock
        self._lock = threading.Lock()
        self.cycles_started = 0
        self.last_finished_at: Optional[datetime] = None

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    def trigger_manual(self, requested_at: Optional[datetime] = None) -> CycleResult:
        return self.run_cycle("manual", requested_at=requested_at)

    def run_cycle(self, trigger: str = "scheduled", requested_at: Optional[datetime] = None) -> CycleResult:
        """
        Un cycle complet, ou "skipped" si un cycle tourne déjà.

        requested_at: instant où le déclenchement a été mis en file. Un cycle
        terminé depuis l'a déjà couvert (déclenchement arrivé pendant ce
        cycle, ou doublon en file derrière lui): il est ignoré aussi.
        """
        if not self._lock.acquire(blocking=False):
            logger.info("Refresh already in progress, trigger skipped", trigger=trigger)
            return CycleResult(status=STATUS_SKIPPED, trigger=trigger, started_at=self._clock())

        if (
            requested_at is not None
            and self.last_finished_at is not None
            and self.last_finished_at >= requested_at
        ):
            self._lock.release()
            logger.info(
                "Refresh finished after this trigger was queued, trigger skipped",
                trigger=trigger,
                requested_at=requested_at.isoformat(),
            )
            return CycleResult(status=STATUS_SKIPPED, trigger=trigger, started_at=self._clock())

        set_trace_id()
        self.cycles_started += 1
        result = CycleResult(status=STATUS_FAILED, trigger=trigger, started_at=self._clock())
        start = time.perf_counter()
        logger.cycle_start(trigger, len(self.query_terms))

        try:
            self._run(result)
            result.status = STATUS_COMPLETED
        except Exception as e:
            result.status = STATUS_FAILED
            result.error = str(e)
            result.error_type = type(e).__name__
            logger.error(f"Refresh cycle failed: {e}", error_type=result.error_type, trigger=trigger)
        finally:
            result.completed_at = self._clock()
            self.last_finished_at = result.completed_at
            result.duration_seconds = round(time.perf_counter() - start, 2)
            try:
                self._record(result)
            finally:
                self._lock.release()

        return result

    # ------------------------------------------------------------------
    # Étapes du cycle
    # ------------------------------------------------------------------

    def _run(self, result: CycleResult):
        deals = self._collect_primary(result)
        source = DealSource.API

        if not deals and self.fallback is not None:
            logger.warning("Primary source returned no deals, trying browser fallback")
            deals = self._collect_fallback(result)
            if deals:
                source = DealSource.SCRAPER

        result.source = source.value
        result.fetched = len(deals)
        result.markdown = sum(1 for item in deals.values() if item.is_markdown)

        if not deals:
            logger.warning("No deals found from API or scraper", trigger=result.trigger)
            return

        with session_scope(self._session_factory) as session:
            repo = DealRepository(session, clock=self._clock)
            for item in deals.values():
                _, is_new = repo.upsert(item)
                if is_new:
                    result.created += 1
                else:
                    result.updated += 1
            # Barrière: la réconciliation ne voit que le seen set complet
            result.reconciled = repo.mark_unavailable_except(deals.keys())

        self.cache.invalidate_deals()

    def _merge(self, merged: Dict[str, DealItem], items: List[DealItem], result: CycleResult):
        for item in items:
            if not item.sku:
                result.skipped_records += 1
                continue
            merged[item.sku] = item

    def _collect_primary(self, result: CycleResult) -> Dict[str, DealItem]:
        merged: Dict[str, DealItem] = {}
        for term in self.query_terms:
            items = self.primary.fetch(term, self.per_term_limit)
            result.queries_run.append(term)
            self._merge(merged, items, result)

            markdown = sum(1 for item in merged.values() if item.is_markdown)
            logger.info(
                f"Term '{term}': {len(items)} deals, {len(merged)} unique, {markdown} markdown",
                source="api",
                query=term,
            )
            if markdown >= self.markdown_target or len(merged) >= self.max_total:
                logger.info(
                    "Early stop",
                    query=term,
                    markdown=markdown,
                    total=len(merged),
                )
                break
        return merged

    def _collect_fallback(self, result: CycleResult) -> Dict[str, DealItem]:
        merged: Dict[str, DealItem] = {}
        try:
            items = self.fallback.fetch(self.fallback_query, self.max_total)
        except ScraperUnavailableError as e:
            logger.info(f"Browser fallback unavailable: {e}", source="scraper")
            self.activity.log(
                "scraper",
                "Scraper unavailable",
                {"error": str(e), "note": "Browser fallback is optional"},
            )
            return merged
        self._merge(merged, items, result)
        return merged

    def _record(self, result: CycleResult):
        if result.status == STATUS_FAILED:
            self.activity.log(
                "error",
                "Data refresh failed",
                dict(result.summary(), error=result.error, error_type=result.error_type),
            )
            return

        logger.cycle_complete(
            result.trigger,
            result.source,
            result.duration_seconds * 1000,
            fetched=result.fetched,
            markdown=result.markdown,
            reconciled=result.reconciled,
        )
        kind = result.source or DealSource.API.value
        if result.fetched:
            message = (
                f"Fetched {result.fetched} deals ({result.markdown} markdown) from {kind}, "
                f"marked {result.reconciled} as unavailable"
            )
        else:
            message = "No deals found from API or scraper"
        self.activity.log(kind, message, result.summary())

    # ------------------------------------------------------------------
    # Planification
    # ------------------------------------------------------------------

    def schedule_recurring(self, scheduler, interval_sec: int, first_run_delay_sec: int = 60):
        """Enregistre le job récurrent dans rq-scheduler (remplace l'existant)."""
        from clearance.jobs_refresh import scheduled_refresh

        for job in scheduler.get_jobs():
            if job.func_name == f"{scheduled_refresh.__module__}.{scheduled_refresh.__name__}":
                scheduler.cancel(job)

        job = scheduler.schedule(
            scheduled_time=datetime.now(timezone.utc) + timedelta(seconds=first_run_delay_sec),
            func=scheduled_refresh,
            interval=interval_sec,
            repeat=None,
            result_ttl=3600,
            timeout=refresh_job_timeout(),
            queue_name="default",
        )
        logger.info(f"Scheduled: refresh every {interval_sec}s")
        return job
