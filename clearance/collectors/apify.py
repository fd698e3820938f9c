"""
Fetcher du fournisseur amont (acteur Apify, catalogue Home Depot).

Cycle de vie d'un job: submit -> poll -> collect.

    SUBMITTED -> POLLING -> SUCCEEDED | FAILED | ABORTED | TIMED_OUT

- submit / collect: retry sur 5xx, 429 et erreurs réseau (backoff 1s, 2s, 4s... plafonné à 10s)
- poll: intervalle fixe, plafond de temps; le dépassement donne TIMED_OUT, jamais retry
- chaque enregistrement est normalisé; un échec est loggé et l'enregistrement ignoré
"""
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import httpx

from clearance.core.config import (
    UPSTREAM_ACTOR_ID,
    UPSTREAM_API_TOKEN,
    UPSTREAM_BASE_URL,
    UPSTREAM_HTTP_TIMEOUT_SEC,
    UPSTREAM_MAX_WAIT_SEC,
    UPSTREAM_POLL_INTERVAL_SEC,
    UPSTREAM_SUBMIT_RETRIES,
)
from clearance.core.exceptions import (
    ConfigurationError,
    NormalizationError,
    PipelineError,
    UpstreamError,
    UpstreamJobFailure,
    UpstreamTransientError,
    error_for_status,
)
from clearance.core.logging import get_logger
from clearance.normalizers.item import DealItem, DealSource
from clearance.normalizers.upstream import ensure_storable, normalize_record
from clearance.utils.retry import with_retry

logger = get_logger(__name__)

MAX_LIMIT = 1000

# Configuration proxy attendue par l'acteur
PROXY_CONFIG = {
    "useApifyProxy": True,
    "apifyProxyGroups": ["RESIDENTIAL"],
    "apifyProxyCountry": "US",
}


class JobState(str, Enum):
    SUBMITTED = "SUBMITTED"
    POLLING = "POLLING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    ABORTED = "ABORTED"
    TIMED_OUT = "TIMED_OUT"


_UPSTREAM_FAILURE_STATES = {
    "FAILED": JobState.FAILED,
    "ABORTED": JobState.ABORTED,
    "TIMED-OUT": JobState.TIMED_OUT,
    "TIMED_OUT": JobState.TIMED_OUT,
}


@dataclass
class UpstreamJob:
    run_id: str
    query: str
    state: JobState = JobState.SUBMITTED
    dataset_id: Optional[str] = None
    status_message: Optional[str] = None
    polls: int = 0


def _unwrap(payload: Any) -> Any:
    """L'API renvoie {"data": {...}}; on accepte aussi la forme à plat."""
    if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
        return payload["data"]
    return payload


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if body.get("message"):
            return str(body["message"])
    return response.reason_phrase


def _suggestion(error: Exception) -> str:
    if isinstance(error, ConfigurationError):
        return "Set APIFY_API_KEY in the environment"
    status = getattr(error, "status_code", None)
    if status in (401, 403):
        return "Check the upstream API token"
    if status == 400:
        return "Check the actor input format"
    if status == 429:
        return "Upstream quota or rate limit reached, check account limits"
    if isinstance(error, UpstreamJobFailure) and error.state == JobState.TIMED_OUT:
        return "Upstream run exceeded the polling ceiling"
    if isinstance(error, UpstreamTransientError):
        return "Network or upstream service issue, check provider status"
    return "See the error detail"


class ApifyFetcher:
    """
    Pilote un job amont par requête et renvoie les deals normalisés.
    """

    def __init__(
        self,
        token: str = UPSTREAM_API_TOKEN,
        base_url: str = UPSTREAM_BASE_URL,
        actor_id: str = UPSTREAM_ACTOR_ID,
        client: Optional[httpx.Client] = None,
        poll_interval: float = UPSTREAM_POLL_INTERVAL_SEC,
        max_wait: float = UPSTREAM_MAX_WAIT_SEC,
        submit_retries: int = UPSTREAM_SUBMIT_RETRIES,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        normalizer: Callable[..., DealItem] = normalize_record,
        activity=None,
    ):
        self.token = token or ""
        self.base_url = base_url.rstrip("/")
        self.actor_id = actor_id
        self.poll_interval = poll_interval
        self.max_wait = max_wait
        self.submit_retries = submit_retries
        self._client = client
        self._owns_client = client is None
        self._sleep = sleep
        self._clock = clock
        self._normalizer = normalizer
        self._activity = activity

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=UPSTREAM_HTTP_TIMEOUT_SEC)
        return self._client

    def close(self):
        if self._owns_client and self._client is not None:
            self._client.close()
            self._client = None

    # ------------------------------------------------------------------
    # API publique
    # ------------------------------------------------------------------

    def fetch(self, query: str, limit: int) -> List[DealItem]:
        if not self.token.strip():
            raise ConfigurationError("Upstream API token is not configured", source="api")

        job: Optional[UpstreamJob] = None
        start = time.perf_counter()
        try:
            job = self.submit(query, limit)
            self.poll(job)
            records = self.collect(job)
        except PipelineError as e:
            logger.upstream_error(query, e, run_id=job.run_id if job else None)
            self._record_failure(query, e, job)
            raise

        items = []
        for index, raw in enumerate(records):
            try:
                items.append(self._normalize(raw, index))
            except NormalizationError as e:
                logger.warning(
                    f"Record {index} skipped: {e}",
                    source="api",
                    query=query,
                    run_id=job.run_id,
                    error_type=type(e.__cause__ or e).__name__,
                )

        logger.info(
            f"Fetched {len(items)} deals for '{query}'",
            source="api",
            query=query,
            run_id=job.run_id,
            duration_ms=(time.perf_counter() - start) * 1000,
            records=len(records),
            polls=job.polls,
        )
        return items

    def submit(self, query: str, limit: int) -> UpstreamJob:
        payload = {
            "dev_dataset_clear": False,
            "dev_no_strip": False,
            "dev_proxy_config": PROXY_CONFIG,
            "include_details": False,
            "limit": max(1, min(int(limit), MAX_LIMIT)),
            "query": [query],
            "review_verified": False,
        }
        data = _unwrap(with_retry(
            lambda: self._request("POST", f"/acts/{self.actor_id}/runs", json=payload),
            retries=self.submit_retries,
            base_delay=1.0,
            max_delay=10.0,
            source="api",
            sleep=self._sleep,
        ))
        run_id = data.get("id") if isinstance(data, dict) else None
        if not run_id:
            raise UpstreamError("Upstream run submission returned no run id", detail=data)

        logger.info("Upstream run submitted", source="api", query=query, run_id=run_id)
        return UpstreamJob(run_id=str(run_id), query=query)

    def poll(self, job: UpstreamJob) -> UpstreamJob:
        job.state = JobState.POLLING
        started = self._clock()

        while True:
            elapsed = self._clock() - started
            if elapsed >= self.max_wait:
                job.state = JobState.TIMED_OUT
                raise UpstreamJobFailure(
                    f"Run timed out after {self.max_wait:.0f}s",
                    state=JobState.TIMED_OUT.value,
                    run_id=job.run_id,
                )

            try:
                data = _unwrap(self._request("GET", f"/actor-runs/{job.run_id}"))
            except UpstreamError as e:
                if not e.retryable:
                    raise
                logger.warning(
                    f"Error checking run status (will retry): {e}",
                    source="api",
                    run_id=job.run_id,
                    error_type=type(e).__name__,
                )
                self._sleep(self.poll_interval)
                continue

            job.polls += 1
            status = str(data.get("status", "")).upper() if isinstance(data, dict) else ""

            if status == JobState.SUCCEEDED.value:
                dataset_id = data.get("defaultDatasetId") or data.get("datasetId")
                if not dataset_id:
                    raise UpstreamError("Run succeeded without a dataset id", detail=data)
                job.state = JobState.SUCCEEDED
                job.dataset_id = str(dataset_id)
                return job

            if status in _UPSTREAM_FAILURE_STATES:
                job.state = _UPSTREAM_FAILURE_STATES[status]
                job.status_message = data.get("statusMessage") or ""
                raise UpstreamJobFailure(
                    f"Run {job.state.value.lower()}: {job.status_message}",
                    state=job.state.value,
                    run_id=job.run_id,
                    status_message=job.status_message,
                )

            logger.debug(
                f"Run still {status or 'pending'}, next check in {self.poll_interval:.0f}s",
                source="api",
                run_id=job.run_id,
            )
            self._sleep(self.poll_interval)

    def collect(self, job: UpstreamJob) -> List[Dict[str, Any]]:
        payload = with_retry(
            lambda: self._request(
                "GET",
                f"/datasets/{job.dataset_id}/items",
                params={"format": "json", "clean": "true"},
            ),
            retries=self.submit_retries,
            base_delay=1.0,
            max_delay=10.0,
            source="api",
            sleep=self._sleep,
        )
        if isinstance(payload, dict) and isinstance(payload.get("items"), list):
            payload = payload["items"]
        if not isinstance(payload, list):
            raise UpstreamError(
                f"Dataset payload is not an array ({type(payload).__name__})",
                detail={"dataset_id": job.dataset_id},
            )
        return payload

    # ------------------------------------------------------------------
    # Interne
    # ------------------------------------------------------------------

    def _normalize(self, raw: Any, index: int) -> DealItem:
        try:
            item = self._normalizer(raw, source=DealSource.API)
        except Exception as e:
            raise NormalizationError(
                f"normalization failed: {e}", source="api", detail={"index": index}
            ) from e
        return ensure_storable(item)

    def _request(self, method: str, path: str, **kwargs) -> Any:
        url = f"{self.base_url}{path}"
        headers = {"Authorization": f"Bearer {self.token}"}
        try:
            response = self.client.request(method, url, headers=headers, **kwargs)
        except httpx.TransportError as e:
            raise UpstreamTransientError(f"{method} {path} failed: {e}") from e

        if response.status_code >= 400:
            raise error_for_status(
                response.status_code,
                f"{method} {path}: {_error_message(response)}",
            )
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError(
                f"{method} {path}: invalid JSON body", status_code=response.status_code
            ) from e

    def _record_failure(self, query: str, error: Exception, job: Optional[UpstreamJob]):
        if self._activity is None:
            return
        self._activity.log(
            "error",
            "API fetch failed",
            {
                "query": query,
                "error": str(error),
                "error_type": type(error).__name__,
                "status_code": getattr(error, "status_code", None),
                "run_id": job.run_id if job else None,
                "state": job.state.value if job else None,
                "suggestion": _suggestion(error),
            },
        )
