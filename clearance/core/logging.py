"""
Configuration du logging structuré JSON.

Chaque log contient:
- timestamp: ISO8601
- level: DEBUG/INFO/WARNING/ERROR/CRITICAL
- message: message principal
- source: source des deals (api, scraper) (optionnel)
- query: terme de recherche amont (optionnel)
- run_id: identifiant du job amont (optionnel)
- trace_id: ID de traçage pour corrélation d'un cycle ou d'une requête
- duration_ms: durée en ms (optionnel)
- extra: données additionnelles
"""
import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from datetime import datetime
from functools import wraps
from typing import Optional

_trace_id: ContextVar[Optional[str]] = ContextVar("trace_id", default=None)

_RECORD_KEYS = ("source", "query", "run_id", "sku", "duration_ms", "status_code", "error_type")


def get_trace_id() -> Optional[str]:
    """Récupère le trace_id courant."""
    return _trace_id.get()


def set_trace_id(trace_id: Optional[str] = None) -> str:
    """Définit un trace_id. Génère un nouveau si non fourni."""
    if trace_id is None:
        trace_id = str(uuid.uuid4())[:8]
    _trace_id.set(trace_id)
    return trace_id


class JSONFormatter(logging.Formatter):
    """Formatter qui produit des logs en JSON."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        trace_id = get_trace_id()
        if trace_id:
            log_data["trace_id"] = trace_id

        for key in _RECORD_KEYS:
            if hasattr(record, key):
                log_data[key] = getattr(record, key)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if getattr(record, "extra_data", None):
            log_data["extra"] = record.extra_data

        return json.dumps(log_data, ensure_ascii=False, default=str)


class StructuredLogger:
    """
    Logger structuré avec méthodes helper pour le contexte du pipeline.
    """

    def __init__(self, name: str):
        self._logger = logging.getLogger(name)

    def _log(
        self,
        level: int,
        message: str,
        source: Optional[str] = None,
        query: Optional[str] = None,
        run_id: Optional[str] = None,
        sku: Optional[str] = None,
        duration_ms: Optional[float] = None,
        error_type: Optional[str] = None,
        status_code: Optional[int] = None,
        exc_info: bool = False,
        **extra
    ):
        extra_dict = {k: v for k, v in extra.items() if v is not None}

        record_extra = {}
        if source:
            record_extra["source"] = source
        if query:
            record_extra["query"] = query
        if run_id:
            record_extra["run_id"] = run_id
        if sku:
            record_extra["sku"] = sku
        if duration_ms is not None:
            record_extra["duration_ms"] = round(duration_ms, 2)
        if error_type:
            record_extra["error_type"] = error_type
        if status_code:
            record_extra["status_code"] = status_code
        if extra_dict:
            record_extra["extra_data"] = extra_dict

        self._logger.log(level, message, exc_info=exc_info, extra=record_extra)

    def debug(self, message: str, **kwargs):
        self._log(logging.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs):
        self._log(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs):
        self._log(logging.WARNING, message, **kwargs)

    def error(self, message: str, exc_info: bool = True, **kwargs):
        self._log(logging.ERROR, message, exc_info=exc_info, **kwargs)

    # Méthodes spécialisées pour le cycle de rafraîchissement

    def cycle_start(self, trigger: str, terms: int):
        """Log le début d'un cycle."""
        self.info("Refresh cycle started", trigger=trigger, terms=terms)

    def cycle_complete(self, trigger: str, source: Optional[str], duration_ms: float, **counts):
        """Log un cycle terminé avec ses compteurs."""
        self.info(
            "Refresh cycle completed",
            trigger=trigger,
            source=source,
            duration_ms=duration_ms,
            **counts,
        )

    def upstream_error(
        self,
        query: Optional[str],
        error: Exception,
        run_id: Optional[str] = None,
    ):
        """Log une erreur du fournisseur amont."""
        self.error(
            f"Upstream call failed: {error}",
            source="api",
            query=query,
            run_id=run_id,
            error_type=type(error).__name__,
            status_code=getattr(error, "status_code", None),
            exc_info=False,
        )


def setup_logging(level: str = "INFO"):
    """
    Configure le logging pour l'application.

    Args:
        level: Niveau de log (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())
    root_logger.addHandler(handler)

    # Réduire le bruit des libs externes
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def get_logger(name: str) -> StructuredLogger:
    """Obtient un logger structuré."""
    return StructuredLogger(name)


def timed(logger: Optional[StructuredLogger] = None):
    """
    Décorateur pour mesurer et logger la durée d'une fonction.

    Usage:
        @timed(logger)
        def mark_unavailable_except(self, seen):
            ...
    """
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            start = time.perf_counter()
            try:
                result = func(*args, **kwargs)
                if logger:
                    logger.debug(
                        f"{func.__name__} completed",
                        duration_ms=(time.perf_counter() - start) * 1000,
                    )
                return result
            except Exception as e:
                if logger:
                    logger.error(
                        f"{func.__name__} failed",
                        duration_ms=(time.perf_counter() - start) * 1000,
                        error_type=type(e).__name__,
                        exc_info=False,
                    )
                raise
        return wrapper
    return decorator
