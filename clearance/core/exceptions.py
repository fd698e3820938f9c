"""
Hiérarchie d'exceptions pour le pipeline d'ingestion.

Permet de distinguer:
- Erreurs transitoires du fournisseur amont (retry possible)
- Erreurs permanentes (pas de retry)
- Erreurs absorbées dans leur couche (normalisation, cache)
"""
from typing import Any, Optional

import httpx


class PipelineError(Exception):
    """Exception de base pour tout le pipeline."""

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        retryable: bool = False,
        detail: Optional[Any] = None,
    ):
        self.source = source
        self.retryable = retryable
        self.detail = detail
        super().__init__(message)

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.source:
            parts.append(f"source={self.source}")
        return " | ".join(parts)


class ConfigurationError(PipelineError):
    """Configuration manquante (ex: token amont absent). Jamais retryable."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, retryable=False, **kwargs)


# =============================================================================
# ERREURS AMONT
# =============================================================================

class UpstreamError(PipelineError):
    """Erreur du fournisseur amont, avec code HTTP si disponible."""

    def __init__(self, message: str, status_code: Optional[int] = None, **kwargs):
        self.status_code = status_code
        kwargs.setdefault("source", "api")
        super().__init__(message, **kwargs)

    def __str__(self) -> str:
        if self.status_code:
            return f"HTTP {self.status_code}: {super().__str__()}"
        return super().__str__()


class UpstreamClientError(UpstreamError):
    """4xx (hors 429): requête invalide ou credential refusé."""

    def __init__(self, message: str, status_code: Optional[int] = None, **kwargs):
        super().__init__(message, status_code=status_code, retryable=False, **kwargs)


class UpstreamTransientError(UpstreamError):
    """5xx, 429 ou erreur réseau."""

    def __init__(self, message: str, status_code: Optional[int] = None, **kwargs):
        super().__init__(message, status_code=status_code, retryable=True, **kwargs)


class UpstreamJobFailure(UpstreamError):
    """
    Le job amont s'est terminé dans un état non-succès (FAILED, ABORTED)
    ou a dépassé le plafond de polling (TIMED_OUT). Jamais retryable.
    """

    def __init__(
        self,
        message: str,
        state: str,
        run_id: Optional[str] = None,
        status_message: Optional[str] = None,
        **kwargs
    ):
        self.state = state
        self.run_id = run_id
        self.status_message = status_message
        super().__init__(message, retryable=False, **kwargs)


# =============================================================================
# ERREURS LOCALES
# =============================================================================

class NormalizationError(PipelineError):
    """Un enregistrement brut n'a pas pu être normalisé. Absorbée par le fetcher."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, retryable=False, **kwargs)


class PersistenceError(PipelineError):
    """Erreur lors de la sauvegarde en base."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, retryable=False, **kwargs)


class CacheError(PipelineError):
    """Erreur du cache. Toujours convertie en miss / no-op."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, retryable=False, **kwargs)


class ScraperUnavailableError(PipelineError):
    """Le scraper de secours ne peut pas tourner (Playwright absent, lancement impossible)."""

    def __init__(self, message: str = "Browser scraper unavailable", **kwargs):
        kwargs.setdefault("source", "scraper")
        super().__init__(message, retryable=False, **kwargs)


# =============================================================================
# HELPERS
# =============================================================================

def is_retryable(exc: Exception) -> bool:
    """Vérifie si une exception est retryable."""
    if isinstance(exc, PipelineError):
        return exc.retryable
    if isinstance(exc, httpx.TransportError):
        return True
    return False


def error_for_status(status_code: int, message: str, **kwargs) -> UpstreamError:
    """Construit l'exception adaptée à un code HTTP amont."""
    if status_code == 429 or status_code >= 500:
        return UpstreamTransientError(message, status_code=status_code, **kwargs)
    if status_code >= 400:
        return UpstreamClientError(message, status_code=status_code, **kwargs)
    return UpstreamError(message, status_code=status_code, **kwargs)
