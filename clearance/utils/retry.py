"""
Utilitaires de retry avec backoff exponentiel.

Supporte:
- Backoff exponentiel plafonné, avec jitter optionnel
- Filtrage des exceptions retryable
- Logging des tentatives
- Fonction de sommeil injectable (tests)
"""
import random
import time
from typing import Callable, Optional, Tuple, Type, TypeVar

from clearance.core.exceptions import is_retryable
from clearance.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def backoff_delay(attempt: int, base_delay: float = 1.0, max_delay: float = 10.0) -> float:
    """Délai avant la tentative attempt+1 (attempt commence à 0): base * 2^attempt, plafonné."""
    return min(max_delay, base_delay * (2 ** attempt))


def with_retry(
    fn: Callable[[], T],
    retries: int = 2,
    base_delay: float = 1.0,
    max_delay: float = 10.0,
    retry_on: Optional[Tuple[Type[Exception], ...]] = None,
    source: Optional[str] = None,
    jitter: bool = False,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Exécute une fonction avec retry et backoff exponentiel.

    Args:
        fn: Fonction à exécuter (sans arguments)
        retries: Nombre de retries maximum (retries + 1 tentatives au total)
        base_delay: Délai initial en secondes
        max_delay: Délai maximum en secondes
        retry_on: Tuple d'exceptions sur lesquelles retry (None = utilise is_retryable)
        source: Nom de la source pour le logging
        jitter: Applique un facteur aléatoire 0.7-1.3 au délai
        sleep: Fonction de sommeil

    Returns:
        Résultat de fn()

    Raises:
        L'exception de la dernière tentative si toutes échouent
    """
    for attempt in range(retries + 1):
        try:
            return fn()
        except Exception as e:
            if retry_on is not None:
                should_retry = isinstance(e, retry_on)
            else:
                should_retry = is_retryable(e)

            if attempt >= retries or not should_retry:
                if should_retry:
                    logger.warning(
                        f"Retry exhausted after {attempt + 1} attempts",
                        source=source,
                        error_type=type(e).__name__,
                        attempt=attempt + 1,
                        max_attempts=retries + 1,
                    )
                raise

            delay = backoff_delay(attempt, base_delay, max_delay)
            if jitter:
                delay = delay * (0.7 + random.random() * 0.6)

            logger.info(
                f"Retry attempt {attempt + 1}/{retries + 1}, waiting {delay:.2f}s",
                source=source,
                error_type=type(e).__name__,
                attempt=attempt + 1,
                delay_s=round(delay, 2),
            )
            sleep(delay)

    raise RuntimeError("unreachable")
