from datetime import datetime
from typing import Any, Dict

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from clearance.core.logging import get_logger
from clearance.services.cache_service import CacheService

logger = get_logger(__name__)


def get_health_status(session_factory, cache: CacheService, api_token: str) -> Dict[str, Any]:
    """
    healthy: base, cache et token amont OK
    degraded: cache indisponible ou token absent (optionnels)
    unhealthy: base inaccessible
    """
    db_connected = True
    try:
        session = session_factory()
        try:
            session.execute(text("SELECT 1"))
        finally:
            session.close()
    except SQLAlchemyError as e:
        logger.warning(f"Health check: database unreachable: {e}")
        db_connected = False

    cache_available = cache.is_available()
    api_configured = bool(api_token and api_token.strip())

    if not db_connected:
        status = "unhealthy"
    elif not cache_available or not api_configured:
        status = "degraded"
    else:
        status = "healthy"

    return {
        "status": status,
        "database": {"connected": db_connected},
        "cache": {"available": cache_available},
        "api": {"token_configured": api_configured},
        "timestamp": datetime.utcnow().isoformat() + "Z",
    }
