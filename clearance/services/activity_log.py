"""
Écriture du journal d'activité (api / scraper / error).

Chaque entrée est écrite dans sa propre session: un échec de journalisation
ne doit jamais annuler le travail du cycle ni masquer l'erreur d'origine.
"""
import json
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from clearance.core.logging import get_logger
from clearance.db.session import SessionLocal, session_scope
from clearance.repositories.activity_log_repository import ActivityLogRepository

logger = get_logger(__name__)


class ActivityLogger:
    def __init__(self, session_factory=SessionLocal):
        self._session_factory = session_factory

    def log(self, kind: str, message: str, data: Optional[Dict[str, Any]] = None) -> bool:
        payload = json.loads(json.dumps(data or {}, default=str))
        try:
            with session_scope(self._session_factory) as session:
                ActivityLogRepository(session).append(kind, message, payload)
            return True
        except SQLAlchemyError as e:
            logger.error(f"Failed to write activity log: {e}", error_type=type(e).__name__, kind=kind)
            return False
