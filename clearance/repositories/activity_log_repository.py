from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from clearance.models.activity_log import ActivityLogEntry

MAX_LIST_LIMIT = 1000


class ActivityLogRepository:
    """Journal append-only: aucune mise à jour, aucune suppression."""

    def __init__(self, session: Session):
        self.session = session

    def append(self, kind: str, message: str, data: Optional[Dict[str, Any]] = None) -> ActivityLogEntry:
        entry = ActivityLogEntry(type=kind, message=message, data=data or {})
        self.session.add(entry)
        self.session.flush()
        return entry

    def list(self, kind: Optional[str] = None, limit: int = 100) -> List[ActivityLogEntry]:
        limit = max(1, min(limit, MAX_LIST_LIMIT))
        stmt = select(ActivityLogEntry)
        if kind:
            stmt = stmt.where(ActivityLogEntry.type == kind)
        stmt = stmt.order_by(ActivityLogEntry.created_at.desc(), ActivityLogEntry.id.desc()).limit(limit)
        return list(self.session.scalars(stmt))
