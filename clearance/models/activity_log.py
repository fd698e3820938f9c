from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import JSON, DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from clearance.models.base import Base


class ActivityType(str, Enum):
    API = "api"
    SCRAPER = "scraper"
    ERROR = "error"


class ActivityLogEntry(Base):
    """Journal append-only des cycles et des échecs du pipeline."""
    __tablename__ = "activity_logs"

    id: Mapped[int] = mapped_column(primary_key=True)
    type: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, index=True
    )

    def to_api_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "message": self.message,
            "data": self.data or {},
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
