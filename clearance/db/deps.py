from typing import Iterator

from sqlalchemy.orm import Session

from clearance.db.session import SessionLocal


def get_db() -> Iterator[Session]:
    """Dépendance FastAPI: une session par requête."""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
