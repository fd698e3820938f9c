from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from clearance.core.config import DATABASE_URL


def build_engine(url: str = DATABASE_URL):
    kwargs = {"pool_pre_ping": True}
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
    return create_engine(url, **kwargs)


engine = build_engine()
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@contextmanager
def session_scope(factory=SessionLocal):
    """Context manager pour obtenir une session DB (commit, rollback sur erreur)."""
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db(bind=None):
    """Crée les tables manquantes (dev / tests). En production: alembic."""
    from clearance.models import Base

    Base.metadata.create_all(bind=bind or engine)
