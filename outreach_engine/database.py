from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from outreach_engine.config import settings


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True, "pool_size": 5, "max_overflow": 10}


engine = create_engine(settings.database_url, **_engine_kwargs(settings.database_url))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """FastAPI dependency yielding a session per request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """Create tables that do not exist yet."""
    import outreach_engine.models  # noqa: F401

    Base.metadata.create_all(bind=engine)


def get_session_factory():
    """FastAPI dependency for work that outlives the request (campaigns)."""
    return SessionLocal
