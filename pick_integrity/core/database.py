"""
Database configuration and session management.

The engine is created lazily on first use so that importing the application
(tests, scripts) never opens a connection or imports a DBAPI driver it does
not need.
"""
import os
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session

_engine = None
_SessionLocal = None


def _engine_kwargs(database_url: str) -> dict:
    kwargs = {
        "pool_pre_ping": True,  # Verify connections before using
        "echo": os.getenv("SQL_ECHO", "false").lower() == "true",
    }
    if database_url.startswith("sqlite"):
        # Worker threads of the grading job open their own sessions
        kwargs["connect_args"] = {"check_same_thread": False}
    else:
        from pick_integrity.core.config import settings
        kwargs["pool_size"] = settings.DB_POOL_SIZE
        kwargs["max_overflow"] = settings.DB_MAX_OVERFLOW
    return kwargs


def get_engine() -> Engine:
    """Get or create the database engine."""
    global _engine, _SessionLocal

    if _engine is None:
        from pick_integrity.core.config import settings
        _engine = create_engine(settings.DATABASE_URL, **_engine_kwargs(settings.DATABASE_URL))
        _SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=_engine)

    return _engine


def SessionLocal() -> Session:
    """Open a new session bound to the application engine."""
    get_engine()
    return _SessionLocal()


def get_db() -> Generator[Session, None, None]:
    """
    Dependency that provides a database session.

    Usage in FastAPI:
    ```python
    @router.get("/endpoint")
    def endpoint(db: Session = Depends(get_db)):
        # Use db here
        pass
    ```
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Initialize database tables."""
    from pick_integrity.models import Base
    Base.metadata.create_all(bind=get_engine(), checkfirst=True)
