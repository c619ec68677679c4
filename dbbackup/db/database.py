"""History database engine and session configuration."""

from collections.abc import Generator
from functools import lru_cache

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from dbbackup.config import get_settings
from dbbackup.db.models import Base


def create_history_engine(url: str) -> Engine:
    """Create an engine for the history database and its tables.

    Args:
        url: SQLAlchemy database URL.

    Returns:
        Engine: Engine with the backup_logs table created.
    """
    engine_kwargs: dict = {}

    # SQLite doesn't support pool_size/max_overflow
    if url.startswith("sqlite"):
        engine_kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in url or url in ("sqlite://", "sqlite:///"):
            engine_kwargs["poolclass"] = StaticPool
    else:
        engine_kwargs.update({"pool_pre_ping": True, "pool_size": 5, "max_overflow": 10})

    engine = create_engine(url, **engine_kwargs)
    Base.metadata.create_all(bind=engine)
    return engine


@lru_cache
def get_session_factory(url: str) -> sessionmaker[Session]:
    """Session factory for a history URL, created once per process."""
    return sessionmaker(autocommit=False, autoflush=False, bind=create_history_engine(url))


def get_db() -> Generator[Session | None, None, None]:
    """Get a history session, or None when history is disabled.

    Yields:
        Session | None: SQLAlchemy session.
    """
    url = get_settings().history_url
    if not url:
        yield None
        return
    db = get_session_factory(url)()
    try:
        yield db
    finally:
        db.close()
