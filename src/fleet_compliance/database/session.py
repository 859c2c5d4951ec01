"""Engine and session management."""

import logging
import os
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .models import Base

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///./compliance.db"

_engine: Engine | None = None
_sessionmaker: sessionmaker | None = None


def get_database_url() -> str:
    return os.environ.get("DATABASE_URL", "").strip() or DEFAULT_DATABASE_URL


def get_engine(url: str | None = None) -> Engine:
    """Get the process-wide engine, creating it from DATABASE_URL on first use."""
    global _engine
    if url is not None:
        return create_engine(url)
    if _engine is None:
        _engine = create_engine(get_database_url())
    return _engine


def get_sessionmaker() -> sessionmaker:
    global _sessionmaker
    if _sessionmaker is None:
        _sessionmaker = sessionmaker(bind=get_engine(), expire_on_commit=False)
    return _sessionmaker


def init_db(engine: Engine | None = None) -> None:
    """Create all tables that do not exist yet."""
    engine = engine or get_engine()
    Base.metadata.create_all(engine)
    logger.info("Initialized schema on %s", engine.url.render_as_string(hide_password=True))


@contextmanager
def session_scope() -> Iterator[Session]:
    """Session for scripts and jobs; rolls back on error."""
    session = get_sessionmaker()()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_db() -> Iterator[Session]:
    """FastAPI dependency yielding a request-scoped session."""
    with session_scope() as session:
        yield session
