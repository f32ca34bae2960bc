"""
Database engine and session helpers.

The engine and sessionmaker are built lazily from DATABASE_URL so importing
this module never opens a connection.
"""

import functools
from contextlib import contextmanager
from typing import Callable, Iterator

from sqlalchemy import MetaData, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from basecore.settings import get_settings


@functools.lru_cache()
def get_engine() -> Engine:
    """
    Get SQLAlchemy engine (cached).

    SQLite connections may be shared across threads because FastAPI
    background tasks use sessions after the request thread is done.
    """
    settings = get_settings()
    connect_args = {}
    if settings.DATABASE_URL.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    return create_engine(
        settings.DATABASE_URL, pool_pre_ping=True, echo=False, connect_args=connect_args
    )


@functools.lru_cache()
def get_sessionmaker() -> sessionmaker:
    """Get SQLAlchemy sessionmaker (cached)."""
    return sessionmaker(autocommit=False, autoflush=False, bind=get_engine())


def get_db() -> Iterator[Session]:
    """
    Dependency generator for FastAPI to get database session.

    Yields a database session and ensures it's closed after use.
    """
    SessionLocal = get_sessionmaker()
    db: Session = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope(session_factory: Callable[[], Session] | None = None) -> Iterator[Session]:
    """
    Session for work outside a request (background tasks, CLI).

    Rolls back on error; committing is left to the caller.
    """
    db = (session_factory or get_sessionmaker())()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def create_tables(metadata: MetaData, engine: Engine | None = None) -> list[str]:
    """Create missing tables for `metadata`; returns the table names."""
    metadata.create_all(engine or get_engine())
    return sorted(metadata.tables)
