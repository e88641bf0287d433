"""
Database Configuration Module

This module sets up SQLAlchemy 2.0 for the ReadAlong API.

We use SYNCHRONOUS SQLAlchemy with the "session per request" pattern:
1. Request arrives → create a new session
2. Use session for all database operations in that request
3. Commit on success, rollback on failure
4. Close session when request ends

Concurrent writes to the same reading group are detected with an
optimistic row version (see readalong.models.reading_group), not with
database locks, so the same code works on SQLite and PostgreSQL.
"""

from collections.abc import Callable, Generator, Iterator
from contextlib import AbstractContextManager, contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from readalong.config import get_settings

settings = get_settings()


# =============================================================================
# Database Engine
# =============================================================================
# SQLite connections are shared across threads by FastAPI's threadpool and
# don't accept pool sizing arguments, so those are only passed to servers.

_engine_kwargs: dict = {
    "pool_pre_ping": True,
    "echo": settings.debug,
}
if settings.database_url.startswith("sqlite"):
    _engine_kwargs["connect_args"] = {"check_same_thread": False}
else:
    _engine_kwargs["pool_size"] = settings.db_pool_size
    _engine_kwargs["max_overflow"] = settings.db_max_overflow

engine = create_engine(settings.database_url, **_engine_kwargs)


# =============================================================================
# Session Factory
# =============================================================================
# - autocommit=False: We control when to commit
# - autoflush=False: Don't auto-flush before queries (more predictable behavior)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)


# =============================================================================
# Base Model Class
# =============================================================================
class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy models.

    Alembic uses Base.metadata to discover models for migrations.
    """
    pass


# =============================================================================
# Dependency Injection
# =============================================================================
def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency for FastAPI.

    Creates a session, yields it to the route handler and closes it when
    the request ends, even on errors.

    Yields:
        SQLAlchemy Session instance
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope() -> Iterator[Session]:
    """
    Short-lived session outside the request cycle.

    The WebSocket channel opens one per handshake lookup and per command,
    so an idle socket never holds a pooled connection.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


SessionFactory = Callable[[], AbstractContextManager[Session]]


def get_session_factory() -> SessionFactory:
    """Dependency for long-lived handlers that open their own sessions."""
    return session_scope


# =============================================================================
# Utility Functions
# =============================================================================
def create_tables() -> None:
    """
    Create all database tables.

    Useful for development and tests. In production, use Alembic migrations.
    """
    Base.metadata.create_all(bind=engine)


def drop_tables() -> None:
    """
    Drop all database tables.

    DANGER: This deletes all data! Only use in development and tests.
    """
    Base.metadata.drop_all(bind=engine)
