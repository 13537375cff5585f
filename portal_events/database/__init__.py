"""Engine and session setup for the registration database.

The capacity ledger and the registration compare-and-set transitions are
single conditional UPDATE statements whose ``rowcount`` decides the
outcome. They need two things from the engine:

* PostgreSQL runs at READ COMMITTED, where an UPDATE blocked on a locked
  row re-evaluates its WHERE clause against the committed version once
  the lock is released. A stricter level would turn those waits into
  serialization failures.
* SQLite has a single database-wide write lock, so writers must wait for
  it (``timeout``) instead of failing with "database is locked".
"""
from __future__ import annotations

import os
from contextlib import contextmanager
from typing import Any, Dict, Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, declarative_base, sessionmaker

__all__ = [
    "Base",
    "engine_options",
    "get_engine",
    "get_session",
    "init_engine",
    "resolve_database_url",
    "session_scope",
]

Base = declarative_base()

DEFAULT_DATABASE_URL = "sqlite:///./portal_events.db"
SQLITE_BUSY_TIMEOUT_SECONDS = 30.0

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None


def resolve_database_url() -> str:
    """``DATABASE_URL`` first, then the ``DB_*`` parts, then a local SQLite file."""

    url = os.getenv("DATABASE_URL")
    if url:
        return url
    parts = [os.getenv(name) for name in ("DB_USER", "DB_PASSWORD", "DB_HOST", "DB_PORT", "DB_NAME")]
    if all(parts):
        user, password, host, port, name = parts
        return f"postgresql+psycopg2://{user}:{password}@{host}:{port}/{name}"
    return DEFAULT_DATABASE_URL


def engine_options(database_url: str) -> Dict[str, Any]:
    backend = make_url(database_url).get_backend_name()
    options: Dict[str, Any] = {"future": True, "pool_pre_ping": True}
    if backend == "sqlite":
        busy_timeout = float(os.getenv("DB_BUSY_TIMEOUT", SQLITE_BUSY_TIMEOUT_SECONDS))
        # Sessions are used from request threads and from the sweep thread.
        options["connect_args"] = {"check_same_thread": False, "timeout": busy_timeout}
    else:
        options["isolation_level"] = "READ COMMITTED"
        options["pool_size"] = int(os.getenv("DB_POOL_SIZE", "5"))
        options["max_overflow"] = int(os.getenv("DB_MAX_OVERFLOW", "10"))
    return options


def init_engine(database_url: Optional[str] = None, **overrides: Any) -> Engine:
    """(Re)bind the module to ``database_url``, disposing of any previous engine."""

    global _engine, _session_factory

    url = database_url or resolve_database_url()
    if _engine is not None:
        _engine.dispose()

    options = engine_options(url)
    options.update(overrides)
    _engine = create_engine(url, **options)
    # Services keep using registrations after committing them.
    _session_factory = sessionmaker(
        bind=_engine,
        autoflush=False,
        expire_on_commit=False,
        class_=Session,
    )
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        return init_engine()
    return _engine


def get_session() -> Session:
    if _session_factory is None:
        init_engine()
    factory = _session_factory
    if factory is None:
        raise RuntimeError("Database engine is not initialised.")
    return factory()


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """Commit on success, roll back on error; used outside request handling."""

    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
