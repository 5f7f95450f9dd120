"""Engine, session factory and transactional scopes."""

from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from planner_core.core.config import AppSettings, get_settings


def _sqlite_engine(settings: AppSettings) -> Engine:
    url = make_url(settings.database_url)
    kwargs: Dict[str, Any] = {
        "echo": settings.sql_echo,
        "connect_args": {"check_same_thread": False},
    }
    if url.database in (None, "", ":memory:"):
        # in-memory databases live on a single shared connection
        kwargs["poolclass"] = StaticPool
    else:
        Path(url.database).expanduser().resolve().parent.mkdir(parents=True, exist_ok=True)

    return create_engine(url, **kwargs)


def _create_engine() -> Engine:
    settings = get_settings()
    if settings.database_url.startswith("sqlite"):
        return _sqlite_engine(settings)

    connect_args: Dict[str, Any] = {}
    if settings.database_url.startswith("postgresql"):
        connect_args["options"] = f"-c statement_timeout={settings.db_statement_timeout_ms}"
    return create_engine(
        settings.database_url,
        echo=settings.sql_echo,
        pool_pre_ping=True,
        pool_size=settings.db_pool_size,
        pool_timeout=settings.db_pool_timeout,
        pool_recycle=settings.db_pool_recycle,
        connect_args=connect_args,
    )


engine: Engine = _create_engine()

SessionLocal = sessionmaker(bind=engine, autoflush=False, class_=Session)


@contextmanager
def session_scope() -> Iterator[Session]:
    """Commit on success, roll back on error, always close.

    Services may commit earlier themselves; the final commit is then a no-op.
    """

    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_session() -> Iterator[Session]:
    """Request-scoped session for FastAPI dependencies."""

    with session_scope() as session:
        yield session
