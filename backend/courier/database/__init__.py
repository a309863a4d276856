"""
Database engine, session factory, and metadata shared across the application.
"""

from __future__ import annotations

import asyncio
from contextlib import contextmanager
from datetime import datetime
import logging
from typing import Any, Callable, Generator, TypeVar

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeMeta, Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from ..core.config import settings

logger = logging.getLogger(__name__)

_DEFAULT_POOL_KWARGS: dict[str, Any] = {
    "pool_size": 5,
    "max_overflow": 10,
    "pool_timeout": 5,
    "pool_recycle": 300,
    "pool_pre_ping": True,
    "pool_use_lifo": True,
}


def _is_memory_sqlite(db_url: str) -> bool:
    if not db_url.startswith("sqlite"):
        return False
    return ":memory:" in db_url or db_url.rstrip("/") in {"sqlite:", "sqlite+pysqlite:"}


def _build_engine_kwargs(db_url: str) -> dict[str, Any]:
    """Engine options for the configured dialect."""
    if db_url.startswith("sqlite"):
        kwargs: dict[str, Any] = {
            "connect_args": {"check_same_thread": False, "timeout": 30},
        }
        if _is_memory_sqlite(db_url):
            # One shared connection, otherwise every checkout sees an empty database.
            kwargs["poolclass"] = StaticPool
        return kwargs
    return dict(_DEFAULT_POOL_KWARGS)


def build_engine(db_url: str) -> Engine:
    return create_engine(db_url, **_build_engine_kwargs(db_url))


engine: Engine = build_engine(settings.database_url)


@event.listens_for(engine, "connect")
def receive_connect(dbapi_connection: Any, connection_record: Any) -> None:
    connection_record.info["connect_time"] = datetime.now()
    logger.debug("Database connection established")


SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)

Base: DeclarativeMeta = declarative_base()

T = TypeVar("T")


def get_db() -> Generator[Session, None, None]:
    """Get database session with proper cleanup."""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@contextmanager
def session_scope(session_factory: Callable[[], Session]) -> Generator[Session, None, None]:
    """Context manager for one short-lived unit of work."""
    db = session_factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


async def run_in_session(
    session_factory: Callable[[], Session],
    func: Callable[[Session], T],
) -> T:
    """
    Run a blocking store operation in a worker thread with its own session.

    The event loop is never blocked by store I/O; each call is an independent
    unit of work that either commits fully or rolls back.
    """

    def _work() -> T:
        with session_scope(session_factory) as db:
            return func(db)

    return await asyncio.to_thread(_work)


def check_database_connection(bind: Engine | None = None) -> None:
    """Raise if the store cannot be reached (used at startup)."""
    target = bind or engine
    with target.connect() as conn:
        conn.execute(text("SELECT 1"))


def init_db(bind: Engine | None = None) -> None:
    """Create all tables that do not exist yet."""
    from .. import models  # noqa: F401  (populates Base.metadata)

    Base.metadata.create_all(bind=bind or engine)
    logger.info("Database tables ensured")


__all__ = [
    "Base",
    "SessionLocal",
    "engine",
    "build_engine",
    "check_database_connection",
    "get_db",
    "init_db",
    "run_in_session",
    "session_scope",
]
