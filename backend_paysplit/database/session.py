"""
Engine and session management.

Uses PAYSPLIT_DB_URL / DATABASE_URL for PostgreSQL when set; otherwise falls back
to SQLite (PAYSPLIT_DB_PATH or paysplit.db).
"""

from __future__ import annotations

import os
from contextlib import contextmanager
from typing import Any, Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from backend_paysplit.database.models import Base
from backend_paysplit.paysplit_logging import get_logger

logger = get_logger(__name__)

DEFAULT_SQLITE_PATH = "paysplit.db"


def get_database_url() -> str:
    """Return PAYSPLIT_DB_URL or DATABASE_URL if set; else SQLite from PAYSPLIT_DB_PATH or default."""
    url = (os.getenv("PAYSPLIT_DB_URL") or os.getenv("DATABASE_URL") or "").strip()
    if url:
        return url
    path = (os.getenv("PAYSPLIT_DB_PATH") or "").strip() or DEFAULT_SQLITE_PATH
    return f"sqlite:///{path}"


def _safe_url(url: str) -> str:
    return url.split("?")[0].split("@")[-1].split("//")[-1]


_engine = None
_SessionLocal: sessionmaker | None = None


def get_engine():
    """Create or return the cached engine."""
    global _engine
    if _engine is None:
        url = get_database_url()
        connect_args: dict[str, Any] = {}
        if url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
            connect_args["timeout"] = 15
        _engine = create_engine(url, connect_args=connect_args, pool_pre_ping=True)
        logger.info("paysplit_db_engine", url=_safe_url(url))
    return _engine


def get_session_factory() -> sessionmaker:
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=get_engine())
    return _SessionLocal


@contextmanager
def session_scope() -> Iterator[Session]:
    """Context manager for a single session. Commits on success, rolls back on error."""
    session = get_session_factory()()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db() -> None:
    """Create tables if they do not exist. Safe to call on every startup."""
    try:
        Base.metadata.create_all(bind=get_engine())
        logger.info("paysplit_init_db", url=_safe_url(get_database_url()))
    except Exception as e:
        logger.exception("paysplit_init_db_failed", error=str(e))
        raise


def reset_engine_for_test() -> None:
    """Dispose cached engine and session factory. For tests only; use with a new PAYSPLIT_DB_PATH."""
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None
