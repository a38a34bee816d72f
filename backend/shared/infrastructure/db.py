"""
SQLAlchemy engine and sessions.

PostgreSQL (psycopg 3) in deployment; the tests point DATABASE_URL at an
in-memory SQLite database shared through a single static connection.
"""

import os
from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from shared.config.settings import DATABASE_URL


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}, "poolclass": StaticPool}
    return {
        "pool_pre_ping": True,
        # 2 x cores + 1, at most 20
        "pool_size": min((os.cpu_count() or 4) * 2 + 1, 20),
        "max_overflow": 10,
        "pool_timeout": 30,
        "pool_recycle": 1800,
        "connect_args": {"connect_timeout": 10},
    }


engine = create_engine(DATABASE_URL, **_engine_options(DATABASE_URL))

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


def get_db() -> Generator[Session, None, None]:
    """Request-scoped session (FastAPI dependency)."""
    with SessionLocal() as db:
        yield db


@contextmanager
def get_db_context() -> Generator[Session, None, None]:
    """Session for work outside a request, such as the maintenance cycle."""
    with SessionLocal() as db:
        yield db


def safe_commit(db: Session) -> None:
    """Commit, or roll back and re-raise."""
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
