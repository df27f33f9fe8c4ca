"""Database engine and session factory construction.

Engines are built explicitly from the configured URL and handed to the
record store; nothing connects at import time.
"""

from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool


def build_engine(database_url: str, echo: bool = False) -> Engine:
    """Create an engine with pooling suited to the backend."""

    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        database = url.database or ""
        if database and database != ":memory:":
            Path(database).parent.mkdir(parents=True, exist_ok=True)
            return create_engine(
                database_url,
                connect_args={"check_same_thread": False},
                echo=echo,
            )
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=echo,
        )

    return create_engine(
        database_url,
        poolclass=QueuePool,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,
        pool_recycle=3600,
        echo=echo,
    )


def build_session_factory(engine: Engine) -> sessionmaker:
    # Records are handed back to async callers after the session closes.
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


@contextmanager
def session_scope(factory: sessionmaker) -> Generator[Session, None, None]:
    """Transactional scope: commit on success, roll back on error."""

    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db(engine: Engine) -> None:
    """Create tables directly (tests and local development).

    Production deployments run Alembic migrations:
        alembic upgrade head
    """
    from proofvault.db.models import Base

    Base.metadata.create_all(bind=engine)


def drop_all(engine: Engine) -> None:
    """Drop all tables (for testing only)."""
    from proofvault.db.models import Base

    Base.metadata.drop_all(bind=engine)
