"""Database session factory and configuration.

Provides database connectivity and session management for the lifecycle engine.
Engines and session factories are built explicitly and passed to the services
that need them; only the composition root calls ``create_session_factory``.
"""

import zlib
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session


def build_engine(database_url: str, echo: bool = False) -> Engine:
    """Create an engine with connection pooling.

    Pool settings only apply to PostgreSQL (not SQLite).
    """
    engine_kwargs = {
        "pool_pre_ping": True,  # Verify connections before using
        "echo": echo,
    }

    if not database_url.startswith("sqlite"):
        engine_kwargs["pool_size"] = 5
        engine_kwargs["max_overflow"] = 10

    return create_engine(database_url, **engine_kwargs)


def create_session_factory(engine: Engine) -> sessionmaker:
    """Create a session factory bound to ``engine``."""
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=engine,
    )


@contextmanager
def get_db_session(session_factory: sessionmaker) -> Generator[Session, None, None]:
    """Context manager for database sessions.

    Usage:
        with get_db_session(SessionLocal) as session:
            session.query(DataRetentionPolicy).all()

    Automatically commits on success, rolls back on exception.
    """
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def advisory_lock_key(name: str) -> int:
    """Map a lock name to a stable signed 32-bit key for pg advisory locks."""
    value = zlib.crc32(name.encode("utf-8"))
    return value - (1 << 32) if value >= (1 << 31) else value


@contextmanager
def advisory_lock(engine: Engine, name: str) -> Generator[bool, None, None]:
    """Try to take a session-level PostgreSQL advisory lock.

    Yields True when the lock is held for the duration of the block and False
    when another session owns it. Non-PostgreSQL dialects always yield True.

    Usage:
        with advisory_lock(engine, "data_retention_job") as acquired:
            if not acquired:
                return None
            ...
    """
    if engine.dialect.name != "postgresql":
        yield True
        return

    key = advisory_lock_key(name)
    with engine.connect() as connection:
        acquired = bool(
            connection.execute(text("SELECT pg_try_advisory_lock(:key)"), {"key": key}).scalar()
        )
        try:
            yield acquired
        finally:
            if acquired:
                connection.execute(text("SELECT pg_advisory_unlock(:key)"), {"key": key})
                connection.commit()
