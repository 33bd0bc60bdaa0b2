from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager

from loguru import logger
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from cohortlinks.config import get_settings
from cohortlinks.db.models.base import Base

_engine: Engine | None = None
_SessionLocal: sessionmaker[Session] | None = None


def create_db_engine(url: str, echo: bool = False, lock_timeout: float = 15.0) -> Engine:
    """
    Create an engine for the given URL.

    PostgreSQL sessions get a lock_timeout so a writer blocked on a cohort
    row gives up instead of waiting forever. SQLite connections run every
    transaction as BEGIN IMMEDIATE so that writers are serialized on the
    database file, and enforce foreign keys.
    """
    if not url.startswith("sqlite"):
        return create_engine(
            url,
            echo=echo,
            pool_pre_ping=True,
            connect_args={"options": f"-c lock_timeout={int(lock_timeout * 1000)}"},
        )

    engine = create_engine(
        url,
        echo=echo,
        connect_args={"timeout": lock_timeout, "check_same_thread": False},
    )

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # Hand transaction control to the "begin" hook below
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def get_engine() -> Engine:
    """Get or create the database engine (lazy initialization)."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_db_engine(
            settings.database_url,
            echo=settings.db_echo,
            lock_timeout=settings.db_lock_timeout_seconds,
        )
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """Get or create the session factory."""
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(bind=get_engine(), autoflush=False, expire_on_commit=False)
    return _SessionLocal


def reset_engine() -> None:
    """Dispose the engine so the next access rebuilds it from current settings."""
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None


def init_db() -> None:
    """Initialize database tables."""
    Base.metadata.create_all(bind=get_engine())
    logger.info("Database tables initialized")


def check_database() -> tuple[str, str | None]:
    """
    Check database connectivity.

    Returns:
        Tuple of (status, error_message). Status is "ok" or "error".
    """
    from sqlalchemy.exc import SQLAlchemyError

    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
        return "ok", None
    except SQLAlchemyError as e:
        return "error", str(e)


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """
    Provide a transactional scope around a series of operations.

    A failing commit (lock contention, serialization failure) is raised as a
    link storage error like any other write failure.
    """
    from cohortlinks.links.errors import storage_errors

    session = get_session_factory()()
    try:
        yield session
        with storage_errors("commit"):
            session.commit()
    except Exception:  # Intentionally broad - rollback on any error before re-raising
        session.rollback()
        raise
    finally:
        session.close()


def get_session() -> Generator[Session, None, None]:
    """FastAPI dependency for database sessions (one transaction per request)."""
    with session_scope() as session:
        yield session
