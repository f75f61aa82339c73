from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager

from loguru import logger
from sqlalchemy import Engine, create_engine, text
from sqlalchemy.orm import Session, sessionmaker

from coach_context.config.settings import settings
from coach_context.db.models import Base

# Lazy initialization so importing the engine never opens a connection
_engine: Engine | None = None
_SessionLocal: sessionmaker[Session] | None = None


def _is_postgresql(url: str) -> bool:
    return "postgresql" in url.lower() or "postgres" in url.lower()


def _get_engine() -> Engine:
    """Get or create the database engine (lazy initialization)."""
    global _engine
    if _engine is None:
        database_url = settings.database_url
        logger.info(f"Initializing database engine: {database_url.split('@')[-1]}")

        connect_args: dict = {}
        if "sqlite" in database_url.lower():
            logger.warning("Using SQLite database (local development only)")
            connect_args = {"check_same_thread": False}
        elif _is_postgresql(database_url):
            connect_args = {
                "connect_timeout": 10,
                "application_name": "coach-context-engine",
            }

        _engine = create_engine(
            database_url,
            connect_args=connect_args,
            echo=False,
            pool_pre_ping=True,
            pool_recycle=3600,
        )
        logger.info("Database engine initialized")
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """Get or create the session factory (lazy initialization)."""
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=_get_engine())
        logger.info("Database session factory initialized")
    return _SessionLocal


def init_db(engine: Engine | None = None) -> None:
    """Create any missing tables."""
    Base.metadata.create_all(bind=engine or _get_engine())


def check_database_connection() -> None:
    try:
        with _get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
        logger.info("Database connection test successful")
    except Exception as e:
        logger.error(f"Database connection test failed: {e}")
        raise


@contextmanager
def get_session(factory: sessionmaker[Session] | None = None) -> Generator[Session, None, None]:
    """Get database session context manager.

    Commits when the block exits cleanly (flushed writes included), rolls
    back and re-raises otherwise.
    """
    session = (factory or get_session_factory())()
    try:
        yield session
        if session.in_transaction():
            session.commit()
            logger.debug("Database session committed")
    except Exception as e:
        logger.error(f"Database session error, rolling back: {type(e).__name__}: {e}")
        session.rollback()
        raise
    finally:
        session.close()
