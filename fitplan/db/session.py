from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager

from loguru import logger
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from fitplan.config.settings import settings
from fitplan.db.models import Base

# Lazy initialization to avoid import-time database connections
_engine = None
_SessionLocal = None


def _get_engine():
    """Get or create the database engine (lazy initialization)."""
    global _engine
    if _engine is None:
        logger.info("Initializing database engine", database_url=settings.database_url)

        connect_args = {}
        if "sqlite" in settings.database_url.lower():
            logger.warning("Using SQLite database (local development only)")
            connect_args = {"check_same_thread": False}

        _engine = create_engine(
            settings.database_url,
            connect_args=connect_args,
            echo=False,
            pool_pre_ping=True,  # Verify connections before using (important for cloud DBs)
            pool_recycle=3600,
        )
        logger.info("Database engine initialized")
    return _engine


def get_engine():
    """Get or create the database engine (public API)."""
    return _get_engine()


def _get_session_local():
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = make_session_factory(_get_engine())
        logger.info("Database session factory initialized")
    return _SessionLocal


def get_session_factory() -> sessionmaker[Session]:
    """Session factory for the configured database (public API)."""
    return _get_session_local()


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Session factory bound to an explicit engine (tests, CLI overrides)."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)


def create_tables(engine: Engine | None = None) -> None:
    Base.metadata.create_all(bind=engine or _get_engine())
    logger.info("Database tables ensured")


@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    """Transactional scope over ``factory``: commit on success, roll back on error."""
    session = factory()
    try:
        yield session
        session.commit()
    except Exception as e:
        logger.error(
            "Database session error, rolling back",
            error=str(e),
            error_type=type(e).__name__,
        )
        session.rollback()
        raise
    finally:
        session.close()


@contextmanager
def get_session() -> Generator[Session, None, None]:
    """Get database session context manager for the configured database."""
    with session_scope(_get_session_local()) as session:
        yield session
