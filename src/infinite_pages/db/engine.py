"""
Database engine and session management
PostgreSQL in staging/prod, SQLite accepted for local development and tests
"""
import logging
from typing import Generator
from urllib.parse import urlparse

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ..config import config

logger = logging.getLogger(__name__)


def _describe_url(url: str) -> str:
    """Describe a database URL without leaking credentials"""
    parsed = urlparse(url)
    if parsed.scheme.startswith("sqlite"):
        return f"SQLite ({parsed.path or 'memory'})"
    return f"{parsed.scheme} (host: {parsed.hostname}, db: {parsed.path.lstrip('/')})"


def build_engine(url: str):
    """Create the SQLAlchemy engine for the configured database"""
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            # Single shared connection so every session sees the same in-memory schema
            kwargs["poolclass"] = StaticPool
        new_engine = create_engine(url, **kwargs)

        @event.listens_for(new_engine, "connect")
        def _enable_foreign_keys(dbapi_conn, connection_record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()
    else:
        new_engine = create_engine(
            url,
            pool_pre_ping=True,
            pool_size=config.DB_POOL_SIZE,
            max_overflow=config.DB_MAX_OVERFLOW,
            pool_timeout=config.DB_POOL_TIMEOUT,
            pool_recycle=config.DB_POOL_RECYCLE,
            connect_args={
                "connect_timeout": 5,
                "keepalives": 1,
                "keepalives_idle": 60,
                "keepalives_interval": 10,
                "keepalives_count": 3,
                "application_name": "infinite_pages",
            },
        )

        @event.listens_for(new_engine, "invalidate")
        def _receive_invalidate(dbapi_conn, connection_record, exception):
            logger.warning(f"Connection invalidated: {exception}")

        logger.info(
            f"PostgreSQL engine configured: pool_size={config.DB_POOL_SIZE}, "
            f"max_overflow={config.DB_MAX_OVERFLOW}, pool_recycle={config.DB_POOL_RECYCLE}s"
        )

    logger.info(f"Database engine created for {_describe_url(url)}")
    return new_engine


engine = build_engine(config.DATABASE_URL or "sqlite:///./infinite_pages.db")

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator:
    """
    FastAPI dependency yielding a database session

    The session is rolled back if the request raised and always closed.
    """
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db():
    """Create all tables (development and tests; production uses Alembic)"""
    from .base import Base
    from . import models  # noqa: F401  register models on the metadata

    Base.metadata.create_all(bind=engine)
    logger.info("Database tables ensured")
