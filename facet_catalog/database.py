"""
Database connection and session management.
Uses SQLAlchemy; Postgres in production, SQLite for local runs and tests.
"""

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
import logging

from facet_catalog.config import get_config

logger = logging.getLogger(__name__)

# Base class for all our database models (must be defined before engine)
Base = declarative_base()


def make_engine(database_url: str) -> Engine:
    """Create an engine; SQLite connections are shared across threads for the API workers."""
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    return create_engine(database_url, pool_pre_ping=True, connect_args=connect_args)


try:
    engine = make_engine(get_config().database_url)
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
except Exception as e:
    logger.warning(f"Failed to create DB engine: {e}; DB features disabled")
    engine = None
    SessionLocal = None


def get_db():
    """
    Dependency function that provides a database session.
    The session is always closed after the request.
    """
    if SessionLocal is None:
        raise RuntimeError("Database is not configured (check DATABASE_URL)")
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
