"""
Metadata database for HubPanel.

Holds console users, the activity log and stored connections. Defaults to a
local SQLite file; HUBPANEL_DB_URL points it at any SQLAlchemy URL.
"""

import logging
from typing import Generator
from sqlmodel import create_engine, SQLModel, Session
from sqlalchemy.engine import Engine

from .config import Config


def _create_engine(url: str) -> Engine:
    """Create the metadata engine with per-dialect connection arguments."""
    if url.startswith("sqlite"):
        # SQLite must be usable from FastAPI's threadpool
        return create_engine(url, connect_args={"check_same_thread": False})

    return create_engine(
        url,
        pool_size=Config.DRIVER_POOL_SIZE,
        pool_pre_ping=True,
        pool_recycle=Config.DRIVER_POOL_RECYCLE,
    )


engine = _create_engine(Config.get_database_url())


def create_db_and_tables():
    """
    Creates all tables defined by our SQLModel classes.
    """
    # Use the current engine value (important for testing when engine is overridden)
    current_engine = globals()["engine"]

    logging.info("Initializing metadata database and creating tables...")

    # Import all models to ensure they're registered with SQLModel
    from .models import User, ActivityLog, StoredConnection  # noqa: F401

    SQLModel.metadata.create_all(current_engine)
    logging.info("Metadata database and tables initialized.")


def get_engine() -> Engine:
    """Get the current metadata engine."""
    return globals()["engine"]


def get_session() -> Generator[Session, None, None]:
    """
    Dependency function that provides a database session to the API endpoints.
    """
    with Session(get_engine()) as session:
        try:
            yield session
        except Exception as e:
            session.rollback()
            logging.error(f"Database session error: {e}")
            raise
