# backend/database.py
"""
Database setup and session management for DVR Bridge.
Uses SQLAlchemy 2.0; the device snapshot lives in a single table.
"""

from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase, Session


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create an engine for the given URL.

    For file-backed SQLite the parent directory is created first, and
    check_same_thread is disabled because the registry writes from executor
    threads as well as the event loop thread.
    """
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
        if "///" in database_url:
            db_path = database_url.split("///", 1)[1]
            if db_path and db_path != ":memory:":
                Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    return create_engine(
        database_url,
        connect_args=connect_args,
        echo=echo,
        pool_pre_ping=True,  # Verify connections before using
    )


def init_db(engine: Engine) -> None:
    """
    Initialize the database by creating all tables.
    Called when the snapshot store is opened.
    """
    # Import all models to ensure they're registered with Base
    from models import orm  # noqa: F401

    Base.metadata.create_all(bind=engine)


@contextmanager
def get_db_session(session_factory: sessionmaker) -> Generator[Session, None, None]:
    """
    Context manager for database sessions.
    Commits on success, rolls back on exceptions.

    Usage:
        with get_db_session(factory) as db:
            db.query(Model).all()
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
