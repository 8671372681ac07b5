"""Database engine and helpers.

This module configures the SQLModel/SQLAlchemy engine from
`settings.DATABASE_URL` (a local SQLite file by default) and provides
the small helpers used by the application, scripts and tests.
"""

from sqlmodel import SQLModel, create_engine, Session
from .config import settings


def make_engine(url: str):
    """Create an engine for `url`, relaxing SQLite's same-thread check.

    FastAPI runs sync endpoints in a threadpool, so a SQLite connection
    may be used from a thread other than the one that opened it.
    """
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, echo=False, connect_args=connect_args)


engine = make_engine(settings.DATABASE_URL)


def create_db_and_tables(bind=None):
    """Create database tables using SQLModel metadata.

    This function is intended for local development and lightweight
    scripts; production deployments should rely on a proper migration
    tool (alembic) instead.
    """
    # models must be imported so their tables are registered on the metadata
    from . import models  # noqa: F401
    SQLModel.metadata.create_all(bind or engine)


def get_session():
    """Yield a database `Session` for FastAPI dependency injection.

    The generator yields a session and ensures it is closed when the
    request scope finishes.
    """
    with Session(engine) as session:
        yield session
