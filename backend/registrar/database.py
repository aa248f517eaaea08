"""Database engine and helpers.

This module configures the SQLModel/SQLAlchemy engine from
`settings.DATABASE_URL` (a local SQLite file by default) and provides
the helpers used by the application, the seed script and the tests.
"""

from sqlmodel import SQLModel, create_engine, Session
from sqlalchemy import event

from .config import settings


def build_engine(url: str, **kwargs):
    """Create an engine for `url`.

    SQLite connections get `check_same_thread=False` so FastAPI's
    threadpool can share them, and foreign key enforcement switched on.
    """
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    eng = create_engine(url, echo=False, **kwargs)
    if url.startswith("sqlite"):
        event.listen(eng, "connect", _enable_sqlite_foreign_keys)
    return eng


def _enable_sqlite_foreign_keys(dbapi_conn, _record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


engine = build_engine(settings.DATABASE_URL)


def create_db_and_tables(bind=None):
    """Create database tables using SQLModel metadata.

    Intended for local development, the seed script and tests; a
    server deployment should manage its schema with a migration tool.
    """
    from . import models  # noqa: F401  registers the tables on the metadata
    SQLModel.metadata.create_all(bind or engine)


def get_session():
    """Yield a database `Session` for FastAPI dependency injection.

    The generator yields a session and ensures it is closed when the
    request scope finishes.
    """
    with Session(engine) as session:
        yield session
