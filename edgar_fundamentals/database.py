"""
Database configuration and session management.
"""

from sqlalchemy import create_engine
from sqlalchemy import event
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import sessionmaker
import os

DATABASE_URL = os.getenv("DATABASE_URL")
# Local fallback when no DATABASE_URL is configured.
if not DATABASE_URL:
    DATABASE_URL = "sqlite:///./edgar.db"

Base = declarative_base()


def enable_sqlite_wal(engine) -> None:
    """
    Switch SQLite connections to write-ahead logging.

    WAL lets the scheduler and queue writers proceed without blocking concurrent readers.
    """
    if engine.dialect.name != "sqlite":
        return

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragmas(dbapi_connection, connection_record):  # noqa: ARG001
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.execute("PRAGMA busy_timeout=5000")
        finally:
            cursor.close()


def create_db_engine(url: str):
    if url.startswith("sqlite:"):
        eng = create_engine(url, connect_args={"check_same_thread": False})
        enable_sqlite_wal(eng)
        return eng
    return create_engine(url, pool_pre_ping=True)


engine = create_db_engine(DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind=None):
    """Initialize database tables."""
    # Import models so SQLAlchemy registers all tables on Base.metadata
    from edgar_fundamentals import models  # noqa: F401
    Base.metadata.create_all(bind=bind or engine)
