"""Database connection management for the order service.

Provides synchronous database access using SQLAlchemy. Supports SQLite
for development with any SQLAlchemy-supported URL for production.

Usage:
    from orderflow.db.connection import get_db, init_db

    init_db()  # Create tables
    db = next(get_db())
    # ... use db session
"""

import os
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from orderflow.db.models import Base

_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent

# Seconds a writer waits on a locked SQLite database before failing
SQLITE_BUSY_TIMEOUT_SECONDS = 30


def get_database_url() -> str:
    """Get database URL from environment or use default SQLite.

    Precedence:
    1. DATABASE_URL
    2. sqlite:///<project root>/orderflow.db
    """
    database_url = os.environ.get("DATABASE_URL", "").strip()
    if database_url:
        return database_url
    return f"sqlite:///{_PROJECT_ROOT / 'orderflow.db'}"


def sqlite_connect_args(url: str) -> dict[str, Any]:
    """Connection arguments for SQLite URLs, empty for other dialects."""
    if not url.startswith("sqlite"):
        return {}
    return {"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT_SECONDS}


def configure_sqlite_engine(target: Engine, wal: bool = True) -> None:
    """Install SQLite connection and transaction hooks on an engine.

    Enables:
    - foreign_keys=ON: Referential integrity (disabled by default in SQLite).
    - journal_mode=WAL: Readers proceed alongside the single writer.
    - synchronous=NORMAL: Commits are durable after WAL fsync.

    The driver's implicit transaction handling is switched off and every
    transaction opens with BEGIN IMMEDIATE. Writers then queue on the busy
    timeout at BEGIN instead of failing mid-transaction on lock upgrade,
    and SAVEPOINTs nest inside a real outer transaction.

    Args:
        target: Engine bound to a SQLite URL.
        wal: Whether to switch the database to WAL journaling.
    """

    @event.listens_for(target, "connect")
    def set_sqlite_pragma(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        if wal:
            cursor.execute("PRAGMA journal_mode=WAL;")
            cursor.execute("PRAGMA synchronous=NORMAL;")
        cursor.close()

    @event.listens_for(target, "begin")
    def begin_immediate(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


DATABASE_URL = get_database_url()

engine = create_engine(
    DATABASE_URL,
    connect_args=sqlite_connect_args(DATABASE_URL),
    echo=os.environ.get("SQL_ECHO", "").lower() == "true",
)

if DATABASE_URL.startswith("sqlite"):
    configure_sqlite_engine(engine)


SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)


def get_db() -> Generator[Session, None, None]:
    """Yield a database session for synchronous operations.

    Intended for use with FastAPI's Depends() for request-scoped sessions.
    Services own their commits; the session is only closed here.

    Yields:
        Session: SQLAlchemy session that will be closed after use.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_db_context() -> Generator[Session, None, None]:
    """Context manager for database sessions outside of FastAPI.

    Usage:
        with get_db_context() as db:
            order = db.query(PendingOrder).first()
    """
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db() -> None:
    """Create all database tables.

    Safe to call multiple times - will not recreate existing tables.
    """
    Base.metadata.create_all(bind=engine)


def close_db() -> None:
    """Close the engine and dispose of connection pool."""
    engine.dispose()
