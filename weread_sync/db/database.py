"""
Database engine and session management for the sync state database.

The scheduler thread and the web server threads share one SQLite file, so
SQLite connections run in WAL mode.
"""

import os
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, scoped_session, sessionmaker

from weread_sync.db.models import Base

SQLITE_PRAGMAS = {
    "journal_mode": "wal",
    "synchronous": "normal",
}

engine: Optional[Engine] = None
SessionLocal: Optional[scoped_session] = None


def ensure_data_directory(db_url: str) -> None:
    """Create the parent directory of a file-backed SQLite database."""
    if db_url.startswith("sqlite:///"):
        db_dir = os.path.dirname(db_url.replace("sqlite:///", ""))
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)


def _apply_sqlite_pragmas(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    for name, value in SQLITE_PRAGMAS.items():
        cursor.execute(f"PRAGMA {name}={value}")
    cursor.close()


def init_db(db_url: str) -> Engine:
    """
    Create the engine, the session factory and any missing tables.

    Args:
        db_url: SQLAlchemy URL, usually AppConfig.database_url
    """
    global engine, SessionLocal

    is_sqlite = db_url.startswith("sqlite")
    ensure_data_directory(db_url)

    engine = create_engine(
        db_url,
        connect_args={"check_same_thread": False} if is_sqlite else {},
        echo=False,
    )
    if is_sqlite:
        event.listen(engine, "connect", _apply_sqlite_pragmas)

    SessionLocal = scoped_session(
        sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)
    )

    Base.metadata.create_all(bind=engine)
    return engine


def is_initialized() -> bool:
    return SessionLocal is not None


def get_session() -> Session:
    """
    Raises:
        RuntimeError: If init_db() has not been called
    """
    if SessionLocal is None:
        raise RuntimeError("Database not initialized; call init_db() first")
    return SessionLocal()


@contextmanager
def get_db_session() -> Iterator[Session]:
    """Session scoped to one transaction: commit on success, rollback on error."""
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def close_db() -> None:
    """Dispose of the engine and forget the session factory."""
    global engine, SessionLocal
    if SessionLocal is not None:
        SessionLocal.remove()
    if engine is not None:
        engine.dispose()
    engine = None
    SessionLocal = None
