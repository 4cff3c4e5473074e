"""Database connection and session management."""
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from typing import Generator

from .config import get_settings

settings = get_settings()


def _engine_options(database_url: str) -> dict:
    """Pool settings per backend.

    SQLite connections are shared across FastAPI's threadpool, so the
    same-thread check is disabled. Server databases get a small pool.
    """
    if database_url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_pre_ping": True,       # Verify connections before using
        "pool_size": 5,              # Base pool of 5 connections
        "max_overflow": 10,          # Allow up to 15 total connections
        "pool_recycle": 3600,        # Recycle connections every hour
        "pool_timeout": 30,          # Timeout after 30 seconds
    }


def enable_sqlite_foreign_keys(bind: Engine) -> None:
    """Turn on FK enforcement (ON DELETE CASCADE / SET NULL) for SQLite connections."""
    if bind.dialect.name != "sqlite":
        return

    @event.listens_for(bind, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


# Create database engine
engine = create_engine(settings.database_url, **_engine_options(settings.database_url))
enable_sqlite_foreign_keys(engine)

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """
    Dependency function to get database session.

    Yields:
        Session: SQLAlchemy database session
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
