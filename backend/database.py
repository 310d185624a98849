"""
Database engine and session management.

The engine is built from DATABASE_URL. SQLite connections get foreign keys
switched on so that restrict / cascade / set-null rules are enforced by the
store itself, the same way PostgreSQL enforces them.
"""

import logging
import sqlite3
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

logger = logging.getLogger(__name__)


@event.listens_for(Engine, "connect")
def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    if isinstance(dbapi_connection, sqlite3.Connection):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def build_engine(url: str) -> Engine:
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    logger.debug(f"Creating database engine for {url.split('@')[-1]}")
    return create_engine(url, connect_args=connect_args, pool_pre_ping=True)


# Bound to an engine by init_engine() when the application starts
SessionLocal = sessionmaker(autocommit=False, autoflush=False)

Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """Yield one session per request and always close it."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_engine(url: str) -> Engine:
    """Create the engine for DATABASE_URL and bind the session factory to it."""
    engine = build_engine(url)
    SessionLocal.configure(bind=engine)
    return engine
