# backend/ranker/db/session.py
"""
SQLAlchemy session/engine bootstrap.
- `Database(url)` owns one engine + sessionmaker; built once at startup from Settings.
- Exposes: Base, Database.session_scope(), Database.ensure_tables().
- SQLite URLs get `check_same_thread=False` because the job processor reaches
  the store from worker threads (asyncio.to_thread).
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import sessionmaker, Session, DeclarativeBase

logger = logging.getLogger(__name__)

# --- SQLAlchemy base ---------------------------------------------------------

class Base(DeclarativeBase):
    pass

# --- engine & session --------------------------------------------------------

def _enable_sqlite_savepoints(engine: Engine) -> None:
    """
    pysqlite defers BEGIN; emit it ourselves so SAVEPOINT upserts nest correctly.
    IMMEDIATE takes the write lock up front, so concurrent worker threads wait
    on the busy timeout instead of failing on a lock upgrade.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


class Database:
    def __init__(self, url: str, echo: bool = False):
        connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
        self.url = url
        self.engine = create_engine(url, echo=echo, pool_pre_ping=True, future=True, connect_args=connect_args)
        if url.startswith("sqlite"):
            _enable_sqlite_savepoints(self.engine)
        self.SessionLocal: sessionmaker[Session] = sessionmaker(
            bind=self.engine, class_=Session, autoflush=False, autocommit=False, expire_on_commit=False
        )

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """
        Context manager for a DB session.
        Example:
            with db.session_scope() as s:
                s.add(obj)
        Commits on success, rolls back and re-raises on error.
        """
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def ensure_tables(self) -> None:
        """
        Create tables if needed. Import models lazily to avoid circulars.
        Call this once at startup.
        """
        from . import models  # noqa: F401
        Base.metadata.create_all(bind=self.engine)
        logger.info("database tables ready (%s)", self.engine.url.render_as_string(hide_password=True))

    def dispose(self) -> None:
        self.engine.dispose()


__all__ = ["Base", "Database"]
