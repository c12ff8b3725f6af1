from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .config import settings

logger = logging.getLogger(__name__)


def make_engine(url: str):
    if url.startswith("sqlite"):
        # in-memory databases must share one connection across threads
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url.rstrip("/").endswith("sqlite:"):
            kwargs["poolclass"] = StaticPool
        eng = create_engine(url, future=True, **kwargs)

        @event.listens_for(eng, "connect")
        def _sqlite_fk_on(dbapi_conn, _record):
            cur = dbapi_conn.cursor()
            cur.execute("PRAGMA foreign_keys=ON")
            cur.close()

        return eng
    return create_engine(url, pool_pre_ping=True, future=True)


# Create engine
engine = make_engine(settings.DATABASE_URL)

# Session factory
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


# Base class for models
class Base(DeclarativeBase):
    pass


def init_db() -> None:
    """Wait for the database to accept connections, then create missing tables."""
    attempts = 0
    while True:
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            break
        except OperationalError:
            attempts += 1
            if attempts >= 20:
                raise
            logger.warning("Database not reachable yet (attempt %d/20)", attempts)
            time.sleep(1)

    # Import models so metadata has tables
    from . import models  # noqa: F401

    Base.metadata.create_all(bind=engine)


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def serializable_transaction(db: Session) -> Iterator[Session]:
    """
    Run the enclosed block as one SERIALIZABLE transaction.

    Commits on success, rolls back on any exception and re-raises it.
    On PostgreSQL the lock wait and the overall statement time are bounded
    by TX_MAX_WAIT_MS / TX_TIMEOUT_MS.
    """
    # isolation can only be chosen when the transaction starts; an open
    # read-only transaction is discarded, pending writes are a caller bug
    if db.new or db.dirty or db.deleted:
        raise RuntimeError("serializable_transaction() entered with uncommitted changes in the session")
    if db.in_transaction():
        db.rollback()
    db.connection(execution_options={"isolation_level": "SERIALIZABLE"})
    if db.get_bind().dialect.name == "postgresql":
        db.execute(text(f"SET LOCAL lock_timeout = {int(settings.TX_MAX_WAIT_MS)}"))
        db.execute(text(f"SET LOCAL statement_timeout = {int(settings.TX_TIMEOUT_MS)}"))
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
