from __future__ import annotations

import os
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine

from .config import settings


def _is_sqlite(database_url: str) -> bool:
    return database_url.startswith("sqlite")


def _is_sqlite_memory(database_url: str) -> bool:
    return database_url in ("sqlite://", "sqlite:///:memory:")


def _is_postgres(database_url: str) -> bool:
    return database_url.startswith("postgresql")


def _ensure_sqlite_dir(database_url: str) -> None:
    """
    Ensure the parent folder exists for SQLite file-based DB URLs like:
      sqlite:///./data/namhatta.sqlite
      sqlite:////absolute/path/to/db.sqlite
    """
    if not database_url.startswith("sqlite:///") or _is_sqlite_memory(database_url):
        return

    path = database_url.replace("sqlite:///", "", 1)
    folder = os.path.dirname(path)
    if folder:
        os.makedirs(folder, exist_ok=True)


def _sqlite_pragmas(engine: Engine) -> None:
    """
    Pragmas that make SQLite usable for concurrent admin requests.
    """

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragmas(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL;")  # readers don't block the single writer
        cursor.execute("PRAGMA synchronous=NORMAL;")
        cursor.execute("PRAGMA foreign_keys=ON;")  # supervisor_id must reference a real node
        cursor.execute("PRAGMA busy_timeout=5000;")  # wait for a competing writer instead of failing
        cursor.close()


def _postgres_session_settings(engine: Engine) -> None:
    """
    Per-connection settings for Postgres.
    statement_timeout bounds how long a transition may wait on a row lock.
    """

    @event.listens_for(engine, "connect")
    def _set_postgres_settings(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("SET statement_timeout = 30000;")
        cursor.close()


def make_engine(database_url: str) -> Engine:
    """
    Create an engine for the given URL.

    - SQLite gets pragmas + check_same_thread=False for FastAPI
    - In-memory SQLite shares one connection (StaticPool) so every session sees the same data
    - Postgres works by just changing DATABASE_URL
    """
    if _is_sqlite(database_url):
        _ensure_sqlite_dir(database_url)

    kwargs = {}
    if _is_sqlite(database_url):
        kwargs["connect_args"] = {"check_same_thread": False}
    if _is_sqlite_memory(database_url):
        kwargs["poolclass"] = StaticPool
    else:
        kwargs["pool_pre_ping"] = True

    engine = create_engine(database_url, echo=False, **kwargs)

    if _is_sqlite(database_url):
        _sqlite_pragmas(engine)

    if _is_postgres(database_url):
        _postgres_session_settings(engine)

    return engine


# Single, shared engine for the service process
engine: Engine = make_engine(settings.resolved_database_url)


def register_models() -> None:
    """
    Central place to import ALL models so SQLModel registers them.
    """
    from .models.leadership_node import LeadershipNode  # noqa: F401
    from .models.role_change import RoleChangeRecord  # noqa: F401


def init_db(create_tables: bool = True, bind: Optional[Engine] = None) -> None:
    """
    Register models, then create missing tables.
    Non-destructive: create_all will not drop or alter existing tables.
    """
    register_models()
    if create_tables:
        SQLModel.metadata.create_all(bind or engine)


def get_db() -> Generator[Session, None, None]:
    """
    FastAPI dependency:
        def route(db: Session = Depends(get_db)):
            ...
    Ensures the session is closed after each request.
    """
    with Session(engine) as session:
        yield session


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """
    Context manager for scripts/jobs that need commit/rollback safety.

    Usage:
        with session_scope() as db:
            db.add(...)
    """
    session = Session(engine)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
