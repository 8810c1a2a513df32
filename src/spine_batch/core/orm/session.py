"""SQLAlchemy engine and session factories.

* ``create_batch_engine``  -- Create a SA engine from a URL.
* ``BatchSession``         -- Session with ``expire_on_commit=False``.
* ``batch_session_factory``-- ``sessionmaker`` producing ``BatchSession``.
* ``init_schema``          -- Create the spine-batch tables if missing.

The supervisor and its worker processes open the same database URL in turn.
SQLite files get WAL journaling so a status query from another shell never
blocks the active worker.  In-memory SQLite uses ``StaticPool`` so every
session in the process sees the same database.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from sqlalchemy import create_engine as _sa_create_engine
from sqlalchemy import event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from spine_batch.core.orm.base import BatchBase


def _is_memory_sqlite(url: str) -> bool:
    parsed = make_url(url)
    return parsed.get_backend_name() == "sqlite" and parsed.database in (None, "", ":memory:")


def create_batch_engine(url: str = "sqlite://", *, echo: bool = False, **kwargs: Any) -> Engine:
    """Create a SQLAlchemy engine with sane defaults.

    Parameters
    ----------
    url:
        Database URL (``sqlite:///…``, ``postgresql://…``, etc.)
    echo:
        If ``True``, log all SQL.
    **kwargs:
        Extra arguments forwarded to ``sqlalchemy.create_engine``.
    """
    if not url.startswith("sqlite"):
        return _sa_create_engine(url, echo=echo, **kwargs)

    kwargs.setdefault("connect_args", {"check_same_thread": False})

    if _is_memory_sqlite(url):
        kwargs.setdefault("poolclass", StaticPool)
        return _sa_create_engine(url, echo=echo, **kwargs)

    database = make_url(url).database
    if database:
        Path(database).expanduser().parent.mkdir(parents=True, exist_ok=True)

    engine = _sa_create_engine(url, echo=echo, **kwargs)

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_connection: Any, _rec: Any) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA busy_timeout=5000")
        cursor.close()

    return engine


class BatchSession(Session):
    """Pre-configured session with ``expire_on_commit=False``.

    Prevents lazy-load surprises after commit.
    """

    def __init__(self, bind: Engine | None = None, **kwargs: Any) -> None:
        kwargs.setdefault("expire_on_commit", False)
        super().__init__(bind=bind, **kwargs)


def batch_session_factory(engine: Engine) -> sessionmaker[BatchSession]:
    """Return a ``sessionmaker`` bound to *engine* that produces ``BatchSession`` instances."""
    return sessionmaker(bind=engine, class_=BatchSession)


def init_schema(engine: Engine) -> None:
    """Create all spine-batch tables that do not exist yet."""
    BatchBase.metadata.create_all(engine)
