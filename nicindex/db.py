"""SQLite engine and session management for the index store."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, Optional, Union

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, SQLModel, create_engine

from nicindex.errors import StoreFailure
from nicindex.models.store import NAMESPACES
from nicindex.settings import get_settings

logger = logging.getLogger(__name__)

_ENGINE_CACHE: Dict[str, Engine] = {}
_COMPANION_SUFFIXES = ("", "-wal", "-shm", "-journal")


def _install_sqlite_hooks(engine: Engine) -> None:
    """Let SQLAlchemy own transaction boundaries on the pysqlite driver.

    The driver otherwise defers ``BEGIN`` until the first write, which breaks
    SAVEPOINT handling and read snapshots.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, _connection_record) -> None:
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn) -> None:
        conn.exec_driver_sql("BEGIN")


def resolve_store_path(path: Optional[Union[str, Path]] = None) -> Path:
    if path is None:
        return get_settings().store_path
    return Path(path)


def get_engine(path: Optional[Union[str, Path]] = None) -> Engine:
    """Return (and cache) an engine for the store file at ``path``."""

    store_path = resolve_store_path(path).resolve()
    cache_key = str(store_path)
    engine = _ENGINE_CACHE.get(cache_key)
    if engine is None:
        store_path.parent.mkdir(parents=True, exist_ok=True)
        engine = create_engine(
            f"sqlite:///{store_path}",
            echo=get_settings().sqlite_echo,
            future=True,
        )
        _install_sqlite_hooks(engine)
        _ENGINE_CACHE[cache_key] = engine
    return engine


def dispose_engine(path: Optional[Union[str, Path]] = None) -> None:
    store_path = resolve_store_path(path).resolve()
    engine = _ENGINE_CACHE.pop(str(store_path), None)
    if engine is not None:
        engine.dispose()


def dispose_all() -> None:
    for key in list(_ENGINE_CACHE):
        _ENGINE_CACHE.pop(key).dispose()


def store_exists(path: Optional[Union[str, Path]] = None) -> bool:
    return resolve_store_path(path).exists()


def init_store(engine: Engine) -> None:
    """Create the six namespace tables if they are missing."""

    try:
        SQLModel.metadata.create_all(
            engine,
            tables=[model.__table__ for model in NAMESPACES],
            checkfirst=True,
        )
    except SQLAlchemyError as exc:
        raise StoreFailure(f"failed to create namespaces: {exc}") from exc


def rebuild_store(path: Optional[Union[str, Path]] = None) -> Engine:
    """Delete the store file and recreate every namespace empty."""

    store_path = resolve_store_path(path)
    dispose_engine(store_path)
    for suffix in _COMPANION_SUFFIXES:
        candidate = store_path.with_name(store_path.name + suffix)
        try:
            candidate.unlink(missing_ok=True)
        except OSError as exc:
            raise StoreFailure(f"cannot remove {candidate}: {exc}") from exc

    logger.info("Recreating index store at %s", store_path)
    engine = get_engine(store_path)
    init_store(engine)
    return engine


@contextmanager
def write_session(engine: Engine) -> Iterator[Session]:
    """Yield a session inside one write transaction, committed on exit."""

    try:
        with Session(engine) as session, session.begin():
            yield session
    except SQLAlchemyError as exc:
        raise StoreFailure(f"write transaction failed: {exc}") from exc


@contextmanager
def read_session(engine: Engine) -> Iterator[Session]:
    """Yield a session pinned to one read snapshot."""

    try:
        with Session(engine) as session, session.begin():
            yield session
    except SQLAlchemyError as exc:
        raise StoreFailure(f"read transaction failed: {exc}") from exc


__all__ = [
    "Session",
    "dispose_all",
    "dispose_engine",
    "get_engine",
    "init_store",
    "read_session",
    "rebuild_store",
    "store_exists",
    "write_session",
]
