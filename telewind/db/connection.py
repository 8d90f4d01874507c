"""Engine and session helpers for the SQLite store."""
import logging
import threading
from contextlib import contextmanager, nullcontext
from pathlib import Path
from typing import Dict, Iterator, Optional

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, create_engine

from telewind.errors import StorageUnavailable

log = logging.getLogger(__name__)

_engines: Dict[str, Engine] = {}
# :memory: engines share a single connection; their sessions must not interleave
_memory_locks: Dict[Engine, threading.RLock] = {}


def _default_db_path() -> str:
    from telewind.config import config

    return config.DB_PATH


def _enable_sqlite_pragmas(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def get_engine(db_path: Optional[str] = None) -> Engine:
    """
    Return the (cached) engine for a database path.

    ``:memory:`` keeps one connection for every thread, and
    ``session_scope`` runs its sessions one at a time.
    """
    path = db_path or _default_db_path()
    engine = _engines.get(path)
    if engine is not None:
        return engine

    if path == ":memory:":
        engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        _memory_locks[engine] = threading.RLock()
    else:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        engine = create_engine(
            f"sqlite:///{path}",
            connect_args={"check_same_thread": False, "timeout": 30},
        )
    event.listen(engine, "connect", _enable_sqlite_pragmas)
    _engines[path] = engine
    log.debug(f"[DB] Engine created for {path}")
    return engine


def dispose_engines():
    """Dispose every cached engine (used on shutdown and in tests)."""
    for engine in _engines.values():
        engine.dispose()
    _engines.clear()
    _memory_locks.clear()


@contextmanager
def session_scope(engine: Optional[Engine] = None) -> Iterator[Session]:
    """
    Transactional scope around a series of operations.

    Commits on a clean exit and rolls back on error. SQLite lock and I/O
    failures surface as StorageUnavailable.
    """
    engine = engine or get_engine()
    with _memory_locks.get(engine) or nullcontext():
        session = Session(engine, expire_on_commit=False)
        try:
            yield session
            session.commit()
        except OperationalError as e:
            session.rollback()
            log.error(f"[DB] Storage operation failed: {e}")
            raise StorageUnavailable(str(e)) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
