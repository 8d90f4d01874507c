"""Schema creation."""
import logging
from typing import Optional

from sqlalchemy.engine import Engine
from sqlmodel import SQLModel

from . import models  # noqa: F401  registers the tables on SQLModel.metadata
from .connection import get_engine

log = logging.getLogger(__name__)


def init_db(db_path: Optional[str] = None) -> Engine:
    """Create any missing tables and return the engine for ``db_path``."""
    engine = get_engine(db_path)
    SQLModel.metadata.create_all(engine)
    log.debug(f"[DB] Schema ready: {', '.join(sorted(SQLModel.metadata.tables))}")
    return engine
