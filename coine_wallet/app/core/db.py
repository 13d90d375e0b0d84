"""Engine and session wiring for the wallet tables.

Every store commits its own short transaction, so the only knob that matters
here is how long a connection may wait: on the database lock for SQLite, on
connect for server databases. A wait that runs out surfaces as a storage
error, which the transfer engine treats as a failed leg.
"""

from __future__ import annotations

import logging
from collections.abc import Generator
from typing import Any

from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

from ..models import db as _db_models  # noqa: F401 - ensure models register with metadata
from .config import get_settings


logger = logging.getLogger(__name__)


def wait_limits(database_url: str, timeout: float) -> dict[str, Any]:
    """Driver ``connect_args`` that bound how long one statement can wait."""
    if database_url.startswith("sqlite"):
        # sqlite3 waits up to ``timeout`` seconds for another writer's lock
        return {"check_same_thread": False, "timeout": timeout}
    if database_url.startswith("postgresql"):
        return {"connect_timeout": max(1, int(timeout))}
    return {}


def create_engine_for_url(database_url: str, timeout: float | None = None) -> Engine:
    if timeout is None:
        timeout = get_settings().database_timeout_seconds
    return create_engine(
        database_url,
        echo=False,
        connect_args=wait_limits(database_url, timeout),
    )


engine = create_engine_for_url(get_settings().database_url)


def init_db() -> None:
    SQLModel.metadata.create_all(engine)
    logger.info(
        "db.initialized",
        extra={"tables": sorted(SQLModel.metadata.tables), "url": engine.url.render_as_string()},
    )


def get_session() -> Generator[Session, None, None]:
    with Session(engine) as session:
        yield session


def set_engine(new_engine: Engine) -> Engine:
    """Swap the module engine and return the one it replaced."""
    global engine
    previous, engine = engine, new_engine
    return previous
