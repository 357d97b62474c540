# storage/db.py
from __future__ import annotations

from pathlib import Path
from typing import Callable, Union

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine

from core.settings import DB_PATH
from services.errors import StorageUnavailable
from services.pending_queue import PendingQueue

# Ensure SQLModel metadata is populated
import models.pending_entry  # noqa: F401
from storage import migrations


MEMORY = ":memory:"


def create_db_engine(path: Union[Path, str, None] = None) -> Engine:
    """Build an engine for the queue database at ``path`` (or in memory)."""

    target = DB_PATH if path is None else path
    if str(target) == MEMORY:
        return create_engine(
            "sqlite://",
            echo=False,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    db_path = Path(target)
    try:
        db_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise StorageUnavailable(f"Cannot create {db_path.parent}: {exc}") from exc
    return create_engine(f"sqlite:///{db_path.as_posix()}", echo=False)


def init_db(engine: Engine) -> None:
    try:
        SQLModel.metadata.create_all(engine)
        migrations.run_all(engine)
    except SQLAlchemyError as exc:
        raise StorageUnavailable(f"Cannot open pending entry store: {exc}") from exc


def make_session_factory(engine: Engine) -> Callable[[], Session]:
    def factory() -> Session:
        return Session(engine)

    return factory


def open_queue(path: Union[Path, str, None] = None) -> PendingQueue:
    """Create, migrate and wrap the queue database in a :class:`PendingQueue`."""

    engine = create_db_engine(path)
    init_db(engine)
    return PendingQueue(make_session_factory(engine))


__all__ = ["MEMORY", "create_db_engine", "init_db", "make_session_factory", "open_queue"]
