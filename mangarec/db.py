from contextlib import contextmanager
from pathlib import Path
from threading import Lock
from typing import Iterator

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, SQLModel, create_engine

from mangarec.config import get_settings
from mangarec.errors import PersistenceError

_ENGINE = None
_ENGINE_LOCK = Lock()


def _create_engine() -> Engine:
    db_file = Path(get_settings().db_path).expanduser()
    db_file.parent.mkdir(parents=True, exist_ok=True)
    # Sweep workers and request threads share one engine.
    engine = create_engine(f"sqlite:///{db_file}", connect_args={"check_same_thread": False})

    @event.listens_for(engine, "connect")
    def _sqlite_pragmas(dbapi_connection, _):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL;")
        cursor.execute("PRAGMA foreign_keys=ON;")
        cursor.close()

    return engine


def get_engine() -> Engine:
    global _ENGINE
    with _ENGINE_LOCK:
        if _ENGINE is None:
            _ENGINE = _create_engine()
        return _ENGINE


def reset_engine() -> Engine:
    """Rebuild the engine from current settings, releasing pooled connections of the old one."""
    global _ENGINE
    with _ENGINE_LOCK:
        if _ENGINE is not None:
            _ENGINE.dispose()
        _ENGINE = _create_engine()
        return _ENGINE


def init_db() -> None:
    import mangarec.models  # noqa: F401  registers tables on SQLModel.metadata

    SQLModel.metadata.create_all(get_engine())


@contextmanager
def session_scope(action: str) -> Iterator[Session]:
    """Session whose SQLAlchemy failures surface as PersistenceError naming ``action``."""
    try:
        with Session(get_engine()) as session:
            yield session
    except SQLAlchemyError as exc:
        raise PersistenceError(f"{action} failed: {exc}") from exc
