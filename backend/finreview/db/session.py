from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import NullPool

logger = logging.getLogger(__name__)

# Engine and sessionmaker are built lazily so tests can flip DATABASE_URL
# between cases; both live in module globals keyed by the URL they came from.
_current_url: str | None = None


def _configure_if_needed() -> None:
    global _current_url
    url = os.getenv("DATABASE_URL")
    if url == _current_url:
        return
    _current_url = url
    eng = globals().get("_engine")
    if eng is not None:
        eng.dispose()
    if not url:
        globals()["_engine"] = None
        globals()["_SessionLocal"] = None
        return

    if url.startswith("sqlite:///"):
        raw_path = url[len("sqlite:///"):]
        dir_path = os.path.dirname(raw_path)
        if dir_path:
            os.makedirs(dir_path, exist_ok=True)
        if os.name == "nt" and "\\" in raw_path:
            url = "sqlite:///" + raw_path.replace("\\", "/")
    create_kwargs = {"future": True, "pool_pre_ping": True}
    if url.startswith("sqlite"):
        create_kwargs["poolclass"] = NullPool
        create_kwargs["connect_args"] = {"check_same_thread": False}
    engine = create_engine(url, **create_kwargs)
    globals()["_engine"] = engine
    globals()["_SessionLocal"] = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)

    from finreview.db.models import Base  # local import to avoid cycles

    Base.metadata.create_all(engine)
    logger.info("Storage configured (%s)", engine.dialect.name)


def get_engine():
    _configure_if_needed()
    return globals().get("_engine")


def db_enabled() -> bool:
    return get_engine() is not None and globals().get("_SessionLocal") is not None


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """One transaction: commit on success, roll back everything on any exception."""
    _configure_if_needed()
    if not db_enabled():
        raise RuntimeError("DB not enabled: DATABASE_URL is not set")
    session = globals()["_SessionLocal"]()  # type: ignore[misc]
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
