"""Engine and session plumbing shared by the ledger and the pipeline tables."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from importlib import import_module
from typing import Any

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from ..utils.config import GlobalSettings, get_settings

DEFAULT_DATABASE_URL = "sqlite:///./cdr_ingestor.db"


class Base(DeclarativeBase):
    """Declarative base for the ORM-mapped ledger."""


_ENGINE: Engine | None = None


def engine_options(settings: GlobalSettings) -> tuple[str, dict[str, Any]]:
    """Return the database URL and ``create_engine`` keyword arguments for ``settings``.

    SQLite keeps SQLAlchemy's default pool and may be shared across threads.
    Server databases (Oracle in production) are sized from ``settings.database``.
    """

    url = settings.database_url or DEFAULT_DATABASE_URL
    if url.startswith("sqlite"):
        return url, {"connect_args": {"check_same_thread": False}}

    pool = settings.database
    options: dict[str, Any] = {
        "pool_size": pool.pool_size,
        "max_overflow": pool.max_overflow,
        "pool_timeout": pool.timeout,
        "pool_pre_ping": pool.pre_ping,
    }
    if pool.recycle_seconds > 0:
        options["pool_recycle"] = pool.recycle_seconds
    return url, options


def get_engine() -> Engine:
    """Return the process-wide engine, creating it and the LOAD_AUDIT table on first use."""

    global _ENGINE
    if _ENGINE is None:
        url, options = engine_options(get_settings())
        engine = create_engine(url, **options)
        import_module("cdr_ingestor.models.load_audit")
        Base.metadata.create_all(bind=engine)
        _ENGINE = engine
    return _ENGINE


def get_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Return a session factory bound to ``engine``.

    Loaded ledger rows stay readable after commit so callers can inspect the
    record a write produced.
    """

    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Iterator[Session]:
    """Commit the session on success and roll it back on any error."""

    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def reset_engine() -> None:
    """Dispose of the process-wide engine so the next call rebuilds it from settings."""

    global _ENGINE
    if _ENGINE is not None:
        _ENGINE.dispose()
    _ENGINE = None
