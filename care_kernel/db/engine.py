"""
Engine and session lifecycle for the care platform.

One engine per process.  ``init_engine_from_url`` picks pool settings from the
URL: PostgreSQL (psycopg) gets a pre-pinged QueuePool at READ COMMITTED,
SQLite gets ``check_same_thread=False`` and, for in-memory databases, a
StaticPool so every session sees the same connection.

Sessions never expire attributes on commit.  Services hand DTOs built from
ORM rows back to the API after the transaction has closed.
"""

import atexit
from contextlib import contextmanager
from typing import Any, Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from care_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_IN_MEMORY = {None, "", ":memory:"}

_engine: Engine | None = None
_factory: sessionmaker[Session] | None = None


def _engine_options(database_url: str, **pool: Any) -> dict[str, Any]:
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        options: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if url.database in _IN_MEMORY:
            options["poolclass"] = StaticPool
        return options
    return {"poolclass": QueuePool, "isolation_level": "READ COMMITTED", **pool}


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
) -> Engine:
    """Create the process engine, replacing any earlier one.

    Pool arguments only apply to server databases; SQLite ignores them.
    """
    global _engine, _factory

    if _engine is not None:
        _engine.dispose()
    options = _engine_options(
        database_url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=pool_pre_ping,
        pool_timeout=pool_timeout,
        pool_recycle=pool_recycle,
    )
    _engine = create_engine(database_url, echo=echo, **options)
    _factory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={"dialect": _engine.dialect.name, "pool": type(_engine.pool).__name__},
    )
    return _engine


def _require_factory() -> sessionmaker[Session]:
    if _factory is None:
        raise RuntimeError("Database not initialised; call init_engine_from_url() first")
    return _factory


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Database not initialised; call init_engine_from_url() first")
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """Factory for callers that open their own sessions, such as the audit queue thread."""
    return _require_factory()


def get_session() -> Session:
    return _require_factory()()


@contextmanager
def session_scope() -> Iterator[Session]:
    """Session that commits when the block exits cleanly and rolls back otherwise."""
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.warning("session_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables() -> None:
    """Create every kernel and care-module table that does not exist yet."""
    from care_kernel.db.base import Base
    from care_modules._orm_registry import import_all_orm_models

    import_all_orm_models()
    Base.metadata.create_all(get_engine())
    logger.info("tables_created", extra={"table_count": len(Base.metadata.tables)})


def drop_tables() -> None:
    """Drop every table.  Test databases only."""
    from care_kernel.db.base import Base

    Base.metadata.drop_all(get_engine())


def reset_engine() -> None:
    global _engine, _factory

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _factory = None


atexit.register(reset_engine)
