"""
Module: receivables_kernel.db.engine
Responsibility: SQLAlchemy engine initialization, session factory management,
    and transactional scope utilities.  Single point of database connection
    configuration for the SQL-backed stores.
Architecture position: Kernel > DB.  May import from db/base.py; imports
    models/ only inside create_tables/drop_tables.

Invariants enforced:
    - PostgreSQL sessions run at READ COMMITTED, with explicit row locks
      (SELECT ... FOR UPDATE) where the ledger needs stronger isolation.
    - SQLite (tests, local runs) shares one connection per in-memory
      database; row locks degrade to SQLite's database lock.

Failure modes:
    - RuntimeError if get_engine/get_session/get_session_factory is called
      before init_engine_from_url().
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from receivables_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None


def build_engine(
    database_url: str,
    echo: bool = False,
    pool_size: int = 10,
    max_overflow: int = 10,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
    lock_timeout: float | None = None,
) -> Engine:
    """
    Create an engine for ``database_url`` without touching module state.

    SQLite URLs get a StaticPool for in-memory databases (so every session
    sees the same data) and ``check_same_thread=False``; everything else
    gets a pre-pinged QueuePool at READ COMMITTED.

    ``lock_timeout`` (seconds) bounds how long a statement waits for a row
    or database lock: SQLite's busy timeout, PostgreSQL's lock_timeout.
    """
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        in_memory = url.database in (None, "", ":memory:")
        connect_args: dict = {"check_same_thread": False}
        if lock_timeout is not None:
            connect_args["timeout"] = lock_timeout
        kwargs: dict = {"connect_args": connect_args}
        if in_memory:
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, echo=echo, **kwargs)

    connect_args = {}
    if lock_timeout is not None and url.get_backend_name() == "postgresql":
        connect_args["options"] = f"-c lock_timeout={int(lock_timeout * 1000)}"

    return create_engine(
        database_url,
        echo=echo,
        poolclass=QueuePool,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=True,
        pool_timeout=pool_timeout,
        pool_recycle=pool_recycle,
        isolation_level="READ COMMITTED",
        connect_args=connect_args,
    )


def init_engine_from_url(database_url: str, echo: bool = False, **pool_options) -> Engine:
    """
    Initialize the module-level engine and session factory.

    Calling again replaces the previous engine (call reset_engine() first to
    dispose its connections).
    """
    global _engine, _SessionFactory

    _engine = build_engine(database_url, echo=echo, **pool_options)
    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={"dialect": _engine.dialect.name, "echo": echo},
    )
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def get_session() -> Session:
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory()


def get_session_factory() -> sessionmaker[Session]:
    """
    Get the session factory for creating sessions.

    Stores take the factory rather than a session: each transaction opens
    its own session, so one store instance can be shared across threads.
    """
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory


@contextmanager
def session_scope(
    factory: sessionmaker[Session] | None = None,
) -> Generator[Session, None, None]:
    """
    Provide a transactional scope around a series of operations.

    Commits on normal exit; on exception rolls back, logs, and re-raises.
    The session is always closed.

    Usage:
        with session_scope() as session:
            session.add(model)
    """
    session = (factory or get_session_factory())()
    logger.debug("transaction_started")
    try:
        yield session
        session.commit()
        logger.debug("transaction_committed")
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables(engine: Engine | None = None) -> None:
    """Create every ledger table (idempotent)."""
    from receivables_kernel.db.base import Base
    import receivables_kernel.models  # noqa: F401  registers the tables

    Base.metadata.create_all(engine or get_engine())


def drop_tables(engine: Engine | None = None) -> None:
    """Drop all tables. Use with caution - primarily for testing."""
    from receivables_kernel.db.base import Base
    import receivables_kernel.models  # noqa: F401

    Base.metadata.drop_all(engine or get_engine())


def reset_engine() -> None:
    """Dispose the engine and forget the session factory."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
        _engine = None
    _SessionFactory = None


def is_postgres(engine: Engine | None = None) -> bool:
    engine = engine or _engine
    if engine is None:
        return False
    return engine.dialect.name == "postgresql"
