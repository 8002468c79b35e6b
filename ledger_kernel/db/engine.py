"""
Module: ledger_kernel.db.engine
Responsibility: Build the process-wide SQLAlchemy engine and session
    factory, and provide the one transactional scope every ledger operation
    runs in.
Architecture position: Kernel > DB.  MUST NOT import from services/,
    selectors/ or outer layers (create_tables imports the ORM registry
    lazily so every model is known).

Invariants enforced:
    - PostgreSQL runs at READ COMMITTED; posting serializes through explicit
      SELECT ... FOR UPDATE row locks taken by the services.
    - SQLite opens every transaction with BEGIN IMMEDIATE, so two writers
      queue on the database lock up front instead of one failing on a late
      read-to-write upgrade.  Foreign keys are switched on per connection.
    - expire_on_commit is off: DTOs built after commit read the values the
      transaction wrote.

Failure modes:
    - RuntimeError from any accessor before init_engine_from_url().
"""

import atexit
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, URL, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from ledger_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None

_NOT_INITIALIZED = "Engine not initialized. Call init_engine_from_url() first."


def _sqlite_engine(url: URL, echo: bool, busy_timeout: float) -> Engine:
    options: dict = {
        "echo": echo,
        "connect_args": {"check_same_thread": False, "timeout": busy_timeout},
    }
    if url.database in (None, "", ":memory:"):
        # one shared connection, or every session would see its own empty db
        options["poolclass"] = StaticPool
    engine = create_engine(url, **options)

    @event.listens_for(engine, "connect")
    def _take_over_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        dbapi_connection.execute("PRAGMA foreign_keys=ON")

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def _postgres_engine(url: URL, echo: bool, **pool: int | bool) -> Engine:
    return create_engine(
        url,
        echo=echo,
        poolclass=QueuePool,
        isolation_level="READ COMMITTED",
        **pool,
    )


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
    sqlite_busy_timeout: float = 30.0,
) -> Engine:
    """
    Create the engine for ``database_url`` and a session factory bound to it.

    A second call replaces the first; call ``reset_engine`` to dispose the
    old pool.  Pool arguments apply to PostgreSQL only;
    ``sqlite_busy_timeout`` is how long a SQLite writer waits for the lock.
    """
    global _engine, _SessionFactory

    url = make_url(database_url)
    dialect = url.get_backend_name()
    if dialect == "sqlite":
        _engine = _sqlite_engine(url, echo, sqlite_busy_timeout)
    else:
        _engine = _postgres_engine(
            url,
            echo,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=pool_pre_ping,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
        )
    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info("engine_initialized", extra={"dialect": dialect, "echo": echo})
    return _engine


def _require_factory() -> sessionmaker[Session]:
    if _SessionFactory is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _SessionFactory


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """Factory for new sessions; one session per thread and per attempt."""
    return _require_factory()


def get_session() -> Session:
    return _require_factory()()


@contextmanager
def session_scope(
    factory: sessionmaker[Session] | None = None,
) -> Generator[Session, None, None]:
    """
    One database transaction: commit on clean exit, rollback and re-raise
    on any exception, close either way.

        with session_scope() as session:
            AccountRegistry(session, company_id).create_account(...)
    """
    session = (factory or _require_factory())()
    logger.debug("transaction_started")
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    else:
        logger.debug("transaction_committed")
    finally:
        session.close()


def create_tables() -> None:
    """Register every ORM model and the immutability listeners, then create tables."""
    from ledger_kernel.db.base import Base
    from ledger_kernel.db.immutability import register_immutability_listeners
    from ledger_modules._orm_registry import import_all_orm_models

    import_all_orm_models()
    register_immutability_listeners()
    Base.metadata.create_all(get_engine())
    logger.info("tables_created", extra={"table_count": len(Base.metadata.tables)})


def drop_tables() -> None:
    """Drop every ledger table (test databases only)."""
    from ledger_kernel.db.base import Base

    Base.metadata.drop_all(get_engine())


def reset_engine() -> None:
    """Dispose the pool and forget engine and factory."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None


@atexit.register
def _dispose_at_exit() -> None:
    if _engine is not None:
        _engine.dispose()
