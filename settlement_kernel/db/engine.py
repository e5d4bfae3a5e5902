"""
Engine and session management.

One engine per process, built from a URL by ``init_engine_from_url`` and
shared by the API, the operator scripts and the test suite.

PostgreSQL runs at READ COMMITTED; correctness comes from explicit row locks
(``FOR UPDATE``) on the receipt counter and on invoices being settled.

SQLite gets its BEGIN from us rather than from pysqlite, and it is
``BEGIN IMMEDIATE``: writers queue on the database lock instead of failing
when a read lock is upgraded, and SAVEPOINTs work.
"""

import atexit
from contextlib import contextmanager
from typing import Any, Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from settlement_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_NOT_INITIALIZED = "Engine not initialized. Call init_engine_from_url() first."

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None


def _build_sqlite_engine(url: str, echo: bool, pool_size: int, max_overflow: int, timeout: int) -> Engine:
    in_memory = url in ("sqlite://", "sqlite:///:memory:")
    options: dict[str, Any] = {"poolclass": StaticPool}
    if not in_memory:
        options = {
            "poolclass": QueuePool,
            "pool_size": pool_size,
            "max_overflow": max_overflow,
            "pool_timeout": timeout,
        }
    engine = create_engine(
        url,
        echo=echo,
        connect_args={"check_same_thread": False, "timeout": timeout},
        **options,
    )

    @event.listens_for(engine, "connect")
    def _configure_connection(dbapi_connection, connection_record):
        # Autocommit at the driver level; the "begin" hook below starts transactions
        dbapi_connection.isolation_level = None
        for pragma in ("foreign_keys=ON", f"busy_timeout={timeout * 1000}"):
            dbapi_connection.execute(f"PRAGMA {pragma}")

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
) -> Engine:
    """
    Create the process engine and session factory, replacing any previous one.

    Args:
        database_url: ``postgresql://...`` or ``sqlite:///...``.
        echo: Log every SQL statement.
        pool_size: Pooled connections kept open.
        max_overflow: Extra connections allowed under load.
        pool_pre_ping: Check connections before handing them out (PostgreSQL).
        pool_timeout: Seconds to wait for a connection, and on SQLite for the
            database lock.
        pool_recycle: Seconds before a pooled connection is replaced (PostgreSQL).
    """
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()

    if database_url.startswith("sqlite"):
        _engine = _build_sqlite_engine(database_url, echo, pool_size, max_overflow, pool_timeout)
    else:
        _engine = create_engine(
            database_url,
            echo=echo,
            poolclass=QueuePool,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=pool_pre_ping,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
            isolation_level="READ COMMITTED",
        )

    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={
            "dialect": _engine.dialect.name,
            "pool_size": pool_size,
            "max_overflow": max_overflow,
        },
    )
    return _engine


def get_engine() -> Engine:
    """
    Raises:
        RuntimeError: ``init_engine_from_url`` has not been called.
    """
    if _engine is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """Session factory; threads and request scopes each open their own session."""
    if _SessionFactory is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _SessionFactory


def get_session() -> Session:
    return get_session_factory()()


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """
    Unit of work for scripts: commit on success, roll back on error.

    Usage:
        with session_scope() as session:
            ReconciliationService(session).reconcile_pending(tenant_id, actor, include_all=True)
    """
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.warning("session_scope_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables() -> None:
    from settlement_kernel.db.base import Base
    import settlement_kernel.models  # noqa: F401
    import settlement_kernel.services.sequence_service  # noqa: F401

    Base.metadata.create_all(get_engine())


def drop_tables() -> None:
    """Drop every kernel table. Tests and local resets only."""
    from settlement_kernel.db.base import Base
    import settlement_kernel.models  # noqa: F401
    import settlement_kernel.services.sequence_service  # noqa: F401

    Base.metadata.drop_all(get_engine())


def reset_engine() -> None:
    """Dispose the engine and forget the session factory."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None


@atexit.register
def _dispose_on_exit() -> None:
    if _engine is not None:
        _engine.dispose()
