"""
Module: contract_kernel.db.engine
Responsibility: SQLAlchemy engine initialization, session factory management,
    and transactional scope utilities.  Single point of database connection
    configuration for the kernel, the batch sweeps and the test suite.
Architecture position: Kernel > DB.  May import from db/base.py.  MUST NOT
    import from services/, selectors/, domain/, or outer layers (except
    create_tables/drop_tables which import the models package).

Invariants enforced:
    - PostgreSQL runs READ COMMITTED with a pre-pinged QueuePool; status
      changes rely on conditional UPDATEs, not on isolation level.
    - SQLite runs with explicit BEGIN so that SAVEPOINT works (services use
      savepoints to roll back failed operations while keeping the
      rejected-attempt audit event).

Failure modes:
    - RuntimeError if get_engine/get_session/get_session_factory called before
      init_engine_from_url().
    - OperationalError on transient connection failure during create_tables
      (retried up to 3x).
"""

import atexit
import time
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from contract_kernel.exceptions import ContractKernelError
from contract_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None


def _enable_sqlite_savepoints(engine: Engine) -> None:
    """Let SQLAlchemy emit BEGIN itself so pysqlite honours SAVEPOINT."""

    @event.listens_for(engine, "connect")
    def _do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN")


def build_engine(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
) -> Engine:
    """
    Create an engine configured for the URL's dialect without installing it.

    Args:
        database_url: SQLAlchemy URL (postgresql://..., sqlite://, sqlite:///path).
        echo: If True, log all SQL statements.
        pool_size: PostgreSQL only. Connections kept in the pool.
        max_overflow: PostgreSQL only. Connections beyond pool_size.
        pool_pre_ping: PostgreSQL only. Test connections before use.
        pool_timeout: PostgreSQL only. Seconds to wait for a connection.
        pool_recycle: PostgreSQL only. Seconds before a connection is recycled.
    """
    url = make_url(database_url)

    if url.get_backend_name() == "sqlite":
        kwargs: dict = {"echo": echo, "connect_args": {"check_same_thread": False}}
        if url.database in (None, "", ":memory:"):
            # One shared connection, or every session sees an empty database
            kwargs["poolclass"] = StaticPool
        engine = create_engine(url, **kwargs)
        _enable_sqlite_savepoints(engine)
        return engine

    return create_engine(
        url,
        echo=echo,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=pool_pre_ping,
        pool_timeout=pool_timeout,
        pool_recycle=pool_recycle,
        isolation_level="READ COMMITTED",
    )


def init_engine_from_url(database_url: str, echo: bool = False, **pool_options) -> Engine:
    """
    Initialize the module-level engine and session factory.

    Postconditions: All subsequent get_engine/get_session calls use this
        engine.  A second call replaces the first.

    Returns:
        SQLAlchemy Engine instance.
    """
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()

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

    Used by the sweep scheduler, which opens one session per tenant pass.
    """
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory


@contextmanager
def session_scope(session_factory=None) -> Generator[Session, None, None]:
    """
    Provide a transactional scope around a series of operations.

    Postconditions:
        - Normal exit: committed and closed.
        - ContractKernelError: committed, then re-raised.  Services roll their
          own savepoint back before raising, so the only pending writes are
          the rejected-attempt audit events.
        - Any other exception: rolled back, then re-raised.

    Usage:
        with session_scope() as session:
            manager = ContractLifecycleManager(session, auditor, clock)
            manager.activate_contract(tenant_id, contract_id, actor_id)
    """
    session = session_factory() if session_factory is not None else get_session()
    logger.debug("transaction_started")
    try:
        yield session
        session.commit()
        logger.debug("transaction_committed")
    except ContractKernelError as exc:
        session.commit()
        logger.info(
            "transaction_committed_with_rejection",
            extra={"error_code": exc.code},
        )
        raise
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables() -> None:
    """
    Create all tables defined in the models.

    Preconditions: Engine must be initialized via init_engine_from_url().
    """
    from contract_kernel.db.base import Base
    from contract_kernel import models  # noqa: F401  registers all tables

    engine = get_engine()

    max_retries = 3
    for attempt in range(max_retries):
        try:
            Base.metadata.create_all(engine)
            break
        except OperationalError:
            if attempt < max_retries - 1:
                logger.warning(
                    "create_tables_retry",
                    extra={"attempt": attempt + 1, "max_retries": max_retries},
                )
                engine.dispose()
                time.sleep(0.5 * (attempt + 1))
            else:
                raise


def drop_tables() -> None:
    """Drop all tables. Use with caution - primarily for testing."""
    from contract_kernel.db.base import Base
    from contract_kernel import models  # noqa: F401

    Base.metadata.drop_all(get_engine())


def reset_engine() -> None:
    """Reset the engine and session factory (test cleanup)."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
        _engine = None

    _SessionFactory = None


def _atexit_dispose():
    """Dispose the engine on process exit to release all pooled connections."""
    if _engine is not None:
        try:
            _engine.dispose()
        except Exception:
            logger.debug("engine_dispose_failed_at_exit", exc_info=True)


atexit.register(_atexit_dispose)


def is_postgres() -> bool:
    if _engine is None:
        return False
    return _engine.dialect.name == "postgresql"
