"""
Module: station_ledger.db.engine
Responsibility: The process-wide engine and session factory, and the
    transactional scope that scripts use around a LedgerOrchestrator.
Architecture position: Kernel > DB.  May import from db/base.py.  MUST NOT
    import from services/, selectors/ or domain/ (create_tables imports the
    models package so that metadata is complete).

Invariants enforced:
    - PostgreSQL runs at READ COMMITTED; the balance row and the sequence
      counters are serialized with SELECT ... FOR UPDATE, not by isolation.
    - On SQLite the driver's implicit transactions are disabled and
      SQLAlchemy emits BEGIN itself, so SAVEPOINTs nest.  In-memory URLs
      share one connection (StaticPool), otherwise each connection would
      see its own empty database.
    - Foreign keys are enforced on SQLite (line items cascade with their
      batch).

Failure modes:
    - RuntimeError when the engine is used before init_engine_from_url().
"""

import atexit
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import URL, Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from station_ledger.logging_config import get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None

_NOT_INITIALIZED = "Database engine not initialized; call init_engine_from_url() first"


def _sqlite_engine(url: URL, echo: bool) -> Engine:
    options = {"connect_args": {"check_same_thread": False}}
    if url.database in (None, "", ":memory:"):
        options["poolclass"] = StaticPool
    engine = create_engine(url, echo=echo, **options)

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


def _postgres_engine(url: URL, echo: bool, pool: dict) -> Engine:
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
    pool_size: int = 10,
    max_overflow: int = 5,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
) -> Engine:
    """
    Create the engine and session factory for ``database_url``.

    A second call replaces the first; the previous engine is not disposed
    here (call reset_engine() for that).  Pool arguments apply to
    PostgreSQL only.

    Sessions are created with expire_on_commit=False so that the views a
    service returned stay readable after the unit of work commits.
    """
    global _engine, _SessionFactory

    url = make_url(database_url)
    dialect = url.get_backend_name()
    if dialect == "sqlite":
        engine = _sqlite_engine(url, echo)
    else:
        engine = _postgres_engine(
            url,
            echo,
            {
                "pool_size": pool_size,
                "max_overflow": max_overflow,
                "pool_pre_ping": pool_pre_ping,
                "pool_timeout": pool_timeout,
                "pool_recycle": pool_recycle,
            },
        )

    _engine = engine
    _SessionFactory = sessionmaker(bind=engine, expire_on_commit=False)
    logger.info(
        "engine_initialized",
        extra={"dialect": dialect, "database": url.database, "echo": echo},
    )
    return engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _engine


def get_session() -> Session:
    """A new Session from the current factory."""
    if _SessionFactory is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _SessionFactory()


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """
    Commit on normal exit, roll back and re-raise on any exception.

    Usage:
        with session_scope() as session:
            LedgerOrchestrator(session, policy, auto_commit=False).purge_stale_simulations()
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


def _metadata():
    from station_ledger.db.base import Base
    import station_ledger.models  # noqa: F401  (registers every table)

    return Base.metadata


def create_tables() -> None:
    """Create any missing ledger tables."""
    _metadata().create_all(get_engine())
    logger.info("tables_created")


def drop_tables() -> None:
    """Drop every ledger table.  Tests and local resets only."""
    _metadata().drop_all(get_engine())
    logger.warning("tables_dropped")


def reset_engine() -> None:
    """Dispose the engine and forget the session factory."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None


@atexit.register
def _dispose_at_exit():
    if _engine is not None:
        _engine.dispose()
