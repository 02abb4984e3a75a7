"""
Module: stock_kernel.db.engine
Responsibility: SQLAlchemy engine construction, transactional session scope
    and table creation for the SQL key-value store backend.
Architecture position: Kernel > DB.  May import from db/base.py and
    db/models.py.  MUST NOT import from store/, services/ or selectors/.

Invariants enforced:
    - Every engine is created with a bounded connect/pool timeout so no store
      call can block indefinitely (the store maps timeouts to
      StoreUnavailableError).
    - SQLite connections are shareable across threads (check_same_thread off)
      and wait up to the timeout on a locked database before failing.

Failure modes:
    - OperationalError when the database cannot be reached or stays locked
      past the timeout.
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from stock_kernel.logging_config import get_logger

logger = get_logger("db.engine")


def create_store_engine(
    database_url: str,
    echo: bool = False,
    timeout_seconds: float = 5.0,
    pool_size: int = 10,
    max_overflow: int = 10,
) -> Engine:
    """
    Build an Engine suitable for the key-value store.

    SQLite URLs get a per-connection busy timeout; server databases get a
    pooled engine with pre-ping and a pool checkout timeout.

    Args:
        database_url: SQLAlchemy URL (sqlite:///..., postgresql://...).
        echo: If True, log all SQL statements.
        timeout_seconds: Upper bound for waiting on a connection or lock.
        pool_size: Pool size for server databases.
        max_overflow: Max connections beyond pool_size for server databases.
    """
    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": timeout_seconds},
            pool_timeout=timeout_seconds,
        )
        dialect = "sqlite"
    else:
        engine = create_engine(
            database_url,
            echo=echo,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=True,
            pool_timeout=timeout_seconds,
            pool_recycle=1800,
        )
        dialect = engine.dialect.name

    logger.info(
        "engine_created",
        extra={"dialect": dialect, "echo": echo, "timeout_seconds": timeout_seconds},
    )
    return engine


@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    """
    Provide a transactional scope around a series of operations.

    Commits on normal exit; rolls back and re-raises on exception.

    Usage:
        with session_scope(factory) as session:
            session.add(entity)
    """
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.debug("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables(engine: Engine) -> None:
    """Create the key-value table if it does not exist."""
    from stock_kernel.db import models  # noqa: F401
    from stock_kernel.db.base import Base

    Base.metadata.create_all(engine)
