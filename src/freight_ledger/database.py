"""Database connection, session management and transaction retry."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TypeVar

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from freight_ledger.config import LedgerConfig, get_settings
from freight_ledger.errors import TransactionConflict
from freight_ledger.models import Base

logger = logging.getLogger(__name__)

T = TypeVar("T")

# serialization_failure, deadlock_detected
RETRYABLE_PGCODES = {"40001", "40P01"}
UNIQUE_VIOLATION_PGCODE = "23505"


def get_engine(database_url: str | None = None) -> Engine:
    """Create database engine."""
    url = database_url or get_settings().database_url
    if url.startswith("sqlite"):
        return create_engine(url, echo=False, connect_args={"check_same_thread": False})
    return create_engine(
        url,
        echo=False,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
    )


# Global engine and session factory
_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def init_db(database_url: str | None = None) -> tuple[Engine, sessionmaker[Session]]:
    """Initialize database engine and session factory."""
    global _engine, _session_factory
    if _engine is None:
        _engine = get_engine(database_url)
        _session_factory = make_session_factory(_engine)
    return _engine, _session_factory


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(engine, expire_on_commit=False, autoflush=False)


def create_schema(engine: Engine) -> None:
    """Create all tables (development and tests; production uses migrations)."""
    Base.metadata.create_all(engine)


def is_retryable(exc: BaseException) -> bool:
    """Whether an error means another writer won and the work can be redone.

    Unique violations count: two writers that both minted the same number
    collide on the constraint at commit. SQLite reports a held write lock as
    "database is locked".
    """
    if isinstance(exc, (TransactionConflict, StaleDataError)):
        return True
    pgcode = getattr(getattr(exc, "orig", None), "pgcode", None)
    if isinstance(exc, IntegrityError):
        return pgcode == UNIQUE_VIOLATION_PGCODE or "UNIQUE constraint failed" in str(exc.orig)
    if isinstance(exc, OperationalError):
        return pgcode in RETRYABLE_PGCODES or "database is locked" in str(exc.orig)
    return False


def run_in_transaction(
    factory: sessionmaker[Session],
    work: Callable[[Session], T],
    *,
    config: LedgerConfig | None = None,
    on_exhausted: Callable[[int], Exception] | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run work inside one transaction, retrying on conflict.

    Each attempt gets a fresh session so no state leaks between attempts.
    Backoff doubles from config.backoff_seconds. When every attempt
    conflicts, raises on_exhausted(attempts) if given, else the last
    TransactionConflict.
    """
    config = config or LedgerConfig()
    delay = config.backoff_seconds
    last_error: BaseException | None = None

    for attempt in range(1, config.max_attempts + 1):
        with factory() as session:
            try:
                result = work(session)
                session.commit()
                return result
            except Exception as exc:
                session.rollback()
                if not is_retryable(exc):
                    raise
                last_error = exc
                logger.info(
                    "Transaction conflict on attempt %d/%d: %s",
                    attempt,
                    config.max_attempts,
                    exc,
                )
        if attempt < config.max_attempts and delay > 0:
            sleep(delay)
            delay *= 2

    logger.warning("Transaction abandoned after %d attempts", config.max_attempts)
    if on_exhausted is not None:
        raise on_exhausted(config.max_attempts) from last_error
    if isinstance(last_error, TransactionConflict):
        raise last_error
    raise TransactionConflict(str(last_error)) from last_error
