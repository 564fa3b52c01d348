"""
Database Connection Management

Provides the engine/session factory and transaction scopes used by every
repository in the identity core. Uniqueness and compare-and-set invariants
live in the schema, so callers only need a scope that commits on success,
rolls back on failure and reports driver errors as service exceptions.
"""

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import TypeVar

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..exceptions import DatabaseException, DuplicateRecordException

logger = logging.getLogger(__name__)

T = TypeVar("T")


def build_engine(database_url: str, echo: bool = False) -> Engine:
    """Create an engine; SQLite connections may be shared with worker threads."""
    connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
    return create_engine(database_url, echo=echo, connect_args=connect_args, pool_pre_ping=True)


def create_session_factory(engine: Engine) -> sessionmaker:
    """Session factory; objects stay readable after commit because results cross thread boundaries."""
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def init_schema(engine: Engine) -> None:
    """Create all identity tables that do not exist yet."""
    from ..auth.models import Base

    Base.metadata.create_all(bind=engine)
    logger.info("Identity schema initialized")


@contextmanager
def session_scope(factory: sessionmaker, operation: str = "transaction") -> Iterator[Session]:
    """
    Provide a transactional scope around a series of operations.

    Commits on success and rolls back on any exception. IntegrityError is
    reported as DuplicateRecordException, any other SQLAlchemy error as
    DatabaseException; the driver error is preserved as ``__cause__``.
    """
    db: Session = factory()
    try:
        yield db
        db.commit()
    except IntegrityError as e:
        db.rollback()
        logger.warning(f"Uniqueness conflict during {operation}")
        raise DuplicateRecordException(operation, type(e.orig).__name__) from e
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error during {operation}: {type(e).__name__}")
        raise DatabaseException(operation, type(e).__name__) from e
    except BaseException:
        db.rollback()
        raise
    finally:
        db.close()


@contextmanager
def joined_scope(
    factory: sessionmaker, db: Session | None, operation: str = "transaction"
) -> Iterator[Session]:
    """Join the caller's session when one is given, otherwise open a new scope."""
    if db is not None:
        yield db
        return
    with session_scope(factory, operation) as own:
        yield own


def run_in_transaction(
    factory: sessionmaker,
    work: Callable[[Session], T],
    operation: str,
    retries: int = 3,
) -> T:
    """
    Run ``work`` in its own transaction, retrying the whole unit on conflicts.

    A concurrent writer that wins a uniqueness race makes this attempt fail
    with DuplicateRecordException; the retry re-reads and usually finds the
    winner's row. The last conflict is re-raised once retries are spent.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            with session_scope(factory, operation) as db:
                return work(db)
        except DuplicateRecordException:
            if attempt > retries:
                logger.error(f"Giving up on {operation} after {attempt} conflicting attempts")
                raise
            logger.info(f"Retrying {operation} after uniqueness conflict (attempt {attempt})")
