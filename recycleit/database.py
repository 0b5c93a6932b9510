"""
Database engine, session factory and transaction helpers.
"""
import logging
from typing import Callable, TypeVar

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base, Session
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from recycleit.constants import DATABASE_URL, DEFAULT_MAX_UPDATE_RETRIES
from recycleit.exceptions import ConcurrentUpdateException

logger = logging.getLogger("recycleit.database")

connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

T = TypeVar("T")


def get_db():
    """FastAPI dependency that yields a database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def run_atomic(
    db: Session,
    unit: Callable[[], T],
    operation: str,
    max_retries: int = DEFAULT_MAX_UPDATE_RETRIES
) -> T:
    """
    Run a read-modify-write unit of work and commit it.

    Versioned rows raise StaleDataError when another transaction committed
    first. Inserts that collide on a unique key (a counters row or a goal
    slot created by a concurrent event) raise IntegrityError. Either way the
    unit is rolled back and run again; it must re-read every row it touches
    on each call.

    Raises:
        ConcurrentUpdateException: when every attempt lost the race
    """
    for attempt in range(1, max_retries + 1):
        try:
            result = unit()
            db.commit()
            return result
        except StaleDataError:
            db.rollback()
            logger.warning(
                f"Concurrent update detected during {operation} "
                f"(attempt {attempt}/{max_retries}), retrying"
            )
        except IntegrityError as e:
            db.rollback()
            logger.warning(
                f"Concurrent insert detected during {operation} "
                f"(attempt {attempt}/{max_retries}), retrying: {e.orig}"
            )
        except Exception:
            db.rollback()
            raise
    raise ConcurrentUpdateException(operation, max_retries)
