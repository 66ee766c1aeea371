import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.pool import StaticPool
from sqlmodel import Session as DbSession, SQLModel, create_engine

from . import config
from .errors import BookingError, IntegrityViolation, PersistenceError

logger = logging.getLogger("Database")


def make_engine(url: str = config.DATABASE_URL, echo: bool = config.SQL_ECHO) -> Engine:
    """Create an engine. SQLite engines open every transaction with BEGIN IMMEDIATE."""
    if not url.startswith("sqlite"):
        return create_engine(url, echo=echo, pool_pre_ping=True)

    kwargs = {"connect_args": {"check_same_thread": False, "timeout": config.SQLITE_BUSY_TIMEOUT}}
    if url in ("sqlite://", "sqlite:///:memory:"):
        kwargs["poolclass"] = StaticPool
    sqlite_engine = create_engine(url, echo=echo, **kwargs)

    @event.listens_for(sqlite_engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        # pysqlite would otherwise defer BEGIN until the first write
        dbapi_connection.isolation_level = None

    @event.listens_for(sqlite_engine, "begin")
    def _begin_immediate(conn):
        # SQLite ignores FOR UPDATE; take the write lock when the transaction starts
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return sqlite_engine


# Database Setup
engine = make_engine()


def create_db_and_tables(db_engine: Optional[Engine] = None):
    SQLModel.metadata.create_all(db_engine or engine)


@contextmanager
def unit_of_work(db_engine: Optional[Engine] = None) -> Iterator[DbSession]:
    """Scoped session: commits on success, rolls back on any exception."""
    with DbSession(db_engine or engine, expire_on_commit=False) as db:
        try:
            yield db
            db.commit()
        except BookingError:
            db.rollback()
            raise
        except IntegrityError as e:
            db.rollback()
            logger.error(f"Integrity violation, transaction rolled back: {e.orig}")
            raise IntegrityViolation("integrity_violation", str(e.orig)) from e
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Transaction rolled back: {e}")
            raise PersistenceError("persistence_error", "The operation could not be stored") from e
        except Exception:
            db.rollback()
            raise
