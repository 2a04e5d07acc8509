import logging
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from catalog.config import get_settings
from catalog.errors import BackendUnavailable, Conflict

logger = logging.getLogger(__name__)

Base = declarative_base()

SQLITE_BEGIN_OPTION = "sqlite_begin"


def build_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Creates an engine for the given URL.

    SQLite connections get foreign keys switched on and an explicit BEGIN
    so that transactions and SAVEPOINTs behave like they do on PostgreSQL.

    Args:
        database_url: SQLAlchemy database URL
        echo: Log emitted SQL

    Returns:
        Engine instance
    """
    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False},
        )

        @event.listens_for(engine, "connect")
        def _sqlite_connect(dbapi_connection, connection_record):
            # Let SQLAlchemy emit BEGIN itself instead of pysqlite.
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(engine, "begin")
        def _sqlite_begin(conn):
            # Write transactions take the RESERVED lock up front; a deferred
            # BEGIN would let two writers deadlock on the SHARED -> RESERVED upgrade.
            mode = conn.get_execution_options().get(SQLITE_BEGIN_OPTION)
            conn.exec_driver_sql(f"BEGIN {mode}" if mode else "BEGIN")

        return engine

    return create_engine(database_url, echo=echo, pool_pre_ping=True)


_settings = get_settings()
engine = build_engine(_settings.database_url, echo=_settings.database_echo)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind: Engine = None) -> None:
    """
    Creates all tables that do not exist yet.
    """
    # Models must be imported so they register on Base.metadata.
    from catalog import models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)


def get_db() -> Generator[Session, None, None]:
    """
    FastAPI dependency yielding a session per request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def backend_errors(db: Session, operation: str = "query"):
    """
    Maps SQLAlchemy failures raised inside the block to catalog errors.

    The session is rolled back before the error propagates.
    """
    try:
        yield
    except IntegrityError as e:
        db.rollback()
        logger.error("Integrity error during %s: %s", operation, e.orig)
        raise Conflict("Integrity constraint violated") from e
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Database error during %s: %s", operation, e)
        raise BackendUnavailable(e.__class__.__name__, operation) from e


def begin_write(db: Session) -> None:
    """
    Starts a write transaction on the session. A read transaction left open
    by earlier lookups is ended first so that the write gets its own BEGIN,
    which on SQLite takes the write lock up front.
    """
    if db.in_transaction():
        db.commit()
    db.connection(execution_options={SQLITE_BEGIN_OPTION: "IMMEDIATE"})


@contextmanager
def transaction(db: Session, operation: str = "commit"):
    """
    Runs the block as a single unit of work: commit on success, rollback on
    any exception.

    Args:
        db: Database session
        operation: Label used in logs and BackendUnavailable messages
    """
    with backend_errors(db, operation):
        begin_write(db)
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
