"""
Database engine and session utilities.

Each BatchStore builds its own engine and session factory from these
helpers; nothing here keeps module-level connection state.
"""

from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import Engine, create_engine, event, pool
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from iac_import.client.exceptions import ConfigurationError, StateError
from iac_import.state.models import Base
from iac_import.utils.logging import get_logger

logger = get_logger(__name__)


def _enable_sqlite_foreign_keys(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite connections (off by default)."""
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_database_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create a SQLAlchemy engine with appropriate settings.

    SQLite databases get NullPool and foreign key enforcement; the parent
    directory of a file database is created if missing.

    Args:
        database_url: Database connection URL (sqlite:/// or any SQLAlchemy URL)
        echo: Whether to log SQL statements

    Returns:
        SQLAlchemy Engine instance

    Raises:
        ConfigurationError: If the database URL is invalid
    """
    if not database_url:
        raise ConfigurationError("Database URL cannot be empty")

    try:
        url = make_url(database_url)
        is_sqlite = url.get_backend_name() == "sqlite"

        if is_sqlite:
            if url.database and url.database != ":memory:":
                Path(url.database).parent.mkdir(parents=True, exist_ok=True)
            engine = create_engine(
                database_url,
                echo=echo,
                poolclass=pool.NullPool,
                connect_args={"check_same_thread": False},
            )
            event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        else:
            engine = create_engine(database_url, echo=echo, pool_pre_ping=True)

        logger.debug(
            "database_engine_created",
            database_type=url.get_backend_name(),
            pool="NullPool" if is_sqlite else "QueuePool",
        )
        return engine

    except (ArgumentError, SQLAlchemyError, OSError) as e:
        logger.error("database_engine_failed", error=str(e), database_url=database_url)
        raise ConfigurationError(f"Failed to create database engine: {e}") from e


def init_database(engine: Engine) -> sessionmaker:
    """
    Create all tables if they don't exist and return a session factory.

    Idempotent; safe to call on every start.

    Raises:
        ConfigurationError: If table creation fails
    """
    try:
        Base.metadata.create_all(engine)
    except SQLAlchemyError as e:
        logger.error("database_init_failed", error=str(e))
        raise ConfigurationError(f"Failed to initialize database: {e}") from e
    logger.debug("database_initialized", tables=len(Base.metadata.tables))
    return sessionmaker(bind=engine, expire_on_commit=False)


@contextmanager
def session_scope(factory: sessionmaker) -> Generator[Session, None, None]:
    """
    Context manager for database sessions.

    Commits on success, rolls back on error, always closes.

    Raises:
        StateError: If the database operation fails
    """
    session = factory()
    try:
        yield session
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.error("database_session_rolled_back", error=str(e))
        raise StateError(f"Database operation failed: {e}") from e
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

