"""Music Ingest Pipeline - Database engine and session management.

SQLAlchemy sync engine/session factory for SQLite (WAL, foreign keys on).
"""

from __future__ import annotations

from pathlib import Path

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from app import config
from app.models import Base


def get_database_url(db_path: str | Path | None = None) -> str:
    """Get SQLite database URL.

    Args:
        db_path: Optional path override. Defaults to config.DB_PATH.

    Returns:
        SQLite connection URL string.
    """
    path = db_path if db_path is not None else config.DB_PATH
    return f"sqlite:///{path}"


def _install_sqlite_pragmas(engine: Engine) -> None:
    """Configure every new SQLite connection.

    pysqlite's own transaction handling never emits BEGIN before SAVEPOINT,
    which breaks nested transactions. Driver-level autocommit is switched on
    and SQLAlchemy emits BEGIN itself when a transaction starts.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA foreign_keys=ON")
        finally:
            cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def create_db_engine(db_path: str | Path | None = None, echo: bool = False) -> Engine:
    """Create SQLAlchemy engine.

    Args:
        db_path: Optional path override for the database file.
        echo: If True, log all SQL statements.

    Returns:
        SQLAlchemy Engine instance.
    """
    url = get_database_url(db_path)
    engine = create_engine(
        url,
        echo=echo,
        # The scheduler thread and request handlers each open their own
        # sessions; connections are never shared between threads.
        connect_args={"check_same_thread": False},
    )
    _install_sqlite_pragmas(engine)
    return engine


def create_session_factory(engine: Engine) -> sessionmaker:
    """Create a session factory bound to the given engine.

    Args:
        engine: SQLAlchemy Engine instance.

    Returns:
        Configured sessionmaker.
    """
    # - autoflush=False: explicit flush control
    # - expire_on_commit=False: objects stay usable after each short commit
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def init_db(db_path: str | Path | None = None, echo: bool = False) -> tuple[Engine, sessionmaker]:
    """Initialize the database: create engine, session factory, and all tables.

    This is idempotent - safe to call multiple times.

    Args:
        db_path: Optional path override for the database file.
        echo: If True, log all SQL statements.

    Returns:
        Tuple of (engine, SessionFactory).
    """
    path = Path(db_path if db_path is not None else config.DB_PATH)
    path.parent.mkdir(parents=True, exist_ok=True)

    engine = create_db_engine(path, echo=echo)
    SessionFactory = create_session_factory(engine)

    Base.metadata.create_all(engine)

    return engine, SessionFactory


def is_unique_violation(exc: IntegrityError, column: str) -> bool:
    """Check whether an IntegrityError is a UNIQUE violation on one column.

    Args:
        exc: The IntegrityError raised by a flush or commit.
        column: Qualified column name, e.g. "tracks.slug".

    Returns:
        True only for a UNIQUE constraint failure naming that column.
    """
    message = str(exc.orig) if exc.orig is not None else str(exc)
    return "UNIQUE constraint failed" in message and column in message
