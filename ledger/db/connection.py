"""
Database Connection
===================

Creates the SQLite engine backing one project's ledger store.
"""

from pathlib import Path

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session

# Seconds SQLite waits on a locked database before raising
BUSY_TIMEOUT = 30


def _set_sqlite_pragmas(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.close()


def create_ledger_engine(db_path: Path) -> Engine:
    """
    Create an engine for the database at db_path.

    Every pooled connection has foreign keys enforced and runs in WAL mode.
    Connections may be used from any thread.
    """
    engine = create_engine(
        f"sqlite:///{db_path}",
        echo=False,
        connect_args={"check_same_thread": False, "timeout": BUSY_TIMEOUT},
    )
    event.listen(engine, "connect", _set_sqlite_pragmas)
    return engine


def create_session_maker(engine: Engine) -> sessionmaker[Session]:
    """Session factory whose objects stay readable after commit."""
    return sessionmaker(engine, expire_on_commit=False)
