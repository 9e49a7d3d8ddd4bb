"""
Schema Migrations
=================

Brings a ledger database up to SCHEMA_VERSION. Each migration runs once, in
increasing version order, and records itself in the schema_version table in
the same transaction.
"""

import logging
from typing import Callable

from sqlalchemy import select, func
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from ledger.db.models import (
    Base, SchemaVersion, Project, Session, Decision, Override, AIAttempt, Note,
)
from ledger.errors import StorageError

logger = logging.getLogger(__name__)


def _migrate_v1(conn: Connection) -> None:
    """Initial schema: the six entity tables and their indexes."""
    tables = [
        Project.__table__,
        Session.__table__,
        Decision.__table__,
        Override.__table__,
        AIAttempt.__table__,
        Note.__table__,
    ]
    Base.metadata.create_all(conn, tables=tables, checkfirst=True)


# (version, description, migration)
MIGRATIONS: list[tuple[int, str, Callable[[Connection], None]]] = [
    (1, "initial schema", _migrate_v1),
]

SCHEMA_VERSION = MIGRATIONS[-1][0]


def current_version(engine: Engine) -> int:
    """Return the highest applied migration version, 0 for a fresh store."""
    with engine.connect() as conn:
        SchemaVersion.__table__.create(conn, checkfirst=True)
        conn.commit()
        version = conn.execute(
            select(func.coalesce(func.max(SchemaVersion.version), 0))
        ).scalar_one()
    return int(version)


def init_schema(engine: Engine) -> int:
    """
    Apply pending migrations and return the resulting schema version.

    Safe to call on every open: a store already at SCHEMA_VERSION is left
    untouched.
    """
    try:
        version = current_version(engine)
        for target, description, migrate in MIGRATIONS:
            if target <= version:
                continue
            with engine.begin() as conn:
                migrate(conn)
                conn.execute(
                    SchemaVersion.__table__.insert().values(
                        version=target, description=description
                    )
                )
            logger.info("Applied ledger migration %d (%s)", target, description)
            version = target
    except SQLAlchemyError as exc:
        raise StorageError("initialize schema", detail=str(exc)) from exc
    return version
