"""
Database Package
================

Exports key database components.
"""

from ledger.db.models import (
    Base,
    SchemaVersion,
    Project, Session, Decision, Override, AIAttempt, Note,
)
from ledger.db.connection import create_ledger_engine, create_session_maker
from ledger.db.schema import init_schema, current_version, SCHEMA_VERSION, MIGRATIONS
