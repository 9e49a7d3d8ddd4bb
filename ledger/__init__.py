"""
Ledger
======

Local, per-project record of development decisions, their overrides,
AI suggestion outcomes and notes.
"""

__version__ = "0.1.0"

from ledger.errors import (
    LedgerError,
    NotFoundError,
    ConstraintError,
    StorageError,
    ValidationError,
)
from ledger.models import (
    Project, Session, Decision, Override, AIAttempt, Note,
    DecisionStatus, AttemptOutcome,
    DecisionFilter, AttemptFilter,
    OverridePattern, RecurringFailure,
)
from ledger.store import LedgerStore
from ledger.manager import LedgerManager
