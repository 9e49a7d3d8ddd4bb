"""
Ledger Errors
=============

Typed failures raised by the storage engine and handle manager.

Reads that find nothing return None or an empty list; these exceptions are
for mutations against missing rows and for storage problems.
"""

from typing import Optional


class LedgerError(Exception):
    """Base class for ledger failures. Carries the failing operation."""

    def __init__(self, operation: str, entity_id: Optional[str] = None, detail: str = ""):
        self.operation = operation
        self.entity_id = entity_id
        self.detail = detail
        message = f"failed to {operation}"
        if entity_id:
            message += f" ({entity_id})"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class NotFoundError(LedgerError):
    """A mutation targeted an id with no matching row."""

    def __init__(self, entity: str, entity_id: str, operation: Optional[str] = None):
        self.entity = entity
        self.operation = operation or f"update {entity}"
        self.entity_id = entity_id
        self.detail = ""
        Exception.__init__(self, f"{entity} not found: {entity_id}")


class ConstraintError(LedgerError):
    """A write violated a foreign-key, uniqueness or check constraint."""


class StorageError(LedgerError):
    """The underlying database or filesystem failed."""


class ValidationError(LedgerError):
    """A required input was empty. Raised only by edge validation."""

    def __init__(self, field_name: str, message: str):
        self.field_name = field_name
        self.operation = "validate input"
        self.entity_id = None
        self.detail = message
        Exception.__init__(self, message)
