"""
Ledger Entity Model
===================

In-memory representations of the ledger entities, their filters and the
named records returned by the pattern-mining queries.

Usage:
    from ledger.models import Decision, DecisionStatus

    decision = Decision(
        decision="Use SQLite for local storage",
        category="architecture",
        rationale="Zero-config, single file per project",
        alternatives_rejected=["Postgres", "flat JSON files"],
    )
    store.create_decision(decision)
"""

import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Optional


def generate_id() -> str:
    """Return a new random 128-bit identifier as a 32-char hex string."""
    return uuid.uuid4().hex


class DecisionStatus(Enum):
    """Lifecycle status of a decision."""
    ACTIVE = "active"
    OVERRIDDEN = "overridden"
    ARCHIVED = "archived"


class AttemptOutcome(Enum):
    """Outcome of an AI suggestion."""
    PENDING = "pending"
    WORKED = "worked"
    FAILED = "failed"
    PARTIAL = "partial"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_time(value) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


@dataclass
class Project:
    """A tracked codebase; top-level owner of every other entity."""
    name: str
    path: str
    id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["created_at"] = _iso(self.created_at)
        data["updated_at"] = _iso(self.updated_at)
        return data


@dataclass
class Session:
    """A unit of work within a project. Forks record their parent."""
    name: str
    project_id: Optional[str] = None
    parent_session_id: Optional[str] = None
    id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_fork(self) -> bool:
        return self.parent_session_id is not None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["created_at"] = _iso(self.created_at)
        data["updated_at"] = _iso(self.updated_at)
        return data


@dataclass
class Decision:
    """
    A recorded choice with rationale and a lifecycle status.

    Decisions start out active. Overriding one moves it to overridden and
    records an Override; archiving moves it to archived. Nothing moves a
    decision back to active.
    """
    decision: str
    project_id: Optional[str] = None
    session_id: Optional[str] = None
    category: Optional[str] = None
    rationale: Optional[str] = None
    alternatives_rejected: Optional[list[str]] = None
    status: DecisionStatus = DecisionStatus.ACTIVE
    id: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status == DecisionStatus.ACTIVE

    def summary(self) -> str:
        """Return a brief one-line summary."""
        category = f"[{self.category}] " if self.category else ""
        text = self.decision if len(self.decision) <= 60 else self.decision[:57] + "..."
        return f"{category}{text} ({self.status.value})"

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        data = asdict(self)
        data["status"] = self.status.value
        data["created_at"] = _iso(self.created_at)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Decision":
        """Create Decision from dictionary."""
        data = dict(data)
        data["status"] = DecisionStatus(data.get("status", DecisionStatus.ACTIVE.value))
        data["created_at"] = _parse_time(data.get("created_at"))
        return cls(**data)


@dataclass
class Override:
    """One act of superseding a decision, with the reason for it."""
    decision_id: str
    session_id: str
    rationale: str
    id: Optional[str] = None
    created_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["created_at"] = _iso(self.created_at)
        return data


@dataclass
class AIAttempt:
    """An AI-suggested fix for a problem and how it turned out."""
    session_id: str
    problem: str
    suggestion: str
    project_id: Optional[str] = None
    outcome: AttemptOutcome = AttemptOutcome.PENDING
    failure_reason: Optional[str] = None
    id: Optional[str] = None
    created_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["outcome"] = self.outcome.value
        data["created_at"] = _iso(self.created_at)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "AIAttempt":
        data = dict(data)
        data["outcome"] = AttemptOutcome(data.get("outcome", AttemptOutcome.PENDING.value))
        data["created_at"] = _parse_time(data.get("created_at"))
        return cls(**data)


@dataclass
class Note:
    """A free-form note, optionally attached to a session."""
    content: str
    project_id: Optional[str] = None
    session_id: Optional[str] = None
    id: Optional[str] = None
    created_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["created_at"] = _iso(self.created_at)
        return data


# =============================================================================
# Filters
# =============================================================================

@dataclass
class DecisionFilter:
    """
    Filter options for listing decisions.

    Present fields are ANDed. project_id defaults to the store's bound
    project. offset is only honored together with limit.
    """
    project_id: Optional[str] = None
    session_id: Optional[str] = None
    category: Optional[str] = None
    status: Optional[DecisionStatus] = None
    search: Optional[str] = None  # substring of decision or rationale
    limit: Optional[int] = None
    offset: Optional[int] = None


@dataclass
class AttemptFilter:
    """Filter options for listing AI attempts."""
    project_id: Optional[str] = None
    session_id: Optional[str] = None
    outcome: Optional[AttemptOutcome] = None
    search: Optional[str] = None  # substring of problem or suggestion
    limit: Optional[int] = None
    offset: Optional[int] = None


# =============================================================================
# Pattern Mining Results
# =============================================================================

@dataclass(frozen=True)
class OverridePattern:
    """A decision that has been overridden repeatedly."""
    decision: Decision
    override_count: int


@dataclass(frozen=True)
class RecurringFailure:
    """A suggestion that has failed more than once, grouped by exact text."""
    suggestion: str
    failure_count: int
    last_failure: datetime


def extract_keywords(text: str, min_length: int = 3) -> list[str]:
    """
    Split text on whitespace into lower-cased keywords.

    Tokens shorter than min_length are dropped; duplicates are removed
    while keeping first-seen order.
    """
    words = [w for w in text.lower().split() if len(w) >= min_length]
    return list(dict.fromkeys(words))
