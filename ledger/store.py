"""
Ledger Store
============

Storage engine for one project's ledger: decisions and their overrides,
AI attempts, notes and the session tree, backed by a SQLite database at
<base_dir>/<slug>/ledger.db.

Usage:
    from ledger.store import LedgerStore
    from ledger.models import Decision

    with LedgerStore("/home/me/repos/app") as store:
        session = store.get_or_create_session("main")
        decision = store.create_decision(Decision(
            decision="Use SQLite for local storage",
            category="architecture",
            session_id=session.id,
        ))
        store.override_decision(decision.id, session.id, "Temporary hack for the demo")
        patterns = store.get_override_patterns(min_overrides=2)

Reads that find nothing return None (or an empty list). Mutations against
a missing id raise NotFoundError. Database failures surface as
StorageError or ConstraintError with the failing operation named.
"""

import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional, Union

from sqlalchemy import select, update as sql_update, delete as sql_delete, func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session as OrmSession

from ledger.db.connection import create_ledger_engine, create_session_maker
from ledger.db.models import (
    Project as DBProject,
    Session as DBSession,
    Decision as DBDecision,
    Override as DBOverride,
    AIAttempt as DBAttempt,
    Note as DBNote,
)
from ledger.db.schema import init_schema
from ledger.errors import ConstraintError, NotFoundError, StorageError
from ledger.models import (
    AIAttempt,
    AttemptFilter,
    AttemptOutcome,
    Decision,
    DecisionFilter,
    DecisionStatus,
    Note,
    Override,
    OverridePattern,
    Project,
    RecurringFailure,
    Session,
    extract_keywords,
    generate_id,
)
from ledger.slug import DB_FILENAME, default_base_dir, generate_project_slug

logger = logging.getLogger(__name__)

# Rationale phrases that suggest an override was meant to be provisional
TEMPORARY_MARKERS = ("temporary", "temp", "quick fix", "for now", "hack")

# Cap on keyword-matching queries
RELEVANCE_LIMIT = 10


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; they were written as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@contextmanager
def _storage_errors(operation: str, entity_id: Optional[str] = None) -> Iterator[None]:
    """Translate SQLAlchemy failures into ledger errors naming the operation."""
    try:
        yield
    except IntegrityError as exc:
        raise ConstraintError(operation, entity_id, str(exc.orig)) from exc
    except SQLAlchemyError as exc:
        raise StorageError(operation, entity_id, str(exc)) from exc


class LedgerStore:
    """
    Storage engine bound to one project.

    The bound project id is fixed at construction, so the store needs no
    locking of its own for reads. Scoped transactions (transaction()) are
    serialized against each other by a per-store lock; everything else
    relies on SQLite's own concurrency control.
    """

    def __init__(self, project_path: Union[str, Path], base_dir: Optional[Path] = None):
        """
        Open (creating if needed) the store for a project.

        Args:
            project_path: Path to the project directory
            base_dir: Ledger data directory, defaults to ~/.ledger
        """
        self.project_path = str(project_path)
        self.base_dir = Path(base_dir) if base_dir else default_base_dir()
        self.slug = generate_project_slug(self.project_path)
        self.store_dir = self.base_dir / self.slug
        self.db_path = self.store_dir / DB_FILENAME

        try:
            self.store_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError("create project directory", str(self.store_dir), str(exc)) from exc

        self._tx_lock = threading.Lock()
        self._tx_state = threading.local()
        self._engine = create_ledger_engine(self.db_path)
        self._session_maker = create_session_maker(self._engine)
        self._closed = False

        try:
            init_schema(self._engine)
            self._project_id = self.ensure_project(self.slug, self.project_path)
        except Exception:
            self._engine.dispose()
            raise

        logger.info("Opened ledger store %s for %s", self.db_path, self.project_path)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @property
    def project_id(self) -> str:
        """Id of the project this store is bound to."""
        return self._project_id

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Release all pooled connections. Waits for a running transaction."""
        self._reject_inside_transaction("close store")
        with self._tx_lock:
            try:
                self._engine.dispose()
            except SQLAlchemyError as exc:
                raise StorageError("close store", self.slug, str(exc)) from exc
            self._closed = True
        logger.info("Closed ledger store %s", self.db_path)

    def __enter__(self) -> "LedgerStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"LedgerStore(slug={self.slug!r}, db_path={str(self.db_path)!r})"

    @contextmanager
    def transaction(self) -> Iterator[OrmSession]:
        """
        Run a block as one atomic unit of work.

        Yields an ORM session. Commits when the block exits normally and
        rolls back if it raises. At most one scoped transaction per store
        is in flight at a time. Inside the block, use the yielded session;
        opening another transaction(), get_or_create_session(),
        override_decision() or close() from the same thread raises
        StorageError.

        Usage:
            with store.transaction() as session:
                session.add(...)
        """
        self._reject_inside_transaction("begin transaction")
        with self._tx_lock:
            self._tx_state.active = True
            try:
                with self._session_maker.begin() as session:
                    yield session
            finally:
                self._tx_state.active = False

    def _reject_inside_transaction(self, operation: str) -> None:
        # The transaction lock is not re-entrant
        if getattr(self._tx_state, "active", False):
            raise StorageError(operation, self.slug, "not allowed inside transaction()")

    # =========================================================================
    # Projects
    # =========================================================================

    def ensure_project(self, name: str, path: str) -> str:
        """
        Return the id of the project called name, creating it if needed.

        An existing project has its path refreshed.
        """
        with _storage_errors("ensure project", name):
            with self._session_maker.begin() as session:
                row = session.execute(
                    select(DBProject).where(DBProject.name == name)
                ).scalar_one_or_none()
                if row is not None:
                    if row.path != path:
                        row.path = path
                        row.updated_at = _utc_now()
                    return row.id

        try:
            return self.create_project(Project(name=name, path=path)).id
        except ConstraintError:
            # Another handle created it between our read and insert
            existing = self.get_project_by_name(name)
            if existing is None:
                raise
            return existing.id

    def create_project(self, project: Project) -> Project:
        """Insert a project. Duplicate names raise ConstraintError."""
        project.id = project.id or generate_id()
        now = _utc_now()
        project.created_at = now
        project.updated_at = now

        with _storage_errors("create project", project.id):
            with self._session_maker.begin() as session:
                session.add(DBProject(
                    id=project.id,
                    name=project.name,
                    path=project.path,
                    created_at=now,
                    updated_at=now,
                ))
        logger.debug("Created project %s (%s)", project.name, project.id)
        return project

    def get_project(self, project_id: str) -> Optional[Project]:
        with _storage_errors("get project", project_id):
            with self._session_maker() as session:
                row = session.get(DBProject, project_id)
                return self._db_to_project(row) if row else None

    def get_project_by_name(self, name: str) -> Optional[Project]:
        with _storage_errors("get project", name):
            with self._session_maker() as session:
                row = session.execute(
                    select(DBProject).where(DBProject.name == name)
                ).scalar_one_or_none()
                return self._db_to_project(row) if row else None

    def get_current_project(self) -> Optional[Project]:
        """Return the project this store is bound to."""
        return self.get_project(self._project_id)

    def update_project(self, project: Project) -> Project:
        """Update name and path."""
        project.updated_at = _utc_now()
        with _storage_errors("update project", project.id):
            with self._session_maker.begin() as session:
                result = session.execute(
                    sql_update(DBProject)
                    .where(DBProject.id == project.id)
                    .values(name=project.name, path=project.path, updated_at=project.updated_at)
                )
                if result.rowcount == 0:
                    raise NotFoundError("project", project.id, "update project")
        return project

    def list_projects(self) -> list[Project]:
        """All projects in this store, newest first."""
        with _storage_errors("list projects"):
            with self._session_maker() as session:
                rows = session.execute(
                    select(DBProject).order_by(DBProject.created_at.desc())
                ).scalars().all()
                return [self._db_to_project(r) for r in rows]

    def delete_project(self, project_id: str) -> None:
        """Delete a project and, by cascade, everything it owns."""
        self._delete(DBProject, project_id, "project")

    # =========================================================================
    # Sessions
    # =========================================================================

    def create_session(self, s: Session) -> Session:
        s.id = s.id or generate_id()
        s.project_id = s.project_id or self._project_id
        now = _utc_now()
        s.created_at = now
        s.updated_at = now

        with _storage_errors("create session", s.id):
            with self._session_maker.begin() as session:
                session.add(DBSession(
                    id=s.id,
                    project_id=s.project_id,
                    name=s.name,
                    parent_session_id=s.parent_session_id,
                    created_at=now,
                    updated_at=now,
                ))
        logger.debug("Created session %s (%s)", s.name, s.id)
        return s

    def get_session(self, session_id: str) -> Optional[Session]:
        with _storage_errors("get session", session_id):
            with self._session_maker() as session:
                row = session.get(DBSession, session_id)
                return self._db_to_session(row) if row else None

    def update_session(self, s: Session) -> Session:
        """Update name and parent pointer."""
        s.updated_at = _utc_now()
        with _storage_errors("update session", s.id):
            with self._session_maker.begin() as session:
                result = session.execute(
                    sql_update(DBSession)
                    .where(DBSession.id == s.id)
                    .values(
                        name=s.name,
                        parent_session_id=s.parent_session_id,
                        updated_at=s.updated_at,
                    )
                )
                if result.rowcount == 0:
                    raise NotFoundError("session", s.id, "update session")
        return s

    def list_sessions(self, project_id: Optional[str] = None) -> list[Session]:
        """Sessions of a project (default: this one), newest first."""
        with _storage_errors("list sessions"):
            with self._session_maker() as session:
                rows = session.execute(
                    select(DBSession)
                    .where(DBSession.project_id == (project_id or self._project_id))
                    .order_by(DBSession.created_at.desc())
                ).scalars().all()
                return [self._db_to_session(r) for r in rows]

    def get_or_create_session(self, name: str) -> Session:
        """
        Return this project's session called name, creating it if absent.

        Runs as a scoped transaction so concurrent callers asking for the
        same name get the same session.
        """
        self._reject_inside_transaction("get or create session")
        with _storage_errors("get or create session", name):
            with self.transaction() as session:
                row = session.execute(
                    select(DBSession)
                    .where(DBSession.project_id == self._project_id, DBSession.name == name)
                    .order_by(DBSession.created_at.asc())
                    .limit(1)
                ).scalar_one_or_none()
                if row is not None:
                    return self._db_to_session(row)

                now = _utc_now()
                row = DBSession(
                    id=generate_id(),
                    project_id=self._project_id,
                    name=name,
                    parent_session_id=None,
                    created_at=now,
                    updated_at=now,
                )
                session.add(row)
                session.flush()
                logger.debug("Created session %s (%s)", name, row.id)
                return self._db_to_session(row)

    def fork_session(self, parent_id: str, name: str) -> Session:
        """
        Start a new session branching from parent_id.

        Only the lineage is recorded; no decisions, notes or attempts are
        copied.
        """
        parent = self.get_session(parent_id)
        if parent is None:
            raise NotFoundError("parent session", parent_id, "fork session")
        return self.create_session(Session(
            name=name,
            project_id=parent.project_id,
            parent_session_id=parent_id,
        ))

    def get_session_lineage(self, session_id: str) -> list[Session]:
        """
        Walk parent pointers from a session up to its root.

        Returns the chain starting with the session itself, or [] if the
        session does not exist.
        """
        lineage: list[Session] = []
        seen: set[str] = set()
        current = self.get_session(session_id)
        while current is not None and current.id not in seen:
            lineage.append(current)
            seen.add(current.id)
            if current.parent_session_id is None:
                break
            current = self.get_session(current.parent_session_id)
        return lineage

    def delete_session(self, session_id: str) -> None:
        """Delete a session. Child sessions are orphaned, not deleted."""
        self._delete(DBSession, session_id, "session")

    # =========================================================================
    # Decisions
    # =========================================================================

    def create_decision(self, d: Decision) -> Decision:
        """
        Insert a decision.

        Fills in id, project and timestamp, and defaults status to active.
        The decision text is stored as given.
        """
        d.id = d.id or generate_id()
        d.project_id = d.project_id or self._project_id
        d.status = DecisionStatus(d.status) if d.status else DecisionStatus.ACTIVE
        d.created_at = _utc_now()

        with _storage_errors("create decision", d.id):
            with self._session_maker.begin() as session:
                session.add(DBDecision(
                    id=d.id,
                    project_id=d.project_id,
                    session_id=d.session_id,
                    category=d.category,
                    decision=d.decision,
                    rationale=d.rationale,
                    alternatives_rejected=d.alternatives_rejected,
                    status=d.status.value,
                    created_at=d.created_at,
                ))
        logger.debug("Created decision %s", d.id)
        return d

    def get_decision(self, decision_id: str) -> Optional[Decision]:
        with _storage_errors("get decision", decision_id):
            with self._session_maker() as session:
                row = session.get(DBDecision, decision_id)
                return self._db_to_decision(row) if row else None

    def update_decision(self, d: Decision) -> Decision:
        """
        Update category, text, rationale, alternatives and status.

        Session and project linkage cannot be changed after creation.
        """
        status = DecisionStatus(d.status)
        with _storage_errors("update decision", d.id):
            with self._session_maker.begin() as session:
                result = session.execute(
                    sql_update(DBDecision)
                    .where(DBDecision.id == d.id)
                    .values(
                        category=d.category,
                        decision=d.decision,
                        rationale=d.rationale,
                        alternatives_rejected=d.alternatives_rejected,
                        status=status.value,
                    )
                )
                if result.rowcount == 0:
                    raise NotFoundError("decision", d.id, "update decision")
        d.status = status
        return d

    def archive_decision(self, decision_id: str) -> None:
        """Mark a decision archived, whatever its current status."""
        self._set_decision_status(decision_id, DecisionStatus.ARCHIVED, "archive decision")

    def override_decision(self, decision_id: str, session_id: str, rationale: str) -> Override:
        """
        Mark a decision overridden and record why, as one unit of work.

        If the decision does not exist nothing is written and NotFoundError
        is raised. Overriding an already overridden decision records another
        Override.
        """
        self._reject_inside_transaction("override decision")
        override = Override(
            id=generate_id(),
            decision_id=decision_id,
            session_id=session_id,
            rationale=rationale,
            created_at=_utc_now(),
        )
        with _storage_errors("override decision", decision_id):
            with self.transaction() as session:
                result = session.execute(
                    sql_update(DBDecision)
                    .where(DBDecision.id == decision_id)
                    .values(status=DecisionStatus.OVERRIDDEN.value)
                )
                if result.rowcount == 0:
                    raise NotFoundError("decision", decision_id, "override decision")
                session.add(DBOverride(
                    id=override.id,
                    decision_id=override.decision_id,
                    session_id=override.session_id,
                    rationale=override.rationale,
                    created_at=override.created_at,
                ))
        logger.debug("Overrode decision %s (override %s)", decision_id, override.id)
        return override

    def delete_decision(self, decision_id: str) -> None:
        self._delete(DBDecision, decision_id, "decision")

    def list_decisions(self, filter: Optional[DecisionFilter] = None) -> list[Decision]:
        """
        List decisions matching every present filter field, newest first.

        Without a limit all matches are returned; offset only applies
        together with limit.
        """
        f = filter or DecisionFilter()
        stmt = select(DBDecision).where(DBDecision.project_id == (f.project_id or self._project_id))

        if f.session_id:
            stmt = stmt.where(DBDecision.session_id == f.session_id)
        if f.category:
            stmt = stmt.where(DBDecision.category == f.category)
        if f.status:
            stmt = stmt.where(DBDecision.status == DecisionStatus(f.status).value)
        if f.search:
            stmt = stmt.where(or_(
                DBDecision.decision.contains(f.search, autoescape=True),
                DBDecision.rationale.contains(f.search, autoescape=True),
            ))

        stmt = stmt.order_by(DBDecision.created_at.desc())
        if f.limit and f.limit > 0:
            stmt = stmt.limit(f.limit)
            if f.offset and f.offset > 0:
                stmt = stmt.offset(f.offset)

        with _storage_errors("list decisions"):
            with self._session_maker() as session:
                rows = session.execute(stmt).scalars().all()
                return [self._db_to_decision(r) for r in rows]

    def list_active_decisions(self) -> list[Decision]:
        return self.list_decisions(DecisionFilter(status=DecisionStatus.ACTIVE))

    def find_relevant_decisions(self, query: str) -> list[Decision]:
        """
        Find active decisions related to a free-text query.

        Words of three or more characters are matched case-insensitively
        against category and decision text; any match on either field
        counts. At most RELEVANCE_LIMIT results, newest first.
        """
        keywords = extract_keywords(query)
        if not keywords:
            return []

        conditions = []
        for word in keywords:
            conditions.append(func.lower(DBDecision.decision).contains(word, autoescape=True))
            conditions.append(func.lower(DBDecision.category).contains(word, autoescape=True))

        stmt = (
            select(DBDecision)
            .where(
                DBDecision.project_id == self._project_id,
                DBDecision.status == DecisionStatus.ACTIVE.value,
                or_(*conditions),
            )
            .order_by(DBDecision.created_at.desc())
            .limit(RELEVANCE_LIMIT)
        )
        with _storage_errors("find relevant decisions"):
            with self._session_maker() as session:
                rows = session.execute(stmt).scalars().all()
                return [self._db_to_decision(r) for r in rows]

    def get_decision_categories(self) -> list[str]:
        """Distinct non-empty categories used in this project, sorted."""
        stmt = (
            select(DBDecision.category)
            .where(
                DBDecision.project_id == self._project_id,
                DBDecision.category.is_not(None),
                DBDecision.category != "",
            )
            .distinct()
            .order_by(DBDecision.category)
        )
        with _storage_errors("get decision categories"):
            with self._session_maker() as session:
                return list(session.execute(stmt).scalars().all())

    # =========================================================================
    # Overrides & Override Patterns
    # =========================================================================

    def create_override(self, o: Override) -> Override:
        """
        Insert an override row on its own.

        This does not touch the decision's status; use override_decision()
        for the normal path.
        """
        o.id = o.id or generate_id()
        o.created_at = _utc_now()
        with _storage_errors("create override", o.id):
            with self._session_maker.begin() as session:
                session.add(DBOverride(
                    id=o.id,
                    decision_id=o.decision_id,
                    session_id=o.session_id,
                    rationale=o.rationale,
                    created_at=o.created_at,
                ))
        return o

    def get_override(self, override_id: str) -> Optional[Override]:
        with _storage_errors("get override", override_id):
            with self._session_maker() as session:
                row = session.get(DBOverride, override_id)
                return self._db_to_override(row) if row else None

    def list_overrides_for_decision(self, decision_id: str) -> list[Override]:
        """Every override of a decision, newest first."""
        with _storage_errors("list overrides", decision_id):
            with self._session_maker() as session:
                rows = session.execute(
                    select(DBOverride)
                    .where(DBOverride.decision_id == decision_id)
                    .order_by(DBOverride.created_at.desc())
                ).scalars().all()
                return [self._db_to_override(r) for r in rows]

    def count_overrides_for_decision(self, decision_id: str) -> int:
        with _storage_errors("count overrides", decision_id):
            with self._session_maker() as session:
                return session.execute(
                    select(func.count(DBOverride.id)).where(DBOverride.decision_id == decision_id)
                ).scalar_one()

    def get_override_patterns(self, min_overrides: int = 2) -> list[OverridePattern]:
        """
        Decisions overridden at least min_overrides times, most overridden first.

        Decisions that were never overridden are never returned.
        """
        override_count = func.count(DBOverride.id)
        stmt = (
            select(DBDecision, override_count.label("override_count"))
            .join(DBOverride, DBOverride.decision_id == DBDecision.id)
            .where(DBDecision.project_id == self._project_id)
            .group_by(DBDecision.id)
            .having(override_count >= min_overrides)
            .order_by(override_count.desc())
        )
        with _storage_errors("get override patterns"):
            with self._session_maker() as session:
                return [
                    OverridePattern(decision=self._db_to_decision(row), override_count=count)
                    for row, count in session.execute(stmt).all()
                ]

    def find_temporary_patterns(self) -> list[Override]:
        """
        Overrides whose rationale reads like a provisional fix.

        Matches TEMPORARY_MARKERS case-insensitively. A heuristic for
        spotting technical debt; newest first.
        """
        rationale = func.lower(DBOverride.rationale)
        stmt = (
            select(DBOverride)
            .join(DBDecision, DBOverride.decision_id == DBDecision.id)
            .where(
                DBDecision.project_id == self._project_id,
                or_(*[rationale.contains(marker) for marker in TEMPORARY_MARKERS]),
            )
            .order_by(DBOverride.created_at.desc())
        )
        with _storage_errors("find temporary patterns"):
            with self._session_maker() as session:
                rows = session.execute(stmt).scalars().all()
                return [self._db_to_override(r) for r in rows]

    # =========================================================================
    # AI Attempts
    # =========================================================================

    def create_attempt(self, a: AIAttempt) -> AIAttempt:
        """Insert an attempt; outcome defaults to pending."""
        a.id = a.id or generate_id()
        a.project_id = a.project_id or self._project_id
        a.outcome = AttemptOutcome(a.outcome) if a.outcome else AttemptOutcome.PENDING
        a.created_at = _utc_now()

        with _storage_errors("create attempt", a.id):
            with self._session_maker.begin() as session:
                session.add(DBAttempt(
                    id=a.id,
                    project_id=a.project_id,
                    session_id=a.session_id,
                    problem=a.problem,
                    suggestion=a.suggestion,
                    outcome=a.outcome.value,
                    failure_reason=a.failure_reason,
                    created_at=a.created_at,
                ))
        logger.debug("Created attempt %s", a.id)
        return a

    def get_attempt(self, attempt_id: str) -> Optional[AIAttempt]:
        with _storage_errors("get attempt", attempt_id):
            with self._session_maker() as session:
                row = session.get(DBAttempt, attempt_id)
                return self._db_to_attempt(row) if row else None

    def update_attempt_outcome(
        self,
        attempt_id: str,
        outcome: Union[AttemptOutcome, str],
        failure_reason: Optional[str] = None,
    ) -> None:
        """Set outcome and failure reason together; no reason clears it."""
        outcome = AttemptOutcome(outcome)
        with _storage_errors("update attempt outcome", attempt_id):
            with self._session_maker.begin() as session:
                result = session.execute(
                    sql_update(DBAttempt)
                    .where(DBAttempt.id == attempt_id)
                    .values(outcome=outcome.value, failure_reason=failure_reason or None)
                )
                if result.rowcount == 0:
                    raise NotFoundError("attempt", attempt_id, "update attempt outcome")

    def mark_attempt_worked(self, attempt_id: str) -> None:
        self.update_attempt_outcome(attempt_id, AttemptOutcome.WORKED)

    def mark_attempt_failed(self, attempt_id: str, reason: Optional[str] = None) -> None:
        self.update_attempt_outcome(attempt_id, AttemptOutcome.FAILED, reason)

    def mark_attempt_partial(self, attempt_id: str, notes: Optional[str] = None) -> None:
        self.update_attempt_outcome(attempt_id, AttemptOutcome.PARTIAL, notes)

    def list_attempts(self, filter: Optional[AttemptFilter] = None) -> list[AIAttempt]:
        """List attempts matching every present filter field, newest first."""
        f = filter or AttemptFilter()
        stmt = select(DBAttempt).where(DBAttempt.project_id == (f.project_id or self._project_id))

        if f.session_id:
            stmt = stmt.where(DBAttempt.session_id == f.session_id)
        if f.outcome:
            stmt = stmt.where(DBAttempt.outcome == AttemptOutcome(f.outcome).value)
        if f.search:
            stmt = stmt.where(or_(
                DBAttempt.problem.contains(f.search, autoescape=True),
                DBAttempt.suggestion.contains(f.search, autoescape=True),
            ))

        stmt = stmt.order_by(DBAttempt.created_at.desc())
        if f.limit and f.limit > 0:
            stmt = stmt.limit(f.limit)
            if f.offset and f.offset > 0:
                stmt = stmt.offset(f.offset)

        with _storage_errors("list attempts"):
            with self._session_maker() as session:
                rows = session.execute(stmt).scalars().all()
                return [self._db_to_attempt(r) for r in rows]

    def list_failed_attempts(self) -> list[AIAttempt]:
        return self.list_attempts(AttemptFilter(outcome=AttemptOutcome.FAILED))

    def get_recent_attempts(self, limit: int = 10) -> list[AIAttempt]:
        return self.list_attempts(AttemptFilter(limit=limit))

    def find_similar_failed_attempts(self, problem: str) -> list[AIAttempt]:
        """
        Failed attempts whose problem shares a keyword with the given one.

        Same keyword rule as find_relevant_decisions(), matched against the
        problem text only.
        """
        keywords = extract_keywords(problem)
        if not keywords:
            return []

        stmt = (
            select(DBAttempt)
            .where(
                DBAttempt.project_id == self._project_id,
                DBAttempt.outcome == AttemptOutcome.FAILED.value,
                or_(*[
                    func.lower(DBAttempt.problem).contains(word, autoescape=True)
                    for word in keywords
                ]),
            )
            .order_by(DBAttempt.created_at.desc())
            .limit(RELEVANCE_LIMIT)
        )
        with _storage_errors("find similar failed attempts"):
            with self._session_maker() as session:
                rows = session.execute(stmt).scalars().all()
                return [self._db_to_attempt(r) for r in rows]

    def get_recurring_failures(self, min_failures: int = 2) -> list[RecurringFailure]:
        """
        Suggestions that failed at least min_failures times.

        Grouped by exact suggestion text, so near-duplicates are counted
        separately. Most frequent first.
        """
        fail_count = func.count(DBAttempt.id)
        last_failure = func.max(DBAttempt.created_at)
        stmt = (
            select(DBAttempt.suggestion, fail_count, last_failure)
            .where(
                DBAttempt.project_id == self._project_id,
                DBAttempt.outcome == AttemptOutcome.FAILED.value,
            )
            .group_by(DBAttempt.suggestion)
            .having(fail_count >= min_failures)
            .order_by(fail_count.desc())
        )
        with _storage_errors("get recurring failures"):
            with self._session_maker() as session:
                return [
                    RecurringFailure(
                        suggestion=suggestion,
                        failure_count=count,
                        last_failure=_as_utc(last),
                    )
                    for suggestion, count, last in session.execute(stmt).all()
                ]

    def get_attempt_stats(self) -> dict[AttemptOutcome, int]:
        """Count of attempts per outcome present in this project."""
        stmt = (
            select(DBAttempt.outcome, func.count(DBAttempt.id))
            .where(DBAttempt.project_id == self._project_id)
            .group_by(DBAttempt.outcome)
        )
        with _storage_errors("get attempt stats"):
            with self._session_maker() as session:
                return {
                    AttemptOutcome(outcome): count
                    for outcome, count in session.execute(stmt).all()
                }

    def delete_attempt(self, attempt_id: str) -> None:
        self._delete(DBAttempt, attempt_id, "attempt")

    # =========================================================================
    # Notes
    # =========================================================================

    def create_note(self, n: Note) -> Note:
        n.id = n.id or generate_id()
        n.project_id = n.project_id or self._project_id
        n.created_at = _utc_now()

        with _storage_errors("create note", n.id):
            with self._session_maker.begin() as session:
                session.add(DBNote(
                    id=n.id,
                    project_id=n.project_id,
                    session_id=n.session_id,
                    content=n.content,
                    created_at=n.created_at,
                ))
        return n

    def quick_note(self, content: str) -> Note:
        """Record a note against this project with no session."""
        return self.create_note(Note(content=content))

    def get_note(self, note_id: str) -> Optional[Note]:
        with _storage_errors("get note", note_id):
            with self._session_maker() as session:
                row = session.get(DBNote, note_id)
                return self._db_to_note(row) if row else None

    def update_note(self, n: Note) -> Note:
        """Update a note's content."""
        with _storage_errors("update note", n.id):
            with self._session_maker.begin() as session:
                result = session.execute(
                    sql_update(DBNote).where(DBNote.id == n.id).values(content=n.content)
                )
                if result.rowcount == 0:
                    raise NotFoundError("note", n.id, "update note")
        return n

    def list_notes(self, project_id: Optional[str] = None) -> list[Note]:
        """Notes of a project (default: this one), newest first."""
        return self._query_notes(
            "list notes",
            DBNote.project_id == (project_id or self._project_id),
        )

    def list_notes_by_session(self, session_id: str) -> list[Note]:
        return self._query_notes("list notes", DBNote.session_id == session_id)

    def get_recent_notes(self, limit: int = 10) -> list[Note]:
        return self._query_notes("get recent notes", DBNote.project_id == self._project_id, limit=limit)

    def search_notes(self, text: str) -> list[Note]:
        """Notes whose content contains text (case-sensitive), newest first."""
        return self._query_notes(
            "search notes",
            DBNote.project_id == self._project_id,
            func.instr(DBNote.content, text) > 0,
        )

    def delete_note(self, note_id: str) -> None:
        self._delete(DBNote, note_id, "note")

    def _query_notes(self, operation: str, *conditions, limit: Optional[int] = None) -> list[Note]:
        stmt = select(DBNote).where(*conditions).order_by(DBNote.created_at.desc())
        if limit:
            stmt = stmt.limit(limit)
        with _storage_errors(operation):
            with self._session_maker() as session:
                rows = session.execute(stmt).scalars().all()
                return [self._db_to_note(r) for r in rows]

    # =========================================================================
    # Helpers
    # =========================================================================

    def _set_decision_status(self, decision_id: str, status: DecisionStatus, operation: str) -> None:
        with _storage_errors(operation, decision_id):
            with self._session_maker.begin() as session:
                result = session.execute(
                    sql_update(DBDecision)
                    .where(DBDecision.id == decision_id)
                    .values(status=status.value)
                )
                if result.rowcount == 0:
                    raise NotFoundError("decision", decision_id, operation)

    def _delete(self, model, entity_id: str, entity: str) -> None:
        operation = f"delete {entity}"
        with _storage_errors(operation, entity_id):
            with self._session_maker.begin() as session:
                result = session.execute(sql_delete(model).where(model.id == entity_id))
                if result.rowcount == 0:
                    raise NotFoundError(entity, entity_id, operation)
        logger.debug("Deleted %s %s", entity, entity_id)

    def _db_to_project(self, row: DBProject) -> Project:
        return Project(
            id=row.id,
            name=row.name,
            path=row.path,
            created_at=_as_utc(row.created_at),
            updated_at=_as_utc(row.updated_at),
        )

    def _db_to_session(self, row: DBSession) -> Session:
        return Session(
            id=row.id,
            project_id=row.project_id,
            name=row.name or "",
            parent_session_id=row.parent_session_id,
            created_at=_as_utc(row.created_at),
            updated_at=_as_utc(row.updated_at),
        )

    def _db_to_decision(self, row: DBDecision) -> Decision:
        return Decision(
            id=row.id,
            project_id=row.project_id,
            session_id=row.session_id,
            category=row.category,
            decision=row.decision,
            rationale=row.rationale,
            alternatives_rejected=row.alternatives_rejected,
            status=DecisionStatus(row.status),
            created_at=_as_utc(row.created_at),
        )

    def _db_to_override(self, row: DBOverride) -> Override:
        return Override(
            id=row.id,
            decision_id=row.decision_id,
            session_id=row.session_id,
            rationale=row.rationale,
            created_at=_as_utc(row.created_at),
        )

    def _db_to_attempt(self, row: DBAttempt) -> AIAttempt:
        return AIAttempt(
            id=row.id,
            project_id=row.project_id,
            session_id=row.session_id,
            problem=row.problem,
            suggestion=row.suggestion,
            outcome=AttemptOutcome(row.outcome),
            failure_reason=row.failure_reason,
            created_at=_as_utc(row.created_at),
        )

    def _db_to_note(self, row: DBNote) -> Note:
        return Note(
            id=row.id,
            project_id=row.project_id,
            session_id=row.session_id,
            content=row.content,
            created_at=_as_utc(row.created_at),
        )
