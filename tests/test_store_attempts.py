"""
Tests for AI Attempt Storage
============================

Tests for store.py - AI attempts, outcomes and failure pattern mining.
"""

import tempfile
import time
from pathlib import Path

import pytest

from ledger.errors import ConstraintError, NotFoundError
from ledger.models import AIAttempt, AttemptFilter, AttemptOutcome
from ledger.store import LedgerStore


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def temp_home():
    """Create a temporary ledger home directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def store(temp_home):
    """Create a LedgerStore for testing."""
    s = LedgerStore("/work/repos/app", base_dir=temp_home)
    yield s
    s.close()


@pytest.fixture
def session(store):
    return store.get_or_create_session("main")


def _attempt(store, session, problem, suggestion, outcome=AttemptOutcome.PENDING, reason=None):
    attempt = store.create_attempt(AIAttempt(
        session_id=session.id,
        problem=problem,
        suggestion=suggestion,
        outcome=outcome,
        failure_reason=reason,
    ))
    time.sleep(0.002)
    return attempt


# =============================================================================
# Create / Outcome Tests
# =============================================================================

class TestAttemptOutcome:
    """Tests for recording attempts and their outcomes."""

    def test_defaults_to_pending(self, store, session):
        attempt = _attempt(store, session, "tests hang", "raise the timeout")

        loaded = store.get_attempt(attempt.id)
        assert loaded.outcome == AttemptOutcome.PENDING
        assert loaded.failure_reason is None
        assert loaded.project_id == store.project_id

    def test_unknown_session_violates_constraint(self, store):
        with pytest.raises(ConstraintError):
            store.create_attempt(AIAttempt(session_id="missing", problem="p", suggestion="s"))

    def test_failed_with_reason(self, store, session):
        attempt = _attempt(store, session, "p", "s")
        store.update_attempt_outcome(attempt.id, AttemptOutcome.FAILED, "still hangs")

        loaded = store.get_attempt(attempt.id)
        assert loaded.outcome == AttemptOutcome.FAILED
        assert loaded.failure_reason == "still hangs"

    def test_new_outcome_without_reason_clears_it(self, store, session):
        attempt = _attempt(store, session, "p", "s")
        store.mark_attempt_failed(attempt.id, "still hangs")
        store.mark_attempt_worked(attempt.id)

        loaded = store.get_attempt(attempt.id)
        assert loaded.outcome == AttemptOutcome.WORKED
        assert loaded.failure_reason is None

    def test_partial_keeps_notes(self, store, session):
        attempt = _attempt(store, session, "p", "s")
        store.mark_attempt_partial(attempt.id, "fixed one of two")

        loaded = store.get_attempt(attempt.id)
        assert loaded.outcome == AttemptOutcome.PARTIAL
        assert loaded.failure_reason == "fixed one of two"

    def test_outcome_accepts_string(self, store, session):
        attempt = _attempt(store, session, "p", "s")
        store.update_attempt_outcome(attempt.id, "worked")
        assert store.get_attempt(attempt.id).outcome == AttemptOutcome.WORKED

    def test_update_missing_raises(self, store):
        with pytest.raises(NotFoundError) as exc_info:
            store.mark_attempt_worked("missing")
        assert exc_info.value.operation == "update attempt outcome"

    def test_delete(self, store, session):
        attempt = _attempt(store, session, "p", "s")
        store.delete_attempt(attempt.id)
        assert store.get_attempt(attempt.id) is None
        with pytest.raises(NotFoundError):
            store.delete_attempt(attempt.id)


# =============================================================================
# Listing Tests
# =============================================================================

class TestListAttempts:
    """Tests for list_attempts and its shortcuts."""

    def test_filters(self, store, session):
        other = store.get_or_create_session("other")
        a = _attempt(store, session, "build breaks", "pin the compiler", AttemptOutcome.FAILED)
        b = _attempt(store, other, "flaky test", "add a retry", AttemptOutcome.WORKED)
        c = _attempt(store, session, "slow build", "cache deps")

        assert [x.id for x in store.list_attempts()] == [c.id, b.id, a.id]
        assert [x.id for x in store.list_attempts(AttemptFilter(session_id=other.id))] == [b.id]
        assert [x.id for x in store.list_attempts(AttemptFilter(outcome=AttemptOutcome.WORKED))] == [b.id]
        assert [x.id for x in store.list_attempts(AttemptFilter(search="build"))] == [c.id, a.id]
        assert [x.id for x in store.list_attempts(AttemptFilter(search="retry"))] == [b.id]
        assert [x.id for x in store.list_failed_attempts()] == [a.id]
        assert [x.id for x in store.get_recent_attempts(limit=2)] == [c.id, b.id]


# =============================================================================
# Failure Pattern Tests
# =============================================================================

class TestFailurePatterns:
    """Tests for similar and recurring failures."""

    def test_similar_failed_attempts(self, store, session):
        failed = _attempt(store, session, "Database connection times out", "raise pool size", AttemptOutcome.FAILED)
        _attempt(store, session, "Database migration fails", "rerun it", AttemptOutcome.WORKED)
        _attempt(store, session, "Database is slow", "add an index")
        _attempt(store, session, "CSS broken", "clear cache", AttemptOutcome.FAILED)

        result = store.find_similar_failed_attempts("database timeout")
        assert [r.id for r in result] == [failed.id]

    def test_similar_with_only_short_words(self, store, session):
        _attempt(store, session, "it is on", "x", AttemptOutcome.FAILED)
        assert store.find_similar_failed_attempts("it on") == []

    def test_recurring_failures(self, store, session):
        for _ in range(3):
            last_increase = _attempt(store, session, "p", "increase timeout", AttemptOutcome.FAILED)
        for _ in range(2):
            last_cased = _attempt(store, session, "p", "Increase timeout", AttemptOutcome.FAILED)
        _attempt(store, session, "p", "add retry", AttemptOutcome.FAILED)
        _attempt(store, session, "p", "add retry", AttemptOutcome.WORKED)

        failures = store.get_recurring_failures(min_failures=2)

        assert [(f.suggestion, f.failure_count) for f in failures] == [
            ("increase timeout", 3),
            ("Increase timeout", 2),
        ]
        assert failures[0].last_failure == last_increase.created_at
        assert failures[1].last_failure == last_cased.created_at

    def test_stats(self, store, session):
        _attempt(store, session, "p", "a")
        _attempt(store, session, "p", "b", AttemptOutcome.WORKED)
        _attempt(store, session, "p", "c", AttemptOutcome.WORKED)
        _attempt(store, session, "p", "d", AttemptOutcome.FAILED)

        assert store.get_attempt_stats() == {
            AttemptOutcome.PENDING: 1,
            AttemptOutcome.WORKED: 2,
            AttemptOutcome.FAILED: 1,
        }

    def test_stats_empty(self, store):
        assert store.get_attempt_stats() == {}
