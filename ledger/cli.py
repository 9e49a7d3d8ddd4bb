#!/usr/bin/env python3
"""
Ledger CLI
==========

Command-line interface for recording and reviewing a project's decisions,
overrides, AI attempts and notes.

Usage:
    ledger init
    ledger decide "Use SQLite for storage" --category architecture --rationale "single file"
    ledger decisions [--status active] [--category C] [--search TEXT] [--limit N]
    ledger show DECISION_ID
    ledger relevant "storage layer"
    ledger override DECISION_ID --rationale "temporary hack" [--session NAME]
    ledger archive DECISION_ID
    ledger patterns [--min N]
    ledger note "remember to rotate keys"
    ledger notes [--search TEXT]
    ledger attempt "tests hang" "raise the timeout" [--session NAME]
    ledger outcome ATTEMPT_ID failed --reason "still hangs"
    ledger stats
    ledger sessions
    ledger fork SESSION_ID NAME

Global options --project PATH (default: current directory) and --home DIR
(default: $LEDGER_HOME or ~/.ledger) select the store.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from rich.markup import escape

from ledger import __version__
from ledger.config import LedgerConfig
from ledger.errors import LedgerError
from ledger.manager import LedgerManager
from ledger.models import (
    AIAttempt,
    AttemptOutcome,
    Decision,
    DecisionFilter,
    DecisionStatus,
)
from ledger.output import (
    console,
    create_table,
    format_relative_time,
    print_error,
    print_header,
    print_info,
    print_key_value_table,
    print_muted,
    print_success,
    print_table,
    print_warning,
    setup_rich_logging,
    truncate,
)
from ledger.store import LedgerStore
from ledger.validation import optional_text, require_text, validate_decision_input

DEFAULT_SESSION = "main"


def _status_markup(status: DecisionStatus) -> str:
    return f"[lg.status.{status.value}]{status.value}[/]"


def _outcome_markup(outcome: AttemptOutcome) -> str:
    return f"[lg.outcome.{outcome.value}]{outcome.value}[/]"


def _print_decisions(decisions: list[Decision], title: str) -> None:
    if not decisions:
        print_muted("No decisions found.")
        return
    table = create_table(title=title, columns=["ID", "Category", "Decision", "Status", "When"])
    for d in decisions:
        table.add_row(
            f"[lg.id]{d.id}[/]",
            escape(d.category or ""),
            escape(truncate(d.decision, 60)),
            _status_markup(d.status),
            format_relative_time(d.created_at),
        )
    print_table(table)


# =============================================================================
# Commands
# =============================================================================

def cmd_init(args, store: LedgerStore) -> int:
    """Create (or open) the project's store."""
    print_success(f"Ledger ready for {store.project_path}")
    print_key_value_table({
        "Project": store.slug,
        "Project ID": store.project_id,
        "Database": store.db_path,
    })
    return 0


def cmd_status(args, store: LedgerStore) -> int:
    """Summarize what is recorded for the project."""
    decisions = store.list_decisions()
    by_status = {status: 0 for status in DecisionStatus}
    for d in decisions:
        by_status[d.status] += 1

    stats = store.get_attempt_stats()
    print_header(f"Ledger: {store.slug}")
    print_key_value_table({
        "Database": store.db_path,
        "Sessions": len(store.list_sessions()),
        "Decisions": len(decisions),
        **{f"  {s.value}": n for s, n in by_status.items()},
        "Categories": ", ".join(store.get_decision_categories()) or "-",
        "AI attempts": sum(stats.values()),
        "Notes": len(store.list_notes()),
    })
    return 0


def cmd_decide(args, store: LedgerStore) -> int:
    """Record a new decision."""
    error = validate_decision_input(args.category, args.decision)
    if error:
        print_error(error)
        return 1

    session_id = store.get_or_create_session(args.session).id if args.session else None
    alternatives = [a.strip() for a in (args.alternative or []) if a.strip()] or None
    decision = store.create_decision(Decision(
        decision=args.decision.strip(),
        category=args.category.strip(),
        rationale=optional_text(args.rationale),
        alternatives_rejected=alternatives,
        session_id=session_id,
    ))
    print_success(f"Recorded decision {decision.id}")

    previous = [
        d for d in store.find_relevant_decisions(decision.decision) if d.id != decision.id
    ]
    if previous:
        print_info(f"{len(previous)} related active decision(s):")
        for d in previous:
            print_muted(f"  {d.id}  {escape(d.summary())}")
    return 0


def cmd_decisions(args, store: LedgerStore) -> int:
    """List decisions."""
    decisions = store.list_decisions(DecisionFilter(
        category=args.category,
        status=DecisionStatus(args.status) if args.status else None,
        search=args.search,
        limit=args.limit,
    ))
    _print_decisions(decisions, "Decisions")
    return 0


def cmd_show(args, store: LedgerStore) -> int:
    """Show one decision and its override history."""
    decision = store.get_decision(args.decision_id)
    if decision is None:
        print_error(f"decision not found: {args.decision_id}")
        return 1

    print_key_value_table({
        "ID": decision.id,
        "Category": decision.category,
        "Decision": decision.decision,
        "Rationale": decision.rationale,
        "Rejected": ", ".join(decision.alternatives_rejected or []),
        "Status": decision.status.value,
        "Session": decision.session_id,
        "Created": format_relative_time(decision.created_at),
    }, title="Decision")

    overrides = store.list_overrides_for_decision(decision.id)
    if overrides:
        table = create_table(title="Overrides", columns=["When", "Session", "Rationale"])
        for o in overrides:
            table.add_row(format_relative_time(o.created_at), o.session_id, escape(o.rationale))
        print_table(table)
    return 0


def cmd_relevant(args, store: LedgerStore) -> int:
    """Find active decisions related to a query."""
    _print_decisions(store.find_relevant_decisions(args.query), "Relevant decisions")
    return 0


def cmd_archive(args, store: LedgerStore) -> int:
    store.archive_decision(args.decision_id)
    print_success(f"Archived decision {args.decision_id}")
    return 0


def cmd_override(args, store: LedgerStore) -> int:
    """Override a decision with a rationale."""
    rationale = require_text(args.rationale, "rationale")
    session = store.get_or_create_session(args.session)
    override = store.override_decision(args.decision_id, session.id, rationale)
    print_success(f"Overrode decision {args.decision_id}")

    count = store.count_overrides_for_decision(args.decision_id)
    if count > 1:
        print_warning(f"This decision has now been overridden {count} times")
    if any(o.id == override.id for o in store.find_temporary_patterns()):
        print_warning("Rationale looks temporary; consider revisiting this later")
    return 0


def cmd_patterns(args, store: LedgerStore) -> int:
    """Show repeatedly overridden decisions, provisional overrides and recurring failures."""
    found = False

    patterns = store.get_override_patterns(args.min)
    if patterns:
        found = True
        table = create_table(title="Repeatedly overridden", columns=["Overrides", "ID", "Decision"])
        for p in patterns:
            table.add_row(
                f"[lg.number]{p.override_count}[/]",
                f"[lg.id]{p.decision.id}[/]",
                escape(truncate(p.decision.decision, 60)),
            )
        print_table(table)

    temporary = store.find_temporary_patterns()
    if temporary:
        found = True
        table = create_table(title="Temporary overrides", columns=["When", "Decision", "Rationale"])
        for o in temporary:
            table.add_row(format_relative_time(o.created_at), f"[lg.id]{o.decision_id}[/]", escape(o.rationale))
        print_table(table)

    failures = store.get_recurring_failures(args.min)
    if failures:
        found = True
        table = create_table(title="Recurring failures", columns=["Failures", "Suggestion", "Last"])
        for f in failures:
            table.add_row(
                f"[lg.number]{f.failure_count}[/]",
                escape(truncate(f.suggestion, 60)),
                format_relative_time(f.last_failure),
            )
        print_table(table)

    if not found:
        print_muted("No patterns found.")
    return 0


def cmd_note(args, store: LedgerStore) -> int:
    content = require_text(args.content, "note")
    note = store.quick_note(content)
    print_success(f"Saved note {note.id}")
    return 0


def cmd_notes(args, store: LedgerStore) -> int:
    notes = store.search_notes(args.search) if args.search else store.get_recent_notes(args.limit)
    if not notes:
        print_muted("No notes found.")
        return 0
    table = create_table(title="Notes", columns=["When", "Note"])
    for n in notes:
        table.add_row(format_relative_time(n.created_at), escape(n.content))
    print_table(table)
    return 0


def cmd_attempt(args, store: LedgerStore) -> int:
    """Record an AI suggestion, warning about similar past failures."""
    problem = require_text(args.problem, "problem")
    suggestion = require_text(args.suggestion, "suggestion")

    similar = store.find_similar_failed_attempts(problem)
    session = store.get_or_create_session(args.session)
    attempt = store.create_attempt(AIAttempt(
        session_id=session.id,
        problem=problem,
        suggestion=suggestion,
    ))
    print_success(f"Recorded attempt {attempt.id}")

    if similar:
        print_warning(f"{len(similar)} similar problem(s) already failed:")
        for a in similar:
            reason = f" ({a.failure_reason})" if a.failure_reason else ""
            print_muted(escape(f"  {truncate(a.suggestion, 60)}{reason}"))
    return 0


def cmd_outcome(args, store: LedgerStore) -> int:
    outcome = AttemptOutcome(args.outcome)
    store.update_attempt_outcome(args.attempt_id, outcome, optional_text(args.reason))
    print_success(f"Attempt {args.attempt_id} marked {outcome.value}")
    return 0


def cmd_stats(args, store: LedgerStore) -> int:
    stats = store.get_attempt_stats()
    if not stats:
        print_muted("No AI attempts recorded.")
        return 0
    table = create_table(title="AI attempts", columns=["Outcome", "Count"])
    for outcome in AttemptOutcome:
        if outcome in stats:
            table.add_row(_outcome_markup(outcome), str(stats[outcome]))
    print_table(table)
    return 0


def cmd_sessions(args, store: LedgerStore) -> int:
    sessions = store.list_sessions()
    if not sessions:
        print_muted("No sessions yet.")
        return 0
    table = create_table(title="Sessions", columns=["ID", "Name", "Forked from", "Created"])
    for s in sessions:
        table.add_row(
            f"[lg.id]{s.id}[/]",
            escape(s.name),
            s.parent_session_id or "",
            format_relative_time(s.created_at),
        )
    print_table(table)
    return 0


def cmd_fork(args, store: LedgerStore) -> int:
    name = require_text(args.name, "session name")
    forked = store.fork_session(args.session_id, name)
    print_success(f"Forked session {escape(forked.name)} ({forked.id}) from {args.session_id}")
    return 0


# =============================================================================
# Argument Parsing
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ledger",
        description="Per-project ledger of decisions, overrides, AI attempts and notes",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--project", "-p", type=Path, help="Project directory (default: cwd)")
    parser.add_argument("--home", type=Path, help="Ledger data directory")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("init", help="Create the project's ledger")
    p.set_defaults(func=cmd_init)

    p = sub.add_parser("status", help="Summarize the project's ledger")
    p.set_defaults(func=cmd_status)

    p = sub.add_parser("decide", help="Record a decision")
    p.add_argument("decision")
    p.add_argument("--category", "-c", default="")
    p.add_argument("--rationale", "-r")
    p.add_argument("--alternative", "-a", action="append", help="Rejected alternative (repeatable)")
    p.add_argument("--session", "-s", help="Session name")
    p.set_defaults(func=cmd_decide)

    p = sub.add_parser("decisions", help="List decisions")
    p.add_argument("--status", choices=[s.value for s in DecisionStatus])
    p.add_argument("--category")
    p.add_argument("--search")
    p.add_argument("--limit", type=int)
    p.set_defaults(func=cmd_decisions)

    p = sub.add_parser("show", help="Show a decision and its overrides")
    p.add_argument("decision_id")
    p.set_defaults(func=cmd_show)

    p = sub.add_parser("relevant", help="Find active decisions related to a query")
    p.add_argument("query")
    p.set_defaults(func=cmd_relevant)

    p = sub.add_parser("archive", help="Archive a decision")
    p.add_argument("decision_id")
    p.set_defaults(func=cmd_archive)

    p = sub.add_parser("override", help="Override a decision")
    p.add_argument("decision_id")
    p.add_argument("--rationale", "-r", required=True)
    p.add_argument("--session", "-s", default=DEFAULT_SESSION)
    p.set_defaults(func=cmd_override)

    p = sub.add_parser("patterns", help="Show override and failure patterns")
    p.add_argument("--min", type=int, default=2, help="Minimum repetitions (default: 2)")
    p.set_defaults(func=cmd_patterns)

    p = sub.add_parser("note", help="Save a quick note")
    p.add_argument("content")
    p.set_defaults(func=cmd_note)

    p = sub.add_parser("notes", help="List or search notes")
    p.add_argument("--search")
    p.add_argument("--limit", type=int, default=20)
    p.set_defaults(func=cmd_notes)

    p = sub.add_parser("attempt", help="Record an AI suggestion")
    p.add_argument("problem")
    p.add_argument("suggestion")
    p.add_argument("--session", "-s", default=DEFAULT_SESSION)
    p.set_defaults(func=cmd_attempt)

    p = sub.add_parser("outcome", help="Record how an AI suggestion turned out")
    p.add_argument("attempt_id")
    p.add_argument("outcome", choices=[o.value for o in AttemptOutcome if o != AttemptOutcome.PENDING])
    p.add_argument("--reason")
    p.set_defaults(func=cmd_outcome)

    p = sub.add_parser("stats", help="AI attempt outcome counts")
    p.set_defaults(func=cmd_stats)

    p = sub.add_parser("sessions", help="List sessions")
    p.set_defaults(func=cmd_sessions)

    p = sub.add_parser("fork", help="Fork a session")
    p.add_argument("session_id")
    p.add_argument("name")
    p.set_defaults(func=cmd_fork)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    load_dotenv()
    args = build_parser().parse_args(argv)
    config = LedgerConfig.load()

    setup_rich_logging(logging.DEBUG if args.verbose else config.log_level_value())

    base_dir = args.home or config.base_dir
    project = (args.project or Path.cwd()).absolute()
    manager = LedgerManager(base_dir=base_dir)
    try:
        store = manager.get_store(project)
        return args.func(args, store)
    except LedgerError as e:
        print_error(escape(str(e)))
        return 1
    finally:
        try:
            manager.close_all()
        except LedgerError as e:
            print_error(escape(str(e)))


if __name__ == "__main__":
    sys.exit(main())
