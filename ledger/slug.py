"""
Project Resolver
================

Derives a stable, filesystem-safe slug from a project path. The slug names
the on-disk store directory and is the project's unique name inside it.

Two different paths whose parent and base names match produce the same
slug and therefore share one store. This is a known hazard, not handled.
"""

import os
import posixpath
from pathlib import Path

LEDGER_DIRNAME = ".ledger"
DB_FILENAME = "ledger.db"


def sanitize_slug(text: str) -> str:
    """
    Keep ASCII letters (lower-cased), digits, '-' and '_'; turn spaces and
    '/' into '-'; drop everything else.
    """
    out = []
    for ch in text:
        if "a" <= ch <= "z" or "0" <= ch <= "9" or ch in "-_":
            out.append(ch)
        elif "A" <= ch <= "Z":
            out.append(ch.lower())
        elif ch in " /":
            out.append("-")
    return "".join(out)


def generate_project_slug(project_path) -> str:
    """
    Build a slug from the last two components of a path.

    "/home/me/repos/MyProject" -> "repos-myproject"
    "MyProject"                -> "myproject"
    """
    raw = os.fspath(project_path)
    if os.sep != "/":
        raw = raw.replace(os.sep, "/")
    clean = posixpath.normpath(raw) if raw else "."

    base = posixpath.basename(clean) or clean
    parent = posixpath.basename(posixpath.dirname(clean))

    if parent and parent not in (".", "/"):
        return sanitize_slug(f"{parent}-{base}")
    return sanitize_slug(base)


def default_base_dir() -> Path:
    """Return the default ledger data directory (~/.ledger)."""
    return Path.home() / LEDGER_DIRNAME


def project_store_dir(base_dir: Path, project_path) -> Path:
    """Return <base_dir>/<slug> for a project path."""
    return Path(base_dir) / generate_project_slug(project_path)


def project_db_path(base_dir: Path, project_path) -> Path:
    """Return <base_dir>/<slug>/ledger.db for a project path."""
    return project_store_dir(base_dir, project_path) / DB_FILENAME
