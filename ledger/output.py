"""
Rich Output Utilities
=====================

Terminal output for the ledger CLI using the Rich library: a themed console,
status messages, tables and logging integration.
"""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.theme import Theme


# =============================================================================
# Color Scheme & Theme
# =============================================================================

@dataclass(frozen=True)
class LedgerColors:
    """Ledger color palette using hex for truecolor terminal support."""
    ink: str = "#E6E6E6"       # primary text
    dim: str = "#9AA4B2"       # muted text
    accent: str = "#F59E0B"    # headers, counts
    cyan: str = "#22D3EE"      # borders, info
    steel: str = "#94A3B8"     # keys
    ok: str = "#22C55E"
    warn: str = "#FBBF24"
    err: str = "#EF4444"


def ledger_theme(colors: LedgerColors = LedgerColors()) -> Theme:
    """
    Rich Theme for the ledger CLI.

    Style names are semantic so you can use them everywhere:
      console.print("...", style="lg.ok")
    """
    return Theme(
        {
            "lg.border": f"{colors.cyan}",
            "lg.accent": f"bold {colors.accent}",
            "lg.muted": f"{colors.dim}",
            "lg.text": f"{colors.ink}",

            # Status
            "lg.ok": f"bold {colors.ok}",
            "lg.warn": f"bold {colors.warn}",
            "lg.err": f"bold {colors.err}",
            "lg.info": f"{colors.cyan}",

            # Data display
            "lg.key": f"{colors.steel}",
            "lg.value": f"{colors.ink}",
            "lg.number": f"bold {colors.accent}",
            "lg.id": f"{colors.dim}",
            "lg.timestamp": f"{colors.dim}",
            "lg.table.header": f"bold {colors.cyan}",

            # Decision status / attempt outcome
            "lg.status.active": f"bold {colors.ok}",
            "lg.status.overridden": f"bold {colors.warn}",
            "lg.status.archived": f"{colors.dim}",
            "lg.outcome.worked": f"bold {colors.ok}",
            "lg.outcome.failed": f"bold {colors.err}",
            "lg.outcome.partial": f"{colors.warn}",
            "lg.outcome.pending": f"{colors.dim}",
        }
    )


# =============================================================================
# Unicode / ASCII Fallbacks
# =============================================================================

def _can_use_unicode() -> bool:
    """Check if the terminal can handle the Unicode icons."""
    if os.name == 'nt':
        try:
            encoding = sys.stdout.encoding or 'utf-8'
            "✓✗•".encode(encoding)
            return True
        except (UnicodeEncodeError, LookupError, AttributeError):
            return False
    return True


_UNICODE_ICONS = {
    "check": "✓",
    "cross": "✗",
    "warning": "⚠",
    "info": "ℹ",
    "bullet": "•",
    "arrow_right": "→",
}

_ASCII_ICONS = {
    "check": "[OK]",
    "cross": "[X]",
    "warning": "[!]",
    "info": "[i]",
    "bullet": "-",
    "arrow_right": "->",
}

_ICONS = _UNICODE_ICONS if _can_use_unicode() else _ASCII_ICONS


def icon(name: str) -> str:
    """Get an icon by name, using ASCII fallback if needed."""
    return _ICONS.get(name, "")


# =============================================================================
# Global Console Instance
# =============================================================================

# Themed console - the single source of truth for CLI output
console = Console(theme=ledger_theme(), emoji=False)


# =============================================================================
# Basic Message Functions
# =============================================================================

def print_success(message: str) -> None:
    """Print a success message with checkmark."""
    console.print(f"[lg.ok]{icon('check')} {message}[/]")


def print_error(message: str) -> None:
    """Print an error message with X."""
    console.print(f"[lg.err]{icon('cross')} {message}[/]")


def print_warning(message: str) -> None:
    """Print a warning message."""
    console.print(f"[lg.warn]{icon('warning')} {message}[/]")


def print_info(message: str) -> None:
    """Print an info message."""
    console.print(f"[lg.info]{icon('info')} {message}[/]")


def print_muted(message: str) -> None:
    """Print muted/secondary text."""
    console.print(f"[lg.muted]{message}[/]")


def print_header(title: str, style: str = "lg.accent") -> None:
    """Print a section header with rule lines."""
    console.print()
    console.print(Rule(f"[{style}]{title}[/]", style=style))


# =============================================================================
# Data Display Functions
# =============================================================================

def print_key_value_table(
    data: Dict[str, Any],
    *,
    title: Optional[str] = None,
    border_style: str = "lg.border",
) -> None:
    """Print multiple key-value pairs in a clean table format."""
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Key", style="lg.key")
    table.add_column("Value", style="lg.value")

    for key, value in data.items():
        table.add_row(key, "" if value is None else escape(str(value)))

    if title:
        console.print(Panel(table, title=f"[bold]{title}[/]", border_style=border_style))
    else:
        console.print(table)


def create_table(
    *,
    title: Optional[str] = None,
    columns: Optional[List[str]] = None,
    border_style: str = "lg.border",
    header_style: str = "lg.table.header",
) -> Table:
    """Create a styled Rich Table with the ledger theme."""
    table = Table(
        title=title,
        header_style=header_style,
        border_style=border_style,
        title_style="lg.accent",
    )

    if columns:
        for col in columns:
            table.add_column(col)

    return table


def print_table(table: Table) -> None:
    """Print a Rich Table to the console."""
    console.print(table)


# =============================================================================
# Formatting
# =============================================================================

def format_relative_time(value: Optional[datetime], now: Optional[datetime] = None) -> str:
    """
    Describe a timestamp relative to now.

    "just now", "5 minutes ago", "1 hour ago", "yesterday", "3 days ago",
    and "Jan 2, 2006" for anything a week or older.
    """
    if value is None:
        return ""
    now = now or datetime.now(timezone.utc)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    seconds = (now - value).total_seconds()

    if seconds < 60:
        return "just now"
    if seconds < 3600:
        minutes = int(seconds // 60)
        return "1 minute ago" if minutes == 1 else f"{minutes} minutes ago"
    if seconds < 86400:
        hours = int(seconds // 3600)
        return "1 hour ago" if hours == 1 else f"{hours} hours ago"
    if seconds < 7 * 86400:
        days = int(seconds // 86400)
        return "yesterday" if days == 1 else f"{days} days ago"
    return f"{value.strftime('%b')} {value.day}, {value.year}"


def truncate(text: Optional[str], width: int) -> str:
    """Cut text to width characters, ending in '...' when shortened."""
    if not text:
        return ""
    if len(text) <= width:
        return text
    if width <= 3:
        return text[:width]
    return text[: width - 3] + "..."


# =============================================================================
# Logging Integration
# =============================================================================

def setup_rich_logging(level: int = logging.WARNING) -> None:
    """
    Configure Python logging to use Rich for log output.

    Usage:
        setup_rich_logging(logging.DEBUG)
        logging.getLogger("ledger").debug("This will be pretty!")
    """
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(
            console=Console(stderr=True, theme=ledger_theme()),
            show_path=False,
            markup=False,
            rich_tracebacks=True,
        )],
        force=True,
    )
