"""
Input validation for the CLI.

The store accepts whatever text it is given; required fields are checked
here, before anything reaches it.
"""

from typing import Optional

from ledger.errors import ValidationError


def validate_decision_input(category: Optional[str], decision: Optional[str]) -> Optional[str]:
    """Return an error message for a bad decision entry, or None if it is fine."""
    if not (category or "").strip():
        return "Category cannot be empty"
    if not (decision or "").strip():
        return "Decision cannot be empty"
    return None


def require_text(value: Optional[str], field_name: str) -> str:
    """Return value stripped of surrounding whitespace; raise if nothing is left."""
    text = (value or "").strip()
    if not text:
        raise ValidationError(field_name, f"{field_name.capitalize()} cannot be empty")
    return text


def optional_text(value: Optional[str]) -> Optional[str]:
    """Strip value, mapping blank input to None."""
    text = (value or "").strip()
    return text or None
