"""
Default status codes <-> display names.

The backend stores the built-in lanes under short codes while the board
shows display names. Custom lanes are stored verbatim, so anything not in
the tables below passes through unchanged in both directions.
"""
from typing import Dict, List

STATUS_CODES: Dict[str, str] = {
    "new": "Planning",
    "in_progress": "In Progress",
    "in_review": "In Review",
    "completed": "Completed",
    "on_hold": "On Hold",
    "cancelled": "Cancelled",
    "overdue": "Overdue",
}

_NAMES_TO_CODES: Dict[str, str] = {name: code for code, name in STATUS_CODES.items()}

# Lanes seeded for a tenant that has none yet: (name, color)
DEFAULT_LANES: List[tuple] = [
    ("Planning", "#3B82F6"),
    ("In Progress", "#F59E0B"),
    ("In Review", "#8B5CF6"),
    ("Completed", "#10B981"),
    ("On Hold", "#6B7280"),
    ("Cancelled", "#EF4444"),
]


def status_from_db(code: str) -> str:
    """Backend code -> display name."""
    return STATUS_CODES.get(code, code)


def status_to_db(name: str) -> str:
    """Display name -> backend code. Custom names are stored as-is."""
    return _NAMES_TO_CODES.get(name, name)


def is_default_status(name: str) -> bool:
    return name in _NAMES_TO_CODES
