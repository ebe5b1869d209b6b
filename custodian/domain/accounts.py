"""Display fields derived from a root account row."""

from collections.abc import Mapping
from typing import Any

from .constants import CONTACT_COLUMNS, NAME_PART_COLUMNS
from .entities import coalesce


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def compute_display_name(row: Mapping[str, Any], root_id: int | None = None) -> str:
    """``name``, else the joined name parts, else username, else email."""
    name = _text(row.get("name"))
    if name:
        return name

    parts = [_text(row.get(column)) for column in NAME_PART_COLUMNS]
    joined = " ".join(part for part in parts if part)
    if joined:
        return joined

    fallback = coalesce([_text(row.get("username")), _text(row.get("email"))])
    if fallback:
        return str(fallback)
    return f"User {root_id}" if root_id is not None else "Unknown user"


def normalize_contact(row: Mapping[str, Any]) -> str | None:
    return _text(coalesce(row.get(column) for column in CONTACT_COLUMNS))


def split_display_name(name: str | None) -> dict[str, str | None]:
    """Best-effort inverse of :func:`compute_display_name` for rebuilt rows."""
    parts = (name or "").split()
    if not parts:
        return {"first_name": None, "middle_name": None, "last_name": None}
    if len(parts) == 1:
        return {"first_name": parts[0], "middle_name": None, "last_name": None}
    if len(parts) == 2:
        return {"first_name": parts[0], "middle_name": None, "last_name": parts[1]}
    return {
        "first_name": parts[0],
        "middle_name": " ".join(parts[1:-1]),
        "last_name": parts[-1],
    }
