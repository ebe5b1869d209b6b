"""Candidate table and column resolution against a live schema.

Deployments name the same thing differently (``teacher_id``, ``employee_id``,
``user_id``...). These helpers are pure: they take an ordered list of
candidates and something that can report a table's columns, and never touch
the database themselves.
"""

from collections.abc import Iterable, Sequence
from typing import Protocol

from .constants import LABEL_FALLBACK_COLUMNS
from .entities import ColumnSet


class SupportsColumns(Protocol):
    def columns(self, table: str) -> ColumnSet: ...


def resolve_table(
    schema: SupportsColumns, candidates: Sequence[str]
) -> tuple[str, ColumnSet] | None:
    """Return the first candidate table whose column set is non-empty."""
    for candidate in candidates:
        columns = schema.columns(candidate)
        if columns:
            return candidate, columns
    return None


def resolve_tables(
    schema: SupportsColumns, candidates: Sequence[str]
) -> list[tuple[str, ColumnSet]]:
    """Return every candidate table that exists, in candidate order."""
    resolved = []
    for candidate in candidates:
        columns = schema.columns(candidate)
        if columns:
            resolved.append((candidate, columns))
    return resolved


def resolve_column(columns: Iterable[str], candidates: Sequence[str]) -> str | None:
    """Find the actual column name for the first matching candidate.

    Matching is tiered. Every candidate is tried as an exact name first, then
    case-insensitively, then as a case-insensitive substring of a column name.
    The first hit of the highest tier wins.
    """
    names = list(columns)
    if not names:
        return None

    for candidate in candidates:
        if candidate in names:
            return candidate

    lowered = {name.lower(): name for name in reversed(names)}
    for candidate in candidates:
        match = lowered.get(candidate.lower())
        if match is not None:
            return match

    for candidate in candidates:
        needle = candidate.lower()
        if not needle:
            continue
        for name in names:
            if needle in name.lower():
                return name

    return None


def require_column(
    columns: ColumnSet, candidates: Sequence[str]
) -> str | None:
    """Exact or case-insensitive match only; no substring fallback.

    Used where a loose match could address the wrong rows (flag columns,
    identifier columns used in ``WHERE`` clauses of destructive statements).
    """
    for candidate in candidates:
        if candidate in columns:
            return candidate
    lowered = {name.lower(): name for name in columns}
    for candidate in candidates:
        match = lowered.get(candidate.lower())
        if match is not None:
            return match
    return None


def pick_label_columns(columns: ColumnSet, defaults: Sequence[str]) -> list[str]:
    """Pick display columns, falling back to generic descriptive names."""
    picked = [column for column in defaults if column in columns]
    if picked:
        return picked
    return [column for column in LABEL_FALLBACK_COLUMNS if column in columns]
