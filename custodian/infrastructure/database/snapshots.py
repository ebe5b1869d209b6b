"""Archive snapshot store.

One row per archived root record. The archive table is discovered like every
other portal table; only the columns that exist are written.
"""

import json
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Final

from sqlalchemy import Connection, insert, select, update

from ...domain.accounts import compute_display_name, normalize_contact
from ...domain.constants import (
    ARCHIVE_ACTOR_COLUMNS,
    ARCHIVE_ID_COLUMNS,
    ARCHIVE_IDENTIFIER_COLUMNS,
    ARCHIVE_SNAPSHOT_COLUMNS,
    ARCHIVE_TIME_COLUMNS,
    CONTACT_COLUMNS,
)
from ...domain.entities import ColumnSet
from ...domain.exceptions import ConflictError, SchemaUnavailableError
from ...domain.resolver import require_column, resolve_table
from ...logging_config import get_logger
from ...logging_utils import log_database_operation
from .schema import SchemaDescriptor

logger: Final = get_logger(__name__)

ARCHIVE_REASON_COLUMNS: Final = ("reason", "archive_reason")
ARCHIVE_ROLE_COLUMNS: Final = ("role", "role_name", "user_role")


@dataclass(frozen=True)
class ArchiveTable:
    """The resolved archive table and the roles its columns play."""

    name: str
    columns: ColumnSet
    root_column: str
    id_column: str | None = None
    time_column: str | None = None
    actor_column: str | None = None
    reason_column: str | None = None
    identifier_column: str | None = None
    snapshot_column: str | None = None
    role_column: str | None = None

    @classmethod
    def resolve(
        cls, schema: SchemaDescriptor, candidates: Iterable[str], root_id_column: str
    ) -> "ArchiveTable":
        """Find the archive table; it must at least link back to the root id.

        Raises:
            SchemaUnavailableError: If no candidate exists or it has no root id column
        """
        names = list(candidates)
        resolved = resolve_table(schema, names)
        if resolved is None:
            raise SchemaUnavailableError(names[0] if names else "archive")
        name, columns = resolved
        root_column = require_column(columns, (root_id_column,))
        if root_column is None:
            raise SchemaUnavailableError(name, root_id_column)
        return cls(
            name=name,
            columns=columns,
            root_column=root_column,
            id_column=require_column(columns, ARCHIVE_ID_COLUMNS),
            time_column=require_column(columns, ARCHIVE_TIME_COLUMNS),
            actor_column=require_column(columns, ARCHIVE_ACTOR_COLUMNS),
            reason_column=require_column(columns, ARCHIVE_REASON_COLUMNS),
            identifier_column=require_column(columns, ARCHIVE_IDENTIFIER_COLUMNS),
            snapshot_column=require_column(columns, ARCHIVE_SNAPSHOT_COLUMNS),
            role_column=require_column(columns, ARCHIVE_ROLE_COLUMNS),
        )

    @property
    def bookkeeping_columns(self) -> frozenset[str]:
        """Columns owned by the archive itself, never copied from source rows."""
        owned = (
            self.id_column,
            self.time_column,
            self.actor_column,
            self.reason_column,
            self.snapshot_column,
        )
        return frozenset(column for column in owned if column)

    @property
    def key_column(self) -> str:
        """Column identifying a snapshot row: its own id, else the root id."""
        return self.id_column or self.root_column


def build_snapshot_document(
    root_table: str,
    root_row: Mapping[str, Any],
    related: Mapping[str, Sequence[Mapping[str, Any]]],
    removed: Sequence[tuple[str, Mapping[str, Any]]],
    entity_key: str,
    canonical_id: str | None,
) -> dict[str, Any]:
    """Forensic JSON document of everything an archive removes.

    ``removed`` lists dependent rows in deletion order (children first);
    restoring replays it backwards.
    """
    return {
        "root_table": root_table,
        "root": dict(root_row),
        "related": {
            table: [dict(row) for row in rows] for table, rows in related.items()
        },
        "removed": [{"table": table, "row": dict(row)} for table, row in removed],
        "entity": entity_key,
        "canonical_id": canonical_id,
    }


def build_snapshot_values(
    archive: ArchiveTable,
    root_id: int,
    root_row: Mapping[str, Any],
    document: Mapping[str, Any],
    reason: str,
    actor_id: int | str | None,
    now: datetime,
) -> dict[str, Any]:
    """Column values for an archive row, limited to columns that exist."""
    values: dict[str, Any] = {}
    skipped = archive.bookkeeping_columns | {archive.root_column}

    for column, value in root_row.items():
        if column in archive.columns and column not in skipped and value is not None:
            values[column] = value

    values[archive.root_column] = root_id
    if "name" in archive.columns:
        values["name"] = compute_display_name(root_row, root_id)
    contact = normalize_contact(root_row)
    if contact:
        for column in CONTACT_COLUMNS:
            if column in archive.columns:
                values[column] = contact
    if archive.identifier_column and document.get("canonical_id"):
        values[archive.identifier_column] = document["canonical_id"]
    if archive.reason_column:
        values[archive.reason_column] = reason
    if archive.time_column:
        values[archive.time_column] = now
    if archive.actor_column and actor_id is not None:
        values[archive.actor_column] = actor_id
    if archive.snapshot_column:
        values[archive.snapshot_column] = json.dumps(document, default=str)
    return values


def find_snapshot(
    connection: Connection,
    schema: SchemaDescriptor,
    archive: ArchiveTable,
    root_id: int,
) -> dict[str, Any] | None:
    """Latest snapshot row for ``root_id``, if any."""
    table = schema.table_clause(archive.name)
    statement = select(table).where(table.c[archive.root_column] == root_id)
    if archive.id_column:
        statement = statement.order_by(table.c[archive.id_column].desc())
    row = connection.execute(statement.limit(1)).mappings().first()
    return dict(row) if row is not None else None


def insert_snapshot(
    connection: Connection,
    schema: SchemaDescriptor,
    archive: ArchiveTable,
    values: Mapping[str, Any],
) -> Any:
    """Insert a snapshot row and return its archive id (or the root id).

    Raises:
        ConflictError: If a snapshot for the same root id already exists
    """
    root_id = values[archive.root_column]
    existing = find_snapshot(connection, schema, archive, root_id)
    if existing is not None:
        raise ConflictError(root_id, existing.get(archive.key_column))

    prepared = {
        column: schema.coerce(archive.name, column, value)
        for column, value in values.items()
    }
    table = schema.table_clause(archive.name, prepared.keys())
    connection.execute(insert(table).values(**prepared))
    log_database_operation(operation="insert", table=archive.name, root_id=root_id)

    if archive.id_column is None:
        return root_id
    stored = find_snapshot(connection, schema, archive, root_id)
    return stored.get(archive.id_column) if stored else None


def refresh_snapshot(
    connection: Connection,
    schema: SchemaDescriptor,
    archive: ArchiveTable,
    existing: Mapping[str, Any],
    values: Mapping[str, Any],
) -> None:
    """Update the archive bookkeeping of a reused snapshot instead of duplicating it."""
    changes = {
        column: schema.coerce(archive.name, column, values[column])
        for column in (
            archive.reason_column,
            archive.time_column,
            archive.actor_column,
            archive.snapshot_column,
        )
        if column and column in values
    }
    if not changes:
        return

    table = schema.table_clause(archive.name)
    if archive.id_column:
        condition = table.c[archive.id_column] == existing[archive.id_column]
    else:
        condition = table.c[archive.root_column] == existing[archive.root_column]
    connection.execute(update(table).where(condition).values(**changes))
    log_database_operation(
        operation="update",
        table=archive.name,
        root_id=existing.get(archive.root_column),
        reused=True,
    )


def load_snapshots(
    connection: Connection,
    schema: SchemaDescriptor,
    archive: ArchiveTable,
    ids: Iterable[Any],
) -> dict[Any, dict[str, Any]]:
    """Snapshot rows keyed by archive id (root id when the table has no own id)."""
    key_column = archive.key_column
    wanted = list(ids)
    if not wanted:
        return {}
    table = schema.table_clause(archive.name)
    statement = select(table).where(table.c[key_column].in_(wanted))
    rows = connection.execute(statement).mappings().all()
    return {row[key_column]: dict(row) for row in rows}


def parse_snapshot_document(
    archive: ArchiveTable, row: Mapping[str, Any]
) -> dict[str, Any] | None:
    """Decode the forensic JSON document of a snapshot row, if present and valid."""
    if archive.snapshot_column is None:
        return None
    raw = row.get(archive.snapshot_column)
    if raw in (None, ""):
        return None
    if isinstance(raw, dict):
        return raw
    try:
        document = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning(
            "Ignoring unreadable snapshot document",
            table=archive.name,
            root_id=row.get(archive.root_column),
        )
        return None
    return document if isinstance(document, dict) else None


def snapshot_role(archive: ArchiveTable, row: Mapping[str, Any]) -> str | None:
    """Role recorded on the snapshot row, else on the captured root row."""
    if archive.role_column and row.get(archive.role_column):
        return str(row[archive.role_column])
    document = parse_snapshot_document(archive, row)
    if document:
        root = document.get("root") or {}
        role = root.get("role") if isinstance(root, dict) else None
        if role:
            return str(role)
    return None
