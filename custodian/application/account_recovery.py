"""Recovery of archived accounts from their snapshots.

A snapshot is recoverable while its root row is absent. Restoring re-inserts
the root row and the rows the archive removed, parents first, and leaves the
snapshot itself untouched.
"""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final

from sqlalchemy import Connection, insert, select

from ..config import settings
from ..domain.accounts import split_display_name
from ..domain.constants import ARCHIVE_LABEL_COLUMNS, CONTACT_COLUMNS
from ..domain.entities import LogicalEntity, RecoveryRecord, normalize_role_token
from ..domain.exceptions import SchemaUnavailableError
from ..domain.resolver import pick_label_columns, require_column
from ..infrastructure.database.schema import SchemaDescriptor, load_schema
from ..infrastructure.database.snapshots import (
    ArchiveTable,
    load_snapshots,
    parse_snapshot_document,
    snapshot_role,
)
from ..logging_config import get_logger
from ..logging_utils import log_database_operation
from .recovery_targets import as_datetime, bindable_ids, build_label, id_key

logger: Final = get_logger(__name__)

ACTIVE_STATUS: Final = "Active"


@dataclass(frozen=True)
class AccountTarget:
    entity: LogicalEntity
    schema: SchemaDescriptor
    archive: ArchiveTable
    root_id_column: str
    label_columns: tuple[str, ...]


@dataclass(frozen=True)
class AccountSnapshot:
    record: RecoveryRecord
    row: dict[str, Any]
    root_id: int


def account_tables(entity: LogicalEntity) -> list[str]:
    return [
        settings.root_table,
        *settings.archive_table_candidates,
        *entity.archive_tables,
    ]


def resolve_account_target(
    connection: Connection, entity: LogicalEntity
) -> AccountTarget:
    """Introspect the root, archive and entity tables of an account entity."""
    schema = load_schema(
        connection, account_tables(entity), settings.administrative_tables
    )
    return account_target_from_schema(schema, entity)


def account_target_from_schema(
    schema: SchemaDescriptor, entity: LogicalEntity
) -> AccountTarget:
    """Resolve an account entity against an already loaded schema.

    Raises:
        SchemaUnavailableError: If the root table, its id column or the archive
            table is missing
    """
    root_columns = schema.columns(settings.root_table)
    if not root_columns:
        raise SchemaUnavailableError(settings.root_table)
    root_id_column = require_column(root_columns, (settings.root_id_column,))
    if root_id_column is None:
        raise SchemaUnavailableError(settings.root_table, settings.root_id_column)
    archive = ArchiveTable.resolve(
        schema, settings.archive_table_candidates, settings.root_id_column
    )
    return AccountTarget(
        entity=entity,
        schema=schema,
        archive=archive,
        root_id_column=root_id_column,
        label_columns=tuple(pick_label_columns(archive.columns, ARCHIVE_LABEL_COLUMNS)),
    )


def _belongs_to(target: AccountTarget, row: Mapping[str, Any]) -> bool:
    role = snapshot_role(target.archive, row)
    if role:
        return normalize_role_token(role) in target.entity.account_roles
    document = parse_snapshot_document(target.archive, row)
    if document and document.get("entity"):
        return document["entity"] == target.entity.key
    # Nothing recorded about the role; the caller picked the entity explicitly
    return True


def _present_root_ids(
    connection: Connection, target: AccountTarget, root_ids: Sequence[Any], lock: bool
) -> set[Any]:
    if not root_ids:
        return set()
    table = target.schema.table_clause(settings.root_table, [target.root_id_column])
    column = table.c[target.root_id_column]
    statement = select(column).where(column.in_(list(root_ids)))
    if lock:
        statement = statement.with_for_update()
    return {row[0] for row in connection.execute(statement)}


def classify_snapshots(
    connection: Connection,
    target: AccountTarget,
    ids: Sequence[Any],
    lock: bool = False,
) -> dict[str, AccountSnapshot]:
    """Snapshots of this entity for the requested archive ids.

    Keyed by :func:`id_key` of the archive id.
    """
    archive = target.archive
    key_column = archive.key_column
    wanted = bindable_ids(target.schema, archive.name, key_column, ids)
    rows = load_snapshots(connection, target.schema, archive, wanted)
    rows = {key: row for key, row in rows.items() if _belongs_to(target, row)}

    present = _present_root_ids(
        connection, target, [row[archive.root_column] for row in rows.values()], lock
    )
    classified: dict[str, AccountSnapshot] = {}
    for key, row in rows.items():
        root_id = row[archive.root_column]
        reason = row.get(archive.reason_column) if archive.reason_column else None
        archived_at = row.get(archive.time_column) if archive.time_column else None
        record = RecoveryRecord(
            id=key,
            flagged=root_id not in present,
            occurred_at=as_datetime(archived_at),
            reason=str(reason) if reason is not None else None,
            label=build_label(row, target.label_columns),
            fields={
                settings.root_id_column: root_id,
                **{column: row.get(column) for column in target.label_columns},
            },
        )
        classified[id_key(key)] = AccountSnapshot(
            record=record, row=row, root_id=root_id
        )
    return classified


def _insert_row(
    connection: Connection,
    schema: SchemaDescriptor,
    table_name: str,
    row: Mapping[str, Any],
) -> bool:
    columns = schema.columns(table_name)
    if not columns:
        logger.warning("Skipping restore into missing table", table=table_name)
        return False
    values = {
        column: schema.coerce(table_name, column, value)
        for column, value in row.items()
        if column in columns
    }
    if not values:
        return False
    table = schema.table_clause(table_name, values.keys())
    connection.execute(insert(table).values(**values))
    log_database_operation(operation="insert", table=table_name, restored=True)
    return True


def _rebuilt_root_row(
    target: AccountTarget, snapshot: AccountSnapshot
) -> dict[str, Any]:
    """Root row reconstructed from the denormalized archive fields."""
    archive = target.archive
    row = {
        column: value
        for column, value in snapshot.row.items()
        if column not in archive.bookkeeping_columns and value is not None
    }
    root_columns = target.schema.columns(settings.root_table)
    if not any(row.get(column) for column in ("first_name", "last_name")):
        for column, value in split_display_name(row.get("name")).items():
            if value is not None:
                row[column] = value
    contact = next((row[column] for column in CONTACT_COLUMNS if row.get(column)), None)
    if contact:
        for column in CONTACT_COLUMNS:
            row.setdefault(column, contact)
    if "status" in root_columns:
        row["status"] = ACTIVE_STATUS
    row[target.root_id_column] = snapshot.root_id
    return row


def reinsert_account(
    connection: Connection, target: AccountTarget, snapshot: AccountSnapshot
) -> int:
    """Re-create the root row and everything the archive removed for it."""
    schema = target.schema
    document = parse_snapshot_document(target.archive, snapshot.row)

    if document and isinstance(document.get("root"), dict):
        root_row = dict(document["root"])
        root_row[target.root_id_column] = snapshot.root_id
    else:
        root_row = _rebuilt_root_row(target, snapshot)
    _insert_row(connection, schema, settings.root_table, root_row)
    inserted = 1

    removed = document.get("removed", []) if document else []
    for item in reversed(removed):
        if not isinstance(item, dict) or not isinstance(item.get("row"), dict):
            continue
        if _insert_row(connection, schema, str(item.get("table")), item["row"]):
            inserted += 1
    return inserted
