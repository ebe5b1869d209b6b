"""Recovery engine: preview and supervised restore.

Preview is a pure read. Restore never trusts an earlier preview: it
classifies the requested ids again inside its own transaction, with the rows
locked, and only touches ids that are recoverable at that moment.
"""

from collections.abc import Sequence
from datetime import datetime
from typing import Any, Final

from sqlalchemy import Connection, update

from ..config import settings
from ..domain.constants import FLAG_CLEARED
from ..domain.entities import (
    LogicalEntity,
    PreviewResult,
    RecoveryRecord,
    RestoreResult,
)
from ..infrastructure.database.schema import load_schema
from ..logging_config import get_logger
from ..logging_utils import log_database_operation, log_user_action
from ..metrics import records_restored_total, restore_noops_total
from .account_recovery import (
    classify_snapshots,
    reinsert_account,
    resolve_account_target,
)
from .audit import AuditEntry, AuditSink
from .recovery_targets import (
    RecoveryTarget,
    bindable_ids,
    flag_set_clause,
    id_key,
    load_records,
    resolve_target,
)
from .transactions import release_read_transaction
from .validation import sanitize_ids, sanitize_text

logger: Final = get_logger(__name__)


def partition(
    entity: LogicalEntity, ids: Sequence[Any], records: dict[str, RecoveryRecord]
) -> PreviewResult:
    """Split requested ids into recoverable, not recoverable and not found."""
    result = PreviewResult(entity=entity.key, requested_ids=list(ids))
    for requested in ids:
        record = records.get(id_key(requested))
        if record is None:
            result.not_found.append(requested)
        elif record.flagged:
            result.recoverable.append(record)
        else:
            result.not_recoverable.append(record)
    return result


def load_target(connection: Connection, entity: LogicalEntity) -> RecoveryTarget:
    schema = load_schema(
        connection, entity.table_candidates, settings.administrative_tables
    )
    return resolve_target(schema, entity)


def preview(
    connection: Connection, entity: LogicalEntity, ids: Sequence[Any]
) -> PreviewResult:
    """Classify ids without changing anything.

    Raises:
        ValidationError: If the id list is empty or too long
        SchemaUnavailableError: If the entity's table, id or flag column is missing
    """
    requested = sanitize_ids(ids, settings.preview_max_ids)

    if entity.archive_backed:
        account_target = resolve_account_target(connection, entity)
        snapshots = classify_snapshots(connection, account_target, requested)
        records = {key: snapshot.record for key, snapshot in snapshots.items()}
    else:
        target = load_target(connection, entity)
        records = load_records(connection, target, requested)
    release_read_transaction(connection)

    result = partition(entity, requested, records)
    logger.debug(
        "Recovery preview",
        entity=entity.key,
        recoverable=len(result.recoverable),
        not_recoverable=len(result.not_recoverable),
        not_found=len(result.not_found),
    )
    return result


def _clear_flags(
    connection: Connection, target: RecoveryTarget, ids: list[Any]
) -> int:
    schema = target.schema
    values: dict[str, Any] = {
        target.flag_column: schema.coerce(
            target.table, target.flag_column, FLAG_CLEARED
        )
    }
    for column in (target.time_column, target.reason_column, target.actor_column):
        if column:
            values[column] = None
    if target.updated_at_column:
        values[target.updated_at_column] = datetime.now()

    table = schema.table_clause(target.table, {target.id_column, *values})
    wanted = bindable_ids(schema, target.table, target.id_column, ids)
    statement = (
        update(table)
        .where(table.c[target.id_column].in_(wanted))
        .where(flag_set_clause(target, table))
        .values(**values)
    )
    result = connection.execute(statement)
    log_database_operation(
        operation="update",
        table=target.table,
        match_column=target.id_column,
        rowcount=result.rowcount,
    )
    return result.rowcount or 0


def _restore_flagged(
    connection: Connection, target: RecoveryTarget, ids: list[Any]
) -> list[Any]:
    """Clear the flag on ``ids`` and return only the ids that were cleared.

    The rows are read back after the update; a row a trigger or a concurrent
    writer kept flagged is not reported as restored.
    """
    rowcount = _clear_flags(connection, target, ids)
    records = load_records(connection, target, ids)
    cleared = []
    for value in ids:
        record = records.get(id_key(value))
        if record is not None and not record.flagged:
            cleared.append(value)
    if len(cleared) != len(ids) or rowcount not in (len(ids), -1):
        logger.warning(
            "Restore cleared fewer rows than requested",
            table=target.table,
            requested=len(ids),
            rowcount=rowcount,
            cleared=len(cleared),
        )
    return cleared


def restore(
    connection: Connection,
    entity: LogicalEntity,
    ids: Sequence[Any],
    reason: str | None,
    approval_note: str | None,
    actor_id: int | str | None,
    ip_address: str | None = None,
    audit_sink: AuditSink | None = None,
) -> RestoreResult:
    """Restore the ids that are recoverable right now.

    Zero recoverable ids is a no-op, not an error; it is still audited.

    Raises:
        ValidationError: If ids, reason or approval note are invalid
        SchemaUnavailableError: If a required table or column is missing
    """
    requested = sanitize_ids(ids, settings.restore_max_ids)
    restore_reason = sanitize_text(reason, "reason", settings.max_note_length)
    note = sanitize_text(approval_note, "approval_note", settings.max_note_length)

    if entity.archive_backed:
        account_target = resolve_account_target(connection, entity)
        mode = "archive"
    else:
        target = load_target(connection, entity)
        mode = entity.mode.value
    release_read_transaction(connection)

    result = RestoreResult(entity=entity.key, requested_ids=list(requested))
    with connection.begin():
        if entity.archive_backed:
            snapshots = classify_snapshots(
                connection, account_target, requested, lock=True
            )
            for requested_id in requested:
                snapshot = snapshots.get(id_key(requested_id))
                if snapshot is None or not snapshot.record.flagged:
                    continue
                reinsert_account(connection, account_target, snapshot)
                result.restored_ids.append(snapshot.record.id)
        else:
            records = load_records(connection, target, requested, for_update=True)
            recoverable = []
            for requested_id in requested:
                record = records.get(id_key(requested_id))
                if record is not None and record.flagged:
                    recoverable.append(record.id)
            if recoverable:
                result.restored_ids.extend(
                    _restore_flagged(connection, target, recoverable)
                )

        if audit_sink is not None:
            audit_sink.record(
                connection,
                AuditEntry(
                    action=f"emergency_restore_{entity.key}",
                    actor_id=actor_id,
                    ip_address=ip_address,
                    details={
                        "entity": entity.key,
                        "mode": mode,
                        "requested_ids": result.requested_ids,
                        "restored_ids": result.restored_ids,
                        "restored_count": result.restored_count,
                        "reason": restore_reason,
                        "approval_note": note,
                        "outcome": result.outcome,
                    },
                ),
            )

    if result.restored_ids:
        records_restored_total.add(result.restored_count, {"entity": entity.key})
    else:
        restore_noops_total.add(1, {"entity": entity.key})
        logger.info(
            "Restore was a no-op; nothing recoverable",
            entity=entity.key,
            requested=len(requested),
        )

    log_user_action(
        action=f"emergency_restore_{entity.key}",
        actor=actor_id,
        requested=len(requested),
        restored=result.restored_count,
        outcome=result.outcome,
    )
    return result
