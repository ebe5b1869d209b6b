"""Soft delete: the inverse of a flag-mode restore."""

from collections.abc import Sequence
from datetime import datetime
from typing import Any, Final

from sqlalchemy import Connection, or_, update

from ..config import settings
from ..domain.entities import LogicalEntity, SoftDeleteResult
from ..domain.exceptions import ValidationError
from ..logging_config import get_logger
from ..logging_utils import log_database_operation, log_user_action
from ..metrics import records_soft_deleted_total
from .audit import AuditEntry, AuditSink
from .recovery_service import load_target
from .recovery_targets import (
    RecoveryTarget,
    bindable_ids,
    flag_set_clause,
    flag_value,
    id_key,
    load_records,
)
from .transactions import release_read_transaction
from .validation import sanitize_ids, sanitize_text

logger: Final = get_logger(__name__)


def _set_flags(
    connection: Connection,
    target: RecoveryTarget,
    ids: list[Any],
    reason: str,
    actor_id: int | str | None,
) -> int:
    schema = target.schema
    values: dict[str, Any] = {target.flag_column: flag_value(target)}
    now = datetime.now()
    if target.time_column:
        values[target.time_column] = now
    if target.reason_column:
        values[target.reason_column] = reason
    if target.actor_column and actor_id is not None:
        values[target.actor_column] = schema.coerce(
            target.table, target.actor_column, actor_id
        )
    if target.updated_at_column:
        values[target.updated_at_column] = now

    table = schema.table_clause(target.table, {target.id_column, *values})
    flag = table.c[target.flag_column]
    wanted = bindable_ids(schema, target.table, target.id_column, ids)
    statement = (
        update(table)
        .where(table.c[target.id_column].in_(wanted))
        .where(or_(flag.is_(None), ~flag_set_clause(target, table)))
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


def _flag_active(
    connection: Connection,
    target: RecoveryTarget,
    ids: list[Any],
    reason: str,
    actor_id: int | str | None,
) -> list[Any]:
    """Flag ``ids`` and return only the ids that are flagged afterwards."""
    rowcount = _set_flags(connection, target, ids, reason, actor_id)
    records = load_records(connection, target, ids)
    flagged = []
    for value in ids:
        record = records.get(id_key(value))
        if record is not None and record.flagged:
            flagged.append(value)
    if len(flagged) != len(ids) or rowcount not in (len(ids), -1):
        logger.warning(
            "Soft delete flagged fewer rows than requested",
            table=target.table,
            requested=len(ids),
            rowcount=rowcount,
            flagged=len(flagged),
        )
    return flagged


def soft_delete(
    connection: Connection,
    entity: LogicalEntity,
    ids: Sequence[Any],
    reason: str | None,
    actor_id: int | str | None,
    ip_address: str | None = None,
    audit_sink: AuditSink | None = None,
) -> SoftDeleteResult:
    """Flag active rows as deleted/archived/voided.

    Rows already flagged and unknown ids are left alone.

    Raises:
        ValidationError: If the entity is an account, or ids/reason are invalid
        SchemaUnavailableError: If the entity's table, id or flag column is missing
    """
    if entity.archive_backed:
        raise ValidationError(
            f"Entity '{entity.key}' is an account; archive it instead"
        )
    requested = sanitize_ids(ids, settings.restore_max_ids)
    delete_reason = sanitize_text(reason, "reason", settings.max_note_length)
    target = load_target(connection, entity)
    release_read_transaction(connection)

    result = SoftDeleteResult(entity=entity.key, requested_ids=list(requested))
    with connection.begin():
        records = load_records(connection, target, requested, for_update=True)
        active = []
        for requested_id in requested:
            record = records.get(id_key(requested_id))
            if record is not None and not record.flagged:
                active.append(record.id)
        if active:
            result.flagged_ids.extend(
                _flag_active(connection, target, active, delete_reason, actor_id)
            )

        if audit_sink is not None:
            audit_sink.record(
                connection,
                AuditEntry(
                    action=f"soft_delete_{entity.key}",
                    actor_id=actor_id,
                    ip_address=ip_address,
                    details={
                        "entity": entity.key,
                        "mode": entity.mode.value,
                        "requested_ids": result.requested_ids,
                        "flagged_ids": result.flagged_ids,
                        "flagged_count": result.flagged_count,
                        "reason": delete_reason,
                    },
                ),
            )

    if result.flagged_ids:
        records_soft_deleted_total.add(result.flagged_count, {"entity": entity.key})
    log_user_action(
        action=f"soft_delete_{entity.key}",
        actor=actor_id,
        requested=len(requested),
        flagged=result.flagged_count,
    )
    return result
