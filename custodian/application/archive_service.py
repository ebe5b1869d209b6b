"""Archive engine: snapshot an account, then remove it and everything linked to it.

Each root id is archived in its own transaction on the request's connection.
Within that transaction the order is fixed: snapshot, entity tables with
their dependents, other tables referencing the root row, the activity log and
finally the root row. Any database error rolls the id back completely.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Final

from sqlalchemy import Connection, delete, select
from sqlalchemy.exc import SQLAlchemyError

from ..config import settings
from ..domain.accounts import compute_display_name
from ..domain.entities import (
    ArchivedAccount,
    ArchiveFailure,
    ArchiveResult,
    ColumnSet,
    LogicalEntity,
    normalize_role_token,
)
from ..domain.exceptions import (
    ArchiveTransactionError,
    SchemaUnavailableError,
    ValidationError,
)
from ..domain.resolver import require_column, resolve_tables
from ..infrastructure.database.schema import SchemaDescriptor, load_schema
from ..infrastructure.database.snapshots import (
    ArchiveTable,
    build_snapshot_document,
    build_snapshot_values,
    find_snapshot,
    insert_snapshot,
    refresh_snapshot,
)
from ..logging_config import get_logger
from ..logging_utils import log_database_operation, log_user_action
from ..metrics import archive_failures_total, records_archived_total
from .audit import AuditEntry, AuditSink
from .cascade import CascadePlan, execute_cascade, plan_cascade
from .reconciler import reconcile_identifiers
from .transactions import release_read_transaction
from .validation import sanitize_optional_text, sanitize_root_ids

logger: Final = get_logger(__name__)

ROLE_COLUMNS: Final = ("role", "role_name", "user_role")


@dataclass(frozen=True)
class EntityTable:
    name: str
    columns: ColumnSet
    lookup_columns: tuple[str, ...]


@dataclass(frozen=True)
class ArchiveContext:
    """Everything resolved once per archive call."""

    entity: LogicalEntity
    schema: SchemaDescriptor
    archive: ArchiveTable
    root_id_column: str
    role_column: str | None
    entity_tables: tuple[EntityTable, ...]
    reason: str
    actor_id: int | str | None
    ip_address: str | None


def chunked(values: Sequence[Any], size: int) -> list[Sequence[Any]]:
    return [values[start : start + size] for start in range(0, len(values), size)]


def _resolve_entity_tables(
    schema: SchemaDescriptor, entity: LogicalEntity
) -> tuple[EntityTable, ...]:
    tables = []
    for name, columns in resolve_tables(schema, entity.archive_tables):
        lookup = tuple(
            column
            for column in (
                require_column(columns, (candidate,))
                for candidate in entity.lookup_columns
            )
            if column is not None
        )
        if lookup:
            tables.append(
                EntityTable(name=name, columns=columns, lookup_columns=lookup)
            )
    return tuple(tables)


def _lookup_value(column: str, root_id: int, canonical_id: str | None) -> Any:
    if column.lower() == settings.root_id_column.lower():
        return root_id
    return canonical_id


def _collect_entity_rows(
    connection: Connection,
    context: ArchiveContext,
    root_id: int,
    canonical_id: str | None,
) -> dict[str, tuple[str, Any, list[dict[str, Any]]]]:
    """Rows of every entity table for this root id.

    Lookup columns are tried in priority order and the first one returning
    rows wins for that table; later deletes use exactly that column.
    """
    found: dict[str, tuple[str, Any, list[dict[str, Any]]]] = {}
    for entity_table in context.entity_tables:
        table = context.schema.table_clause(entity_table.name)
        for column in entity_table.lookup_columns:
            value = _lookup_value(column, root_id, canonical_id)
            if value is None:
                continue
            rows = (
                connection.execute(select(table).where(table.c[column] == value))
                .mappings()
                .all()
            )
            if rows:
                found[entity_table.name] = (column, value, [dict(row) for row in rows])
                break
    return found


def _identifier_fallbacks(
    entity: LogicalEntity, canonical_id: str | None
) -> dict[str, Any]:
    if entity.identifier is None or canonical_id is None:
        return {}
    return {column: canonical_id for column in entity.identifier.entity_columns}


def _role_matches(context: ArchiveContext, root_row: dict[str, Any]) -> bool:
    if context.role_column is None:
        return True
    role = normalize_role_token(root_row.get(context.role_column))
    return not role or role in context.entity.account_roles


def _archive_one(
    connection: Connection,
    context: ArchiveContext,
    root_id: int,
    canonical_id: str | None,
    audit_sink: AuditSink | None,
) -> ArchivedAccount | None:
    schema = context.schema
    root_table = schema.table_clause(settings.root_table)
    # Locked so a concurrent archive of the same id waits, then finds it gone
    root_select = (
        select(root_table)
        .where(root_table.c[context.root_id_column] == root_id)
        .with_for_update()
    )
    root_row = connection.execute(root_select).mappings().first()
    existing = find_snapshot(connection, schema, context.archive, root_id)

    if root_row is None:
        if existing is None:
            return None
        # Already archived earlier; nothing left to remove
        return ArchivedAccount(
            id=root_id,
            name=existing.get("name"),
            email=existing.get("email"),
            archived_id=existing.get(context.archive.key_column),
            reused_snapshot=True,
        )

    root = dict(root_row)
    if not _role_matches(context, root):
        logger.info(
            "Root row belongs to another role",
            entity=context.entity.key,
            root_id=root_id,
            role=root.get(context.role_column or ""),
        )
        return None

    # Plan every delete before writing anything
    entity_rows = _collect_entity_rows(connection, context, root_id, canonical_id)
    plan = CascadePlan()
    fallbacks = _identifier_fallbacks(context.entity, canonical_id)
    visiting = frozenset({settings.root_table.lower()})
    for table_name, (column, value, _rows) in entity_rows.items():
        plan_cascade(
            connection, schema, table_name, column, [value], plan, visiting, fallbacks
        )

    handled = {entity_table.name.lower() for entity_table in context.entity_tables}
    for edge in schema.referencing(settings.root_table, skip=handled):
        plan_cascade(
            connection,
            schema,
            edge.table,
            edge.column,
            [root.get(edge.referenced_column)],
            plan,
            visiting,
        )

    document = build_snapshot_document(
        root_table=schema.actual_name(settings.root_table),
        root_row=root,
        related={table: rows for table, (_c, _v, rows) in entity_rows.items()},
        removed=plan.removed_rows(),
        entity_key=context.entity.key,
        canonical_id=canonical_id,
    )
    values = build_snapshot_values(
        context.archive,
        root_id,
        root,
        document,
        context.reason,
        context.actor_id,
        datetime.now(),
    )

    if existing is not None:
        refresh_snapshot(connection, schema, context.archive, existing, values)
        archived_id = existing.get(context.archive.key_column)
        reused = True
    else:
        archived_id = insert_snapshot(connection, schema, context.archive, values)
        reused = False

    execute_cascade(connection, schema, plan)

    log_columns = schema.columns(settings.activity_log_table)
    log_link = require_column(log_columns, (settings.root_id_column,))
    if log_link:
        logs = schema.table_clause(settings.activity_log_table, [log_link])
        result = connection.execute(delete(logs).where(logs.c[log_link] == root_id))
        log_database_operation(
            operation="delete",
            table=settings.activity_log_table,
            match_column=log_link,
            rowcount=result.rowcount,
        )

    result = connection.execute(
        delete(root_table).where(root_table.c[context.root_id_column] == root_id)
    )
    log_database_operation(
        operation="delete",
        table=settings.root_table,
        match_column=context.root_id_column,
        rowcount=result.rowcount,
    )

    account = ArchivedAccount(
        id=root_id,
        name=compute_display_name(root, root_id),
        email=root.get("email"),
        archived_id=archived_id,
        reused_snapshot=reused,
    )
    if audit_sink is not None:
        audit_sink.record(
            connection,
            AuditEntry(
                action=f"archive_{context.entity.key}",
                actor_id=context.actor_id,
                ip_address=context.ip_address,
                details={
                    "root_id": root_id,
                    "archived_id": archived_id,
                    "canonical_id": canonical_id,
                    "reason": context.reason,
                    "reused_snapshot": reused,
                    "removed_rows": len(plan.removed_rows()),
                },
            ),
        )
    return account


def build_context(
    connection: Connection,
    entity: LogicalEntity,
    reason: str,
    actor_id: int | str | None,
    ip_address: str | None,
) -> ArchiveContext:
    """Introspect the schema once and resolve every table the archive touches.

    Raises:
        SchemaUnavailableError: If the root table, its id column or the archive
            table is missing
    """
    schema = load_schema(
        connection,
        [
            settings.root_table,
            *settings.archive_table_candidates,
            settings.activity_log_table,
            *entity.archive_tables,
        ],
        settings.administrative_tables,
    )
    root_columns = schema.columns(settings.root_table)
    if not root_columns:
        raise SchemaUnavailableError(settings.root_table)
    root_id_column = require_column(root_columns, (settings.root_id_column,))
    if root_id_column is None:
        raise SchemaUnavailableError(settings.root_table, settings.root_id_column)

    return ArchiveContext(
        entity=entity,
        schema=schema,
        archive=ArchiveTable.resolve(
            schema, settings.archive_table_candidates, settings.root_id_column
        ),
        root_id_column=root_id_column,
        role_column=require_column(root_columns, ROLE_COLUMNS),
        entity_tables=_resolve_entity_tables(schema, entity),
        reason=reason,
        actor_id=actor_id,
        ip_address=ip_address,
    )


def _reconcile_chunk(
    connection: Connection, context: ArchiveContext, root_ids: Sequence[int]
) -> dict[int, str]:
    if context.entity.identifier is None:
        return {}
    try:
        result = reconcile_identifiers(
            connection, context.schema, context.entity, root_ids
        )
    except SQLAlchemyError as e:
        logger.warning(
            "Identifier reconciliation skipped",
            entity=context.entity.key,
            error=str(e),
        )
        release_read_transaction(connection)
        return {}
    return result.canonical


def archive(
    connection: Connection,
    entity: LogicalEntity,
    root_ids: Sequence[Any],
    reason: str | None,
    actor_id: int | str | None,
    ip_address: str | None = None,
    audit_sink: AuditSink | None = None,
) -> ArchiveResult:
    """Archive a batch of root accounts of ``entity``.

    Root ids without a row are reported in ``not_found``. Ids whose cascade
    fails are rolled back individually and reported in ``failures``.

    Raises:
        ValidationError: If the entity is not an account or the ids are invalid
        SchemaUnavailableError: If a required table or column is missing
        ArchiveTransactionError: If every requested id failed
    """
    if not entity.archive_backed:
        raise ValidationError(
            f"Entity '{entity.key}' is not an account; use soft delete instead"
        )
    ids = sanitize_root_ids(root_ids, settings.archive_max_ids)
    archive_reason = (
        sanitize_optional_text(reason, "reason", settings.max_note_length)
        or settings.default_archive_reason
    )

    logger.debug(
        "Archiving accounts", entity=entity.key, count=len(ids), actor=actor_id
    )
    context = build_context(connection, entity, archive_reason, actor_id, ip_address)
    result = ArchiveResult(entity=entity.key)

    for chunk in chunked(ids, settings.archive_chunk_size):
        canonical = _reconcile_chunk(connection, context, chunk)
        release_read_transaction(connection)

        for root_id in chunk:
            try:
                with connection.begin():
                    account = _archive_one(
                        connection, context, root_id, canonical.get(root_id), audit_sink
                    )
            except SQLAlchemyError as e:
                archive_failures_total.add(1, {"entity": entity.key})
                logger.error(
                    "Archive rolled back",
                    entity=entity.key,
                    root_id=root_id,
                    error=str(e),
                )
                message = str(getattr(e, "orig", None) or e)
                result.failures.append(ArchiveFailure(id=root_id, message=message))
                continue

            if account is None:
                result.not_found.append(root_id)
            else:
                result.archived.append(account)

    if result.archived:
        records_archived_total.add(result.archived_count, {"entity": entity.key})
    log_user_action(
        action=f"archive_{entity.key}",
        actor=actor_id,
        archived=result.archived_count,
        not_found=len(result.not_found),
        failures=len(result.failures),
    )

    if result.failures and len(result.failures) == len(ids):
        raise ArchiveTransactionError(
            f"Archiving failed for every requested {entity.key}", result.failures
        )
    return result
