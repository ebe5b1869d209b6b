"""Identifier reconciliation.

An account's human-facing identifier (``MT-250042``, ``7000-042``...) may be
stored on the root users row and again on a denormalized entity table. The
reconciler picks one canonical value and schedules write-backs for every copy
that disagrees. Write-backs are repairs, not part of any caller's transaction:
each runs on its own, failures are logged and counted, and a repair that has
already been applied matches no rows the second time.
"""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Final

from sqlalchemy import Connection, or_, select, update
from sqlalchemy.exc import SQLAlchemyError

from ..config import settings
from ..domain.entities import LogicalEntity, ReconcileResult, coalesce
from ..domain.exceptions import SchemaUnavailableError, ValidationError
from ..domain.resolver import require_column, resolve_table
from ..infrastructure.database.schema import SchemaDescriptor, load_schema
from ..logging_config import get_logger
from ..logging_utils import log_database_operation, log_user_action
from ..metrics import identifier_repair_failures_total, identifier_repairs_total
from .transactions import release_read_transaction
from .validation import sanitize_root_ids

logger: Final = get_logger(__name__)


@dataclass(frozen=True)
class IdentifierRepair:
    """Write ``value`` into ``table.column`` where ``match_column = match_value``.

    At-least-once and idempotent: rows already holding ``value`` are excluded
    by the statement itself, so re-running a repair writes nothing.
    """

    table: str
    column: str
    value: str
    match_column: str
    match_value: Any

    def run(self, connection: Connection, schema: SchemaDescriptor) -> int:
        table = schema.table_clause(self.table, {self.column, self.match_column})
        target = table.c[self.column]
        statement = (
            update(table)
            .where(table.c[self.match_column] == self.match_value)
            .where(or_(target.is_(None), target != self.value))
            .values({self.column: self.value})
        )
        result = connection.execute(statement)
        return result.rowcount or 0


@dataclass(frozen=True)
class IdentifierPlan:
    canonical: dict[int, str]
    repairs: list[IdentifierRepair]


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def plan_identifier_repairs(
    connection: Connection,
    schema: SchemaDescriptor,
    entity: LogicalEntity,
    root_ids: Sequence[int],
    now: datetime | None = None,
) -> IdentifierPlan:
    """Compute canonical identifiers and the write-backs needed to converge.

    Canonical value: the root table's identifier column, else the entity
    table's identifier columns in priority order, else the entity's fallback
    format applied to the root id. Root ids without a root row are skipped.
    """
    policy = entity.identifier
    if policy is None:
        raise ValidationError(f"Entity '{entity.key}' has no identifier convention")

    root_columns = schema.columns(settings.root_table)
    if not root_columns:
        raise SchemaUnavailableError(settings.root_table)
    root_id_column = require_column(root_columns, (settings.root_id_column,))
    if root_id_column is None:
        raise SchemaUnavailableError(settings.root_table, settings.root_id_column)
    root_identifier_column = require_column(root_columns, (policy.root_column,))

    root_table = schema.table_clause(settings.root_table)
    selected = [root_table.c[root_id_column]]
    if root_identifier_column:
        selected.append(root_table.c[root_identifier_column])
    root_rows = {
        row[root_id_column]: row
        for row in connection.execute(
            select(*selected).where(root_table.c[root_id_column].in_(list(root_ids)))
        ).mappings()
    }

    entity_resolved = resolve_table(schema, entity.table_candidates)
    entity_table_name: str | None = None
    entity_columns: list[str] = []
    link_column: str | None = None
    if entity_resolved is not None:
        entity_table_name, columns = entity_resolved
        entity_columns = [
            column
            for column in (
                require_column(columns, (name,)) for name in policy.entity_columns
            )
            if column is not None
        ]
        link_column = require_column(columns, (settings.root_id_column,))

    canonical: dict[int, str] = {}
    repairs: list[IdentifierRepair] = []

    for root_id in root_ids:
        row = root_rows.get(root_id)
        if row is None:
            continue
        root_value = None
        if root_identifier_column:
            root_value = _text(row.get(root_identifier_column))
        fallback = policy.format_fallback(root_id, now)

        entity_row: Mapping[str, Any] | None = None
        if entity_table_name and entity_columns:
            entity_row = _load_entity_row(
                connection,
                schema,
                entity_table_name,
                entity_columns,
                link_column,
                root_id,
                [root_value, fallback, str(root_id)],
            )
        entity_values = []
        if entity_row is not None:
            entity_values = [_text(entity_row.get(column)) for column in entity_columns]

        value = _text(coalesce([root_value, *entity_values])) or fallback
        canonical[root_id] = value

        if root_identifier_column and root_value != value:
            repairs.append(
                IdentifierRepair(
                    table=settings.root_table,
                    column=root_identifier_column,
                    value=value,
                    match_column=root_id_column,
                    match_value=root_id,
                )
            )

        if entity_row is None or entity_table_name is None:
            continue
        target_column = entity_columns[0]
        previous = _text(entity_row.get(target_column))
        if previous == value:
            continue
        if link_column:
            match_column, match_value = link_column, root_id
        elif previous is not None:
            match_column, match_value = target_column, previous
        else:
            # Row was found through another identifier column
            match_column, match_value = _matched_by(entity_row, entity_columns)
        repairs.append(
            IdentifierRepair(
                table=entity_table_name,
                column=target_column,
                value=value,
                match_column=match_column,
                match_value=match_value,
            )
        )

    return IdentifierPlan(canonical=canonical, repairs=repairs)


def _load_entity_row(
    connection: Connection,
    schema: SchemaDescriptor,
    table_name: str,
    identifier_columns: list[str],
    link_column: str | None,
    root_id: int,
    known_values: list[str | None],
) -> dict[str, Any] | None:
    names = set(identifier_columns)
    if link_column:
        names.add(link_column)
    table = schema.table_clause(table_name, names)

    if link_column:
        statement = select(table).where(table.c[link_column] == root_id)
        row = connection.execute(statement.limit(1)).mappings().first()
        return dict(row) if row is not None else None

    values = [value for value in known_values if value]
    for column in identifier_columns:
        statement = select(table).where(table.c[column].in_(values))
        row = connection.execute(statement.limit(1)).mappings().first()
        if row is not None:
            return dict(row)
    return None


def _matched_by(row: Mapping[str, Any], columns: list[str]) -> tuple[str, Any]:
    for column in columns:
        if row.get(column) is not None:
            return column, row[column]
    return columns[0], None


def apply_repairs(
    connection: Connection,
    schema: SchemaDescriptor,
    repairs: Sequence[IdentifierRepair],
) -> tuple[int, int]:
    """Run each repair in its own transaction. Returns (applied, failed)."""
    applied = 0
    failed = 0
    release_read_transaction(connection)
    for repair in repairs:
        try:
            with connection.begin():
                written = repair.run(connection, schema)
        except SQLAlchemyError as e:
            failed += 1
            identifier_repair_failures_total.add(1, {"table": repair.table})
            log_database_operation(
                operation="update",
                table=repair.table,
                success=False,
                column=repair.column,
                error=str(e),
            )
            logger.warning(
                "Identifier repair failed",
                table=repair.table,
                column=repair.column,
                match_column=repair.match_column,
                error=str(e),
            )
            continue

        if written:
            applied += 1
            identifier_repairs_total.add(1, {"table": repair.table})
            log_database_operation(
                operation="update",
                table=repair.table,
                column=repair.column,
                match_column=repair.match_column,
                rowcount=written,
            )
    return applied, failed


def reconcile_identifiers(
    connection: Connection,
    schema: SchemaDescriptor,
    entity: LogicalEntity,
    root_ids: Sequence[int],
) -> ReconcileResult:
    """Plan and apply repairs; never raises for a failed write-back."""
    plan = plan_identifier_repairs(connection, schema, entity, root_ids)
    applied, failed = apply_repairs(connection, schema, plan.repairs)
    if plan.repairs:
        logger.info(
            "Identifiers reconciled",
            entity=entity.key,
            planned=len(plan.repairs),
            applied=applied,
            failed=failed,
        )
    return ReconcileResult(
        entity=entity.key,
        canonical=plan.canonical,
        repairs_applied=applied,
        repairs_failed=failed,
    )


def reconcile(
    connection: Connection,
    entity: LogicalEntity,
    root_ids: Sequence[Any],
    actor_id: int | str | None = None,
) -> ReconcileResult:
    """Entry point for an explicit reconciliation request."""
    ids = sanitize_root_ids(root_ids, settings.archive_max_ids)
    if entity.identifier is None:
        raise ValidationError(f"Entity '{entity.key}' has no identifier convention")

    schema = load_schema(
        connection,
        [settings.root_table, *entity.table_candidates],
        settings.administrative_tables,
    )
    result = reconcile_identifiers(connection, schema, entity, ids)
    release_read_transaction(connection)
    log_user_action(
        action=f"reconcile_{entity.key}",
        actor=actor_id,
        root_ids=len(ids),
        repairs_applied=result.repairs_applied,
        repairs_failed=result.repairs_failed,
    )
    return result
