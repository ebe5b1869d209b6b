"""Resolution and classification of flag-mode recovery targets."""

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Final

from sqlalchemy import ColumnElement, Connection, TableClause, select

from ..domain.constants import FLAG_SET, MAX_LABEL_LENGTH
from ..domain.entities import ColumnSet, LogicalEntity, RecoveryRecord
from ..domain.exceptions import SchemaUnavailableError
from ..domain.resolver import (
    pick_label_columns,
    require_column,
    resolve_column,
    resolve_table,
)
from ..infrastructure.database.schema import SchemaDescriptor

UPDATED_AT_COLUMNS: Final = ("updated_at",)


@dataclass(frozen=True)
class RecoveryTarget:
    """The live table of a flag-mode entity and the columns each role maps to."""

    entity: LogicalEntity
    schema: SchemaDescriptor
    table: str
    columns: ColumnSet
    id_column: str
    flag_column: str
    time_column: str | None
    reason_column: str | None
    actor_column: str | None
    updated_at_column: str | None
    label_columns: tuple[str, ...]

    @property
    def selected_columns(self) -> list[str]:
        names = [
            self.id_column,
            self.flag_column,
            self.time_column,
            self.reason_column,
            *self.label_columns,
        ]
        return list(dict.fromkeys(name for name in names if name))


def resolve_target(schema: SchemaDescriptor, entity: LogicalEntity) -> RecoveryTarget:
    """Resolve the entity's table, id column and flag column.

    The optional time/reason/actor columns use the tiered resolver; id and
    flag columns must match exactly (ignoring case) because they end up in
    ``WHERE`` clauses of writes.

    Raises:
        SchemaUnavailableError: If the table, id column or flag column is missing
    """
    resolved = resolve_table(schema, entity.table_candidates)
    if resolved is None:
        raise SchemaUnavailableError(entity.table_candidates[0])
    table, columns = resolved

    id_column = require_column(columns, entity.id_column_candidates)
    if id_column is None:
        raise SchemaUnavailableError(table, entity.id_column_candidates[0])
    mode = entity.mode
    flag_column = require_column(columns, mode.flag_candidates)
    if flag_column is None:
        raise SchemaUnavailableError(table, mode.flag_candidates[0])

    reserved = {id_column, flag_column}

    def optional(candidates: Sequence[str]) -> str | None:
        column = resolve_column(columns, candidates)
        return column if column not in reserved else None

    return RecoveryTarget(
        entity=entity,
        schema=schema,
        table=table,
        columns=columns,
        id_column=id_column,
        flag_column=flag_column,
        time_column=optional(mode.time_candidates),
        reason_column=optional(mode.reason_candidates),
        actor_column=optional(mode.actor_candidates),
        updated_at_column=require_column(columns, UPDATED_AT_COLUMNS),
        label_columns=tuple(pick_label_columns(columns, entity.label_columns)),
    )


def flag_value(target: RecoveryTarget) -> Any:
    """The stored flag value of a removed row, in the flag column's own type."""
    return target.schema.coerce(target.table, target.flag_column, FLAG_SET)


def is_flag_set(target: RecoveryTarget, value: Any) -> bool:
    """Python twin of :func:`flag_set_clause`; both must agree row for row."""
    return value is not None and value == flag_value(target)


def flag_set_clause(
    target: RecoveryTarget, table: TableClause
) -> ColumnElement[bool]:
    return table.c[target.flag_column] == flag_value(target)


def id_key(value: Any) -> str:
    return str(value).strip()


def bindable_ids(
    schema: SchemaDescriptor, table: str, column: str, ids: Iterable[Any]
) -> list[Any]:
    """Drop ids that can never match an integer column instead of sending them."""
    column_type = schema.types.get(table.lower(), {}).get(column)
    try:
        integer = column_type is not None and column_type.python_type is int
    except NotImplementedError:
        integer = False
    if not integer:
        return [id_key(value) for value in ids]
    return [value for value in ids if isinstance(value, int)]


def as_datetime(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        return None


def build_label(row: Mapping[str, Any], columns: Iterable[str]) -> str | None:
    parts = [
        str(row[column]).strip() for column in columns if row.get(column) is not None
    ]
    label = " ".join(part for part in parts if part)
    return label[:MAX_LABEL_LENGTH] or None


def to_record(target: RecoveryTarget, row: Mapping[str, Any]) -> RecoveryRecord:
    reason = row.get(target.reason_column) if target.reason_column else None
    occurred_at = row.get(target.time_column) if target.time_column else None
    return RecoveryRecord(
        id=row[target.id_column],
        flagged=is_flag_set(target, row.get(target.flag_column)),
        occurred_at=as_datetime(occurred_at),
        reason=str(reason) if reason is not None else None,
        label=build_label(row, target.label_columns),
        fields={column: row.get(column) for column in target.label_columns},
    )


def load_records(
    connection: Connection,
    target: RecoveryTarget,
    ids: Sequence[Any],
    for_update: bool = False,
) -> dict[str, RecoveryRecord]:
    """Current state of the requested rows, keyed by :func:`id_key`."""
    wanted = bindable_ids(target.schema, target.table, target.id_column, ids)
    if not wanted:
        return {}
    table = target.schema.table_clause(target.table, target.selected_columns)
    statement = select(table).where(table.c[target.id_column].in_(wanted))
    if for_update:
        statement = statement.with_for_update()
    rows = connection.execute(statement).mappings().all()
    return {id_key(row[target.id_column]): to_record(target, row) for row in rows}
