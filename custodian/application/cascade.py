"""Dependency-ordered deletes driven by the reference graph."""

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Final

from sqlalchemy import Connection, delete, select

from ..infrastructure.database.schema import SchemaDescriptor
from ..logging_config import get_logger
from ..logging_utils import log_database_operation

logger: Final = get_logger(__name__)


@dataclass(frozen=True)
class DeleteStep:
    table: str
    column: str
    values: tuple[Any, ...]
    rows: tuple[dict[str, Any], ...]


@dataclass
class CascadePlan:
    """Delete statements in execution order, dependents before their parents."""

    steps: list[DeleteStep] = field(default_factory=list)
    _seen: set[tuple[str, tuple]] = field(default_factory=set, repr=False)

    def removed_rows(self) -> list[tuple[str, dict[str, Any]]]:
        """Every row the plan removes, each once, in deletion order."""
        return [(step.table, row) for step in self.steps for row in step.rows]

    def _add(
        self, table: str, column: str, values: Sequence[Any], rows: Iterable[Mapping]
    ) -> None:
        fresh = []
        for row in rows:
            key = (table.lower(), tuple(sorted((k, repr(v)) for k, v in row.items())))
            if key in self._seen:
                continue
            self._seen.add(key)
            fresh.append(dict(row))
        self.steps.append(
            DeleteStep(
                table=table, column=column, values=tuple(values), rows=tuple(fresh)
            )
        )


def _distinct(values: Iterable[Any]) -> list[Any]:
    return list(dict.fromkeys(value for value in values if value is not None))


def plan_cascade(
    connection: Connection,
    schema: SchemaDescriptor,
    table_name: str,
    column: str,
    values: Iterable[Any],
    plan: CascadePlan,
    visiting: frozenset[str] = frozenset(),
    fallbacks: Mapping[str, Any] | None = None,
) -> CascadePlan:
    """Add the delete of ``table_name`` rows where ``column IN values`` to ``plan``.

    Tables referencing those rows are planned first, recursively, matching on
    the exact referenced column each foreign key names. ``fallbacks`` supplies
    a value for a referenced column that is NULL on the matched row.
    """
    wanted = _distinct(values)
    if not wanted or column not in schema.columns(table_name):
        return plan

    table = schema.table_clause(table_name)
    rows = (
        connection.execute(select(table).where(table.c[column].in_(wanted)))
        .mappings()
        .all()
    )
    if not rows:
        return plan

    nested = visiting | {table_name.lower()}
    for edge in schema.referencing(table_name, skip=nested):
        referenced = []
        for row in rows:
            value = row.get(edge.referenced_column)
            if value is None and fallbacks:
                value = fallbacks.get(edge.referenced_column)
            referenced.append(value)
        plan_cascade(
            connection, schema, edge.table, edge.column, referenced, plan, nested
        )

    plan._add(schema.actual_name(table_name), column, wanted, rows)
    return plan


def execute_cascade(
    connection: Connection, schema: SchemaDescriptor, plan: CascadePlan
) -> int:
    """Run the planned deletes on ``connection``; the caller owns the transaction."""
    total = 0
    for step in plan.steps:
        table = schema.table_clause(step.table, [step.column])
        result = connection.execute(
            delete(table).where(table.c[step.column].in_(list(step.values)))
        )
        deleted = result.rowcount or 0
        total += deleted
        log_database_operation(
            operation="delete",
            table=step.table,
            match_column=step.column,
            rowcount=deleted,
        )
    return total
