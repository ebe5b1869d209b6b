"""Runtime schema discovery.

The portal schema differs between deployments, so nothing here is declared
up front. ``ColumnCatalog`` answers "does this table/column exist",
``ReferenceGraphBuilder`` reads foreign-key metadata, and ``load_schema``
freezes both into a ``SchemaDescriptor`` that is built once per operation and
handed to every step of that operation.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import Connection, inspect
from sqlalchemy import column as sql_column
from sqlalchemy import table as sql_table
from sqlalchemy.exc import NoSuchTableError
from sqlalchemy.sql.expression import ColumnClause, TableClause
from sqlalchemy.types import NullType, TypeEngine

from ...domain.entities import ColumnSet
from ...logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ReferenceEdge:
    """A foreign key from ``table.column`` to the referenced table's column."""

    table: str
    column: str
    referenced_table: str
    referenced_column: str


class ColumnCatalog:
    """Fail-soft table/column lookups for one operation.

    Results are cached for the lifetime of the catalog, so repeated
    introspection of the same table costs one round trip.
    """

    def __init__(self, connection: Connection):
        self._inspector = inspect(connection)
        self._table_names: dict[str, str] | None = None
        self._columns: dict[str, ColumnSet] = {}
        self._types: dict[str, dict[str, TypeEngine]] = {}
        self._primary_keys: dict[str, tuple[str, ...]] = {}

    @property
    def inspector(self):
        return self._inspector

    def _names(self) -> dict[str, str]:
        if self._table_names is None:
            self._table_names = {
                name.lower(): name for name in self._inspector.get_table_names()
            }
        return self._table_names

    def actual_name(self, name: str) -> str | None:
        """Map a (possibly differently cased) table name to its stored name."""
        return self._names().get(name.lower())

    def table_names(self) -> list[str]:
        return list(self._names().values())

    def table_exists(self, name: str) -> bool:
        return self.actual_name(name) is not None

    def columns(self, name: str) -> ColumnSet:
        """Columns of ``name``; an empty set when the table does not exist."""
        key = name.lower()
        if key in self._columns:
            return self._columns[key]

        actual = self.actual_name(name)
        if actual is None:
            self._columns[key] = ColumnSet(table=name)
            return self._columns[key]

        try:
            reflected = self._inspector.get_columns(actual)
        except NoSuchTableError:
            reflected = []
        self._store(actual, reflected)
        return self._columns[key]

    def preload(self, names: Iterable[str]) -> None:
        """Fetch columns for many tables at once."""
        wanted = []
        for name in names:
            actual = self.actual_name(name)
            if actual is not None and actual.lower() not in self._columns:
                wanted.append(actual)
        if not wanted:
            return
        reflected = self._inspector.get_multi_columns(filter_names=wanted)
        for (_schema, table_name), columns in reflected.items():
            self._store(table_name, columns)

    def column_types(self, name: str) -> dict[str, TypeEngine]:
        self.columns(name)
        return self._types.get(name.lower(), {})

    def primary_key(self, name: str) -> tuple[str, ...]:
        key = name.lower()
        if key not in self._primary_keys:
            actual = self.actual_name(name)
            constrained: tuple[str, ...] = ()
            if actual is not None:
                try:
                    pk = self._inspector.get_pk_constraint(actual)
                    constrained = tuple(pk.get("constrained_columns") or ())
                except NoSuchTableError:
                    constrained = ()
            self._primary_keys[key] = constrained
        return self._primary_keys[key]

    def _store(self, table_name: str, reflected: list[Any]) -> None:
        names = tuple(str(col["name"]) for col in reflected)
        self._columns[table_name.lower()] = ColumnSet(table=table_name, names=names)
        self._types[table_name.lower()] = {
            str(col["name"]): col.get("type") or NullType() for col in reflected
        }


class ReferenceGraphBuilder:
    """Discovers which tables hold foreign keys into a given table."""

    def __init__(self, catalog: ColumnCatalog, excluded_tables: Iterable[str] = ()):
        self._catalog = catalog
        self._excluded = frozenset(name.lower() for name in excluded_tables)
        self._edges: dict[str, tuple[ReferenceEdge, ...]] | None = None

    def build(self) -> dict[str, tuple[ReferenceEdge, ...]]:
        """All foreign-key edges of the current schema, keyed by referenced table."""
        if self._edges is not None:
            return self._edges

        inspector = self._catalog.inspector
        default_schema = inspector.default_schema_name
        grouped: dict[str, list[ReferenceEdge]] = {}

        reflected = inspector.get_multi_foreign_keys()
        for (_schema, table_name), foreign_keys in reflected.items():
            for fk in foreign_keys:
                referred_schema = fk.get("referred_schema")
                if referred_schema not in (None, default_schema):
                    continue
                referred_table = fk.get("referred_table")
                if not referred_table:
                    continue
                pairs = zip(
                    fk.get("constrained_columns") or (),
                    fk.get("referred_columns") or (),
                    strict=False,
                )
                for column_name, referred_column in pairs:
                    if not column_name or not referred_column:
                        continue
                    grouped.setdefault(referred_table.lower(), []).append(
                        ReferenceEdge(
                            table=str(table_name),
                            column=str(column_name),
                            referenced_table=str(referred_table),
                            referenced_column=str(referred_column),
                        )
                    )

        self._edges = {key: tuple(edges) for key, edges in grouped.items()}
        logger.debug(
            "Reference graph built",
            referenced_tables=len(self._edges),
            edges=sum(len(edges) for edges in self._edges.values()),
        )
        return self._edges

    def referencing_tables(self, target_table: str) -> list[ReferenceEdge]:
        """Edges pointing into ``target_table``.

        Self-references and administrative tables are left out; those are
        handled by dedicated steps.
        """
        target = target_table.lower()
        return [
            edge
            for edge in self.build().get(target, ())
            if edge.table.lower() != target and edge.table.lower() not in self._excluded
        ]


@dataclass(frozen=True)
class SchemaDescriptor:
    """Immutable view of the live schema for one operation."""

    tables: Mapping[str, ColumnSet] = field(default_factory=dict)
    types: Mapping[str, Mapping[str, TypeEngine]] = field(default_factory=dict)
    primary_keys: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    edges: Mapping[str, tuple[ReferenceEdge, ...]] = field(default_factory=dict)
    excluded_tables: frozenset[str] = frozenset()

    def columns(self, table: str) -> ColumnSet:
        return self.tables.get(table.lower(), ColumnSet(table=table))

    def has_table(self, table: str) -> bool:
        return bool(self.columns(table))

    def actual_name(self, table: str) -> str:
        return self.columns(table).table

    def primary_key(self, table: str) -> tuple[str, ...]:
        return self.primary_keys.get(table.lower(), ())

    def referencing(
        self, table: str, skip: Iterable[str] = ()
    ) -> list[ReferenceEdge]:
        """Edges into ``table``, without self references and skipped tables."""
        target = table.lower()
        skipped = self.excluded_tables | {name.lower() for name in skip}
        return [
            edge
            for edge in self.edges.get(target, ())
            if edge.table.lower() != target and edge.table.lower() not in skipped
        ]

    def column(self, table: str, name: str) -> ColumnClause:
        """A column clause carrying the reflected type, for correct bind processing."""
        column_type = self.types.get(table.lower(), {}).get(name)
        if column_type is None or isinstance(column_type, NullType):
            return sql_column(name)
        return sql_column(name, column_type)

    def table_clause(
        self, table: str, names: Iterable[str] | None = None
    ) -> TableClause:
        """A lightweight table construct; identifiers are quoted by the dialect."""
        selected = list(names) if names is not None else list(self.columns(table))
        return sql_table(
            self.actual_name(table), *(self.column(table, name) for name in selected)
        )

    def coerce(self, table: str, column: str, value: Any) -> Any:
        return coerce_value(self.types.get(table.lower(), {}).get(column), value)


def load_schema(
    connection: Connection,
    tables: Iterable[str],
    excluded_tables: Iterable[str] = (),
) -> SchemaDescriptor:
    """Introspect ``tables`` plus the foreign-key graph in one pass.

    Tables that only appear as cascade targets in the graph are introspected
    too, so later steps never go back to the database for metadata.
    """
    catalog = ColumnCatalog(connection)
    graph = ReferenceGraphBuilder(catalog, excluded_tables)
    edges = graph.build()

    requested = list(dict.fromkeys(tables))
    cascade_tables = {edge.table for group in edges.values() for edge in group}
    catalog.preload([*requested, *sorted(cascade_tables)])

    columns: dict[str, ColumnSet] = {}
    types: dict[str, Mapping[str, TypeEngine]] = {}
    primary_keys: dict[str, tuple[str, ...]] = {}
    for name in [*requested, *sorted(cascade_tables)]:
        column_set = catalog.columns(name)
        if not column_set:
            continue
        key = name.lower()
        columns[key] = column_set
        types[key] = catalog.column_types(name)
    for name in requested:
        if name.lower() in columns:
            primary_keys[name.lower()] = catalog.primary_key(name)

    descriptor = SchemaDescriptor(
        tables=columns,
        types=types,
        primary_keys=primary_keys,
        edges=edges,
        excluded_tables=frozenset(name.lower() for name in excluded_tables),
    )
    logger.debug(
        "Schema descriptor loaded",
        requested=len(requested),
        present=sum(1 for name in requested if descriptor.has_table(name)),
        cascade_tables=len(cascade_tables),
    )
    return descriptor


def coerce_value(column_type: TypeEngine | None, value: Any) -> Any:
    """Convert a JSON-decoded value back into what the column type binds.

    Snapshot documents store dates and decimals as text; dialects such as
    SQLite reject text for ``DateTime`` columns.
    """
    if value is None or column_type is None:
        return value
    try:
        python_type = column_type.python_type
    except NotImplementedError:
        return value

    if isinstance(value, python_type):
        return value
    if python_type is datetime and isinstance(value, str):
        return datetime.fromisoformat(value)
    if python_type is date and isinstance(value, str):
        return date.fromisoformat(value[:10])
    if python_type is bool:
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes")
        return bool(value)
    if python_type is int and isinstance(value, str | float) and str(value).strip():
        return int(float(value))
    if python_type is Decimal and isinstance(value, str | int | float):
        return Decimal(str(value))
    if python_type is str and not isinstance(value, str):
        return str(value)
    return value
