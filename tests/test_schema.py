from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Boolean, Connection, Date, DateTime, Integer, Numeric, String

from custodian.config import settings
from custodian.infrastructure.database.schema import (
    ColumnCatalog,
    coerce_value,
    load_schema,
)


def test_catalog_lookups_are_case_insensitive_and_fail_soft(connection: Connection):
    catalog = ColumnCatalog(connection)
    assert catalog.actual_name("USERS") == "users"
    assert "master_teacher_id" in catalog.columns("Users")
    assert not catalog.columns("no_such_table")
    assert catalog.primary_key("archived_users") == ("archived_id",)


def test_reference_graph_follows_referenced_columns(connection: Connection):
    schema = load_schema(connection, ["users", "master_teacher"])
    edges = schema.referencing("master_teacher")
    assert {(edge.table, edge.column, edge.referenced_column) for edge in edges} == {
        ("mt_coordinator_handled", "master_teacher_id", "master_teacher_id"),
        ("mt_remedialteacher_handled", "master_teacher_id", "master_teacher_id"),
    }
    # Cascade-only tables are introspected as part of the same pass
    assert schema.has_table("mt_coordinator_handled")


def test_administrative_tables_are_left_out_of_cascades(connection: Connection):
    schema = load_schema(connection, ["users"], settings.administrative_tables)
    tables = {edge.table for edge in schema.referencing("users")}
    assert tables == {"master_teacher", "teacher"}
    assert {edge.table for edge in schema.referencing("users", skip=["teacher"])} == {
        "master_teacher"
    }


def test_table_clause_selects_only_existing_columns(connection: Connection):
    schema = load_schema(connection, ["student", "students"])
    assert schema.has_table("student")
    assert not schema.has_table("students")
    table = schema.table_clause("student", ["student_id", "is_deleted"])
    assert list(table.c.keys()) == ["student_id", "is_deleted"]


def test_coerce_value_restores_json_text():
    stamp = coerce_value(DateTime(), "2024-06-03 08:30:00")
    assert stamp == datetime(2024, 6, 3, 8, 30)
    assert coerce_value(Date(), "2024-06-03T00:00:00") == date(2024, 6, 3)
    assert coerce_value(Boolean(), 1) is True
    assert coerce_value(Boolean(), "false") is False
    assert coerce_value(Integer(), "42") == 42
    assert coerce_value(Numeric(), "89.50") == Decimal("89.50")
    assert coerce_value(String(), 7000) == "7000"
    assert coerce_value(Integer(), None) is None
    assert coerce_value(None, "as-is") == "as-is"
