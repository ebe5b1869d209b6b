from datetime import datetime

import pytest
from sqlalchemy import Connection, select

from custodian.application.reconciler import (
    apply_repairs,
    plan_identifier_repairs,
    reconcile,
    reconcile_identifiers,
)
from custodian.config import settings
from custodian.domain.exceptions import ValidationError
from custodian.domain.registry import get_entity
from custodian.infrastructure.database.schema import load_schema

from portal_schema import master_teacher, users


def _schema(connection: Connection):
    entity = get_entity("master_teacher")
    return load_schema(
        connection,
        [settings.root_table, *entity.table_candidates],
        settings.administrative_tables,
    )


def _master_teacher_id(connection: Connection, user_id: int):
    return connection.execute(
        select(master_teacher.c.master_teacher_id).where(
            master_teacher.c.user_id == user_id
        )
    ).scalar_one()


def test_root_identifier_is_written_to_entity_row(connection: Connection):
    """users.master_teacher_id wins and is copied to the empty entity column."""
    entity = get_entity("master_teacher")
    result = reconcile_identifiers(connection, _schema(connection), entity, [42])

    assert result.canonical == {42: "7000-042"}
    assert result.repairs_applied == 1
    assert result.repairs_failed == 0
    assert _master_teacher_id(connection, 42) == "7000-042"


def test_reconciliation_converges(connection: Connection):
    entity = get_entity("master_teacher")
    schema = _schema(connection)
    reconcile_identifiers(connection, schema, entity, [42, 46])

    plan = plan_identifier_repairs(connection, schema, entity, [42, 46])
    assert plan.repairs == []
    assert apply_repairs(connection, schema, plan.repairs) == (0, 0)


def test_fallback_identifier_when_neither_copy_exists(connection: Connection):
    entity = get_entity("master_teacher")
    schema = _schema(connection)
    plan = plan_identifier_repairs(
        connection, schema, entity, [46], now=datetime(2025, 1, 15)
    )

    assert plan.canonical == {46: "MT-250046"}
    assert {(repair.table, repair.column) for repair in plan.repairs} == {
        ("users", "master_teacher_id"),
        ("master_teacher", "master_teacher_id"),
    }

    applied, failed = apply_repairs(connection, schema, plan.repairs)
    assert (applied, failed) == (2, 0)
    stored = connection.execute(
        select(users.c.master_teacher_id).where(users.c.user_id == 46)
    ).scalar_one()
    assert stored == "MT-250046"
    assert _master_teacher_id(connection, 46) == "MT-250046"


def test_missing_root_rows_are_skipped(connection: Connection):
    entity = get_entity("master_teacher")
    plan = plan_identifier_repairs(connection, _schema(connection), entity, [999])
    assert plan.canonical == {}
    assert plan.repairs == []


def test_failed_repair_is_counted_not_raised(connection: Connection):
    """A write-back hitting a unique constraint is skipped and counted."""
    entity = get_entity("master_teacher")
    schema = _schema(connection)
    plan = plan_identifier_repairs(connection, schema, entity, [42])
    connection.execute(
        master_teacher.update()
        .where(master_teacher.c.user_id == 46)
        .values(master_teacher_id="7000-042")
    )
    connection.commit()

    applied, failed = apply_repairs(connection, schema, plan.repairs)
    assert (applied, failed) == (0, 1)


def test_reconcile_requires_identifier_convention(connection: Connection):
    with pytest.raises(ValidationError, match="no identifier convention"):
        reconcile(connection, get_entity("student"), [1])


def test_reconcile_entry_point(connection: Connection):
    result = reconcile(connection, get_entity("master_teacher"), ["42"], actor_id=7)
    assert result.canonical == {42: "7000-042"}
    assert result.repairs_applied == 1
