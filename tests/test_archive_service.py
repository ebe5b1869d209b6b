import json
from unittest.mock import MagicMock

import pytest
from portal_schema import (
    account_logs,
    archived_users,
    master_teacher,
    mt_coordinator_handled,
    mt_remedialteacher_handled,
    teacher,
    users,
)
from sqlalchemy import Connection, Engine, Select, event, func, select
from sqlalchemy.dialects import postgresql

from custodian.application.archive_service import archive, chunked
from custodian.config import settings
from custodian.domain.exceptions import ArchiveTransactionError, ValidationError
from custodian.domain.registry import get_entity
from custodian.infrastructure.database.audit_log import DatabaseAuditSink
from custodian.infrastructure.database.models import SecurityAuditLog


def _count(connection: Connection, table, *conditions) -> int:
    statement = select(func.count()).select_from(table)
    for condition in conditions:
        statement = statement.where(condition)
    return connection.execute(statement).scalar_one()


def test_master_teacher_archive_end_to_end(connection: Connection):
    """Reconcile, cascade through handled rows, snapshot, then remove the user."""
    result = archive(
        connection,
        get_entity("master_teacher"),
        [42],
        "Retired",
        actor_id=7,
        ip_address="10.0.0.5",
        audit_sink=DatabaseAuditSink(),
    )

    assert result.archived_ids == [42]
    assert result.archived[0].name == "Maria Santos"
    assert result.archived[0].email == "maria.santos@school.test"
    assert result.not_found == []
    assert result.failures == []

    assert _count(connection, mt_coordinator_handled) == 0
    assert _count(connection, mt_remedialteacher_handled) == 0
    assert _count(connection, master_teacher, master_teacher.c.user_id == 42) == 0
    assert _count(connection, account_logs, account_logs.c.user_id == 42) == 0
    assert _count(connection, users, users.c.user_id == 42) == 0
    # Unrelated accounts stay untouched
    assert _count(connection, master_teacher, master_teacher.c.user_id == 46) == 1
    assert _count(connection, account_logs, account_logs.c.user_id == 43) == 1

    snapshots = connection.execute(select(archived_users)).mappings().all()
    assert len(snapshots) == 1
    snapshot = snapshots[0]
    assert snapshot["user_id"] == 42
    assert snapshot["name"] == "Maria Santos"
    assert snapshot["reason"] == "Retired"
    assert snapshot["archived_by"] == 7
    assert snapshot["entity_identifier"] == "7000-042"
    assert snapshot["contact_number"] == "09171234567"

    document = json.loads(snapshot["snapshot_json"])
    assert document["entity"] == "master_teacher"
    assert document["root"]["master_teacher_id"] == "7000-042"
    removed_tables = [item["table"] for item in document["removed"]]
    assert removed_tables[-1] == "master_teacher"
    assert removed_tables.count("mt_remedialteacher_handled") == 2

    audit = connection.execute(select(SecurityAuditLog.__table__)).mappings().all()
    assert [entry["action"] for entry in audit] == ["archive_master_teacher"]
    assert audit[0]["user_id"] == "7"
    assert audit[0]["ip_address"] == "10.0.0.5"


def test_archive_is_idempotent(connection: Connection):
    entity = get_entity("master_teacher")
    first = archive(connection, entity, [42], None, actor_id=7)
    second = archive(connection, entity, [42], None, actor_id=7)

    assert first.archived_ids == [42]
    assert second.archived_ids == [42]
    assert second.archived[0].reused_snapshot is True
    assert second.archived[0].archived_id == first.archived[0].archived_id
    assert _count(connection, archived_users) == 1
    reason = connection.execute(select(archived_users.c.reason)).scalar_one()
    assert reason == settings.default_archive_reason


def test_teacher_archive_removes_entity_row(connection: Connection):
    result = archive(connection, get_entity("teacher"), [43], "Transferred", 7)

    assert result.archived_ids == [43]
    assert _count(connection, teacher) == 0
    assert _count(connection, users, users.c.user_id == 43) == 0
    # The master teacher tables reference users too but hold nothing for 43
    assert _count(connection, master_teacher) == 2


def test_unknown_and_mismatched_roots_are_not_found(connection: Connection):
    result = archive(connection, get_entity("teacher"), [42, 999, 43], None, 7)

    assert result.archived_ids == [43]
    assert result.not_found == [42, 999]
    assert _count(connection, users, users.c.user_id == 42) == 1


def test_failed_cascade_rolls_back_everything(connection: Connection):
    connection.exec_driver_sql(
        "CREATE TRIGGER lock_logs BEFORE DELETE ON account_logs "
        "BEGIN SELECT RAISE(ABORT, 'account logs are locked'); END"
    )
    connection.commit()

    with pytest.raises(ArchiveTransactionError) as error:
        archive(connection, get_entity("teacher"), [43], "Transferred", 7)

    assert [failure.id for failure in error.value.failures] == [43]
    assert "account logs are locked" in error.value.failures[0].message
    assert _count(connection, users, users.c.user_id == 43) == 1
    assert _count(connection, teacher) == 1
    assert _count(connection, account_logs) == 2
    assert _count(connection, archived_users) == 0


def test_partial_failure_keeps_committed_ids(connection: Connection):
    connection.exec_driver_sql(
        "CREATE TRIGGER lock_teacher BEFORE DELETE ON teacher "
        "BEGIN SELECT RAISE(ABORT, 'teacher rows are locked'); END"
    )
    connection.commit()

    entity = get_entity("teacher")
    connection.execute(
        users.update().where(users.c.user_id == 46).values(role="Teacher")
    )
    connection.commit()
    result = archive(connection, entity, [46, 43], None, 7)

    # 46 has no teacher row, so nothing hits the trigger
    assert result.archived_ids == [46]
    assert [failure.id for failure in result.failures] == [43]
    assert _count(connection, users, users.c.user_id == 43) == 1
    assert _count(connection, archived_users) == 1


def test_flag_entities_cannot_be_archived():
    connection = MagicMock(spec=Connection)
    with pytest.raises(ValidationError, match="not an account"):
        archive(connection, get_entity("student"), [1], None, 7)
    assert connection.mock_calls == []


def test_oversized_batch_is_rejected_before_any_query():
    connection = MagicMock(spec=Connection)
    ids = list(range(1, settings.archive_max_ids + 2))
    with pytest.raises(ValidationError, match="At most"):
        archive(connection, get_entity("teacher"), ids, None, 7)
    assert connection.mock_calls == []


def test_chunked():
    assert chunked([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]


def test_root_row_is_locked_before_snapshotting(engine: Engine, connection: Connection):
    statements = []

    def capture(conn, clauseelement, multiparams, params, execution_options):
        if isinstance(clauseelement, Select):
            compiled = clauseelement.compile(dialect=postgresql.dialect())
            statements.append(str(compiled))

    event.listen(engine, "before_execute", capture)
    try:
        archive(connection, get_entity("teacher"), [43], "Transferred", 7)
    finally:
        event.remove(engine, "before_execute", capture)

    locked = [
        sql for sql in statements if "FROM users" in sql and sql.endswith("FOR UPDATE")
    ]
    assert len(locked) == 1
