from unittest.mock import MagicMock

import pytest
from portal_schema import (
    archived_users,
    attendance_record,
    master_teacher,
    mt_remedialteacher_handled,
    student,
    users,
)
from sqlalchemy import Connection, func, select

from custodian.application.archive_service import archive
from custodian.application.recovery_service import preview, restore
from custodian.config import settings
from custodian.domain.exceptions import SchemaUnavailableError, ValidationError
from custodian.domain.registry import get_entity
from custodian.infrastructure.database.audit_log import DatabaseAuditSink
from custodian.infrastructure.database.models import SecurityAuditLog


def _student(connection: Connection, student_id: int):
    return (
        connection.execute(select(student).where(student.c.student_id == student_id))
        .mappings()
        .one()
    )


def test_preview_partitions_ids(connection: Connection):
    result = preview(connection, get_entity("student"), ["2", 1, 99, "abc", 2])

    assert result.requested_ids == [2, 1, 99, "abc"]
    assert result.recoverable_ids == [2]
    assert [record.id for record in result.not_recoverable] == [1]
    assert result.not_found == [99, "abc"]

    record = result.recoverable[0]
    assert record.flagged is True
    assert record.reason == "Duplicate enrollment"
    assert record.label == "Pedro Penduko"
    assert record.occurred_at is not None


def test_restore_clears_flag_columns(connection: Connection):
    result = restore(
        connection,
        get_entity("student"),
        [2, 1],
        "Enrollment was valid",
        "Approved by principal",
        actor_id=7,
        audit_sink=DatabaseAuditSink(),
    )

    assert result.restored_ids == [2]
    assert result.outcome == "restored"
    row = _student(connection, 2)
    assert row["is_deleted"] == 0
    assert row["deleted_at"] is None
    assert row["delete_reason"] is None
    assert row["deleted_by"] is None
    # Other flagged rows stay flagged
    assert _student(connection, 3)["is_deleted"] == 1

    entry = connection.execute(select(SecurityAuditLog.__table__)).mappings().one()
    assert entry["action"] == "emergency_restore_student"
    assert '"restored_count": 1' in entry["details"]
    assert '"approval_note": "Approved by principal"' in entry["details"]


def test_restore_ignores_stale_preview(connection: Connection):
    entity = get_entity("attendance_record")
    before = preview(connection, entity, [1])
    assert before.recoverable_ids == [1]

    # Someone else restores the record in between
    connection.execute(
        attendance_record.update()
        .where(attendance_record.c.attendance_id == 1)
        .values(is_voided=0)
    )
    connection.commit()

    result = restore(
        connection, entity, before.recoverable_ids, "Typo", "OK'd by registrar", 7
    )
    assert result.restored_ids == []
    assert result.outcome == "no-op"


def test_noop_restore_is_still_audited(connection: Connection):
    result = restore(
        connection,
        get_entity("student"),
        [1, 404],
        "Check",
        "Approved",
        actor_id=None,
        audit_sink=DatabaseAuditSink(),
    )

    assert result.restored_count == 0
    entry = connection.execute(select(SecurityAuditLog.__table__)).mappings().one()
    assert entry["user_id"] == "unknown"
    assert '"outcome": "no-op"' in entry["details"]


@pytest.mark.parametrize(
    ("reason", "note", "message"),
    [
        (None, "Approved", "reason is required"),
        ("Fix", "  ", "approval_note is required"),
        ("x" * 501, "Approved", "reason must be at most 500"),
    ],
)
def test_restore_validates_notes_before_any_query(reason, note, message):
    connection = MagicMock(spec=Connection)
    with pytest.raises(ValidationError, match=message):
        restore(connection, get_entity("student"), [2], reason, note, 7)
    assert connection.mock_calls == []


def test_batch_bounds_are_enforced_before_any_query():
    connection = MagicMock(spec=Connection)
    ids = list(range(settings.preview_max_ids + 1))
    with pytest.raises(ValidationError, match="At most"):
        preview(connection, get_entity("student"), ids)
    with pytest.raises(ValidationError, match="At least one id"):
        restore(connection, get_entity("student"), [], "Fix", "Approved", 7)
    assert connection.mock_calls == []


def test_missing_table_is_reported(connection: Connection):
    with pytest.raises(SchemaUnavailableError) as error:
        preview(connection, get_entity("parent"), [1])
    assert error.value.missing == "parent"


def test_account_round_trip(connection: Connection):
    """Archive, preview, restore, and the snapshot itself is left alone."""
    entity = get_entity("master_teacher")
    archived = archive(connection, entity, [42], "Retired", 7)
    archived_id = archived.archived[0].archived_id
    snapshot_before = connection.execute(select(archived_users)).mappings().one()

    found = preview(connection, entity, [archived_id, 12345])
    assert found.recoverable_ids == [archived_id]
    assert found.recoverable[0].fields["user_id"] == 42
    assert found.not_found == [12345]

    result = restore(connection, entity, [archived_id], "Rehired", "HR memo 12", 7)
    assert result.restored_ids == [archived_id]

    user = (
        connection.execute(select(users).where(users.c.user_id == 42)).mappings().one()
    )
    assert user["first_name"] == "Maria"
    assert user["master_teacher_id"] == "7000-042"
    assert user["created_at"] is not None
    count = select(func.count()).select_from(master_teacher)
    assert connection.execute(count).scalar_one() == 2
    handled = select(func.count()).select_from(mt_remedialteacher_handled)
    assert connection.execute(handled).scalar_one() == 2

    snapshot_after = connection.execute(select(archived_users)).mappings().one()
    assert dict(snapshot_after) == dict(snapshot_before)

    again = preview(connection, entity, [archived_id])
    assert [record.id for record in again.not_recoverable] == [archived_id]


def test_account_snapshot_of_other_role_is_not_found(connection: Connection):
    archived = archive(connection, get_entity("teacher"), [43], None, 7)
    archived_id = archived.archived[0].archived_id

    result = preview(connection, get_entity("principal"), [archived_id])
    assert result.not_found == [archived_id]


def test_rows_left_flagged_are_not_reported_restored(connection: Connection):
    connection.exec_driver_sql(
        "CREATE TRIGGER keep_student_3 BEFORE UPDATE ON student "
        "WHEN OLD.student_id = 3 BEGIN SELECT RAISE(IGNORE); END"
    )
    connection.commit()

    result = restore(
        connection,
        get_entity("student"),
        [2, 3],
        "Enrollment was valid",
        "Approved by principal",
        actor_id=7,
        audit_sink=DatabaseAuditSink(),
    )

    assert result.restored_ids == [2]
    assert _student(connection, 3)["is_deleted"] == 1
    entry = connection.execute(select(SecurityAuditLog.__table__)).mappings().one()
    assert '"restored_count": 1' in entry["details"]
    assert '"restored_ids": [2]' in entry["details"]
