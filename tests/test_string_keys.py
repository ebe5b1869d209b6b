from fastapi.testclient import TestClient
from portal_schema import remedial_quarter
from sqlalchemy import Connection, select

from custodian.application.recovery_service import preview, restore
from custodian.application.soft_delete_service import soft_delete
from custodian.domain.registry import get_entity
from custodian.infrastructure.database.audit_log import DatabaseAuditSink
from custodian.infrastructure.database.models import SecurityAuditLog


def _quarter(connection: Connection, quarter_id: str):
    return (
        connection.execute(
            select(remedial_quarter).where(remedial_quarter.c.quarter_id == quarter_id)
        )
        .mappings()
        .one()
    )


def test_preview_keeps_zero_padded_ids(connection: Connection):
    ids = ["0042", "Q1", "Q2", "42"]
    result = preview(connection, get_entity("remedial_quarter"), ids)

    assert result.requested_ids == ["0042", "Q1", "Q2", 42]
    assert result.recoverable_ids == ["0042"]
    assert result.recoverable[0].reason == "Merged quarters"
    assert result.recoverable[0].label == "Q4 Catch-up 2024-2025"
    # "true" is not the stored flag value, so Q2 is not recoverable
    assert [record.id for record in result.not_recoverable] == ["Q1", "Q2"]
    assert result.not_found == [42]


def test_restore_zero_padded_id(connection: Connection):
    result = restore(
        connection,
        get_entity("remedial_quarter"),
        ["0042"],
        "Quarter reopened",
        "Approved by registrar",
        actor_id=7,
        audit_sink=DatabaseAuditSink(),
    )

    assert result.restored_ids == ["0042"]
    row = _quarter(connection, "0042")
    assert row["is_archived"] == "0"
    assert row["archived_at"] is None
    assert row["archive_reason"] is None

    entry = connection.execute(select(SecurityAuditLog.__table__)).mappings().one()
    assert '"restored_ids": ["0042"]' in entry["details"]


def test_restore_skips_rows_the_flag_check_rejects(connection: Connection):
    result = restore(
        connection, get_entity("remedial_quarter"), ["Q2"], "Fix", "Approved", 7
    )

    assert result.restored_ids == []
    assert result.outcome == "no-op"
    assert _quarter(connection, "Q2")["is_archived"] == "true"


def test_soft_delete_text_flag(connection: Connection):
    result = soft_delete(
        connection, get_entity("remedial_quarter"), ["Q1"], "Cancelled", actor_id=7
    )

    assert result.flagged_ids == ["Q1"]
    row = _quarter(connection, "Q1")
    assert row["is_archived"] == "1"
    assert row["archived_by"] == "7"
    assert row["archive_reason"] == "Cancelled"

    again = preview(connection, get_entity("remedial_quarter"), ["Q1"])
    assert again.recoverable_ids == ["Q1"]


def test_api_echoes_zero_padded_ids(client: TestClient):
    response = client.post(
        "/api/v1/recovery/restore",
        json={
            "entity": "remedial_quarter",
            "ids": ["0042"],
            "reason": "Quarter reopened",
            "approval_note": "Approved by registrar",
        },
        headers={"X-Actor-Id": "7"},
    )
    assert response.status_code == 200
    assert response.json()["restored_ids"] == ["0042"]
