from fastapi.testclient import TestClient

ACTOR = {"X-Actor-Id": "7"}
PROBLEM_JSON = "application/problem+json"


def test_health(client: TestClient):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_missing_actor_is_unauthorized(client: TestClient):
    response = client.post(
        "/api/v1/recovery/preview", json={"entity": "student", "ids": [2]}
    )
    assert response.status_code == 401
    assert response.headers["content-type"].startswith(PROBLEM_JSON)
    assert response.json()["title"] == "Unauthorized"


def test_non_numeric_actor_is_unauthorized(client: TestClient):
    response = client.get(
        "/api/v1/recovery/summary", headers={"X-Actor-Id": "admin"}
    )
    assert response.status_code == 401


def test_preview(client: TestClient):
    response = client.post(
        "/api/v1/recovery/preview",
        json={"entity": "student", "ids": [2, 1, 99]},
        headers=ACTOR,
    )
    assert response.status_code == 200
    data = response.json()
    assert [record["id"] for record in data["recoverable"]] == [2]
    assert data["recoverable"][0]["reason"] == "Duplicate enrollment"
    assert [record["id"] for record in data["not_recoverable"]] == [1]
    assert data["not_found"] == [99]


def test_restore_then_noop(client: TestClient):
    body = {
        "entity": "student",
        "ids": [2],
        "reason": " Enrollment confirmed ",
        "approval_note": "Principal approved",
    }
    response = client.post("/api/v1/recovery/restore", json=body, headers=ACTOR)
    assert response.status_code == 200
    data = response.json()
    assert data["restored_ids"] == [2]
    assert data["outcome"] == "restored"
    assert data["reason"] == "Enrollment confirmed"

    response = client.post("/api/v1/recovery/restore", json=body, headers=ACTOR)
    assert response.status_code == 200
    assert response.json()["outcome"] == "no-op"
    assert response.json()["restored_count"] == 0


def test_restore_requires_approval_note(client: TestClient):
    response = client.post(
        "/api/v1/recovery/restore",
        json={"entity": "student", "ids": [2], "reason": "Fix"},
        headers=ACTOR,
    )
    assert response.status_code == 400
    error = response.json()["errors"][0]
    assert error["field"] == "approval_note"
    assert error["code"] == "field_required"


def test_soft_delete(client: TestClient):
    response = client.post(
        "/api/v1/recovery/soft-delete",
        json={"entity": "attendance_record", "ids": [2], "reason": "Duplicate"},
        headers=ACTOR,
    )
    assert response.status_code == 200
    assert response.json()["flagged_ids"] == [2]


def test_archive(client: TestClient):
    response = client.post(
        "/api/v1/archive/master_teacher",
        json={"root_ids": [42, 999], "reason": "Retired"},
        headers=ACTOR,
    )
    assert response.status_code == 200
    data = response.json()
    assert data["archived_count"] == 1
    assert data["archived"][0] == {
        "id": 42,
        "name": "Maria Santos",
        "email": "maria.santos@school.test",
    }
    assert data["not_found"] == [999]
    assert data["failures"] == []


def test_archive_rejects_invalid_root_ids(client: TestClient):
    response = client.post(
        "/api/v1/archive/teacher", json={"root_ids": ["abc"]}, headers=ACTOR
    )
    assert response.status_code == 400
    assert response.json()["errors"][0]["code"] == "field_invalid_value"


def test_unknown_entity(client: TestClient):
    response = client.post(
        "/api/v1/recovery/preview",
        json={"entity": "janitor", "ids": [1]},
        headers=ACTOR,
    )
    assert response.status_code == 400
    assert response.headers["content-type"].startswith(PROBLEM_JSON)
    assert response.json()["errors"][0]["code"] == "unknown_entity"


def test_empty_ids(client: TestClient):
    response = client.post(
        "/api/v1/recovery/preview",
        json={"entity": "student", "ids": []},
        headers=ACTOR,
    )
    assert response.status_code == 400
    assert response.json()["errors"][0]["code"] == "field_required"


def test_malformed_body(client: TestClient):
    response = client.post(
        "/api/v1/recovery/preview", json={"entity": "student"}, headers=ACTOR
    )
    assert response.status_code == 400
    assert response.json()["errors"][0]["field"] == "ids"


def test_missing_table_is_service_unavailable(client: TestClient):
    response = client.post(
        "/api/v1/recovery/preview",
        json={"entity": "parent", "ids": [1]},
        headers=ACTOR,
    )
    assert response.status_code == 503
    assert response.json()["missing"] == "parent"


def test_summary(client: TestClient):
    response = client.get("/api/v1/recovery/summary", headers=ACTOR)
    assert response.status_code == 200
    data = response.json()
    assert data["counts"]["student"] == 2
    assert data["recent"][0]["entity"] == "student"
    assert "parent" in data["unavailable"]


def test_reconcile(client: TestClient):
    response = client.post(
        "/api/v1/identifiers/master_teacher/reconcile",
        json={"root_ids": [42]},
        headers=ACTOR,
    )
    assert response.status_code == 200
    data = response.json()
    assert data["canonical"] == {"42": "7000-042"}
    assert data["repairs_applied"] == 1


def test_request_id_is_echoed(client: TestClient):
    response = client.get("/health", headers={"X-Request-ID": "trace-me"})
    assert response.headers["X-Request-ID"] == "trace-me"
    generated = client.get("/health").headers["X-Request-ID"]
    assert len(generated) == 32


def test_unknown_route_is_a_problem(client: TestClient):
    response = client.get("/api/v1/nothing-here", headers=ACTOR)
    assert response.status_code == 404
    assert response.headers["content-type"].startswith(PROBLEM_JSON)
