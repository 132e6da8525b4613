from __future__ import annotations

from datetime import date

import pytest
from fastapi.testclient import TestClient

from attendance_monitor import auth, main
from attendance_monitor.auth import get_current_user
from attendance_monitor.db import DBOperationalError
from attendance_monitor.security import hash_password

PREPARER = {"id": 2, "email": "ana@example.com", "username": "Ana", "role": "preparer"}
ADMIN = {"id": 1, "email": "admin@local", "username": "admin", "role": "admin"}


def _record(record_id="1", day="2025-03-12", **fields):
    record = {
        "id": record_id,
        "date": date.fromisoformat(day),
        "overtime": 2.0,
        "job_order_no": "JO-1",
        "destination": "Cebu",
        "remarks": "Delivery",
        "prepared_by": "Ana",
        "checked_by": "Ben",
        "created_at": None,
        "updated_at": None,
    }
    record.update(fields)
    return record


@pytest.fixture
def client():
    main.app.dependency_overrides[get_current_user] = lambda: PREPARER
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


@pytest.fixture
def admin_client():
    main.app.dependency_overrides[get_current_user] = lambda: ADMIN
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


def test_healthcheck():
    response = TestClient(main.app).get("/healthz")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_protected_routes_require_token():
    response = TestClient(main.app).get("/api/attendance")

    assert response.status_code == 401


def test_login_issues_token_accepted_by_me(monkeypatch):
    row = dict(ADMIN, is_active=1, password_hash=hash_password("admin-pass", rounds=4))
    touched = []
    monkeypatch.setattr(main, "get_user_by_login", lambda login: row if login == "admin" else None)
    monkeypatch.setattr(main, "touch_user_login", touched.append)
    monkeypatch.setattr(auth, "get_user_by_id", lambda user_id: row if user_id == 1 else None)
    api = TestClient(main.app)

    response = api.post("/api/auth/login", json={"username": "admin", "password": "admin-pass"})

    assert response.status_code == 200
    body = response.json()
    assert body["role"] == "admin"
    assert touched == [1]

    me = api.get("/api/auth/me", headers={"Authorization": f"Bearer {body['access_token']}"})
    assert me.status_code == 200
    assert me.json()["username"] == "admin"


def test_login_rejects_wrong_password(monkeypatch):
    row = dict(ADMIN, is_active=1, password_hash=hash_password("admin-pass", rounds=4))
    monkeypatch.setattr(main, "get_user_by_login", lambda login: row)

    response = TestClient(main.app).post("/api/auth/login", json={"username": "admin", "password": "nope"})

    assert response.status_code == 401


def test_default_period_for_reference(client):
    response = client.get("/api/periods/default", params={"reference": "2025-03-28"})

    assert response.status_code == 200
    assert response.json() == {
        "fromDate": "2025-03-26",
        "toDate": "2025-04-10",
        "label": "March 26, 2025 - April 10, 2025",
    }


def test_list_attendance_uses_default_period_when_unbounded(client, monkeypatch):
    captured = {}

    def _fetch_page(**kwargs):
        captured.update(kwargs)
        return {
            "records": [_record()],
            "count": 1,
            "page": kwargs["page"],
            "page_size": kwargs["page_size"],
            "total_pages": 1,
            "sort_by": kwargs["sort_by"],
            "direction": kwargs["direction"],
        }

    monkeypatch.setattr(main, "fetch_attendance_page", _fetch_page)

    response = client.get("/api/attendance", params={"sort_by": "overtime", "direction": "asc"})

    assert response.status_code == 200
    body = response.json()
    assert body["count"] == 1
    assert body["records"][0]["date"] == "2025-03-12"
    assert body["date_range"]["fromDate"] is not None
    assert captured["date_range"].from_date == body["date_range"]["fromDate"]
    assert captured["page_size"] == main.settings.default_page_size
    assert captured["sort_by"] == "overtime"


def test_list_attendance_rejects_reversed_range(client):
    response = client.get(
        "/api/attendance",
        params={"from_date": "2025-03-25", "to_date": "2025-03-11"},
    )

    assert response.status_code == 400


def test_list_attendance_rejects_malformed_date(client):
    response = client.get("/api/attendance", params={"from_date": "03/11/2025"})

    assert response.status_code == 422


def test_list_attendance_reports_database_outage(client, monkeypatch):
    def _fail(**kwargs):
        raise DBOperationalError("connection refused")

    monkeypatch.setattr(main, "fetch_attendance_page", _fail)

    response = client.get("/api/attendance")

    assert response.status_code == 503
    assert response.json()["error"] == "DB connection failed"


def test_create_attendance_defaults_preparer_to_current_user(client, monkeypatch):
    saved = {}

    def _add(payload):
        saved.update(payload)
        return _record("9", prepared_by=payload["prepared_by"])

    monkeypatch.setattr(main, "add_attendance_record", _add)

    response = client.post(
        "/api/attendance",
        json={
            "date": "2025-03-12",
            "overtime": 2,
            "destination": "Cebu",
            "remarks": "Delivery",
            "checked_by": "Ben",
        },
    )

    assert response.status_code == 201
    assert saved["prepared_by"] == "Ana"
    assert response.json()["id"] == "9"


def test_create_attendance_validates_payload(client):
    response = client.post(
        "/api/attendance",
        json={"date": "2025-03-12", "destination": "", "remarks": "x", "checked_by": "Ben"},
    )

    assert response.status_code == 422


def test_get_attendance_not_found(client, monkeypatch):
    monkeypatch.setattr(main, "fetch_attendance_record", lambda record_id: None)

    assert client.get("/api/attendance/404").status_code == 404


def test_patch_attendance_passes_only_supplied_fields(client, monkeypatch):
    seen = {}

    def _update(record_id, changes):
        seen["id"] = record_id
        seen["changes"] = changes
        return _record(record_id, remarks=changes["remarks"])

    monkeypatch.setattr(main, "update_attendance_record", _update)

    response = client.patch("/api/attendance/5", json={"remarks": "Pickup"})

    assert response.status_code == 200
    assert seen == {"id": "5", "changes": {"remarks": "Pickup"}}
    assert response.json()["remarks"] == "Pickup"


def test_delete_attendance(client, monkeypatch):
    monkeypatch.setattr(main, "delete_attendance_record", lambda record_id: record_id == "5")

    assert client.delete("/api/attendance/5").status_code == 200
    assert client.delete("/api/attendance/6").status_code == 404


def test_lookup_merges_usernames_for_role(client, monkeypatch):
    monkeypatch.setattr(main, "fetch_distinct_values", lambda field: ["Zed", "Ana"])
    monkeypatch.setattr(main, "list_usernames_by_role", lambda role: ["Ana", "Carl"])

    response = client.get("/api/lookups/preparers")

    assert response.status_code == 200
    assert response.json() == {"field": "preparers", "values": ["Ana", "Carl", "Zed"]}


def test_summary_report(client, monkeypatch):
    records = [
        _record("1", "2025-03-12", overtime=2),
        _record("2", "2025-03-12", overtime=1.5),
        _record("3", "2025-03-16", overtime=None, remarks="n/a"),
    ]
    monkeypatch.setattr(main, "fetch_attendance_for_range", lambda date_range: records)

    response = client.get(
        "/api/reports/summary",
        params={"from_date": "2025-03-11", "to_date": "2025-03-25"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["total_overtime"] == "3.5"
    assert body["record_count"] == 3
    assert [row["kind"] for row in body["rows"]] == ["day", "sunday", "total"]
    assert body["rows"][1]["cells"][4] == {
        "text": "SUNDAY",
        "tags": ["emphasis", "warning"],
        "align": "left",
    }
    assert body["date_range"]["label"] == "March 11, 2025 - March 25, 2025"


def test_export_summary_pdf(client, monkeypatch):
    monkeypatch.setattr(main, "fetch_attendance_for_range", lambda date_range: [_record()])

    response = client.get(
        "/api/export/summary.pdf",
        params={"from_date": "2025-03-11", "to_date": "2025-03-25"},
    )

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/pdf"
    assert "attendance-monitoring-2025-03-11-to-2025-03-25.pdf" in response.headers["content-disposition"]
    assert response.content.startswith(b"%PDF")


def test_admin_routes_reject_staff(client):
    assert client.get("/api/admin/users").status_code == 403


def test_admin_creates_user(admin_client, monkeypatch):
    def _create(email, username, password, role):
        return {
            "id": 3,
            "email": email,
            "username": username,
            "role": role,
            "is_active": 1,
            "created_at": "2025-03-12T00:00:00+00:00",
            "updated_at": "2025-03-12T00:00:00+00:00",
            "last_login_at": None,
        }

    monkeypatch.setattr(main, "create_user", _create)

    response = admin_client.post(
        "/api/admin/users",
        json={"email": "ben@example.com", "username": "Ben", "role": "checker", "temp_password": "secret-123"},
    )

    assert response.status_code == 201
    assert response.json()["role"] == "checker"
    assert response.json()["is_active"] is True


def test_admin_create_user_rejects_bad_email(admin_client):
    response = admin_client.post(
        "/api/admin/users",
        json={"email": "not-an-email", "username": "Ben", "role": "checker", "temp_password": "secret-123"},
    )

    assert response.status_code == 400


def test_summary_report_total_includes_sunday_overtime(client, monkeypatch):
    records = [
        _record("1", "2025-03-16", overtime=5),
        _record("2", "2025-03-17", overtime=1),
    ]
    monkeypatch.setattr(main, "fetch_attendance_for_range", lambda date_range: records)

    response = client.get(
        "/api/reports/summary",
        params={"from_date": "2025-03-11", "to_date": "2025-03-25"},
    )

    body = response.json()
    assert body["rows"][0]["cells"][1]["text"] == "0.0"
    assert body["total_overtime"] == "6.0"
