from __future__ import annotations

from dataclasses import replace

from fastapi.testclient import TestClient

from app import create_app
from backend.utils.config import get_settings


def _build_test_settings(tmp_path, filename: str, access_key=None):
    get_settings.cache_clear()
    base = get_settings()
    return replace(
        base,
        database_path=tmp_path / filename,
        seed_demo_data=True,
        identity_access_key=access_key,
    )


def _login(client: TestClient, uid: str, access_key=None) -> dict[str, str]:
    response = client.post("/login", json={"uid": uid, "access_key": access_key})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


def _weekly_payload(**overrides) -> dict:
    payload = {
        "resource_id": "res-lab-a",
        "start_time": "2024-01-01T10:00:00Z",
        "end_time": "2024-01-01T12:00:00Z",
        "purpose": "Data structures lab",
        "recurrence": {"frequency": "weekly", "until": "2024-01-22"},
    }
    payload.update(overrides)
    return payload


def test_booking_end_to_end_flow(tmp_path):
    app = create_app(_build_test_settings(tmp_path, "api_flow.db"))

    with TestClient(app) as client:
        lecturer = _login(client, "lect-001")
        student = _login(client, "stud-001")
        admin = _login(client, "admin-001")

        created = client.post("/bookings", json=_weekly_payload(), headers=lecturer)
        assert created.status_code == 201, created.text
        body = created.json()
        assert body["kind"] == "recurring"
        assert len(body["occurrences"]) == 4
        assert {item["status"] for item in body["occurrences"]} == {"pending"}
        first_id = body["occurrences"][0]["occurrence_id"]

        forbidden = client.post(f"/bookings/{first_id}/approve", headers=student)
        assert forbidden.status_code == 403

        approved = client.post(f"/bookings/{first_id}/approve", headers=admin)
        assert approved.status_code == 200, approved.text
        assert approved.json()["status"] == "approved"

        clash = client.post(
            "/bookings",
            json=_weekly_payload(
                start_time="2024-01-01T11:00:00Z",
                end_time="2024-01-01T13:00:00Z",
                recurrence=None,
            ),
            headers=student,
        )
        assert clash.status_code == 409

        adjacent = client.post(
            "/bookings",
            json=_weekly_payload(
                start_time="2024-01-01T12:00:00",
                end_time="2024-01-01T13:00:00",
                recurrence=None,
            ),
            headers=student,
        )
        assert adjacent.status_code == 201, adjacent.text
        assert adjacent.json()["kind"] == "single"

        mine = client.get("/bookings", headers=lecturer)
        assert mine.status_code == 200
        assert mine.json()["count"] == 4

        everything = client.get("/bookings", headers=admin)
        assert everything.json()["count"] == 5

        hidden = client.get(f"/bookings/{first_id}", headers=student)
        assert hidden.status_code == 403

        schedule = client.get(
            "/resources/res-lab-a/schedule",
            params={"start": "2024-01-01T00:00:00Z", "end": "2024-01-02T00:00:00Z"},
            headers=student,
        )
        assert schedule.status_code == 200
        assert len(schedule.json()["occurrences"]) == 2

        inbox = client.get("/notifications", headers=lecturer)
        assert [item["title"] for item in inbox.json()] == ["Booking approved"]

        cancelled = client.post(f"/bookings/{first_id}/cancel", headers=lecturer)
        assert cancelled.status_code == 200
        assert cancelled.json()["status"] == "cancelled"

        again = client.post(f"/bookings/{first_id}/approve", headers=admin)
        assert again.status_code == 409

        stats = client.get("/dashboard/stats", headers=student)
        assert stats.status_code == 200
        assert stats.json()["total_bookings"] == 5
        assert stats.json()["pending_approvals"] == 4

        audit = client.get("/audit_logs", headers=student)
        assert audit.status_code == 403
        audit = client.get("/audit_logs", headers=admin)
        assert audit.status_code == 200
        assert any(item["action"] == "booking.cancelled" for item in audit.json())


def test_booking_requests_are_validated(tmp_path):
    app = create_app(_build_test_settings(tmp_path, "api_validation.db"))

    with TestClient(app) as client:
        lecturer = _login(client, "lect-001")

        assert client.post("/bookings", json=_weekly_payload()).status_code == 401

        reversed_range = client.post(
            "/bookings",
            json=_weekly_payload(end_time="2024-01-01T09:00:00Z", recurrence=None),
            headers=lecturer,
        )
        assert reversed_range.status_code == 400

        too_long = client.post(
            "/bookings",
            json=_weekly_payload(recurrence={"frequency": "daily", "until": "2026-01-01"}),
            headers=lecturer,
        )
        assert too_long.status_code == 400

        missing = client.post(
            "/bookings",
            json=_weekly_payload(resource_id="res-missing"),
            headers=lecturer,
        )
        assert missing.status_code == 404

        maintenance = client.post(
            "/bookings",
            json=_weekly_payload(resource_id="res-van-1"),
            headers=lecturer,
        )
        assert maintenance.status_code == 409

        unknown = client.post("/bookings/nope/approve", headers=_login(client, "admin-001"))
        assert unknown.status_code == 404


def test_resource_management_is_admin_only(tmp_path):
    app = create_app(_build_test_settings(tmp_path, "api_resources.db"))

    with TestClient(app) as client:
        lecturer = _login(client, "lect-001")
        admin = _login(client, "admin-001")
        payload = {
            "name": "Chemistry Lab",
            "resource_type": "lab",
            "location": "Block 4",
            "capacity": 24,
            "features": ["fume hoods", " "],
        }

        assert client.post("/resources", json=payload, headers=lecturer).status_code == 403

        created = client.post("/resources", json=payload, headers=admin)
        assert created.status_code == 201, created.text
        resource_id = created.json()["resource_id"]
        assert created.json()["features"] == ["fume hoods"]

        updated = client.patch(
            f"/resources/{resource_id}",
            json={"status": "maintenance"},
            headers=admin,
        )
        assert updated.status_code == 200
        assert updated.json()["status"] == "maintenance"

        labs = client.get("/resources", params={"resource_type": "lab"}, headers=lecturer)
        assert {item["name"] for item in labs.json()} == {"Computer Lab A", "Chemistry Lab"}

        assert client.delete(f"/resources/{resource_id}", headers=admin).status_code == 204
        assert client.get(f"/resources/{resource_id}", headers=lecturer).status_code == 404


def test_resource_with_active_bookings_is_not_deleted(tmp_path):
    app = create_app(_build_test_settings(tmp_path, "api_resource_in_use.db"))

    with TestClient(app) as client:
        lecturer = _login(client, "lect-001")
        admin = _login(client, "admin-001")

        created = client.post("/bookings", json=_weekly_payload(recurrence=None), headers=lecturer)
        assert created.status_code == 201, created.text

        refused = client.delete("/resources/res-lab-a", headers=admin)
        assert refused.status_code == 409
        assert "pending or approved" in refused.json()["detail"]
        assert client.get("/resources/res-lab-a", headers=lecturer).status_code == 200


def test_login_requires_configured_access_key(tmp_path):
    app = create_app(_build_test_settings(tmp_path, "api_login.db", access_key="campus-key"))

    with TestClient(app) as client:
        rejected = client.post("/login", json={"uid": "lect-001", "access_key": "wrong"})
        assert rejected.status_code == 401
        unknown = client.post("/login", json={"uid": "ghost", "access_key": "campus-key"})
        assert unknown.status_code == 401

        headers = _login(client, "lect-001", access_key="campus-key")
        profile = client.get("/users/me", headers=headers)
        assert profile.status_code == 200
        assert profile.json()["role"] == "lecturer"
