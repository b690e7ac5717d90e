"""Tests for REST API endpoints."""

from datetime import timedelta

import pytest

from medidispatch.auth import create_access_token
from medidispatch.main import app
from medidispatch.services.jurisdiction import LocationResolver, get_directory, get_location_resolver

NEW_REQUEST = {
    "pickup_address": "14 Residency Road, Bangalore Urban, Karnataka",
    "destination_address": "St. John's Hospital",
    "emergency_type": "Road accident",
    "customer_condition": "Leg injury, bleeding",
    "contact_number": "+91-98450-12345",
    "priority": "high",
}


@pytest.fixture
async def cast(make_user, make_hospital):
    return {
        "customer": await make_user("customer", full_name="Asha Rao", phone="+91-98450-00001"),
        "staff": await make_user("staff", full_name="Ravi Kumar"),
        "admin": await make_user("admin", admin_type="system"),
        "ka_admin": await make_user("admin", admin_type="state", state="Karnataka"),
        "hospital": await make_hospital("St. John's Medical College Hospital"),
    }


async def create(async_client, headers, user, **overrides):
    resp = await async_client.post("/api/ambulance", json={**NEW_REQUEST, **overrides}, headers=headers(user))
    assert resp.status_code == 201, resp.text
    return resp.json()["request_id"]


async def test_health(async_client):
    resp = await async_client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


# --- Authentication ---


class TestAuth:
    async def test_missing_token(self, async_client):
        resp = await async_client.get("/api/ambulance")
        assert resp.status_code == 401
        assert resp.json() == {"error": "Access token required"}

    async def test_garbage_token(self, async_client):
        resp = await async_client.get("/api/ambulance", headers={"Authorization": "Bearer not-a-jwt"})
        assert resp.status_code == 401
        assert "error" in resp.json()

    async def test_expired_token(self, async_client, cast):
        token = create_access_token(cast["staff"].id, "staff", expires_delta=timedelta(minutes=-5))
        resp = await async_client.get("/api/ambulance", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401
        assert "expired" in resp.json()["error"]

    async def test_deleted_user(self, async_client, db, cast, headers):
        await db.execute("DELETE FROM users WHERE id = ?", (cast["staff"].id,))
        await db.commit()
        resp = await async_client.get("/api/ambulance", headers=headers(cast["staff"]))
        assert resp.status_code == 401

    async def test_suspended_user(self, async_client, make_user, headers):
        user = await make_user("staff", status="suspended")
        resp = await async_client.get("/api/ambulance", headers=headers(user))
        assert resp.status_code == 403
        assert "suspended" in resp.json()["error"]

    async def test_role_comes_from_database(self, async_client, cast):
        # Token claims admin, row says customer
        token = create_access_token(cast["customer"].id, "admin")
        resp = await async_client.get("/api/ambulance", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 403
        assert resp.json() == {"error": "Access denied"}


# --- Creation ---


class TestCreate:
    async def test_round_trip_through_customer_list(self, async_client, cast, headers):
        request_id = await create(async_client, headers, cast["customer"])

        resp = await async_client.get("/api/ambulance/customer", headers=headers(cast["customer"]))
        assert resp.status_code == 200
        data = resp.json()
        assert data["total"] == 1
        record = data["requests"][0]
        assert record["id"] == request_id
        assert record["status"] == "pending"
        for field, value in NEW_REQUEST.items():
            assert record[field] == value
        assert record["patient_name"] == "Asha Rao"
        assert record["customer_state"] == "Karnataka"

    async def test_coordinates_with_geocoding_unavailable(self, async_client, db, cast, headers):
        request_id = await create(async_client, headers, cast["customer"], pickup_address="12.9716,77.5946")

        row = await db.fetch_one("SELECT * FROM ambulance_requests WHERE id = ?", (request_id,))
        assert row["status"] == "pending"
        assert row["created_at"]
        assert row["customer_state"] is None
        assert row["customer_district"] is None

        admin_inbox = await async_client.get("/api/notifications", headers=headers(cast["admin"]))
        assert admin_inbox.json()["total"] == 1
        state_inbox = await async_client.get("/api/notifications", headers=headers(cast["ka_admin"]))
        assert state_inbox.json()["total"] == 0

    async def test_resolver_can_be_overridden(self, async_client, db, cast, headers):
        async def geocoder(lat, lng):
            return "MG Road, Bangalore Urban, Karnataka, India"

        app.dependency_overrides[get_location_resolver] = lambda: LocationResolver(get_directory(), geocoder)
        try:
            request_id = await create(async_client, headers, cast["customer"], pickup_address="12.9716,77.5946")
        finally:
            app.dependency_overrides.pop(get_location_resolver, None)

        row = await db.fetch_one("SELECT customer_state FROM ambulance_requests WHERE id = ?", (request_id,))
        assert row["customer_state"] == "Karnataka"
        state_inbox = await async_client.get("/api/notifications", headers=headers(cast["ka_admin"]))
        assert state_inbox.json()["total"] == 1

    async def test_missing_fields(self, async_client, cast, headers):
        resp = await async_client.post(
            "/api/ambulance",
            json={"pickup_address": "MG Road", "emergency_type": "Fall"},
            headers=headers(cast["customer"]),
        )
        assert resp.status_code == 400
        assert "contact_number" in resp.json()["error"]

    async def test_invalid_priority(self, async_client, cast, headers):
        resp = await async_client.post(
            "/api/ambulance",
            json={**NEW_REQUEST, "priority": "urgent"},
            headers=headers(cast["customer"]),
        )
        assert resp.status_code == 400
        assert "priority" in resp.json()["error"]

    async def test_staff_cannot_create(self, async_client, cast, headers):
        resp = await async_client.post("/api/ambulance", json=NEW_REQUEST, headers=headers(cast["staff"]))
        assert resp.status_code == 403


# --- Staff flow ---


class TestStaffFlow:
    async def test_assign_then_complete(self, async_client, cast, headers):
        request_id = await create(async_client, headers, cast["customer"])

        resp = await async_client.post(f"/api/ambulance/{request_id}/assign", headers=headers(cast["staff"]))
        assert resp.status_code == 200

        resp = await async_client.put(
            f"/api/ambulance/{request_id}/status",
            json={"status": "on_the_way", "notes": "Leaving depot"},
            headers=headers(cast["staff"]),
        )
        assert resp.status_code == 200

        listing = await async_client.get("/api/ambulance", headers=headers(cast["staff"]))
        record = listing.json()["requests"][0]
        assert record["status"] == "on_the_way"
        assert record["assigned_staff_name"] == "Ravi Kumar"
        assert record["notes"] == "Leaving depot"

    async def test_double_assign_conflict(self, async_client, cast, make_user, headers):
        request_id = await create(async_client, headers, cast["customer"])
        other = await make_user("staff")
        first = await async_client.post(f"/api/ambulance/{request_id}/assign", headers=headers(cast["staff"]))
        second = await async_client.post(f"/api/ambulance/{request_id}/assign", headers=headers(other))
        assert first.status_code == 200
        assert second.status_code == 409
        assert "already assigned" in second.json()["error"]

    async def test_invalid_status_rejected(self, async_client, db, cast, headers):
        request_id = await create(async_client, headers, cast["customer"])
        resp = await async_client.put(
            f"/api/ambulance/{request_id}/status",
            json={"status": "hospital_accepted"},
            headers=headers(cast["admin"]),
        )
        assert resp.status_code == 400
        row = await db.fetch_one("SELECT status FROM ambulance_requests WHERE id = ?", (request_id,))
        assert row["status"] == "pending"

    async def test_unknown_request(self, async_client, cast, headers):
        resp = await async_client.post("/api/ambulance/4242/assign", headers=headers(cast["staff"]))
        assert resp.status_code == 404
        assert resp.json() == {"error": "Ambulance request not found"}

    async def test_non_numeric_id(self, async_client, cast, headers):
        resp = await async_client.post("/api/ambulance/abc/assign", headers=headers(cast["staff"]))
        assert resp.status_code == 400

    async def test_unread_filter(self, async_client, cast, headers):
        first = await create(async_client, headers, cast["customer"])
        second = await create(async_client, headers, cast["customer"])
        resp = await async_client.post(f"/api/ambulance/{first}/mark-read", headers=headers(cast["admin"]))
        assert resp.status_code == 200

        resp = await async_client.get("/api/ambulance?unread_only=true", headers=headers(cast["admin"]))
        assert [r["id"] for r in resp.json()["requests"]] == [second]


# --- Hospital flow ---


class TestHospitalFlow:
    async def test_forward_reject_scenario(self, async_client, cast, headers):
        request_id = await create(async_client, headers, cast["customer"])

        resp = await async_client.post(
            f"/api/ambulance/{request_id}/forward-to-hospital",
            json={"hospital_user_id": cast["hospital"].id},
            headers=headers(cast["admin"]),
        )
        assert resp.status_code == 200

        resp = await async_client.post(
            f"/api/ambulance/{request_id}/hospital-response",
            json={"response": "rejected", "notes": "no beds"},
            headers=headers(cast["hospital"]),
        )
        assert resp.status_code == 200
        assert resp.json() == {"message": "Request rejected successfully"}

        forwarded = await async_client.get(
            "/api/ambulance/hospital/forwarded-requests", headers=headers(cast["hospital"])
        )
        record = forwarded.json()["requests"][0]
        assert record["id"] == request_id
        assert record["status"] == "hospital_rejected"
        assert record["hospital_response_notes"] == "no beds"
        assert record["forwarded_hospital_name"] == "St. John's Medical College Hospital"

        customer_inbox = (await async_client.get("/api/notifications", headers=headers(cast["customer"]))).json()
        messages = [n["message"] for n in customer_inbox["notifications"]]
        assert messages[0] == "Your ambulance request has been rejected by the hospital"

        expected = f"Hospital has rejected ambulance request #{request_id}"
        for admin in ("admin", "ka_admin"):
            inbox = (await async_client.get("/api/notifications", headers=headers(cast[admin]))).json()
            assert expected in [n["message"] for n in inbox["notifications"]]

    async def test_other_hospital_response_not_found(self, async_client, cast, make_hospital, headers):
        request_id = await create(async_client, headers, cast["customer"])
        await async_client.post(
            f"/api/ambulance/{request_id}/forward-to-hospital",
            json={"hospital_user_id": cast["hospital"].id},
            headers=headers(cast["admin"]),
        )
        other = await make_hospital("Other Hospital")
        resp = await async_client.post(
            f"/api/ambulance/{request_id}/hospital-response",
            json={"response": "accepted"},
            headers=headers(other),
        )
        assert resp.status_code == 404

    async def test_forward_requires_hospital_id(self, async_client, cast, headers):
        request_id = await create(async_client, headers, cast["customer"])
        resp = await async_client.post(
            f"/api/ambulance/{request_id}/forward-to-hospital", json={}, headers=headers(cast["admin"])
        )
        assert resp.status_code == 400

    async def test_assign_ambulance_and_park(self, async_client, cast, make_ambulance, headers):
        ambulance_id = await make_ambulance(cast["hospital"].id, "KA-01-AB-1001")
        request_id = await create(async_client, headers, cast["customer"])
        await async_client.post(
            f"/api/ambulance/{request_id}/forward-to-hospital",
            json={"hospital_user_id": cast["hospital"].id},
            headers=headers(cast["admin"]),
        )

        resp = await async_client.post(
            f"/api/hospital/ambulances/{ambulance_id}/assign/{request_id}", headers=headers(cast["hospital"])
        )
        assert resp.status_code == 200

        fleet = (await async_client.get("/api/hospital/ambulances", headers=headers(cast["hospital"]))).json()
        unit = fleet["ambulances"][0]
        assert unit["status"] == "assigned"
        assert unit["assigned_request_id"] == request_id
        assert unit["patient_name"] == "Asha Rao"
        assert unit["emergency_type"] == "Road accident"

        mine = (await async_client.get("/api/ambulance/customer", headers=headers(cast["customer"]))).json()
        record = mine["requests"][0]
        assert record["status"] == "hospital_accepted"
        assert record["ambulance_registration"] == "KA-01-AB-1001"

        resp = await async_client.post(
            f"/api/hospital/ambulances/{ambulance_id}/park", headers=headers(cast["hospital"])
        )
        assert resp.status_code == 200
        available = (
            await async_client.get("/api/hospital/ambulances/available", headers=headers(cast["hospital"]))
        ).json()
        assert [a["id"] for a in available["ambulances"]] == [ambulance_id]

    async def test_hospitals_by_state(self, async_client, cast, headers):
        resp = await async_client.get("/api/hospitals/by-state/Karnataka", headers=headers(cast["admin"]))
        assert resp.status_code == 200
        data = resp.json()
        assert data["total"] == 1
        assert data["hospitals"][0]["user_id"] == cast["hospital"].id
        assert data["hospitals"][0]["name"] == "St. John's Medical College Hospital"

        resp = await async_client.get("/api/hospitals/by-state/Karnataka", headers=headers(cast["staff"]))
        assert resp.status_code == 403


# --- Notifications ---


class TestNotificationEndpoints:
    async def test_mark_read_and_mark_all(self, async_client, cast, headers):
        await create(async_client, headers, cast["customer"])
        await create(async_client, headers, cast["customer"])

        inbox = (await async_client.get("/api/notifications", headers=headers(cast["admin"]))).json()
        assert inbox["unread_count"] == 2
        first_id = inbox["notifications"][0]["id"]

        resp = await async_client.post(f"/api/notifications/{first_id}/read", headers=headers(cast["admin"]))
        assert resp.status_code == 200
        inbox = (await async_client.get("/api/notifications", headers=headers(cast["admin"]))).json()
        assert inbox["unread_count"] == 1

        resp = await async_client.post("/api/notifications/mark-all-read", headers=headers(cast["admin"]))
        assert resp.json() == {"message": "1 notification(s) marked as read"}

    async def test_cannot_read_others(self, async_client, cast, headers):
        await create(async_client, headers, cast["customer"])
        inbox = (await async_client.get("/api/notifications", headers=headers(cast["admin"]))).json()
        nid = inbox["notifications"][0]["id"]
        resp = await async_client.post(f"/api/notifications/{nid}/read", headers=headers(cast["customer"]))
        assert resp.status_code == 404
