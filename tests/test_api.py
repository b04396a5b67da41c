"""
test_api.py — HTTP surface: status codes, JSON shapes and error bodies.

Run with:
    pytest tests/test_api.py -v
"""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from backend.app.core.errors import DependencyUnavailableError

from conftest import in_hours


def _headers(agency_id: str, role: str = None) -> dict:
    headers = {"X-Agency-ID": agency_id}
    if role:
        headers["X-User-Role"] = role
    return headers


def _alert_body(**overrides) -> dict:
    body = {
        "title": "Flash flood warning",
        "message": "River levels rising; avoid low-lying roads.",
        "severity": "high",
        "coordinates": [0.0, 0.0],
        "radius": 10,
        "expiresAt": in_hours(1).isoformat(),
        "recipients": [],
    }
    body.update(overrides)
    return body


async def _register(client, name: str, coordinates) -> str:
    resp = await client.post(
        "/api/v1/agencies",
        json={"name": name, "type": "Hospital", "coordinates": list(coordinates)},
    )
    assert resp.status_code == 201, resp.text
    return resp.json()["id"]


@pytest.fixture
async def agencies(client):
    creator = await _register(client, "Creator", (0.0, 0.0))
    near = await _register(client, "Near", (0.0, 0.05))
    far = await _register(client, "Far", (0.0, 5.0))
    return creator, near, far


async def _create(client, creator: str, **overrides):
    return await client.post(
        f"/api/v1/agencies/{creator}/alerts",
        json=_alert_body(**overrides),
        headers=_headers(creator),
    )


# ═══════════════════════════════════════════════════════════════════════════
# Agencies
# ═══════════════════════════════════════════════════════════════════════════

class TestAgencyEndpoints:

    async def test_register_and_get(self, client):
        agency_id = await _register(client, "Harbor Police", (80.27, 13.08))

        resp = await client.get(f"/api/v1/agencies/{agency_id}")

        assert resp.status_code == 200
        data = resp.json()
        assert data["name"] == "Harbor Police"
        assert data["agency_type"] == "Hospital"
        assert data["coordinates"] == [80.27, 13.08]

    async def test_register_invalid_is_itemised_400(self, client):
        resp = await client.post(
            "/api/v1/agencies", json={"name": "", "coordinates": [200, 0]},
        )
        assert resp.status_code == 400
        error = resp.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        fields = {e["field"] for e in error["details"]["errors"]}
        assert fields == {"name", "coordinates"}

    async def test_unknown_agency_404(self, client):
        resp = await client.get("/api/v1/agencies/missing")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "NOT_FOUND"

    async def test_nearby(self, client, agencies):
        creator, near, _ = agencies
        resp = await client.get(
            "/api/v1/agencies/nearby",
            params={"longitude": 0, "latitude": 0, "radius_km": 10},
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["count"] == 2
        assert [a["id"] for a in data["agencies"]] == [creator, near]
        assert data["agencies"][1]["distance_km"] == pytest.approx(5.56, abs=0.01)

    async def test_nearby_rejects_bad_radius(self, client):
        resp = await client.get(
            "/api/v1/agencies/nearby",
            params={"longitude": 0, "latitude": 0, "radius_km": 0},
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["details"]["errors"][0]["field"] == "radius_km"

    async def test_move_requires_membership(self, client, agencies):
        creator, near, _ = agencies
        resp = await client.patch(
            f"/api/v1/agencies/{creator}/location",
            json={"coordinates": [1.0, 1.0]},
            headers=_headers(near),
        )
        assert resp.status_code == 403

        resp = await client.patch(
            f"/api/v1/agencies/{creator}/location",
            json={"coordinates": [1.0, 1.0]},
            headers=_headers(creator),
        )
        assert resp.status_code == 200
        assert resp.json()["coordinates"] == [1.0, 1.0]


# ═══════════════════════════════════════════════════════════════════════════
# Alerts
# ═══════════════════════════════════════════════════════════════════════════

class TestCreateAlertEndpoint:

    async def test_created(self, client, agencies):
        creator, near, far = agencies

        resp = await _create(client, creator, recipients=[far])

        assert resp.status_code == 201, resp.text
        data = resp.json()
        assert set(data) >= {
            "id", "title", "message", "severity", "coordinates", "radius",
            "status", "created_by", "recipients", "read_by",
            "expires_at", "created_at", "updated_at",
        }
        assert data["status"] == "active"
        assert data["read_by"] == []
        assert data["coordinates"] == [0.0, 0.0]
        assert data["radius"] == 10.0
        assert data["created_by"] == {"id": creator, "name": "Creator"}
        assert data["recipients"] == [{"id": far, "name": "Far"}]

    async def test_itemised_validation_errors(self, client, agencies):
        creator, _, _ = agencies

        resp = await _create(
            client, creator,
            title="", severity="extreme", coordinates=[200, 0], radius=-1,
            recipients=["ghost"],
        )

        assert resp.status_code == 400
        errors = resp.json()["error"]["details"]["errors"]
        assert {e["field"] for e in errors} == {
            "title", "severity", "coordinates", "radius", "recipients",
        }
        coordinate_error = next(e for e in errors if e["field"] == "coordinates")
        assert "longitude" in coordinate_error["message"]

    async def test_missing_fields(self, client, agencies):
        creator, _, _ = agencies
        resp = await client.post(
            f"/api/v1/agencies/{creator}/alerts", json={}, headers=_headers(creator),
        )
        assert resp.status_code == 400
        fields = {e["field"] for e in resp.json()["error"]["details"]["errors"]}
        assert fields == {"title", "message", "severity", "coordinates", "radius", "expiresAt"}

    async def test_missing_actor_401(self, client, agencies):
        creator, _, _ = agencies
        resp = await client.post(f"/api/v1/agencies/{creator}/alerts", json=_alert_body())
        assert resp.status_code == 401

    async def test_other_agency_403(self, client, agencies):
        creator, near, _ = agencies
        resp = await client.post(
            f"/api/v1/agencies/{creator}/alerts", json=_alert_body(), headers=_headers(near),
        )
        assert resp.status_code == 403

    async def test_unknown_creator_404(self, client):
        resp = await _create(client, "missing")
        assert resp.status_code == 404

    async def test_distribution_failure_still_201(self, client, agencies):
        creator, near, _ = agencies
        failing = AsyncMock(side_effect=DependencyUnavailableError("agency_directory", "timeout"))

        with patch("backend.app.alerts.distribution.find_nearby", failing):
            resp = await _create(client, creator)

        assert resp.status_code == 201
        alert_id = resp.json()["id"]
        assert (await client.get(f"/api/v1/alerts/{alert_id}")).status_code == 200

        count = await client.get(f"/api/v1/agencies/{near}/alerts/unread-count")
        assert count.json()["count"] == 0

        resp = await client.post(
            f"/api/v1/alerts/{alert_id}/redistribute", headers=_headers(creator),
        )
        assert resp.status_code == 200
        assert resp.json()["succeeded"] is True
        assert resp.json()["recipient_count"] == 1

        count = await client.get(f"/api/v1/agencies/{near}/alerts/unread-count")
        assert count.json() == {"agency_id": near, "count": 1}


class TestAgencyAlertViews:

    async def test_inbox_unread_read_cycle(self, client, agencies):
        creator, near, far = agencies
        alert_id = (await _create(client, creator)).json()["id"]

        inbox = (await client.get(f"/api/v1/agencies/{near}/alerts")).json()
        assert inbox["count"] == 1
        assert inbox["alerts"][0]["id"] == alert_id
        assert (await client.get(f"/api/v1/agencies/{far}/alerts")).json()["count"] == 0

        unread = await client.get(f"/api/v1/agencies/{near}/alerts/unread-count")
        assert unread.json() == {"agency_id": near, "count": 1}

        for _ in range(2):
            resp = await client.patch(f"/api/v1/alerts/{alert_id}/read", headers=_headers(near))
            assert resp.status_code == 200
        assert resp.json()["read_by"] == [near]

        unread = await client.get(f"/api/v1/agencies/{near}/alerts/unread-count")
        assert unread.json()["count"] == 0

    async def test_severity_filter(self, client, agencies):
        creator, near, _ = agencies
        await _create(client, creator, severity="low")
        await _create(client, creator, severity="critical")

        resp = await client.get(
            f"/api/v1/agencies/{near}/alerts", params={"severity": "critical"},
        )

        assert resp.status_code == 200
        assert [a["severity"] for a in resp.json()["alerts"]] == ["critical"]

    async def test_invalid_severity_filter(self, client, agencies):
        _, near, _ = agencies
        resp = await client.get(f"/api/v1/agencies/{near}/alerts", params={"severity": "x"})
        assert resp.status_code == 400

    async def test_sent_requires_membership(self, client, agencies):
        creator, near, _ = agencies
        await _create(client, creator)

        resp = await client.get(f"/api/v1/agencies/{creator}/alerts/sent", headers=_headers(near))
        assert resp.status_code == 403

        resp = await client.get(f"/api/v1/agencies/{creator}/alerts/sent", headers=_headers(creator))
        assert resp.status_code == 200
        assert resp.json()["count"] == 1

        resp = await client.get(
            f"/api/v1/agencies/{creator}/alerts/sent", headers=_headers("ops", role="Admin"),
        )
        assert resp.status_code == 200


class TestAlertEndpoints:

    async def test_get_unknown_404(self, client):
        resp = await client.get("/api/v1/alerts/missing")
        assert resp.status_code == 404

    async def test_read_requires_actor(self, client, agencies):
        creator, _, _ = agencies
        alert_id = (await _create(client, creator)).json()["id"]
        resp = await client.patch(f"/api/v1/alerts/{alert_id}/read")
        assert resp.status_code == 401

    async def test_deactivate(self, client, agencies):
        creator, near, _ = agencies
        alert_id = (await _create(client, creator)).json()["id"]

        resp = await client.patch(f"/api/v1/alerts/{alert_id}/deactivate", headers=_headers(near))
        assert resp.status_code == 403
        assert (await client.get(f"/api/v1/alerts/{alert_id}")).json()["status"] == "active"

        resp = await client.patch(f"/api/v1/alerts/{alert_id}/deactivate", headers=_headers(creator))
        assert resp.status_code == 200
        assert resp.json() == {
            "alert_id": alert_id, "status": "inactive", "message": "Alert deactivated",
        }
        assert (await client.get(f"/api/v1/agencies/{near}/alerts")).json()["count"] == 0

    async def test_redistribute_forbidden(self, client, agencies):
        creator, near, _ = agencies
        alert_id = (await _create(client, creator)).json()["id"]
        resp = await client.post(f"/api/v1/alerts/{alert_id}/redistribute", headers=_headers(near))
        assert resp.status_code == 403


class TestServiceEndpoints:

    async def test_root(self, client):
        resp = await client.get("/")
        assert resp.status_code == 200
        assert resp.json()["service"] == "RescueConnect"

    async def test_liveness(self, client):
        resp = await client.get("/health/live")
        assert resp.json() == {"status": "alive"}

    async def test_health(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "healthy"
        assert {c["name"] for c in data["components"]} == {"database", "expiry_reaper"}

    async def test_readiness(self, client):
        resp = await client.get("/health/ready")
        assert resp.status_code == 200
