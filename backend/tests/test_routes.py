"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  ZRS CRM - API Tests                                                         ║
║                                                                              ║
║  1. Bearer session resolution and admin-only guards                          ║
║  2. {success, message, data} envelope on success and on every error          ║
║  3. Purchase flow over HTTP                                                  ║
║  4. E-sign webhook is always acknowledged                                    ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from datetime import datetime, timedelta, timezone

import httpx
import pytest
import pytest_asyncio

import server
from tests.factories import ADMIN_A1, ADMIN_B1, MANAGER, REQUIRED_DOCS, seed_investor

TOKENS = {ADMIN_A1.id: "token-a1", ADMIN_B1.id: "token-b1", MANAGER.id: "token-m1"}


def auth(actor):
    return {"Authorization": f"Bearer {TOKENS[actor.id]}"}


@pytest_asyncio.fixture
async def client(seeded, collaborators):
    expires = (datetime.now(timezone.utc) + timedelta(hours=8)).isoformat()
    for actor in (ADMIN_A1, ADMIN_B1, MANAGER):
        await seeded.sessions.insert_one({
            "token": TOKENS[actor.id],
            "user_id": actor.id,
            "user_type": actor.role,
            "expires_at": expires,
        })
    server.app.state.collaborators = collaborators
    transport = httpx.ASGITransport(app=server.app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


# ==================== AUTH ====================

class TestAuth:

    @pytest.mark.asyncio
    async def test_me(self, client):
        response = await client.get("/api/auth/me", headers=auth(MANAGER))
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["role"] == "manager"
        assert data["capabilities"]["can_change_status"] is False
        assert data["capabilities"]["can_close_sale"] is True

    @pytest.mark.asyncio
    async def test_missing_token(self, client):
        response = await client.get("/api/auth/me")
        assert response.status_code == 401
        assert response.json() == {"success": False, "message": "Not authenticated"}

    @pytest.mark.asyncio
    async def test_expired_session(self, client, seeded):
        past = (datetime.now(timezone.utc) - timedelta(minutes=1)).isoformat()
        await seeded.sessions.insert_one({"token": "stale", "user_id": ADMIN_A1.id, "user_type": "admin",
                                          "expires_at": past})
        response = await client.get("/api/auth/me", headers={"Authorization": "Bearer stale"})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_logout_revokes_session(self, client):
        response = await client.post("/api/auth/logout", headers=auth(ADMIN_B1))
        assert response.json()["success"] is True
        response = await client.get("/api/auth/me", headers=auth(ADMIN_B1))
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_admin_only_routes(self, client):
        for path in ("/api/investors", "/api/sales", "/api/invoices", "/api/settings/payment-defaults"):
            response = await client.get(path, headers=auth(MANAGER))
            assert response.status_code == 403, path
            assert response.json()["success"] is False
        print("✅ manager refused on admin routes")


# ==================== ENVELOPE ====================

class TestEnvelope:

    @pytest.mark.asyncio
    async def test_business_error_envelope(self, client):
        created = await client.post("/api/purchases/leads", json={"contact_info": {"name": "Sara"}},
                                    headers=auth(MANAGER))
        lead_id = created.json()["data"]["id"]

        response = await client.put(f"/api/purchases/leads/{lead_id}/status", json={"status": "contacted"},
                                    headers=auth(MANAGER))
        assert response.status_code == 403
        assert response.json() == {
            "success": False,
            "message": "Managers cannot change lead status, they can only add notes",
        }

    @pytest.mark.asyncio
    async def test_not_found_envelope(self, client):
        response = await client.get("/api/purchases/leads/ghost", headers=auth(ADMIN_A1))
        assert response.status_code == 404
        assert response.json()["message"] == "Lead not found"

    @pytest.mark.asyncio
    async def test_validation_envelope(self, client):
        response = await client.post("/api/investors", json={"name": "No Mail"}, headers=auth(ADMIN_A1))
        assert response.status_code == 422
        body = response.json()
        assert body["success"] is False
        assert body["message"].startswith("email")
        assert body["data"]["errors"]

    @pytest.mark.asyncio
    async def test_gap_details_in_data(self, client):
        created = await client.post("/api/purchases/leads", json={}, headers=auth(ADMIN_A1))
        lead_id = created.json()["data"]["id"]
        response = await client.post(f"/api/purchases/leads/{lead_id}/submit-approval", headers=auth(ADMIN_A1))
        assert response.status_code == 400
        body = response.json()
        assert body["message"] == "Missing required document: registrationCard"
        assert len(body["data"]["missing"]) == 5


# ==================== PURCHASE FLOW ====================

class TestPurchaseFlow:

    @pytest.mark.asyncio
    async def test_lead_to_approval(self, client, seeded, collaborators):
        await seed_investor(seeded, "inv1")
        headers = auth(ADMIN_A1)

        created = await client.post("/api/purchases/leads", json={
            "type": "purchase",
            "contact_info": {"name": "Omar"},
            "vehicle_info": {"make": "Nissan", "model": "Patrol", "year": 2021},
        }, headers=headers)
        assert created.status_code == 200
        lead = created.json()["data"]
        assert created.json()["message"] == f"Lead {lead['lead_number']} created"

        for category in REQUIRED_DOCS:
            response = await client.post(f"/api/purchases/leads/{lead['id']}/attachments",
                                         json={"category": category, "url": f"https://files.test/{category}"},
                                         headers=headers)
            assert response.status_code == 200
        await client.put(f"/api/purchases/leads/{lead['id']}/price-analysis", json={
            "min_selling_price": 110000, "max_selling_price": 130000, "purchased_final_price": 100000,
        }, headers=headers)
        response = await client.put(f"/api/purchases/leads/{lead['id']}/investors",
                                    json={"allocations": [{"investor_id": "inv1", "percentage": 100}]},
                                    headers=headers)
        assert response.json()["data"]["investor_allocations"][0]["amount"] == 100000

        response = await client.post(f"/api/purchases/leads/{lead['id']}/submit-approval", headers=headers)
        assert response.json()["data"]["quorum_met"] is False

        response = await client.post(f"/api/purchases/leads/{lead['id']}/approve", headers=auth(ADMIN_B1))
        body = response.json()
        assert body["message"] == "Lead approved"
        assert body["data"]["lead"]["status"] == "approved"
        assert len(collaborators.signature.sent) == 1

        response = await client.get(f"/api/purchases/leads/{lead['id']}/purchase-order", headers=headers)
        assert response.json()["data"]["status"] == "approved"
        print("✅ lead approved over HTTP")


# ==================== SETTINGS ====================

class TestSettings:

    @pytest.mark.asyncio
    async def test_payment_defaults_roundtrip(self, client):
        response = await client.get("/api/settings/payment-defaults", headers=auth(ADMIN_A1))
        assert response.json()["data"] == {"mode_of_payment": None, "payment_received_by": None}

        response = await client.put("/api/settings/payment-defaults", headers=auth(ADMIN_A1),
                                    json={"mode_of_payment": "Bank Transfer", "payment_received_by": "Finance"})
        assert response.json()["data"]["updated_by"] == ADMIN_A1.id

        response = await client.get("/api/settings/payment-defaults", headers=auth(ADMIN_B1))
        assert response.json()["data"] == {"mode_of_payment": "Bank Transfer", "payment_received_by": "Finance"}

    @pytest.mark.asyncio
    async def test_admin_groups_rules_enforced(self, client):
        response = await client.put("/api/settings/admin-groups", headers=auth(ADMIN_A1), json={"groups": [
            {"name": "Group A", "members": [ADMIN_A1.id]},
            {"name": "Group B", "members": [ADMIN_A1.id]},
        ]})
        assert response.status_code == 400
        assert "cannot belong to both" in response.json()["message"]

        response = await client.get("/api/settings/admin-groups", headers=auth(ADMIN_A1))
        assert [g["name"] for g in response.json()["data"]] == ["Group A", "Group B"]


# ==================== WEBHOOK ====================

class TestWebhook:

    @pytest.mark.asyncio
    async def test_always_acknowledged(self, client):
        for body in (b"not json", b"[1, 2]", b'{"envelopeId": "unknown", "status": "completed"}'):
            response = await client.post("/api/webhooks/esign", content=body,
                                         headers={"Content-Type": "application/json"})
            assert response.status_code == 200
            assert response.json()["success"] is True
            assert response.json()["data"]["processed"] is False
        print("✅ webhook never fails")

    @pytest.mark.asyncio
    async def test_unknown_route_enveloped(self, client):
        response = await client.get("/api/nothing-here")
        assert response.status_code == 404
        assert response.json()["success"] is False
