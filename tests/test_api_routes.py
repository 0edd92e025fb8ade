"""
tests/test_api_routes.py — FastAPI Route Integration Tests
===========================================================
Drives the HTTP adapter with TestClient against the in-memory SQLite
engine (dependency overrides, no lifespan).

These tests verify:
- Auth guards on member and admin endpoints
- Award / spend / history / badges round trips
- Admin catalogue CRUD refreshing the in-process catalog
- Reconciliation and per-user admin reports
"""

from __future__ import annotations

import jwt
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from kudos.api.deps import JWT_ALGORITHM, JWT_SECRET, get_catalog, get_config, get_engine
from kudos.api.main import app
from kudos.config import KudosConfig
from kudos.services.balance_service import set_balance


@pytest.fixture
def client(engine, catalog):
    """TestClient wired to the seeded SQLite engine and catalog."""
    app.dependency_overrides[get_engine] = lambda: engine
    app.dependency_overrides[get_catalog] = lambda: catalog
    app.dependency_overrides[get_config] = lambda: KudosConfig(
        community_name="Test Community", dashboard_port=8000,
    )
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


def make_token(sub: str) -> str:
    return jwt.encode({"sub": sub, "is_admin": False}, JWT_SECRET, algorithm=JWT_ALGORITHM)


def _auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


# ===========================================================================
# Health & auth guards
# ===========================================================================
class TestHealthEndpoint:
    def test_health_returns_ok(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}


class TestAuthGuards:
    MEMBER_GET_ENDPOINTS = [
        "/api/points/me",
        "/api/points/me/history",
        "/api/notifications",
    ]

    ADMIN_GET_ENDPOINTS = [
        "/api/admin/rules",
        "/api/admin/aliases",
        "/api/admin/badges",
        "/api/admin/audit",
        "/api/admin/users/u1/points-history",
        "/api/admin/users/u1/badges",
    ]

    @pytest.mark.parametrize("endpoint", MEMBER_GET_ENDPOINTS)
    def test_member_rejects_no_auth(self, client, endpoint):
        assert client.get(endpoint).status_code == 401

    @pytest.mark.parametrize("endpoint", ADMIN_GET_ENDPOINTS)
    def test_admin_rejects_invalid_token(self, client, endpoint):
        resp = client.get(endpoint, headers={"Authorization": "Bearer invalid"})
        assert resp.status_code == 401

    @pytest.mark.parametrize("endpoint", ADMIN_GET_ENDPOINTS)
    def test_admin_rejects_non_admin(self, client, user_token, endpoint):
        assert client.get(endpoint, headers=_auth(user_token)).status_code == 403

    def test_award_rejects_no_auth(self, client):
        resp = client.post("/api/points/award", json={"action_name": "new_post"})
        assert resp.status_code == 401


# ===========================================================================
# Member endpoints
# ===========================================================================
class TestAward:
    def test_award_self(self, client, user_token):
        resp = client.post(
            "/api/points/award", json={"action_name": "new_post"}, headers=_auth(user_token),
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["points"] == 10
        assert body["balance"] == 10

    def test_engine_outcomes_are_200(self, client, user_token):
        resp = client.post(
            "/api/points/award", json={"action_name": "teleport"}, headers=_auth(user_token),
        )
        assert resp.status_code == 200
        assert resp.json()["error"] == "rule_not_found_or_disabled"

    def test_repeat_reports_already_awarded(self, client, user_token):
        body = {"action_name": "like_post", "related_id": "p1"}
        client.post("/api/points/award", json=body, headers=_auth(user_token))
        resp = client.post("/api/points/award", json=body, headers=_auth(user_token))
        assert resp.json()["already_awarded"] is True

    def test_member_cannot_award_others(self, client, user_token):
        resp = client.post(
            "/api/points/award",
            json={"action_name": "new_post", "user_id": "someone-else"},
            headers=_auth(user_token),
        )
        assert resp.status_code == 403

    def test_admin_can_award_others(self, client, admin_token):
        resp = client.post(
            "/api/points/award",
            json={"action_name": "new_post", "user_id": "u9"},
            headers=_auth(admin_token),
        )
        assert resp.json()["success"] is True


class TestMemberReads:
    def test_me_history_and_notifications(self, client, user_token):
        client.post("/api/points/award", json={"action_name": "new_post"}, headers=_auth(user_token))

        me = client.get("/api/points/me", headers=_auth(user_token)).json()
        assert me["points"] == 10
        assert me["rank"] == 1
        assert [b["name"] for b in me["badges"]] == ["Newcomer"]
        assert me["highest_badge"] == "Newcomer"

        history = client.get("/api/points/me/history", headers=_auth(user_token)).json()
        assert [e["action_name"] for e in history["entries"]] == ["new_post"]

        notes = client.get("/api/notifications", headers=_auth(user_token)).json()
        assert len(notes["notifications"]) == 1

    def test_unknown_user_has_no_rank(self, client):
        me = client.get("/api/points/me", headers=_auth(make_token("fresh"))).json()
        assert me == {
            "user_id": "fresh", "points": 0, "rank": None,
            "badges": [], "highest_badge": None,
        }

    def test_public_badges(self, client):
        badges = client.get("/api/badges").json()["badges"]
        assert [b["name"] for b in badges][:2] == ["Newcomer", "Contributor"]

    def test_spend(self, client, user_token):
        client.post(
            "/api/points/award", json={"action_name": "complete_profile"},
            headers=_auth(user_token),
        )
        resp = client.post(
            "/api/points/spend", json={"amount": 15, "reason": "hoodie"},
            headers=_auth(user_token),
        )
        assert resp.json()["balance"] == 5

        resp = client.post("/api/points/spend", json={"amount": 50}, headers=_auth(user_token))
        assert resp.json()["error"] == "insufficient_points"

    def test_spend_rejects_non_positive(self, client, user_token):
        resp = client.post("/api/points/spend", json={"amount": 0}, headers=_auth(user_token))
        assert resp.status_code == 422


# ===========================================================================
# Admin endpoints
# ===========================================================================
class TestAdminCatalog:
    def test_rule_crud_refreshes_catalog(self, client, admin_token, user_token):
        resp = client.post(
            "/api/admin/rules",
            json={"name": "Share_Post", "points": 4, "limit_policy": "once_per_related_target"},
            headers=_auth(admin_token),
        )
        assert resp.status_code == 201
        rule_id = resp.json()["id"]

        award = client.post(
            "/api/points/award",
            json={"action_name": "share_post", "related_id": "p1"},
            headers=_auth(user_token),
        ).json()
        assert award["points"] == 4

        resp = client.patch(
            f"/api/admin/rules/{rule_id}", json={"enabled": False}, headers=_auth(admin_token),
        )
        assert resp.json()["enabled"] is False
        award = client.post(
            "/api/points/award",
            json={"action_name": "share_post", "related_id": "p2"},
            headers=_auth(user_token),
        ).json()
        assert award["error"] == "rule_not_found_or_disabled"

        assert client.delete(
            f"/api/admin/rules/{rule_id}", headers=_auth(admin_token),
        ).json() == {"deleted": True}

    def test_invalid_rule_is_400(self, client, admin_token):
        resp = client.post(
            "/api/admin/rules",
            json={"name": "x", "points": 1, "limit_policy": "hourly"},
            headers=_auth(admin_token),
        )
        assert resp.status_code == 400

    def test_update_with_no_fields_is_400(self, client, admin_token):
        assert client.patch(
            "/api/admin/rules/1", json={}, headers=_auth(admin_token),
        ).status_code == 400

    def test_update_missing_rule_is_404(self, client, admin_token):
        assert client.patch(
            "/api/admin/rules/9999", json={"points": 1}, headers=_auth(admin_token),
        ).status_code == 404

    def test_alias_crud(self, client, admin_token, user_token):
        resp = client.post(
            "/api/admin/aliases",
            json={"alias": "Posted", "canonical_name": "new_post"},
            headers=_auth(admin_token),
        )
        assert resp.status_code == 201
        award = client.post(
            "/api/points/award", json={"action_name": "posted"}, headers=_auth(user_token),
        ).json()
        assert award["action_name"] == "new_post"

        assert client.delete("/api/admin/aliases/posted", headers=_auth(admin_token)).status_code == 200
        assert client.delete("/api/admin/aliases/posted", headers=_auth(admin_token)).status_code == 404

    def test_badge_crud(self, client, admin_token):
        resp = client.post(
            "/api/admin/badges",
            json={"name": "Mentor", "points_threshold": 5, "display_order": 0},
            headers=_auth(admin_token),
        )
        badge_id = resp.json()["id"]
        public = [b["name"] for b in client.get("/api/badges").json()["badges"]]
        assert public[0] == "Mentor"

        client.patch(
            f"/api/admin/badges/{badge_id}", json={"is_active": False}, headers=_auth(admin_token),
        )
        public = [b["name"] for b in client.get("/api/badges").json()["badges"]]
        assert "Mentor" not in public

        assert client.delete(
            f"/api/admin/badges/{badge_id}", headers=_auth(admin_token),
        ).status_code == 200


class TestAdminReconcileAndReports:
    def test_sync_single_user(self, client, engine, admin_token, user_token):
        client.post("/api/points/award", json={"action_name": "new_post"}, headers=_auth(user_token))
        with Session(engine) as session:
            set_balance(session, "user-1", 500)
            session.commit()

        body = client.post(
            "/api/admin/sync-points", json={"user_id": "user-1"}, headers=_auth(admin_token),
        ).json()
        assert body["corrected"] is True
        assert body["new_balance"] == 10

    def test_sync_all_with_ensure_rules(self, client, admin_token, user_token):
        client.post("/api/points/award", json={"action_name": "new_post"}, headers=_auth(user_token))
        body = client.post(
            "/api/admin/sync-points",
            json={"sync_all": True, "ensure_rules": True},
            headers=_auth(admin_token),
        ).json()
        assert body["seeded"] == {"rules": 0, "aliases": 0, "badges": 0}
        assert body["checked"] == 1
        assert body["corrected"] == 0

    def test_sync_requires_target(self, client, admin_token):
        assert client.post(
            "/api/admin/sync-points", json={}, headers=_auth(admin_token),
        ).status_code == 400

    def test_user_history_and_badge_grant(self, client, admin_token, catalog):
        client.post(
            "/api/points/award",
            json={"action_name": "new_post", "user_id": "u5"},
            headers=_auth(admin_token),
        )
        history = client.get(
            "/api/admin/users/u5/points-history", headers=_auth(admin_token),
        ).json()
        assert history["entries"][0]["points"] == 10

        legend = next(b.id for b in catalog.get_active_badges() if b.name == "Legend")
        resp = client.post(
            "/api/admin/users/u5/badges", json={"badge_id": legend}, headers=_auth(admin_token),
        )
        assert resp.json()["success"] is True
        again = client.post(
            "/api/admin/users/u5/badges", json={"badge_id": legend}, headers=_auth(admin_token),
        )
        assert again.status_code == 400

        badges = client.get("/api/admin/users/u5/badges", headers=_auth(admin_token)).json()
        assert {b["name"] for b in badges["badges"]} == {"Newcomer", "Legend"}
        assert client.get("/api/admin/audit", headers=_auth(admin_token)).json()["entries"]
