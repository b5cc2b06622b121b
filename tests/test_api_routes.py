"""
tests/test_api_routes.py — FastAPI Route Integration Tests
============================================================
Public leaderboard / user reads and the JWT-guarded admin configuration
routes, exercised through the FastAPI TestClient against SQLite.
"""

from __future__ import annotations

import asyncio

import pytest

from conftest import make_admin_token

GUILD = 1001


def run_async(coro):
    """Helper to run an async function in sync tests."""
    return asyncio.get_event_loop_policy().new_event_loop().run_until_complete(coro)


@pytest.fixture
def non_admin_token():
    return make_admin_token(sub="67890", is_admin=False)


def _auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


# ===========================================================================
# Health endpoint
# ===========================================================================
class TestHealthEndpoint:
    def test_health_returns_ok(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}


# ===========================================================================
# Public reads
# ===========================================================================
class TestPublicRoutes:
    def test_empty_leaderboard(self, client):
        resp = client.get(f"/api/guilds/{GUILD}/leaderboard")
        assert resp.status_code == 200
        assert resp.json() == {"guild_id": str(GUILD), "entries": []}

    def test_leaderboard_entries(self, client, api_services):
        run_async(api_services.ledger.grant_experience(GUILD, 1, 100))
        run_async(api_services.ledger.grant_experience(GUILD, 2, 400))

        resp = client.get(f"/api/guilds/{GUILD}/leaderboard", params={"limit": 1})

        [entry] = resp.json()["entries"]
        assert entry["position"] == 1
        assert entry["user_id"] == "2"
        assert entry["level"] == 4

    def test_user_profile(self, client, api_services):
        run_async(api_services.ledger.grant_experience(GUILD, 1, 160))

        resp = client.get(f"/api/guilds/{GUILD}/users/1")

        body = resp.json()
        assert resp.status_code == 200
        assert (body["xp"], body["level"], body["rank"]) == (160, 1, 1)
        assert body["next_level_xp"] == 220
        assert body["xp_to_next_level"] == 60


# ===========================================================================
# Admin auth guard
# ===========================================================================
class TestAdminAuth:
    ENDPOINT = f"/api/admin/guilds/{GUILD}/config"

    def test_rejects_no_auth(self, client):
        assert client.get(self.ENDPOINT).status_code == 401

    def test_rejects_invalid_token(self, client):
        assert client.get(self.ENDPOINT, headers=_auth("not-a-jwt")).status_code == 401

    def test_rejects_non_admin(self, client, non_admin_token):
        assert client.get(self.ENDPOINT, headers=_auth(non_admin_token)).status_code == 403


# ===========================================================================
# Admin configuration
# ===========================================================================
class TestAdminConfig:
    ENDPOINT = f"/api/admin/guilds/{GUILD}/config"

    def test_get_defaults(self, client, admin_token):
        resp = client.get(self.ENDPOINT, headers=_auth(admin_token))
        body = resp.json()
        assert resp.status_code == 200
        assert body["settings"]["xp_per_message"] == 15
        assert set(body["provenance"].values()) == {"default"}

    def test_patch_updates_and_reports_provenance(self, client, admin_token):
        resp = client.patch(
            self.ENDPOINT,
            headers=_auth(admin_token),
            json={"xp_per_message": 25, "level_role_rewards": {"5": "123"}},
        )
        body = resp.json()
        assert resp.status_code == 200
        assert body["settings"]["xp_per_message"] == 25
        assert body["settings"]["level_role_rewards"] == {"5": "123"}
        assert body["provenance"]["xp_per_message"] == "override"

    def test_patch_invalid_strategy_falls_back(self, client, admin_token):
        resp = client.patch(
            self.ENDPOINT, headers=_auth(admin_token),
            json={"role_removal_strategy": "nuke_everything"},
        )
        assert resp.status_code == 200
        assert resp.json()["settings"]["role_removal_strategy"] == "keep_all"

    def test_patch_unknown_field_rejected(self, client, admin_token):
        resp = client.patch(self.ENDPOINT, headers=_auth(admin_token), json={"xp_per_emoji": 3})
        assert resp.status_code == 422

    def test_patch_bad_id_rejected(self, client, admin_token):
        resp = client.patch(
            self.ENDPOINT, headers=_auth(admin_token), json={"ignored_role_ids": ["abc"]},
        )
        assert resp.status_code == 422

    def test_delete_reverts(self, client, admin_token):
        client.patch(self.ENDPOINT, headers=_auth(admin_token), json={"xp_per_message": 25})

        resp = client.delete(self.ENDPOINT, headers=_auth(admin_token))
        assert resp.json() == {"deleted": True}

        body = client.get(self.ENDPOINT, headers=_auth(admin_token)).json()
        assert body["settings"]["xp_per_message"] == 15


# ===========================================================================
# Admin resets
# ===========================================================================
class TestAdminReset:
    ENDPOINT = f"/api/admin/guilds/{GUILD}/reset"

    def test_reset_user(self, client, admin_token, api_services):
        run_async(api_services.ledger.grant_experience(GUILD, 1, 100))

        resp = client.post(self.ENDPOINT, headers=_auth(admin_token), json={"user_id": "1"})

        assert resp.json() == {"reset": "user", "user_id": "1", "existed": True}
        assert client.get(f"/api/guilds/{GUILD}/users/1").json()["xp"] == 0

    def test_reset_server(self, client, admin_token, api_services):
        run_async(api_services.ledger.grant_experience(GUILD, 1, 100))
        run_async(api_services.ledger.grant_experience(GUILD, 2, 100))

        resp = client.post(self.ENDPOINT, headers=_auth(admin_token), json={})

        assert resp.json() == {"reset": "server", "deleted": 2}

    def test_reset_rejects_bad_user_id(self, client, admin_token):
        resp = client.post(self.ENDPOINT, headers=_auth(admin_token), json={"user_id": "me"})
        assert resp.status_code == 422
