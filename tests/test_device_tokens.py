"""
tests/test_device_tokens.py -- Issue, list and revoke device tokens.

Covers:
  - The raw token is returned once; listings only show an 8 char preview
  - Only the SHA-256 HMAC of the token is stored
  - Non-admin caretakers get 403
  - System administrator tokens bind to the family's system caretaker
  - Revocation is family-scoped and soft (row stays, isActive flips)
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from auth.tokens import hash_device_token


def _create(api_client, headers, name="Kitchen Kindle", **extra):
    return api_client.client.post("/api/device-tokens", json={"name": name, **extra}, headers=headers)


class TestCreate:
    def test_raw_token_returned_once(self, api_client):
        fam = api_client.family
        resp = _create(api_client, fam.admin_headers)
        assert resp.status_code == 200
        data = resp.json()["data"]
        raw = data["token"]
        assert len(raw) == 64
        assert data["name"] == "Kitchen Kindle"
        assert data["expiresAt"] is None

        stored = api_client.auth_store.get_device_token(data["id"])
        assert stored.token_hash == hash_device_token(raw)
        assert stored.token_prefix == raw[:8]
        assert stored.caretaker_id == fam.admin_id

        rows = api_client.client.get("/api/device-tokens", headers=fam.admin_headers).json()["data"]
        row = next(r for r in rows if r["id"] == data["id"])
        assert row["tokenPreview"] == raw[:8] + "..."
        assert row["caretakerName"] == "Alex"
        assert row["isActive"] is True
        assert "token" not in row

    def test_with_expiry(self, api_client):
        expires = datetime.now(timezone.utc) + timedelta(days=7)
        resp = _create(api_client, api_client.family.admin_headers, expiresAt=expires.isoformat())
        assert resp.json()["data"]["expiresAt"].startswith(expires.date().isoformat())

    def test_name_required(self, api_client):
        resp = _create(api_client, api_client.family.admin_headers, name="")
        assert resp.status_code == 400
        assert resp.json()["error"] == "Device name is required"

    def test_user_cannot_create(self, api_client):
        resp = _create(api_client, api_client.family.user_headers)
        assert resp.status_code == 403
        assert resp.json()["error"] == "Admin access required to manage device tokens"

    def test_sysadmin_binds_to_system_caretaker(self, api_client):
        headers = {"Authorization": f"Bearer {api_client.sysadmin_token}"}
        resp = api_client.client.post(
            "/api/device-tokens",
            params={"familyId": api_client.other.id},
            json={"name": "Support Kindle"},
            headers=headers,
        )
        assert resp.status_code == 200
        stored = api_client.auth_store.get_device_token(resp.json()["data"]["id"])
        assert stored.family_id == api_client.other.id
        assert stored.caretaker_id == api_client.other.system_caretaker_id


class TestList:
    def test_user_cannot_list(self, api_client):
        resp = api_client.client.get("/api/device-tokens", headers=api_client.family.user_headers)
        assert resp.status_code == 403
        assert resp.json()["error"] == "Admin access required"

    def test_listing_is_family_scoped(self, api_client):
        rows = api_client.client.get("/api/device-tokens", headers=api_client.other.admin_headers).json()["data"]
        assert [r["name"] for r in rows] == ["Support Kindle"]


class TestRevoke:
    def test_revoke(self, api_client):
        fam = api_client.family
        data = _create(api_client, fam.admin_headers, name="Nursery Speaker").json()["data"]

        resp = api_client.client.delete("/api/device-tokens", params={"id": data["id"]}, headers=fam.admin_headers)
        assert resp.status_code == 200
        assert resp.json() == {"success": True, "data": None}

        rows = api_client.client.get("/api/device-tokens", headers=fam.admin_headers).json()["data"]
        row = next(r for r in rows if r["id"] == data["id"])
        assert row["isActive"] is False
        assert row["revokedAt"] is not None

        voice = api_client.client.post(
            "/api/voice/log",
            json={"action": "diaper", "babyName": "Ada"},
            headers={"Authorization": f"Bearer {data['token']}"},
        )
        assert voice.status_code == 401

    def test_id_required(self, api_client):
        resp = api_client.client.delete("/api/device-tokens", headers=api_client.family.admin_headers)
        assert resp.status_code == 400
        assert resp.json()["error"] == "Device token ID is required"

    def test_cannot_revoke_other_familys_token(self, api_client):
        data = _create(api_client, api_client.other.admin_headers, name="Their Kindle").json()["data"]
        resp = api_client.client.delete(
            "/api/device-tokens", params={"id": data["id"]}, headers=api_client.family.admin_headers
        )
        assert resp.status_code == 404
        assert resp.json()["error"] == "Device token not found"
        assert api_client.auth_store.get_device_token(data["id"]).revoked_at is None

    def test_user_cannot_revoke(self, api_client):
        resp = api_client.client.delete(
            "/api/device-tokens", params={"id": "whatever"}, headers=api_client.family.user_headers
        )
        assert resp.status_code == 403
