"""
tests/test_family_routes.py -- Family profile, babies, caretakers, contacts, medicines.

Covers:
  - GET/PUT /api/family, including slug validation and 409 on conflict
  - Babies: listing is family-scoped, creation needs admin
  - Caretakers: "00" is hidden and reserved, duplicate login id is 409,
    PIN hashes are never returned
  - Contacts and medicines: any caretaker may add
"""

from __future__ import annotations


class TestFamily:
    def test_get_family(self, api_client):
        resp = api_client.client.get("/api/family", headers=api_client.family.user_headers)
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["id"] == api_client.family.id
        assert data["slug"] == api_client.family.slug
        assert data["isActive"] is True

    def test_user_cannot_rename(self, api_client):
        resp = api_client.client.put("/api/family", json={"name": "Nope"}, headers=api_client.family.user_headers)
        assert resp.status_code == 403

    def test_rename(self, api_client):
        resp = api_client.client.put(
            "/api/family", json={"name": "The Home Team"}, headers=api_client.other.admin_headers
        )
        assert resp.status_code == 200
        assert resp.json()["data"]["name"] == "The Home Team"
        assert resp.json()["data"]["slug"] == api_client.other.slug

    def test_slug_conflict(self, api_client):
        resp = api_client.client.put(
            "/api/family", json={"slug": api_client.family.slug}, headers=api_client.other.admin_headers
        )
        assert resp.status_code == 409
        assert resp.json()["error"] == "That family URL is already taken"

    def test_slug_format(self, api_client):
        resp = api_client.client.put(
            "/api/family", json={"slug": "Bad Slug!"}, headers=api_client.other.admin_headers
        )
        assert resp.status_code == 400
        assert "slug" in resp.json()["error"]


class TestBabies:
    def test_list_is_family_scoped(self, api_client):
        resp = api_client.client.get("/api/baby", headers=api_client.family.user_headers)
        names = [b["firstName"] for b in resp.json()["data"]]
        assert names[:2] == ["Ada", "Ben"]
        assert "Cy" not in names

    def test_admin_adds_baby(self, api_client):
        resp = api_client.client.post(
            "/api/baby",
            json={"firstName": "Cleo", "lastName": "Home", "birthDate": "2024-01-15"},
            headers=api_client.family.admin_headers,
        )
        assert resp.status_code == 201
        data = resp.json()["data"]
        assert data["firstName"] == "Cleo"
        assert data["birthDate"] == "2024-01-15"
        assert data["inactive"] is False

    def test_user_cannot_add_baby(self, api_client):
        resp = api_client.client.post("/api/baby", json={"firstName": "Zed"}, headers=api_client.family.user_headers)
        assert resp.status_code == 403

    def test_bad_birth_date(self, api_client):
        resp = api_client.client.post(
            "/api/baby", json={"firstName": "Zed", "birthDate": "15/01/2024"}, headers=api_client.family.admin_headers
        )
        assert resp.status_code == 400


class TestCaretakers:
    def test_list_hides_system_caretaker_and_pins(self, api_client):
        resp = api_client.client.get("/api/caretaker", headers=api_client.family.user_headers)
        assert resp.status_code == 200
        rows = resp.json()["data"]
        assert {r["loginId"] for r in rows} == {"01", "02"}
        assert all("securityPin" not in r for r in rows)

    def test_admin_adds_caretaker(self, api_client):
        resp = api_client.client.post(
            "/api/caretaker",
            json={"loginId": "05", "name": "Nanny Jo", "type": "Nanny", "securityPin": "555555"},
            headers=api_client.family.admin_headers,
        )
        assert resp.status_code == 201
        data = resp.json()["data"]
        assert data["loginId"] == "05"
        assert data["role"] == "USER"
        stored = api_client.auth_store.get_caretaker(data["id"])
        assert stored.security_pin.startswith("$2")

    def test_duplicate_login_id(self, api_client):
        resp = api_client.client.post(
            "/api/caretaker",
            json={"loginId": "01", "name": "Dup", "securityPin": "555555"},
            headers=api_client.family.admin_headers,
        )
        assert resp.status_code == 409

    def test_login_id_is_per_family(self, api_client):
        resp = api_client.client.post(
            "/api/caretaker",
            json={"loginId": "05", "name": "Other Nanny", "securityPin": "555555"},
            headers=api_client.other.admin_headers,
        )
        assert resp.status_code == 201

    def test_reserved_login_id(self, api_client):
        resp = api_client.client.post(
            "/api/caretaker",
            json={"loginId": "00", "name": "Sneaky", "securityPin": "555555"},
            headers=api_client.family.admin_headers,
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "Login ID 00 is reserved for the system caretaker"

    def test_user_cannot_add_caretaker(self, api_client):
        resp = api_client.client.post(
            "/api/caretaker",
            json={"loginId": "09", "name": "Nope", "securityPin": "555555"},
            headers=api_client.family.user_headers,
        )
        assert resp.status_code == 403


class TestContactsAndMedicines:
    def test_add_and_list_contact(self, api_client):
        resp = api_client.client.post(
            "/api/contact",
            json={"name": "Dr. Patel", "role": "Pediatrician", "phone": "555-0100"},
            headers=api_client.family.user_headers,
        )
        assert resp.status_code == 201
        assert resp.json()["data"]["id"]

        rows = api_client.client.get("/api/contact", headers=api_client.family.user_headers).json()["data"]
        assert [r["name"] for r in rows] == ["Dr. Patel"]
        other = api_client.client.get("/api/contact", headers=api_client.other.user_headers).json()["data"]
        assert other == []

    def test_add_and_list_medicine(self, api_client):
        resp = api_client.client.post(
            "/api/medicine",
            json={"name": "Vitamin D", "typicalDoseSize": 1, "unitAbbr": "ML"},
            headers=api_client.family.user_headers,
        )
        assert resp.status_code == 201
        assert resp.json()["data"]["active"] is True

        rows = api_client.client.get("/api/medicine", headers=api_client.family.user_headers).json()["data"]
        assert [r["name"] for r in rows] == ["Tylenol", "Vitamin D"]

    def test_medicine_dose_must_be_positive(self, api_client):
        resp = api_client.client.post(
            "/api/medicine", json={"name": "Bad", "typicalDoseSize": 0}, headers=api_client.family.user_headers
        )
        assert resp.status_code == 400
