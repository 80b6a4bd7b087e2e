"""
tests/test_auth_store.py -- Unit tests for AuthStore and the PIN helpers in auth/tokens.py.

Covers:
  - Families: unique slug, update with conflict
  - Caretakers: login id unique per family, deleted rows ignored, system caretaker
  - Accounts: case-insensitive email lookup, lookup by family
  - Device tokens: hash lookup, listing with caretaker names, family-scoped revoke
  - authenticate_caretaker() for SYSTEM and CARETAKER families
"""

from __future__ import annotations

import pytest
from sqlalchemy.exc import IntegrityError

from auth.models import ROLE_ADMIN, SYSTEM_LOGIN_ID, Account, Caretaker, DeviceToken, Family, FamilySetup
from auth.store import AuthStore
from auth.tokens import authenticate_caretaker, hash_device_token, hash_password, verify_password


@pytest.fixture
def store():
    s = AuthStore(db_url="sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def family(store):
    family_id = store.create_family(Family(slug="smith", name="Smith Family"))
    return store.get_family(family_id)


class TestFamilies:
    def test_slug_is_unique(self, store, family):
        with pytest.raises(IntegrityError):
            store.create_family(Family(slug="smith", name="Other Smiths"))

    def test_lookup_by_slug(self, store, family):
        assert store.get_family_by_slug("smith").id == family.id
        assert store.get_family_by_slug("jones") is None

    def test_update(self, store, family):
        assert store.update_family(family.id, name="The Smiths", ignored="x") is True
        assert store.get_family(family.id).name == "The Smiths"
        assert store.update_family("missing", name="Nobody") is False

    def test_update_slug_conflict(self, store, family):
        other_id = store.create_family(Family(slug="jones", name="Jones"))
        with pytest.raises(IntegrityError):
            store.update_family(other_id, slug="smith")


class TestCaretakers:
    def test_login_id_unique_within_family(self, store, family):
        store.create_caretaker(Caretaker(family_id=family.id, login_id="01", name="Sam"))
        with pytest.raises(ValueError, match="already in use"):
            store.create_caretaker(Caretaker(family_id=family.id, login_id="01", name="Pat"))

        other_id = store.create_family(Family(slug="jones", name="Jones"))
        store.create_caretaker(Caretaker(family_id=other_id, login_id="01", name="Jo"))

    def test_get_caretaker_family_scope(self, store, family):
        caretaker_id = store.create_caretaker(Caretaker(family_id=family.id, login_id="01", name="Sam"))
        assert store.get_caretaker(caretaker_id).name == "Sam"
        assert store.get_caretaker(caretaker_id, family.id) is not None
        assert store.get_caretaker(caretaker_id, "other") is None

    def test_list_ordered_by_name(self, store, family):
        store.create_caretaker(Caretaker(family_id=family.id, login_id="02", name="Zed"))
        store.create_caretaker(Caretaker(family_id=family.id, login_id="01", name="Amy"))
        assert [c.name for c in store.list_caretakers(family.id)] == ["Amy", "Zed"]

    def test_system_caretaker(self, store, family):
        system_id = store.create_caretaker(
            Caretaker(family_id=family.id, login_id=SYSTEM_LOGIN_ID, name="System", role=ROLE_ADMIN)
        )
        user_id = store.create_caretaker(Caretaker(family_id=family.id, login_id="01", name="Sam"))
        assert store.is_system_caretaker(system_id) is True
        assert store.is_system_caretaker(user_id) is False
        assert store.is_system_caretaker("missing") is False


class TestAccounts:
    def test_email_is_case_insensitive(self, store):
        account_id = store.create_account(Account(email="Sam@Example.COM"))
        assert store.get_account_by_email("sam@example.com").id == account_id
        assert store.get_account_by_email("SAM@EXAMPLE.COM").id == account_id

    def test_duplicate_email(self, store):
        store.create_account(Account(email="sam@example.com"))
        with pytest.raises(IntegrityError):
            store.create_account(Account(email="SAM@example.com"))

    def test_by_family(self, store, family):
        store.create_account(Account(email="owner@example.com", family_id=family.id, betaparticipant=True))
        account = store.get_account_by_family(family.id)
        assert account.email == "owner@example.com"
        assert account.betaparticipant is True
        assert store.get_account_by_family("other") is None


class TestDeviceTokens:
    def _create(self, store, family_id, caretaker_id, raw="a" * 64, name="Kindle"):
        return store.create_device_token(
            DeviceToken(
                family_id=family_id,
                caretaker_id=caretaker_id,
                name=name,
                token_hash=hash_device_token(raw),
                token_prefix=raw[:8],
            )
        )

    def test_lookup_by_hash(self, store, family):
        created = self._create(store, family.id, "c1")
        assert created.id and created.created_at
        assert store.get_device_token_by_hash(hash_device_token("a" * 64)).id == created.id
        assert store.get_device_token_by_hash(hash_device_token("b" * 64)) is None

    def test_list_includes_caretaker_name(self, store, family):
        caretaker_id = store.create_caretaker(Caretaker(family_id=family.id, login_id="01", name="Sam"))
        self._create(store, family.id, caretaker_id)
        rows = store.list_device_tokens(family.id)
        assert [(r.name, r.caretaker_name) for r in rows] == [("Kindle", "Sam")]

    def test_revoke_is_family_scoped(self, store, family):
        created = self._create(store, family.id, "c1")
        assert store.revoke_device_token(created.id, "other") is False
        assert store.get_device_token(created.id).revoked_at is None
        assert store.revoke_device_token(created.id, family.id) is True
        assert store.get_device_token(created.id).revoked_at is not None
        assert store.get_device_token(created.id, "other") is None

    def test_touch(self, store, family):
        created = self._create(store, family.id, "c1")
        store.touch_device_token(created.id)
        assert store.get_device_token(created.id).last_used_at is not None


def test_family_setup_roundtrip(store):
    store.create_family_setup(FamilySetup(token="grant", family_id="f1"))
    assert store.get_family_setup("grant").family_id == "f1"
    assert store.get_family_setup("other") is None


# ---------------------------------------------------------------------------
# PIN authentication
# ---------------------------------------------------------------------------


class TestAuthenticateCaretaker:
    @pytest.fixture
    def people(self, store, family):
        store.create_caretaker(
            Caretaker(family_id=family.id, login_id=SYSTEM_LOGIN_ID, name="System", role=ROLE_ADMIN)
        )
        store.create_caretaker(
            Caretaker(family_id=family.id, login_id="01", name="Sam", security_pin=hash_password("111111"))
        )
        store.create_caretaker(
            Caretaker(
                family_id=family.id, login_id="02", name="Gone", security_pin=hash_password("222222"), inactive=True
            )
        )
        return hash_password("999999")

    def test_system_pin(self, store, family, people):
        caretaker = authenticate_caretaker(store, family, None, "999999", "SYSTEM", people)
        assert caretaker.login_id == SYSTEM_LOGIN_ID
        assert authenticate_caretaker(store, family, None, "111111", "SYSTEM", people) is None

    def test_system_without_pin_configured(self, store, family, people):
        assert authenticate_caretaker(store, family, None, "999999", "SYSTEM", None) is None

    def test_caretaker_pin(self, store, family, people):
        assert authenticate_caretaker(store, family, "01", "111111", "CARETAKER", people).name == "Sam"
        assert authenticate_caretaker(store, family, "01", "999999", "CARETAKER", people) is None
        assert authenticate_caretaker(store, family, "09", "111111", "CARETAKER", people) is None

    def test_inactive_caretaker(self, store, family, people):
        assert authenticate_caretaker(store, family, "02", "222222", "CARETAKER", people) is None


def test_verify_password_with_malformed_hash():
    assert verify_password("123456", "not-a-bcrypt-hash") is False
    assert verify_password("123456", hash_password("123456")) is True
