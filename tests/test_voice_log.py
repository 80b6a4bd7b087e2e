"""
tests/test_voice_log.py -- POST /api/voice/log with a device token.

Covers:
  - Each action and its spoken confirmation
  - Phrase resolution (units, sides, diaper words, nap vs sleep)
  - Baby resolution by name, single-baby families, and the "which baby" errors
  - Spoken error messages for missing fields and unknown names
  - Device token authentication failures
"""

from __future__ import annotations

import pytest

from auth.models import ROLE_ADMIN, Caretaker, DeviceToken, Family
from auth.tokens import generate_device_token, hash_device_token
from tracker.models import Baby


@pytest.fixture(scope="module")
def voice(api_client):
    """Device token for the seeded family plus a helper that posts a phrase."""
    raw = api_client.client.post(
        "/api/device-tokens", json={"name": "Living Room Speaker"}, headers=api_client.family.admin_headers
    ).json()["data"]["token"]

    def say(**body):
        return api_client.client.post("/api/voice/log", json=body, headers={"Authorization": f"Bearer {raw}"})

    return say


def _message(resp) -> str:
    assert resp.status_code == 200, resp.text
    return resp.json()["data"]["message"]


def _error(resp) -> str:
    assert resp.json()["success"] is False
    return resp.json()["error"]


class TestFeeding:
    def test_bottle_with_amount(self, api_client, voice):
        msg = _message(voice(action="bottle", babyName="Ada", amount=4, unit="ounces"))
        assert msg == "Logged bottle feeding for Ada: 4 oz"

        feed = api_client.tracker_store.latest_log("feed", api_client.family.id, api_client.family.baby_id)
        assert feed.type == "BOTTLE"
        assert feed.amount == 4
        assert feed.unit_abbr == "OZ"
        assert feed.caretaker_id == api_client.family.admin_id

    def test_bottle_without_amount(self, voice):
        assert _message(voice(action="bottle", babyName="ada")) == "Logged bottle feeding for Ada"

    def test_nursing_with_side(self, voice):
        assert _message(voice(action="nursing", babyName="Ada", side="L")) == "Logged nursing for Ada (left)"

    def test_breast_without_side(self, voice):
        assert _message(voice(action="breast", babyName="Ben")) == "Logged nursing for Ben"


class TestDiaper:
    def test_diaper_words(self, api_client, voice):
        assert _message(voice(action="diaper", babyName="Ada", type="poop")) == "Logged dirty diaper for Ada"
        diaper = api_client.tracker_store.latest_log("diaper", api_client.family.id, api_client.family.baby_id)
        assert diaper.type == "DIRTY"

    def test_diaper_defaults_to_wet(self, voice):
        assert _message(voice(action="diaper", babyName="Ada")) == "Logged wet diaper for Ada"


class TestSleep:
    def test_nap_then_wake(self, api_client, voice):
        assert _message(voice(action="nap", babyName="Ada")) == "Started nap for Ada"
        active = api_client.tracker_store.get_active_sleep(api_client.family.id, api_client.family.baby_id)
        assert active.type == "NAP"

        assert _message(voice(action="wake", babyName="Ada")) == "Ada woke up after 0 minutes"
        assert api_client.tracker_store.get_active_sleep(api_client.family.id, api_client.family.baby_id) is None

    def test_sleep_means_night_sleep(self, api_client, voice):
        assert _message(voice(action="sleep", babyName="Ben")) == "Started sleep for Ben"
        active = api_client.tracker_store.get_active_sleep(api_client.family.id, api_client.family.second_baby_id)
        assert active.type == "NIGHT_SLEEP"

    def test_explicit_sleep_type(self, api_client, voice):
        voice(action="woke", babyName="Ben")
        assert _message(voice(action="sleep-start", babyName="Ben", sleepType="bedtime")) == "Started sleep for Ben"

    def test_wake_without_active_sleep(self, voice):
        resp = voice(action="sleep-end", babyName="Ada")
        assert resp.status_code == 400
        assert _error(resp) == "No active sleep session found for Ada"


class TestMedicine:
    def test_typical_dose(self, voice):
        assert _message(voice(action="medicine", babyName="Ada", medicine="tylenol")) == "Logged Tylenol for Ada: 2.5 ml"

    def test_explicit_dose(self, voice):
        msg = _message(voice(action="meds", babyName="Ada", medicine="Tylenol", amount=5, unit="ML"))
        assert msg == "Logged Tylenol for Ada: 5 ml"

    def test_missing_medicine(self, voice):
        resp = voice(action="medicine", babyName="Ada")
        assert resp.status_code == 400
        assert _error(resp) == "Missing required field: medicine (name of the medicine)"

    def test_unknown_medicine(self, voice):
        resp = voice(action="medicine", babyName="Ada", medicine="Motrin")
        assert resp.status_code == 400
        assert _error(resp) == 'Medicine "Motrin" not found. Available: Tylenol'


class TestBabyResolution:
    def test_multiple_babies_need_a_name(self, voice):
        resp = voice(action="diaper")
        assert resp.status_code == 400
        assert _error(resp) == "Multiple babies found. Please specify babyName. Available: Ada, Ben"

    def test_unknown_baby(self, voice):
        resp = voice(action="diaper", babyName="Zed")
        assert resp.status_code == 400
        assert _error(resp) == 'Baby "Zed" not found. Available: Ada, Ben'

    def test_other_familys_baby_is_unknown(self, voice):
        resp = voice(action="diaper", babyName="Cy")
        assert resp.status_code == 400

    def test_single_baby_needs_no_name(self, api_client):
        family_id = api_client.auth_store.create_family(Family(slug="solo-family", name="Solo"))
        caretaker_id = api_client.auth_store.create_caretaker(
            Caretaker(family_id=family_id, login_id="00", name="System", role=ROLE_ADMIN)
        )
        api_client.tracker_store.create_baby(Baby(family_id=family_id, first_name="Uma"))
        raw = generate_device_token()
        api_client.auth_store.create_device_token(
            DeviceToken(
                family_id=family_id,
                caretaker_id=caretaker_id,
                name="Solo Speaker",
                token_hash=hash_device_token(raw),
                token_prefix=raw[:8],
            )
        )
        resp = api_client.client.post(
            "/api/voice/log", json={"action": "bottle", "amount": 120}, headers={"Authorization": f"Bearer {raw}"}
        )
        # No settings row yet: the default unit comes from freshly created defaults.
        assert _message(resp) == "Logged bottle feeding for Uma: 120 oz"

        api_client.tracker_store.update_settings(family_id, default_bottle_unit="ML")
        resp = api_client.client.post(
            "/api/voice/log", json={"action": "bottle", "amount": 120}, headers={"Authorization": f"Bearer {raw}"}
        )
        assert _message(resp) == "Logged bottle feeding for Uma: 120 ml"


class TestErrors:
    def test_unknown_action(self, voice):
        resp = voice(action="dance", babyName="Ada")
        assert resp.status_code == 400
        assert _error(resp) == (
            'Unknown action: "dance". Supported: bottle, breast, diaper, sleep, wake, medicine'
        )

    def test_missing_action(self, voice):
        resp = voice(babyName="Ada")
        assert resp.status_code == 400
        assert _error(resp) == "Missing required field: action"

    def test_missing_header(self, api_client):
        resp = api_client.client.post("/api/voice/log", json={"action": "diaper"})
        assert resp.status_code == 401
        assert _error(resp) == "Missing Authorization: Bearer {device_token} header"

    def test_unknown_device_token(self, api_client):
        resp = api_client.client.post(
            "/api/voice/log", json={"action": "diaper"}, headers={"Authorization": "Bearer " + "f" * 64}
        )
        assert resp.status_code == 401
        assert _error(resp) == "Invalid device token"

    def test_caretaker_jwt_is_not_a_device_token(self, api_client):
        resp = api_client.client.post(
            "/api/voice/log", json={"action": "diaper", "babyName": "Ada"}, headers=api_client.family.admin_headers
        )
        assert resp.status_code == 401
