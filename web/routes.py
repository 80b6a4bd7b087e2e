"""
web/routes.py -- Server-rendered kiosk pages (Kindle e-reader, magic links).

These routes serve HTML, not JSON. They share app.state with the API routes
(same auth and tracker stores) but never return the JSON error envelope:
form failures redirect back to the kiosk page with ?error=.

A device token in the URL is the only credential. Kindle browsers cannot run
the main app, so every page works with plain HTML forms and no JavaScript.

Route registration order matters. GET /kindle must be registered before
GET /kindle/{token}.

Routes:
  GET  /kindle                 -- bare error page (form redirects without a token)
  GET  /kindle/{token}         -- quick-log kiosk for one family
  POST /api/kindle/log         -- form POST from the kiosk, 303 back to the kiosk
  GET  /link/{token}           -- magic-link landing page (exchanges the token client-side)

Security:
  [M3] ?error= is rendered through Jinja2 autoescaping only, never |safe.
  [M5] Pages that embed a device token are sent with Cache-Control: no-store.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional
from urllib.parse import quote, urlencode

from fastapi import APIRouter, Form, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from auth.resolver import validate_device_token
from core.timestamps import parse_timestamp, to_iso, utcnow
from tracker.activity import format_amount, format_clock, time_ago
from tracker.models import (
    BREAST_SIDES,
    DIAPER_TYPES,
    SLEEP_TYPES,
    VOLUME_UNITS,
    DiaperLog,
    FeedLog,
    MedicineLog,
    SleepLog,
)
from tracker.store import TrackerStore

logger = logging.getLogger("babytracker.web")

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
router = APIRouter()

_NO_STORE = {"Cache-Control": "no-store"}  # [M5]

_SUCCESS_MESSAGES: dict[str, str] = {
    "feed": "Feed logged!",
    "diaper": "Diaper logged!",
    "sleep-start": "Sleep started!",
    "sleep-end": "Sleep ended!",
    "medicine": "Medicine logged!",
}

_BOTTLE_TYPES = [
    ("formula", "Formula"),
    ("breast milk", "Breast Milk"),
    ("milk", "Milk"),
    ("other", "Other"),
]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _error_page(request: Request, title: str, message: str, status_code: int = 200) -> HTMLResponse:
    return templates.TemplateResponse(
        request,
        "kindle_error.html",
        {"title": title, "message": message},
        status_code=status_code,
        headers=_NO_STORE,
    )


def _redirect_success(token: str, baby_id: str, activity: str) -> RedirectResponse:
    query = urlencode({"success": activity, "babyId": baby_id})
    return RedirectResponse(f"/kindle/{quote(token, safe='')}?{query}", status_code=303)


def _redirect_error(token: str, error: str) -> RedirectResponse:
    path = f"/kindle/{quote(token, safe='')}" if token else "/kindle"
    return RedirectResponse(f"{path}?{urlencode({'error': error})}", status_code=303)


def _parse_float(value: str) -> Optional[float]:
    """Form number fields arrive as strings; blank or junk means "not given"."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


def _feed_summary(feed: FeedLog) -> str:
    if feed.type == "BOTTLE" and feed.amount:
        return f" - {format_amount(feed.amount)}{(feed.unit_abbr or 'oz').lower()}"
    if feed.type == "BREAST" and feed.side:
        return f" - {feed.side.lower()} side"
    return ""


# ---------------------------------------------------------------------------
# Kindle kiosk
# ---------------------------------------------------------------------------


@router.get("/kindle", response_class=HTMLResponse)
def kindle_missing_token(request: Request) -> HTMLResponse:
    """Landing spot for form redirects that lost their token."""
    error = request.query_params.get("error") or "Missing authentication token"
    return _error_page(request, "ACCESS DENIED", error)


@router.get("/kindle/{token}", response_class=HTMLResponse)
def kindle_page(request: Request, token: str) -> HTMLResponse:
    """Render the quick-log page for the device token's family.

    ?babyId= picks the baby (falls back to the first by name), ?success= shows
    a confirmation toast and ?error= an error toast.
    """
    auth = validate_device_token(request.app.state.auth_store, token)
    if not auth.authenticated or not auth.family_id:
        return _error_page(request, "ACCESS DENIED", auth.error or "Invalid or expired device token")

    store: TrackerStore = request.app.state.tracker_store
    family_id = auth.family_id
    babies = store.list_babies(family_id, active_only=True)
    if not babies:
        return _error_page(request, "No Babies Found", "Add a baby in the main app first.")

    selected_id = request.query_params.get("babyId")
    baby = next((b for b in babies if b.id == selected_id), babies[0])

    now = utcnow()
    last_feed = store.latest_log("feed", family_id, baby.id)
    last_diaper = store.latest_log("diaper", family_id, baby.id)
    active_sleep = store.get_active_sleep(family_id, baby.id)
    medicines = store.list_medicines(family_id)
    family_settings = store.get_settings(family_id)

    sleep_banner = None
    if active_sleep is not None:
        started = parse_timestamp(active_sleep.start_time)
        sleep_banner = {"id": active_sleep.id, "since": format_clock(started), "ago": time_ago(now, started)}

    return templates.TemplateResponse(
        request,
        "kindle.html",
        {
            "token": token,
            "babies": babies,
            "baby": baby,
            "success_msg": _SUCCESS_MESSAGES.get(request.query_params.get("success", "")),
            "error_msg": request.query_params.get("error"),  # [M3] autoescaped
            "sleep_banner": sleep_banner,
            "default_unit": family_settings.default_bottle_unit if family_settings else "OZ",
            "bottle_types": _BOTTLE_TYPES,
            "medicines": medicines,
            "last_feed": last_feed,
            "feed_ago": time_ago(now, parse_timestamp(last_feed.time)) if last_feed else None,
            "feed_summary": _feed_summary(last_feed) if last_feed else "",
            "last_diaper": last_diaper,
            "diaper_ago": time_ago(now, parse_timestamp(last_diaper.time)) if last_diaper else None,
        },
        headers=_NO_STORE,
    )


@router.post("/api/kindle/log")
def kindle_log(
    request: Request,
    token: str = Form(default=""),
    action: str = Form(default=""),
    baby_id: str = Form(default="", alias="babyId"),
    amount: str = Form(default=""),
    unit_abbr: str = Form(default="", alias="unitAbbr"),
    bottle_type: str = Form(default="", alias="bottleType"),
    side: str = Form(default=""),
    diaper_type: str = Form(default="", alias="type"),
    sleep_type: str = Form(default="", alias="sleepType"),
    sleep_log_id: str = Form(default="", alias="sleepLogId"),
    medicine_id: str = Form(default="", alias="medicineId"),
    dose_amount: str = Form(default="", alias="doseAmount"),
) -> RedirectResponse:
    """Handle one kiosk form. Always answers with a 303 back to the kiosk."""
    if not token:
        return _redirect_error(token, "Missing authentication token")

    try:
        auth = validate_device_token(request.app.state.auth_store, token)
        if not auth.authenticated or not auth.family_id:
            return _redirect_error(token, auth.error or "Authentication failed")

        store: TrackerStore = request.app.state.tracker_store
        family_id = auth.family_id
        caretaker_id = auth.caretaker_id
        baby = store.get_baby(baby_id, family_id) if baby_id else None
        if baby is None:
            return _redirect_error(token, "Baby not found")

        now = to_iso(utcnow())

        if action == "feed-bottle":
            store.create_feed_log(
                FeedLog(
                    family_id=family_id,
                    baby_id=baby.id,
                    caretaker_id=caretaker_id,
                    time=now,
                    type="BOTTLE",
                    amount=_parse_float(amount),
                    unit_abbr=unit_abbr if unit_abbr in VOLUME_UNITS else "OZ",
                    bottle_type=bottle_type or None,
                )
            )
            return _redirect_success(token, baby.id, "feed")

        if action == "feed-breast":
            store.create_feed_log(
                FeedLog(
                    family_id=family_id,
                    baby_id=baby.id,
                    caretaker_id=caretaker_id,
                    time=now,
                    type="BREAST",
                    side=side if side in BREAST_SIDES else None,
                )
            )
            return _redirect_success(token, baby.id, "feed")

        if action == "diaper":
            store.create_diaper_log(
                DiaperLog(
                    family_id=family_id,
                    baby_id=baby.id,
                    caretaker_id=caretaker_id,
                    time=now,
                    type=diaper_type if diaper_type in DIAPER_TYPES else "WET",
                )
            )
            return _redirect_success(token, baby.id, "diaper")

        if action == "sleep-start":
            store.create_sleep_log(
                SleepLog(
                    family_id=family_id,
                    baby_id=baby.id,
                    caretaker_id=caretaker_id,
                    start_time=now,
                    type=sleep_type if sleep_type in SLEEP_TYPES else "NIGHT_SLEEP",
                )
            )
            return _redirect_success(token, baby.id, "sleep-start")

        if action == "sleep-end":
            # A stale or foreign sleepLogId is ignored; the page simply refreshes.
            if sleep_log_id:
                store.end_sleep(sleep_log_id, family_id, utcnow())
            return _redirect_success(token, baby.id, "sleep-end")

        if action == "medicine":
            if not medicine_id:
                return _redirect_error(token, "Medicine selection required")
            medicine = store.get_medicine(medicine_id, family_id)
            if medicine is None:
                return _redirect_error(token, "Medicine not found")
            store.create_medicine_log(
                MedicineLog(
                    family_id=family_id,
                    baby_id=baby.id,
                    caretaker_id=caretaker_id,
                    medicine_id=medicine.id,
                    time=now,
                    dose_amount=_parse_float(dose_amount) or medicine.typical_dose_size or 1,
                    unit_abbr=unit_abbr or medicine.unit_abbr,
                )
            )
            return _redirect_success(token, baby.id, "medicine")

        return _redirect_error(token, "Unknown action")
    except Exception:
        logger.exception("Kindle form submission error")
        return _redirect_error(token, "An error occurred")


# ---------------------------------------------------------------------------
# Magic link
# ---------------------------------------------------------------------------


@router.get("/link/{token}", response_class=HTMLResponse)
def magic_link_page(request: Request, token: str) -> HTMLResponse:
    """Render the sign-in page for a bookmarked magic link.

    The page itself grants nothing: its script posts the token to
    /api/auth/magic-link, keeps the returned JWT in localStorage and moves on
    to /<familySlug>/log-entry.
    """
    return templates.TemplateResponse(request, "link.html", {"token": token}, headers=_NO_STORE)
