"""
api/routes/voice.py -- Voice assistant logging (Home Assistant, Alexa, ...).

Route:
  POST /api/voice/log   -- Authorization: Bearer {device_token}

The assistant sends a loose phrase-based body:

  {"action": "bottle", "babyName": "Ada", "amount": 4, "unit": "ounces"}

and gets back one sentence to read aloud:

  {"success": true, "data": {"message": "Logged bottle feeding for Ada: 4 oz"}}

Every error message is written to be spoken too, so validation lives in the
route instead of the request model.

Security:
  [H2] rate-limited per IP with VOICE_RATE_LIMIT.
  The device token is the only credential. It is validated on every call
  and never exchanged for a JWT here.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Request

from api.limiter import limiter
from api.models import ApiResponse, VoiceLogRequest, VoiceLogResponse
from api.routes.settings import load_settings
from auth.resolver import get_bearer_token, validate_device_token
from core.config import get_settings
from core.timestamps import to_iso, utcnow
from tracker.activity import (
    format_amount,
    format_duration,
    resolve_action,
    resolve_diaper_type,
    resolve_side,
    resolve_sleep_type,
    resolve_unit,
)
from tracker.models import Baby, DiaperLog, FeedLog, MedicineLog, SleepLog
from tracker.store import TrackerStore

logger = logging.getLogger("babytracker.api")

_settings = get_settings()

router = APIRouter()


def _resolve_baby(store: TrackerStore, family_id: str, baby_name: Optional[str]) -> Baby:
    """Find the baby by first name, or the only active baby when no name is given."""
    if baby_name:
        baby = store.find_baby_by_first_name(family_id, baby_name)
    else:
        active = store.list_babies(family_id, active_only=True)
        baby = active[0] if len(active) == 1 else None
    if baby is not None:
        return baby

    names = ", ".join(b.first_name for b in store.list_babies(family_id, active_only=True))
    if baby_name:
        raise HTTPException(status_code=400, detail=f'Baby "{baby_name}" not found. Available: {names}')
    raise HTTPException(status_code=400, detail=f"Multiple babies found. Please specify babyName. Available: {names}")


@router.post("/voice/log", response_model=ApiResponse[VoiceLogResponse])
@limiter.limit(_settings.voice_rate_limit)  # [H2] directly above the def so FastAPI registers the limited wrapper
def voice_log(request: Request, body: Optional[VoiceLogRequest] = None) -> ApiResponse[VoiceLogResponse]:
    raw_token = get_bearer_token(request)
    if not raw_token:
        raise HTTPException(status_code=401, detail="Missing Authorization: Bearer {device_token} header")

    tracker_store: TrackerStore = request.app.state.tracker_store
    auth = validate_device_token(request.app.state.auth_store, raw_token)
    if not auth.authenticated or not auth.family_id:
        raise HTTPException(status_code=401, detail=auth.error or "Invalid or expired device token")

    body = body or VoiceLogRequest()
    if not body.action:
        raise HTTPException(status_code=400, detail="Missing required field: action")

    family_id = auth.family_id
    baby = _resolve_baby(tracker_store, family_id, body.baby_name)
    action = resolve_action(body.action)
    now = to_iso(utcnow())

    if action == "bottle":
        unit = resolve_unit(body.unit, load_settings(request, family_id).default_bottle_unit)
        tracker_store.create_feed_log(
            FeedLog(
                family_id=family_id,
                baby_id=baby.id,
                caretaker_id=auth.caretaker_id,
                time=now,
                type="BOTTLE",
                amount=body.amount or None,
                unit_abbr=unit,
                bottle_type=body.bottle_type or None,
            )
        )
        if body.amount:
            message = f"Logged bottle feeding for {baby.first_name}: {format_amount(body.amount)} {unit.lower()}"
        else:
            message = f"Logged bottle feeding for {baby.first_name}"

    elif action == "breast":
        side = resolve_side(body.side)
        tracker_store.create_feed_log(
            FeedLog(
                family_id=family_id,
                baby_id=baby.id,
                caretaker_id=auth.caretaker_id,
                time=now,
                type="BREAST",
                side=side,
            )
        )
        message = f"Logged nursing for {baby.first_name}" + (f" ({side.lower()})" if side else "")

    elif action == "diaper":
        diaper_type = resolve_diaper_type(body.type)
        tracker_store.create_diaper_log(
            DiaperLog(family_id=family_id, baby_id=baby.id, caretaker_id=auth.caretaker_id, time=now, type=diaper_type)
        )
        message = f"Logged {diaper_type.lower()} diaper for {baby.first_name}"

    elif action == "sleep-start":
        # No sleepType: the spoken action decides ("nap" vs "sleep").
        sleep_type = resolve_sleep_type(body.sleep_type or body.action)
        tracker_store.create_sleep_log(
            SleepLog(
                family_id=family_id,
                baby_id=baby.id,
                caretaker_id=auth.caretaker_id,
                start_time=now,
                type=sleep_type,
            )
        )
        message = f"Started {'nap' if sleep_type == 'NAP' else 'sleep'} for {baby.first_name}"

    elif action == "sleep-end":
        active = tracker_store.get_active_sleep(family_id, baby.id)
        if active is None:
            raise HTTPException(status_code=400, detail=f"No active sleep session found for {baby.first_name}")
        ended = tracker_store.end_sleep(active.id, family_id, utcnow())
        message = f"{baby.first_name} woke up after {format_duration(ended.duration)}"

    elif action == "medicine":
        if not body.medicine:
            raise HTTPException(status_code=400, detail="Missing required field: medicine (name of the medicine)")
        medicine = tracker_store.find_medicine_by_name(family_id, body.medicine)
        if medicine is None:
            names = ", ".join(m.name for m in tracker_store.list_medicines(family_id)) or "none"
            raise HTTPException(status_code=400, detail=f'Medicine "{body.medicine}" not found. Available: {names}')
        dose = body.amount or medicine.typical_dose_size or 1
        unit = body.unit or medicine.unit_abbr
        tracker_store.create_medicine_log(
            MedicineLog(
                family_id=family_id,
                baby_id=baby.id,
                caretaker_id=auth.caretaker_id,
                medicine_id=medicine.id,
                time=now,
                dose_amount=dose,
                unit_abbr=unit,
            )
        )
        message = f"Logged {medicine.name} for {baby.first_name}: {format_amount(dose)} {(unit or '').lower()}".rstrip()

    else:
        raise HTTPException(
            status_code=400,
            detail=f'Unknown action: "{body.action}". Supported: bottle, breast, diaper, sleep, wake, medicine',
        )

    logger.info("Voice log for family %s: %s", family_id, action)
    return ApiResponse(data=VoiceLogResponse(message=message))
