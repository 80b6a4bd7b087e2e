"""
api/routes/logs.py -- Activity log endpoints (feed, sleep, diaper, medicine).

Routes:
  GET    /api/logs/{kind}?babyId=    -- a baby's logs of one kind, newest first
  POST   /api/logs/feed              -- record a feed
  POST   /api/logs/sleep             -- start (or record a finished) sleep
  POST   /api/logs/diaper            -- record a diaper change
  POST   /api/logs/medicine          -- record a medicine dose
  POST   /api/logs/sleep/{id}/end    -- end an open sleep
  DELETE /api/logs/{kind}/{id}       -- soft delete

Tenancy: baby, medicine and log ids are always looked up inside the caller's
family. An id from another family is reported exactly like an unknown id.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from api.models import (
    ApiResponse,
    DiaperLogCreate,
    DiaperLogResponse,
    FeedLogCreate,
    FeedLogResponse,
    MedicineLogCreate,
    MedicineLogResponse,
    SleepEndRequest,
    SleepLogCreate,
    SleepLogResponse,
)
from api.routes.settings import load_settings
from auth.dependencies import ensure_not_expired, get_auth_context, require_family
from auth.models import AuthResult
from core.timestamps import parse_timestamp, to_iso, utcnow
from tracker.models import LOG_KINDS, DiaperLog, FeedLog, MedicineLog, SleepLog
from tracker.store import TrackerStore

logger = logging.getLogger("babytracker.api")

router = APIRouter()

_RESPONSE_MODELS = {
    "feed": FeedLogResponse,
    "sleep": SleepLogResponse,
    "diaper": DiaperLogResponse,
    "medicine": MedicineLogResponse,
}


def _check_kind(kind: str) -> None:
    if kind not in LOG_KINDS:
        raise HTTPException(status_code=404, detail=f"Unknown log type: {kind}")


def _require_baby(store: TrackerStore, baby_id: str, family_id: str) -> None:
    if store.get_baby(baby_id, family_id) is None:
        raise HTTPException(status_code=404, detail="Baby not found")


def _stamp(value: Optional[datetime]) -> str:
    return to_iso(value) if value is not None else to_iso(utcnow())


@router.get("/logs/{kind}", response_model=ApiResponse[list])
def list_logs(
    request: Request,
    kind: str,
    baby_id: Optional[str] = Query(default=None, alias="babyId"),
    limit: int = Query(default=50, ge=1, le=500),
    auth: AuthResult = Depends(get_auth_context),
) -> ApiResponse[list]:
    _check_kind(kind)
    family_id = require_family(auth)
    if not baby_id:
        raise HTTPException(status_code=400, detail="babyId is required")

    store: TrackerStore = request.app.state.tracker_store
    _require_baby(store, baby_id, family_id)
    model = _RESPONSE_MODELS[kind]
    logs = store.list_logs(kind, family_id, baby_id, limit=limit)
    return ApiResponse(data=[model.model_validate(log).model_dump(by_alias=True) for log in logs])


@router.post("/logs/feed", response_model=ApiResponse[FeedLogResponse], status_code=201)
def create_feed_log(
    request: Request,
    body: FeedLogCreate,
    auth: AuthResult = Depends(get_auth_context),
) -> ApiResponse[FeedLogResponse]:
    family_id = require_family(auth)
    ensure_not_expired(auth)
    store: TrackerStore = request.app.state.tracker_store
    _require_baby(store, body.baby_id, family_id)

    unit = body.unit_abbr
    if unit is None and body.amount is not None:
        family_settings = load_settings(request, family_id)
        unit = family_settings.default_solids_unit if body.type == "SOLIDS" else family_settings.default_bottle_unit

    log = store.create_feed_log(
        FeedLog(
            family_id=family_id,
            baby_id=body.baby_id,
            caretaker_id=auth.caretaker_id,
            time=_stamp(body.time),
            type=body.type,
            amount=body.amount,
            unit_abbr=unit,
            side=body.side if body.type == "BREAST" else None,
            bottle_type=body.bottle_type,
            food=body.food,
        )
    )
    return ApiResponse(data=FeedLogResponse.model_validate(log))


@router.post("/logs/sleep", response_model=ApiResponse[SleepLogResponse], status_code=201)
def create_sleep_log(
    request: Request,
    body: SleepLogCreate,
    auth: AuthResult = Depends(get_auth_context),
) -> ApiResponse[SleepLogResponse]:
    """Start a sleep, or record a finished one when endTime is given."""
    family_id = require_family(auth)
    ensure_not_expired(auth)
    store: TrackerStore = request.app.state.tracker_store
    _require_baby(store, body.baby_id, family_id)

    start_time = _stamp(body.start_time)
    if body.end_time is not None and parse_timestamp(to_iso(body.end_time)) < parse_timestamp(start_time):
        raise HTTPException(status_code=400, detail="endTime must not be before startTime")

    log = store.create_sleep_log(
        SleepLog(
            family_id=family_id,
            baby_id=body.baby_id,
            caretaker_id=auth.caretaker_id,
            start_time=start_time,
            type=body.type,
        )
    )
    if body.end_time is not None:
        log = store.end_sleep(log.id, family_id, body.end_time)
    return ApiResponse(data=SleepLogResponse.model_validate(log))


@router.post("/logs/diaper", response_model=ApiResponse[DiaperLogResponse], status_code=201)
def create_diaper_log(
    request: Request,
    body: DiaperLogCreate,
    auth: AuthResult = Depends(get_auth_context),
) -> ApiResponse[DiaperLogResponse]:
    family_id = require_family(auth)
    ensure_not_expired(auth)
    store: TrackerStore = request.app.state.tracker_store
    _require_baby(store, body.baby_id, family_id)

    log = store.create_diaper_log(
        DiaperLog(
            family_id=family_id,
            baby_id=body.baby_id,
            caretaker_id=auth.caretaker_id,
            time=_stamp(body.time),
            type=body.type,
        )
    )
    return ApiResponse(data=DiaperLogResponse.model_validate(log))


@router.post("/logs/medicine", response_model=ApiResponse[MedicineLogResponse], status_code=201)
def create_medicine_log(
    request: Request,
    body: MedicineLogCreate,
    auth: AuthResult = Depends(get_auth_context),
) -> ApiResponse[MedicineLogResponse]:
    """Record a dose. Dose and unit default to the medicine's typical dose."""
    family_id = require_family(auth)
    ensure_not_expired(auth)
    store: TrackerStore = request.app.state.tracker_store
    _require_baby(store, body.baby_id, family_id)

    medicine = store.get_medicine(body.medicine_id, family_id)
    if medicine is None:
        raise HTTPException(status_code=404, detail="Medicine not found")

    log = store.create_medicine_log(
        MedicineLog(
            family_id=family_id,
            baby_id=body.baby_id,
            caretaker_id=auth.caretaker_id,
            medicine_id=medicine.id,
            time=_stamp(body.time),
            dose_amount=body.dose_amount or medicine.typical_dose_size or 1,
            unit_abbr=body.unit_abbr or medicine.unit_abbr,
        )
    )
    return ApiResponse(data=MedicineLogResponse.model_validate(log))


@router.post("/logs/sleep/{log_id}/end", response_model=ApiResponse[SleepLogResponse])
def end_sleep(
    request: Request,
    log_id: str,
    body: Optional[SleepEndRequest] = None,
    auth: AuthResult = Depends(get_auth_context),
) -> ApiResponse[SleepLogResponse]:
    family_id = require_family(auth)
    ensure_not_expired(auth)
    store: TrackerStore = request.app.state.tracker_store

    log = store.get_sleep_log(log_id, family_id)
    if log is None:
        raise HTTPException(status_code=404, detail="Sleep log not found")
    if log.end_time:
        raise HTTPException(status_code=400, detail="Sleep session has already ended")

    end_time = body.end_time if body and body.end_time else utcnow()
    if parse_timestamp(to_iso(end_time)) < parse_timestamp(log.start_time):
        raise HTTPException(status_code=400, detail="endTime must not be before startTime")
    ended = store.end_sleep(log_id, family_id, end_time)
    return ApiResponse(data=SleepLogResponse.model_validate(ended))


@router.delete("/logs/{kind}/{log_id}", response_model=ApiResponse[dict])
def delete_log(
    request: Request,
    kind: str,
    log_id: str,
    auth: AuthResult = Depends(get_auth_context),
) -> ApiResponse[dict]:
    _check_kind(kind)
    family_id = require_family(auth)
    ensure_not_expired(auth)
    store: TrackerStore = request.app.state.tracker_store
    if not store.delete_log(kind, log_id, family_id):
        raise HTTPException(status_code=404, detail="Log not found")
    logger.info("Deleted %s log %s in family %s", kind, log_id, family_id)
    return ApiResponse(data={"id": log_id, "deleted": True})
