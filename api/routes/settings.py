"""
api/routes/settings.py -- Family settings endpoints.

Routes:
  GET /api/settings  -- the family's settings (any caretaker of the family)
  PUT /api/settings  -- update settings (admin; refused for expired accounts)

The family-wide PIN is write-only: PUT accepts a new PIN and stores its
bcrypt hash; GET only reports whether one is set.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request

from api.models import ApiResponse, SettingsResponse, SettingsUpdate
from auth.dependencies import ensure_not_expired, get_auth_context, require_admin_context, require_family
from auth.models import AuthResult
from auth.store import AuthStore
from auth.tokens import hash_password
from tracker.models import FamilySettings
from tracker.store import TrackerStore

logger = logging.getLogger("babytracker.api")

router = APIRouter()


def load_settings(request: Request, family_id: str) -> FamilySettings:
    """Return the family's settings, creating the default row on first access."""
    tracker_store: TrackerStore = request.app.state.tracker_store
    current = tracker_store.get_settings(family_id)
    if current is None:
        auth_store: AuthStore = request.app.state.auth_store
        family = auth_store.get_family(family_id)
        current = FamilySettings(family_id=family_id, family_name=family.name if family else "My Family")
        tracker_store.create_settings(current)
        current = tracker_store.get_settings(family_id)
    return current


def _to_response(settings: FamilySettings) -> SettingsResponse:
    return SettingsResponse(
        family_id=settings.family_id,
        family_name=settings.family_name,
        auth_type=settings.auth_type,
        has_security_pin=bool(settings.security_pin),
        default_bottle_unit=settings.default_bottle_unit,
        default_solids_unit=settings.default_solids_unit,
        default_height_unit=settings.default_height_unit,
        default_weight_unit=settings.default_weight_unit,
        default_temp_unit=settings.default_temp_unit,
        enable_debug_timer=settings.enable_debug_timer,
        enable_debug_timezone=settings.enable_debug_timezone,
        updated_at=settings.updated_at,
    )


@router.get("/settings", response_model=ApiResponse[SettingsResponse])
def get_family_settings(request: Request, auth: AuthResult = Depends(get_auth_context)) -> ApiResponse[SettingsResponse]:
    family_id = require_family(auth)
    return ApiResponse(data=_to_response(load_settings(request, family_id)))


@router.put("/settings", response_model=ApiResponse[SettingsResponse])
def update_family_settings(
    request: Request,
    body: SettingsUpdate,
    auth: AuthResult = Depends(require_admin_context),
) -> ApiResponse[SettingsResponse]:
    """Update any subset of the settings. Omitted fields are left unchanged."""
    family_id = require_family(auth)
    ensure_not_expired(auth)

    updates = body.model_dump(exclude_none=True)
    if "security_pin" in updates:
        updates["security_pin"] = hash_password(updates["security_pin"])

    load_settings(request, family_id)
    tracker_store: TrackerStore = request.app.state.tracker_store
    updated = tracker_store.update_settings(family_id, **updates)
    logger.info("Settings updated for family %s (%s)", family_id, ", ".join(sorted(updates)) or "no changes")
    return ApiResponse(data=_to_response(updated))
