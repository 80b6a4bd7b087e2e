"""
api/routes/device_tokens.py -- Issue, list and revoke kiosk device tokens.

Routes:
  GET    /api/device-tokens        -- the family's tokens, newest first, masked
  POST   /api/device-tokens        -- issue a token; the raw value is returned ONCE
  DELETE /api/device-tokens?id=    -- soft-revoke

All three require an ADMIN caretaker or a system administrator acting on a
family (see get_auth_context). The token acts as the caretaker who created
it. A system administrator has no caretaker of their own, so tokens they
issue act as the family's system caretaker.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from api.models import ApiResponse, DeviceTokenCreate, DeviceTokenCreatedResponse, DeviceTokenRow
from auth.dependencies import get_auth_context, require_family
from auth.models import ROLE_ADMIN, SYSTEM_LOGIN_ID, AuthResult, DeviceToken
from auth.store import AuthStore
from auth.tokens import generate_device_token, hash_device_token
from core.timestamps import parse_timestamp, to_iso, utcnow

logger = logging.getLogger("babytracker.api")

router = APIRouter()


def _can_manage(auth: AuthResult) -> bool:
    return auth.caretaker_role == ROLE_ADMIN or auth.is_sys_admin


def _is_active(token: DeviceToken) -> bool:
    if token.revoked_at:
        return False
    expires_at = parse_timestamp(token.expires_at)
    return expires_at is None or utcnow() < expires_at


@router.get("/device-tokens", response_model=ApiResponse[list[DeviceTokenRow]])
def list_device_tokens(
    request: Request, auth: AuthResult = Depends(get_auth_context)
) -> ApiResponse[list[DeviceTokenRow]]:
    if not _can_manage(auth):
        raise HTTPException(status_code=403, detail="Admin access required")
    family_id = require_family(auth)

    store: AuthStore = request.app.state.auth_store
    tokens = store.list_device_tokens(family_id)
    return ApiResponse(data=[DeviceTokenRow.from_token(t, _is_active(t)) for t in tokens])


@router.post("/device-tokens", response_model=ApiResponse[DeviceTokenCreatedResponse])
def create_device_token(
    request: Request,
    body: DeviceTokenCreate,
    auth: AuthResult = Depends(get_auth_context),
) -> ApiResponse[DeviceTokenCreatedResponse]:
    if not _can_manage(auth):
        raise HTTPException(status_code=403, detail="Admin access required to manage device tokens")
    family_id = require_family(auth)
    if not body.name:
        raise HTTPException(status_code=400, detail="Device name is required")

    store: AuthStore = request.app.state.auth_store
    caretaker_id = None if auth.is_sys_admin else auth.caretaker_id
    if caretaker_id is None or store.get_caretaker(caretaker_id, family_id) is None:
        system_caretaker = store.get_caretaker_by_login_id(family_id, SYSTEM_LOGIN_ID)
        if system_caretaker is None:
            raise HTTPException(status_code=400, detail="Family has no system caretaker to bind the token to")
        caretaker_id = system_caretaker.id

    raw_token = generate_device_token()
    created = store.create_device_token(
        DeviceToken(
            family_id=family_id,
            caretaker_id=caretaker_id,
            name=body.name,
            token_hash=hash_device_token(raw_token),
            token_prefix=raw_token[:8],
            expires_at=to_iso(body.expires_at) if body.expires_at else None,
        )
    )
    logger.info("Device token %s issued for family %s", created.id, family_id)
    return ApiResponse(
        data=DeviceTokenCreatedResponse(
            id=created.id,
            token=raw_token,
            name=created.name,
            created_at=created.created_at,
            expires_at=created.expires_at,
        )
    )


@router.delete("/device-tokens", response_model=ApiResponse[dict])
def revoke_device_token(
    request: Request,
    token_id: Optional[str] = Query(default=None, alias="id"),
    auth: AuthResult = Depends(get_auth_context),
) -> ApiResponse[dict]:
    if not _can_manage(auth):
        raise HTTPException(status_code=403, detail="Admin access required")
    family_id = require_family(auth)
    if not token_id:
        raise HTTPException(status_code=400, detail="Device token ID is required")

    store: AuthStore = request.app.state.auth_store
    if not store.revoke_device_token(token_id, family_id):
        raise HTTPException(status_code=404, detail="Device token not found")
    logger.info("Device token %s revoked for family %s", token_id, family_id)
    return ApiResponse()
