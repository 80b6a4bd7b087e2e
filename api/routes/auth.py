"""
api/routes/auth.py -- Login, logout, identity and magic-link endpoints.

Routes:
  POST /api/auth/login          -- PIN login; returns a caretaker JWT
  POST /api/auth/account-login  -- email/password login; returns an account JWT
  POST /api/auth/logout         -- blacklists the bearer token, clears legacy cookie
  GET  /api/auth/me             -- the resolved AuthResult (requires auth)
  POST /api/auth/magic-link     -- exchanges a device token for a non-expiring JWT

Security:
  [H2] login, account-login and magic-link are rate-limited per IP.
  [C1] authenticate_caretaker()/authenticate_account() provide timing
       equalization -- use them, never inline the lookup + bcrypt check.
  [M5] Cache-Control: no-store on every response that carries a token.
  Login failures share one generic message so responses do not reveal which
  of family, login id or PIN was wrong.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from api.limiter import limiter
from api.models import (
    AccountLoginRequest,
    AccountLoginResponse,
    ApiResponse,
    LoginRequest,
    LoginResponse,
    MagicLinkRequest,
    MagicLinkResponse,
    MeResponse,
)
from auth.dependencies import require_auth
from auth.models import ROLE_USER, AuthResult
from auth.resolver import get_bearer_token, validate_device_token
from auth.store import AuthStore
from auth.tokens import (
    authenticate_account,
    authenticate_caretaker,
    create_account_token,
    create_caretaker_token,
    create_magic_link_token,
    invalidate_token,
)
from core.config import get_settings
from tracker.store import TrackerStore

logger = logging.getLogger("babytracker.api")

_settings = get_settings()

# Auth policy:
# - POST /api/auth/login:          public, rate-limited
# - POST /api/auth/account-login:  public, rate-limited
# - POST /api/auth/logout:         public -- blacklisting your own token needs no prior check
# - GET  /api/auth/me:             requires auth (require_auth)
# - POST /api/auth/magic-link:     public, rate-limited; the device token is the credential
router = APIRouter()

_BAD_PIN = "Invalid credentials"
_BAD_PASSWORD = "Invalid email or password"
_NO_STORE = {"Cache-Control": "no-store"}  # [M5] error responses too


@router.post("/auth/login", response_model=ApiResponse[LoginResponse])
@limiter.limit(_settings.login_rate_limit)  # [H2] directly above the def so FastAPI registers the limited wrapper
def login(request: Request, response: Response, body: LoginRequest) -> ApiResponse[LoginResponse]:
    """PIN login for a family.

    Families with auth type SYSTEM share one PIN that signs in as the family's
    system caretaker; CARETAKER families sign in with login id + personal PIN.
    """
    response.headers["Cache-Control"] = "no-store"  # [M5]
    auth_store: AuthStore = request.app.state.auth_store
    tracker_store: TrackerStore = request.app.state.tracker_store

    family = auth_store.get_family_by_slug(body.family_slug)
    if family is None or not family.is_active:
        raise HTTPException(status_code=401, detail=_BAD_PIN, headers=_NO_STORE)

    family_settings = tracker_store.get_settings(family.id)
    auth_type = family_settings.auth_type if family_settings else "SYSTEM"
    system_pin = family_settings.security_pin if family_settings else None

    caretaker = authenticate_caretaker(auth_store, family, body.login_id, body.security_pin, auth_type, system_pin)
    if caretaker is None:
        logger.info("Failed PIN login for family %s", family.slug)
        raise HTTPException(status_code=401, detail=_BAD_PIN, headers=_NO_STORE)

    account = auth_store.get_account_by_family(family.id)
    if account is not None and account.closed:
        raise HTTPException(status_code=403, detail="Family account is closed")

    token = create_caretaker_token(
        caretaker.id,
        caretaker.name,
        caretaker.type,
        caretaker.role,
        family.id,
        family.slug,
    )
    return ApiResponse(
        data=LoginResponse(
            token=token,
            expires_in=_settings.token_expire_seconds,
            caretaker_id=caretaker.id,
            caretaker_name=caretaker.name,
            role=caretaker.role,
            family_slug=family.slug,
        )
    )


@router.post("/auth/account-login", response_model=ApiResponse[AccountLoginResponse])
@limiter.limit(_settings.login_rate_limit)  # [H2]
def account_login(
    request: Request, response: Response, body: AccountLoginRequest
) -> ApiResponse[AccountLoginResponse]:
    """Email/password login. The account token carries no family data; the
    resolver looks the family up on every request."""
    response.headers["Cache-Control"] = "no-store"  # [M5]
    auth_store: AuthStore = request.app.state.auth_store

    account = authenticate_account(auth_store, body.email, body.password)
    if account is None:
        raise HTTPException(status_code=401, detail=_BAD_PASSWORD, headers=_NO_STORE)
    if account.closed:
        raise HTTPException(status_code=403, detail="Account is closed")

    family = auth_store.get_family(account.family_id) if account.family_id else None
    return ApiResponse(
        data=AccountLoginResponse(
            token=create_account_token(account.id, account.email),
            expires_in=_settings.account_token_expire_seconds,
            account_id=account.id,
            family_slug=family.slug if family else None,
        )
    )


@router.post("/auth/logout", response_model=ApiResponse[dict])
def logout(request: Request, response: Response) -> ApiResponse[dict]:
    """Blacklist the bearer token until it expires and clear the legacy cookie.

    Magic-link tokens have no expiry and cannot be blacklisted; they end when
    their device token is revoked.
    """
    token = get_bearer_token(request)
    invalidated = invalidate_token(request.app.state.token_blacklist, token) if token else False
    response.delete_cookie("caretakerId")
    return ApiResponse(data={"invalidated": invalidated})


@router.get("/auth/me", response_model=ApiResponse[MeResponse])
def me(auth: AuthResult = Depends(require_auth)) -> ApiResponse[MeResponse]:
    """Return identity information for the current credentials."""
    return ApiResponse(data=MeResponse.from_auth(auth))


@router.post("/auth/magic-link", response_model=ApiResponse[MagicLinkResponse])
@limiter.limit(_settings.login_rate_limit)  # [H2]
def magic_link(request: Request, response: Response, body: MagicLinkRequest) -> ApiResponse[MagicLinkResponse]:
    """Exchange a device token for a caretaker JWT with no expiry.

    Used by bookmarked /link/{token} pages. The JWT records which device
    token minted it, so revoking the device token ends the session.
    """
    response.headers["Cache-Control"] = "no-store"  # [M5]
    if not body.token:
        raise HTTPException(status_code=400, detail="Device token is required")

    auth_store: AuthStore = request.app.state.auth_store
    device_auth = validate_device_token(auth_store, body.token)
    if not device_auth.authenticated or not device_auth.family_id:
        raise HTTPException(status_code=401, detail=device_auth.error or "Invalid or expired device token")

    caretaker_name = device_auth.caretaker_name or "User"
    token = create_magic_link_token(
        device_auth.device_token_id,
        device_auth.caretaker_id,
        caretaker_name,
        device_auth.caretaker_type,
        device_auth.caretaker_role or ROLE_USER,
        device_auth.family_id,
        device_auth.family_slug,
    )
    return ApiResponse(
        data=MagicLinkResponse(
            token=token,
            family_slug=device_auth.family_slug,
            caretaker_id=device_auth.caretaker_id,
            caretaker_name=caretaker_name,
        )
    )
