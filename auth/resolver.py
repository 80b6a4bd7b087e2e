"""
auth/resolver.py -- Resolve a request's credentials into an AuthResult.

Credentials are checked in this order:
  1. Authorization: Bearer <jwt> -- one of four token shapes:
       setup token      -> family creation grant, admin role, no family
       account token    -> account looked up fresh (family may have changed
                           since the token was issued)
       caretaker token  -> identity from the claims, family account checked
                           for closure and expiration
       magic-link token -> caretaker token whose device token must still be
                           active
  2. caretakerId cookie -- legacy session from before JWT login.

get_authenticated_user() never raises. Every failure becomes
AuthResult(authenticated=False, error=...) and auth/dependencies.py decides
which HTTP status that turns into.

validate_device_token() is the separate entry point for raw device tokens
(Kindle URLs, voice assistant bearer headers, magic-link exchange).

Layer rule: no imports from api/, web/, or tracker/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import Request

from auth.models import AUTH_TYPE_CARETAKER, AUTH_TYPE_DEVICE_TOKEN, ROLE_ADMIN, ROLE_USER, Account, AuthResult
from auth.store import AuthStore
from auth.tokens import decode_access_token, hash_device_token
from core.config import get_settings
from core.timestamps import parse_timestamp

logger = logging.getLogger("babytracker.auth")

# ---------------------------------------------------------------------------
# Expiration (soft)
# ---------------------------------------------------------------------------


def compute_is_expired(account: Account, now: datetime, saas_mode: bool) -> bool:
    """Return True if the account's trial or plan has lapsed.

    Self-hosted installs and beta participants never expire. Otherwise the
    first date present wins: trial end, then plan expiry. An account with
    neither date and no plan type has nothing paying for it and is expired.
    """
    if not saas_mode or account.betaparticipant:
        return False
    trial_ends = parse_timestamp(account.trial_ends)
    if trial_ends is not None:
        return now > trial_ends
    plan_expires = parse_timestamp(account.plan_expires)
    if plan_expires is not None:
        return now > plan_expires
    return not account.plan_type


def _apply_account_metadata(result: AuthResult, account: Account, now: datetime) -> None:
    result.betaparticipant = account.betaparticipant
    result.trial_ends = account.trial_ends
    result.plan_expires = account.plan_expires
    result.plan_type = account.plan_type
    result.is_expired = compute_is_expired(account, now, get_settings().is_saas)


# ---------------------------------------------------------------------------
# Token branches
# ---------------------------------------------------------------------------


def _setup_result(claims: dict) -> AuthResult:
    return AuthResult(
        authenticated=True,
        caretaker_id=None,
        caretaker_type="Setup",
        caretaker_role=ROLE_ADMIN,
        family_id=None,
        family_slug=None,
        is_setup_auth=True,
        setup_token=claims["setupToken"],
    )


def _account_result(store: AuthStore, claims: dict, now: datetime) -> AuthResult:
    account_id = claims.get("accountId")
    try:
        account = store.get_account(account_id) if account_id else None
        if account is None:
            logger.info("Account authentication failed: account %s not found", account_id)
            return AuthResult.failure("Account not found")
        if account.closed:
            logger.info("Account authentication failed: account %s is closed", account_id)
            return AuthResult.failure("Account is closed")

        family = store.get_family(account.family_id) if account.family_id else None
        caretaker = store.get_caretaker(account.caretaker_id) if account.caretaker_id else None
    except Exception:
        logger.exception("Error fetching account %s", account_id)
        return AuthResult.failure("Failed to verify account status")

    result = AuthResult(
        authenticated=True,
        family_id=family.id if family else None,
        family_slug=family.slug if family else None,
        is_account_auth=True,
        account_id=account_id,
        account_email=claims.get("accountEmail"),
        is_account_owner=True,
        verified=account.verified,
        betaparticipant=account.betaparticipant,
        trial_ends=account.trial_ends,
        plan_expires=account.plan_expires,
        plan_type=account.plan_type,
    )
    # No point checking expiration while the family is still being set up.
    if family is not None:
        result.is_expired = compute_is_expired(account, now, get_settings().is_saas)

    if caretaker is not None:
        result.caretaker_id = caretaker.id
        result.caretaker_name = caretaker.name
        result.caretaker_type = caretaker.type or "Account Owner"
        result.caretaker_role = caretaker.role
    else:
        if family is not None:
            logger.warning("Account %s has a family but no linked caretaker", account_id)
        result.caretaker_id = account_id
        result.caretaker_type = "ACCOUNT"
        result.caretaker_role = "OWNER"
    return result


def _check_magic_link(store: AuthStore, device_token_id: str, now: datetime) -> str | None:
    """Return an error message if the device token behind a magic link is no longer usable."""
    token = store.get_device_token(device_token_id)
    if token is None or token.revoked_at:
        return "Device token has been revoked"
    expires_at = parse_timestamp(token.expires_at)
    if expires_at is not None and now > expires_at:
        return "Device token has expired"
    return None


def _caretaker_result(store: AuthStore, claims: dict, now: datetime) -> AuthResult:
    is_sys_admin = bool(claims.get("isSysAdmin"))
    family_id = claims.get("familyId")
    auth_type = claims.get("authType") or AUTH_TYPE_CARETAKER

    device_token_id = claims.get("deviceTokenId")
    if auth_type == AUTH_TYPE_DEVICE_TOKEN and device_token_id:
        error = _check_magic_link(store, device_token_id, now)
        if error:
            return AuthResult.failure(error)

    result = AuthResult(
        authenticated=True,
        caretaker_id=None if is_sys_admin else claims.get("id"),
        caretaker_name=claims.get("name"),
        caretaker_type=claims.get("type"),
        caretaker_role=claims.get("role"),
        family_id=family_id,
        family_slug=claims.get("familySlug"),
        is_sys_admin=is_sys_admin,
        auth_type=auth_type,
        device_token_id=device_token_id,
    )

    if family_id and not is_sys_admin:
        try:
            account = store.get_account_by_family(family_id)
        except Exception:
            # Expiration is advisory; a lookup failure must not lock the family out.
            logger.exception("Error checking account expiration for family %s", family_id)
            account = None
        if account is not None:
            if account.closed:
                return AuthResult.failure("Family account is closed")
            _apply_account_metadata(result, account, now)
    return result


def _cookie_result(store: AuthStore, caretaker_id: str, now: datetime) -> AuthResult | None:
    caretaker = store.get_caretaker(caretaker_id)
    if caretaker is None:
        return None
    family = store.get_family(caretaker.family_id)
    result = AuthResult(
        authenticated=True,
        caretaker_id=caretaker.id,
        caretaker_name=caretaker.name,
        caretaker_type=caretaker.type,
        caretaker_role=caretaker.role or ROLE_USER,
        family_id=caretaker.family_id,
        family_slug=family.slug if family else None,
        auth_type=AUTH_TYPE_CARETAKER,
    )
    account = store.get_account_by_family(caretaker.family_id)
    if account is not None:
        if account.closed:
            return AuthResult.failure("Family account is closed")
        _apply_account_metadata(result, account, now)
    return result


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def get_bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:] or None
    return None


def get_authenticated_user(request: Request) -> AuthResult:
    """Resolve the request's credentials. Never raises."""
    store: AuthStore = request.app.state.auth_store
    blacklist = request.app.state.token_blacklist
    now = datetime.now(timezone.utc)

    try:
        token = get_bearer_token(request)
        caretaker_cookie = request.cookies.get("caretakerId")

        if token:
            if blacklist.contains(token):
                return AuthResult.failure("Token has been invalidated")
            claims = decode_access_token(token)
            if claims is None:
                return AuthResult.failure("Invalid or expired token")
            if claims.get("isSetupAuth") and claims.get("setupToken"):
                return _setup_result(claims)
            if claims.get("isAccountAuth"):
                return _account_result(store, claims, now)
            return _caretaker_result(store, claims, now)

        if caretaker_cookie:
            result = _cookie_result(store, caretaker_cookie, now)
            if result is not None:
                return result

        return AuthResult.failure("No valid authentication found")
    except Exception:
        logger.exception("Authentication verification error")
        return AuthResult.failure("Authentication verification failed")


def verify_authentication(request: Request) -> bool:
    return get_authenticated_user(request).authenticated


def validate_device_token(store: AuthStore, raw_token: str) -> AuthResult:
    """Validate a raw device token and return the identity it grants.

    The token acts as its caretaker within its family. last_used_at is
    stamped on success; a failed stamp is logged and does not fail the
    request.
    """
    try:
        device_token = store.get_device_token_by_hash(hash_device_token(raw_token))
        if device_token is None:
            return AuthResult.failure("Invalid device token")
        if device_token.revoked_at:
            return AuthResult.failure("Device token has been revoked")
        expires_at = parse_timestamp(device_token.expires_at)
        if expires_at is not None and datetime.now(timezone.utc) > expires_at:
            return AuthResult.failure("Device token has expired")

        try:
            store.touch_device_token(device_token.id)
        except Exception:
            logger.exception("Failed to update device token lastUsedAt")

        caretaker = store.get_caretaker(device_token.caretaker_id)
        family = store.get_family(device_token.family_id)
        return AuthResult(
            authenticated=True,
            caretaker_id=device_token.caretaker_id,
            caretaker_name=caretaker.name if caretaker else None,
            caretaker_type=caretaker.type if caretaker else None,
            caretaker_role=caretaker.role if caretaker else ROLE_USER,
            family_id=device_token.family_id,
            family_slug=family.slug if family else None,
            auth_type=AUTH_TYPE_DEVICE_TOKEN,
            device_token_id=device_token.id,
        )
    except Exception:
        logger.exception("Device token validation error")
        return AuthResult.failure("Device token validation failed")
