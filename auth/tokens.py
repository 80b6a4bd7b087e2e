"""
auth/tokens.py -- JWT, PIN/password hashing, and device token utilities.

Security design decisions:
  JWT: python-jose with HS256. Four token shapes share one signing key:
       - caretaker tokens (PIN login, sysadmin): id/name/type/role/familyId/
         familySlug/isSysAdmin/authType, expiring after token_expire_seconds
       - magic-link tokens: a caretaker token with authType DEVICE_TOKEN and a
         deviceTokenId claim. No exp claim; the resolver re-checks the device
         token on every request, so revoking it ends the session.
       - account tokens: isAccountAuth/accountId/accountEmail
       - setup tokens: isSetupAuth/setupToken
       Verification returns None on any failure -- the resolver turns that
       into an unauthenticated AuthResult.

  PINs and passwords: bcrypt. Both are low-entropy secrets (a 6 digit PIN
       especially), which is exactly what bcrypt's cost factor is for. The
       _DUMMY_HASH constant equalizes timing when the caretaker or account
       does not exist [C1].

  Device tokens: secrets.token_hex(32) gives 256 bits of entropy. We store
       HMAC-SHA256(SECRET_KEY, raw_token) so lookup is O(1); bcrypt's
       slowness buys nothing against a 256-bit random value.

Layer rule: no imports from api/, web/, or tracker/. Import from core/ is
allowed -- core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import JWTError, jwt

from auth.models import AUTH_TYPE_CARETAKER, AUTH_TYPE_DEVICE_TOKEN, ROLE_ADMIN, SYSTEM_LOGIN_ID
from core.config import get_settings

if TYPE_CHECKING:
    from auth.models import Account, Caretaker, Family
    from auth.store import AuthStore
    from cache.blacklist import TokenBlacklist

logger = logging.getLogger("babytracker.auth")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton [M6]
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"

# ---------------------------------------------------------------------------
# PIN / password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of a PIN or password.

    Inputs longer than 72 bytes are truncated by bcrypt. PINs are at most 10
    digits and passwords are capped at the API layer, well below the limit.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext PIN/password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed hash in the DB -- treat as a mismatch, never as a crash.
        return False


# Timing equalization dummy hash [C1]. Computed once at module load so the
# first login attempt is not measurably slower than subsequent ones.
_DUMMY_HASH: str = hash_password("babytracker_timing_dummy")


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def _encode(payload: dict, expire_seconds: int | None) -> str:
    """Sign payload, adding an exp claim unless expire_seconds is None."""
    claims = dict(payload)
    if expire_seconds is not None:
        claims["exp"] = datetime.now(timezone.utc) + timedelta(seconds=expire_seconds)
    return jwt.encode(claims, _settings.secret_key, algorithm=_ALGORITHM)


def create_caretaker_token(
    caretaker_id: str,
    name: str,
    caretaker_type: str | None,
    role: str,
    family_id: str | None,
    family_slug: str | None,
    auth_type: str = AUTH_TYPE_CARETAKER,
    expire_seconds: int = 0,
) -> str:
    """Encode a caretaker session token (PIN login).

    expire_seconds=0 (default) uses Settings.token_expire_seconds.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    payload = {
        "id": caretaker_id,
        "name": name,
        "type": caretaker_type,
        "role": role,
        "familyId": family_id,
        "familySlug": family_slug,
        "authType": auth_type,
        "isAccountAuth": False,
    }
    return _encode(payload, duration)


def create_magic_link_token(
    device_token_id: str,
    caretaker_id: str | None,
    name: str,
    caretaker_type: str | None,
    role: str,
    family_id: str,
    family_slug: str | None,
) -> str:
    """Encode a non-expiring caretaker token bound to a device token.

    No exp claim: the session lasts until the device token is revoked or
    reaches its own expiry, both of which the resolver checks per request.
    """
    payload = {
        "id": caretaker_id or "device",
        "name": name,
        "type": caretaker_type,
        "role": role,
        "familyId": family_id,
        "familySlug": family_slug,
        "authType": AUTH_TYPE_DEVICE_TOKEN,
        "deviceTokenId": device_token_id,
        "isAccountAuth": False,
    }
    return _encode(payload, None)


def create_sysadmin_token(expire_seconds: int = 0) -> str:
    """Encode a system administrator token (no family, no caretaker)."""
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    payload = {
        "id": "sysadmin",
        "name": "System Administrator",
        "type": None,
        "role": ROLE_ADMIN,
        "familyId": None,
        "familySlug": None,
        "isSysAdmin": True,
        "authType": "SYSADMIN",
    }
    return _encode(payload, duration)


def create_account_token(account_id: str, email: str, expire_seconds: int = 0) -> str:
    """Encode an account token. Family data is looked up fresh on every request."""
    duration = expire_seconds if expire_seconds > 0 else _settings.account_token_expire_seconds
    payload = {
        "isAccountAuth": True,
        "accountId": account_id,
        "accountEmail": email,
    }
    return _encode(payload, duration)


def create_setup_token(setup_token: str, expire_seconds: int = 0) -> str:
    """Encode a setup token referencing a FamilySetup record."""
    duration = expire_seconds if expire_seconds > 0 else _settings.setup_token_expire_seconds
    payload = {
        "isSetupAuth": True,
        "setupToken": setup_token,
    }
    return _encode(payload, duration)


def decode_access_token(token: str) -> dict | None:
    """Decode and verify a JWT. Returns the claims dict or None on any failure.

    Tokens without an exp claim (magic-link tokens) verify fine; python-jose
    only enforces exp when present.
    """
    try:
        return jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None


def invalidate_token(blacklist: TokenBlacklist, token: str) -> bool:
    """Blacklist a JWT until its original expiry.

    The claims are read WITHOUT verification -- a forged token in the
    blacklist is harmless, it would fail verification anyway. Tokens without
    an exp claim cannot be blacklisted (there is no moment at which the entry
    could be purged); returns False for those and for malformed tokens.
    """
    try:
        claims = jwt.get_unverified_claims(token)
    except JWTError:
        logger.warning("Refusing to blacklist a malformed token")
        return False
    exp = claims.get("exp")
    if not exp:
        return False
    blacklist.add(token, float(exp))
    return True


# ---------------------------------------------------------------------------
# PIN and account authentication (constant-time) [C1]
# ---------------------------------------------------------------------------


def authenticate_caretaker(
    store: AuthStore,
    family: Family,
    login_id: str | None,
    pin: str,
    auth_type: str,
    system_pin_hash: str | None,
) -> Caretaker | None:
    """Authenticate a PIN login for one family.

    auth_type "SYSTEM": the family-wide PIN (stored in the family settings)
        unlocks the family's system caretaker. login_id is ignored.
    auth_type "CARETAKER": login_id selects the caretaker, whose own PIN must
        match.

    bcrypt always runs, even when the caretaker does not exist, so response
    time does not reveal valid login ids [C1]. Returns None on any failure.
    """
    if auth_type == "SYSTEM":
        caretaker = store.get_caretaker_by_login_id(family.id, SYSTEM_LOGIN_ID)
        expected = system_pin_hash
    else:
        caretaker = store.get_caretaker_by_login_id(family.id, login_id or "")
        expected = caretaker.security_pin if caretaker else None

    if caretaker is None or expected is None:
        verify_password(pin, _DUMMY_HASH)
        return None
    if not verify_password(pin, expected):
        return None
    if caretaker.inactive:
        return None
    return caretaker


def authenticate_account(store: AuthStore, email: str, password: str) -> Account | None:
    """Authenticate an account email/password login with timing equalization.

    Closed accounts are returned as-is; the caller decides how to report them.
    """
    account = store.get_account_by_email(email)
    if account is None or account.password_hash is None:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, account.password_hash):
        return None
    return account


# ---------------------------------------------------------------------------
# Device token generation and hashing
# ---------------------------------------------------------------------------


def generate_device_token() -> str:
    """Generate a raw device token: 32 random bytes as 64 hex characters.

    Plain hex (no prefix) because the token travels inside Kindle URLs and
    voice-assistant configuration files.
    """
    return secrets.token_hex(32)


def hash_device_token(raw_token: str) -> str:
    """Return HMAC-SHA256(SECRET_KEY, raw_token) as a hex string."""
    return hmac.new(
        _settings.secret_key.encode(),
        raw_token.encode(),
        hashlib.sha256,
    ).hexdigest()
