"""
auth/models.py -- Domain dataclasses for identity and authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and the resolver
do the work; these own the domain shape.

Families and caretakers live here rather than in tracker/ because every auth
scheme resolves to one of them. tracker/ only ever sees their ids.

Layer rule: no imports from api/, web/, tracker/, or cache/.
"""

from __future__ import annotations

from dataclasses import dataclass

# Caretaker roles
ROLE_ADMIN = "ADMIN"
ROLE_USER = "USER"

# Login id reserved for each family's system caretaker (family-wide PIN login).
SYSTEM_LOGIN_ID = "00"

# AuthResult.auth_type values
AUTH_TYPE_CARETAKER = "CARETAKER"
AUTH_TYPE_DEVICE_TOKEN = "DEVICE_TOKEN"


@dataclass
class Family:
    """A tenant. Every caretaker, baby and log row belongs to exactly one family."""

    slug: str
    name: str
    id: str | None = None
    is_active: bool = True
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class Caretaker:
    """A family member who can log activity.

    login_id is a two-character code unique within the family. "00" is the
    system caretaker created with the family; it is the identity used by
    family-wide (SYSTEM) PIN login and it always has admin rights.

    security_pin is a bcrypt hash, never the raw PIN.
    """

    family_id: str
    login_id: str
    name: str
    role: str = ROLE_USER
    type: str | None = None  # free text, e.g. "Parent", "Grandparent", "Nanny"
    id: str | None = None
    security_pin: str | None = None
    inactive: bool = False
    created_at: str | None = None
    deleted_at: str | None = None


@dataclass
class Account:
    """An email/password account that owns (at most) one family.

    trial_ends / plan_expires / plan_type drive the soft-expiration check in
    SaaS deployments. betaparticipant accounts never expire. closed accounts
    cannot authenticate at all, and neither can caretakers of their family.
    """

    email: str
    id: str | None = None
    password_hash: str | None = None
    family_id: str | None = None
    caretaker_id: str | None = None
    verified: bool = False
    betaparticipant: bool = False
    closed: bool = False
    trial_ends: str | None = None
    plan_type: str | None = None
    plan_expires: str | None = None
    created_at: str | None = None


@dataclass
class DeviceToken:
    """A long-lived credential for kiosk logging (Kindle, voice assistant).

    Same storage rules as any other bearer secret:
    - token_hash is HMAC-SHA256(SECRET_KEY, raw_token). Lookup is O(1) and a
      leaked database does not leak usable tokens.
    - token_prefix (first 8 chars of the raw token) is kept for display only.
    - The raw token is returned ONCE at creation.

    Revocation is soft: revoked_at is stamped and the row stays for the
    settings screen history.
    """

    family_id: str
    caretaker_id: str
    name: str
    token_hash: str
    token_prefix: str
    id: str | None = None
    expires_at: str | None = None
    revoked_at: str | None = None
    last_used_at: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    caretaker_name: str | None = None  # joined, read-only


@dataclass
class FamilySetup:
    """A pending family-creation grant referenced by setup JWTs."""

    token: str
    id: str | None = None
    family_id: str | None = None
    created_at: str | None = None
    expires_at: str | None = None


@dataclass
class AuthResult:
    """Outcome of resolving a request's credentials.

    authenticated=False always carries an error message. Everything else is
    optional because each auth scheme fills a different subset:
      - setup tokens: is_setup_auth, setup_token, role ADMIN, no family
      - account tokens: the account_* fields plus expiration metadata
      - caretaker tokens / legacy cookie: caretaker identity plus expiration
      - device tokens: caretaker identity, auth_type DEVICE_TOKEN

    is_expired is a soft flag. Authentication still succeeds; write endpoints
    check it and refuse.
    """

    authenticated: bool
    caretaker_id: str | None = None
    caretaker_name: str | None = None
    caretaker_type: str | None = None
    caretaker_role: str | None = None
    family_id: str | None = None
    family_slug: str | None = None
    is_sys_admin: bool = False
    is_setup_auth: bool = False
    setup_token: str | None = None
    auth_type: str | None = None
    device_token_id: str | None = None  # DEVICE_TOKEN auth only

    is_account_auth: bool = False
    account_id: str | None = None
    account_email: str | None = None
    is_account_owner: bool = False
    verified: bool | None = None
    betaparticipant: bool = False

    is_expired: bool = False
    trial_ends: str | None = None
    plan_expires: str | None = None
    plan_type: str | None = None

    error: str | None = None

    @classmethod
    def failure(cls, error: str) -> AuthResult:
        return cls(authenticated=False, error=error)
