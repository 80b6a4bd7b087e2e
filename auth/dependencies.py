"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Every helper resolves the request through auth.resolver.get_authenticated_user()
and converges on an AuthResult. Failures raise HTTPException with a plain
string detail; api/main.py turns that into {"success": false, "error": ...}.

  require_auth()          -> 401 unless authenticated
  require_admin()         -> 403 unless ADMIN role, system caretaker, or sysadmin
  require_sysadmin()      -> 403 unless sysadmin
  require_account_owner() -> 403 unless account owner or sysadmin
  get_auth_context()      -> require_auth() plus family context for setup
                             tokens and sysadmins, who carry no family of their own
  require_admin_context() -> get_auth_context() plus the admin check
  require_family()        -> plain call: the family id, or 403 without one
  ensure_not_expired()    -> plain call (not a dependency) used by write routes

Layer rule: no imports from web/ or tracker/.
  auth/dependencies.py may import from fastapi (for HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from urllib.parse import urlparse

from fastapi import HTTPException, Request

from auth.models import ROLE_ADMIN, AuthResult
from auth.resolver import get_authenticated_user
from auth.store import AuthStore

logger = logging.getLogger("babytracker.auth")

# First path segments that are never family slugs.
_NON_FAMILY_PREFIXES = ("api", "family-manager", "setup")


def require_auth(request: Request) -> AuthResult:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(auth: AuthResult = Depends(require_auth)): ...
    """
    auth = get_authenticated_user(request)
    if not auth.authenticated:
        raise HTTPException(status_code=401, detail="Authentication required")
    return auth


def is_admin(store: AuthStore, auth: AuthResult) -> bool:
    """ADMIN role, the family's system caretaker, or a system administrator."""
    if auth.caretaker_role == ROLE_ADMIN or auth.is_sys_admin:
        return True
    if auth.caretaker_id:
        try:
            return store.is_system_caretaker(auth.caretaker_id)
        except Exception:
            logger.exception("Error checking system caretaker")
    return False


def require_admin(request: Request) -> AuthResult:
    """Require admin rights. Raises HTTP 401 if unauthenticated, HTTP 403 if not admin."""
    auth = require_auth(request)
    if not is_admin(request.app.state.auth_store, auth):
        raise HTTPException(status_code=403, detail="Admin access required")
    return auth


def require_sysadmin(request: Request) -> AuthResult:
    auth = require_auth(request)
    if not auth.is_sys_admin:
        raise HTTPException(status_code=403, detail="System administrator access required")
    return auth


def require_account_owner(request: Request) -> AuthResult:
    auth = require_auth(request)
    if not auth.is_account_owner and not auth.is_sys_admin:
        raise HTTPException(status_code=403, detail="Account owner access required")
    return auth


def _family_slug_from_path(path: str) -> str | None:
    segments = [s for s in path.split("/") if s]
    if not segments or segments[0].startswith(_NON_FAMILY_PREFIXES):
        return None
    return segments[0]


def _sysadmin_family_id(request: Request, store: AuthStore) -> str | None:
    """Find the family a sysadmin is acting on: query param, then path, then Referer."""
    family_id = request.query_params.get("familyId")
    if family_id:
        return family_id

    slug = _family_slug_from_path(request.url.path)
    if slug:
        try:
            family = store.get_family_by_slug(slug)
            if family is not None:
                return family.id
        except Exception:
            logger.exception("Error looking up family by slug for sysadmin")

    referer = request.headers.get("referer")
    if referer:
        try:
            slug = _family_slug_from_path(urlparse(referer).path)
            if slug:
                family = store.get_family_by_slug(slug)
                if family is not None:
                    return family.id
        except Exception:
            logger.exception("Error parsing referer for sysadmin family context")
    return None


def get_auth_context(request: Request) -> AuthResult:
    """Require authentication and attach the family context.

    Setup tokens may name a family with ?familyId= once the FamilySetup
    record allows it. System administrators pick a family through the query
    string, the request path, or the Referer. Everyone else already carries
    their family.
    """
    auth = require_auth(request)
    store: AuthStore = request.app.state.auth_store

    if auth.is_setup_auth and auth.setup_token:
        family_id = request.query_params.get("familyId")
        if not family_id:
            return auth
        try:
            setup = store.get_family_setup(auth.setup_token)
        except Exception:
            logger.exception("Error validating setup token for family context")
            raise HTTPException(status_code=500, detail="Failed to validate setup authorization")
        if setup is not None and (setup.family_id is None or setup.family_id == family_id):
            return replace(auth, family_id=family_id)
        raise HTTPException(status_code=403, detail="Setup token is not authorized for this family")

    if auth.is_sys_admin:
        family_id = _sysadmin_family_id(request, store)
        return replace(auth, family_id=family_id or auth.family_id)

    return auth


def require_admin_context(request: Request) -> AuthResult:
    """get_auth_context() plus the admin check, for family-scoped admin writes."""
    auth = get_auth_context(request)
    if not is_admin(request.app.state.auth_store, auth):
        raise HTTPException(status_code=403, detail="Admin access required")
    return auth


def require_family(auth: AuthResult) -> str:
    """Return the family id the request acts on, or 403 when there is none."""
    if not auth.family_id:
        raise HTTPException(status_code=403, detail="User is not associated with a family.")
    return auth.family_id


def ensure_not_expired(auth: AuthResult) -> None:
    """Refuse a write for an account whose trial or plan has lapsed [E1]."""
    if auth.is_expired:
        raise HTTPException(
            status_code=403,
            detail="Your account has expired. Please upgrade to continue making changes.",
        )
