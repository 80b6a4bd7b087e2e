"""
tests/conftest.py -- Fixtures shared by the HTTP-level tests.

  _make_test_stores()  auth + tracker stores over one in-memory database
  _patch_lifespan()    puts those stores into app.state in place of startup
  seed_family()        system caretaker "00", an admin, a user, two babies
                       and one medicine
  api_client           ApiContext over two seeded families
  web_client           the same, with follow_redirects=False for kiosk tests

Sync routes run in TestClient's worker threads, and a bare :memory: SQLite
database exists only on the connection that created it. The stores therefore
use a named shared-cache URI (file:<name>?mode=memory&cache=shared&uri=true)
so every connection in the process sees one schema.

Environment defaults are set before the first project import: DEBUG lets
get_settings() generate a SECRET_KEY, and RATE_LIMIT_ENABLED=false keeps the
limiter out of the way (test_rate_limit.py turns it back on locally).
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass

# Must run before core.config is imported.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import pytest
from fastapi.testclient import TestClient

from asgi import app
from auth.models import ROLE_ADMIN, ROLE_USER, SYSTEM_LOGIN_ID, Caretaker, Family
from auth.store import AuthStore
from auth.tokens import create_caretaker_token, create_sysadmin_token, hash_password
from cache.blacklist import TokenBlacklist
from tracker.models import Baby, FamilySettings, Medicine
from tracker.store import TrackerStore

SYSTEM_PIN = "246810"
ADMIN_PIN = "135790"
USER_PIN = "112233"

# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_test_stores(db_suffix: str) -> tuple[AuthStore, TrackerStore]:
    """Both stores on one named in-memory database; db_suffix keeps modules apart."""
    url = f"sqlite:///file:test_babytracker_{db_suffix}?mode=memory&cache=shared&uri=true"
    return AuthStore(db_url=url), TrackerStore(db_url=url)


def _patch_lifespan(auth_store: AuthStore, tracker_store: TrackerStore):
    """Lifespan stand-in. purge_task is a real Task because shutdown calls .cancel() on it."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.auth_store = auth_store
        app.state.tracker_store = tracker_store
        app.state.token_blacklist = TokenBlacklist()
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


# ---------------------------------------------------------------------------
# Seed data
# ---------------------------------------------------------------------------


@dataclass
class SeededFamily:
    id: str
    slug: str
    system_caretaker_id: str
    admin_id: str
    user_id: str
    baby_id: str
    second_baby_id: str
    medicine_id: str
    admin_token: str
    user_token: str

    def headers(self, token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}"}

    @property
    def admin_headers(self) -> dict[str, str]:
        return self.headers(self.admin_token)

    @property
    def user_headers(self) -> dict[str, str]:
        return self.headers(self.user_token)


def seed_family(
    auth_store: AuthStore,
    tracker_store: TrackerStore,
    slug: str,
    auth_type: str = "SYSTEM",
    babies: tuple[str, str] = ("Ada", "Ben"),
) -> SeededFamily:
    """Create a family the way `main.py create-family` does, plus babies and a medicine."""
    family_id = auth_store.create_family(Family(slug=slug, name=f"{slug.title()} Family"))
    system_id = auth_store.create_caretaker(
        Caretaker(
            family_id=family_id,
            login_id=SYSTEM_LOGIN_ID,
            name="System",
            role=ROLE_ADMIN,
            security_pin=hash_password(SYSTEM_PIN),
        )
    )
    admin_id = auth_store.create_caretaker(
        Caretaker(
            family_id=family_id,
            login_id="01",
            name="Alex",
            type="Parent",
            role=ROLE_ADMIN,
            security_pin=hash_password(ADMIN_PIN),
        )
    )
    user_id = auth_store.create_caretaker(
        Caretaker(
            family_id=family_id,
            login_id="02",
            name="Grandma",
            type="Grandparent",
            role=ROLE_USER,
            security_pin=hash_password(USER_PIN),
        )
    )
    tracker_store.create_settings(
        FamilySettings(
            family_id=family_id,
            family_name=f"{slug.title()} Family",
            security_pin=hash_password(SYSTEM_PIN),
            auth_type=auth_type,
        )
    )
    baby_id = tracker_store.create_baby(Baby(family_id=family_id, first_name=babies[0]))
    second_baby_id = tracker_store.create_baby(Baby(family_id=family_id, first_name=babies[1]))
    medicine_id = tracker_store.create_medicine(
        Medicine(family_id=family_id, name="Tylenol", typical_dose_size=2.5, unit_abbr="ML")
    )
    return SeededFamily(
        id=family_id,
        slug=slug,
        system_caretaker_id=system_id,
        admin_id=admin_id,
        user_id=user_id,
        baby_id=baby_id,
        second_baby_id=second_baby_id,
        medicine_id=medicine_id,
        admin_token=create_caretaker_token(admin_id, "Alex", "Parent", ROLE_ADMIN, family_id, slug),
        user_token=create_caretaker_token(user_id, "Grandma", "Grandparent", ROLE_USER, family_id, slug),
    )


@dataclass
class ApiContext:
    client: TestClient
    auth_store: AuthStore
    tracker_store: TrackerStore
    family: SeededFamily
    other: SeededFamily
    sysadmin_token: str


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


def _context(db_suffix: str, follow_redirects: bool) -> Generator[ApiContext, None, None]:
    auth_store, tracker_store = _make_test_stores(db_suffix)
    family = seed_family(auth_store, tracker_store, f"{db_suffix}-home", auth_type="SYSTEM")
    other = seed_family(auth_store, tracker_store, f"{db_suffix}-other", auth_type="CARETAKER", babies=("Cy", "Di"))

    app.router.lifespan_context = _patch_lifespan(auth_store, tracker_store)

    with TestClient(app, follow_redirects=follow_redirects, raise_server_exceptions=True) as client:
        yield ApiContext(
            client=client,
            auth_store=auth_store,
            tracker_store=tracker_store,
            family=family,
            other=other,
            sysadmin_token=create_sysadmin_token(),
        )

    auth_store.close()
    tracker_store.close()


@pytest.fixture(scope="module")
def api_client(request) -> Generator[ApiContext, None, None]:
    """Yield an ApiContext for API integration tests.

    Each test module gets its own database (named after the module), so
    rows created in one module never show up in another.
    """
    yield from _context(request.module.__name__.rsplit(".", 1)[-1].replace("_", "-"), follow_redirects=True)


@pytest.fixture(scope="module")
def web_client(request) -> Generator[ApiContext, None, None]:
    """Yield an ApiContext whose client does not follow redirects.

    follow_redirects=False is essential for kiosk form tests: we assert on
    redirect *locations* (303 back to /kindle/{token}?...), which are
    invisible once the client follows the redirect.
    """
    suffix = "web-" + request.module.__name__.rsplit(".", 1)[-1].replace("_", "-")
    yield from _context(suffix, follow_redirects=False)
