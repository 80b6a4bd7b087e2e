"""
auth/store.py -- SQLAlchemy Core persistence layer for identity entities.

Pattern: Repository + Data Mapper (same as tracker/store.py).
AuthStore is the repository; the _row_to_* functions are the mappers.
Route, resolver and dependency code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Caretaker login ids are unique per family, not globally. UNIQUE
  (family_id, login_id) cannot be a plain SQL constraint because deleted
  caretakers keep their row (deleted_at set) and a new caretaker may reuse
  the id, so the check lives in create_caretaker().

DB: Settings.database_url. auth/ and tracker/ share one database file; each
store owns its own tables and creates them on startup.

Layer rule: no imports from api/, web/, tracker/, or cache/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, select
from sqlalchemy.engine import Engine

from auth.models import SYSTEM_LOGIN_ID, Account, Caretaker, DeviceToken, Family, FamilySetup

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_families = Table(
    "families",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("slug", String(100), nullable=False, unique=True),
    Column("name", String(255), nullable=False),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_caretakers = Table(
    "caretakers",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("family_id", String(32), nullable=False, index=True),
    Column("login_id", String(2), nullable=False),
    Column("name", String(255), nullable=False),
    Column("type", String(50)),
    Column("role", String(10), nullable=False, server_default="USER"),
    Column("security_pin", Text),  # bcrypt hash
    Column("inactive", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("deleted_at", String(32)),
)

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", Text),
    Column("family_id", String(32), index=True),
    Column("caretaker_id", String(32)),
    Column("verified", Integer, nullable=False, server_default="0"),
    Column("betaparticipant", Integer, nullable=False, server_default="0"),
    Column("closed", Integer, nullable=False, server_default="0"),
    Column("trial_ends", String(32)),
    Column("plan_type", String(30)),
    Column("plan_expires", String(32)),
    Column("created_at", String(32), nullable=False),
)

_device_tokens = Table(
    "device_tokens",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("token_hash", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
    Column("token_prefix", String(8), nullable=False),  # display only
    Column("name", String(100), nullable=False),
    Column("family_id", String(32), nullable=False, index=True),
    Column("caretaker_id", String(32), nullable=False),
    Column("expires_at", String(32)),
    Column("revoked_at", String(32)),
    Column("last_used_at", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_family_setups = Table(
    "family_setups",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("token", String(64), nullable=False, unique=True),
    Column("family_id", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("expires_at", String(32)),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _new_id() -> str:
    return uuid.uuid4().hex


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AuthStore:
    """Repository for Family, Caretaker, Account, DeviceToken and FamilySetup.

    Usage:
        store = AuthStore(get_settings().database_url)
        family_id = store.create_family(Family(slug="smith", name="Smith Family"))
        caretaker = store.get_caretaker_by_login_id(family_id, "00")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Families
    # ------------------------------------------------------------------

    def create_family(self, family: Family) -> str:
        """Insert a family and return its id.

        Raises sqlalchemy.exc.IntegrityError if the slug is taken. The family
        routes catch it and answer 409.
        """
        family_id = family.id or _new_id()
        now = _now_iso()
        with self.engine.connect() as conn:
            conn.execute(
                _families.insert().values(
                    id=family_id,
                    slug=family.slug,
                    name=family.name,
                    is_active=1 if family.is_active else 0,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
        return family_id

    def get_family(self, family_id: str) -> Family | None:
        with self.engine.connect() as conn:
            row = conn.execute(_families.select().where(_families.c.id == family_id)).fetchone()
        return _row_to_family(row) if row is not None else None

    def get_family_by_slug(self, slug: str) -> Family | None:
        with self.engine.connect() as conn:
            row = conn.execute(_families.select().where(_families.c.slug == slug)).fetchone()
        return _row_to_family(row) if row is not None else None

    def update_family(self, family_id: str, **fields) -> bool:
        """Update name and/or slug. Returns False if the family does not exist.

        Raises IntegrityError on a slug conflict.
        """
        allowed = {k: v for k, v in fields.items() if k in ("name", "slug")}
        if not allowed:
            return self.get_family(family_id) is not None
        with self.engine.connect() as conn:
            result = conn.execute(
                _families.update().where(_families.c.id == family_id).values(updated_at=_now_iso(), **allowed)
            )
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Caretakers
    # ------------------------------------------------------------------

    def create_caretaker(self, caretaker: Caretaker) -> str:
        """Insert a caretaker and return its id.

        Raises ValueError if the login id is already used by a non-deleted
        caretaker of the same family.
        """
        if self.get_caretaker_by_login_id(caretaker.family_id, caretaker.login_id) is not None:
            raise ValueError(f"Login ID {caretaker.login_id!r} is already in use in this family")
        caretaker_id = caretaker.id or _new_id()
        with self.engine.connect() as conn:
            conn.execute(
                _caretakers.insert().values(
                    id=caretaker_id,
                    family_id=caretaker.family_id,
                    login_id=caretaker.login_id,
                    name=caretaker.name,
                    type=caretaker.type,
                    role=caretaker.role,
                    security_pin=caretaker.security_pin,
                    inactive=1 if caretaker.inactive else 0,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
        return caretaker_id

    def get_caretaker(self, caretaker_id: str, family_id: str | None = None) -> Caretaker | None:
        """Look up a non-deleted caretaker, optionally scoped to a family."""
        query = _caretakers.select().where(
            (_caretakers.c.id == caretaker_id) & (_caretakers.c.deleted_at.is_(None))
        )
        if family_id is not None:
            query = query.where(_caretakers.c.family_id == family_id)
        with self.engine.connect() as conn:
            row = conn.execute(query).fetchone()
        return _row_to_caretaker(row) if row is not None else None

    def get_caretaker_by_login_id(self, family_id: str, login_id: str) -> Caretaker | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _caretakers.select().where(
                    (_caretakers.c.family_id == family_id)
                    & (_caretakers.c.login_id == login_id)
                    & (_caretakers.c.deleted_at.is_(None))
                )
            ).fetchone()
        return _row_to_caretaker(row) if row is not None else None

    def list_caretakers(self, family_id: str) -> list[Caretaker]:
        """Return the family's non-deleted caretakers ordered by name."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _caretakers.select()
                .where((_caretakers.c.family_id == family_id) & (_caretakers.c.deleted_at.is_(None)))
                .order_by(_caretakers.c.name)
            ).fetchall()
        return [_row_to_caretaker(r) for r in rows]

    def is_system_caretaker(self, caretaker_id: str) -> bool:
        """True if the caretaker is a non-deleted family system caretaker ("00")."""
        caretaker = self.get_caretaker(caretaker_id)
        return caretaker is not None and caretaker.login_id == SYSTEM_LOGIN_ID

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def create_account(self, account: Account) -> str:
        """Insert an account and return its id. Raises IntegrityError on duplicate email."""
        account_id = account.id or _new_id()
        with self.engine.connect() as conn:
            conn.execute(
                _accounts.insert().values(
                    id=account_id,
                    email=account.email.lower(),
                    password_hash=account.password_hash,
                    family_id=account.family_id,
                    caretaker_id=account.caretaker_id,
                    verified=1 if account.verified else 0,
                    betaparticipant=1 if account.betaparticipant else 0,
                    closed=1 if account.closed else 0,
                    trial_ends=account.trial_ends,
                    plan_type=account.plan_type,
                    plan_expires=account.plan_expires,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
        return account_id

    def get_account(self, account_id: str) -> Account | None:
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.id == account_id)).fetchone()
        return _row_to_account(row) if row is not None else None

    def get_account_by_email(self, email: str) -> Account | None:
        """Look up an account by email (case-insensitive; emails are stored lowercased)."""
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.email == email.lower())).fetchone()
        return _row_to_account(row) if row is not None else None

    def get_account_by_family(self, family_id: str) -> Account | None:
        """Return the account that owns a family, or None for self-hosted families."""
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.family_id == family_id)).fetchone()
        return _row_to_account(row) if row is not None else None

    # ------------------------------------------------------------------
    # Device tokens
    # ------------------------------------------------------------------

    def create_device_token(self, token: DeviceToken) -> DeviceToken:
        """Insert a device token record and return it with id and timestamps set."""
        token.id = token.id or _new_id()
        now = _now_iso()
        token.created_at = now
        token.updated_at = now
        with self.engine.connect() as conn:
            conn.execute(
                _device_tokens.insert().values(
                    id=token.id,
                    token_hash=token.token_hash,
                    token_prefix=token.token_prefix,
                    name=token.name,
                    family_id=token.family_id,
                    caretaker_id=token.caretaker_id,
                    expires_at=token.expires_at,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
        return token

    def get_device_token(self, token_id: str, family_id: str | None = None) -> DeviceToken | None:
        """Look up a device token by id (revoked ones included), optionally family-scoped."""
        query = _device_tokens.select().where(_device_tokens.c.id == token_id)
        if family_id is not None:
            query = query.where(_device_tokens.c.family_id == family_id)
        with self.engine.connect() as conn:
            row = conn.execute(query).fetchone()
        return _row_to_device_token(row) if row is not None else None

    def get_device_token_by_hash(self, token_hash: str) -> DeviceToken | None:
        """Look up a device token by its HMAC hash. O(1) via UNIQUE index.

        Revoked and expired tokens are returned too; the resolver reports
        each state with its own message.
        """
        with self.engine.connect() as conn:
            row = conn.execute(_device_tokens.select().where(_device_tokens.c.token_hash == token_hash)).fetchone()
        return _row_to_device_token(row) if row is not None else None

    def list_device_tokens(self, family_id: str) -> list[DeviceToken]:
        """Return all of a family's device tokens, newest first, with caretaker names."""
        query = (
            select(_device_tokens, _caretakers.c.name.label("caretaker_name"))
            .select_from(
                _device_tokens.outerjoin(_caretakers, _caretakers.c.id == _device_tokens.c.caretaker_id)
            )
            .where(_device_tokens.c.family_id == family_id)
            .order_by(_device_tokens.c.created_at.desc())
        )
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_device_token(r) for r in rows]

    def touch_device_token(self, token_id: str) -> None:
        """Stamp last_used_at after a successful validation."""
        now = _now_iso()
        with self.engine.connect() as conn:
            conn.execute(
                _device_tokens.update().where(_device_tokens.c.id == token_id).values(last_used_at=now, updated_at=now)
            )
            conn.commit()

    def revoke_device_token(self, token_id: str, family_id: str) -> bool:
        """Soft-revoke a token. family_id is checked to prevent cross-family revocation.

        Returns True if a token was revoked, False if not found in that family.
        """
        now = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _device_tokens.update()
                .where((_device_tokens.c.id == token_id) & (_device_tokens.c.family_id == family_id))
                .values(revoked_at=now, updated_at=now)
            )
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Family setup records
    # ------------------------------------------------------------------

    def create_family_setup(self, setup: FamilySetup) -> str:
        setup_id = setup.id or _new_id()
        with self.engine.connect() as conn:
            conn.execute(
                _family_setups.insert().values(
                    id=setup_id,
                    token=setup.token,
                    family_id=setup.family_id,
                    created_at=_now_iso(),
                    expires_at=setup.expires_at,
                )
            )
            conn.commit()
        return setup_id

    def get_family_setup(self, token: str) -> FamilySetup | None:
        with self.engine.connect() as conn:
            row = conn.execute(_family_setups.select().where(_family_setups.c.token == token)).fetchone()
        return _row_to_family_setup(row) if row is not None else None

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_family(row) -> Family:
    return Family(
        id=row.id,
        slug=row.slug,
        name=row.name,
        is_active=bool(row.is_active),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_caretaker(row) -> Caretaker:
    return Caretaker(
        id=row.id,
        family_id=row.family_id,
        login_id=row.login_id,
        name=row.name,
        type=row.type,
        role=row.role,
        security_pin=row.security_pin,
        inactive=bool(row.inactive),
        created_at=row.created_at,
        deleted_at=row.deleted_at,
    )


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        family_id=row.family_id,
        caretaker_id=row.caretaker_id,
        verified=bool(row.verified),
        betaparticipant=bool(row.betaparticipant),
        closed=bool(row.closed),
        trial_ends=row.trial_ends,
        plan_type=row.plan_type,
        plan_expires=row.plan_expires,
        created_at=row.created_at,
    )


def _row_to_device_token(row) -> DeviceToken:
    # caretaker_name is only present on rows from list_device_tokens().
    return DeviceToken(
        id=row.id,
        token_hash=row.token_hash,
        token_prefix=row.token_prefix,
        name=row.name,
        family_id=row.family_id,
        caretaker_id=row.caretaker_id,
        expires_at=row.expires_at,
        revoked_at=row.revoked_at,
        last_used_at=row.last_used_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
        caretaker_name=getattr(row, "caretaker_name", None),
    )


def _row_to_family_setup(row) -> FamilySetup:
    return FamilySetup(
        id=row.id,
        token=row.token,
        family_id=row.family_id,
        created_at=row.created_at,
        expires_at=row.expires_at,
    )
