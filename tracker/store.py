"""
tracker/store.py -- SQLAlchemy Core persistence layer for the activity tracker.

Uses SQLAlchemy Core (not ORM) so the domain dataclasses in tracker/models.py
remain the authoritative domain representation.

Pattern: Repository + Data Mapper. TrackerStore is the repository (one clean
interface per entity). The _row_to_* functions are the mappers. Route handlers
never touch SQL directly.

Tenancy: every method takes family_id and every query filters on it. A baby,
medicine or log id from another family behaves exactly like an unknown id.
Soft-deleted rows (deleted_at set) are invisible to every read.

Timestamps are stored as UTC ISO-8601 strings, so ORDER BY on them is
chronological.

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = TrackerStore(get_settings().database_url)
    baby_id = store.create_baby(Baby(family_id=fid, first_name="Ada"))
    store.create_feed_log(FeedLog(family_id=fid, baby_id=baby_id, time=now, type="BOTTLE", amount=4))
    feeds = store.list_logs("feed", fid, baby_id)
    store.close()
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, Float, Integer, MetaData, String, Table, create_engine, event, func
from sqlalchemy.engine import Engine

from core.timestamps import parse_timestamp
from tracker.models import (
    Baby,
    Contact,
    DiaperLog,
    FamilySettings,
    FeedLog,
    Medicine,
    MedicineLog,
    SleepLog,
)

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_babies = Table(
    "babies",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("family_id", String(32), nullable=False, index=True),
    Column("first_name", String(100), nullable=False),
    Column("last_name", String(100)),
    Column("birth_date", String(10)),  # YYYY-MM-DD
    Column("inactive", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("deleted_at", String(32)),
)

_contacts = Table(
    "contacts",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("family_id", String(32), nullable=False, index=True),
    Column("name", String(255), nullable=False),
    Column("role", String(100)),
    Column("phone", String(50)),
    Column("email", String(255)),
    Column("created_at", String(32), nullable=False),
    Column("deleted_at", String(32)),
)

_settings = Table(
    "settings",
    metadata,
    Column("family_id", String(32), primary_key=True),
    Column("family_name", String(255), nullable=False),
    Column("security_pin", String(100)),  # bcrypt hash
    Column("auth_type", String(10), nullable=False, server_default="SYSTEM"),
    Column("default_bottle_unit", String(10), nullable=False, server_default="OZ"),
    Column("default_solids_unit", String(10), nullable=False, server_default="TBSP"),
    Column("default_height_unit", String(10), nullable=False, server_default="IN"),
    Column("default_weight_unit", String(10), nullable=False, server_default="LB"),
    Column("default_temp_unit", String(10), nullable=False, server_default="F"),
    Column("enable_debug_timer", Integer, nullable=False, server_default="0"),
    Column("enable_debug_timezone", Integer, nullable=False, server_default="0"),
    Column("updated_at", String(32), nullable=False),
)

_medicines = Table(
    "medicines",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("family_id", String(32), nullable=False, index=True),
    Column("name", String(255), nullable=False),
    Column("typical_dose_size", Float),
    Column("unit_abbr", String(10)),
    Column("active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    Column("deleted_at", String(32)),
)

_feed_logs = Table(
    "feed_logs",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("family_id", String(32), nullable=False, index=True),
    Column("baby_id", String(32), nullable=False, index=True),
    Column("caretaker_id", String(32)),
    Column("time", String(32), nullable=False),
    Column("type", String(10), nullable=False),
    Column("amount", Float),
    Column("unit_abbr", String(10)),
    Column("side", String(10)),
    Column("bottle_type", String(50)),
    Column("food", String(255)),
    Column("created_at", String(32), nullable=False),
    Column("deleted_at", String(32)),
)

_sleep_logs = Table(
    "sleep_logs",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("family_id", String(32), nullable=False, index=True),
    Column("baby_id", String(32), nullable=False, index=True),
    Column("caretaker_id", String(32)),
    Column("start_time", String(32), nullable=False),
    Column("end_time", String(32)),
    Column("duration", Integer),  # minutes
    Column("type", String(15), nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("deleted_at", String(32)),
)

_diaper_logs = Table(
    "diaper_logs",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("family_id", String(32), nullable=False, index=True),
    Column("baby_id", String(32), nullable=False, index=True),
    Column("caretaker_id", String(32)),
    Column("time", String(32), nullable=False),
    Column("type", String(10), nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("deleted_at", String(32)),
)

_medicine_logs = Table(
    "medicine_logs",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("family_id", String(32), nullable=False, index=True),
    Column("baby_id", String(32), nullable=False, index=True),
    Column("caretaker_id", String(32)),
    Column("medicine_id", String(32), nullable=False),
    Column("time", String(32), nullable=False),
    Column("dose_amount", Float, nullable=False),
    Column("unit_abbr", String(10)),
    Column("created_at", String(32), nullable=False),
    Column("deleted_at", String(32)),
)

# Settings columns a caller may change. Validated before any SQL write.
_SETTINGS_FIELDS = {
    "family_name",
    "security_pin",
    "auth_type",
    "default_bottle_unit",
    "default_solids_unit",
    "default_height_unit",
    "default_weight_unit",
    "default_temp_unit",
    "enable_debug_timer",
    "enable_debug_timezone",
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _new_id() -> str:
    return uuid.uuid4().hex


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class TrackerStore:
    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            # The same connection may be used from FastAPI's threadpool.
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Babies
    # ------------------------------------------------------------------

    def create_baby(self, baby: Baby) -> str:
        baby_id = baby.id or _new_id()
        with self.engine.connect() as conn:
            conn.execute(
                _babies.insert().values(
                    id=baby_id,
                    family_id=baby.family_id,
                    first_name=baby.first_name,
                    last_name=baby.last_name,
                    birth_date=baby.birth_date,
                    inactive=1 if baby.inactive else 0,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
        return baby_id

    def get_baby(self, baby_id: str, family_id: str) -> Optional[Baby]:
        """Fetch a non-deleted baby in the family. Inactive babies are included."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _babies.select().where(
                    (_babies.c.id == baby_id) & (_babies.c.family_id == family_id) & (_babies.c.deleted_at.is_(None))
                )
            ).fetchone()
        return _row_to_baby(row) if row is not None else None

    def list_babies(self, family_id: str, active_only: bool = False) -> list[Baby]:
        """Return the family's babies ordered by first name."""
        query = _babies.select().where((_babies.c.family_id == family_id) & (_babies.c.deleted_at.is_(None)))
        if active_only:
            query = query.where(_babies.c.inactive == 0)
        with self.engine.connect() as conn:
            rows = conn.execute(query.order_by(_babies.c.first_name)).fetchall()
        return [_row_to_baby(r) for r in rows]

    def find_baby_by_first_name(self, family_id: str, first_name: str) -> Optional[Baby]:
        """Case-insensitive first-name lookup among the family's active babies."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _babies.select()
                .where(
                    (_babies.c.family_id == family_id)
                    & (_babies.c.deleted_at.is_(None))
                    & (_babies.c.inactive == 0)
                    & (func.lower(_babies.c.first_name) == first_name.strip().lower())
                )
                .order_by(_babies.c.created_at)
            ).fetchone()
        return _row_to_baby(row) if row is not None else None

    # ------------------------------------------------------------------
    # Contacts
    # ------------------------------------------------------------------

    def create_contact(self, contact: Contact) -> str:
        contact_id = contact.id or _new_id()
        with self.engine.connect() as conn:
            conn.execute(
                _contacts.insert().values(
                    id=contact_id,
                    family_id=contact.family_id,
                    name=contact.name,
                    role=contact.role,
                    phone=contact.phone,
                    email=contact.email,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
        return contact_id

    def list_contacts(self, family_id: str) -> list[Contact]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _contacts.select()
                .where((_contacts.c.family_id == family_id) & (_contacts.c.deleted_at.is_(None)))
                .order_by(_contacts.c.name)
            ).fetchall()
        return [_row_to_contact(r) for r in rows]

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def create_settings(self, settings: FamilySettings) -> None:
        """Insert the settings row for a new family.

        Raises sqlalchemy.exc.IntegrityError if the family already has one.
        """
        with self.engine.connect() as conn:
            conn.execute(
                _settings.insert().values(
                    family_id=settings.family_id,
                    family_name=settings.family_name,
                    security_pin=settings.security_pin,
                    auth_type=settings.auth_type,
                    default_bottle_unit=settings.default_bottle_unit,
                    default_solids_unit=settings.default_solids_unit,
                    default_height_unit=settings.default_height_unit,
                    default_weight_unit=settings.default_weight_unit,
                    default_temp_unit=settings.default_temp_unit,
                    enable_debug_timer=1 if settings.enable_debug_timer else 0,
                    enable_debug_timezone=1 if settings.enable_debug_timezone else 0,
                    updated_at=_now_iso(),
                )
            )
            conn.commit()

    def get_settings(self, family_id: str) -> Optional[FamilySettings]:
        with self.engine.connect() as conn:
            row = conn.execute(_settings.select().where(_settings.c.family_id == family_id)).fetchone()
        return _row_to_settings(row) if row is not None else None

    def update_settings(self, family_id: str, **fields) -> Optional[FamilySettings]:
        """Update one or more settings fields and return the new row.

        Only keys in _SETTINGS_FIELDS are accepted. Unknown keys raise
        ValueError rather than being silently ignored. Creates the row with
        defaults first if the family has none yet.

        Returns None only if the row could not be found after the write.
        """
        unknown = set(fields) - _SETTINGS_FIELDS
        if unknown:
            raise ValueError(f"Unknown settings fields: {unknown!r}")
        if self.get_settings(family_id) is None:
            self.create_settings(FamilySettings(family_id=family_id))
        for flag in ("enable_debug_timer", "enable_debug_timezone"):
            if flag in fields:
                fields[flag] = 1 if fields[flag] else 0
        if fields:
            with self.engine.connect() as conn:
                conn.execute(
                    _settings.update().where(_settings.c.family_id == family_id).values(updated_at=_now_iso(), **fields)
                )
                conn.commit()
        return self.get_settings(family_id)

    # ------------------------------------------------------------------
    # Medicines
    # ------------------------------------------------------------------

    def create_medicine(self, medicine: Medicine) -> str:
        medicine_id = medicine.id or _new_id()
        with self.engine.connect() as conn:
            conn.execute(
                _medicines.insert().values(
                    id=medicine_id,
                    family_id=medicine.family_id,
                    name=medicine.name,
                    typical_dose_size=medicine.typical_dose_size,
                    unit_abbr=medicine.unit_abbr,
                    active=1 if medicine.active else 0,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
        return medicine_id

    def get_medicine(self, medicine_id: str, family_id: str, active_only: bool = True) -> Optional[Medicine]:
        query = _medicines.select().where(
            (_medicines.c.id == medicine_id)
            & (_medicines.c.family_id == family_id)
            & (_medicines.c.deleted_at.is_(None))
        )
        if active_only:
            query = query.where(_medicines.c.active == 1)
        with self.engine.connect() as conn:
            row = conn.execute(query).fetchone()
        return _row_to_medicine(row) if row is not None else None

    def list_medicines(self, family_id: str, active_only: bool = True) -> list[Medicine]:
        """Return the family's medicines ordered by name."""
        query = _medicines.select().where((_medicines.c.family_id == family_id) & (_medicines.c.deleted_at.is_(None)))
        if active_only:
            query = query.where(_medicines.c.active == 1)
        with self.engine.connect() as conn:
            rows = conn.execute(query.order_by(_medicines.c.name)).fetchall()
        return [_row_to_medicine(r) for r in rows]

    def find_medicine_by_name(self, family_id: str, name: str) -> Optional[Medicine]:
        """Case-insensitive name lookup among the family's active medicines."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _medicines.select().where(
                    (_medicines.c.family_id == family_id)
                    & (_medicines.c.deleted_at.is_(None))
                    & (_medicines.c.active == 1)
                    & (func.lower(_medicines.c.name) == name.strip().lower())
                )
            ).fetchone()
        return _row_to_medicine(row) if row is not None else None

    # ------------------------------------------------------------------
    # Logs
    # ------------------------------------------------------------------

    def create_feed_log(self, log: FeedLog) -> FeedLog:
        log.id = log.id or _new_id()
        log.created_at = _now_iso()
        with self.engine.connect() as conn:
            conn.execute(
                _feed_logs.insert().values(
                    id=log.id,
                    family_id=log.family_id,
                    baby_id=log.baby_id,
                    caretaker_id=log.caretaker_id,
                    time=log.time,
                    type=log.type,
                    amount=log.amount,
                    unit_abbr=log.unit_abbr,
                    side=log.side,
                    bottle_type=log.bottle_type,
                    food=log.food,
                    created_at=log.created_at,
                )
            )
            conn.commit()
        return log

    def create_sleep_log(self, log: SleepLog) -> SleepLog:
        log.id = log.id or _new_id()
        log.created_at = _now_iso()
        with self.engine.connect() as conn:
            conn.execute(
                _sleep_logs.insert().values(
                    id=log.id,
                    family_id=log.family_id,
                    baby_id=log.baby_id,
                    caretaker_id=log.caretaker_id,
                    start_time=log.start_time,
                    end_time=log.end_time,
                    duration=log.duration,
                    type=log.type,
                    created_at=log.created_at,
                )
            )
            conn.commit()
        return log

    def create_diaper_log(self, log: DiaperLog) -> DiaperLog:
        log.id = log.id or _new_id()
        log.created_at = _now_iso()
        with self.engine.connect() as conn:
            conn.execute(
                _diaper_logs.insert().values(
                    id=log.id,
                    family_id=log.family_id,
                    baby_id=log.baby_id,
                    caretaker_id=log.caretaker_id,
                    time=log.time,
                    type=log.type,
                    created_at=log.created_at,
                )
            )
            conn.commit()
        return log

    def create_medicine_log(self, log: MedicineLog) -> MedicineLog:
        log.id = log.id or _new_id()
        log.created_at = _now_iso()
        with self.engine.connect() as conn:
            conn.execute(
                _medicine_logs.insert().values(
                    id=log.id,
                    family_id=log.family_id,
                    baby_id=log.baby_id,
                    caretaker_id=log.caretaker_id,
                    medicine_id=log.medicine_id,
                    time=log.time,
                    dose_amount=log.dose_amount,
                    unit_abbr=log.unit_abbr,
                    created_at=log.created_at,
                )
            )
            conn.commit()
        return log

    def list_logs(self, kind: str, family_id: str, baby_id: str, limit: int = 50) -> list:
        """Return a baby's logs of one kind, newest first.

        kind is one of tracker.models.LOG_KINDS; anything else raises KeyError.
        """
        table, time_col, mapper = _LOG_TABLES[kind]
        with self.engine.connect() as conn:
            rows = conn.execute(
                table.select()
                .where((table.c.family_id == family_id) & (table.c.baby_id == baby_id) & (table.c.deleted_at.is_(None)))
                .order_by(table.c[time_col].desc())
                .limit(limit)
            ).fetchall()
        return [mapper(r) for r in rows]

    def latest_log(self, kind: str, family_id: str, baby_id: str):
        logs = self.list_logs(kind, family_id, baby_id, limit=1)
        return logs[0] if logs else None

    def delete_log(self, kind: str, log_id: str, family_id: str) -> bool:
        """Soft-delete a log. Returns False if it is not a live log of this family."""
        table = _LOG_TABLES[kind][0]
        with self.engine.connect() as conn:
            result = conn.execute(
                table.update()
                .where((table.c.id == log_id) & (table.c.family_id == family_id) & (table.c.deleted_at.is_(None)))
                .values(deleted_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def get_sleep_log(self, log_id: str, family_id: str) -> Optional[SleepLog]:
        with self.engine.connect() as conn:
            row = conn.execute(
                _sleep_logs.select().where(
                    (_sleep_logs.c.id == log_id)
                    & (_sleep_logs.c.family_id == family_id)
                    & (_sleep_logs.c.deleted_at.is_(None))
                )
            ).fetchone()
        return _row_to_sleep(row) if row is not None else None

    def get_active_sleep(self, family_id: str, baby_id: str) -> Optional[SleepLog]:
        """Return the baby's most recently started sleep that has no end time."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _sleep_logs.select()
                .where(
                    (_sleep_logs.c.family_id == family_id)
                    & (_sleep_logs.c.baby_id == baby_id)
                    & (_sleep_logs.c.end_time.is_(None))
                    & (_sleep_logs.c.deleted_at.is_(None))
                )
                .order_by(_sleep_logs.c.start_time.desc())
            ).fetchone()
        return _row_to_sleep(row) if row is not None else None

    def end_sleep(self, log_id: str, family_id: str, end_time: datetime) -> Optional[SleepLog]:
        """Close a sleep session, storing end_time and duration in whole minutes.

        Returns the updated log, or None if the log is not in this family.
        Ending an already ended sleep moves its end time.
        """
        log = self.get_sleep_log(log_id, family_id)
        if log is None:
            return None
        if end_time.tzinfo is None:
            end_time = end_time.replace(tzinfo=timezone.utc)
        started = parse_timestamp(log.start_time)
        # Halves round up: a 2.5 minute nap is 3 minutes.
        duration = int(max(0.0, (end_time - started).total_seconds() / 60) + 0.5)
        end_iso = end_time.astimezone(timezone.utc).isoformat()
        with self.engine.connect() as conn:
            conn.execute(
                _sleep_logs.update()
                .where((_sleep_logs.c.id == log_id) & (_sleep_logs.c.family_id == family_id))
                .values(end_time=end_iso, duration=duration)
            )
            conn.commit()
        log.end_time = end_iso
        log.duration = duration
        return log

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_baby(row) -> Baby:
    return Baby(
        id=row.id,
        family_id=row.family_id,
        first_name=row.first_name,
        last_name=row.last_name,
        birth_date=row.birth_date,
        inactive=bool(row.inactive),
        created_at=row.created_at,
        deleted_at=row.deleted_at,
    )


def _row_to_contact(row) -> Contact:
    return Contact(
        id=row.id,
        family_id=row.family_id,
        name=row.name,
        role=row.role,
        phone=row.phone,
        email=row.email,
        created_at=row.created_at,
        deleted_at=row.deleted_at,
    )


def _row_to_settings(row) -> FamilySettings:
    return FamilySettings(
        family_id=row.family_id,
        family_name=row.family_name,
        security_pin=row.security_pin,
        auth_type=row.auth_type,
        default_bottle_unit=row.default_bottle_unit,
        default_solids_unit=row.default_solids_unit,
        default_height_unit=row.default_height_unit,
        default_weight_unit=row.default_weight_unit,
        default_temp_unit=row.default_temp_unit,
        enable_debug_timer=bool(row.enable_debug_timer),
        enable_debug_timezone=bool(row.enable_debug_timezone),
        updated_at=row.updated_at,
    )


def _row_to_medicine(row) -> Medicine:
    return Medicine(
        id=row.id,
        family_id=row.family_id,
        name=row.name,
        typical_dose_size=row.typical_dose_size,
        unit_abbr=row.unit_abbr,
        active=bool(row.active),
        created_at=row.created_at,
        deleted_at=row.deleted_at,
    )


def _row_to_feed(row) -> FeedLog:
    return FeedLog(
        id=row.id,
        family_id=row.family_id,
        baby_id=row.baby_id,
        caretaker_id=row.caretaker_id,
        time=row.time,
        type=row.type,
        amount=row.amount,
        unit_abbr=row.unit_abbr,
        side=row.side,
        bottle_type=row.bottle_type,
        food=row.food,
        created_at=row.created_at,
        deleted_at=row.deleted_at,
    )


def _row_to_sleep(row) -> SleepLog:
    return SleepLog(
        id=row.id,
        family_id=row.family_id,
        baby_id=row.baby_id,
        caretaker_id=row.caretaker_id,
        start_time=row.start_time,
        end_time=row.end_time,
        duration=row.duration,
        type=row.type,
        created_at=row.created_at,
        deleted_at=row.deleted_at,
    )


def _row_to_diaper(row) -> DiaperLog:
    return DiaperLog(
        id=row.id,
        family_id=row.family_id,
        baby_id=row.baby_id,
        caretaker_id=row.caretaker_id,
        time=row.time,
        type=row.type,
        created_at=row.created_at,
        deleted_at=row.deleted_at,
    )


def _row_to_medicine_log(row) -> MedicineLog:
    return MedicineLog(
        id=row.id,
        family_id=row.family_id,
        baby_id=row.baby_id,
        caretaker_id=row.caretaker_id,
        medicine_id=row.medicine_id,
        time=row.time,
        dose_amount=row.dose_amount,
        unit_abbr=row.unit_abbr,
        created_at=row.created_at,
        deleted_at=row.deleted_at,
    )


# kind -> (table, column ordered on, row mapper)
_LOG_TABLES = {
    "feed": (_feed_logs, "time", _row_to_feed),
    "sleep": (_sleep_logs, "start_time", _row_to_sleep),
    "diaper": (_diaper_logs, "time", _row_to_diaper),
    "medicine": (_medicine_logs, "time", _row_to_medicine_log),
}
