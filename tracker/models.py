"""
tracker/models.py -- Domain dataclasses for the activity tracker.

These are pure data containers with zero logic. Persistence lives in
tracker/store.py; phrase resolution and time formatting live in
tracker/activity.py.

Every record carries family_id. Families and caretakers themselves belong to
auth/models.py; this layer only ever holds their ids.
"""

from dataclasses import dataclass
from typing import Optional

# Enumerations stored as plain upper-case strings.
FEED_TYPES = ("BOTTLE", "BREAST", "SOLIDS")
BREAST_SIDES = ("LEFT", "RIGHT", "BOTH")
DIAPER_TYPES = ("WET", "DIRTY", "BOTH", "DRY")
SLEEP_TYPES = ("NAP", "NIGHT_SLEEP")
SETTINGS_AUTH_TYPES = ("SYSTEM", "CARETAKER")

VOLUME_UNITS = ("OZ", "ML")
SOLIDS_UNITS = ("TBSP", "G")
HEIGHT_UNITS = ("IN", "CM")
WEIGHT_UNITS = ("LB", "KG", "G")
TEMP_UNITS = ("F", "C")

LOG_KINDS = ("feed", "sleep", "diaper", "medicine")


@dataclass
class Baby:
    family_id: str
    first_name: str
    last_name: Optional[str] = None
    birth_date: Optional[str] = None  # ISO date
    inactive: bool = False
    id: Optional[str] = None
    created_at: str = ""
    deleted_at: Optional[str] = None


@dataclass
class Contact:
    family_id: str
    name: str
    role: Optional[str] = None  # "Pediatrician", "Grandparent", ...
    phone: Optional[str] = None
    email: Optional[str] = None
    id: Optional[str] = None
    created_at: str = ""
    deleted_at: Optional[str] = None


@dataclass
class FamilySettings:
    """Per-family preferences. One row per family, created with the family.

    security_pin is the bcrypt hash of the family-wide PIN used when
    auth_type is "SYSTEM". It never leaves the store in an API response.
    """

    family_id: str
    family_name: str = "My Family"
    security_pin: Optional[str] = None
    auth_type: str = "SYSTEM"
    default_bottle_unit: str = "OZ"
    default_solids_unit: str = "TBSP"
    default_height_unit: str = "IN"
    default_weight_unit: str = "LB"
    default_temp_unit: str = "F"
    enable_debug_timer: bool = False
    enable_debug_timezone: bool = False
    updated_at: str = ""


@dataclass
class Medicine:
    family_id: str
    name: str
    typical_dose_size: Optional[float] = None
    unit_abbr: Optional[str] = None
    active: bool = True
    id: Optional[str] = None
    created_at: str = ""
    deleted_at: Optional[str] = None


@dataclass
class FeedLog:
    family_id: str
    baby_id: str
    time: str
    type: str  # FEED_TYPES
    caretaker_id: Optional[str] = None
    amount: Optional[float] = None
    unit_abbr: Optional[str] = None
    side: Optional[str] = None  # BREAST_SIDES, breast feeds only
    bottle_type: Optional[str] = None  # "formula", "breast milk", ...
    food: Optional[str] = None  # solids only
    id: Optional[str] = None
    created_at: str = ""
    deleted_at: Optional[str] = None


@dataclass
class SleepLog:
    """A sleep session. end_time is None while the baby is still asleep.

    duration is whole minutes, set when the session is ended.
    """

    family_id: str
    baby_id: str
    start_time: str
    type: str  # SLEEP_TYPES
    caretaker_id: Optional[str] = None
    end_time: Optional[str] = None
    duration: Optional[int] = None
    id: Optional[str] = None
    created_at: str = ""
    deleted_at: Optional[str] = None


@dataclass
class DiaperLog:
    family_id: str
    baby_id: str
    time: str
    type: str  # DIAPER_TYPES
    caretaker_id: Optional[str] = None
    id: Optional[str] = None
    created_at: str = ""
    deleted_at: Optional[str] = None


@dataclass
class MedicineLog:
    family_id: str
    baby_id: str
    medicine_id: str
    time: str
    dose_amount: float
    caretaker_id: Optional[str] = None
    unit_abbr: Optional[str] = None
    id: Optional[str] = None
    created_at: str = ""
    deleted_at: Optional[str] = None
