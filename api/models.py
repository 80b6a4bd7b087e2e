"""
API request and response models for the baby tracker REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
tracker/models.py, which own the internal domain representation. Route
handlers map between the two.

Wire format: camelCase JSON (familySlug, babyId, ...). ApiModel sets an
alias generator so Python code keeps snake_case; requests are accepted in
either form. Every successful response is wrapped in
ApiResponse {"success": true, "data": ...}; errors are produced by the
exception handlers in api/main.py as {"success": false, "error": "..."}.
"""

from datetime import datetime
from typing import Generic, Literal, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from auth.models import AuthResult, DeviceToken

T = TypeVar("T")

PIN_PATTERN = r"^\d{6,10}$"
LOGIN_ID_PATTERN = r"^\d{2}$"
SLUG_PATTERN = r"^[a-z0-9](?:[a-z0-9-]{1,48}[a-z0-9])$"

FeedType = Literal["BOTTLE", "BREAST", "SOLIDS"]
BreastSide = Literal["LEFT", "RIGHT", "BOTH"]
DiaperType = Literal["WET", "DIRTY", "BOTH", "DRY"]
SleepType = Literal["NAP", "NIGHT_SLEEP"]
VolumeUnit = Literal["OZ", "ML"]
SolidsUnit = Literal["TBSP", "G"]
HeightUnit = Literal["IN", "CM"]
WeightUnit = Literal["LB", "KG", "G"]
TempUnit = Literal["F", "C"]


class ApiModel(BaseModel):
    """Base for every API model: camelCase aliases, snake_case attributes."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
        str_strip_whitespace=True,
    )


class ApiResponse(BaseModel, Generic[T]):
    """Success envelope shared by every JSON endpoint."""

    success: bool = True
    data: Optional[T] = None


class HealthResponse(ApiModel):
    """Response for GET /api/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class LoginRequest(ApiModel):
    """PIN login. login_id is ignored when the family uses the family-wide PIN."""

    family_slug: str = Field(min_length=1, max_length=100)
    login_id: Optional[str] = Field(default=None, pattern=LOGIN_ID_PATTERN)
    security_pin: str = Field(min_length=1, max_length=10)


class LoginResponse(ApiModel):
    token: str
    expires_in: int
    caretaker_id: str
    caretaker_name: str
    role: str
    family_slug: str


class AccountLoginRequest(ApiModel):
    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=1, max_length=72)


class AccountLoginResponse(ApiModel):
    token: str
    expires_in: int
    account_id: str
    family_slug: Optional[str] = None


class MagicLinkRequest(ApiModel):
    # Optional so a missing token gets the route's own 400 message.
    token: Optional[str] = None


class MagicLinkResponse(ApiModel):
    token: str
    family_slug: Optional[str]
    caretaker_id: Optional[str]
    caretaker_name: str


class MeResponse(ApiModel):
    """The resolved identity. Mirrors AuthResult minus setup secrets and errors."""

    authenticated: bool
    caretaker_id: Optional[str] = None
    caretaker_name: Optional[str] = None
    caretaker_type: Optional[str] = None
    caretaker_role: Optional[str] = None
    family_id: Optional[str] = None
    family_slug: Optional[str] = None
    is_sys_admin: bool = False
    is_setup_auth: bool = False
    auth_type: Optional[str] = None
    is_account_auth: bool = False
    account_id: Optional[str] = None
    account_email: Optional[str] = None
    is_account_owner: bool = False
    verified: Optional[bool] = None
    betaparticipant: bool = False
    is_expired: bool = False
    trial_ends: Optional[str] = None
    plan_expires: Optional[str] = None
    plan_type: Optional[str] = None

    @classmethod
    def from_auth(cls, auth: AuthResult) -> "MeResponse":
        return cls.model_validate(auth)


# ---------------------------------------------------------------------------
# Family and settings
# ---------------------------------------------------------------------------


class FamilyResponse(ApiModel):
    id: str
    slug: str
    name: str
    is_active: bool


class FamilyUpdate(ApiModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    slug: Optional[str] = Field(default=None, pattern=SLUG_PATTERN)


class SettingsResponse(ApiModel):
    """Family settings as returned to clients. The PIN hash is never included."""

    family_id: str
    family_name: str
    auth_type: str
    has_security_pin: bool = False
    default_bottle_unit: str
    default_solids_unit: str
    default_height_unit: str
    default_weight_unit: str
    default_temp_unit: str
    enable_debug_timer: bool
    enable_debug_timezone: bool
    updated_at: str


class SettingsUpdate(ApiModel):
    family_name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    security_pin: Optional[str] = Field(default=None, pattern=PIN_PATTERN)
    auth_type: Optional[Literal["SYSTEM", "CARETAKER"]] = None
    default_bottle_unit: Optional[VolumeUnit] = None
    default_solids_unit: Optional[SolidsUnit] = None
    default_height_unit: Optional[HeightUnit] = None
    default_weight_unit: Optional[WeightUnit] = None
    default_temp_unit: Optional[TempUnit] = None
    enable_debug_timer: Optional[bool] = None
    enable_debug_timezone: Optional[bool] = None


# ---------------------------------------------------------------------------
# Babies, caretakers, contacts, medicines
# ---------------------------------------------------------------------------


class BabyCreate(ApiModel):
    first_name: str = Field(min_length=1, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    birth_date: Optional[str] = Field(default=None, pattern=r"^\d{4}-\d{2}-\d{2}$")


class BabyResponse(ApiModel):
    id: str
    first_name: str
    last_name: Optional[str] = None
    birth_date: Optional[str] = None
    inactive: bool
    created_at: str


class CaretakerCreate(ApiModel):
    login_id: str = Field(pattern=LOGIN_ID_PATTERN)
    name: str = Field(min_length=1, max_length=255)
    type: Optional[str] = Field(default=None, max_length=50)
    role: Literal["ADMIN", "USER"] = "USER"
    security_pin: str = Field(pattern=PIN_PATTERN)


class CaretakerResponse(ApiModel):
    id: str
    login_id: str
    name: str
    type: Optional[str] = None
    role: str
    inactive: bool


class ContactCreate(ApiModel):
    name: str = Field(min_length=1, max_length=255)
    role: Optional[str] = Field(default=None, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=50)
    email: Optional[str] = Field(default=None, max_length=255)


class ContactResponse(ApiModel):
    id: str
    name: str
    role: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None


class MedicineCreate(ApiModel):
    name: str = Field(min_length=1, max_length=255)
    typical_dose_size: Optional[float] = Field(default=None, gt=0)
    unit_abbr: Optional[str] = Field(default=None, max_length=10)


class MedicineResponse(ApiModel):
    id: str
    name: str
    typical_dose_size: Optional[float] = None
    unit_abbr: Optional[str] = None
    active: bool


# ---------------------------------------------------------------------------
# Activity logs
# ---------------------------------------------------------------------------


class FeedLogCreate(ApiModel):
    baby_id: str
    type: FeedType
    time: Optional[datetime] = None  # defaults to now
    amount: Optional[float] = Field(default=None, ge=0)
    unit_abbr: Optional[str] = Field(default=None, max_length=10)
    side: Optional[BreastSide] = None
    bottle_type: Optional[str] = Field(default=None, max_length=50)
    food: Optional[str] = Field(default=None, max_length=255)


class SleepLogCreate(ApiModel):
    baby_id: str
    type: SleepType = "NAP"
    start_time: Optional[datetime] = None  # defaults to now
    end_time: Optional[datetime] = None


class SleepEndRequest(ApiModel):
    end_time: Optional[datetime] = None  # defaults to now


class DiaperLogCreate(ApiModel):
    baby_id: str
    type: DiaperType = "WET"
    time: Optional[datetime] = None


class MedicineLogCreate(ApiModel):
    baby_id: str
    medicine_id: str
    time: Optional[datetime] = None
    dose_amount: Optional[float] = Field(default=None, gt=0)
    unit_abbr: Optional[str] = Field(default=None, max_length=10)


class FeedLogResponse(ApiModel):
    id: str
    baby_id: str
    caretaker_id: Optional[str] = None
    time: str
    type: str
    amount: Optional[float] = None
    unit_abbr: Optional[str] = None
    side: Optional[str] = None
    bottle_type: Optional[str] = None
    food: Optional[str] = None


class SleepLogResponse(ApiModel):
    id: str
    baby_id: str
    caretaker_id: Optional[str] = None
    start_time: str
    end_time: Optional[str] = None
    duration: Optional[int] = None
    type: str


class DiaperLogResponse(ApiModel):
    id: str
    baby_id: str
    caretaker_id: Optional[str] = None
    time: str
    type: str


class MedicineLogResponse(ApiModel):
    id: str
    baby_id: str
    caretaker_id: Optional[str] = None
    medicine_id: str
    time: str
    dose_amount: float
    unit_abbr: Optional[str] = None


# ---------------------------------------------------------------------------
# Device tokens
# ---------------------------------------------------------------------------


class DeviceTokenCreate(ApiModel):
    # Optional so a missing or blank name gets the route's own 400 message.
    name: Optional[str] = Field(default=None, max_length=100)
    expires_at: Optional[datetime] = None


class DeviceTokenCreatedResponse(ApiModel):
    """Returned once at creation. token is the raw secret and is never shown again."""

    id: str
    token: str
    name: str
    created_at: str
    expires_at: Optional[str] = None


class DeviceTokenRow(ApiModel):
    """One entry in GET /api/device-tokens. Only the first 8 chars of the token are shown."""

    id: str
    token_preview: str
    name: str
    caretaker_name: Optional[str] = None
    expires_at: Optional[str] = None
    revoked_at: Optional[str] = None
    last_used_at: Optional[str] = None
    created_at: str
    is_active: bool

    @classmethod
    def from_token(cls, token: DeviceToken, is_active: bool) -> "DeviceTokenRow":
        return cls(
            id=token.id,
            token_preview=f"{token.token_prefix}...",
            name=token.name,
            caretaker_name=token.caretaker_name,
            expires_at=token.expires_at,
            revoked_at=token.revoked_at,
            last_used_at=token.last_used_at,
            created_at=token.created_at or "",
            is_active=is_active,
        )


# ---------------------------------------------------------------------------
# Voice assistant
# ---------------------------------------------------------------------------


class VoiceLogRequest(ApiModel):
    """Loose phrase-based request from a voice assistant.

    Every field is optional at the schema level: the route reports missing
    ones with messages a voice assistant can read back to the user.
    """

    action: Optional[str] = None
    baby_name: Optional[str] = None
    amount: Optional[float] = None
    unit: Optional[str] = None
    type: Optional[str] = None
    side: Optional[str] = None
    sleep_type: Optional[str] = None
    bottle_type: Optional[str] = None
    medicine: Optional[str] = None


class VoiceLogResponse(ApiModel):
    message: str
