"""
api/routes/family.py -- Family profile and family directory endpoints.

Routes:
  GET  /api/family      -- the family's name and slug
  PUT  /api/family      -- rename / change slug (admin; 409 on slug conflict)
  GET  /api/baby        -- list babies
  POST /api/baby        -- add a baby (admin)
  GET  /api/caretaker   -- list caretakers (PIN hashes never returned)
  POST /api/caretaker   -- add a caretaker (admin; login id "00" is reserved)
  GET  /api/contact     -- list contacts
  POST /api/contact     -- add a contact
  GET  /api/medicine    -- list active medicines
  POST /api/medicine    -- add a medicine

Every route acts on the family from get_auth_context(). Writes are refused
for expired accounts.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.exc import IntegrityError

from api.models import (
    ApiResponse,
    BabyCreate,
    BabyResponse,
    CaretakerCreate,
    CaretakerResponse,
    ContactCreate,
    ContactResponse,
    FamilyResponse,
    FamilyUpdate,
    MedicineCreate,
    MedicineResponse,
)
from auth.dependencies import ensure_not_expired, get_auth_context, require_admin_context, require_family
from auth.models import SYSTEM_LOGIN_ID, AuthResult, Caretaker
from auth.store import AuthStore
from auth.tokens import hash_password
from tracker.models import Baby, Contact, Medicine
from tracker.store import TrackerStore

router = APIRouter()


# ---------------------------------------------------------------------------
# Family
# ---------------------------------------------------------------------------


@router.get("/family", response_model=ApiResponse[FamilyResponse])
def get_family(request: Request, auth: AuthResult = Depends(get_auth_context)) -> ApiResponse[FamilyResponse]:
    family_id = require_family(auth)
    auth_store: AuthStore = request.app.state.auth_store
    family = auth_store.get_family(family_id)
    if family is None:
        raise HTTPException(status_code=404, detail="Family not found")
    return ApiResponse(data=FamilyResponse.model_validate(family))


@router.put("/family", response_model=ApiResponse[FamilyResponse])
def update_family(
    request: Request,
    body: FamilyUpdate,
    auth: AuthResult = Depends(require_admin_context),
) -> ApiResponse[FamilyResponse]:
    family_id = require_family(auth)
    ensure_not_expired(auth)
    auth_store: AuthStore = request.app.state.auth_store
    try:
        found = auth_store.update_family(family_id, **body.model_dump(exclude_none=True))
    except IntegrityError as exc:
        raise HTTPException(status_code=409, detail="That family URL is already taken") from exc
    if not found:
        raise HTTPException(status_code=404, detail="Family not found")
    return ApiResponse(data=FamilyResponse.model_validate(auth_store.get_family(family_id)))


# ---------------------------------------------------------------------------
# Babies
# ---------------------------------------------------------------------------


@router.get("/baby", response_model=ApiResponse[list[BabyResponse]])
def list_babies(request: Request, auth: AuthResult = Depends(get_auth_context)) -> ApiResponse[list[BabyResponse]]:
    family_id = require_family(auth)
    tracker_store: TrackerStore = request.app.state.tracker_store
    return ApiResponse(data=[BabyResponse.model_validate(b) for b in tracker_store.list_babies(family_id)])


@router.post("/baby", response_model=ApiResponse[BabyResponse], status_code=201)
def create_baby(
    request: Request,
    body: BabyCreate,
    auth: AuthResult = Depends(require_admin_context),
) -> ApiResponse[BabyResponse]:
    family_id = require_family(auth)
    ensure_not_expired(auth)
    tracker_store: TrackerStore = request.app.state.tracker_store
    baby_id = tracker_store.create_baby(
        Baby(family_id=family_id, first_name=body.first_name, last_name=body.last_name, birth_date=body.birth_date)
    )
    return ApiResponse(data=BabyResponse.model_validate(tracker_store.get_baby(baby_id, family_id)))


# ---------------------------------------------------------------------------
# Caretakers
# ---------------------------------------------------------------------------


@router.get("/caretaker", response_model=ApiResponse[list[CaretakerResponse]])
def list_caretakers(
    request: Request, auth: AuthResult = Depends(get_auth_context)
) -> ApiResponse[list[CaretakerResponse]]:
    family_id = require_family(auth)
    auth_store: AuthStore = request.app.state.auth_store
    caretakers = [c for c in auth_store.list_caretakers(family_id) if c.login_id != SYSTEM_LOGIN_ID]
    return ApiResponse(data=[CaretakerResponse.model_validate(c) for c in caretakers])


@router.post("/caretaker", response_model=ApiResponse[CaretakerResponse], status_code=201)
def create_caretaker(
    request: Request,
    body: CaretakerCreate,
    auth: AuthResult = Depends(require_admin_context),
) -> ApiResponse[CaretakerResponse]:
    family_id = require_family(auth)
    ensure_not_expired(auth)
    if body.login_id == SYSTEM_LOGIN_ID:
        raise HTTPException(status_code=400, detail="Login ID 00 is reserved for the system caretaker")

    auth_store: AuthStore = request.app.state.auth_store
    try:
        caretaker_id = auth_store.create_caretaker(
            Caretaker(
                family_id=family_id,
                login_id=body.login_id,
                name=body.name,
                type=body.type,
                role=body.role,
                security_pin=hash_password(body.security_pin),
            )
        )
    except ValueError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return ApiResponse(data=CaretakerResponse.model_validate(auth_store.get_caretaker(caretaker_id)))


# ---------------------------------------------------------------------------
# Contacts
# ---------------------------------------------------------------------------


@router.get("/contact", response_model=ApiResponse[list[ContactResponse]])
def list_contacts(request: Request, auth: AuthResult = Depends(get_auth_context)) -> ApiResponse[list[ContactResponse]]:
    family_id = require_family(auth)
    tracker_store: TrackerStore = request.app.state.tracker_store
    return ApiResponse(data=[ContactResponse.model_validate(c) for c in tracker_store.list_contacts(family_id)])


@router.post("/contact", response_model=ApiResponse[ContactResponse], status_code=201)
def create_contact(
    request: Request,
    body: ContactCreate,
    auth: AuthResult = Depends(get_auth_context),
) -> ApiResponse[ContactResponse]:
    family_id = require_family(auth)
    ensure_not_expired(auth)
    tracker_store: TrackerStore = request.app.state.tracker_store
    contact = Contact(family_id=family_id, **body.model_dump())
    contact.id = tracker_store.create_contact(contact)
    return ApiResponse(data=ContactResponse.model_validate(contact))


# ---------------------------------------------------------------------------
# Medicines
# ---------------------------------------------------------------------------


@router.get("/medicine", response_model=ApiResponse[list[MedicineResponse]])
def list_medicines(
    request: Request, auth: AuthResult = Depends(get_auth_context)
) -> ApiResponse[list[MedicineResponse]]:
    family_id = require_family(auth)
    tracker_store: TrackerStore = request.app.state.tracker_store
    return ApiResponse(data=[MedicineResponse.model_validate(m) for m in tracker_store.list_medicines(family_id)])


@router.post("/medicine", response_model=ApiResponse[MedicineResponse], status_code=201)
def create_medicine(
    request: Request,
    body: MedicineCreate,
    auth: AuthResult = Depends(get_auth_context),
) -> ApiResponse[MedicineResponse]:
    family_id = require_family(auth)
    ensure_not_expired(auth)
    tracker_store: TrackerStore = request.app.state.tracker_store
    medicine_id = tracker_store.create_medicine(Medicine(family_id=family_id, **body.model_dump()))
    return ApiResponse(data=MedicineResponse.model_validate(tracker_store.get_medicine(medicine_id, family_id)))
