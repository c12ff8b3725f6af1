# billbook/main.py
import logging
import os
from typing import Any, List, Optional

from fastapi import APIRouter, Body, Depends, FastAPI, File, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import crud, extraction, matching, models, pipeline, schemas
from .auth import get_current_user, get_password_hash, require_admin
from .auth import router as auth_router
from .config import settings
from .dashboard import router as dashboard_router
from .db import get_db, init_db
from .errors import BillbookError, InternalError, ValidationFailed, classify_db_error, envelope, error_response
from .validators import (
    format_error_list,
    validate_bill_submission,
    validate_bill_update,
    validate_contact_profile,
    validate_contact_profile_update,
)

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Billbook", version="1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def _startup():
    os.makedirs(settings.UPLOAD_DIR, exist_ok=True)
    init_db()


@app.get("/api/health")
def api_health(db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
        return {"ok": True, "service": "billbook-api", "db": "connected"}
    except SQLAlchemyError as e:
        logger.error("Health check DB error: %s", e)
        return JSONResponse(status_code=503, content={"ok": False, "service": "billbook-api", "db": "unavailable"})


# ------------------- GLOBAL ERROR HANDLERS -------------------
@app.exception_handler(BillbookError)
def billbook_error_handler(request, exc: BillbookError):
    if exc.status_code >= 500:
        logger.error("%s at %s: %s", exc.__class__.__name__, request.url.path, exc.message)
    return error_response(exc)


@app.exception_handler(RequestValidationError)
def request_validation_handler(request, exc: RequestValidationError):
    errors = format_error_list(exc.errors(), skip_prefix="body")
    return JSONResponse(status_code=400, content=envelope(False, 400, "Invalid request", errors=errors))


@app.exception_handler(StarletteHTTPException)
def http_error_handler(request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content=envelope(False, exc.status_code, str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(SQLAlchemyError)
def db_error_handler(request, exc: SQLAlchemyError):
    logger.error("Database error at %s: %s", request.url.path, exc)
    return error_response(classify_db_error(exc))


@app.exception_handler(Exception)
def unexpected_error_handler(request, exc: Exception):
    logger.exception("Unhandled error at %s", request.url.path)
    return error_response(InternalError())


# ------------------- helpers -------------------
def _bill_json(bill: models.Bill) -> dict:
    return schemas.BillOut.model_validate(bill).model_dump(mode="json")


def _profile_json(obj) -> dict:
    return schemas.ContactProfileOut.model_validate(obj).model_dump(mode="json")


def _user_json(user: models.User) -> dict:
    return schemas.UserOut.model_validate(user).model_dump(mode="json")


# ------------------- BILLS -------------------
bills = APIRouter(prefix="/api/bill", tags=["bills"], dependencies=[Depends(get_current_user)])


def _extract_response(bill_data: schemas.BillData) -> dict:
    return envelope(True, 200, "Bill processed successfully", data=bill_data.model_dump(mode="json"))


@bills.post("/process")
def process_bill(body: schemas.ProcessImageIn, model: Any = Depends(extraction.get_vision_model)):
    data, ext = extraction.decode_image_payload(body.image)
    filename = body.filename or f"capture{ext or '.jpg'}"
    return _extract_response(extraction.extract_from_bytes(data, filename, model=model))


@bills.post("/upload")
def upload_bill(billImage: UploadFile = File(...), model: Any = Depends(extraction.get_vision_model)):
    data = billImage.file.read()
    if not data:
        raise ValidationFailed("No bill image provided", {"billImage": "Image is empty"})
    return _extract_response(extraction.extract_from_bytes(data, billImage.filename, model=model))


@bills.post("/save", status_code=201)
def save_bill(payload: Any = Body(...), db: Session = Depends(get_db)):
    sub = validate_bill_submission(payload)
    bill = pipeline.save_bill(db, sub)
    return envelope(True, 201, "Bill saved successfully", data=_bill_json(bill))


@bills.get("")
def list_bills(skip: int = 0, limit: int = 100, db: Session = Depends(get_db)):
    rows = crud.list_bills(db, skip=max(skip, 0), limit=min(max(limit, 1), 500))
    return envelope(True, 200, "Bills fetched successfully", data=[_bill_json(b) for b in rows])


@bills.get("/{bill_id}")
def get_bill(bill_id: str, db: Session = Depends(get_db)):
    return envelope(True, 200, "Bill fetched successfully", data=_bill_json(crud.get_bill(db, bill_id)))


@bills.put("/{bill_id}")
def update_bill(bill_id: str, payload: Any = Body(...), db: Session = Depends(get_db)):
    changes = validate_bill_update(payload)
    bill = pipeline.update_bill(db, bill_id, changes)
    return envelope(True, 200, "Bill updated successfully", data=_bill_json(bill))


@bills.delete("/{bill_id}")
def delete_bill(bill_id: str, db: Session = Depends(get_db)):
    bill = pipeline.delete_bill(db, bill_id)
    return envelope(True, 200, "Bill deleted successfully", data=_bill_json(bill))


# ------------------- SUPPLIERS & PARTIES -------------------
def profile_router(model, prefix: str, find) -> APIRouter:
    """Same CRUD surface for Supplier and Party."""
    label = model.__name__
    plural = "Suppliers" if model is models.Supplier else "Parties"
    r = APIRouter(prefix=f"/api/{prefix}", tags=[prefix], dependencies=[Depends(get_current_user)])

    @r.get("")
    def list_profiles(db: Session = Depends(get_db)):
        rows = [
            schemas.ContactProfileListRow(**_profile_json(obj), bills=count).model_dump(mode="json")
            for obj, count in crud.list_profiles(db, model)
        ]
        return envelope(True, 200, f"{plural} fetched successfully", data=rows)

    @r.post("", status_code=201)
    def create_profile(payload: Any = Body(...), db: Session = Depends(get_db)):
        obj = pipeline.create_profile(db, model, validate_contact_profile(payload))
        return envelope(True, 201, f"{label} created successfully", data=_profile_json(obj))

    @r.get("/match")
    def match_profiles(
        name: Optional[str] = None,
        gstin: Optional[str] = None,
        limit: int = 10,
        db: Session = Depends(get_db),
    ):
        rows: List = find(db, name=name, gstin=gstin, limit=min(max(limit, 1), 50))
        return envelope(True, 200, f"{len(rows)} candidate(s) found", data=[_profile_json(o) for o in rows])

    @r.get("/{profile_id}")
    def get_profile(profile_id: str, db: Session = Depends(get_db)):
        obj = crud.get_profile(db, model, profile_id)
        return envelope(True, 200, f"{label} fetched successfully", data=_profile_json(obj))

    @r.put("/{profile_id}")
    def update_profile(profile_id: str, payload: Any = Body(...), db: Session = Depends(get_db)):
        obj = pipeline.update_profile(db, model, profile_id, validate_contact_profile_update(payload))
        return envelope(True, 200, f"{label} updated successfully", data=_profile_json(obj))

    @r.delete("/{profile_id}")
    def delete_profile(profile_id: str, db: Session = Depends(get_db)):
        pipeline.delete_profile(db, model, profile_id)
        return envelope(True, 200, f"{label} and related data deleted successfully")

    @r.get("/{profile_id}/bills")
    def profile_bills(profile_id: str, db: Session = Depends(get_db)):
        rows = crud.bills_for(db, model, profile_id)
        return envelope(True, 200, "Bills fetched successfully", data=[_bill_json(b) for b in rows])

    return r


# ------------------- USERS -------------------
users = APIRouter(prefix="/api/user", tags=["users"], dependencies=[Depends(require_admin)])


@users.get("")
def list_users(db: Session = Depends(get_db)):
    return envelope(True, 200, "Users fetched successfully", data=[_user_json(u) for u in crud.list_users(db)])


@users.post("", status_code=201)
def create_user(body: schemas.UserCreate, db: Session = Depends(get_db)):
    user = crud.create_user(db, body.name, body.email, get_password_hash(body.password), body.role)
    db.commit()
    return envelope(True, 201, "User registered successfully", data=_user_json(user))


@users.get("/{user_id}")
def get_user(user_id: str, db: Session = Depends(get_db)):
    return envelope(True, 200, "User fetched successfully", data=_user_json(crud.get_user(db, user_id)))


@users.put("/{user_id}")
def update_user(user_id: str, body: schemas.UserUpdate, db: Session = Depends(get_db)):
    user = crud.update_user(
        db,
        user_id,
        name=body.name,
        email=body.email,
        hashed_password=get_password_hash(body.password) if body.password else None,
        role=body.role,
    )
    db.commit()
    return envelope(True, 200, "User updated successfully", data=_user_json(user))


@users.delete("/{user_id}")
def delete_user(user_id: str, db: Session = Depends(get_db)):
    crud.delete_user(db, user_id)
    db.commit()
    return envelope(True, 200, "User deleted successfully")


# include routers
app.include_router(auth_router)
app.include_router(bills)
app.include_router(profile_router(models.Supplier, "supplier", matching.find_supplier_candidates))
app.include_router(profile_router(models.Party, "party", matching.find_party_candidates))
app.include_router(users)
app.include_router(dashboard_router)
