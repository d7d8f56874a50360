"""
app/main.py
-----------------------------------------------------------------------------
FastAPI application entrypoint for the Baby Growth API.

This module is a **thin routing layer** — each route handler authenticates
the caller, orchestrates calls to domain modules and translates domain
errors into HTTP responses.  All business logic lives in dedicated modules:

Domain modules
~~~~~~~~~~~~~~
- ``app.auth``       – Password hashing, tokens, ``get_current_user``.
- ``app.schema``     – Pydantic v2 request / response models.
- ``app.store``      – User-scoped queries and writes.
- ``app.exporter``   – CSV builders and the full-account export archive.
- ``app.importer``   – Archive import with append / replace reconciliation.
- ``app.zip_store``  – Store-only ZIP writer and reader.
- ``app.csv_codec``  – CSV encoder / decoder.

Run with:
    uvicorn app.main:app --reload --host 127.0.0.1 --port 8000

Endpoints
---------
GET    /                       → service status
POST   /api/auth/register      → create an account
POST   /api/auth/token         → exchange e-mail + password for a bearer token
GET    /api/account            → current account
PATCH  /api/account            → update the display name
POST   /api/account/change-password → replace the password
DELETE /api/account            → delete the account and all of its data
GET    /api/babies             → list babies (newest first)
POST   /api/babies             → create a baby
PATCH  /api/babies/{id}        → update a baby
DELETE /api/babies/{id}        → delete a baby and its measurements
GET    /api/baby-data          → list measurements (highest month age first)
POST   /api/baby-data          → create a measurement
PATCH  /api/baby-data/{id}     → update a measurement
DELETE /api/baby-data/{id}     → delete a measurement
GET    /api/who-data           → WHO reference medians (optional ?gender=)
PATCH  /api/who-data/{id}      → correct a WHO reference row
GET    /api/export/all         → babies.csv + baby-data.csv as a zip
GET    /api/export/babies      → babies.csv
GET    /api/export/baby-data   → baby-data.csv
POST   /api/import/all         → import an export zip (append / replace)

Architecture notes
------------------
- Route handlers are regular ``def`` functions; FastAPI runs them in a
  threadpool so blocking database calls never stall the event loop.
- Every query is scoped to the authenticated user's id.  A resource that
  exists but belongs to someone else is reported as 404 (or 403 when it is
  referenced from another resource's payload).
"""

from __future__ import annotations

import io
import logging
import tomllib
from datetime import datetime, timezone
from pathlib import Path

from fastapi import Depends, FastAPI, File, Form, HTTPException, UploadFile, status
from fastapi.responses import StreamingResponse
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.auth import (
    authenticate,
    create_access_token,
    get_current_user,
    hash_password,
    verify_password,
)
from app.config import MAX_UPLOAD_SIZE
from app.database import get_db, init_db
from app.errors import (
    AmbiguousBabyName,
    ArchiveError,
    DuplicateMeasurement,
    DuplicateWhoMedian,
    MissingEntries,
)
from app.exporter import (
    build_babies_csv,
    build_baby_data_csv,
    build_export_archive,
    export_filename,
)
from app.importer import import_archive, parse_mode
from app.models import Gender, User
from app.schema import (
    AccountUpdate,
    BabyCreate,
    BabyDataCreate,
    BabyDataResponse,
    BabyDataUpdate,
    BabyResponse,
    BabyUpdate,
    ChangePasswordRequest,
    ImportResponse,
    OkResponse,
    RegisterRequest,
    TokenResponse,
    UserResponse,
    WhoDataResponse,
    WhoDataUpdate,
)
from app.store import (
    create_baby,
    create_measurement,
    get_baby,
    get_measurement,
    get_who_median,
    list_babies,
    list_measurements,
    list_who_medians,
    update_measurement,
    update_who_median,
)

logger = logging.getLogger(__name__)

# -----------------------------------------------------------------------------
# Bootstrap
# -----------------------------------------------------------------------------

_HERE = Path(__file__).parent

# Read version from pyproject.toml (single source of truth).
_PYPROJECT = _HERE.parent / "pyproject.toml"
with open(_PYPROJECT, "rb") as _f:
    _APP_VERSION: str = tomllib.load(_f)["project"]["version"]

init_db()

# -----------------------------------------------------------------------------
# FastAPI app
# -----------------------------------------------------------------------------

app = FastAPI(
    title="Baby Growth API",
    description=(
        "Track babies' height and weight by month of age, and export or "
        "re-import an account's data as a single zip archive."
    ),
    version=_APP_VERSION,
)


def _today() -> datetime:
    return datetime.now(timezone.utc)


def _download(content: bytes, media_type: str, filename: str) -> StreamingResponse:
    return StreamingResponse(
        io.BytesIO(content),
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# -----------------------------------------------------------------------------
# Routes
# -----------------------------------------------------------------------------


@app.get("/", tags=["root"])
def read_root() -> dict:
    return {"status": "ok", "version": _APP_VERSION}


# -----------------------------------------------------------------------------
# Accounts
# -----------------------------------------------------------------------------


@app.post(
    "/api/auth/register",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["auth"],
    summary="Create an account",
)
def register(req: RegisterRequest, db: Session = Depends(get_db)) -> User:
    """
    Create a user with a bcrypt-hashed password.

    Raises
    ------
    HTTPException(409) : The e-mail address is already registered.
    """
    if db.query(User).filter(User.email == req.email).first() is not None:
        raise HTTPException(status_code=409, detail="Email already registered")

    user = User(email=req.email, name=req.name, password_hash=hash_password(req.password))
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("Registered user %s", user.id)
    return user


@app.post("/api/auth/token", response_model=TokenResponse, tags=["auth"])
def login(
    form: OAuth2PasswordRequestForm = Depends(),
    db: Session = Depends(get_db),
) -> TokenResponse:
    """OAuth2 password flow: ``username`` carries the e-mail address."""
    user = authenticate(db, form.username, form.password)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return TokenResponse(access_token=create_access_token(user.email))


@app.get("/api/account", response_model=UserResponse, tags=["account"])
def read_account(user: User = Depends(get_current_user)) -> User:
    return user


@app.patch("/api/account", response_model=UserResponse, tags=["account"])
def edit_account(
    req: AccountUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> User:
    for key, value in req.model_dump(exclude_none=True).items():
        setattr(user, key, value)
    db.commit()
    db.refresh(user)
    return user


@app.post("/api/account/change-password", response_model=OkResponse, tags=["account"])
def change_password(
    req: ChangePasswordRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> OkResponse:
    """
    Replace the caller's password after checking the current one.

    Raises
    ------
    HTTPException(400) : ``current_password`` does not match.
    """
    if not verify_password(req.current_password, user.password_hash):
        raise HTTPException(status_code=400, detail="Current password is incorrect")
    user.password_hash = hash_password(req.new_password)
    db.commit()
    logger.info("Password changed for user %s", user.id)
    return OkResponse()


@app.delete("/api/account", response_model=OkResponse, tags=["account"])
def delete_account(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> OkResponse:
    """Delete the caller's account; babies and measurements cascade."""
    db.delete(user)
    db.commit()
    return OkResponse()


# -----------------------------------------------------------------------------
# Babies
# -----------------------------------------------------------------------------


@app.get("/api/babies", response_model=list[BabyResponse], tags=["babies"])
def read_babies(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return list_babies(db, user.id, newest_first=True)


@app.post(
    "/api/babies",
    response_model=BabyResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["babies"],
)
def add_baby(
    req: BabyCreate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    baby = create_baby(
        db,
        user.id,
        name=req.name,
        gender=req.gender,
        birth_date=req.birth_date,
    )
    db.commit()
    db.refresh(baby)
    return baby


@app.patch("/api/babies/{baby_id}", response_model=BabyResponse, tags=["babies"])
def edit_baby(
    baby_id: int,
    req: BabyUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    baby = get_baby(db, user.id, baby_id)
    if baby is None:
        raise HTTPException(status_code=404, detail="Not found")

    for key, value in req.model_dump(exclude_none=True).items():
        setattr(baby, key, value)
    db.commit()
    db.refresh(baby)
    return baby


@app.delete("/api/babies/{baby_id}", response_model=OkResponse, tags=["babies"])
def remove_baby(
    baby_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> OkResponse:
    baby = get_baby(db, user.id, baby_id)
    if baby is None:
        raise HTTPException(status_code=404, detail="Not found")
    db.delete(baby)
    db.commit()
    return OkResponse()


# -----------------------------------------------------------------------------
# Measurements
# -----------------------------------------------------------------------------


@app.get("/api/baby-data", response_model=list[BabyDataResponse], tags=["baby-data"])
def read_baby_data(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return list_measurements(db, user.id, latest_first=True)


@app.post(
    "/api/baby-data",
    response_model=BabyDataResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["baby-data"],
)
def add_baby_data(
    req: BabyDataCreate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Record a measurement for one of the caller's babies.

    Raises
    ------
    HTTPException(403) : ``baby_id`` does not belong to the caller.
    HTTPException(409) : The baby already has a measurement at ``month_age``.
    """
    if get_baby(db, user.id, req.baby_id) is None:
        raise HTTPException(status_code=403, detail="Forbidden")
    try:
        measurement = create_measurement(
            db,
            baby_id=req.baby_id,
            month_age=req.month_age,
            height_cm=req.height_cm,
            weight_kg=req.weight_kg,
        )
        db.commit()
    except DuplicateMeasurement as exc:
        db.rollback()
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    db.refresh(measurement)
    return measurement


@app.patch(
    "/api/baby-data/{measurement_id}",
    response_model=BabyDataResponse,
    tags=["baby-data"],
)
def edit_baby_data(
    measurement_id: int,
    req: BabyDataUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    measurement = get_measurement(db, user.id, measurement_id)
    if measurement is None:
        raise HTTPException(status_code=404, detail="Not found")
    if req.baby_id is not None and get_baby(db, user.id, req.baby_id) is None:
        raise HTTPException(status_code=403, detail="Forbidden")

    try:
        update_measurement(db, measurement, **req.model_dump())
        db.commit()
    except DuplicateMeasurement as exc:
        db.rollback()
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    db.refresh(measurement)
    return measurement


@app.delete(
    "/api/baby-data/{measurement_id}",
    response_model=OkResponse,
    tags=["baby-data"],
)
def remove_baby_data(
    measurement_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> OkResponse:
    measurement = get_measurement(db, user.id, measurement_id)
    if measurement is None:
        raise HTTPException(status_code=404, detail="Not found")
    db.delete(measurement)
    db.commit()
    return OkResponse()


# -----------------------------------------------------------------------------
# WHO reference medians
# -----------------------------------------------------------------------------


@app.get("/api/who-data", response_model=list[WhoDataResponse], tags=["who-data"])
def read_who_data(
    gender: str | None = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    List reference medians ordered by gender, then month age.

    ``gender`` (``male`` / ``female``, any case) narrows the list; any other
    value is ignored.
    """
    wanted = gender.strip().upper() if gender else None
    selected = Gender(wanted) if wanted in Gender.__members__ else None
    return list_who_medians(db, selected)


@app.patch("/api/who-data/{row_id}", response_model=WhoDataResponse, tags=["who-data"])
def edit_who_data(
    row_id: int,
    req: WhoDataUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Correct one reference row.

    Raises
    ------
    HTTPException(404) : No such row.
    HTTPException(409) : Another row already has this (gender, month age).
    """
    row = get_who_median(db, row_id)
    if row is None:
        raise HTTPException(status_code=404, detail="Not found")
    try:
        update_who_median(db, row, **req.model_dump())
        db.commit()
    except DuplicateWhoMedian as exc:
        db.rollback()
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    db.refresh(row)
    return row


# -----------------------------------------------------------------------------
# GET /api/export/*
# -----------------------------------------------------------------------------


@app.get(
    "/api/export/all",
    summary="Download all babies and measurements as a zip file",
    tags=["export"],
)
def export_all(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> StreamingResponse:
    """
    Stream ``babies.csv`` and ``baby-data.csv`` in one store-only zip.

    Returns
    -------
    StreamingResponse : ``application/zip`` with
                        ``Content-Disposition: attachment;
                        filename="baby-growth-export-<YYYY-MM-DD>.zip"``.

    Raises
    ------
    HTTPException(500) : The data store failed; no archive is produced.
    """
    now = _today()
    try:
        archive = build_export_archive(db, user.id, timestamp=now)
    except SQLAlchemyError as exc:
        logger.exception("Export failed for user %s", user.id)
        raise HTTPException(status_code=500, detail="Export failed") from exc

    return _download(
        archive,
        "application/zip",
        export_filename("baby-growth-export", now.date(), "zip"),
    )


@app.get("/api/export/babies", summary="Download babies as CSV", tags=["export"])
def export_babies(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> StreamingResponse:
    try:
        text = build_babies_csv(db, user.id)
    except SQLAlchemyError as exc:
        logger.exception("Babies CSV export failed for user %s", user.id)
        raise HTTPException(status_code=500, detail="Export failed") from exc

    return _download(
        text.encode("utf-8"),
        "text/csv; charset=utf-8",
        export_filename("babies", _today().date(), "csv"),
    )


@app.get("/api/export/baby-data", summary="Download measurements as CSV", tags=["export"])
def export_baby_data(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> StreamingResponse:
    try:
        text = build_baby_data_csv(db, user.id)
    except SQLAlchemyError as exc:
        logger.exception("Baby data CSV export failed for user %s", user.id)
        raise HTTPException(status_code=500, detail="Export failed") from exc

    return _download(
        text.encode("utf-8"),
        "text/csv; charset=utf-8",
        export_filename("baby-data", _today().date(), "csv"),
    )


# -----------------------------------------------------------------------------
# POST /api/import/all
# -----------------------------------------------------------------------------


@app.post(
    "/api/import/all",
    response_model=ImportResponse,
    summary="Import an export zip in append or replace mode",
    tags=["import"],
)
def import_all(
    file: UploadFile | None = File(default=None),
    mode: str | None = Form(default=None),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ImportResponse:
    """
    Accept an uploaded export archive and merge it into the caller's data.

    Parameters
    ----------
    file : The zip archive (multipart form data).
    mode : ``"replace"`` to wipe and recreate; anything else appends.

    Returns
    -------
    ImportResponse : ``{"ok": true, "stats": {...}}``.

    Raises
    ------
    HTTPException(400) : No file, upload too large, not a readable
                         store-only zip, a required CSV is missing, or a
                         measurement's baby name is ambiguous.
    HTTPException(500) : The data store failed (replace mode leaves the
                         previous data untouched).
    """
    if file is None:
        raise HTTPException(status_code=400, detail="No file provided")

    data = file.file.read(MAX_UPLOAD_SIZE + 1)
    if len(data) > MAX_UPLOAD_SIZE:
        raise HTTPException(
            status_code=400,
            detail=f"Upload exceeds the {MAX_UPLOAD_SIZE:,}-byte limit.",
        )

    try:
        stats = import_archive(db, user.id, data, parse_mode(mode))
    except ArchiveError as exc:
        logger.warning("Rejected import for user %s: %s", user.id, exc)
        raise HTTPException(status_code=400, detail="Invalid zip file") from exc
    except (MissingEntries, AmbiguousBabyName) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except (SQLAlchemyError, DuplicateMeasurement) as exc:
        # DuplicateMeasurement: a concurrent writer took the same (baby, month).
        logger.exception("Import failed for user %s", user.id)
        raise HTTPException(status_code=500, detail="Import failed") from exc

    return ImportResponse(stats=stats)
