"""
app/schema.py
-----------------------------------------------------------------------------
Pydantic v2 models for every request / response object in the Baby Growth
API.

Design principles
-----------------
• Keep models thin – no business logic here.
• Every field has a `description` so FastAPI's auto-generated OpenAPI UI is
  immediately useful.
• Request models carry the same bounds the database relies on (name length,
  month-age range, positive measurements) so invalid input is rejected with
  a 422 before any query runs.
"""

from __future__ import annotations

import enum
from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.models import Gender

# -----------------------------------------------------------------------------
# Accounts
# -----------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/auth/register."""

    email: str = Field(
        ...,
        max_length=255,
        description="Login e-mail address; stored lower-cased.",
        examples=["parent@example.com"],
    )
    password: str = Field(
        ...,
        min_length=8,
        description="Plain-text password (8 characters minimum, 72 bytes maximum).",
    )
    name: str | None = Field(
        default=None,
        max_length=100,
        description="Optional display name.",
    )

    @field_validator("email")
    @classmethod
    def email_looks_valid(cls, v: str) -> str:
        v = v.strip().lower()
        local, _, domain = v.partition("@")
        if not local or "." not in domain:
            raise ValueError("email must look like name@domain.tld")
        return v

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, v: str) -> str:
        """bcrypt only considers the first 72 bytes; refuse longer input."""
        if len(v.encode("utf-8")) > 72:
            raise ValueError("password must be at most 72 bytes")
        return v


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    name: str | None = None


class TokenResponse(BaseModel):
    access_token: str = Field(..., description="Signed bearer token.")
    token_type: str = Field(default="bearer")


class OkResponse(BaseModel):
    ok: bool = True


class AccountUpdate(BaseModel):
    """Request body for PATCH /api/account.  Omitted fields are unchanged."""

    name: str | None = Field(
        default=None,
        description="Display name, 2–32 characters after trimming.",
    )

    @field_validator("name")
    @classmethod
    def name_trimmed(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.strip()
        if not 2 <= len(v) <= 32:
            raise ValueError("name must be 2–32 characters")
        return v


class ChangePasswordRequest(BaseModel):
    """Request body for POST /api/account/change-password."""

    current_password: str = Field(..., min_length=1)
    new_password: str = Field(
        ...,
        min_length=8,
        max_length=128,
        description="New password (8–128 characters, 72 bytes maximum).",
    )

    @field_validator("new_password")
    @classmethod
    def password_fits_bcrypt(cls, v: str) -> str:
        if len(v.encode("utf-8")) > 72:
            raise ValueError("password must be at most 72 bytes")
        return v


# -----------------------------------------------------------------------------
# Babies
# -----------------------------------------------------------------------------


def _clean_name(v: str | None) -> str | None:
    if v is None:
        return v
    v = v.strip()
    if not v:
        raise ValueError("name must not be empty or whitespace")
    if len(v) > 50:
        raise ValueError("name must be at most 50 characters")
    return v


class BabyCreate(BaseModel):
    """Request body for POST /api/babies."""

    name: str = Field(..., description="Display name, 1–50 characters after trimming.")
    gender: Gender = Field(..., description="MALE or FEMALE.")
    birth_date: date = Field(..., description="Date of birth (YYYY-MM-DD).")

    @field_validator("name")
    @classmethod
    def name_trimmed(cls, v: str) -> str:
        return _clean_name(v)


class BabyUpdate(BaseModel):
    """Request body for PATCH /api/babies/{id}.  Omitted fields are unchanged."""

    name: str | None = None
    gender: Gender | None = None
    birth_date: date | None = None

    @field_validator("name")
    @classmethod
    def name_trimmed(cls, v: str | None) -> str | None:
        return _clean_name(v)


class BabyResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    gender: Gender
    birth_date: date
    created_at: datetime | None = None
    updated_at: datetime | None = None


# -----------------------------------------------------------------------------
# Measurements
# -----------------------------------------------------------------------------


class BabyDataCreate(BaseModel):
    """Request body for POST /api/baby-data."""

    baby_id: int = Field(..., gt=0, description="Id of a baby owned by the caller.")
    month_age: int = Field(
        ...,
        ge=0,
        le=240,
        description="Age in whole months; unique per baby.",
    )
    height_cm: float = Field(..., gt=0, description="Height in centimetres.")
    weight_kg: float = Field(..., gt=0, description="Weight in kilograms.")


class BabyDataUpdate(BaseModel):
    """Request body for PATCH /api/baby-data/{id}.  Omitted fields are unchanged."""

    baby_id: int | None = Field(default=None, gt=0)
    month_age: int | None = Field(default=None, ge=0, le=240)
    height_cm: float | None = Field(default=None, gt=0)
    weight_kg: float | None = Field(default=None, gt=0)


class BabyDataResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    baby_id: int
    month_age: int
    height_cm: float
    weight_kg: float
    created_at: datetime | None = None
    updated_at: datetime | None = None


# -----------------------------------------------------------------------------
# WHO reference medians
# -----------------------------------------------------------------------------


class WhoDataUpdate(BaseModel):
    """Request body for PATCH /api/who-data/{id}.  Omitted fields are unchanged."""

    gender: Gender | None = None
    month_age: int | None = Field(default=None, ge=0, le=240)
    height_median_cm: float | None = Field(default=None, gt=0)
    weight_median_kg: float | None = Field(default=None, gt=0)


class WhoDataResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    gender: Gender
    month_age: int
    height_median_cm: float
    weight_median_kg: float
    created_at: datetime | None = None
    updated_at: datetime | None = None


# -----------------------------------------------------------------------------
# /api/import/all  response
# -----------------------------------------------------------------------------


class ImportMode(str, enum.Enum):
    """Merge policy for an archive import."""

    APPEND = "append"
    REPLACE = "replace"


class BabyImportStats(BaseModel):
    created: int = Field(default=0, description="Babies created by this import.")
    removed: int = Field(
        default=0,
        description="Babies deleted before recreation (replace mode only).",
    )
    rejected: int = Field(
        default=0,
        description="babies.csv rows dropped for an empty/overlong name or bad birth date.",
    )


class DataImportStats(BaseModel):
    created: int = Field(default=0, description="Measurements inserted.")
    updated: int = Field(
        default=0,
        description="Existing (baby, month age) measurements overwritten.",
    )
    skipped: int = Field(
        default=0,
        description="Measurements whose baby name matched no baby.",
    )
    rejected: int = Field(
        default=0,
        description=(
            "baby-data.csv rows dropped before reconciliation: empty baby "
            "name, month age outside 0–240, or non-positive height/weight."
        ),
    )


class ImportStats(BaseModel):
    """Summary of one archive import."""

    mode: ImportMode
    babies: BabyImportStats = Field(default_factory=BabyImportStats)
    data: DataImportStats = Field(default_factory=DataImportStats)


class ImportResponse(BaseModel):
    """Response body for POST /api/import/all."""

    ok: bool = True
    stats: ImportStats
