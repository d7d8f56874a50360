"""
app/store.py
-----------------------------------------------------------------------------
Data-store operations shared by the CRUD routes and the export/import
pipeline.

Every query is scoped to a user id.  Functions here add, flush and delete
but never commit: the caller owns the transaction boundary, which lets the
replace-mode import run everything inside one transaction while append mode
and the CRUD routes commit per operation.

Exports
-------
list_babies, get_baby, babies_by_id, create_baby
list_measurements, get_measurement, find_measurement,
create_measurement, update_measurement
delete_user_data
list_who_medians, get_who_median, update_who_median

WHO reference medians are shared by every user and are not user-scoped.
"""

from __future__ import annotations

from datetime import date

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from app.errors import DuplicateMeasurement, DuplicateWhoMedian
from app.models import Baby, BabyData, Gender, WhoData

# -----------------------------------------------------------------------------
# Babies
# -----------------------------------------------------------------------------


def list_babies(db: Session, user_id: int, *, newest_first: bool = False) -> list[Baby]:
    query = db.query(Baby).filter(Baby.user_id == user_id)
    if newest_first:
        return query.order_by(Baby.created_at.desc(), Baby.id.desc()).all()
    return query.order_by(Baby.id.asc()).all()


def get_baby(db: Session, user_id: int, baby_id: int) -> Baby | None:
    return db.query(Baby).filter_by(id=baby_id, user_id=user_id).first()


def babies_by_id(db: Session, user_id: int) -> dict[int, str]:
    """Map each of the user's baby ids to its name, oldest baby first."""
    rows = db.query(Baby.id, Baby.name).filter(Baby.user_id == user_id).order_by(Baby.id)
    return {baby_id: name for baby_id, name in rows}


def create_baby(
    db: Session,
    user_id: int,
    *,
    name: str,
    gender: Gender,
    birth_date: date,
) -> Baby:
    baby = Baby(user_id=user_id, name=name, gender=gender, birth_date=birth_date)
    db.add(baby)
    db.flush()
    return baby


# -----------------------------------------------------------------------------
# Measurements
# -----------------------------------------------------------------------------


def list_measurements(
    db: Session,
    user_id: int,
    *,
    latest_first: bool = False,
) -> list[BabyData]:
    """
    Return all measurements for the user's babies with ``baby`` preloaded.

    The default order (baby id, then month age) is the export order;
    ``latest_first`` sorts by month age descending for listing screens.
    """
    query = (
        db.query(BabyData)
        .join(Baby, BabyData.baby_id == Baby.id)
        .filter(Baby.user_id == user_id)
        .options(joinedload(BabyData.baby))
    )
    if latest_first:
        return query.order_by(BabyData.month_age.desc(), BabyData.id.desc()).all()
    return query.order_by(BabyData.baby_id.asc(), BabyData.month_age.asc()).all()


def get_measurement(db: Session, user_id: int, measurement_id: int) -> BabyData | None:
    return (
        db.query(BabyData)
        .join(Baby, BabyData.baby_id == Baby.id)
        .filter(BabyData.id == measurement_id, Baby.user_id == user_id)
        .first()
    )


def find_measurement(db: Session, baby_id: int, month_age: int) -> BabyData | None:
    return db.query(BabyData).filter_by(baby_id=baby_id, month_age=month_age).one_or_none()


def _flush_unique(db: Session, baby_id: int, month_age: int) -> None:
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise DuplicateMeasurement(baby_id, month_age) from exc


def create_measurement(
    db: Session,
    *,
    baby_id: int,
    month_age: int,
    height_cm: float,
    weight_kg: float,
) -> BabyData:
    """
    Insert a measurement.

    Raises
    ------
    DuplicateMeasurement : The baby already has a measurement for
                           ``month_age``.  The session is rolled back if the
                           database rejected the insert.
    """
    if find_measurement(db, baby_id, month_age) is not None:
        raise DuplicateMeasurement(baby_id, month_age)
    measurement = BabyData(
        baby_id=baby_id,
        month_age=month_age,
        height_cm=height_cm,
        weight_kg=weight_kg,
    )
    db.add(measurement)
    _flush_unique(db, baby_id, month_age)
    return measurement


def update_measurement(db: Session, measurement: BabyData, **changes) -> BabyData:
    """Apply non-``None`` ``changes`` to ``measurement``, keeping (baby, month) unique."""
    changes = {key: value for key, value in changes.items() if value is not None}
    baby_id = changes.get("baby_id", measurement.baby_id)
    month_age = changes.get("month_age", measurement.month_age)

    if (baby_id, month_age) != (measurement.baby_id, measurement.month_age):
        clash = find_measurement(db, baby_id, month_age)
        if clash is not None and clash.id != measurement.id:
            raise DuplicateMeasurement(baby_id, month_age)

    for key, value in changes.items():
        setattr(measurement, key, value)
    _flush_unique(db, baby_id, month_age)
    return measurement


# -----------------------------------------------------------------------------
# Bulk removal
# -----------------------------------------------------------------------------


def delete_user_data(db: Session, user_id: int) -> tuple[int, int]:
    """
    Delete every measurement and then every baby owned by ``user_id``.

    Matching objects already loaded in the session leave its identity map,
    so babies created afterwards may reuse their ids.

    Returns
    -------
    tuple[int, int] : ``(measurements_removed, babies_removed)``.
    """
    owned = select(Baby.id).where(Baby.user_id == user_id)
    measurements_removed = (
        db.query(BabyData)
        .filter(BabyData.baby_id.in_(owned))
        .delete(synchronize_session="fetch")
    )
    babies_removed = (
        db.query(Baby).filter(Baby.user_id == user_id).delete(synchronize_session="fetch")
    )
    db.expire_all()
    return measurements_removed, babies_removed


# -----------------------------------------------------------------------------
# WHO reference medians
# -----------------------------------------------------------------------------


def list_who_medians(db: Session, gender: Gender | None = None) -> list[WhoData]:
    """All reference rows, optionally for one gender, ordered by gender then month age."""
    query = db.query(WhoData)
    if gender is not None:
        query = query.filter(WhoData.gender == gender)
    return query.order_by(WhoData.gender.asc(), WhoData.month_age.asc()).all()


def get_who_median(db: Session, row_id: int) -> WhoData | None:
    return db.get(WhoData, row_id)


def update_who_median(db: Session, row: WhoData, **changes) -> WhoData:
    """
    Apply non-``None`` ``changes`` to a reference row.

    Raises
    ------
    DuplicateWhoMedian : Another row already holds the resulting
                         (gender, month age) pair.
    """
    changes = {key: value for key, value in changes.items() if value is not None}
    gender = changes.get("gender", row.gender)
    month_age = changes.get("month_age", row.month_age)

    clash = db.query(WhoData).filter_by(gender=gender, month_age=month_age).one_or_none()
    if clash is not None and clash.id != row.id:
        raise DuplicateWhoMedian(gender, month_age)

    for key, value in changes.items():
        setattr(row, key, value)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise DuplicateWhoMedian(gender, month_age) from exc
    return row
