"""
app/exporter.py
-----------------------------------------------------------------------------
Export orchestrator: a user's babies and measurements as CSV, and both CSVs
bundled into one store-only ZIP archive.

The measurement CSV repeats each baby's name next to its id.  Ids are not
stable across accounts or replace-imports, so the import side joins
measurements to babies by ``babyName``.

Exports
-------
BABIES_MEMBER, BABY_DATA_MEMBER : str
    Fixed archive member names.
BABY_COLUMNS, BABY_DATA_COLUMNS : list[str]
    Column order of the two CSV files.
build_babies_csv(db, user_id) -> str
build_baby_data_csv(db, user_id) -> str
build_export_archive(db, user_id, *, timestamp=None) -> bytes
export_filename(prefix, day, extension) -> str
"""

from __future__ import annotations

import logging
from datetime import date, datetime

from sqlalchemy.orm import Session

from app.csv_codec import encode_csv
from app.store import list_babies, list_measurements
from app.zip_store import build_store_zip

logger = logging.getLogger(__name__)

BABIES_MEMBER: str = "babies.csv"
BABY_DATA_MEMBER: str = "baby-data.csv"

BABY_COLUMNS: list[str] = ["id", "name", "gender", "birthDate"]
BABY_DATA_COLUMNS: list[str] = [
    "id",
    "babyId",
    "babyName",
    "monthAge",
    "heightCm",
    "weightKg",
    "createdAt",
]


def build_babies_csv(db: Session, user_id: int) -> str:
    """Render the user's babies, ordered by id, as ``babies.csv`` text."""
    babies = list_babies(db, user_id)
    return encode_csv(
        BABY_COLUMNS,
        ([b.id, b.name, b.gender, b.birth_date] for b in babies),
    )


def build_baby_data_csv(db: Session, user_id: int) -> str:
    """Render every measurement, ordered by baby id then month age, as ``baby-data.csv`` text."""
    measurements = list_measurements(db, user_id)
    return encode_csv(
        BABY_DATA_COLUMNS,
        (
            [
                m.id,
                m.baby_id,
                m.baby.name if m.baby is not None else "",
                m.month_age,
                m.height_cm,
                m.weight_kg,
                m.created_at,
            ]
            for m in measurements
        ),
    )


def build_export_archive(
    db: Session,
    user_id: int,
    *,
    timestamp: datetime | None = None,
) -> bytes:
    """
    Produce the full-account export archive.

    Both CSV files are built before anything is packed, so a store error
    aborts the export without producing a partial archive.

    Parameters
    ----------
    db        : Open session.
    user_id   : Owner whose data is exported.
    timestamp : Modification time stamped on both members (UTC now when
                omitted).

    Returns
    -------
    bytes : ZIP archive holding ``babies.csv`` and ``baby-data.csv``.
    """
    babies_csv = build_babies_csv(db, user_id)
    baby_data_csv = build_baby_data_csv(db, user_id)

    archive = build_store_zip(
        [
            (BABIES_MEMBER, babies_csv.encode("utf-8")),
            (BABY_DATA_MEMBER, baby_data_csv.encode("utf-8")),
        ],
        timestamp=timestamp,
    )
    logger.info("Built export archive for user %s (%d bytes)", user_id, len(archive))
    return archive


def export_filename(prefix: str, day: date, extension: str) -> str:
    """``export_filename("babies", date(2024, 5, 1), "csv")`` → ``babies-2024-05-01.csv``."""
    return f"{prefix}-{day.isoformat()}.{extension}"
