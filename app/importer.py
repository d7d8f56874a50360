"""
app/importer.py
-----------------------------------------------------------------------------
Import orchestrator: unpack an uploaded export archive, parse both CSV
members, and reconcile the rows into the store under a merge policy.

Pipeline
--------
1. **Unpack** — ``read_store_zip`` plus a check that ``babies.csv`` and
   ``baby-data.csv`` are both present.
2. **Parse** — ``decode_csv`` and a header index per file, so column order
   in the upload does not matter and missing columns read as empty.
3. **Project** — turn rows into candidate babies and measurements.  Rows
   that cannot be stored (empty name, bad date, month age outside 0–240,
   non-positive height or weight) are dropped here and counted as
   ``rejected``; they never reach the store.
4. **Resolve** — decide which baby every measurement belongs to before
   anything is written (see below).
5. **Reconcile** — one of two policies:

   ``replace``
       One transaction: delete the user's measurements and babies, create
       one baby per ``babies.csv`` row, then attach the measurements.  Any
       failure rolls everything back, leaving the previous data intact.

   ``append``
       No enclosing transaction.  Archive babies are paired with existing
       ones (unpaired babies are created) and measurements are upserted by
       (baby, month age).  Each write is committed on its own, so re-running
       the same archive is harmless.

Resolving measurements
----------------------
Every ``babies.csv`` row is its own baby, even when names repeat.  A
measurement whose ``babyId`` equals the ``id`` of a ``babies.csv`` row with
the same name belongs to that row.  Otherwise its ``babyName`` must match
exactly one baby; a name matching none is ``skipped``, and a name matching
several raises ``AmbiguousBabyName`` before any write.  If ``baby-data.csv``
repeats a (baby, monthAge) pair, the last row's values win.
"""

from __future__ import annotations

import logging
import math
import threading
from collections import Counter
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date

from sqlalchemy.orm import Session

from app.csv_codec import decode_csv, header_index
from app.errors import AmbiguousBabyName, InvalidArchive, MissingEntries
from app.exporter import BABIES_MEMBER, BABY_DATA_MEMBER
from app.models import Gender
from app.schema import ImportMode, ImportStats
from app.store import (
    babies_by_id,
    create_baby,
    create_measurement,
    delete_user_data,
    find_measurement,
)
from app.zip_store import read_store_zip

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH: int = 50
MAX_MONTH_AGE: int = 240


# Imports for one user run one at a time within this process.  Across
# processes the replace transaction is the only guard.  An entry lives only
# while some import of that user holds or waits for its lock.
class _UserLock:
    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


_user_locks: dict[int, _UserLock] = {}
_user_locks_guard = threading.Lock()


@contextmanager
def _locked(user_id: int) -> Iterator[None]:
    with _user_locks_guard:
        entry = _user_locks.setdefault(user_id, _UserLock())
        entry.users += 1
    try:
        with entry.lock:
            yield
    finally:
        with _user_locks_guard:
            entry.users -= 1
            if entry.users == 0:
                del _user_locks[user_id]


@dataclass(frozen=True)
class BabyCandidate:
    name: str
    gender: Gender
    birth_date: date
    source_id: str = ""


@dataclass(frozen=True)
class MeasurementCandidate:
    baby_name: str
    month_age: int
    height_cm: float
    weight_kg: float
    baby_ref: str = ""


def parse_mode(value: str | None) -> ImportMode:
    """``"replace"`` selects replace mode; any other value means append."""
    if value is not None and value.strip().lower() == ImportMode.REPLACE.value:
        return ImportMode.REPLACE
    return ImportMode.APPEND


# -----------------------------------------------------------------------------
# Unpack
# -----------------------------------------------------------------------------


def unpack_archive(data: bytes) -> tuple[str, str]:
    """
    Return the text of ``babies.csv`` and ``baby-data.csv``.

    Raises
    ------
    InvalidArchive   : Not a readable store-only ZIP, or a member is not
                       valid UTF-8.
    UnsupportedEntry : The archive contains a compressed entry.
    MissingEntries   : One or both CSV members are absent.
    """
    files = read_store_zip(data)
    missing = [name for name in (BABIES_MEMBER, BABY_DATA_MEMBER) if name not in files]
    if missing:
        raise MissingEntries(missing)
    try:
        return files[BABIES_MEMBER].decode("utf-8"), files[BABY_DATA_MEMBER].decode("utf-8")
    except UnicodeDecodeError as exc:
        raise InvalidArchive(f"CSV member is not valid UTF-8: {exc}") from exc


# -----------------------------------------------------------------------------
# Project
# -----------------------------------------------------------------------------


def _cell(row: Sequence[str], index: dict[str, int], column: str) -> str:
    position = index.get(column)
    if position is None or position >= len(row):
        return ""
    return row[position]


def _parse_number(text: str) -> float | None:
    try:
        value = float(text.strip())
    except ValueError:
        return None
    return value if math.isfinite(value) else None


def _parse_date(text: str) -> date | None:
    # Accept plain dates and full ISO timestamps alike.
    try:
        return date.fromisoformat(text.strip()[:10])
    except ValueError:
        return None


def _parse_gender(text: str) -> Gender:
    try:
        return Gender(text.strip().upper())
    except ValueError:
        return Gender.MALE


def project_babies(rows: list[list[str]]) -> tuple[list[BabyCandidate], int]:
    """
    Turn parsed ``babies.csv`` rows (header first) into candidates.

    Returns
    -------
    tuple[list[BabyCandidate], int] : Accepted candidates in file order and
                                      the number of rejected rows.
    """
    if not rows:
        return [], 0
    index = header_index(rows[0])
    candidates: list[BabyCandidate] = []
    rejected = 0

    for row in rows[1:]:
        name = _cell(row, index, "name").strip()
        birth_date = _parse_date(_cell(row, index, "birthDate"))
        if not name or len(name) > MAX_NAME_LENGTH or birth_date is None:
            rejected += 1
            continue
        candidates.append(
            BabyCandidate(
                name=name,
                gender=_parse_gender(_cell(row, index, "gender")),
                birth_date=birth_date,
                source_id=_cell(row, index, "id").strip(),
            )
        )
    return candidates, rejected


def project_measurements(
    rows: list[list[str]],
) -> tuple[list[MeasurementCandidate], int]:
    """Turn parsed ``baby-data.csv`` rows (header first) into candidates."""
    if not rows:
        return [], 0
    index = header_index(rows[0])
    candidates: list[MeasurementCandidate] = []
    rejected = 0

    for row in rows[1:]:
        baby_name = _cell(row, index, "babyName").strip()
        month_age = _parse_number(_cell(row, index, "monthAge"))
        height_cm = _parse_number(_cell(row, index, "heightCm"))
        weight_kg = _parse_number(_cell(row, index, "weightKg"))

        if (
            not baby_name
            or month_age is None
            or not month_age.is_integer()
            or not 0 <= month_age <= MAX_MONTH_AGE
            or height_cm is None
            or height_cm <= 0
            or weight_kg is None
            or weight_kg <= 0
        ):
            rejected += 1
            continue
        candidates.append(
            MeasurementCandidate(
                baby_name=baby_name,
                month_age=int(month_age),
                height_cm=height_cm,
                weight_kg=weight_kg,
                baby_ref=_cell(row, index, "babyId").strip(),
            )
        )
    return candidates, rejected


# -----------------------------------------------------------------------------
# Reconcile
# -----------------------------------------------------------------------------

# Where a measurement lands: ("baby", id) for a baby already in the store, or
# ("new", index) for the candidate at ``index`` that this run will create.
Target = tuple[str, int]


def _match_existing(
    babies: list[BabyCandidate],
    existing: list[tuple[int, str]],
) -> list[int | None]:
    """
    Pair each candidate with an existing baby it merges into, or ``None``.

    An archive ``id`` naming one of the user's babies with the same name is
    an exact match (re-import of the user's own export).  Remaining
    candidates take the oldest unclaimed existing baby with their name.  No
    existing baby is claimed twice, so same-named babies stay distinct.
    """
    names = dict(existing)
    claimed: set[int] = set()
    matched: list[int | None] = [None] * len(babies)

    for i, candidate in enumerate(babies):
        if candidate.source_id.isdigit():
            baby_id = int(candidate.source_id)
            if names.get(baby_id) == candidate.name and baby_id not in claimed:
                matched[i] = baby_id
                claimed.add(baby_id)

    for i, candidate in enumerate(babies):
        if matched[i] is not None:
            continue
        for baby_id, name in existing:
            if name == candidate.name and baby_id not in claimed:
                matched[i] = baby_id
                claimed.add(baby_id)
                break
    return matched


def _resolve(
    babies: list[BabyCandidate],
    targets: list[Target],
    existing: list[tuple[int, str]],
    measurements: list[MeasurementCandidate],
) -> list[Target | None]:
    """
    Resolve every measurement to a target before anything is written.

    ``babyId`` pointing at a ``babies.csv`` ``id`` with the same name wins.
    Otherwise the baby name must name exactly one target; no target means
    the row is skipped (``None``).

    Raises
    ------
    AmbiguousBabyName : The name matches several babies and ``babyId`` does
                        not tell them apart.
    """
    source_counts = Counter(c.source_id for c in babies if c.source_id)
    by_source = {
        c.source_id: i for i, c in enumerate(babies) if source_counts[c.source_id] == 1
    }

    by_name: dict[str, set[Target]] = {}
    for baby_id, name in existing:
        by_name.setdefault(name, set()).add(("baby", baby_id))
    for candidate, target in zip(babies, targets):
        by_name.setdefault(candidate.name, set()).add(target)

    resolved: list[Target | None] = []
    for candidate in measurements:
        index = by_source.get(candidate.baby_ref) if candidate.baby_ref else None
        if index is not None and babies[index].name == candidate.baby_name:
            resolved.append(targets[index])
            continue
        options = by_name.get(candidate.baby_name, set())
        if len(options) > 1:
            raise AmbiguousBabyName(candidate.baby_name)
        resolved.append(next(iter(options)) if options else None)
    return resolved


def _write(
    db: Session,
    user_id: int,
    babies: list[BabyCandidate],
    targets: list[Target],
    measurements: list[MeasurementCandidate],
    resolved: list[Target | None],
    stats: ImportStats,
    *,
    commit_each: bool,
) -> None:
    created: dict[int, int] = {}
    for i, (candidate, target) in enumerate(zip(babies, targets)):
        if target[0] == "baby":
            continue
        baby = create_baby(
            db,
            user_id,
            name=candidate.name,
            gender=candidate.gender,
            birth_date=candidate.birth_date,
        )
        created[i] = baby.id
        if commit_each:
            db.commit()
        stats.babies.created += 1

    for candidate, target in zip(measurements, resolved):
        if target is None:
            stats.data.skipped += 1
            continue
        kind, value = target
        baby_id = value if kind == "baby" else created[value]
        existing = find_measurement(db, baby_id, candidate.month_age)
        if existing is not None:
            existing.height_cm = candidate.height_cm
            existing.weight_kg = candidate.weight_kg
            db.flush()
            stats.data.updated += 1
        else:
            create_measurement(
                db,
                baby_id=baby_id,
                month_age=candidate.month_age,
                height_cm=candidate.height_cm,
                weight_kg=candidate.weight_kg,
            )
            stats.data.created += 1
        if commit_each:
            db.commit()


def _replace(
    db: Session,
    user_id: int,
    babies: list[BabyCandidate],
    measurements: list[MeasurementCandidate],
    stats: ImportStats,
) -> None:
    targets: list[Target] = [("new", i) for i in range(len(babies))]
    resolved = _resolve(babies, targets, [], measurements)
    try:
        _, stats.babies.removed = delete_user_data(db, user_id)
        _write(db, user_id, babies, targets, measurements, resolved, stats, commit_each=False)
        db.commit()
    except Exception:
        db.rollback()
        raise


def _append(
    db: Session,
    user_id: int,
    babies: list[BabyCandidate],
    measurements: list[MeasurementCandidate],
    stats: ImportStats,
) -> None:
    existing = list(babies_by_id(db, user_id).items())
    matched = _match_existing(babies, existing)
    targets: list[Target] = [
        ("baby", baby_id) if baby_id is not None else ("new", i)
        for i, baby_id in enumerate(matched)
    ]
    resolved = _resolve(babies, targets, existing, measurements)
    try:
        _write(db, user_id, babies, targets, measurements, resolved, stats, commit_each=True)
    except Exception:
        # Earlier upserts stay committed; only the failing one is discarded.
        db.rollback()
        raise


def import_archive(
    db: Session,
    user_id: int,
    data: bytes,
    mode: ImportMode | str = ImportMode.APPEND,
) -> ImportStats:
    """
    Import an export archive for ``user_id``.

    Parameters
    ----------
    db      : Open session; committed (replace) or committed per write
              (append) by this function.
    user_id : Owner of the imported rows.
    data    : Uploaded archive bytes.
    mode    : ``ImportMode`` or its string value.

    Returns
    -------
    ImportStats : Counts of created/removed/rejected babies and
                  created/updated/skipped/rejected measurements.

    Raises
    ------
    InvalidArchive, UnsupportedEntry, MissingEntries
        The upload is unusable; nothing was written.
    AmbiguousBabyName
        A measurement could belong to more than one baby; nothing was
        written.
    sqlalchemy.exc.SQLAlchemyError
        The store failed.  In replace mode nothing was written.
    """
    mode = ImportMode(mode)
    babies_text, baby_data_text = unpack_archive(data)

    babies, babies_rejected = project_babies(decode_csv(babies_text))
    measurements, data_rejected = project_measurements(decode_csv(baby_data_text))

    stats = ImportStats(mode=mode)
    stats.babies.rejected = babies_rejected
    stats.data.rejected = data_rejected

    with _locked(user_id):
        if mode is ImportMode.REPLACE:
            _replace(db, user_id, babies, measurements, stats)
        else:
            _append(db, user_id, babies, measurements, stats)

    logger.info(
        "Imported archive for user %s: mode=%s babies=%s data=%s",
        user_id,
        mode.value,
        stats.babies.model_dump(),
        stats.data.model_dump(),
    )
    return stats
