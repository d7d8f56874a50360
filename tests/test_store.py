"""Tests for app/store.py – user-scoped queries and the uniqueness guard."""

from __future__ import annotations

from datetime import date

import pytest
from sqlalchemy.orm import Session

from app.errors import DuplicateMeasurement, DuplicateWhoMedian
from app.models import Baby, BabyData, Gender, User
from app.store import (
    babies_by_id,
    create_baby,
    create_measurement,
    delete_user_data,
    find_measurement,
    get_baby,
    get_measurement,
    get_who_median,
    list_babies,
    list_measurements,
    list_who_medians,
    update_measurement,
    update_who_median,
)


class TestBabies:
    """Baby lookups only ever see the owning user's rows."""

    def test_list_is_ordered_by_id(self, db_session: Session, family: dict) -> None:
        babies = list_babies(db_session, family["Ada"].user_id)
        assert [b.name for b in babies] == ["Ada", "Ben"]

    def test_other_users_cannot_see_babies(
        self, db_session: Session, family: dict, other_user: User
    ) -> None:
        assert list_babies(db_session, other_user.id) == []
        assert get_baby(db_session, other_user.id, family["Ada"].id) is None

    def test_ids_keep_same_named_babies_apart(self, db_session: Session, user: User) -> None:
        first = create_baby(
            db_session, user.id, name="Sam", gender=Gender.MALE, birth_date=date(2020, 1, 1)
        )
        second = create_baby(
            db_session, user.id, name="Sam", gender=Gender.FEMALE, birth_date=date(2021, 1, 1)
        )
        db_session.commit()
        assert list(babies_by_id(db_session, user.id).items()) == [
            (first.id, "Sam"),
            (second.id, "Sam"),
        ]


class TestMeasurements:
    """Measurement ordering, ownership, and the one-per-month rule."""

    def test_export_order(self, db_session: Session, user: User, family: dict) -> None:
        rows = list_measurements(db_session, user.id)
        assert [(m.baby.name, m.month_age) for m in rows] == [
            ("Ada", 0),
            ("Ada", 1),
            ("Ada", 2),
            ("Ben", 0),
            ("Ben", 6),
        ]

    def test_latest_first(self, db_session: Session, user: User, family: dict) -> None:
        rows = list_measurements(db_session, user.id, latest_first=True)
        assert rows[0].month_age == 6

    def test_get_measurement_is_scoped(
        self, db_session: Session, family: dict, other_user: User
    ) -> None:
        m = find_measurement(db_session, family["Ada"].id, 0)
        assert get_measurement(db_session, other_user.id, m.id) is None
        assert get_measurement(db_session, family["Ada"].user_id, m.id).id == m.id

    def test_duplicate_create_raises(self, db_session: Session, family: dict) -> None:
        with pytest.raises(DuplicateMeasurement) as exc_info:
            create_measurement(
                db_session,
                baby_id=family["Ada"].id,
                month_age=1,
                height_cm=55.0,
                weight_kg=4.5,
            )
        assert exc_info.value.month_age == 1

    def test_update_into_taken_month_raises(self, db_session: Session, family: dict) -> None:
        m = find_measurement(db_session, family["Ada"].id, 2)
        with pytest.raises(DuplicateMeasurement):
            update_measurement(db_session, m, month_age=1)

    def test_update_ignores_none(self, db_session: Session, family: dict) -> None:
        m = find_measurement(db_session, family["Ada"].id, 2)
        update_measurement(db_session, m, month_age=None, height_cm=60.0)
        db_session.commit()
        db_session.refresh(m)
        assert (m.month_age, m.height_cm, m.weight_kg) == (2, 60.0, 5.6)


class TestDeleteUserData:
    """Bulk removal of one user's babies and measurements."""

    def test_counts_and_scope(
        self, db_session: Session, user: User, family: dict, other_user: User
    ) -> None:
        keep = Baby(
            user_id=other_user.id, name="Kim", gender=Gender.FEMALE, birth_date=date(2022, 3, 3)
        )
        db_session.add(keep)
        db_session.commit()

        removed = delete_user_data(db_session, user.id)
        db_session.commit()

        assert removed == (5, 2)
        assert db_session.query(Baby).filter_by(user_id=user.id).count() == 0
        assert db_session.query(BabyData).count() == 0
        assert db_session.query(Baby).filter_by(user_id=other_user.id).count() == 1

    @pytest.mark.filterwarnings("error::sqlalchemy.exc.SAWarning")
    def test_loaded_objects_leave_session(
        self, db_session: Session, user: User, family: dict
    ) -> None:
        ada = family["Ada"]
        loaded = list_measurements(db_session, user.id)

        delete_user_data(db_session, user.id)
        db_session.commit()

        assert ada not in db_session
        assert all(m not in db_session for m in loaded)


class TestWhoMedians:
    """Reference medians are listed in a fixed order and stay unique per gender and month."""

    def test_ordered_by_gender_then_month(self, db_session: Session, who_rows: list) -> None:
        rows = list_who_medians(db_session)
        assert [(r.gender, r.month_age) for r in rows] == [
            (Gender.FEMALE, 0),
            (Gender.FEMALE, 1),
            (Gender.MALE, 0),
            (Gender.MALE, 1),
        ]

    def test_gender_filter(self, db_session: Session, who_rows: list) -> None:
        rows = list_who_medians(db_session, Gender.MALE)
        assert [r.height_median_cm for r in rows] == [49.9, 54.7]

    def test_get_unknown_row(self, db_session: Session, who_rows: list) -> None:
        assert get_who_median(db_session, 999) is None

    def test_update_values(self, db_session: Session, who_rows: list) -> None:
        row = who_rows[0]
        update_who_median(db_session, row, height_median_cm=55.0, month_age=None)
        db_session.commit()
        db_session.refresh(row)
        assert (row.month_age, row.height_median_cm) == (1, 55.0)

    def test_update_into_taken_pair_raises(self, db_session: Session, who_rows: list) -> None:
        with pytest.raises(DuplicateWhoMedian) as exc_info:
            update_who_median(db_session, who_rows[0], month_age=0)
        assert exc_info.value.month_age == 0

    def test_same_month_other_gender_allowed(self, db_session: Session, who_rows: list) -> None:
        row = who_rows[2]
        update_who_median(db_session, row, month_age=5)
        db_session.commit()
        assert get_who_median(db_session, row.id).month_age == 5
