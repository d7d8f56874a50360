"""Shared fixtures for the Baby Growth API test suite."""

from __future__ import annotations

import os

# Point the app at a private in-memory database before anything under app/
# reads its configuration.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("JWT_SECRET", "test-secret")

from datetime import date  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from app.auth import create_access_token, hash_password  # noqa: E402
from app.database import Base, SessionLocal, engine  # noqa: E402
from app.main import app  # noqa: E402
from app.models import Baby, BabyData, Gender, User, WhoData  # noqa: E402


@pytest.fixture(autouse=True)
def _fresh_schema() -> None:
    """Every test starts from empty tables."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)


@pytest.fixture()
def db_session() -> Session:
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def client() -> TestClient:
    """FastAPI test client."""
    return TestClient(app)


def make_user(db: Session, email: str = "parent@example.com") -> User:
    user = User(email=email, name="Parent", password_hash=hash_password("correct-horse"))
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture()
def user(db_session: Session) -> User:
    return make_user(db_session)


@pytest.fixture()
def other_user(db_session: Session) -> User:
    return make_user(db_session, "someone.else@example.com")


@pytest.fixture()
def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.email)}"}


@pytest.fixture()
def family(db_session: Session, user: User) -> dict[str, Baby]:
    """Two babies for ``user`` with a few measurements each.

    Ada: months 0, 1, 2.  Ben: months 0, 6.
    """
    ada = Baby(user_id=user.id, name="Ada", gender=Gender.FEMALE, birth_date=date(2023, 1, 15))
    ben = Baby(user_id=user.id, name="Ben", gender=Gender.MALE, birth_date=date(2021, 6, 1))
    db_session.add_all([ada, ben])
    db_session.flush()
    db_session.add_all(
        [
            BabyData(baby_id=ada.id, month_age=2, height_cm=58.4, weight_kg=5.6),
            BabyData(baby_id=ada.id, month_age=0, height_cm=49.1, weight_kg=3.2),
            BabyData(baby_id=ada.id, month_age=1, height_cm=53.7, weight_kg=4.2),
            BabyData(baby_id=ben.id, month_age=6, height_cm=67.6, weight_kg=7.9),
            BabyData(baby_id=ben.id, month_age=0, height_cm=50.0, weight_kg=3.5),
        ]
    )
    db_session.commit()
    return {"Ada": ada, "Ben": ben}


@pytest.fixture()
def who_rows(db_session: Session) -> list[WhoData]:
    """A small slice of the reference table, inserted out of order."""
    rows = [
        WhoData(gender=Gender.MALE, month_age=1, height_median_cm=54.7, weight_median_kg=4.5),
        WhoData(gender=Gender.FEMALE, month_age=1, height_median_cm=53.7, weight_median_kg=4.2),
        WhoData(gender=Gender.MALE, month_age=0, height_median_cm=49.9, weight_median_kg=3.3),
        WhoData(gender=Gender.FEMALE, month_age=0, height_median_cm=49.1, weight_median_kg=3.2),
    ]
    db_session.add_all(rows)
    db_session.commit()
    return rows
