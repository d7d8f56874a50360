"""
app/models.py
-----------------------------------------------------------------------------
ORM models for users, babies, their growth measurements, and the shared WHO
reference medians.

Ownership runs ``User → Baby → BabyData``; deleting a row deletes everything
beneath it, both through ORM cascades and ``ON DELETE CASCADE`` foreign keys.
A baby has at most one measurement per month of age.
"""

from __future__ import annotations

import enum

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import relationship

from app.database import Base


class Gender(str, enum.Enum):
    MALE = "MALE"
    FEMALE = "FEMALE"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    name = Column(String(100), nullable=True)
    password_hash = Column(String(255), nullable=False)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    babies = relationship(
        "Baby",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class Baby(Base):
    __tablename__ = "babies"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = Column(String(50), nullable=False)
    gender = Column(Enum(Gender, name="gender"), nullable=False, default=Gender.MALE)
    birth_date = Column(Date, nullable=False)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )

    user = relationship("User", back_populates="babies")
    measurements = relationship(
        "BabyData",
        back_populates="baby",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="BabyData.month_age",
    )


class BabyData(Base):
    """One height/weight measurement for a baby at a given month of age."""

    __tablename__ = "baby_data"
    __table_args__ = (
        UniqueConstraint("baby_id", "month_age", name="uq_baby_data_baby_month"),
    )

    id = Column(Integer, primary_key=True, index=True)
    baby_id = Column(
        Integer,
        ForeignKey("babies.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    month_age = Column(Integer, nullable=False)
    height_cm = Column(Float, nullable=False)
    weight_kg = Column(Float, nullable=False)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )

    baby = relationship("Baby", back_populates="measurements")


class WhoData(Base):
    """WHO growth-standard medians for one gender at one month of age."""

    __tablename__ = "who_data"
    __table_args__ = (
        UniqueConstraint("gender", "month_age", name="uq_who_data_gender_month"),
    )

    id = Column(Integer, primary_key=True, index=True)
    gender = Column(Enum(Gender, name="gender"), nullable=False)
    month_age = Column(Integer, nullable=False)
    height_median_cm = Column(Float, nullable=False)
    weight_median_kg = Column(Float, nullable=False)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )
