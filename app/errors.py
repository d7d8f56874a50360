"""
app/errors.py
-----------------------------------------------------------------------------
Exception taxonomy for the export/import pipeline and the measurement store.

Domain modules raise these; ``main.py`` translates them into HTTP responses.
Every class derives from ``ValueError`` so callers that only care about
"bad input" can keep catching the built-in type.
"""

from __future__ import annotations


class ArchiveError(ValueError):
    """Base class for anything wrong with an uploaded archive."""


class InvalidArchive(ArchiveError):
    """Missing end record, bad signature, truncated data or CRC mismatch."""


class UnsupportedEntry(ArchiveError):
    """An entry uses a compression method other than store (0)."""

    def __init__(self, name: str, method: int) -> None:
        super().__init__(
            f"Zip entry '{name}' uses compression method {method}; "
            f"only stored (method 0) entries are supported."
        )
        self.name = name
        self.method = method


class MissingEntries(ValueError):
    """The archive opened fine but lacks one or both required CSV members."""

    def __init__(self, missing: list[str]) -> None:
        super().__init__("Missing babies.csv or baby-data.csv")
        self.missing = missing


class DuplicateMeasurement(ValueError):
    """A measurement already exists for this (baby, month age) pair."""

    def __init__(self, baby_id: int, month_age: int) -> None:
        super().__init__("Duplicate monthAge for this baby")
        self.baby_id = baby_id
        self.month_age = month_age


class DuplicateWhoMedian(ValueError):
    """A WHO reference row already exists for this (gender, month age) pair."""

    def __init__(self, gender: object, month_age: int) -> None:
        super().__init__("Duplicate monthAge for this gender")
        self.gender = gender
        self.month_age = month_age


class AmbiguousBabyName(ValueError):
    """An imported measurement's baby name matches more than one baby."""

    def __init__(self, name: str) -> None:
        super().__init__(
            f"Baby name '{name}' matches more than one baby; "
            f"give each measurement a babyId from babies.csv."
        )
        self.name = name
