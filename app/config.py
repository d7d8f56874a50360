"""
app/config.py
-----------------------------------------------------------------------------
Runtime configuration read from the environment.

Values are read once at import time (after loading ``.env`` if present) so
they stay consistent for the lifetime of the process.

Environment variables
---------------------
DATABASE_URL                – SQLAlchemy URL (default: local SQLite file).
JWT_SECRET                  – HMAC key used to sign access tokens.
JWT_ALGORITHM               – Token signing algorithm (default: HS256).
ACCESS_TOKEN_EXPIRE_MINUTES – Token lifetime in minutes (default: one day).
MAX_UPLOAD_SIZE             – Largest accepted import upload, in bytes.
"""

from __future__ import annotations

import os

from dotenv import load_dotenv

# Load .env if present (no-op if the file doesn't exist)
load_dotenv()

DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./baby_growth.db")

JWT_SECRET: str = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_ALGORITHM: str = os.getenv("JWT_ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES: int = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "1440"))

# An export holds two small CSV files; 10 MB leaves plenty of headroom.
MAX_UPLOAD_SIZE: int = int(os.getenv("MAX_UPLOAD_SIZE", "10485760"))
