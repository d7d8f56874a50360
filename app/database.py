"""
app/database.py
-----------------------------------------------------------------------------
SQLAlchemy engine, session factory and the ``get_db`` request dependency.

SQLite is the default backend.  Two adjustments make it behave like the
production database for this app:

- ``PRAGMA foreign_keys=ON`` on every connection so ``ON DELETE CASCADE``
  from users to babies to measurements is honoured.
- In-memory URLs share one connection (``StaticPool``) so every session,
  including the test client's, sees the same database.
"""

from __future__ import annotations

from collections.abc import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from app.config import DATABASE_URL

Base = declarative_base()


def _engine_for(url: str):
    kwargs: dict = {"future": True}
    parsed = make_url(url)
    if parsed.get_backend_name() == "sqlite":
        kwargs["connect_args"] = {"check_same_thread": False}
        if parsed.database in (None, "", ":memory:"):
            kwargs["poolclass"] = StaticPool
    new_engine = create_engine(url, **kwargs)

    if parsed.get_backend_name() == "sqlite":

        @event.listens_for(new_engine, "connect")
        def _enable_foreign_keys(dbapi_connection, _record) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return new_engine


engine = _engine_for(DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db() -> None:
    """Create every table that does not exist yet."""
    # Imported for its side effect of registering the models on Base.
    import app.models  # noqa: F401

    Base.metadata.create_all(bind=engine)


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
