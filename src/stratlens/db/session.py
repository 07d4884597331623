"""Database session helpers."""

from __future__ import annotations

from typing import Optional

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from stratlens.db.engine import build_engine
from stratlens.db.init_db import ensure_db


def session_factory(engine: Optional[Engine] = None) -> sessionmaker:
    """Sessionmaker bound to the project engine, with the schema ensured."""
    engine = engine or build_engine()
    ensure_db(engine)
    return sessionmaker(bind=engine, expire_on_commit=False)


def get_session() -> Session:
    """Build and return a SQLAlchemy session bound to the project engine."""
    return session_factory()()
