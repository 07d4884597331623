# src/stratlens/db/engine.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
import os

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine

from stratlens.config.settings import settings


@dataclass(frozen=True)
class DBPingResult:
    ok: bool
    detail: str


def resolve_db_url(db_url: Optional[str] = None) -> str:
    return db_url or os.getenv("DATABASE_URL") or settings.db_url


def build_engine(db_url: Optional[str] = None) -> Engine:
    """
    Build a SQLAlchemy Engine.

    Explicit URLs win (tests use temp DuckDB files), then DATABASE_URL,
    then settings.db_url. A local DuckDB file gets its parent directory created.
    """
    url = resolve_db_url(db_url)
    if url.startswith("postgresql"):
        return create_engine(url, future=True, pool_pre_ping=True)
    if url.startswith("duckdb:///") and ":memory:" not in url:
        parent = os.path.dirname(url[len("duckdb:///"):])
        if parent:
            os.makedirs(parent, exist_ok=True)
    return create_engine(url, future=True)


def ping_db(engine: Engine) -> DBPingResult:
    """
    Lightweight DB connectivity check.
    Must NEVER return None (health endpoint depends on this).
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("select 1")).scalar_one()
        return DBPingResult(ok=True, detail="ok")
    except Exception as e:
        return DBPingResult(ok=False, detail=f"{type(e).__name__}: {e}")
