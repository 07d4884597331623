"""API dependencies."""

from __future__ import annotations

from collections.abc import Generator

from sqlalchemy.orm import Session

from stratlens.db.session import session_factory
from stratlens.services.llm_client import LLMClient, get_llm_client


def get_db() -> Generator[Session, None, None]:
    SessionLocal = session_factory()
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def get_llm() -> LLMClient:
    return get_llm_client()
