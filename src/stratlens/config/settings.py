from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Centralized config.

    Key idea:
    - read from env first (so tests/CI can override),
    - otherwise default to local dev values.
    """

    model_config = SettingsConfigDict(env_prefix="STRATLENS_", extra="ignore")

    # DuckDB file by default (portable, zero-setup)
    db_url: str = "duckdb:///data/stratlens.duckdb"

    # Bump whenever prompt/generation logic changes; part of the run idempotency key
    pipeline_version: str = "2025-12-23.v1"

    # A queued/running run with no heartbeat for this long is considered abandoned
    run_lease_s: int = 900

    # Analysis preconditions
    min_competitors: int = 2
    max_competitors: int = 7
    max_evidence_chars: int = 12_000

    # LLM settings (default stub for deterministic tests)
    llm_provider: str = "stub"
    llm_model_name: str | None = None
    openai_api_key: str | None = None
    llm_timeout_s: float = 60.0
    llm_max_retries: int = 2

    log_level: str = "INFO"
    cors_origins: str = "http://localhost:5173,http://localhost:3000"


settings = Settings()
