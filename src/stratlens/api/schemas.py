"""API schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RunCreateRequest(ApiModel):
    input_version: Optional[int] = Field(None, ge=0)


class ErrorOut(BaseModel):
    code: str
    message: str


class RunCreateResponse(ApiModel):
    ok: bool
    run_id: Optional[str]
    status: Optional[str]
    reused: bool = False
    error: Optional[ErrorOut] = None


class RunStatusResponse(ApiModel):
    run_id: str
    status: str
    progress: Optional[int] = None
    updated_at: str
    error_message: Optional[str] = None


class StepOut(ApiModel):
    name: str
    status: str
    started_at: str
    finished_at: Optional[str] = None
    error: Optional[dict[str, Any]] = None
    skipped: bool = False


class RunDetailResponse(ApiModel):
    run_id: str
    project_id: str
    input_version: int
    pipeline_version: str
    status: str
    attempt: int
    created_at: datetime
    started_at: Optional[datetime]
    finished_at: Optional[datetime]
    error_code: Optional[str]
    error_message: Optional[str]
    error_detail: Optional[str]
    steps: list[StepOut]
    usage: Optional[dict[str, Any]] = None
    output: Optional[dict[str, Any]] = None


class CoverageResponse(ApiModel):
    project_id: str
    coverage: dict[str, Any]
    readiness: dict[str, Any]
