"""Run orchestration API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from stratlens.api.deps import get_db, get_llm
from stratlens.api.schemas import RunCreateRequest, RunCreateResponse, RunDetailResponse, RunStatusResponse, StepOut
from stratlens.errors import EVIDENCE_ERRORS, GENERATION_ERRORS, INPUT_ERRORS, ErrorCode
from stratlens.models.domain import RunRecord
from stratlens.repos.runs_repo import RunsRepo
from stratlens.services.llm_client import LLMClient
from stratlens.services.run_coordinator import RunCoordinator, status_view

router = APIRouter(tags=["runs"])


def http_status_for(code: ErrorCode) -> int:
    if code in INPUT_ERRORS or code in EVIDENCE_ERRORS or code in (ErrorCode.VALIDATION_FAILED, ErrorCode.SNAPSHOT_VALIDATION_FAILED):
        return 422
    if code in GENERATION_ERRORS:
        return 502
    if code is ErrorCode.STATUS_TRANSITION_ERROR:
        return 409
    return 500


def _detail(run: RunRecord) -> RunDetailResponse:
    return RunDetailResponse(
        run_id=run.id,
        project_id=run.project_id,
        input_version=run.input_version,
        pipeline_version=run.pipeline_version,
        status=run.status,
        attempt=run.attempt,
        created_at=run.created_at,
        started_at=run.started_at,
        finished_at=run.finished_at,
        error_code=run.error_code,
        error_message=run.error_message,
        error_detail=run.error_detail,
        steps=[StepOut(**e.to_dict()) for e in run.steps.entries()],
        usage=run.metrics.get("usage"),
        output=run.output,
    )


@router.post("/projects/{project_id}/runs", response_model=RunCreateResponse)
def create_run_endpoint(
    project_id: str,
    payload: RunCreateRequest | None = None,
    session: Session = Depends(get_db),
    llm_client: LLMClient = Depends(get_llm),
):
    """
    Create (or reuse) the run for the project's inputs and execute it synchronously.
    Failures come back as {ok: false, error: {code, message}} with a 4xx/5xx status.
    """
    coordinator = RunCoordinator(session, llm_client=llm_client)
    result = coordinator.run_project_analysis(project_id, payload.input_version if payload else None)
    body = RunCreateResponse(**result.to_dict()).model_dump(by_alias=True)
    if result.error is not None:
        return JSONResponse(status_code=http_status_for(result.error.code), content=body)
    return body


@router.get("/runs/{run_id}/status", response_model=RunStatusResponse)
def run_status_endpoint(run_id: str, session: Session = Depends(get_db)):
    run = RunsRepo(session).get(run_id)
    if run is None:
        # pollers read 404 as "queued": the row may not be visible yet
        raise HTTPException(status_code=404, detail="Run not found")
    return RunStatusResponse(**status_view(run)).model_dump(by_alias=True)


@router.get("/runs/{run_id}", response_model=RunDetailResponse)
def get_run_endpoint(run_id: str, session: Session = Depends(get_db)):
    run = RunsRepo(session).get(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail="Run not found")
    return _detail(run).model_dump(by_alias=True)


@router.get("/projects/{project_id}/runs/latest", response_model=RunStatusResponse)
def latest_run_endpoint(project_id: str, session: Session = Depends(get_db)):
    run = RunsRepo(session).latest_for_project(project_id)
    if run is None:
        raise HTTPException(status_code=404, detail="No runs for project")
    return RunStatusResponse(**status_view(run)).model_dump(by_alias=True)
