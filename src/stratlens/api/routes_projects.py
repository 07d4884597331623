"""Project-level read routes: decision model and evidence coverage."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from stratlens.api.deps import get_db
from stratlens.api.schemas import CoverageResponse
from stratlens.errors import ArtifactAssemblyError
from stratlens.repos.evidence_repo import EvidenceRepo
from stratlens.repos.runs_repo import utcnow
from stratlens.services.decision_model import DecisionModelAssembler
from stratlens.services.evidence_gate import compute_coverage, evaluate_readiness

router = APIRouter(prefix="/projects", tags=["projects"])


@router.get("/{project_id}/decision-model")
def decision_model_endpoint(
    project_id: str,
    run_id: Optional[str] = Query(None),
    session: Session = Depends(get_db),
):
    try:
        model = DecisionModelAssembler(session).assemble(project_id, run_id=run_id)
    except ArtifactAssemblyError as e:
        raise HTTPException(status_code=500, detail=str(e))
    if model is None:
        raise HTTPException(status_code=404, detail="No opportunities have been generated for this project")
    return model.model_dump(by_alias=True, mode="json")


@router.get("/{project_id}/evidence/coverage", response_model=CoverageResponse)
def evidence_coverage_endpoint(project_id: str, session: Session = Depends(get_db)):
    coverage = compute_coverage(EvidenceRepo(session).list_for_project(project_id), utcnow())
    readiness = evaluate_readiness(coverage)
    return CoverageResponse(project_id=project_id, coverage=coverage.to_dict(), readiness=readiness.to_dict())
