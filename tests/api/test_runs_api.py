"""API tests for run and project endpoints."""

from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from stratlens.api.deps import get_db, get_llm
from stratlens.api.main import app
from stratlens.api.routes_runs import http_status_for
from stratlens.errors import ErrorCode
from stratlens.repos.evidence_repo import EvidenceRepo
from stratlens.repos.projects_repo import ProjectsRepo


def _seed_project(Session, competitors=("Acme", "Globex")) -> str:
    """Evidence stamped relative to the wall clock, since the API runs on real time."""
    session = Session()
    try:
        projects = ProjectsRepo(session)
        evidence = EvidenceRepo(session)
        project_id = projects.create_project("API scan")
        projects.add_input(project_id, {"market": "B2B billing", "target_customer": "SMB finance"})
        recent = datetime.utcnow() - timedelta(days=1)
        for name in competitors:
            competitor_id = projects.add_competitor(project_id, name, url=f"https://{name.lower()}.example.com")
            for source_type in ("pricing", "reviews", "changelog"):
                evidence.add(
                    project_id=project_id,
                    competitor_id=competitor_id,
                    url=f"https://{name.lower()}.example.com/{source_type}",
                    source_type=source_type,
                    extracted_text=f"{name} {source_type}",
                    extracted_at=recent,
                )
        return project_id
    finally:
        session.close()


@pytest.fixture()
def client(session_maker, scripted_llm):
    def _db_override():
        session = session_maker()
        try:
            yield session
        finally:
            session.close()

    llm = scripted_llm()
    app.dependency_overrides[get_db] = _db_override
    app.dependency_overrides[get_llm] = lambda: llm
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_post_run_succeeds_then_reuses(client, session_maker):
    project_id = _seed_project(session_maker)

    res = client.post(f"/api/projects/{project_id}/runs")
    assert res.status_code == 200
    data = res.json()
    assert data["ok"] is True
    assert data["status"] == "succeeded"
    assert data["reused"] is False
    run_id = data["runId"]

    again = client.post(f"/api/projects/{project_id}/runs", json={"inputVersion": 1}).json()
    assert again["runId"] == run_id
    assert again["reused"] is True

    status = client.get(f"/api/runs/{run_id}/status").json()
    assert status == {
        "runId": run_id,
        "status": "succeeded",
        "progress": 100,
        "updatedAt": status["updatedAt"],
        "errorMessage": None,
    }

    detail = client.get(f"/api/runs/{run_id}").json()
    assert [s["name"] for s in detail["steps"]] == [
        "validate_inputs",
        "collect_evidence",
        "competitor_profiles",
        "generate_opportunities",
        "save_artifacts",
    ]
    assert detail["usage"]["calls"] == 3
    assert detail["output"]["opportunity_count"] == 1

    latest = client.get(f"/api/projects/{project_id}/runs/latest").json()
    assert latest["runId"] == run_id

    model = client.get(f"/api/projects/{project_id}/decision-model", params={"run_id": run_id})
    assert model.status_code == 200
    body = model.json()
    assert body["runId"] == run_id
    assert body["metadata"]["artifactVersion"] == "v3"
    assert len(body["opportunities"][0]["citations"]) >= 1


def test_post_run_reports_input_errors_as_422(client, session_maker):
    project_id = _seed_project(session_maker, competitors=("Acme",))

    res = client.post(f"/api/projects/{project_id}/runs")
    assert res.status_code == 422
    data = res.json()
    assert data["ok"] is False
    assert data["status"] == "failed"
    assert data["error"]["code"] == "INSUFFICIENT_COMPETITORS"
    assert data["error"]["message"].startswith("Add 1 more competitor")

    status = client.get(f"/api/runs/{data['runId']}/status").json()
    assert status["status"] == "failed"
    assert status["errorMessage"] == data["error"]["message"]


def test_unknown_ids_return_404(client):
    assert client.get("/api/runs/nope/status").status_code == 404
    assert client.get("/api/runs/nope").status_code == 404
    assert client.get("/api/projects/nope/runs/latest").status_code == 404
    assert client.get("/api/projects/nope/decision-model").status_code == 404


def test_evidence_coverage_endpoint(client, session_maker):
    project_id = _seed_project(session_maker)
    res = client.get(f"/api/projects/{project_id}/evidence/coverage")
    assert res.status_code == 200
    data = res.json()
    assert data["projectId"] == project_id
    assert data["coverage"]["totalCitations"] == 6
    assert data["coverage"]["recencyLabel"] == "last_7_days"
    assert data["readiness"]["isReady"] is True


def test_http_status_mapping():
    assert http_status_for(ErrorCode.NO_INPUTS) == 422
    assert http_status_for(ErrorCode.INSUFFICIENT_EVIDENCE_COVERAGE) == 422
    assert http_status_for(ErrorCode.VALIDATION_FAILED) == 422
    assert http_status_for(ErrorCode.OPPORTUNITY_GENERATION_ERROR) == 502
    assert http_status_for(ErrorCode.STATUS_TRANSITION_ERROR) == 409
    assert http_status_for(ErrorCode.UNHANDLED) == 500
