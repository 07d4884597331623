"""Tests for decision model assembly across artifact versions."""

from datetime import datetime, timedelta

import pytest

from stratlens.errors import ArtifactAssemblyError
from stratlens.models.artifacts import ArtifactType
from stratlens.repos.artifacts_repo import ArtifactsRepo
from stratlens.services.decision_model import (
    DecisionModelAssembler,
    coverage_confidence,
    normalize_opportunities,
    summarize_evidence,
)
from stratlens.services.citations import normalize_citations
from stratlens.services.run_coordinator import RunCoordinator
from stratlens.services.scoring import DEFAULT_WEIGHTS

NOW = datetime(2025, 6, 1, 12, 0, 0)
PROJECT = "proj-1"


def v3_payload(title: str, run_id=None, breakdown_value=6.0, recency=10.0) -> dict:
    breakdown = {
        "customer_pain": breakdown_value,
        "willingness_to_pay": breakdown_value,
        "strategic_fit": breakdown_value,
        "feasibility": breakdown_value,
        "defensibility": breakdown_value,
        "competitor_gap": breakdown_value,
        "recencyConfidence": recency,
    }
    return {
        "meta": {"generated_at": "2025-05-31T00:00:00Z", "run_id": run_id, "schema_version": 3},
        "opportunities": [
            {
                "id": f"{title.lower().replace(' ', '-')}-{PROJECT}",
                "title": title,
                "one_liner": "A sharper wedge.",
                "citations": [
                    {"url": "https://acme.example.com/pricing", "type": "pricing", "retrievedAt": "2025-05-30"},
                ],
                # stored total is stale on purpose
                "scoring": {"breakdown": breakdown, "weights": dict(DEFAULT_WEIGHTS), "total": 12},
            }
        ],
    }


def v2_payload(score=80.0) -> dict:
    return {
        "meta": {"generated_at": "2025-05-20T00:00:00Z", "schema_version": 2},
        "opportunities": [
            {
                "title": "Self-serve onboarding",
                "who_it_serves": "Solo founders",
                "why_now": "Incumbents moved upmarket",
                "how_to_win": ["Free tier", "Guided setup"],
                "why_they_cant_easily_copy": "Sales-led comp plans",
                "score": score,
                "citations": ["https://acme.example.com/pricing#plans", "https://globex.example.com/reviews"],
            }
        ],
    }


def profiles_payload(run_id=None, names=("Acme", "Globex")) -> dict:
    return {
        "run_id": run_id,
        "generated_at": "2025-05-31T00:00:00Z",
        "competitor_count": len(names),
        "snapshots": [
            {
                "competitor_name": name,
                "positioning_one_liner": f"{name} sells billing",
                "citations": [
                    {"url": f"https://{name.lower()}.example.com/reviews", "source_type": "reviews", "extracted_at": "2025-05-29"},
                    {"url": f"https://{name.lower()}.example.com/changelog", "source_type": "changelog", "extracted_at": "2025-05-29"},
                ],
            }
            for name in names
        ],
    }


@pytest.fixture()
def repo(session):
    return ArtifactsRepo(session)


@pytest.fixture()
def assembler(session):
    return DecisionModelAssembler(session, now_fn=lambda: NOW)


def test_returns_none_without_opportunities(repo, assembler):
    repo.insert(PROJECT, ArtifactType.PROFILES, profiles_payload(), created_at=NOW)
    assert assembler.assemble(PROJECT) is None
    assert assembler.assemble("unknown-project") is None


def test_v3_wins_over_newer_v2(repo, assembler):
    v3_id = repo.insert(PROJECT, ArtifactType.OPPORTUNITIES_V3, v3_payload("Metered plan"), created_at=NOW - timedelta(days=3))
    repo.insert(PROJECT, ArtifactType.OPPORTUNITIES_V2, v2_payload(), created_at=NOW)

    model = assembler.assemble(PROJECT)

    assert model.metadata.artifact_version == "v3"
    assert model.metadata.opportunities_artifact_id == v3_id
    # 6 * 0.9 * 10 + 10 * 0.1 * 10
    assert model.opportunities[0].scoring.total == 64


def test_run_id_selects_matching_artifact(repo, assembler):
    older = repo.insert(PROJECT, ArtifactType.OPPORTUNITIES_V3, v3_payload("Older bet", run_id="run-a"), created_at=NOW - timedelta(days=2))
    newer = repo.insert(PROJECT, ArtifactType.OPPORTUNITIES_V3, v3_payload("Newer bet", run_id="run-b"), created_at=NOW)

    assert assembler.assemble(PROJECT, run_id="run-a").metadata.opportunities_artifact_id == older
    assert assembler.assemble(PROJECT, run_id="run-a").run_id == "run-a"
    assert assembler.assemble(PROJECT).metadata.opportunities_artifact_id == newer
    # unknown run falls back to newest
    assert assembler.assemble(PROJECT, run_id="run-zzz").metadata.opportunities_artifact_id == newer


def test_v2_is_upgraded_with_recomputed_score(repo, assembler):
    repo.insert(PROJECT, ArtifactType.OPPORTUNITIES_V2, v2_payload(score=80), created_at=NOW)
    model = assembler.assemble(PROJECT)

    assert model.metadata.artifact_version == "v2"
    opp = model.opportunities[0]
    assert opp.id == f"self-serve-onboarding-{PROJECT}"
    assert opp.scoring.breakdown["customer_pain"] == 8.0
    assert opp.scoring.weights == DEFAULT_WEIGHTS
    assert opp.customer == "Solo founders"
    assert opp.proposed_move == "Free tier; Guided setup"
    assert opp.tradeoffs.why_competitors_wont_follow == ["Sales-led comp plans"]
    assert [c.url for c in opp.citations] == [
        "https://acme.example.com/pricing",
        "https://globex.example.com/reviews",
    ]
    # bare URL citations carry neither dates nor types
    assert opp.scoring.breakdown["recencyConfidence"] == 0.0
    assert opp.scoring.total == 72


def test_v3_with_null_links_and_numeric_job_ids_still_wins(repo, assembler):
    repo.insert(PROJECT, ArtifactType.OPPORTUNITIES_V2, v2_payload(), created_at=NOW - timedelta(days=1))
    payload = v3_payload("Metered plan")
    payload["opportunities"][0]["dependencies"] = {
        "linked_competitors": None,
        "linked_jtbd_ids": [1, "job-2"],
        "linked_signals": None,
    }
    v3_id = repo.insert(PROJECT, ArtifactType.OPPORTUNITIES_V3, payload, created_at=NOW)

    model = assembler.assemble(PROJECT)

    assert model.metadata.artifact_version == "v3"
    assert model.metadata.opportunities_artifact_id == v3_id
    opp = model.opportunities[0]
    assert opp.linked_jtbd_ids == ["1", "job-2"]
    assert opp.linked_competitors == []


def test_v3_with_null_dependencies_loads(repo, assembler):
    payload = v3_payload("Metered plan")
    payload["opportunities"][0]["dependencies"] = None
    repo.insert(PROJECT, ArtifactType.OPPORTUNITIES_V3, payload, created_at=NOW)

    assert assembler.assemble(PROJECT).opportunities[0].linked_jtbd_ids == []


def test_supporting_context_and_evidence_summary(repo, assembler):
    repo.insert(PROJECT, ArtifactType.PROFILES, profiles_payload(run_id="run-a"), created_at=NOW - timedelta(days=1))
    repo.insert(PROJECT, ArtifactType.PROFILES, profiles_payload(run_id="run-b", names=("Initech",)), created_at=NOW)
    opp_id = repo.insert(PROJECT, ArtifactType.OPPORTUNITIES_V3, v3_payload("Metered plan", run_id="run-a"), created_at=NOW)
    repo.insert(
        PROJECT,
        ArtifactType.SCORING_MATRIX,
        {
            "meta": {"generated_at": "2025-05-31T00:00:00Z", "run_id": "run-a"},
            "criteria": [{"id": "price", "name": "Price", "weight": 0.5}],
            "scores": [
                {"competitor_name": "Acme", "total": 40},
                {"competitor_name": "Globex", "total": 70},
            ],
        },
        created_at=NOW,
    )

    model = assembler.assemble(PROJECT, run_id="run-a")

    assert [c.name for c in model.competitors] == ["Acme", "Globex"]
    assert [e.competitor_name for e in model.scorecard.entries] == ["Globex", "Acme"]
    assert model.metadata.source_artifact_ids[0] == opp_id
    assert len(model.metadata.source_artifact_ids) == 3

    summary = model.evidence_summary
    # 1 opportunity citation + 4 profile citations, all distinct
    assert summary.total_citations == 5
    assert summary.counts_by_type == {"changelog": 2, "pricing": 1, "reviews": 2}
    assert summary.recency_bucket == "last_7_days"
    assert summary.coverage_confidence == "high"


def test_decision_model_serializes_camel_case(repo, assembler):
    repo.insert(PROJECT, ArtifactType.OPPORTUNITIES_V3, v3_payload("Metered plan"), created_at=NOW)
    data = assembler.assemble(PROJECT).model_dump(by_alias=True)
    assert "projectId" in data
    assert "oneLiner" in data["opportunities"][0]
    assert data["metadata"]["artifactVersion"] == "v3"


def test_coverage_confidence_levels():
    assert coverage_confidence(3, "last_30_days") == "high"
    assert coverage_confidence(3, "last_90_days") == "medium"
    assert coverage_confidence(2, "last_7_days") == "medium"
    assert coverage_confidence(1, "last_7_days") == "low"
    assert coverage_confidence(5, "older") == "low"


def test_summarize_evidence_dedupes_urls():
    citations = normalize_citations(
        [
            {"url": "https://a.example.com/x", "type": "docs", "retrievedAt": "2025-01-01"},
            {"url": "https://a.example.com/x#dup", "type": "docs"},
        ]
    )
    citations = citations + citations
    summary = summarize_evidence(citations, NOW)
    assert summary["total_citations"] == 1
    assert summary["recency_bucket"] == "older"
    assert summary["coverage_confidence"] == "low"


def test_non_opportunity_artifact_is_rejected(repo):
    repo.insert(PROJECT, ArtifactType.PROFILES, profiles_payload(), created_at=NOW)
    stored = repo.latest(PROJECT, ArtifactType.PROFILES)
    with pytest.raises(ArtifactAssemblyError):
        normalize_opportunities(stored)


def test_assembles_output_of_a_real_run(session, make_project, scripted_llm):
    project_id = make_project()
    result = RunCoordinator(session, llm_client=scripted_llm(), now_fn=lambda: NOW).run_project_analysis(project_id)

    model = DecisionModelAssembler(session, now_fn=lambda: NOW).assemble(project_id, run_id=result.run.id)

    assert model.run_id == result.run.id
    assert model.metadata.opportunities_artifact_id == result.run.output["artifact_id"]
    assert [c.name for c in model.competitors] == ["Acme", "Globex"]
    assert model.opportunities[0].scoring.total == 73
    assert model.summary.startswith("1 opportunity (v3)")
