"""Global test fixtures."""

import json
import sys
from datetime import datetime, timedelta
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from stratlens.db.schema import Base  # noqa: E402
from stratlens.repos.evidence_repo import EvidenceRepo  # noqa: E402
from stratlens.repos.projects_repo import ProjectsRepo  # noqa: E402
from stratlens.services.llm_client import StubLLMClient  # noqa: E402

NOW = datetime(2025, 6, 1, 12, 0, 0)

DIMENSIONS = {
    "customer_pain": 7,
    "willingness_to_pay": 7,
    "strategic_fit": 7,
    "feasibility": 7,
    "defensibility": 7,
    "competitor_gap": 7,
}


@pytest.fixture()
def now() -> datetime:
    return NOW


@pytest.fixture()
def session_maker(tmp_path):
    db_path = tmp_path / "stratlens_test.duckdb"
    engine = create_engine(f"duckdb:///{db_path}")
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine)
    engine.dispose()


@pytest.fixture()
def session(session_maker):
    s = session_maker()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture()
def make_project(session):
    """
    Build a project with inputs, competitors and evidence.
    Evidence defaults to three recent source types per competitor.
    """

    def _make(
        competitors=("Acme", "Globex"),
        evidence_types=("pricing", "reviews", "changelog"),
        evidence_age=timedelta(days=2),
        with_inputs=True,
    ) -> str:
        projects = ProjectsRepo(session)
        evidence = EvidenceRepo(session)
        project_id = projects.create_project("Billing tools scan")
        if with_inputs:
            projects.add_input(
                project_id,
                {"market": "B2B billing software", "target_customer": "Finance teams at SMBs"},
            )
        for name in competitors:
            slug = name.lower()
            competitor_id = projects.add_competitor(
                project_id,
                name,
                url=f"https://{slug}.example.com",
                evidence_text=f"{name} offers invoicing and subscription billing.",
            )
            for source_type in evidence_types:
                evidence.add(
                    project_id=project_id,
                    competitor_id=competitor_id,
                    url=f"https://{slug}.example.com/{source_type}",
                    source_type=source_type,
                    extracted_text=f"{name} {source_type} page text.",
                    extracted_at=NOW - evidence_age,
                    page_title=f"{name} {source_type}",
                )
        return project_id

    return _make


@pytest.fixture()
def snapshot_payload():
    def _payload(name: str) -> dict:
        return {
            "competitor_name": name,
            "positioning_one_liner": f"{name} is billing software for growing SaaS companies.",
            "target_audience": ["SaaS finance teams"],
            "primary_use_cases": ["Subscription invoicing"],
            "key_value_props": ["Fast setup"],
            "notable_capabilities": ["Dunning"],
            "business_model_signals": ["Per-seat pricing"],
            "proof_points": [
                {
                    "claim": "Offers invoicing",
                    "evidence_quote": f"{name} offers invoicing",
                    "evidence_location": "pasted_text",
                    "confidence": "high",
                }
            ],
            "risks_and_unknowns": ["Enterprise readiness unclear"],
            "customer_struggles": ["Manual reconciliation"],
        }

    return _payload


@pytest.fixture()
def opportunities_payload():
    def _payload(urls=("https://acme.example.com/pricing", "https://globex.example.com/reviews"), total=99) -> dict:
        return {
            "opportunities": [
                {
                    "title": "Usage-based pricing for SMB finance teams",
                    "one_liner": "Price on invoices sent, not seats.",
                    "customer": "SMB finance leads",
                    "problem_today": "Seat pricing punishes small teams.",
                    "proposed_move": "Launch a metered plan.",
                    "why_now": "Competitors raised seat prices this quarter.",
                    "citations": [
                        {"url": urls[0], "source_type": "pricing", "extracted_at": "2025-05-30T00:00:00Z"},
                        {"url": urls[1], "source_type": "reviews", "extracted_at": "2025-05-30T00:00:00Z"},
                    ],
                    "scoring": {"breakdown": dict(DIMENSIONS), "total": total},
                    "experiments": [
                        {
                            "hypothesis": "SMBs prefer metered pricing",
                            "smallest_test": "Pricing page A/B test",
                            "success_metric": "Trial starts +10%",
                        }
                    ],
                    "dependencies": {"linked_competitors": ["Acme"], "linked_jtbd_ids": []},
                }
            ]
        }

    return _payload


@pytest.fixture()
def scripted_llm(snapshot_payload, opportunities_payload):
    """Stub that answers snapshot prompts per competitor and opportunity prompts with one opportunity."""

    def _build(opportunities=None) -> StubLLMClient:
        def responder(request):
            user = request.messages[-1].content
            if "COMPETITOR SNAPSHOTS" in user:
                return json.dumps(opportunities or opportunities_payload())
            for line in user.splitlines():
                if line.startswith("Name: "):
                    return json.dumps(snapshot_payload(line[len("Name: "):]))
            return "{}"

        return StubLLMClient(responder=responder)

    return _build
