from stratlens.repos.evidence_repo import EvidenceRepo
from stratlens.repos.projects_repo import ProjectsRepo
from stratlens.services.project_import import import_project


def test_import_creates_inputs_competitors_and_evidence(session):
    doc = {
        "project": {"name": "Imported"},
        "inputs": {"market": "billing"},
        "competitors": [
            {
                "name": "Acme",
                "evidence": [
                    {"url": "acme.example.com/pricing", "source_type": "pricing page", "extracted_at": "2025-05-01T00:00:00Z"},
                ],
            },
            {"name": "Globex"},
        ],
        "evidence": [{"url": "https://news.example.com/market", "source_type": "blog"}],
    }
    res = import_project(session, doc)

    assert res.input_version == 1
    assert res.competitors == 2
    assert res.evidence == 2

    rows = EvidenceRepo(session).list_for_project(res.project_id)
    by_url = {r.url: r for r in rows}
    acme = by_url["https://acme.example.com/pricing"]
    assert acme.source_type == "pricing"
    assert acme.extracted_at.year == 2025 and acme.extracted_at.tzinfo is None
    assert by_url["https://news.example.com/market"].competitor_id is None


def test_reimport_appends_new_input_version(session):
    doc = {"project": {"id": "fixed-id", "name": "Again"}, "inputs": {"market": "a"}}
    import_project(session, doc)
    res = import_project(session, {**doc, "inputs": {"market": "b"}})

    assert res.project_id == "fixed-id"
    assert res.input_version == 2
    assert ProjectsRepo(session).latest_input("fixed-id").content == {"market": "b"}
