"""Tests for the analysis_runs repository."""

from datetime import datetime, timedelta

from stratlens.repos.runs_repo import RunsRepo

NOW = datetime(2025, 6, 1, 12, 0, 0)


def test_insert_if_absent_is_idempotent(session):
    repo = RunsRepo(session)
    run, created = repo.insert_if_absent("p1", 1, "v1", "p1:1:v1", now=NOW)
    again, created_again = repo.insert_if_absent("p1", 1, "v1", "p1:1:v1", now=NOW)

    assert created and not created_again
    assert run.id == again.id
    assert run.status == "queued"
    assert run.attempt == 1
    assert run.metrics == {"steps": []}
    assert run.output is None


def test_update_where_status_applies_only_from_allowed(session):
    repo = RunsRepo(session)
    run, _ = repo.insert_if_absent("p1", 1, "v1", "p1:1:v1", now=NOW)

    moved = repo.update_where_status(
        run.id,
        ("queued",),
        {"status": "running", "started_at": NOW, "metrics": {"steps": [], "note": "x"}},
        now=NOW + timedelta(seconds=1),
    )
    assert moved.status == "running"
    assert moved.metrics["note"] == "x"
    assert moved.updated_at == NOW + timedelta(seconds=1)

    refused = repo.update_where_status(run.id, ("queued",), {"status": "failed"})
    assert refused is None
    assert repo.get(run.id).status == "running"


def test_output_round_trips_as_json(session):
    repo = RunsRepo(session)
    run, _ = repo.insert_if_absent("p1", 1, "v1", "p1:1:v1", now=NOW)
    repo.update_where_status(run.id, ("queued",), {"output": {"artifact_id": "a1", "count": 2}})
    assert repo.get(run.id).output == {"artifact_id": "a1", "count": 2}


def test_lookup_helpers(session):
    repo = RunsRepo(session)
    first, _ = repo.insert_if_absent("p1", 1, "v1", "p1:1:v1", now=NOW)
    second, _ = repo.insert_if_absent("p1", 2, "v1", "p1:2:v1", now=NOW + timedelta(minutes=1))
    repo.insert_if_absent("p2", 1, "v1", "p2:1:v1", now=NOW)
    repo.update_where_status(first.id, ("queued",), {"status": "failed"})

    assert repo.get("missing") is None
    assert repo.get_by_key("p1:2:v1").id == second.id
    assert repo.latest_for_project("p1").id == second.id
    assert repo.latest_for_project("nope") is None
    assert {r.project_id for r in repo.list_by_status(["queued"])} == {"p1", "p2"}
    assert [r.id for r in repo.list_by_status(["failed"])] == [first.id]


def test_update_where_status_checks_attempt(session):
    repo = RunsRepo(session)
    run, _ = repo.insert_if_absent("p1", 1, "v1", "p1:1:v1", now=NOW)
    repo.update_where_status(run.id, ("queued",), {"status": "running", "attempt": 2}, attempt=1)

    assert repo.update_where_status(run.id, ("running",), {"heartbeat_at": NOW}, attempt=1) is None
    current = repo.update_where_status(run.id, ("running",), {"heartbeat_at": NOW}, attempt=2)
    assert current.attempt == 2
    assert current.heartbeat_at == NOW
