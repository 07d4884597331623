import json
from datetime import datetime, timedelta

import pytest
from typer.testing import CliRunner

from stratlens.cli import app as cli_app
from stratlens.db.session import session_factory
from stratlens.repos.runs_repo import RunsRepo

runner = CliRunner()


@pytest.fixture()
def db_env(tmp_path, monkeypatch):
    # keep process-wide handlers out of the captured CLI output
    monkeypatch.setattr(cli_app, "configure_logging", lambda level=None: None)
    monkeypatch.setenv("DATABASE_URL", f"duckdb:///{tmp_path / 'cli.duckdb'}")
    return tmp_path


def _project_file(tmp_path, competitors=("Acme", "Globex")):
    recent = (datetime.utcnow() - timedelta(days=1)).isoformat() + "Z"
    doc = {
        "project": {"id": "cli-project", "name": "CLI scan"},
        "inputs": {"market": "B2B billing", "target_customer": "SMB finance"},
        "competitors": [
            {
                "name": name,
                "url": f"https://{name.lower()}.example.com",
                "evidence": [
                    {"url": f"https://{name.lower()}.example.com/{t}", "source_type": t, "extracted_at": recent}
                    for t in ("pricing", "reviews", "changelog")
                ],
            }
            for name in competitors
        ],
    }
    path = tmp_path / "project.json"
    path.write_text(json.dumps(doc))
    return path


def test_init_db(db_env):
    result = runner.invoke(cli_app.app, ["init-db"])
    assert result.exit_code == 0, result.output
    assert "Database initialized" in result.output


def test_import_then_coverage(db_env):
    result = runner.invoke(cli_app.app, ["import-project", str(_project_file(db_env))])
    assert result.exit_code == 0, result.output
    assert "project_id=cli-project" in result.output
    assert "evidence=6" in result.output

    result = runner.invoke(cli_app.app, ["evidence-coverage", "--project-id", "cli-project"])
    assert result.exit_code == 0, result.output
    assert "ready for analysis" in result.output


def test_import_rejects_missing_name(db_env):
    path = db_env / "bad.json"
    path.write_text(json.dumps({"project": {}}))
    result = runner.invoke(cli_app.app, ["import-project", str(path)])
    assert result.exit_code == 1
    assert "Invalid project file" in result.output


def test_run_analysis_and_decision_model(db_env, monkeypatch, scripted_llm):
    llm = scripted_llm()
    monkeypatch.setattr(cli_app, "get_llm_client", lambda: llm)
    runner.invoke(cli_app.app, ["import-project", str(_project_file(db_env))])

    result = runner.invoke(cli_app.app, ["run-analysis", "--project-id", "cli-project"])
    assert result.exit_code == 0, result.output
    assert "succeeded" in result.output

    result = runner.invoke(cli_app.app, ["decision-model", "--project-id", "cli-project", "--json"])
    assert result.exit_code == 0, result.output
    model = json.loads(result.output)
    assert model["projectId"] == "cli-project"
    assert model["opportunities"][0]["title"] == "Usage-based pricing for SMB finance teams"

    result = runner.invoke(cli_app.app, ["reap-runs"])
    assert "Reaped 0 stale run(s)" in result.output


def test_run_analysis_failure_exits_nonzero(db_env, monkeypatch, scripted_llm):
    monkeypatch.setattr(cli_app, "get_llm_client", lambda: scripted_llm())
    runner.invoke(cli_app.app, ["import-project", str(_project_file(db_env, competitors=("Acme",)))])

    result = runner.invoke(cli_app.app, ["run-analysis", "--project-id", "cli-project"])
    assert result.exit_code == 1
    assert "INSUFFICIENT_COMPETITORS" in result.output


def test_decision_model_without_runs(db_env):
    result = runner.invoke(cli_app.app, ["decision-model", "--project-id", "nothing"])
    assert result.exit_code == 1
    assert "No opportunities generated yet" in result.output


def test_run_status_reports_progress(db_env, monkeypatch, scripted_llm):
    monkeypatch.setattr(cli_app, "get_llm_client", lambda: scripted_llm())
    runner.invoke(cli_app.app, ["import-project", str(_project_file(db_env))])
    runner.invoke(cli_app.app, ["run-analysis", "--project-id", "cli-project"])

    with session_factory()() as session:
        run = RunsRepo(session).latest_for_project("cli-project")
    assert run is not None

    result = runner.invoke(cli_app.app, ["run-status", "--run-id", run.id])
    assert result.exit_code == 0, result.output
    assert "status=succeeded" in result.output
    assert "progress=100%" in result.output


def test_run_status_unknown_run_reads_as_queued(db_env):
    result = runner.invoke(cli_app.app, ["run-status", "--run-id", "missing"])
    assert result.exit_code == 0, result.output
    assert "status=queued" in result.output
