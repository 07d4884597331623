from fastapi.testclient import TestClient

from stratlens.api.main import app


def test_health(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"duckdb:///{tmp_path / 'health.duckdb'}")
    client = TestClient(app)
    r = client.get("/health")
    assert r.status_code == 200

    payload = r.json()
    assert payload["status"] == "ok"
    assert payload["db"]["ok"] is True
    assert payload["pipeline_version"]
