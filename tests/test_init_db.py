from sqlalchemy import create_engine, inspect

from stratlens.db.engine import build_engine, ping_db
from stratlens.db.init_db import ensure_db, init_db
from stratlens.db.session import session_factory
from stratlens.repos.projects_repo import ProjectsRepo


def test_init_db_creates_tables(tmp_path):
    engine = build_engine(f"duckdb:///{tmp_path / 'nested' / 'init.duckdb'}")
    init_db(engine)

    tables = set(inspect(engine).get_table_names())
    assert {"analysis_runs", "artifacts", "competitors", "evidence_sources", "project_inputs", "projects"} <= tables
    assert ping_db(engine).ok is True


def test_ensure_db_keeps_existing_rows(tmp_path):
    engine = build_engine(f"duckdb:///{tmp_path / 'keep.duckdb'}")
    Session = session_factory(engine)
    with Session() as session:
        project_id = ProjectsRepo(session).create_project("Keep me")

    ensure_db(engine)
    with Session() as session:
        assert ProjectsRepo(session).get_project(project_id) is not None


def test_ping_reports_failure_without_raising(tmp_path):
    engine = create_engine(f"duckdb:///{tmp_path / 'no' / 'such' / 'dir' / 'x.duckdb'}")
    result = ping_db(engine)
    assert result.ok is False
    assert result.detail
