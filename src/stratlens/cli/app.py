from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from stratlens.config.logging import configure_logging
from stratlens.db.engine import build_engine
from stratlens.db.init_db import init_db
from stratlens.db.session import session_factory
from stratlens.errors import ArtifactAssemblyError
from stratlens.repos.evidence_repo import EvidenceRepo
from stratlens.repos.runs_repo import RunsRepo, utcnow
from stratlens.services.decision_model import DecisionModelAssembler
from stratlens.services.evidence_gate import compute_coverage, evaluate_readiness
from stratlens.services.llm_client import get_llm_client
from stratlens.services.project_import import import_project
from stratlens.services.run_coordinator import RunCoordinator, status_view

app = typer.Typer(help="stratlens CLI (init DB, import projects, run analyses, inspect results).")
console = Console()


@app.callback()
def _setup(log_level: Optional[str] = typer.Option(None, "--log-level", help="Override STRATLENS_LOG_LEVEL.")) -> None:
    configure_logging(log_level)


@app.command("init-db")
def init_db_cmd() -> None:
    """Drop and recreate every table."""
    engine = build_engine()
    init_db(engine)
    typer.echo("✅ Database initialized and reachable.")


@app.command("import-project")
def import_project_cmd(path: Path = typer.Argument(..., exists=True, readable=True, help="Project JSON file.")) -> None:
    """Load a project, its inputs, competitors and collected evidence."""
    doc = json.loads(path.read_text())
    with session_factory()() as session:
        try:
            res = import_project(session, doc)
        except (KeyError, ValueError) as e:
            console.print(f"[red]✗[/red] Invalid project file: {e}")
            raise typer.Exit(1)

    typer.echo(f"✅ project_id={res.project_id} input_version={res.input_version}")
    typer.echo(f"✅ competitors={res.competitors} evidence={res.evidence}")


@app.command("run-analysis")
def run_analysis_cmd(
    project_id: str = typer.Option(..., "--project-id", help="Project ID"),
    input_version: Optional[int] = typer.Option(None, "--input-version", help="Defaults to the latest inputs."),
) -> None:
    """Create or reuse the run for a project and execute it."""
    console.print(f"[bold blue]Running analysis for project_id={project_id}[/bold blue]")
    with session_factory()() as session:
        result = RunCoordinator(session, llm_client=get_llm_client()).run_project_analysis(project_id, input_version)

    run = result.run
    if run is not None:
        _print_steps(run)
    if not result.ok:
        if result.error is not None:
            console.print(f"[red]✗[/red] {result.error.code.value}: {result.error.message}")
        raise typer.Exit(1)
    label = "reused" if result.reused else "finished"
    console.print(f"[green]✓[/green] run {label}: run_id={run.id if run else '-'} status={run.status if run else '-'}")


def _print_steps(run) -> None:
    table = Table(title=f"Steps for run_id={run.id} (attempt {run.attempt})")
    table.add_column("Step", style="cyan")
    table.add_column("Status", style="magenta")
    table.add_column("Started", style="green")
    table.add_column("Finished", style="green")
    table.add_column("Error", style="red")
    for entry in run.steps.entries():
        status = f"{entry.status} (skipped)" if entry.skipped else entry.status
        error = entry.error.get("code", "") if entry.error else ""
        table.add_row(entry.name, status, entry.started_at, entry.finished_at or "", error)
    console.print(table)


@app.command("run-status")
def run_status_cmd(run_id: str = typer.Option(..., "--run-id", help="Run ID")) -> None:
    with session_factory()() as session:
        run = RunsRepo(session).get(run_id)
    if run is None:
        # same reading as API pollers: not visible yet
        console.print(f"run_id={run_id} status=queued (not found)")
        return
    view = status_view(run)
    console.print(f"run_id={view['runId']} status={view['status']} progress={view['progress']}%")
    if view["errorMessage"]:
        console.print(f"[red]{run.error_code}[/red]: {view['errorMessage']}")
    _print_steps(run)


@app.command("decision-model")
def decision_model_cmd(
    project_id: str = typer.Option(..., "--project-id", help="Project ID"),
    run_id: Optional[str] = typer.Option(None, "--run-id", help="Prefer artifacts from this run."),
    as_json: bool = typer.Option(False, "--json", help="Print the raw decision model JSON."),
) -> None:
    """Assemble and print the canonical decision model."""
    with session_factory()() as session:
        try:
            model = DecisionModelAssembler(session).assemble(project_id, run_id=run_id)
        except ArtifactAssemblyError as e:
            console.print(f"[red]✗[/red] {e}")
            raise typer.Exit(1)

    if model is None:
        console.print("[yellow]No opportunities generated yet.[/yellow]")
        raise typer.Exit(1)
    if as_json:
        typer.echo(json.dumps(model.model_dump(by_alias=True, mode="json"), indent=2))
        return

    console.print(f"[bold]{model.summary}[/bold]")
    table = Table(title=f"Opportunities ({model.metadata.artifact_version})")
    table.add_column("Score", style="green", justify="right")
    table.add_column("Title", style="cyan")
    table.add_column("Citations", justify="right")
    for opp in sorted(model.opportunities, key=lambda o: -o.scoring.total):
        table.add_row(str(opp.scoring.total), opp.title, str(len(opp.citations)))
    console.print(table)
    if model.evidence_summary is not None:
        es = model.evidence_summary
        console.print(
            f"evidence: {es.total_citations} citations, recency={es.recency_bucket}, confidence={es.coverage_confidence}"
        )


@app.command("evidence-coverage")
def evidence_coverage_cmd(project_id: str = typer.Option(..., "--project-id", help="Project ID")) -> None:
    """Show coverage and whether the readiness gate would pass."""
    with session_factory()() as session:
        coverage = compute_coverage(EvidenceRepo(session).list_for_project(project_id), utcnow())
    readiness = evaluate_readiness(coverage)

    table = Table(title=f"Evidence for project_id={project_id}")
    table.add_column("Type", style="cyan")
    table.add_column("Count", style="green", justify="right")
    for source_type, n in coverage.counts_by_type.items():
        table.add_row(source_type, str(n))
    console.print(table)
    console.print(
        f"sources={coverage.total_citations} recency={coverage.recency_label} score={coverage.coverage_score:.3f}"
    )
    if readiness.is_ready:
        console.print("[green]✓[/green] ready for analysis")
    else:
        for reason in readiness.reasons:
            console.print(f"[red]✗[/red] {reason}")


@app.command("reap-runs")
def reap_runs_cmd() -> None:
    """Fail queued/running runs whose lease has expired."""
    with session_factory()() as session:
        reaped = RunCoordinator(session).reap_expired_runs()
    typer.echo(f"✅ Reaped {len(reaped)} stale run(s).")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
