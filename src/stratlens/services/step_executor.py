"""
Sequential step execution for one analysis run.

validate_inputs -> collect_evidence -> competitor_profiles ->
generate_opportunities -> save_artifacts

Each step is recorded as started before work and done/failed after. The first
failure stops the pipeline; nothing is retried here.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from stratlens.errors import AnalysisError, ErrorCode
from stratlens.models.artifacts import ArtifactType, OpportunitiesV3Artifact, ProfilesArtifact
from stratlens.models.domain import STEP_NAMES, CompetitorRow, ProjectInputRow, RunRecord, StepLog
from stratlens.repos.artifacts_repo import ArtifactsRepo
from stratlens.repos.projects_repo import ProjectsRepo
from stratlens.services.citations import to_iso
from stratlens.services.evidence_gate import Coverage, EvidenceReadinessGate
from stratlens.services.opportunities import OpportunityGenerator
from stratlens.services.profiles import ProfileGenerator

# code used when a step dies on something other than an AnalysisError
DEFAULT_STEP_ERRORS: Dict[str, ErrorCode] = {
    "validate_inputs": ErrorCode.UNHANDLED,
    "collect_evidence": ErrorCode.EVIDENCE_COLLECTION_ERROR,
    "competitor_profiles": ErrorCode.PROFILE_GENERATION_ERROR,
    "generate_opportunities": ErrorCode.OPPORTUNITY_GENERATION_ERROR,
    "save_artifacts": ErrorCode.COMPLETION_ERROR,
}

DEFAULT_STEP_MESSAGES: Dict[str, str] = {
    "validate_inputs": "Project inputs could not be loaded.",
    "collect_evidence": "Evidence could not be read. Try again shortly.",
    "competitor_profiles": "Competitor profiles could not be generated. Try again shortly.",
    "generate_opportunities": "Opportunities could not be generated. Try again shortly.",
    "save_artifacts": "Results could not be saved. Try again shortly.",
}


@dataclass
class RunContext:
    run: RunRecord
    inputs: Optional[ProjectInputRow] = None
    competitors: List[CompetitorRow] = field(default_factory=list)
    coverage: Optional[Coverage] = None
    profiles: Optional[ProfilesArtifact] = None
    profiles_artifact_id: Optional[str] = None
    profiles_reused: bool = False
    opportunities: Optional[OpportunitiesV3Artifact] = None
    artifact_id: Optional[str] = None

    def require(self, name: str) -> Any:
        """Value an earlier step was expected to set."""
        value = getattr(self, name)
        if value is None:
            raise AnalysisError(
                ErrorCode.UNHANDLED,
                "The analysis failed unexpectedly.",
                detail=f"run {self.run.id}: {name} was not set by an earlier step",
            )
        return value


class StepFailure(Exception):
    def __init__(self, step: str, error: AnalysisError, steps: StepLog) -> None:
        super().__init__(f"step {step} failed: {error}")
        self.step = step
        self.error = error
        self.steps = steps


def error_entry(error: AnalysisError) -> dict:
    entry = {"code": error.code.value, "message": error.message}
    if error.detail is not None:
        entry["detail"] = error.detail
    return entry


class StepExecutor:
    def __init__(
        self,
        projects_repo: ProjectsRepo,
        artifacts_repo: ArtifactsRepo,
        gate: EvidenceReadinessGate,
        profile_generator: ProfileGenerator,
        opportunity_generator: OpportunityGenerator,
        now_fn: Callable[[], datetime],
        min_competitors: int,
        max_competitors: int,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.projects_repo = projects_repo
        self.artifacts_repo = artifacts_repo
        self.gate = gate
        self.profile_generator = profile_generator
        self.opportunity_generator = opportunity_generator
        self.now_fn = now_fn
        self.min_competitors = min_competitors
        self.max_competitors = max_competitors
        self.log = logger or logging.getLogger(__name__)

    def execute(
        self,
        run: RunRecord,
        steps: StepLog,
        on_progress: Callable[[StepLog], None],
    ) -> tuple[StepLog, RunContext]:
        """
        Run every step in order. `on_progress` receives the full step log after
        each change; raising from it aborts the run.
        """
        ctx = RunContext(run=run)
        handlers: Dict[str, Callable[[RunContext], bool]] = {
            "validate_inputs": self.validate_inputs,
            "collect_evidence": self.collect_evidence,
            "competitor_profiles": self.competitor_profiles,
            "generate_opportunities": self.generate_opportunities,
            "save_artifacts": self.save_artifacts,
        }

        for name in STEP_NAMES:
            steps = steps.started(name, to_iso(self.now_fn()))
            on_progress(steps)
            self.log.info("run %s step %s started", run.id, name)

            try:
                skipped = handlers[name](ctx)
            except AnalysisError as exc:
                error = exc
            except Exception as exc:
                self.log.exception("run %s step %s crashed", run.id, name)
                error = AnalysisError(
                    DEFAULT_STEP_ERRORS[name],
                    DEFAULT_STEP_MESSAGES[name],
                    detail=f"{type(exc).__name__}: {exc}",
                )
            else:
                steps = steps.finished(name, to_iso(self.now_fn()), skipped=skipped)
                on_progress(steps)
                self.log.info("run %s step %s done%s", run.id, name, " (skipped)" if skipped else "")
                continue

            steps = steps.failed(name, to_iso(self.now_fn()), error_entry(error))
            self.log.warning("run %s step %s failed: %s", run.id, name, error.code.value)
            raise StepFailure(name, error, steps)

        return steps, ctx

    # --- steps: each returns True when it skipped its work -------------------

    def validate_inputs(self, ctx: RunContext) -> bool:
        run = ctx.run
        inputs = self.projects_repo.get_input(run.project_id, run.input_version)
        if inputs is None:
            raise AnalysisError(
                ErrorCode.NO_INPUTS,
                "Add your project details (market and target customer) before running an analysis.",
                detail=f"no input snapshot v{run.input_version} for project {run.project_id}",
            )

        competitors = self.projects_repo.list_competitors(run.project_id)
        if len(competitors) < self.min_competitors:
            needed = self.min_competitors - len(competitors)
            noun = "competitor" if needed == 1 else "competitors"
            raise AnalysisError(
                ErrorCode.INSUFFICIENT_COMPETITORS,
                f"Add {needed} more {noun} to run an analysis (minimum {self.min_competitors}).",
                detail={"have": len(competitors), "need": self.min_competitors},
            )
        if len(competitors) > self.max_competitors:
            self.log.warning(
                "project %s has %d competitors; analysing the first %d",
                run.project_id,
                len(competitors),
                self.max_competitors,
            )
            competitors = competitors[: self.max_competitors]

        ctx.inputs = inputs
        ctx.competitors = competitors
        return False

    def collect_evidence(self, ctx: RunContext) -> bool:
        ctx.coverage = self.gate.check(ctx.run.project_id, self.now_fn())
        return False

    def competitor_profiles(self, ctx: RunContext) -> bool:
        reusable = self.profile_generator.find_reusable(ctx.run.project_id, ctx.competitors)
        if reusable is not None and isinstance(reusable.content, ProfilesArtifact):
            ctx.profiles = reusable.content
            ctx.profiles_artifact_id = reusable.id
            ctx.profiles_reused = True
            return True

        inputs: ProjectInputRow = ctx.require("inputs")
        ctx.profiles_artifact_id, ctx.profiles = self.profile_generator.generate(
            ctx.run.project_id, inputs.content, ctx.competitors, ctx.run.id, self.now_fn()
        )
        return False

    def generate_opportunities(self, ctx: RunContext) -> bool:
        inputs: ProjectInputRow = ctx.require("inputs")
        profiles: ProfilesArtifact = ctx.require("profiles")
        ctx.opportunities = self.opportunity_generator.generate(
            project_id=ctx.run.project_id,
            inputs=inputs.content,
            snapshots=profiles.snapshots,
            run_id=ctx.run.id,
            input_version=ctx.run.input_version,
            now=self.now_fn(),
        )
        return False

    def save_artifacts(self, ctx: RunContext) -> bool:
        ctx.artifact_id = self.artifacts_repo.insert(
            ctx.run.project_id,
            ArtifactType.OPPORTUNITIES_V3,
            ctx.require("opportunities"),
            created_at=self.now_fn(),
        )
        return False
