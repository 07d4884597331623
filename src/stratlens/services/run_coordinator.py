"""
Run coordination: identity, idempotency and status transitions.

A run is keyed by (project_id, input_version, pipeline_version). The first caller
to insert the key owns execution; everyone else gets the existing row back.

Policies:
- queued/running rows whose heartbeat is older than the lease are failed with
  RUN_LEASE_EXPIRED before anyone looks at them again.
- a failed row is restarted in place on the next invocation; the previous
  attempt's step log moves to metrics.previous_attempts.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, Optional

from sqlalchemy.orm import Session

from stratlens.config.settings import settings
from stratlens.errors import AnalysisError, ErrorCode
from stratlens.models.artifacts import OpportunitiesV3Artifact
from stratlens.models.domain import RUN_STATUSES, STEP_NAMES, RunRecord, StepLog
from stratlens.repos.artifacts_repo import ArtifactsRepo
from stratlens.repos.evidence_repo import EvidenceRepo
from stratlens.repos.projects_repo import ProjectsRepo
from stratlens.repos.runs_repo import RunsRepo, utcnow
from stratlens.services.evidence_gate import EvidenceReadinessGate
from stratlens.services.generation import GenerationLoop, UsageTracker
from stratlens.services.llm_client import LLMClient
from stratlens.services.opportunities import OpportunityGenerator
from stratlens.services.profiles import ProfileGenerator
from stratlens.services.step_executor import RunContext, StepExecutor, StepFailure

ACTIVE_STATUSES = ("queued", "running")


def idempotency_key(project_id: str, input_version: int, pipeline_version: str) -> str:
    return f"{project_id}:{input_version}:{pipeline_version}"


@dataclass(frozen=True)
class AnalysisResult:
    ok: bool
    run: Optional[RunRecord]
    error: Optional[AnalysisError] = None
    reused: bool = False

    def to_dict(self) -> dict:
        out: dict[str, Any] = {
            "ok": self.ok,
            "runId": self.run.id if self.run else None,
            "status": self.run.status if self.run else None,
            "reused": self.reused,
        }
        if self.error is not None:
            out["error"] = self.error.to_dict()
        return out


def status_view(run: RunRecord) -> dict:
    """Payload for status polling."""
    progress = round(100 * run.steps.done_count() / len(STEP_NAMES))
    if run.status == "succeeded":
        progress = 100
    return {
        "runId": run.id,
        "status": run.status,
        "progress": progress,
        "updatedAt": run.updated_at.isoformat(),
        "errorMessage": run.error_message,
    }


def _detail_text(detail: Any) -> Optional[str]:
    if detail is None:
        return None
    if isinstance(detail, str):
        return detail
    return json.dumps(detail, sort_keys=True, default=str)


class RunCoordinator:
    def __init__(
        self,
        session: Session,
        llm_client: Optional[LLMClient] = None,
        pipeline_version: Optional[str] = None,
        lease_s: Optional[int] = None,
        now_fn: Callable[[], datetime] = utcnow,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.session = session
        self.llm_client = llm_client
        self.pipeline_version = pipeline_version or settings.pipeline_version
        self.lease = timedelta(seconds=lease_s if lease_s is not None else settings.run_lease_s)
        self.now_fn = now_fn
        self.log = logger or logging.getLogger(__name__)

        self.runs = RunsRepo(session)
        self.projects = ProjectsRepo(session)
        self.evidence = EvidenceRepo(session)
        self.artifacts = ArtifactsRepo(session)

    # --- run identity ---------------------------------------------------------

    def create_or_reuse_run(
        self,
        project_id: str,
        input_version: int,
        pipeline_version: Optional[str] = None,
    ) -> tuple[RunRecord, bool]:
        """
        Compare-and-create on the idempotency key. Returns (run, created).

        An existing row is returned as-is except when its lease has expired,
        in which case it is failed first so the caller can restart it.
        """
        version = pipeline_version or self.pipeline_version
        key = idempotency_key(project_id, input_version, version)
        run, created = self.runs.insert_if_absent(project_id, input_version, version, key, now=self.now_fn())
        if created:
            self.log.info("created run %s key=%s", run.id, key)
            return run, True

        if self.lease_expired(run):
            run = self.expire(run)
        return run, False

    def lease_expired(self, run: RunRecord, now: Optional[datetime] = None) -> bool:
        if run.status not in ACTIVE_STATUSES:
            return False
        last_seen = run.heartbeat_at or run.started_at or run.created_at
        return (now or self.now_fn()) - last_seen > self.lease

    def expire(self, run: RunRecord) -> RunRecord:
        self.log.warning("run %s lease expired (status=%s); failing it", run.id, run.status)
        error = AnalysisError(
            ErrorCode.RUN_LEASE_EXPIRED,
            "The previous analysis attempt stopped responding. Run the analysis again.",
            detail={"last_heartbeat": run.heartbeat_at.isoformat() if run.heartbeat_at else None},
        )
        return self.fail(run, error, allowed_from=ACTIVE_STATUSES)

    def reap_expired_runs(self) -> list[RunRecord]:
        """Fail every queued/running run whose lease has lapsed."""
        now = self.now_fn()
        return [self.expire(r) for r in self.runs.list_by_status(ACTIVE_STATUSES) if self.lease_expired(r, now)]

    # --- transitions ----------------------------------------------------------

    def _transition(self, run: RunRecord, allowed_from: Iterable[str], changes: dict) -> RunRecord:
        allowed = tuple(allowed_from)
        updated = self.runs.update_where_status(run.id, allowed, changes, now=self.now_fn(), attempt=run.attempt)
        if updated is None:
            current = self.runs.get(run.id)
            raise AnalysisError(
                ErrorCode.STATUS_TRANSITION_ERROR,
                "The run changed state while it was being updated.",
                detail={
                    "run_id": run.id,
                    "expected": list(allowed),
                    "actual": current.status if current else None,
                    "attempt": run.attempt,
                    "actual_attempt": current.attempt if current else None,
                    "target": changes.get("status"),
                },
            )
        return updated

    def start(self, run: RunRecord) -> RunRecord:
        """queued|failed -> running. Restarting a failed run archives its step log."""
        now = self.now_fn()
        metrics = dict(run.metrics)
        attempt = run.attempt
        if run.status == "failed":
            history = list(metrics.get("previous_attempts", []))
            history.append(
                {
                    "attempt": run.attempt,
                    "steps": metrics.get("steps", []),
                    "error": {"code": run.error_code, "message": run.error_message},
                    "finished_at": run.finished_at.isoformat() if run.finished_at else None,
                }
            )
            metrics["previous_attempts"] = history
            attempt += 1
        metrics["steps"] = []

        return self._transition(
            run,
            ("queued", "failed"),
            {
                "status": "running",
                "attempt": attempt,
                "started_at": now,
                "finished_at": None,
                "heartbeat_at": now,
                "error_code": None,
                "error_message": None,
                "error_detail": None,
                "output": None,
                "metrics": metrics,
            },
        )

    def record_steps(self, run: RunRecord, steps: StepLog) -> RunRecord:
        """Persist the full step log and refresh the heartbeat."""
        metrics = {**run.metrics, "steps": steps.to_list()}
        return self._transition(run, ("running",), {"metrics": metrics, "heartbeat_at": self.now_fn()})

    def heartbeat(self, run: RunRecord) -> RunRecord:
        """Refresh the lease of a running attempt without touching its step log."""
        return self._transition(run, ("running",), {"heartbeat_at": self.now_fn()})

    def succeed(self, run: RunRecord, steps: StepLog, output: dict, metrics_patch: Optional[dict] = None) -> RunRecord:
        now = self.now_fn()
        metrics = {**run.metrics, **(metrics_patch or {}), "steps": steps.to_list()}
        return self._transition(
            run,
            ("running",),
            {"status": "succeeded", "finished_at": now, "heartbeat_at": now, "output": output, "metrics": metrics},
        )

    def fail(
        self,
        run: RunRecord,
        error: AnalysisError,
        steps: Optional[StepLog] = None,
        metrics_patch: Optional[dict] = None,
        allowed_from: Iterable[str] = RUN_STATUSES,
    ) -> RunRecord:
        now = self.now_fn()
        metrics = {**run.metrics, **(metrics_patch or {})}
        if steps is not None:
            metrics["steps"] = steps.to_list()
        return self._transition(
            run,
            allowed_from,
            {
                "status": "failed",
                "finished_at": now,
                "heartbeat_at": now,
                "error_code": error.code.value,
                "error_message": error.message,
                "error_detail": _detail_text(error.detail),
                "metrics": metrics,
            },
        )

    # --- orchestration --------------------------------------------------------

    def _executor(self, usage: UsageTracker, before_call: Optional[Callable[[], None]] = None) -> StepExecutor:
        if self.llm_client is None:
            raise RuntimeError("RunCoordinator needs an llm_client to execute runs")
        loop = GenerationLoop(
            self.llm_client, usage, before_call=before_call, logger=self.log.getChild("generation")
        )
        return StepExecutor(
            projects_repo=self.projects,
            artifacts_repo=self.artifacts,
            gate=EvidenceReadinessGate(self.evidence, logger=self.log.getChild("evidence")),
            profile_generator=ProfileGenerator(
                self.evidence,
                self.artifacts,
                loop,
                max_evidence_chars=settings.max_evidence_chars,
                logger=self.log.getChild("profiles"),
            ),
            opportunity_generator=OpportunityGenerator(
                self.evidence, self.artifacts, loop, logger=self.log.getChild("opportunities")
            ),
            now_fn=self.now_fn,
            min_competitors=settings.min_competitors,
            max_competitors=settings.max_competitors,
            logger=self.log.getChild("steps"),
        )

    def run_project_analysis(self, project_id: str, input_version: Optional[int] = None) -> AnalysisResult:
        """
        Create (or reuse) the run for the project's inputs and execute it.

        Without an explicit input_version the latest snapshot is used; a project
        with no snapshot gets input_version 0 and fails in validate_inputs.
        """
        if input_version is None:
            latest = self.projects.latest_input(project_id)
            input_version = latest.version if latest is not None else 0

        run, created = self.create_or_reuse_run(project_id, input_version)
        if not created and run.status != "failed":
            self.log.info("run %s already %s; not re-executing", run.id, run.status)
            return AnalysisResult(ok=True, run=run, reused=True)

        try:
            run = self.start(run)
        except AnalysisError as exc:
            current = self.runs.get(run.id)
            self.log.info("run %s was claimed by another caller: %s", run.id, exc.message)
            return AnalysisResult(ok=True, run=current, reused=True)

        return self._execute(run)

    def _execute(self, run: RunRecord) -> AnalysisResult:
        usage = UsageTracker()
        started = time.monotonic()
        holder = {"run": run}

        def on_progress(steps: StepLog) -> None:
            holder["run"] = self.record_steps(holder["run"], steps)

        def before_call() -> None:
            # generation calls can outlast the lease; renew it per call
            holder["run"] = self.heartbeat(holder["run"])

        def metrics_patch() -> dict:
            return {"usage": usage.to_dict(), "duration_ms": int((time.monotonic() - started) * 1000)}

        try:
            steps, ctx = self._executor(usage, before_call).execute(run, StepLog(), on_progress)
            output = self._output(ctx)
        except StepFailure as failure:
            if failure.error.code is ErrorCode.STATUS_TRANSITION_ERROR:
                return self._lost_ownership(run, failure.error)
            return self._finish_failed(holder["run"], failure.error, failure.steps, metrics_patch())
        except AnalysisError as exc:
            if exc.code is ErrorCode.STATUS_TRANSITION_ERROR:
                return self._lost_ownership(run, exc)
            return self._finish_failed(holder["run"], exc, None, metrics_patch())
        except Exception as exc:
            self.log.exception("run %s crashed outside a step", run.id)
            error = AnalysisError(ErrorCode.UNHANDLED, "The analysis failed unexpectedly.", detail=f"{type(exc).__name__}: {exc}")
            return self._finish_failed(holder["run"], error, None, metrics_patch())

        try:
            final = self.succeed(holder["run"], steps, output, metrics_patch())
        except AnalysisError as exc:
            return self._lost_ownership(run, exc)
        except Exception as exc:
            self.log.exception("run %s could not be marked succeeded", run.id)
            error = AnalysisError(
                ErrorCode.COMPLETION_ERROR,
                "The analysis finished but its result could not be saved. Run the analysis again.",
                detail=f"{type(exc).__name__}: {exc}",
            )
            return self._finish_failed(holder["run"], error, steps, metrics_patch())

        self.log.info("run %s succeeded (%d generation calls)", final.id, usage.calls)
        return AnalysisResult(ok=True, run=final)

    def _finish_failed(
        self,
        run: RunRecord,
        error: AnalysisError,
        steps: Optional[StepLog],
        metrics_patch: dict,
    ) -> AnalysisResult:
        self.log.warning("run %s failed: %s %s", run.id, error.code.value, error.message)
        self.session.rollback()
        try:
            failed = self.fail(run, error, steps=steps, metrics_patch=metrics_patch, allowed_from=("running",))
        except AnalysisError:
            self.log.error("run %s left running before its failure could be recorded", run.id)
            failed = self.runs.get(run.id)
        return AnalysisResult(ok=False, run=failed, error=error)

    def _output(self, ctx: RunContext) -> dict:
        opportunities: OpportunitiesV3Artifact = ctx.require("opportunities")
        return {
            "pipeline_version": ctx.run.pipeline_version,
            "input_version": ctx.run.input_version,
            "artifact_type": "opportunities_v3",
            "artifact_id": ctx.artifact_id,
            "profiles_artifact_id": ctx.profiles_artifact_id,
            "profiles_reused": ctx.profiles_reused,
            "coverage": ctx.coverage.to_dict() if ctx.coverage else None,
            "opportunity_count": len(opportunities.opportunities),
            "opportunities": [
                {"id": o.id, "title": o.title, "total": o.scoring.total} for o in opportunities.opportunities
            ],
        }

    def _lost_ownership(self, run: RunRecord, error: AnalysisError) -> AnalysisResult:
        # another writer (lease reaper or a restart) moved the row; leave its state alone
        self.log.error("run %s lost ownership: %s", run.id, error.detail)
        self.session.rollback()
        return AnalysisResult(ok=False, run=self.runs.get(run.id), error=error)
