"""Batch opportunity synthesis and server-side scoring."""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime
from typing import Any, Mapping, Optional, Sequence

from stratlens.errors import ErrorCode
from stratlens.models.artifacts import (
    ArtifactMeta,
    ArtifactType,
    CompetitorSnapshot,
    JtbdArtifact,
    OpportunitiesV3Artifact,
    OpportunityBatch,
    OpportunityV3,
)
from stratlens.repos.artifacts_repo import ArtifactsRepo
from stratlens.repos.evidence_repo import EvidenceRepo
from stratlens.services.citations import to_iso
from stratlens.services.generation import GenerationLoop, GenerationTarget
from stratlens.services.prompts import OPPORTUNITY_BATCH_SHAPE, build_opportunity_messages
from stratlens.services.scoring import opportunity_id, score_opportunity

OPPORTUNITIES_TARGET: GenerationTarget[OpportunityBatch] = GenerationTarget(
    schema_name="OpportunitiesV3",
    model=OpportunityBatch,
    shape=OPPORTUNITY_BATCH_SHAPE,
    failure_code=ErrorCode.VALIDATION_FAILED,
    max_tokens=4000,
    failure_message="Opportunities could not be generated in a valid format. Try running the analysis again.",
)


def finalize_opportunity(opp: OpportunityV3, project_id: str, now: datetime) -> OpportunityV3:
    """Assign the stable id and replace any proposed scoring with the deterministic one."""
    linked_jobs = opp.dependencies.linked_jtbd_ids
    result = score_opportunity(opp.scoring.breakdown, opp.citations, now, opp.scoring.weights)
    scoring = opp.scoring.model_copy(
        update={"breakdown": result.breakdown, "weights": result.weights, "total": result.total}
    )
    return opp.model_copy(
        update={
            "id": opportunity_id(opp.title, project_id, linked_jobs[0] if linked_jobs else None),
            "scoring": scoring,
        }
    )


def rank(opportunities: Sequence[OpportunityV3]) -> list[OpportunityV3]:
    return sorted(opportunities, key=lambda o: (-(o.scoring.total or 0), o.title.lower()))


class OpportunityGenerator:
    def __init__(
        self,
        evidence_repo: EvidenceRepo,
        artifacts_repo: ArtifactsRepo,
        loop: GenerationLoop,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.evidence_repo = evidence_repo
        self.artifacts_repo = artifacts_repo
        self.loop = loop
        self.log = logger or logging.getLogger(__name__)

    def generate(
        self,
        project_id: str,
        inputs: Mapping[str, Any],
        snapshots: Sequence[CompetitorSnapshot],
        run_id: str,
        input_version: int,
        now: datetime,
    ) -> OpportunitiesV3Artifact:
        evidence = self.evidence_repo.list_for_project(project_id)
        jtbd = self.artifacts_repo.latest(project_id, ArtifactType.JTBD)
        jobs = jtbd.content.jobs if jtbd is not None and isinstance(jtbd.content, JtbdArtifact) else []

        batch = self.loop.run(build_opportunity_messages(inputs, snapshots, evidence, jobs), OPPORTUNITIES_TARGET)

        finalized: list[OpportunityV3] = []
        seen: set[str] = set()
        for opp in batch.opportunities:
            scored = finalize_opportunity(opp, project_id, now)
            if scored.id in seen:
                self.log.warning("dropping duplicate opportunity %s", scored.id)
                continue
            seen.add(scored.id)
            finalized.append(scored)

        counts = Counter(e.source_type for e in evidence)
        meta = ArtifactMeta(
            generated_at=to_iso(now),
            run_id=run_id,
            schema_version=3,
            inputs_used={
                "input_version": input_version,
                "competitor_count": len(snapshots),
                "evidence_count": len(evidence),
                "jtbd_count": len(jobs),
            },
            signals_summary={"evidence_by_type": dict(sorted(counts.items()))},
        )
        self.log.info("generated %d opportunities for project %s", len(finalized), project_id)
        return OpportunitiesV3Artifact(meta=meta, opportunities=rank(finalized))
