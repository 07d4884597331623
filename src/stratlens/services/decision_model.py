"""
Decision model assembly.

Reads every artifact of a project, picks one opportunities artifact
(run match first, then newest of the highest schema version), upgrades it to
the canonical shape and attaches supporting context from the other artifact types.
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Sequence

from pydantic import ValidationError
from sqlalchemy.orm import Session

from stratlens.errors import ArtifactAssemblyError
from stratlens.models.artifacts import (
    ArtifactType,
    OpportunitiesV2Artifact,
    OpportunitiesV3Artifact,
    ProfilesArtifact,
    ScoringMatrixArtifact,
    StoredArtifact,
    StrategicBetsArtifact,
)
from stratlens.models.citations import Citation
from stratlens.models.decision import DecisionModel, Opportunity
from stratlens.repos.artifacts_repo import ArtifactsRepo
from stratlens.repos.runs_repo import utcnow
from stratlens.services.citations import to_iso
from stratlens.services.evidence_gate import ACCEPTABLE_RECENCY, MIN_SOURCE_TYPES, recency_bucket
from stratlens.services.artifacts import normalize_v2, normalize_v3
from stratlens.services.scoring import citation_timestamp

# highest schema version first
OPPORTUNITY_VERSIONS = (ArtifactType.OPPORTUNITIES_V3, ArtifactType.OPPORTUNITIES_V2)
FRESH_BUCKETS = frozenset({"last_7_days", "last_30_days"})


def _newest(items: Iterable[StoredArtifact]) -> Optional[StoredArtifact]:
    return max(items, key=lambda a: a.created_at, default=None)


def select_opportunities_artifact(
    artifacts: Sequence[StoredArtifact],
    run_id: Optional[str] = None,
) -> Optional[StoredArtifact]:
    """
    1. with run_id: an artifact embedding that run id, v3 before v2
    2. otherwise: the newest artifact of the highest available version
    """
    by_version = {v: [a for a in artifacts if a.type == v] for v in OPPORTUNITY_VERSIONS}
    if run_id:
        for version in OPPORTUNITY_VERSIONS:
            matched = _newest(a for a in by_version[version] if a.run_id == run_id)
            if matched is not None:
                return matched
    for version in OPPORTUNITY_VERSIONS:
        newest = _newest(by_version[version])
        if newest is not None:
            return newest
    return None


def select_supporting(
    artifacts: Sequence[StoredArtifact],
    artifact_type: ArtifactType,
    run_id: Optional[str],
) -> Optional[StoredArtifact]:
    """Same-run artifact of the given type if there is one, else the newest."""
    candidates = [a for a in artifacts if a.type == artifact_type]
    if run_id:
        matched = _newest(a for a in candidates if a.run_id == run_id)
        if matched is not None:
            return matched
    return _newest(candidates)


def coverage_confidence(type_count: int, bucket: str) -> str:
    if type_count >= MIN_SOURCE_TYPES and bucket in FRESH_BUCKETS:
        return "high"
    if type_count >= 2 and bucket in ACCEPTABLE_RECENCY:
        return "medium"
    return "low"


def summarize_evidence(citations: Sequence[Citation], now: datetime) -> dict:
    unique: dict[str, Citation] = {}
    for c in citations:
        unique.setdefault(c.url, c)

    counts = Counter(c.evidence_type or "other" for c in unique.values())
    stamps = [ts for ts in (citation_timestamp(c) for c in unique.values()) if ts is not None]
    newest = max(stamps, default=None)
    bucket = recency_bucket(newest, now)
    return {
        "total_citations": len(unique),
        "counts_by_type": dict(sorted(counts.items())),
        "recency_bucket": bucket,
        "coverage_confidence": coverage_confidence(len(counts), bucket),
        "newest_citation_at": to_iso(newest),
    }


def normalize_opportunities(artifact: StoredArtifact) -> tuple[str, List[Opportunity]]:
    content = artifact.content
    if isinstance(content, OpportunitiesV3Artifact):
        return "v3", normalize_v3(content, artifact.project_id)
    if isinstance(content, OpportunitiesV2Artifact):
        return "v2", normalize_v2(content, artifact.project_id)
    raise ArtifactAssemblyError(f"artifact {artifact.id} of type {artifact.type.value} holds no opportunities")


class DecisionModelAssembler:
    def __init__(
        self,
        session: Session,
        now_fn: Callable[[], datetime] = utcnow,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.artifacts = ArtifactsRepo(session)
        self.now_fn = now_fn
        self.log = logger or logging.getLogger(__name__)

    def assemble(self, project_id: str, run_id: Optional[str] = None) -> Optional[DecisionModel]:
        """None when the project has no opportunities artifact yet."""
        artifacts = self.artifacts.list_for_project(project_id)
        chosen = select_opportunities_artifact(artifacts, run_id)
        if chosen is None:
            return None

        version, opportunities = normalize_opportunities(chosen)
        context_run = chosen.run_id
        sources = [chosen.id]
        citations: List[Citation] = [c for o in opportunities for c in o.citations]

        competitors = None
        profiles = select_supporting(artifacts, ArtifactType.PROFILES, context_run)
        if profiles is not None and isinstance(profiles.content, ProfilesArtifact):
            sources.append(profiles.id)
            competitors = [
                {
                    "name": s.competitor_name,
                    "positioning": s.positioning_one_liner,
                    "target_audience": s.target_audience,
                    "key_value_props": s.key_value_props,
                    "risks_and_unknowns": s.risks_and_unknowns,
                }
                for s in profiles.content.snapshots
            ]
            citations.extend(c for s in profiles.content.snapshots for c in s.citations)

        scorecard = None
        matrix = select_supporting(artifacts, ArtifactType.SCORING_MATRIX, context_run)
        if matrix is not None and isinstance(matrix.content, ScoringMatrixArtifact):
            sources.append(matrix.id)
            scorecard = {
                "criteria": [c.model_dump() for c in matrix.content.criteria],
                "entries": [
                    {"competitor_name": s.competitor_name, "total": s.total, "criteria_scores": s.criteria_scores}
                    for s in sorted(matrix.content.scores, key=lambda s: -s.total)
                ],
                "summary": matrix.content.summary,
            }

        bets = select_supporting(artifacts, ArtifactType.STRATEGIC_BETS, context_run)
        if bets is not None and isinstance(bets.content, StrategicBetsArtifact):
            sources.append(bets.id)
            citations.extend(c for b in bets.content.bets for c in b.citations)

        now = self.now_fn()
        payload = {
            "project_id": project_id,
            "run_id": context_run,
            "generated_at": to_iso(now),
            "summary": self._summary(version, opportunities),
            "opportunities": [o.model_dump() for o in opportunities],
            "competitors": competitors,
            "scorecard": scorecard,
            "evidence_summary": summarize_evidence(citations, now) if citations else None,
            "metadata": {
                "artifact_version": version,
                "opportunities_artifact_id": chosen.id,
                "source_artifact_ids": sources,
            },
        }
        try:
            model = DecisionModel.model_validate(payload)
        except ValidationError as exc:
            self.log.error("decision model for project %s failed validation: %s", project_id, exc)
            raise ArtifactAssemblyError(f"decision model for project {project_id} is invalid: {exc}") from exc

        self.log.info(
            "assembled decision model project=%s artifact=%s version=%s opportunities=%d",
            project_id,
            chosen.id,
            version,
            len(opportunities),
        )
        return model

    @staticmethod
    def _summary(version: str, opportunities: Sequence[Opportunity]) -> str:
        if not opportunities:
            return "No opportunities were found."
        top = max(opportunities, key=lambda o: o.scoring.total)
        noun = "opportunity" if len(opportunities) == 1 else "opportunities"
        return f"{len(opportunities)} {noun} ({version}); top: {top.title} ({top.scoring.total}/100)."
