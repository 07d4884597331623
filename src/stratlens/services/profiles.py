"""Per-competitor snapshot generation."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Mapping, Optional, Sequence

from stratlens.errors import ErrorCode
from stratlens.models.artifacts import ArtifactType, CompetitorSnapshot, ProfilesArtifact, StoredArtifact
from stratlens.models.domain import CompetitorRow, EvidenceRow
from stratlens.repos.artifacts_repo import ArtifactsRepo
from stratlens.repos.evidence_repo import EvidenceRepo
from stratlens.services.citations import normalize_citations, to_iso
from stratlens.services.generation import GenerationLoop, GenerationTarget
from stratlens.services.prompts import COMPETITOR_SNAPSHOT_SHAPE, build_snapshot_messages, competitor_evidence_text

SNAPSHOT_TARGET: GenerationTarget[CompetitorSnapshot] = GenerationTarget(
    schema_name="CompetitorSnapshot",
    model=CompetitorSnapshot,
    shape=COMPETITOR_SNAPSHOT_SHAPE,
    failure_code=ErrorCode.SNAPSHOT_VALIDATION_FAILED,
    max_tokens=1600,
    failure_message="A competitor profile could not be generated in a valid format. Check the competitor's evidence and try again.",
)


def evidence_citations(rows: Sequence[EvidenceRow]) -> list:
    return normalize_citations(
        [
            {
                "url": r.url,
                "title": r.page_title,
                "source_type": r.source_type,
                "extracted_at": r.extracted_at,
                "published_at": r.published_at,
                "confidence": r.source_confidence,
            }
            for r in rows
        ]
    )


def covers_competitors(profiles: ProfilesArtifact, competitors: Sequence[CompetitorRow]) -> bool:
    names = {s.competitor_name.strip().lower() for s in profiles.snapshots}
    return all(c.name.strip().lower() in names for c in competitors)


class ProfileGenerator:
    def __init__(
        self,
        evidence_repo: EvidenceRepo,
        artifacts_repo: ArtifactsRepo,
        loop: GenerationLoop,
        max_evidence_chars: int,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.evidence_repo = evidence_repo
        self.artifacts_repo = artifacts_repo
        self.loop = loop
        self.max_evidence_chars = max_evidence_chars
        self.log = logger or logging.getLogger(__name__)

    def find_reusable(self, project_id: str, competitors: Sequence[CompetitorRow]) -> Optional[StoredArtifact]:
        """Latest profiles artifact if it still covers every current competitor."""
        latest = self.artifacts_repo.latest(project_id, ArtifactType.PROFILES)
        if latest is None:
            return None
        if not isinstance(latest.content, ProfilesArtifact) or not covers_competitors(latest.content, competitors):
            self.log.info("profiles artifact %s is stale for project %s", latest.id, project_id)
            return None
        return latest

    def generate_snapshot(self, inputs: Mapping[str, Any], competitor: CompetitorRow) -> CompetitorSnapshot:
        rows = self.evidence_repo.list_for_competitor(competitor.project_id, competitor.id)
        text = competitor_evidence_text(competitor, rows, self.max_evidence_chars)
        snapshot = self.loop.run(build_snapshot_messages(inputs, competitor, text), SNAPSHOT_TARGET)
        return snapshot.model_copy(
            update={"competitor_name": competitor.name, "citations": evidence_citations(rows)}
        )

    def generate(
        self,
        project_id: str,
        inputs: Mapping[str, Any],
        competitors: Sequence[CompetitorRow],
        run_id: str,
        now: datetime,
    ) -> tuple[str, ProfilesArtifact]:
        """Generate one snapshot per competitor, in order, and persist the profiles artifact."""
        snapshots = []
        for competitor in competitors:
            self.log.info("generating snapshot for %s (project %s)", competitor.name, project_id)
            snapshots.append(self.generate_snapshot(inputs, competitor))

        content = ProfilesArtifact(
            run_id=run_id,
            generated_at=to_iso(now),
            competitor_count=len(snapshots),
            snapshots=snapshots,
        )
        artifact_id = self.artifacts_repo.insert(project_id, ArtifactType.PROFILES, content, created_at=now)
        return artifact_id, content
