"""Artifacts repository (append-only)."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Iterable, List, Optional

from pydantic import BaseModel, ValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session

from stratlens.db.schema import Artifact
from stratlens.models.artifacts import ArtifactType, StoredArtifact, parse_artifact_content

log = logging.getLogger(__name__)


class ArtifactsRepo:
    """Insert and read artifacts; payloads are validated into typed models on read."""

    def __init__(self, session: Session):
        self.session = session

    def insert(
        self,
        project_id: str,
        artifact_type: ArtifactType,
        content: BaseModel | dict,
        created_at: Optional[datetime] = None,
    ) -> str:
        if isinstance(content, BaseModel):
            payload = content.model_dump(mode="json")
        else:
            payload = content
        # refuse to persist anything the read side could not parse back
        parse_artifact_content(ArtifactType(artifact_type).value, payload)

        row = Artifact(
            project_id=project_id,
            type=ArtifactType(artifact_type).value,
            content_json=json.dumps(payload, sort_keys=True),
            created_at=created_at or datetime.utcnow(),
        )
        self.session.add(row)
        self.session.commit()
        return row.id

    def list_for_project(
        self,
        project_id: str,
        types: Optional[Iterable[ArtifactType]] = None,
    ) -> List[StoredArtifact]:
        """Newest first. Rows whose payload no longer validates are skipped with a warning."""
        stmt = select(Artifact).where(Artifact.project_id == project_id)
        if types is not None:
            stmt = stmt.where(Artifact.type.in_([ArtifactType(t).value for t in types]))
        stmt = stmt.order_by(Artifact.created_at.desc())

        out: List[StoredArtifact] = []
        for row in self.session.execute(stmt).scalars():
            try:
                content = parse_artifact_content(row.type, json.loads(row.content_json))
            except (ValueError, ValidationError) as exc:
                log.warning("skipping artifact %s (%s): %s", row.id, row.type, exc)
                continue
            out.append(
                StoredArtifact(
                    id=row.id,
                    project_id=row.project_id,
                    type=ArtifactType(row.type),
                    created_at=row.created_at,
                    content=content,
                )
            )
        return out

    def latest(self, project_id: str, artifact_type: ArtifactType) -> Optional[StoredArtifact]:
        items = self.list_for_project(project_id, types=[artifact_type])
        return items[0] if items else None
