"""Projects, input snapshots and competitors."""

from __future__ import annotations

import json
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from stratlens.db.schema import Competitor, Project, ProjectInput
from stratlens.models.domain import CompetitorRow, ProjectInputRow


class ProjectsRepo:
    def __init__(self, session: Session) -> None:
        self.session = session

    def create_project(self, name: str, project_id: Optional[str] = None) -> str:
        row = Project(name=name) if project_id is None else Project(id=project_id, name=name)
        self.session.add(row)
        self.session.commit()
        return row.id

    def get_project(self, project_id: str) -> Optional[Project]:
        return self.session.get(Project, project_id)

    def add_input(self, project_id: str, content: dict, version: Optional[int] = None) -> int:
        """Store a new input snapshot; version defaults to latest + 1."""
        if version is None:
            current = self.session.execute(
                select(func.max(ProjectInput.version)).where(ProjectInput.project_id == project_id)
            ).scalar_one()
            version = int(current or 0) + 1
        self.session.add(
            ProjectInput(project_id=project_id, version=version, content_json=json.dumps(content, sort_keys=True))
        )
        self.session.commit()
        return version

    def get_input(self, project_id: str, version: int) -> Optional[ProjectInputRow]:
        row = self.session.execute(
            select(ProjectInput).where(ProjectInput.project_id == project_id, ProjectInput.version == version)
        ).scalar_one_or_none()
        return self._input_row(row)

    def latest_input(self, project_id: str) -> Optional[ProjectInputRow]:
        row = (
            self.session.execute(
                select(ProjectInput)
                .where(ProjectInput.project_id == project_id)
                .order_by(ProjectInput.version.desc())
                .limit(1)
            )
            .scalars()
            .first()
        )
        return self._input_row(row)

    @staticmethod
    def _input_row(row: Optional[ProjectInput]) -> Optional[ProjectInputRow]:
        if row is None:
            return None
        return ProjectInputRow(
            project_id=row.project_id,
            version=row.version,
            content=json.loads(row.content_json),
            created_at=row.created_at,
        )

    def add_competitor(
        self,
        project_id: str,
        name: str,
        url: Optional[str] = None,
        evidence_text: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> str:
        row = Competitor(project_id=project_id, name=name, url=url, evidence_text=evidence_text, notes=notes)
        self.session.add(row)
        self.session.commit()
        return row.id

    def list_competitors(self, project_id: str) -> List[CompetitorRow]:
        rows = self.session.execute(
            select(Competitor).where(Competitor.project_id == project_id).order_by(Competitor.created_at, Competitor.name)
        ).scalars()
        return [
            CompetitorRow(
                id=r.id,
                project_id=r.project_id,
                name=r.name,
                url=r.url,
                evidence_text=r.evidence_text,
                notes=r.notes,
            )
            for r in rows
        ]
