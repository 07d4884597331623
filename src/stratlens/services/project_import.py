"""Load a project (inputs, competitors, collected evidence) from a JSON document."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.orm import Session

from stratlens.repos.evidence_repo import EvidenceRepo
from stratlens.repos.projects_repo import ProjectsRepo
from stratlens.services.citations import parse_timestamp


@dataclass(frozen=True)
class ImportResult:
    project_id: str
    input_version: Optional[int]
    competitors: int
    evidence: int


def _naive(value: Any) -> Optional[datetime]:
    dt = parse_timestamp(value)
    return dt.astimezone(timezone.utc).replace(tzinfo=None) if dt else None


def import_project(session: Session, doc: dict) -> ImportResult:
    """
    Expected shape:
      {"project": {"id"?, "name"}, "inputs": {...},
       "competitors": [{"name", "url"?, "evidence_text"?, "evidence": [...]}],
       "evidence": [...]}
    Evidence items: {"url", "source_type", "extracted_text"?, "extracted_at"?, ...}.
    """
    projects = ProjectsRepo(session)
    evidence_repo = EvidenceRepo(session)

    project = doc.get("project") or {}
    if not project.get("name"):
        raise ValueError("project.name is required")
    project_id = project.get("id")
    if project_id is None or projects.get_project(project_id) is None:
        project_id = projects.create_project(project["name"], project_id=project_id)

    input_version = None
    if doc.get("inputs"):
        input_version = projects.add_input(project_id, doc["inputs"])

    evidence_count = 0

    def add_evidence(items: list, competitor_id: Optional[str]) -> None:
        nonlocal evidence_count
        for item in items:
            evidence_repo.add(
                project_id=project_id,
                competitor_id=competitor_id,
                url=item["url"],
                source_type=item.get("source_type", "other"),
                extracted_text=item.get("extracted_text"),
                extracted_at=_naive(item.get("extracted_at")),
                published_at=_naive(item.get("published_at")),
                page_title=item.get("page_title") or item.get("title"),
                source_confidence=item.get("source_confidence"),
            )
            evidence_count += 1

    competitors = doc.get("competitors") or []
    for comp in competitors:
        competitor_id = projects.add_competitor(
            project_id,
            comp["name"],
            url=comp.get("url"),
            evidence_text=comp.get("evidence_text"),
            notes=comp.get("notes"),
        )
        add_evidence(comp.get("evidence") or [], competitor_id)
    add_evidence(doc.get("evidence") or [], None)

    return ImportResult(
        project_id=project_id,
        input_version=input_version,
        competitors=len(competitors),
        evidence=evidence_count,
    )
