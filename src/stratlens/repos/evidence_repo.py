"""Evidence source repository."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from stratlens.db.schema import EvidenceSource
from stratlens.models.domain import EvidenceRow
from stratlens.services.citations import canonicalize_url, normalize_evidence_type


def _to_row(r: EvidenceSource) -> EvidenceRow:
    return EvidenceRow(
        id=r.id,
        project_id=r.project_id,
        competitor_id=r.competitor_id,
        url=r.url,
        domain=r.domain,
        source_type=r.source_type,
        page_title=r.page_title,
        extracted_text=r.extracted_text,
        extracted_at=r.extracted_at,
        published_at=r.published_at,
        source_confidence=r.source_confidence,
    )


class EvidenceRepo:
    """
    Read access to collected evidence, plus the insert path used by imports and tests.
    Collection itself happens outside this service.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def add(
        self,
        project_id: str,
        url: str,
        source_type: str,
        extracted_text: Optional[str] = None,
        extracted_at: Optional[datetime] = None,
        competitor_id: Optional[str] = None,
        page_title: Optional[str] = None,
        published_at: Optional[datetime] = None,
        source_confidence: Optional[float] = None,
    ) -> str:
        canonical = canonicalize_url(url)
        if canonical is None:
            raise ValueError(f"not an http(s) url: {url!r}")
        row = EvidenceSource(
            project_id=project_id,
            competitor_id=competitor_id,
            url=canonical,
            domain=canonical.split("/")[2],
            source_type=normalize_evidence_type(source_type) or "other",
            page_title=page_title,
            extracted_text=extracted_text,
            extracted_at=extracted_at or datetime.utcnow(),
            published_at=published_at,
            source_confidence=source_confidence,
        )
        self.session.add(row)
        self.session.commit()
        return row.id

    def count_for_project(self, project_id: str) -> int:
        return int(
            self.session.execute(
                select(func.count()).select_from(EvidenceSource).where(EvidenceSource.project_id == project_id)
            ).scalar_one()
        )

    def list_for_project(self, project_id: str) -> List[EvidenceRow]:
        rows = self.session.execute(
            select(EvidenceSource)
            .where(EvidenceSource.project_id == project_id)
            .order_by(EvidenceSource.extracted_at.desc(), EvidenceSource.url)
        ).scalars()
        return [_to_row(r) for r in rows]

    def list_for_competitor(self, project_id: str, competitor_id: str) -> List[EvidenceRow]:
        return [r for r in self.list_for_project(project_id) if r.competitor_id == competitor_id]
