"""
Evidence readiness gate.

Deterministic checks run before any generation: evidence must exist, and its
coverage (source-type variety, freshness, volume) must clear fixed thresholds.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Sequence, Tuple

from stratlens.errors import AnalysisError, ErrorCode
from stratlens.models.citations import EVIDENCE_TYPES
from stratlens.models.domain import EvidenceRow
from stratlens.repos.evidence_repo import EvidenceRepo

RECENCY_BUCKETS: Tuple[Tuple[str, timedelta], ...] = (
    ("last_7_days", timedelta(days=7)),
    ("last_30_days", timedelta(days=30)),
    ("last_90_days", timedelta(days=90)),
)
OLDER = "older"
UNKNOWN = "unknown"
ACCEPTABLE_RECENCY = frozenset(label for label, _ in RECENCY_BUCKETS)

MIN_SOURCE_TYPES = 3
MIN_TOTAL_CITATIONS = 3
MIN_ITEMS_PER_TYPE = 2
HIGH_VALUE_TYPES = ("pricing", "reviews", "changelog")


@dataclass(frozen=True)
class Coverage:
    total_citations: int
    source_types: Tuple[str, ...]
    recency_label: str
    coverage_score: float
    counts_by_type: Dict[str, int] = field(default_factory=dict)
    newest_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "totalCitations": self.total_citations,
            "sourceTypes": list(self.source_types),
            "recencyLabel": self.recency_label,
            "coverageScore": self.coverage_score,
            "countsByType": dict(self.counts_by_type),
            "newestAt": self.newest_at.isoformat() if self.newest_at else None,
        }


@dataclass(frozen=True)
class Readiness:
    is_ready: bool
    reasons: Tuple[str, ...] = ()
    missing: Tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {"isReady": self.is_ready, "reasons": list(self.reasons), "missing": list(self.missing)}


def _naive_utc(dt: datetime) -> datetime:
    return dt.astimezone(timezone.utc).replace(tzinfo=None) if dt.tzinfo else dt


def recency_bucket(newest: Optional[datetime], now: datetime) -> str:
    if newest is None:
        return UNKNOWN
    age = _naive_utc(now) - _naive_utc(newest)
    for label, limit in RECENCY_BUCKETS:
        if age <= limit:
            return label
    return OLDER


def coverage_score(counts_by_type: Dict[str, int]) -> float:
    """Mean of type coverage and min-count coverage over the known evidence types."""
    n_types = len(EVIDENCE_TYPES)
    present = sum(1 for t in EVIDENCE_TYPES if counts_by_type.get(t, 0) > 0)
    deep = sum(1 for t in EVIDENCE_TYPES if counts_by_type.get(t, 0) >= MIN_ITEMS_PER_TYPE)
    return round((present / n_types + deep / n_types) / 2, 3)


def compute_coverage(rows: Sequence[EvidenceRow], now: datetime) -> Coverage:
    """Coverage over distinct evidence URLs. Pure: same rows and `now` give the same result."""
    by_url: Dict[str, EvidenceRow] = {}
    for row in rows:
        by_url.setdefault(row.url, row)

    counts = Counter(row.source_type for row in by_url.values())
    newest = max((row.extracted_at for row in by_url.values()), default=None)
    return Coverage(
        total_citations=len(by_url),
        source_types=tuple(sorted(counts)),
        recency_label=recency_bucket(newest, now),
        coverage_score=coverage_score(counts),
        counts_by_type=dict(sorted(counts.items())),
        newest_at=newest,
    )


def evaluate_readiness(coverage: Coverage) -> Readiness:
    reasons: list[str] = []
    missing: list[str] = []

    if coverage.total_citations == 0:
        return Readiness(
            is_ready=False,
            reasons=("No evidence sources have been collected for this project.",),
            missing=("evidence",),
        )

    if coverage.total_citations < MIN_TOTAL_CITATIONS:
        reasons.append(
            f"Only {coverage.total_citations} evidence sources found; at least {MIN_TOTAL_CITATIONS} are required."
        )
        missing.append("sources")

    if len(coverage.source_types) < MIN_SOURCE_TYPES:
        reasons.append(
            f"Evidence spans {len(coverage.source_types)} source types; at least {MIN_SOURCE_TYPES} are required."
        )
        missing.extend(t for t in HIGH_VALUE_TYPES if t not in coverage.source_types)

    if coverage.recency_label not in ACCEPTABLE_RECENCY:
        reasons.append("No evidence was collected in the last 90 days.")
        missing.append("recent_evidence")

    return Readiness(is_ready=not reasons, reasons=tuple(reasons), missing=tuple(missing))


class EvidenceReadinessGate:
    def __init__(self, evidence_repo: EvidenceRepo, logger: Optional[logging.Logger] = None) -> None:
        self.evidence_repo = evidence_repo
        self.log = logger or logging.getLogger(__name__)

    def compute_coverage(self, project_id: str, now: datetime) -> Coverage:
        return compute_coverage(self.evidence_repo.list_for_project(project_id), now)

    def check(self, project_id: str, now: datetime) -> Coverage:
        """Raise AnalysisError unless the project's evidence clears both checks."""
        if self.evidence_repo.count_for_project(project_id) == 0:
            raise AnalysisError(
                ErrorCode.INSUFFICIENT_EVIDENCE,
                "No evidence has been collected yet. Collect public evidence for your competitors, then rerun.",
            )

        coverage = self.compute_coverage(project_id, now)
        readiness = evaluate_readiness(coverage)
        self.log.info(
            "evidence coverage project=%s sources=%d types=%s recency=%s score=%.3f ready=%s",
            project_id,
            coverage.total_citations,
            ",".join(coverage.source_types),
            coverage.recency_label,
            coverage.coverage_score,
            readiness.is_ready,
        )
        if not readiness.is_ready:
            raise AnalysisError(
                ErrorCode.INSUFFICIENT_EVIDENCE_COVERAGE,
                "Evidence coverage is too thin to generate reliable opportunities. "
                + (f"Add evidence for: {', '.join(readiness.missing)}." if readiness.missing else ""),
                detail="; ".join(readiness.reasons),
            )
        return coverage
