"""Deterministic opportunity scoring."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Mapping, Optional, Sequence

from stratlens.models.citations import Citation
from stratlens.services.citations import parse_timestamp

GENERATIVE_DIMENSIONS = (
    "customer_pain",
    "willingness_to_pay",
    "strategic_fit",
    "feasibility",
    "defensibility",
    "competitor_gap",
)
RECENCY_DIMENSION = "recencyConfidence"
DIMENSIONS = GENERATIVE_DIMENSIONS + (RECENCY_DIMENSION,)

DEFAULT_WEIGHTS: Dict[str, float] = {
    "customer_pain": 0.20,
    "willingness_to_pay": 0.15,
    "strategic_fit": 0.15,
    "feasibility": 0.15,
    "defensibility": 0.10,
    "competitor_gap": 0.15,
    "recencyConfidence": 0.10,
}

WEIGHT_SUM_TOLERANCE = 0.01
RECENT_WINDOW = timedelta(days=90)
HIGH_VALUE_TYPES = frozenset({"reviews", "pricing", "changelog"})
RECENT_POINTS = 6
HIGH_VALUE_POINTS = 4


@dataclass(frozen=True)
class ScoreResult:
    """Structured output for a scored opportunity."""

    breakdown: Dict[str, float]
    weights: Dict[str, float]
    total: int


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _clamp(lo: float, hi: float, value: float) -> float:
    return min(hi, max(lo, value))


def _as_utc(now: datetime) -> datetime:
    return now.replace(tzinfo=timezone.utc) if now.tzinfo is None else now.astimezone(timezone.utc)


def citation_timestamp(citation: Citation) -> Optional[datetime]:
    return parse_timestamp(citation.retrieved_at) or parse_timestamp(citation.published_at)


def compute_recency_confidence(citations: Sequence[Citation], now: datetime) -> int:
    """
    0..10 signal from the citations themselves: up to 6 points for the share of
    citations seen in the last 90 days, up to 4 for the share of high-value types
    (reviews, pricing, changelog).
    """
    n = len(citations)
    if n == 0:
        return 0
    cutoff = _as_utc(now) - RECENT_WINDOW

    recent = 0
    high_value = 0
    for c in citations:
        ts = citation_timestamp(c)
        if ts is not None and ts >= cutoff:
            recent += 1
        if c.evidence_type in HIGH_VALUE_TYPES:
            high_value += 1

    points = min(RECENT_POINTS, recent / n * RECENT_POINTS) + min(HIGH_VALUE_POINTS, high_value / n * HIGH_VALUE_POINTS)
    return round_half_up(points)


def weights_are_valid(weights: Mapping[str, float]) -> bool:
    if set(weights) != set(DIMENSIONS):
        return False
    if any(w < 0 for w in weights.values()):
        return False
    return abs(sum(weights.values()) - 1.0) <= WEIGHT_SUM_TOLERANCE


def compute_total(breakdown: Mapping[str, float], weights: Mapping[str, float]) -> int:
    raw = sum(float(breakdown.get(d, 0.0)) * float(weights.get(d, 0.0)) * 10 for d in DIMENSIONS)
    return round_half_up(_clamp(0.0, 100.0, raw))


def score_opportunity(
    breakdown: Mapping[str, float],
    citations: Sequence[Citation],
    now: datetime,
    weights: Optional[Mapping[str, float]] = None,
) -> ScoreResult:
    """
    Rebuild the full breakdown and total.

    Generative dimensions are clamped to 0..10, recencyConfidence is always
    recomputed from citations, and any proposed total is ignored.
    """
    scored = {d: _clamp(0.0, 10.0, float(breakdown.get(d, 0.0))) for d in GENERATIVE_DIMENSIONS}
    scored[RECENCY_DIMENSION] = float(compute_recency_confidence(citations, now))
    used_weights = dict(weights) if weights is not None and weights_are_valid(weights) else dict(DEFAULT_WEIGHTS)
    return ScoreResult(breakdown=scored, weights=used_weights, total=compute_total(scored, used_weights))


def slugify(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")


def opportunity_id(title: str, project_id: str, linked_job_id: Optional[str] = None) -> str:
    """Stable id so the same opportunity can be recognised across runs."""
    base = f"{slugify(title)}-{project_id}"
    return f"{base}-{linked_job_id}" if linked_job_id else base
