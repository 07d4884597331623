"""Canonical decision model returned to downstream consumers."""

from __future__ import annotations

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from stratlens.models.citations import Citation


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class Scoring(CamelModel):
    breakdown: Dict[str, float]
    weights: Dict[str, float]
    total: int = Field(ge=0, le=100)


class Tradeoffs(CamelModel):
    what_we_say_no_to: List[str] = Field(default_factory=list)
    capability_forced: List[str] = Field(default_factory=list)
    why_competitors_wont_follow: List[str] = Field(default_factory=list)


class Experiment(CamelModel):
    hypothesis: str
    smallest_test: str
    success_metric: str
    expected_timeframe: str = ""
    risk_reduced: str = ""


class Opportunity(CamelModel):
    id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    one_liner: str
    customer: str = ""
    proposed_move: str = ""
    why_now: str = ""
    citations: List[Citation] = Field(default_factory=list)
    scoring: Scoring
    tradeoffs: Tradeoffs = Field(default_factory=Tradeoffs)
    experiments: List[Experiment] = Field(default_factory=list)
    linked_competitors: List[str] = Field(default_factory=list)
    linked_jtbd_ids: List[str] = Field(default_factory=list)


class CompetitorSummary(CamelModel):
    name: str
    positioning: str
    target_audience: List[str] = Field(default_factory=list)
    key_value_props: List[str] = Field(default_factory=list)
    risks_and_unknowns: List[str] = Field(default_factory=list)


class ScorecardCriterion(CamelModel):
    id: str
    name: str
    weight: float


class ScorecardEntry(CamelModel):
    competitor_name: str
    total: float
    criteria_scores: Dict[str, float] = Field(default_factory=dict)


class Scorecard(CamelModel):
    criteria: List[ScorecardCriterion]
    entries: List[ScorecardEntry]
    summary: str = ""


class EvidenceSummary(CamelModel):
    total_citations: int = Field(ge=0)
    counts_by_type: Dict[str, int] = Field(default_factory=dict)
    recency_bucket: str
    coverage_confidence: Literal["high", "medium", "low"]
    newest_citation_at: Optional[str] = None


class DecisionMetadata(CamelModel):
    artifact_version: Literal["v2", "v3"]
    opportunities_artifact_id: str
    source_artifact_ids: List[str] = Field(default_factory=list)


class DecisionModel(CamelModel):
    project_id: str
    run_id: Optional[str] = None
    generated_at: str
    summary: str
    opportunities: List[Opportunity]
    competitors: Optional[List[CompetitorSummary]] = None
    scorecard: Optional[Scorecard] = None
    evidence_summary: Optional[EvidenceSummary] = None
    metadata: DecisionMetadata
