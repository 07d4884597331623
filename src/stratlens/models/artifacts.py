"""
Typed artifact payloads.

Every persisted artifact is parsed into exactly one of these models, chosen by
its `type` column. Unknown keys are ignored so older payloads still load.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from stratlens.models.citations import Citation
from stratlens.services.citations import normalize_citations
from stratlens.services.scoring import GENERATIVE_DIMENSIONS, RECENCY_DIMENSION, weights_are_valid


class ArtifactType(str, Enum):
    PROFILES = "profiles"
    OPPORTUNITIES_V2 = "opportunities_v2"
    OPPORTUNITIES_V3 = "opportunities_v3"
    SCORING_MATRIX = "scoring_matrix"
    STRATEGIC_BETS = "strategic_bets"
    JTBD = "jtbd"


class Payload(BaseModel):
    model_config = ConfigDict(extra="ignore")


class ArtifactMeta(Payload):
    generated_at: str
    run_id: Optional[str] = None
    schema_version: int = 3
    inputs_used: Dict[str, Any] = Field(default_factory=dict)
    signals_summary: Dict[str, Any] = Field(default_factory=dict)


# --- competitor profiles -------------------------------------------------------


class SnapshotProofPoint(Payload):
    claim: str
    evidence_quote: str = ""
    evidence_location: str = "pasted_text"
    confidence: Literal["low", "med", "high"] = "med"


class CompetitorSnapshot(Payload):
    competitor_name: str = Field(min_length=1)
    positioning_one_liner: str = Field(min_length=1)
    target_audience: List[str] = Field(default_factory=list)
    primary_use_cases: List[str] = Field(default_factory=list)
    key_value_props: List[str] = Field(default_factory=list)
    notable_capabilities: List[str] = Field(default_factory=list)
    business_model_signals: List[str] = Field(default_factory=list)
    proof_points: List[SnapshotProofPoint] = Field(default_factory=list)
    risks_and_unknowns: List[str] = Field(default_factory=list)
    customer_struggles: List[str] = Field(default_factory=list)
    # attached server-side from the evidence rows used for the prompt
    citations: List[Citation] = Field(default_factory=list)

    @field_validator("citations", mode="before")
    @classmethod
    def coerce_citations(cls, value: Any) -> list[Citation]:
        return normalize_citations(value)


class ProfilesArtifact(Payload):
    run_id: Optional[str] = None
    generated_at: str
    competitor_count: int = 0
    snapshots: List[CompetitorSnapshot] = Field(min_length=1)


# --- opportunities v3 ----------------------------------------------------------


class ProofPoint(Payload):
    claim: str
    evidence_quote: str = ""
    citation_url: Optional[str] = None


class ExplainabilityItem(Payload):
    dimension: str
    reason: str


class OpportunityScoring(Payload):
    breakdown: Dict[str, float]
    weights: Optional[Dict[str, float]] = None
    total: Optional[int] = Field(None, ge=0, le=100)
    explainability: List[ExplainabilityItem] = Field(default_factory=list)

    @field_validator("total", mode="before")
    @classmethod
    def drop_unusable_total(cls, value: Any) -> Any:
        # totals are recomputed server-side, so a malformed proposal is dropped
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        if isinstance(value, float) and not value.is_integer():
            return None
        if not 0 <= value <= 100:
            return None
        return int(value)

    @field_validator("breakdown")
    @classmethod
    def check_breakdown(cls, value: Dict[str, float]) -> Dict[str, float]:
        missing = [d for d in GENERATIVE_DIMENSIONS if d not in value]
        if missing:
            raise ValueError(f"breakdown missing dimensions: {', '.join(missing)}")
        for dim, score in value.items():
            if dim != RECENCY_DIMENSION and not 0 <= score <= 10:
                raise ValueError(f"breakdown[{dim}] must be within 0..10")
        return value

    @field_validator("weights")
    @classmethod
    def check_weights(cls, value: Optional[Dict[str, float]]) -> Optional[Dict[str, float]]:
        if value is not None and not weights_are_valid(value):
            raise ValueError("weights must cover every dimension including recencyConfidence and sum to 1.0")
        return value


class Tradeoffs(Payload):
    what_we_say_no_to: List[str] = Field(default_factory=list)
    capability_forced: List[str] = Field(default_factory=list)
    why_competitors_wont_follow: List[str] = Field(default_factory=list)


class Experiment(Payload):
    hypothesis: str
    smallest_test: str
    success_metric: str
    expected_timeframe: str = ""
    risk_reduced: str = ""


class Dependencies(Payload):
    linked_competitors: List[str] = Field(default_factory=list)
    linked_jtbd_ids: List[str] = Field(default_factory=list)
    linked_signals: List[str] = Field(default_factory=list)

    @field_validator("linked_competitors", "linked_jtbd_ids", "linked_signals", mode="before")
    @classmethod
    def coerce_ids(cls, value: Any) -> list[str]:
        # stored payloads may carry null lists and numeric job ids
        if value is None:
            return []
        if isinstance(value, (list, tuple)):
            return [str(v) for v in value if v is not None]
        return value


class OpportunityV3(Payload):
    id: Optional[str] = None
    title: str = Field(min_length=3)
    one_liner: str = Field(min_length=1)
    customer: str = ""
    problem_today: str = ""
    proposed_move: str = ""
    why_now: str = ""
    proof_points: List[ProofPoint] = Field(default_factory=list)
    citations: List[Citation] = Field(min_length=1)
    scoring: OpportunityScoring
    tradeoffs: Tradeoffs = Field(default_factory=Tradeoffs)
    experiments: List[Experiment] = Field(default_factory=list)
    dependencies: Dependencies = Field(default_factory=Dependencies)

    @field_validator("dependencies", mode="before")
    @classmethod
    def coerce_dependencies(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("citations", mode="before")
    @classmethod
    def coerce_citations(cls, value: Any) -> list[Citation]:
        return normalize_citations(value)


class OpportunityBatch(Payload):
    """What the generator is asked to return for opportunity synthesis."""

    opportunities: List[OpportunityV3] = Field(min_length=1, max_length=12)


class OpportunitiesV3Artifact(Payload):
    meta: ArtifactMeta
    opportunities: List[OpportunityV3] = Field(min_length=1)

    @model_validator(mode="after")
    def ids_and_totals_present(self) -> "OpportunitiesV3Artifact":
        for opp in self.opportunities:
            if not opp.id or opp.scoring.total is None or opp.scoring.weights is None:
                raise ValueError("stored v3 opportunities need id, weights and total")
        return self


# --- opportunities v2 (historical) ---------------------------------------------


class OpportunityV2(Payload):
    id: Optional[str] = None
    title: str = Field(min_length=1)
    type: str = "product_capability"
    who_it_serves: str = ""
    why_now: str = ""
    how_to_win: List[str] = Field(default_factory=list)
    example_moves: List[str] = Field(default_factory=list)
    what_competitors_do_today: str = ""
    why_they_cant_easily_copy: str = ""
    effort: Optional[str] = None
    impact: Optional[str] = None
    confidence: Optional[str] = None
    score: float = Field(0, ge=0, le=100)
    risks: List[str] = Field(default_factory=list)
    citations: List[Citation] = Field(default_factory=list)

    @field_validator("citations", mode="before")
    @classmethod
    def coerce_citations(cls, value: Any) -> list[Citation]:
        return normalize_citations(value)


class OpportunitiesV2Artifact(Payload):
    meta: ArtifactMeta
    opportunities: List[OpportunityV2] = Field(min_length=1)


# --- supporting artifacts ------------------------------------------------------


class ScoringCriterion(Payload):
    id: str
    name: str
    weight: float = Field(ge=0, le=1)


class CompetitorScore(Payload):
    competitor_name: str
    criteria_scores: Dict[str, float] = Field(default_factory=dict)
    total: float = Field(ge=0, le=100)


class ScoringMatrixArtifact(Payload):
    meta: ArtifactMeta
    criteria: List[ScoringCriterion] = Field(min_length=1)
    scores: List[CompetitorScore] = Field(default_factory=list)
    summary: str = ""


class StrategicBet(Payload):
    id: Optional[str] = None
    title: str
    summary: str = ""
    citations: List[Citation] = Field(default_factory=list)

    @field_validator("citations", mode="before")
    @classmethod
    def coerce_citations(cls, value: Any) -> list[Citation]:
        return normalize_citations(value)


class StrategicBetsArtifact(Payload):
    meta: ArtifactMeta
    bets: List[StrategicBet] = Field(min_length=1)


class Job(Payload):
    id: str
    job_statement: str
    context: str = ""
    desired_outcomes: List[str] = Field(default_factory=list)
    citations: List[Citation] = Field(default_factory=list)

    @field_validator("citations", mode="before")
    @classmethod
    def coerce_citations(cls, value: Any) -> list[Citation]:
        return normalize_citations(value)


class JtbdArtifact(Payload):
    meta: ArtifactMeta
    jobs: List[Job] = Field(min_length=1)


ArtifactContent = Union[
    ProfilesArtifact,
    OpportunitiesV2Artifact,
    OpportunitiesV3Artifact,
    ScoringMatrixArtifact,
    StrategicBetsArtifact,
    JtbdArtifact,
]

ARTIFACT_MODELS: Dict[ArtifactType, type] = {
    ArtifactType.PROFILES: ProfilesArtifact,
    ArtifactType.OPPORTUNITIES_V2: OpportunitiesV2Artifact,
    ArtifactType.OPPORTUNITIES_V3: OpportunitiesV3Artifact,
    ArtifactType.SCORING_MATRIX: ScoringMatrixArtifact,
    ArtifactType.STRATEGIC_BETS: StrategicBetsArtifact,
    ArtifactType.JTBD: JtbdArtifact,
}


def parse_artifact_content(artifact_type: str, raw: Any) -> ArtifactContent:
    """Validate a raw payload against the model for its type (ValueError on unknown type)."""
    kind = ArtifactType(artifact_type)
    return ARTIFACT_MODELS[kind].model_validate(raw)


def artifact_run_id(content: ArtifactContent) -> Optional[str]:
    if isinstance(content, ProfilesArtifact):
        return content.run_id
    return content.meta.run_id


@dataclass(frozen=True)
class StoredArtifact:
    id: str
    project_id: str
    type: ArtifactType
    created_at: datetime
    content: ArtifactContent

    @property
    def run_id(self) -> Optional[str]:
        return artifact_run_id(self.content)
