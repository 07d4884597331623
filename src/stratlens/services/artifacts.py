"""
Per-version opportunity normalizers.

Each historical opportunities schema gets one function that upgrades it to the
canonical `Opportunity`. Nothing downstream of these functions looks at
version-specific fields.
"""

from __future__ import annotations

from typing import List

from stratlens.models.artifacts import OpportunitiesV2Artifact, OpportunitiesV3Artifact, OpportunityV2
from stratlens.models.decision import Experiment, Opportunity, Scoring, Tradeoffs
from stratlens.services.citations import parse_timestamp
from stratlens.services.scoring import (
    DEFAULT_WEIGHTS,
    GENERATIVE_DIMENSIONS,
    RECENCY_DIMENSION,
    compute_recency_confidence,
    compute_total,
    opportunity_id,
    weights_are_valid,
)


def normalize_v3(artifact: OpportunitiesV3Artifact, project_id: str) -> List[Opportunity]:
    out = []
    for opp in artifact.opportunities:
        linked = opp.dependencies.linked_jtbd_ids
        weights = opp.scoring.weights if opp.scoring.weights and weights_are_valid(opp.scoring.weights) else DEFAULT_WEIGHTS
        breakdown = dict(opp.scoring.breakdown)
        out.append(
            Opportunity(
                id=opp.id or opportunity_id(opp.title, project_id, linked[0] if linked else None),
                title=opp.title,
                one_liner=opp.one_liner,
                customer=opp.customer,
                proposed_move=opp.proposed_move,
                why_now=opp.why_now,
                citations=list(opp.citations),
                scoring=Scoring(breakdown=breakdown, weights=dict(weights), total=compute_total(breakdown, weights)),
                tradeoffs=Tradeoffs(**opp.tradeoffs.model_dump()),
                experiments=[Experiment(**e.model_dump()) for e in opp.experiments],
                linked_competitors=list(opp.dependencies.linked_competitors),
                linked_jtbd_ids=list(linked),
            )
        )
    return out


def _v2_breakdown(opp: OpportunityV2, artifact: OpportunitiesV2Artifact) -> dict:
    # v2 only carried a single 0-100 score; spread it evenly across the generative dimensions
    per_dimension = round(opp.score / 10, 2)
    breakdown = {d: per_dimension for d in GENERATIVE_DIMENSIONS}
    reference = parse_timestamp(artifact.meta.generated_at)
    breakdown[RECENCY_DIMENSION] = (
        float(compute_recency_confidence(opp.citations, reference)) if reference is not None else 0.0
    )
    return breakdown


def normalize_v2(artifact: OpportunitiesV2Artifact, project_id: str) -> List[Opportunity]:
    out = []
    for opp in artifact.opportunities:
        breakdown = _v2_breakdown(opp, artifact)
        why_not = [opp.why_they_cant_easily_copy] if opp.why_they_cant_easily_copy else []
        out.append(
            Opportunity(
                id=opp.id or opportunity_id(opp.title, project_id),
                title=opp.title,
                one_liner=opp.why_now or opp.who_it_serves or opp.title,
                customer=opp.who_it_serves,
                proposed_move="; ".join(opp.how_to_win or opp.example_moves),
                why_now=opp.why_now,
                citations=list(opp.citations),
                scoring=Scoring(
                    breakdown=breakdown,
                    weights=dict(DEFAULT_WEIGHTS),
                    total=compute_total(breakdown, DEFAULT_WEIGHTS),
                ),
                tradeoffs=Tradeoffs(why_competitors_wont_follow=why_not),
            )
        )
    return out
