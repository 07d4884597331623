"""Tests for deterministic opportunity scoring."""

from datetime import datetime, timedelta

from stratlens.models.citations import Citation
from stratlens.services.scoring import (
    DEFAULT_WEIGHTS,
    compute_recency_confidence,
    compute_total,
    opportunity_id,
    score_opportunity,
    slugify,
    weights_are_valid,
)

NOW = datetime(2025, 6, 1)
BREAKDOWN = {
    "customer_pain": 7,
    "willingness_to_pay": 7,
    "strategic_fit": 7,
    "feasibility": 7,
    "defensibility": 7,
    "competitor_gap": 7,
}


def _cite(url: str, evidence_type: str | None, age_days: int | None) -> Citation:
    retrieved = None
    if age_days is not None:
        retrieved = (NOW - timedelta(days=age_days)).isoformat() + "Z"
    return Citation(url=url, evidence_type=evidence_type, retrieved_at=retrieved)


def test_recency_confidence_all_recent_high_value():
    cites = [_cite("https://a.com", "pricing", 5), _cite("https://b.com", "reviews", 30)]
    assert compute_recency_confidence(cites, NOW) == 10


def test_recency_confidence_mixed():
    cites = [
        _cite("https://a.com", "pricing", 10),
        _cite("https://b.com", "blog", 200),
        _cite("https://c.com", "docs", None),
        _cite("https://d.com", "changelog", 400),
    ]
    # recent 1/4 * 6 = 1.5, high value 2/4 * 4 = 2 -> 3.5 rounds up
    assert compute_recency_confidence(cites, NOW) == 4


def test_recency_confidence_no_citations():
    assert compute_recency_confidence([], NOW) == 0


def test_total_is_recomputed_and_deterministic():
    cites = [_cite("https://a.com", "pricing", 5), _cite("https://b.com", "reviews", 30)]
    first = score_opportunity(BREAKDOWN, cites, NOW)
    second = score_opportunity(dict(BREAKDOWN), list(cites), NOW)
    assert first == second
    assert first.total == 73
    assert first.breakdown["recencyConfidence"] == 10
    assert first.weights == DEFAULT_WEIGHTS


def test_generator_recency_is_overwritten_and_dimensions_clamped():
    breakdown = {**BREAKDOWN, "customer_pain": 14, "recencyConfidence": 10}
    result = score_opportunity(breakdown, [], NOW)
    assert result.breakdown["customer_pain"] == 10
    assert result.breakdown["recencyConfidence"] == 0


def test_total_clamped_to_range():
    weights = {k: 0.0 for k in DEFAULT_WEIGHTS}
    weights["customer_pain"] = 1.0
    assert compute_total({"customer_pain": 10}, weights) == 100
    assert compute_total({"customer_pain": 50}, weights) == 100
    assert compute_total({}, weights) == 0


def test_invalid_weights_fall_back_to_defaults():
    bad = {**DEFAULT_WEIGHTS, "customer_pain": 0.9}
    assert not weights_are_valid(bad)
    assert not weights_are_valid({"customer_pain": 1.0})
    result = score_opportunity(BREAKDOWN, [], NOW, weights=bad)
    assert result.weights == DEFAULT_WEIGHTS


def test_custom_valid_weights_are_used():
    weights = {k: 0.0 for k in DEFAULT_WEIGHTS}
    weights["feasibility"] = 0.5
    weights["recencyConfidence"] = 0.5
    result = score_opportunity(BREAKDOWN, [], NOW, weights=weights)
    assert result.total == 35


def test_stable_ids():
    assert slugify("  Usage-based Pricing, for SMBs! ") == "usage-based-pricing-for-smbs"
    assert opportunity_id("Usage-based Pricing", "p1") == "usage-based-pricing-p1"
    assert opportunity_id("Usage-based Pricing", "p1", "job-3") == "usage-based-pricing-p1-job-3"
