"""Prompt builders for snapshot, opportunity and repair calls."""

from __future__ import annotations

import json
from typing import Any, Iterable, Mapping, Optional, Sequence

from stratlens.models.artifacts import CompetitorSnapshot, Job
from stratlens.models.domain import CompetitorRow, EvidenceRow
from stratlens.services.llm_client import Message

SYSTEM_STYLE = (
    "You are a senior competitive strategy analyst. "
    "Ground every statement in the evidence you are given, never invent facts, "
    "and reply with a single JSON object and nothing else."
)

REPAIR_SYSTEM = (
    "You fix malformed JSON. Return only a corrected JSON object that matches the "
    "requested schema. Keep the original content wherever it is valid."
)

COMPETITOR_SNAPSHOT_SHAPE: dict = {
    "competitor_name": "string",
    "positioning_one_liner": "string",
    "target_audience": ["string"],
    "primary_use_cases": ["string"],
    "key_value_props": ["string"],
    "notable_capabilities": ["string"],
    "business_model_signals": ["string"],
    "proof_points": [
        {
            "claim": "string",
            "evidence_quote": "short quote (25 words or fewer) copied verbatim from the evidence",
            "evidence_location": "pasted_text | url",
            "confidence": "low | med | high",
        }
    ],
    "risks_and_unknowns": ["string"],
    "customer_struggles": ["string"],
}

OPPORTUNITY_BATCH_SHAPE: dict = {
    "opportunities": [
        {
            "title": "string (specific, action-oriented)",
            "one_liner": "string",
            "customer": "string",
            "problem_today": "string",
            "proposed_move": "string",
            "why_now": "string",
            "proof_points": [{"claim": "string", "evidence_quote": "string", "citation_url": "url"}],
            "citations": [
                {
                    "url": "one of the evidence URLs provided",
                    "title": "string",
                    "source_type": "pricing | docs | reviews | jobs | changelog | blog | community | security | other",
                    "extracted_at": "ISO date",
                }
            ],
            "scoring": {
                "breakdown": {
                    "customer_pain": "0-10",
                    "willingness_to_pay": "0-10",
                    "strategic_fit": "0-10",
                    "feasibility": "0-10",
                    "defensibility": "0-10",
                    "competitor_gap": "0-10",
                },
                "explainability": [{"dimension": "string", "reason": "string"}],
            },
            "tradeoffs": {
                "what_we_say_no_to": ["string"],
                "capability_forced": ["string"],
                "why_competitors_wont_follow": ["string"],
            },
            "experiments": [
                {
                    "hypothesis": "string",
                    "smallest_test": "string",
                    "success_metric": "string",
                    "expected_timeframe": "string",
                    "risk_reduced": "string",
                }
            ],
            "dependencies": {
                "linked_competitors": ["competitor name"],
                "linked_jtbd_ids": ["job id"],
                "linked_signals": ["string"],
            },
        }
    ]
}

_CONTEXT_FIELDS = (
    ("hypothesis", "Hypothesis"),
    ("your_product", "Your product"),
    ("business_goal", "Business goal"),
    ("market", "Market"),
    ("target_customer", "Target customer"),
    ("problem_statement", "Problem"),
    ("geography", "Geography"),
    ("primary_constraint", "Primary constraint"),
    ("risk_posture", "Risk posture"),
    ("ambition_level", "Ambition level"),
    ("explicit_non_goals", "Non-goals"),
)

EXCERPT_CHARS = 400


def shape_json(shape: Any) -> str:
    return json.dumps(shape, indent=2)


def project_context_lines(inputs: Mapping[str, Any]) -> list[str]:
    lines = []
    for key, label in _CONTEXT_FIELDS:
        value = inputs.get(key)
        if value:
            lines.append(f"{label}: {value}")
    return lines or ["(no project context provided)"]


def competitor_evidence_text(
    competitor: CompetitorRow,
    evidence: Iterable[EvidenceRow],
    max_chars: int,
) -> str:
    """Pasted notes first, then collected pages, cut at max_chars."""
    parts = []
    if competitor.evidence_text:
        parts.append(competitor.evidence_text.strip())
    for row in evidence:
        if row.extracted_text:
            parts.append(f"[{row.source_type}] {row.url}\n{row.extracted_text.strip()}")
    text = "\n\n".join(parts)
    return text[:max_chars]


def build_snapshot_messages(
    inputs: Mapping[str, Any],
    competitor: CompetitorRow,
    evidence_text: str,
) -> list[Message]:
    user = "\n".join(
        [
            "PROJECT",
            *project_context_lines(inputs),
            "",
            "COMPETITOR",
            f"Name: {competitor.name}",
            f"URL: {competitor.url or 'unknown'}",
            f"Notes: {competitor.notes}" if competitor.notes else "",
            "",
            "EVIDENCE",
            evidence_text or "(no evidence text)",
            "",
            "TASK",
            f"Write a factual snapshot of {competitor.name} using only the evidence above.",
            "Quote evidence verbatim in proof points and mark unknowns instead of guessing.",
            "",
            "Return JSON matching this shape:",
            shape_json(COMPETITOR_SNAPSHOT_SHAPE),
        ]
    )
    return [Message("system", SYSTEM_STYLE), Message("user", user)]


def _evidence_index(evidence: Sequence[EvidenceRow]) -> list[dict]:
    return [
        {
            "url": e.url,
            "title": e.page_title,
            "source_type": e.source_type,
            "extracted_at": e.extracted_at.isoformat() if e.extracted_at else None,
            "excerpt": (e.extracted_text or "")[:EXCERPT_CHARS],
        }
        for e in evidence
    ]


def build_opportunity_messages(
    inputs: Mapping[str, Any],
    snapshots: Sequence[CompetitorSnapshot],
    evidence: Sequence[EvidenceRow],
    jobs: Optional[Sequence[Job]] = None,
) -> list[Message]:
    snapshot_payload = [s.model_dump(exclude={"citations"}) for s in snapshots]
    job_payload = [{"id": j.id, "job_statement": j.job_statement} for j in jobs or []]

    user = "\n".join(
        [
            "PROJECT",
            *project_context_lines(inputs),
            "",
            "COMPETITOR SNAPSHOTS",
            json.dumps(snapshot_payload, indent=2, sort_keys=True),
            "",
            "EVIDENCE SOURCES",
            json.dumps(_evidence_index(evidence), indent=2),
            "",
            "JOBS TO BE DONE",
            json.dumps(job_payload, indent=2) if job_payload else "(none)",
            "",
            "TASK",
            "Propose between 3 and 10 differentiated strategic opportunities.",
            "Every opportunity needs at least one citation whose url is copied from EVIDENCE SOURCES.",
            "Score each breakdown dimension from 0 to 10. Do not compute a total score.",
            "",
            "Return JSON matching this shape:",
            shape_json(OPPORTUNITY_BATCH_SHAPE),
        ]
    )
    return [Message("system", SYSTEM_STYLE), Message("user", user)]


def build_repair_messages(
    raw_text: str,
    schema_name: str,
    schema_shape: Any,
    errors: Sequence[str],
) -> list[Message]:
    user = "\n".join(
        [
            f"The previous reply was supposed to be a valid {schema_name} JSON object but failed validation.",
            "",
            "SCHEMA SHAPE",
            shape_json(schema_shape),
            "",
            "VALIDATION ERRORS",
            *[f"- {e}" for e in errors],
            "",
            "ORIGINAL REPLY",
            raw_text,
            "",
            "Return the corrected JSON object only.",
        ]
    )
    return [Message("system", REPAIR_SYSTEM), Message("user", user)]
