"""Canonical citation shape shared by artifacts and the decision model."""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

EvidenceType = Literal[
    "pricing",
    "docs",
    "reviews",
    "jobs",
    "changelog",
    "blog",
    "community",
    "security",
    "other",
]

EVIDENCE_TYPES: tuple[str, ...] = (
    "pricing",
    "docs",
    "reviews",
    "jobs",
    "changelog",
    "blog",
    "community",
    "security",
    "other",
)


class Citation(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    url: str
    title: Optional[str] = None
    evidence_type: Optional[EvidenceType] = None
    retrieved_at: Optional[str] = None
    published_at: Optional[str] = None
    confidence: Optional[float] = Field(None, ge=0.0, le=1.0)
