"""Error taxonomy for analysis runs."""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional


class ErrorCode(str, Enum):
    # input
    NO_INPUTS = "NO_INPUTS"
    INSUFFICIENT_COMPETITORS = "INSUFFICIENT_COMPETITORS"
    # evidence
    INSUFFICIENT_EVIDENCE = "INSUFFICIENT_EVIDENCE"
    INSUFFICIENT_EVIDENCE_COVERAGE = "INSUFFICIENT_EVIDENCE_COVERAGE"
    EVIDENCE_COLLECTION_ERROR = "EVIDENCE_COLLECTION_ERROR"
    # generation
    VALIDATION_FAILED = "VALIDATION_FAILED"
    SNAPSHOT_VALIDATION_FAILED = "SNAPSHOT_VALIDATION_FAILED"
    PROFILE_GENERATION_ERROR = "PROFILE_GENERATION_ERROR"
    OPPORTUNITY_GENERATION_ERROR = "OPPORTUNITY_GENERATION_ERROR"
    # transitions / persistence
    STATUS_TRANSITION_ERROR = "STATUS_TRANSITION_ERROR"
    COMPLETION_ERROR = "COMPLETION_ERROR"
    RUN_LEASE_EXPIRED = "RUN_LEASE_EXPIRED"
    # catch-all
    UNHANDLED = "UNHANDLED"


INPUT_ERRORS = frozenset({ErrorCode.NO_INPUTS, ErrorCode.INSUFFICIENT_COMPETITORS})
EVIDENCE_ERRORS = frozenset(
    {
        ErrorCode.INSUFFICIENT_EVIDENCE,
        ErrorCode.INSUFFICIENT_EVIDENCE_COVERAGE,
        ErrorCode.EVIDENCE_COLLECTION_ERROR,
    }
)
GENERATION_ERRORS = frozenset(
    {
        ErrorCode.VALIDATION_FAILED,
        ErrorCode.SNAPSHOT_VALIDATION_FAILED,
        ErrorCode.PROFILE_GENERATION_ERROR,
        ErrorCode.OPPORTUNITY_GENERATION_ERROR,
    }
)


class AnalysisError(Exception):
    """
    Failure raised inside the analysis pipeline.

    `message` is meant for end users and should say what to do next;
    `detail` carries diagnostics (validation errors, gate reasons).
    """

    def __init__(self, code: ErrorCode, message: str, detail: Optional[Any] = None) -> None:
        super().__init__(f"{code.value}: {message}")
        self.code = ErrorCode(code)
        self.message = message
        self.detail = detail

    def to_dict(self) -> dict:
        return {"code": self.code.value, "message": self.message}


class ArtifactAssemblyError(Exception):
    """Raised when persisted artifacts cannot be assembled into a decision model."""
