from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from typing import Any, Optional

RUN_STATUSES = ("queued", "running", "succeeded", "failed")
TERMINAL_STATUSES = ("succeeded", "failed")

STEP_NAMES = (
    "validate_inputs",
    "collect_evidence",
    "competitor_profiles",
    "generate_opportunities",
    "save_artifacts",
)
STEP_STATUSES = ("started", "done", "failed")


@dataclass(frozen=True)
class StepEntry:
    name: str
    status: str
    started_at: str
    finished_at: str | None = None
    error: dict | None = None
    skipped: bool = False

    def to_dict(self) -> dict:
        out: dict[str, Any] = {
            "name": self.name,
            "status": self.status,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
        }
        if self.error is not None:
            out["error"] = self.error
        if self.skipped:
            out["skipped"] = True
        return out

    @classmethod
    def from_dict(cls, data: dict) -> "StepEntry":
        return cls(
            name=data["name"],
            status=data["status"],
            started_at=data.get("started_at") or "",
            finished_at=data.get("finished_at"),
            error=data.get("error"),
            skipped=bool(data.get("skipped", False)),
        )


@dataclass(frozen=True)
class StepLog:
    """
    One slot per pipeline step. Slots only move forward:
    empty -> started -> done | failed. A finished slot is never rewritten.
    """

    validate_inputs: Optional[StepEntry] = None
    collect_evidence: Optional[StepEntry] = None
    competitor_profiles: Optional[StepEntry] = None
    generate_opportunities: Optional[StepEntry] = None
    save_artifacts: Optional[StepEntry] = None

    def get(self, name: str) -> Optional[StepEntry]:
        _check_step_name(name)
        return getattr(self, name)

    def started(self, name: str, at: str) -> "StepLog":
        if self.get(name) is not None:
            raise ValueError(f"step {name} already recorded")
        return replace(self, **{name: StepEntry(name=name, status="started", started_at=at)})

    def finished(self, name: str, at: str, *, skipped: bool = False) -> "StepLog":
        entry = self._open_entry(name)
        return replace(self, **{name: replace(entry, status="done", finished_at=at, skipped=skipped)})

    def failed(self, name: str, at: str, error: dict) -> "StepLog":
        entry = self._open_entry(name)
        return replace(self, **{name: replace(entry, status="failed", finished_at=at, error=error)})

    def _open_entry(self, name: str) -> StepEntry:
        entry = self.get(name)
        if entry is None or entry.status != "started":
            raise ValueError(f"step {name} is not in progress")
        return entry

    def entries(self) -> list[StepEntry]:
        return [e for e in (getattr(self, f.name) for f in fields(self)) if e is not None]

    def done_count(self) -> int:
        return sum(1 for e in self.entries() if e.status == "done")

    def to_list(self) -> list[dict]:
        return [e.to_dict() for e in self.entries()]

    @classmethod
    def from_list(cls, items: list[dict] | None) -> "StepLog":
        slots: dict[str, StepEntry] = {}
        for item in items or []:
            entry = StepEntry.from_dict(item)
            _check_step_name(entry.name)
            slots[entry.name] = entry
        return cls(**slots)


def _check_step_name(name: str) -> None:
    if name not in STEP_NAMES:
        raise ValueError(f"unknown step: {name}")


@dataclass(frozen=True)
class RunRecord:
    id: str
    project_id: str
    input_version: int
    pipeline_version: str
    idempotency_key: str
    status: str
    attempt: int
    created_at: datetime
    updated_at: datetime
    started_at: datetime | None
    finished_at: datetime | None
    heartbeat_at: datetime | None
    error_code: str | None
    error_message: str | None
    error_detail: str | None
    output: dict | None
    metrics: dict = field(default_factory=dict)

    @property
    def steps(self) -> StepLog:
        return StepLog.from_list(self.metrics.get("steps"))

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass(frozen=True)
class EvidenceRow:
    id: str
    project_id: str
    competitor_id: str | None
    url: str
    domain: str | None
    source_type: str
    page_title: str | None
    extracted_text: str | None
    extracted_at: datetime
    published_at: datetime | None
    source_confidence: float | None


@dataclass(frozen=True)
class CompetitorRow:
    id: str
    project_id: str
    name: str
    url: str | None
    notes: str | None
    evidence_text: str | None


@dataclass(frozen=True)
class ProjectInputRow:
    project_id: str
    version: int
    content: dict
    created_at: datetime
