from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stratlens.db.schema import AnalysisRun
from stratlens.models.domain import RunRecord


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


_JSON_COLUMNS = {"output": "output_json", "metrics": "metrics_json"}


def _to_record(row: AnalysisRun) -> RunRecord:
    return RunRecord(
        id=row.id,
        project_id=row.project_id,
        input_version=row.input_version,
        pipeline_version=row.pipeline_version,
        idempotency_key=row.idempotency_key,
        status=row.status,
        attempt=row.attempt,
        created_at=row.created_at,
        updated_at=row.updated_at,
        started_at=row.started_at,
        finished_at=row.finished_at,
        heartbeat_at=row.heartbeat_at,
        error_code=row.error_code,
        error_message=row.error_message,
        error_detail=row.error_detail,
        output=json.loads(row.output_json) if row.output_json else None,
        metrics=json.loads(row.metrics_json) if row.metrics_json else {},
    )


class RunsRepo:
    """
    Repository for the `analysis_runs` table.

    Responsibility:
    - compare-and-create on the idempotency key
    - conditional status updates
    - fetch runs by id, key or project
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def insert_if_absent(
        self,
        project_id: str,
        input_version: int,
        pipeline_version: str,
        idempotency_key: str,
        now: Optional[datetime] = None,
    ) -> tuple[RunRecord, bool]:
        """
        Insert a queued run unless one already holds the key.
        Returns (run, created). A losing concurrent insert adopts the winner's row.
        """
        existing = self.get_by_key(idempotency_key)
        if existing is not None:
            return existing, False

        stamp = now or utcnow()
        row = AnalysisRun(
            project_id=project_id,
            input_version=input_version,
            pipeline_version=pipeline_version,
            idempotency_key=idempotency_key,
            status="queued",
            attempt=1,
            created_at=stamp,
            updated_at=stamp,
            heartbeat_at=stamp,
            metrics_json=json.dumps({"steps": []}),
        )
        self.session.add(row)
        try:
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            winner = self.get_by_key(idempotency_key)
            if winner is None:
                raise
            return winner, False
        return _to_record(row), True

    def get(self, run_id: str) -> Optional[RunRecord]:
        row = self.session.execute(select(AnalysisRun).where(AnalysisRun.id == run_id)).scalar_one_or_none()
        return _to_record(row) if row is not None else None

    def get_by_key(self, idempotency_key: str) -> Optional[RunRecord]:
        row = self.session.execute(
            select(AnalysisRun).where(AnalysisRun.idempotency_key == idempotency_key)
        ).scalar_one_or_none()
        return _to_record(row) if row is not None else None

    def latest_for_project(self, project_id: str) -> Optional[RunRecord]:
        row = (
            self.session.execute(
                select(AnalysisRun)
                .where(AnalysisRun.project_id == project_id)
                .order_by(AnalysisRun.created_at.desc())
                .limit(1)
            )
            .scalars()
            .first()
        )
        return _to_record(row) if row is not None else None

    def list_by_status(self, statuses: Iterable[str]) -> list[RunRecord]:
        rows = self.session.execute(
            select(AnalysisRun).where(AnalysisRun.status.in_(list(statuses))).order_by(AnalysisRun.created_at)
        ).scalars()
        return [_to_record(r) for r in rows]

    def update_where_status(
        self,
        run_id: str,
        allowed_from: Iterable[str],
        changes: dict[str, Any],
        now: Optional[datetime] = None,
        attempt: Optional[int] = None,
    ) -> Optional[RunRecord]:
        """
        Apply `changes` only while the row is still in one of `allowed_from`
        (and, when given, still on `attempt`).

        Returns the updated record, or None when another writer moved the row
        first. `output` and `metrics` are serialized to their JSON columns.
        """
        token = str(uuid4())
        values: dict[str, Any] = {"updated_at": now or utcnow(), "write_token": token}
        for key, value in changes.items():
            column = _JSON_COLUMNS.get(key)
            if column is not None:
                values[column] = json.dumps(value, sort_keys=True) if value is not None else None
            else:
                values[key] = value

        conditions = [AnalysisRun.id == run_id, AnalysisRun.status.in_(list(allowed_from))]
        if attempt is not None:
            conditions.append(AnalysisRun.attempt == attempt)

        self.session.execute(
            update(AnalysisRun)
            .where(*conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        self.session.commit()
        self.session.expire_all()

        row = self.session.get(AnalysisRun, run_id)
        if row is None or row.write_token != token:
            return None
        return _to_record(row)
