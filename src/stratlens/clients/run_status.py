"""HTTP client for polling run status."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Optional

import httpx

TERMINAL = ("succeeded", "failed")


@dataclass(frozen=True)
class RunStatus:
    run_id: str
    status: str
    progress: Optional[int] = None
    updated_at: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL


class RunStatusClient:
    """
    Polls GET /api/runs/{id}/status.

    A 404 is read as `queued`: right after creation the row may not be
    visible to the read path yet.
    """

    def __init__(
        self,
        base_url: str,
        client: Optional[httpx.Client] = None,
        timeout_s: float = 10.0,
        sleep_fn: Callable[[float], None] = time.sleep,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.Client(timeout=timeout_s)
        self._sleep = sleep_fn

    def get_status(self, run_id: str) -> RunStatus:
        resp = self._client.get(f"{self.base_url}/api/runs/{run_id}/status")
        if resp.status_code == 404:
            return RunStatus(run_id=run_id, status="queued")
        resp.raise_for_status()
        data = resp.json()
        return RunStatus(
            run_id=data.get("runId", run_id),
            status=data["status"],
            progress=data.get("progress"),
            updated_at=data.get("updatedAt"),
            error_message=data.get("errorMessage"),
        )

    def wait_for_terminal(self, run_id: str, interval_s: float = 2.0, max_polls: int = 300) -> RunStatus:
        """Poll until succeeded/failed; raises TimeoutError after max_polls."""
        for _ in range(max_polls):
            status = self.get_status(run_id)
            if status.is_terminal:
                return status
            self._sleep(interval_s)
        raise TimeoutError(f"run {run_id} did not finish after {max_polls} polls")
