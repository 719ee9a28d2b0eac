"""
Run Tracker — tracks the stages of a single backup run.

Each stage is recorded with its status, timings and outcome. Together the
records form the stage ledger returned with the run record. Nothing is
persisted; the ledger lives as long as the run.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import asdict
from datetime import datetime, timezone

from features.runs.models import BackupRun, StageRecord, StageStatus

log = logging.getLogger(__name__)


class RunTracker:
    """Manages the stage ledger for a single backup run."""

    def __init__(self, run: BackupRun):
        self.run = run
        self.stages: list[StageRecord] = []
        self._active: dict[str, float] = {}  # stage id → start time
        self._created = time.monotonic()

    def create(self, name: str) -> StageRecord:
        """Create a new stage record and add it to the ledger."""
        stage = StageRecord(id=f"stage-{uuid.uuid4().hex[:8]}", name=name)
        self.stages.append(stage)
        log.debug("[RUN] %s created: %s", self.run.run_id, name)
        return stage

    def start(self, name: str) -> StageRecord:
        """Create a stage and mark it as running."""
        stage = self.create(name)
        stage.status = StageStatus.RUNNING
        stage.started_at = datetime.now(timezone.utc).isoformat()
        self._active[stage.id] = time.monotonic()
        log.info("[RUN] %s started: %s", self.run.run_id, name)
        return stage

    def complete(self, stage: StageRecord, output_summary: str = "", metadata: dict | None = None) -> None:
        stage.status = StageStatus.COMPLETED
        stage.output_summary = output_summary
        if metadata:
            stage.metadata.update(metadata)
        self._stop(stage)
        log.info("[RUN] %s completed: %s (%.2fs)", self.run.run_id, stage.name, stage.duration_sec or 0)

    def fail(self, stage: StageRecord, error: str) -> None:
        stage.status = StageStatus.FAILED
        stage.error = error
        self._stop(stage)
        log.error("[RUN] %s failed: %s: %s", self.run.run_id, stage.name, error)

    def skip(self, name: str, reason: str = "") -> StageRecord:
        """Record a stage that never ran."""
        stage = self.create(name)
        stage.status = StageStatus.SKIPPED
        stage.output_summary = reason
        log.info("[RUN] %s skipped: %s: %s", self.run.run_id, name, reason)
        return stage

    def _stop(self, stage: StageRecord) -> None:
        stage.completed_at = datetime.now(timezone.utc).isoformat()
        start = self._active.pop(stage.id, None)
        if start is not None:
            stage.duration_sec = round(time.monotonic() - start, 2)

    def to_list(self) -> list[dict]:
        out = []
        for s in self.stages:
            data = asdict(s)
            data["status"] = s.status.value
            out.append(data)
        return out

    def summary(self) -> dict:
        statuses: dict[str, int] = {}
        for s in self.stages:
            statuses[s.status.value] = statuses.get(s.status.value, 0) + 1
        return {
            "run_id": self.run.run_id,
            "total_stages": len(self.stages),
            "statuses": statuses,
            "total_duration_sec": round(sum(s.duration_sec or 0 for s in self.stages), 2),
        }

    def record(self) -> dict:
        """Export the run and its ledger as a JSON-serialisable dict."""
        run = self.run
        completed_at = datetime.now(timezone.utc)
        return {
            "run_id": run.run_id,
            "phase": run.phase.value,
            "started_at": run.started_at.isoformat(),
            "completed_at": completed_at.isoformat(),
            "duration_sec": round(time.monotonic() - self._created, 2),
            "server_archive": str(run.server_archive_path),
            "database_dump": str(run.db_dump_path),
            "error": run.error,
            "dump_error": run.dump_error,
            "phases": [phase.value for phase, _ in run.history],
            "stages": self.to_list(),
            "stage_summary": self.summary(),
        }
