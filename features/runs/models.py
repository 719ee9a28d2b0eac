"""
Data models for the runs feature.

BackupRun is one invocation of the pipeline; StageRecord is a discrete,
timed unit of work inside it.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

import config
from models.errors import InvalidTransitionError


class RunPhase(str, Enum):
    IDLE = "idle"
    ARCHIVING_FILES = "archiving_files"
    ARCHIVE_FAILED = "archive_failed"
    DUMPING_DATABASE = "dumping_database"
    DUMP_FAILED = "dump_failed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# DUMP_FAILED -> COMPLETED is the continue-after-dump-failure policy.
TRANSITIONS: dict[RunPhase, frozenset[RunPhase]] = {
    RunPhase.IDLE: frozenset({RunPhase.ARCHIVING_FILES}),
    RunPhase.ARCHIVING_FILES: frozenset({RunPhase.ARCHIVE_FAILED, RunPhase.DUMPING_DATABASE, RunPhase.CANCELLED}),
    RunPhase.DUMPING_DATABASE: frozenset({RunPhase.DUMP_FAILED, RunPhase.COMPLETED, RunPhase.CANCELLED}),
    RunPhase.DUMP_FAILED: frozenset({RunPhase.COMPLETED, RunPhase.CANCELLED}),
    RunPhase.ARCHIVE_FAILED: frozenset(),
    RunPhase.COMPLETED: frozenset(),
    RunPhase.CANCELLED: frozenset(),
}


class StageStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class StageRecord:
    """A single tracked stage of a backup run."""
    id: str
    name: str
    status: StageStatus = StageStatus.PENDING
    started_at: str | None = None
    completed_at: str | None = None
    duration_sec: float | None = None
    output_summary: str = ""
    error: str | None = None
    metadata: dict = field(default_factory=dict)


def artifact_timestamp(moment: datetime) -> str:
    """ISO-8601 UTC with milliseconds and `:` replaced by `-`."""
    moment = moment.astimezone(timezone.utc)
    iso = f"{moment:%Y-%m-%dT%H:%M:%S}.{moment.microsecond // 1000:03d}Z"
    return iso.replace(":", "-")


def new_run_id(moment: datetime) -> str:
    return f"backup-{moment.astimezone(timezone.utc):%Y%m%d-%H%M%S}-{uuid.uuid4().hex[:6]}"


@dataclass
class BackupRun:
    """One invocation of the backup pipeline. Never persisted."""
    run_id: str
    started_at: datetime
    server_archive_path: Path
    db_dump_path: Path
    phase: RunPhase = RunPhase.IDLE
    error: str | None = None
    dump_error: str | None = None
    history: list[tuple[RunPhase, datetime]] = field(default_factory=list)

    @classmethod
    def create(cls, backup_dir: Path, started_at: datetime) -> "BackupRun":
        """Derive artifact paths from `started_at`, adding a counter on collision."""
        stamp = artifact_timestamp(started_at)
        for counter in range(0, 10_000):
            suffix = f"-{counter}" if counter else ""
            server = backup_dir / f"{config.SERVER_PREFIX}{stamp}{suffix}.tar.gz"
            database = backup_dir / f"{config.DATABASE_PREFIX}{stamp}{suffix}.sql"
            if not server.exists() and not database.exists():
                break
        else:
            raise FileExistsError(f"No free artifact name for {stamp} in {backup_dir}")
        run = cls(
            run_id=new_run_id(started_at),
            started_at=started_at,
            server_archive_path=server,
            db_dump_path=database,
        )
        run.history.append((RunPhase.IDLE, started_at))
        return run

    @property
    def is_terminal(self) -> bool:
        return not TRANSITIONS[self.phase]

    def transition(self, phase: RunPhase) -> None:
        if phase not in TRANSITIONS[self.phase]:
            raise InvalidTransitionError(f"Cannot move run {self.run_id} from {self.phase.value} to {phase.value}")
        self.phase = phase
        self.history.append((phase, datetime.now(timezone.utc)))

    def entered(self, phase: RunPhase) -> bool:
        return any(p is phase for p, _ in self.history)
