"""
Backup Orchestrator — sequences one backup run:

  1. Archive the source tree          (failure halts the run)
  2. Dump the database                (failure is reported, run continues
                                       unless halt_on_dump_failure is set)
  3. Post the completion summary
  4. Prune old artifacts              (per-file failures are reported only)

At most one run is in flight per orchestrator, and runs sharing a backup
directory are serialised across orchestrators.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator, Callable

import config
from activities.archive import ArchiveStage, build_archive_stage
from activities.dump import DumpStage, build_dump_stage
from activities.retention import RetentionManager
from config import BackupConfig
from features.notify import ProgressReporter, send_log
from features.notify.sink import NotificationSink
from features.runs import BackupRun, RunPhase, RunTracker
from models.errors import (
    ArchiveProcessError,
    BackupCancelledError,
    BackupInProgressError,
    DumpConnectionError,
    DumpProcessError,
    RetentionError,
)
from models.schemas import SUCCESS_COLOR, WARNING_COLOR, ArtifactInfo, SummaryEmbed, SummaryField

log = logging.getLogger(__name__)

_directory_locks: dict[Path, asyncio.Lock] = {}


@contextlib.asynccontextmanager
async def directory_lock(path: Path) -> AsyncIterator[None]:
    """Single-writer discipline per backup directory."""
    key = Path(path).resolve()
    lock = _directory_locks.setdefault(key, asyncio.Lock())
    async with lock:
        yield


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def build_summary(run: BackupRun) -> SummaryEmbed:
    server = ArtifactInfo.inspect(run.server_archive_path)
    database = ArtifactInfo.inspect(run.db_dump_path)
    return SummaryEmbed(
        title="Backup Completed",
        fields=[
            SummaryField(name="Server Backup", value=server.describe()),
            SummaryField(name="Database Backup", value=database.describe()),
        ],
        timestamp=_utcnow(),
        color=WARNING_COLOR if run.dump_error else SUCCESS_COLOR,
    )


class BackupOrchestrator:
    """Top-level state machine for backup runs."""

    def __init__(
        self,
        cfg: BackupConfig,
        sink: NotificationSink,
        *,
        archive_stage: ArchiveStage | None = None,
        dump_stage: DumpStage | None = None,
        retention: RetentionManager | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.config = cfg
        self._sink = sink
        self._archive = archive_stage or build_archive_stage(cfg, sink)
        self._dump = dump_stage or build_dump_stage(cfg)
        self._retention = retention or RetentionManager()
        self._clock = clock
        self._run_lock = asyncio.Lock()
        self._cancel: asyncio.Event | None = None
        self.current_run: BackupRun | None = None
        self.last_record: dict | None = None

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    def cancel(self) -> bool:
        """Signal the run in progress to stop. Returns False when idle."""
        if self._cancel is None:
            return False
        self._cancel.set()
        return True

    # ── Triggers ──────────────────────────────────────────────────────

    async def request_manual_run(self, caller_has_permission: bool) -> dict | None:
        """Run on behalf of a human; only when the caller is permitted."""
        if not caller_has_permission:
            await send_log(self._sink, "You do not have the required role to use this command.")
            return None
        if self.is_running:
            await send_log(self._sink, "A backup is already in progress.")
            return None
        await send_log(self._sink, "Backup process started manually.")
        try:
            return await self.run()
        except BackupInProgressError:
            await send_log(self._sink, "A backup is already in progress.")
            return None

    async def run_scheduled(self) -> dict | None:
        """Run on behalf of the scheduler; skipped if a run is in flight."""
        try:
            return await self.run()
        except BackupInProgressError:
            log.info("Scheduled backup skipped: a run is already in progress")
            await send_log(self._sink, "Scheduled backup skipped: a backup is already in progress.")
            return None

    # ── Pipeline ──────────────────────────────────────────────────────

    async def run(self, cancel: asyncio.Event | None = None) -> dict:
        """
        Execute one full backup run and return its run record.

        Raises BackupInProgressError if a run is already going. Task
        cancellation marks the run cancelled and propagates.
        """
        if self.is_running:
            raise BackupInProgressError("A backup is already in progress")
        async with self._run_lock:
            self._cancel = cancel or asyncio.Event()
            try:
                self.config.backup_dir.mkdir(parents=True, exist_ok=True)
                async with directory_lock(self.config.backup_dir):
                    record = await self._execute(self._cancel)
            finally:
                self._cancel = None
                self.current_run = None
        self.last_record = record
        return record

    async def _execute(self, cancel: asyncio.Event) -> dict:
        cfg = self.config
        run = BackupRun.create(cfg.backup_dir, self._clock())
        tracker = RunTracker(run)
        reporter = ProgressReporter(self._sink)
        self.current_run = run
        log.info("Backup %s starting (source=%s)", run.run_id, cfg.source_dir)

        # ━━ Step 1: Archive ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
        run.transition(RunPhase.ARCHIVING_FILES)
        await reporter.report(0, "Server backup started...")
        stage = tracker.start("archive")
        try:
            await self._archive.run(cfg.source_dir, run.server_archive_path, reporter, cancel=cancel)
        except ArchiveProcessError as e:
            tracker.fail(stage, str(e))
            run.error = str(e)
            run.transition(RunPhase.ARCHIVE_FAILED)
            await send_log(self._sink, str(e))
            tracker.skip("dump", "archive failed")
            tracker.skip("retention", "archive failed")
            return tracker.record()
        except (BackupCancelledError, asyncio.CancelledError) as e:
            return await self._cancelled(run, tracker, stage, e)
        tracker.complete(stage, output_summary=run.server_archive_path.name,
                         metadata={"size_bytes": ArtifactInfo.inspect(run.server_archive_path).size_bytes})

        # ━━ Step 2: Dump ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
        await reporter.report(config.ARCHIVE_CHECKPOINT, "Server backup completed. Starting database backup...")
        run.transition(RunPhase.DUMPING_DATABASE)
        stage = tracker.start("dump")
        try:
            await self._dump.run(cfg.database, run.db_dump_path, reporter, cancel=cancel)
        except (DumpConnectionError, DumpProcessError) as e:
            tracker.fail(stage, str(e))
            run.dump_error = str(e)
            run.transition(RunPhase.DUMP_FAILED)
            await send_log(self._sink, str(e))
            if cfg.halt_on_dump_failure:
                run.error = str(e)
                tracker.skip("retention", "dump failed")
                return tracker.record()
        except (BackupCancelledError, asyncio.CancelledError) as e:
            return await self._cancelled(run, tracker, stage, e)
        else:
            tracker.complete(stage, output_summary=run.db_dump_path.name,
                             metadata={"size_bytes": ArtifactInfo.inspect(run.db_dump_path).size_bytes})

        # ━━ Step 3: Summary ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
        run.transition(RunPhase.COMPLETED)
        stage = tracker.start("summary")
        message = (
            "Backup process completed with errors." if run.dump_error
            else "Backup process completed successfully."
        )
        await reporter.report(1.0, "Backup completed.")
        await send_log(self._sink, message, build_summary(run))
        tracker.complete(stage, output_summary=message)

        # ━━ Step 4: Retention ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
        stage = tracker.start("retention")
        record_extra: dict = {}
        try:
            summary = await asyncio.to_thread(
                self._retention.prune, cfg.backup_dir, cfg.categories, cfg.keep_count,
            )
        except RetentionError as e:
            tracker.fail(stage, str(e))
            await send_log(self._sink, str(e))
        else:
            for name, error in summary.failed.items():
                await send_log(self._sink, f"Error cleaning old backups: {name}: {error}")
            tracker.complete(stage, output_summary=f"{len(summary.removed)} removed, {len(summary.failed)} failed",
                             metadata={"removed": summary.removed})
            record_extra["retention"] = summary.to_dict()

        log.info("Backup %s finished: %s", run.run_id, run.phase.value)
        return {**tracker.record(), **record_extra}

    async def _cancelled(self, run: BackupRun, tracker: RunTracker, stage, exc: BaseException) -> dict:
        tracker.fail(stage, "cancelled")
        run.error = "cancelled"
        run.transition(RunPhase.CANCELLED)
        await send_log(self._sink, "Backup cancelled.")
        if isinstance(exc, asyncio.CancelledError):
            raise exc
        return tracker.record()
