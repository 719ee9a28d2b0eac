"""
Activity: Archive Stage — tars the source tree and polls the archive's growth
against the estimated source size to report progress.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from pathlib import Path
from typing import Callable

import config
from features.notify import ProgressReporter, send_log
from features.notify.sink import NotificationSink
from models.errors import ArchiveProcessError, ProcessTimeoutError, SizeEstimationError
from utils.dir_size import estimate_size
from utils.process import spawn, wait_process

log = logging.getLogger(__name__)


def compute_progress(current_size: int, total_size: int) -> float:
    """Fraction of the source already written, capped at 1.0."""
    if total_size <= 0:
        return 1.0 if current_size > 0 else 0.0
    return min(current_size / total_size, 1.0)


class ArchiveStage:
    """Create `server_backup_*.tar.gz` from the source directory."""

    def __init__(
        self,
        sink: NotificationSink,
        *,
        poll_interval: float = 10.0,
        timeout: float | None = None,
        estimator: Callable[..., int] = estimate_size,
        tar_binary: str = "tar",
    ):
        self._sink = sink
        self.poll_interval = poll_interval
        self.timeout = timeout
        self._estimator = estimator
        self.tar_binary = tar_binary

    @staticmethod
    def excluded_path(source_dir: Path, dest: Path) -> Path | None:
        """Path, relative to the source, that must stay out of the archive."""
        try:
            inside = dest.resolve().relative_to(Path(source_dir).resolve())
        except ValueError:
            return None
        # Never archive the backup directory into itself.
        return inside.parent if inside.parent.parts else inside

    def build_command(self, source_dir: Path, dest: Path) -> list[str]:
        argv = [self.tar_binary, "-czf", str(dest)]
        excluded = self.excluded_path(source_dir, dest)
        if excluded is not None:
            argv.append(f"--exclude=./{excluded.as_posix()}")
        argv.append(".")
        return argv

    async def run(
        self,
        source_dir: Path,
        dest: Path,
        reporter: ProgressReporter,
        *,
        cancel: asyncio.Event | None = None,
    ) -> None:
        """
        Run the archive process to completion.

        Raises ArchiveProcessError when the process cannot start, outlives the
        time box, or exits nonzero. Cancellation (token or task) terminates the
        process and propagates.
        """
        dest.parent.mkdir(parents=True, exist_ok=True)
        argv = self.build_command(source_dir, dest)
        try:
            proc = await spawn(argv, cwd=source_dir)
        except OSError as e:
            raise ArchiveProcessError(f"Server backup process error: {e}") from e

        poller = asyncio.create_task(self._poll(proc, source_dir, dest, reporter))
        try:
            exit_code = await wait_process(proc, name="Server backup process", timeout=self.timeout, cancel=cancel)
        except ProcessTimeoutError as e:
            raise ArchiveProcessError(f"Server backup process error: {e}") from e
        finally:
            poller.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await poller

        if exit_code != 0:
            raise ArchiveProcessError(f"Server backup process exited with code {exit_code}", exit_code)
        log.info("Archive written: %s", dest)

    async def _poll(
        self,
        proc: asyncio.subprocess.Process,
        source_dir: Path,
        dest: Path,
        reporter: ProgressReporter,
    ) -> None:
        """Report archive progress every poll interval while the process is alive."""
        excluded = self.excluded_path(source_dir, dest)
        while proc.returncode is None:
            await asyncio.sleep(self.poll_interval)
            if proc.returncode is not None:
                return
            try:
                if not dest.exists():
                    continue
                current = dest.stat().st_size
                total = await asyncio.to_thread(self._estimator, source_dir, excluded)
            except (SizeEstimationError, OSError) as e:
                # The archive keeps running; only progress reporting stops.
                log.warning("Progress polling stopped: %s", e)
                await send_log(self._sink, f"Error tracking server backup progress: {e}")
                return
            await reporter.report(compute_progress(current, total), "Server backup in progress...")


def build_archive_stage(cfg: config.BackupConfig, sink: NotificationSink) -> ArchiveStage:
    return ArchiveStage(sink, poll_interval=cfg.poll_interval, timeout=cfg.archive_timeout)
