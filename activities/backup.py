"""
Activity: Run Backup — the Temporal entry point into the orchestrator.

One orchestrator is kept per worker process so its run lock covers every
backup activity the worker executes.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging

from temporalio import activity

import config
from features.notify import build_sink
from workflows.orchestrator import BackupOrchestrator

log = logging.getLogger(__name__)

HEARTBEAT_INTERVAL = 30  # seconds

_orchestrator: BackupOrchestrator | None = None


def get_orchestrator() -> BackupOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = BackupOrchestrator(config.load_backup_config(), build_sink())
    return _orchestrator


async def _heartbeat_loop() -> None:
    while True:
        activity.heartbeat()
        await asyncio.sleep(HEARTBEAT_INTERVAL)


@activity.defn(name="run_backup")
async def run_backup(trigger: str = "scheduled") -> dict:
    """Run one backup. `trigger` is "scheduled" or "manual"."""
    orchestrator = get_orchestrator()
    log.info("Backup activity started (trigger=%s)", trigger)
    heartbeat = asyncio.create_task(_heartbeat_loop())
    try:
        if trigger == "manual":
            record = await orchestrator.request_manual_run(True)
        else:
            record = await orchestrator.run_scheduled()
    finally:
        heartbeat.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await heartbeat
    return record or {"status": "skipped", "reason": "a backup is already in progress"}
