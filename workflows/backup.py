"""
Temporal Workflow: Backup

Runs the backup activity once per trigger. Scheduling is done by starting
this workflow with a cron schedule; manual runs start it ad hoc.
"""

from __future__ import annotations

from datetime import timedelta

from temporalio import workflow
from temporalio.common import RetryPolicy

with workflow.unsafe.imports_passed_through():
    from activities.backup import HEARTBEAT_INTERVAL, run_backup
    import config

# Upper bound for a run when no process time boxes are configured.
DEFAULT_RUN_BOUND = timedelta(hours=12)


def run_bound(cfg: config.BackupConfig | None = None) -> timedelta:
    """Start-to-close bound for the backup activity."""
    if cfg is None or cfg.archive_timeout is None or cfg.dump_timeout is None:
        return DEFAULT_RUN_BOUND
    return timedelta(seconds=cfg.archive_timeout + cfg.dump_timeout) + timedelta(minutes=10)


@workflow.defn
class BackupWorkflow:
    """Temporal workflow wrapping one backup run."""

    @workflow.run
    async def run(self, trigger: str = "scheduled", bound_sec: float | None = None) -> dict:
        bound = timedelta(seconds=bound_sec) if bound_sec else DEFAULT_RUN_BOUND
        workflow.logger.info("Backup workflow starting (trigger=%s)", trigger)
        return await workflow.execute_activity(
            run_backup,
            trigger,
            start_to_close_timeout=bound,
            heartbeat_timeout=timedelta(seconds=HEARTBEAT_INTERVAL * 4),
            retry_policy=RetryPolicy(maximum_attempts=1),
        )
