"""
Temporal Worker — registers the backup workflow and activity, makes sure the
cron-scheduled backup workflow exists, then polls for tasks.

Usage:
    python worker.py
"""

from __future__ import annotations

import asyncio
import logging

from temporalio.client import Client
from temporalio.exceptions import WorkflowAlreadyStartedError
from temporalio.worker import Worker

import config
from activities.backup import get_orchestrator, run_backup
from workflows.backup import BackupWorkflow, run_bound

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    datefmt="%H:%M:%S",
)
log = logging.getLogger(__name__)


async def ensure_schedule(client: Client) -> None:
    """Start the cron workflow unless it is already running."""
    bound = run_bound(get_orchestrator().config)
    try:
        await client.start_workflow(
            BackupWorkflow.run,
            args=["scheduled", bound.total_seconds()],
            id=config.SCHEDULED_WORKFLOW_ID,
            task_queue=config.TEMPORAL_TASK_QUEUE,
            cron_schedule=config.BACKUP_CRON,
        )
        log.info("Scheduled backups every '%s'", config.BACKUP_CRON)
    except WorkflowAlreadyStartedError:
        log.info("Backup schedule already registered (%s)", config.SCHEDULED_WORKFLOW_ID)


async def main():
    # Fail fast on a bad configuration before touching Temporal.
    get_orchestrator()

    log.info("Connecting to Temporal at %s", config.TEMPORAL_HOST)
    client = await Client.connect(config.TEMPORAL_HOST, namespace=config.TEMPORAL_NAMESPACE)
    await ensure_schedule(client)

    log.info("Starting worker on queue: %s", config.TEMPORAL_TASK_QUEUE)
    worker = Worker(
        client,
        task_queue=config.TEMPORAL_TASK_QUEUE,
        workflows=[BackupWorkflow],
        activities=[run_backup],
    )

    log.info("Worker ready — listening for tasks")
    await worker.run()


if __name__ == "__main__":
    asyncio.run(main())
