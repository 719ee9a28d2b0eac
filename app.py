"""
FastAPI application — REST API for Backup Pilot.

Endpoints:
  POST /backup/run        — Trigger a manual backup (requires X-Backup-Token)
  POST /backup/cancel     — Cancel the in-process run (requires X-Backup-Token)
  GET  /backup/status     — Current phase and the last run record
  GET  /backup/artifacts  — Artifacts on disk, newest first per category
  GET  /health            — Health check

Usage:
    python app.py        (or the `backup-pilot-api` script)
"""

from __future__ import annotations

import asyncio
import hmac
import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import uvicorn
from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Header, HTTPException
from pydantic import BaseModel
from temporalio.client import Client

import config
from activities.retention import collect_retention_set
from features.notify import build_sink
from models.errors import RetentionError
from workflows.backup import BackupWorkflow, run_bound
from workflows.orchestrator import BackupOrchestrator

load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    datefmt="%H:%M:%S",
)
log = logging.getLogger(__name__)

temporal_client: Client | None = None
_orchestrator: BackupOrchestrator | None = None
_background: set[asyncio.Task] = set()


@asynccontextmanager
async def lifespan(app: FastAPI):
    global temporal_client
    if config.TEMPORAL_ENABLED:
        try:
            temporal_client = await Client.connect(config.TEMPORAL_HOST, namespace=config.TEMPORAL_NAMESPACE)
            log.info("Connected to Temporal at %s", config.TEMPORAL_HOST)
        except Exception as e:
            log.warning("Could not connect to Temporal: %s (backups will run in-process)", e)
            temporal_client = None
    yield
    for task in list(_background):
        task.cancel()


app = FastAPI(
    title="Backup Pilot",
    description="Scheduled filesystem and database backups with progress notifications",
    version="1.0.0",
    lifespan=lifespan,
)


def get_orchestrator() -> BackupOrchestrator:
    """In-process orchestrator, built on first use from the environment."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = BackupOrchestrator(config.load_backup_config(), build_sink())
    return _orchestrator


def caller_has_permission(x_backup_token: str | None = Header(default=None)) -> bool:
    expected = config.BACKUP_TRIGGER_TOKEN
    if not expected or not x_backup_token:
        return False
    return hmac.compare_digest(x_backup_token.encode(), expected.encode())


class BackupRunResponse(BaseModel):
    run_id: str
    status: str
    message: str


class ArtifactEntry(BaseModel):
    name: str
    size_bytes: int
    modified_at: datetime


# ── Health ────────────────────────────────────────────────────────────

@app.get("/health")
def health():
    return {
        "status": "ok",
        "service": "backup-pilot",
        "temporal_connected": temporal_client is not None,
    }


# ── Backups ───────────────────────────────────────────────────────────

@app.post("/backup/run", response_model=BackupRunResponse, status_code=202)
async def run_backup_now(
    permitted: bool = Depends(caller_has_permission),
    orchestrator: BackupOrchestrator = Depends(get_orchestrator),
):
    """Start a manual backup."""
    if not permitted:
        await orchestrator.request_manual_run(False)
        raise HTTPException(status_code=403, detail="You do not have the required role to use this command.")
    # A queued background run counts as in progress before it takes the run lock.
    if orchestrator.is_running or _background:
        raise HTTPException(status_code=409, detail="A backup is already in progress.")

    run_id = f"backup-manual-{datetime.now(timezone.utc).strftime('%Y%m%d-%H%M%S')}"
    if temporal_client:
        await temporal_client.start_workflow(
            BackupWorkflow.run,
            args=["manual", run_bound(orchestrator.config).total_seconds()],
            id=run_id,
            task_queue=config.TEMPORAL_TASK_QUEUE,
        )
        return BackupRunResponse(run_id=run_id, status="started",
                                 message=f"Backup started via Temporal. Workflow ID: {run_id}")

    task = asyncio.create_task(orchestrator.request_manual_run(True))
    _background.add(task)
    task.add_done_callback(_background.discard)
    return BackupRunResponse(run_id=run_id, status="started", message="Backup started in-process (no Temporal).")


@app.post("/backup/cancel")
async def cancel_backup(
    permitted: bool = Depends(caller_has_permission),
    orchestrator: BackupOrchestrator = Depends(get_orchestrator),
):
    """Cancel the in-process run, if any."""
    if not permitted:
        raise HTTPException(status_code=403, detail="You do not have the required role to use this command.")
    if not orchestrator.cancel():
        raise HTTPException(status_code=409, detail="No backup is in progress.")
    return {"status": "cancelling"}


@app.get("/backup/status")
async def backup_status(orchestrator: BackupOrchestrator = Depends(get_orchestrator)):
    current = orchestrator.current_run
    return {
        "running": orchestrator.is_running,
        "current_run_id": current.run_id if current else None,
        "phase": current.phase.value if current else None,
        "last_run": orchestrator.last_record,
    }


@app.get("/backup/artifacts", response_model=dict[str, list[ArtifactEntry]])
async def list_artifacts(orchestrator: BackupOrchestrator = Depends(get_orchestrator)):
    """List artifacts per category, newest first."""
    cfg = orchestrator.config
    if not cfg.backup_dir.is_dir():
        return {prefix: [] for prefix in cfg.categories}
    try:
        groups = collect_retention_set(cfg.backup_dir, cfg.categories)
    except RetentionError as e:
        raise HTTPException(status_code=500, detail=str(e))

    result: dict[str, list[ArtifactEntry]] = {}
    for prefix, paths in groups.items():
        entries = []
        for path in paths:
            try:
                st = path.stat()
            except FileNotFoundError:
                continue
            entries.append(ArtifactEntry(
                name=path.name,
                size_bytes=st.st_size,
                modified_at=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
            ))
        result[prefix] = entries
    return result


def main() -> int:
    """Serve the API with uvicorn on API_HOST:API_PORT."""
    server = uvicorn.Server(uvicorn.Config(app, host=config.API_HOST, port=config.API_PORT, log_level="info"))
    server.run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
