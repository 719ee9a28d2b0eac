"""
Runs feature — the state of one backup invocation and its stage ledger.

Public API:
    from features.runs import BackupRun, RunPhase, RunTracker
"""

from features.runs.models import BackupRun, RunPhase, StageRecord, StageStatus
from features.runs.tracker import RunTracker

__all__ = ["BackupRun", "RunPhase", "RunTracker", "StageRecord", "StageStatus"]
