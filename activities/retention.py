"""
Activity: Retention — keeps the newest N artifacts per category and removes the rest.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Iterable

from models.errors import RetentionError
from models.schemas import RetentionSummary

log = logging.getLogger(__name__)

# <prefix><timestamp ending in Z>[-<collision counter>]<extension>
_ARTIFACT_NAME = re.compile(r"^(?P<stem>.*Z)(?:-(?P<counter>\d+))?(?P<ext>\..*)$")


def _mtime(path: Path) -> float:
    try:
        return path.stat().st_mtime
    except FileNotFoundError:
        return 0.0


def _sort_key(path: Path) -> tuple[float, str, int]:
    match = _ARTIFACT_NAME.match(path.name)
    if match is None:
        return _mtime(path), path.name, 0
    return _mtime(path), match["stem"], int(match["counter"] or 0)


def collect_retention_set(backup_dir: Path, prefixes: Iterable[str]) -> dict[str, list[Path]]:
    """
    Partition the artifacts in `backup_dir` by category prefix, newest first.

    Ordering is by modification time, ties broken by the run timestamp in
    the name and then by its collision counter. Raises RetentionError if
    the directory cannot be listed.
    """
    backup_dir = Path(backup_dir)
    try:
        entries = [p for p in backup_dir.iterdir() if p.is_file()]
    except OSError as e:
        raise RetentionError(f"Error cleaning old backups: {e}", str(backup_dir)) from e

    result: dict[str, list[Path]] = {}
    for prefix in prefixes:
        matching = [p for p in entries if p.name.startswith(prefix)]
        matching.sort(key=_sort_key, reverse=True)
        result[prefix] = matching
    return result


class RetentionManager:
    """Prune old artifacts, continuing past individual deletion failures."""

    def prune(self, backup_dir: Path, prefixes: Iterable[str], keep_count: int) -> RetentionSummary:
        if keep_count < 0:
            raise ValueError(f"keep_count must be >= 0, got {keep_count}")

        summary = RetentionSummary()
        for prefix, files in collect_retention_set(backup_dir, prefixes).items():
            summary.kept[prefix] = [p.name for p in files[:keep_count]]
            for path in files[keep_count:]:
                try:
                    path.unlink()
                except FileNotFoundError:
                    summary.removed.append(path.name)
                except OSError as e:
                    log.warning("Could not remove %s: %s", path, e)
                    summary.failed[path.name] = str(e)
                else:
                    log.info("Removed old backup: %s", path.name)
                    summary.removed.append(path.name)
        return summary
