"""
Directory sizing — the denominator for archive progress.
"""

from __future__ import annotations

import logging
import os
import stat
from pathlib import Path

from models.errors import SizeEstimationError

log = logging.getLogger(__name__)


def estimate_size(path: Path | str, exclude: Path | str | None = None) -> int:
    """
    Recursively sum the byte size of every regular file under `path`.

    Symlinks are not followed. Files that vanish between listing and stat
    are skipped, so a tree that changes while it is scanned yields an
    approximate total rather than an error. An unreadable directory raises
    SizeEstimationError.

    `exclude` is a file or directory, relative to `path`, left out of the
    total the same way the archive command skips it.
    """
    root = Path(path)
    if not root.is_dir():
        raise SizeEstimationError(f"Source directory does not exist: {root}")

    def _on_error(exc: OSError) -> None:
        if isinstance(exc, FileNotFoundError):
            return
        raise SizeEstimationError(f"Failed to calculate folder size: {exc}") from exc

    total = 0
    top = os.path.normpath(root)
    skip = os.path.normpath(os.path.join(top, exclude)) if exclude is not None else None
    for dirpath, dirnames, filenames in os.walk(top, onerror=_on_error):
        if skip is not None:
            dirnames[:] = [d for d in dirnames if os.path.join(dirpath, d) != skip]
        for name in filenames:
            if os.path.join(dirpath, name) == skip:
                continue
            try:
                st = os.lstat(os.path.join(dirpath, name))
            except FileNotFoundError:
                continue
            except OSError as exc:
                raise SizeEstimationError(f"Failed to calculate folder size: {exc}") from exc
            if stat.S_ISREG(st.st_mode):
                total += st.st_size

    log.debug("Estimated %s at %d bytes", root, total)
    return total
