"""
Error hierarchy for backup runs.

Archive errors halt a run. Dump errors are downgraded by the orchestrator
unless the halt policy is enabled. Estimation, retention and notification
errors never leave their own scope.
"""

from __future__ import annotations


class BackupError(RuntimeError):
    """Base exception for backup related failures."""


class ConfigError(BackupError):
    """Raised when the backup configuration cannot be resolved."""


class SizeEstimationError(BackupError):
    """Raised when the source tree cannot be measured."""


class ArchiveProcessError(BackupError):
    """Raised when the archive process fails to start, times out or exits nonzero."""

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        self.exit_code = exit_code


class DumpConnectionError(BackupError):
    """Raised when the validation connection to the database fails."""


class DumpProcessError(BackupError):
    """Raised when the dump process fails to start, times out or exits nonzero."""

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        self.exit_code = exit_code


class RetentionError(BackupError):
    """Raised when an artifact cannot be listed or removed."""

    def __init__(self, message: str, path: str | None = None):
        super().__init__(message)
        self.path = path


class NotificationError(BackupError):
    """Raised by a sink when the notification channel rejects a call."""


class BackupInProgressError(BackupError):
    """Raised when a run is requested while another one is still going."""


class BackupCancelledError(BackupError):
    """Raised when a run's cancellation token fires."""


class ProcessTimeoutError(BackupError):
    """Raised when an external process outlives its time box."""

    def __init__(self, argv0: str, timeout: float):
        super().__init__(f"{argv0} timed out after {timeout:g}s")
        self.timeout = timeout


class InvalidTransitionError(BackupError):
    """Raised when a run is moved to a phase it cannot reach."""
