"""
Configuration — loads settings from environment / .env file.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from dotenv import load_dotenv

from models.errors import ConfigError

load_dotenv()

# Temporal
TEMPORAL_ENABLED = os.getenv("TEMPORAL_ENABLED", "true").strip().lower() in ("1", "true", "yes", "on")
TEMPORAL_HOST = os.getenv("TEMPORAL_HOST", "localhost:7233")
TEMPORAL_TASK_QUEUE = "backup-pilot-queue"
TEMPORAL_NAMESPACE = os.getenv("TEMPORAL_NAMESPACE", "default")
SCHEDULED_WORKFLOW_ID = "backup-pilot-scheduled"

# Schedule (every 6 hours)
BACKUP_CRON = os.getenv("BACKUP_CRON", "0 */6 * * *")

# Notification channel
DISCORD_WEBHOOK_URL = os.getenv("DISCORD_WEBHOOK_URL", "")
DISCORD_USERNAME = os.getenv("DISCORD_USERNAME", "Backup Pilot")
NOTIFY_TIMEOUT = float(os.getenv("NOTIFY_TIMEOUT", "5"))

# Manual trigger
BACKUP_TRIGGER_TOKEN = os.getenv("BACKUP_TRIGGER_TOKEN", "")

# HTTP service
API_HOST = os.getenv("API_HOST", "127.0.0.1")
API_PORT = int(os.getenv("API_PORT", "8000"))

# Artifact categories
SERVER_PREFIX = "server_backup_"
DATABASE_PREFIX = "database_backup_"
CATEGORY_PREFIXES = (SERVER_PREFIX, DATABASE_PREFIX)

# Progress bar width (cells)
PROGRESS_BAR_LENGTH = 40

# Archive stage is modelled as the first half of the run
ARCHIVE_CHECKPOINT = 0.5


@dataclass(frozen=True)
class DatabaseConfig:
    """Resolved connection descriptor for the database dump."""
    host: str
    port: int
    user: str
    password: str
    name: str


@dataclass(frozen=True)
class BackupConfig:
    """Fully resolved backup configuration, read-only to the pipeline."""
    backup_dir: Path
    source_dir: Path
    database: DatabaseConfig
    keep_count: int = 5
    poll_interval: float = 10.0
    archive_timeout: float | None = None
    dump_timeout: float | None = None
    halt_on_dump_failure: bool = False
    connect_timeout: int = 10
    categories: tuple[str, ...] = CATEGORY_PREFIXES


def _number(env: Mapping[str, str], key: str, default: str, cast=float):
    raw = env.get(key, default)
    try:
        return cast(raw)
    except (TypeError, ValueError):
        raise ConfigError(f"{key} must be a number, got {raw!r}") from None


def _timeout(env: Mapping[str, str], key: str) -> float | None:
    value = _number(env, key, "0")
    return value if value > 0 else None


def _flag(env: Mapping[str, str], key: str, default: bool = False) -> bool:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def load_backup_config(env: Mapping[str, str] | None = None) -> BackupConfig:
    """Resolve a BackupConfig from the environment (or the given mapping)."""
    env = os.environ if env is None else env

    source_dir = env.get("BACKUP_SOURCE_DIR", "").strip()
    if not source_dir:
        raise ConfigError("BACKUP_SOURCE_DIR is not set")
    db_name = env.get("DB_NAME", "").strip()
    if not db_name:
        raise ConfigError("DB_NAME is not set")

    keep_count = _number(env, "BACKUP_KEEP_COUNT", "5", int)
    if keep_count < 0:
        raise ConfigError(f"BACKUP_KEEP_COUNT must be >= 0, got {keep_count}")
    poll_interval = _number(env, "BACKUP_POLL_INTERVAL", "10")
    if poll_interval <= 0:
        raise ConfigError(f"BACKUP_POLL_INTERVAL must be > 0, got {poll_interval}")

    database = DatabaseConfig(
        host=env.get("DB_HOST", "localhost"),
        port=_number(env, "DB_PORT", "5432", int),
        user=env.get("DB_USER", "postgres"),
        password=env.get("DB_PASSWORD", ""),
        name=db_name,
    )
    return BackupConfig(
        backup_dir=Path(env.get("BACKUP_DIR", "./backups")).expanduser().resolve(),
        source_dir=Path(source_dir).expanduser(),
        database=database,
        keep_count=keep_count,
        poll_interval=poll_interval,
        archive_timeout=_timeout(env, "BACKUP_ARCHIVE_TIMEOUT"),
        dump_timeout=_timeout(env, "BACKUP_DUMP_TIMEOUT"),
        halt_on_dump_failure=_flag(env, "BACKUP_HALT_ON_DUMP_FAILURE"),
        connect_timeout=_number(env, "DB_CONNECT_TIMEOUT", "10", int),
    )
