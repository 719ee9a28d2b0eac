"""
Activity: Dump Stage — validates database credentials, then runs pg_dump into
`database_backup_*.sql`.
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Any, Callable

import psycopg2

import config
from config import DatabaseConfig
from features.notify import ProgressReporter
from models.errors import DumpConnectionError, DumpProcessError, ProcessTimeoutError
from utils.process import run_to_file

log = logging.getLogger(__name__)


def connect_database(database: DatabaseConfig, connect_timeout: int = 10) -> Any:
    """Open a Postgres connection; used only to prove reachability and credentials."""
    return psycopg2.connect(
        host=database.host,
        port=database.port,
        user=database.user,
        password=database.password,
        dbname=database.name,
        connect_timeout=connect_timeout,
    )


class DumpStage:
    """Export the database with the external dump tool."""

    def __init__(
        self,
        *,
        timeout: float | None = None,
        connect_timeout: int = 10,
        connect: Callable[..., Any] = connect_database,
        dump_binary: str = "pg_dump",
    ):
        self.timeout = timeout
        self.connect_timeout = connect_timeout
        self._connect = connect
        self.dump_binary = dump_binary

    def build_command(self, database: DatabaseConfig) -> list[str]:
        return [
            self.dump_binary,
            "--host", database.host,
            "--port", str(database.port),
            "--username", database.user,
            "--no-password",
            database.name,
        ]

    def build_env(self, database: DatabaseConfig) -> dict[str, str]:
        env = dict(os.environ)
        env["PGPASSWORD"] = database.password
        return env

    async def run(
        self,
        database: DatabaseConfig,
        dest: Path,
        reporter: ProgressReporter,
        *,
        cancel: asyncio.Event | None = None,
    ) -> None:
        """
        Validate the connection, then dump into `dest`.

        Raises DumpConnectionError if the validation connection fails and
        DumpProcessError if the dump cannot start, times out or exits nonzero.
        The validation connection is always closed.
        """
        connecting = asyncio.ensure_future(asyncio.to_thread(self._connect, database, self.connect_timeout))
        try:
            conn = await asyncio.shield(connecting)
        except asyncio.CancelledError:
            # The connect thread keeps running; close whatever it hands back.
            await _close_when_connected(connecting)
            raise
        except Exception as e:
            raise DumpConnectionError(f"Database connection error: {e}") from e

        try:
            await reporter.report(config.ARCHIVE_CHECKPOINT, "Database backup in progress...")
            try:
                exit_code = await run_to_file(
                    self.build_command(database),
                    dest,
                    name="Database backup process",
                    env=self.build_env(database),
                    timeout=self.timeout,
                    cancel=cancel,
                )
            except (OSError, ProcessTimeoutError) as e:
                raise DumpProcessError(f"Database backup process error: {e}") from e
        finally:
            await asyncio.to_thread(conn.close)

        if exit_code != 0:
            raise DumpProcessError(f"Database backup process exited with code {exit_code}", exit_code)
        log.info("Database dump written: %s", dest)


async def _close_when_connected(connecting: asyncio.Future) -> None:
    try:
        conn = await connecting
    except Exception as e:
        log.debug("Validation connection failed after cancellation: %s", e)
        return
    await asyncio.to_thread(conn.close)


def build_dump_stage(cfg: config.BackupConfig) -> DumpStage:
    return DumpStage(timeout=cfg.dump_timeout, connect_timeout=cfg.connect_timeout)
