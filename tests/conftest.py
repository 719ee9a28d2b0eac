"""Shared pytest fixtures."""

import os

os.environ["TEMPORAL_ENABLED"] = "false"
os.environ.pop("DISCORD_WEBHOOK_URL", None)

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from activities.archive import ArchiveStage
from activities.dump import DumpStage
from config import BackupConfig, DatabaseConfig
from features.notify import ProgressReporter
from models.errors import NotificationError


class MemorySink:
    """Notification sink that keeps everything in memory."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.messages: dict[str, str] = {}
        self.edits: list[tuple[str, str]] = []
        self.logs: list[tuple[str, object]] = []

    async def send_message(self, content):
        if self.fail:
            raise NotificationError("channel unavailable")
        message_id = str(len(self.messages) + 1)
        self.messages[message_id] = content
        return message_id

    async def edit_message(self, message_id, content):
        if self.fail:
            raise NotificationError("channel unavailable")
        self.messages[message_id] = content
        self.edits.append((message_id, content))

    async def send_log(self, message, summary=None):
        if self.fail:
            raise NotificationError("channel unavailable")
        self.logs.append((message, summary))

    @property
    def log_messages(self):
        return [m for m, _ in self.logs]


class RecordingReporter(ProgressReporter):
    """ProgressReporter that also remembers every (percent, label) pair."""

    def __init__(self, sink):
        super().__init__(sink)
        self.updates: list[tuple[float, str]] = []

    async def report(self, percent, label):
        self.updates.append((percent, label))
        await super().report(percent, label)


class ScriptArchiveStage(ArchiveStage):
    """ArchiveStage that runs a Python snippet instead of tar; argv[1] is the destination."""

    def __init__(self, sink, script, **kwargs):
        kwargs.setdefault("poll_interval", 0.05)
        super().__init__(sink, **kwargs)
        self.script = script

    def build_command(self, source_dir, dest):
        return [sys.executable, "-c", self.script, str(dest)]


class ScriptDumpStage(DumpStage):
    """DumpStage that runs a Python snippet instead of pg_dump."""

    def __init__(self, script="print('-- dump')", **kwargs):
        self.connections = []
        kwargs.setdefault("connect", self._connect_fake)
        super().__init__(**kwargs)
        self.script = script

    def _connect_fake(self, database, timeout):
        conn = FakeConnection()
        self.connections.append(conn)
        return conn

    def build_command(self, database):
        return [sys.executable, "-c", self.script]


class FakeConnection:
    def __init__(self):
        self.closed = False

    def close(self):
        self.closed = True


class FakeArchiveStage:
    """Stand-in archive stage: writes a file or raises the given error."""

    def __init__(self, error=None, payload=b"archive"):
        self.error = error
        self.payload = payload
        self.calls = []

    async def run(self, source_dir, dest, reporter, *, cancel=None):
        self.calls.append(dest)
        if self.error is not None:
            raise self.error
        dest.write_bytes(self.payload)


class FakeDumpStage:
    def __init__(self, error=None, payload=b"-- dump"):
        self.error = error
        self.payload = payload
        self.calls = []

    async def run(self, database, dest, reporter, *, cancel=None):
        self.calls.append(dest)
        if self.error is not None:
            raise self.error
        dest.write_bytes(self.payload)


class RecordingRetention:
    def __init__(self):
        self.calls = []

    def prune(self, backup_dir, prefixes, keep_count):
        from models.schemas import RetentionSummary

        self.calls.append((backup_dir, tuple(prefixes), keep_count))
        return RetentionSummary()


def make_clock(start=datetime(2024, 1, 1, tzinfo=timezone.utc), step=timedelta(seconds=1)):
    current = [start - step]

    def _clock():
        current[0] += step
        return current[0]

    return _clock


@pytest.fixture()
def sink():
    return MemorySink()


@pytest.fixture()
def source_dir(tmp_path) -> Path:
    src = tmp_path / "src"
    (src / "world").mkdir(parents=True)
    (src / "server.properties").write_bytes(b"a" * 600)
    (src / "world" / "level.dat").write_bytes(b"b" * 400)
    return src


@pytest.fixture()
def backup_config(tmp_path, source_dir) -> BackupConfig:
    return BackupConfig(
        backup_dir=tmp_path / "b",
        source_dir=source_dir,
        database=DatabaseConfig(host="db", port=5432, user="panel", password="s3cret", name="panel"),
        keep_count=5,
        poll_interval=0.05,
    )
