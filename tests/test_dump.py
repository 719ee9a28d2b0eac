"""Tests for the database dump stage."""

import asyncio
import threading
import time

import pytest

from activities.dump import DumpStage
from config import DatabaseConfig
from models.errors import DumpConnectionError, DumpProcessError
from tests.conftest import MemorySink, RecordingReporter, ScriptDumpStage

DATABASE = DatabaseConfig(host="db.internal", port=3306, user="panel", password="p@ss; rm -rf /", name="panel")


def test_command_is_an_argument_vector_without_the_password():
    argv = DumpStage().build_command(DATABASE)
    assert argv == [
        "pg_dump", "--host", "db.internal", "--port", "3306",
        "--username", "panel", "--no-password", "panel",
    ]
    assert all("p@ss" not in arg for arg in argv)


def test_password_travels_in_the_environment():
    env = DumpStage().build_env(DATABASE)
    assert env["PGPASSWORD"] == "p@ss; rm -rf /"


@pytest.mark.asyncio
async def test_dump_writes_stdout_to_file_and_closes_connection(tmp_path):
    stage = ScriptDumpStage("print('CREATE TABLE servers ();')")
    reporter = RecordingReporter(MemorySink())
    dest = tmp_path / "database_backup_x.sql"

    await stage.run(DATABASE, dest, reporter)

    assert dest.read_text().strip() == "CREATE TABLE servers ();"
    assert reporter.updates == [(0.5, "Database backup in progress...")]
    assert [c.closed for c in stage.connections] == [True]


@pytest.mark.asyncio
async def test_nonzero_exit_raises_and_still_closes_connection(tmp_path):
    stage = ScriptDumpStage("import sys; sys.exit(2)")

    with pytest.raises(DumpProcessError) as info:
        await stage.run(DATABASE, tmp_path / "out.sql", RecordingReporter(MemorySink()))

    assert info.value.exit_code == 2
    assert str(info.value) == "Database backup process exited with code 2"
    assert stage.connections[0].closed


@pytest.mark.asyncio
async def test_connection_failure_skips_the_dump(tmp_path):
    def refuse(database, timeout):
        raise OSError("connection refused")

    stage = ScriptDumpStage(connect=refuse)
    reporter = RecordingReporter(MemorySink())
    dest = tmp_path / "out.sql"

    with pytest.raises(DumpConnectionError, match="Database connection error: connection refused"):
        await stage.run(DATABASE, dest, reporter)

    assert not dest.exists()
    assert reporter.updates == []


@pytest.mark.asyncio
async def test_missing_dump_binary_is_a_process_error(tmp_path):
    stage = ScriptDumpStage()
    stage.build_command = lambda database: [str(tmp_path / "no-such-pg_dump")]

    with pytest.raises(DumpProcessError, match="Database backup process error"):
        await stage.run(DATABASE, tmp_path / "out.sql", RecordingReporter(MemorySink()))

    assert stage.connections[0].closed


@pytest.mark.asyncio
async def test_time_box_kills_a_hung_dump(tmp_path):
    stage = ScriptDumpStage("import time; time.sleep(30)", timeout=0.3)

    with pytest.raises(DumpProcessError, match="timed out"):
        await stage.run(DATABASE, tmp_path / "out.sql", RecordingReporter(MemorySink()))


@pytest.mark.asyncio
async def test_cancel_during_connect_still_closes_the_connection(tmp_path):
    connecting = threading.Event()
    stage = ScriptDumpStage()
    fast_connect = stage._connect

    def slow_connect(database, timeout):
        connecting.set()
        time.sleep(0.3)
        return fast_connect(database, timeout)

    stage._connect = slow_connect
    dest = tmp_path / "out.sql"
    task = asyncio.create_task(stage.run(DATABASE, dest, RecordingReporter(MemorySink())))
    while not connecting.is_set():
        await asyncio.sleep(0.01)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    assert [c.closed for c in stage.connections] == [True]
    assert not dest.exists()
